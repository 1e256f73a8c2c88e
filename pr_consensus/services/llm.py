# =============================================================================
# Review Model Providers — One Client per Reviewing Model
# =============================================================================
#
# Every analysis agent, plugin and the refinement critic talks to a model
# through the same small `complete()` call. Two backends cover the models
# a review panel is usually built from:
#   - Anthropic (Claude) through the native SDK
#   - anything speaking the OpenAI chat API (OpenAI, DeepSeek, Qwen,
#     LM Studio / Ollama on localhost)
#
# DESIGN DECISION: Structural Protocol for providers.
# Agents only depend on `model_name` and `complete()`, so tests hand in
# AsyncMock objects and nothing has to inherit from a base class.
#
# DESIGN DECISION: Provider ids name a panel member.
# "anthropic/claude-sonnet-4-6" or "openai_compatible/qwen@http://host/v1"
# is enough to build an independent client. The orchestrator builds one per
# configured review model so the same agents can run against all of them.
#
# DESIGN DECISION: Key resolution order is explicit key, LLM_API_KEY, then
# the vendor key. A per-request model therefore never silently borrows the
# wrong vendor's credentials.
#
# ARCHITECTURE:
#   LLMProvider (Protocol)
#   ├── AnthropicProvider         — system prompt as `system=` kwarg
#   ├── OpenAICompatibleProvider  — system prompt as first chat message
#   ├── ProviderSpec              — parsed provider id
#   ├── create_llm_provider()     — default reviewer / critic from Settings
#   └── create_provider_from_id() — one panel member per provider id
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import NamedTuple, Protocol

from pr_consensus.config import Settings, get_settings

logger = logging.getLogger(__name__)

ANTHROPIC = "anthropic"
OPENAI_COMPATIBLE = "openai_compatible"


# ---------------------------------------------------------------------------
# Shared Types
# ---------------------------------------------------------------------------


@dataclass
class LLMResponse:
    """Text of one model reply plus the token usage reported for it."""

    content: str
    model: str
    input_tokens: int
    output_tokens: int

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class LLMProvider(Protocol):
    """
    What a reviewing model must offer.

    `messages` carries only "user" / "assistant" turns; the system prompt
    (an agent's persona or the critic instructions) travels separately
    because the two backends place it differently.
    """

    model_name: str

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        ...


class ProviderSpec(NamedTuple):
    provider_type: str
    model: str
    base_url: str | None = None


def _resolve_api_key(
    settings: Settings, explicit: str | None, vendor_key: str, label: str,
) -> str:
    key = explicit or settings.llm_api_key or vendor_key
    if not key:
        raise ValueError(
            f"No API key configured for {label} review model. "
            "Set LLM_API_KEY or the vendor key in .env"
        )
    return key


class _SamplingDefaults:
    """Temperature and output budget shared by both backends."""

    model_name: str

    def __init__(self, settings: Settings, model: str | None) -> None:
        self.model_name = model or settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

    def _sampling(
        self, temperature: float | None, max_tokens: int | None,
    ) -> tuple[float, int]:
        return (
            self._temperature if temperature is None else temperature,
            max_tokens or self._max_tokens,
        )


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


class AnthropicProvider(_SamplingDefaults):
    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        settings: Settings | None = None,
    ) -> None:
        from anthropic import AsyncAnthropic

        settings = settings or get_settings()
        super().__init__(settings, model)
        key = _resolve_api_key(
            settings, api_key, settings.anthropic_api_key, "Anthropic",
        )
        self._client = AsyncAnthropic(api_key=key)
        logger.info("Anthropic reviewer ready (model=%s)", self.model_name)

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        temperature, max_tokens = self._sampling(temperature, max_tokens)
        request: dict = {
            "model": self.model_name,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if system:
            request["system"] = system

        reply = await self._client.messages.create(**request)

        text = next(
            (block.text for block in reply.content if block.type == "text"), "",
        )
        return LLMResponse(
            content=text,
            model=reply.model,
            input_tokens=reply.usage.input_tokens,
            output_tokens=reply.usage.output_tokens,
        )


# ---------------------------------------------------------------------------
# OpenAI-compatible
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider(_SamplingDefaults):
    """
    Any chat-completions endpoint. Point LLM_BASE_URL (or the `@url` part
    of a provider id) at a local server to review with an open model.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        settings: Settings | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        settings = settings or get_settings()
        super().__init__(settings, model)
        key = _resolve_api_key(
            settings, api_key, settings.openai_api_key, "OpenAI-compatible",
        )
        self.base_url = base_url or settings.llm_base_url
        if self.base_url:
            self._client = AsyncOpenAI(api_key=key, base_url=self.base_url)
        else:
            self._client = AsyncOpenAI(api_key=key)
        logger.info(
            "OpenAI-compatible reviewer ready (model=%s, base_url=%s)",
            self.model_name, self.base_url or "default",
        )

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        temperature, max_tokens = self._sampling(temperature, max_tokens)
        chat = [{"role": "system", "content": system}] if system else []
        chat.extend(messages)

        reply = await self._client.chat.completions.create(
            model=self.model_name,
            messages=chat,
            temperature=temperature,
            max_tokens=max_tokens,
        )

        usage = reply.usage
        return LLMResponse(
            content=reply.choices[0].message.content or "",
            model=reply.model or self.model_name,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def create_llm_provider(
    settings: Settings | None = None,
) -> AnthropicProvider | OpenAICompatibleProvider:
    """
    Default reviewer, also used as the refinement critic.

    Raises:
        ValueError: When no key is configured for `settings.llm_provider`.
    """
    settings = settings or get_settings()
    if settings.llm_provider == OPENAI_COMPATIBLE:
        return OpenAICompatibleProvider(settings=settings)
    return AnthropicProvider(settings=settings)


_KNOWN_PROVIDER_TYPES = (ANTHROPIC, OPENAI_COMPATIBLE)


def _parse_provider_id(provider_id: str) -> ProviderSpec:
    """
    Split "type/model[@base_url]" into its parts.

    >>> _parse_provider_id("openai_compatible/qwen2.5-coder@http://localhost:1234/v1")
    ProviderSpec(provider_type='openai_compatible', model='qwen2.5-coder', base_url='http://localhost:1234/v1')
    """
    provider_type, sep, rest = provider_id.partition("/")
    if not sep:
        raise ValueError(
            f"Invalid provider_id '{provider_id}'. "
            "Expected 'provider_type/model' or 'provider_type/model@base_url'"
        )
    if provider_type not in _KNOWN_PROVIDER_TYPES:
        raise ValueError(
            f"Unknown provider type '{provider_type}'. "
            f"Supported types: {list(_KNOWN_PROVIDER_TYPES)}"
        )

    model, at, base_url = rest.partition("@")
    if not model:
        raise ValueError(f"Invalid provider_id '{provider_id}': empty model")
    return ProviderSpec(provider_type, model, base_url if at else None)


def create_provider_from_id(
    provider_id: str,
    api_key: str | None = None,
    settings: Settings | None = None,
) -> AnthropicProvider | OpenAICompatibleProvider:
    """Build an independent client for one member of the review panel."""
    spec = _parse_provider_id(provider_id)
    if spec.provider_type == ANTHROPIC:
        return AnthropicProvider(api_key=api_key, model=spec.model, settings=settings)
    return OpenAICompatibleProvider(
        api_key=api_key, model=spec.model, base_url=spec.base_url,
        settings=settings,
    )
