# =============================================================================
# LLM Analysis Service — Structured Review Output from Raw Completions
# =============================================================================
#
# Wraps an LLMProvider and turns its free text into typed Findings and
# Recommendations for one analysis domain.
#
# PARSING STRATEGY:
#   1. Strip markdown code fences (```json ... ```)
#   2. Parse the outermost {...} object as JSON
#   3. Not JSON at all → heuristic line extraction:
#        "- Issue: ..." / "- Concern: ..."        → low-confidence Finding
#        "- Recommend ..." / "- Consider ..."     → Recommendation
#
# DESIGN DECISION: JSON that parses but doesn't fit is an ERROR, not prose.
# If the model returned a JSON object with severity "urgent", falling back
# to line heuristics would silently throw away its findings. Instead we
# raise MalformedResponseError and let the agent produce its fallback
# analysis, which is visible downstream as a low-confidence result.
#
# DESIGN DECISION: Provider errors propagate.
# This service doesn't decide what a failed call means for the review.
# The calling agent owns the fallback policy.
# =============================================================================

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field

from pr_consensus.agents.prompts import RESPONSE_FORMAT, SYSTEM_PROMPTS
from pr_consensus.models.analysis import (
    BROAD_SCOPE,
    AnalysisType,
    Finding,
    PRContext,
    Priority,
    Recommendation,
    Severity,
    new_item_id,
)
from pr_consensus.services.llm import LLMProvider

logger = logging.getLogger(__name__)

# Confidence assigned when the model omits one.
DEFAULT_CONFIDENCE = 0.7
# Heuristic extraction is a guess about the model's intent.
HEURISTIC_CONFIDENCE = 0.5

_FINDING_LINE = re.compile(
    r"^[-*•]\s*(issue|problem|concern|warning|error)", re.IGNORECASE,
)
_RECOMMENDATION_LINE = re.compile(
    r"^[-*•]\s*(recommend|suggest|should|consider)", re.IGNORECASE,
)
_BULLET = re.compile(r"^[-*•]\s*")
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class MalformedResponseError(ValueError):
    """The LLM returned structured output that cannot be mapped to findings."""


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class LLMAnalysis:
    """Parsed output of one analysis call."""

    analysis: str
    findings: list[Finding] = field(default_factory=list)
    recommendations: list[Recommendation] = field(default_factory=list)
    confidence: float = DEFAULT_CONFIDENCE


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class LLMAnalysisService:
    """Runs one domain analysis against a single LLM provider."""

    def __init__(self, provider: LLMProvider) -> None:
        self._provider = provider

    @property
    def provider(self) -> LLMProvider:
        return self._provider

    @property
    def model_name(self) -> str:
        return getattr(self._provider, "model_name", "unknown")

    async def generate_analysis(
        self,
        analysis_type: AnalysisType,
        context: PRContext,
        prompt: str,
    ) -> LLMAnalysis:
        """
        Ask the model for a review and parse the answer.

        Args:
            analysis_type: Domain being reviewed; selects the system prompt.
            context: The PR under review (used for logging only; the prompt
                already carries its content).
            prompt: User message describing the change.

        Raises:
            MalformedResponseError: JSON output with invalid field values.
            Exception: Whatever the provider raises on transport errors.
        """
        system = f"{SYSTEM_PROMPTS[analysis_type]}\n\n{RESPONSE_FORMAT}"

        logger.info(
            "Requesting %s analysis: pr=%r, model=%s",
            analysis_type.value, context.title, self.model_name,
        )

        response = await self._provider.complete(
            messages=[{"role": "user", "content": prompt}],
            system=system,
        )

        logger.info(
            "%s analysis response: model=%s, tokens=%d+%d",
            analysis_type.value, response.model,
            response.input_tokens, response.output_tokens,
        )

        return parse_analysis_response(
            response.content, analysis_type, self.model_name,
        )


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_analysis_response(
    text: str,
    analysis_type: AnalysisType,
    model_name: str | None = None,
) -> LLMAnalysis:
    """
    Parse a raw completion into an LLMAnalysis.

    Raises:
        MalformedResponseError: If the text is JSON but not a usable analysis.
    """
    payload = extract_json(text)
    if payload is None:
        logger.warning(
            "No JSON in %s response, using heuristic extraction",
            analysis_type.value,
        )
        return _extract_heuristically(text, analysis_type, model_name)

    if not isinstance(payload, dict):
        raise MalformedResponseError(
            f"Expected a JSON object, got {type(payload).__name__}"
        )

    prefix = analysis_type.value
    try:
        confidence = float(payload.get("confidence", DEFAULT_CONFIDENCE))
        findings = [
            _finding_from_json(item, prefix, confidence, model_name)
            for item in payload.get("findings") or []
        ]
        recommendations = [
            _recommendation_from_json(item, prefix, confidence)
            for item in payload.get("recommendations") or []
        ]
    except (TypeError, ValueError, AttributeError) as e:
        raise MalformedResponseError(
            f"Invalid {analysis_type.value} analysis payload: {e}"
        ) from e

    if not 0.0 <= confidence <= 1.0:
        raise MalformedResponseError(
            f"Analysis confidence out of range: {confidence}"
        )

    return LLMAnalysis(
        analysis=str(payload.get("analysis") or f"{prefix} analysis completed"),
        findings=findings,
        recommendations=recommendations,
        confidence=confidence,
    )


def _strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` block if present."""
    text = text.strip()
    if text.startswith("```"):
        lines = text.split("\n")[1:]
        if lines and lines[-1].strip().startswith("```"):
            lines = lines[:-1]
        text = "\n".join(lines)
    return text


def extract_json(text: str) -> object | None:
    """Return the decoded JSON payload, or None when the text isn't JSON."""
    text = _strip_code_fences(text)
    match = _JSON_OBJECT.search(text)
    if not match:
        return None
    try:
        return json.loads(match.group(0))
    except json.JSONDecodeError:
        return None


def _finding_from_json(
    item: dict,
    prefix: str,
    default_confidence: float,
    model_name: str | None,
) -> Finding:
    line = item.get("line_number", item.get("line"))
    evidence = item.get("evidence") or []
    if isinstance(evidence, str):
        evidence = [evidence]
    return Finding(
        id=str(item.get("id") or new_item_id(prefix, "finding")),
        type=str(item.get("type") or prefix),
        severity=Severity(str(item.get("severity", "medium")).lower()),
        message=str(item.get("message", "")),
        file=str(item.get("file") or BROAD_SCOPE),
        line_number=int(line) if line is not None else None,
        evidence=tuple(str(e) for e in evidence),
        confidence=float(item.get("confidence", default_confidence)),
        source_model=model_name,
        supporting_models=(model_name,) if model_name else (),
    )


def _recommendation_from_json(
    item: dict,
    prefix: str,
    default_confidence: float,
) -> Recommendation:
    related = item.get("related_finding_ids") or []
    return Recommendation(
        id=str(item.get("id") or new_item_id(prefix, "rec")),
        priority=Priority(str(item.get("priority", "should-fix")).lower()),
        category=str(item.get("category") or prefix),
        description=str(item.get("description", "")),
        rationale=str(item.get("rationale", "")),
        implementation=str(item.get("implementation", "")),
        effort=str(item.get("effort", "medium")).lower(),
        confidence=float(item.get("confidence", default_confidence)),
        related_finding_ids=tuple(str(r) for r in related),
    )


def _extract_heuristically(
    text: str,
    analysis_type: AnalysisType,
    model_name: str | None,
) -> LLMAnalysis:
    """Scan bullet lines for issues and suggestions."""
    prefix = analysis_type.value
    findings: list[Finding] = []
    recommendations: list[Recommendation] = []

    for line in text.split("\n"):
        trimmed = line.strip()
        body = _BULLET.sub("", trimmed)

        if _FINDING_LINE.match(trimmed):
            findings.append(Finding(
                id=new_item_id(prefix, "finding"),
                type=prefix,
                severity=Severity.MEDIUM,
                message=body,
                evidence=(trimmed,),
                confidence=HEURISTIC_CONFIDENCE,
                source_model=model_name,
                supporting_models=(model_name,) if model_name else (),
            ))
        elif _RECOMMENDATION_LINE.match(trimmed):
            recommendations.append(Recommendation(
                id=new_item_id(prefix, "rec"),
                priority=Priority.SHOULD_FIX,
                category=prefix,
                description=body,
                rationale=f"{prefix} improvement",
                implementation="Review and implement the suggested change",
                confidence=HEURISTIC_CONFIDENCE,
            ))

    return LLMAnalysis(
        analysis=text.strip(),
        findings=findings,
        recommendations=recommendations,
        confidence=HEURISTIC_CONFIDENCE,
    )
