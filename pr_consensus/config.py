# =============================================================================
# Application Configuration — Pydantic Settings
# =============================================================================
#
# DESIGN DECISION: One pydantic-settings class holds every knob.
# Every scoring threshold in the pipeline lives here rather than as a magic
# constant in the scorer that uses it. The defaults are starting points for
# tuning, not derived optima.
#
# HOW IT WORKS:
# Pydantic Settings loads values in this priority order (highest first):
#   1. Environment variables (e.g., `SIMILARITY_THRESHOLD=0.75`)
#   2. Values from the .env file
#   3. Default values defined below
#
# DESIGN DECISION: No module-level settings instance.
# Components take a `Settings` in their constructor and fall back to
# `get_settings()` only when the caller passes nothing. Tests build their
# own `Settings(...)` and hand it in, no patching of globals required.
#
# USAGE:
#   from pr_consensus.config import get_settings
#   settings = get_settings()
# =============================================================================

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Review pipeline settings, read from the environment.

    Defaults suit a local run against a single Claude reviewer.
    Deployments override individual fields with env vars or .env.
    """

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------
    app_name: str = "PR Consensus Review"
    app_version: str = "0.1.0"
    debug: bool = True
    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # Vendor API Keys
    # -------------------------------------------------------------------------
    # Empty by default; providers refuse to start without a resolved key.
    # -------------------------------------------------------------------------
    anthropic_api_key: str = ""
    openai_api_key: str = ""

    # -------------------------------------------------------------------------
    # Review Models
    # -------------------------------------------------------------------------
    # Two provider families:
    #   - "anthropic": Claude via native Anthropic SDK
    #   - "openai_compatible": Any OpenAI-compatible API (OpenAI, DeepSeek,
    #     Qwen, a local LM Studio / Ollama server, ...)
    #
    # review_models: provider ids ("provider/model[@base_url]") to run every
    # agent against. Empty means "one run per agent with the default provider".
    # Example: ["anthropic/claude-sonnet-4-6", "openai_compatible/deepseek-chat"]
    # -------------------------------------------------------------------------
    llm_provider: str = "anthropic"
    llm_base_url: str | None = None  # openai_compatible only
    llm_api_key: str | None = None  # wins over the vendor keys above
    llm_model: str = "claude-sonnet-4-6"
    llm_temperature: float = 0.1
    llm_max_tokens: int = 4096
    review_models: list[str] = []

    # -------------------------------------------------------------------------
    # Analysis Agents
    # -------------------------------------------------------------------------
    # agent_timeout_seconds: per-LLM-call bound. A hung call degrades to the
    # fallback analysis instead of blocking the whole fan-out.
    # fallback_confidence: confidence of the fallback analysis. The same
    # value is used for every error type and every agent.
    # -------------------------------------------------------------------------
    agent_timeout_seconds: float = 120.0
    fallback_confidence: float = 0.3
    agent_base_confidence: float = 0.8
    refinement_confidence_delta: float = 0.1
    min_implementation_chars: int = 20

    # -------------------------------------------------------------------------
    # Cross Validation & Consensus
    # -------------------------------------------------------------------------
    # similarity_threshold: minimum weighted similarity for two same-key
    # items to count as a match (below it they are a conflict).
    # confidence_conflict_threshold / confidence_conflict_high: bands for
    # flagging two results whose aggregate confidences disagree.
    # consensus_confidence_weight: share of the consensus confidence taken
    # from individual agent confidences; the rest comes from agreement.
    # cross_validate_same_type_only: compare only results of the same
    # analysis type (the same lens on different models). Architectural and
    # security findings never share a fingerprint, so cross-type pairs
    # would only drag agreement towards zero.
    # -------------------------------------------------------------------------
    similarity_threshold: float = 0.7
    confidence_conflict_threshold: float = 0.3
    confidence_conflict_high: float = 0.5
    high_agreement_threshold: float = 0.8
    low_agreement_threshold: float = 0.4
    consensus_confidence_weight: float = 0.6
    cross_validate_same_type_only: bool = True

    # -------------------------------------------------------------------------
    # Consensus Strategy
    # -------------------------------------------------------------------------
    # Strategy by agreement (strictly above each bound):
    #   > majority (with fewer conflicts than the cap) → majority-voting
    #   > weighted                                     → weighted-consensus
    #   > arbitration                                  → expert-arbitration
    #   otherwise                                      → ensemble-fusion
    # Weighting by the cross-validation confidence bands:
    #   many high-confidence findings, few uncertain → confidence-based
    #   many uncertain findings                      → expertise-based
    #   otherwise                                    → balanced
    # model_expertise: extra {model substring: {finding type substring:
    # weight}} entries layered over the built-in table in consensus.py.
    # -------------------------------------------------------------------------
    consensus_majority_agreement: float = 0.8
    consensus_majority_max_conflicts: int = 3
    consensus_weighted_agreement: float = 0.6
    consensus_arbitration_agreement: float = 0.4
    weighting_high_confidence_count: int = 5
    weighting_uncertain_count: int = 3
    model_expertise: dict[str, dict[str, float]] = {}

    # -------------------------------------------------------------------------
    # Iterative Refinement
    # -------------------------------------------------------------------------
    # max_refinement_iterations: hard cap on critique → refine → validate
    # rounds. This is the primary bound on LLM cost per review.
    # max_feedback_rounds: extra refinement passes triggered when the quality
    # gates still fail after standards repair.
    # -------------------------------------------------------------------------
    max_refinement_iterations: int = 2
    convergence_epsilon: float = 0.01
    critique_with_llm: bool = True
    max_feedback_rounds: int = 1

    # -------------------------------------------------------------------------
    # Quality Gates
    # -------------------------------------------------------------------------
    gate_completeness: float = 0.8
    gate_consistency: float = 0.7
    gate_actionability: float = 0.8
    gate_evidence: float = 0.7
    gate_confidence: float = 0.7
    gate_overall: float = 0.75
    critical_evidence_penalty: float = 0.5
    recommendation_quality_ratio: float = 0.8

    # -------------------------------------------------------------------------
    # Settings Sources
    # -------------------------------------------------------------------------
    model_config = SettingsConfigDict(
        # .env in the working directory
        env_file=".env",
        env_file_encoding="utf-8",
        # Allow extra fields in environment (don't crash on unknown vars)
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """
    Process-wide Settings, built once.

    Used as the default for components constructed without explicit
    settings, and as a FastAPI dependency:
        app.dependency_overrides[get_settings] = lambda: Settings(debug=False)
    """
    return Settings()
