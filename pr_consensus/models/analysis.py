# =============================================================================
# Analysis Value Types — Findings, Recommendations, Agent Results
# =============================================================================
#
# Shared value types produced by every analysis agent and consumed by the
# cross validator, consensus builder, refinement engine and quality gates.
#
# DESIGN DECISION: Frozen dataclasses, not Pydantic models.
# These objects never cross the HTTP boundary directly (the API maps them
# onto the schemas in responses.py), so they don't need validation-on-parse.
# Freezing them means a refinement round can only produce NEW values via
# dataclasses.replace(); the previous round's analysis stays inspectable.
# Sequences are stored as tuples for the same reason.
#
# DESIGN DECISION: String enums.
# Severity/priority/effort values come back from LLM JSON as plain strings.
# `Severity("critical")` parses them, and `.value` serialises them back,
# with an explicit `rank` for ordering instead of relying on declaration
# order.
# =============================================================================

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

# A finding that is not tied to a single file (e.g. "no tests were added").
BROAD_SCOPE = "*"


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Severity(str, enum.Enum):
    """Finding severity, totally ordered low < medium < high < critical."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


class Priority(str, enum.Enum):
    """Recommendation priority, ordered by urgency (must-fix is most urgent)."""

    MUST_FIX = "must-fix"
    SHOULD_FIX = "should-fix"
    CONSIDER = "consider"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


class Effort(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RiskLevel(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AnalysisType(str, enum.Enum):
    """The closed set of analysis domains an agent can cover."""

    ARCHITECTURAL = "architectural"
    SECURITY = "security"
    PERFORMANCE = "performance"
    TESTING = "testing"


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}

_PRIORITY_RANK = {
    Priority.CONSIDER: 0,
    Priority.SHOULD_FIX: 1,
    Priority.MUST_FIX: 2,
}

_RISK_FOR_SEVERITY = {
    Severity.LOW: RiskLevel.LOW,
    Severity.MEDIUM: RiskLevel.MEDIUM,
    Severity.HIGH: RiskLevel.HIGH,
    Severity.CRITICAL: RiskLevel.CRITICAL,
}

_PRIORITY_FOR_SEVERITY = {
    Severity.LOW: Priority.CONSIDER,
    Severity.MEDIUM: Priority.SHOULD_FIX,
    Severity.HIGH: Priority.MUST_FIX,
    Severity.CRITICAL: Priority.MUST_FIX,
}


def priority_for_severity(severity: Severity) -> Priority:
    """Map a finding severity to the recommendation priority it warrants."""
    return _PRIORITY_FOR_SEVERITY[severity]


def new_item_id(prefix: str, kind: str) -> str:
    """Generate an identifier like 'security-finding-3f2a9c1b'."""
    return f"{prefix}-{kind}-{uuid.uuid4().hex[:8]}"


def _check_confidence(value: float, owner: str) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValueError(
            f"{owner} confidence must be within [0, 1], got {value}"
        )


# ---------------------------------------------------------------------------
# Findings & Recommendations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Finding:
    """An observation about the change."""

    id: str
    type: str                        # e.g. "injection-vulnerability"
    severity: Severity
    message: str
    file: str = BROAD_SCOPE          # Path, or BROAD_SCOPE
    line_number: int | None = None
    evidence: tuple[str, ...] = ()
    confidence: float = 0.8
    source_model: str | None = None
    supporting_models: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "severity", Severity(self.severity))
        object.__setattr__(self, "evidence", tuple(self.evidence))
        object.__setattr__(
            self, "supporting_models", tuple(self.supporting_models),
        )
        _check_confidence(self.confidence, f"Finding {self.id}")

    @property
    def location(self) -> str:
        if self.line_number:
            return f"{self.file}:{self.line_number}"
        return self.file


@dataclass(frozen=True)
class Recommendation:
    """An actionable suggestion."""

    id: str
    priority: Priority
    category: str
    description: str
    rationale: str = ""
    implementation: str = ""
    effort: Effort = Effort.MEDIUM
    confidence: float = 0.8
    related_finding_ids: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "priority", Priority(self.priority))
        object.__setattr__(self, "effort", Effort(self.effort))
        object.__setattr__(
            self, "related_finding_ids", tuple(self.related_finding_ids),
        )
        _check_confidence(self.confidence, f"Recommendation {self.id}")


def risk_level_for(findings: tuple[Finding, ...] | list[Finding]) -> RiskLevel:
    """Aggregate risk is the maximum severity among the findings."""
    if not findings:
        return RiskLevel.LOW
    worst = max((f.severity for f in findings), key=lambda s: s.rank)
    return _RISK_FOR_SEVERITY[worst]


# ---------------------------------------------------------------------------
# Agent Output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SpecializedAnalysis:
    """The output of one agent for one PR context."""

    analysis_type: AnalysisType
    findings: tuple[Finding, ...] = ()
    recommendations: tuple[Recommendation, ...] = ()
    risk_level: RiskLevel = RiskLevel.LOW
    confidence: float = 0.0
    summary: str = ""
    fallback_reason: str | None = None  # Set only on fallback analyses

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "analysis_type", AnalysisType(self.analysis_type),
        )
        object.__setattr__(self, "findings", tuple(self.findings))
        object.__setattr__(
            self, "recommendations", tuple(self.recommendations),
        )
        object.__setattr__(self, "risk_level", RiskLevel(self.risk_level))
        _check_confidence(self.confidence, f"{self.analysis_type.value} analysis")

    @property
    def is_fallback(self) -> bool:
        return self.fallback_reason is not None


# (agent type, model used)
ResultScope = tuple[AnalysisType, str]


@dataclass(frozen=True)
class AgentResult:
    """
    A SpecializedAnalysis annotated with the agent and model that produced it.

    This is the unit the cross validator compares.
    """

    agent_type: AnalysisType
    model_used: str
    analysis: SpecializedAnalysis
    processing_time_ms: int = 0
    error: str | None = None

    @property
    def findings(self) -> tuple[Finding, ...]:
        return self.analysis.findings

    @property
    def recommendations(self) -> tuple[Recommendation, ...]:
        return self.analysis.recommendations

    @property
    def confidence(self) -> float:
        return self.analysis.confidence

    @property
    def scope(self) -> ResultScope:
        """(agent type, model) - unique per leg of a review."""
        return (self.agent_type, self.model_used)


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of an agent validating its own analysis."""

    is_valid: bool
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    score: float = 0.0


# ---------------------------------------------------------------------------
# Refinement Feedback — closed tagged union
# ---------------------------------------------------------------------------
# Each variant carries only the fields its transformation needs. `kind`
# mirrors the wire name used in critiques and logs. `scope` pins an item to
# the result that produced it, since two agents (or two models) may use the
# same item id; unscoped items apply wherever the id occurs.
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MissingEvidence:
    """Append `evidence` to the target finding."""

    kind: ClassVar[str] = "missing-evidence"

    target_id: str
    evidence: str
    scope: ResultScope | None = None


@dataclass(frozen=True)
class VagueRecommendation:
    """Append `implementation` text to the target recommendation."""

    kind: ClassVar[str] = "vague-recommendation"

    target_id: str
    implementation: str
    scope: ResultScope | None = None


@dataclass(frozen=True)
class LowConfidence:
    """Nudge the target item's (and the analysis') confidence upwards."""

    kind: ClassVar[str] = "low-confidence"

    target_id: str
    scope: ResultScope | None = None


@dataclass(frozen=True)
class IncompleteAnalysis:
    """Attach a follow-up note to the target finding or recommendation."""

    kind: ClassVar[str] = "incomplete-analysis"

    target_id: str
    note: str
    scope: ResultScope | None = None


Feedback = Union[MissingEvidence, VagueRecommendation, LowConfidence, IncompleteAnalysis]


# ---------------------------------------------------------------------------
# PR Context
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PRContext:
    """
    The change under review, as handed to every agent.

    Context extraction (cloning, diffing, blast-radius analysis) happens
    outside this package; callers build a PRContext from whatever they have.
    """

    title: str
    files: dict[str, str] = field(default_factory=dict)  # path → changed content
    description: str = ""
    language: str = "unknown"
    framework: str = "unknown"
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> PRContext:
        """
        Build a PRContext from a plain dict, rejecting malformed input.

        Raises:
            ValueError: If required fields are missing or mistyped.
        """
        if not isinstance(raw, dict):
            raise ValueError("PR context must be a mapping")
        title = raw.get("title")
        if not isinstance(title, str) or not title.strip():
            raise ValueError("PR context requires a non-empty 'title'")
        files = raw.get("files", {})
        if not isinstance(files, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in files.items()
        ):
            raise ValueError("PR context 'files' must map paths to text")
        return cls(
            title=title,
            files=dict(files),
            description=str(raw.get("description", "")),
            language=str(raw.get("language", "unknown")),
            framework=str(raw.get("framework", "unknown")),
            metadata=dict(raw.get("metadata", {})),
        )
