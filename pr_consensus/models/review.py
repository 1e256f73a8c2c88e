# =============================================================================
# Review Result Containers — What Each Pipeline Stage Hands to the Next
# =============================================================================
#
#   MultiModelAnalysisResult  ← orchestrator (fan-out + cross-validation +
#                               consensus)
#   RefinedAnalysisResult     ← refinement engine (final results + history)
#   QualityValidation         ← quality gates (scores, rules, verdict)
#
# DESIGN DECISION: Containers live apart from the services that fill them.
# The refinement engine, the orchestrator and the quality gates all consume
# each other's results. Defining the containers here (with service types
# referenced only for type checking) keeps the import graph acyclic.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from pr_consensus.models.analysis import (
    AgentResult,
    AnalysisType,
    Feedback,
    Finding,
)

if TYPE_CHECKING:
    from pr_consensus.agents.analysis_agent import AnalysisAgent
    from pr_consensus.services.consensus import ConsensusResult
    from pr_consensus.services.cross_validator import ComparisonResult


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CrossValidationResult:
    comparisons: tuple[ComparisonResult, ...]
    overall_agreement: float
    high_confidence_findings: tuple[Finding, ...] = ()
    uncertain_findings: tuple[Finding, ...] = ()


@dataclass(frozen=True)
class MultiModelAnalysisResult:
    individual_results: tuple[AgentResult, ...]
    cross_validation: CrossValidationResult
    consensus: ConsensusResult
    auxiliary_findings: tuple[Finding, ...] = ()
    processing_time_ms: int = 0
    # Agents that produced the results; refinement routes feedback to them.
    agents: tuple[AnalysisAgent, ...] = field(
        default=(), compare=False, repr=False,
    )

    @property
    def quality_score(self) -> float:
        return self.consensus.quality_score

    @property
    def models_used(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(r.model_used for r in self.individual_results))

    @property
    def analysis_types(self) -> tuple[AnalysisType, ...]:
        return tuple(dict.fromkeys(r.agent_type for r in self.individual_results))


# ---------------------------------------------------------------------------
# Refinement
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Critique:
    """Self-critique of one refinement round."""

    is_complete: bool
    blind_spots: tuple[str, ...] = ()
    weak_assumptions: tuple[str, ...] = ()
    feedback: tuple[Feedback, ...] = ()


@dataclass(frozen=True)
class RefinementIteration:
    iteration: int
    critique: Critique
    score_before: float
    score_after: float

    @property
    def quality_improvement(self) -> float:
        return round(self.score_after - self.score_before, 6)


@dataclass(frozen=True)
class RefinedAnalysisResult:
    final_results: MultiModelAnalysisResult
    history: tuple[RefinementIteration, ...] = ()
    total_iterations: int = 0
    final_score: float = 0.0

    @property
    def refinement_boost(self) -> float:
        """Quality improvement of the last round, never negative."""
        if not self.history:
            return 0.0
        return max(0.0, self.history[-1].quality_improvement)


# ---------------------------------------------------------------------------
# Quality Gates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DimensionScore:
    score: float
    issues: tuple[str, ...] = ()
    missing_areas: tuple[str, ...] = ()


@dataclass(frozen=True)
class RuleOutcome:
    rule_id: str
    name: str
    severity: str  # "error" blocks the gate, "warning" is informational
    passed: bool
    message: str


@dataclass(frozen=True)
class QualityValidation:
    completeness: DimensionScore
    consistency: DimensionScore
    actionability: DimensionScore
    evidence: DimensionScore
    confidence: DimensionScore
    rules: tuple[RuleOutcome, ...]
    overall_score: float
    passes_gates: bool
    improvements: tuple[str, ...] = ()

    @property
    def violations(self) -> tuple[RuleOutcome, ...]:
        return tuple(r for r in self.rules if not r.passed and r.severity == "error")

    @property
    def warnings(self) -> tuple[RuleOutcome, ...]:
        return tuple(r for r in self.rules if not r.passed and r.severity == "warning")

    @property
    def issues(self) -> tuple[str, ...]:
        return (
            self.completeness.issues + self.consistency.issues
            + self.actionability.issues + self.evidence.issues
            + self.confidence.issues
            + tuple(r.message for r in self.violations)
        )

    def scores(self) -> dict[str, float]:
        return {
            "completeness": self.completeness.score,
            "consistency": self.consistency.score,
            "actionability": self.actionability.score,
            "evidence": self.evidence.score,
            "confidence": self.confidence.score,
        }
