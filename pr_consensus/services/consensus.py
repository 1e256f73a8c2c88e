# =============================================================================
# Consensus Builder — Merging Agent Results into One Verdict
# =============================================================================
#
# Takes every AgentResult of a review (plus plugin findings) and produces
# the merged view the rest of the pipeline works on:
#
#   analyses        — one merged SpecializedAnalysis per analysis type
#   findings        — all findings, duplicates collapsed by fingerprint
#   recommendations — all recommendations, duplicates collapsed
#   overall_confidence = w * mean(agent confidences) + (1 - w) * agreement
#
# STRATEGY (picked from cross-validation, thresholds in Settings):
#   agreement > 0.8 and < 3 conflicts → majority-voting
#       highest severity, confidence = group mean + 0.1 per extra
#       supporter (max +0.3), capped at 1.0
#   agreement > 0.6                   → weighted-consensus
#       highest severity, confidence = weighted mean of the group
#   agreement > 0.4                   → expert-arbitration
#       the finding of the most expert model for its type wins
#   otherwise                         → ensemble-fusion
#       highest severity, confidence = plain group mean
#
# WEIGHTING (used by weighted-consensus):
#   > 5 high-confidence findings, ≤ 3 uncertain → confidence-based
#   > 3 uncertain findings                      → expertise-based
#   otherwise                                   → balanced
#
# Every strategy unions evidence and supporting models. Recommendations
# always keep the most urgent priority and the highest confidence.
#
# DESIGN DECISION: Agreement boosts confidence, never severity.
# Two models agreeing on a finding makes it more likely to be real, so
# confidence goes up. It doesn't make the issue worse, so severity is the
# max of what the models said rather than escalated.
#
# DESIGN DECISION: Expertise is a substring table, not model ids.
# Model names change with every release ("claude-sonnet-4-6",
# "claude-haiku-4-5"), so the table is keyed by family and topic
# fragments. Settings.model_expertise adds or overrides families.
# =============================================================================

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, replace
from statistics import mean
from typing import TYPE_CHECKING

from pr_consensus.config import Settings, get_settings
from pr_consensus.models.analysis import (
    AgentResult,
    AnalysisType,
    Finding,
    Recommendation,
    SpecializedAnalysis,
    risk_level_for,
)
from pr_consensus.services.cross_validator import (
    create_finding_key,
    create_recommendation_key,
)

if TYPE_CHECKING:
    from pr_consensus.models.review import CrossValidationResult

logger = logging.getLogger(__name__)

_SUPPORT_BOOST = 0.1
_MAX_SUPPORT_BOOST = 0.3

NEUTRAL_EXPERTISE = 0.5

DEFAULT_MODEL_EXPERTISE: dict[str, dict[str, float]] = {
    "gemini": {
        "architect": 0.9, "design": 0.95, "coupling": 0.85, "default": 0.8,
    },
    "claude": {
        "security": 0.95, "vulnerab": 0.9, "injection": 0.9, "auth": 0.85,
        "default": 0.7,
    },
    "gpt": {
        "performance": 0.9, "optimi": 0.85, "scalab": 0.8, "default": 0.75,
    },
    "deepseek": {
        "quality": 0.9, "maintainab": 0.85, "practice": 0.8, "default": 0.75,
    },
    "qwen": {
        "test": 0.9, "coverage": 0.85, "quality": 0.8, "default": 0.7,
    },
}


class ConsensusStrategy(str, enum.Enum):
    MAJORITY_VOTING = "majority-voting"
    WEIGHTED_CONSENSUS = "weighted-consensus"
    EXPERT_ARBITRATION = "expert-arbitration"
    ENSEMBLE_FUSION = "ensemble-fusion"


class WeightingScheme(str, enum.Enum):
    CONFIDENCE_BASED = "confidence-based"
    EXPERTISE_BASED = "expertise-based"
    BALANCED = "balanced"


@dataclass(frozen=True)
class ConsensusResult:
    analyses: tuple[SpecializedAnalysis, ...]
    findings: tuple[Finding, ...]
    recommendations: tuple[Recommendation, ...]
    overall_confidence: float
    model_agreement: float
    consensus_method: str

    def analysis_for(self, analysis_type: AnalysisType) -> SpecializedAnalysis | None:
        for analysis in self.analyses:
            if analysis.analysis_type == analysis_type:
                return analysis
        return None

    @property
    def analysis_types(self) -> set[AnalysisType]:
        return {a.analysis_type for a in self.analyses}

    @property
    def quality_score(self) -> float:
        """0.7 × mean finding confidence + 0.3 × min(findings / 10, 1)."""
        if not self.findings:
            return 0.5
        avg_confidence = mean(f.confidence for f in self.findings)
        coverage = min(len(self.findings) / 10, 1.0)
        return round(avg_confidence * 0.7 + coverage * 0.3, 6)


# ---------------------------------------------------------------------------
# Strategy Selection
# ---------------------------------------------------------------------------


def select_strategy(
    agreement: float,
    conflict_count: int,
    settings: Settings,
) -> ConsensusStrategy:
    if (
        agreement > settings.consensus_majority_agreement
        and conflict_count < settings.consensus_majority_max_conflicts
    ):
        return ConsensusStrategy.MAJORITY_VOTING
    if agreement > settings.consensus_weighted_agreement:
        return ConsensusStrategy.WEIGHTED_CONSENSUS
    if agreement > settings.consensus_arbitration_agreement:
        return ConsensusStrategy.EXPERT_ARBITRATION
    return ConsensusStrategy.ENSEMBLE_FUSION


def select_weighting(
    high_confidence_count: int,
    uncertain_count: int,
    settings: Settings,
) -> WeightingScheme:
    many_uncertain = uncertain_count > settings.weighting_uncertain_count
    if high_confidence_count > settings.weighting_high_confidence_count and not many_uncertain:
        return WeightingScheme.CONFIDENCE_BASED
    if many_uncertain:
        return WeightingScheme.EXPERTISE_BASED
    return WeightingScheme.BALANCED


def expertise_weight(
    model: str | None,
    finding_type: str,
    table: Mapping[str, Mapping[str, float]] = DEFAULT_MODEL_EXPERTISE,
) -> float:
    """How much `model` is trusted on findings of `finding_type`."""
    model = (model or "").lower()
    for family, topics in table.items():
        if family not in model:
            continue
        for topic, weight in topics.items():
            if topic != "default" and topic in finding_type:
                return weight
        return topics.get("default", NEUTRAL_EXPERTISE)
    return NEUTRAL_EXPERTISE


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------


def _ordered_union(*groups: Iterable[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for group in groups:
        for value in group:
            seen.setdefault(value, None)
    return tuple(seen)


def _model_of(finding: Finding) -> str | None:
    if finding.source_model:
        return finding.source_model
    return finding.supporting_models[0] if finding.supporting_models else None


def _weights(
    group: Sequence[Finding],
    weighting: WeightingScheme,
    expertise: Mapping[str, Mapping[str, float]],
) -> list[float]:
    if weighting == WeightingScheme.CONFIDENCE_BASED:
        return [f.confidence for f in group]
    if weighting == WeightingScheme.EXPERTISE_BASED:
        return [expertise_weight(_model_of(f), f.type, expertise) for f in group]
    return [1.0] * len(group)


def _merge_group(
    group: list[Finding],
    strategy: ConsensusStrategy,
    weighting: WeightingScheme,
    expertise: Mapping[str, Mapping[str, float]],
) -> Finding:
    supporting = _ordered_union(*(
        f.supporting_models or ((f.source_model,) if f.source_model else ())
        for f in group
    ))
    confidences = [f.confidence for f in group]

    if strategy == ConsensusStrategy.EXPERT_ARBITRATION:
        # max() keeps the first of equally expert findings
        expert = max(
            group, key=lambda f: expertise_weight(_model_of(f), f.type, expertise),
        )
        return replace(
            expert,
            evidence=_ordered_union(expert.evidence, *(f.evidence for f in group)),
            supporting_models=supporting,
        )

    base = max(group, key=lambda f: f.severity.rank)  # first on ties
    if strategy == ConsensusStrategy.MAJORITY_VOTING:
        boost = min(_SUPPORT_BOOST * (len(group) - 1), _MAX_SUPPORT_BOOST)
        confidence = mean(confidences) + boost
    elif strategy == ConsensusStrategy.WEIGHTED_CONSENSUS:
        weights = _weights(group, weighting, expertise)
        total = sum(weights)
        confidence = (
            sum(c * w for c, w in zip(confidences, weights)) / total
            if total > 0 else mean(confidences)
        )
    else:
        confidence = mean(confidences)

    return replace(
        base,
        evidence=_ordered_union(*(f.evidence for f in group)),
        supporting_models=supporting,
        confidence=min(1.0, round(confidence, 6)),
    )


def merge_findings(
    findings: Iterable[Finding],
    strategy: ConsensusStrategy = ConsensusStrategy.MAJORITY_VOTING,
    weighting: WeightingScheme = WeightingScheme.BALANCED,
    expertise: Mapping[str, Mapping[str, float]] = DEFAULT_MODEL_EXPERTISE,
) -> list[Finding]:
    """Collapse findings that share a fingerprint, keeping first-seen order."""
    groups: dict[tuple, list[Finding]] = {}
    for finding in findings:
        groups.setdefault(create_finding_key(finding), []).append(finding)

    return [
        group[0] if len(group) == 1
        else _merge_group(group, strategy, weighting, expertise)
        for group in groups.values()
    ]


def merge_recommendations(
    recommendations: Iterable[Recommendation],
) -> list[Recommendation]:
    """Collapse recommendations that share a fingerprint."""
    groups: dict[tuple, list[Recommendation]] = {}
    for rec in recommendations:
        groups.setdefault(create_recommendation_key(rec), []).append(rec)

    merged: list[Recommendation] = []
    for group in groups.values():
        if len(group) == 1:
            merged.append(group[0])
            continue
        base = group[0]
        implementation = base.implementation or next(
            (r.implementation for r in group if r.implementation), "",
        )
        rationale = base.rationale or next(
            (r.rationale for r in group if r.rationale), "",
        )
        merged.append(replace(
            base,
            priority=max((r.priority for r in group), key=lambda p: p.rank),
            confidence=max(r.confidence for r in group),
            implementation=implementation,
            rationale=rationale,
            related_finding_ids=_ordered_union(
                *(r.related_finding_ids for r in group)
            ),
        ))
    return merged


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


class ConsensusBuilder:
    """Builds a ConsensusResult from a batch of agent results."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._expertise = dict(self._settings.model_expertise)
        for family, topics in DEFAULT_MODEL_EXPERTISE.items():
            self._expertise.setdefault(family, topics)

    def build(
        self,
        results: Sequence[AgentResult],
        overall_agreement: float | None,
        auxiliary_findings: Sequence[Finding] = (),
        *,
        cross_validation: CrossValidationResult | None = None,
    ) -> ConsensusResult:
        """
        Merge `results` into one view.

        Args:
            results: Every agent result of the review (all models).
            overall_agreement: Mean cross-validation agreement, or None when
                no pairs were compared. In that case the consensus
                confidence is the plain mean of agent confidences and
                duplicates are merged by majority voting.
            auxiliary_findings: Plugin findings, merged into `findings` only.
            cross_validation: Source of the conflict count and confidence
                bands used to pick the strategy and weighting scheme.
        """
        strategy, weighting = self._select(overall_agreement, cross_validation)

        analyses = tuple(
            self._merge_type(analysis_type, group, strategy, weighting)
            for analysis_type, group in _group_by_type(results).items()
        )

        findings = merge_findings(
            [f for r in results for f in r.findings] + list(auxiliary_findings),
            strategy, weighting, self._expertise,
        )
        findings.sort(key=lambda f: (-f.severity.rank, -f.confidence))

        recommendations = merge_recommendations(
            r for result in results for r in result.recommendations
        )
        recommendations.sort(key=lambda r: (-r.priority.rank, -r.confidence))

        individual = mean(r.confidence for r in results) if results else 0.0
        if overall_agreement is None:
            overall_confidence = individual
            agreement = 1.0
            method = "single-result"
        else:
            weight = self._settings.consensus_confidence_weight
            overall_confidence = (
                weight * individual + (1 - weight) * overall_agreement
            )
            agreement = overall_agreement
            method = f"{strategy.value} + {weighting.value}"

        consensus = ConsensusResult(
            analyses=analyses,
            findings=tuple(findings),
            recommendations=tuple(recommendations),
            overall_confidence=round(overall_confidence, 6),
            model_agreement=agreement,
            consensus_method=method,
        )

        logger.info(
            "Consensus built (%s): results=%d, findings=%d, "
            "recommendations=%d, confidence=%.3f, agreement=%.3f",
            method, len(results), len(consensus.findings),
            len(consensus.recommendations), consensus.overall_confidence,
            agreement,
        )
        return consensus

    def _select(
        self,
        overall_agreement: float | None,
        cross_validation: CrossValidationResult | None,
    ) -> tuple[ConsensusStrategy, WeightingScheme]:
        conflicts = high = uncertain = 0
        if cross_validation is not None:
            conflicts = sum(len(c.conflicts) for c in cross_validation.comparisons)
            high = len(cross_validation.high_confidence_findings)
            uncertain = len(cross_validation.uncertain_findings)

        if overall_agreement is None:
            strategy = ConsensusStrategy.MAJORITY_VOTING
        else:
            strategy = select_strategy(overall_agreement, conflicts, self._settings)
        weighting = select_weighting(high, uncertain, self._settings)
        logger.debug(
            "Consensus strategy=%s weighting=%s (conflicts=%d, high=%d, "
            "uncertain=%d)",
            strategy.value, weighting.value, conflicts, high, uncertain,
        )
        return strategy, weighting

    def _merge_type(
        self,
        analysis_type: AnalysisType,
        group: list[AgentResult],
        strategy: ConsensusStrategy,
        weighting: WeightingScheme,
    ) -> SpecializedAnalysis:
        findings = merge_findings(
            (f for r in group for f in r.findings),
            strategy, weighting, self._expertise,
        )
        summaries = _ordered_union(
            r.analysis.summary for r in group if r.analysis.summary
        )
        all_fallback = all(r.analysis.is_fallback for r in group)
        return SpecializedAnalysis(
            analysis_type=analysis_type,
            findings=tuple(findings),
            recommendations=tuple(merge_recommendations(
                rec for r in group for rec in r.recommendations
            )),
            risk_level=risk_level_for(findings),
            confidence=round(mean(r.confidence for r in group), 6),
            summary="\n\n".join(summaries),
            fallback_reason=group[0].analysis.fallback_reason if all_fallback else None,
        )


def _group_by_type(
    results: Sequence[AgentResult],
) -> dict[AnalysisType, list[AgentResult]]:
    groups: dict[AnalysisType, list[AgentResult]] = {}
    for result in results:
        groups.setdefault(result.agent_type, []).append(result)
    return groups
