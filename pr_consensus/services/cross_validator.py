# =============================================================================
# Cross Validator — Agreement & Conflict Between Two Agent Results
# =============================================================================
#
# Compares two AgentResults (different agents, or the same agent on
# different models) and measures how much they agree.
#
# ALGORITHM:
#   1. Fingerprint every finding as (type, file, line-or-0) and every
#      recommendation as (category, first 50 chars of description).
#   2. Same fingerprint on both sides → weighted similarity:
#        ≥ threshold → match
#        <  threshold → conflict (same place, different judgment)
#   3. No fingerprint collision → unique to its side.
#   4. overlap = matches / (matches + unique1 + unique2)
#      agreement = mean(finding overlap, recommendation overlap)
#   5. Aggregate confidences far apart → confidence conflict.
#   6. Threshold-driven insights (high/low agreement, escalation,
#      coverage imbalance).
#
# DESIGN DECISION: Coarse fingerprint, O(n) matching.
# Comparing every finding text against every other is O(n²) and needs
# fuzzy text similarity we don't trust. The fingerprint conflates
# near-duplicates on purpose; similarity then only decides match vs
# conflict for items already at the same location.
#
# DESIGN DECISION: Same-side duplicates are queued, not overwritten.
# If result2 reports two findings with the same fingerprint, the first
# finding in result1 pairs with the first of them, the second with the
# second, and any left over count as unique. Nothing is silently dropped.
#
# DESIGN DECISION: Deterministic output.
# Conflict ids are sequence numbers within one comparison
# (finding-conflict-1, ...) rather than timestamps, so comparing the same
# pair twice gives the same result.
# =============================================================================

from __future__ import annotations

import logging
from collections import defaultdict, deque
from collections.abc import Callable, Hashable, Sequence
from dataclasses import dataclass, replace
from typing import TypeVar

from pr_consensus.config import Settings, get_settings
from pr_consensus.models.analysis import (
    AgentResult,
    AnalysisType,
    Finding,
    Recommendation,
    Severity,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

FindingKey = tuple[str, str, int]
RecommendationKey = tuple[str, str]


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FindingMatch:
    finding1: Finding
    finding2: Finding
    similarity: float
    confidence_difference: float
    severity_match: bool


@dataclass(frozen=True)
class RecommendationMatch:
    recommendation1: Recommendation
    recommendation2: Recommendation
    similarity: float
    priority_match: bool
    category_match: bool


@dataclass(frozen=True)
class FindingComparison:
    matches: tuple[FindingMatch, ...]
    unique1: tuple[Finding, ...]
    unique2: tuple[Finding, ...]
    conflicted: tuple[tuple[Finding, Finding], ...]
    overlap_score: float


@dataclass(frozen=True)
class RecommendationComparison:
    matches: tuple[RecommendationMatch, ...]
    unique1: tuple[Recommendation, ...]
    unique2: tuple[Recommendation, ...]
    conflicted: tuple[tuple[Recommendation, Recommendation], ...]
    overlap_score: float


@dataclass(frozen=True)
class Conflict:
    """
    A disagreement between two results.

    `type` is the family (finding-conflict, recommendation-conflict,
    confidence-conflict); `kind` is the specific disagreement
    (interpretation-difference, priority-mismatch, ...).
    """

    id: str
    type: str
    kind: str
    severity: Severity  # LOW, MEDIUM or HIGH
    description: str
    involved_models: tuple[str, str]
    involved_agents: tuple[AnalysisType, AnalysisType]
    item_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class ValidationInsight:
    type: str
    message: str
    confidence: float
    actionable: bool
    suggested_action: str | None = None


@dataclass(frozen=True)
class ComparisonResult:
    result1_type: AnalysisType
    result2_type: AnalysisType
    model1: str
    model2: str
    agreement_score: float
    finding_comparison: FindingComparison
    recommendation_comparison: RecommendationComparison
    conflicts: tuple[Conflict, ...]
    insights: tuple[ValidationInsight, ...]


@dataclass
class ValidationMetrics:
    total_comparisons: int = 0
    agreement_count: int = 0
    conflict_count: int = 0
    average_agreement: float = 0.0


# ---------------------------------------------------------------------------
# Pure Helpers
# ---------------------------------------------------------------------------


def create_finding_key(finding: Finding) -> FindingKey:
    """Fingerprint of a finding: (type, file, line or 0)."""
    return (finding.type, finding.file, finding.line_number or 0)


def create_recommendation_key(recommendation: Recommendation) -> RecommendationKey:
    """Fingerprint of a recommendation: (category, description[:50])."""
    return (recommendation.category, recommendation.description[:50])


def finding_similarity(finding1: Finding, finding2: Finding) -> float:
    """Weighted similarity: type 0.4, file 0.3, line ≤ 0.2, severity 0.1."""
    similarity = 0.0
    if finding1.type == finding2.type:
        similarity += 0.4
    if finding1.file == finding2.file:
        similarity += 0.3
    if finding1.line_number and finding2.line_number:
        line_diff = abs(finding1.line_number - finding2.line_number)
        if line_diff == 0:
            similarity += 0.2
        elif line_diff <= 5:
            similarity += 0.1
    if finding1.severity == finding2.severity:
        similarity += 0.1
    return round(min(similarity, 1.0), 6)


def recommendation_similarity(rec1: Recommendation, rec2: Recommendation) -> float:
    """Weighted similarity: category 0.4, priority 0.3, word overlap 0.3."""
    similarity = 0.0
    if rec1.category == rec2.category:
        similarity += 0.4
    if rec1.priority == rec2.priority:
        similarity += 0.3

    words1 = set(rec1.description.lower().split())
    words2 = set(rec2.description.lower().split())
    total = max(len(words1), len(words2))
    if total:
        similarity += 0.3 * len(words1 & words2) / total

    return round(min(similarity, 1.0), 6)


def overlap_score(matches: int, unique1: int, unique2: int) -> float:
    """Fraction of items that matched; 1.0 when both sides are empty."""
    total = matches + unique1 + unique2
    if total == 0:
        return 1.0
    return matches / total


def _pair_by_key(
    items1: Sequence[T],
    items2: Sequence[T],
    key: Callable[[T], Hashable],
) -> tuple[list[tuple[T, T]], list[T], list[T]]:
    """
    Pair items with equal keys, first-come first-served.

    Returns (pairs, unique1, unique2); unique lists keep input order.
    """
    waiting: dict[Hashable, deque[int]] = defaultdict(deque)
    for index, item in enumerate(items2):
        waiting[key(item)].append(index)

    pairs: list[tuple[T, T]] = []
    unique1: list[T] = []
    consumed: set[int] = set()
    for item in items1:
        queue = waiting.get(key(item))
        if queue:
            index = queue.popleft()
            consumed.add(index)
            pairs.append((item, items2[index]))
        else:
            unique1.append(item)

    unique2 = [item for i, item in enumerate(items2) if i not in consumed]
    return pairs, unique1, unique2


def _finding_conflict_severity(finding1: Finding, finding2: Finding) -> Severity:
    severities = {finding1.severity, finding2.severity}
    if Severity.CRITICAL in severities:
        return Severity.HIGH
    if Severity.HIGH in severities:
        return Severity.MEDIUM
    return Severity.LOW


# ---------------------------------------------------------------------------
# Cross Validator
# ---------------------------------------------------------------------------


class CrossValidator:
    """
    Pairwise comparison of agent results.

    Keeps running ValidationMetrics across calls for observability; the
    metrics never influence a comparison.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._metrics = ValidationMetrics()

    @property
    def metrics(self) -> ValidationMetrics:
        return replace(self._metrics)

    def compare_results(
        self,
        result1: AgentResult,
        result2: AgentResult,
    ) -> ComparisonResult:
        """Compare two results; ordering is preserved, agreement is symmetric."""
        findings = self._compare_findings(result1.findings, result2.findings)
        recommendations = self._compare_recommendations(
            result1.recommendations, result2.recommendations,
        )
        agreement = (findings.overlap_score + recommendations.overlap_score) / 2

        conflicts = self._identify_conflicts(
            findings, recommendations, result1, result2,
        )
        insights = self._generate_insights(findings, agreement, conflicts)

        comparison = ComparisonResult(
            result1_type=result1.agent_type,
            result2_type=result2.agent_type,
            model1=result1.model_used,
            model2=result2.model_used,
            agreement_score=agreement,
            finding_comparison=findings,
            recommendation_comparison=recommendations,
            conflicts=tuple(conflicts),
            insights=tuple(insights),
        )
        self._update_metrics(comparison)

        logger.debug(
            "Compared %s/%s vs %s/%s: agreement=%.3f, conflicts=%d",
            result1.agent_type.value, result1.model_used,
            result2.agent_type.value, result2.model_used,
            agreement, len(conflicts),
        )
        return comparison

    # -----------------------------------------------------------------------
    # Item comparison
    # -----------------------------------------------------------------------

    def _compare_findings(
        self,
        findings1: Sequence[Finding],
        findings2: Sequence[Finding],
    ) -> FindingComparison:
        pairs, unique1, unique2 = _pair_by_key(
            findings1, findings2, create_finding_key,
        )
        matches: list[FindingMatch] = []
        conflicted: list[tuple[Finding, Finding]] = []
        for f1, f2 in pairs:
            similarity = finding_similarity(f1, f2)
            if similarity >= self._settings.similarity_threshold:
                matches.append(FindingMatch(
                    finding1=f1,
                    finding2=f2,
                    similarity=similarity,
                    confidence_difference=round(
                        abs(f1.confidence - f2.confidence), 6,
                    ),
                    severity_match=f1.severity == f2.severity,
                ))
            else:
                conflicted.append((f1, f2))

        return FindingComparison(
            matches=tuple(matches),
            unique1=tuple(unique1),
            unique2=tuple(unique2),
            conflicted=tuple(conflicted),
            overlap_score=overlap_score(len(matches), len(unique1), len(unique2)),
        )

    def _compare_recommendations(
        self,
        recommendations1: Sequence[Recommendation],
        recommendations2: Sequence[Recommendation],
    ) -> RecommendationComparison:
        pairs, unique1, unique2 = _pair_by_key(
            recommendations1, recommendations2, create_recommendation_key,
        )
        matches: list[RecommendationMatch] = []
        conflicted: list[tuple[Recommendation, Recommendation]] = []
        for r1, r2 in pairs:
            similarity = recommendation_similarity(r1, r2)
            if similarity >= self._settings.similarity_threshold:
                matches.append(RecommendationMatch(
                    recommendation1=r1,
                    recommendation2=r2,
                    similarity=similarity,
                    priority_match=r1.priority == r2.priority,
                    category_match=r1.category == r2.category,
                ))
            else:
                conflicted.append((r1, r2))

        return RecommendationComparison(
            matches=tuple(matches),
            unique1=tuple(unique1),
            unique2=tuple(unique2),
            conflicted=tuple(conflicted),
            overlap_score=overlap_score(len(matches), len(unique1), len(unique2)),
        )

    # -----------------------------------------------------------------------
    # Conflicts & insights
    # -----------------------------------------------------------------------

    def _identify_conflicts(
        self,
        findings: FindingComparison,
        recommendations: RecommendationComparison,
        result1: AgentResult,
        result2: AgentResult,
    ) -> list[Conflict]:
        models = (result1.model_used, result2.model_used)
        agents = (result1.agent_type, result2.agent_type)
        conflicts: list[Conflict] = []

        for n, (f1, f2) in enumerate(findings.conflicted, 1):
            conflicts.append(Conflict(
                id=f"finding-conflict-{n}",
                type="finding-conflict",
                kind="interpretation-difference",
                severity=_finding_conflict_severity(f1, f2),
                description=(
                    f"Different interpretations of issue at {f1.location}"
                ),
                involved_models=models,
                involved_agents=agents,
                item_ids=(f1.id, f2.id),
            ))

        for n, (r1, r2) in enumerate(recommendations.conflicted, 1):
            if r1.priority != r2.priority:
                kind, severity = "priority-mismatch", Severity.MEDIUM
                description = (
                    "Different priorities for similar recommendation: "
                    f"{r1.priority.value} vs {r2.priority.value}"
                )
            else:
                kind, severity = "description-divergence", Severity.LOW
                description = (
                    f"Divergent descriptions for recommendation in {r1.category}"
                )
            conflicts.append(Conflict(
                id=f"recommendation-conflict-{n}",
                type="recommendation-conflict",
                kind=kind,
                severity=severity,
                description=description,
                involved_models=models,
                involved_agents=agents,
                item_ids=(r1.id, r2.id),
            ))

        confidence_diff = round(abs(result1.confidence - result2.confidence), 6)
        if confidence_diff > self._settings.confidence_conflict_threshold:
            severity = (
                Severity.HIGH
                if confidence_diff >= self._settings.confidence_conflict_high
                else Severity.MEDIUM
            )
            conflicts.append(Conflict(
                id="confidence-conflict-1",
                type="confidence-conflict",
                kind="confidence-conflict",
                severity=severity,
                description=(
                    "Large confidence difference: "
                    f"{result1.agent_type.value} ({result1.confidence:.1%}) vs "
                    f"{result2.agent_type.value} ({result2.confidence:.1%})"
                ),
                involved_models=models,
                involved_agents=agents,
            ))

        return conflicts

    def _generate_insights(
        self,
        findings: FindingComparison,
        agreement: float,
        conflicts: list[Conflict],
    ) -> list[ValidationInsight]:
        insights: list[ValidationInsight] = []

        if agreement > self._settings.high_agreement_threshold:
            insights.append(ValidationInsight(
                type="high-agreement",
                message="Models show high agreement - results are likely reliable",
                confidence=0.9,
                actionable=False,
            ))
        elif agreement < self._settings.low_agreement_threshold:
            insights.append(ValidationInsight(
                type="low-agreement",
                message="Models show low agreement - results need additional validation",
                confidence=0.8,
                actionable=True,
                suggested_action="Consider running additional models or manual review",
            ))

        high_severity = sum(1 for c in conflicts if c.severity == Severity.HIGH)
        if high_severity:
            insights.append(ValidationInsight(
                type="high-severity-conflicts",
                message=f"{high_severity} high-severity conflicts require resolution",
                confidence=0.9,
                actionable=True,
                suggested_action=(
                    "Prioritize resolving high-severity conflicts before proceeding"
                ),
            ))

        unique1 = len(findings.unique1)
        unique2 = len(findings.unique2)
        if unique1 > unique2 * 2 or unique2 > unique1 * 2:
            insights.append(ValidationInsight(
                type="coverage-imbalance",
                message="Significant difference in finding coverage between models",
                confidence=0.7,
                actionable=True,
                suggested_action="Review unique findings for potential blind spots",
            ))

        return insights

    def _update_metrics(self, comparison: ComparisonResult) -> None:
        metrics = self._metrics
        metrics.total_comparisons += 1
        if comparison.agreement_score > 0.7:
            metrics.agreement_count += 1
        if comparison.conflicts:
            metrics.conflict_count += 1
        total = metrics.total_comparisons
        metrics.average_agreement = (
            metrics.average_agreement * (total - 1) + comparison.agreement_score
        ) / total
