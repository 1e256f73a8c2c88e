# =============================================================================
# Quality Gates — Measurable Acceptance Criteria for a Review
# =============================================================================
#
# Scores a review on five dimensions, checks hard rules, and decides
# whether the result is good enough to hand to the caller.
#
#   Dimension      Weight  Threshold  Measures
#   completeness    0.25     0.80     analysis types, evidence, recs present
#   consistency     0.20     0.70     agreement, no duplicates, priority fit
#   actionability   0.25     0.80     implementation, rationale, effort, prio
#   evidence        0.15     0.70     findings backed by evidence
#   confidence      0.15     0.70     consensus/agent confidence, agreement
#   overall           —      0.75     weighted sum
#
#   Rules: minimum-findings (error), critical-evidence (error),
#          recommendation-quality (warning)
#
# The gate passes iff every dimension AND the overall score clear their
# thresholds AND no error-severity rule fails. Warnings never block.
#
# DESIGN DECISION: A pure gate function.
# `passes_gates()` takes plain scores and thresholds. Since the overall
# score is a positive-weighted sum of the dimensions, raising any single
# dimension can never flip a pass into a fail, and that property is
# testable without building a review.
#
# DESIGN DECISION: Repairs enrich, they never invent.
# `ensure_standards()` fills in placeholder evidence and implementation
# text, drops exact-fingerprint duplicates, and re-aligns priorities. It
# never adds a finding or recommendation the agents didn't produce.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import replace
from statistics import mean

from pr_consensus.config import Settings, get_settings
from pr_consensus.models.analysis import (
    AnalysisType,
    Finding,
    Recommendation,
    Severity,
    SpecializedAnalysis,
    priority_for_severity,
    risk_level_for,
)
from pr_consensus.models.review import (
    DimensionScore,
    MultiModelAnalysisResult,
    QualityValidation,
    RefinedAnalysisResult,
    RuleOutcome,
)
from pr_consensus.services.cross_validator import create_finding_key

logger = logging.getLogger(__name__)

WEIGHTS: dict[str, float] = {
    "completeness": 0.25,
    "consistency": 0.20,
    "actionability": 0.25,
    "evidence": 0.15,
    "confidence": 0.15,
}

EXPECTED_TYPES: tuple[AnalysisType, ...] = tuple(AnalysisType)

_IMPROVEMENTS = {
    "completeness": (
        "Improve analysis completeness by covering all required analysis types"
    ),
    "consistency": (
        "Resolve model disagreements and improve cross-validation consistency"
    ),
    "actionability": (
        "Enhance recommendations with detailed implementation guidance"
    ),
    "evidence": (
        "Strengthen findings with more comprehensive supporting evidence"
    ),
    "confidence": (
        "Improve analysis confidence through additional validation or refinement"
    ),
}


# ---------------------------------------------------------------------------
# Pure Helpers
# ---------------------------------------------------------------------------


def overall_score(scores: Mapping[str, float]) -> float:
    return round(sum(scores[name] * weight for name, weight in WEIGHTS.items()), 6)


def passes_gates(
    scores: Mapping[str, float],
    thresholds: Mapping[str, float],
    rules_pass: bool,
) -> bool:
    """
    Gate decision from dimension scores.

    Args:
        scores: One score per WEIGHTS key.
        thresholds: One threshold per WEIGHTS key, plus "overall".
        rules_pass: False when any error-severity rule failed.
    """
    if not rules_pass:
        return False
    if any(scores[name] < thresholds[name] for name in WEIGHTS):
        return False
    return overall_score(scores) >= thresholds["overall"]


def deduplicate_findings(findings: Iterable[Finding]) -> list[Finding]:
    """
    Keep one finding per fingerprint: the highest-severity instance.

    The survivor takes the position of the first occurrence of its
    fingerprint. Applying this twice gives the same result as once.
    """
    kept: dict[tuple, Finding] = {}
    for finding in findings:
        key = create_finding_key(finding)
        current = kept.get(key)
        if current is None or finding.severity.rank > current.severity.rank:
            kept[key] = finding
    return list(kept.values())


def related_findings(
    recommendation: Recommendation,
    findings: Sequence[Finding],
) -> list[Finding]:
    """Findings a recommendation addresses: linked ids, else same category."""
    if recommendation.related_finding_ids:
        ids = set(recommendation.related_finding_ids)
        linked = [f for f in findings if f.id in ids]
        if linked:
            return linked
    return [f for f in findings if f.type == recommendation.category]


def _aligned_priority(
    recommendation: Recommendation,
    findings: Sequence[Finding],
) -> Recommendation:
    related = related_findings(recommendation, findings)
    if not related:
        return recommendation
    worst = max((f.severity for f in related), key=lambda s: s.rank)
    return replace(recommendation, priority=priority_for_severity(worst))


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class QualityGatesService:
    """Scores, gates and repairs review results."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    @property
    def thresholds(self) -> dict[str, float]:
        s = self._settings
        return {
            "completeness": s.gate_completeness,
            "consistency": s.gate_consistency,
            "actionability": s.gate_actionability,
            "evidence": s.gate_evidence,
            "confidence": s.gate_confidence,
            "overall": s.gate_overall,
        }

    # -----------------------------------------------------------------------
    # Validation
    # -----------------------------------------------------------------------

    def validate_results(self, refined: RefinedAnalysisResult) -> QualityValidation:
        """Validate the output of the refinement engine."""
        validation = self.evaluate(refined.final_results, refined.refinement_boost)
        logger.info(
            "Quality validation: overall=%.3f, gates=%s, violations=%d, "
            "warnings=%d",
            validation.overall_score,
            "PASSED" if validation.passes_gates else "FAILED",
            len(validation.violations), len(validation.warnings),
        )
        return validation

    def evaluate(
        self,
        results: MultiModelAnalysisResult,
        refinement_boost: float = 0.0,
    ) -> QualityValidation:
        """Score a result set. Used directly by the refinement loop."""
        completeness = self._completeness(results)
        consistency = self._consistency(results)
        actionability = self._actionability(results.consensus.recommendations)
        evidence = self._evidence(results.consensus.findings)
        confidence = self._confidence(results, refinement_boost)
        rules = self._apply_rules(results)

        scores = {
            "completeness": completeness.score,
            "consistency": consistency.score,
            "actionability": actionability.score,
            "evidence": evidence.score,
            "confidence": confidence.score,
        }
        thresholds = self.thresholds
        rules_pass = not any(
            not r.passed and r.severity == "error" for r in rules
        )
        passed = passes_gates(scores, thresholds, rules_pass)

        improvements: list[str] = []
        if not passed:
            improvements.extend(
                _IMPROVEMENTS[name] for name in WEIGHTS
                if scores[name] < thresholds[name]
            )
            improvements.extend(
                f"Resolve rule '{r.name}': {r.message}"
                for r in rules if not r.passed and r.severity == "error"
            )

        return QualityValidation(
            completeness=completeness,
            consistency=consistency,
            actionability=actionability,
            evidence=evidence,
            confidence=confidence,
            rules=tuple(rules),
            overall_score=overall_score(scores),
            passes_gates=passed,
            improvements=tuple(improvements),
        )

    def _completeness(self, results: MultiModelAnalysisResult) -> DimensionScore:
        consensus = results.consensus
        covered = {r.agent_type for r in results.individual_results}
        missing = [t.value for t in EXPECTED_TYPES if t not in covered]

        findings = consensus.findings
        recommendations = consensus.recommendations
        type_coverage = (len(EXPECTED_TYPES) - len(missing)) / len(EXPECTED_TYPES)
        evidence_coverage = (
            sum(1 for f in findings if f.evidence) / len(findings)
            if findings else 0.0
        )
        has_recommendations = 1.0 if recommendations else 0.0
        has_prioritized = 1.0 if any(
            r.priority.rank >= 1 for r in recommendations  # should-fix or worse
        ) else 0.0

        issues: list[str] = []
        if missing:
            issues.append(f"Missing analysis types: {', '.join(missing)}")
        if not findings:
            issues.append("No findings reported")
        if not recommendations:
            issues.append("No recommendations provided")
        elif not has_prioritized:
            issues.append("No must-fix or should-fix recommendations")

        return DimensionScore(
            score=round(mean((
                type_coverage, evidence_coverage,
                has_recommendations, has_prioritized,
            )), 6),
            issues=tuple(issues),
            missing_areas=tuple(missing),
        )

    def _consistency(self, results: MultiModelAnalysisResult) -> DimensionScore:
        findings = results.consensus.findings
        recommendations = results.consensus.recommendations
        agreement = results.cross_validation.overall_agreement

        unique = len({create_finding_key(f) for f in findings})
        duplicates = len(findings) - unique
        duplicate_free = 1 - duplicates / len(findings) if findings else 1.0

        checked = misaligned = 0
        for rec in recommendations:
            aligned = _aligned_priority(rec, findings)
            if aligned is rec:
                continue
            checked += 1
            if aligned.priority != rec.priority:
                misaligned += 1
        alignment = 1 - misaligned / checked if checked else 1.0

        issues: list[str] = []
        if agreement < self._settings.low_agreement_threshold:
            issues.append(f"Low cross-model agreement ({agreement:.2f})")
        if duplicates:
            issues.append(f"{duplicates} duplicate finding(s)")
        if misaligned:
            issues.append(
                f"{misaligned} recommendation(s) with priority not matching "
                "finding severity"
            )

        return DimensionScore(
            score=round(mean((agreement, duplicate_free, alignment)), 6),
            issues=tuple(issues),
        )

    def _actionability(
        self,
        recommendations: Sequence[Recommendation],
    ) -> DimensionScore:
        if not recommendations:
            return DimensionScore(
                score=0.0, issues=("No recommendations to act on",),
            )

        min_chars = self._settings.min_implementation_chars
        with_implementation = sum(
            1 for r in recommendations
            if len(r.implementation.strip()) >= min_chars
        )
        with_rationale = sum(1 for r in recommendations if r.rationale.strip())
        # Effort and priority are enums, so every recommendation carries
        # a valid value for both.
        with_effort = with_priority = len(recommendations)

        score = (
            with_implementation + with_rationale + with_effort + with_priority
        ) / (4 * len(recommendations))

        issues: list[str] = []
        if with_implementation < len(recommendations):
            issues.append(
                f"{len(recommendations) - with_implementation} recommendation(s) "
                "lack implementation guidance"
            )
        if with_rationale < len(recommendations):
            issues.append(
                f"{len(recommendations) - with_rationale} recommendation(s) "
                "lack a rationale"
            )
        return DimensionScore(score=round(score, 6), issues=tuple(issues))

    def _evidence(self, findings: Sequence[Finding]) -> DimensionScore:
        if not findings:
            return DimensionScore(score=1.0)

        with_evidence = sum(1 for f in findings if f.evidence)
        weak_critical = sum(
            1 for f in findings
            if f.severity == Severity.CRITICAL and len(f.evidence) < 2
        )
        penalty = (
            self._settings.critical_evidence_penalty * weak_critical / len(findings)
        )
        score = with_evidence / len(findings) * (1 - penalty)

        issues: list[str] = []
        if with_evidence < len(findings):
            issues.append(
                f"{len(findings) - with_evidence} finding(s) without evidence"
            )
        if weak_critical:
            issues.append(
                f"{weak_critical} critical finding(s) with fewer than 2 "
                "evidence items"
            )
        return DimensionScore(score=round(score, 6), issues=tuple(issues))

    def _confidence(
        self,
        results: MultiModelAnalysisResult,
        refinement_boost: float,
    ) -> DimensionScore:
        individual = results.individual_results
        avg_individual = mean(r.confidence for r in individual) if individual else 0.0
        score = mean((
            results.consensus.overall_confidence,
            avg_individual,
            results.cross_validation.overall_agreement,
            refinement_boost,
        ))
        score = min(max(score, 0.0), 1.0)

        issues: tuple[str, ...] = ()
        if score < self._settings.gate_confidence:
            issues = ("Overall confidence below acceptable threshold",)
        return DimensionScore(score=round(score, 6), issues=issues)

    def _apply_rules(self, results: MultiModelAnalysisResult) -> list[RuleOutcome]:
        findings = results.consensus.findings
        recommendations = results.consensus.recommendations

        critical_without_evidence = [
            f for f in findings
            if f.severity == Severity.CRITICAL and not f.evidence
        ]
        complete_recs = sum(
            1 for r in recommendations
            if r.implementation.strip() and r.rationale.strip()
        )
        quality_ratio = (
            complete_recs / len(recommendations) if recommendations else 1.0
        )
        required_ratio = self._settings.recommendation_quality_ratio

        return [
            RuleOutcome(
                rule_id="minimum-findings",
                name="Minimum Findings Required",
                severity="error",
                passed=bool(findings),
                message=(
                    f"Sufficient findings: {len(findings)}" if findings
                    else "Insufficient findings: 0 < 1"
                ),
            ),
            RuleOutcome(
                rule_id="critical-evidence",
                name="Critical Findings Evidence",
                severity="error",
                passed=not critical_without_evidence,
                message=(
                    f"{len(critical_without_evidence)} critical finding(s) "
                    "lack supporting evidence"
                    if critical_without_evidence
                    else "Critical findings properly documented"
                ),
            ),
            RuleOutcome(
                rule_id="recommendation-quality",
                name="Recommendation Quality",
                severity="warning",
                passed=quality_ratio >= required_ratio,
                message=f"Recommendation quality: {quality_ratio:.1%}",
            ),
        ]

    # -----------------------------------------------------------------------
    # Standards repair
    # -----------------------------------------------------------------------

    def ensure_standards(
        self,
        refined: RefinedAnalysisResult,
        validation: QualityValidation,
    ) -> RefinedAnalysisResult:
        """
        Repair a result set that failed the gates.

        Returns `refined` unchanged when the gates passed.
        """
        if validation.passes_gates:
            return refined

        results = refined.final_results
        consensus = results.consensus

        individual = tuple(
            replace(r, analysis=self._repair_analysis(r.analysis))
            for r in results.individual_results
        )
        findings = self._repair_findings(consensus.findings)
        repaired_consensus = replace(
            consensus,
            analyses=tuple(self._repair_analysis(a) for a in consensus.analyses),
            findings=tuple(findings),
            recommendations=tuple(
                self._repair_recommendations(consensus.recommendations, findings)
            ),
        )

        logger.info(
            "Standards enforced: findings %d → %d, recommendations=%d",
            len(consensus.findings), len(findings),
            len(repaired_consensus.recommendations),
        )

        return replace(
            refined,
            final_results=replace(
                results,
                individual_results=individual,
                consensus=repaired_consensus,
            ),
        )

    def _repair_analysis(self, analysis: SpecializedAnalysis) -> SpecializedAnalysis:
        findings = self._repair_findings(analysis.findings)
        return replace(
            analysis,
            findings=tuple(findings),
            recommendations=tuple(
                self._repair_recommendations(analysis.recommendations, findings)
            ),
            risk_level=risk_level_for(findings),
        )

    @staticmethod
    def _repair_findings(findings: Sequence[Finding]) -> list[Finding]:
        repaired: list[Finding] = []
        for finding in deduplicate_findings(findings):
            evidence = list(finding.evidence)
            if not evidence:
                evidence.append(
                    f"Reported at {finding.location}: {finding.message}"
                )
            if finding.severity == Severity.CRITICAL and len(evidence) < 2:
                evidence.append(
                    f"Critical {finding.type} finding; verify manually "
                    f"at {finding.location}"
                )
            if len(evidence) != len(finding.evidence):
                finding = replace(finding, evidence=tuple(evidence))
            repaired.append(finding)
        return repaired

    def _repair_recommendations(
        self,
        recommendations: Sequence[Recommendation],
        findings: Sequence[Finding],
    ) -> list[Recommendation]:
        min_chars = self._settings.min_implementation_chars
        repaired: list[Recommendation] = []
        for rec in recommendations:
            if len(rec.implementation.strip()) < min_chars:
                guidance = (
                    f"Apply the change described above ({rec.description}) "
                    "and cover it with a focused test."
                )
                rec = replace(
                    rec,
                    implementation=(
                        f"{rec.implementation.strip()} {guidance}".strip()
                    ),
                )
            if not rec.rationale.strip():
                rec = replace(
                    rec,
                    rationale=f"Addresses {rec.category} concerns raised in review",
                )
            repaired.append(_aligned_priority(rec, findings))
        return repaired
