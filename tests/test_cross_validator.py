# =============================================================================
# Unit Tests — Cross Validator
# =============================================================================
#
# Pure comparison logic: keys, similarity, overlap, conflicts, insights.
# =============================================================================

from __future__ import annotations

import pytest

from pr_consensus.config import Settings
from pr_consensus.models.analysis import (
    AgentResult,
    AnalysisType,
    Finding,
    Priority,
    Recommendation,
    Severity,
    SpecializedAnalysis,
)
from pr_consensus.services.cross_validator import (
    CrossValidator,
    create_finding_key,
    create_recommendation_key,
    finding_similarity,
    overlap_score,
    recommendation_similarity,
)


def _finding(id="f1", type="injection-vulnerability", file="email.js",
             line_number=42, severity=Severity.CRITICAL, confidence=0.9):
    return Finding(
        id=id, type=type, severity=severity, message="SQL concat",
        file=file, line_number=line_number, evidence=("e",),
        confidence=confidence,
    )


def _rec(id="r1", category="security", description="Use parameterized queries",
         priority=Priority.MUST_FIX):
    return Recommendation(
        id=id, priority=priority, category=category, description=description,
        rationale="r", implementation="Replace concatenation with bound params",
    )


def _result(findings=(), recommendations=(), confidence=0.8, model="model-a",
            agent_type=AnalysisType.SECURITY) -> AgentResult:
    return AgentResult(
        agent_type=agent_type,
        model_used=model,
        analysis=SpecializedAnalysis(
            analysis_type=agent_type,
            findings=tuple(findings),
            recommendations=tuple(recommendations),
            confidence=confidence,
        ),
    )


# ---------------------------------------------------------------------------
# Test: keys and similarity
# ---------------------------------------------------------------------------


class TestKeys:
    def test_finding_key(self):
        assert create_finding_key(_finding()) == ("injection-vulnerability", "email.js", 42)

    def test_finding_key_without_line(self):
        assert create_finding_key(_finding(line_number=None))[2] == 0

    def test_key_ignores_message_and_confidence(self):
        a = _finding(confidence=0.2)
        b = _finding(id="other", confidence=0.99)
        assert create_finding_key(a) == create_finding_key(b)

    def test_recommendation_key_truncates_description(self):
        rec = _rec(description="x" * 80)
        assert create_recommendation_key(rec) == ("security", "x" * 50)


class TestSimilarity:
    def test_identical_findings(self):
        assert finding_similarity(_finding(), _finding()) == 1.0

    def test_nearby_line_and_other_severity(self):
        a = _finding()
        b = _finding(line_number=45, severity=Severity.HIGH)
        assert finding_similarity(a, b) == 0.8  # 0.4 + 0.3 + 0.1

    def test_missing_line_scores_nothing_for_proximity(self):
        a = _finding(line_number=None)
        assert finding_similarity(a, _finding()) == 0.8  # 0.4 + 0.3 + 0.1

    def test_recommendation_word_overlap(self):
        a = _rec(description="use parameterized queries")
        b = _rec(description="use prepared statements", priority=Priority.SHOULD_FIX)
        assert recommendation_similarity(a, b) == 0.5  # 0.4 + 0.3 * 1/3

    def test_overlap_score(self):
        assert overlap_score(0, 0, 0) == 1.0
        assert overlap_score(1, 1, 0) == 0.5
        assert overlap_score(0, 2, 3) == 0.0


# ---------------------------------------------------------------------------
# Test: compare_results
# ---------------------------------------------------------------------------


class TestCompareResults:
    def test_identical_results_fully_agree(self):
        validator = CrossValidator(Settings())
        result = _result([_finding()], [_rec()])

        comparison = validator.compare_results(result, result)

        assert comparison.agreement_score == 1.0
        assert comparison.conflicts == ()

    def test_matching_critical_finding(self):
        validator = CrossValidator(Settings())
        r1 = _result([_finding(id="a")], model="model-a")
        r2 = _result([_finding(id="b", confidence=0.7)], model="model-b")

        comparison = validator.compare_results(r1, r2)

        match = comparison.finding_comparison.matches[0]
        assert match.severity_match
        assert match.similarity == 1.0
        assert match.confidence_difference == 0.2
        assert comparison.model1 == "model-a"
        assert comparison.model2 == "model-b"

    def test_disjoint_results(self):
        validator = CrossValidator(Settings())
        r1 = _result([_finding(file="a.js")])
        r2 = _result([_finding(file="b.js")])

        comparison = validator.compare_results(r1, r2)

        assert comparison.finding_comparison.overlap_score == 0.0
        assert comparison.agreement_score == 0.5  # no recommendations → 1.0
        assert len(comparison.finding_comparison.unique1) == 1
        assert len(comparison.finding_comparison.unique2) == 1

    def test_agreement_is_symmetric(self):
        validator = CrossValidator(Settings())
        r1 = _result([_finding(), _finding(id="x", file="other.js")], [_rec()])
        r2 = _result([_finding(id="y")], [_rec(id="r2", category="perf")])

        forward = validator.compare_results(r1, r2)
        backward = validator.compare_results(r2, r1)

        assert forward.agreement_score == backward.agreement_score

    def test_same_key_items_consumed_in_order(self):
        validator = CrossValidator(Settings())
        r1 = _result([_finding(id="a1"), _finding(id="a2")])
        r2 = _result([_finding(id="b1")])

        comparison = validator.compare_results(r1, r2)

        match = comparison.finding_comparison.matches[0]
        assert (match.finding1.id, match.finding2.id) == ("a1", "b1")
        assert [f.id for f in comparison.finding_comparison.unique1] == ["a2"]

    def test_high_confidence_conflict(self):
        validator = CrossValidator(Settings())
        comparison = validator.compare_results(
            _result(confidence=0.9), _result(confidence=0.4),
        )
        conflict = comparison.conflicts[0]
        assert conflict.type == "confidence-conflict"
        assert conflict.severity == Severity.HIGH

    def test_medium_confidence_conflict(self):
        validator = CrossValidator(Settings())
        comparison = validator.compare_results(
            _result(confidence=0.9), _result(confidence=0.5),
        )
        assert comparison.conflicts[0].severity == Severity.MEDIUM

    def test_no_conflict_at_threshold(self):
        validator = CrossValidator(Settings())
        comparison = validator.compare_results(
            _result(confidence=0.8), _result(confidence=0.5),
        )
        assert comparison.conflicts == ()

    def test_interpretation_difference_below_threshold(self):
        validator = CrossValidator(Settings(similarity_threshold=0.95))
        r1 = _result([_finding(severity=Severity.CRITICAL)])
        r2 = _result([_finding(severity=Severity.LOW)])

        comparison = validator.compare_results(r1, r2)

        conflict = comparison.conflicts[0]
        assert conflict.kind == "interpretation-difference"
        assert conflict.severity == Severity.HIGH
        assert comparison.finding_comparison.matches == ()

    def test_recommendation_priority_mismatch(self):
        validator = CrossValidator(Settings(similarity_threshold=0.99))
        r1 = _result(recommendations=[_rec()])
        r2 = _result(recommendations=[_rec(id="r2", priority=Priority.CONSIDER)])

        comparison = validator.compare_results(r1, r2)

        conflict = comparison.conflicts[0]
        assert conflict.kind == "priority-mismatch"
        assert conflict.severity == Severity.MEDIUM
        assert conflict.item_ids == ("r1", "r2")

    def test_recommendation_description_divergence(self):
        # Same first 50 characters, different tails.
        prefix = "x" * 50
        validator = CrossValidator(Settings(similarity_threshold=0.99))
        r1 = _result(recommendations=[_rec(description=prefix + " alpha")])
        r2 = _result(recommendations=[_rec(id="r2", description=prefix + " beta")])

        comparison = validator.compare_results(r1, r2)

        conflict = comparison.conflicts[0]
        assert conflict.kind == "description-divergence"
        assert conflict.severity == Severity.LOW

    @pytest.mark.parametrize("threshold", [0.7, 0.9])
    def test_identical_recommendations_always_match(self, threshold):
        validator = CrossValidator(Settings(similarity_threshold=threshold))
        comparison = validator.compare_results(
            _result(recommendations=[_rec()]),
            _result(recommendations=[_rec(id="r2")]),
        )
        assert len(comparison.recommendation_comparison.matches) == 1
        assert comparison.conflicts == ()


# ---------------------------------------------------------------------------
# Test: insights and metrics
# ---------------------------------------------------------------------------


class TestInsights:
    def test_high_agreement(self):
        validator = CrossValidator(Settings())
        result = _result([_finding()])
        comparison = validator.compare_results(result, result)
        assert [i.type for i in comparison.insights] == ["high-agreement"]
        assert not comparison.insights[0].actionable

    def test_low_agreement_and_imbalance(self):
        validator = CrossValidator(Settings())
        r1 = _result(
            [_finding(id=str(i), file=f"{i}.js") for i in range(3)],
            [_rec()],
        )
        r2 = _result(recommendations=[_rec(id="r2", category="perf")])

        comparison = validator.compare_results(r1, r2)

        types = [i.type for i in comparison.insights]
        assert "low-agreement" in types
        assert "coverage-imbalance" in types

    def test_high_severity_conflict_insight(self):
        validator = CrossValidator(Settings())
        comparison = validator.compare_results(
            _result(confidence=0.95), _result(confidence=0.2),
        )
        assert "high-severity-conflicts" in [i.type for i in comparison.insights]


class TestMetrics:
    def test_running_metrics(self):
        validator = CrossValidator(Settings())
        same = _result([_finding()])
        validator.compare_results(same, same)
        validator.compare_results(_result(confidence=0.9), _result(confidence=0.4))

        metrics = validator.metrics
        assert metrics.total_comparisons == 2
        assert metrics.agreement_count == 2
        assert metrics.conflict_count == 1
        assert metrics.average_agreement == 1.0

    def test_metrics_snapshot_is_a_copy(self):
        validator = CrossValidator(Settings())
        snapshot = validator.metrics
        validator.compare_results(_result(), _result())
        assert snapshot.total_comparisons == 0
