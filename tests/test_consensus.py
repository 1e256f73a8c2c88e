# =============================================================================
# Unit Tests — Consensus Builder
# =============================================================================

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from pr_consensus.config import Settings
from pr_consensus.models.analysis import (
    AgentResult,
    AnalysisType,
    Finding,
    Priority,
    Recommendation,
    RiskLevel,
    Severity,
    SpecializedAnalysis,
)
from pr_consensus.models.review import CrossValidationResult
from pr_consensus.services.consensus import (
    ConsensusBuilder,
    ConsensusResult,
    ConsensusStrategy,
    WeightingScheme,
    expertise_weight,
    merge_findings,
    merge_recommendations,
    select_strategy,
    select_weighting,
)


def _finding(id="f1", severity=Severity.HIGH, confidence=0.6, model="model-a",
             file="src/email.js", evidence=("e1",)):
    return Finding(
        id=id, type="injection-vulnerability", severity=severity,
        message="SQL concat", file=file, line_number=42,
        evidence=evidence, confidence=confidence, source_model=model,
    )


def _rec(id="r1", priority=Priority.SHOULD_FIX, confidence=0.7, implementation="",
         related=()):
    return Recommendation(
        id=id, priority=priority, category="security",
        description="Use parameterized queries", implementation=implementation,
        confidence=confidence, related_finding_ids=related,
    )


def _result(findings=(), recommendations=(), confidence=0.8, model="model-a",
            agent_type=AnalysisType.SECURITY, summary=""):
    return AgentResult(
        agent_type=agent_type,
        model_used=model,
        analysis=SpecializedAnalysis(
            analysis_type=agent_type,
            findings=tuple(findings),
            recommendations=tuple(recommendations),
            confidence=confidence,
            summary=summary,
        ),
    )


# ---------------------------------------------------------------------------
# Test: merging
# ---------------------------------------------------------------------------


class TestMergeFindings:
    def test_distinct_findings_kept_in_order(self):
        findings = [_finding(id="a", file="a.js"), _finding(id="b", file="b.js")]
        assert merge_findings(findings) == findings

    def test_duplicates_collapsed_with_boost(self):
        merged = merge_findings([
            _finding(id="a", severity=Severity.MEDIUM, confidence=0.6,
                     model="model-a", evidence=("e1",)),
            _finding(id="b", severity=Severity.CRITICAL, confidence=0.8,
                     model="model-b", evidence=("e1", "e2")),
        ])

        assert len(merged) == 1
        finding = merged[0]
        assert finding.id == "b"
        assert finding.severity == Severity.CRITICAL
        assert finding.confidence == 0.8  # mean 0.7 + 0.1
        assert finding.evidence == ("e1", "e2")
        assert finding.supporting_models == ("model-a", "model-b")

    def test_boost_capped(self):
        merged = merge_findings([
            _finding(id=str(i), confidence=0.9, model=f"m{i}") for i in range(6)
        ])
        assert merged[0].confidence == 1.0

    def test_severity_tie_keeps_first(self):
        merged = merge_findings([_finding(id="first"), _finding(id="second")])
        assert merged[0].id == "first"


class TestMergeRecommendations:
    def test_most_urgent_priority_and_best_confidence(self):
        merged = merge_recommendations([
            _rec(id="a", priority=Priority.CONSIDER, confidence=0.9, related=("f1",)),
            _rec(id="b", priority=Priority.MUST_FIX, confidence=0.5,
                 implementation="Bind params", related=("f2", "f1")),
        ])

        assert len(merged) == 1
        rec = merged[0]
        assert rec.id == "a"
        assert rec.priority == Priority.MUST_FIX
        assert rec.confidence == 0.9
        assert rec.implementation == "Bind params"
        assert rec.related_finding_ids == ("f1", "f2")


# ---------------------------------------------------------------------------
# Test: strategy and weighting
# ---------------------------------------------------------------------------


class TestSelectStrategy:
    @pytest.mark.parametrize("agreement,conflicts,expected", [
        (0.9, 0, ConsensusStrategy.MAJORITY_VOTING),
        (0.9, 3, ConsensusStrategy.WEIGHTED_CONSENSUS),
        (0.8, 0, ConsensusStrategy.WEIGHTED_CONSENSUS),
        (0.7, 0, ConsensusStrategy.WEIGHTED_CONSENSUS),
        (0.6, 0, ConsensusStrategy.EXPERT_ARBITRATION),
        (0.5, 0, ConsensusStrategy.EXPERT_ARBITRATION),
        (0.4, 0, ConsensusStrategy.ENSEMBLE_FUSION),
        (0.0, 0, ConsensusStrategy.ENSEMBLE_FUSION),
    ])
    def test_thresholds(self, agreement, conflicts, expected):
        assert select_strategy(agreement, conflicts, Settings()) == expected

    def test_thresholds_follow_settings(self):
        settings = Settings(
            consensus_majority_agreement=0.5,
            consensus_majority_max_conflicts=10,
        )
        assert select_strategy(0.6, 5, settings) == ConsensusStrategy.MAJORITY_VOTING


class TestSelectWeighting:
    @pytest.mark.parametrize("high,uncertain,expected", [
        (6, 0, WeightingScheme.CONFIDENCE_BASED),
        (6, 3, WeightingScheme.CONFIDENCE_BASED),
        (6, 4, WeightingScheme.EXPERTISE_BASED),
        (0, 4, WeightingScheme.EXPERTISE_BASED),
        (5, 0, WeightingScheme.BALANCED),
        (0, 0, WeightingScheme.BALANCED),
    ])
    def test_counts(self, high, uncertain, expected):
        assert select_weighting(high, uncertain, Settings()) == expected


class TestExpertiseWeight:
    def test_topic_match(self):
        assert expertise_weight("anthropic/claude-sonnet", "security") == 0.95
        assert expertise_weight("anthropic/claude-sonnet", "injection-vulnerability") == 0.9

    def test_family_default(self):
        assert expertise_weight("openai/gpt-4o", "missing-test") == 0.75

    def test_unknown_model_is_neutral(self):
        assert expertise_weight("llama-3", "security") == 0.5
        assert expertise_weight(None, "security") == 0.5


class TestMergeStrategies:
    def _pair(self):
        return [
            _finding(id="a", severity=Severity.MEDIUM, confidence=0.6,
                     model="claude-x", evidence=("e1",)),
            _finding(id="b", severity=Severity.CRITICAL, confidence=0.9,
                     model="gpt-x", evidence=("e2",)),
        ]

    def test_weighted_balanced_is_plain_mean(self):
        merged = merge_findings(
            self._pair(), ConsensusStrategy.WEIGHTED_CONSENSUS, WeightingScheme.BALANCED,
        )[0]
        assert merged.id == "b"
        assert merged.confidence == pytest.approx(0.75)

    def test_weighted_by_confidence(self):
        merged = merge_findings(
            self._pair(), ConsensusStrategy.WEIGHTED_CONSENSUS,
            WeightingScheme.CONFIDENCE_BASED,
        )[0]
        assert merged.confidence == pytest.approx(0.78)  # (0.36 + 0.81) / 1.5

    def test_weighted_by_expertise(self):
        merged = merge_findings(
            self._pair(), ConsensusStrategy.WEIGHTED_CONSENSUS,
            WeightingScheme.EXPERTISE_BASED,
        )[0]
        # claude 0.9 on vulnerabilities, gpt falls back to 0.75
        assert merged.confidence == pytest.approx(1.215 / 1.65, abs=1e-6)

    def test_expert_arbitration_picks_most_expert_model(self):
        merged = merge_findings(
            self._pair(), ConsensusStrategy.EXPERT_ARBITRATION,
        )[0]
        assert merged.id == "a"
        assert merged.severity == Severity.MEDIUM
        assert merged.confidence == 0.6
        assert merged.evidence == ("e1", "e2")
        assert merged.supporting_models == ("claude-x", "gpt-x")

    def test_ensemble_fusion_takes_mean_without_boost(self):
        merged = merge_findings(
            self._pair(), ConsensusStrategy.ENSEMBLE_FUSION,
        )[0]
        assert merged.severity == Severity.CRITICAL
        assert merged.confidence == pytest.approx(0.75)
        assert merged.evidence == ("e2", "e1")

    def test_singletons_untouched_by_any_strategy(self):
        finding = _finding()
        for strategy in ConsensusStrategy:
            assert merge_findings([finding], strategy) == [finding]


# ---------------------------------------------------------------------------
# Test: ConsensusBuilder
# ---------------------------------------------------------------------------


class TestConsensusBuilder:
    def test_confidence_blends_agreement(self):
        builder = ConsensusBuilder(Settings())
        results = [_result(confidence=0.8), _result(confidence=0.6, model="model-b")]

        consensus = builder.build(results, overall_agreement=0.5)

        assert consensus.consensus_method == "expert-arbitration + balanced"
        assert consensus.overall_confidence == 0.62  # 0.6 * 0.7 + 0.4 * 0.5
        assert consensus.model_agreement == 0.5

    def test_majority_voting_at_high_agreement(self):
        consensus = ConsensusBuilder(Settings()).build([_result()], 0.9)
        assert consensus.consensus_method == "majority-voting + balanced"

    def test_conflicts_drop_majority_voting(self):
        cross_validation = CrossValidationResult(
            comparisons=(MagicMock(conflicts=("a", "b", "c")),),
            overall_agreement=0.9,
        )
        consensus = ConsensusBuilder(Settings()).build(
            [_result()], 0.9, cross_validation=cross_validation,
        )
        assert consensus.consensus_method == "weighted-consensus + balanced"

    def test_uncertain_findings_select_expertise_weighting(self):
        uncertain = tuple(_finding(id=str(i), confidence=0.3) for i in range(4))
        cross_validation = CrossValidationResult(
            comparisons=(MagicMock(conflicts=()),),
            overall_agreement=0.7,
            uncertain_findings=uncertain,
        )
        results = [
            _result([_finding(id="a", confidence=0.6, model="claude-x")],
                    model="claude-x"),
            _result([_finding(id="b", confidence=0.9, model="gpt-x")],
                    model="gpt-x"),
        ]

        consensus = ConsensusBuilder(Settings()).build(
            results, 0.7, cross_validation=cross_validation,
        )

        assert consensus.consensus_method == "weighted-consensus + expertise-based"
        assert consensus.findings[0].confidence == pytest.approx(1.215 / 1.65, abs=1e-6)

    def test_configured_expertise_overrides_table(self):
        settings = Settings(model_expertise={"llama": {"default": 0.99}})
        results = [
            _result([_finding(id="claude", model="claude-x")], model="claude-x"),
            _result([_finding(id="llama", model="llama-3")], model="llama-3"),
        ]

        consensus = ConsensusBuilder(settings).build(results, 0.5)

        assert consensus.consensus_method.startswith("expert-arbitration")
        assert consensus.findings[0].id == "llama"
        security = consensus.analysis_for(AnalysisType.SECURITY)
        assert security.findings[0].id == "llama"

    def test_ensemble_fusion_at_low_agreement(self):
        consensus = ConsensusBuilder(Settings()).build([_result()], 0.2)
        assert consensus.consensus_method == "ensemble-fusion + balanced"

    def test_single_result(self):
        consensus = ConsensusBuilder(Settings()).build(
            [_result(confidence=0.8)], overall_agreement=None,
        )
        assert consensus.consensus_method == "single-result"
        assert consensus.overall_confidence == 0.8
        assert consensus.model_agreement == 1.0

    def test_one_analysis_per_type(self):
        results = [
            _result([_finding(model="model-a")], summary="first",
                    confidence=0.8),
            _result([_finding(id="f2", model="model-b")], model="model-b",
                    summary="second", confidence=0.6),
            _result(agent_type=AnalysisType.TESTING),
        ]

        consensus = ConsensusBuilder(Settings()).build(results, 1.0)

        assert consensus.analysis_types == {AnalysisType.SECURITY, AnalysisType.TESTING}
        security = consensus.analysis_for(AnalysisType.SECURITY)
        assert len(security.findings) == 1
        assert security.risk_level == RiskLevel.HIGH
        assert security.confidence == 0.7
        assert security.summary == "first\n\nsecond"
        assert consensus.analysis_for(AnalysisType.PERFORMANCE) is None

    def test_findings_ordered_by_severity_then_confidence(self):
        results = [_result([
            _finding(id="low", severity=Severity.LOW, file="a.js"),
            _finding(id="crit", severity=Severity.CRITICAL, file="b.js"),
            _finding(id="high-1", confidence=0.5, file="c.js"),
            _finding(id="high-2", confidence=0.9, file="d.js"),
        ])]

        consensus = ConsensusBuilder(Settings()).build(results, None)

        assert [f.id for f in consensus.findings] == ["crit", "high-2", "high-1", "low"]

    def test_auxiliary_findings_merged(self):
        plugin_finding = _finding(id="plugin", file="cfg.js", model="plugin:x")
        consensus = ConsensusBuilder(Settings()).build(
            [_result()], None, auxiliary_findings=[plugin_finding],
        )
        assert consensus.findings == (plugin_finding,)
        assert consensus.analyses[0].findings == ()

    def test_all_fallback_type_stays_fallback(self):
        fallback = AgentResult(
            agent_type=AnalysisType.TESTING,
            model_used="m",
            analysis=SpecializedAnalysis(
                analysis_type=AnalysisType.TESTING,
                confidence=0.3,
                fallback_reason="timeout",
            ),
        )
        consensus = ConsensusBuilder(Settings()).build([fallback], None)
        assert consensus.analyses[0].is_fallback


class TestQualityScore:
    def _consensus(self, findings):
        return ConsensusResult(
            analyses=(), findings=tuple(findings), recommendations=(),
            overall_confidence=0.8, model_agreement=1.0,
            consensus_method="single-result",
        )

    def test_no_findings(self):
        assert self._consensus([]).quality_score == 0.5

    def test_formula(self):
        findings = [_finding(id=str(i), confidence=0.8, file=f"{i}.js") for i in range(5)]
        assert self._consensus(findings).quality_score == 0.71  # 0.56 + 0.15
