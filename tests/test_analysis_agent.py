# =============================================================================
# Unit Tests — Analysis Agent
# =============================================================================
#
# Tests analyze / validate / refine with a mocked LLM analysis service.
# No API keys or network access required.
# =============================================================================

from __future__ import annotations

import asyncio
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

from pr_consensus.agents.analysis_agent import (
    ANALYSIS_ERROR_TYPE,
    AnalysisAgent,
    create_agents,
)
from pr_consensus.config import Settings
from pr_consensus.models.analysis import (
    AnalysisType,
    Finding,
    IncompleteAnalysis,
    LowConfidence,
    MissingEvidence,
    PRContext,
    Priority,
    Recommendation,
    RiskLevel,
    Severity,
    SpecializedAnalysis,
    VagueRecommendation,
    risk_level_for,
)
from pr_consensus.services.analysis_llm import LLMAnalysis, MalformedResponseError

CONTEXT = PRContext(
    title="Add password reset email",
    files={"src/email.js": "db.query('SELECT ...' + id)"},
    language="javascript",
    framework="express",
)


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _service(result=None, error: Exception | None = None, model="model-a"):
    service = MagicMock()
    service.model_name = model
    service.generate_analysis = AsyncMock(return_value=result, side_effect=error)
    return service


def _finding(**kwargs) -> Finding:
    defaults = dict(
        id="sec-f1", type="security", severity=Severity.CRITICAL,
        message="SQL built by string concatenation", file="src/email.js",
        line_number=42, evidence=("db.query('SELECT ...' + id)",),
        confidence=0.9,
    )
    defaults.update(kwargs)
    return Finding(**defaults)


def _rec(**kwargs) -> Recommendation:
    defaults = dict(
        id="sec-r1", priority=Priority.MUST_FIX, category="security",
        description="Use parameterized queries", rationale="Prevents injection",
        implementation="Replace concatenation with db.query(sql, [id])",
        confidence=0.85,
    )
    defaults.update(kwargs)
    return Recommendation(**defaults)


def _analysis(findings=(), recommendations=(), confidence=0.8) -> SpecializedAnalysis:
    return SpecializedAnalysis(
        analysis_type=AnalysisType.SECURITY,
        findings=tuple(findings),
        recommendations=tuple(recommendations),
        risk_level=risk_level_for(findings),
        confidence=confidence,
    )


# ---------------------------------------------------------------------------
# Test: analyze
# ---------------------------------------------------------------------------


class TestAnalyze:
    def test_classifies_findings_and_sets_risk(self):
        llm_result = LLMAnalysis(
            analysis="summary", findings=[_finding()],
            recommendations=[_rec()], confidence=0.85,
        )
        agent = AnalysisAgent(AnalysisType.SECURITY, _service(llm_result))

        analysis = _run(agent.analyze(CONTEXT))

        assert analysis.findings[0].type == "injection-vulnerability"
        assert analysis.risk_level == RiskLevel.CRITICAL
        assert analysis.confidence == 0.85
        assert analysis.summary == "summary"
        assert not analysis.is_fallback

    def test_empty_implementation_gets_guidance(self):
        llm_result = LLMAnalysis(
            analysis="", findings=[], confidence=0.7,
            recommendations=[_rec(implementation="")],
        )
        agent = AnalysisAgent(AnalysisType.SECURITY, _service(llm_result))

        analysis = _run(agent.analyze(CONTEXT))

        assert analysis.recommendations[0].implementation == (
            "Implementation guidance for javascript/express: "
            "Use parameterized queries"
        )

    def test_prompt_override_is_sent(self):
        service = _service(LLMAnalysis("", [], [], 0.7))
        agent = AnalysisAgent(AnalysisType.TESTING, service)

        _run(agent.analyze(CONTEXT, prompt_override="custom prompt"))

        assert service.generate_analysis.call_args.args[2] == "custom prompt"

    def test_llm_error_yields_fallback(self):
        agent = AnalysisAgent(
            AnalysisType.SECURITY, _service(error=RuntimeError("503 from provider")),
        )

        analysis = _run(agent.analyze(CONTEXT))

        assert analysis.is_fallback
        assert len(analysis.findings) == 1
        assert analysis.findings[0].type == ANALYSIS_ERROR_TYPE
        assert analysis.findings[0].confidence == 0.3
        assert analysis.confidence == 0.3
        assert len(analysis.recommendations) >= 1
        assert analysis.risk_level == RiskLevel.MEDIUM

    def test_malformed_response_yields_fallback(self):
        agent = AnalysisAgent(
            AnalysisType.PERFORMANCE,
            _service(error=MalformedResponseError("bad severity")),
        )
        analysis = _run(agent.analyze(CONTEXT))
        assert analysis.fallback_reason == "bad severity"

    def test_timeout_yields_fallback(self):
        async def hang(*args, **kwargs):
            await asyncio.sleep(10)

        service = _service()
        service.generate_analysis = hang
        agent = AnalysisAgent(
            AnalysisType.TESTING, service,
            Settings(agent_timeout_seconds=0.01),
        )

        analysis = _run(agent.analyze(CONTEXT))

        assert analysis.is_fallback
        assert "timed out" in analysis.fallback_reason

    def test_fallback_is_identical_for_every_error_kind(self):
        for error in (RuntimeError("x"), ValueError("y"), KeyError("z")):
            agent = AnalysisAgent(AnalysisType.SECURITY, _service(error=error))
            analysis = _run(agent.analyze(CONTEXT))
            assert analysis.confidence == 0.3
            assert analysis.findings[0].type == ANALYSIS_ERROR_TYPE
            recommendation = analysis.recommendations[0]
            assert recommendation.description == "Review security aspects manually"
            assert recommendation.related_finding_ids == (analysis.findings[0].id,)


# ---------------------------------------------------------------------------
# Test: validate
# ---------------------------------------------------------------------------


class TestValidate:
    agent = AnalysisAgent(AnalysisType.SECURITY, _service())

    def test_good_analysis(self):
        analysis = _analysis(
            [_finding(type="injection-vulnerability"),
             _finding(id="sec-f2", type="secret-exposure")],
            [_rec()],
        )
        result = self.agent.validate(analysis)
        assert result.is_valid
        assert result.errors == ()
        assert result.score == 0.8

    def test_empty_analysis(self):
        result = self.agent.validate(_analysis())
        assert not result.is_valid
        assert len(result.errors) == 2
        assert result.score == 0.35  # 0.8 - 0.2 - 0.2 - 0.05

    def test_generic_types_warned(self):
        analysis = _analysis(
            [_finding(type="security"), _finding(id="sec-f2", type="misc")],
            [_rec()],
        )
        result = self.agent.validate(analysis)
        assert result.is_valid
        assert any("specific" in w for w in result.warnings)
        assert result.score == 0.7

    def test_vague_recommendations_warned(self):
        analysis = _analysis(
            [_finding(type="injection-vulnerability")],
            [_rec(implementation="fix"), _rec(id="r2", implementation="")],
        )
        result = self.agent.validate(analysis)
        assert any("implementation" in w for w in result.warnings)
        assert result.score == 0.7

    def test_score_never_below_minimum(self):
        strict = AnalysisAgent(
            AnalysisType.SECURITY, _service(), Settings(agent_base_confidence=0.2),
        )
        assert strict.validate(_analysis()).score == 0.1


# ---------------------------------------------------------------------------
# Test: refine
# ---------------------------------------------------------------------------


class TestRefine:
    agent = AnalysisAgent(AnalysisType.SECURITY, _service())

    def test_missing_evidence_appended(self):
        analysis = _analysis([_finding(evidence=())], [_rec()])
        refined = self.agent.refine(
            analysis, [MissingEvidence(target_id="sec-f1", evidence="line 42")],
        )
        assert refined.findings[0].evidence == ("line 42",)

    def test_vague_recommendation_extended(self):
        analysis = _analysis([], [_rec(implementation="Fix it")])
        refined = self.agent.refine(
            analysis,
            [VagueRecommendation(target_id="sec-r1", implementation="Use db.query(sql, args).")],
        )
        assert refined.recommendations[0].implementation == (
            "Fix it Use db.query(sql, args)."
        )

    def test_low_confidence_raises_item_and_aggregate(self):
        analysis = _analysis([_finding(confidence=0.4)], [], confidence=0.6)
        refined = self.agent.refine(analysis, [LowConfidence(target_id="sec-f1")])
        assert refined.findings[0].confidence == 0.5
        assert refined.confidence == 0.7

    def test_confidence_capped_at_one(self):
        analysis = _analysis([_finding(confidence=0.95)], [], confidence=0.97)
        refined = self.agent.refine(analysis, [LowConfidence(target_id="sec-f1")])
        assert refined.findings[0].confidence == 1.0
        assert refined.confidence == 1.0

    def test_incomplete_analysis_note(self):
        analysis = _analysis([_finding()], [_rec()])
        refined = self.agent.refine(analysis, [
            IncompleteAnalysis(target_id="sec-f1", note="Check the ORM path too"),
            IncompleteAnalysis(target_id="sec-r1", note="Add a regression test"),
        ])
        assert refined.findings[0].evidence[-1] == "Check the ORM path too"
        assert refined.recommendations[0].implementation.endswith(
            "Add a regression test"
        )

    def test_unknown_target_ignored(self):
        analysis = _analysis([_finding()], [_rec()])
        refined = self.agent.refine(
            analysis, [MissingEvidence(target_id="nope", evidence="x")],
        )
        assert refined == analysis

    def test_confidence_never_decreases(self):
        analysis = _analysis([_finding()], [_rec()], confidence=0.65)
        feedback = [
            MissingEvidence(target_id="sec-f1", evidence="e"),
            VagueRecommendation(target_id="sec-r1", implementation="more"),
            LowConfidence(target_id="sec-r1"),
            IncompleteAnalysis(target_id="sec-f1", note="n"),
        ]
        refined = self.agent.refine(analysis, feedback)
        assert refined.confidence >= analysis.confidence

    def test_duplicate_ids_all_updated(self):
        analysis = _analysis(
            [_finding(evidence=()), replace(_finding(evidence=()), line_number=50)],
        )
        refined = self.agent.refine(
            analysis, [MissingEvidence(target_id="sec-f1", evidence="e")],
        )
        assert all(f.evidence == ("e",) for f in refined.findings)


# ---------------------------------------------------------------------------
# Test: construction helpers
# ---------------------------------------------------------------------------


class TestAgentConstruction:
    def test_create_agents_defaults_to_all_types(self):
        agents = create_agents(None, _service())
        assert [a.get_analysis_type() for a in agents] == list(AnalysisType)

    def test_create_agents_subset(self):
        agents = create_agents([AnalysisType.TESTING], _service())
        assert [a.get_analysis_type() for a in agents] == [AnalysisType.TESTING]

    def test_using_rebinds_model(self):
        agent = AnalysisAgent(AnalysisType.SECURITY, _service(model="a"))
        rebound = agent.using(_service(model="b"))
        assert rebound.model_name == "b"
        assert rebound.get_analysis_type() == AnalysisType.SECURITY
        assert agent.model_name == "a"
