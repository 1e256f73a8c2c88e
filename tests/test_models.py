# =============================================================================
# Unit Tests — Domain Value Types & Request Schemas
# =============================================================================

from __future__ import annotations

import subprocess
import sys

import pytest
from pydantic import ValidationError

from pr_consensus.models.analysis import (
    BROAD_SCOPE,
    AnalysisType,
    Finding,
    PRContext,
    Priority,
    Recommendation,
    RiskLevel,
    Severity,
    SpecializedAnalysis,
    priority_for_severity,
    risk_level_for,
)
from pr_consensus.models.requests import ReviewRequest


def _finding(severity: Severity, **kwargs) -> Finding:
    return Finding(
        id=kwargs.pop("id", "f-1"), type="t", severity=severity,
        message="m", **kwargs,
    )


class TestEnums:
    def test_severity_order(self):
        ranks = [s.rank for s in (
            Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL,
        )]
        assert ranks == sorted(ranks)
        assert len(set(ranks)) == 4

    def test_priority_urgency(self):
        assert Priority.MUST_FIX.rank > Priority.SHOULD_FIX.rank > Priority.CONSIDER.rank

    def test_priority_for_severity(self):
        assert priority_for_severity(Severity.CRITICAL) == Priority.MUST_FIX
        assert priority_for_severity(Severity.HIGH) == Priority.MUST_FIX
        assert priority_for_severity(Severity.MEDIUM) == Priority.SHOULD_FIX
        assert priority_for_severity(Severity.LOW) == Priority.CONSIDER


class TestFinding:
    def test_string_severity_is_parsed(self):
        assert _finding("high").severity == Severity.HIGH

    def test_invalid_severity_rejected(self):
        with pytest.raises(ValueError):
            _finding("urgent")

    def test_confidence_bounds(self):
        with pytest.raises(ValueError, match="confidence"):
            _finding(Severity.LOW, confidence=1.2)

    def test_location(self):
        assert _finding(Severity.LOW, file="a.py", line_number=4).location == "a.py:4"
        assert _finding(Severity.LOW).location == BROAD_SCOPE

    def test_evidence_stored_as_tuple(self):
        assert _finding(Severity.LOW, evidence=["x"]).evidence == ("x",)


class TestRecommendation:
    def test_defaults(self):
        rec = Recommendation(
            id="r", priority="consider", category="c", description="d",
        )
        assert rec.priority == Priority.CONSIDER
        assert rec.effort.value == "medium"

    def test_invalid_effort_rejected(self):
        with pytest.raises(ValueError):
            Recommendation(
                id="r", priority="consider", category="c", description="d",
                effort="huge",
            )


class TestRiskLevel:
    def test_empty_is_low(self):
        assert risk_level_for([]) == RiskLevel.LOW

    def test_max_severity(self):
        findings = [
            _finding(Severity.LOW, id="a"),
            _finding(Severity.CRITICAL, id="b"),
            _finding(Severity.MEDIUM, id="c"),
        ]
        assert risk_level_for(findings) == RiskLevel.CRITICAL

    def test_analysis_confidence_bounds(self):
        with pytest.raises(ValueError):
            SpecializedAnalysis(analysis_type="security", confidence=-0.1)


class TestPRContext:
    def test_from_dict(self):
        context = PRContext.from_dict({
            "title": "Fix login",
            "files": {"a.py": "x = 1"},
            "language": "python",
        })
        assert context.title == "Fix login"
        assert context.framework == "unknown"

    def test_missing_title_rejected(self):
        with pytest.raises(ValueError, match="title"):
            PRContext.from_dict({"files": {}})

    def test_non_text_files_rejected(self):
        with pytest.raises(ValueError, match="files"):
            PRContext.from_dict({"title": "t", "files": {"a.py": 3}})

    def test_non_mapping_rejected(self):
        with pytest.raises(ValueError):
            PRContext.from_dict(["title"])


class TestReviewRequest:
    def test_minimal_request(self):
        req = ReviewRequest(title="Add reset email")
        assert req.analysis_types is None
        assert req.models is None
        assert req.to_context().title == "Add reset email"

    def test_analysis_types_parsed(self):
        req = ReviewRequest(title="t", analysis_types=["security", "testing"])
        assert req.analysis_types == [AnalysisType.SECURITY, AnalysisType.TESTING]

    def test_unknown_analysis_type_rejected(self):
        with pytest.raises(ValidationError):
            ReviewRequest(title="t", analysis_types=["style"])

    def test_empty_analysis_types_rejected(self):
        with pytest.raises(ValidationError):
            ReviewRequest(title="t", analysis_types=[])

    def test_negative_iterations_rejected(self):
        with pytest.raises(ValidationError):
            ReviewRequest(title="t", max_iterations=-1)

    def test_empty_title_rejected(self):
        with pytest.raises(ValidationError):
            ReviewRequest(title="")


class TestModelImports:
    def test_responses_do_not_load_pipeline(self):
        # Model modules sit below agents/ and must import on their own.
        code = (
            "import sys\n"
            "import pr_consensus.models.responses\n"
            "assert 'pr_consensus.agents.pipeline' not in sys.modules\n"
        )
        completed = subprocess.run(
            [sys.executable, "-c", code], capture_output=True, text=True,
        )
        assert completed.returncode == 0, completed.stderr
