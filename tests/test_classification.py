# =============================================================================
# Unit Tests — Finding Classification & Prompt Building
# =============================================================================
#
# Pure functions only: no LLM, no agents.
# =============================================================================

from __future__ import annotations

from pr_consensus.agents.classification import (
    CLASSIFICATION_RULES,
    classify_finding_type,
    is_domain_specific,
)
from pr_consensus.agents.prompts import (
    MAX_FILE_CHARS,
    MAX_FILES,
    build_analysis_prompt,
    build_critique_prompt,
)
from pr_consensus.models.analysis import (
    AnalysisType,
    Finding,
    PRContext,
    Recommendation,
    Severity,
)


# ---------------------------------------------------------------------------
# Test: classify_finding_type
# ---------------------------------------------------------------------------


class TestClassifyFindingType:
    def test_security_injection(self):
        result = classify_finding_type(
            AnalysisType.SECURITY, "SQL built by string concatenation", "security",
        )
        assert result == "injection-vulnerability"

    def test_csrf_before_xss(self):
        result = classify_finding_type(
            AnalysisType.SECURITY, "Cross-site request forgery on /reset", "x",
        )
        assert result == "csrf-vulnerability"

    def test_xss(self):
        result = classify_finding_type(
            AnalysisType.SECURITY, "Unescaped output enables cross-site scripting", "x",
        )
        assert result == "xss-vulnerability"

    def test_authorization_before_authentication(self):
        result = classify_finding_type(
            AnalysisType.SECURITY, "Missing authorization check on delete", "x",
        )
        assert result == "authorization-issue"

    def test_architectural_coupling(self):
        result = classify_finding_type(
            AnalysisType.ARCHITECTURAL, "Tight coupling between billing and email", "x",
        )
        assert result == "coupling-issue"

    def test_performance_n_plus_one(self):
        result = classify_finding_type(
            AnalysisType.PERFORMANCE, "N+1 pattern when loading users", "x",
        )
        assert result == "database-performance"

    def test_testing_missing_test(self):
        result = classify_finding_type(
            AnalysisType.TESTING, "No test covers the reset path", "x",
        )
        assert result == "missing-test"

    def test_no_match_keeps_current_type(self):
        result = classify_finding_type(
            AnalysisType.PERFORMANCE, "Variable name is unclear", "naming",
        )
        assert result == "naming"

    def test_rules_are_defined_for_every_type(self):
        assert set(CLASSIFICATION_RULES) == set(AnalysisType)

    def test_same_input_same_output(self):
        args = (AnalysisType.SECURITY, "Hardcoded password in config", "security")
        assert classify_finding_type(*args) == classify_finding_type(*args)


class TestIsDomainSpecific:
    def test_security_subtype(self):
        assert is_domain_specific(AnalysisType.SECURITY, "injection-vulnerability")

    def test_generic_type_is_not_specific(self):
        assert not is_domain_specific(AnalysisType.SECURITY, "security")

    def test_case_insensitive(self):
        assert is_domain_specific(AnalysisType.TESTING, "Coverage-Gap")


# ---------------------------------------------------------------------------
# Test: Prompt builders
# ---------------------------------------------------------------------------


class TestBuildAnalysisPrompt:
    def test_header_fields(self):
        context = PRContext(
            title="Add reset email",
            description="Sends a link",
            language="javascript",
            framework="express",
            files={"src/email.js": "send()"},
        )
        prompt = build_analysis_prompt(AnalysisType.SECURITY, context)
        assert "Analysis type: security" in prompt
        assert "Pull request: Add reset email" in prompt
        assert "Language: javascript" in prompt
        assert "Sends a link" in prompt
        assert "--- src/email.js ---" in prompt

    def test_no_files(self):
        prompt = build_analysis_prompt(AnalysisType.TESTING, PRContext(title="t"))
        assert "(no file contents provided)" in prompt

    def test_large_files_truncated(self):
        context = PRContext(title="t", files={"big.py": "x" * (MAX_FILE_CHARS + 10)})
        prompt = build_analysis_prompt(AnalysisType.PERFORMANCE, context)
        assert "... (truncated)" in prompt
        assert "x" * (MAX_FILE_CHARS + 1) not in prompt

    def test_file_count_bounded(self):
        files = {f"f{i}.py": "pass" for i in range(MAX_FILES + 3)}
        prompt = build_analysis_prompt(
            AnalysisType.ARCHITECTURAL, PRContext(title="t", files=files),
        )
        assert "3 more files omitted" in prompt
        assert f"--- f{MAX_FILES}.py ---" not in prompt


class TestBuildCritiquePrompt:
    def test_lists_item_ids(self):
        finding = Finding(
            id="sec-1", type="injection-vulnerability",
            severity=Severity.HIGH, message="SQL concat",
            file="a.js", line_number=3,
        )
        rec = Recommendation(
            id="rec-1", priority="must-fix", category="security",
            description="Parameterize",
        )
        prompt = build_critique_prompt(PRContext(title="t"), [finding], [rec])
        assert "[sec-1] high injection-vulnerability at a.js:3" in prompt
        assert "[rec-1] must-fix security: Parameterize" in prompt

    def test_empty_review(self):
        prompt = build_critique_prompt(PRContext(title="t"), [], [])
        assert prompt.count("(none)") == 2
