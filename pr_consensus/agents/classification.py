# =============================================================================
# Finding Classification — Keyword Heuristics per Analysis Domain
# =============================================================================
#
# LLMs label findings inconsistently ("security", "sql", "vuln", ...). Agents
# normalise those labels into domain sub-types by looking for keywords in
# the finding MESSAGE, e.g. "tight coupling between modules" becomes
# `coupling-issue`.
#
# DESIGN DECISION: Pure functions over module-level tables.
# This is a heuristic layer and it will misfire on unusual phrasing. Keeping
# it free of LLM calls and agent state means every rule is unit-testable on
# a plain string.
#
# DESIGN DECISION: Ordered rules, first match wins.
# More specific phrases are listed before the generic ones that would also
# match them ("cross-site request" before "cross-site", "authorization"
# before "auth").
# =============================================================================

from __future__ import annotations

from pr_consensus.models.analysis import AnalysisType

# (keywords, sub-type) pairs, checked in order against the lowercased message.
CLASSIFICATION_RULES: dict[AnalysisType, list[tuple[tuple[str, ...], str]]] = {
    AnalysisType.ARCHITECTURAL: [
        (("coupling", "coupled"), "coupling-issue"),
        (("cohesion",), "cohesion-issue"),
        (("solid", "single responsibility", "open/closed"), "solid-violation"),
        (("pattern",), "design-pattern"),
        (("technical debt", "debt"), "architectural-debt"),
    ],
    AnalysisType.SECURITY: [
        (("injection", "sql"), "injection-vulnerability"),
        (("csrf", "cross-site request"), "csrf-vulnerability"),
        (("xss", "cross-site"), "xss-vulnerability"),
        (("authorization", "access control", "permission"), "authorization-issue"),
        (("authentication", "auth", "login", "session"), "authentication-issue"),
        (("encryption", "crypto", "hash"), "cryptographic-issue"),
        (("secret", "credential", "api key", "password"), "secret-exposure"),
    ],
    AnalysisType.PERFORMANCE: [
        (("n+1", "query", "database", "index"), "database-performance"),
        (("complexity", "nested loop", "o(n"), "algorithmic-complexity"),
        (("memory", "leak", "allocation"), "memory-issue"),
        (("cache", "caching"), "caching-opportunity"),
        (("network", "latency", "round trip", "round-trip"), "network-issue"),
    ],
    AnalysisType.TESTING: [
        (("missing test", "no test", "untested", "not tested"), "missing-test"),
        (("coverage",), "coverage-gap"),
        (("edge case", "boundary"), "edge-case"),
        (("integration",), "integration-test"),
        (("flaky", "brittle", "mock"), "test-quality"),
    ],
}

# Substrings that mark a finding type as domain-specific. Used by agent
# self-validation to spot analyses that only produced generic findings.
DOMAIN_TYPE_MARKERS: dict[AnalysisType, tuple[str, ...]] = {
    AnalysisType.ARCHITECTURAL: (
        "coupling", "cohesion", "design-pattern", "solid-violation",
        "architectural-debt",
    ),
    AnalysisType.SECURITY: (
        "vulnerability", "injection", "authentication", "authorization",
        "cryptographic", "xss", "csrf", "secret",
    ),
    AnalysisType.PERFORMANCE: (
        "database", "complexity", "memory", "caching", "network",
    ),
    AnalysisType.TESTING: (
        "missing-test", "coverage", "edge-case", "integration-test",
        "test-quality",
    ),
}


def classify_finding_type(
    analysis_type: AnalysisType,
    message: str,
    current_type: str,
) -> str:
    """
    Return the domain sub-type for a finding message.

    Falls back to `current_type` when no rule matches, so classification
    never discards a label the LLM supplied.
    """
    message_lower = message.lower()
    for keywords, sub_type in CLASSIFICATION_RULES[analysis_type]:
        if any(kw in message_lower for kw in keywords):
            return sub_type
    return current_type


def is_domain_specific(analysis_type: AnalysisType, finding_type: str) -> bool:
    """True when `finding_type` names one of the domain's sub-types."""
    finding_type = finding_type.lower()
    return any(
        marker in finding_type
        for marker in DOMAIN_TYPE_MARKERS[analysis_type]
    )
