# =============================================================================
# Analysis Prompts — Domain-Specific Review Instructions
# =============================================================================
#
# Each analysis agent reviews the same pull request through a different
# lens. The lens is expressed entirely in the system prompt, so the four
# agents share one implementation (AnalysisAgent) and differ only in the
# prompt they send and the classification rules they apply afterwards.
#
# DESIGN DECISION: Domain prompt as SYSTEM, PR content as USER message.
# The system prompt fixes the reviewer role and the JSON response shape;
# the user message carries the change itself. Both providers place these
# differently (see services/llm.py) but the split is the same.
#
# DESIGN DECISION: Bounded file excerpts.
# A PR can touch hundreds of files. Each file is truncated to
# MAX_FILE_CHARS and at most MAX_FILES are included, so the prompt stays
# within the model's context window regardless of PR size.
# =============================================================================

from __future__ import annotations

from pr_consensus.models.analysis import (
    AnalysisType,
    Finding,
    PRContext,
    Recommendation,
)

MAX_FILES = 25
MAX_FILE_CHARS = 4000


# ---------------------------------------------------------------------------
# Domain-Specific System Prompts
# ---------------------------------------------------------------------------
# Same pattern for every domain:
# 1. Role definition
# 2. What to look for
# 3. Evidence and grounding rules
# ---------------------------------------------------------------------------

SYSTEM_PROMPTS: dict[AnalysisType, str] = {
    AnalysisType.ARCHITECTURAL: (
        "You are a senior software architect reviewing a pull request.\n\n"
        "Focus on:\n"
        "- Coupling between modules and cohesion within them\n"
        "- SOLID violations and misused or missing design patterns\n"
        "- Layering, dependency direction and architectural debt\n\n"
        "Rules:\n"
        "- Only report issues visible in the provided changes\n"
        "- Quote the code that supports each finding as evidence\n"
        "- Give file paths exactly as they appear in the change"
    ),

    AnalysisType.SECURITY: (
        "You are an application security engineer reviewing a pull "
        "request.\n\n"
        "Focus on:\n"
        "- Injection (SQL, command, template) and cross-site scripting\n"
        "- Authentication, authorization and session handling\n"
        "- Secret exposure and weak or misused cryptography\n\n"
        "Rules:\n"
        "- Only report issues visible in the provided changes\n"
        "- Mark exploitable issues as high or critical severity\n"
        "- Quote the vulnerable code as evidence, with its line number"
    ),

    AnalysisType.PERFORMANCE: (
        "You are a performance engineer reviewing a pull request.\n\n"
        "Focus on:\n"
        "- N+1 queries, missing indexes and chatty database access\n"
        "- Algorithmic complexity and nested loops over large inputs\n"
        "- Memory growth, caching opportunities and network round trips\n\n"
        "Rules:\n"
        "- Only report issues visible in the provided changes\n"
        "- Explain the expected impact in the rationale\n"
        "- Quote the code that supports each finding as evidence"
    ),

    AnalysisType.TESTING: (
        "You are a test engineer reviewing a pull request.\n\n"
        "Focus on:\n"
        "- Changed behaviour with missing or insufficient tests\n"
        "- Coverage gaps, untested edge cases and boundary values\n"
        "- Flaky, brittle or over-mocked tests and missing integration tests\n\n"
        "Rules:\n"
        "- Only report gaps visible in the provided changes\n"
        "- Name the function or branch that lacks a test\n"
        "- Suggest the concrete test case in the implementation field"
    ),
}

RESPONSE_FORMAT = """\
Respond with ONLY a JSON object in this format, no additional text:
{
  "analysis": "Short summary of your review",
  "findings": [
    {
      "type": "finding-type",
      "severity": "low|medium|high|critical",
      "message": "Description of the finding",
      "file": "path/to/file or * when it applies broadly",
      "line_number": 42,
      "evidence": ["supporting code or reasoning"],
      "confidence": 0.8
    }
  ],
  "recommendations": [
    {
      "priority": "must-fix|should-fix|consider",
      "category": "category-name",
      "description": "What should be done",
      "rationale": "Why this is important",
      "implementation": "How to implement this",
      "effort": "low|medium|high",
      "confidence": 0.8
    }
  ],
  "confidence": 0.8
}"""


def build_analysis_prompt(analysis_type: AnalysisType, context: PRContext) -> str:
    """
    Build the user message for one agent's review of `context`.

    Returns the PR title, description and changed files formatted as
    labelled sections.
    """
    header = (
        f"Analysis type: {analysis_type.value}\n"
        f"Pull request: {context.title}\n"
        f"Language: {context.language}\n"
        f"Framework: {context.framework}\n"
    )
    if context.description:
        header += f"\nDescription:\n{context.description}\n"

    return f"{header}\nChanged files ({len(context.files)} total):\n\n" + (
        _format_files(context.files)
    )


def _format_files(files: dict[str, str]) -> str:
    """Format changed files as labelled, truncated excerpts."""
    if not files:
        return "(no file contents provided)"

    sections = []
    for path, content in list(files.items())[:MAX_FILES]:
        excerpt = content[:MAX_FILE_CHARS]
        if len(content) > MAX_FILE_CHARS:
            excerpt += "\n... (truncated)"
        sections.append(f"--- {path} ---\n{excerpt}")
    if len(files) > MAX_FILES:
        sections.append(f"... {len(files) - MAX_FILES} more files omitted")
    return "\n\n".join(sections)


# ---------------------------------------------------------------------------
# Self-Critique
# ---------------------------------------------------------------------------
# Used by the refinement engine. The critic sees the review so far (ids
# included) and points at the items that need a deeper look.
# ---------------------------------------------------------------------------

MAX_CRITIQUE_ITEMS = 40

CRITIQUE_SYSTEM_PROMPT = """\
You are a senior reviewer auditing a code review produced by several \
automated reviewers. Decide whether the review is complete, name blind \
spots (areas of the change nobody examined) and weak assumptions, and \
point at specific findings or recommendations that need deeper \
investigation.

Respond with ONLY a JSON object in this format, no additional text:
{
  "is_complete": false,
  "blind_spots": ["area that was not examined"],
  "weak_assumptions": ["assumption that may not hold"],
  "deeper_investigation": [
    {"target_id": "id of a finding or recommendation", "suggestion": "what to check"}
  ]
}"""


def build_critique_prompt(
    context: PRContext,
    findings: list[Finding],
    recommendations: list[Recommendation],
) -> str:
    """Build the user message for the self-critique LLM call."""
    lines = [f"Pull request: {context.title}", "", "Findings:"]
    if not findings:
        lines.append("(none)")
    for f in findings[:MAX_CRITIQUE_ITEMS]:
        lines.append(
            f"- [{f.id}] {f.severity.value} {f.type} at {f.location}: {f.message}"
        )
    lines += ["", "Recommendations:"]
    if not recommendations:
        lines.append("(none)")
    for r in recommendations[:MAX_CRITIQUE_ITEMS]:
        lines.append(f"- [{r.id}] {r.priority.value} {r.category}: {r.description}")
    return "\n".join(lines)
