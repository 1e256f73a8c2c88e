# =============================================================================
# PR Consensus Review
# =============================================================================
# A multi-agent pull request reviewer. Domain agents (architectural,
# security, performance, testing) review the same change, optionally on
# several LLMs at once; their results are cross-validated, merged into a
# consensus, refined in bounded rounds and checked against quality gates.
#
# Package structure:
#   pr_consensus/
#   ├── api/          → FastAPI route handlers (review)
#   ├── agents/       → Analysis agents, multi-model orchestrator, LangGraph
#   │                    refinement loop, end-to-end review pipeline
#   ├── models/       → Domain value types, result containers, Pydantic V2
#   │                    request/response schemas
#   └── services/     → LLM providers, response parsing, plugins, cross
#                        validation, consensus, quality gates
# =============================================================================
