# =============================================================================
# Services Package — Business Logic
# =============================================================================
#   - llm.py: multi-provider LLM abstraction (Anthropic, OpenAI-compatible)
#   - analysis_llm.py: analysis prompting and response parsing
#   - plugins.py: per-file auxiliary checks run alongside the agents
#   - cross_validator.py: pairwise comparison of agent results
#   - consensus.py: merging results into one consensus view
#   - quality_gates.py: scoring, gate decision, standards repair
# =============================================================================
