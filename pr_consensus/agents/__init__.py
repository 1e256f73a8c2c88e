# =============================================================================
# Agents Package — Review Agents and Their Orchestration
# =============================================================================
#   - analysis_agent.py: one LLM-backed reviewer per analysis type
#   - classification.py: rule-based finding type classification
#   - prompts.py: domain system prompts and prompt builders
#   - orchestrator.py: fan-out over agents × models, cross-validation,
#     consensus
#   - refinement.py: LangGraph critique → refine → validate loop
#   - pipeline.py: run_review(), the end-to-end entry point
# =============================================================================
