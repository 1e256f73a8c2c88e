# =============================================================================
# Models Package — Domain Types and API Schemas
# =============================================================================
#   - analysis.py: findings, recommendations, agent results, feedback
#   - review.py: orchestration, refinement and quality gate results
#   - requests.py / responses.py: Pydantic V2 schemas for the HTTP API
#
# DESIGN DECISION: API schemas are separate from the domain dataclasses.
# The dataclasses are what the pipeline computes with; the schemas are
# the public contract and can evolve without touching the pipeline.
# =============================================================================
