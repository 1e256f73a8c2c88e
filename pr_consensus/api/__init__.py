# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
#   - review.py: POST /review, runs the full review pipeline
# =============================================================================
