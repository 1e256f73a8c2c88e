# =============================================================================
# Review API — Multi-Agent Pull Request Review Endpoint
# =============================================================================
#
# Provides POST /review, which runs the whole pipeline for one PR:
#
#   1. Validate per-request provider ids (fail fast with 400)
#   2. Build agents, orchestrator and plugins from settings
#   3. run_review(): analysis → refinement → quality gates
#   4. Map the pipeline result onto ReviewResponse
#
# The heavy lifting happens in the agents package:
#   - orchestrator.py runs agents × models and builds the consensus
#   - refinement.py runs the LangGraph critique/refine loop
#   - pipeline.py applies the quality gates and feedback rounds
#
# Error mapping:
#   - Invalid provider id in `models`  → 400 Bad Request
#   - Missing API key / configuration  → 503 Service Unavailable
#   - Anything else escaping the pipeline → 502 Bad Gateway
# Agent-level LLM failures never reach this layer; they degrade to
# fallback analyses and show up as a failed or low-scoring gate.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from pr_consensus.agents.analysis_agent import create_agents
from pr_consensus.agents.orchestrator import MultiModelOrchestrator
from pr_consensus.agents.pipeline import run_review
from pr_consensus.config import Settings, get_settings
from pr_consensus.models.requests import ReviewRequest
from pr_consensus.models.responses import ReviewResponse
from pr_consensus.services.analysis_llm import LLMAnalysisService
from pr_consensus.services.llm import create_llm_provider, create_provider_from_id
from pr_consensus.services.plugins import default_plugins

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Review"])


# ---------------------------------------------------------------------------
# POST /review — Review a pull request
# ---------------------------------------------------------------------------


@router.post(
    "/review",
    response_model=ReviewResponse,
    summary="Review a pull request with multiple agents and models",
    description=(
        "Runs architectural, security, performance and testing agents over "
        "the change (optionally on several LLMs), cross-validates and merges "
        "their results, refines the consensus and checks it against the "
        "quality gates."
    ),
)
async def review_endpoint(
    request: ReviewRequest,
    settings: Settings = Depends(get_settings),
) -> ReviewResponse:
    logger.info(
        "Review request: title=%r, files=%d, analysis_types=%s, models=%s",
        request.title[:80], len(request.files),
        [t.value for t in request.analysis_types] if request.analysis_types else "all",
        request.models or "configured",
    )

    # --- Step 1: per-request models (fail fast) ---
    model_services: dict[str, LLMAnalysisService] | None = None
    if request.models:
        model_services = {}
        for pid in request.models:
            try:
                model_services[pid] = LLMAnalysisService(
                    create_provider_from_id(pid, settings=settings),
                )
            except ValueError as e:
                raise HTTPException(
                    status_code=400,
                    detail=f"Invalid provider '{pid}': {e}",
                ) from e

    # --- Step 2: agents and orchestrator ---
    try:
        if model_services:
            service = next(iter(model_services.values()))
        else:
            service = LLMAnalysisService(create_llm_provider(settings))
        agents = create_agents(request.analysis_types, service, settings)
        orchestrator = MultiModelOrchestrator(
            settings,
            model_services=model_services,
            plugins=default_plugins(),
            critic=service.provider if settings.critique_with_llm else None,
        )
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        raise HTTPException(
            status_code=503,
            detail=f"Service configuration error: {e}",
        ) from e

    # --- Step 3: run the pipeline ---
    try:
        result = await run_review(
            request.to_context(),
            agents,
            orchestrator=orchestrator,
            max_iterations=request.max_iterations,
            settings=settings,
        )
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        raise HTTPException(
            status_code=503,
            detail=f"Service configuration error: {e}",
        ) from e
    except Exception as e:
        logger.exception("Review pipeline failed: %s", e)
        raise HTTPException(
            status_code=502,
            detail=f"Review pipeline error: {e}",
        ) from e

    return ReviewResponse.from_pipeline(request.title, result)
