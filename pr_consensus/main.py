# =============================================================================
# FastAPI Application — Entry Point
# =============================================================================
#
# Run locally:
#   uvicorn pr_consensus.main:app --reload
#
# DESIGN DECISION: Logging configured once, here.
# Library modules only create `logging.getLogger(__name__)` loggers; the
# application decides level and format from settings.log_level.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import FastAPI

from pr_consensus.api.review import router as review_router
from pr_consensus.config import Settings, get_settings
from pr_consensus.models.responses import HealthResponse

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format=LOG_FORMAT,
        force=True,
    )
    # Provider SDKs log every HTTP request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
    )
    application.include_router(review_router)

    @application.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health() -> HealthResponse:
        return HealthResponse(
            version=settings.app_version,
            service=settings.app_name,
        )

    return application


app = create_app()
