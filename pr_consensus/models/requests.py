# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming INTO the API.
# FastAPI uses them for:
# 1. Request body validation (automatic 422 errors for invalid data)
# 2. OpenAPI documentation generation (visible at /docs)
#
# DESIGN DECISION: The request is NOT the domain PRContext.
# PRContext is a frozen dataclass the pipeline works on. The request model
# adds per-review knobs (analysis types, models, iteration cap) that are
# not part of the change under review, and `to_context()` does the mapping.
# =============================================================================

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from pr_consensus.models.analysis import AnalysisType, PRContext


class ReviewRequest(BaseModel):
    """
    Request body for POST /review — review one pull request.

    Example:
        {
            "title": "Add password reset email",
            "files": {"src/email.js": "const q = 'SELECT ...' + id;"},
            "language": "javascript",
            "analysis_types": ["security", "testing"]
        }
    """

    title: str = Field(
        ...,
        min_length=1,
        max_length=500,
        description="Pull request title",
        examples=["Add password reset email"],
    )
    description: str = Field(
        default="",
        max_length=20000,
        description="Pull request description",
    )
    files: dict[str, str] = Field(
        default_factory=dict,
        description="Changed files: path → changed content (diff or full text)",
    )
    language: str = Field(default="unknown", description="Primary language")
    framework: str = Field(default="unknown", description="Primary framework")
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Free-form context (author, base branch, ...)",
    )

    # Omitted → every analysis type.
    analysis_types: list[AnalysisType] | None = Field(
        default=None,
        min_length=1,
        description=(
            "Analysis domains to run. If omitted, all of: architectural, "
            "security, performance, testing."
        ),
    )

    models: list[str] | None = Field(
        default=None,
        min_length=1,
        description=(
            "Provider ids to run every agent against, in the format "
            "'provider_type/model_name[@base_url]'. If omitted, the "
            "configured review models are used."
        ),
        examples=[["anthropic/claude-sonnet-4-6", "openai_compatible/gpt-4o"]],
    )

    max_iterations: int | None = Field(
        default=None,
        ge=0,
        le=10,
        description="Refinement round cap. 0 disables refinement.",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "title": "Add password reset email",
                    "description": "Sends a reset link to the user",
                    "files": {
                        "src/email.js": "db.query('SELECT * FROM users WHERE id=' + id)",
                    },
                    "language": "javascript",
                    "framework": "express",
                    "analysis_types": ["security", "testing"],
                    "max_iterations": 1,
                },
            ]
        }
    )

    def to_context(self) -> PRContext:
        return PRContext(
            title=self.title,
            files=dict(self.files),
            description=self.description,
            language=self.language,
            framework=self.framework,
            metadata=dict(self.metadata),
        )
