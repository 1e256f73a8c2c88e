# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming OUT of the API.
# They serve as the contract between the review pipeline and its clients:
# 1. Ensure consistent response structure
# 2. Automatically serialized to JSON by FastAPI
# 3. Generate OpenAPI response schemas (visible at /docs)
#
# DESIGN DECISION: Separate response models from domain dataclasses.
# The pipeline's result objects carry agents, provider handles and full
# per-round critiques. The response exposes the verdict, the merged
# findings/recommendations and the gate scores; `from_pipeline()` does
# the mapping in one place.
# =============================================================================

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from pr_consensus.models.analysis import Finding, Recommendation
from pr_consensus.models.review import DimensionScore, RuleOutcome

if TYPE_CHECKING:
    from pr_consensus.agents.pipeline import PipelineResult


class HealthResponse(BaseModel):
    """Response for GET /health — confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


class FindingResponse(BaseModel):
    id: str
    type: str
    severity: str
    message: str
    file: str
    line_number: int | None = None
    evidence: list[str] = Field(default_factory=list)
    confidence: float
    supporting_models: list[str] = Field(default_factory=list)

    @classmethod
    def from_finding(cls, finding: Finding) -> FindingResponse:
        return cls(
            id=finding.id,
            type=finding.type,
            severity=finding.severity.value,
            message=finding.message,
            file=finding.file,
            line_number=finding.line_number,
            evidence=list(finding.evidence),
            confidence=finding.confidence,
            supporting_models=list(finding.supporting_models),
        )


class RecommendationResponse(BaseModel):
    id: str
    priority: str
    category: str
    description: str
    rationale: str
    implementation: str
    effort: str
    confidence: float
    related_finding_ids: list[str] = Field(default_factory=list)

    @classmethod
    def from_recommendation(cls, rec: Recommendation) -> RecommendationResponse:
        return cls(
            id=rec.id,
            priority=rec.priority.value,
            category=rec.category,
            description=rec.description,
            rationale=rec.rationale,
            implementation=rec.implementation,
            effort=rec.effort.value,
            confidence=rec.confidence,
            related_finding_ids=list(rec.related_finding_ids),
        )


class DimensionResponse(BaseModel):
    score: float = Field(ge=0.0, le=1.0)
    issues: list[str] = Field(default_factory=list)
    missing_areas: list[str] = Field(default_factory=list)

    @classmethod
    def from_dimension(cls, dimension: DimensionScore) -> DimensionResponse:
        return cls(
            score=dimension.score,
            issues=list(dimension.issues),
            missing_areas=list(dimension.missing_areas),
        )


class RuleResponse(BaseModel):
    rule_id: str
    name: str
    severity: str
    passed: bool
    message: str

    @classmethod
    def from_outcome(cls, outcome: RuleOutcome) -> RuleResponse:
        return cls(
            rule_id=outcome.rule_id,
            name=outcome.name,
            severity=outcome.severity,
            passed=outcome.passed,
            message=outcome.message,
        )


class QualityGateResponse(BaseModel):
    """Quality gate verdict with per-dimension scores."""

    passes_gates: bool
    overall_score: float
    completeness: DimensionResponse
    consistency: DimensionResponse
    actionability: DimensionResponse
    evidence: DimensionResponse
    confidence: DimensionResponse
    rules: list[RuleResponse]
    improvements: list[str] = Field(
        default_factory=list,
        description="What to fix to pass the gates (empty when passed)",
    )


class ReviewResponse(BaseModel):
    """
    Response for POST /review.

    `findings` and `recommendations` are the consensus view: duplicates
    across agents and models are merged, most severe / urgent first.
    """

    title: str
    passed: bool = Field(description="Whether the quality gates passed")
    findings: list[FindingResponse]
    recommendations: list[RecommendationResponse]
    overall_confidence: float
    model_agreement: float
    consensus_method: str
    models_used: list[str]
    analysis_types: list[str]
    quality: QualityGateResponse
    refinement_iterations: int
    feedback_rounds: int
    processing_time_ms: int

    @classmethod
    def from_pipeline(cls, title: str, result: PipelineResult) -> ReviewResponse:
        final = result.refined.final_results
        consensus = result.consensus
        validation = result.validation
        return cls(
            title=title,
            passed=result.passed,
            findings=[FindingResponse.from_finding(f) for f in consensus.findings],
            recommendations=[
                RecommendationResponse.from_recommendation(r)
                for r in consensus.recommendations
            ],
            overall_confidence=consensus.overall_confidence,
            model_agreement=consensus.model_agreement,
            consensus_method=consensus.consensus_method,
            models_used=list(final.models_used),
            analysis_types=[t.value for t in final.analysis_types],
            quality=QualityGateResponse(
                passes_gates=validation.passes_gates,
                overall_score=validation.overall_score,
                completeness=DimensionResponse.from_dimension(validation.completeness),
                consistency=DimensionResponse.from_dimension(validation.consistency),
                actionability=DimensionResponse.from_dimension(validation.actionability),
                evidence=DimensionResponse.from_dimension(validation.evidence),
                confidence=DimensionResponse.from_dimension(validation.confidence),
                rules=[RuleResponse.from_outcome(r) for r in validation.rules],
                improvements=list(validation.improvements),
            ),
            refinement_iterations=result.refined.total_iterations,
            feedback_rounds=result.feedback_rounds,
            processing_time_ms=final.processing_time_ms,
        )
