# =============================================================================
# Analysis Agent — One LLM-Backed Review Lens
# =============================================================================
#
# An agent reviews a PR from one domain (architectural, security,
# performance, testing). It owns four capabilities:
#
#   analyze  — prompt the LLM, parse, classify, post-process
#   validate — score its own output (structure, evidence, actionability)
#   refine   — apply typed feedback from the refinement engine
#   get_analysis_type — which domain this agent covers
#
# DESIGN DECISION: One class tagged by AnalysisType, not four subclasses.
# The domains differ only in their system prompt and classification rules,
# both of which are looked up by AnalysisType. A subclass per domain would
# be four copies of the same control flow.
#
# DESIGN DECISION: Agents never raise from analyze().
# A provider outage, a timeout or a malformed response yields the FALLBACK
# analysis: one `analysis-error` finding plus a manual-review
# recommendation at low confidence. The orchestrator can then compare and
# merge a complete result set, and the low confidence flows into the
# quality gates, which is where a degraded review gets caught.
#
# DESIGN DECISION: LLM service injected, not global.
# `using()` returns the same agent bound to a different model's service,
# which is how multi-model runs fan out without agents knowing about it.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import replace

from pr_consensus.agents.classification import (
    classify_finding_type,
    is_domain_specific,
)
from pr_consensus.agents.prompts import build_analysis_prompt
from pr_consensus.config import Settings, get_settings
from pr_consensus.models.analysis import (
    BROAD_SCOPE,
    AnalysisType,
    Effort,
    Feedback,
    Finding,
    IncompleteAnalysis,
    LowConfidence,
    MissingEvidence,
    PRContext,
    Priority,
    Recommendation,
    RiskLevel,
    Severity,
    SpecializedAnalysis,
    VagueRecommendation,
    ValidationResult,
    new_item_id,
    risk_level_for,
)
from pr_consensus.services.analysis_llm import LLMAnalysisService

logger = logging.getLogger(__name__)

ANALYSIS_ERROR_TYPE = "analysis-error"

# Self-validation penalties, subtracted from settings.agent_base_confidence.
_PENALTY_NO_FINDINGS = 0.2
_PENALTY_NO_RECOMMENDATIONS = 0.2
_PENALTY_GENERIC_TYPES = 0.1
_PENALTY_VAGUE_RECOMMENDATIONS = 0.1
_PENALTY_SPARSE = 0.05
_MIN_SCORE = 0.1


class AnalysisAgent:
    """A domain-specific reviewer backed by one LLM analysis service."""

    def __init__(
        self,
        analysis_type: AnalysisType,
        llm_service: LLMAnalysisService,
        settings: Settings | None = None,
    ) -> None:
        self._analysis_type = AnalysisType(analysis_type)
        self._llm = llm_service
        self._settings = settings or get_settings()

    def __repr__(self) -> str:
        return (
            f"AnalysisAgent({self._analysis_type.value}, "
            f"model={self.model_name})"
        )

    def get_analysis_type(self) -> AnalysisType:
        return self._analysis_type

    @property
    def model_name(self) -> str:
        return self._llm.model_name

    def using(self, llm_service: LLMAnalysisService) -> AnalysisAgent:
        """The same agent, bound to another model's analysis service."""
        return AnalysisAgent(self._analysis_type, llm_service, self._settings)

    # -----------------------------------------------------------------------
    # analyze
    # -----------------------------------------------------------------------

    async def analyze(
        self,
        context: PRContext,
        prompt_override: str | None = None,
    ) -> SpecializedAnalysis:
        """
        Review `context` from this agent's domain.

        Never raises for LLM-side problems; those produce the fallback
        analysis instead (see fallback_analysis).
        """
        timeout = self._settings.agent_timeout_seconds
        prompt = prompt_override or build_analysis_prompt(
            self._analysis_type, context,
        )

        try:
            result = await asyncio.wait_for(
                self._llm.generate_analysis(
                    self._analysis_type, context, prompt,
                ),
                timeout=timeout,
            )
            findings = tuple(
                replace(
                    f,
                    type=classify_finding_type(
                        self._analysis_type, f.message, f.type,
                    ),
                )
                for f in result.findings
            )
            recommendations = tuple(
                self._with_guidance(r, context)
                for r in result.recommendations
            )
            analysis = SpecializedAnalysis(
                analysis_type=self._analysis_type,
                findings=findings,
                recommendations=recommendations,
                risk_level=risk_level_for(findings),
                confidence=result.confidence,
                summary=result.analysis,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "%s analysis timed out after %.1fs (model=%s)",
                self._analysis_type.value, timeout, self.model_name,
            )
            return self.fallback_analysis(f"timed out after {timeout:g}s")
        except Exception as e:
            logger.warning(
                "%s analysis failed (model=%s): %s",
                self._analysis_type.value, self.model_name, e,
            )
            return self.fallback_analysis(str(e) or type(e).__name__)

        logger.info(
            "%s analysis complete: findings=%d, recommendations=%d, "
            "confidence=%.2f, risk=%s",
            self._analysis_type.value, len(analysis.findings),
            len(analysis.recommendations), analysis.confidence,
            analysis.risk_level.value,
        )
        return analysis

    def fallback_analysis(self, error: str) -> SpecializedAnalysis:
        """The fixed low-confidence analysis substituted for a failed call."""
        prefix = self._analysis_type.value
        confidence = self._settings.fallback_confidence

        finding = Finding(
            id=new_item_id(prefix, "error"),
            type=ANALYSIS_ERROR_TYPE,
            severity=Severity.MEDIUM,
            message=f"{prefix} analysis could not be completed: {error}",
            file=BROAD_SCOPE,
            evidence=(error,),
            confidence=confidence,
            source_model=self.model_name,
            supporting_models=(self.model_name,),
        )
        recommendation = Recommendation(
            id=new_item_id(prefix, "rec"),
            priority=Priority.SHOULD_FIX,
            category="analysis",
            description=f"Review {prefix} aspects manually",
            rationale="Automated analysis was not available",
            implementation=(
                f"Perform a manual {prefix} review of the changed files"
            ),
            effort=Effort.MEDIUM,
            confidence=confidence,
            related_finding_ids=(finding.id,),
        )
        return SpecializedAnalysis(
            analysis_type=self._analysis_type,
            findings=(finding,),
            recommendations=(recommendation,),
            risk_level=RiskLevel.MEDIUM,
            confidence=confidence,
            summary=f"{prefix} analysis unavailable: {error}",
            fallback_reason=error,
        )

    @staticmethod
    def _with_guidance(
        recommendation: Recommendation,
        context: PRContext,
    ) -> Recommendation:
        if recommendation.implementation.strip():
            return recommendation
        return replace(
            recommendation,
            implementation=(
                f"Implementation guidance for {context.language}/"
                f"{context.framework}: {recommendation.description}"
            ),
        )

    # -----------------------------------------------------------------------
    # validate
    # -----------------------------------------------------------------------

    def validate(self, analysis: SpecializedAnalysis) -> ValidationResult:
        """Score the structural quality of an analysis."""
        errors: list[str] = []
        warnings: list[str] = []
        score = self._settings.agent_base_confidence

        if not analysis.findings:
            errors.append("No findings identified")
            score -= _PENALTY_NO_FINDINGS
        elif not any(
            is_domain_specific(self._analysis_type, f.type)
            for f in analysis.findings
        ):
            warnings.append(
                f"No {self._analysis_type.value}-specific finding types"
            )
            score -= _PENALTY_GENERIC_TYPES

        if not analysis.recommendations:
            errors.append("No recommendations provided")
            score -= _PENALTY_NO_RECOMMENDATIONS
        else:
            detailed = sum(
                1 for r in analysis.recommendations
                if len(r.implementation.strip()) > 10
            )
            if detailed < len(analysis.recommendations) * 0.5:
                warnings.append("Most recommendations lack implementation detail")
                score -= _PENALTY_VAGUE_RECOMMENDATIONS

        if len(analysis.findings) + len(analysis.recommendations) < 3:
            warnings.append("Analysis is sparse")
            score -= _PENALTY_SPARSE

        unsupported = sum(1 for f in analysis.findings if not f.evidence)
        if unsupported:
            warnings.append(f"{unsupported} finding(s) without evidence")

        if analysis.confidence < 0.5:
            warnings.append(f"Low confidence ({analysis.confidence:.2f})")

        return ValidationResult(
            is_valid=not errors,
            errors=tuple(errors),
            warnings=tuple(warnings),
            score=round(max(score, _MIN_SCORE), 6),
        )

    # -----------------------------------------------------------------------
    # refine
    # -----------------------------------------------------------------------

    def refine(
        self,
        analysis: SpecializedAnalysis,
        feedback: Iterable[Feedback],
    ) -> SpecializedAnalysis:
        """
        Apply feedback items to an analysis, returning a new analysis.

        Items targeting ids that don't exist in `analysis` are ignored.
        The aggregate confidence never decreases.
        """
        findings = list(analysis.findings)
        recommendations = list(analysis.recommendations)
        confidence = analysis.confidence
        delta = self._settings.refinement_confidence_delta

        for item in feedback:
            finding_idx = _indexes(findings, item.target_id)
            rec_idx = _indexes(recommendations, item.target_id)
            if not finding_idx and not rec_idx:
                logger.debug(
                    "Ignoring %s feedback for unknown target %s",
                    item.kind, item.target_id,
                )
                continue

            if isinstance(item, MissingEvidence):
                for i in finding_idx:
                    findings[i] = replace(
                        findings[i], evidence=findings[i].evidence + (item.evidence,),
                    )
            elif isinstance(item, VagueRecommendation):
                for i in rec_idx:
                    recommendations[i] = replace(
                        recommendations[i],
                        implementation=_append_text(
                            recommendations[i].implementation,
                            item.implementation,
                        ),
                    )
            elif isinstance(item, LowConfidence):
                for i in finding_idx:
                    findings[i] = replace(
                        findings[i],
                        confidence=_raise_confidence(findings[i].confidence, delta),
                    )
                for i in rec_idx:
                    recommendations[i] = replace(
                        recommendations[i],
                        confidence=_raise_confidence(
                            recommendations[i].confidence, delta,
                        ),
                    )
                confidence = _raise_confidence(confidence, delta)
            elif isinstance(item, IncompleteAnalysis):
                for i in finding_idx:
                    findings[i] = replace(
                        findings[i], evidence=findings[i].evidence + (item.note,),
                    )
                for i in rec_idx:
                    recommendations[i] = replace(
                        recommendations[i],
                        implementation=_append_text(
                            recommendations[i].implementation, item.note,
                        ),
                    )

        return replace(
            analysis,
            findings=tuple(findings),
            recommendations=tuple(recommendations),
            risk_level=risk_level_for(findings),
            confidence=max(confidence, analysis.confidence),
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _indexes(items: Sequence[Finding | Recommendation], target_id: str) -> list[int]:
    return [i for i, item in enumerate(items) if item.id == target_id]


def _append_text(existing: str, addition: str) -> str:
    if not existing.strip():
        return addition
    return f"{existing.rstrip()} {addition}"


def _raise_confidence(value: float, delta: float) -> float:
    return min(1.0, round(value + delta, 6))


def create_agents(
    analysis_types: Iterable[AnalysisType] | None,
    llm_service: LLMAnalysisService,
    settings: Settings | None = None,
) -> list[AnalysisAgent]:
    """
    Build one agent per analysis type, in the given order.

    `None` means every AnalysisType.
    """
    types = list(analysis_types) if analysis_types is not None else list(AnalysisType)
    return [AnalysisAgent(t, llm_service, settings) for t in types]
