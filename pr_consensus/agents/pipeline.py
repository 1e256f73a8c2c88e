# =============================================================================
# Review Pipeline — Analysis → Refinement → Quality Gates
# =============================================================================
#
#   run_review(context, agents)
#     1. conduct_multi_model_analysis   (fan-out, cross-validate, consensus)
#     2. iterative_refinement           (bounded critique/refine loop)
#     3. validate_results               (quality gates)
#     4. failed? ensure_standards → re-validate
#     5. still failed? one more refinement round guided by the gate's
#        improvement recommendations (up to settings.max_feedback_rounds)
#
# DESIGN DECISION: Orchestration errors propagate, agent errors never do.
# Agents degrade to fallback analyses inside the orchestrator. A bad
# context or an empty agent list is a caller bug and surfaces here as
# ValueError, which the API maps onto an HTTP status.
#
# DESIGN DECISION: max_iterations=0 disables refinement entirely.
# That includes the gate-driven feedback rounds; the caller asked for the
# raw multi-model result plus standards repair.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, replace

from pr_consensus.agents.analysis_agent import AnalysisAgent
from pr_consensus.agents.orchestrator import MultiModelOrchestrator
from pr_consensus.config import Settings, get_settings
from pr_consensus.models.analysis import PRContext
from pr_consensus.models.review import QualityValidation, RefinedAnalysisResult
from pr_consensus.services.consensus import ConsensusResult
from pr_consensus.services.quality_gates import QualityGatesService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineResult:
    validation: QualityValidation
    consensus: ConsensusResult
    refined: RefinedAnalysisResult
    feedback_rounds: int = 0

    @property
    def passed(self) -> bool:
        return self.validation.passes_gates


async def run_review(
    context: PRContext,
    agents: Sequence[AnalysisAgent],
    *,
    orchestrator: MultiModelOrchestrator | None = None,
    quality_gates: QualityGatesService | None = None,
    max_iterations: int | None = None,
    settings: Settings | None = None,
) -> PipelineResult:
    """
    Run the full review pipeline for one pull request.

    Args:
        context: The change under review.
        agents: One agent per analysis type to run.
        orchestrator: Defaults to one built from `settings`.
        quality_gates: Defaults to one built from `settings`.
        max_iterations: Refinement round cap; None uses
            settings.max_refinement_iterations.
        settings: Defaults to get_settings().

    Raises:
        ValueError: If the context is malformed or `agents` is empty.
    """
    settings = settings or get_settings()
    orchestrator = orchestrator or MultiModelOrchestrator(settings)
    gates = quality_gates or QualityGatesService(settings)

    analysis = await orchestrator.conduct_multi_model_analysis(context, agents)
    refined = await orchestrator.iterative_refinement(
        analysis, context, max_iterations=max_iterations,
    )
    validation = gates.validate_results(refined)

    feedback_budget = 0 if max_iterations == 0 else settings.max_feedback_rounds
    feedback_rounds = 0
    while True:
        if not validation.passes_gates:
            refined = gates.ensure_standards(refined, validation)
            validation = gates.validate_results(refined)
        if validation.passes_gates or feedback_rounds >= feedback_budget:
            break

        feedback_rounds += 1
        logger.info(
            "Quality gates failed; feedback round %d/%d with %d improvement(s)",
            feedback_rounds, feedback_budget, len(validation.improvements),
        )
        extra = await orchestrator.iterative_refinement(
            refined.final_results, context,
            max_iterations=1, guidance=validation.improvements,
        )
        refined = _extend(refined, extra)
        validation = gates.validate_results(refined)

    logger.info(
        "Review complete: pr=%r, gates=%s, overall=%.3f, iterations=%d, "
        "feedback_rounds=%d",
        context.title, "PASSED" if validation.passes_gates else "FAILED",
        validation.overall_score, refined.total_iterations, feedback_rounds,
    )

    return PipelineResult(
        validation=validation,
        consensus=refined.final_results.consensus,
        refined=refined,
        feedback_rounds=feedback_rounds,
    )


def _extend(
    refined: RefinedAnalysisResult,
    extra: RefinedAnalysisResult,
) -> RefinedAnalysisResult:
    """Append the rounds of `extra` to `refined`, continuing the numbering."""
    offset = refined.total_iterations
    history = refined.history + tuple(
        replace(record, iteration=record.iteration + offset)
        for record in extra.history
    )
    return RefinedAnalysisResult(
        final_results=extra.final_results,
        history=history,
        total_iterations=len(history),
        final_score=extra.final_score,
    )
