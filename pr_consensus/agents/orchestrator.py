# =============================================================================
# Multi-Model Orchestrator — Fan-Out, Cross-Validation, Consensus
# =============================================================================
#
# Runs every analysis agent over the same PR (optionally once per review
# model), then reconciles the results:
#
#   PRContext ──▶ fan-out (agent × model) ──▶ AgentResult[]
#                 + plugins (concurrently)  ──▶ auxiliary findings
#             ──▶ cross-validate same-type  ──▶ agreement, conflicts
#                 pairs across models
#             ──▶ consensus                 ──▶ merged findings/recs
#
# DESIGN DECISION: asyncio.gather() for the fan-out.
# Every leg is an independent LLM call, so the review takes as long as
# the slowest agent rather than the sum of all of them. Aggregation only
# happens after every leg has resolved; the legs share no mutable state.
#
# DESIGN DECISION: Per-leg failure isolation.
# Agents already return a fallback analysis for LLM failures. Anything
# else escaping a leg (a bug, an unexpected exception type) is caught
# here and converted into that agent's fallback too. One broken agent
# degrades the review; it never aborts it.
#
# DESIGN DECISION: Malformed input is NOT isolated.
# A context that isn't a PRContext, or an empty agent list, is a caller
# bug and raises ValueError before any LLM call is made.
#
# DESIGN DECISION: Multi-model via service binding.
# Each review model gets its own LLMAnalysisService; `agent.using(service)`
# binds the same agent to it. Agents don't know how many models exist.
# =============================================================================

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Mapping, Sequence
from statistics import mean
from typing import TYPE_CHECKING

from pr_consensus.agents.analysis_agent import AnalysisAgent
from pr_consensus.config import Settings, get_settings
from pr_consensus.models.analysis import AgentResult, Finding, PRContext
from pr_consensus.models.review import (
    CrossValidationResult,
    MultiModelAnalysisResult,
    RefinedAnalysisResult,
)
from pr_consensus.services.analysis_llm import LLMAnalysisService
from pr_consensus.services.consensus import ConsensusBuilder
from pr_consensus.services.cross_validator import CrossValidator
from pr_consensus.services.llm import LLMProvider, create_provider_from_id
from pr_consensus.services.plugins import Plugin, run_plugins

if TYPE_CHECKING:
    from pr_consensus.agents.refinement import RefinementEngine

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE = 0.8
UNCERTAIN_CONFIDENCE = 0.5


class MultiModelOrchestrator:
    """
    Coordinates agents, cross-validation and consensus for one review.

    Args:
        settings: Thresholds and review models. Defaults to get_settings().
        model_services: Explicit provider id → analysis service mapping.
            When omitted, one service per `settings.review_models` entry is
            built. Empty means "run each agent once with its own service".
        plugins: Auxiliary per-file checks run alongside the agents.
        plugin_llm: Provider handed to plugins with `uses_llm`.
        critic: Provider for the refinement engine's LLM critique.
        refinement_engine: Engine used by iterative_refinement(); built
            lazily when omitted.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        model_services: Mapping[str, LLMAnalysisService] | None = None,
        plugins: Sequence[Plugin] = (),
        plugin_llm: LLMProvider | None = None,
        critic: LLMProvider | None = None,
        cross_validator: CrossValidator | None = None,
        consensus_builder: ConsensusBuilder | None = None,
        refinement_engine: RefinementEngine | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        if model_services is None:
            model_services = {
                provider_id: LLMAnalysisService(
                    create_provider_from_id(provider_id, settings=self._settings),
                )
                for provider_id in self._settings.review_models
            }
        self._model_services = dict(model_services)
        self._plugins = list(plugins)
        self._plugin_llm = plugin_llm
        self._critic = critic
        self._cross_validator = cross_validator or CrossValidator(self._settings)
        self._consensus = consensus_builder or ConsensusBuilder(self._settings)
        self._refinement = refinement_engine

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def cross_validator(self) -> CrossValidator:
        return self._cross_validator

    # -----------------------------------------------------------------------
    # Phase 1: fan-out
    # -----------------------------------------------------------------------

    async def conduct_multi_model_analysis(
        self,
        context: PRContext,
        agents: Sequence[AnalysisAgent],
    ) -> MultiModelAnalysisResult:
        """
        Run every agent (× every review model) and reconcile the results.

        Raises:
            ValueError: If `context` is not a PRContext or `agents` is empty.
        """
        if not isinstance(context, PRContext):
            raise ValueError(
                f"Expected a PRContext, got {type(context).__name__}"
            )
        if not agents:
            raise ValueError("At least one analysis agent is required")

        started = time.monotonic()
        legs = self._plan_legs(agents)
        logger.info(
            "Starting multi-model analysis: pr=%r, agents=%d, models=%d, legs=%d",
            context.title, len(agents), max(len(self._model_services), 1),
            len(legs),
        )

        results, auxiliary = await asyncio.gather(
            asyncio.gather(*(self._run_leg(agent, context) for agent in legs)),
            run_plugins(self._plugins, context, self._plugin_llm),
        )

        elapsed = int((time.monotonic() - started) * 1000)
        return self.assemble(
            results, auxiliary, agents=tuple(agents), processing_time_ms=elapsed,
        )

    def _plan_legs(self, agents: Sequence[AnalysisAgent]) -> list[AnalysisAgent]:
        if not self._model_services:
            return list(agents)
        return [
            agent.using(service)
            for agent in agents
            for service in self._model_services.values()
        ]

    async def _run_leg(
        self,
        agent: AnalysisAgent,
        context: PRContext,
    ) -> AgentResult:
        start = time.monotonic()
        try:
            analysis = await agent.analyze(context)
        except Exception as e:
            logger.warning(
                "Agent %s (model=%s) raised unexpectedly: %s",
                agent.get_analysis_type().value, agent.model_name, e,
            )
            analysis = agent.fallback_analysis(str(e) or type(e).__name__)

        return AgentResult(
            agent_type=agent.get_analysis_type(),
            model_used=agent.model_name,
            analysis=analysis,
            processing_time_ms=int((time.monotonic() - start) * 1000),
            error=analysis.fallback_reason,
        )

    # -----------------------------------------------------------------------
    # Phase 2 + 3: cross-validation and consensus
    # -----------------------------------------------------------------------

    def assemble(
        self,
        individual_results: Sequence[AgentResult],
        auxiliary_findings: Sequence[Finding] = (),
        *,
        agents: tuple[AnalysisAgent, ...] = (),
        processing_time_ms: int = 0,
    ) -> MultiModelAnalysisResult:
        """Cross-validate and merge a given set of agent results."""
        results = tuple(individual_results)
        cross_validation = self.cross_validate(results)
        consensus = self._consensus.build(
            results,
            cross_validation.overall_agreement
            if cross_validation.comparisons else None,
            auxiliary_findings,
            cross_validation=cross_validation,
        )
        quality = consensus.quality_score

        logger.info(
            "Analysis assembled: results=%d, comparisons=%d, agreement=%.3f, "
            "quality=%.3f",
            len(results), len(cross_validation.comparisons),
            cross_validation.overall_agreement, quality,
        )

        return MultiModelAnalysisResult(
            individual_results=results,
            cross_validation=cross_validation,
            consensus=consensus,
            auxiliary_findings=tuple(auxiliary_findings),
            processing_time_ms=processing_time_ms,
            agents=agents,
        )

    def cross_validate(
        self,
        results: Sequence[AgentResult],
    ) -> CrossValidationResult:
        """Compare same-type result pairs (every pair when configured so)."""
        pairs = itertools.combinations(results, 2)
        if self._settings.cross_validate_same_type_only:
            pairs = (
                (r1, r2) for r1, r2 in pairs if r1.agent_type == r2.agent_type
            )

        comparisons = tuple(
            self._cross_validator.compare_results(r1, r2) for r1, r2 in pairs
        )
        overall = (
            mean(c.agreement_score for c in comparisons) if comparisons else 1.0
        )

        all_findings = [f for r in results for f in r.findings]
        return CrossValidationResult(
            comparisons=comparisons,
            overall_agreement=overall,
            high_confidence_findings=tuple(
                f for f in all_findings if f.confidence > HIGH_CONFIDENCE
            ),
            uncertain_findings=tuple(
                f for f in all_findings if f.confidence < UNCERTAIN_CONFIDENCE
            ),
        )

    # -----------------------------------------------------------------------
    # Phase 4: refinement
    # -----------------------------------------------------------------------

    async def iterative_refinement(
        self,
        results: MultiModelAnalysisResult,
        context: PRContext,
        max_iterations: int | None = None,
        guidance: Sequence[str] = (),
    ) -> RefinedAnalysisResult:
        """Delegate to the refinement engine (see agents/refinement.py)."""
        if self._refinement is None:
            from pr_consensus.agents.refinement import RefinementEngine

            self._refinement = RefinementEngine(
                self, settings=self._settings, critic=self._critic,
            )

        return await self._refinement.refine(
            results, context, max_iterations=max_iterations, guidance=guidance,
        )

