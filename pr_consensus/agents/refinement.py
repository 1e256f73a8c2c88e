# =============================================================================
# Refinement Engine — Critique → Refine → Validate as a LangGraph Loop
# =============================================================================
#
# Improves a multi-model review in bounded rounds. Each round:
#
#   1. critique — find what is weak: missing analysis types, low agreement,
#                 findings without evidence, vague recommendations,
#                 low-confidence items (plus an optional LLM critique)
#   2. refine   — hand typed feedback to the agent that owns each target,
#                 then re-run cross-validation and consensus
#   3. validate — re-score with the quality gates and decide to stop
#
# GRAPH TOPOLOGY:
#   START ──▶ (budget 0?) ──▶ END
#         └─▶ critique ──▶ refine ──▶ validate ──▶ (converged/budget?) ──▶ END
#                ▲                                        │
#                └────────────────────────────────────────┘
#
# DESIGN DECISION: Conditional edges in the graph, not a Python loop.
# The loop decision is the interesting part of refinement, so it lives in
# the graph where LangGraph can trace it. The iteration cap bounds the
# loop; the graph's recursion_limit is derived from it as a second stop.
#
# DESIGN DECISION: Graph compiled once at module level.
# The engine instance travels in the state (like a provider override)
# rather than being closed over, so one compiled graph serves every
# engine. No checkpointer is configured, so non-serialisable state is fine.
#
# DESIGN DECISION: Refinement never re-prompts the reviewers.
# Feedback is applied by the agents' deterministic `refine()`. The only
# LLM call in a round is the optional critique, and its failure is
# logged and ignored: the rule-based critique still drives the round.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from pr_consensus.agents.prompts import CRITIQUE_SYSTEM_PROMPT, build_critique_prompt
from pr_consensus.config import Settings, get_settings
from pr_consensus.models.analysis import (
    AgentResult,
    AnalysisType,
    Feedback,
    IncompleteAnalysis,
    LowConfidence,
    MissingEvidence,
    PRContext,
    Severity,
    VagueRecommendation,
)
from pr_consensus.models.review import (
    Critique,
    MultiModelAnalysisResult,
    RefinedAnalysisResult,
    RefinementIteration,
)
from pr_consensus.services.analysis_llm import MalformedResponseError, extract_json
from pr_consensus.services.llm import LLMProvider
from pr_consensus.services.quality_gates import QualityGatesService

if TYPE_CHECKING:
    from pr_consensus.agents.orchestrator import MultiModelOrchestrator

logger = logging.getLogger(__name__)

LOW_CONFIDENCE = 0.5

# Graph steps per round (critique, refine, validate) and headroom for the
# entry branch.
_STEPS_PER_ROUND = 3
_RECURSION_HEADROOM = 5


# ---------------------------------------------------------------------------
# Graph State Schema
# ---------------------------------------------------------------------------


class RefinementState(TypedDict, total=False):
    """
    State that flows through the refinement graph.

    Uses total=False so nodes only return the keys they update.
    """

    # --- Input (set by RefinementEngine.refine) ---
    # RefinementEngine instance. Typed Any: the graph is built before the
    # class is defined.
    engine: Any
    context: PRContext
    guidance: list[str]
    max_iterations: int

    # --- Loop state ---
    results: MultiModelAnalysisResult
    score: float
    iteration: int
    critique: Critique
    history: list[RefinementIteration]
    converged: bool


# ---------------------------------------------------------------------------
# Node Functions
# ---------------------------------------------------------------------------


async def critique_node(state: RefinementState) -> dict:
    iteration = state.get("iteration", 0) + 1
    critique = await state["engine"].critique(
        state["results"], state["context"], state.get("guidance", ()),
    )
    logger.info(
        "Refinement round %d critique: complete=%s, blind_spots=%d, "
        "feedback=%d",
        iteration, critique.is_complete, len(critique.blind_spots),
        len(critique.feedback),
    )
    return {"critique": critique, "iteration": iteration}


async def refine_node(state: RefinementState) -> dict:
    critique = state["critique"]
    if not critique.feedback:
        return {}
    return {
        "results": state["engine"].apply_feedback(
            state["results"], critique.feedback,
        ),
    }


async def validate_node(state: RefinementState) -> dict:
    engine = state["engine"]
    critique = state["critique"]
    score_after = engine.score(state["results"])
    record = RefinementIteration(
        iteration=state["iteration"],
        critique=critique,
        score_before=state["score"],
        score_after=score_after,
    )
    converged = (
        critique.is_complete
        or not critique.feedback
        or record.quality_improvement < engine.settings.convergence_epsilon
    )
    logger.info(
        "Refinement round %d validated: score %.3f → %.3f, converged=%s",
        record.iteration, record.score_before, record.score_after, converged,
    )
    return {
        "score": score_after,
        "history": [*state.get("history", []), record],
        "converged": converged,
    }


def _route_start(state: RefinementState) -> str:
    return "critique" if state["max_iterations"] > 0 else END


def _route_after_validate(state: RefinementState) -> str:
    if state.get("converged") or state["iteration"] >= state["max_iterations"]:
        return END
    return "critique"


# ---------------------------------------------------------------------------
# Graph Assembly
# ---------------------------------------------------------------------------

_builder = StateGraph(RefinementState)
_builder.add_node("critique", critique_node)
_builder.add_node("refine", refine_node)
_builder.add_node("validate", validate_node)

_builder.add_conditional_edges(START, _route_start, ["critique", END])
_builder.add_edge("critique", "refine")
_builder.add_edge("refine", "validate")
_builder.add_conditional_edges("validate", _route_after_validate, ["critique", END])

graph = _builder.compile()


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class RefinementEngine:
    """
    Runs the refinement graph for one orchestrator.

    Args:
        orchestrator: Used to re-run cross-validation and consensus after
            feedback has been applied.
        settings: Iteration cap, convergence epsilon, critique switch.
        critic: Provider for the optional LLM critique. None disables it.
        quality_gates: Scorer for the validate step.
    """

    def __init__(
        self,
        orchestrator: MultiModelOrchestrator,
        settings: Settings | None = None,
        critic: LLMProvider | None = None,
        quality_gates: QualityGatesService | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._settings = settings or get_settings()
        self._critic = critic
        self._gates = quality_gates or QualityGatesService(self._settings)

    @property
    def settings(self) -> Settings:
        return self._settings

    async def refine(
        self,
        results: MultiModelAnalysisResult,
        context: PRContext,
        max_iterations: int | None = None,
        guidance: Sequence[str] = (),
    ) -> RefinedAnalysisResult:
        """
        Refine `results` for at most `max_iterations` rounds.

        With max_iterations=0 the input comes back unchanged and no round
        is recorded.
        """
        if max_iterations is None:
            max_iterations = self._settings.max_refinement_iterations
        max_iterations = max(max_iterations, 0)

        initial_state: RefinementState = {
            "engine": self,
            "context": context,
            "guidance": list(guidance),
            "max_iterations": max_iterations,
            "results": results,
            "score": self.score(results),
            "iteration": 0,
            "history": [],
        }

        logger.info(
            "Starting refinement: max_iterations=%d, initial_score=%.3f",
            max_iterations, initial_state["score"],
        )

        final_state = await graph.ainvoke(
            initial_state,
            config={
                "recursion_limit": (
                    _STEPS_PER_ROUND * max_iterations + _RECURSION_HEADROOM
                ),
            },
        )

        history = tuple(final_state.get("history", []))
        refined = RefinedAnalysisResult(
            final_results=final_state["results"],
            history=history,
            total_iterations=len(history),
            final_score=final_state["score"],
        )
        logger.info(
            "Refinement complete: iterations=%d, final_score=%.3f",
            refined.total_iterations, refined.final_score,
        )
        return refined

    def score(self, results: MultiModelAnalysisResult) -> float:
        return self._gates.evaluate(results).overall_score

    # -----------------------------------------------------------------------
    # critique
    # -----------------------------------------------------------------------

    async def critique(
        self,
        results: MultiModelAnalysisResult,
        context: PRContext,
        guidance: Sequence[str] = (),
    ) -> Critique:
        """Rule-based critique, optionally enriched by the LLM critic."""
        feedback = self._rule_feedback(results)

        blind_spots = [
            f"No {t.value} analysis was performed"
            for t in AnalysisType if t not in results.analysis_types
        ]
        agreement = results.cross_validation.overall_agreement
        if agreement < self._settings.low_agreement_threshold:
            blind_spots.append(
                f"Low agreement between models ({agreement:.2f}); "
                "findings need independent confirmation"
            )
        blind_spots.extend(guidance)

        weak_assumptions = [
            conflict.description
            for comparison in results.cross_validation.comparisons
            for conflict in comparison.conflicts
            if conflict.severity == Severity.HIGH
        ]

        is_complete = not blind_spots and not feedback
        if self._critic is not None and self._settings.critique_with_llm:
            llm_critique = await self._llm_critique(results, context)
            if llm_critique is not None:
                is_complete = is_complete and llm_critique.is_complete
                blind_spots.extend(llm_critique.blind_spots)
                weak_assumptions.extend(llm_critique.weak_assumptions)
                feedback.extend(llm_critique.feedback)

        return Critique(
            is_complete=is_complete,
            blind_spots=tuple(dict.fromkeys(blind_spots)),
            weak_assumptions=tuple(dict.fromkeys(weak_assumptions)),
            feedback=tuple(feedback),
        )

    def _rule_feedback(self, results: MultiModelAnalysisResult) -> list[Feedback]:
        min_chars = self._settings.min_implementation_chars
        feedback: list[Feedback] = []
        seen: set[tuple] = set()

        def add(item: Feedback) -> None:
            key = (item.kind, item.scope, item.target_id)
            if key not in seen:
                seen.add(key)
                feedback.append(item)

        for result in results.individual_results:
            fallback = result.analysis.is_fallback
            scope = result.scope
            for f in result.findings:
                if not f.evidence:
                    add(MissingEvidence(
                        target_id=f.id, scope=scope,
                        evidence=(
                            f"Flagged by {result.model_used} at {f.location}: "
                            f"{f.message}"
                        ),
                    ))
                if f.confidence < LOW_CONFIDENCE and not fallback:
                    add(LowConfidence(target_id=f.id, scope=scope))
            for r in result.recommendations:
                if len(r.implementation.strip()) < min_chars:
                    add(VagueRecommendation(
                        target_id=r.id, scope=scope,
                        implementation=(
                            f"Apply the change ({r.description}) in the "
                            f"affected {r.category} code and cover it with a test."
                        ),
                    ))
                if r.confidence < LOW_CONFIDENCE and not fallback:
                    add(LowConfidence(target_id=r.id, scope=scope))
        return feedback

    async def _llm_critique(
        self,
        results: MultiModelAnalysisResult,
        context: PRContext,
    ) -> Critique | None:
        consensus = results.consensus
        prompt = build_critique_prompt(
            context, list(consensus.findings), list(consensus.recommendations),
        )
        try:
            response = await self._critic.complete(
                messages=[{"role": "user", "content": prompt}],
                system=CRITIQUE_SYSTEM_PROMPT,
            )
            payload = extract_json(response.content)
            if not isinstance(payload, dict):
                raise MalformedResponseError(
                    "Critique response is not a JSON object"
                )
            feedback = [
                IncompleteAnalysis(
                    target_id=str(item["target_id"]),
                    note=str(item.get("suggestion", "")).strip(),
                )
                for item in payload.get("deeper_investigation", [])
                if isinstance(item, dict) and item.get("target_id")
                and str(item.get("suggestion", "")).strip()
            ]
            return Critique(
                is_complete=bool(payload.get("is_complete", False)),
                blind_spots=tuple(str(s) for s in payload.get("blind_spots", [])),
                weak_assumptions=tuple(
                    str(s) for s in payload.get("weak_assumptions", [])
                ),
                feedback=tuple(feedback),
            )
        except Exception as e:
            logger.warning(
                "LLM critique failed, continuing with rule-based critique: %s", e,
            )
            return None

    # -----------------------------------------------------------------------
    # refine
    # -----------------------------------------------------------------------

    def apply_feedback(
        self,
        results: MultiModelAnalysisResult,
        feedback: Sequence[Feedback],
    ) -> MultiModelAnalysisResult:
        """
        Route feedback to the agents owning each target, then reassemble.

        Scoped items reach only the result that produced them. A result
        whose agent type has no agent attached is left as is.
        """
        agents = {a.get_analysis_type(): a for a in results.agents}
        refined: list[AgentResult] = []
        for result in results.individual_results:
            ids = {f.id for f in result.findings} | {
                r.id for r in result.recommendations
            }
            targeted = [
                item for item in feedback
                if item.target_id in ids
                and item.scope in (None, result.scope)
            ]
            agent = agents.get(result.agent_type)
            if not targeted or agent is None:
                if targeted:
                    logger.debug(
                        "No agent for %s; skipping %d feedback item(s)",
                        result.agent_type.value, len(targeted),
                    )
                refined.append(result)
                continue
            refined.append(
                replace(result, analysis=agent.refine(result.analysis, targeted)),
            )

        return self._orchestrator.assemble(
            refined,
            results.auxiliary_findings,
            agents=results.agents,
            processing_time_ms=results.processing_time_ms,
        )
