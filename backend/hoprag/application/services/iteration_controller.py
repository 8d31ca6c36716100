"""Iteration controller — bounded analyze → critique → re-analyze loop.

Retrieval runs once per question; only the analysis is retried, with the
critique passed back as feedback. The loop ends when the critique accepts
the narrative, the iteration cap is reached, the wall-clock budget runs
out, or a collaborator fails.
"""

import logging

from hoprag.application.interfaces.analyst import Analyst
from hoprag.application.interfaces.critic import Critic
from hoprag.application.services.plan_orchestrator import PlanOrchestrator
from hoprag.domain.entities.iteration import (
    TERMINAL_STATES,
    CritiqueResult,
    IterationOutcome,
    IterationState,
)
from hoprag.domain.entities.request_context import RequestContext
from hoprag.domain.entities.retrieval import RetrievalPlan
from hoprag.infrastructure.logging.colored_logger import RetrievalLogger, RetrievalStage

logger = logging.getLogger(__name__)
rlog = RetrievalLogger("IterationController")

# Confidence multiplier for answers that never passed critique.
_DEGRADED_CONFIDENCE_FACTOR = 0.5


class IterationController:
    """Drives plan execution, analysis and critique for one question."""

    def __init__(
        self,
        orchestrator: PlanOrchestrator,
        analyst: Analyst,
        critic: Critic | None = None,
        *,
        max_iterations: int = 3,
    ):
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self._orchestrator = orchestrator
        self._analyst = analyst
        self._critic = critic
        self._max_iterations = max_iterations

    async def run(
        self,
        question: str,
        plan: RetrievalPlan,
        context: RequestContext,
    ) -> IterationOutcome:
        outcome = IterationOutcome(state=IterationState.PLANNED)
        outcome.history.append(IterationState.PLANNED)

        if self._out_of_time(context, outcome):
            return outcome

        outcome.execution = await self._orchestrator.execute(
            plan, context.tenant_id, context=context
        )
        self._transition(outcome, IterationState.PLAN_EXECUTED)
        await context.notify("plan_executed", documents=len(outcome.execution.flattened_documents))

        feedback: CritiqueResult | None = None
        while True:
            if self._out_of_time(context, outcome):
                return outcome

            outcome.iterations += 1
            try:
                with rlog.timed_step(RetrievalStage.ANALYZE, f"iteration {outcome.iterations}"):
                    outcome.narrative = await self._analyst.analyze(
                        question, outcome.execution, feedback
                    )
            except Exception as exc:
                outcome.errors.append(f"analysis failed: {exc}")
                outcome.confidence = 0.0
                self._transition(outcome, IterationState.FAILED)
                return outcome
            self._transition(outcome, IterationState.ANALYZED)
            await context.notify("analyzed", iteration=outcome.iterations)

            if not plan.requires_critique or self._critic is None:
                outcome.confidence = outcome.execution.confidence
                self._transition(outcome, IterationState.DONE)
                return outcome

            if self._out_of_time(context, outcome):
                return outcome

            try:
                with rlog.timed_step(RetrievalStage.CRITIQUE, f"iteration {outcome.iterations}"):
                    critique = await self._critic.critique(
                        outcome.narrative, outcome.execution.flattened_documents
                    )
            except Exception as exc:
                # The unchecked narrative is still the best answer available.
                outcome.errors.append(f"critique failed: {exc}")
                outcome.confidence = outcome.execution.confidence * _DEGRADED_CONFIDENCE_FACTOR
                self._transition(outcome, IterationState.DONE)
                return outcome

            outcome.critique = critique
            self._transition(outcome, IterationState.CRITIQUED)
            await context.notify(
                "critiqued", iteration=outcome.iterations, valid=critique.is_valid,
                issues=len(critique.issues),
            )

            if critique.is_valid:
                outcome.confidence = critique.confidence
                self._transition(outcome, IterationState.DONE)
                return outcome

            if outcome.iterations >= self._max_iterations:
                outcome.confidence = critique.confidence * _DEGRADED_CONFIDENCE_FACTOR
                self._transition(outcome, IterationState.MAX_ITERATIONS_REACHED)
                logger.info(
                    "Critique still failing after %d iterations; returning best effort",
                    outcome.iterations,
                )
                return outcome

            feedback = critique

    def _out_of_time(self, context: RequestContext, outcome: IterationOutcome) -> bool:
        if not context.budget_exceeded():
            return False
        outcome.errors.append(
            f"time budget of {context.time_budget_seconds:.0f}s exceeded after "
            f"{context.elapsed_seconds:.1f}s"
        )
        outcome.confidence = self._best_confidence(outcome) * _DEGRADED_CONFIDENCE_FACTOR
        self._transition(outcome, IterationState.BUDGET_EXCEEDED)
        return True

    @staticmethod
    def _best_confidence(outcome: IterationOutcome) -> float:
        """Confidence of the latest answer available, before any degradation."""
        if outcome.narrative is None or outcome.execution is None:
            return 0.0
        if outcome.critique is not None:
            return outcome.critique.confidence
        return outcome.execution.confidence

    @staticmethod
    def _transition(outcome: IterationOutcome, state: IterationState) -> None:
        outcome.state = state
        outcome.history.append(state)
        if state in (IterationState.FAILED, IterationState.BUDGET_EXCEEDED):
            rlog.step_error(RetrievalStage.ERROR, f"Iteration loop ended: {state.value}")
        if state in TERMINAL_STATES:
            rlog.stats(
                state=state.value,
                iterations=outcome.iterations,
                confidence=f"{outcome.confidence:.2f}",
            )
