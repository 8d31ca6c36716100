"""Unit tests for IterationController — the analyze → critique → retry loop."""

import pytest

from hoprag.application.interfaces.analyst import Analyst
from hoprag.application.interfaces.critic import Critic
from hoprag.application.services.iteration_controller import IterationController
from hoprag.domain.entities.iteration import CritiqueResult, IterationState
from hoprag.domain.entities.request_context import RequestContext
from hoprag.domain.entities.retrieval import (
    PlanExecutionResult,
    RetrievalPlan,
    StepAction,
    StepResult,
    StepStatus,
)


# ── Fakes ────────────────────────────────────────────────────────────


class FakeOrchestrator:
    """Returns a fixed execution result with confidence 0.8."""

    def __init__(self):
        self.calls = 0

    async def execute(self, plan, tenant_id, *, context=None):
        self.calls += 1
        return PlanExecutionResult(
            step_results={
                "s1": StepResult(
                    "s1", StepAction.FETCH, "companies", StepStatus.COMPLETED,
                    documents=[{"id": "c1"}], ids=["c1"], confidence=0.8,
                )
            },
            flattened_documents=[{"id": "c1", "_collection": "companies"}],
        )


class FakeAnalyst(Analyst):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.feedback: list[CritiqueResult | None] = []

    async def analyze(self, question, execution, feedback=None):
        if self.fail:
            raise RuntimeError("model unavailable")
        self.feedback.append(feedback)
        return f"answer #{len(self.feedback)}"


class FakeCritic(Critic):
    """Returns the scripted verdicts in order, repeating the last one."""

    def __init__(self, *verdicts: CritiqueResult, fail: bool = False):
        self.verdicts = list(verdicts)
        self.fail = fail
        self.calls = 0

    async def critique(self, narrative, raw_data):
        self.calls += 1
        if self.fail:
            raise RuntimeError("critic timed out")
        return self.verdicts[min(self.calls, len(self.verdicts)) - 1]


class BudgetDrainingAnalyst(FakeAnalyst):
    """Uses up the request's whole time budget while analyzing."""

    def __init__(self, context: RequestContext):
        super().__init__()
        self.context = context

    async def analyze(self, question, execution, feedback=None):
        narrative = await super().analyze(question, execution, feedback)
        self.context.time_budget_seconds = 0
        return narrative


_REJECTED = CritiqueResult(is_valid=False, confidence=0.6, issues=["count is wrong"])
_ACCEPTED = CritiqueResult(is_valid=True, confidence=0.9)


def _make_plan(requires_critique: bool = True) -> RetrievalPlan:
    return RetrievalPlan(steps=[], requires_critique=requires_critique)


def _make_context(**kwargs) -> RequestContext:
    return RequestContext(tenant_id="t1", **kwargs)


# ── Tests ────────────────────────────────────────────────────────────


class TestIterationController:
    @pytest.mark.asyncio
    async def test_done_without_critique(self):
        critic = FakeCritic(_ACCEPTED)
        controller = IterationController(FakeOrchestrator(), FakeAnalyst(), critic)

        outcome = await controller.run("q", _make_plan(requires_critique=False), _make_context())

        assert outcome.state == IterationState.DONE
        assert outcome.narrative == "answer #1"
        assert outcome.iterations == 1
        assert outcome.confidence == pytest.approx(0.8)
        assert critic.calls == 0
        assert outcome.history == [
            IterationState.PLANNED,
            IterationState.PLAN_EXECUTED,
            IterationState.ANALYZED,
            IterationState.DONE,
        ]

    @pytest.mark.asyncio
    async def test_missing_critic_finishes_after_analysis(self):
        controller = IterationController(FakeOrchestrator(), FakeAnalyst())
        outcome = await controller.run("q", _make_plan(), _make_context())
        assert outcome.state == IterationState.DONE
        assert outcome.critique is None

    @pytest.mark.asyncio
    async def test_valid_critique_on_second_iteration(self):
        analyst = FakeAnalyst()
        orchestrator = FakeOrchestrator()
        controller = IterationController(orchestrator, analyst, FakeCritic(_REJECTED, _ACCEPTED))

        outcome = await controller.run("q", _make_plan(), _make_context())

        assert outcome.state == IterationState.DONE
        assert outcome.iterations == 2
        assert outcome.narrative == "answer #2"
        assert outcome.confidence == pytest.approx(0.9)
        # Retrieval runs once; only the analysis is retried, with feedback.
        assert orchestrator.calls == 1
        assert analyst.feedback == [None, _REJECTED]

    @pytest.mark.asyncio
    async def test_max_iterations_halves_confidence(self):
        critic = FakeCritic(_REJECTED)
        controller = IterationController(
            FakeOrchestrator(), FakeAnalyst(), critic, max_iterations=2
        )

        outcome = await controller.run("q", _make_plan(), _make_context())

        assert outcome.state == IterationState.MAX_ITERATIONS_REACHED
        assert outcome.iterations == 2
        assert critic.calls == 2
        assert outcome.narrative == "answer #2"
        assert outcome.critique is _REJECTED
        assert outcome.confidence == pytest.approx(0.3)

    @pytest.mark.asyncio
    async def test_critic_failure_keeps_narrative_with_degraded_confidence(self):
        controller = IterationController(
            FakeOrchestrator(), FakeAnalyst(), FakeCritic(fail=True)
        )

        outcome = await controller.run("q", _make_plan(), _make_context())

        assert outcome.state == IterationState.DONE
        assert outcome.narrative == "answer #1"
        assert outcome.confidence == pytest.approx(0.4)
        assert any("critique failed" in e for e in outcome.errors)

    @pytest.mark.asyncio
    async def test_analyst_failure_ends_in_failed(self):
        controller = IterationController(
            FakeOrchestrator(), FakeAnalyst(fail=True), FakeCritic(_ACCEPTED)
        )

        outcome = await controller.run("q", _make_plan(), _make_context())

        assert outcome.state == IterationState.FAILED
        assert outcome.narrative is None
        assert outcome.confidence == 0.0
        assert any("analysis failed" in e for e in outcome.errors)

    @pytest.mark.asyncio
    async def test_exhausted_budget_stops_before_retrieval(self):
        orchestrator = FakeOrchestrator()
        controller = IterationController(orchestrator, FakeAnalyst(), FakeCritic(_ACCEPTED))

        outcome = await controller.run(
            "q", _make_plan(), _make_context(time_budget_seconds=0)
        )

        assert outcome.state == IterationState.BUDGET_EXCEEDED
        assert orchestrator.calls == 0
        assert outcome.history == [IterationState.PLANNED, IterationState.BUDGET_EXCEEDED]
        assert outcome.errors

    @pytest.mark.asyncio
    async def test_budget_running_out_after_analysis_keeps_the_answer(self):
        context = _make_context(time_budget_seconds=60)
        critic = FakeCritic(_ACCEPTED)
        controller = IterationController(FakeOrchestrator(), BudgetDrainingAnalyst(context), critic)

        outcome = await controller.run("q", _make_plan(), context)

        assert outcome.state == IterationState.BUDGET_EXCEEDED
        assert outcome.narrative == "answer #1"
        assert critic.calls == 0
        assert outcome.confidence == pytest.approx(0.4)
        assert outcome.history[-2:] == [IterationState.ANALYZED, IterationState.BUDGET_EXCEEDED]

    @pytest.mark.asyncio
    async def test_budget_running_out_after_rejection_uses_critique_confidence(self):
        context = _make_context(time_budget_seconds=60)

        class DrainingCritic(FakeCritic):
            async def critique(self, narrative, raw_data):
                verdict = await super().critique(narrative, raw_data)
                context.time_budget_seconds = 0
                return verdict

        analyst = FakeAnalyst()
        controller = IterationController(FakeOrchestrator(), analyst, DrainingCritic(_REJECTED))

        outcome = await controller.run("q", _make_plan(), context)

        assert outcome.state == IterationState.BUDGET_EXCEEDED
        assert outcome.iterations == 1
        assert analyst.feedback == [None]
        assert outcome.confidence == pytest.approx(0.3)

    @pytest.mark.asyncio
    async def test_progress_is_reported(self):
        events: list[str] = []

        async def _record(event, data):
            events.append(event)

        controller = IterationController(FakeOrchestrator(), FakeAnalyst(), FakeCritic(_ACCEPTED))
        await controller.run("q", _make_plan(), _make_context(progress=_record))

        assert events == ["plan_executed", "analyzed", "critiqued"]

    def test_max_iterations_must_be_positive(self):
        with pytest.raises(ValueError):
            IterationController(FakeOrchestrator(), FakeAnalyst(), max_iterations=0)
