"""
Unit tests for the suspendable workflow engine.

Workflows here are tiny hand-built graphs run against the in-memory run store,
so every test controls exactly which step suspends, loops or fails.
"""

import asyncio

import pytest

from workflows.io.run_store import InMemoryRunStore
from workflows.runtime.context import RunContext
from workflows.runtime.engine import (
    RunFailed,
    RunSuccess,
    RunSuspended,
    Step,
    Workflow,
    WorkflowExecutor,
    is_completed,
)
from workflows.runtime.errors import (
    WorkflowDefinitionError,
    WorkflowRunNotFoundError,
    WorkflowRunNotResumableError,
)


async def _add_one(ctx):
    return {**ctx.input, "value": ctx.input["value"] + 1}


async def _double(ctx):
    return {**ctx.input, "value": ctx.input["value"] * 2}


async def _ask(ctx):
    if ctx.is_resuming:
        return {**ctx.input, "answer": ctx.resume_data["userMessage"]}
    return ctx.suspend({"reason": "user_input", "dataCollection": None, "messages": [{"type": "static", "content": "?"}]})


@pytest.fixture
def executor():
    return WorkflowExecutor(InMemoryRunStore())


def _start(executor, workflow, input_data):
    return asyncio.run(executor.start(workflow, input_data, RunContext()))


def _resume(executor, workflow, run_id, message):
    return asyncio.run(executor.resume(workflow, run_id, {"userMessage": message}, RunContext()))


class TestSequentialExecution:
    def test_then_chains_outputs(self, executor):
        """Each step receives the previous step's output."""
        workflow = Workflow("math").then(Step("add", _add_one)).then(Step("double", _double)).commit()

        result = _start(executor, workflow, {"value": 1})

        assert isinstance(result, RunSuccess)
        assert result.result == {"value": 4}
        assert executor.get_run(result.run_id)["status"] == "success"

    def test_map_accepts_sync_and_async_functions(self, executor):
        async def _async_label(ctx):
            return {"label": f"v{ctx.input['value']}"}

        workflow = (
            Workflow("mapped")
            .map(lambda ctx: {"value": ctx.input["value"] + 10})
            .map(_async_label, id="label")
            .commit()
        )

        result = _start(executor, workflow, {"value": 1})

        assert result.result == {"label": "v11"}

    def test_non_dict_output_fails_the_run(self, executor):
        async def _bad(ctx):
            return "oops"

        workflow = Workflow("bad").then(Step("bad-step", _bad)).commit()

        result = _start(executor, workflow, {})

        assert isinstance(result, RunFailed)
        assert "expected a dict" in result.error


class TestSuspendResume:
    def test_suspend_then_resume(self, executor):
        """The suspended step is re-entered in the Resuming phase with the reply."""
        workflow = Workflow("ask").then(Step("ask-step", _ask)).then(Step("add", _add_one)).commit()

        suspended = _start(executor, workflow, {"value": 1})

        assert isinstance(suspended, RunSuspended)
        assert suspended.suspended_path == ["ask-step"]
        assert suspended.payload["messages"][0]["content"] == "?"
        assert executor.get_run(suspended.run_id)["status"] == "suspended"

        finished = _resume(executor, workflow, suspended.run_id, "hi")

        assert isinstance(finished, RunSuccess)
        assert finished.result == {"value": 2, "answer": "hi"}

    def test_resume_from_snapshot_in_new_executor(self):
        """A snapshot written by one executor can be resumed by another."""
        store = InMemoryRunStore()
        workflow = Workflow("ask").then(Step("ask-step", _ask)).commit()

        suspended = _start(WorkflowExecutor(store), workflow, {})
        finished = _resume(WorkflowExecutor(store), workflow, suspended.run_id, "later")

        assert finished.result == {"answer": "later"}

    def test_nested_workflow_suspends_at_leaf(self, executor):
        """The suspended path lists the nested workflow before its step."""
        inner = Workflow("inner").then(Step("ask-step", _ask)).commit()
        outer = Workflow("outer").then(inner).then(Step("add", _add_one)).commit()

        suspended = _start(executor, outer, {"value": 5})

        assert suspended.suspended_path == ["inner", "ask-step"]

        finished = _resume(executor, outer, suspended.run_id, "ok")

        assert finished.result == {"value": 6, "answer": "ok"}

    def test_resume_unknown_run(self, executor):
        workflow = Workflow("ask").then(Step("ask-step", _ask)).commit()

        with pytest.raises(WorkflowRunNotFoundError):
            _resume(executor, workflow, "missing", "hi")

    def test_canceled_run_cannot_resume(self, executor):
        """Cancel marks the run so later resumes are refused."""
        workflow = Workflow("ask").then(Step("ask-step", _ask)).commit()
        suspended = _start(executor, workflow, {})

        executor.cancel(suspended.run_id)

        assert executor.get_run(suspended.run_id)["status"] == "canceled"
        with pytest.raises(WorkflowRunNotResumableError):
            _resume(executor, workflow, suspended.run_id, "hi")

    def test_finished_run_cannot_resume(self, executor):
        workflow = Workflow("math").then(Step("add", _add_one)).commit()
        result = _start(executor, workflow, {"value": 0})

        with pytest.raises(WorkflowRunNotResumableError):
            _resume(executor, workflow, result.run_id, "again")

    def test_resume_with_other_workflow_refused(self, executor):
        first = Workflow("first").then(Step("ask-step", _ask)).commit()
        second = Workflow("second").then(Step("ask-step", _ask)).commit()
        suspended = _start(executor, first, {})

        with pytest.raises(WorkflowRunNotResumableError):
            _resume(executor, second, suspended.run_id, "hi")


class TestLoopsAndBranches:
    def test_dountil_feeds_output_back(self, executor):
        """The loop repeats with its own output and exposes the iteration count."""

        async def _count(ctx):
            return {
                "count": ctx.input.get("count", 0) + 1,
                "runs": ctx.input.get("runs", []) + [ctx.run_count],
                "completed": ctx.input.get("count", 0) + 1 >= 3,
            }

        workflow = Workflow("loop").dountil(Step("count", _count), is_completed).commit()

        result = _start(executor, workflow, {})

        assert result.result["count"] == 3
        assert result.result["runs"] == [0, 1, 2]

    def test_loop_iteration_after_resume_is_fresh(self, executor):
        """Only the suspended iteration sees the reply; the next one starts fresh."""
        phases = []

        async def _confirm(ctx):
            phases.append(ctx.is_resuming)
            if not ctx.is_resuming:
                return ctx.suspend({"reason": "user_input", "messages": []})
            return {**ctx.input, "completed": ctx.resume_data["userMessage"] == "yes"}

        workflow = Workflow("confirm").dountil(Step("confirm-step", _confirm), is_completed).commit()

        suspended = _start(executor, workflow, {})
        again = _resume(executor, workflow, suspended.run_id, "no")

        assert isinstance(again, RunSuspended)
        assert phases == [False, True, False]

        done = _resume(executor, workflow, again.run_id, "yes")

        assert isinstance(done, RunSuccess)

    def test_loop_limit_fails_run(self):
        """A loop that never completes stops at the iteration cap."""
        executor = WorkflowExecutor(InMemoryRunStore(), max_iterations=3)

        async def _never(ctx):
            return {"completed": False}

        workflow = Workflow("endless").dountil(Step("never", _never), is_completed).commit()

        result = _start(executor, workflow, {})

        assert isinstance(result, RunFailed)
        assert result.step_id == "never"
        assert "exceeded 3" in result.error
        assert executor.get_run(result.run_id)["status"] == "failed"

    def test_branch_without_match_passes_input_through(self, executor):
        flagged = Step("flagged", _mark)
        workflow = Workflow("branchy").branch([(lambda state: state.get("flag"), flagged)]).commit()

        assert _start(executor, workflow, {"value": 1}).result == {"value": 1}
        assert _start(executor, workflow, {"flag": True}).result == {"flag": True, "marked": True}

    def test_first_matching_branch_wins(self, executor):
        async def _a(ctx):
            return {"picked": "a"}

        async def _b(ctx):
            return {"picked": "b"}

        workflow = (
            Workflow("pick")
            .branch([(lambda s: s["n"] > 5, Step("a", _a)), (lambda s: s["n"] > 0, Step("b", _b))])
            .commit()
        )

        assert _start(executor, workflow, {"n": 10}).result == {"picked": "a"}
        assert _start(executor, workflow, {"n": 1}).result == {"picked": "b"}


async def _mark(ctx):
    return {**ctx.input, "marked": True}


class TestStepContext:
    def test_get_step_result_searches_enclosing_workflows(self, executor):
        seen = {}

        async def _first(ctx):
            return {"token": "abc"}

        async def _inner(ctx):
            seen["first"] = ctx.get_step_result("first")
            seen["init"] = ctx.get_init_data()
            return {"done": True}

        inner = Workflow("inner").then(Step("inner-step", _inner)).commit()
        outer = Workflow("outer").then(Step("first", _first)).then(inner).commit()

        _start(executor, outer, {"start": 1})

        assert seen["first"] == {"token": "abc"}
        assert seen["init"] == {"token": "abc"}

    def test_unknown_step_result_is_none(self, executor):
        seen = {}

        async def _look(ctx):
            seen["value"] = ctx.get_step_result("nope")
            return {}

        _start(executor, Workflow("w").then(Step("look", _look)).commit(), {})

        assert seen["value"] is None

    def test_timings_recorded_on_run_context(self, executor):
        run_context = RunContext()
        workflow = Workflow("math").then(Step("add", _add_one)).commit()

        asyncio.run(executor.start(workflow, {"value": 1}, run_context))

        assert "step:add" in run_context.timing_summary()


class TestRetries:
    def test_retry_until_success(self, executor):
        attempts = []

        async def _flaky(ctx):
            attempts.append(1)
            if len(attempts) < 3:
                raise ValueError("temporary")
            return {"ok": True}

        workflow = Workflow("flaky").then(Step("flaky-step", _flaky, retries=2)).commit()

        result = _start(executor, workflow, {})

        assert isinstance(result, RunSuccess)
        assert len(attempts) == 3

    def test_exhausted_retries_fail_run(self, executor):
        async def _broken(ctx):
            raise ValueError("service down")

        workflow = Workflow("broken").then(Step("broken-step", _broken, retries=1)).commit()

        result = _start(executor, workflow, {})

        assert isinstance(result, RunFailed)
        assert result.step_id == "broken-step"
        assert "after 2 attempt(s)" in result.error
        assert "service down" in result.error


class TestDefinitionErrors:
    def test_empty_workflow_cannot_commit(self):
        with pytest.raises(WorkflowDefinitionError):
            Workflow("empty").commit()

    def test_nested_workflow_must_be_committed(self):
        inner = Workflow("inner").then(Step("a", _add_one))

        with pytest.raises(WorkflowDefinitionError):
            Workflow("outer").then(inner)

    def test_committed_workflow_is_frozen(self):
        workflow = Workflow("w").then(Step("a", _add_one)).commit()

        with pytest.raises(WorkflowDefinitionError):
            workflow.then(Step("b", _double))

    def test_duplicate_ids_rejected(self):
        with pytest.raises(WorkflowDefinitionError):
            Workflow("w").then(Step("a", _add_one)).then(Step("a", _double)).commit()

    def test_uncommitted_workflow_cannot_start(self, executor):
        with pytest.raises(WorkflowDefinitionError):
            _start(executor, Workflow("w").then(Step("a", _add_one)), {"value": 1})

    def test_negative_retries_rejected(self):
        with pytest.raises(WorkflowDefinitionError):
            Step("a", _add_one, retries=-1)

    def test_empty_branch_rejected(self):
        with pytest.raises(WorkflowDefinitionError):
            Workflow("w").branch([])
