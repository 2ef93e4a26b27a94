"""
MODULE: workflows/runtime/engine.py
PURPOSE: Suspendable step-graph executor.

A Workflow is an ordered list of entries built with ``then``, ``dountil``,
``branch`` and ``map``. Entries point at Steps or at nested, committed
Workflows. Running a workflow walks the entries with a Frame that records the
position, the current input, the results of finished steps, the chosen branch
and the loop counter. When a step returns ``ctx.suspend(payload)`` the frame
stack is snapshotted into the run store, so any later process can resume the
run at exactly the suspended leaf step.

EXPORTS:
    - Step, Workflow, StepContext
    - FreshEntry / Resuming (explicit step phase), Suspended
    - RunSuccess / RunSuspended / RunFailed (tagged run results)
    - WorkflowExecutor(start, resume, cancel)
    - is_completed(output) predicate used by collection loops
"""

from __future__ import annotations

import copy
import inspect
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from domain.vocabulary import RunStatus
from workflows.runtime.context import RunContext
from workflows.runtime.errors import (
    LoopLimitExceeded,
    StepExecutionError,
    WorkflowDefinitionError,
    WorkflowRunNotFoundError,
    WorkflowRunNotResumableError,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 100


# ---------------------------------------------------------------------------
# Step phase and outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FreshEntry:
    """The step is entered for the first time (or for the next loop iteration)."""


@dataclass(frozen=True)
class Resuming:
    """The step suspended earlier and is re-entered with the user's reply."""

    resume_data: Dict[str, Any]


StepPhase = Union[FreshEntry, Resuming]
FRESH = FreshEntry()


@dataclass
class Suspended:
    payload: Dict[str, Any]


StepOutput = Union[Dict[str, Any], Suspended]
Predicate = Callable[[Dict[str, Any]], bool]


@dataclass
class RunSuccess:
    run_id: str
    result: Dict[str, Any]
    status: RunStatus = RunStatus.SUCCESS


@dataclass
class RunSuspended:
    run_id: str
    suspended_path: List[str]
    payload: Dict[str, Any]
    status: RunStatus = RunStatus.SUSPENDED


@dataclass
class RunFailed:
    run_id: str
    error: str
    step_id: Optional[str] = None
    status: RunStatus = RunStatus.FAILED


RunResult = Union[RunSuccess, RunSuspended, RunFailed]


def is_completed(output: Dict[str, Any]) -> bool:
    return bool(output.get("completed"))


# ---------------------------------------------------------------------------
# Frames (serializable execution position)
# ---------------------------------------------------------------------------


@dataclass
class Frame:
    input: Dict[str, Any]
    init: Dict[str, Any]
    position: int = 0
    results: Dict[str, Any] = field(default_factory=dict)
    branch: Optional[int] = None
    iteration: int = 0
    suspended_step: Optional[str] = None
    child: Optional["Frame"] = None

    @classmethod
    def fresh(cls, input_data: Dict[str, Any]) -> "Frame":
        return cls(input=dict(input_data), init=dict(input_data))

    def advance(self, output: Dict[str, Any]) -> None:
        self.position += 1
        self.input = output
        self.branch = None
        self.iteration = 0
        self.suspended_step = None
        self.child = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "input": self.input,
            "init": self.init,
            "position": self.position,
            "results": self.results,
            "branch": self.branch,
            "iteration": self.iteration,
            "suspendedStep": self.suspended_step,
            "child": self.child.to_dict() if self.child else None,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Frame":
        child = raw.get("child")
        return cls(
            input=raw.get("input") or {},
            init=raw.get("init") or {},
            position=int(raw.get("position") or 0),
            results=raw.get("results") or {},
            branch=raw.get("branch"),
            iteration=int(raw.get("iteration") or 0),
            suspended_step=raw.get("suspendedStep"),
            child=cls.from_dict(child) if child else None,
        )


# ---------------------------------------------------------------------------
# Steps and workflows
# ---------------------------------------------------------------------------


class StepContext:
    """Everything a step sees while it executes."""

    def __init__(
        self,
        *,
        step_id: str,
        workflow_id: str,
        run_id: str,
        input_data: Dict[str, Any],
        phase: StepPhase,
        run_context: RunContext,
        run_count: int,
        frames: Sequence[Frame],
    ) -> None:
        self.step_id = step_id
        self.workflow_id = workflow_id
        self.run_id = run_id
        self.input = input_data
        self.phase = phase
        self.run_context = run_context
        self.run_count = run_count
        self._frames = list(frames)

    @property
    def resume_data(self) -> Optional[Dict[str, Any]]:
        return self.phase.resume_data if isinstance(self.phase, Resuming) else None

    @property
    def is_resuming(self) -> bool:
        return isinstance(self.phase, Resuming)

    def suspend(self, payload: Dict[str, Any]) -> Suspended:
        return Suspended(payload=payload)

    def get_step_result(self, step_id: str) -> Optional[Dict[str, Any]]:
        """Result of a finished step in this workflow or any enclosing one."""

        for frame in reversed(self._frames):
            if step_id in frame.results:
                return frame.results[step_id]
        return None

    def get_init_data(self) -> Dict[str, Any]:
        return self._frames[-1].init if self._frames else {}


StepFn = Callable[[StepContext], Awaitable[StepOutput]]


class Step:
    def __init__(self, id: str, execute: StepFn, *, description: str = "", retries: int = 0) -> None:
        if retries < 0:
            raise WorkflowDefinitionError(f"Step '{id}' declares negative retries")
        self.id = id
        self.execute = execute
        self.description = description
        self.retries = retries

    def __repr__(self) -> str:
        return f"Step({self.id!r})"


Node = Union[Step, "Workflow"]

_THEN = "then"
_LOOP = "dountil"
_BRANCH = "branch"


@dataclass(frozen=True)
class _Entry:
    kind: str
    node: Optional[Node] = None
    predicate: Optional[Predicate] = None
    branches: Tuple[Tuple[Predicate, Node], ...] = ()

    def nodes(self) -> List[Node]:
        if self.kind == _BRANCH:
            return [target for _, target in self.branches]
        return [self.node] if self.node is not None else []


class Workflow:
    """Composable, committed graph of steps and nested workflows."""

    def __init__(self, id: str, *, description: str = "") -> None:
        self.id = id
        self.description = description
        self._entries: List[_Entry] = []
        self._committed = False
        self._map_count = 0

    # -- builder -----------------------------------------------------------

    def _append(self, entry: _Entry) -> "Workflow":
        if self._committed:
            raise WorkflowDefinitionError(f"Workflow '{self.id}' is already committed")
        for node in entry.nodes():
            if isinstance(node, Workflow) and not node._committed:
                raise WorkflowDefinitionError(f"Nested workflow '{node.id}' must be committed first")
        self._entries.append(entry)
        return self

    def then(self, node: Node) -> "Workflow":
        return self._append(_Entry(kind=_THEN, node=node))

    def dountil(self, node: Node, predicate: Predicate) -> "Workflow":
        """Run ``node`` again, feeding its output back, until ``predicate(output)``."""

        return self._append(_Entry(kind=_LOOP, node=node, predicate=predicate))

    def branch(self, branches: Sequence[Tuple[Predicate, Node]]) -> "Workflow":
        """Run the first target whose predicate matches; no match passes input through."""

        if not branches:
            raise WorkflowDefinitionError(f"Workflow '{self.id}' declares an empty branch")
        return self._append(_Entry(kind=_BRANCH, branches=tuple(branches)))

    def map(self, fn: Callable[[StepContext], Any], *, id: Optional[str] = None) -> "Workflow":
        """Reshape the current value; ``fn`` may be sync or async."""

        self._map_count += 1
        step_id = id or f"{self.id}-map-{self._map_count}"

        async def _execute(ctx: StepContext) -> Dict[str, Any]:
            value = fn(ctx)
            if inspect.isawaitable(value):
                value = await value
            return value

        return self.then(Step(step_id, _execute, description="map"))

    def commit(self) -> "Workflow":
        if not self._entries:
            raise WorkflowDefinitionError(f"Workflow '{self.id}' has no steps")
        seen: Dict[str, Node] = {}
        for entry in self._entries:
            for node in entry.nodes():
                other = seen.get(node.id)
                if other is not None and other is not node:
                    raise WorkflowDefinitionError(f"Workflow '{self.id}' has two different nodes with id '{node.id}'")
                seen[node.id] = node
        self._committed = True
        return self

    @property
    def committed(self) -> bool:
        return self._committed

    @property
    def entries(self) -> List[_Entry]:
        return list(self._entries)

    def step_ids(self) -> List[str]:
        ids: List[str] = []
        for entry in self._entries:
            ids.extend(node.id for node in entry.nodes())
        return ids

    def __repr__(self) -> str:
        return f"Workflow({self.id!r})"


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


@dataclass
class _Done:
    output: Dict[str, Any]


@dataclass
class _Paused:
    path: List[str]
    payload: Dict[str, Any]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class WorkflowExecutor:
    """Starts, resumes and cancels runs, persisting a snapshot after each turn.

    ``store`` needs ``load_run(run_id) -> dict | None`` and ``save_run(record)``.
    """

    def __init__(self, store: Any, *, max_iterations: int = DEFAULT_MAX_ITERATIONS) -> None:
        self.store = store
        self.max_iterations = max_iterations

    # -- public API --------------------------------------------------------

    async def start(
        self,
        workflow: Workflow,
        input_data: Dict[str, Any],
        run_context: RunContext,
        *,
        run_id: Optional[str] = None,
    ) -> RunResult:
        if not workflow.committed:
            raise WorkflowDefinitionError(f"Workflow '{workflow.id}' must be committed before running")
        run_id = run_id or str(uuid.uuid4())
        record = {
            "runId": run_id,
            "workflowId": workflow.id,
            "status": RunStatus.RUNNING.value,
            "frame": Frame.fresh(input_data).to_dict(),
            "createdAt": _now_iso(),
        }
        logger.info("[WF] start %s run=%s", workflow.id, run_id)
        return await self._run(workflow, record, None, run_context)

    async def resume(
        self,
        workflow: Workflow,
        run_id: str,
        resume_data: Dict[str, Any],
        run_context: RunContext,
    ) -> RunResult:
        record = self.store.load_run(run_id)
        if record is None:
            raise WorkflowRunNotFoundError(run_id)
        status = record.get("status")
        if status != RunStatus.SUSPENDED.value or record.get("workflowId") != workflow.id:
            raise WorkflowRunNotResumableError(run_id, str(status))
        logger.info("[WF] resume %s run=%s at %s", workflow.id, run_id, record.get("suspendedPath"))
        return await self._run(workflow, record, dict(resume_data or {}), run_context)

    def cancel(self, run_id: str) -> None:
        record = self.store.load_run(run_id)
        if record is None:
            raise WorkflowRunNotFoundError(run_id)
        record["status"] = RunStatus.CANCELED.value
        record["updatedAt"] = _now_iso()
        self.store.save_run(record)
        logger.info("[WF] canceled run=%s", run_id)

    def get_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        return self.store.load_run(run_id)

    # -- internals ---------------------------------------------------------

    async def _run(
        self,
        workflow: Workflow,
        record: Dict[str, Any],
        resume_data: Optional[Dict[str, Any]],
        run_context: RunContext,
    ) -> RunResult:
        run_id = record["runId"]
        frame = Frame.from_dict(copy.deepcopy(record["frame"]))
        record["status"] = RunStatus.RUNNING.value
        try:
            outcome = await self._drive(workflow, frame, resume_data, run_context, run_id, [])
        except Exception as exc:
            logger.exception("[WF] run %s of %s failed", run_id, workflow.id)
            record.update(
                status=RunStatus.FAILED.value,
                frame=frame.to_dict(),
                error=str(exc),
                updatedAt=_now_iso(),
            )
            self.store.save_run(copy.deepcopy(record))
            step_id = exc.step_id if isinstance(exc, (StepExecutionError, LoopLimitExceeded)) else None
            return RunFailed(run_id=run_id, error=str(exc), step_id=step_id)

        record["frame"] = frame.to_dict()
        record["updatedAt"] = _now_iso()
        if isinstance(outcome, _Paused):
            record.update(
                status=RunStatus.SUSPENDED.value,
                suspendedPath=outcome.path,
                suspendPayload=outcome.payload,
            )
            self.store.save_run(copy.deepcopy(record))
            logger.info("[WF] suspended run=%s at %s", run_id, outcome.path)
            return RunSuspended(run_id=run_id, suspended_path=list(outcome.path), payload=outcome.payload)

        record.update(status=RunStatus.SUCCESS.value, result=outcome.output, suspendedPath=None, suspendPayload=None)
        self.store.save_run(copy.deepcopy(record))
        logger.info("[WF] finished run=%s", run_id)
        return RunSuccess(run_id=run_id, result=outcome.output)

    async def _drive(
        self,
        workflow: Workflow,
        frame: Frame,
        resume_data: Optional[Dict[str, Any]],
        run_context: RunContext,
        run_id: str,
        parents: List[Frame],
    ) -> Union[_Done, _Paused]:
        chain = parents + [frame]
        entries = workflow.entries
        while frame.position < len(entries):
            entry = entries[frame.position]
            node = entry.node
            if entry.kind == _BRANCH:
                if frame.branch is None:
                    frame.branch = self._choose_branch(entry, frame.input)
                if frame.branch < 0:
                    logger.debug("[WF][BRANCH] %s: no match, passing through", workflow.id)
                    frame.advance(frame.input)
                    continue
                node = entry.branches[frame.branch][1]

            outcome = await self._run_node(workflow, node, frame, resume_data, run_context, run_id, chain)
            resume_data = None
            if isinstance(outcome, _Paused):
                return outcome

            output = outcome.output
            frame.results[node.id] = output
            if entry.kind == _LOOP and not entry.predicate(output):
                frame.iteration += 1
                if frame.iteration >= self.max_iterations:
                    raise LoopLimitExceeded(node.id, self.max_iterations)
                frame.input = output
                frame.suspended_step = None
                frame.child = None
                continue
            frame.advance(output)
        return _Done(frame.input)

    @staticmethod
    def _choose_branch(entry: _Entry, input_data: Dict[str, Any]) -> int:
        for index, (predicate, _target) in enumerate(entry.branches):
            if predicate(input_data):
                return index
        return -1

    async def _run_node(
        self,
        workflow: Workflow,
        node: Node,
        frame: Frame,
        resume_data: Optional[Dict[str, Any]],
        run_context: RunContext,
        run_id: str,
        chain: List[Frame],
    ) -> Union[_Done, _Paused]:
        if isinstance(node, Workflow):
            if frame.child is None:
                frame.child = Frame.fresh(frame.input)
            outcome = await self._drive(node, frame.child, resume_data, run_context, run_id, chain)
            if isinstance(outcome, _Paused):
                return _Paused(path=[node.id] + outcome.path, payload=outcome.payload)
            frame.child = None
            return outcome

        resuming = resume_data is not None and frame.suspended_step == node.id
        phase: StepPhase = Resuming(resume_data) if resuming else FRESH
        frame.suspended_step = None
        ctx = StepContext(
            step_id=node.id,
            workflow_id=workflow.id,
            run_id=run_id,
            input_data=copy.deepcopy(frame.input),
            phase=phase,
            run_context=run_context,
            run_count=frame.iteration,
            frames=chain,
        )
        logger.info("[WF][STEP] %s/%s run_count=%s resuming=%s", workflow.id, node.id, frame.iteration, resuming)
        result = await self._execute_with_retries(node, ctx)
        if isinstance(result, Suspended):
            frame.suspended_step = node.id
            return _Paused(path=[node.id], payload=result.payload)
        return _Done(result)

    async def _execute_with_retries(self, step: Step, ctx: StepContext) -> StepOutput:
        attempts = step.retries + 1
        last_error: Optional[BaseException] = None
        for attempt in range(1, attempts + 1):
            try:
                with ctx.run_context.track(f"step:{step.id}"):
                    result = await step.execute(ctx)
            except Exception as exc:
                last_error = exc
                logger.warning("[WF][STEP] %s attempt %s/%s failed: %s", step.id, attempt, attempts, exc)
                continue
            if not isinstance(result, (dict, Suspended)):
                raise WorkflowDefinitionError(
                    f"Step '{step.id}' returned {type(result).__name__}; expected a dict or ctx.suspend(...)"
                )
            return result
        raise StepExecutionError(step.id, attempts, last_error)
