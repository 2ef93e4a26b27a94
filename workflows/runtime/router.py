"""Message router between the conversational layer and the workflow executor.

One call handles one user message for one workflow: it loads the thread's
workflow memory, resumes the active run or starts a new one, persists the
outcome and returns the messages the conversational layer should render.
Failures never escape; they clear the workflow state and come back as a
single localized error message.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from domain.messages import error_message, is_abort, resume_data, suspend_payload
from domain.models import ActiveWorkflow
from domain.vocabulary import SuspendReason, WorkflowId
from workflows.common.messages import get_label
from workflows.io.config_store import get_settings
from workflows.io.run_store import JsonRunStore
from workflows.io.thread_memory import JsonThreadStore, ThreadMemory
from workflows.runtime.context import (
    ACTIVE_WORKFLOW_ID,
    AUTHENTICATION,
    LOCALE,
    RESOURCE_ID,
    THREAD_ID,
    RunContext,
)
from workflows.runtime.engine import RunFailed, RunResult, RunSuccess, RunSuspended, Workflow, WorkflowExecutor
from workflows.runtime.errors import WorkflowError, WorkflowRunNotFoundError
from workflows.runtime.registry import get_registry

logger = logging.getLogger(__name__)

WORKFLOW_THREAD_PREFIX = "workflow_"


def workflow_thread_id(thread_id: str) -> str:
    return f"{WORKFLOW_THREAD_PREFIX}{thread_id}"


def default_executor() -> WorkflowExecutor:
    settings = get_settings()
    return WorkflowExecutor(JsonRunStore(settings.db_path), max_iterations=settings.max_loop_iterations)


def default_thread_store() -> JsonThreadStore:
    return JsonThreadStore(get_settings().db_path)


def _active_workflow(workflow: Workflow, result: RunResult) -> Optional[Dict[str, Any]]:
    if isinstance(result, RunSuspended):
        return ActiveWorkflow(id=workflow.id, runId=result.run_id, currentStepId=list(result.suspended_path)).model_dump()
    return None


def extract_payload(result: RunResult) -> Dict[str, Any]:
    """Turn a run result into the SuspendPayload shown to the user."""

    if isinstance(result, RunSuspended):
        return result.payload
    if isinstance(result, RunSuccess):
        output = result.result or {}
        if not output.get("messages"):
            return suspend_payload(SuspendReason.USER_INPUT, output.get("dataCollection"), [])
        return suspend_payload(
            output.get("reason") or SuspendReason.USER_INPUT.value,
            output.get("dataCollection"),
            output["messages"],
        )
    if isinstance(result, RunFailed):
        raise WorkflowError(result.error.split("\n")[0] or "Workflow run failed")
    raise WorkflowError(f"Unknown run result {result!r}")


def _abandon_run(executor: WorkflowExecutor, active: Mapping[str, Any], next_workflow_id: str) -> None:
    """Cancel the suspended run of another workflow before this thread starts a new one."""

    logger.warning("[ROUTER] abandoning run %s of %s for %s", active["runId"], active.get("id"), next_workflow_id)
    try:
        executor.cancel(active["runId"])
    except WorkflowRunNotFoundError:
        logger.warning("[ROUTER] abandoned run %s no longer exists", active["runId"])


async def route_message(
    workflow_id: WorkflowId | str,
    user_message: Optional[str],
    thread_id: str,
    resource_id: str,
    *,
    locale: Optional[str] = None,
    run_context: Optional[RunContext] = None,
    executor: Optional[WorkflowExecutor] = None,
    thread_store: Any = None,
    registry: Optional[Mapping[WorkflowId, Workflow]] = None,
) -> Dict[str, List[Dict[str, Any]]]:
    """Run one conversational turn of ``workflow_id`` and return ``{"messages": [...]}``."""

    run_context = run_context or RunContext({LOCALE: locale})
    run_context.set(THREAD_ID, thread_id)
    run_context.set(RESOURCE_ID, resource_id)
    thread_id, resource_id = run_context.require_memory()
    executor = executor or default_executor()
    memory = ThreadMemory(workflow_thread_id(thread_id), resource_id, thread_store or default_thread_store())

    metadata = memory.metadata()
    previous_authentication = metadata.get("authentication")
    run_context.set(AUTHENTICATION, previous_authentication)
    active = metadata.get("activeWorkflow") or {}
    data_collection = metadata.get("dataCollection")
    workflow_key = str(getattr(workflow_id, "value", workflow_id))
    logger.info(
        "[ROUTER] %s thread=%s active=%s",
        workflow_key,
        thread_id,
        active.get("runId"),
    )

    try:
        workflow = (registry or get_registry())[WorkflowId(workflow_key)]
        run_data = resume_data(user_message, data_collection)
        if active.get("runId") and active.get("id") == workflow.id:
            result = await executor.resume(workflow, active["runId"], run_data, run_context)
        else:
            if active.get("runId"):
                _abandon_run(executor, active, workflow.id)
            result = await executor.start(workflow, run_data, run_context)

        authentication = run_context.get(AUTHENTICATION)
        if authentication != previous_authentication:
            memory.update({"authentication": authentication})

        run_context.set(ACTIVE_WORKFLOW_ID, workflow.id)
        response = extract_payload(result)
        memory.update(
            {
                "dataCollection": response.get("dataCollection") or data_collection or None,
                "activeWorkflow": _active_workflow(workflow, result),
            }
        )

        if is_abort(response):
            logger.warning("[ROUTER] %s aborted run=%s", workflow.id, result.run_id)
            run_context.set(ACTIVE_WORKFLOW_ID, "")
            memory.update({"activeWorkflow": None})
            executor.cancel(result.run_id)

        return {"messages": list(response.get("messages") or [])}
    except Exception:
        logger.exception("[ROUTER] %s failed for thread %s", workflow_key, thread_id)
        run_context.set(ACTIVE_WORKFLOW_ID, "")
        memory.update({"activeWorkflow": None, "dataCollection": None})
        return {
            "messages": [
                error_message(
                    get_label(run_context.locale, "genericError"),
                    context={"source": "workflow_error", "workflowId": workflow_key},
                )
            ]
        }
