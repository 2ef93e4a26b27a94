"""Exceptions raised by the workflow runtime."""

from __future__ import annotations

from typing import Optional


class WorkflowError(Exception):
    """Base class for workflow runtime failures."""


class WorkflowDefinitionError(WorkflowError):
    """A workflow graph or step table is malformed (detected at construction)."""


class WorkflowRunNotFoundError(WorkflowError):
    def __init__(self, run_id: str) -> None:
        super().__init__(f"Workflow run not found: {run_id}")
        self.run_id = run_id


class WorkflowRunNotResumableError(WorkflowError):
    def __init__(self, run_id: str, status: str) -> None:
        super().__init__(f"Workflow run {run_id} cannot be resumed (status={status})")
        self.run_id = run_id
        self.status = status


class StepExecutionError(WorkflowError):
    """A step kept raising after all configured retries."""

    def __init__(self, step_id: str, attempts: int, cause: Optional[BaseException] = None) -> None:
        message = f"Step '{step_id}' failed after {attempts} attempt(s)"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.step_id = step_id
        self.attempts = attempts
        self.cause = cause


class LoopLimitExceeded(WorkflowError):
    def __init__(self, step_id: str, limit: int) -> None:
        super().__init__(f"Loop on '{step_id}' exceeded {limit} iterations")
        self.step_id = step_id
        self.limit = limit


class MissingContextError(WorkflowError):
    """A run context value required by a step was not provided."""
