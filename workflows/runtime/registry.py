"""[Workflow Registry] Maps every routable WorkflowId to its committed Workflow."""

from __future__ import annotations

import logging
from typing import Callable, Dict, Mapping, Optional

from domain.vocabulary import WorkflowId
from workflows.runtime.engine import Workflow
from workflows.runtime.errors import WorkflowDefinitionError
from workflows.steps.policy_management import (
    build_policy_management_inquiry_workflow,
    build_policy_management_terminate_workflow,
    build_policy_management_workflow,
)
from workflows.steps.sales import build_sales_workflow

logger = logging.getLogger(__name__)

WorkflowBuilder = Callable[[], Workflow]

WORKFLOW_BUILDERS: Dict[WorkflowId, WorkflowBuilder] = {
    WorkflowId.SALES: build_sales_workflow,
    WorkflowId.POLICY_MANAGEMENT: build_policy_management_workflow,
    WorkflowId.POLICY_MANAGEMENT_INQUIRY: build_policy_management_inquiry_workflow,
    WorkflowId.POLICY_MANAGEMENT_TERMINATE: build_policy_management_terminate_workflow,
}

_REGISTRY: Optional[Dict[WorkflowId, Workflow]] = None


def build_registry(builders: Optional[Mapping[WorkflowId, WorkflowBuilder]] = None) -> Dict[WorkflowId, Workflow]:
    """Build every workflow; fails when a WorkflowId has no builder or a mismatching id."""

    builders = WORKFLOW_BUILDERS if builders is None else builders
    missing = [member.value for member in WorkflowId if member not in builders]
    if missing:
        raise WorkflowDefinitionError(f"No workflow registered for {missing}")

    registry: Dict[WorkflowId, Workflow] = {}
    for workflow_id, builder in builders.items():
        workflow = builder()
        if workflow.id != workflow_id.value:
            raise WorkflowDefinitionError(f"Builder for {workflow_id.value} produced workflow '{workflow.id}'")
        if not workflow.committed:
            raise WorkflowDefinitionError(f"Workflow '{workflow.id}' is not committed")
        registry[workflow_id] = workflow
    logger.info("[WF] registry ready: %s", ", ".join(member.value for member in registry))
    return registry


def get_registry() -> Dict[WorkflowId, Workflow]:
    global _REGISTRY
    if _REGISTRY is None:
        _REGISTRY = build_registry()
    return _REGISTRY


def get_workflow(workflow_id: WorkflowId | str) -> Workflow:
    try:
        key = WorkflowId(workflow_id)
    except ValueError as exc:
        raise WorkflowDefinitionError(f"Unknown workflow id {workflow_id!r}") from exc
    return get_registry()[key]
