"""
MODULE: workflows/steps/policy_management.py
PURPOSE: Workflows for customers who already hold a policy.

WORKFLOWS:
    policy-management-workflow            authenticate, then show the policy
    policy-management-inquiry-workflow    authenticate, then hand the question
                                          and the policy to the conversational layer
    policy-management-terminate-workflow  authenticate, show the policy, decide
                                          between cancellation and withdrawal,
                                          collect reason/date, confirm, submit

A policy that started at least 14 days ago is cancelled; a younger one is
withdrawn. A policy that is already cancelled or withdrawn aborts the run.
"""

from __future__ import annotations

import logging
from datetime import date
from enum import Enum
from typing import Any, Dict, Optional

from domain.messages import data_message, static_message, suspend_payload
from domain.vocabulary import SuspendReason, TerminationPath
from workflows.common.collection_steps import CollectionStepSpec, build_collection_steps
from workflows.common.datetime_parse import format_long_date, parse_date
from workflows.common.messages import fill, get_label, get_workflow_message
from workflows.runtime.engine import Step, StepContext, StepOutput, Workflow, is_completed
from workflows.steps.authentication import build_authentication_workflow
from workflows.steps.shared import continue_or_abort, require_access_token, services_for, static_suspend

logger = logging.getLogger(__name__)

NAMESPACE = "policyManagement"
TERMINATE_NAMESPACE = "policyManagementTerminate"
WITHDRAWAL_PERIOD_DAYS = 14
DETERMINE_PATH_STEP_ID = "determine-path-step"


class TerminateStepId(str, Enum):
    COLLECT_CANCELLATION = "collect-cancellation-data-step"
    COLLECT_WITHDRAWAL = "collect-withdrawal-data-step"


COLLECTION_STEPS = build_collection_steps(
    TERMINATE_NAMESPACE,
    TerminateStepId,
    [
        CollectionStepSpec(
            TerminateStepId.COLLECT_CANCELLATION,
            keys=("policyTerminationReason", "policyTerminationDate"),
            message_keys=("step_collect_cancellation",),
        ),
        CollectionStepSpec(
            TerminateStepId.COLLECT_WITHDRAWAL,
            keys=("policyTerminationReason",),
            message_keys=("step_collect_withdrawal",),
        ),
    ],
)


# ---------------------------------------------------------------------------
# Policy display
# ---------------------------------------------------------------------------


def _status_text(locale: str, done_key: str, done_at: Optional[str], requested_at: Optional[str]) -> str:
    labels = get_label(locale, "policyStatus")
    if done_at:
        return f"{labels[done_key]} {format_long_date(done_at, locale)}"
    if requested_at:
        return f"{labels['requested']} {format_long_date(requested_at, locale)}"
    return get_label(locale, "none")


def format_policy_summary(locale: str, policy: Dict[str, Any]) -> str:
    customer = policy.get("customer") or {}
    values = customer.get("values") or {}
    objects = policy.get("objects") or []
    coverage = ((objects[0].get("values") or {}).get("coverageScope") if objects else None) or "N/A"
    iban = (policy.get("values") or {}).get("iban")
    address = f"{values.get('addressStreet', '')} {values.get('addressHouseNumber', '')}"
    if values.get("addressCo"):
        address += f", {values['addressCo']}"
    address += f", {values.get('addressPlz', '')} {values.get('addressCity', '')}"
    return fill(
        get_workflow_message(locale, NAMESPACE, "step_policy_data_1"),
        {
            "policyId": policy.get("prettyId"),
            "firstName": customer.get("firstName"),
            "lastName": customer.get("lastName"),
            "dateOfBirth": format_long_date(values.get("dateOfBirth"), locale),
            "email": customer.get("email"),
            "address": address,
            "coverageType": coverage,
            "startDate": format_long_date(policy.get("startsAt"), locale),
            "iban": f"****{iban[-4:]}" if iban else "****",
            "cancellations": _status_text(
                locale, "cancelled", policy.get("cancelledAt"), policy.get("cancellationRequestedAt")
            ),
            "withdrawals": _status_text(
                locale, "withdrawn", policy.get("withdrawnAt"), policy.get("withdrawalRequestedAt")
            ),
        },
    )


async def _display_policy_data(ctx: StepContext) -> StepOutput:
    if ctx.is_resuming:
        return ctx.input
    policy = ctx.input.get("policy")
    if not policy:
        raise ValueError("Policy not found")
    summary = format_policy_summary(ctx.run_context.locale, policy)
    message = data_message(
        {"prompt": "Display the policy data. MANDATORY: Ask continuation question.", "policyData": summary}
    )
    return ctx.suspend(suspend_payload(SuspendReason.USER_INPUT, ctx.input.get("dataCollection"), [message]))


display_policy_data_step = Step(
    "display-policy-data-step", _display_policy_data, description="Display the policy data"
)


# ---------------------------------------------------------------------------
# Inquiry
# ---------------------------------------------------------------------------


async def _answer_question(ctx: StepContext) -> StepOutput:
    message = data_message(
        {
            "prompt": "Answer the question, based on the policy data.",
            "question": ctx.get_init_data().get("userMessage"),
            "policy": ctx.input.get("policy"),
        },
        action="answer_policy_question",
    )
    return suspend_payload(SuspendReason.USER_INPUT, ctx.input.get("dataCollection"), [message])


answer_question_step = Step("answer-question-step", _answer_question, description="Answer the question")


# ---------------------------------------------------------------------------
# Termination
# ---------------------------------------------------------------------------


def termination_path_for(policy: Dict[str, Any], today: Optional[date] = None) -> TerminationPath:
    if policy.get("cancelledAt") or policy.get("withdrawnAt"):
        return TerminationPath.NOT_NEEDED
    starts_at = parse_date(policy.get("startsAt"))
    if starts_at is None:
        raise ValueError(f"Unreadable policy start {policy.get('startsAt')!r}")
    age_days = ((today or date.today()) - starts_at).days
    if age_days >= WITHDRAWAL_PERIOD_DAYS:
        return TerminationPath.CANCELLATION
    return TerminationPath.WITHDRAWAL


def _termination_path(ctx: StepContext) -> Optional[str]:
    return (ctx.get_step_result(DETERMINE_PATH_STEP_ID) or {}).get("terminationPath")


async def _determine_path(ctx: StepContext) -> StepOutput:
    policy = ctx.input.get("policy")
    if not policy:
        raise ValueError("Policy not found")
    path = termination_path_for(policy)
    logger.info("[TERMINATE] policy %s path=%s", policy.get("prettyId"), path.value)
    return {**ctx.input, "terminationPath": path.value}


async def _abort_not_needed(ctx: StepContext) -> StepOutput:
    text = get_workflow_message(ctx.run_context.locale, TERMINATE_NAMESPACE, "step_not_needed")
    return suspend_payload(SuspendReason.ABORT, ctx.input.get("dataCollection"), [static_message(text)])


async def _confirm_termination(ctx: StepContext) -> StepOutput:
    if ctx.is_resuming:
        aborted = await continue_or_abort(ctx, TERMINATE_NAMESPACE)
        return aborted or {**ctx.input, "completed": True}
    key = (
        "step_confirm_cancellation"
        if _termination_path(ctx) == TerminationPath.CANCELLATION.value
        else "step_confirm_withdrawal"
    )
    return static_suspend(ctx, TERMINATE_NAMESPACE, key)


async def _terminate_policy(ctx: StepContext) -> StepOutput:
    data = ctx.input.get("dataCollection") or {}
    policy_id = data.get("policyId")
    if not policy_id:
        raise ValueError("Policy ID not found")
    access_token = require_access_token(ctx.run_context)
    services = services_for(ctx.run_context)
    path = _termination_path(ctx)
    reason = data.get("policyTerminationReason")

    if path == TerminationPath.CANCELLATION.value:
        if not data.get("policyTerminationDate"):
            raise ValueError("Cancellation date not found")
        if not reason:
            raise ValueError("Cancellation reason not found")
        await services.cancel_policy(policy_id, access_token, reason=reason, cancel_at=data["policyTerminationDate"])
    elif path == TerminationPath.WITHDRAWAL.value:
        if not reason:
            raise ValueError("Withdrawal reason not found")
        await services.withdraw_policy(
            policy_id, access_token, reason=reason, withdraw_at=data.get("policyTerminationDate")
        )
    logger.info("[TERMINATE] %s submitted for %s", path, policy_id)

    text = get_workflow_message(ctx.run_context.locale, TERMINATE_NAMESPACE, "step_applied")
    return {**suspend_payload(SuspendReason.USER_INPUT, data, [static_message(text)]), "completed": True}


determine_path_step = Step(DETERMINE_PATH_STEP_ID, _determine_path, description="Decide how to terminate")
abort_step = Step("abort-step", _abort_not_needed, description="Termination not needed")
confirm_termination_step = Step("confirm-termination-step", _confirm_termination, description="Confirm termination")
terminate_policy_step = Step("terminate-policy-step", _terminate_policy, description="Submit the termination")


def _termination_flow(workflow_id: str, collect_step: Step) -> Workflow:
    return (
        Workflow(workflow_id, description=f"{workflow_id} of an existing policy")
        .dountil(collect_step, is_completed)
        .dountil(confirm_termination_step, is_completed)
        .then(terminate_policy_step)
        .commit()
    )


def _path_is(path: TerminationPath):
    return lambda state: state.get("terminationPath") == path.value


# ---------------------------------------------------------------------------
# Workflow builders
# ---------------------------------------------------------------------------


def build_policy_management_workflow() -> Workflow:
    return (
        Workflow("policy-management-workflow", description="Policy management workflow")
        .then(build_authentication_workflow())
        .then(display_policy_data_step)
        .commit()
    )


def build_policy_management_inquiry_workflow() -> Workflow:
    return (
        Workflow("policy-management-inquiry-workflow", description="Policy management inquiry workflow")
        .then(build_authentication_workflow())
        .then(answer_question_step)
        .commit()
    )


def build_policy_management_terminate_workflow() -> Workflow:
    cancellation_flow = _termination_flow(
        "cancellation-workflow", COLLECTION_STEPS[TerminateStepId.COLLECT_CANCELLATION]
    )
    withdrawal_flow = _termination_flow("withdrawal-workflow", COLLECTION_STEPS[TerminateStepId.COLLECT_WITHDRAWAL])
    return (
        Workflow("policy-management-terminate-workflow", description="Policy termination (cancel/withdrawal) workflow")
        .then(build_authentication_workflow())
        .then(display_policy_data_step)
        .then(determine_path_step)
        .branch(
            [
                (_path_is(TerminationPath.NOT_NEEDED), abort_step),
                (_path_is(TerminationPath.CANCELLATION), cancellation_flow),
                (_path_is(TerminationPath.WITHDRAWAL), withdrawal_flow),
            ]
        )
        .commit()
    )
