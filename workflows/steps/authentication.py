"""
MODULE: workflows/steps/authentication.py
PURPOSE: Identify a customer against an existing policy.

Flow:
    authentication-data-step (loop until policyId, names and birth date are known)
    -> fetch-token-step       (reuse the cached service token unless expired)
    -> fetch-policy-step      (retries 3; unknown policy id fails the run)
    -> validate-authentication-step (names and birth date must match the policy)

The policy-management workflows embed this workflow as their first phase.
"""

from __future__ import annotations

import logging
import time
from enum import Enum

from workflows.common.collection_steps import CollectionStepSpec, build_collection_steps
from workflows.runtime.context import AUTHENTICATION
from workflows.runtime.engine import Step, StepContext, StepOutput, Workflow, is_completed
from workflows.steps.shared import current_token, require_access_token, services_for

logger = logging.getLogger(__name__)

NAMESPACE = "authentication"


class AuthenticationStepId(str, Enum):
    AUTHENTICATION_DATA = "authentication-data-step"


COLLECTION_STEPS = build_collection_steps(
    NAMESPACE,
    AuthenticationStepId,
    [
        CollectionStepSpec(
            AuthenticationStepId.AUTHENTICATION_DATA,
            keys=("dateOfBirth", "policyId", "firstName", "lastName"),
            message_keys=("step_data_1",),
        ),
    ],
)


async def _fetch_token(ctx: StepContext) -> StepOutput:
    token = current_token(ctx.run_context)
    now_ms = int(time.time() * 1000)
    if token is None or token.expires_in < now_ms:
        logger.info("[AUTH] fetching a new service token (cached=%s)", token is not None)
        fresh = await services_for(ctx.run_context).fetch_token()
        ctx.run_context.set(AUTHENTICATION, fresh.model_dump())
    return ctx.input


async def _fetch_policy(ctx: StepContext) -> StepOutput:
    policy_id = (ctx.input.get("dataCollection") or {}).get("policyId")
    if not policy_id:
        raise ValueError("Policy ID not found")
    access_token = require_access_token(ctx.run_context)
    policy = await services_for(ctx.run_context).fetch_policy(policy_id, access_token)
    if policy is None:
        raise ValueError(f"Policy not found: {policy_id}")
    return {**ctx.input, "policy": policy.model_dump(), "completed": True}


async def _validate_authentication(ctx: StepContext) -> StepOutput:
    policy = ctx.input.get("policy")
    if not policy:
        raise ValueError("Policy not found")
    data = ctx.input.get("dataCollection") or {}
    customer = policy.get("customer") or {}
    if customer.get("firstName") != data.get("firstName"):
        raise ValueError("First name does not match")
    if customer.get("lastName") != data.get("lastName"):
        raise ValueError("Last name does not match")
    if (customer.get("values") or {}).get("dateOfBirth") != data.get("dateOfBirth"):
        raise ValueError("Date of birth does not match")
    logger.info("[AUTH] policy %s verified", data.get("policyId"))
    return {**ctx.input, "completed": True}


fetch_token_step = Step("fetch-token-step", _fetch_token, description="Fetch, refresh or reuse the service token")
fetch_policy_step = Step("fetch-policy-step", _fetch_policy, description="Fetch the policy", retries=3)
validate_authentication_step = Step(
    "validate-authentication-step", _validate_authentication, description="Match the user against the policy"
)


def build_authentication_workflow() -> Workflow:
    return (
        Workflow("authentication-workflow", description="Authentication workflow")
        .dountil(COLLECTION_STEPS[AuthenticationStepId.AUTHENTICATION_DATA], is_completed)
        .then(fetch_token_step)
        .then(fetch_policy_step)
        .then(validate_authentication_step)
        .commit()
    )
