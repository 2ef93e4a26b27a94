"""Helpers shared by the concrete workflow steps."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from detection.intent.classifier import CANCEL_CONTINUE_OPTIONS, derive_intent, wants_to_cancel
from domain.messages import static_message, suspend_payload
from domain.models import AuthenticationToken
from domain.vocabulary import SuspendReason
from services.insurance_api import InsuranceServices, get_insurance_services
from workflows.common.messages import fill, get_workflow_message
from workflows.runtime.context import AUTHENTICATION, RunContext
from workflows.runtime.engine import StepContext, Suspended

logger = logging.getLogger(__name__)

CONTINUE_QUESTION = "Do you want to continue?"


def services_for(run_context: RunContext) -> InsuranceServices:
    return run_context.services or get_insurance_services()


def current_token(run_context: RunContext) -> Optional[AuthenticationToken]:
    raw = run_context.get(AUTHENTICATION)
    if raw is None:
        return None
    if isinstance(raw, AuthenticationToken):
        return raw
    try:
        return AuthenticationToken.model_validate(raw)
    except ValidationError:
        logger.warning("[AUTH] ignoring malformed cached token")
        return None


def require_access_token(run_context: RunContext) -> str:
    token = current_token(run_context)
    if token is None or not token.access_token:
        raise ValueError("Access token not found")
    return token.access_token


def static_suspend(
    ctx: StepContext,
    namespace: str,
    key: str,
    *,
    reason: SuspendReason = SuspendReason.USER_INPUT,
    values: Optional[Dict[str, Any]] = None,
) -> Suspended:
    """Suspend with one localized static message, optionally filled with ``values``."""

    text = get_workflow_message(ctx.run_context.locale, namespace, key)
    if values:
        text = fill(text, values)
    return ctx.suspend(suspend_payload(reason, ctx.input.get("dataCollection"), [static_message(text)]))


async def continue_or_abort(ctx: StepContext, namespace: str) -> Optional[Suspended]:
    """Classify the resume reply; a confident cancel aborts the run with ``step_cancel``."""

    user_message = (ctx.resume_data or {}).get("userMessage")
    derived = await derive_intent(
        CONTINUE_QUESTION,
        user_message,
        CANCEL_CONTINUE_OPTIONS,
        run_context=ctx.run_context,
    )
    if wants_to_cancel(derived):
        logger.info("[WF][STEP] %s: user canceled", ctx.step_id)
        return static_suspend(ctx, namespace, "step_cancel", reason=SuspendReason.ABORT)
    return None
