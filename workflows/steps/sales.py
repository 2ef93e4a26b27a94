"""
MODULE: workflows/steps/sales.py
PURPOSE: Six-phase private liability sales workflow.

PHASES:
    01-data-collection-flow   date of birth, coverage scope, quote (retries 3)
    02-quote-presentation-flow present the price; a "details" reply gets a follow-up
    03-underwriting-flow      current insurance -> claims history -> claim count,
                              rejecting when the claim count is above the limit
    04-personal-data-flow     name, email, address
    05-review-legal-flow      review loop until nothing changes, policy draft
                              (retries 3), documents, acceptance
    06-payment-success-flow   IBAN, payment confirmation, payment
    success-step              final localized confirmation

Every phase is a committed nested Workflow; ``build_sales_workflow`` chains
them under the ``sales-workflow`` id.
"""

from __future__ import annotations

import json
import logging
from datetime import date, timedelta
from enum import Enum
from typing import Any, Dict, Optional

from detection.intent.classifier import QUOTE_OPTIONS, derive_intent, is_forward
from domain.messages import error_message, static_message, suspend_payload
from domain.vocabulary import SuspendReason
from services.insurance_api import DEFAULT_PAYMENT_SCHEDULE, PolicyDraft
from workflows.common.capture import collect_data_hybrid
from workflows.common.collection_steps import CollectionStepSpec, build_collection_steps
from workflows.common.merge import merge_data_collections
from workflows.common.messages import fill, format_data_review, format_price, get_workflow_message
from workflows.io.config_store import get_validation_settings
from workflows.runtime.engine import Step, StepContext, StepOutput, Workflow, is_completed
from workflows.steps.shared import continue_or_abort, services_for, static_suspend

logger = logging.getLogger(__name__)

NAMESPACE = "sales"
# Quote requests use a fixed zip code; the address is only collected in phase 04.
QUOTE_ZIP_CODE = "12345"


class SalesStepId(str, Enum):
    DATE_OF_BIRTH = "date-of-birth-step"
    COVERAGE_SCOPE = "coverage-scope-step"
    CURRENT_INSURANCE = "current-insurance-step"
    CLAIMS_HISTORY = "claims-history-step"
    CLAIMS_COUNT = "claims-count-step"
    FULL_NAME = "full-name-step"
    EMAIL_ADDRESS = "email-address-step"
    ADDRESS = "address-step"
    IBAN = "iban-step"


COLLECTION_STEPS = build_collection_steps(
    NAMESPACE,
    SalesStepId,
    [
        CollectionStepSpec(SalesStepId.DATE_OF_BIRTH, ("dateOfBirth",), ("step_1_1",)),
        CollectionStepSpec(SalesStepId.COVERAGE_SCOPE, ("coverageScope",), ("step_1_2",)),
        CollectionStepSpec(SalesStepId.CURRENT_INSURANCE, ("hasInsurance",), ("step_3_1",)),
        CollectionStepSpec(SalesStepId.CLAIMS_HISTORY, ("hasClaims",), ("step_3_2",)),
        CollectionStepSpec(SalesStepId.CLAIMS_COUNT, ("claimCount",), ("step_3_3",)),
        CollectionStepSpec(SalesStepId.FULL_NAME, ("firstName", "lastName"), ("step_4_1",)),
        CollectionStepSpec(SalesStepId.EMAIL_ADDRESS, ("email",), ("step_4_2",)),
        CollectionStepSpec(SalesStepId.ADDRESS, ("street", "houseNumber", "zipCode", "city"), ("step_4_3",)),
        CollectionStepSpec(SalesStepId.IBAN, ("iban",), ("step_6_1",)),
    ],
)


def _gross(input_data: Dict[str, Any]) -> Optional[float]:
    return ((input_data.get("quote") or {}).get("data") or {}).get("gross")


def _price_values(ctx: StepContext) -> Dict[str, str]:
    return {"price": format_price(_gross(ctx.input), ctx.run_context.locale)}


# ---------------------------------------------------------------------------
# 01 data collection
# ---------------------------------------------------------------------------


def _prepare_sales_state(ctx: StepContext) -> Dict[str, Any]:
    return {"paymentResult": None, "policyDraft": None, "quote": None, "completed": None, **ctx.input}


async def _fetch_quote(ctx: StepContext) -> StepOutput:
    data = ctx.input.get("dataCollection") or {}
    quote = await services_for(ctx.run_context).fetch_quote(
        zip_code=QUOTE_ZIP_CODE,
        date_of_birth=data.get("dateOfBirth"),
        coverage_scope=data.get("coverageScope"),
    )
    logger.info("[SALES] quote gross=%s", quote.data.gross if quote.data else None)
    return {**ctx.input, "quote": quote.model_dump(), "completed": True}


fetch_quote_step = Step("fetch-quote-step", _fetch_quote, description="Calculate the quote", retries=3)


def build_data_collection_flow() -> Workflow:
    return (
        Workflow("01-data-collection-flow", description="Data collection flow")
        .map(_prepare_sales_state, id="prepare-sales-state")
        .dountil(COLLECTION_STEPS[SalesStepId.DATE_OF_BIRTH], is_completed)
        .dountil(COLLECTION_STEPS[SalesStepId.COVERAGE_SCOPE], is_completed)
        .then(fetch_quote_step)
        .commit()
    )


# ---------------------------------------------------------------------------
# 02 quote presentation
# ---------------------------------------------------------------------------


async def _present_quote(ctx: StepContext) -> StepOutput:
    question = get_workflow_message(ctx.run_context.locale, NAMESPACE, "step_2_1")
    if ctx.is_resuming:
        derived = await derive_intent(
            question,
            ctx.resume_data.get("userMessage"),
            QUOTE_OPTIONS,
            run_context=ctx.run_context,
        )
        return {**ctx.input, "completed": is_forward(derived)}
    return static_suspend(ctx, NAMESPACE, "step_2_1", values=_price_values(ctx))


async def _follow_up(ctx: StepContext) -> StepOutput:
    if ctx.is_resuming:
        return ctx.input
    return static_suspend(ctx, NAMESPACE, "step_2_2", values=_price_values(ctx))


quote_presentation_step = Step("quote-presentation-step", _present_quote, description="Present the quote")
follow_up_step = Step("follow-up-step", _follow_up, description="Answer a request for quote details")


def build_quote_presentation_flow() -> Workflow:
    return (
        Workflow("02-quote-presentation-flow", description="Quote presentation flow")
        .then(quote_presentation_step)
        .branch([(lambda state: not state.get("completed"), follow_up_step)])
        .map(lambda ctx: ctx.get_init_data(), id="restore-quote-input")
        .commit()
    )


# ---------------------------------------------------------------------------
# 03 underwriting
# ---------------------------------------------------------------------------


async def _check_claim_count(ctx: StepContext) -> StepOutput:
    claim_count = (ctx.input.get("dataCollection") or {}).get("claimCount")
    limit = get_validation_settings().max_claim_count
    if claim_count and claim_count > limit:
        logger.info("[SALES] rejected: %s claims (limit %s)", claim_count, limit)
        return static_suspend(ctx, NAMESPACE, "step_rejected", reason=SuspendReason.ABORT)
    return ctx.input


rejected_step = Step("rejected-step", _check_claim_count, description="Reject too many claims")


def _has(field: str):
    return lambda state: bool((state.get("dataCollection") or {}).get(field))


def build_underwriting_flow() -> Workflow:
    claim_count_flow = (
        Workflow("claim-count-workflow", description="Claim count workflow")
        .dountil(COLLECTION_STEPS[SalesStepId.CLAIMS_COUNT], is_completed)
        .then(rejected_step)
        .commit()
    )
    claims_history_flow = (
        Workflow("claims-history-workflow", description="Claims history workflow")
        .dountil(COLLECTION_STEPS[SalesStepId.CLAIMS_HISTORY], is_completed)
        .branch([(_has("hasClaims"), claim_count_flow)])
        .commit()
    )
    return (
        Workflow("03-underwriting-flow", description="Underwriting flow")
        .dountil(COLLECTION_STEPS[SalesStepId.CURRENT_INSURANCE], is_completed)
        .branch([(_has("hasInsurance"), claims_history_flow)])
        .commit()
    )


# ---------------------------------------------------------------------------
# 04 personal data
# ---------------------------------------------------------------------------


def build_personal_data_flow() -> Workflow:
    return (
        Workflow("04-personal-data-flow", description="Personal data flow")
        .dountil(COLLECTION_STEPS[SalesStepId.FULL_NAME], is_completed)
        .dountil(COLLECTION_STEPS[SalesStepId.EMAIL_ADDRESS], is_completed)
        .dountil(COLLECTION_STEPS[SalesStepId.ADDRESS], is_completed)
        .commit()
    )


# ---------------------------------------------------------------------------
# 05 review and legal
# ---------------------------------------------------------------------------


async def _review_data(ctx: StepContext) -> StepOutput:
    locale = ctx.run_context.locale
    data = merge_data_collections(ctx.input.get("dataCollection"), None)
    if not data.get("startDate"):
        data["startDate"] = (date.today() + timedelta(days=1)).isoformat()

    first_review = ctx.run_count == 0
    message = get_workflow_message(locale, NAMESPACE, "step_5_1" if first_review else "step_5_2")
    user_message = (ctx.resume_data or {}).get("userMessage")
    if not user_message:
        closing = get_workflow_message(locale, NAMESPACE, "step_5_1_1" if first_review else "step_5_2_1")
        review = format_data_review(locale, data, ctx.input.get("quote"))
        return ctx.suspend(
            suspend_payload(SuspendReason.USER_INPUT, data, [static_message("\n\n".join([message, review, closing]))])
        )

    collected = await collect_data_hybrid([], message, user_message, data, run_context=ctx.run_context)
    if collected.error is not None:
        return ctx.suspend(
            suspend_payload(
                SuspendReason.USER_INPUT,
                data,
                [error_message(json.dumps(collected.error), context={"step": "review-data"})],
            )
        )

    changed = collected.data_collection != data
    logger.info("[SALES] review changed=%s", changed)
    return {**ctx.input, "dataCollection": collected.data_collection, "completed": not changed}


async def _create_policy_draft(ctx: StepContext) -> StepOutput:
    data = ctx.input.get("dataCollection")
    if not data:
        raise ValueError("Data collection not found")
    request_values = (((ctx.input.get("quote") or {}).get("data") or {}).get("requestData") or {}).get("values") or {}
    draft = await services_for(ctx.run_context).create_policy_draft(
        data,
        payment_schedule=request_values.get("paymentSchedule") or DEFAULT_PAYMENT_SCHEDULE,
    )
    logger.info("[SALES] policy draft %s created", draft.policyId)
    return {**ctx.input, "policyDraft": draft.model_dump()}


async def _download_documents(ctx: StepContext) -> StepOutput:
    if ctx.is_resuming:
        aborted = await continue_or_abort(ctx, NAMESPACE)
        return aborted or {**ctx.input, "completed": True}
    policy_id = (ctx.input.get("policyDraft") or {}).get("policyId")
    return static_suspend(ctx, NAMESPACE, "step_5_3", values={"downloadUrl": f"/api/documents/{policy_id}"})


async def _accept_documents(ctx: StepContext) -> StepOutput:
    if ctx.is_resuming:
        aborted = await continue_or_abort(ctx, NAMESPACE)
        return aborted or {**ctx.input, "completed": True}
    return static_suspend(ctx, NAMESPACE, "step_5_4")


review_data_step = Step("review-data-step", _review_data, description="Review the collected data")
create_policy_draft_step = Step(
    "create-policy-draft-step", _create_policy_draft, description="Create the policy draft", retries=3
)
download_documents_step = Step("download-documents-step", _download_documents, description="Offer the documents")
accept_documents_step = Step("accept-documents-step", _accept_documents, description="Accept the documents")


def build_review_legal_flow() -> Workflow:
    return (
        Workflow("05-review-legal-flow", description="Review legal data")
        .dountil(review_data_step, is_completed)
        .then(create_policy_draft_step)
        .dountil(download_documents_step, is_completed)
        .dountil(accept_documents_step, is_completed)
        .commit()
    )


# ---------------------------------------------------------------------------
# 06 payment and success
# ---------------------------------------------------------------------------


async def _confirm_payment(ctx: StepContext) -> StepOutput:
    if ctx.is_resuming:
        aborted = await continue_or_abort(ctx, NAMESPACE)
        return aborted or {**ctx.input, "completed": True}
    return static_suspend(ctx, NAMESPACE, "step_6_2")


async def _pay_policy(ctx: StepContext) -> StepOutput:
    raw_draft = ctx.input.get("policyDraft")
    if not raw_draft:
        raise ValueError("Policy draft not found")
    draft = PolicyDraft.model_validate(raw_draft)
    result = await services_for(ctx.run_context).pay_policy(draft, ctx.input.get("dataCollection") or {})
    logger.info("[SALES] policy %s paid", draft.policyId)
    return {**ctx.input, "paymentResult": result.model_dump()}


async def _success(ctx: StepContext) -> StepOutput:
    data = ctx.input.get("dataCollection") or {}
    text = fill(
        get_workflow_message(ctx.run_context.locale, NAMESPACE, "step_success"),
        {"firstName": data.get("firstName"), "lastName": data.get("lastName")},
    )
    return suspend_payload(SuspendReason.USER_INPUT, data, [static_message(text)])


payment_confirmation_step = Step("payment-confirmation-step", _confirm_payment, description="Confirm the payment")
pay_policy_step = Step("pay-policy-step", _pay_policy, description="Pay the policy")
success_step = Step("success-step", _success, description="Success step")


def build_payment_success_flow() -> Workflow:
    return (
        Workflow("06-payment-success-flow", description="Payment and success flow")
        .dountil(COLLECTION_STEPS[SalesStepId.IBAN], is_completed)
        .then(payment_confirmation_step)
        .then(pay_policy_step)
        .commit()
    )


def build_sales_workflow() -> Workflow:
    return (
        Workflow("sales-workflow", description="6-step sales process with pausable execution")
        .then(build_data_collection_flow())
        .then(build_quote_presentation_flow())
        .then(build_underwriting_flow())
        .then(build_personal_data_flow())
        .then(build_review_legal_flow())
        .then(build_payment_success_flow())
        .then(success_step)
        .commit()
    )
