"""
MODULE: detection/intent/classifier.py
PURPOSE: Intent derivation for steps that ask a yes/no style question.

DEPENDS ON:
    - adapters/agent_adapter.py   # classify(question, user_message, options)

USED BY:
    - workflows/steps/sales.py              # quote presentation, documents, payment
    - workflows/steps/policy_management.py  # termination confirmation

EXPORTS:
    - IntentResult
    - derive_intent(question, user_message, options, ...) -> Optional[IntentResult]
    - wants_to_cancel(result, threshold) -> bool
    - is_forward(result, forward_label, threshold) -> bool
    - CANCEL_CONTINUE_OPTIONS / QUOTE_OPTIONS
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from adapters.agent_adapter import AgentAdapter, get_intent_adapter
from workflows.runtime.context import RunContext

logger = logging.getLogger(__name__)

CONFIDENCE_THRESHOLD = 0.5

CANCEL_CONTINUE_OPTIONS: Dict[str, str] = {
    "cancel": (
        "If the user wants to cancel the flow. Eg. `cancel`, `stop`, `stopp`, "
        "and variations of these, also in different languages."
    ),
    "continue": (
        "If the user wants to continue. Eg. `continue`, `go on`, `yes`, `ok`, `sounds good`, "
        "`let's proceed`, `all good`, and variations of these, also in different languages."
    ),
}

QUOTE_OPTIONS: Dict[str, str] = {
    "details": (
        "If the message asks for details, comparison, what's included, limits, exclusions "
        "or clarification. de: `Details`, `mehr Infos`, `Leistungsübersicht`; "
        "en: `details`, `more info`, `what's included`."
    ),
    "continue": (
        "If the latest user message is only a continue/acknowledgement. de: `weiter`, `passt`, "
        "`ok`, `ja`; en: `continue`, `go on`, `yes`. This is the default intent."
    ),
}


@dataclass(frozen=True)
class IntentResult:
    intent: str
    confidence: float


def _parse(raw: Any, options: Mapping[str, str]) -> Optional[IntentResult]:
    if not isinstance(raw, Mapping):
        return None
    intent = str(raw.get("intent") or "").strip().lower()
    if intent not in options:
        return None
    try:
        confidence = float(raw.get("confidence"))
    except (TypeError, ValueError):
        return None
    if math.isnan(confidence):
        return None
    return IntentResult(intent=intent, confidence=max(0.0, min(1.0, confidence)))


async def derive_intent(
    question: str,
    user_message: Optional[str],
    options: Mapping[str, str],
    *,
    run_context: Optional[RunContext] = None,
    classifier: Optional[AgentAdapter] = None,
) -> Optional[IntentResult]:
    """Classify ``user_message`` into one of ``options``.

    Returns ``None`` when the classifier fails or answers with something outside
    ``options``. Callers treat ``None`` as "no signal".
    """

    if classifier is None and run_context is not None:
        classifier = run_context.classifier
    classifier = classifier or get_intent_adapter()
    try:
        if run_context is not None:
            with run_context.track("derive_intent"):
                raw = await classifier.classify(question, user_message or "", options)
        else:
            raw = await classifier.classify(question, user_message or "", options)
    except Exception as exc:  # classifier errors become "no signal"
        logger.warning("[INTENT] classification failed: %s", exc)
        return None

    result = _parse(raw, options)
    if result is None:
        logger.info("[INTENT] no usable intent for %r (raw=%r)", question, raw)
    else:
        logger.info("[INTENT] %s (confidence=%.2f)", result.intent, result.confidence)
    return result


def wants_to_cancel(result: Optional[IntentResult], threshold: float = CONFIDENCE_THRESHOLD) -> bool:
    """Only a confident ``cancel`` stops a flow; anything else moves forward."""

    return result is not None and result.intent == "cancel" and result.confidence >= threshold


def is_forward(
    result: Optional[IntentResult],
    forward_label: str = "continue",
    threshold: float = CONFIDENCE_THRESHOLD,
) -> bool:
    """Missing or low-confidence classification counts as forward progress."""

    if result is None:
        return True
    if result.confidence < threshold:
        return True
    return result.intent == forward_label
