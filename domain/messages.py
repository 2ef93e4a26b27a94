"""Message and suspend/resume envelopes exchanged between steps and the router.

Envelopes stay plain dicts so they serialize into run snapshots unchanged;
the helpers below are the only place their keys are spelled out.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from domain.vocabulary import SuspendReason


def static_message(content: str) -> Dict[str, Any]:
    return {"type": "static", "content": content}


def error_message(content: str, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    message: Dict[str, Any] = {"type": "error", "content": content}
    if context is not None:
        message["context"] = context
    return message


def data_message(content: Dict[str, Any], action: Optional[str] = None) -> Dict[str, Any]:
    message: Dict[str, Any] = {"type": "data", "content": content}
    if action is not None:
        message["action"] = action
    return message


def suspend_payload(
    reason: SuspendReason | str,
    data_collection: Optional[Dict[str, Any]],
    messages: List[Dict[str, Any]],
) -> Dict[str, Any]:
    """Build the payload a step hands back when it needs the user (or aborts)."""

    reason_value = reason.value if isinstance(reason, SuspendReason) else str(reason)
    return {
        "reason": reason_value,
        "dataCollection": data_collection,
        "messages": list(messages),
    }


def resume_data(user_message: Optional[str], data_collection: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {"userMessage": user_message, "dataCollection": data_collection}


def is_abort(payload: Optional[Dict[str, Any]]) -> bool:
    return bool(payload) and payload.get("reason") == SuspendReason.ABORT.value
