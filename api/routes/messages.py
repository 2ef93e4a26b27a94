"""
MODULE: api/routes/messages.py
PURPOSE: Chat, thread and document endpoints.

ROUTES:
    POST /api/chat                     - Route one user message into a workflow
    GET  /api/threads/{thread_id}      - Workflow memory of a conversation thread
    GET  /api/documents/{policy_id}    - Download the advisory document of a policy draft

Collaborators (executor, thread store, extraction/intent adapters, business
services) are read from ``app.state`` so tests can inject fakes; unset values
fall back to the configured defaults.
"""

import base64
import binascii
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request, Response
from pydantic import BaseModel, Field

from domain.models import ThreadMetadata
from domain.vocabulary import WorkflowId
from services.insurance_api import ServiceError, get_insurance_services
from workflows.runtime.context import LOCALE, RunContext
from workflows.runtime.router import default_thread_store, route_message, workflow_thread_id

logger = logging.getLogger(__name__)

router = APIRouter(tags=["messages"])


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class ChatRequest(BaseModel):
    workflowId: WorkflowId
    message: str
    threadId: str = Field(min_length=1)
    resourceId: str = Field(min_length=1)
    locale: Optional[str] = None


class ChatResponse(BaseModel):
    threadId: str
    messages: List[Dict[str, Any]]


class ThreadResponse(BaseModel):
    threadId: str
    resourceId: Optional[str] = None
    updatedAt: Optional[str] = None
    metadata: ThreadMetadata


# ---------------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------------

def _state(request: Request, name: str) -> Any:
    return getattr(request.app.state, name, None)


def _thread_store(request: Request) -> Any:
    return _state(request, "thread_store") or default_thread_store()


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.post("/api/chat", response_model=ChatResponse)
async def chat(payload: ChatRequest, request: Request) -> ChatResponse:
    run_context = RunContext(
        {LOCALE: payload.locale},
        extractor=_state(request, "extractor"),
        classifier=_state(request, "classifier"),
        services=_state(request, "services"),
    )
    result = await route_message(
        payload.workflowId,
        payload.message,
        payload.threadId,
        payload.resourceId,
        run_context=run_context,
        executor=_state(request, "executor"),
        thread_store=_thread_store(request),
    )
    timings = run_context.timing_summary()
    if timings:
        logger.debug("[API] /api/chat timings %s", {label: round(ms, 1) for label, ms in timings.items()})
    return ChatResponse(threadId=payload.threadId, messages=result["messages"])


@router.get("/api/threads/{thread_id}", response_model=ThreadResponse)
async def get_thread(thread_id: str, request: Request) -> ThreadResponse:
    thread = _thread_store(request).get_thread(workflow_thread_id(thread_id))
    if thread is None:
        raise HTTPException(status_code=404, detail=f"Thread {thread_id} not found")
    return ThreadResponse(
        threadId=thread_id,
        resourceId=thread.get("resourceId"),
        updatedAt=thread.get("updatedAt"),
        metadata=ThreadMetadata.model_validate(thread.get("metadata") or {}),
    )


@router.get("/api/documents/{policy_id}")
async def download_document(policy_id: str, request: Request) -> Response:
    services = _state(request, "services") or get_insurance_services()
    try:
        document = await services.fetch_dynamic_document(policy_id)
    except ServiceError as exc:
        logger.error("[API] document for %s unavailable: %s", policy_id, exc)
        raise HTTPException(status_code=502, detail="Document service unavailable") from exc

    encoded = (document.data or {}).get("data")
    if not encoded:
        raise HTTPException(status_code=404, detail=f"No document for {policy_id}")
    try:
        content = base64.b64decode(encoded)
    except (binascii.Error, ValueError) as exc:
        raise HTTPException(status_code=502, detail="Malformed document") from exc
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{policy_id}.pdf"'},
    )
