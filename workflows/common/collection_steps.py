"""
MODULE: workflows/common/collection_steps.py
PURPOSE: Factory for data-collection steps that own a subset of DataCollection.

Each generated step merges any data supplied on resume, completes immediately
when its keys are already known, asks its question when there is no user
message yet, and otherwise runs the hybrid collection for its keys. Step ids
come from an Enum; building the table fails at import time when a member has
no spec, a key is not a DataCollection field or a message key is unknown.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Type, TypeVar

from pydantic import BaseModel

from domain.messages import data_message, suspend_payload
from domain.models import DataCollection
from domain.vocabulary import SuspendReason
from workflows.common.capture import collect_data_hybrid, revert_invalid_fields, validate_collected
from workflows.common.merge import merge_data_collections, missing_keys
from workflows.common.messages import get_workflow_message, has_workflow_message
from workflows.runtime.engine import Step, StepContext, StepOutput
from workflows.runtime.errors import WorkflowDefinitionError

logger = logging.getLogger(__name__)

COLLECT_DATA_ACTION = "collect-data"
COLLECT_PROMPT = "Combine the message and the missing keys in a meaningful way."

E = TypeVar("E", bound=Enum)


@dataclass(frozen=True)
class CollectionStepSpec:
    id: Enum
    keys: Tuple[str, ...]
    message_keys: Tuple[str, ...]


def _question_messages(
    questions: Sequence[str],
    missing: Sequence[str],
    extra: Optional[Mapping[str, Any]] = None,
) -> list:
    messages = []
    for question in questions:
        content: Dict[str, Any] = {"message": question, "missingKeys": list(missing)}
        if extra:
            content.update(extra)
        else:
            content = {"prompt": COLLECT_PROMPT, **content}
        messages.append(data_message(content, action=COLLECT_DATA_ACTION))
    return messages


def make_collection_step(
    namespace: str,
    spec: CollectionStepSpec,
    *,
    schema: Type[BaseModel] = DataCollection,
) -> Step:
    step_id = str(spec.id.value)
    keys = list(spec.keys)
    fields = list(schema.model_fields)

    async def execute(ctx: StepContext) -> StepOutput:
        input_data = ctx.input
        resume = ctx.resume_data or {}
        data_collection = merge_data_collections(
            input_data.get("dataCollection"),
            resume.get("dataCollection"),
            fields,
        )
        missing = missing_keys(data_collection, keys)
        if not missing:
            cleaned, invalid = validate_collected(data_collection, keys)
            if invalid is None:
                logger.info("[COLLECT] %s already satisfied", step_id)
                return {**input_data, "dataCollection": cleaned, "completed": True}
            logger.warning("[COLLECT] %s stored %s is invalid (%s), asking again", step_id, invalid["field"], invalid["type"])
            data_collection = revert_invalid_fields(data_collection, None)
            missing = missing_keys(data_collection, keys)

        locale = ctx.run_context.locale
        questions = [get_workflow_message(locale, namespace, key) for key in spec.message_keys]
        user_message = resume.get("userMessage") or input_data.get("userMessage")
        if not user_message:
            return ctx.suspend(
                suspend_payload(
                    SuspendReason.USER_INPUT,
                    data_collection,
                    _question_messages(questions, missing),
                )
            )

        collected = await collect_data_hybrid(
            keys,
            questions[-1],
            user_message,
            data_collection,
            schema=schema,
            run_context=ctx.run_context,
        )
        if collected.error is not None:
            safe_data = revert_invalid_fields(collected.data_collection, data_collection)
            still_missing = missing_keys(safe_data, keys)
            return ctx.suspend(
                suspend_payload(
                    SuspendReason.USER_INPUT,
                    safe_data,
                    _question_messages(questions, still_missing, extra=collected.error),
                )
            )

        # The message has been extracted over the full schema; later steps must ask afresh.
        output = {key: value for key, value in input_data.items() if key != "userMessage"}
        output.update(dataCollection=collected.data_collection, completed=collected.completed)
        return output

    return Step(step_id, execute, description=f"Ask the user about {step_id}")


def build_collection_steps(
    namespace: str,
    step_ids: Type[E],
    specs: Sequence[CollectionStepSpec],
    *,
    schema: Type[BaseModel] = DataCollection,
) -> Dict[E, Step]:
    """Build one step per member of ``step_ids`` from ``specs``."""

    by_id: Dict[E, CollectionStepSpec] = {}
    fields = set(schema.model_fields)
    for spec in specs:
        if not isinstance(spec.id, step_ids):
            raise WorkflowDefinitionError(f"{spec.id!r} is not a member of {step_ids.__name__}")
        if spec.id in by_id:
            raise WorkflowDefinitionError(f"Duplicate collection step {spec.id.value}")
        unknown = [key for key in spec.keys if key not in fields]
        if unknown:
            raise WorkflowDefinitionError(f"Step {spec.id.value} collects unknown fields {unknown}")
        if not spec.message_keys:
            raise WorkflowDefinitionError(f"Step {spec.id.value} declares no question")
        for message_key in spec.message_keys:
            if not has_workflow_message(namespace, message_key):
                raise WorkflowDefinitionError(f"Unknown message {namespace}.{message_key}")
        by_id[spec.id] = spec

    absent = [member.value for member in step_ids if member not in by_id]
    if absent:
        raise WorkflowDefinitionError(f"No collection spec for {absent}")
    return {member: make_collection_step(namespace, by_id[member], schema=schema) for member in step_ids}
