from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Type

from pydantic import BaseModel

from adapters.agent_adapter import (
    AgentAdapter,
    ExtractionFailure,
    ExtractionResult,
    ExtractionSuccess,
    get_extraction_adapter,
)
from domain.models import DataCollection
from workflows.common.merge import merge_data_collections, missing_keys
from workflows.common.validators import FIELD_VALIDATORS, to_validation_error
from workflows.runtime.context import RunContext

logger = logging.getLogger(__name__)

MISSING_FIELDS = "missing_fields"


@dataclass
class CollectionResult:
    """Outcome of one hybrid collection turn.

    ``error`` is either a typed validation error ``{type, field, params}`` or
    ``{type: "missing_fields", fields: [...]}``; ``None`` when ``completed``.
    ``extraction_failed`` records that the agent could not run at all, as
    opposed to running and finding nothing.
    """

    completed: bool
    data_collection: Dict[str, Any]
    error: Optional[Dict[str, Any]] = None
    extraction_failed: bool = False


def validate_collected(
    data: Dict[str, Any],
    schema: Sequence[str],
    *,
    today: Optional[date] = None,
) -> tuple[Dict[str, Any], Optional[Dict[str, Any]]]:
    """Validate every non-empty field in schema order.

    Returns the cleaned record (canonical values substituted) and the first
    validation error, if any. On error the caller keeps the unvalidated data.
    """

    cleaned = dict(data)
    for key in schema:
        validator = FIELD_VALIDATORS.get(key)
        value = data.get(key)
        if validator is None or value is None:
            continue
        result = validator(value, today=today)
        if not result.valid:
            return data, to_validation_error(result.error or "", key)
        cleaned[key] = result.value
    return cleaned, None


def revert_invalid_fields(
    data: Dict[str, Any],
    fallback: Optional[Dict[str, Any]],
    *,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """Canonicalize every validated field and revert the ones that fail.

    Valid values are replaced by their canonical form (``12.04.1985`` becomes
    ``1985-04-12``); invalid ones fall back to the ``fallback`` value when that
    one validates, else to ``None``. Stored data therefore only ever holds
    canonical, validated values.
    """

    fallback = fallback or {}
    safe = dict(data)
    for key, validator in FIELD_VALIDATORS.items():
        value = safe.get(key)
        if value is None:
            continue
        result = validator(value, today=today)
        if result.valid:
            safe[key] = result.value
            continue
        previous = fallback.get(key)
        restored = validator(previous, today=today) if previous is not None else None
        safe[key] = restored.value if restored is not None and restored.valid else None
    return safe


async def _extract(
    extractor: AgentAdapter,
    user_message: str,
    question: str,
    schema: Type[BaseModel],
    run_context: Optional[RunContext],
) -> ExtractionResult:
    try:
        if run_context is not None:
            with run_context.track("extract"):
                return await extractor.extract(user_message, question, schema)
        return await extractor.extract(user_message, question, schema)
    except Exception as exc:  # an extractor that raises is treated like one that reports failure
        return ExtractionFailure(error=str(exc))


async def collect_data_hybrid(
    keys: Sequence[str],
    question: str,
    user_message: str,
    already_collected: Optional[Dict[str, Any]],
    *,
    schema: Type[BaseModel] = DataCollection,
    extractor: Optional[AgentAdapter] = None,
    run_context: Optional[RunContext] = None,
    today: Optional[date] = None,
) -> CollectionResult:
    """Extract, merge, validate and decide completion for one user turn.

    Extraction always runs against the whole schema so volunteered values for
    later steps are kept; completion is judged on ``keys`` only. A validation
    error wins over missing fields.
    """

    fields: List[str] = list(schema.model_fields)
    if extractor is None and run_context is not None:
        extractor = run_context.extractor
    extractor = extractor or get_extraction_adapter()

    extraction = await _extract(extractor, user_message, question, schema, run_context)
    extraction_failed = False
    if isinstance(extraction, ExtractionSuccess):
        logger.info("[CAPTURE] extracted %s", sorted(k for k, v in extraction.data.items() if v is not None))
        merged = merge_data_collections(already_collected, extraction.data, fields)
    else:
        extraction_failed = True
        logger.warning("[CAPTURE] extraction failed, keeping existing data: %s", extraction.error)
        merged = merge_data_collections(already_collected, None, fields)

    cleaned, validation_error = validate_collected(merged, fields, today=today)
    if validation_error is not None:
        logger.info("[CAPTURE] validation error on %s: %s", validation_error["field"], validation_error["type"])
        return CollectionResult(
            completed=False,
            data_collection=merged,
            error=validation_error,
            extraction_failed=extraction_failed,
        )

    missing = missing_keys(cleaned, keys)
    if not missing:
        return CollectionResult(completed=True, data_collection=cleaned, extraction_failed=extraction_failed)

    logger.info("[CAPTURE] missing fields %s", missing)
    return CollectionResult(
        completed=False,
        data_collection=cleaned,
        error={"type": MISSING_FIELDS, "fields": missing},
        extraction_failed=extraction_failed,
    )
