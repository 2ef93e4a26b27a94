"""Field-wise merge of previously collected data with newly extracted data."""

from __future__ import annotations

import math
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence

from domain.models import DATA_COLLECTION_FIELDS


def is_empty(value: Any) -> bool:
    """``None``, blank strings and NaN count as "no value"."""

    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str) and value.strip() == "":
        return True
    return False


def merge_data_collections(
    existing: Optional[Mapping[str, Any]],
    incoming: Optional[Mapping[str, Any]],
    schema: Sequence[str] | Iterable[str] = DATA_COLLECTION_FIELDS,
) -> Dict[str, Any]:
    """Merge two partial records over every schema field.

    A non-empty incoming value wins, otherwise a non-empty existing value is
    kept, otherwise the field is ``None``. Keys outside the schema are dropped.
    """

    existing = existing or {}
    incoming = incoming or {}
    merged: Dict[str, Any] = {}
    for key in schema:
        new_value = incoming.get(key)
        if not is_empty(new_value):
            merged[key] = new_value
            continue
        old_value = existing.get(key)
        merged[key] = old_value if not is_empty(old_value) else None
    return merged


def missing_keys(data: Optional[Mapping[str, Any]], keys: Iterable[str]) -> list[str]:
    data = data or {}
    return [key for key in keys if is_empty(data.get(key))]
