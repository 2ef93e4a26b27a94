"""
MODULE: workflows/runtime/context.py
PURPOSE: Per-request key/value scope handed to every step of a run.

The context lives for one inbound message. It carries the locale, thread and
resource ids, the cached authentication token and the id of the workflow that
is currently active. Step timings are recorded on the context itself so
concurrent requests never share timing state.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

from workflows.io.config_store import normalize_locale
from workflows.runtime.errors import MissingContextError

logger = logging.getLogger(__name__)

LOCALE = "locale"
THREAD_ID = "threadId"
RESOURCE_ID = "resourceId"
AUTHENTICATION = "authentication"
ACTIVE_WORKFLOW_ID = "currentlyActiveWorkflowId"


class RunContext:
    """Ephemeral context scoped to a single request."""

    def __init__(
        self,
        values: Optional[Dict[str, Any]] = None,
        *,
        extractor: Any = None,
        classifier: Any = None,
        services: Any = None,
    ) -> None:
        self._values: Dict[str, Any] = dict(values or {})
        self.timings: List[Tuple[str, float]] = []
        # Collaborators for this request; None means "use the configured default".
        self.extractor = extractor
        self.classifier = classifier
        self.services = services

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value

    def has(self, key: str) -> bool:
        return key in self._values

    def entries(self) -> List[Tuple[str, Any]]:
        return list(self._values.items())

    @property
    def locale(self) -> str:
        return normalize_locale(self._values.get(LOCALE))

    def require_memory(self) -> Tuple[str, str]:
        """Return ``(thread_id, resource_id)`` or raise if either is missing."""

        thread_id = self._values.get(THREAD_ID)
        resource_id = self._values.get(RESOURCE_ID)
        if not thread_id or not resource_id:
            raise MissingContextError("Thread ID and resource ID are required")
        return str(thread_id), str(resource_id)

    @contextmanager
    def track(self, label: str) -> Iterator[None]:
        """Record how long the wrapped block took under ``label``."""

        started = time.perf_counter()
        try:
            yield
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000
            self.timings.append((label, elapsed_ms))
            logger.debug("[TIMING] %s took %.1fms", label, elapsed_ms)

    def timing_summary(self) -> Dict[str, float]:
        summary: Dict[str, float] = {}
        for label, elapsed in self.timings:
            summary[label] = summary.get(label, 0.0) + elapsed
        return summary
