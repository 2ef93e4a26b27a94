"""
[Thread Memory] Per-conversation metadata persisted between turns.

A thread record is ``{id, resourceId, title, createdAt, updatedAt, metadata}``
where ``metadata`` holds ``dataCollection``, ``activeWorkflow``,
``authentication`` and ``workingMemory``. The memory layer never merges
collected data itself: callers hand it records that were already merged.
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from workflows.io.database import load_db, update_db

logger = logging.getLogger(__name__)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_thread(thread_id: str, resource_id: str, title: str) -> Dict[str, Any]:
    now = _timestamp()
    return {
        "id": thread_id,
        "resourceId": resource_id,
        "title": title,
        "createdAt": now,
        "updatedAt": now,
        "metadata": {},
    }


class InMemoryThreadStore:
    """Thread store kept in a dict (tests, single-process development)."""

    def __init__(self) -> None:
        self._threads: Dict[str, Dict[str, Any]] = {}

    def get_thread(self, thread_id: str) -> Optional[Dict[str, Any]]:
        thread = self._threads.get(thread_id)
        return copy.deepcopy(thread) if thread is not None else None

    def create_thread(self, thread_id: str, resource_id: str, title: str) -> Dict[str, Any]:
        thread = _new_thread(thread_id, resource_id, title)
        self._threads[thread_id] = thread
        return copy.deepcopy(thread)

    def save_thread(self, thread: Dict[str, Any]) -> Dict[str, Any]:
        self._threads[thread["id"]] = copy.deepcopy(thread)
        return copy.deepcopy(thread)


class JsonThreadStore:
    """Thread store backed by the JSON workflow database."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def get_thread(self, thread_id: str) -> Optional[Dict[str, Any]]:
        return load_db(self.path)["threads"].get(thread_id)

    def create_thread(self, thread_id: str, resource_id: str, title: str) -> Dict[str, Any]:
        thread = _new_thread(thread_id, resource_id, title)

        def _mutate(db: Dict[str, Any]) -> Dict[str, Any]:
            return db["threads"].setdefault(thread_id, thread)

        return update_db(self.path, _mutate)

    def save_thread(self, thread: Dict[str, Any]) -> Dict[str, Any]:
        def _mutate(db: Dict[str, Any]) -> Dict[str, Any]:
            db["threads"][thread["id"]] = thread
            return thread

        return update_db(self.path, _mutate)


class ThreadMemory:
    """Typed access to one thread's metadata."""

    def __init__(self, thread_id: str, resource_id: str, store: Any) -> None:
        self.thread_id = thread_id
        self.resource_id = resource_id
        self.store = store

    @property
    def title(self) -> str:
        return f"{self.thread_id}_{_timestamp()}"

    def get(self) -> Dict[str, Any]:
        """Return the thread record, creating an empty one on first access."""

        thread = self.store.get_thread(self.thread_id)
        if thread is None:
            logger.info("[MEMORY] creating thread %s", self.thread_id)
            thread = self.store.create_thread(self.thread_id, self.resource_id, self.title)
        return thread

    def metadata(self) -> Dict[str, Any]:
        return dict(self.get().get("metadata") or {})

    def update(self, partial: Dict[str, Any]) -> Dict[str, Any]:
        """Shallow-merge ``partial`` over the stored metadata and persist it."""

        thread = self.get()
        metadata = dict(thread.get("metadata") or {})
        metadata.update(partial)
        saved = {
            "id": self.thread_id,
            "resourceId": self.resource_id,
            "title": thread.get("title") or self.title,
            "createdAt": thread.get("createdAt") or _timestamp(),
            "updatedAt": _timestamp(),
            "metadata": metadata,
        }
        logger.debug("[MEMORY] update %s keys=%s", self.thread_id, sorted(partial))
        return self.store.save_thread(saved)
