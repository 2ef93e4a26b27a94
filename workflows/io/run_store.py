"""[Run Store] Snapshot storage for workflow runs (position, status, payloads)."""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict, Optional

from workflows.io.database import load_db, update_db


class InMemoryRunStore:
    def __init__(self) -> None:
        self._runs: Dict[str, Dict[str, Any]] = {}

    def load_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        record = self._runs.get(run_id)
        return copy.deepcopy(record) if record is not None else None

    def save_run(self, record: Dict[str, Any]) -> None:
        self._runs[record["runId"]] = copy.deepcopy(record)


class JsonRunStore:
    """Run snapshots in the shared JSON workflow database."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        return load_db(self.path)["runs"].get(run_id)

    def save_run(self, record: Dict[str, Any]) -> None:
        def _mutate(db: Dict[str, Any]) -> None:
            db["runs"][record["runId"]] = record

        update_db(self.path, _mutate)
