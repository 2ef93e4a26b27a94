from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TypeVar

__workflow_role__ = "Database"

# Top-level collections of the JSON file: thread memory records and run snapshots.
COLLECTIONS = ("threads", "runs")

LOCK_TIMEOUT = 5.0
LOCK_SLEEP = 0.1

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FileLock:
    """[Workflow Database] Lock file created with O_EXCL; holds the owner's pid."""

    def __init__(self, path: Path, timeout: float = LOCK_TIMEOUT, sleep: float = LOCK_SLEEP) -> None:
        self.path = path
        self.timeout = timeout
        self.sleep = sleep
        self.fd: Optional[int] = None

    def _holder(self) -> str:
        try:
            return self.path.read_text(encoding="utf-8") or "?"
        except OSError:
            return "?"

    def acquire(self) -> None:
        deadline = time.monotonic() + self.timeout
        while self.fd is None:
            try:
                self.fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError:
                if time.monotonic() >= deadline:
                    holder = self._holder()
                    logger.error("[DB] lock %s still held by pid %s after %.1fs", self.path, holder, self.timeout)
                    raise TimeoutError(f"Could not acquire lock {self.path} (held by pid {holder})")
                time.sleep(self.sleep)
        os.write(self.fd, str(os.getpid()).encode("utf-8"))

    def release(self) -> None:
        if self.fd is None:
            return
        os.close(self.fd)
        self.fd = None
        self.path.unlink(missing_ok=True)

    def __enter__(self) -> "FileLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()


def empty_db() -> Dict[str, Any]:
    return {name: {} for name in COLLECTIONS}


def lock_path_for(path: Path, default_lock: Optional[Path] = None) -> Path:
    """[Workflow Database] Sibling lock file, e.g. ``.workflow_database.json.lock``."""

    if default_lock is not None:
        return default_lock
    path = Path(path)
    return path.with_name(f".{path.name}.lock")


def _read(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return empty_db()
    with path.open("r", encoding="utf-8") as fh:
        db = json.load(fh)
    for name in COLLECTIONS:
        if not isinstance(db.get(name), dict):
            db[name] = {}
    return db


def _write_atomic(db: Dict[str, Any], path: Path) -> None:
    tmp_fd, tmp_name = tempfile.mkstemp(prefix=path.name, suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as fh:
            json.dump(db, fh, indent=2, ensure_ascii=False)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    finally:
        if os.path.exists(tmp_name):
            os.remove(tmp_name)


def load_db(path: Path, lock_path: Optional[Path] = None) -> Dict[str, Any]:
    """[Workflow Database] Snapshot of the whole database; a missing file reads as empty."""

    path = Path(path)
    if not path.exists():
        return empty_db()
    with FileLock(lock_path_for(path, lock_path)):
        return _read(path)


def update_db(path: Path, mutate: Callable[[Dict[str, Any]], T], lock_path: Optional[Path] = None) -> T:
    """[Workflow Database] Apply ``mutate`` to the database under one lock and write it back.

    Returns whatever ``mutate`` returns. The file is replaced atomically so a
    crash mid-write leaves the previous contents intact.
    """

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with FileLock(lock_path_for(path, lock_path)):
        db = _read(path)
        result = mutate(db)
        _write_atomic(db, path)
    logger.debug("[DB] wrote %s", path)
    return result
