"""Unit tests for thread memory and the JSON workflow database."""

import pytest

from workflows.io.database import FileLock, load_db, lock_path_for, update_db
from workflows.io.run_store import InMemoryRunStore, JsonRunStore
from workflows.io.thread_memory import InMemoryThreadStore, JsonThreadStore, ThreadMemory


@pytest.fixture(params=["memory", "json"])
def thread_store(request, tmp_path):
    if request.param == "memory":
        return InMemoryThreadStore()
    return JsonThreadStore(tmp_path / "threads.json")


class TestThreadMemory:
    def test_first_access_creates_empty_thread(self, thread_store):
        memory = ThreadMemory("workflow_t1", "r1", thread_store)

        thread = memory.get()

        assert thread["id"] == "workflow_t1"
        assert thread["resourceId"] == "r1"
        assert thread["title"].startswith("workflow_t1_")
        assert memory.metadata() == {}

    def test_update_merges_top_level_keys(self, thread_store):
        """Updates are shallow: untouched keys survive, given keys are replaced."""
        memory = ThreadMemory("workflow_t1", "r1", thread_store)
        memory.update({"dataCollection": {"email": "erika@example.com"}, "workingMemory": "notes"})

        memory.update({"dataCollection": {"city": "Berlin"}, "activeWorkflow": None})

        metadata = memory.metadata()
        assert metadata["dataCollection"] == {"city": "Berlin"}
        assert metadata["workingMemory"] == "notes"
        assert metadata["activeWorkflow"] is None

    def test_created_at_is_stable(self, thread_store):
        memory = ThreadMemory("workflow_t1", "r1", thread_store)
        created = memory.get()["createdAt"]

        memory.update({"workingMemory": "x"})

        assert memory.get()["createdAt"] == created

    def test_threads_are_isolated(self, thread_store):
        ThreadMemory("workflow_a", "r1", thread_store).update({"workingMemory": "a"})

        assert ThreadMemory("workflow_b", "r1", thread_store).metadata() == {}


class TestJsonPersistence:
    def test_threads_survive_new_store_instance(self, tmp_path):
        path = tmp_path / "db.json"
        ThreadMemory("workflow_t1", "r1", JsonThreadStore(path)).update({"workingMemory": "kept"})

        reloaded = ThreadMemory("workflow_t1", "r1", JsonThreadStore(path)).metadata()

        assert reloaded == {"workingMemory": "kept"}

    def test_runs_and_threads_share_one_file(self, tmp_path):
        path = tmp_path / "db.json"
        JsonRunStore(path).save_run({"runId": "run-1", "status": "suspended"})
        JsonThreadStore(path).create_thread("workflow_t1", "r1", "title")

        db = load_db(path)

        assert set(db["runs"]) == {"run-1"}
        assert set(db["threads"]) == {"workflow_t1"}
        assert JsonRunStore(path).load_run("run-1")["status"] == "suspended"
        assert JsonRunStore(path).load_run("run-2") is None

    def test_missing_file_reads_as_empty_database(self, tmp_path):
        assert load_db(tmp_path / "absent.json") == {"threads": {}, "runs": {}}

    def test_lock_released_after_update(self, tmp_path):
        path = tmp_path / "db.json"

        update_db(path, lambda db: db["runs"].setdefault("r", {"runId": "r"}))

        assert not lock_path_for(path).exists()

    def test_held_lock_times_out_naming_holder(self, tmp_path):
        lock = lock_path_for(tmp_path / "db.json")
        lock.write_text("4242", encoding="utf-8")

        with pytest.raises(TimeoutError, match="4242"):
            FileLock(lock, timeout=0.2, sleep=0.05).acquire()


class TestInMemoryRunStore:
    def test_returns_copies(self):
        """Mutating a loaded record does not change the stored snapshot."""
        store = InMemoryRunStore()
        store.save_run({"runId": "run-1", "status": "running"})

        loaded = store.load_run("run-1")
        loaded["status"] = "tampered"

        assert store.load_run("run-1")["status"] == "running"
