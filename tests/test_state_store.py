"""Tests for the file-backed state store."""

import fcntl
import json
import os
import threading
from datetime import datetime

import pytest

from mlstack.state.manager import StateStore, open_state_store
from mlstack.state.models import ObservedRecord, ResourceKind
from mlstack.utils.errors import ConfigurationError, StateLockError, StateStoreError


def record(handle="bucket-a", exists=True):
    return ObservedRecord(
        kind=ResourceKind.STORAGE_BUCKET,
        exists=exists,
        provider_handle=handle,
        spec_hash="abc123",
        last_applied_at=datetime(2026, 1, 1, 12, 0, 0),
    )


class TestStateStore:
    """Tests for reading and writing records."""

    def test_missing_file_is_empty(self, store):
        assert store.all() == {}
        assert store.get("a") is None
        assert not store.exists()

    def test_put_then_get(self, store):
        store.put("a", record())

        loaded = store.get("a")
        assert loaded == record()
        assert store.exists()

    def test_put_replaces_only_one_record(self, store):
        store.put("a", record("bucket-a"))
        store.put("b", record("bucket-b"))

        store.put("a", record("bucket-a", exists=False))

        assert store.get("a").exists is False
        assert store.get("b").provider_handle == "bucket-b"

    def test_records_survive_a_new_instance(self, tmp_path):
        path = tmp_path / "nested" / "state.json"
        StateStore(str(path)).put("a", record())

        assert StateStore(str(path)).get("a").provider_handle == "bucket-a"

    def test_file_is_json_without_temp_leftovers(self, store):
        store.put("a", record())

        data = json.loads(store.state_path.read_text())
        assert data["resources"]["a"]["provider_handle"] == "bucket-a"
        assert data["resources"]["a"]["kind"] == "StorageBucket"
        assert not store.state_path.with_suffix(".json.tmp").exists()

    def test_corrupt_file_raises(self, store):
        store.state_path.write_text("{not json")

        with pytest.raises(StateStoreError):
            store.all()

    def test_schema_mismatch_raises(self, store):
        store.state_path.write_text(json.dumps({"resources": {"a": {"kind": "Nope"}}}))

        with pytest.raises(StateStoreError):
            store.get("a")

    def test_concurrent_puts_keep_every_record(self, store):
        threads = [
            threading.Thread(target=store.put, args=(f"r{n}", record(f"bucket-{n}")))
            for n in range(10)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert set(store.all()) == {f"r{n}" for n in range(10)}

    def test_lock_timeout(self, tmp_path):
        store = StateStore(str(tmp_path / "state.json"), lock_timeout=0.2)
        lock_fd = os.open(str(tmp_path / "state.json.lock"), os.O_CREAT | os.O_RDWR)
        fcntl.flock(lock_fd, fcntl.LOCK_EX)
        try:
            with pytest.raises(StateLockError):
                store.put("a", record())
        finally:
            fcntl.flock(lock_fd, fcntl.LOCK_UN)
            os.close(lock_fd)


class TestOpenStateStore:
    """Tests for state URI handling."""

    def test_plain_path(self, tmp_path):
        store = open_state_store(str(tmp_path / "state.json"))
        assert store.state_path == tmp_path / "state.json"

    def test_file_uri(self, tmp_path):
        store = open_state_store(f"file://{tmp_path}/state.json")
        assert store.state_path == tmp_path / "state.json"

    def test_unsupported_scheme(self):
        with pytest.raises(ConfigurationError):
            open_state_store("gs://bucket/state.json")
