"""File-backed state store with atomic per-record writes."""

import fcntl
import json
import os
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import urlparse

from pydantic import ValidationError

from mlstack.utils.errors import ConfigurationError, StateLockError, StateStoreError
from mlstack.utils.logging import get_logger

from .models import ObservedRecord, StateDocument

logger = get_logger(__name__)


class StateStore:
    """Persists the last applied record of each resource as a JSON file.

    Readers never lock: every write goes to a temporary file that is renamed
    over the state file, so a reader sees either the old or the new document.
    Writers are serialized by an in-process lock plus an exclusive lock file,
    and each put replaces exactly one record.
    """

    def __init__(self, state_path: str, lock_timeout: float = 30.0):
        """
        Initialize StateStore.

        Args:
            state_path: Path to the state file
            lock_timeout: Seconds to wait for the writer lock
        """
        self.state_path = Path(state_path)
        self.lock_timeout = lock_timeout
        self._write_lock = threading.Lock()

    def get(self, resource_id: str) -> Optional[ObservedRecord]:
        """
        Get the record of one resource.

        Returns:
            ObservedRecord or None if the resource has never been applied

        Raises:
            StateStoreError: If the state file cannot be read
        """
        return self._read().resources.get(resource_id)

    def all(self) -> Dict[str, ObservedRecord]:
        """
        Get every record.

        Raises:
            StateStoreError: If the state file cannot be read
        """
        return dict(self._read().resources)

    def put(self, resource_id: str, record: ObservedRecord) -> None:
        """
        Replace the record of one resource.

        Args:
            resource_id: Resource ID
            record: Complete record to store

        Raises:
            StateLockError: If the writer lock cannot be acquired
            StateStoreError: If the state file cannot be read or written
        """
        with self._write_lock:
            lock_fd = self._acquire_file_lock()
            try:
                document = self._read()
                document.resources[resource_id] = record.model_copy(deep=True)
                document.updated_at = datetime.utcnow()
                self._write(document)
            finally:
                self._release_file_lock(lock_fd)

        logger.debug(
            f"Recorded {resource_id}: exists={record.exists} handle={record.provider_handle}"
        )

    def exists(self) -> bool:
        """Check if state file exists."""
        return self.state_path.exists()

    def _read(self) -> StateDocument:
        """Load the state document; a missing file is an empty store."""
        if not self.state_path.exists():
            return StateDocument()

        try:
            with open(self.state_path, "r") as f:
                data = json.load(f)
            return StateDocument.model_validate(data)
        except json.JSONDecodeError as e:
            raise StateStoreError(f"Failed to parse state file {self.state_path}: {e}", cause=e)
        except ValidationError as e:
            raise StateStoreError(f"Invalid state file {self.state_path}: {e}", cause=e)
        except OSError as e:
            raise StateStoreError(f"Failed to read state file {self.state_path}: {e}", cause=e)

    def _write(self, document: StateDocument) -> None:
        """Write the document atomically."""
        temp_path = self.state_path.with_suffix(self.state_path.suffix + ".tmp")
        try:
            self.state_path.parent.mkdir(parents=True, exist_ok=True)
            payload = json.dumps(document.model_dump(mode="json"), indent=2, sort_keys=True)
            with open(temp_path, "w") as f:
                f.write(payload + "\n")
                f.flush()
                os.fsync(f.fileno())

            # Atomic rename
            temp_path.replace(self.state_path)
        except OSError as e:
            raise StateStoreError(f"Failed to save state file {self.state_path}: {e}", cause=e)

    def _acquire_file_lock(self) -> int:
        """Take the exclusive cross-process writer lock."""
        lock_path = self.state_path.with_suffix(self.state_path.suffix + ".lock")
        try:
            lock_path.parent.mkdir(parents=True, exist_ok=True)
            lock_fd = os.open(str(lock_path), os.O_CREAT | os.O_RDWR)
        except OSError as e:
            raise StateStoreError(f"Failed to open lock file {lock_path}: {e}", cause=e)

        start_time = time.monotonic()
        while True:
            try:
                fcntl.flock(lock_fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                return lock_fd
            except BlockingIOError:
                if time.monotonic() - start_time > self.lock_timeout:
                    os.close(lock_fd)
                    raise StateLockError(
                        f"Failed to acquire lock on state file after {self.lock_timeout}s"
                    )
                time.sleep(0.1)

    @staticmethod
    def _release_file_lock(lock_fd: int) -> None:
        try:
            fcntl.flock(lock_fd, fcntl.LOCK_UN)
        finally:
            os.close(lock_fd)


def open_state_store(uri: str, lock_timeout: float = 30.0) -> StateStore:
    """Open a state store from a plain path or a file:// URI.

    Raises:
        ConfigurationError: For any other URI scheme
    """
    parsed = urlparse(uri)
    if parsed.scheme in ("", "file"):
        path = parsed.path if parsed.scheme == "file" else uri
        if parsed.scheme == "file" and parsed.netloc:
            # file://relative/path keeps the first segment in netloc
            path = parsed.netloc + parsed.path
        return StateStore(path, lock_timeout=lock_timeout)

    raise ConfigurationError(
        f"Unsupported state backend '{parsed.scheme}://' (only local files are supported)"
    )
