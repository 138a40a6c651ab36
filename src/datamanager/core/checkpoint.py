# src/datamanager/core/checkpoint.py
"""Append-only checkpoint log for crash-resumable runs.

The log records the identifier of every successfully processed record,
one per line, UTF-8. Its presence at job start signals a mid-run resume;
its absence signals a fresh run. Entries are never rewritten or deleted
individually: only the whole file is removed once a full pass completes.
"""

from __future__ import annotations

import os
import threading
from pathlib import Path

from datamanager.contracts.errors import CheckpointWriteTimeout


class CheckpointLog:
    """Thread-safe append-only line log.

    Concurrent writers serialize on a lock with a bounded wait. Failing to
    acquire the lock within lock_timeout_ms raises CheckpointWriteTimeout
    rather than silently dropping the entry.

    Usage:
        log = CheckpointLog(Path("RemoveTracesJob.txt"))
        processed = log.load_processed() if log.exists() else set()
        ...
        log.write(record.id)   # from any worker thread
        ...
        log.delete()           # after a full pass
    """

    def __init__(self, path: Path, *, lock_timeout_ms: int = 5000) -> None:
        if lock_timeout_ms <= 0:
            raise ValueError(f"lock_timeout_ms must be > 0, got {lock_timeout_ms}")
        self._path = path
        self._lock_timeout_ms = lock_timeout_ms
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def lock_timeout_ms(self) -> int:
        return self._lock_timeout_ms

    def exists(self) -> bool:
        return self._path.is_file()

    def create(self) -> None:
        """Create an empty log (fresh run). Existing content is kept."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.touch(exist_ok=True)

    def write(self, identifier: str) -> None:
        """Append one entry and flush it to disk.

        Raises:
            ValueError: If the entry is empty or spans several lines
            CheckpointWriteTimeout: If the lock is not acquired in time
        """
        if not identifier or "\n" in identifier or "\r" in identifier:
            raise ValueError(f"Checkpoint entry must be a single non-empty line, got {identifier!r}")

        if not self._lock.acquire(timeout=self._lock_timeout_ms / 1000):
            raise CheckpointWriteTimeout(str(self._path), self._lock_timeout_ms)
        try:
            with self._path.open("a", encoding="utf-8", newline="\n") as f:
                f.write(identifier + "\n")
                f.flush()
                os.fsync(f.fileno())
        finally:
            self._lock.release()

    def read_all(self) -> list[str]:
        """All entries in write order. Empty when the log does not exist."""
        if not self.exists():
            return []
        with self._path.open("r", encoding="utf-8") as f:
            return [line.rstrip("\r\n") for line in f if line.strip()]

    def load_processed(self) -> set[str]:
        return set(self.read_all())

    def delete(self) -> bool:
        """Remove the whole log. Returns True if a file was removed."""
        with self._lock:
            if not self.exists():
                return False
            self._path.unlink()
            return True
