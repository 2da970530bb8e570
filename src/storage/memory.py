"""
In-memory storage backend.

This backend keeps records in memory only, useful for:
- Unit testing
- Development
- Single-process deployments that rebuild state on start
"""

import threading
from typing import Any

from storage.base import (
    RecordWrite,
    StorageBackend,
    StoredRecord,
    check_unique,
    resolve_write,
)


class MemoryStorage(StorageBackend):
    """
    In-memory storage backend.

    All data is lost when the process exits. Thread-safe operations.
    """

    def __init__(self):
        """Initialize empty memory storage."""
        self._records: dict[str, StoredRecord] = {}
        # RLock so get_info can call count while holding the lock
        self._lock = threading.RLock()

    def get(self, address: str) -> StoredRecord | None:
        # StoredRecord is frozen and holds bytes, so no copy is needed
        with self._lock:
            return self._records.get(address)

    def commit(self, writes: list[RecordWrite]) -> dict[str, int]:
        """Resolve every write against current state, then apply them together."""
        check_unique(writes)
        with self._lock:
            staged = {
                write.address: resolve_write(self._records.get(write.address), write)
                for write in writes
            }
            versions = {}
            for address, record in staged.items():
                if record is None:
                    self._records.pop(address, None)
                    versions[address] = 0
                else:
                    self._records[address] = record
                    versions[address] = record.version
            return versions

    def scan(self, kind: str | None = None) -> list[StoredRecord]:
        with self._lock:
            return [
                record
                for address, record in sorted(self._records.items())
                if kind is None or record.kind == kind
            ]

    def is_available(self) -> bool:
        """Memory storage is always available."""
        return True

    def get_info(self) -> dict[str, Any]:
        """Get storage backend information."""
        info = super().get_info()
        with self._lock:
            info.update(
                {
                    "has_data": bool(self._records),
                    "record_count": self.count(),
                }
            )
        return info

    def clear(self) -> None:
        """Clear all stored data."""
        with self._lock:
            self._records.clear()
