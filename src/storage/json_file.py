"""
JSON file storage backend.

Persists ledger records to a local JSON file. Packed record bytes are
stored base64-encoded next to their kind and version:

    {"records": {"<address>": {"kind": "...", "data": "...", "version": 3}}}
"""

import base64
import binascii
import json
import os
import threading
from typing import Any

from storage.base import (
    RecordWrite,
    StorageBackend,
    StorageConflictError,
    StorageReadError,
    StorageWriteError,
    StoredRecord,
    check_unique,
    resolve_write,
)


class JSONFileStorage(StorageBackend):
    """
    JSON file storage backend.

    The whole file is rewritten on each commit via a temp file and an
    atomic rename. Thread-safe operations using a lock.
    """

    def __init__(self, file_path: str = "ledger_data.json"):
        """
        Initialize JSON file storage.

        Args:
            file_path: Path to the JSON file
        """
        self.file_path = file_path
        self._lock = threading.RLock()

    def _load(self) -> dict[str, StoredRecord]:
        """Read every record from disk."""
        try:
            if not os.path.exists(self.file_path):
                return {}

            with open(self.file_path, 'r', encoding='utf-8') as f:
                raw_data = f.read()

            if not raw_data.strip():
                return {}

            payload = json.loads(raw_data)
            return {
                address: StoredRecord(
                    address=address,
                    kind=entry["kind"],
                    data=base64.b64decode(entry["data"]),
                    version=int(entry["version"]),
                )
                for address, entry in payload.get("records", {}).items()
            }

        except FileNotFoundError:
            return {}
        except PermissionError as e:
            raise StorageReadError(f"Permission denied: {self.file_path}") from e
        except json.JSONDecodeError as e:
            raise StorageReadError(f"Invalid JSON format: {e}") from e
        except (KeyError, TypeError, ValueError, binascii.Error) as e:
            raise StorageReadError(f"Malformed record entry: {e}") from e

    def _save(self, records: dict[str, StoredRecord]) -> None:
        """Write every record to disk atomically."""
        payload = {
            "records": {
                address: {
                    "kind": record.kind,
                    "data": base64.b64encode(record.data).decode("ascii"),
                    "version": record.version,
                }
                for address, record in sorted(records.items())
            }
        }
        try:
            data = json.dumps(payload, indent=2)

            # Write to file atomically (write to temp, then rename)
            temp_path = f"{self.file_path}.tmp"
            with open(temp_path, 'w', encoding='utf-8') as f:
                f.write(data)

            os.replace(temp_path, self.file_path)

        except PermissionError as e:
            raise StorageWriteError(f"Permission denied: {self.file_path}") from e
        except OSError as e:
            raise StorageWriteError(f"OS error: {e}") from e

    def get(self, address: str) -> StoredRecord | None:
        with self._lock:
            return self._load().get(address)

    def commit(self, writes: list[RecordWrite]) -> dict[str, int]:
        check_unique(writes)
        with self._lock:
            records = self._load()
            staged = {
                write.address: resolve_write(records.get(write.address), write)
                for write in writes
            }
            versions = {}
            for address, record in staged.items():
                if record is None:
                    records.pop(address, None)
                    versions[address] = 0
                else:
                    records[address] = record
                    versions[address] = record.version
            self._save(records)
            return versions

    def check_versions(self, expected: dict[str, int]) -> None:
        """Single file read instead of one per address."""
        with self._lock:
            records = self._load()
            for address, version in sorted(expected.items()):
                found = records[address].version if address in records else 0
                if found != version:
                    raise StorageConflictError(address, version, found)

    def scan(self, kind: str | None = None) -> list[StoredRecord]:
        with self._lock:
            return [
                record
                for address, record in sorted(self._load().items())
                if kind is None or record.kind == kind
            ]

    def is_available(self) -> bool:
        """
        Check if file storage is available.

        Returns:
            True if the file path is writable
        """
        directory = os.path.dirname(self.file_path) or "."
        if not os.path.exists(directory):
            return False
        return os.access(directory, os.W_OK)

    def get_info(self) -> dict[str, Any]:
        """Get storage backend information."""
        info = super().get_info()
        info.update({
            "file_path": self.file_path,
            "file_exists": os.path.exists(self.file_path),
        })

        if os.path.exists(self.file_path):
            try:
                stat = os.stat(self.file_path)
                info["file_size_bytes"] = stat.st_size
                info["last_modified"] = stat.st_mtime
            except OSError:
                pass

        return info

