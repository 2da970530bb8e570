"""
Abstract base class for storage backends.

This module defines the interface that all storage backends must implement.
A backend is a key-value store of packed records addressed by their
derived address. Every record carries a version that increases on each
write; commits are atomic across all records they touch.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


class StorageError(Exception):
    """Base exception for storage-related errors."""
    pass


class StorageConnectionError(StorageError):
    """Raised when connection to storage backend fails."""
    pass


class StorageReadError(StorageError):
    """Raised when reading from storage fails."""
    pass


class StorageWriteError(StorageError):
    """Raised when writing to storage fails."""
    pass


class StorageConflictError(StorageError):
    """Raised when a record changed between read and commit."""

    def __init__(self, address: str, expected: int, found: int):
        self.address = address
        self.expected = expected
        self.found = found
        super().__init__(
            f"Version conflict on {address}: expected {expected}, found {found}"
        )


@dataclass(frozen=True)
class StoredRecord:
    """A packed record as held by a backend."""

    address: str
    kind: str
    data: bytes
    version: int


@dataclass
class RecordWrite:
    """
    One staged change to a record.

    Attributes:
        address: Target address
        kind: Record kind label (e.g. "pass_book")
        data: New packed bytes, or None to delete the record
        expected_version: Version the record must still have at commit.
            0 means the record must not exist, None skips the check.
        mutate: Optional function applied to the current bytes (None when
            absent) at commit time. Used for increments that must not be a
            read-modify-write spanning transactions. Overrides ``data``.
    """

    address: str
    kind: str
    data: bytes | None = None
    expected_version: int | None = None
    mutate: Callable[[bytes | None], bytes] | None = None


def resolve_write(current: StoredRecord | None, write: RecordWrite) -> StoredRecord | None:
    """
    Compute the record that ``write`` leaves behind.

    Raises:
        StorageConflictError: If the expected version does not match
    """
    found = current.version if current else 0
    if write.expected_version is not None and write.expected_version != found:
        raise StorageConflictError(write.address, write.expected_version, found)

    if write.mutate is not None:
        data = write.mutate(current.data if current else None)
    elif write.data is None:
        return None
    else:
        data = write.data

    return StoredRecord(
        address=write.address,
        kind=write.kind,
        data=bytes(data),
        version=found + 1,
    )


class StorageBackend(ABC):
    """
    Abstract base class for ledger storage backends.

    All storage backends must implement these methods to provide
    a consistent interface for record persistence.
    """

    @abstractmethod
    def get(self, address: str) -> StoredRecord | None:
        """
        Load a single record.

        Returns:
            The stored record, or None if nothing lives at the address.

        Raises:
            StorageReadError: If reading fails
        """
        pass

    @abstractmethod
    def commit(self, writes: list[RecordWrite]) -> dict[str, int]:
        """
        Apply every write or none of them.

        Args:
            writes: Staged changes, at most one per address

        Returns:
            Mapping of address to new version (0 for deleted records)

        Raises:
            StorageConflictError: If any expected version does not match
            StorageWriteError: If writing fails
        """
        pass

    @abstractmethod
    def scan(self, kind: str | None = None) -> list[StoredRecord]:
        """
        List stored records, optionally only those of one kind.

        Returns:
            Records ordered by address
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """
        Check if the storage backend is available and ready.

        Returns:
            True if storage is accessible, False otherwise
        """
        pass

    def check_versions(self, expected: dict[str, int]) -> None:
        """
        Verify that records still have the versions seen by a reader.

        Raises:
            StorageConflictError: On the first mismatch
        """
        for address, version in sorted(expected.items()):
            current = self.get(address)
            found = current.version if current else 0
            if found != version:
                raise StorageConflictError(address, version, found)

    def count(self, kind: str | None = None) -> int:
        """Number of stored records, optionally of one kind."""
        return len(self.scan(kind))

    def get_info(self) -> dict[str, Any]:
        """
        Get information about the storage backend.

        Returns:
            Dictionary with backend type, status, and configuration
        """
        return {
            "backend_type": self.__class__.__name__,
            "available": self.is_available(),
        }

    def close(self) -> None:
        """
        Close the storage connection and release resources.

        Default implementation does nothing - backends with connections
        should override this.
        """
        pass

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - closes connection."""
        self.close()
        return False


def check_unique(writes: list[RecordWrite]) -> None:
    """A commit may touch each address once."""
    seen = set()
    for write in writes:
        if write.address in seen:
            raise StorageWriteError(f"Duplicate write for {write.address}")
        seen.add(write.address)
