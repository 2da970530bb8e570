"""
Storage abstraction layer for PassBook.

This package provides a pluggable storage backend system that allows
ledger records to be persisted to different storage systems:

- JSON file (single node, survives restarts)
- PostgreSQL (for production scalability)
- Memory (for testing)

Usage:
    from storage import get_storage_backend, RecordWrite

    # Get configured backend (based on environment)
    storage = get_storage_backend()

    # Commit records atomically
    storage.commit([RecordWrite(address, "store", data, expected_version=0)])

    # Load one record
    record = storage.get(address)
"""

import os
from typing import TYPE_CHECKING

from storage.base import (
    RecordWrite,
    StorageBackend,
    StorageConflictError,
    StorageError,
    StoredRecord,
)
from storage.json_file import JSONFileStorage
from storage.memory import MemoryStorage

# Lazy import for PostgreSQL to avoid requiring psycopg2
if TYPE_CHECKING:
    from storage.postgresql import PostgreSQLStorage

__all__ = [
    "JSONFileStorage",
    "MemoryStorage",
    "RecordWrite",
    "StorageBackend",
    "StorageConflictError",
    "StorageError",
    "StoredRecord",
    "get_storage_backend",
]


def get_storage_backend(
    backend_type: str | None = None,
    data_file: str | None = None,
    database_url: str | None = None,
) -> StorageBackend:
    """
    Get the configured storage backend.

    Arguments override the environment variables:
        STORAGE_BACKEND: Backend type ("json", "postgresql", "memory")
        LEDGER_DATA_FILE: Path for JSON file storage (default: ledger_data.json)
        DATABASE_URL: PostgreSQL connection URL

    Returns:
        Configured StorageBackend instance
    """
    backend_type = (backend_type or os.getenv("STORAGE_BACKEND", "memory")).lower()

    if backend_type == "json":
        data_file = data_file or os.getenv("LEDGER_DATA_FILE", "ledger_data.json")
        return JSONFileStorage(data_file)

    elif backend_type == "postgresql" or backend_type == "postgres":
        database_url = database_url or os.getenv("DATABASE_URL")
        if not database_url:
            raise StorageError("DATABASE_URL environment variable required for PostgreSQL backend")
        from storage.postgresql import PostgreSQLStorage

        return PostgreSQLStorage(database_url)

    elif backend_type == "memory":
        return MemoryStorage()

    else:
        raise StorageError(f"Unknown storage backend: {backend_type}")
