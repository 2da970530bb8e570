"""
Horizontal scaling infrastructure for PassBook.

Commits lock every record they touch. A single API instance uses
in-process locks; several instances sharing one database coordinate
through Redis.

Usage:
    from scaling import get_lock_manager

    lock_manager = get_lock_manager()
    with lock_manager.lock_many(addresses, timeout=10):
        commit()
"""

import os

from scaling.locking import LocalLockManager, LockInfo, LockManager, RedisLockManager

__all__ = [
    "LockInfo",
    "LockManager",
    "LocalLockManager",
    "RedisLockManager",
    "get_lock_manager",
    "reset_lock_manager",
]

# Singleton instance
_lock_manager: LockManager | None = None


def get_lock_manager(redis_url: str | None = None) -> LockManager:
    """
    Get the configured lock manager.

    Uses Redis for distributed locking if a Redis URL is given or
    REDIS_URL is set, otherwise local threading locks.
    """
    global _lock_manager
    if _lock_manager is None:
        redis_url = redis_url or os.getenv("REDIS_URL")
        if redis_url:
            _lock_manager = RedisLockManager(redis_url)
        else:
            _lock_manager = LocalLockManager()
    return _lock_manager


def reset_lock_manager() -> None:
    """Drop the singleton so the next call re-reads configuration."""
    global _lock_manager
    if _lock_manager is not None:
        _lock_manager.close()
    _lock_manager = None
