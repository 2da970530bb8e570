"""
Record locking for PassBook.

Provides lock managers that serialize commits touching the same ledger
records across threads and API instances:
- LocalLockManager: Thread-based locks for single-instance deployments
- RedisLockManager: Distributed locks using Redis for multi-instance

Usage:
    from scaling import get_lock_manager

    lock_manager = get_lock_manager()

    # One lock
    with lock_manager.lock("record:<address>", timeout=10):
        commit()

    # Every record a transaction touches, always in sorted order
    with lock_manager.lock_many(addresses, timeout=10):
        commit()
"""

import threading
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterable
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass


@dataclass
class LockInfo:
    """Information about a held lock."""

    name: str
    holder_id: str
    acquired_at: float
    ttl: float | None = None
    expires_at: float | None = None


class LockManager(ABC):
    """
    Abstract base class for lock managers.

    All lock managers must implement acquire/release/is_locked.
    """

    @abstractmethod
    def acquire(
        self,
        name: str,
        timeout: float = 30.0,
        ttl: float = 60.0,
    ) -> bool:
        """
        Acquire a named lock.

        Args:
            name: Lock identifier
            timeout: Maximum time to wait for lock (seconds)
            ttl: Lock time-to-live (auto-release after this time)

        Returns:
            True if lock acquired, False if timeout
        """
        pass

    @abstractmethod
    def release(self, name: str) -> bool:
        """
        Release a named lock.

        Returns:
            True if lock was held and released, False otherwise
        """
        pass

    @abstractmethod
    def is_locked(self, name: str) -> bool:
        """Check if a lock is currently held."""
        pass

    @contextmanager
    def lock(self, name: str, timeout: float = 30.0, ttl: float = 60.0):
        """
        Context manager for acquiring a lock.

        Raises:
            TimeoutError: If lock cannot be acquired within timeout
        """
        if not self.acquire(name, timeout=timeout, ttl=ttl):
            raise TimeoutError(f"Could not acquire lock '{name}' within {timeout}s")
        try:
            yield
        finally:
            self.release(name)

    @contextmanager
    def lock_many(self, names: Iterable[str], timeout: float = 30.0, ttl: float = 60.0):
        """
        Acquire several locks in sorted order and release them in reverse.

        Sorting gives every caller the same acquisition order, so two
        transactions over overlapping records cannot deadlock.
        """
        with ExitStack() as stack:
            for name in sorted(set(names)):
                stack.enter_context(self.lock(name, timeout=timeout, ttl=ttl))
            yield

    def get_info(self, name: str) -> LockInfo | None:
        """Get information about a lock (if held)."""
        return None

    def close(self) -> None:
        pass


class LocalLockManager(LockManager):
    """
    Thread-based lock manager for single-instance deployments.

    Uses threading.RLock for reentrant locking within the same process.
    """

    def __init__(self):
        self._locks: dict[str, threading.RLock] = {}
        self._lock_info: dict[str, LockInfo] = {}
        self._meta_lock = threading.Lock()
        self._instance_id = str(uuid.uuid4())[:8]

    def _get_lock(self, name: str) -> threading.RLock:
        """Get or create a lock by name."""
        with self._meta_lock:
            if name not in self._locks:
                self._locks[name] = threading.RLock()
            return self._locks[name]

    def acquire(
        self,
        name: str,
        timeout: float = 30.0,
        ttl: float = 60.0,
    ) -> bool:
        """Acquire a named lock. ``ttl`` is informational for local locks."""
        lock = self._get_lock(name)
        acquired = lock.acquire(timeout=timeout)

        if acquired:
            now = time.time()
            self._lock_info[name] = LockInfo(
                name=name,
                holder_id=f"{self._instance_id}:{threading.current_thread().name}",
                acquired_at=now,
                ttl=ttl,
                expires_at=now + ttl if ttl else None,
            )

        return acquired

    def release(self, name: str) -> bool:
        """Release a named lock."""
        lock = self._get_lock(name)
        try:
            lock.release()
        except RuntimeError:
            # Lock not held by this thread
            return False
        self._lock_info.pop(name, None)
        return True

    def is_locked(self, name: str) -> bool:
        return name in self._lock_info

    def get_info(self, name: str) -> LockInfo | None:
        return self._lock_info.get(name)

    def get_all_locks(self) -> list[LockInfo]:
        """Get information about all held locks."""
        return list(self._lock_info.values())


class RedisLockManager(LockManager):
    """
    Distributed lock manager using Redis.

    Requires redis package: pip install redis

    Features:
    - Distributed across multiple instances
    - Automatic TTL-based expiration
    - Atomic acquire (SET NX PX) and release (compare-and-delete script)
    """

    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self,
        redis_url: str,
        key_prefix: str = "passbook:lock:",
    ):
        """
        Initialize Redis lock manager.

        Args:
            redis_url: Redis connection URL
            key_prefix: Prefix for lock keys in Redis
        """
        import redis

        self._redis = redis.from_url(redis_url)
        self._key_prefix = key_prefix
        self._instance_id = str(uuid.uuid4())
        self._held_locks: dict[str, str] = {}  # name -> lock_value

    def _key(self, name: str) -> str:
        return f"{self._key_prefix}{name}"

    def acquire(
        self,
        name: str,
        timeout: float = 30.0,
        ttl: float = 60.0,
    ) -> bool:
        """Acquire a distributed lock, retrying with backoff until ``timeout``."""
        key = self._key(name)
        lock_value = f"{self._instance_id}:{time.time()}"
        ttl_ms = int(ttl * 1000)

        deadline = time.time() + timeout
        retry_delay = 0.05

        while True:
            if self._redis.set(key, lock_value, nx=True, px=ttl_ms):
                self._held_locks[name] = lock_value
                return True
            if time.time() >= deadline:
                return False
            time.sleep(retry_delay)
            retry_delay = min(retry_delay * 1.5, 1.0)

    def release(self, name: str) -> bool:
        """Release a distributed lock if this instance still holds it."""
        lock_value = self._held_locks.get(name)
        if not lock_value:
            return False

        result = self._redis.eval(self.RELEASE_SCRIPT, 1, self._key(name), lock_value)
        self._held_locks.pop(name, None)
        return bool(result)

    def is_locked(self, name: str) -> bool:
        return self._redis.exists(self._key(name)) > 0

    def get_info(self, name: str) -> LockInfo | None:
        key = self._key(name)
        value = self._redis.get(key)
        if not value:
            return None
        ttl = self._redis.ttl(key)

        try:
            holder_id, acquired_str = value.decode().rsplit(":", 1)
            acquired_at = float(acquired_str)
        except (ValueError, AttributeError):
            holder_id = str(value)
            acquired_at = 0.0

        return LockInfo(
            name=name,
            holder_id=holder_id,
            acquired_at=acquired_at,
            ttl=float(ttl) if ttl and ttl > 0 else None,
        )

    def close(self) -> None:
        """Close the Redis connection."""
        self._redis.close()
