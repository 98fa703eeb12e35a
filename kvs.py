"""Key-value store backends for counters, secrets and mailboxes.

Every guarantee the relay makes (unique tags, last-write-wins mailbox
entries, at-most-once delivery) comes from the atomic primitives of the
backing store. Nothing above this module holds a lock.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Callable

import redis

from errors import StorageFailure

log = logging.getLogger(__name__)


class Store:
    """Interface the relay components depend on.

    Keys passed in are logical; backends apply their own prefix.
    """

    def increment(self, key: str) -> int:
        raise NotImplementedError

    def get(self, key: str) -> str | None:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def hash_set(self, key: str, field: str, value: str) -> None:
        raise NotImplementedError

    def hash_get_all(self, key: str) -> dict[str, str]:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def expire(self, key: str, seconds: int) -> None:
        raise NotImplementedError

    def hash_drain(self, key: str) -> dict[str, str]:
        """Read a whole hash and remove it.

        This fallback is two separate calls: a field written between the
        read and the delete is lost without ever being returned. Backends
        with an atomic read-and-clear override it.
        """
        entries = self.hash_get_all(key)
        if entries:
            self.delete(key)
        return entries

    def close(self) -> None:
        pass


class MemoryStore(Store):
    """In-process backend, mostly for tests and single-node development.

    The lock stands in for the per-command atomicity a real store server
    provides; ``clock`` is injectable so expiry can be driven by tests.
    """

    def __init__(self, prefix: str = "", clock: Callable[[], float] = time.monotonic) -> None:
        self.prefix = prefix
        self._clock = clock
        self._lock = threading.Lock()
        self._values: dict[str, object] = {}
        self._expires_at: dict[str, float] = {}

    def _purge_if_expired(self, key: str) -> None:
        deadline = self._expires_at.get(key)
        if deadline is not None and self._clock() >= deadline:
            self._values.pop(key, None)
            self._expires_at.pop(key, None)

    def _live(self, key: str) -> object | None:
        self._purge_if_expired(key)
        return self._values.get(key)

    def _hash(self, key: str) -> dict[str, str]:
        current = self._live(key)
        if current is None:
            current = {}
            self._values[key] = current
        if not isinstance(current, dict):
            raise StorageFailure(f"key {key} does not hold a hash")
        return current

    def increment(self, key: str) -> int:
        key = self.prefix + key
        with self._lock:
            current = self._live(key)
            try:
                number = int(current or 0) + 1  # type: ignore[call-overload]
            except (TypeError, ValueError) as exc:
                raise StorageFailure(f"key {key} does not hold an integer") from exc
            self._values[key] = str(number)
            return number

    def get(self, key: str) -> str | None:
        key = self.prefix + key
        with self._lock:
            value = self._live(key)
        if value is None:
            return None
        if not isinstance(value, str):
            raise StorageFailure(f"key {key} does not hold a string")
        return value

    def set(self, key: str, value: str) -> None:
        key = self.prefix + key
        with self._lock:
            self._values[key] = value
            self._expires_at.pop(key, None)

    def hash_set(self, key: str, field: str, value: str) -> None:
        key = self.prefix + key
        with self._lock:
            self._hash(key)[field] = value

    def hash_get_all(self, key: str) -> dict[str, str]:
        key = self.prefix + key
        with self._lock:
            current = self._live(key)
            if current is None:
                return {}
            if not isinstance(current, dict):
                raise StorageFailure(f"key {key} does not hold a hash")
            return dict(current)

    def delete(self, key: str) -> None:
        key = self.prefix + key
        with self._lock:
            self._values.pop(key, None)
            self._expires_at.pop(key, None)

    def expire(self, key: str, seconds: int) -> None:
        key = self.prefix + key
        with self._lock:
            if self._live(key) is not None:
                self._expires_at[key] = self._clock() + seconds

    def hash_drain(self, key: str) -> dict[str, str]:
        key = self.prefix + key
        with self._lock:
            current = self._live(key)
            if current is None:
                return {}
            if not isinstance(current, dict):
                raise StorageFailure(f"key {key} does not hold a hash")
            self._values.pop(key, None)
            self._expires_at.pop(key, None)
            return dict(current)

    def ttl(self, key: str) -> float | None:
        """Seconds left before ``key`` expires, None when it has no expiry."""
        key = self.prefix + key
        with self._lock:
            self._purge_if_expired(key)
            deadline = self._expires_at.get(key)
        if deadline is None:
            return None
        return deadline - self._clock()


class RedisStore(Store):
    """Redis backend. Every ``redis.RedisError`` surfaces as StorageFailure."""

    def __init__(self, url: str, prefix: str = "", client: redis.Redis | None = None) -> None:
        self.prefix = prefix
        self.r = client if client is not None else redis.Redis.from_url(url, decode_responses=True)

    @contextmanager
    def _storage_errors(self, operation: str, key: str) -> Iterator[None]:
        try:
            yield
        except redis.RedisError as exc:
            log.error("redis %s failed for %s: %s", operation, key, exc)
            raise StorageFailure(f"{operation} failed") from exc

    def increment(self, key: str) -> int:
        with self._storage_errors("incr", key):
            return int(self.r.incr(self.prefix + key))

    def get(self, key: str) -> str | None:
        with self._storage_errors("get", key):
            return self.r.get(self.prefix + key)  # type: ignore[return-value]

    def set(self, key: str, value: str) -> None:
        with self._storage_errors("set", key):
            self.r.set(self.prefix + key, value)

    def hash_set(self, key: str, field: str, value: str) -> None:
        with self._storage_errors("hset", key):
            self.r.hset(self.prefix + key, field, value)

    def hash_get_all(self, key: str) -> dict[str, str]:
        with self._storage_errors("hgetall", key):
            return dict(self.r.hgetall(self.prefix + key))  # type: ignore[arg-type]

    def delete(self, key: str) -> None:
        with self._storage_errors("del", key):
            self.r.delete(self.prefix + key)

    def expire(self, key: str, seconds: int) -> None:
        with self._storage_errors("expire", key):
            self.r.expire(self.prefix + key, seconds)

    def hash_drain(self, key: str) -> dict[str, str]:
        # MULTI/EXEC: no write can land between the HGETALL and the DEL.
        with self._storage_errors("hgetall+del", key):
            with self.r.pipeline(transaction=True) as pipe:
                pipe.hgetall(self.prefix + key)
                pipe.delete(self.prefix + key)
                entries, _deleted = pipe.execute()
        return dict(entries or {})

    def close(self) -> None:
        self.r.close()


def create_store(backend: str, redis_url: str = "", prefix: str = "") -> Store:
    """Build the store named by ``backend`` (``redis`` or ``memory``)."""
    if backend == "redis":
        log.info("using redis store (prefix=%r)", prefix)
        return RedisStore(redis_url, prefix=prefix)
    if backend == "memory":
        log.warning("using in-memory store; state is lost on restart and not shared")
        return MemoryStore(prefix=prefix)
    raise ValueError(f"unknown store backend: {backend!r}")
