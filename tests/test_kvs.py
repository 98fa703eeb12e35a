"""Store backends: in-memory semantics and Redis error translation."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest
import redis

from errors import StorageFailure
from kvs import MemoryStore, RedisStore, Store, create_store


class TestMemoryStore:
    def test_increment_starts_at_one(self, store: MemoryStore) -> None:
        assert store.increment("counter:Andy") == 1
        assert store.increment("counter:Andy") == 2
        assert store.get("counter:Andy") == "2"

    def test_concurrent_increments_are_unique(self, store: MemoryStore) -> None:
        results: list[int] = []
        lock = threading.Lock()

        def _bump() -> None:
            for _ in range(50):
                n = store.increment("counter:Andy")
                with lock:
                    results.append(n)

        threads = [threading.Thread(target=_bump) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert sorted(results) == list(range(1, 401))

    def test_expire_on_missing_key_is_noop(self, store: MemoryStore) -> None:
        store.expire("inbox:Nobody#1", 10)
        assert store.ttl("inbox:Nobody#1") is None

    def test_set_clears_expiry(self, store: MemoryStore, clock) -> None:
        store.set("k", "v")
        store.expire("k", 10)
        store.set("k", "w")
        clock.advance(11)
        assert store.get("k") == "w"

    def test_hash_drain_reads_and_clears(self, store: MemoryStore) -> None:
        store.hash_set("inbox:Andy#1", "Steve#1", "a")
        store.hash_set("inbox:Andy#1", "Alex#1", "b")
        assert store.hash_drain("inbox:Andy#1") == {"Steve#1": "a", "Alex#1": "b"}
        assert store.hash_drain("inbox:Andy#1") == {}

    def test_prefix_is_applied_to_stored_keys(self, clock) -> None:
        prefixed = MemoryStore(prefix="a:", clock=clock)
        prefixed.set("k", "1")
        assert prefixed.get("k") == "1"
        assert "a:k" in prefixed._values

    def test_type_mismatch_is_storage_failure(self, store: MemoryStore) -> None:
        store.set("inbox:Andy#1", "plain")
        with pytest.raises(StorageFailure):
            store.hash_set("inbox:Andy#1", "Steve#1", "x")


class _TwoStepStore(MemoryStore):
    """Backend without an atomic drain, to exercise the fallback."""

    hash_drain = Store.hash_drain


def test_fallback_drain_reads_then_deletes(clock) -> None:
    store = _TwoStepStore(clock=clock)
    store.hash_set("inbox:Andy#1", "Steve#1", "a")
    assert store.hash_drain("inbox:Andy#1") == {"Steve#1": "a"}
    assert store.hash_get_all("inbox:Andy#1") == {}


class TestRedisStore:
    def test_prefixes_keys(self) -> None:
        client = MagicMock()
        client.incr.return_value = 3
        store = RedisStore("redis://unused", prefix="haven:", client=client)

        assert store.increment("counter:Andy") == 3
        client.incr.assert_called_once_with("haven:counter:Andy")

    def test_hash_set_and_expire(self) -> None:
        client = MagicMock()
        store = RedisStore("redis://unused", client=client)
        store.hash_set("inbox:Andy#1", "Steve#1", "{}")
        store.expire("inbox:Andy#1", 600)
        client.hset.assert_called_once_with("inbox:Andy#1", "Steve#1", "{}")
        client.expire.assert_called_once_with("inbox:Andy#1", 600)

    def test_drain_runs_in_one_transaction(self) -> None:
        client = MagicMock()
        pipe = client.pipeline.return_value.__enter__.return_value
        pipe.execute.return_value = [{"Steve#1": "{}"}, 1]
        store = RedisStore("redis://unused", client=client)

        assert store.hash_drain("inbox:Andy#1") == {"Steve#1": "{}"}
        client.pipeline.assert_called_once_with(transaction=True)
        pipe.hgetall.assert_called_once_with("inbox:Andy#1")
        pipe.delete.assert_called_once_with("inbox:Andy#1")

    @pytest.mark.parametrize("method,args", [
        ("increment", ("counter:Andy",)),
        ("get", ("secret:Andy#1",)),
        ("set", ("secret:Andy#1", "s")),
        ("hash_set", ("inbox:Andy#1", "Steve#1", "{}")),
        ("expire", ("inbox:Andy#1", 600)),
        ("delete", ("inbox:Andy#1",)),
    ])
    def test_redis_errors_become_storage_failures(self, method: str, args: tuple) -> None:
        client = MagicMock()
        error = redis.ConnectionError("connection refused")
        for name in ("incr", "get", "set", "hset", "expire", "delete"):
            getattr(client, name).side_effect = error
        store = RedisStore("redis://unused", client=client)

        with pytest.raises(StorageFailure) as excinfo:
            getattr(store, method)(*args)
        assert excinfo.value.__cause__ is error

    def test_drain_errors_become_storage_failures(self) -> None:
        client = MagicMock()
        error = redis.ConnectionError("connection reset")
        client.pipeline.return_value.__enter__.return_value.execute.side_effect = error
        store = RedisStore("redis://unused", client=client)

        with pytest.raises(StorageFailure) as excinfo:
            store.hash_drain("inbox:Andy#1")
        assert excinfo.value.__cause__ is error


def test_create_store_rejects_unknown_backend() -> None:
    with pytest.raises(ValueError):
        create_store("etcd")


def test_create_store_memory_backend() -> None:
    assert isinstance(create_store("memory"), MemoryStore)
