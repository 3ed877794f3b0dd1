from __future__ import annotations

import threading
import time
from datetime import datetime, timezone

from conftest import BrokenRedis, FakeRedis
import pytest
import redis

from synchub.infrastructure.cache import CacheService


def test_set_and_get_roundtrip_json(cache: CacheService, fake_redis: FakeRedis) -> None:
    stamp = datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc)
    assert cache.set("inventory:shipbob", [{"sku": "A1", "quantity": 5, "at": stamp}], 120) is True

    assert cache.get("inventory:shipbob") == [{"sku": "A1", "quantity": 5, "at": "2026-10-19T09:30:00Z"}]
    assert fake_redis.ttl("inventory:shipbob") == 120


def test_default_ttl_applies_when_not_given(fake_redis: FakeRedis) -> None:
    cache = CacheService(fake_redis, default_ttl=90)
    cache.set("k", {"a": 1})
    assert fake_redis.ttl("k") == 90


def test_non_json_value_is_a_miss(cache: CacheService, fake_redis: FakeRedis) -> None:
    fake_redis.set("raw", "not-json{")
    assert cache.get("raw") is None


def test_reads_and_writes_fail_open_when_redis_is_down() -> None:
    cache = CacheService(BrokenRedis())
    assert cache.get("anything") is None
    assert cache.set("anything", 1) is False
    assert cache.scan_keys("*") == []
    assert cache.delete_pattern("*") == 0
    cache.delete("anything")       # 只记日志，不抛


def test_counters_propagate_redis_errors() -> None:
    cache = CacheService(BrokenRedis())
    with pytest.raises(redis.exceptions.ConnectionError):
        cache.increment("webhook:failures:1")


def test_increment_sets_ttl_only_on_first_write(cache: CacheService, fake_redis: FakeRedis) -> None:
    assert cache.increment("counter", 1, 30) == 1
    fake_redis.expire("counter", 500)           # 人为拉长，第二次 increment 不应重置
    assert cache.increment("counter", 1, 30) == 2
    assert fake_redis.ttl("counter") == 500
    assert cache.decrement("counter", 2) == 0


def test_delete_pattern_only_removes_matching_keys(cache: CacheService) -> None:
    for key in ("sync:progress:a", "sync:progress:b", "schedule:a"):
        cache.set(key, 1)
    assert cache.delete_pattern("sync:progress:*") == 2
    assert cache.scan_keys("*") == ["schedule:a"]


def test_get_or_set_returns_cached_value_without_calling_producer(cache: CacheService) -> None:
    cache.set("k", {"v": 1})
    assert cache.get_or_set("k", lambda: pytest.fail("producer should not run")) == {"v": 1}


def test_get_or_set_is_single_flight_under_concurrency(cache: CacheService) -> None:
    calls = []
    barrier = threading.Barrier(8)
    results = []

    def producer():
        calls.append(1)
        time.sleep(0.05)
        return [{"sku": "A1", "quantity": 5}]

    def worker():
        barrier.wait()
        results.append(cache.get_or_set("inventory:shipbob", producer, 60))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(calls) == 1
    assert results == [[{"sku": "A1", "quantity": 5}]] * 8


def test_get_or_set_shares_result_even_when_cache_write_fails() -> None:
    cache = CacheService(BrokenRedis())
    assert cache.get_or_set("k", lambda: {"fresh": True}) == {"fresh": True}
