from __future__ import annotations

from conftest import FakeRedis

from synchub.infrastructure.broadcast import RedisBroadcaster
from synchub.infrastructure.locks import RedisLease


def test_second_acquire_is_refused_until_release(fake_redis: FakeRedis) -> None:
    lease = RedisLease(fake_redis)
    token = lease.acquire("schedule:abc")
    assert token
    assert fake_redis.ttl("lease:schedule:abc") == 900
    assert lease.acquire("schedule:abc") is None

    assert lease.release("schedule:abc", token) is True
    assert lease.acquire("schedule:abc") is not None


def test_release_with_foreign_token_keeps_the_lease(fake_redis: FakeRedis) -> None:
    lease = RedisLease(fake_redis, ttl_seconds=30)
    token = lease.acquire("schedule:abc")
    assert lease.release("schedule:abc", "someone-else") is False
    assert fake_redis.get("lease:schedule:abc") == token


def test_hold_releases_on_exit_and_yields_none_when_taken(fake_redis: FakeRedis) -> None:
    lease = RedisLease(fake_redis)
    with lease.hold("schedule:abc") as token:
        assert token is not None
        with lease.hold("schedule:abc") as second:
            assert second is None
    assert fake_redis.get("lease:schedule:abc") is None


def test_release_reloads_script_after_noscript(fake_redis: FakeRedis) -> None:
    lease = RedisLease(fake_redis)
    token = lease.acquire("schedule:abc")
    assert lease.release("schedule:abc", "wrong-token") is False   # 预热脚本 sha
    fake_redis.script_flush()                                      # 模拟 Redis 重启

    assert lease.release("schedule:abc", token) is True


def test_broadcaster_publishes_event_envelope(fake_redis: FakeRedis) -> None:
    RedisBroadcaster(fake_redis).trigger("sync-abc", "progress-update", {"status": "running"})
    assert fake_redis.published == [
        ("sync-abc", '{"data":{"status":"running"},"event":"progress-update"}'),
    ]
