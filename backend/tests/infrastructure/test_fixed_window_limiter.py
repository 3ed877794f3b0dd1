from __future__ import annotations

from datetime import datetime, timezone

from conftest import BrokenRedis, FakeRedis

from synchub.infrastructure.ratelimit import FixedWindowRateLimiter


NOW = 1_700_000_010.0            # 窗口 60s：bucket = 28333333，窗口结束 1_700_000_040


class _Clock:
    def __init__(self, value: float):
        self.value = value

    def __call__(self) -> float:
        return self.value


def test_allows_n_requests_then_blocks(fake_redis: FakeRedis) -> None:
    limiter = FixedWindowRateLimiter(fake_redis, clock=_Clock(NOW))

    results = [limiter.check_rate_limit("api:alice", 5, 60) for _ in range(5)]
    assert all(r.allowed for r in results)
    assert [r.remaining for r in results] == [4, 3, 2, 1, 0]

    blocked = limiter.check_rate_limit("api:alice", 5, 60)
    assert blocked.allowed is False
    assert blocked.remaining == 0
    assert blocked.limit == 5


def test_window_key_ttl_and_reset_time(fake_redis: FakeRedis) -> None:
    limiter = FixedWindowRateLimiter(fake_redis, clock=_Clock(NOW))
    result = limiter.check_rate_limit("api:alice", 5, 60)

    assert fake_redis.ttl("rate-limit:api:alice:28333333") == 60
    assert result.reset_time == datetime.fromtimestamp(1_700_000_040, tz=timezone.utc)
    assert result.reset_epoch_ms == 1_700_000_040_000


def test_next_window_starts_fresh(fake_redis: FakeRedis) -> None:
    clock = _Clock(NOW)
    limiter = FixedWindowRateLimiter(fake_redis, clock=clock)
    for _ in range(3):
        limiter.check_rate_limit("api:bob", 2, 60)
    assert limiter.check_rate_limit("api:bob", 2, 60).allowed is False

    clock.value = NOW + 60
    fresh = limiter.check_rate_limit("api:bob", 2, 60)
    assert fresh.allowed is True
    assert fresh.remaining == 1


def test_keys_are_isolated_per_actor(fake_redis: FakeRedis) -> None:
    limiter = FixedWindowRateLimiter(fake_redis, clock=_Clock(NOW))
    limiter.check_rate_limit("api:alice", 1, 60)
    assert limiter.check_rate_limit("api:alice", 1, 60).allowed is False
    assert limiter.check_rate_limit("api:bob", 1, 60).allowed is True


class _NoStandaloneCounters(FakeRedis):
    """单独的 INCR / EXPIRE 直接报错：计数必须走脚本。"""

    def incr(self, key, amount=1):
        raise AssertionError("INCR outside the window script")

    def expire(self, key, seconds):
        raise AssertionError("EXPIRE outside the window script")


def test_count_and_expiry_run_in_one_script() -> None:
    client = _NoStandaloneCounters()
    limiter = FixedWindowRateLimiter(client, clock=_Clock(NOW))

    assert [limiter.check_rate_limit("api:alice", 2, 60).remaining for _ in range(2)] == [1, 0]
    assert limiter.check_rate_limit("api:alice", 2, 60).allowed is False
    assert client.ttl("rate-limit:api:alice:28333333") == 60


def test_script_is_reloaded_after_redis_restart(fake_redis: FakeRedis) -> None:
    limiter = FixedWindowRateLimiter(fake_redis, clock=_Clock(NOW))
    limiter.check_rate_limit("api:alice", 5, 60)

    fake_redis.script_flush()
    result = limiter.check_rate_limit("api:alice", 5, 60)

    assert result.allowed is True
    assert result.remaining == 3


def test_fails_open_when_redis_is_down() -> None:
    limiter = FixedWindowRateLimiter(BrokenRedis(), clock=_Clock(NOW))
    result = limiter.check_rate_limit("api:alice", 10, 60)
    assert result.allowed is True
    assert result.remaining == 10


def test_info_and_reset(fake_redis: FakeRedis) -> None:
    clock = _Clock(NOW)
    limiter = FixedWindowRateLimiter(fake_redis, clock=clock)
    for _ in range(3):
        limiter.check_rate_limit("api:alice", 10, 60)
    count, _reset = limiter.get_rate_limit_info("api:alice", 60)
    assert count == 3

    clock.value = NOW + 60
    limiter.check_rate_limit("api:alice", 10, 60)

    assert limiter.reset("api:alice") == 2
    assert limiter.get_rate_limit_info("api:alice", 60)[0] == 0
