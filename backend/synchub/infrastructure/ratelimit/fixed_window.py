# synchub/infrastructure/ratelimit/fixed_window.py
from __future__ import annotations
import logging, time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional



"""
固定窗口计数限流（多进程/多机共享 Redis）
    key: rate-limit:{key}:{floor(now_ms / (window*1000))}

    check_rate_limit() 步骤：
      1) Lua 脚本里 INCR 当前窗口计数，计数 == 1（窗口内第一次）才 EXPIRE window 秒
         两步在同一个脚本里原子执行，不会留下没有 TTL 的窗口 key
      2) allowed = count <= max；remaining = max(0, max - count)
    窗口边界不做平滑，边界处允许突发；Redis 异常时放行（fail-open）。
"""
@dataclass(slots=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: datetime
    limit: int

    @property
    def reset_epoch_ms(self) -> int:
        return int(self.reset_time.timestamp() * 1000)


class FixedWindowRateLimiter:

    LUA_SCRIPT = """
    local count = redis.call('INCR', KEYS[1])
    if count == 1 then
        redis.call('EXPIRE', KEYS[1], tonumber(ARGV[1]))
    end
    return count
    """

    PREFIX = "rate-limit:"

    def __init__(self, client, clock: Callable[[], float] = time.time):
        self.r = client
        self._clock = clock
        self._sha: Optional[str] = None
        self._log = logging.getLogger(__name__)


    def _window(self, key: str, window_seconds: int) -> tuple[str, datetime]:
        now_ms = int(self._clock() * 1000)
        bucket = now_ms // (window_seconds * 1000)
        reset = datetime.fromtimestamp((bucket + 1) * window_seconds, tz=timezone.utc)
        return f"{self.PREFIX}{key}:{bucket}", reset


    def check_rate_limit(self, key: str, max_requests: int, window_seconds: int) -> RateLimitResult:
        window_key, reset = self._window(key, window_seconds)
        try:
            count = int(self._eval(window_key, window_seconds))
        except Exception as e:
            self._log.warning("Rate limit check failed for %s, failing open: %s", key, e)
            return RateLimitResult(allowed=True, remaining=max_requests, reset_time=reset, limit=max_requests)

        allowed = count <= max_requests
        remaining = max(0, max_requests - count)
        if not allowed:
            self._log.info("Rate limit exceeded key=%s count=%d max=%d", key, count, max_requests)
        return RateLimitResult(allowed=allowed, remaining=remaining, reset_time=reset, limit=max_requests)


    def _eval(self, window_key: str, window_seconds: int):
        if self._sha is None:
            self._sha = self.r.script_load(self.LUA_SCRIPT)
        try:
            return self.r.evalsha(self._sha, 1, window_key, int(window_seconds))
        except Exception as e:
            # Redis 重启后 evalsha 可能报 NOSCRIPT，重载脚本再试一次
            msg = str(e)
            if "NOSCRIPT" in msg or "noscript" in msg:
                self._sha = self.r.script_load(self.LUA_SCRIPT)
                return self.r.evalsha(self._sha, 1, window_key, int(window_seconds))
            raise


    def get_rate_limit_info(self, key: str, window_seconds: int) -> tuple[int, datetime]:
        """当前窗口已用次数（不计数）；失败返回 0。"""
        window_key, reset = self._window(key, window_seconds)
        try:
            raw = self.r.get(window_key)
            return (int(raw) if raw else 0), reset
        except Exception as e:
            self._log.warning("Rate limit info failed for %s: %s", key, e)
            return 0, reset


    def reset(self, key: str) -> int:
        """清掉某个 key 的所有窗口（运维用），异常向上抛。"""
        keys = list(self.r.scan_iter(match=f"{self.PREFIX}{key}:*", count=500))
        if not keys:
            return 0
        return int(self.r.delete(*keys) or 0)
