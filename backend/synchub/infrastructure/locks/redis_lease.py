# synchub/infrastructure/locks/redis_lease.py
from __future__ import annotations
import logging, uuid
from contextlib import contextmanager
from typing import Iterator, Optional

logger = logging.getLogger(__name__)



"""
按 schedule 抢占的短租约（compare-and-swap）
    key: lease:{name}

    acquire(): SET key token NX EX ttl：只有 key 不存在时才写入
    release(): Lua 比较 token 再 DEL：只释放自己持有的租约，过期后被别人抢走的不会误删
    租约到期自动释放，worker 崩溃不会永久锁死
"""
class RedisLease:

    RELEASE_SCRIPT = """
    if redis.call('GET', KEYS[1]) == ARGV[1] then
        return redis.call('DEL', KEYS[1])
    end
    return 0
    """

    PREFIX = "lease:"

    def __init__(self, client, ttl_seconds: int = 900):
        self.r = client
        self.ttl_seconds = max(1, int(ttl_seconds))
        self._sha: Optional[str] = None


    def acquire(self, name: str, ttl_seconds: Optional[int] = None) -> Optional[str]:
        """成功返回 token；已被占用返回 None。Redis 异常向上抛（宁可不跑，也不重复跑）。"""
        token = uuid.uuid4().hex
        ok = self.r.set(self.PREFIX + name, token, nx=True, ex=ttl_seconds or self.ttl_seconds)
        return token if ok else None


    def release(self, name: str, token: str) -> bool:
        try:
            return int(self._eval_release(self.PREFIX + name, token)) == 1
        except Exception as e:
            # 释放失败只影响下一次触发的等待时间（最多 ttl）
            logger.warning("Lease release failed for %s: %s", name, e)
            return False


    def _eval_release(self, key: str, token: str):
        if self._sha is None:
            self._sha = self.r.script_load(self.RELEASE_SCRIPT)
        try:
            return self.r.evalsha(self._sha, 1, key, token)
        except Exception as e:
            # Redis 重启后 evalsha 可能报 NOSCRIPT，重载脚本再试一次
            msg = str(e)
            if "NOSCRIPT" in msg or "noscript" in msg:
                self._sha = self.r.script_load(self.RELEASE_SCRIPT)
                return self.r.evalsha(self._sha, 1, key, token)
            raise


    @contextmanager
    def hold(self, name: str, ttl_seconds: Optional[int] = None) -> Iterator[Optional[str]]:
        """
        with lease.hold("schedule:abc") as token:
            if token is None: ...  # 别人在跑
        """
        token = self.acquire(name, ttl_seconds)
        try:
            yield token
        finally:
            if token is not None:
                self.release(name, token)
