"""
Cache-aside 封装（Redis，值统一 JSON 编码）。

  - 读失败 = miss（fail-open），写/删失败只记日志
  - increment / decrement 是计数器，失败必须抛给调用方
  - get_or_set 进程内 single-flight：同一 key 并发 miss 只调用一次 producer
"""

from __future__ import annotations
import json
import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, TypeVar

from synchub.utils.serialization import to_jsonable

logger = logging.getLogger(__name__)

T = TypeVar("T")
DEFAULT_TTL = 3600
_MISSING = object()


class CacheService:

    def __init__(self, client, default_ttl: int = DEFAULT_TTL) -> None:
        self.r = client
        self.default_ttl = int(default_ttl)
        self._guard = threading.Lock()
        self._inflight: Dict[str, dict] = {}


    # ---------- Reads ----------
    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self.r.get(key)
        except Exception as e:
            logger.warning("Cache get failed key=%s: %s", key, e)
            return None
        if raw is None:
            logger.debug("Cache miss key=%s", key)
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning("Cache value for %s is not JSON, treating as miss: %s", key, e)
            return None

    def scan_keys(self, pattern: str, count: int = 500) -> List[str]:
        try:
            return list(self.r.scan_iter(match=pattern, count=count))
        except Exception as e:
            logger.warning("Cache scan failed pattern=%s: %s", pattern, e)
            return []


    # ---------- Writes ----------
    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        ttl = self.default_ttl if ttl_seconds is None else int(ttl_seconds)
        try:
            payload = json.dumps(to_jsonable(value), ensure_ascii=False)
            if ttl > 0:
                self.r.set(key, payload, ex=ttl)
            else:
                self.r.set(key, payload)
            return True
        except Exception as e:
            logger.warning("Cache set failed key=%s: %s", key, e)
            return False

    def delete(self, key: str) -> None:
        try:
            self.r.delete(key)
        except Exception as e:
            logger.warning("Cache delete failed key=%s: %s", key, e)

    def delete_pattern(self, pattern: str) -> int:
        """SCAN + 分批 DEL，避免 KEYS 阻塞 Redis。"""
        deleted = 0
        try:
            batch: List[str] = []
            for key in self.r.scan_iter(match=pattern, count=500):
                batch.append(key)
                if len(batch) >= 500:
                    deleted += int(self.r.delete(*batch) or 0)
                    batch = []
            if batch:
                deleted += int(self.r.delete(*batch) or 0)
            if deleted:
                logger.info("Cache pattern delete pattern=%s deleted=%d", pattern, deleted)
        except Exception as e:
            logger.warning("Cache pattern delete failed pattern=%s: %s", pattern, e)
        return deleted


    # ---------- Counters（失败向上抛） ----------
    def increment(self, key: str, amount: int = 1, ttl_seconds: Optional[int] = None) -> int:
        ttl = self.default_ttl if ttl_seconds is None else int(ttl_seconds)
        value = int(self.r.incrby(key, amount))
        if value == amount and ttl > 0:      # 新 key：第一次写入才设过期
            self.r.expire(key, ttl)
        return value

    def decrement(self, key: str, amount: int = 1, ttl_seconds: Optional[int] = None) -> int:
        ttl = self.default_ttl if ttl_seconds is None else int(ttl_seconds)
        value = int(self.r.decrby(key, amount))
        if value == -amount and ttl > 0:
            self.r.expire(key, ttl)
        return value


    # ---------- Cache-aside ----------
    def get_or_set(self, key: str, producer: Callable[[], T], ttl_seconds: Optional[int] = None) -> T:
        cached = self.get(key)
        if cached is not None:
            return cached

        with self._single_flight(key) as flight:
            if flight["value"] is not _MISSING:
                return flight["value"]
            cached = self.get(key)
            if cached is not None:
                return cached

            value = producer()
            self.set(key, value, ttl_seconds)
            # 缓存写失败时，同一批等待者仍然复用这次结果
            flight["value"] = value
            return value

    @contextmanager
    def _single_flight(self, key: str) -> Iterator[dict]:
        with self._guard:
            flight = self._inflight.get(key)
            if flight is None:
                flight = self._inflight[key] = {"lock": threading.Lock(), "refs": 0, "value": _MISSING}
            flight["refs"] += 1
        try:
            with flight["lock"]:
                yield flight
        finally:
            with self._guard:
                flight["refs"] -= 1
                if flight["refs"] == 0:
                    self._inflight.pop(key, None)
