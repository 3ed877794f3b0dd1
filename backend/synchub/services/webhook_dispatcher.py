"""
租户 webhook fan-out
  - 加载 user_id 下订阅了 event 的有效订阅，逐个并发 POST {event, data, timestamp}
  - 每个订阅独立：一个失败不影响其它；失败只记日志 + 计数，不在这里重试
  - 窗口内失败达到上限的订阅直接停用，不再调用
"""

from __future__ import annotations
import logging, secrets
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, List, Optional, Sequence

import requests
from sqlalchemy.orm import Session, sessionmaker

from synchub.db.session import session_scope
from synchub.infrastructure.cache import CacheService
from synchub.repository import webhook_repo
from synchub.utils.clock import isoformat, now_utc
from synchub.utils.serialization import dumps
from synchub.utils.signing import compute_hmac_hex

logger = logging.getLogger(__name__)

DEACTIVATED_REASON = "Deactivated due to excessive failures"


@dataclass(slots=True)
class _Target:
    id: int
    url: str
    secret: str


@dataclass(slots=True)
class DeliveryResult:
    subscription_id: int
    url: str
    ok: bool
    status_code: Optional[int] = None
    error: Optional[str] = None


class WebhookDispatcher:

    FAILURE_PREFIX = "webhook:failures:"

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        cache: CacheService,
        http: Optional[requests.Session] = None,
        timeout: float = 5,
        max_failures: int = 3,
        failure_window_sec: int = 3600,
        max_workers: int = 8,
        clock: Callable[[], datetime] = now_utc,
    ):
        self._session_factory = session_factory
        self.cache = cache
        self._http = http or requests.Session()
        self.timeout = timeout
        self.max_failures = max_failures
        self.failure_window_sec = failure_window_sec
        self.max_workers = max(1, max_workers)
        self._clock = clock


    # ---------- Public ----------
    def dispatch(self, user_id: str, event: str, payload: Any) -> List[DeliveryResult]:
        """不会因为某个订阅失败而抛异常；加载订阅失败（DB 异常）才会向上抛。"""
        with session_scope(self._session_factory) as db:
            rows = webhook_repo.list_active_for_event(db, user_id, event)
            targets = [_Target(id=r.id, url=r.url, secret=r.secret) for r in rows]

            live: List[_Target] = []
            for target in targets:
                if self._failure_count(target.id) >= self.max_failures:
                    webhook_repo.deactivate(db, target.id, DEACTIVATED_REASON)
                    logger.warning("Webhook subscription %s deactivated (url=%s)", target.id, target.url)
                    continue
                live.append(target)

        if not live:
            logger.debug("No webhook subscribers for user=%s event=%s", user_id, event)
            return []

        timestamp = isoformat(self._clock())
        raw = dumps({"event": event, "data": payload, "timestamp": timestamp}).encode("utf-8")

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(live)), thread_name_prefix="webhook") as pool:
            results = list(pool.map(lambda t: self._deliver(t, raw, timestamp), live))

        # DB 回写放在主线程，Session 不跨线程
        delivered_at = self._clock()
        with session_scope(self._session_factory) as db:
            for result in results:
                if result.ok:
                    webhook_repo.mark_success(db, result.subscription_id, delivered_at)
                    self.cache.delete(self.FAILURE_PREFIX + str(result.subscription_id))
                    logger.info("Webhook dispatched user=%s event=%s url=%s", user_id, event, result.url)
                else:
                    webhook_repo.mark_failure(db, result.subscription_id, result.error or "delivery failed")
                    self._record_failure(result.subscription_id)
                    logger.error("Webhook dispatch failed subscription=%s url=%s event=%s: %s",
                                 result.subscription_id, result.url, event, result.error)
        return results


    def register(self, user_id: str, events: Sequence[str], url: str, secret: Optional[str] = None):
        with session_scope(self._session_factory) as db:
            row = webhook_repo.create(db, user_id, url, list(events), secret or secrets.token_hex(32))
            logger.info("Webhook subscription registered user=%s events=%s url=%s", user_id, row.events, url)
            return row

    def list_subscriptions(self, user_id: str):
        with session_scope(self._session_factory) as db:
            return webhook_repo.list_for_user(db, user_id)

    def unregister(self, user_id: str, subscription_id: int) -> bool:
        with session_scope(self._session_factory) as db:
            removed = webhook_repo.delete_for_user(db, subscription_id, user_id)
        if removed:
            self.cache.delete(self.FAILURE_PREFIX + str(subscription_id))
        return removed



    # ---------- Internals ----------
    def _deliver(self, target: _Target, raw: bytes, timestamp: str) -> DeliveryResult:
        headers = {
            "Content-Type": "application/json",
            "X-Webhook-Timestamp": timestamp,
            "X-Webhook-Signature": compute_hmac_hex(target.secret, raw),
        }
        try:
            resp = self._http.post(target.url, data=raw, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            return DeliveryResult(target.id, target.url, ok=False, error=f"request error: {e}")
        except Exception as e:
            logger.exception("Unexpected webhook delivery error subscription=%s", target.id)
            return DeliveryResult(target.id, target.url, ok=False, error=str(e))

        if 200 <= resp.status_code < 300:
            return DeliveryResult(target.id, target.url, ok=True, status_code=resp.status_code)
        return DeliveryResult(target.id, target.url, ok=False, status_code=resp.status_code,
                              error=f"Webhook returned status {resp.status_code}")


    def _failure_count(self, subscription_id: int) -> int:
        value = self.cache.get(self.FAILURE_PREFIX + str(subscription_id))
        try:
            return int(value or 0)
        except (TypeError, ValueError):
            return 0

    def _record_failure(self, subscription_id: int) -> None:
        try:
            self.cache.increment(self.FAILURE_PREFIX + str(subscription_id), 1, self.failure_window_sec)
        except Exception as e:
            logger.warning("Failure counter not updated for subscription %s: %s", subscription_id, e)
