"""
组合根：每个进程（API / celery worker）构造一次，组件之间只通过构造参数互相引用

    redis ─┬─ cache ─┬─ dispatcher ─┬─ tracker ─┐
           │         │              └───────────┴─ inventory_sync ── schedule_manager
           ├─ limiter / lease / broadcaster / metrics
    requests.Session ── notifier / providers / integrations
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

import requests
from sqlalchemy.orm import Session, sessionmaker

from synchub.core.config import Settings, settings as default_settings
from synchub.db.session import SessionLocal
from synchub.infrastructure.broadcast import RedisBroadcaster
from synchub.infrastructure.cache import CacheService
from synchub.infrastructure.locks import RedisLease
from synchub.infrastructure.ratelimit import FixedWindowRateLimiter
from synchub.infrastructure.redis_client import build_redis
from synchub.integrations.providers import ProviderRegistry
from synchub.services.integration_service import IntegrationService
from synchub.services.inventory_sync import InventorySyncService
from synchub.services.metrics import MetricsRecorder
from synchub.services.notification_service import NotificationService
from synchub.services.schedule_manager import ScheduleManager
from synchub.services.sync_progress import SyncProgressTracker
from synchub.services.webhook_dispatcher import WebhookDispatcher

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    session_factory: sessionmaker[Session]
    redis: object
    cache: CacheService
    limiter: FixedWindowRateLimiter
    lease: RedisLease
    broadcaster: RedisBroadcaster
    metrics: MetricsRecorder
    notifier: NotificationService
    dispatcher: WebhookDispatcher
    tracker: SyncProgressTracker
    providers: ProviderRegistry
    integrations: IntegrationService
    inventory_sync: InventorySyncService
    schedules: ScheduleManager


def build_container(
    cfg: Optional[Settings] = None,
    *,
    redis_client=None,
    session_factory: Optional[sessionmaker[Session]] = None,
    http: Optional[requests.Session] = None,
    providers: Optional[ProviderRegistry] = None,
) -> ServiceContainer:
    """测试里传入 redis 替身 / 内存库 session_factory / 假 http / 手工 registry。"""
    cfg = cfg or default_settings
    client = redis_client if redis_client is not None else build_redis(cfg.REDIS_URL)
    factory = session_factory or SessionLocal
    http = http or requests.Session()

    cache = CacheService(client, default_ttl=cfg.CACHE_DEFAULT_TTL_SEC)
    metrics = MetricsRecorder(client)
    notifier = NotificationService.from_settings(cfg, session=http)

    dispatcher = WebhookDispatcher(
        factory, cache, http=http,
        timeout=cfg.WEBHOOK_TIMEOUT_SEC,
        max_failures=cfg.WEBHOOK_MAX_FAILURES,
        failure_window_sec=cfg.WEBHOOK_FAILURE_WINDOW_SEC,
        max_workers=cfg.WEBHOOK_MAX_WORKERS,
    )
    broadcaster = RedisBroadcaster(client)
    tracker = SyncProgressTracker(cache, dispatcher=dispatcher, broadcaster=broadcaster, metrics=metrics,
                                  retention_sec=cfg.SYNC_PROGRESS_TTL_SEC)

    client_kwargs = dict(session=http, notifier=notifier, timeout=cfg.INTEGRATION_HTTP_TIMEOUT,
                         admin_email=cfg.ADMIN_EMAIL, max_retries=cfg.INTEGRATION_MAX_RETRIES,
                         initial_delay_ms=cfg.INTEGRATION_INITIAL_DELAY_MS)
    registry = providers if providers is not None else ProviderRegistry.from_settings(cfg, **client_kwargs)
    integrations = IntegrationService(
        factory,
        notifier=notifier,
        http=http,
        timeout=cfg.INTEGRATION_HTTP_TIMEOUT,
        admin_email=cfg.ADMIN_EMAIL,
        max_retries=cfg.INTEGRATION_MAX_RETRIES,
        initial_delay_ms=cfg.INTEGRATION_INITIAL_DELAY_MS,
    )

    inventory_sync = InventorySyncService(factory, cache, registry, dispatcher=dispatcher, tracker=tracker,
                                          metrics=metrics, cache_ttl_sec=cfg.INVENTORY_CACHE_TTL_SEC)
    schedules = ScheduleManager(
        factory, cache, inventory_sync,
        notifier=notifier,
        metrics=metrics,
        default_timezone=cfg.SCHEDULE_DEFAULT_TIMEZONE,
        arm_buffer_sec=cfg.SCHEDULE_ARM_BUFFER_SEC,
        retry_base_sec=cfg.SCHEDULE_RETRY_BASE_SEC,
        default_max_retries=cfg.SCHEDULE_MAX_RETRIES,
    )

    logger.info("Service container ready (providers=%s)", registry.names())
    return ServiceContainer(
        settings=cfg,
        session_factory=factory,
        redis=client,
        cache=cache,
        limiter=FixedWindowRateLimiter(client),
        lease=RedisLease(client, ttl_seconds=cfg.SCHEDULE_LEASE_TTL_SEC),
        broadcaster=broadcaster,
        metrics=metrics,
        notifier=notifier,
        dispatcher=dispatcher,
        tracker=tracker,
        providers=registry,
        integrations=integrations,
        inventory_sync=inventory_sync,
        schedules=schedules,
    )


'''
进程内单例（API 依赖 / celery 任务共用）
    - 测试用 app.dependency_overrides[get_container] 换成 build_container(...) 的结果
'''
@lru_cache(maxsize=1)
def get_container() -> ServiceContainer:
    return build_container()
