# feature: 每 N 秒由 beat 触发一次，读 sync_schedules / schedule_executions：
# 到期的 schedule → run_schedule；到期的重试 → run_execution_retry

from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from celery import shared_task

from synchub.core.security import SYSTEM_ACTOR
from synchub.db.session import session_scope
from synchub.repository import execution_repo, schedule_repo
from synchub.services.container import ServiceContainer, get_container
from synchub.services.errors import ExecutionNotFound, ProviderNotConfigured
from synchub.utils.clock import now_utc

logger = logging.getLogger(__name__)

POLL_BATCH = 100


"""
poller：enabled 且 next_run <= now 的 schedule 逐个投递 run_schedule
    - 同一个到期点可能被两次 poll 都看到（上一轮还没跑完）：run_schedule 在租约内复查 next_run 去重
    - SYNC_TASKS_INLINE=True 时直接在当前进程执行（本地 / 测试）
"""
@shared_task(name="synchub.orchestration.scheduler_tick.poll_due_schedules")
def poll_due_schedules() -> Dict[str, Any]:
    container = get_container()
    due = find_due_schedules(container)
    if not due:
        return {"status": "idle"}
    for schedule_id in due:
        dispatch_task(container, run_schedule, schedule_id)
    logger.info("Dispatched %d due schedules", len(due))
    return {"status": "dispatched", "count": len(due)}


@shared_task(name="synchub.orchestration.scheduler_tick.poll_due_retries")
def poll_due_retries() -> Dict[str, Any]:
    container = get_container()
    due = find_due_retries(container)
    if not due:
        return {"status": "idle"}
    for execution_id in due:
        dispatch_task(container, run_execution_retry, execution_id)
    logger.info("Dispatched %d due retries", len(due))
    return {"status": "dispatched", "count": len(due)}


@shared_task(name="synchub.orchestration.scheduler_tick.run_schedule")
def run_schedule(schedule_id: str) -> Dict[str, Any]:
    return execute_schedule(get_container(), schedule_id)


@shared_task(name="synchub.orchestration.scheduler_tick.run_execution_retry")
def run_execution_retry(execution_id: str) -> Dict[str, Any]:
    return execute_retry(get_container(), execution_id)


@shared_task(name="synchub.orchestration.scheduler_tick.run_inventory_sync")
def run_inventory_sync(provider: str, sync_id: str, actor: str = SYSTEM_ACTOR) -> Dict[str, Any]:
    return execute_inventory_sync(get_container(), provider, sync_id, actor)



# ========= 可直接调用的实现（任务只是薄包装） =========
def find_due_schedules(container: ServiceContainer, now: Optional[datetime] = None) -> List[str]:
    with session_scope(container.session_factory) as db:
        return [s.id for s in schedule_repo.list_due(db, now or now_utc(), POLL_BATCH)]


def find_due_retries(container: ServiceContainer, now: Optional[datetime] = None) -> List[str]:
    with session_scope(container.session_factory) as db:
        return [e.id for e in execution_repo.list_due_retries(db, now or now_utc(), POLL_BATCH)]


def execute_schedule(container: ServiceContainer, schedule_id: str) -> Dict[str, Any]:
    """
    租约 lease:schedule:{id} 抢不到 → locked，说明别的 worker 正在跑这一次。
    租约内再查一次 next_run：同一到期点重复投递的任务会拿到 skipped。
    """
    with container.lease.hold(f"schedule:{schedule_id}") as token:
        if token is None:
            logger.info("Schedule %s is locked by another worker; skipping", schedule_id)
            return {"status": "locked"}
        outcome = container.schedules.process_scheduled_sync(schedule_id, only_if_due=True)
    return _outcome_dict(outcome)


def execute_retry(container: ServiceContainer, execution_id: str) -> Dict[str, Any]:
    with session_scope(container.session_factory) as db:
        execution = execution_repo.get(db, execution_id)
    if execution is None:
        return {"status": "skipped"}

    # 重试和正常到期共用同一个 schedule 租约
    with container.lease.hold(f"schedule:{execution.schedule_id}") as token:
        if token is None:
            logger.info("Schedule %s is locked; retry %s deferred", execution.schedule_id, execution_id)
            return {"status": "locked"}
        try:
            outcome = container.schedules.retry_execution(execution_id)
        except ExecutionNotFound:
            return {"status": "skipped"}
    return _outcome_dict(outcome)


def execute_inventory_sync(container: ServiceContainer, provider: str, sync_id: str,
                           actor: str = SYSTEM_ACTOR) -> Dict[str, Any]:
    """手动同步：进度记录由 API 先建好（queued），这里负责 running → completed / failed。"""
    try:
        result = container.inventory_sync.sync_inventory(provider, actor=actor, sync_id=sync_id)
    except ProviderNotConfigured as e:
        # provider 校验在同步开始前，进度需要单独落 failed
        _mark_failed(container, sync_id, provider, e, actor)
        return {"status": "failed", "syncId": sync_id, "error": str(e)}
    except Exception as e:
        logger.error("Manual sync failed provider=%s sync_id=%s: %s", provider, sync_id, e)
        return {"status": "failed", "syncId": sync_id, "error": str(e)}
    return {"status": "completed", "syncId": sync_id, "summary": result.get("summary")}



# ---------- helpers ----------
def dispatch_task(container: ServiceContainer, task, *args) -> None:
    if container.settings.SYNC_TASKS_INLINE:
        task(*args)
    else:
        task.delay(*args)


def _mark_failed(container: ServiceContainer, sync_id: str, provider: str, error: Exception, actor: str) -> None:
    try:
        container.tracker.update_progress(
            sync_id, status="failed", actor=actor,
            error={"code": getattr(error, "code", "SYNC_FAILED"), "message": str(error), "source": provider},
        )
    except Exception:
        logger.exception("Could not mark sync %s failed", sync_id)


def _outcome_dict(outcome) -> Dict[str, Any]:
    out: Dict[str, Any] = {"status": outcome.status}
    if outcome.execution_id:
        out["executionId"] = outcome.execution_id
    if outcome.sync_id:
        out["syncId"] = outcome.sync_id
    if outcome.error:
        out["error"] = outcome.error
    return out
