"""
周期同步调度

  create_schedule        生成 id + 计算 next_run + 写 schedule:{id} 缓存（仅供观察，不触发执行）
  process_scheduled_sync poller 发现到期后调用：建 Execution → 跑同步 → 回写结果 → 通知 → 重算 next_run
  handle_retry           最近一次 failed Execution 的 retry_count < maxRetries 时，next_retry = now + 60s * 2^n
  retry_execution        poller 发现 next_retry 到期后调用：同一条 Execution 上重跑

真正的触发者是 orchestration/scheduler_tick.py 里的 poller（celery beat），同一个 schedule 的并发由租约保证。
"""

from __future__ import annotations
import logging, math, secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from synchub.core.security import SYSTEM_ACTOR
from synchub.db.model import ScheduleExecution, SyncSchedule
from synchub.db.session import session_scope
from synchub.infrastructure.cache import CacheService
from synchub.repository import execution_repo, schedule_repo
from synchub.repository.schedule_repo import ScheduleCreateDTO
from synchub.services.errors import ExecutionNotFound, ScheduleNotFound
from synchub.utils.backoff import exponential_delay
from synchub.utils.clock import ensure_utc, isoformat, now_utc
from synchub.utils.frequency import InvalidFrequencyError, compute_next_run

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ExecutionOutcome:
    status: str                       # skipped / completed / failed
    execution_id: Optional[str] = None
    sync_id: Optional[str] = None
    error: Optional[str] = None
    next_retry: Optional[datetime] = None


class ScheduleManager:

    ARM_PREFIX = "schedule:"
    RETRY_PREFIX = "retry:"

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        cache: CacheService,
        inventory_sync,
        notifier=None,
        metrics=None,
        default_timezone: str = "UTC",
        arm_buffer_sec: int = 60,
        retry_base_sec: int = 60,
        default_max_retries: int = 3,
        clock: Callable[[], datetime] = now_utc,
    ):
        self._session_factory = session_factory
        self.cache = cache
        self.inventory_sync = inventory_sync
        self.notifier = notifier
        self.metrics = metrics
        self.default_timezone = default_timezone
        self.arm_buffer_sec = arm_buffer_sec
        self.retry_base_sec = retry_base_sec
        self.default_max_retries = default_max_retries
        self._clock = clock


    # ========= next run =========
    def calculate_next_run(self, frequency_type: str, frequency_value: str,
                           timezone: Optional[str] = None, settings: Optional[Dict[str, Any]] = None,
                           now: Optional[datetime] = None) -> datetime:
        """非法 duration / cron / 时区直接抛 InvalidFrequencyError。"""
        try:
            return compute_next_run(
                frequency_type,
                frequency_value,
                timezone or self.default_timezone,
                now or self._clock(),
                skip_weekends=bool((settings or {}).get("skipWeekends")),
            )
        except InvalidFrequencyError as e:
            logger.error("Error calculating next run type=%s value=%r tz=%s: %s",
                         frequency_type, frequency_value, timezone, e)
            raise


    # ========= CRUD =========
    def create_schedule(self, definition: ScheduleCreateDTO, actor: str = SYSTEM_ACTOR) -> SyncSchedule:
        try:
            definition.timezone = definition.timezone or self.default_timezone
            next_run = self.calculate_next_run(definition.frequency_type, definition.frequency_value,
                                               definition.timezone, definition.settings)
            with session_scope(self._session_factory) as db:
                row = schedule_repo.create(db, secrets.token_hex(16), definition, next_run, actor)
        except Exception as e:
            self._record_error(e, {"schedule": definition.name, "provider": definition.provider})
            logger.error("Failed to create schedule name=%s: %s", definition.name, e)
            raise

        self._arm(row)
        self._metric("schedule.created", {"provider": row.provider})
        logger.info("Created sync schedule id=%s provider=%s next_run=%s by=%s",
                    row.id, row.provider, isoformat(row.next_run), actor)
        return row


    def get_schedule(self, schedule_id: str) -> SyncSchedule:
        with session_scope(self._session_factory) as db:
            row = schedule_repo.get(db, schedule_id)
        if row is None:
            raise ScheduleNotFound(f"Schedule with ID {schedule_id} not found.")
        return row


    def list_schedules(self, provider: Optional[str] = None) -> List[SyncSchedule]:
        with session_scope(self._session_factory) as db:
            return schedule_repo.list_all(db, provider=provider)


    def update_schedule_status(self, schedule_id: str, status: str, actor: str = SYSTEM_ACTOR) -> SyncSchedule:
        if status not in ("enabled", "disabled"):
            raise ValueError("status must be 'enabled' or 'disabled'")
        enabled = status == "enabled"

        with session_scope(self._session_factory) as db:
            current = schedule_repo.get(db, schedule_id)
            if current is None:
                raise ScheduleNotFound(f"Schedule with ID {schedule_id} not found.")
            next_run = self.calculate_next_run(current.frequency_type, current.frequency_value,
                                               current.timezone, current.settings)
            row = schedule_repo.update_partial(
                db, schedule_id, actor,
                enabled=enabled,
                status="active" if enabled else "paused",
                next_run=next_run,
            )

        if enabled:
            self._arm(row)
        else:
            self.cache.delete(self.ARM_PREFIX + schedule_id)
        self._metric("schedule.status_updated", {"status": status})
        logger.info("Schedule status updated id=%s status=%s by=%s", schedule_id, status, actor)
        return row


    def delete_schedule(self, schedule_id: str, actor: str = SYSTEM_ACTOR) -> None:
        with session_scope(self._session_factory) as db:
            if not schedule_repo.delete_by_id(db, schedule_id):
                raise ScheduleNotFound(f"Schedule with ID {schedule_id} not found.")
        self.cache.delete(self.ARM_PREFIX + schedule_id)
        self._metric("schedule.deleted", {})
        logger.info("Schedule deleted id=%s by=%s", schedule_id, actor)


    def get_execution_status(self, execution_id: str) -> Optional[ScheduleExecution]:
        with session_scope(self._session_factory) as db:
            return execution_repo.get(db, execution_id)


    def list_executions(self, schedule_id: str, limit: int = 20) -> List[ScheduleExecution]:
        with session_scope(self._session_factory) as db:
            return execution_repo.list_for_schedule(db, schedule_id, limit)



    # ========= execution =========
    def process_scheduled_sync(self, schedule_id: str, actor: str = SYSTEM_ACTOR,
                               only_if_due: bool = False) -> ExecutionOutcome:
        '''
        only_if_due=True（poller 路径）：next_run 还在未来就跳过
            - 同一个到期点被两轮 poll 投递时，第一次执行已把 next_run 推后，第二次在这里被挡住
        '''
        with session_scope(self._session_factory) as db:
            schedule = schedule_repo.get(db, schedule_id)
            if schedule is None or not schedule.enabled:
                logger.info("Schedule %s not found or disabled; skipping", schedule_id)
                return ExecutionOutcome(status="skipped")
            if only_if_due:
                next_run = ensure_utc(schedule.next_run)
                if next_run is None or next_run > self._clock():
                    logger.info("Schedule %s not due (next_run=%s); skipping", schedule_id, isoformat(next_run))
                    return ExecutionOutcome(status="skipped")

            execution = execution_repo.create(
                db,
                execution_id=secrets.token_hex(16),
                schedule_id=schedule.id,
                sync_id=secrets.token_hex(16),
                provider=schedule.provider,
                start_time=self._clock(),
                actor=actor,
            )
        return self._run(schedule, execution, actor, is_retry=False)


    def retry_execution(self, execution_id: str, actor: str = SYSTEM_ACTOR) -> ExecutionOutcome:
        with session_scope(self._session_factory) as db:
            execution = execution_repo.get(db, execution_id)
            if execution is None:
                raise ExecutionNotFound(f"Execution {execution_id} not found")
            if execution.status != "failed" or execution.next_retry is None:
                return ExecutionOutcome(status="skipped", execution_id=execution_id)
            # 重复投递的重试任务：上一次失败已把 next_retry 推后，退避没到就不跑
            if ensure_utc(execution.next_retry) > self._clock():
                logger.info("Retry %s not due until %s; skipping", execution_id, isoformat(execution.next_retry))
                return ExecutionOutcome(status="skipped", execution_id=execution_id)

            schedule = schedule_repo.get(db, execution.schedule_id)
            if schedule is None or not schedule.enabled:
                execution_repo.update_partial(db, execution_id, actor, next_retry=None)
                logger.info("Retry %s dropped: schedule %s gone or disabled", execution_id, execution.schedule_id)
                return ExecutionOutcome(status="skipped", execution_id=execution_id)

            execution = execution_repo.update_partial(
                db, execution_id, actor,
                status="pending", start_time=self._clock(), end_time=None, next_retry=None, error=None,
            )
        self.cache.delete(self.RETRY_PREFIX + execution_id)
        logger.info("Retrying execution %s (retry %d) for schedule %s",
                    execution_id, execution.retry_count, schedule.id)
        return self._run(schedule, execution, actor, is_retry=True)


    def _run(self, schedule: SyncSchedule, execution: ScheduleExecution, actor: str, is_retry: bool) -> ExecutionOutcome:
        start = ensure_utc(execution.start_time)
        error_message: Optional[str] = None
        try:
            result = self.inventory_sync.sync_inventory(
                schedule.provider, actor=actor, sync_id=execution.sync_id, filters=schedule.filters,
            )
            success = bool(result.get("success"))
        except Exception as e:
            # 同步失败只记录在 Execution 上，不影响其它 schedule
            success = False
            error_message = str(e)
            result = {"success": False, "error": error_message, "code": getattr(e, "code", None)}
            self._record_error(e, {"scheduleId": schedule.id, "provider": schedule.provider})
            logger.error("Scheduled sync failed schedule=%s provider=%s: %s", schedule.id, schedule.provider, e)

        end = self._clock()
        status = "completed" if success else "failed"
        with session_scope(self._session_factory) as db:
            execution = execution_repo.update_partial(
                db, execution.id, actor,
                status=status,
                end_time=end,
                duration_ms=int((end - start).total_seconds() * 1000),
                result=_summarize_result(result),
                error=error_message,
            ) or execution

        settings = schedule.settings or {}
        if (success and settings.get("notifyOnCompletion")) or (not success and settings.get("notifyOnFailure")):
            self.send_notifications(schedule, execution, result)

        updated = self._after_attempt(schedule, end, success, actor, is_retry)

        next_retry = None
        if not success and settings.get("retryOnFailure"):
            try:
                next_retry = self.handle_retry(schedule.id, actor)
            except Exception:
                logger.exception("Failed to handle retry for schedule %s", schedule.id)
        elif updated is not None:
            self._arm(updated)

        self._metric("schedule.execution", {"provider": schedule.provider,
                                            "status": "success" if success else "failed"})
        return ExecutionOutcome(status=status, execution_id=execution.id, sync_id=execution.sync_id,
                                error=error_message, next_retry=next_retry)


    def _after_attempt(self, schedule: SyncSchedule, end: datetime, success: bool,
                       actor: str, is_retry: bool) -> Optional[SyncSchedule]:
        """每次尝试后都落 last_run / next_run，poller 不会重复触发同一个到期点。"""
        fields: Dict[str, Any] = {"last_run": end, "status": "active" if success else "error"}
        if not is_retry or schedule.next_run is None:
            try:
                fields["next_run"] = self.calculate_next_run(
                    schedule.frequency_type, schedule.frequency_value, schedule.timezone, schedule.settings, now=end,
                )
            except InvalidFrequencyError:
                # 历史数据里的非法表达式：停掉，避免每个 poll 都命中
                fields.update(next_run=None, status="error")
        with session_scope(self._session_factory) as db:
            return schedule_repo.update_partial(db, schedule.id, actor, **fields)


    def handle_retry(self, schedule_id: str, actor: str = SYSTEM_ACTOR) -> Optional[datetime]:
        with session_scope(self._session_factory) as db:
            schedule = schedule_repo.get(db, schedule_id)
            if schedule is None:
                return None
            max_retries = (schedule.settings or {}).get("maxRetries")
            if max_retries is None:
                max_retries = self.default_max_retries

            last = execution_repo.latest_failed(db, schedule_id)
            if last is None or last.retry_count >= max_retries:
                logger.info("No retry for schedule %s (retries exhausted or no failed execution)", schedule_id)
                return None

            delay = exponential_delay(self.retry_base_sec, last.retry_count)
            next_retry = self._clock() + timedelta(seconds=delay)
            execution_repo.update_partial(db, last.id, actor, retry_count=last.retry_count + 1, next_retry=next_retry)
            execution_id, retry_count = last.id, last.retry_count + 1

        self.cache.set(self.RETRY_PREFIX + execution_id, schedule_id, int(delay))
        logger.info("Scheduled retry execution=%s schedule=%s retry=%d next_retry=%s",
                    execution_id, schedule_id, retry_count, isoformat(next_retry))
        return next_retry



    # ========= notifications =========
    def send_notifications(self, schedule: SyncSchedule, execution: ScheduleExecution, result: Any) -> None:
        targets = schedule.notifications or {}
        if not targets or self.notifier is None:
            return
        data = {
            "type": "sync_execution",
            "status": execution.status,
            "scheduleName": schedule.name,
            "schedule": serialize_schedule(schedule),
            "execution": serialize_execution(execution),
            "result": _summarize_result(result),
            "timestamp": isoformat(self._clock()),
        }
        try:
            if targets.get("email"):
                emails = targets["email"]
                self.notifier.send_email([emails] if isinstance(emails, str) else list(emails),
                                         "Sync Schedule Execution Update", data)
            if targets.get("slack"):
                slack = targets["slack"]
                self.notifier.send_slack_message({"webhook": slack} if isinstance(slack, str) else slack, data)
            if targets.get("webhook"):
                hook = targets["webhook"]
                self.notifier.send_webhook({"url": hook} if isinstance(hook, str) else hook, data)
            logger.info("Notifications sent schedule=%s execution=%s channels=%s",
                        schedule.id, execution.id, sorted(targets))
        except Exception as e:
            self._record_error(e, {"scheduleId": schedule.id, "executionId": execution.id})
            logger.error("Failed to send notifications schedule=%s: %s", schedule.id, e)



    # ========= helpers =========
    def _arm(self, schedule: Optional[SyncSchedule]) -> None:
        """schedule:{id}，TTL = 距 next_run 的秒数 + buffer。只用于观察。"""
        if schedule is None or not schedule.enabled or schedule.next_run is None:
            return
        now = self._clock()
        delay = max(0.0, (ensure_utc(schedule.next_run) - now).total_seconds())
        payload = {**serialize_schedule(schedule), "lastChecked": isoformat(now)}
        self.cache.set(self.ARM_PREFIX + schedule.id, payload, math.ceil(delay) + self.arm_buffer_sec)
        logger.debug("Armed schedule %s next_run=%s delay=%ds", schedule.id, isoformat(schedule.next_run), math.ceil(delay))


    def _metric(self, name: str, tags: Dict[str, Any]) -> None:
        if self.metrics is None:
            return
        try:
            self.metrics.record_metric(name, 1, tags)
        except Exception as e:
            logger.warning("Metric %s failed: %s", name, e)


    def _record_error(self, error: Exception, context: Dict[str, Any]) -> None:
        if self.metrics is None:
            return
        try:
            self.metrics.record_error(str(error), context)
        except Exception:
            logger.warning("Error metric failed for %s", context)



# ---------- serializers（API / 通知 / 缓存共用） ----------
def serialize_schedule(row: SyncSchedule) -> Dict[str, Any]:
    return {
        "id": row.id,
        "name": row.name,
        "provider": row.provider,
        "enabled": row.enabled,
        "frequency": {"type": row.frequency_type, "value": row.frequency_value},
        "timezone": row.timezone,
        "settings": row.settings or {},
        "filters": row.filters,
        "notifications": row.notifications,
        "status": row.status,
        "lastRun": isoformat(row.last_run),
        "nextRun": isoformat(row.next_run),
        "createdAt": isoformat(row.created_at),
        "updatedAt": isoformat(row.updated_at),
        "createdBy": row.created_by,
        "updatedBy": row.updated_by,
    }


def serialize_execution(row: ScheduleExecution) -> Dict[str, Any]:
    return {
        "id": row.id,
        "scheduleId": row.schedule_id,
        "syncId": row.sync_id,
        "provider": row.provider,
        "status": row.status,
        "startTime": isoformat(row.start_time),
        "endTime": isoformat(row.end_time),
        "duration": row.duration_ms,
        "retryCount": row.retry_count,
        "nextRetry": isoformat(row.next_retry),
        "result": row.result,
        "error": row.error,
    }


def _summarize_result(result: Any) -> Any:
    """Execution.result 不存整份库存数据，只留结果摘要。"""
    if not isinstance(result, dict):
        return result
    summary = {k: v for k, v in result.items() if k != "data"}
    if isinstance(result.get("data"), list):
        summary["itemCount"] = len(result["data"])
    return summary
