"""
一次同步运行的进度快照（存在缓存里，24h 过期）

状态：queued → running / paused / completed / failed / cancelled
  - initialize_sync 设 queued；之后 update_progress 可以设任意状态（不做转换表校验，重试/恢复流程不能被卡住）
  - completed / failed 记 timestamps.completed
  - percentage = round(processed / total * 100)，total = 0 时为 0
  - processed != succeeded + failed 只追加 COUNTER_MISMATCH 警告，不改计数

每次写入后通知两路（互不影响，失败只记日志）：
  - webhook：system 订阅的 inventory.sync.progress
  - 广播：频道 sync-{syncId}，事件 progress-update
计数更新由唯一的同步任务负责写入，不做跨进程合并。
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Literal, Optional

from synchub.core.security import SYSTEM_ACTOR
from synchub.infrastructure.cache import CacheService
from synchub.services.errors import SyncNotFound
from synchub.utils.clock import isoformat, now_utc

logger = logging.getLogger(__name__)

SyncStatus = Literal["queued", "running", "paused", "completed", "failed", "cancelled"]
SYNC_STATUSES = ("queued", "running", "paused", "completed", "failed", "cancelled")
ACTIVE_STATUSES = ("queued", "running", "paused")
TERMINAL_STATUSES = ("completed", "failed")

PROGRESS_EVENT = "inventory.sync.progress"
DEFAULT_RETENTION_SEC = 24 * 60 * 60


@dataclass
class SyncCounters:
    total: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    percentage: int = 0

    def recompute(self) -> None:
        self.percentage = round(self.processed / self.total * 100) if self.total > 0 else 0


@dataclass
class SyncProgress:
    sync_id: str
    provider: str
    request_id: str
    status: str = "queued"
    progress: SyncCounters = field(default_factory=SyncCounters)
    timestamps: Dict[str, str] = field(default_factory=dict)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[Dict[str, Any]] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_by: str = SYSTEM_ACTOR
    updated_by: str = SYSTEM_ACTOR

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        p = self.progress
        return {
            "syncId": self.sync_id,
            "provider": self.provider,
            "requestId": self.request_id,
            "status": self.status,
            "progress": {
                "total": p.total, "processed": p.processed, "succeeded": p.succeeded,
                "failed": p.failed, "percentage": p.percentage,
            },
            "timestamps": dict(self.timestamps),
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "metadata": dict(self.metadata),
            "createdBy": self.created_by,
            "updatedBy": self.updated_by,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncProgress":
        p = data.get("progress") or {}
        return cls(
            sync_id=data["syncId"],
            provider=data.get("provider", ""),
            request_id=data.get("requestId", ""),
            status=data.get("status", "queued"),
            progress=SyncCounters(
                total=int(p.get("total", 0)),
                processed=int(p.get("processed", 0)),
                succeeded=int(p.get("succeeded", 0)),
                failed=int(p.get("failed", 0)),
                percentage=int(p.get("percentage", 0)),
            ),
            timestamps=dict(data.get("timestamps") or {}),
            errors=list(data.get("errors") or []),
            warnings=list(data.get("warnings") or []),
            metadata=dict(data.get("metadata") or {}),
            created_by=data.get("createdBy", SYSTEM_ACTOR),
            updated_by=data.get("updatedBy", SYSTEM_ACTOR),
        )


class SyncProgressTracker:

    KEY_PREFIX = "sync:progress:"

    def __init__(
        self,
        cache: CacheService,
        dispatcher=None,
        broadcaster=None,
        metrics=None,
        retention_sec: int = DEFAULT_RETENTION_SEC,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.cache = cache
        self.dispatcher = dispatcher
        self.broadcaster = broadcaster
        self.metrics = metrics
        self.retention_sec = retention_sec
        self._clock = clock


    # ---------- Public ----------
    def initialize_sync(
        self,
        sync_id: str,
        provider: str,
        request_id: str,
        total_items: int = 0,
        metadata: Optional[Dict[str, Any]] = None,
        actor: str = SYSTEM_ACTOR,
    ) -> SyncProgress:
        stamp = isoformat(self._clock())
        progress = SyncProgress(
            sync_id=sync_id,
            provider=provider,
            request_id=request_id,
            status="queued",
            progress=SyncCounters(total=max(0, int(total_items))),
            timestamps={"started": stamp, "lastUpdated": stamp},
            metadata={**(metadata or {}), "initiatedBy": actor},
            created_by=actor,
            updated_by=actor,
        )
        self._save(progress)
        self._notify(progress, actor)
        self._metric("sync.initialized", {"provider": provider})
        logger.info("Sync initialized sync_id=%s provider=%s total=%d", sync_id, provider, progress.progress.total)
        return progress


    def update_progress(
        self,
        sync_id: str,
        *,
        processed: Optional[int] = None,
        succeeded: Optional[int] = None,
        failed: Optional[int] = None,
        total: Optional[int] = None,
        status: Optional[str] = None,
        error: Optional[Dict[str, Any]] = None,
        warning: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        actor: str = SYSTEM_ACTOR,
    ) -> SyncProgress:
        progress = self.get_progress(sync_id)
        if progress is None:
            raise SyncNotFound(f"Sync {sync_id} not found")

        stamp = isoformat(self._clock())
        counters = progress.progress

        if total is not None:
            counters.total = max(0, int(total))
        if processed is not None:
            counters.processed = int(processed)
        if succeeded is not None:
            counters.succeeded = int(succeeded)
        if failed is not None:
            counters.failed = int(failed)
        counters.recompute()

        if status is not None:
            if status not in SYNC_STATUSES:
                raise ValueError(f"status must be one of {SYNC_STATUSES}")
            previous = progress.status
            progress.status = status
            if status in TERMINAL_STATUSES:
                progress.timestamps["completed"] = stamp
            elif status == "cancelled":
                progress.timestamps["cancelled"] = stamp
            elif status == "paused":
                progress.timestamps["paused"] = stamp
            elif status == "running" and previous == "paused":
                progress.timestamps["resumed"] = stamp

        if error:
            progress.errors.append({**error, "timestamp": stamp, "reportedBy": actor})
        if warning:
            progress.warnings.append({**warning, "timestamp": stamp, "reportedBy": actor})

        touched_counters = any(v is not None for v in (processed, succeeded, failed))
        if touched_counters and counters.processed != counters.succeeded + counters.failed:
            progress.warnings.append({
                "code": "COUNTER_MISMATCH",
                "message": (f"processed={counters.processed} != succeeded={counters.succeeded}"
                            f" + failed={counters.failed}"),
                "source": "sync-progress",
                "timestamp": stamp,
                "reportedBy": actor,
            })

        if metadata:
            progress.metadata = {**progress.metadata, **metadata, "lastUpdatedBy": actor}

        progress.timestamps["lastUpdated"] = stamp
        progress.updated_by = actor

        self._save(progress)
        self._notify(progress, actor)
        self._metric("sync.progress_updated", {"syncId": sync_id, "status": progress.status})
        return progress


    def get_progress(self, sync_id: str) -> Optional[SyncProgress]:
        data = self.cache.get(self.KEY_PREFIX + sync_id)
        if not isinstance(data, dict) or "syncId" not in data:
            return None
        return SyncProgress.from_dict(data)


    def list_active_syncs(self) -> List[SyncProgress]:
        """按缓存扫描，尽力而为：扫描期间过期/新增的记录可能漏掉。"""
        active: List[SyncProgress] = []
        for key in self.cache.scan_keys(self.KEY_PREFIX + "*"):
            progress = self.get_progress(key[len(self.KEY_PREFIX):])
            if progress is not None and progress.is_active:
                active.append(progress)
        active.sort(key=lambda p: p.timestamps.get("started") or "")
        return active


    def cancel_sync(self, sync_id: str, actor: str = SYSTEM_ACTOR) -> SyncProgress:
        """只打标记；正在进行的 provider 调用不会被打断，同步循环在批次之间检查状态。"""
        if self.get_progress(sync_id) is None:
            raise SyncNotFound(f"Sync {sync_id} not found")
        updated = self.update_progress(
            sync_id,
            status="cancelled",
            metadata={"cancelledAt": isoformat(self._clock()), "cancelledBy": actor},
            actor=actor,
        )
        self._metric("sync.cancelled", {"syncId": sync_id})
        return updated


    def is_cancelled(self, sync_id: str) -> bool:
        progress = self.get_progress(sync_id)
        return progress is not None and progress.status == "cancelled"



    # ---------- Internals ----------
    def _save(self, progress: SyncProgress) -> None:
        if not self.cache.set(self.KEY_PREFIX + progress.sync_id, progress.to_dict(), self.retention_sec):
            logger.warning("Sync progress %s not persisted", progress.sync_id)


    def _notify(self, progress: SyncProgress, actor: str) -> None:
        stamp = isoformat(self._clock())
        snapshot = progress.to_dict()

        if self.dispatcher is not None:
            try:
                self.dispatcher.dispatch(SYSTEM_ACTOR, PROGRESS_EVENT,
                                         {**snapshot, "notifiedAt": stamp, "notifiedBy": actor})
            except Exception:
                logger.exception("Progress webhook failed sync_id=%s", progress.sync_id)

        if self.broadcaster is not None:
            try:
                self.broadcaster.trigger(f"sync-{progress.sync_id}", "progress-update",
                                         {**snapshot, "updatedAt": stamp, "updatedBy": actor})
            except Exception:
                logger.exception("Progress broadcast failed sync_id=%s", progress.sync_id)

        logger.info("Sync progress sync_id=%s status=%s processed=%d/%d",
                    progress.sync_id, progress.status, progress.progress.processed, progress.progress.total)


    def _metric(self, name: str, tags: Dict[str, Any]) -> None:
        if self.metrics is None:
            return
        try:
            self.metrics.record_metric(name, 1, tags)
        except Exception as e:
            logger.warning("Metric %s failed: %s", name, e)
