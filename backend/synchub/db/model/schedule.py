from __future__ import annotations
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from synchub.db.base import AuditMixin, Base, JSONType


"""
  sync_schedules 表：周期同步定义
  - frequency_type=interval → frequency_value 为 ISO-8601 duration（PT1H）
  - frequency_type=cron     → frequency_value 为 5 段 cron，按 timezone 解释
  - next_run 由 poller 消费；disabled 的 next_run 不会被触发
"""
class SyncSchedule(AuditMixin, Base):

    __tablename__ = "sync_schedules"

    id:       Mapped[str] = mapped_column(String(32), primary_key=True)          # 32 位 hex
    name:     Mapped[str] = mapped_column(String(128), nullable=False)
    provider: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    enabled:  Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    frequency_type:  Mapped[str] = mapped_column(String(16), nullable=False)
    frequency_value: Mapped[str] = mapped_column(String(128), nullable=False)
    timezone:        Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")

    # retryOnFailure / maxRetries / notifyOnCompletion / notifyOnFailure / skipWeekends / skipHolidays
    settings:      Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    filters:       Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    notifications: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    status:   Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    last_run: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    next_run: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("frequency_type IN ('interval','cron')", name="frequency_type"),
        CheckConstraint("status IN ('active','paused','error')", name="status"),
        Index("ix_sync_schedules_enabled_next_run", "enabled", "next_run"),
    )


"""
  schedule_executions 表：一次触发 = 一行；重试在同一行上累加 retry_count
"""
class ScheduleExecution(Base):

    __tablename__ = "schedule_executions"

    id:          Mapped[str] = mapped_column(String(32), primary_key=True)
    schedule_id: Mapped[str] = mapped_column(String(32), nullable=False)                 # 不建外键：schedule 硬删后执行记录保留
    sync_id:     Mapped[str] = mapped_column(String(32), nullable=False, index=True)    # 对应 sync:progress:{sync_id}
    provider:    Mapped[str] = mapped_column(String(64), nullable=False)
    status:      Mapped[str] = mapped_column(String(16), nullable=False, default="pending")

    start_time:  Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time:    Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_retry:  Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    result: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    error:  Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        CheckConstraint("status IN ('pending','completed','failed')", name="status"),
        Index("ix_schedule_executions_schedule_status_start", "schedule_id", "status", "start_time"),
        Index("ix_schedule_executions_status_next_retry", "status", "next_retry"),
    )
