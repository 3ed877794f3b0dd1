# sync_schedules repository

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from synchub.db.model.schedule import SyncSchedule


_ALLOWED_FREQUENCY = {"interval", "cron"}
_ALLOWED_STATUS = {"active", "paused", "error"}


@dataclass(slots=True)
class ScheduleCreateDTO:
    name: str
    provider: str
    frequency_type: str
    frequency_value: str
    timezone: str = "UTC"
    enabled: bool = True
    settings: Dict[str, Any] = field(default_factory=dict)
    filters: Optional[Dict[str, Any]] = None
    notifications: Optional[Dict[str, Any]] = None


# ---------- Query ----------
def get(db: Session, schedule_id: str) -> Optional[SyncSchedule]:
    return db.get(SyncSchedule, schedule_id)


def list_all(db: Session, provider: str | None = None, enabled: bool | None = None) -> list[SyncSchedule]:
    stmt = select(SyncSchedule)
    if provider:
        stmt = stmt.where(SyncSchedule.provider == provider)
    if enabled is not None:
        stmt = stmt.where(SyncSchedule.enabled.is_(enabled))
    stmt = stmt.order_by(SyncSchedule.created_at.asc(), SyncSchedule.id.asc())
    return list(db.scalars(stmt))


def list_due(db: Session, now: datetime, limit: int = 100) -> list[SyncSchedule]:
    """enabled 且 next_run <= now；disabled 的 next_run 永远不会被消费。"""
    stmt = (
        select(SyncSchedule)
        .where(SyncSchedule.enabled.is_(True))
        .where(SyncSchedule.next_run.is_not(None))
        .where(SyncSchedule.next_run <= now)
        .order_by(SyncSchedule.next_run.asc())
        .limit(limit)
    )
    return list(db.scalars(stmt))


# ---------- Mutations ----------
def create(db: Session, schedule_id: str, dto: ScheduleCreateDTO,
           next_run: Optional[datetime], actor: str) -> SyncSchedule:
    _validate(dto)
    row = SyncSchedule(
        id=schedule_id,
        name=dto.name.strip(),
        provider=dto.provider,
        enabled=dto.enabled,
        frequency_type=dto.frequency_type,
        frequency_value=dto.frequency_value,
        timezone=dto.timezone,
        settings=dict(dto.settings or {}),
        filters=dto.filters,
        notifications=dto.notifications,
        status="active" if dto.enabled else "paused",
        next_run=next_run,
        created_by=actor,
        updated_by=actor,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def update_partial(db: Session, schedule_id: str, actor: str, **fields) -> Optional[SyncSchedule]:
    """
    仅更新给定字段；不存在返回 None。
    允许字段：name, enabled, status, settings, filters, notifications, last_run, next_run
    """
    allowed = {"name", "enabled", "status", "settings", "filters", "notifications", "last_run", "next_run"}
    clean = {k: v for k, v in fields.items() if k in allowed}
    if "status" in clean and clean["status"] not in _ALLOWED_STATUS:
        raise ValueError(f"status must be one of {sorted(_ALLOWED_STATUS)}")
    clean["updated_by"] = actor

    res = db.execute(update(SyncSchedule).where(SyncSchedule.id == schedule_id).values(**clean))
    if not res.rowcount:
        db.rollback()
        return None
    db.commit()
    row = get(db, schedule_id)
    if row is not None:
        db.refresh(row)
    return row


def delete_by_id(db: Session, schedule_id: str) -> bool:
    """硬删除；执行记录保留。"""
    res = db.execute(delete(SyncSchedule).where(SyncSchedule.id == schedule_id))
    db.commit()
    return bool(res.rowcount)


# ---------- Validation ----------
def _validate(dto: ScheduleCreateDTO) -> None:
    if not dto.name or not dto.name.strip():
        raise ValueError("name is required")
    if not dto.provider:
        raise ValueError("provider is required")
    if dto.frequency_type not in _ALLOWED_FREQUENCY:
        raise ValueError(f"frequency type must be one of {sorted(_ALLOWED_FREQUENCY)}")
    if not dto.frequency_value:
        raise ValueError("frequency value is required")
    max_retries = (dto.settings or {}).get("maxRetries")
    if max_retries is not None and (not isinstance(max_retries, int) or max_retries < 0):
        raise ValueError("settings.maxRetries must be a non-negative integer")
