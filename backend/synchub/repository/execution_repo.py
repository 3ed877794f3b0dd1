# schedule_executions repository（只增改，不删除）

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from synchub.db.model.schedule import ScheduleExecution


_ALLOWED_STATUS = {"pending", "completed", "failed"}


def get(db: Session, execution_id: str) -> Optional[ScheduleExecution]:
    return db.get(ScheduleExecution, execution_id)


def list_for_schedule(db: Session, schedule_id: str, limit: int = 20) -> list[ScheduleExecution]:
    stmt = (
        select(ScheduleExecution)
        .where(ScheduleExecution.schedule_id == schedule_id)
        .order_by(ScheduleExecution.start_time.desc())
        .limit(limit)
    )
    return list(db.scalars(stmt))


def latest_failed(db: Session, schedule_id: str) -> Optional[ScheduleExecution]:
    stmt = (
        select(ScheduleExecution)
        .where(ScheduleExecution.schedule_id == schedule_id, ScheduleExecution.status == "failed")
        .order_by(ScheduleExecution.start_time.desc())
        .limit(1)
    )
    return db.scalars(stmt).first()


def list_due_retries(db: Session, now: datetime, limit: int = 100) -> list[ScheduleExecution]:
    stmt = (
        select(ScheduleExecution)
        .where(ScheduleExecution.status == "failed")
        .where(ScheduleExecution.next_retry.is_not(None))
        .where(ScheduleExecution.next_retry <= now)
        .order_by(ScheduleExecution.next_retry.asc())
        .limit(limit)
    )
    return list(db.scalars(stmt))


def create(db: Session, *, execution_id: str, schedule_id: str, sync_id: str,
           provider: str, start_time: datetime, actor: str) -> ScheduleExecution:
    row = ScheduleExecution(
        id=execution_id,
        schedule_id=schedule_id,
        sync_id=sync_id,
        provider=provider,
        status="pending",
        start_time=start_time,
        retry_count=0,
        created_by=actor,
        updated_by=actor,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def update_partial(db: Session, execution_id: str, actor: str, **fields) -> Optional[ScheduleExecution]:
    """允许字段：status, start_time, end_time, duration_ms, retry_count, next_retry, result, error"""
    allowed = {"status", "start_time", "end_time", "duration_ms", "retry_count", "next_retry", "result", "error"}
    clean = {k: v for k, v in fields.items() if k in allowed}
    if "status" in clean and clean["status"] not in _ALLOWED_STATUS:
        raise ValueError(f"status must be one of {sorted(_ALLOWED_STATUS)}")
    clean["updated_by"] = actor

    res = db.execute(update(ScheduleExecution).where(ScheduleExecution.id == execution_id).values(**clean))
    if not res.rowcount:
        db.rollback()
        return None
    db.commit()
    row = get(db, execution_id)
    if row is not None:
        db.refresh(row)
    return row
