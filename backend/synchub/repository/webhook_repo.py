from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from synchub.db.model.webhook import WebhookSubscription


def get(db: Session, subscription_id: int) -> Optional[WebhookSubscription]:
    return db.get(WebhookSubscription, subscription_id)


def list_for_user(db: Session, user_id: str) -> list[WebhookSubscription]:
    stmt = select(WebhookSubscription).where(WebhookSubscription.user_id == user_id).order_by(WebhookSubscription.id)
    return list(db.scalars(stmt))


def list_active_for_event(db: Session, user_id: str, event: str) -> list[WebhookSubscription]:
    # events 是 JSON 数组，各方言的 contains 写法不同，这里在 Python 侧过滤
    stmt = (
        select(WebhookSubscription)
        .where(WebhookSubscription.user_id == user_id, WebhookSubscription.is_active.is_(True))
        .order_by(WebhookSubscription.id)
    )
    return [row for row in db.scalars(stmt) if event in (row.events or [])]


def create(db: Session, user_id: str, url: str, events: Sequence[str], secret: str) -> WebhookSubscription:
    if not url or not url.startswith(("http://", "https://")):
        raise ValueError("url must be an http(s) URL")
    if not events:
        raise ValueError("at least one event is required")
    if not secret:
        raise ValueError("secret is required")
    row = WebhookSubscription(user_id=user_id, url=url, events=list(dict.fromkeys(events)), secret=secret,
                              is_active=True, retry_count=0)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def mark_success(db: Session, subscription_id: int, at: datetime) -> None:
    db.execute(
        update(WebhookSubscription)
        .where(WebhookSubscription.id == subscription_id)
        .values(last_triggered=at, retry_count=0, last_error=None)
    )
    db.commit()


def mark_failure(db: Session, subscription_id: int, error: str) -> None:
    db.execute(
        update(WebhookSubscription)
        .where(WebhookSubscription.id == subscription_id)
        .values(last_error=error[:2000], retry_count=WebhookSubscription.retry_count + 1)
    )
    db.commit()


def deactivate(db: Session, subscription_id: int, reason: str) -> None:
    db.execute(
        update(WebhookSubscription)
        .where(WebhookSubscription.id == subscription_id)
        .values(is_active=False, last_error=reason)
    )
    db.commit()


def delete_for_user(db: Session, subscription_id: int, user_id: str) -> bool:
    res = db.execute(
        delete(WebhookSubscription)
        .where(WebhookSubscription.id == subscription_id, WebhookSubscription.user_id == user_id)
    )
    db.commit()
    return bool(res.rowcount)
