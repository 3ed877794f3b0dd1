from __future__ import annotations
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column
from synchub.db.base import Base, JSONType, TimestampMixin


class WebhookSubscription(TimestampMixin, Base):

    __tablename__ = "webhook_subscriptions"

    id:      Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)   # 'system' 表示平台级订阅
    url:     Mapped[str] = mapped_column(String(1024), nullable=False)
    events:  Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    secret:  Mapped[str] = mapped_column(String(128), nullable=False)

    is_active:      Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("true"))
    retry_count:    Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_triggered: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error:     Mapped[Optional[str]] = mapped_column(Text, nullable=True)
