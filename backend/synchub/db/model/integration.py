from __future__ import annotations
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from synchub.db.base import Base, JSONType, TimestampMixin


"""
  provider_integrations 表：平台级的 provider 配置（base url / 鉴权方式 / 重试 / 字段映射）
"""
class ProviderIntegration(TimestampMixin, Base):

    __tablename__ = "provider_integrations"

    id:            Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider_name: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    type:          Mapped[str] = mapped_column(String(32), nullable=False)      # warehouse / fulfillment / payment / analytics / marketplace
    api_url:       Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    auth_type:     Mapped[Optional[str]] = mapped_column(String(16), nullable=True)   # OAuth / APIKey / Basic
    credentials:   Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)   # apiKey / clientId / clientSecret
    token_url:     Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    max_retries:      Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    initial_delay_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    response_mapping: Mapped[Optional[dict[str, str]]] = mapped_column(JSONType, nullable=True)   # outputKey -> dotted.path
    api_endpoints:    Mapped[Optional[dict[str, str]]] = mapped_column(JSONType, nullable=True)   # {"products": "/v1/products"}

    __table_args__ = (
        CheckConstraint("auth_type IS NULL OR auth_type IN ('OAuth','APIKey','Basic')", name="auth_type"),
    )


"""
  tenant_connections 表：某个租户（user_id）对某个 provider 的连接，OAuth token 会被懒刷新
"""
class TenantConnection(TimestampMixin, Base):

    __tablename__ = "tenant_connections"

    id:             Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id:        Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    integration_id: Mapped[int] = mapped_column(Integer, ForeignKey("provider_integrations.id", ondelete="CASCADE"), nullable=False)

    access_token:  Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refresh_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expires_at:    Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    status:        Mapped[str] = mapped_column(String(16), nullable=False, default="connected")

    # 单一回调 webhook（不是 fan-out）
    webhook_url:     Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    webhook_secret:  Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    webhook_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))

    integration: Mapped[ProviderIntegration] = relationship(lazy="joined")

    __table_args__ = (
        CheckConstraint("status IN ('connected','needs_reauth','disconnected')", name="status"),
    )


class ProviderProduct(Base):
    """Product record written after a provider accepted createProduct."""

    __tablename__ = "provider_products"

    id:            Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    connection_id: Mapped[int] = mapped_column(Integer, ForeignKey("tenant_connections.id", ondelete="CASCADE"), nullable=False, index=True)
    sku:           Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    external_id:   Mapped[str] = mapped_column(String(128), nullable=False)
    payload:       Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
