from __future__ import annotations
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from synchub.db.base import Base, JSONType, TimestampMixin


class InventoryItem(TimestampMixin, Base):
    """Per-SKU stock record; reconciled by provider syncs and explicit adjustments."""

    __tablename__ = "inventory_items"

    id:                Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sku:               Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    product_id:        Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    quantity:          Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reserved_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    warehouse_id:      Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    provider:          Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    last_synced_at:    Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    threshold_low:     Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    threshold_reorder: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    threshold_max:     Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # "metadata" 是 Declarative 保留名
    extra: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSONType, nullable=True)

    adjustments: Mapped[list["InventoryAdjustment"]] = relationship(
        back_populates="item", order_by="InventoryAdjustment.id", cascade="all, delete-orphan",
    )

    @property
    def available_quantity(self) -> int:
        return self.quantity - self.reserved_quantity


class InventoryAdjustment(Base):

    __tablename__ = "inventory_adjustments"

    id:       Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id:  Mapped[int] = mapped_column(Integer, ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False, index=True)
    type:     Mapped[str] = mapped_column(String(16), nullable=False)            # increase / decrease / set
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    reason:   Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    previous_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    new_quantity:      Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    item: Mapped[InventoryItem] = relationship(back_populates="adjustments")
