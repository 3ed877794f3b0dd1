from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from synchub.db.model.inventory import InventoryAdjustment, InventoryItem


_ALLOWED_ADJUSTMENTS = {"increase", "decrease", "set"}


def by_sku_stmt(sku: str, for_update: bool = False):
    stmt = select(InventoryItem).where(InventoryItem.sku == sku)
    # 调整库存：读-改-写之间锁住这一行，并发扣减不会丢更新（SQLite 下无效果）
    if for_update:
        stmt = stmt.with_for_update()
    return stmt


def get_by_sku(db: Session, sku: str, for_update: bool = False) -> Optional[InventoryItem]:
    return db.scalars(by_sku_stmt(sku, for_update)).first()


def map_by_skus(db: Session, skus: Iterable[str]) -> dict[str, InventoryItem]:
    wanted = list({s for s in skus if s})
    if not wanted:
        return {}
    rows = db.scalars(select(InventoryItem).where(InventoryItem.sku.in_(wanted)))
    return {row.sku: row for row in rows}


def create_item(db: Session, sku: str, quantity: int = 0, **fields) -> InventoryItem:
    if quantity < 0:
        raise ValueError("quantity must be >= 0")
    row = InventoryItem(sku=sku, quantity=quantity, reserved_quantity=fields.pop("reserved_quantity", 0), **fields)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def apply_adjustment(db: Session, item: InventoryItem, *, type: str, quantity: int,
                     new_quantity: int, reason: str | None, actor: str) -> InventoryAdjustment:
    """写新库存 + 追加一条调整记录（同一事务）。"""
    if type not in _ALLOWED_ADJUSTMENTS:
        raise ValueError(f"adjustment type must be one of {sorted(_ALLOWED_ADJUSTMENTS)}")
    if new_quantity < 0:
        raise ValueError("new quantity must be >= 0")

    adjustment = InventoryAdjustment(
        item_id=item.id,
        type=type,
        quantity=quantity,
        reason=reason,
        previous_quantity=item.quantity,
        new_quantity=new_quantity,
        created_by=actor,
    )
    item.quantity = new_quantity
    db.add(adjustment)
    db.commit()
    db.refresh(item)
    return adjustment


def apply_synced_quantities(db: Session, updates: Iterable[tuple[InventoryItem, int]], synced_at: datetime) -> int:
    """同步对账：只更新已有记录，不插入。返回更新条数。"""
    count = 0
    for item, quantity in updates:
        item.quantity = quantity
        item.last_synced_at = synced_at
        count += 1
    db.commit()
    return count
