"""
单个 provider 的库存同步
  1) adapter.get_inventory_levels()
  2) 原始结果写缓存 inventory:{provider}（1h）
  3) 按 SKU 对账：只更新已有记录，不新建
  4) 低于 threshold_low 时派发 inventory.low_stock（system 订阅）
  5) 带 sync_id 时同步写进度（total / running / 计数 / completed|failed），批次之间检查是否被取消
"""

from __future__ import annotations
import logging, uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from synchub.core.security import SYSTEM_ACTOR
from synchub.db.session import session_scope
from synchub.infrastructure.cache import CacheService
from synchub.integrations.providers import InventoryLevel, ProviderRegistry
from synchub.repository import inventory_repo
from synchub.services.errors import InsufficientInventoryError, InventoryItemNotFound
from synchub.utils.clock import isoformat, now_utc

logger = logging.getLogger(__name__)

LOW_STOCK_EVENT = "inventory.low_stock"
RECONCILE_BATCH = 100
ADJUSTMENT_TYPES = ("increase", "decrease", "set")


class InventorySyncService:

    CACHE_PREFIX = "inventory:"

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        cache: CacheService,
        providers: ProviderRegistry,
        dispatcher=None,
        tracker=None,
        metrics=None,
        cache_ttl_sec: int = 3600,
        clock: Callable[[], datetime] = now_utc,
    ):
        self._session_factory = session_factory
        self.cache = cache
        self.providers = providers
        self.dispatcher = dispatcher
        self.tracker = tracker
        self.metrics = metrics
        self.cache_ttl_sec = cache_ttl_sec
        self._clock = clock


    # ========= sync =========
    def sync_inventory(
        self,
        provider: str,
        *,
        actor: str = SYSTEM_ACTOR,
        sync_id: Optional[str] = None,
        filters: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        adapter = self.providers.require(provider)
        timestamp = isoformat(self._clock())

        try:
            self._progress_start(sync_id, provider, actor)
            levels = adapter.get_inventory_levels()
            data = [level.to_dict() for level in levels]
            self.cache.set(self.CACHE_PREFIX + provider, data, self.cache_ttl_sec)

            levels = self._apply_filters(levels, filters)
            if sync_id:
                self._progress(sync_id, actor, total=len(levels))
            summary = self._reconcile(provider, levels, sync_id, actor)

            if sync_id and not summary["cancelled"]:
                self._progress(sync_id, actor, status="completed", metadata={"summary": summary})

            self._metric("inventory.sync", 1, {"provider": provider})
            logger.info("Inventory synced provider=%s levels=%d updated=%d user=%s",
                        provider, len(levels), summary["updated"], actor)
            return {"success": True, "data": data, "timestamp": timestamp, "user": actor, "summary": summary}

        except Exception as e:
            self._record_error(e, {"provider": provider, "syncId": sync_id})
            logger.error("Inventory sync failed provider=%s user=%s: %s", provider, actor, e)
            if sync_id:
                self._progress(sync_id, actor, status="failed", error={
                    "code": getattr(e, "code", "SYNC_FAILED"),
                    "message": str(e),
                    "source": provider,
                })
            raise


    def _reconcile(self, provider: str, levels: List[InventoryLevel],
                   sync_id: Optional[str], actor: str) -> Dict[str, Any]:
        summary = {"updated": 0, "skipped": 0, "failed": 0, "lowStock": 0, "cancelled": False}
        processed = succeeded = failed = 0

        for start in range(0, len(levels), RECONCILE_BATCH):
            if sync_id and self.tracker is not None and self.tracker.is_cancelled(sync_id):
                logger.info("Sync %s cancelled; stopping after %d levels", sync_id, processed)
                summary["cancelled"] = True
                break

            batch = levels[start:start + RECONCILE_BATCH]
            alerts: List[Dict[str, Any]] = []
            batch_errors: List[Dict[str, Any]] = []

            with session_scope(self._session_factory) as db:
                items = inventory_repo.map_by_skus(db, (lvl.sku for lvl in batch))
                updates = []
                for level in batch:
                    processed += 1
                    if level.quantity < 0:
                        failed += 1
                        batch_errors.append({"code": "NEGATIVE_QUANTITY", "source": provider,
                                             "message": f"{level.sku}: provider reported {level.quantity}"})
                        continue
                    item = items.get(level.sku)
                    succeeded += 1
                    if item is None:
                        summary["skipped"] += 1
                        continue
                    if _crossed_below_low(item, item.quantity, level.quantity):
                        alerts.append(_low_stock_payload(item, level.quantity, provider))
                    updates.append((item, level.quantity))
                summary["updated"] += inventory_repo.apply_synced_quantities(db, updates, self._clock())

            summary["failed"] = failed
            summary["lowStock"] += len(alerts)
            for alert in alerts:
                self._dispatch_low_stock(alert)

            if sync_id:
                for err in batch_errors[:-1]:
                    self._progress(sync_id, actor, error=err)
                self._progress(sync_id, actor, processed=processed, succeeded=succeeded, failed=failed,
                               error=batch_errors[-1] if batch_errors else None)
        return summary


    @staticmethod
    def _apply_filters(levels: List[InventoryLevel], filters: Optional[Dict[str, Any]]) -> List[InventoryLevel]:
        warehouses = (filters or {}).get("warehouses")
        if not warehouses:
            return levels
        wanted = {str(w) for w in warehouses}
        return [lvl for lvl in levels if lvl.warehouse_id is not None and str(lvl.warehouse_id) in wanted]



    # ========= reads =========
    def get_inventory(self, provider: str, actor: str = SYSTEM_ACTOR) -> Dict[str, Any]:
        """cache-aside；同一 key 并发 miss 时只有一个调用方打 provider。"""
        adapter = self.providers.require(provider)
        timestamp = isoformat(self._clock())
        key = self.CACHE_PREFIX + provider

        cached = self.cache.get(key)
        if cached is not None:
            return {"success": True, "data": cached, "cached": True, "timestamp": timestamp, "requestedBy": actor}

        fetched = {"hit": True}

        def _load():
            fetched["hit"] = False
            return [level.to_dict() for level in adapter.get_inventory_levels()]

        try:
            data = self.cache.get_or_set(key, _load, self.cache_ttl_sec)
        except Exception as e:
            self._record_error(e, {"provider": provider})
            logger.error("Get inventory failed provider=%s user=%s: %s", provider, actor, e)
            raise

        if not fetched["hit"]:
            self._metric("inventory.get", 1, {"provider": provider})
        return {"success": True, "data": data, "cached": fetched["hit"], "timestamp": timestamp, "requestedBy": actor}



    # ========= adjustments =========
    def adjust_inventory(self, sku: str, quantity: int, type: str,
                         reason: Optional[str] = None, actor: str = SYSTEM_ACTOR) -> Dict[str, Any]:
        if type not in ADJUSTMENT_TYPES:
            raise ValueError(f"type must be one of {ADJUSTMENT_TYPES}")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 0:
            raise ValueError("quantity must be a non-negative integer")

        alert = None
        try:
            with session_scope(self._session_factory) as db:
                item = inventory_repo.get_by_sku(db, sku, for_update=True)
                if item is None:
                    raise InventoryItemNotFound(f"Item with SKU {sku} not found")

                previous = item.quantity
                if type == "increase":
                    new_quantity = previous + quantity
                elif type == "decrease":
                    new_quantity = previous - quantity
                else:
                    new_quantity = quantity

                # 拒绝而不是截断为 0
                if new_quantity < 0:
                    raise InsufficientInventoryError("Insufficient inventory")
                if new_quantity < (item.reserved_quantity or 0):
                    raise InsufficientInventoryError(
                        f"Adjustment would leave available quantity below zero (reserved={item.reserved_quantity})"
                    )

                adjustment = inventory_repo.apply_adjustment(
                    db, item, type=type, quantity=quantity, new_quantity=new_quantity, reason=reason, actor=actor,
                )
                if _crossed_below_low(item, previous, new_quantity):
                    alert = _low_stock_payload(item, new_quantity, item.provider)
                result = _item_to_dict(item)
                result["adjustment"] = {
                    "id": adjustment.id, "type": type, "quantity": quantity, "reason": reason,
                    "previousQuantity": previous, "newQuantity": new_quantity,
                }
        except Exception as e:
            self._record_error(e, {"sku": sku})
            raise

        self._metric("inventory.adjusted", quantity, {"sku": sku})
        if alert:
            self._dispatch_low_stock(alert)
        return result



    # ========= helpers =========
    def _progress_start(self, sync_id: Optional[str], provider: str, actor: str) -> None:
        if not sync_id or self.tracker is None:
            return
        existing = self.tracker.get_progress(sync_id)
        if existing is None:
            self.tracker.initialize_sync(sync_id, provider, uuid.uuid4().hex, actor=actor)
        elif existing.status == "cancelled":
            # 排队期间被取消：保留 cancelled，第一批之前就会停下
            return
        self._progress(sync_id, actor, status="running")


    def _progress(self, sync_id: str, actor: str, **updates) -> None:
        if self.tracker is None:
            return
        try:
            self.tracker.update_progress(sync_id, actor=actor, **updates)
        except Exception as e:
            logger.warning("Progress update failed sync_id=%s: %s", sync_id, e)


    def _dispatch_low_stock(self, payload: Dict[str, Any]) -> None:
        if self.dispatcher is None:
            return
        try:
            self.dispatcher.dispatch(SYSTEM_ACTOR, LOW_STOCK_EVENT, payload)
        except Exception as e:
            self._record_error(e, {"sku": payload.get("sku")})
            logger.warning("Low stock alert failed sku=%s: %s", payload.get("sku"), e)


    def _metric(self, name: str, value: float, tags: Dict[str, Any]) -> None:
        if self.metrics is None:
            return
        try:
            self.metrics.record_metric(name, value, tags)
        except Exception as e:
            logger.warning("Metric %s failed: %s", name, e)


    def _record_error(self, error: Exception, context: Dict[str, Any]) -> None:
        if self.metrics is None:
            return
        try:
            self.metrics.record_error(str(error), context)
        except Exception:
            logger.warning("Error metric failed for %s", context)



def _crossed_below_low(item, previous: int, new_quantity: int) -> bool:
    low = item.threshold_low or 0
    return low > 0 and new_quantity < low <= previous


def _low_stock_payload(item, quantity: int, provider: Optional[str]) -> Dict[str, Any]:
    return {"sku": item.sku, "quantity": quantity, "threshold": item.threshold_low, "provider": provider}


def _item_to_dict(item) -> Dict[str, Any]:
    return {
        "sku": item.sku,
        "productId": item.product_id,
        "quantity": item.quantity,
        "reservedQuantity": item.reserved_quantity,
        "availableQuantity": item.available_quantity,
        "warehouseId": item.warehouse_id,
        "provider": item.provider,
        "lastSyncedAt": isoformat(item.last_synced_at),
        "thresholds": {"low": item.threshold_low, "reorder": item.threshold_reorder, "max": item.threshold_max},
    }
