# ShipBob：个人访问 token 作为 Bearer，不会过期，不走 refresh
from __future__ import annotations
import logging
from typing import Any, Dict, List, Mapping

from synchub.db.model import ProviderIntegration, TenantConnection
from synchub.integrations.generic import GenericIntegrationClient, InvalidResponseError
from synchub.integrations.providers.base import InventoryLevel, ProviderAdapter, as_int
from synchub.utils.clock import now_utc

logger = logging.getLogger(__name__)

INVENTORY_PATH = "/1.0/inventory"
PRODUCT_PATH = "/1.0/product"


def build_integration(api_url: str) -> ProviderIntegration:
    return ProviderIntegration(
        provider_name="shipbob",
        type="fulfillment",
        api_url=api_url,
        auth_type="OAuth",
        api_endpoints={"products": PRODUCT_PATH, "inventory": INVENTORY_PATH},
    )


def build_connection(api_key: str) -> TenantConnection:
    return TenantConnection(user_id="system", access_token=api_key, status="connected", webhook_enabled=False)


class ShipBobAdapter(ProviderAdapter):

    name = "shipbob"

    @classmethod
    def create(cls, api_key: str, api_url: str, **client_kwargs) -> "ShipBobAdapter":
        client = GenericIntegrationClient(build_integration(api_url), build_connection(api_key), **client_kwargs)
        return cls(client)

    def get_inventory_levels(self) -> List[InventoryLevel]:
        raw = self.client.call_api(INVENTORY_PATH, "GET")
        if not isinstance(raw, list):
            raise InvalidResponseError("ShipBob inventory response is not a list", self.name)

        synced_at = now_utc()
        levels: List[InventoryLevel] = []
        for item in raw:
            sku = item.get("sku") or item.get("reference_id") or item.get("id")
            if sku in (None, ""):
                logger.warning("ShipBob inventory row without sku skipped: %s", item)
                continue
            centers = item.get("fulfillable_quantity_by_fulfillment_center") or []
            # 只有一个仓时才能确定 warehouse
            warehouse = centers[0] if len(centers) == 1 else {}
            levels.append(InventoryLevel(
                sku=str(sku),
                quantity=as_int(item.get("total_fulfillable_quantity")),
                warehouse_id=str(warehouse["id"]) if warehouse.get("id") is not None else None,
                location=warehouse.get("name"),
                last_updated=synced_at,
            ))
        return levels

    def build_product_payload(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            "reference_id": data.get("sku"),
            "name": data.get("name"),
            "inventory": {"quantity": data.get("quantity"), "location": data.get("location")},
        }
