# Amazon FBA（SP-API）：LWA refresh_token 换 access_token，按 region 选 endpoint
from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from synchub.db.model import ProviderIntegration, TenantConnection
from synchub.integrations.generic import GenericIntegrationClient, InvalidResponseError
from synchub.integrations.providers.base import InventoryLevel, ProviderAdapter, as_int

logger = logging.getLogger(__name__)

SUMMARIES_PATH = "/fba/inventory/v1/summaries"
MAX_PAGES = 50

REGION_HOSTS = {
    "na": "sellingpartnerapi-na.amazon.com",
    "eu": "sellingpartnerapi-eu.amazon.com",
    "fe": "sellingpartnerapi-fe.amazon.com",
}


def region_base_url(region: str, sandbox: bool = False) -> str:
    host = REGION_HOSTS.get((region or "na").lower())
    if host is None:
        raise ValueError(f"unknown Amazon region {region!r}")
    return f"https://{'sandbox.' if sandbox else ''}{host}"


class AmazonFBAAdapter(ProviderAdapter):

    name = "amazon"
    supports_product_creation = False

    def __init__(self, client: GenericIntegrationClient, marketplace_id: str):
        super().__init__(client)
        self.marketplace_id = marketplace_id

    @classmethod
    def create(
        cls,
        refresh_token: str,
        client_id: str,
        client_secret: str,
        region: str = "na",
        token_url: str = "https://api.amazon.com/auth/o2/token",
        marketplace_id: str = "ATVPDKIKX0DER",
        sandbox: bool = False,
        **client_kwargs,
    ) -> "AmazonFBAAdapter":
        integration = ProviderIntegration(
            provider_name="amazon",
            type="marketplace",
            api_url=region_base_url(region, sandbox),
            auth_type="OAuth",
            token_url=token_url,
            credentials={"clientId": client_id, "clientSecret": client_secret},
        )
        # 首次调用时 access_token 为空 → client 先走 refresh
        connection = TenantConnection(user_id="system", refresh_token=refresh_token, status="connected",
                                      webhook_enabled=False)
        return cls(GenericIntegrationClient(integration, connection, **client_kwargs), marketplace_id)


    def get_inventory_levels(self) -> List[InventoryLevel]:
        params: Dict[str, Any] = {
            "details": "true",
            "granularityType": "Marketplace",
            "granularityId": self.marketplace_id,
            "marketplaceIds": self.marketplace_id,
        }
        levels: List[InventoryLevel] = []
        for _ in range(MAX_PAGES):
            raw = self.client.call_api(SUMMARIES_PATH, "GET", params=dict(params))
            payload = raw.get("payload") if isinstance(raw, dict) else None
            if not isinstance(payload, dict):
                raise InvalidResponseError("Amazon summaries response missing payload", self.name)

            for row in payload.get("inventorySummaries") or []:
                sku = row.get("sellerSku")
                if not sku:
                    continue
                details = row.get("inventoryDetails") or {}
                quantity = details.get("fulfillableQuantity", row.get("totalQuantity"))
                levels.append(InventoryLevel(
                    sku=sku,
                    quantity=as_int(quantity),
                    # 汇总按 marketplace 粒度返回，没有仓库维度（fnSku 是商品编号）
                    warehouse_id=self.marketplace_id,
                    last_updated=_parse_time(row.get("lastUpdatedTime")),
                ))

            next_token = (raw.get("pagination") or {}).get("nextToken")
            if not next_token:
                break
            params["nextToken"] = next_token
        else:
            logger.warning("Amazon summaries pagination stopped after %d pages", MAX_PAGES)
        return levels


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
