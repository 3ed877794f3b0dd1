"""
Provider adapter 约定：
  - get_inventory_levels() -> [InventoryLevel]
  - create_product(data)   -> {"id": ..., ...}（走 GenericIntegrationClient.create_product）
底层 HTTP / 鉴权 / 重试全部交给 GenericIntegrationClient。
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from synchub.integrations.generic import ConfigurationError, GenericIntegrationClient
from synchub.utils.clock import isoformat


@dataclass(slots=True)
class InventoryLevel:
    sku: str
    quantity: int
    warehouse_id: Optional[str] = None
    location: Optional[str] = None
    last_updated: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sku": self.sku,
            "quantity": self.quantity,
            "warehouseId": self.warehouse_id,
            "location": self.location,
            "lastUpdated": isoformat(self.last_updated),
        }


class ProviderAdapter(ABC):

    name: str = ""
    supports_product_creation: bool = True

    def __init__(self, client: GenericIntegrationClient):
        self.client = client

    @abstractmethod
    def get_inventory_levels(self) -> List[InventoryLevel]:
        ...

    def build_product_payload(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        return dict(data)

    def create_product(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        if not self.supports_product_creation:
            raise ConfigurationError(f"createProduct is not supported for {self.name}", self.name)
        return self.client.create_product(self.build_product_payload(data))


def as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0
