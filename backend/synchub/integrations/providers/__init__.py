from .base import InventoryLevel, ProviderAdapter
from .registry import ProviderRegistry

__all__ = ["InventoryLevel", "ProviderAdapter", "ProviderRegistry"]
