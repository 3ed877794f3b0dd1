# 聚合导入所有模型，供 Alembic / create_all 发现

from .schedule import SyncSchedule, ScheduleExecution
from .inventory import InventoryItem, InventoryAdjustment
from .webhook import WebhookSubscription
from .integration import ProviderIntegration, TenantConnection, ProviderProduct

__all__ = [
    # scheduling
    "SyncSchedule", "ScheduleExecution",
    # inventory
    "InventoryItem", "InventoryAdjustment",
    # integrations / webhooks
    "WebhookSubscription", "ProviderIntegration", "TenantConnection", "ProviderProduct",
]
