"""
业务层异常：API 层按类型映射 HTTP 状态码（见 main.py 的 exception handlers）
"""

from synchub.utils.frequency import InvalidFrequencyError


class DomainError(Exception):
    """Base for service-layer errors."""

    code = "DOMAIN_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(DomainError):
    code = "NOT_FOUND"


class ScheduleNotFound(NotFoundError):
    code = "SCHEDULE_NOT_FOUND"


class ExecutionNotFound(NotFoundError):
    code = "EXECUTION_NOT_FOUND"


class SyncNotFound(NotFoundError):
    code = "SYNC_NOT_FOUND"


class InventoryItemNotFound(NotFoundError):
    code = "ITEM_NOT_FOUND"


class InsufficientInventoryError(DomainError):
    """A decrease would drive quantity below zero."""
    code = "INSUFFICIENT_INVENTORY"


class ProviderNotConfigured(DomainError):
    code = "PROVIDER_NOT_CONFIGURED"


__all__ = [
    "DomainError", "NotFoundError", "ScheduleNotFound", "ExecutionNotFound", "SyncNotFound",
    "InventoryItemNotFound", "InsufficientInventoryError", "ProviderNotConfigured", "InvalidFrequencyError",
]
