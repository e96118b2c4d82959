"""Service layer for multi-instance backup history operations."""

from .base import (
    BaseService,
    NotFoundError,
    NullCallback,
    ServiceCallback,
    ServiceError,
    ValidationError,
)
from .history_service import BackupHistoryService, InstanceResult, summarize_results

__all__ = [
    "BackupHistoryService",
    "BaseService",
    "InstanceResult",
    "NotFoundError",
    "NullCallback",
    "ServiceCallback",
    "ServiceError",
    "ValidationError",
    "summarize_results",
]
