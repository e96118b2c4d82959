"""Base service infrastructure with callbacks and error handling.

This module provides the foundation for service classes:
- BaseService: Common functionality for logging, config and callbacks
- ServiceCallback: Protocol for progress/failure monitoring hooks
- Service-specific exceptions: ValidationError, NotFoundError
"""

from abc import ABC
from typing import Any, Dict, Optional, Protocol, runtime_checkable

import structlog

from ..common.config import Config

logger = structlog.get_logger(__name__)


# ==================== Exceptions ====================


class ServiceError(Exception):
    """Base exception for all service errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(ServiceError):
    """Raised when input validation fails."""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        super().__init__(message, details={"field": field, **kwargs})
        self.field = field


class NotFoundError(ServiceError):
    """Raised when a requested resource is not found."""

    def __init__(
        self,
        message: str,
        resource_type: str,
        resource_id: Optional[Any] = None,
    ):
        super().__init__(
            message,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


# ==================== Callback Protocol ====================


@runtime_checkable
class ServiceCallback(Protocol):
    """
    Protocol for service operation callbacks.

    Implement this protocol to receive progress updates and failure
    notifications while many instances are processed.

    Example:
        >>> class PrintingHandler:
        ...     async def on_progress(self, current: int, total: int, message: str) -> None:
        ...         print(f"{current}/{total} {message}")
        ...
        ...     async def on_failure(self, error: Exception, context: dict) -> None:
        ...         print(f"failed: {context['instance']}: {error}")
        ...
        ...     async def on_complete(self, result: Any) -> None:
        ...         print("done")
    """

    async def on_progress(self, current: int, total: int, message: str) -> None:
        """
        Called to report progress.

        Args:
            current: Number of items finished so far
            total: Total number of items to process
            message: Human-readable progress message
        """
        ...

    async def on_failure(self, error: Exception, context: Dict[str, Any]) -> None:
        """
        Called when one item fails; processing continues with the others.

        Args:
            error: The exception that occurred
            context: Additional context about the failure
        """
        ...

    async def on_complete(self, result: Any) -> None:
        """
        Called when the entire operation completes.

        Args:
            result: The result of the operation
        """
        ...


class NullCallback:
    """No-op callback implementation for when no callback is provided."""

    async def on_progress(self, current: int, total: int, message: str) -> None:
        pass

    async def on_failure(self, error: Exception, context: Dict[str, Any]) -> None:
        pass

    async def on_complete(self, result: Any) -> None:
        pass


# ==================== Base Service ====================


class BaseService(ABC):
    """
    Abstract base class for service classes.

    Provides common functionality:
    - Configuration access
    - Structured logging with bound context
    - Callback management for progress reporting
    """

    def __init__(
        self,
        config: Config,
        callback: Optional[ServiceCallback] = None,
    ):
        """
        Initialize the service.

        Args:
            config: Resolved backupchain configuration
            callback: Optional callback for progress/failure hooks
        """
        self._config = config
        self._callback = callback or NullCallback()
        self._logger = structlog.get_logger(self.__class__.__name__)

    @property
    def config(self) -> Config:
        """Access the configuration."""
        return self._config

    @property
    def callback(self) -> ServiceCallback:
        """Access the service callback."""
        return self._callback

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        """Access the bound logger."""
        return self._logger

    async def _report_progress(
        self,
        current: int,
        total: int,
        message: str,
    ) -> None:
        """
        Report progress via callback.

        Safe to call even if callback is not provided (uses NullCallback).
        """
        try:
            await self._callback.on_progress(current, total, message)
        except Exception as e:
            self._logger.warning("callback_progress_failed", error=str(e))

    async def _report_failure(
        self,
        error: Exception,
        context: Dict[str, Any],
    ) -> None:
        """
        Report a failure via callback.

        Safe to call even if callback is not provided (uses NullCallback).
        """
        try:
            await self._callback.on_failure(error, context)
        except Exception as e:
            self._logger.warning("callback_failure_failed", error=str(e))

    async def _report_complete(self, result: Any) -> None:
        """
        Report completion via callback.

        Safe to call even if callback is not provided (uses NullCallback).
        """
        try:
            await self._callback.on_complete(result)
        except Exception as e:
            self._logger.warning("callback_complete_failed", error=str(e))
