"""Concurrency limiting using asyncio semaphores."""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Optional

import structlog

logger = structlog.get_logger(__name__)


class ConcurrencyLimiter:
    """
    Limit the number of concurrent operations using a semaphore.

    Used to bound how many catalog instances are queried at once during a
    multi-instance history or chain collection. Slots taken through
    :meth:`instance_slot` are tracked by instance name so logs show which
    instances hold a slot and how long each one waited.

    Example:
        >>> limiter = ConcurrencyLimiter(max_concurrent=4)
        >>> async with limiter.instance_slot("sql01"):
        ...     # Only 4 of these blocks can run simultaneously
        ...     chain = await repository.last_chain("Sales")

    Attributes:
        max_concurrent: Maximum number of concurrent operations
        semaphore: Asyncio semaphore controlling access
    """

    def __init__(self, max_concurrent: int):
        """
        Initialize the concurrency limiter.

        Args:
            max_concurrent: Maximum number of concurrent operations

        Raises:
            ValueError: If max_concurrent is less than 1
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        self.max_concurrent = max_concurrent
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self._active_count = 0
        self._active_instances: List[str] = []

        logger.debug("concurrency_limiter_initialized", max_concurrent=max_concurrent)

    async def acquire(self, instance: Optional[str] = None) -> None:
        """
        Acquire permission to run a concurrent operation.

        Waits while the maximum number of concurrent operations is running.

        Args:
            instance: Instance the slot is taken for, recorded in logs
        """
        started = time.monotonic()
        await self.semaphore.acquire()
        self._active_count += 1
        if instance is not None:
            self._active_instances.append(instance)
        logger.debug(
            "concurrency_acquired",
            instance=instance,
            waited_ms=round((time.monotonic() - started) * 1000, 1),
            active=self._active_count,
            max=self.max_concurrent,
        )

    def release(self, instance: Optional[str] = None) -> None:
        """Release a concurrent operation slot."""
        self.semaphore.release()
        self._active_count -= 1
        if instance is not None and instance in self._active_instances:
            self._active_instances.remove(instance)
        logger.debug(
            "concurrency_released",
            instance=instance,
            active=self._active_count,
            max=self.max_concurrent,
        )

    @asynccontextmanager
    async def instance_slot(self, instance: str) -> AsyncIterator[None]:
        """Hold a slot while one instance's catalog is queried."""
        await self.acquire(instance)
        try:
            yield
        finally:
            self.release(instance)

    async def __aenter__(self) -> "ConcurrencyLimiter":
        """Context manager entry - acquire a slot."""
        await self.acquire()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Context manager exit - release the slot."""
        self.release()

    def get_active_count(self) -> int:
        """Get the current number of active concurrent operations."""
        return self._active_count

    def get_active_instances(self) -> List[str]:
        """Instances currently holding a slot, in acquisition order."""
        return list(self._active_instances)

    def get_available_slots(self) -> int:
        """Get the number of available concurrent operation slots."""
        return self.max_concurrent - self._active_count
