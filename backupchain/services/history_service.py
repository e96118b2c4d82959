"""Multi-instance backup history service.

Fans history, last-backup and restore chain lookups out over the configured
instances. Instances run concurrently up to
``concurrency.max_concurrent_instances``; databases within an instance are
processed sequentially. A catalog failure on one instance is recorded in its
result and reported to the callback; the other instances carry on.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from ..common.concurrency_limiter import ConcurrencyLimiter
from ..common.config import Config, InstanceConfig
from ..common.logging_config import bind_context, clear_context
from ..core.catalog.exceptions import CatalogError
from ..core.catalog.repository import BackupHistoryRepository, ChainOptions, HistoryFilter
from ..core.codes import BackupType
from ..core.models import BackupSet, CatalogRow, RecoveryFork, RestoreChain
from .base import BaseService, NotFoundError, ServiceCallback, ValidationError

RepositoryFactory = Callable[[str, InstanceConfig], Awaitable[BackupHistoryRepository]]
InstanceWorker = Callable[[BackupHistoryRepository, "InstanceResult"], Awaitable[None]]


class InstanceResult(BaseModel):
    """Outcome of one instance in a multi-instance operation."""

    instance: str
    history: List[BackupSet] = Field(default_factory=list)
    raw: List[CatalogRow] = Field(default_factory=list)
    last: List[BackupSet] = Field(default_factory=list)
    chains: List[RestoreChain] = Field(default_factory=list)
    forks: Dict[str, List[RecoveryFork]] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class BackupHistoryService(BaseService):
    """
    Service for backup history across many instances.

    Example:
        >>> service = BackupHistoryService(config)
        >>> results = await service.collect_chains(["sql01", "sql02"], databases=["Sales"])
        >>> for result in results:
        ...     print(result.instance, [len(c) for c in result.chains], result.error)
    """

    def __init__(
        self,
        config: Config,
        callback: Optional[ServiceCallback] = None,
        repository_factory: Optional[RepositoryFactory] = None,
    ):
        """
        Initialize the service.

        Args:
            config: Resolved configuration (instances, concurrency, history defaults)
            callback: Optional progress/failure callback
            repository_factory: Coroutine creating a connected repository for
                an instance; defaults to BackupHistoryRepository.from_config
        """
        super().__init__(config, callback)
        self._repository_factory = repository_factory or BackupHistoryRepository.from_config

    def _resolve_instances(self, instances: Optional[List[str]]) -> List[str]:
        names = list(instances) if instances else sorted(self.config.instances)
        if not names:
            raise ValidationError("No instances configured or requested", field="instances")
        for name in names:
            if name not in self.config.instances:
                raise NotFoundError(f"Instance not configured: {name}", "instance", name)
        return names

    async def _fan_out(
        self,
        instances: Optional[List[str]],
        worker: InstanceWorker,
        operation: str,
    ) -> List[InstanceResult]:
        names = self._resolve_instances(instances)
        limiter = ConcurrencyLimiter(self.config.concurrency.max_concurrent_instances)
        total = len(names)
        finished = 0

        async def run(name: str) -> InstanceResult:
            nonlocal finished
            result = InstanceResult(instance=name)
            async with limiter.instance_slot(name):
                bind_context(instance=name, operation=operation)
                try:
                    repository = await self._repository_factory(
                        name, self.config.get_instance(name)
                    )
                    try:
                        await worker(repository, result)
                    finally:
                        await repository.close()
                except CatalogError as e:
                    result.error = str(e)
                    result.error_type = type(e).__name__
                    self.logger.error(
                        "instance_failed",
                        instance=name,
                        operation=operation,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    await self._report_failure(e, {"instance": name, "operation": operation})
                finally:
                    clear_context()

            finished += 1
            await self._report_progress(finished, total, f"{operation}: {name}")
            return result

        results = list(await asyncio.gather(*(run(name) for name in names)))

        self.logger.info(
            "instances_processed",
            operation=operation,
            instances=total,
            failed=sum(1 for r in results if not r.succeeded),
        )
        await self._report_complete(results)
        return results

    async def collect_history(
        self,
        instances: Optional[List[str]] = None,
        filters: Optional[HistoryFilter] = None,
        raw: bool = False,
    ) -> List[InstanceResult]:
        """
        Backup history for each instance.

        Args:
            instances: Instance names (default: all configured)
            filters: History filters
            raw: Return ungrouped catalog rows in ``raw`` instead of ``history``
        """
        filters = filters or HistoryFilter(
            include_copy_only=self.config.history.include_copy_only,
            include_mirror=self.config.history.include_mirror,
        )

        async def worker(repository: BackupHistoryRepository, result: InstanceResult) -> None:
            if raw:
                result.raw = await repository.list_raw(filters)
            else:
                result.history = await repository.list_history(filters)

        return await self._fan_out(instances, worker, "history")

    async def collect_last(
        self,
        backup_type: BackupType,
        instances: Optional[List[str]] = None,
        databases: Optional[List[str]] = None,
        exclude_databases: Optional[List[str]] = None,
        options: Optional[ChainOptions] = None,
    ) -> List[InstanceResult]:
        """
        Most recent backup of one type for every database on each instance.

        Databases without such a backup add a warning and are skipped.
        """
        options = options or ChainOptions.from_config(self.config.history)

        async def worker(repository: BackupHistoryRepository, result: InstanceResult) -> None:
            names = databases or await repository.list_databases()
            for name in names:
                if name in (exclude_databases or []):
                    continue
                backup = await repository.last_of_type(
                    name,
                    backup_type,
                    recovery_fork_id=options.recovery_fork_id,
                    lsn_sort=options.lsn_sort,
                    include_copy_only=options.include_copy_only,
                    since=options.since,
                    device_types=options.device_types,
                )
                if backup is None:
                    result.warnings.append(
                        f"No {backup_type.display_name.lower()} backup found for database {name}"
                    )
                    continue
                result.last.append(backup)

        return await self._fan_out(instances, worker, f"last_{backup_type.name.lower()}")

    async def collect_chains(
        self,
        instances: Optional[List[str]] = None,
        databases: Optional[List[str]] = None,
        exclude_databases: Optional[List[str]] = None,
        options: Optional[ChainOptions] = None,
    ) -> List[InstanceResult]:
        """
        Restore chains for every requested database on each instance.

        Chain warnings (missing full, multiple forks, log gaps) are copied into
        the instance result's ``warnings``.
        """
        options = options or ChainOptions.from_config(self.config.history)

        async def worker(repository: BackupHistoryRepository, result: InstanceResult) -> None:
            result.chains = await repository.last_chains(databases, exclude_databases, options)
            for chain in result.chains:
                result.warnings.extend(chain.warnings)

        return await self._fan_out(instances, worker, "chain")

    async def collect_forks(
        self,
        instances: Optional[List[str]] = None,
        databases: Optional[List[str]] = None,
        filters: Optional[HistoryFilter] = None,
    ) -> List[InstanceResult]:
        """Recovery forks per database on each instance."""

        async def worker(repository: BackupHistoryRepository, result: InstanceResult) -> None:
            names = databases or await repository.list_databases()
            excluded = set(filters.exclude_databases) if filters else set()
            for name in names:
                if name in excluded:
                    continue
                forks = await repository.get_recovery_forks(name, filters)
                result.forks[name] = forks
                if len(forks) > 1:
                    result.warnings.append(f"Multiple recovery forks found for {name}")

        return await self._fan_out(instances, worker, "forks")


def summarize_results(results: List[InstanceResult]) -> Dict[str, Any]:
    """Counts used by the CLI exit status and log summary."""
    return {
        "instances": len(results),
        "failed": [r.instance for r in results if not r.succeeded],
        "warnings": sum(len(r.warnings) for r in results),
    }
