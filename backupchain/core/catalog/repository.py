"""Backup history repository: catalog reads and restore chain lookups."""

from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, Field, field_validator

from ...common.config import HistoryConfig, InstanceConfig
from ..chain import (
    LSN_SORT_COLUMNS,
    build_restore_chain,
    in_fork,
    last_of_type,
    resolve_fork,
    sort_history,
    summarize_forks,
)
from ..codes import BackupType, DeviceType
from ..grouping import group_into_media_sets
from ..models import BackupSet, CatalogRow, OptionalLsn, RecoveryFork, RestoreChain
from .connection import CatalogConnection, open_catalog
from .exceptions import CatalogQueryError
from .query import BackupHistoryQuery, fetch_backup_files, fetch_database_names

logger = structlog.get_logger(__name__)

CHAIN_TYPES = (BackupType.FULL, BackupType.DIFFERENTIAL, BackupType.LOG)


def _parse_device_type(value: Any) -> DeviceType:
    if isinstance(value, DeviceType):
        return value
    return DeviceType.parse(value)[0]


class HistoryFilter(BaseModel):
    """Filters for a backup history listing."""

    databases: List[str] = Field(default_factory=list)
    exclude_databases: List[str] = Field(default_factory=list)
    backup_types: List[BackupType] = Field(default_factory=list)
    device_types: List[DeviceType] = Field(default_factory=list)
    since: Optional[datetime] = None
    include_copy_only: bool = False
    include_mirror: bool = False
    min_lsn: OptionalLsn = None
    recovery_fork_id: Optional[UUID] = None

    @field_validator("backup_types", mode="before")
    @classmethod
    def parse_backup_types(cls, v: Any) -> List[BackupType]:
        return [BackupType.parse(item) for item in (v or [])]

    @field_validator("device_types", mode="before")
    @classmethod
    def parse_device_types(cls, v: Any) -> List[DeviceType]:
        return [_parse_device_type(item) for item in (v or [])]


class ChainOptions(BaseModel):
    """Options for restore chain reconstruction."""

    recovery_fork_id: Optional[UUID] = None
    ignore_diff: bool = False
    include_copy_only: bool = False
    include_mirror: bool = False
    since: Optional[datetime] = None
    device_types: List[DeviceType] = Field(default_factory=list)
    lsn_sort: str = "last_lsn"

    @field_validator("device_types", mode="before")
    @classmethod
    def parse_device_types(cls, v: Any) -> List[DeviceType]:
        return [_parse_device_type(item) for item in (v or [])]

    @field_validator("lsn_sort")
    @classmethod
    def validate_lsn_sort(cls, v: str) -> str:
        if v not in LSN_SORT_COLUMNS:
            raise ValueError(f"Invalid lsn_sort: {v}. Must be one of {list(LSN_SORT_COLUMNS)}")
        return v

    @classmethod
    def from_config(cls, history: HistoryConfig, **overrides: Any) -> "ChainOptions":
        """Start from configured history defaults and apply overrides."""
        values = {
            "ignore_diff": history.ignore_diff,
            "include_copy_only": history.include_copy_only,
            "include_mirror": history.include_mirror,
            "lsn_sort": history.lsn_sort,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(values)

    def history_filter(self, database: str) -> HistoryFilter:
        return HistoryFilter(
            databases=[database],
            backup_types=list(CHAIN_TYPES),
            device_types=self.device_types,
            since=self.since,
            include_copy_only=self.include_copy_only,
            include_mirror=self.include_mirror,
        )


class BackupHistoryRepository:
    """Read-only access to one instance's backup history."""

    def __init__(self, connection: CatalogConnection):
        """
        Initialize repository.

        Args:
            connection: Catalog connection (opened on connect())
        """
        self._connection = connection

    @classmethod
    async def from_config(cls, name: str, config: InstanceConfig) -> "BackupHistoryRepository":
        """
        Create and connect a repository for a configured instance.

        Args:
            name: Instance name
            config: Instance settings with an absolute sqlite database_path

        Returns:
            Connected BackupHistoryRepository

        Raises:
            CatalogConnectionError: If the catalog cannot be reached
        """
        repo = cls(open_catalog(name, config))
        await repo.connect()
        return repo

    @property
    def connection(self) -> CatalogConnection:
        return self._connection

    @property
    def instance(self) -> str:
        return self._connection.name

    async def connect(self) -> None:
        """Establish catalog connection."""
        if not self._connection.is_connected:
            await self._connection.connect()

    async def close(self) -> None:
        """Close catalog connection."""
        await self._connection.close()

    async def __aenter__(self) -> "BackupHistoryRepository":
        """Context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit."""
        await self.close()

    def query(self) -> BackupHistoryQuery:
        """
        Create a new fluent query builder.

        Example:
            rows = await repository.query()\\
                .where_database("Sales")\\
                .where_type(BackupType.LOG)\\
                .execute()
        """
        if not self._connection.is_connected:
            raise CatalogQueryError("No active connection")

        return BackupHistoryQuery(self._connection)

    def _build_query(self, filters: HistoryFilter) -> BackupHistoryQuery:
        query = self.query()
        if filters.databases:
            query.where_database(*filters.databases)
        if filters.exclude_databases:
            query.exclude_database(*filters.exclude_databases)
        if filters.backup_types:
            query.where_type(*filters.backup_types)
        if filters.device_types:
            query.where_device_type(*filters.device_types)
        if filters.since is not None:
            query.since(filters.since)
        if filters.recovery_fork_id is not None:
            query.where_recovery_fork(filters.recovery_fork_id)
        return query.include_copy_only(filters.include_copy_only).include_mirror(
            filters.include_mirror
        )

    # ==================== History ====================

    async def list_raw(self, filters: Optional[HistoryFilter] = None) -> List[CatalogRow]:
        """
        Raw catalog rows, one per backup set and media family.

        Args:
            filters: History filters (min_lsn is applied numerically)

        Returns:
            Rows in descending last LSN order
        """
        filters = filters or HistoryFilter()
        rows = await self._build_query(filters).execute()
        if filters.min_lsn is not None:
            rows = [row for row in rows if row.last_lsn > filters.min_lsn]
        return sorted(rows, key=lambda r: (r.last_lsn, r.backup_finish_date), reverse=True)

    async def list_history(self, filters: Optional[HistoryFilter] = None) -> List[BackupSet]:
        """
        Backup sets matching the filters, newest (highest last LSN) first.

        Each call re-reads the catalog.

        Args:
            filters: History filters

        Returns:
            List of BackupSet with files and media families attached
        """
        filters = filters or HistoryFilter()
        rows = await self._build_query(filters).execute()
        if filters.min_lsn is not None:
            rows = [row for row in rows if row.last_lsn > filters.min_lsn]

        files = await fetch_backup_files(self._connection, {row.backup_set_id for row in rows})
        backup_sets = group_into_media_sets(rows, files, self._connection.server_major_version)

        logger.debug(
            "history_listed",
            instance=self.instance,
            databases=filters.databases or None,
            backup_sets=len(backup_sets),
        )
        return sort_history(backup_sets, descending=True)

    async def list_databases(self) -> List[str]:
        """Databases with at least one recorded backup."""
        return await fetch_database_names(self._connection)

    async def get_recovery_forks(
        self,
        database: str,
        filters: Optional[HistoryFilter] = None,
    ) -> List[RecoveryFork]:
        """
        Recovery forks recorded for a database, oldest last backup first.

        Args:
            database: Database name
            filters: Optional window (since, device types, copy-only)
        """
        base = filters or HistoryFilter()
        history = await self.list_history(base.model_copy(update={"databases": [database]}))
        return summarize_forks(history)

    # ==================== Last backups ====================

    async def last_of_type(
        self,
        database: str,
        backup_type: BackupType,
        recovery_fork_id: Optional[UUID] = None,
        lsn_sort: str = "last_lsn",
        include_copy_only: bool = False,
        since: Optional[datetime] = None,
        device_types: Optional[List[DeviceType]] = None,
    ) -> Optional[BackupSet]:
        """
        Most recent backup of one type for a database.

        When the history spans several recovery forks a warning is logged and,
        unless ``recovery_fork_id`` is given, the most recent fork is used.

        Args:
            database: Database name
            backup_type: Full, Differential or Log (any type is accepted)
            recovery_fork_id: Fork override
            lsn_sort: LSN column to rank by
            include_copy_only: Consider copy-only backups
            since: Only consider backups finished at or after this time
            device_types: Only consider these device types

        Returns:
            BackupSet or None if the database has no such backup
        """
        backup_type = BackupType.parse(backup_type)
        history = await self.list_history(
            HistoryFilter(
                databases=[database],
                device_types=device_types or [],
                since=since,
                include_copy_only=include_copy_only,
            )
        )
        fork_id, _ = resolve_fork(history, recovery_fork_id, database)
        result = last_of_type(in_fork(history, fork_id), backup_type, lsn_sort, include_copy_only)

        logger.debug(
            "last_backup_resolved",
            instance=self.instance,
            database=database,
            type=backup_type.display_name,
            backup_set_id=result.backup_set_id if result else None,
        )
        return result

    async def last_full(self, database: str, **kwargs: Any) -> Optional[BackupSet]:
        """Most recent full backup."""
        return await self.last_of_type(database, BackupType.FULL, **kwargs)

    async def last_diff(self, database: str, **kwargs: Any) -> Optional[BackupSet]:
        """Most recent differential backup."""
        return await self.last_of_type(database, BackupType.DIFFERENTIAL, **kwargs)

    async def last_log(self, database: str, **kwargs: Any) -> Optional[BackupSet]:
        """Most recent log backup."""
        return await self.last_of_type(database, BackupType.LOG, **kwargs)

    # ==================== Restore chains ====================

    async def last_chain(
        self,
        database: str,
        options: Optional[ChainOptions] = None,
    ) -> RestoreChain:
        """
        Minimal restore chain to the most recent recoverable point.

        Args:
            database: Database name
            options: Chain options (fork override, ignore_diff, copy-only, ...)

        Returns:
            RestoreChain; empty with a warning if no full backup exists

        Raises:
            CatalogQueryError: If the catalog cannot be read
        """
        options = options or ChainOptions()
        history = await self.list_history(options.history_filter(database))
        chain = build_restore_chain(
            database,
            history,
            recovery_fork_id=options.recovery_fork_id,
            ignore_diff=options.ignore_diff,
            include_copy_only=options.include_copy_only,
            lsn_sort=options.lsn_sort,
        )

        logger.info(
            "restore_chain_resolved",
            instance=self.instance,
            database=database,
            backups=len(chain),
            warnings=len(chain.warnings),
        )
        return chain

    async def last_chains(
        self,
        databases: Optional[List[str]] = None,
        exclude_databases: Optional[List[str]] = None,
        options: Optional[ChainOptions] = None,
    ) -> List[RestoreChain]:
        """
        Restore chains for several databases, processed one after another.

        A database without a full backup yields an empty chain carrying a
        warning; the remaining databases are still processed.

        Args:
            databases: Databases to include (default: every database in the catalog)
            exclude_databases: Databases to skip
            options: Chain options shared by all databases
        """
        names = databases or await self.list_databases()
        excluded = set(exclude_databases or [])
        return [
            await self.last_chain(name, options)
            for name in names
            if name not in excluded
        ]
