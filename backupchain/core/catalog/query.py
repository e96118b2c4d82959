"""Fluent query builder for backup history."""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

import structlog
from pydantic import ValidationError

from ..codes import BackupType, DeviceType, encode_device_type
from ..models import BackupFile, CatalogRow
from .connection import CatalogConnection
from .exceptions import CatalogQueryError

logger = structlog.get_logger(__name__)

# Stay well under SQL Server's 2100 parameter limit
FILE_QUERY_CHUNK_SIZE = 500

BACKUP_HISTORY_COLUMNS = [
    "bs.backup_set_id",
    "bs.media_set_id",
    "bs.database_name",
    "bs.type",
    "bs.backup_start_date",
    "bs.backup_finish_date",
    "bs.first_lsn",
    "bs.last_lsn",
    "bs.checkpoint_lsn",
    "bs.database_backup_lsn",
    "bs.is_copy_only",
    "bs.last_recovery_fork_guid",
    "bs.backup_size",
    "bs.server_name",
    "bs.machine_name",
    "bs.user_name",
    "bs.position",
    "bs.software_major_version",
    "bs.recovery_model",
    "bs.database_guid",
    "mf.physical_device_name",
    "mf.device_type",
    "mf.family_sequence_number",
    "mf.mirror",
    "mf.media_family_id",
]


class BackupHistoryQuery:
    """Fluent query builder over backupset joined to backupmediafamily.

    Filters that need numeric LSN comparison are not pushed into SQL; see
    :meth:`BackupHistoryRepository.list_history`.
    """

    def __init__(self, connection: CatalogConnection):
        """
        Initialize query builder.

        Args:
            connection: Open CatalogConnection
        """
        self._connection = connection
        self._where_clauses: List[str] = []
        self._params: List[Any] = []
        self._include_copy_only = False
        self._include_mirror = False

    def where_database(self, *databases: str) -> "BackupHistoryQuery":
        """Restrict to one or more database names."""
        names = [d for d in databases if d]
        if names:
            self._where_clauses.append(f"bs.database_name IN ({_placeholders(names)})")
            self._params.extend(names)
        return self

    def exclude_database(self, *databases: str) -> "BackupHistoryQuery":
        """Drop one or more database names."""
        names = [d for d in databases if d]
        if names:
            self._where_clauses.append(f"bs.database_name NOT IN ({_placeholders(names)})")
            self._params.extend(names)
        return self

    def where_type(self, *backup_types: BackupType) -> "BackupHistoryQuery":
        """Restrict to backup types (``backupset.type`` codes)."""
        codes = sorted({BackupType.parse(t).value for t in backup_types})
        if codes:
            self._where_clauses.append(f"bs.type IN ({_placeholders(codes)})")
            self._params.extend(codes)
        return self

    def where_device_type(
        self, *device_types: DeviceType, include_permanent: bool = True
    ) -> "BackupHistoryQuery":
        """
        Restrict to device types.

        Args:
            device_types: Device types to keep
            include_permanent: Also match the permanent (``100 + n``) variants
        """
        codes = set()
        for device_type in device_types:
            codes.add(encode_device_type(device_type))
            if include_permanent:
                codes.add(encode_device_type(device_type, permanent=True))
        if codes:
            ordered = sorted(codes)
            self._where_clauses.append(f"mf.device_type IN ({_placeholders(ordered)})")
            self._params.extend(ordered)
        return self

    def where_device_codes(self, *codes: int) -> "BackupHistoryQuery":
        """Restrict to raw device type codes, e.g. only ``102``."""
        ordered = sorted({int(c) for c in codes})
        if ordered:
            self._where_clauses.append(f"mf.device_type IN ({_placeholders(ordered)})")
            self._params.extend(ordered)
        return self

    def since(self, timestamp: datetime) -> "BackupHistoryQuery":
        """Keep backups that finished at or after ``timestamp``."""
        self._where_clauses.append("bs.backup_finish_date >= ?")
        self._params.append(timestamp)
        return self

    def where_recovery_fork(self, recovery_fork_id: UUID) -> "BackupHistoryQuery":
        """Restrict to one recovery fork."""
        self._where_clauses.append("bs.last_recovery_fork_guid = ?")
        self._params.append(recovery_fork_id)
        return self

    def where_backup_set_ids(self, *backup_set_ids: int) -> "BackupHistoryQuery":
        """Restrict to specific backup sets."""
        ids = list(backup_set_ids)
        if ids:
            self._where_clauses.append(f"bs.backup_set_id IN ({_placeholders(ids)})")
            self._params.extend(ids)
        return self

    def include_copy_only(self, include: bool = True) -> "BackupHistoryQuery":
        """Include copy-only backups (excluded by default)."""
        self._include_copy_only = include
        return self

    def include_mirror(self, include: bool = True) -> "BackupHistoryQuery":
        """Include mirrored media families (only ``mirror = 0`` by default)."""
        self._include_mirror = include
        return self

    def _compressed_size_column(self) -> str:
        # backupset.compressed_backup_size appeared in SQL Server 2008
        version = self._connection.server_major_version
        if version is not None and version < 10:
            return "NULL AS compressed_backup_size"
        return "bs.compressed_backup_size"

    def build(self) -> Tuple[str, List[Any]]:
        """
        Build the SQL text and parameters.

        Returns:
            Tuple of (sql, params)
        """
        where_clauses = list(self._where_clauses)
        if not self._include_copy_only:
            where_clauses.append("bs.is_copy_only = 0")
        if not self._include_mirror:
            where_clauses.append("mf.mirror = 0")

        columns = BACKUP_HISTORY_COLUMNS + [self._compressed_size_column()]
        sql = (
            f"SELECT {', '.join(columns)} "
            f"FROM {self._connection.table('backupset')} bs "
            f"INNER JOIN {self._connection.table('backupmediafamily')} mf "
            f"ON bs.media_set_id = mf.media_set_id"
        )
        if where_clauses:
            sql += " WHERE " + " AND ".join(where_clauses)
        sql += " ORDER BY bs.backup_set_id, mf.mirror, mf.family_sequence_number"

        return sql, list(self._params)

    async def execute(self) -> List[CatalogRow]:
        """
        Execute the query.

        Returns:
            Raw catalog rows, one per backup set and media family

        Raises:
            CatalogQueryError: If the query fails
        """
        sql, params = self.build()
        logger.debug("history_query_executing", instance=self._connection.name, params=len(params))
        rows = await self._connection.fetch_all(sql, params)
        try:
            return [CatalogRow.model_validate(row) for row in rows]
        except (TypeError, ValueError, ValidationError) as e:
            raise CatalogQueryError(
                f"Unreadable backup history row on {self._connection.name}: {e}", query=sql
            ) from e

    async def count(self) -> int:
        """Number of distinct backup sets matching the filters."""
        sql, params = self.build()
        order_at = sql.index(" ORDER BY ")
        count_sql = f"SELECT COUNT(DISTINCT backup_set_id) AS total FROM ({sql[:order_at]}) matched"
        rows = await self._connection.fetch_all(count_sql, params)
        return int(rows[0]["total"]) if rows else 0


async def fetch_backup_files(
    connection: CatalogConnection,
    backup_set_ids: Iterable[int],
) -> Dict[int, List[BackupFile]]:
    """
    Load ``backupfile`` rows for a set of backup sets.

    Ids are queried in chunks to respect driver parameter limits.

    Returns:
        Backup files keyed by backup_set_id
    """
    ids = sorted(set(backup_set_ids))
    files: Dict[int, List[BackupFile]] = {}
    for start in range(0, len(ids), FILE_QUERY_CHUNK_SIZE):
        chunk = ids[start : start + FILE_QUERY_CHUNK_SIZE]
        sql = (
            "SELECT backup_set_id, logical_name, physical_name, file_type, file_size "
            f"FROM {connection.table('backupfile')} "
            f"WHERE backup_set_id IN ({_placeholders(chunk)}) "
            "ORDER BY backup_set_id"
        )
        for row in await connection.fetch_all(sql, chunk):
            try:
                backup_set_id = int(row.pop("backup_set_id"))
                if row.get("file_size") is not None:
                    row["file_size"] = int(row["file_size"])
                backup_file = BackupFile.model_validate(row)
            except (TypeError, ValueError, ValidationError) as e:
                raise CatalogQueryError(
                    f"Unreadable backup file row on {connection.name}: {e}", query=sql
                ) from e
            files.setdefault(backup_set_id, []).append(backup_file)
    return files


async def fetch_database_names(connection: CatalogConnection) -> List[str]:
    """Distinct database names with recorded backups."""
    rows = await connection.fetch_all(
        f"SELECT DISTINCT database_name FROM {connection.table('backupset')} ORDER BY database_name"
    )
    return [row["database_name"] for row in rows]


def _placeholders(values: Sequence[Any]) -> str:
    return ", ".join("?" for _ in values)
