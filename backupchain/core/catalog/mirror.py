"""Writer for offline SQLite mirrors of the backup history tables."""

from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence
from uuid import UUID

import structlog

from ..codes import BackupType, DeviceType, encode_device_type
from ..lsn import format_lsn, parse_lsn
from ..models import BackupFile, BackupSet
from .connection import SqliteCatalogConnection

logger = structlog.get_logger(__name__)


class CatalogMirror:
    """
    Create and populate a SQLite mirror of msdb backup history.

    History readers never write to a catalog; this class exists to take
    offline snapshots and to build fixtures.

    Example:
        >>> async with CatalogMirror(Path("sql01.db")) as mirror:
        ...     await mirror.add_backup_set("Sales", BackupType.FULL, ...)
    """

    def __init__(self, db_path: Path, name: Optional[str] = None, host_os: str = "windows"):
        self.db_path = db_path
        self.connection = SqliteCatalogConnection(db_path, name=name, host_os=host_os, create=True)

    async def open(self) -> "CatalogMirror":
        await self.connection.connect()
        return self

    async def close(self) -> None:
        await self.connection.close()

    async def __aenter__(self) -> "CatalogMirror":
        return await self.open()

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def set_server_major_version(self, version: int) -> None:
        """Record the major version of the engine the mirror was taken from."""
        await self.connection.execute(
            "INSERT OR REPLACE INTO catalog_properties (name, value) VALUES ('server_major_version', ?)",
            (str(version),),
        )
        self.connection.server_major_version = version

    async def add_backup_set(
        self,
        database_name: str,
        backup_type: BackupType,
        first_lsn: Any,
        last_lsn: Any,
        start_time: datetime,
        end_time: datetime,
        checkpoint_lsn: Any = None,
        database_backup_lsn: Any = None,
        is_copy_only: bool = False,
        recovery_fork_id: Optional[UUID] = None,
        paths: Sequence[str] = (),
        device_type: DeviceType = DeviceType.DISK,
        permanent_device: bool = False,
        mirror_paths: Sequence[str] = (),
        backup_size: Optional[int] = None,
        compressed_backup_size: Optional[int] = None,
        files: Iterable[BackupFile] = (),
        media_set_id: Optional[int] = None,
        **columns: Any,
    ) -> int:
        """
        Record one backup set with its media families and files.

        Each entry in ``paths`` becomes one stripe (family sequence 1..n);
        ``mirror_paths`` adds a mirrored copy of the media set.

        Args:
            columns: Extra backupset columns (server_name, user_name, ...)

        Returns:
            The new backup_set_id
        """
        if media_set_id is None:
            rows = await self.connection.fetch_all(
                "SELECT COALESCE(MAX(media_set_id), 0) + 1 AS next_id FROM backupset"
            )
            media_set_id = int(rows[0]["next_id"])

        values = {
            "media_set_id": media_set_id,
            "database_name": database_name,
            "type": BackupType.parse(backup_type).value,
            "backup_start_date": start_time,
            "backup_finish_date": end_time,
            "first_lsn": _lsn_text(first_lsn),
            "last_lsn": _lsn_text(last_lsn),
            "checkpoint_lsn": _lsn_text(checkpoint_lsn),
            "database_backup_lsn": _lsn_text(database_backup_lsn),
            "is_copy_only": is_copy_only,
            "last_recovery_fork_guid": recovery_fork_id,
            "backup_size": backup_size,
            "compressed_backup_size": compressed_backup_size,
            **columns,
        }
        names = list(values)
        backup_set_id = await self.connection.execute(
            f"INSERT INTO backupset ({', '.join(names)}) VALUES ({', '.join('?' for _ in names)})",
            [values[n] for n in names],
        )

        if not paths:
            # History joins on media families; a set without one would be invisible
            extension = "trn" if values["type"] == BackupType.LOG.value else "bak"
            paths = [f"{database_name}_{media_set_id}.{extension}"]

        device_code = encode_device_type(device_type, permanent_device)
        for mirror, family_paths in enumerate([paths, mirror_paths]):
            for sequence, path in enumerate(family_paths, start=1):
                await self.connection.execute(
                    "INSERT OR IGNORE INTO backupmediafamily "
                    "(media_set_id, family_sequence_number, media_family_id, "
                    "physical_device_name, device_type, mirror) VALUES (?, ?, ?, ?, ?, ?)",
                    (media_set_id, sequence, f"{media_set_id}-{sequence}", path, device_code, mirror),
                )

        for backup_file in files:
            await self.connection.execute(
                "INSERT INTO backupfile "
                "(backup_set_id, logical_name, physical_name, file_type, file_size) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    backup_set_id,
                    backup_file.logical_name,
                    backup_file.physical_name,
                    backup_file.file_type,
                    backup_file.file_size,
                ),
            )

        logger.debug(
            "mirror_backup_set_added",
            database=database_name,
            backup_set_id=backup_set_id,
            type=values["type"],
        )
        return backup_set_id

    async def import_backup_sets(self, backup_sets: Iterable[BackupSet]) -> List[int]:
        """
        Copy backup sets read from another catalog into the mirror.

        Returns:
            New backup_set_ids, in input order
        """
        new_ids = []
        for backup_set in backup_sets:
            primary = [f for f in backup_set.media_families if f.mirror == 0]
            mirrored = [f for f in backup_set.media_families if f.mirror != 0]
            new_ids.append(
                await self.add_backup_set(
                    database_name=backup_set.database_name,
                    backup_type=backup_set.type,
                    first_lsn=backup_set.first_lsn,
                    last_lsn=backup_set.last_lsn,
                    start_time=backup_set.start_time,
                    end_time=backup_set.end_time,
                    checkpoint_lsn=backup_set.checkpoint_lsn,
                    database_backup_lsn=backup_set.database_backup_lsn,
                    is_copy_only=backup_set.is_copy_only,
                    recovery_fork_id=backup_set.recovery_fork_id,
                    paths=[f.physical_device_name for f in primary],
                    mirror_paths=[f.physical_device_name for f in mirrored],
                    device_type=backup_set.device_type,
                    permanent_device=backup_set.is_permanent_device,
                    backup_size=backup_set.total_size,
                    compressed_backup_size=backup_set.compressed_size,
                    files=backup_set.files,
                    server_name=backup_set.server_name,
                    machine_name=backup_set.machine_name,
                    user_name=backup_set.user_name,
                    position=backup_set.position,
                    software_major_version=backup_set.software_major_version,
                    recovery_model=backup_set.recovery_model,
                    database_guid=backup_set.database_guid,
                )
            )
        logger.info("mirror_import_complete", db_path=str(self.db_path), backup_sets=len(new_ids))
        return new_ids


def _lsn_text(value: Any) -> Optional[str]:
    lsn = parse_lsn(value)
    return None if lsn is None else format_lsn(lsn)
