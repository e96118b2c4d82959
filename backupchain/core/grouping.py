"""Group raw catalog rows into backup sets."""

from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import structlog

from .models import BackupFile, BackupSet, CatalogRow

logger = structlog.get_logger(__name__)

# Backup compression first shipped with SQL Server 2008 (major version 10)
COMPRESSION_MIN_VERSION = 10


def compression_ratio(
    total_size: Optional[int],
    compressed_size: Optional[int],
    server_major_version: Optional[int] = None,
) -> float:
    """
    Ratio of uncompressed to compressed backup size.

    Returns 1 when the engine predates backup compression or either size is
    missing or zero.
    """
    if server_major_version is not None and server_major_version < COMPRESSION_MIN_VERSION:
        return 1.0
    if not total_size or not compressed_size:
        return 1.0
    return total_size / compressed_size


def group_into_media_sets(
    rows: Iterable[CatalogRow],
    files: Optional[Mapping[int, Sequence[BackupFile]]] = None,
    server_major_version: Optional[int] = None,
) -> List[BackupSet]:
    """
    Collapse one-row-per-media-family catalog rows into backup sets.

    Rows are grouped by ``backup_set_id``. Each group becomes one BackupSet with
    ``start_time = min(start)``, ``end_time = max(end)``, every media family
    attached, and the file list taken from ``files``. Groups keep the order in
    which their first row was seen.

    Args:
        rows: Raw catalog rows
        files: Backup files keyed by backup_set_id
        server_major_version: Major version of the engine that wrote the
            catalog; used to decide whether compressed sizes are meaningful

    Returns:
        List of BackupSet, one per distinct backup_set_id
    """
    files = files or {}
    groups: Dict[int, List[CatalogRow]] = {}
    for row in rows:
        groups.setdefault(row.backup_set_id, []).append(row)

    backup_sets = []
    for backup_set_id, group in groups.items():
        first = group[0]
        families = [row.to_media_family() for row in group]
        # The primary (non-mirror) copy decides the reported device type
        primary = min(families, key=lambda f: (f.mirror, f.family_sequence_number or 0))

        # backup_size repeats on every row of the group; it is per set, not per stripe
        total_size = max((row.backup_size for row in group if row.backup_size is not None), default=None)
        compressed_size = max(
            (row.compressed_backup_size for row in group if row.compressed_backup_size is not None),
            default=None,
        )

        backup_sets.append(
            BackupSet(
                backup_set_id=backup_set_id,
                media_set_id=first.media_set_id,
                database_name=first.database_name,
                type=first.type,
                start_time=min(row.backup_start_date for row in group),
                end_time=max(row.backup_finish_date for row in group),
                first_lsn=first.first_lsn,
                last_lsn=first.last_lsn,
                checkpoint_lsn=first.checkpoint_lsn,
                database_backup_lsn=first.database_backup_lsn,
                is_copy_only=first.is_copy_only,
                recovery_fork_id=first.last_recovery_fork_guid,
                device_type=primary.device_type,
                is_permanent_device=primary.is_permanent_device,
                media_families=families,
                files=list(files.get(backup_set_id, [])),
                total_size=total_size,
                compressed_size=compressed_size,
                compression_ratio=compression_ratio(total_size, compressed_size, server_major_version),
                server_name=first.server_name,
                machine_name=first.machine_name,
                user_name=first.user_name,
                position=first.position,
                software_major_version=first.software_major_version,
                recovery_model=first.recovery_model,
                database_guid=first.database_guid,
            )
        )

    logger.debug("media_sets_grouped", rows=sum(len(g) for g in groups.values()), sets=len(backup_sets))
    return backup_sets
