"""Backup file path planning.

Builds the target file list for a (possibly striped) backup the same way on
every platform: the separator follows the SQL Server host, not the machine
running this code.
"""

from datetime import datetime
from typing import List, Optional, Sequence, Tuple

import structlog

from .codes import BackupType, DeviceType

logger = structlog.get_logger(__name__)

NAME_TOKENS = ("dbname", "instancename", "servername", "timestamp", "backuptype")


def path_separator(host_os: str = "windows", device_type: DeviceType = DeviceType.DISK) -> str:
    """Separator used by the SQL Server host for backup paths."""
    if device_type is DeviceType.URL or host_os.lower() == "linux":
        return "/"
    return "\\"


def join_path(directory: str, *parts: str, separator: str = "\\") -> str:
    """
    Join path segments with the host separator.

    Trailing separators on ``directory`` are collapsed so that ``C:\\Backups\\``
    and ``C:\\Backups`` give the same result. Drive roots keep their separator.
    """
    base = directory.rstrip("\\/")
    if directory and not base:
        return separator + separator.join(parts)
    if not base:
        return separator.join(parts)
    return separator.join([base, *parts])


def default_extension(backup_type: BackupType) -> str:
    """``trn`` for log backups, ``bak`` for everything else."""
    return "trn" if backup_type is BackupType.LOG else "bak"


def _split_extension(file_name: str) -> Tuple[str, str]:
    stem, dot, extension = file_name.rpartition(".")
    if not dot or not stem:
        return file_name, ""
    return stem, extension


def replace_name_tokens(
    file_name: str,
    database: str,
    timestamp: str,
    backup_type: BackupType,
    instance_name: Optional[str] = None,
    server_name: Optional[str] = None,
) -> str:
    """
    Substitute name tokens in a caller-supplied file name.

    Recognised tokens: ``dbname``, ``instancename``, ``servername``,
    ``timestamp`` and ``backuptype``. Instance and server names default to
    ``MSSQLSERVER`` and an empty string respectively.
    """
    values = {
        "dbname": database,
        "instancename": instance_name or "MSSQLSERVER",
        "servername": server_name or "",
        "timestamp": timestamp,
        "backuptype": backup_type.display_name.replace(" ", ""),
    }
    result = file_name
    for token in NAME_TOKENS:
        result = result.replace(token, values[token])
    return result


def plan_backup_paths(
    database: str,
    directories: Sequence[str],
    backup_type: BackupType = BackupType.FULL,
    file_count: int = 1,
    file_name: Optional[str] = None,
    timestamp: Optional[datetime] = None,
    timestamp_format: str = "%Y%m%d%H%M",
    extension: Optional[str] = None,
    increment_prefix: bool = False,
    create_folder: bool = False,
    replace_in_name: bool = False,
    host_os: str = "windows",
    device_type: DeviceType = DeviceType.DISK,
    instance_name: Optional[str] = None,
    server_name: Optional[str] = None,
) -> List[str]:
    """
    Plan the backup file paths for one database.

    Args:
        database: Database being backed up
        directories: Target directories (or URL containers). More than one
            directory stripes the backup across all of them and overrides
            ``file_count``.
        backup_type: Backup type, used for the default extension
        file_count: Number of stripes when a single directory is given
        file_name: File name to use instead of ``{database}_{timestamp}.{ext}``
        timestamp: Time stamped into generated names (defaults to now)
        timestamp_format: strftime format for the timestamp
        extension: Extension override, without the dot
        increment_prefix: Prefix each stripe's name with ``{i}-``
        create_folder: Insert a folder named after the database
        replace_in_name: Substitute name tokens in ``file_name``
        host_os: ``windows`` or ``linux`` (decides the separator)
        device_type: ``URL`` forces forward slashes
        instance_name: Value for the ``instancename`` token
        server_name: Value for the ``servername`` token

    Returns:
        One path per stripe, in stripe order

    Raises:
        ValueError: If no directory is given or file_count is below 1

    Example:
        >>> plan_backup_paths("db", ["C:\\\\Backups"], file_count=2,
        ...                   file_name="db_x.bak", increment_prefix=True)
        ['C:\\\\Backups\\\\1-db_x-1-of-2.bak', 'C:\\\\Backups\\\\2-db_x-2-of-2.bak']
    """
    if not directories:
        raise ValueError("At least one backup directory is required")
    if file_count < 1:
        raise ValueError("file_count must be at least 1")

    separator = path_separator(host_os, device_type)
    stamp = (timestamp or datetime.now()).strftime(timestamp_format)
    suffix = extension or default_extension(backup_type)

    if file_name is None:
        base_name = f"{database}_{stamp}.{suffix}"
    elif replace_in_name:
        base_name = replace_name_tokens(
            file_name, database, stamp, backup_type, instance_name, server_name
        )
    else:
        base_name = file_name

    if len(directories) > 1:
        file_count = len(directories)

    stem, name_extension = _split_extension(base_name)
    if not name_extension:
        name_extension = suffix

    paths = []
    for index in range(1, file_count + 1):
        directory = directories[(index - 1) % len(directories)]
        if file_count > 1:
            stripe_name = f"{stem}-{index}-of-{file_count}.{name_extension}"
            if increment_prefix:
                stripe_name = f"{index}-{stripe_name}"
        else:
            stripe_name = f"{stem}.{name_extension}"

        if create_folder:
            paths.append(join_path(directory, database, stripe_name, separator=separator))
        else:
            paths.append(join_path(directory, stripe_name, separator=separator))

    logger.debug(
        "backup_paths_planned",
        database=database,
        stripes=file_count,
        host_os=host_os,
    )
    return paths
