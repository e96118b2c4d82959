"""Core backup history logic."""

from .chain import (
    build_restore_chain,
    is_valid_differential,
    last_of_type,
    resolve_fork,
    select_differential,
    select_log_chain,
    sort_history,
    summarize_forks,
)
from .codes import BackupType, DeviceType, decode_device_type, encode_device_type
from .grouping import compression_ratio, group_into_media_sets
from .lsn import format_lsn, format_lsn_hex, parse_lsn
from .models import (
    BackupFile,
    BackupSet,
    CatalogRow,
    MediaFamily,
    RecoveryFork,
    RestoreChain,
)
from .paths import plan_backup_paths

__all__ = [
    "BackupFile",
    "BackupSet",
    "BackupType",
    "CatalogRow",
    "DeviceType",
    "MediaFamily",
    "RecoveryFork",
    "RestoreChain",
    "build_restore_chain",
    "compression_ratio",
    "decode_device_type",
    "encode_device_type",
    "format_lsn",
    "format_lsn_hex",
    "group_into_media_sets",
    "is_valid_differential",
    "last_of_type",
    "parse_lsn",
    "plan_backup_paths",
    "resolve_fork",
    "select_differential",
    "select_log_chain",
    "sort_history",
    "summarize_forks",
]
