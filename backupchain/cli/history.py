"""CLI commands for backup history and restore chains."""

import argparse
import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional
from uuid import UUID

import structlog

logger = structlog.get_logger(__name__)


def _parse_since(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid timestamp: {value!r} (use ISO 8601)") from None


def _parse_fork(value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid recovery fork GUID: {value!r}") from None


def _parse_min_lsn(value: str) -> int:
    from backupchain.core.lsn import parse_lsn

    try:
        return parse_lsn(value)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"Invalid LSN: {value!r} (use decimal or VLF:block:slot hex)"
        ) from None


def _load_config(args: argparse.Namespace) -> Any:
    import backupchain
    from backupchain.common.config import InstanceConfig

    config = backupchain.configure(config_path=args.config)

    # Ad-hoc mirrors given on the command line join the configured instances
    for mirror in args.mirror or []:
        path = Path(mirror).resolve()
        config.instances[path.stem] = InstanceConfig(driver="sqlite", database_path=path)
        args.instance = (args.instance or []) + [path.stem]

    return config


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def run_command(args: argparse.Namespace) -> int:
    """
    Execute a parsed CLI command.

    Returns:
        Process exit code: 0 on success, 1 if any instance failed
    """
    from backupchain.core.catalog.repository import ChainOptions, HistoryFilter
    from backupchain.core.codes import BackupType, DeviceType
    from backupchain.core.paths import plan_backup_paths
    from backupchain.services import BackupHistoryService, summarize_results

    if args.command == "paths":
        config = _load_config(args)
        device_type = DeviceType.URL if args.url else DeviceType.DISK
        paths = plan_backup_paths(
            database=args.database[0],
            directories=args.directory,
            backup_type=BackupType.parse(args.type),
            file_count=args.file_count,
            file_name=args.file_name,
            timestamp_format=args.timestamp_format or config.backup_paths.timestamp_format,
            extension=args.extension,
            increment_prefix=args.increment_prefix or config.backup_paths.increment_prefix,
            create_folder=args.create_folder or config.backup_paths.create_folder,
            replace_in_name=args.replace_in_name,
            host_os=args.host_os,
            device_type=device_type,
        )
        _emit(paths)
        return 0

    config = _load_config(args)
    service = BackupHistoryService(config)

    common = {
        "since": args.since,
        "device_types": args.device_type or [],
        "include_copy_only": args.include_copy_only or config.history.include_copy_only,
        "include_mirror": args.include_mirror or config.history.include_mirror,
    }

    if args.command == "history":
        filters = HistoryFilter(
            databases=args.database or [],
            exclude_databases=args.exclude_database or [],
            backup_types=args.type or [],
            min_lsn=args.min_lsn,
            recovery_fork_id=args.recovery_fork,
            **common,
        )
        results = await service.collect_history(args.instance, filters, raw=args.raw)
    elif args.command == "forks":
        filters = HistoryFilter(exclude_databases=args.exclude_database or [], **common)
        results = await service.collect_forks(args.instance, args.database, filters)
    else:
        options = ChainOptions.from_config(
            config.history,
            recovery_fork_id=args.recovery_fork,
            ignore_diff=args.ignore_diff or None,
            lsn_sort=args.lsn_sort,
            **common,
        )
        if args.command == "last":
            results = await service.collect_last(
                BackupType.parse(args.type),
                args.instance,
                args.database,
                args.exclude_database,
                options,
            )
        else:
            results = await service.collect_chains(
                args.instance, args.database, args.exclude_database, options
            )

    _emit([result.model_dump(mode="json", exclude_defaults=True) for result in results])

    summary = summarize_results(results)
    logger.info("cli_command_complete", command=args.command, **summary)
    return 1 if summary["failed"] else 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the backupchain CLI."""
    parser = argparse.ArgumentParser(
        prog="backupchain",
        description="Backup history and restore chain reconstruction for SQL Server catalogs",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", "-c", type=Path, help="Path to config.yaml")
    common.add_argument(
        "--instance",
        "-i",
        action="append",
        help="Configured instance to query (repeatable, default: all)",
    )
    common.add_argument(
        "--mirror",
        action="append",
        help="SQLite catalog mirror to query (repeatable)",
    )
    common.add_argument("--database", "-d", action="append", help="Database name (repeatable)")
    common.add_argument(
        "--exclude-database",
        action="append",
        help="Database to skip (repeatable)",
    )

    filters = argparse.ArgumentParser(add_help=False)
    filters.add_argument("--since", type=_parse_since, help="Only backups finished at or after this time")
    filters.add_argument(
        "--device-type",
        action="append",
        help="Device type: Disk, Tape, Pipe, 'Virtual Device', URL (repeatable)",
    )
    filters.add_argument("--include-copy-only", action="store_true", help="Include copy-only backups")
    filters.add_argument("--include-mirror", action="store_true", help="Include mirrored media families")
    filters.add_argument("--recovery-fork", type=_parse_fork, help="Recovery fork GUID to use")

    history_parser = subparsers.add_parser(
        "history",
        parents=[common, filters],
        help="List backup history",
        description="List backup sets, newest first",
    )
    history_parser.add_argument("--type", "-t", action="append", help="Backup type (repeatable)")
    history_parser.add_argument("--raw", action="store_true", help="Ungrouped rows, one per media family")
    history_parser.add_argument("--min-lsn", type=_parse_min_lsn, help="Only backups whose last LSN is above this")

    last_parser = subparsers.add_parser(
        "last",
        parents=[common, filters],
        help="Most recent backup of a type",
        description="Show the most recent full, differential or log backup per database",
    )
    last_parser.add_argument("--type", "-t", default="Full", help="Backup type (default: Full)")
    last_parser.add_argument(
        "--lsn-sort",
        choices=["first_lsn", "database_backup_lsn", "last_lsn"],
        help="LSN column used for ranking",
    )
    last_parser.set_defaults(ignore_diff=False)

    chain_parser = subparsers.add_parser(
        "chain",
        parents=[common, filters],
        help="Restore chain to the latest point",
        description="Reconstruct last full + differential + log chain per database",
    )
    chain_parser.add_argument("--ignore-diff", action="store_true", help="Skip differential backups")
    chain_parser.add_argument(
        "--lsn-sort",
        choices=["first_lsn", "database_backup_lsn", "last_lsn"],
        help="LSN column used to rank the anchor backups",
    )

    subparsers.add_parser(
        "forks",
        parents=[common, filters],
        help="Recovery forks per database",
        description="Show the LSN and date range of each recovery fork",
    )

    paths_parser = subparsers.add_parser(
        "paths",
        parents=[common],
        help="Plan backup file paths",
        description="Print the file paths a striped backup would write",
    )
    paths_parser.add_argument(
        "--directory",
        action="append",
        required=True,
        help="Backup directory (repeatable; several directories stripe across them)",
    )
    paths_parser.add_argument("--type", "-t", default="Full", help="Backup type (default: Full)")
    paths_parser.add_argument("--file-count", type=int, default=1, help="Number of stripes")
    paths_parser.add_argument("--file-name", help="File name instead of {database}_{timestamp}")
    paths_parser.add_argument("--extension", help="File extension without the dot")
    paths_parser.add_argument("--timestamp-format", help="strftime format for the timestamp")
    paths_parser.add_argument("--increment-prefix", action="store_true", help="Prefix stripes with their number")
    paths_parser.add_argument("--create-folder", action="store_true", help="Add a folder per database")
    paths_parser.add_argument("--replace-in-name", action="store_true", help="Replace name tokens in --file-name")
    paths_parser.add_argument("--host-os", choices=["windows", "linux"], default="windows")
    paths_parser.add_argument("--url", action="store_true", help="Directories are URL containers")

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the backupchain CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "paths" and not args.database:
        parser.error("paths requires --database")

    sys.exit(asyncio.run(run_command(args)))


if __name__ == "__main__":
    main()
