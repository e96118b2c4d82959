"""Restore chain selection over backup history.

Everything here works on already-fetched :class:`BackupSet` lists, so the
rules can be applied to any catalog source. The repository layer fetches the
history and delegates to these functions.
"""

from typing import Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

import structlog

from .codes import BackupType
from .models import BackupSet, RecoveryFork, RestoreChain

logger = structlog.get_logger(__name__)

LSN_SORT_COLUMNS = ("first_lsn", "database_backup_lsn", "last_lsn")


def restore_order_key(backup: BackupSet) -> Tuple[int, int]:
    """Restore order: ascending last LSN, then full before differential before log."""
    return backup.last_lsn, backup.type.sort_order


def sort_history(backups: Iterable[BackupSet], descending: bool = True) -> List[BackupSet]:
    """Order backups by numeric last LSN, newest first by default."""
    return sorted(
        backups,
        key=lambda b: (b.last_lsn, b.end_time, b.backup_set_id),
        reverse=descending,
    )


def summarize_forks(backups: Iterable[BackupSet]) -> List[RecoveryFork]:
    """
    Summarise the recovery forks present in a set of backups.

    Returns:
        One RecoveryFork per distinct fork id, oldest last backup first
    """
    forks = {}
    for backup in backups:
        fork = forks.get(backup.recovery_fork_id)
        if fork is None:
            forks[backup.recovery_fork_id] = RecoveryFork(
                recovery_fork_id=backup.recovery_fork_id,
                first_lsn=backup.first_lsn,
                last_lsn=backup.last_lsn,
                first_backup_finish=backup.end_time,
                last_backup_finish=backup.end_time,
                backup_count=1,
            )
            continue
        fork.first_lsn = min(fork.first_lsn, backup.first_lsn)
        fork.last_lsn = max(fork.last_lsn, backup.last_lsn)
        fork.first_backup_finish = min(fork.first_backup_finish, backup.end_time)
        fork.last_backup_finish = max(fork.last_backup_finish, backup.end_time)
        fork.backup_count += 1

    return sorted(forks.values(), key=lambda f: f.last_backup_finish)


def resolve_fork(
    backups: Sequence[BackupSet],
    recovery_fork_id: Optional[UUID] = None,
    database_name: Optional[str] = None,
) -> Tuple[Optional[UUID], List[str]]:
    """
    Pick the recovery fork to build a chain in.

    An explicit ``recovery_fork_id`` always wins. Otherwise the fork whose most
    recent backup finished last is chosen. When more than one fork is present
    a warning listing every fork's range is returned.

    Returns:
        Tuple of (fork id, warnings)
    """
    warnings: List[str] = []
    forks = summarize_forks(backups)

    if len(forks) > 1:
        ranges = "; ".join(fork.describe() for fork in forks)
        message = f"Multiple recovery forks found for {database_name or 'database'}: {ranges}"
        warnings.append(message)
        logger.warning(
            "multiple_recovery_forks",
            database=database_name,
            forks=[str(fork.recovery_fork_id) for fork in forks],
            selected=str(recovery_fork_id or forks[-1].recovery_fork_id),
        )

    if recovery_fork_id is not None:
        return recovery_fork_id, warnings
    if not forks:
        return None, warnings
    return forks[-1].recovery_fork_id, warnings


def in_fork(backups: Iterable[BackupSet], recovery_fork_id: Optional[UUID]) -> List[BackupSet]:
    """Restrict backups to one recovery fork."""
    return [b for b in backups if b.recovery_fork_id == recovery_fork_id]


def last_of_type(
    backups: Iterable[BackupSet],
    backup_type: BackupType,
    lsn_sort: str = "last_lsn",
    include_copy_only: bool = False,
) -> Optional[BackupSet]:
    """
    Most recent backup of one type.

    Ranked by the ``lsn_sort`` column descending with ``backup_finish_date``
    (end_time) descending as tie-break.

    Raises:
        ValueError: If lsn_sort is not an LSN column
    """
    if lsn_sort not in LSN_SORT_COLUMNS:
        raise ValueError(f"Invalid LSN sort column: {lsn_sort}. Must be one of {LSN_SORT_COLUMNS}")

    candidates = [
        b
        for b in backups
        if b.type is backup_type and (include_copy_only or not b.is_copy_only)
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda b: (b.lsn_value(lsn_sort), b.end_time))


def is_valid_differential(differential: BackupSet, full: BackupSet) -> bool:
    """
    Whether a differential can be restored on top of a full backup.

    The differential must be based on this full (its database_backup_lsn is
    the full's checkpoint_lsn) and must end after that checkpoint.
    """
    if differential.type is not BackupType.DIFFERENTIAL:
        return False
    if full.checkpoint_lsn is None or differential.database_backup_lsn is None:
        return False
    return (
        differential.database_backup_lsn == full.checkpoint_lsn
        and differential.last_lsn > full.checkpoint_lsn
    )


def select_differential(
    backups: Iterable[BackupSet],
    full: BackupSet,
    include_copy_only: bool = False,
) -> Optional[BackupSet]:
    """Latest differential that is valid against ``full``."""
    candidates = [b for b in backups if is_valid_differential(b, full)]
    return last_of_type(candidates, BackupType.DIFFERENTIAL, include_copy_only=include_copy_only)


def select_log_chain(
    backups: Iterable[BackupSet],
    full: BackupSet,
    start_lsn: int,
    anchor_last_lsn: int,
    include_copy_only: bool = False,
) -> Tuple[List[BackupSet], List[str]]:
    """
    Continuous log backups that roll forward from the full/differential anchor.

    Logs must belong to ``full`` (database_backup_lsn equals its checkpoint_lsn)
    and end after ``start_lsn``. They are returned in ascending last LSN order
    with strictly increasing last LSNs. If a log starts beyond the LSN the
    previous member (or the anchor) reached, the chain stops before it.

    Args:
        backups: Candidate backups, already restricted to one fork
        full: The full backup anchoring the chain
        start_lsn: Logs must end after this LSN
        anchor_last_lsn: Last LSN covered by the full or differential anchor

    Returns:
        Tuple of (log backups, warnings)
    """
    warnings: List[str] = []
    candidates = sorted(
        (
            b
            for b in backups
            if b.type is BackupType.LOG
            and b.database_backup_lsn is not None
            and b.database_backup_lsn == full.checkpoint_lsn
            and b.last_lsn > start_lsn
            and (include_copy_only or not b.is_copy_only)
        ),
        key=lambda b: (b.last_lsn, b.end_time),
    )

    chain: List[BackupSet] = []
    reached = anchor_last_lsn
    for log in candidates:
        if chain and log.last_lsn <= chain[-1].last_lsn:
            # Same log range recorded twice, e.g. a second media set
            continue
        if log.first_lsn > reached:
            message = (
                f"Log chain for {full.database_name} breaks at backup set {log.backup_set_id}: "
                f"first LSN {log.first_lsn} is beyond LSN {reached}"
            )
            warnings.append(message)
            logger.warning(
                "log_chain_gap",
                database=full.database_name,
                backup_set_id=log.backup_set_id,
                first_lsn=str(log.first_lsn),
                expected_lsn=str(reached),
            )
            break
        chain.append(log)
        reached = max(reached, log.last_lsn)

    return chain, warnings


def build_restore_chain(
    database_name: str,
    backups: Sequence[BackupSet],
    recovery_fork_id: Optional[UUID] = None,
    ignore_diff: bool = False,
    include_copy_only: bool = False,
    lsn_sort: str = "last_lsn",
) -> RestoreChain:
    """
    Build the minimal restore chain for one database.

    Steps: resolve the fork, take the last full in it, add the last valid
    differential unless ``ignore_diff``, then add the continuous log chain.

    Args:
        database_name: Database the backups belong to
        backups: The database's backup history
        recovery_fork_id: Fork override; defaults to the most recent fork
        ignore_diff: Skip differentials and roll forward from the full
        include_copy_only: Allow copy-only log backups to join the chain
        lsn_sort: LSN column used to rank the last full and differential

    Returns:
        RestoreChain, empty with a warning when no full backup exists
    """
    fork_id, warnings = resolve_fork(backups, recovery_fork_id, database_name)
    candidates = in_fork(backups, fork_id)

    # Copy-only fulls never anchor; include_copy_only only admits logs
    full = last_of_type(candidates, BackupType.FULL, lsn_sort)
    if full is None:
        message = f"No full backup found for database {database_name}"
        warnings.append(message)
        logger.warning("no_full_backup_found", database=database_name, recovery_fork_id=str(fork_id))
        return RestoreChain(database_name=database_name, recovery_fork_id=fork_id, warnings=warnings)

    chain = [full]
    start_lsn = full.first_lsn
    anchor_last_lsn = full.last_lsn

    if not ignore_diff:
        differential = select_differential(candidates, full)
        if differential is not None:
            chain.append(differential)
            start_lsn = differential.first_lsn
            anchor_last_lsn = differential.last_lsn
        else:
            logger.info("no_valid_differential", database=database_name, full_backup_set_id=full.backup_set_id)

    logs, log_warnings = select_log_chain(
        candidates, full, start_lsn, anchor_last_lsn, include_copy_only
    )
    chain.extend(logs)
    warnings.extend(log_warnings)

    chain.sort(key=restore_order_key)

    logger.debug(
        "restore_chain_built",
        database=database_name,
        recovery_fork_id=str(fork_id),
        backups=len(chain),
        logs=len(logs),
    )

    return RestoreChain(
        database_name=database_name,
        recovery_fork_id=fork_id,
        backups=chain,
        warnings=warnings,
    )
