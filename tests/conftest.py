"""Shared pytest fixtures for all tests."""

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional
from uuid import UUID

import pytest
import pytest_asyncio
import structlog

from backupchain.common.config import (
    ConcurrencyConfig,
    Config,
    InstanceConfig,
    LoggingConfig,
)
from backupchain.core.catalog import (
    BackupHistoryRepository,
    CatalogMirror,
    SqliteCatalogConnection,
)
from backupchain.core.codes import BackupType, DeviceType
from backupchain.core.models import BackupFile, BackupSet, MediaFamily

FORK_A = UUID("6f9619ff-8b86-d011-b42d-00c04fc964ff")
FORK_B = UUID("0b2c3d4e-5f60-4718-8293-a4b5c6d7e8f9")
BASE_TIME = datetime(2024, 3, 1, 22, 0, 0)


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo logging set up by configure() inside a test."""
    yield
    structlog.reset_defaults()
    logging.getLogger().handlers.clear()


@pytest.fixture
def backup_factory() -> Callable[..., BackupSet]:
    """Build BackupSet objects for chain tests without a catalog."""

    def make(
        backup_set_id: int,
        backup_type: BackupType,
        first_lsn: int,
        last_lsn: int,
        checkpoint_lsn: Optional[int] = None,
        database_backup_lsn: Optional[int] = None,
        hours: float = 0,
        recovery_fork_id: Optional[UUID] = FORK_A,
        is_copy_only: bool = False,
        database_name: str = "Sales",
    ) -> BackupSet:
        end_time = BASE_TIME + timedelta(hours=hours)
        return BackupSet(
            backup_set_id=backup_set_id,
            media_set_id=backup_set_id,
            database_name=database_name,
            type=backup_type,
            start_time=end_time - timedelta(minutes=5),
            end_time=end_time,
            first_lsn=first_lsn,
            last_lsn=last_lsn,
            checkpoint_lsn=checkpoint_lsn,
            database_backup_lsn=database_backup_lsn,
            is_copy_only=is_copy_only,
            recovery_fork_id=recovery_fork_id,
            media_families=[
                MediaFamily(
                    physical_device_name=f"D:\\Backups\\{database_name}_{backup_set_id}.bak",
                    family_sequence_number=1,
                )
            ],
        )

    return make


@pytest.fixture
def sample_config(tmp_path: Path) -> Config:
    """Provide a configuration with one sqlite catalog mirror."""
    return Config(
        config_dir=tmp_path,
        logging=LoggingConfig(level="DEBUG", format="text"),
        instances={
            "sql01": InstanceConfig(driver="sqlite", database_path=Path("sql01.db")),
        },
        concurrency=ConcurrencyConfig(max_concurrent_instances=2),
    )


async def seed_sales_history(mirror: CatalogMirror) -> None:
    """
    Write a realistic history for the Sales database.

    Timeline (fork A):
        full        1000-2000  checkpoint 1500        striped over two files
        log         1000-2500
        diff        3000-3500  based on 1500
        log         2500-4000
        log         4000-5000
        copy-only   5100-6000  full, checkpoint 5800
    Inventory only has a log backup.
    """
    await mirror.add_backup_set(
        "Sales",
        BackupType.FULL,
        first_lsn="1000",
        last_lsn="2000",
        checkpoint_lsn="1500",
        database_backup_lsn="0",
        start_time=BASE_TIME,
        end_time=BASE_TIME + timedelta(minutes=10),
        recovery_fork_id=FORK_A,
        paths=["D:\\Backups\\Sales-1-of-2.bak", "E:\\Backups\\Sales-2-of-2.bak"],
        mirror_paths=["\\\\nas\\sql\\Sales-1-of-2.bak", "\\\\nas\\sql\\Sales-2-of-2.bak"],
        backup_size=4000,
        compressed_backup_size=1000,
        files=[
            BackupFile(logical_name="Sales", physical_name="D:\\Data\\Sales.mdf", file_type="D", file_size=8192),
            BackupFile(logical_name="Sales_log", physical_name="L:\\Logs\\Sales_log.ldf", file_type="L", file_size=1024),
        ],
        server_name="SQL01",
        recovery_model="FULL",
    )
    await mirror.add_backup_set(
        "Sales",
        BackupType.LOG,
        first_lsn="1000",
        last_lsn="2500",
        database_backup_lsn="1500",
        start_time=BASE_TIME + timedelta(hours=1),
        end_time=BASE_TIME + timedelta(hours=1, minutes=1),
        recovery_fork_id=FORK_A,
    )
    await mirror.add_backup_set(
        "Sales",
        BackupType.DIFFERENTIAL,
        first_lsn="3000",
        last_lsn="3500",
        checkpoint_lsn="3200",
        database_backup_lsn="1500",
        start_time=BASE_TIME + timedelta(hours=4),
        end_time=BASE_TIME + timedelta(hours=4, minutes=3),
        recovery_fork_id=FORK_A,
    )
    await mirror.add_backup_set(
        "Sales",
        BackupType.LOG,
        first_lsn="2500",
        last_lsn="4000",
        database_backup_lsn="1500",
        start_time=BASE_TIME + timedelta(hours=5),
        end_time=BASE_TIME + timedelta(hours=5, minutes=1),
        recovery_fork_id=FORK_A,
    )
    await mirror.add_backup_set(
        "Sales",
        BackupType.LOG,
        first_lsn="4000",
        last_lsn="5000",
        database_backup_lsn="1500",
        start_time=BASE_TIME + timedelta(hours=6),
        end_time=BASE_TIME + timedelta(hours=6, minutes=1),
        recovery_fork_id=FORK_A,
        device_type=DeviceType.URL,
        paths=["https://acct.blob.core.windows.net/sql/Sales_log.trn"],
    )
    await mirror.add_backup_set(
        "Sales",
        BackupType.FULL,
        first_lsn="5100",
        last_lsn="6000",
        checkpoint_lsn="5800",
        database_backup_lsn="1500",
        start_time=BASE_TIME + timedelta(hours=7),
        end_time=BASE_TIME + timedelta(hours=7, minutes=10),
        recovery_fork_id=FORK_A,
        is_copy_only=True,
    )
    await mirror.add_backup_set(
        "Inventory",
        BackupType.LOG,
        first_lsn="700",
        last_lsn="900",
        database_backup_lsn="500",
        start_time=BASE_TIME + timedelta(hours=2),
        end_time=BASE_TIME + timedelta(hours=2, minutes=1),
        recovery_fork_id=FORK_A,
    )


@pytest_asyncio.fixture
async def catalog_path(tmp_path: Path) -> Path:
    """Provide a seeded SQLite catalog mirror on disk."""
    db_path = tmp_path / "sql01.db"
    async with CatalogMirror(db_path) as mirror:
        await seed_sales_history(mirror)
    return db_path


@pytest_asyncio.fixture
async def catalog_repository(catalog_path: Path) -> BackupHistoryRepository:
    """Provide a connected repository over the seeded mirror."""
    repo = BackupHistoryRepository(SqliteCatalogConnection(catalog_path, name="sql01"))
    await repo.connect()
    yield repo
    await repo.close()
