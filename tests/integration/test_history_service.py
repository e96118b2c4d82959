"""Integration tests for the multi-instance backup history service."""

import asyncio
import shutil
from pathlib import Path
from typing import Any, Dict, List, Tuple

import aiosqlite
import pytest

from backupchain.common.config import ConcurrencyConfig, Config, InstanceConfig
from backupchain.core.catalog import (
    BackupHistoryRepository,
    CatalogQueryError,
    ChainOptions,
    HistoryFilter,
    SqliteCatalogConnection,
)
from backupchain.core.codes import BackupType
from backupchain.services import (
    BackupHistoryService,
    InstanceResult,
    NotFoundError,
    ValidationError,
    summarize_results,
)


class RecordingCallback:
    """Collects service callback invocations."""

    def __init__(self):
        self.progress: List[Tuple[int, int, str]] = []
        self.failures: List[Tuple[Exception, Dict[str, Any]]] = []
        self.completed: Any = None

    async def on_progress(self, current: int, total: int, message: str) -> None:
        self.progress.append((current, total, message))

    async def on_failure(self, error: Exception, context: Dict[str, Any]) -> None:
        self.failures.append((error, context))

    async def on_complete(self, result: Any) -> None:
        self.completed = result


class TestCollectChains:
    """Tests for restore chain fan-out."""

    @pytest.mark.asyncio
    async def test_single_instance(self, sample_config: Config, catalog_path: Path):
        """Test chains for every database on one instance."""
        service = BackupHistoryService(sample_config)

        [result] = await service.collect_chains()

        assert result.instance == "sql01"
        assert result.succeeded
        assert [c.database_name for c in result.chains] == ["Inventory", "Sales"]
        assert [b.backup_set_id for b in result.chains[1]] == [1, 3, 4, 5]
        assert result.warnings == ["No full backup found for database Inventory"]

    @pytest.mark.asyncio
    async def test_options_applied(self, sample_config: Config, catalog_path: Path):
        """Test that chain options reach every instance."""
        service = BackupHistoryService(sample_config)

        [result] = await service.collect_chains(
            databases=["Sales"],
            options=ChainOptions(ignore_diff=True),
        )
        assert [b.backup_set_id for b in result.chains[0]] == [1, 2, 4, 5]

    @pytest.mark.asyncio
    async def test_failed_instance_does_not_stop_others(
        self, sample_config: Config, catalog_path: Path
    ):
        """Test continue-on-error across instances."""
        sample_config.instances["sql02"] = InstanceConfig(
            driver="sqlite", database_path=Path("missing.db")
        )
        callback = RecordingCallback()
        service = BackupHistoryService(sample_config, callback=callback)

        results = await service.collect_chains(databases=["Sales"])

        by_name = {r.instance: r for r in results}
        assert by_name["sql01"].succeeded
        assert len(by_name["sql01"].chains) == 1
        assert not by_name["sql02"].succeeded
        assert by_name["sql02"].error_type == "CatalogConnectionError"
        assert "missing.db" in by_name["sql02"].error

        assert len(callback.failures) == 1
        assert callback.failures[0][1] == {"instance": "sql02", "operation": "chain"}
        assert sorted(p[0] for p in callback.progress) == [1, 2]
        assert all(p[1] == 2 for p in callback.progress)
        assert callback.completed == results

        summary = summarize_results(results)
        assert summary == {"instances": 2, "failed": ["sql02"], "warnings": 0}

    @pytest.mark.asyncio
    async def test_query_failure_is_per_instance(self, sample_config: Config, catalog_path: Path):
        """Test that a query error on one instance is isolated."""
        sample_config.instances["sql02"] = sample_config.instances["sql01"]

        class BrokenRepository(BackupHistoryRepository):
            async def list_databases(self) -> List[str]:
                raise CatalogQueryError("Catalog query failed: connection reset")

        async def factory(name: str, instance: InstanceConfig) -> BackupHistoryRepository:
            repository_class = BrokenRepository if name == "sql02" else BackupHistoryRepository
            repo = repository_class(SqliteCatalogConnection(instance.database_path, name=name))
            await repo.connect()
            return repo

        service = BackupHistoryService(sample_config, repository_factory=factory)
        results = await service.collect_chains()

        assert [r.instance for r in results] == ["sql01", "sql02"]
        assert results[0].succeeded
        assert results[1].error_type == "CatalogQueryError"
        assert results[1].chains == []

    @pytest.mark.asyncio
    async def test_unreadable_row_is_per_instance(
        self, sample_config: Config, catalog_path: Path, tmp_path: Path
    ):
        """Test that an undecodable catalog row only fails its own instance."""
        bad_path = tmp_path / "sql02.db"
        shutil.copy(catalog_path, bad_path)
        async with aiosqlite.connect(str(bad_path)) as db:
            await db.execute("UPDATE backupmediafamily SET device_type = 3")
            await db.commit()
        sample_config.instances["sql02"] = InstanceConfig(driver="sqlite", database_path=bad_path)

        results = await BackupHistoryService(sample_config).collect_chains(databases=["Sales"])

        by_name = {r.instance: r for r in results}
        assert by_name["sql01"].succeeded
        assert [b.backup_set_id for b in by_name["sql01"].chains[0]] == [1, 3, 4, 5]
        assert by_name["sql02"].error_type == "CatalogQueryError"
        assert "device type" in by_name["sql02"].error

    @pytest.mark.asyncio
    async def test_concurrency_bounded(self, catalog_path: Path, tmp_path: Path):
        """Test that at most max_concurrent_instances run at once."""
        config = Config(
            config_dir=tmp_path,
            instances={
                f"sql{i:02d}": InstanceConfig(driver="sqlite", database_path=catalog_path)
                for i in range(1, 6)
            },
            concurrency=ConcurrencyConfig(max_concurrent_instances=2),
        )
        active = 0
        peak = 0

        class TrackingRepository(BackupHistoryRepository):
            async def close(self) -> None:
                nonlocal active
                active -= 1
                await super().close()

        async def factory(name: str, instance: InstanceConfig) -> BackupHistoryRepository:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            repo = TrackingRepository(SqliteCatalogConnection(instance.database_path, name=name))
            await repo.connect()
            await asyncio.sleep(0.02)
            return repo

        service = BackupHistoryService(config, repository_factory=factory)
        results = await service.collect_chains(databases=["Sales"])

        assert len(results) == 5
        assert all(r.succeeded for r in results)
        assert peak == 2
        assert active == 0


class TestOtherOperations:
    """Tests for history, last-backup and fork fan-out."""

    @pytest.mark.asyncio
    async def test_collect_history(self, sample_config: Config, catalog_path: Path):
        """Test grouped and raw history."""
        service = BackupHistoryService(sample_config)

        [result] = await service.collect_history(filters=HistoryFilter(databases=["Sales"]))
        assert [b.backup_set_id for b in result.history] == [5, 4, 3, 2, 1]
        assert result.raw == []

        [result] = await service.collect_history(["sql01"], HistoryFilter(databases=["Sales"]), raw=True)
        assert len(result.raw) == 6
        assert result.history == []

    @pytest.mark.asyncio
    async def test_collect_last(self, sample_config: Config, catalog_path: Path):
        """Test last full per database with a warning for missing ones."""
        service = BackupHistoryService(sample_config)

        [result] = await service.collect_last(BackupType.FULL)

        assert [b.backup_set_id for b in result.last] == [1]
        assert result.warnings == ["No full backup found for database Inventory"]

        [result] = await service.collect_last(BackupType.LOG, exclude_databases=["Sales"])
        assert [b.backup_set_id for b in result.last] == [7]

    @pytest.mark.asyncio
    async def test_collect_forks(self, sample_config: Config, catalog_path: Path):
        """Test fork summaries per database."""
        service = BackupHistoryService(sample_config)

        [result] = await service.collect_forks(databases=["Sales"])

        assert list(result.forks) == ["Sales"]
        assert len(result.forks["Sales"]) == 1
        assert result.forks["Sales"][0].backup_count == 5
        assert result.warnings == []

    @pytest.mark.asyncio
    async def test_collect_forks_excludes_databases(self, sample_config: Config, catalog_path: Path):
        """Test that excluded databases are left out of fork summaries."""
        service = BackupHistoryService(sample_config)

        [result] = await service.collect_forks(filters=HistoryFilter(exclude_databases=["Inventory"]))

        assert list(result.forks) == ["Sales"]

    @pytest.mark.asyncio
    async def test_unknown_instance(self, sample_config: Config):
        """Test requesting an instance that is not configured."""
        service = BackupHistoryService(sample_config)
        with pytest.raises(NotFoundError) as exc_info:
            await service.collect_chains(["sql09"])
        assert exc_info.value.resource_id == "sql09"

    @pytest.mark.asyncio
    async def test_no_instances(self):
        """Test running without any configured instance."""
        service = BackupHistoryService(Config())
        with pytest.raises(ValidationError):
            await service.collect_history()

    def test_result_serialization(self):
        """Test the JSON shape of an instance result."""
        result = InstanceResult(instance="sql01", error="boom", error_type="CatalogQueryError")
        data = result.model_dump(mode="json")
        assert data["instance"] == "sql01"
        assert data["error"] == "boom"
        assert not result.succeeded
