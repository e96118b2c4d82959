"""Unit tests for the history query builder and connection settings."""

from datetime import datetime
from typing import Any, Dict, List, Sequence
from uuid import UUID

import pytest

from backupchain.common.config import InstanceConfig
from backupchain.core.catalog.connection import (
    SqlServerCatalogConnection,
    SqliteCatalogConnection,
    build_connection_string,
    open_catalog,
)
from backupchain.core.catalog.query import (
    FILE_QUERY_CHUNK_SIZE,
    BackupHistoryQuery,
    fetch_backup_files,
)
from backupchain.core.catalog.exceptions import CatalogQueryError
from backupchain.core.codes import BackupType, DeviceType


@pytest.fixture
def sqlserver_connection() -> SqlServerCatalogConnection:
    """Unopened SQL Server connection; only used for SQL generation."""
    connection = SqlServerCatalogConnection("sql01", InstanceConfig(server="sql01.corp.local"))
    connection.server_major_version = 15
    return connection


class RecordingConnection:
    """Stands in for a catalog connection and records queries."""

    name = "recorder"
    server_major_version = 15

    def __init__(self):
        self.calls: List[Sequence[Any]] = []

    def table(self, name: str) -> str:
        return name

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        self.calls.append(list(params))
        return [
            {"backup_set_id": p, "logical_name": f"db{p}", "physical_name": None, "file_type": "D", "file_size": "10"}
            for p in params
        ]


class TestBackupHistoryQuery:
    """Tests for BackupHistoryQuery.build()."""

    def test_defaults_exclude_copy_only_and_mirrors(self, sqlserver_connection):
        """Test the default filters and msdb table names."""
        sql, params = BackupHistoryQuery(sqlserver_connection).build()

        assert "FROM msdb.dbo.backupset bs" in sql
        assert "INNER JOIN msdb.dbo.backupmediafamily mf" in sql
        assert "bs.is_copy_only = 0" in sql
        assert "mf.mirror = 0" in sql
        assert "bs.compressed_backup_size" in sql
        assert sql.endswith("ORDER BY bs.backup_set_id, mf.mirror, mf.family_sequence_number")
        assert params == []

    def test_filters_and_params(self, sqlserver_connection):
        """Test that each filter adds a clause and its parameters."""
        since = datetime(2024, 3, 1)
        fork = UUID("6f9619ff-8b86-d011-b42d-00c04fc964ff")
        sql, params = (
            BackupHistoryQuery(sqlserver_connection)
            .where_database("Sales", "Orders")
            .exclude_database("tempdb")
            .where_type(BackupType.LOG, "Full")
            .where_device_type(DeviceType.DISK)
            .since(since)
            .where_recovery_fork(fork)
            .include_copy_only()
            .include_mirror()
            .build()
        )

        assert "bs.database_name IN (?, ?)" in sql
        assert "bs.database_name NOT IN (?)" in sql
        assert "bs.type IN (?, ?)" in sql
        assert "mf.device_type IN (?, ?)" in sql
        assert "bs.backup_finish_date >= ?" in sql
        assert "bs.last_recovery_fork_guid = ?" in sql
        assert "is_copy_only = 0" not in sql
        assert "mirror = 0" not in sql
        assert params == ["Sales", "Orders", "tempdb", "D", "L", 2, 102, since, fork]

    def test_device_type_without_permanent(self, sqlserver_connection):
        """Test matching only non-permanent device codes."""
        _, params = (
            BackupHistoryQuery(sqlserver_connection)
            .where_device_type(DeviceType.URL, include_permanent=False)
            .build()
        )
        assert params == [9]

    def test_raw_device_codes(self, sqlserver_connection):
        """Test filtering on raw device codes."""
        sql, params = BackupHistoryQuery(sqlserver_connection).where_device_codes(102).build()
        assert "mf.device_type IN (?)" in sql
        assert params == [102]

    def test_old_engine_has_no_compressed_size(self, sqlserver_connection):
        """Test the compressed size column on SQL Server 2005."""
        sqlserver_connection.server_major_version = 9
        sql, _ = BackupHistoryQuery(sqlserver_connection).build()
        assert "NULL AS compressed_backup_size" in sql
        assert "bs.compressed_backup_size" not in sql

    def test_empty_filters_are_ignored(self, sqlserver_connection):
        """Test that empty value lists add no clauses."""
        sql, params = (
            BackupHistoryQuery(sqlserver_connection)
            .where_database()
            .where_type()
            .where_backup_set_ids()
            .build()
        )
        assert "IN ()" not in sql
        assert params == []


class TestFetchBackupFiles:
    """Tests for chunked backup file loading."""

    @pytest.mark.asyncio
    async def test_chunks_ids(self):
        """Test that large id sets are split into bounded queries."""
        connection = RecordingConnection()
        ids = range(1, FILE_QUERY_CHUNK_SIZE * 2 + 2)

        files = await fetch_backup_files(connection, ids)

        assert [len(call) for call in connection.calls] == [FILE_QUERY_CHUNK_SIZE, FILE_QUERY_CHUNK_SIZE, 1]
        assert len(files) == FILE_QUERY_CHUNK_SIZE * 2 + 1
        assert files[1][0].logical_name == "db1"
        assert files[1][0].file_size == 10

    @pytest.mark.asyncio
    async def test_no_ids(self):
        """Test that no ids means no queries."""
        connection = RecordingConnection()
        assert await fetch_backup_files(connection, []) == {}
        assert connection.calls == []


class TestConnectionSettings:
    """Tests for connection string building and driver selection."""

    def test_sql_login(self):
        """Test a connection string with SQL authentication."""
        config = InstanceConfig(
            server="sql01.corp.local,1433",
            username="reader",
            password="p;w",
            trust_server_certificate=True,
        )
        assert build_connection_string(config) == (
            "DRIVER={ODBC Driver 18 for SQL Server};SERVER=sql01.corp.local,1433;"
            "DATABASE=msdb;ApplicationIntent=ReadOnly;UID=reader;PWD={p;w};"
            "TrustServerCertificate=yes;"
        )

    def test_integrated_security(self):
        """Test a connection string with Windows authentication."""
        config = InstanceConfig(server="sql01\\PROD")
        connection_string = build_connection_string(config)
        assert "SERVER=sql01\\PROD" in connection_string
        assert "Trusted_Connection=yes" in connection_string
        assert "UID=" not in connection_string

    def test_explicit_connection_string(self):
        """Test that a configured connection string is used verbatim."""
        config = InstanceConfig(connection_string="DSN=prod-msdb;")
        assert build_connection_string(config) == "DSN=prod-msdb;"

    def test_open_catalog_picks_driver(self, tmp_path):
        """Test driver selection from instance settings."""
        sqlite = open_catalog("dr", InstanceConfig(driver="sqlite", database_path=tmp_path / "dr.db", host_os="linux"))
        assert isinstance(sqlite, SqliteCatalogConnection)
        assert sqlite.name == "dr"
        assert sqlite.host_os == "linux"
        assert sqlite.table("backupset") == "backupset"
        assert not sqlite.is_connected

        live = open_catalog("sql01", InstanceConfig(server="sql01"))
        assert isinstance(live, SqlServerCatalogConnection)
        assert live.table("backupset") == "msdb.dbo.backupset"


class FakeOdbcConnection:
    """Records whether a live connection was closed."""

    def __init__(self):
        self.closed = False

    def close(self) -> None:
        self.closed = True


class TestSqlServerConnect:
    """Tests for connecting to a live instance."""

    @pytest.mark.asyncio
    async def test_version_failure_closes_connection(self, monkeypatch):
        """Test that a failing version query releases the connection."""
        odbc = FakeOdbcConnection()
        connection = SqlServerCatalogConnection("sql01", InstanceConfig(server="sql01"))

        def fail_fetch(conn: Any, sql: str, params: Sequence[Any]) -> List[Dict[str, Any]]:
            raise RuntimeError("login lacks VIEW SERVER STATE")

        monkeypatch.setattr(connection, "_connect_sync", lambda: odbc)
        monkeypatch.setattr(connection, "_fetch_sync", fail_fetch)

        with pytest.raises(CatalogQueryError):
            await connection.connect()

        assert odbc.closed
        assert not connection.is_connected

    @pytest.mark.asyncio
    async def test_reads_major_version(self, monkeypatch):
        """Test that the product version sets the server major version."""
        odbc = FakeOdbcConnection()
        connection = SqlServerCatalogConnection("sql01", InstanceConfig(server="sql01"))
        monkeypatch.setattr(connection, "_connect_sync", lambda: odbc)
        monkeypatch.setattr(
            connection,
            "_fetch_sync",
            lambda conn, sql, params: [{"product_version": "9.00.5000.00"}],
        )

        await connection.connect()

        assert connection.server_major_version == 9
        await connection.close()
        assert odbc.closed


class TestRowDecoding:
    """Tests for catalog rows that cannot be decoded."""

    @pytest.mark.asyncio
    async def test_bad_backup_file_row(self):
        """Test that an unreadable backupfile row raises a query error."""

        class BadFileConnection(RecordingConnection):
            async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
                return [{"backup_set_id": None, "logical_name": "Sales", "file_type": "D"}]

        with pytest.raises(CatalogQueryError):
            await fetch_backup_files(BadFileConnection(), [1])
