"""Backup catalog connection management.

Two sources expose the same msdb backup tables:

- :class:`SqlServerCatalogConnection` reads ``msdb.dbo.*`` on a live instance
  through pyodbc. pyodbc is blocking, so calls run in a worker thread.
- :class:`SqliteCatalogConnection` reads an offline SQLite mirror through
  aiosqlite.

Both use qmark (``?``) parameters, so one query text serves both once table
names are resolved with :meth:`CatalogConnection.table`.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

import aiosqlite
import structlog

from ...common.config import InstanceConfig
from .exceptions import CatalogConnectionError, CatalogQueryError, CatalogSchemaError
from .schema import ALL_TABLES, DEFAULT_SERVER_MAJOR_VERSION, INDEXES

logger = structlog.get_logger(__name__)


class CatalogConnection(ABC):
    """Async connection to a backup catalog."""

    def __init__(self, name: str, host_os: str = "windows"):
        self.name = name
        self.host_os = host_os
        self.server_major_version: Optional[int] = None

    @abstractmethod
    async def connect(self) -> "CatalogConnection":
        """Open the connection and read the server version."""

    @abstractmethod
    async def close(self) -> None:
        """Close the connection."""

    @abstractmethod
    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """
        Run a query and return every row as a dict.

        Raises:
            CatalogQueryError: If the query fails
        """

    @abstractmethod
    def table(self, name: str) -> str:
        """Fully qualified name of a backup history table."""

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether the connection is open."""

    async def __aenter__(self) -> "CatalogConnection":
        """Context manager entry."""
        return await self.connect()

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit."""
        await self.close()


def _adapt_sqlite_param(value: Any) -> Any:
    """Bind values the way the mirror stores them."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value).upper()
    if isinstance(value, bool):
        return int(value)
    return value


class SqliteCatalogConnection(CatalogConnection):
    """Connection to an offline SQLite mirror of the backup history tables."""

    def __init__(
        self,
        db_path: Path,
        name: Optional[str] = None,
        host_os: str = "windows",
        timeout: int = 30,
        create: bool = False,
    ):
        """
        Initialize mirror connection.

        Args:
            db_path: Path to the SQLite mirror
            name: Instance name used in logs and results (defaults to file stem)
            host_os: Operating system of the instance the mirror was taken from
            timeout: Connection timeout in seconds
            create: Create the file and schema if missing
        """
        super().__init__(name or db_path.stem, host_os)
        self.db_path = db_path
        self.timeout = timeout
        self.create = create
        self._connection: Optional[aiosqlite.Connection] = None

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    def table(self, name: str) -> str:
        return name

    async def connect(self) -> "SqliteCatalogConnection":
        """
        Open the mirror.

        Raises:
            CatalogConnectionError: If the mirror is missing or cannot be opened
        """
        if self._connection is not None:
            return self

        if not self.create and not self.db_path.exists():
            raise CatalogConnectionError(
                f"Catalog mirror not found: {self.db_path}",
                instance=self.name,
            )

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = await aiosqlite.connect(str(self.db_path), timeout=self.timeout)
            self._connection.row_factory = aiosqlite.Row
            await self._connection.execute("PRAGMA foreign_keys = ON")

            if self.create:
                await self._create_schema()

            self.server_major_version = await self._read_server_version()

            logger.info(
                "catalog_connected",
                instance=self.name,
                driver="sqlite",
                db_path=str(self.db_path),
                server_major_version=self.server_major_version,
            )
            return self

        except CatalogSchemaError:
            await self.close()
            raise
        except Exception as e:
            await self.close()
            logger.error(
                "catalog_connection_failed",
                instance=self.name,
                db_path=str(self.db_path),
                error=str(e),
            )
            raise CatalogConnectionError(
                f"Failed to open catalog mirror {self.db_path}: {e}",
                instance=self.name,
            ) from e

    async def _create_schema(self) -> None:
        try:
            for statement in ALL_TABLES + INDEXES:
                await self._connection.execute(statement)
            await self._connection.commit()
        except Exception as e:
            raise CatalogSchemaError(f"Failed to create catalog schema: {e}") from e

    async def _read_server_version(self) -> int:
        try:
            cursor = await self._connection.execute(
                "SELECT value FROM catalog_properties WHERE name = 'server_major_version'"
            )
            row = await cursor.fetchone()
        except aiosqlite.OperationalError:
            # Mirrors written by other tools may not carry the properties table
            return DEFAULT_SERVER_MAJOR_VERSION
        return int(row["value"]) if row else DEFAULT_SERVER_MAJOR_VERSION

    async def close(self) -> None:
        """Close the mirror."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("catalog_closed", instance=self.name, db_path=str(self.db_path))

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        if self._connection is None:
            raise CatalogQueryError("No active connection", query=sql)

        bound = tuple(_adapt_sqlite_param(p) for p in params)
        try:
            cursor = await self._connection.execute(sql, bound)
            rows = await cursor.fetchall()
        except Exception as e:
            logger.error("catalog_query_failed", instance=self.name, error=str(e))
            raise CatalogQueryError(f"Catalog query failed: {e}", query=sql, params=bound) from e
        return [dict(row) for row in rows]

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """
        Run a write statement against the mirror and commit.

        Returns:
            Row id of the last inserted row
        """
        if self._connection is None:
            raise CatalogQueryError("No active connection", query=sql)

        bound = tuple(_adapt_sqlite_param(p) for p in params)
        try:
            cursor = await self._connection.execute(sql, bound)
            await self._connection.commit()
        except Exception as e:
            await self._connection.rollback()
            logger.error("catalog_write_failed", instance=self.name, error=str(e))
            raise CatalogSchemaError(f"Catalog write failed: {e}") from e
        return cursor.lastrowid


def build_connection_string(config: InstanceConfig) -> str:
    """
    Build an ODBC connection string for the msdb database.

    ``connection_string`` is used verbatim when configured.
    """
    if config.connection_string:
        return config.connection_string

    parts = [
        f"DRIVER={{{config.odbc_driver}}}",
        f"SERVER={config.server}",
        "DATABASE=msdb",
        "ApplicationIntent=ReadOnly",
    ]
    if config.username:
        parts.append(f"UID={config.username}")
        parts.append(f"PWD={{{config.password or ''}}}")
    else:
        parts.append("Trusted_Connection=yes")
    if config.trust_server_certificate:
        parts.append("TrustServerCertificate=yes")
    return ";".join(parts) + ";"


class SqlServerCatalogConnection(CatalogConnection):
    """Connection to ``msdb`` on a live SQL Server instance."""

    VERSION_QUERY = "SELECT CAST(SERVERPROPERTY('ProductVersion') AS nvarchar(128)) AS product_version"

    def __init__(self, name: str, config: InstanceConfig):
        """
        Initialize SQL Server catalog connection.

        Args:
            name: Instance name used in logs and results
            config: Instance connection settings
        """
        super().__init__(name, config.host_os)
        self.config = config
        self._connection: Any = None
        # pyodbc connections must not be shared by concurrent threads
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    def table(self, name: str) -> str:
        return f"msdb.dbo.{name}"

    def _connect_sync(self) -> Any:
        import pyodbc

        return pyodbc.connect(
            build_connection_string(self.config),
            timeout=self.config.timeout,
            autocommit=True,
        )

    @staticmethod
    def _fetch_sync(connection: Any, sql: str, params: Sequence[Any]) -> List[Dict[str, Any]]:
        cursor = connection.cursor()
        try:
            cursor.execute(sql, *params)
            columns = [column[0] for column in cursor.description]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]
        finally:
            cursor.close()

    async def connect(self) -> "SqlServerCatalogConnection":
        """
        Connect to the instance and read its version.

        Raises:
            CatalogConnectionError: If the instance cannot be reached
        """
        if self._connection is not None:
            return self

        try:
            self._connection = await asyncio.to_thread(self._connect_sync)
        except Exception as e:
            logger.error("catalog_connection_failed", instance=self.name, error=str(e))
            raise CatalogConnectionError(
                f"Failed to connect to {self.name}: {e}",
                instance=self.name,
            ) from e

        try:
            rows = await self.fetch_all(self.VERSION_QUERY)
            version = rows[0]["product_version"] if rows else None
            self.server_major_version = int(str(version).split(".")[0]) if version else None
        except CatalogQueryError:
            await self.close()
            raise
        except ValueError as e:
            await self.close()
            raise CatalogQueryError(
                f"Unexpected product version on {self.name}: {e}", query=self.VERSION_QUERY
            ) from e

        logger.info(
            "catalog_connected",
            instance=self.name,
            driver="sqlserver",
            server_major_version=self.server_major_version,
        )
        return self

    async def close(self) -> None:
        """Close the connection."""
        if self._connection is not None:
            connection, self._connection = self._connection, None
            await asyncio.to_thread(connection.close)
            logger.info("catalog_closed", instance=self.name)

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        if self._connection is None:
            raise CatalogQueryError("No active connection", query=sql)

        async with self._lock:
            try:
                return await asyncio.to_thread(self._fetch_sync, self._connection, sql, tuple(params))
            except Exception as e:
                logger.error("catalog_query_failed", instance=self.name, error=str(e))
                raise CatalogQueryError(
                    f"Catalog query failed on {self.name}: {e}",
                    query=sql,
                    params=tuple(params),
                ) from e


def open_catalog(name: str, config: InstanceConfig) -> CatalogConnection:
    """
    Create (but do not open) the catalog connection for an instance.

    Args:
        name: Instance name
        config: Instance settings with an absolute sqlite database_path

    Returns:
        Unopened CatalogConnection
    """
    if config.driver == "sqlite":
        return SqliteCatalogConnection(
            config.database_path,
            name=name,
            host_os=config.host_os,
            timeout=config.timeout,
        )
    return SqlServerCatalogConnection(name, config)
