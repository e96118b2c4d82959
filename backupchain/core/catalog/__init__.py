"""Backup catalog access: connections, queries and the history repository."""

from .connection import (
    CatalogConnection,
    SqliteCatalogConnection,
    SqlServerCatalogConnection,
    build_connection_string,
    open_catalog,
)
from .exceptions import (
    CatalogConnectionError,
    CatalogError,
    CatalogQueryError,
    CatalogSchemaError,
)
from .mirror import CatalogMirror
from .query import BackupHistoryQuery, fetch_backup_files, fetch_database_names
from .repository import BackupHistoryRepository, ChainOptions, HistoryFilter

__all__ = [
    "BackupHistoryQuery",
    "BackupHistoryRepository",
    "CatalogConnection",
    "CatalogConnectionError",
    "CatalogError",
    "CatalogMirror",
    "CatalogQueryError",
    "CatalogSchemaError",
    "ChainOptions",
    "HistoryFilter",
    "SqlServerCatalogConnection",
    "SqliteCatalogConnection",
    "build_connection_string",
    "fetch_backup_files",
    "fetch_database_names",
    "open_catalog",
]
