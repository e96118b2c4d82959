"""Exceptions for backup catalog operations."""

from typing import Optional


class CatalogError(Exception):
    """Base exception for backup catalog errors."""

    pass


class CatalogConnectionError(CatalogError):
    """Raised when the catalog cannot be reached."""

    def __init__(self, message: str, instance: Optional[str] = None):
        super().__init__(message)
        self.instance = instance


class CatalogQueryError(CatalogError):
    """Raised when a catalog query fails."""

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        params: Optional[tuple] = None,
    ):
        super().__init__(message)
        self.query = query
        self.params = params


class CatalogSchemaError(CatalogError):
    """Raised when a catalog mirror schema cannot be created or written."""

    def __init__(self, message: str, table: Optional[str] = None):
        super().__init__(message)
        self.table = table
