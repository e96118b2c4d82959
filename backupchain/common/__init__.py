"""Common utilities: configuration, logging and concurrency control."""

from .concurrency_limiter import ConcurrencyLimiter
from .config import (
    BackupPathConfig,
    ConcurrencyConfig,
    Config,
    FileLoggingConfig,
    HistoryConfig,
    InstanceConfig,
    LoggingConfig,
)
from .logging_config import bind_context, clear_context, get_logger, setup_logging

__all__ = [
    "BackupPathConfig",
    "ConcurrencyConfig",
    "ConcurrencyLimiter",
    "Config",
    "FileLoggingConfig",
    "HistoryConfig",
    "InstanceConfig",
    "LoggingConfig",
    "bind_context",
    "clear_context",
    "get_logger",
    "setup_logging",
]
