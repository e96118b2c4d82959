"""backupchain package initialization."""

from pathlib import Path
from typing import Optional

import structlog

from .common.config import (
    BackupPathConfig,
    ConcurrencyConfig,
    Config,
    HistoryConfig,
    InstanceConfig,
    LoggingConfig,
)
from .common.concurrency_limiter import ConcurrencyLimiter
from .common.logging_config import setup_logging
from .core import (
    BackupFile,
    BackupSet,
    BackupType,
    CatalogRow,
    DeviceType,
    MediaFamily,
    RecoveryFork,
    RestoreChain,
    build_restore_chain,
    format_lsn,
    group_into_media_sets,
    parse_lsn,
    plan_backup_paths,
)
from .core.catalog import (
    BackupHistoryQuery,
    BackupHistoryRepository,
    CatalogConnectionError,
    CatalogError,
    CatalogMirror,
    CatalogQueryError,
    CatalogSchemaError,
    ChainOptions,
    HistoryFilter,
    SqliteCatalogConnection,
    SqlServerCatalogConnection,
    open_catalog,
)
from .services import (
    BackupHistoryService,
    InstanceResult,
    NotFoundError,
    ServiceError,
    ValidationError,
)

__version__ = "0.1.0"
__all__ = [
    "BackupFile",
    "BackupHistoryQuery",
    "BackupHistoryRepository",
    "BackupHistoryService",
    "BackupPathConfig",
    "BackupSet",
    "BackupType",
    "CatalogConnectionError",
    "CatalogError",
    "CatalogMirror",
    "CatalogQueryError",
    "CatalogRow",
    "CatalogSchemaError",
    "ChainOptions",
    "ConcurrencyConfig",
    "ConcurrencyLimiter",
    "Config",
    "DeviceType",
    "HistoryConfig",
    "HistoryFilter",
    "InstanceConfig",
    "InstanceResult",
    "LoggingConfig",
    "MediaFamily",
    "NotFoundError",
    "RecoveryFork",
    "RestoreChain",
    "ServiceError",
    "SqlServerCatalogConnection",
    "SqliteCatalogConnection",
    "ValidationError",
    "build_restore_chain",
    "configure",
    "format_lsn",
    "get_config",
    "group_into_media_sets",
    "open_catalog",
    "parse_lsn",
    "plan_backup_paths",
]

# Module-level logger (not configured yet)
logger = structlog.get_logger(__name__)

_config: Optional[Config] = None


def configure(config_path: Optional[Path] = None, config: Optional[Config] = None) -> Config:
    """
    Configure the backupchain package.

    Call once at startup to load configuration and set up logging.

    Path Resolution:
    - If config_path is provided, load from that file
    - Otherwise use config.yaml in BACKUPCHAIN_CONFIG_DIR (or ~/.backupchain),
      then config.yaml in the working directory, then defaults

    Args:
        config_path: Path to YAML configuration file
        config: Pre-loaded Config object (takes precedence over config_path)

    Returns:
        The active Config

    Example:
        >>> import backupchain
        >>> backupchain.configure(config_path=Path("config.yaml"))
    """
    global _config

    from .common.config import _get_default_config_dir

    if config is not None:
        _config = config
    elif config_path is not None:
        _config = Config.from_yaml(config_path)
    else:
        default_config_path = _get_default_config_dir() / "config.yaml"
        cwd_config_path = Path.cwd() / "config.yaml"

        if default_config_path.exists():
            _config = Config.from_yaml(default_config_path)
            config_path = default_config_path
        elif cwd_config_path.exists():
            _config = Config.from_yaml(cwd_config_path)
            config_path = cwd_config_path
        elif _config is None:
            _config = Config()

    if _config.config_dir is None and config_path is not None:
        # Relative mirror paths in a config file are relative to that file
        object.__setattr__(_config, "config_dir", config_path.resolve().parent)

    _config.resolve_paths(create_dirs=_config.logging.file.enabled)
    setup_logging(_config.logging, _config.config_dir)

    logger.info(
        "backupchain_configured",
        version=__version__,
        config_path=str(config_path) if config_path else None,
        config_dir=str(_config.config_dir),
        instances=sorted(_config.instances),
    )
    return _config


def get_config() -> Config:
    """
    Get current configuration, initializing with defaults if needed.

    Returns:
        Current Config object
    """
    global _config
    if _config is None:
        _config = Config()
        setup_logging(_config.logging)
    return _config
