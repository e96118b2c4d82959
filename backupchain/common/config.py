"""Configuration models using Pydantic for validation."""

import os
from pathlib import Path
from typing import ClassVar, Dict, Optional

import structlog
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from ruamel.yaml import YAML

logger = structlog.get_logger(__name__)


class FileLoggingConfig(BaseModel):
    """Configuration for file-based logging.

    File logging uses daily rotation with 7-day retention.
    Log files are stored as backupchain.log in config_dir, rotated daily
    with format backupchain.log.YYYY-MM-DD.
    """

    enabled: bool = Field(
        default=False,
        description="Enable file logging (logs to backupchain.log in config_dir)",
    )


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(
        default="INFO",
        description="Log level: DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    format: str = Field(
        default="json",
        description="Log format: json or text",
    )
    file: FileLoggingConfig = Field(
        default_factory=FileLoggingConfig,
        description="File logging configuration",
    )
    third_party: Dict[str, str] = Field(
        default_factory=dict,
        description="Log levels for third-party libraries (advanced)",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = ["json", "text"]
        v_lower = v.lower()
        if v_lower not in valid_formats:
            raise ValueError(f"Invalid format: {v}. Must be one of {valid_formats}")
        return v_lower


class InstanceConfig(BaseModel):
    """Connection settings for one backup catalog.

    Two drivers are supported:

    - ``sqlserver``: a live SQL Server instance, read through ``msdb`` via pyodbc.
      Either ``connection_string`` or ``server`` (plus optional credentials) is
      required.
    - ``sqlite``: an offline mirror of the msdb backup tables.
      ``database_path`` is required and is resolved against config_dir when
      relative.
    """

    driver: str = Field(
        default="sqlserver",
        description="Catalog driver: sqlserver or sqlite",
    )
    server: Optional[str] = Field(
        default=None,
        description="SQL Server host[\\instance][,port]",
    )
    username: Optional[str] = Field(
        default=None,
        description="SQL login (omit for integrated authentication)",
    )
    password: Optional[str] = Field(
        default=None,
        description="SQL login password",
    )
    odbc_driver: str = Field(
        default="ODBC Driver 18 for SQL Server",
        description="ODBC driver name used when building a connection string",
    )
    trust_server_certificate: bool = Field(
        default=False,
        description="Skip TLS certificate validation",
    )
    connection_string: Optional[str] = Field(
        default=None,
        description="Full ODBC connection string (takes precedence over server)",
    )
    database_path: Optional[Path] = Field(
        default=None,
        description="Path to a SQLite catalog mirror",
    )
    host_os: str = Field(
        default="windows",
        description="Operating system of the SQL Server host: windows or linux",
    )
    timeout: int = Field(
        default=30,
        ge=1,
        le=600,
        description="Connection timeout in seconds",
    )

    @field_validator("driver")
    @classmethod
    def validate_driver(cls, v: str) -> str:
        """Validate catalog driver."""
        valid_drivers = ["sqlserver", "sqlite"]
        v_lower = v.lower()
        if v_lower not in valid_drivers:
            raise ValueError(f"Invalid driver: {v}. Must be one of {valid_drivers}")
        return v_lower

    @field_validator("host_os")
    @classmethod
    def validate_host_os(cls, v: str) -> str:
        """Validate host operating system."""
        valid_hosts = ["windows", "linux"]
        v_lower = v.lower()
        if v_lower not in valid_hosts:
            raise ValueError(f"Invalid host_os: {v}. Must be one of {valid_hosts}")
        return v_lower

    @model_validator(mode="after")
    def validate_driver_settings(self) -> "InstanceConfig":
        """Require the settings each driver needs."""
        if self.driver == "sqlite" and self.database_path is None:
            raise ValueError("database_path is required for the sqlite driver")
        if self.driver == "sqlserver" and not (self.connection_string or self.server):
            raise ValueError("connection_string or server is required for the sqlserver driver")
        return self


class HistoryConfig(BaseModel):
    """Default filters applied to backup history lookups."""

    include_copy_only: bool = Field(
        default=False,
        description="Include copy-only backups in history and restore chains",
    )
    include_mirror: bool = Field(
        default=False,
        description="Include mirrored media families in history",
    )
    ignore_diff: bool = Field(
        default=False,
        description="Build restore chains from full and log backups only",
    )
    lsn_sort: str = Field(
        default="last_lsn",
        description="LSN column used to rank 'last' backups",
    )

    @field_validator("lsn_sort")
    @classmethod
    def validate_lsn_sort(cls, v: str) -> str:
        """Validate LSN sort column."""
        valid_columns = ["first_lsn", "database_backup_lsn", "last_lsn"]
        v_lower = v.lower()
        if v_lower not in valid_columns:
            raise ValueError(f"Invalid lsn_sort: {v}. Must be one of {valid_columns}")
        return v_lower


class ConcurrencyConfig(BaseModel):
    """Configuration for concurrency control."""

    max_concurrent_instances: int = Field(
        default=4,
        ge=1,
        le=256,
        description="Maximum number of instances queried concurrently",
    )


class BackupPathConfig(BaseModel):
    """Defaults for planning backup file names."""

    timestamp_format: str = Field(
        default="%Y%m%d%H%M",
        description="strftime format used for the timestamp in generated file names",
    )
    increment_prefix: bool = Field(
        default=False,
        description="Prefix striped file names with their stripe number",
    )
    create_folder: bool = Field(
        default=False,
        description="Place each database's files in a folder named after it",
    )


def _get_default_config_dir() -> Path:
    """
    Get default config directory based on environment.

    Priority:
    1. BACKUPCHAIN_CONFIG_DIR environment variable
    2. $HOME/.backupchain otherwise

    Returns:
        Path to config directory
    """
    env_config_dir = os.environ.get("BACKUPCHAIN_CONFIG_DIR")
    if env_config_dir:
        return Path(env_config_dir)

    return Path.home() / ".backupchain"


class Config(BaseModel):
    """Main configuration class for backupchain.

    Environment Variables:
    - BACKUPCHAIN_CONFIG_DIR: Override config_dir

    Relative paths in config (sqlite catalog mirrors, log file) are resolved
    against config_dir at runtime.
    """

    config_dir: Optional[Path] = Field(
        default=None,
        description="Configuration directory. Resolved from BACKUPCHAIN_CONFIG_DIR or defaults.",
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration",
    )
    instances: Dict[str, InstanceConfig] = Field(
        default_factory=dict,
        description="Backup catalogs keyed by instance name",
    )
    history: HistoryConfig = Field(
        default_factory=HistoryConfig,
        description="Backup history defaults",
    )
    concurrency: ConcurrencyConfig = Field(
        default_factory=ConcurrencyConfig,
        description="Concurrency limits for multi-instance operations",
    )
    backup_paths: BackupPathConfig = Field(
        default_factory=BackupPathConfig,
        description="Backup file naming defaults",
    )

    DEFAULT_LOG_FILE: ClassVar[str] = "backupchain.log"

    def resolve_paths(self, create_dirs: bool = True) -> "Config":
        """
        Resolve config_dir from environment or defaults.

        Args:
            create_dirs: If True, create config_dir if it doesn't exist

        Returns:
            Self with resolved paths (for chaining)

        Example:
            >>> config = Config.from_yaml(Path("config.yaml")).resolve_paths()
        """
        if self.config_dir is None:
            object.__setattr__(self, "config_dir", _get_default_config_dir())

        if create_dirs:
            self.config_dir.mkdir(parents=True, exist_ok=True)

        logger.debug("paths_resolved", config_dir=str(self.config_dir))

        return self

    def get_instance(self, name: str) -> InstanceConfig:
        """
        Get an instance configuration with its paths resolved.

        Args:
            name: Instance name as configured under ``instances``

        Returns:
            InstanceConfig with an absolute sqlite database_path

        Raises:
            KeyError: If the instance is not configured
        """
        if name not in self.instances:
            raise KeyError(f"Instance not configured: {name}")

        instance = self.instances[name]
        if instance.database_path is not None and not instance.database_path.is_absolute():
            config_dir = self.config_dir or _get_default_config_dir()
            instance = instance.model_copy(
                update={"database_path": config_dir / instance.database_path}
            )
        return instance

    def get_log_file_path(self) -> Path:
        """
        Get absolute log file path, resolved against config_dir.

        Returns:
            Absolute path to log file (backupchain.log in config_dir)
        """
        config_dir = self.config_dir or _get_default_config_dir()
        return config_dir / self.DEFAULT_LOG_FILE

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """
        Load configuration from YAML file using ruamel.yaml.

        Args:
            path: Path to YAML configuration file

        Returns:
            Config object with validated configuration

        Raises:
            FileNotFoundError: If config file doesn't exist
            pydantic.ValidationError: If configuration is invalid

        Example:
            >>> from pathlib import Path
            >>> config = Config.from_yaml(Path("config.yaml"))
        """
        yaml_loader = YAML(typ="safe")

        with open(path, "r", encoding="utf-8") as f:
            data = yaml_loader.load(f)
        return cls.model_validate(data or {})

    @classmethod
    def from_yaml_string(cls, yaml_string: str) -> "Config":
        """
        Load configuration from YAML string.

        Args:
            yaml_string: YAML configuration as string

        Returns:
            Config object with validated configuration

        Example:
            >>> yaml_str = "concurrency:\\n  max_concurrent_instances: 8"
            >>> config = Config.from_yaml_string(yaml_str)
        """
        data = yaml.safe_load(yaml_string)
        return cls.model_validate(data or {})
