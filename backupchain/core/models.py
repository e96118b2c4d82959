"""Pydantic models for backup catalog records."""

from datetime import datetime, timedelta
from typing import Annotated, Any, Iterator, List, Optional
from uuid import UUID

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    computed_field,
    field_validator,
)

from .codes import BackupType, DeviceType, decode_device_type, device_type_label
from .lsn import format_lsn, parse_lsn

# LSNs are ints internally and decimal strings on the wire
Lsn = Annotated[
    int,
    BeforeValidator(parse_lsn),
    PlainSerializer(format_lsn, return_type=str, when_used="json"),
]
OptionalLsn = Annotated[
    Optional[int],
    BeforeValidator(parse_lsn),
    PlainSerializer(lambda v: None if v is None else format_lsn(v), when_used="json"),
]


def _parse_backup_type(value: Any) -> BackupType:
    return BackupType.parse(value)


def _parse_bool(value: Any) -> bool:
    # SQLite and some ODBC drivers return bit columns as 0/1 or "0"/"1"
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


CatalogBool = Annotated[bool, BeforeValidator(_parse_bool)]


class BackupFile(BaseModel):
    """A database file captured by a backup (``backupfile``)."""

    logical_name: Optional[str] = None
    physical_name: Optional[str] = None
    file_type: Optional[str] = None
    file_size: Optional[int] = None


class MediaFamily(BaseModel):
    """One stripe or mirror of a backup media set (``backupmediafamily``)."""

    physical_device_name: Optional[str] = None
    media_family_id: Optional[str] = None
    family_sequence_number: Optional[int] = None
    mirror: int = 0
    device_type: DeviceType = DeviceType.DISK
    is_permanent_device: bool = False


class CatalogRow(BaseModel):
    """
    One raw catalog row: a backup set joined to one of its media families.

    Striped or mirrored backups produce several rows per backup set; see
    :func:`backupchain.core.grouping.group_into_media_sets`.
    """

    backup_set_id: int
    media_set_id: int
    database_name: str
    type: Annotated[BackupType, BeforeValidator(_parse_backup_type)]
    backup_start_date: datetime
    backup_finish_date: datetime
    first_lsn: Lsn
    last_lsn: Lsn
    checkpoint_lsn: OptionalLsn = None
    database_backup_lsn: OptionalLsn = None
    is_copy_only: CatalogBool = False
    last_recovery_fork_guid: Optional[UUID] = None
    backup_size: Optional[int] = None
    compressed_backup_size: Optional[int] = None
    server_name: Optional[str] = None
    machine_name: Optional[str] = None
    user_name: Optional[str] = None
    position: Optional[int] = None
    software_major_version: Optional[int] = None
    recovery_model: Optional[str] = None
    database_guid: Optional[UUID] = None
    physical_device_name: Optional[str] = None
    device_type: Optional[int] = None
    family_sequence_number: Optional[int] = None
    mirror: int = 0
    media_family_id: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("backup_size", "compressed_backup_size", mode="before")
    @classmethod
    def parse_size(cls, v: Any) -> Optional[int]:
        """Catalog sizes are numeric(20,0); accept Decimal and strings."""
        if v is None or v == "":
            return None
        return int(v)

    @field_validator("device_type")
    @classmethod
    def validate_device_type(cls, v: Optional[int]) -> Optional[int]:
        if v is not None:
            decode_device_type(v)
        return v

    @field_validator("media_family_id", mode="before")
    @classmethod
    def parse_media_family_id(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v)

    def to_media_family(self) -> MediaFamily:
        device_type, permanent = decode_device_type(
            self.device_type if self.device_type is not None else int(DeviceType.DISK)
        )
        return MediaFamily(
            physical_device_name=self.physical_device_name,
            media_family_id=self.media_family_id,
            family_sequence_number=self.family_sequence_number,
            mirror=self.mirror,
            device_type=device_type,
            is_permanent_device=permanent,
        )


class BackupSet(BaseModel):
    """One logical backup operation with its files and media families."""

    backup_set_id: int
    media_set_id: int
    database_name: str
    type: BackupType
    start_time: datetime
    end_time: datetime
    first_lsn: Lsn
    last_lsn: Lsn
    checkpoint_lsn: OptionalLsn = None
    database_backup_lsn: OptionalLsn = None
    is_copy_only: bool = False
    recovery_fork_id: Optional[UUID] = None
    device_type: DeviceType = DeviceType.DISK
    is_permanent_device: bool = False
    media_families: List[MediaFamily] = Field(default_factory=list)
    files: List[BackupFile] = Field(default_factory=list)
    total_size: Optional[int] = None
    compressed_size: Optional[int] = None
    compression_ratio: float = 1.0
    server_name: Optional[str] = None
    machine_name: Optional[str] = None
    user_name: Optional[str] = None
    position: Optional[int] = None
    software_major_version: Optional[int] = None
    recovery_model: Optional[str] = None
    database_guid: Optional[UUID] = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    @computed_field  # type: ignore[prop-decorator]
    @property
    def paths(self) -> List[str]:
        """Physical device names in family sequence order."""
        families = sorted(
            self.media_families,
            key=lambda f: (f.mirror, f.family_sequence_number or 0),
        )
        return [f.physical_device_name for f in families if f.physical_device_name]

    @computed_field  # type: ignore[prop-decorator]
    @property
    def type_name(self) -> str:
        return self.type.display_name

    @computed_field  # type: ignore[prop-decorator]
    @property
    def device_type_name(self) -> str:
        return device_type_label(self.device_type, self.is_permanent_device)

    def lsn_value(self, column: str) -> int:
        """Return an LSN column by name, treating NULL as 0 for ranking."""
        value = getattr(self, column)
        return value if value is not None else 0


class RecoveryFork(BaseModel):
    """LSN and date range of the backups recorded for one recovery fork."""

    recovery_fork_id: Optional[UUID] = None
    first_lsn: Lsn
    last_lsn: Lsn
    first_backup_finish: datetime
    last_backup_finish: datetime
    backup_count: int = 0

    def describe(self) -> str:
        return (
            f"fork {self.recovery_fork_id}: LSN {self.first_lsn}-{self.last_lsn}, "
            f"{self.first_backup_finish.isoformat()} to {self.last_backup_finish.isoformat()}"
        )


class RestoreChain(BaseModel):
    """
    Minimal ordered set of backups needed to restore a database.

    Iterating yields the backups in restore order (ascending last LSN).
    ``warnings`` collects the non-fatal problems found while building it.
    """

    database_name: str
    recovery_fork_id: Optional[UUID] = None
    backups: List[BackupSet] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_full(self) -> bool:
        return any(b.type is BackupType.FULL for b in self.backups)

    def __iter__(self) -> Iterator[BackupSet]:  # type: ignore[override]
        return iter(self.backups)

    def __len__(self) -> int:
        return len(self.backups)

    def __getitem__(self, index: int) -> BackupSet:
        return self.backups[index]
