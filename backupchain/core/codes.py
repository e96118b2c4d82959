"""Backup catalog code tables.

msdb stores backup and device types as short codes. These mappings must stay
exactly as the catalog defines them.
"""

from enum import Enum
from typing import Tuple

PERMANENT_DEVICE_OFFSET = 100


class BackupType(str, Enum):
    """Backup type as stored in ``backupset.type``."""

    FULL = "D"
    DIFFERENTIAL = "I"
    LOG = "L"
    FILE = "F"
    DIFFERENTIAL_FILE = "G"
    PARTIAL_FULL = "P"
    PARTIAL_DIFFERENTIAL = "Q"

    @property
    def display_name(self) -> str:
        return _BACKUP_TYPE_NAMES[self]

    @property
    def sort_order(self) -> int:
        """Secondary ordering key when two backups share a last LSN."""
        return _BACKUP_TYPE_ORDER[self]

    @classmethod
    def parse(cls, value: str) -> "BackupType":
        """
        Resolve a backup type from its code, enum name or display name.

        Accepts ``"D"``, ``"FULL"``, ``"Full"``, ``"Partial Differential"`` and so on.

        Raises:
            ValueError: If the value does not name a backup type
        """
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        if text.upper() in _BACKUP_TYPE_CODES:
            return cls(text.upper())
        key = text.replace(" ", "").replace("_", "").lower()
        for member in cls:
            if key in (member.name.replace("_", "").lower(), member.display_name.replace(" ", "").lower()):
                return member
        # Catalog exports sometimes spell the common types out
        aliases = {"database": cls.FULL, "transactionlog": cls.LOG, "diff": cls.DIFFERENTIAL}
        if key in aliases:
            return aliases[key]
        raise ValueError(f"Unknown backup type: {value!r}")


_BACKUP_TYPE_NAMES = {
    BackupType.FULL: "Full",
    BackupType.DIFFERENTIAL: "Differential",
    BackupType.LOG: "Log",
    BackupType.FILE: "File",
    BackupType.DIFFERENTIAL_FILE: "Differential File",
    BackupType.PARTIAL_FULL: "Partial Full",
    BackupType.PARTIAL_DIFFERENTIAL: "Partial Differential",
}

_BACKUP_TYPE_ORDER = {
    BackupType.FULL: 0,
    BackupType.PARTIAL_FULL: 1,
    BackupType.FILE: 2,
    BackupType.DIFFERENTIAL: 3,
    BackupType.PARTIAL_DIFFERENTIAL: 4,
    BackupType.DIFFERENTIAL_FILE: 5,
    BackupType.LOG: 6,
}

_BACKUP_TYPE_CODES = {member.value for member in BackupType}


class DeviceType(int, Enum):
    """Backup device type as stored in ``backupmediafamily.device_type``.

    A code of ``100 + n`` is device ``n`` registered as a permanent (logical)
    backup device; see :func:`decode_device_type`.
    """

    DISK = 2
    TAPE = 5
    PIPE = 6
    VIRTUAL_DEVICE = 7
    URL = 9

    @property
    def display_name(self) -> str:
        return _DEVICE_TYPE_NAMES[self]

    @classmethod
    def parse(cls, value: str) -> Tuple["DeviceType", bool]:
        """
        Resolve a device type name or code.

        Returns:
            Tuple of (device type, permanent flag)

        Raises:
            ValueError: If the value does not name a device type
        """
        text = str(value).strip()
        if text.isdigit():
            return decode_device_type(int(text))
        key = text.replace(" ", "").replace("_", "").lower()
        permanent = False
        if key.startswith("permanent"):
            permanent = True
            key = key[len("permanent") :]
            if key.endswith("device") and key != "virtualdevice":
                key = key[: -len("device")]
        for member in cls:
            if key in (member.name.replace("_", "").lower(), member.display_name.replace(" ", "").lower()):
                return member, permanent
        raise ValueError(f"Unknown device type: {value!r}")


_DEVICE_TYPE_NAMES = {
    DeviceType.DISK: "Disk",
    DeviceType.TAPE: "Tape",
    DeviceType.PIPE: "Pipe",
    DeviceType.VIRTUAL_DEVICE: "Virtual Device",
    DeviceType.URL: "URL",
}


def decode_device_type(code: int) -> Tuple[DeviceType, bool]:
    """
    Decode a catalog device type code.

    Args:
        code: Value of ``backupmediafamily.device_type``

    Returns:
        Tuple of (device type, permanent flag)

    Raises:
        ValueError: If the code is not a known device type

    Example:
        >>> decode_device_type(102)
        (<DeviceType.DISK: 2>, True)
    """
    code = int(code)
    permanent = code >= PERMANENT_DEVICE_OFFSET
    base = code - PERMANENT_DEVICE_OFFSET if permanent else code
    try:
        return DeviceType(base), permanent
    except ValueError:
        raise ValueError(f"Unknown device type code: {code}") from None


def encode_device_type(device_type: DeviceType, permanent: bool = False) -> int:
    """Return the catalog code for a device type."""
    return int(device_type) + (PERMANENT_DEVICE_OFFSET if permanent else 0)


def device_type_label(device_type: DeviceType, permanent: bool = False) -> str:
    """Human-readable device label, e.g. ``"Permanent Disk Device"``."""
    if not permanent:
        return device_type.display_name
    if device_type is DeviceType.VIRTUAL_DEVICE:
        return "Permanent Virtual Device"
    return f"Permanent {device_type.display_name} Device"
