"""Log sequence number parsing and formatting.

msdb stores LSNs as ``numeric(25,0)``. Depending on the driver they arrive as
``Decimal``, ``int`` or a decimal string; DBCC output and the transaction log
functions show them in the hexadecimal ``VLF:block:slot`` form instead. All of
these are normalised to ``int`` so that ordering is numeric. Comparing the raw
strings puts ``"99"`` after ``"100"``.
"""

import re
from decimal import Decimal
from typing import Any, Optional

_HEX_LSN = re.compile(r"^(?:0x)?([0-9a-fA-F]{1,8}):([0-9a-fA-F]{1,8}):([0-9a-fA-F]{1,4})$")

# Decimal LSN layout: VLF sequence, then 10 digits of block, then 5 digits of slot
_BLOCK_FACTOR = 10**5
_VLF_FACTOR = 10**15


def parse_lsn(value: Any) -> Optional[int]:
    """
    Convert a catalog LSN value to an integer.

    Args:
        value: ``int``, ``Decimal``, decimal string, hexadecimal
            ``VLF:block:slot`` string, or ``None``

    Returns:
        The LSN as an integer, or None for NULL / empty values

    Raises:
        ValueError: If the value is not a valid LSN

    Example:
        >>> parse_lsn("34000000012300001")
        34000000012300001
        >>> parse_lsn("00000022:0000007b:0001")
        34000000012300001
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid LSN: {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"Invalid LSN: {value!r}")
        return value
    if isinstance(value, Decimal):
        if value != value.to_integral_value() or value < 0:
            raise ValueError(f"Invalid LSN: {value!r}")
        return int(value)
    if isinstance(value, float):
        # Floats cannot hold a 25 digit LSN without loss
        raise ValueError(f"Refusing to parse LSN from float: {value!r}")

    text = str(value).strip()
    if not text:
        return None
    if text.isdigit():
        return int(text)
    if text.endswith(".0") and text[:-2].isdigit():
        return int(text[:-2])

    match = _HEX_LSN.match(text)
    if match:
        vlf, block, slot = (int(part, 16) for part in match.groups())
        return vlf * _VLF_FACTOR + block * _BLOCK_FACTOR + slot

    raise ValueError(f"Invalid LSN: {value!r}")


def format_lsn(lsn: int) -> str:
    """Format an LSN in the catalog's decimal notation."""
    return str(int(lsn))


def format_lsn_hex(lsn: int) -> str:
    """
    Format an LSN in ``VLF:block:slot`` hexadecimal notation.

    Example:
        >>> format_lsn_hex(34000000012300001)
        '00000022:0000007b:0001'
    """
    lsn = int(lsn)
    vlf, remainder = divmod(lsn, _VLF_FACTOR)
    block, slot = divmod(remainder, _BLOCK_FACTOR)
    return f"{vlf:08x}:{block:08x}:{slot:04x}"
