"""IEC size parsing and formatting for partition plans.

Sizes are written as a non-negative integer immediately followed by an IEC
unit (``300MiB``, ``4GiB``). The literal ``0``, or a zero amount with any unit,
means the partition takes all space not claimed by the others.
"""

from __future__ import annotations

import re
from typing import Optional, Union


class _Remaining:
    """Sentinel for a partition that consumes the leftover capacity."""

    _instance: Optional["_Remaining"] = None

    def __new__(cls) -> "_Remaining":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "REMAINING"

    def __reduce__(self):
        return (_Remaining, ())


REMAINING = _Remaining()

Size = Union[int, _Remaining]

KIB = 1024
MIB = 1024**2
GIB = 1024**3

# Largest first, used by format_size
IEC_UNITS: dict[str, int] = {
    "EiB": 1024**6,
    "PiB": 1024**5,
    "TiB": 1024**4,
    "GiB": GIB,
    "MiB": MIB,
    "KiB": KIB,
    "B": 1,
}

_SIZE_PATTERN = re.compile(r"^(\d+)([A-Za-z]+)$", re.ASCII)


def is_remaining(size: Size) -> bool:
    return size is REMAINING


def parse_size(text: str) -> Size:
    """Parse a plan size field into a byte count or ``REMAINING``.

    Raises:
        ValueError: If the text is not ``0`` or ``<integer><IEC unit>``
    """
    text = text.strip()
    if text == "0":
        return REMAINING
    match = _SIZE_PATTERN.match(text)
    if not match:
        raise ValueError(f"expected 0 or <integer><unit>, got {text!r}")
    amount, unit = match.groups()
    multiplier = IEC_UNITS.get(unit)
    if multiplier is None:
        units = ", ".join(reversed(list(IEC_UNITS)))
        raise ValueError(f"unknown unit {unit!r} (expected one of {units})")
    value = int(amount) * multiplier
    if value == 0:
        return REMAINING
    return value


def format_size(size: Size) -> str:
    """Render a byte count in the largest IEC unit that divides it exactly."""
    if is_remaining(size):
        return "0"
    if size <= 0:
        raise ValueError(f"size must be positive, got {size}")
    for unit, multiplier in IEC_UNITS.items():
        if size % multiplier == 0:
            return f"{size // multiplier}{unit}"
    return f"{size}B"


def human_size(size_bytes: Optional[int]) -> str:
    if size_bytes is None:
        return "0B"
    size = float(size_bytes)
    for unit in ["B", "KiB", "MiB", "GiB", "TiB"]:
        if size < 1024.0:
            return f"{size:.1f}{unit}"
        size /= 1024.0
    return f"{size:.1f}PiB"


def floor_to_mib(size_bytes: int) -> int:
    return (size_bytes // MIB) * MIB
