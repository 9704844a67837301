"""Partition plan text format.

One partition per line, fields separated by whitespace:

    SLOT_INDEX NAME TYPE_ID FILESYSTEM SIZE [FLAG...]

Example:
    2 BIOS\\ boot 21686148-6449-6E6F-744E-656564454649 none 1MiB
    3 EFI C12A7328-F81F-11D2-BA4B-00A0C93EC93B fat32 300MiB
    1 Storage EBD0A0A2-B9E5-4433-87C0-68B6B72699C7 ntfs 0

A backslash escapes the next character, so names may contain spaces. Blank
lines and lines starting with ``#`` are skipped but still counted for error
line numbers. Line order is the physical creation order; SLOT_INDEX is the
partition table slot.

Parsing is purely syntactic. Whole-plan invariants (slots forming 1..N, a
single REMAINING entry) are checked by the resolver.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Union

from usb_provisioner.domain.models import (
    MAX_GPT_ATTRIBUTE_BIT,
    Filesystem,
    PartitionPlan,
    PartitionSpec,
    ResolvedLayout,
)
from usb_provisioner.exceptions import MalformedPlanError, PlanFileError
from usb_provisioner.logging import LoggerFactory
from usb_provisioner.plan.sizes import format_size, parse_size

log = LoggerFactory.for_plan()

REQUIRED_FIELDS = ("slot index", "name", "type id", "filesystem", "size")


def split_fields(line: str, line_number: int = 0) -> list[str]:
    """Split a plan line on unescaped whitespace."""
    fields: list[str] = []
    current: list[str] = []
    in_field = False
    chars = iter(line)
    for char in chars:
        if char == "\\":
            escaped = next(chars, None)
            if escaped is None:
                raise MalformedPlanError(line_number, "line", "trailing backslash")
            current.append(escaped)
            in_field = True
        elif char.isspace():
            if in_field:
                fields.append("".join(current))
                current = []
                in_field = False
        else:
            current.append(char)
            in_field = True
    if in_field:
        fields.append("".join(current))
    return fields


def escape_name(name: str) -> str:
    escaped = []
    for char in name:
        if char == "\\" or char.isspace():
            escaped.append("\\")
        escaped.append(char)
    return "".join(escaped)


def _is_decimal(token: str) -> bool:
    # str.isdigit also accepts superscripts and other non-ASCII digits
    return token.isascii() and token.isdigit()


def _parse_slot_index(token: str, line_number: int) -> int:
    if not _is_decimal(token) or int(token) < 1:
        raise MalformedPlanError(
            line_number, "slot index", f"expected a positive integer, got {token!r}"
        )
    return int(token)


def _parse_flag(token: str, line_number: int) -> int:
    if not _is_decimal(token):
        raise MalformedPlanError(
            line_number, "flag", f"expected an integer, got {token!r}"
        )
    bit = int(token)
    if bit > MAX_GPT_ATTRIBUTE_BIT:
        raise MalformedPlanError(
            line_number,
            "flag",
            f"attribute bit {bit} is outside [0,{MAX_GPT_ATTRIBUTE_BIT}]",
        )
    return bit


def parse_plan_line(line: str, line_number: int) -> PartitionSpec:
    """Parse a single non-blank plan line.

    Raises:
        MalformedPlanError: If a field is missing or invalid
    """
    fields = split_fields(line, line_number)
    if len(fields) < len(REQUIRED_FIELDS):
        missing = REQUIRED_FIELDS[len(fields)]
        raise MalformedPlanError(
            line_number,
            missing,
            f"expected at least {len(REQUIRED_FIELDS)} fields, got {len(fields)}",
        )

    slot_token, name, type_id, fs_token, size_token, *flag_tokens = fields

    slot_index = _parse_slot_index(slot_token, line_number)

    try:
        filesystem = Filesystem.from_token(fs_token)
    except ValueError as error:
        raise MalformedPlanError(line_number, "filesystem", str(error)) from error

    try:
        size = parse_size(size_token)
    except ValueError as error:
        raise MalformedPlanError(line_number, "size", str(error)) from error

    flags = frozenset(_parse_flag(token, line_number) for token in flag_tokens)

    return PartitionSpec(
        slot_index=slot_index,
        name=name,
        type_id=type_id,
        filesystem=filesystem,
        size=size,
        flags=flags,
    )


def parse_plan(lines: Iterable[str]) -> PartitionPlan:
    """Parse plan lines into a PartitionPlan, keeping appearance order.

    Raises:
        MalformedPlanError: On the first offending line
    """
    entries = []
    for line_number, line in enumerate(lines, start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        entries.append(parse_plan_line(stripped, line_number))
    log.debug(f"Parsed {len(entries)} plan entries")
    return PartitionPlan(tuple(entries))


def parse_plan_file(path: Union[str, Path]) -> PartitionPlan:
    """Parse a plan file.

    Raises:
        PlanFileError: If the file cannot be read
        MalformedPlanError: On the first offending line
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as error:
        reason = error.strerror if isinstance(error, OSError) and error.strerror else str(error)
        raise PlanFileError(str(path), reason) from error
    log.debug(f"Reading partition plan from {path}")
    return parse_plan(text.splitlines())


def format_plan_line(spec: PartitionSpec) -> str:
    fields = [
        str(spec.slot_index),
        escape_name(spec.name),
        spec.type_id,
        spec.filesystem.value,
        format_size(spec.size),
    ]
    fields.extend(str(bit) for bit in sorted(spec.flags))
    return " ".join(fields)


def serialize_plan(plan: PartitionPlan) -> str:
    """Render a plan as text in physical order; REMAINING stays ``0``."""
    return "".join(f"{format_plan_line(spec)}\n" for spec in plan)


def serialize_layout(layout: ResolvedLayout) -> str:
    """Render a resolved layout as plan text with every size concrete."""
    return serialize_plan(layout.to_plan())
