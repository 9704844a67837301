"""GPT partition table creation with sgdisk.

The existing table is destroyed unconditionally, then one sgdisk call per
partition creates the entries in physical creation order. Each call starts the
partition at the next free aligned sector; the partition resolved from
REMAINING is created with an end of ``0`` so it takes whatever is left.

Operations:
    - wipe_partition_table(): Destroy GPT and MBR structures on the device
    - build_new_partition_command(): sgdisk argv for one resolved partition
    - write_partition_table(): Wipe and recreate the table for a layout
"""

from __future__ import annotations

import subprocess

from usb_provisioner.domain.models import ResolvedLayout, ResolvedPartition
from usb_provisioner.exceptions import PartitionTableError
from usb_provisioner.logging import LoggerFactory
from usb_provisioner.plan.sizes import KIB

from .devices import (
    command_failure_message,
    partition_path,
    run_command,
    settle_device,
    wait_for_partition_nodes,
)

log = LoggerFactory.for_table()

# sgdisk size suffixes are binary multiples
_SGDISK_UNITS = (
    ("T", 1024**4),
    ("G", 1024**3),
    ("M", 1024**2),
    ("K", KIB),
)


def sgdisk_size(size_bytes: int) -> str:
    """Relative end for sgdisk --new, rounded up to whole KiB."""
    for suffix, multiplier in _SGDISK_UNITS:
        if size_bytes % multiplier == 0:
            return f"+{size_bytes // multiplier}{suffix}"
    return f"+{-(-size_bytes // KIB)}K"


def build_wipe_command(device: str) -> list[str]:
    return ["sgdisk", "--zap-all", device]


def build_new_partition_command(partition: ResolvedPartition, device: str) -> list[str]:
    """sgdisk argv creating one partition at the next available offset."""
    slot = partition.slot_index
    end = "0" if partition.takes_remaining else sgdisk_size(partition.size_bytes)
    command = [
        "sgdisk",
        f"--new={slot}:0:{end}",
        f"--change-name={slot}:{partition.name}",
        f"--typecode={slot}:{partition.type_id}",
    ]
    command.extend(f"--attributes={slot}:set:{bit}" for bit in sorted(partition.flags))
    command.append(device)
    return command


def build_partition_table_commands(layout: ResolvedLayout, device: str) -> list[list[str]]:
    commands = [build_wipe_command(device)]
    commands.extend(build_new_partition_command(partition, device) for partition in layout)
    return commands


def wipe_partition_table(device: str) -> None:
    """Destroy the partition table on ``device``.

    The caller must have verified that nothing on the device is mounted.

    Raises:
        PartitionTableError: If sgdisk fails
    """
    log.info(f"Wiping partition table on {device}")
    try:
        run_command(build_wipe_command(device))
    except subprocess.CalledProcessError as error:
        raise PartitionTableError(
            f"Failed to wipe partition table: {command_failure_message(error)}",
            error.returncode,
        ) from error


def write_partition_table(layout: ResolvedLayout, device: str) -> None:
    """Wipe ``device`` and create every partition of ``layout`` in physical order.

    Raises:
        PartitionTableError: If a table-writer call fails or a partition node
            does not appear afterwards
    """
    wipe_partition_table(device)

    for partition in layout:
        log.info(
            f"Creating partition {partition.slot_index} ({partition.name}) "
            f"at physical position {partition.position}"
        )
        try:
            run_command(build_new_partition_command(partition, device))
        except subprocess.CalledProcessError as error:
            raise PartitionTableError(
                f"Failed to create partition {partition.slot_index} "
                f"({partition.name}): {command_failure_message(error)}",
                error.returncode,
            ) from error

    settle_device(device)

    expected = [partition_path(device, partition.slot_index) for partition in layout]
    missing = wait_for_partition_nodes(expected)
    if missing:
        raise PartitionTableError(
            f"Partition nodes did not appear: {', '.join(missing)}"
        )
    log.debug(f"All {len(expected)} partition nodes present on {device}")
