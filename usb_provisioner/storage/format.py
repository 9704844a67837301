"""Filesystem creation for a freshly written partition table.

Partitions are formatted in table-slot order, each addressed through its
partition node (``partition_path(device, slot)``).

Supported Filesystems:
    none:            left unformatted (e.g. the BIOS boot partition)
    fat12/16/32:     mkfs.fat with the FAT width and the device's physical block size
    ntfs:            mkfs.ntfs quick format, labelled, geometry left to the kernel
    ext2/3/4:        mkfs.ext* quiet, labelled

Any other filesystem aborts the run with UnsupportedFilesystemError; partitions
formatted so far are left as they are.
"""

from __future__ import annotations

import subprocess
from typing import Callable, Optional

from usb_provisioner.domain.models import Filesystem, ResolvedLayout, ResolvedPartition
from usb_provisioner.exceptions import FilesystemCreationError, UnsupportedFilesystemError
from usb_provisioner.logging import LoggerFactory

from .devices import command_failure_message, partition_path, run_command

log = LoggerFactory.for_table()


def _fat_command(partition: ResolvedPartition, node: str, block_size: int) -> list[str]:
    return [
        "mkfs.fat",
        "-F",
        str(partition.filesystem.fat_bits),
        "-S",
        str(block_size),
        node,
    ]


def _ntfs_command(partition: ResolvedPartition, node: str, block_size: int) -> list[str]:
    # Zero partition start, heads and sectors per track: let the kernel decide
    return [
        "mkfs.ntfs",
        "--quick",
        "--label",
        partition.name,
        "-p",
        "0",
        "-H",
        "0",
        "-S",
        "0",
        node,
    ]


def _ext_command(partition: ResolvedPartition, node: str, block_size: int) -> list[str]:
    return [f"mkfs.{partition.filesystem.value}", "-q", "-F", "-L", partition.name, node]


_FORMATTERS: dict[Filesystem, Callable[[ResolvedPartition, str, int], list[str]]] = {
    Filesystem.FAT12: _fat_command,
    Filesystem.FAT16: _fat_command,
    Filesystem.FAT32: _fat_command,
    Filesystem.NTFS: _ntfs_command,
    Filesystem.EXT2: _ext_command,
    Filesystem.EXT3: _ext_command,
    Filesystem.EXT4: _ext_command,
}


def build_mkfs_command(
    partition: ResolvedPartition, node: str, block_size: int
) -> Optional[list[str]]:
    """Formatter argv for a partition, or None for ``Filesystem.NONE``.

    Raises:
        UnsupportedFilesystemError: If no formatter handles the filesystem
    """
    if partition.filesystem is Filesystem.NONE:
        return None
    formatter = _FORMATTERS.get(partition.filesystem)
    if formatter is None:
        raise UnsupportedFilesystemError(str(partition.filesystem.value))
    return formatter(partition, node, block_size)


def create_filesystems(layout: ResolvedLayout, device: str, block_size: int) -> None:
    """Create the requested filesystem on every partition, in slot order.

    Args:
        layout: Resolved layout whose table has already been written
        device: Device path (e.g., /dev/sdb)
        block_size: Physical block size of the device, used for FAT

    Raises:
        UnsupportedFilesystemError: For a filesystem without a formatter
        FilesystemCreationError: If a formatter fails
    """
    for partition in layout.by_slot():
        node = partition_path(device, partition.slot_index)
        command = build_mkfs_command(partition, node, block_size)
        if command is None:
            log.debug(f"Leaving {node} ({partition.name}) unformatted")
            continue

        log.info(f"Formatting {node} as {partition.filesystem.value} ({partition.name})")
        try:
            run_command(command)
        except subprocess.CalledProcessError as error:
            raise FilesystemCreationError(
                f"Failed to format {node} as {partition.filesystem.value}: "
                f"{command_failure_message(error)}",
                error.returncode,
            ) from error
