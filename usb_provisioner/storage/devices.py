"""Block device helpers built on lsblk and blockdev.

Operations:
    - run_command(): Run an external tool with logging
    - partition_path(): Map a device and table slot to a partition node
    - get_device_size(): Device capacity in bytes
    - get_physical_block_size(): Physical block size in bytes
    - list_mounted_partitions(): Active mountpoints of a device and its partitions
    - unmount_partitions(): Unmount every mounted partition of a device
    - wait_for_partition_nodes(): Wait for the kernel to create partition nodes
"""

from __future__ import annotations

import contextlib
import json
import os
import shutil
import subprocess
import time
from typing import Iterable

from usb_provisioner.exceptions import DeviceError
from usb_provisioner.logging import LoggerFactory

log = LoggerFactory.for_system()
command_log = LoggerFactory.for_command()


def run_command(
    command: list[str],
    check: bool = True,
    log_output: bool = True,
    log_command: bool = True,
) -> subprocess.CompletedProcess:
    """Run a command, capturing text output.

    Raises:
        subprocess.CalledProcessError: If check is set and the command fails
    """
    if log_command:
        log.debug(f"Running command: {' '.join(command)}")
    try:
        result = subprocess.run(command, check=check, text=True, capture_output=True)
    except subprocess.CalledProcessError as error:
        log.error(f"Command failed ({error.returncode}): {' '.join(command)}")
        if error.stdout:
            command_log.debug(f"stdout: {error.stdout.strip()}")
        if error.stderr:
            log.error(f"stderr: {error.stderr.strip()}")
        raise
    if result.stdout and (log_output or result.returncode != 0):
        command_log.trace(f"stdout: {result.stdout.strip()}")
    if result.stderr and (log_output or result.returncode != 0):
        command_log.trace(f"stderr: {result.stderr.strip()}")
    if log_command:
        log.trace(f"Command completed with return code {result.returncode}")
    return result


def command_failure_message(error: subprocess.CalledProcessError) -> str:
    """One-line description of a failed command for error reports."""
    command = error.cmd if isinstance(error.cmd, str) else " ".join(error.cmd)
    detail = (error.stderr or error.stdout or "").strip()
    if detail:
        return f"{command}: {detail.splitlines()[-1]}"
    return command


def partition_path(device: str, slot_index: int) -> str:
    """Partition node for a table slot (/dev/sda + 3 -> /dev/sda3).

    Devices whose name ends in a digit get a ``p`` separator
    (/dev/nvme0n1 + 3 -> /dev/nvme0n1p3, /dev/mmcblk0 + 1 -> /dev/mmcblk0p1).
    """
    separator = "p" if device[-1:].isdigit() else ""
    return f"{device}{separator}{slot_index}"


def _query_int(command: list[str], device: str, what: str) -> int:
    try:
        result = run_command(command, log_output=False)
        return int(result.stdout.strip())
    except (subprocess.CalledProcessError, ValueError) as error:
        raise DeviceError(f"Cannot read {what} of {device}: {error}") from error


def get_device_size(device: str) -> int:
    """Device capacity in bytes.

    Raises:
        DeviceError: If blockdev fails or prints something unexpected
    """
    return _query_int(["blockdev", "--getsize64", device], device, "size")


def get_physical_block_size(device: str) -> int:
    return _query_int(["blockdev", "--getpbsz", device], device, "physical block size")


def _collect_mountpoints(entry: dict) -> Iterable[tuple[str, str]]:
    name = entry.get("path") or f"/dev/{entry.get('name')}"
    mountpoints = entry.get("mountpoints")
    if mountpoints is None:
        mountpoints = [entry.get("mountpoint")]
    for mountpoint in mountpoints:
        if mountpoint:
            yield name, mountpoint
    for child in entry.get("children", []) or []:
        yield from _collect_mountpoints(child)


def list_mounted_partitions(device: str) -> list[tuple[str, str]]:
    """Return (node, mountpoint) pairs for the device and its partitions."""
    try:
        result = run_command(
            ["lsblk", "-J", "-o", "NAME,PATH,MOUNTPOINT", device],
            log_output=False,
        )
        data = json.loads(result.stdout)
    except (subprocess.CalledProcessError, json.JSONDecodeError) as error:
        raise DeviceError(f"Cannot list partitions of {device}: {error}") from error
    mounted: list[tuple[str, str]] = []
    for entry in data.get("blockdevices", []):
        mounted.extend(_collect_mountpoints(entry))
    return mounted


def unmount_partitions(device: str) -> list[str]:
    """Unmount every mounted partition of a device.

    Returns:
        Mountpoints that are still mounted afterwards
    """
    mounted = list_mounted_partitions(device)
    if not mounted:
        log.debug(f"No mounted partitions on {device}")
        return []

    run_command(["sync"], check=False)
    for node, mountpoint in mounted:
        log.info(f"Unmounting {node} from {mountpoint}")
        result = run_command(["umount", mountpoint], check=False)
        if result.returncode != 0:
            log.warning(f"umount {mountpoint} failed, retrying lazily")
            run_command(["umount", "-l", mountpoint], check=False)

    return [mountpoint for _, mountpoint in list_mounted_partitions(device)]


def settle_device(device: str) -> None:
    """Ask the kernel to re-read the partition table and wait for udev."""
    for cmd in (
        ["sync"],
        ["partprobe", device],
        ["udevadm", "settle", "--timeout=10"],
    ):
        if shutil.which(cmd[0]):
            with contextlib.suppress(subprocess.CalledProcessError, OSError):
                run_command(cmd, log_command=False)


def wait_for_partition_nodes(
    paths: Iterable[str], timeout: float = 5.0, interval: float = 0.5
) -> list[str]:
    """Wait for partition nodes to appear.

    Returns:
        Paths that are still missing when the timeout expires
    """
    pending = list(paths)
    deadline = time.monotonic() + timeout
    while pending:
        pending = [path for path in pending if not os.path.exists(path)]  # noqa: PTH110
        if not pending or time.monotonic() >= deadline:
            break
        time.sleep(interval)
    return pending
