"""Safety checks run before anything is written to the device.

All validation functions raise specific exceptions rather than returning
boolean values, making error handling more explicit.

Example:
    from usb_provisioner.storage.validation import ensure_device_ready

    ensure_device_ready("/dev/sdb", force_unmount=False)
    # Safe to wipe the partition table
"""

from __future__ import annotations

import os
import stat

from usb_provisioner.exceptions import (
    DeviceNotFoundError,
    DeviceStateError,
    UnmountFailedError,
)
from usb_provisioner.logging import LoggerFactory

from .devices import list_mounted_partitions, unmount_partitions

log = LoggerFactory.for_system()

_FORBIDDEN_CHARS = (";", "&", "|", "$", "`", "\n", "\r", " ")


def validate_device_path(device: str) -> None:
    """Validate that a device path names an existing block device.

    Raises:
        ValueError: If the path is not under /dev/ or contains shell metacharacters
        DeviceNotFoundError: If the path is not a block device
    """
    if not isinstance(device, str) or not device.startswith("/dev/"):
        raise ValueError(f"Invalid device path: {device}")
    if any(char in device for char in _FORBIDDEN_CHARS):
        raise ValueError(f"Device path contains invalid characters: {device}")
    try:
        mode = os.stat(device).st_mode
    except FileNotFoundError:
        raise DeviceNotFoundError(device) from None
    if not stat.S_ISBLK(mode):
        raise DeviceNotFoundError(device)


def validate_image_path(image: str) -> None:
    """Validate that the OS image exists and is a regular file.

    Raises:
        DeviceNotFoundError: If the image is missing
    """
    if not os.path.isfile(image):
        raise DeviceNotFoundError(image)


def validate_device_unmounted(device: str) -> None:
    """Validate that no partition of the device is mounted.

    Raises:
        DeviceStateError: If the device or any partition is mounted
    """
    mounted = list_mounted_partitions(device)
    if mounted:
        raise DeviceStateError(device, [mountpoint for _, mountpoint in mounted])


def ensure_device_ready(device: str, *, force_unmount: bool = False) -> None:
    """Make sure the device has no mounted partitions before it is wiped.

    Args:
        device: Device path (e.g., /dev/sdb)
        force_unmount: Unmount mounted partitions instead of failing

    Raises:
        DeviceStateError: If partitions are mounted and force_unmount is unset
        UnmountFailedError: If forced unmounting leaves a mountpoint active
    """
    if not force_unmount:
        validate_device_unmounted(device)
        return

    still_mounted = unmount_partitions(device)
    if still_mounted:
        raise UnmountFailedError(", ".join(still_mounted), f"{device} is still in use")
    log.debug(f"{device} has no mounted partitions")
