"""Exceptions raised while planning and provisioning a device.

Exception Hierarchy:
    ProvisionerError (base)
        ├── PlanError
        │   ├── PlanFileError
        │   ├── MalformedPlanError
        │   └── InvalidPlanError
        ├── DeviceError
        │   ├── DeviceNotFoundError
        │   └── DeviceStateError
        ├── MountError
        │   ├── MountFailedError
        │   └── UnmountFailedError
        └── ProvisioningError
            ├── PartitionTableError
            ├── FilesystemCreationError
            ├── UnsupportedFilesystemError
            ├── StagingError
            └── BootloaderInstallError

Plan and device errors are raised before anything is written to the device.
ProvisioningError subclasses are raised mid-pipeline; nothing already written
is rolled back, the recovery path is a fresh run.

Usage:
    from usb_provisioner.exceptions import InvalidPlanError

    if len(remaining) > 1:
        raise InvalidPlanError("more than one partition requests remaining space")
"""

from __future__ import annotations

from typing import Optional


class ProvisionerError(Exception):
    """Base exception for all provisioner errors."""


class PlanError(ProvisionerError):
    """Base exception for partition plan errors."""


class PlanFileError(PlanError):
    """The plan file could not be read."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot read partition plan {path}: {reason}")


class MalformedPlanError(PlanError):
    """A plan line could not be parsed."""

    def __init__(self, line_number: int, field: str, reason: str):
        self.line_number = line_number
        self.field = field
        self.reason = reason
        super().__init__(f"Line {line_number}: invalid {field}: {reason}")


class InvalidPlanError(PlanError):
    """The plan as a whole violates a layout invariant."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid partition plan: {reason}")


class DeviceError(ProvisionerError):
    """Base exception for target device errors."""


class DeviceNotFoundError(DeviceError):
    """Device or image path does not exist."""

    def __init__(self, device: str):
        self.device = device
        super().__init__(f"Device not found: {device}")


class DeviceStateError(DeviceError):
    """Device has mounted partitions and force unmount was not requested."""

    def __init__(self, device: str, mountpoints: list[str]):
        self.device = device
        self.mountpoints = mountpoints
        mounts_str = ", ".join(mountpoints)
        super().__init__(
            f"Device {device} has mounted partitions: {mounts_str}. "
            f"Unmount them first or pass --force-unmount"
        )


class MountError(ProvisionerError):
    """Base exception for mount-related errors."""


class MountFailedError(MountError):
    """A mount command failed."""

    def __init__(self, source: str, mountpoint: str, reason: str = ""):
        self.source = source
        self.mountpoint = mountpoint
        self.reason = reason
        msg = f"Failed to mount {source} at {mountpoint}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class UnmountFailedError(MountError):
    """A mountpoint could not be released."""

    def __init__(self, mountpoint: str, reason: str = ""):
        self.mountpoint = mountpoint
        self.reason = reason
        msg = f"Failed to unmount {mountpoint}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ProvisioningError(ProvisionerError):
    """A pipeline stage failed after the device was modified."""

    def __init__(self, stage: str, message: str, returncode: Optional[int] = None):
        self.stage = stage
        self.returncode = returncode
        msg = f"[{stage}] {message}"
        if returncode is not None:
            msg += f" (exit status {returncode})"
        super().__init__(msg)


class PartitionTableError(ProvisioningError):
    """Wiping or writing the partition table failed."""

    def __init__(self, message: str, returncode: Optional[int] = None):
        super().__init__("partition-table", message, returncode)


class FilesystemCreationError(ProvisioningError):
    """A filesystem formatter failed."""

    def __init__(self, message: str, returncode: Optional[int] = None):
        super().__init__("filesystems", message, returncode)


class UnsupportedFilesystemError(ProvisioningError):
    """No formatter is known for the requested filesystem."""

    def __init__(self, filesystem: str):
        self.filesystem = filesystem
        super().__init__("filesystems", f"Unsupported filesystem: {filesystem}")


class StagingError(ProvisioningError):
    """Mounting or copying the OS payload failed."""

    def __init__(self, message: str, returncode: Optional[int] = None):
        super().__init__("staging", message, returncode)


class BootloaderInstallError(ProvisioningError):
    """Rewriting the boot configuration or installing the bootloader failed."""

    def __init__(self, message: str, returncode: Optional[int] = None):
        super().__init__("bootloader", message, returncode)
