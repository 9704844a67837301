"""Scoped mounts with guaranteed release.

Every mount the pipeline needs lives only for the stage that uses it:
``scoped_mount`` creates a private mount point, mounts the source, yields the
mount point and, on every exit path, flushes, unmounts and removes the
directory again.

Example:
    with scoped_mount("/srv/live.iso", label="image", read_only=True, loop=True) as image:
        ...
"""

from __future__ import annotations

import subprocess
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from usb_provisioner.exceptions import MountError, MountFailedError, UnmountFailedError
from usb_provisioner.logging import LoggerFactory

from .devices import run_command

log = LoggerFactory.for_system()

MOUNT_PREFIX = "usb-provisioner-"


def build_mount_command(
    source: str, mountpoint: Path, *, read_only: bool = False, loop: bool = False
) -> list[str]:
    options = []
    if read_only:
        options.append("ro")
    if loop:
        options.append("loop")
    command = ["mount"]
    if options:
        command.extend(["-o", ",".join(options)])
    command.extend([source, str(mountpoint)])
    return command


def mount_source(
    source: str, mountpoint: Path, *, read_only: bool = False, loop: bool = False
) -> None:
    """Mount a partition node or image file.

    Raises:
        MountFailedError: If the mount command fails
    """
    command = build_mount_command(source, mountpoint, read_only=read_only, loop=loop)
    try:
        run_command(command)
    except subprocess.CalledProcessError as e:
        raise MountFailedError(source, str(mountpoint), (e.stderr or "").strip()) from e


def release_mount(mountpoint: Path) -> None:
    """Flush, unmount and remove a mount point.

    Raises:
        UnmountFailedError: If umount fails or the directory cannot be removed
    """
    run_command(["sync"], check=False)
    try:
        run_command(["umount", str(mountpoint)])
    except subprocess.CalledProcessError as e:
        raise UnmountFailedError(str(mountpoint), (e.stderr or "").strip()) from e
    try:
        mountpoint.rmdir()
    except OSError as e:
        raise UnmountFailedError(str(mountpoint), str(e)) from e
    log.debug(f"Released {mountpoint}")


@contextmanager
def scoped_mount(
    source: str,
    *,
    label: str,
    read_only: bool = False,
    loop: bool = False,
) -> Iterator[Path]:
    """Mount ``source`` on a fresh temporary directory for the block's duration.

    Args:
        source: Partition node or image file
        label: Short name used in the mount point directory name
        read_only: Mount read-only
        loop: Mount through a loop device (for image files)

    Yields:
        The mount point

    Raises:
        MountFailedError: If the mount fails (the mount point is removed)
        UnmountFailedError: If releasing the mount fails after a clean exit
    """
    mountpoint = Path(tempfile.mkdtemp(prefix=f"{MOUNT_PREFIX}{label}-"))
    try:
        mount_source(source, mountpoint, read_only=read_only, loop=loop)
    except MountError:
        mountpoint.rmdir()
        raise
    log.debug(f"Mounted {source} at {mountpoint}")

    try:
        yield mountpoint
    except BaseException:
        # Release anyway, but keep the original error as the one raised
        try:
            release_mount(mountpoint)
        except MountError as cleanup_error:
            log.error(f"Cleanup of {mountpoint} failed: {cleanup_error}")
        raise
    release_mount(mountpoint)
