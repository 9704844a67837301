"""Copy the OS image payload onto the new partitions.

The image is loop-mounted read-only next to the boot and root partitions.
Its whole content goes to root; its ``boot`` and ``EFI`` trees also go to the
boot partition so firmware and grub find them there. All three mounts are
released on every exit path. A failed copy is not repaired; the pipeline is
expected to be re-run from the partition table.
"""

from __future__ import annotations

import subprocess
from contextlib import ExitStack
from pathlib import Path
from typing import Union

from usb_provisioner.exceptions import MountError, StagingError
from usb_provisioner.logging import LoggerFactory

from .devices import command_failure_message, run_command
from .mount import scoped_mount

log = LoggerFactory.for_staging()

BOOT_PAYLOAD_DIRS = ("boot", "EFI")


def build_copy_command(source: Union[str, Path], destination: Path) -> list[str]:
    # -a keeps ownership, modes, timestamps and links
    return ["cp", "-a", str(source), str(destination)]


def _copy(source: Union[str, Path], destination: Path) -> None:
    log.info(f"Copying {source} -> {destination}")
    try:
        run_command(build_copy_command(source, destination), log_output=False)
    except subprocess.CalledProcessError as error:
        raise StagingError(
            f"Copy of {source} failed: {command_failure_message(error)}",
            error.returncode,
        ) from error


def stage_content(boot_node: str, root_node: str, image: str) -> None:
    """Copy the image into root and its boot/EFI trees into the boot partition.

    Args:
        boot_node: Boot (EFI system) partition node
        root_node: Root partition node
        image: Path to the OS image file

    Raises:
        StagingError: If any mount, copy or unmount fails
    """
    try:
        with ExitStack() as stack:
            boot_mount = stack.enter_context(scoped_mount(boot_node, label="boot"))
            root_mount = stack.enter_context(scoped_mount(root_node, label="root"))
            image_mount = stack.enter_context(
                scoped_mount(image, label="image", read_only=True, loop=True)
            )

            # Trailing "/." copies the directory content, hidden files included
            _copy(f"{image_mount}/.", root_mount)
            for name in BOOT_PAYLOAD_DIRS:
                source = image_mount / name
                if not source.is_dir():
                    raise StagingError(f"Image has no {name}/ directory")
                _copy(source, boot_mount)

            run_command(["sync"], check=False)
    except MountError as error:
        raise StagingError(str(error)) from error
    log.success(f"Staged {image} onto {root_node} and {boot_node}")
