"""Boot configuration rewrite and grub installation.

The boot partition carries the image's ``boot/grub/grub.cfg``. Before grub is
installed the config gets two directives prepended, pointing grub at the root
partition and fixing the console resolution, and, when persistence is on,
every kernel command line gets the persistence flag.

The root reference is ``(hd0,N)`` with N the root partition's physical
creation position.
"""

from __future__ import annotations

import subprocess
from pathlib import Path

from usb_provisioner.exceptions import BootloaderInstallError, MountError
from usb_provisioner.logging import LoggerFactory

from .devices import command_failure_message, run_command
from .mount import scoped_mount

log = LoggerFactory.for_bootloader()

GRUB_CONFIG_PATH = Path("boot") / "grub" / "grub.cfg"
PERSISTENCE_FLAG = "persistent"
KERNEL_COMMANDS = ("linux", "linuxefi", "linux16")
SECURE_BOOT_OPTION = "--uefi-secure-boot"


def build_config_header(root_position: int, console_resolution: str) -> list[str]:
    return [
        f"set root=(hd0,{root_position})",
        f"set gfxmode={console_resolution}",
    ]


def _is_kernel_line(line: str) -> bool:
    words = line.split()
    return bool(words) and words[0] in KERNEL_COMMANDS


def add_persistence_flag(line: str) -> str:
    """Append the persistence flag to a kernel command line, once."""
    if not _is_kernel_line(line) or PERSISTENCE_FLAG in line.split():
        return line
    return f"{line.rstrip()} {PERSISTENCE_FLAG}"


def rewrite_grub_config(
    text: str,
    *,
    root_position: int,
    console_resolution: str,
    persistence: bool,
) -> str:
    """Return the rewritten grub.cfg content."""
    lines = text.splitlines()
    if persistence:
        lines = [add_persistence_flag(line) for line in lines]
    header = build_config_header(root_position, console_resolution)
    return "\n".join(header + lines) + "\n"


def supports_secure_boot() -> bool:
    """Whether the installed grub-install knows --uefi-secure-boot."""
    try:
        result = run_command(["grub-install", "--help"], check=False, log_output=False)
    except OSError:
        return False
    return SECURE_BOOT_OPTION in (result.stdout or "")


def build_grub_install_command(
    target: str, boot_mount: Path, *, secure_boot: bool
) -> list[str]:
    command = [
        "grub-install",
        "--removable",
        f"--boot-directory={boot_mount / 'boot'}",
        f"--efi-directory={boot_mount}",
    ]
    if secure_boot:
        command.append(SECURE_BOOT_OPTION)
    command.append(target)
    return command


def _update_config(
    config_path: Path, *, root_position: int, console_resolution: str, persistence: bool
) -> None:
    if not config_path.is_file():
        raise BootloaderInstallError(f"Boot configuration not found: {config_path}")
    try:
        original = config_path.read_text(encoding="utf-8")
        config_path.write_text(
            rewrite_grub_config(
                original,
                root_position=root_position,
                console_resolution=console_resolution,
                persistence=persistence,
            ),
            encoding="utf-8",
        )
    except OSError as error:
        raise BootloaderInstallError(f"Failed to rewrite {config_path}: {error}") from error
    log.info(
        f"Rewrote {config_path.name}: root=(hd0,{root_position}), "
        f"gfxmode={console_resolution}, persistence={'on' if persistence else 'off'}"
    )


def install_bootloader(
    grub_target: str,
    boot_node: str,
    *,
    root_position: int,
    console_resolution: str,
    persistence: bool,
) -> None:
    """Rewrite the boot configuration and install grub.

    Args:
        grub_target: BIOS boot partition node handed to grub-install
        boot_node: Boot (EFI system) partition node
        root_position: Physical creation position of the root partition
        console_resolution: Value for ``gfxmode`` (e.g. "1024x768")
        persistence: Append the persistence flag to kernel command lines

    Raises:
        BootloaderInstallError: If any step fails
    """
    try:
        with scoped_mount(boot_node, label="boot") as boot_mount:
            _update_config(
                boot_mount / GRUB_CONFIG_PATH,
                root_position=root_position,
                console_resolution=console_resolution,
                persistence=persistence,
            )

            secure_boot = supports_secure_boot()
            if not secure_boot:
                log.warning("grub-install has no secure boot support, installing without it")
            command = build_grub_install_command(
                grub_target, boot_mount, secure_boot=secure_boot
            )
            try:
                run_command(command)
            except subprocess.CalledProcessError as error:
                raise BootloaderInstallError(
                    f"grub-install failed: {command_failure_message(error)}",
                    error.returncode,
                ) from error
    except MountError as error:
        raise BootloaderInstallError(str(error)) from error
    log.success(f"Installed bootloader to {grub_target}")
