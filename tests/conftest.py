"""
Pytest configuration and shared fixtures for usb-provisioner tests.

This module provides common fixtures and utilities used across all test modules.
"""

from pathlib import Path
from typing import Any, Dict
from unittest.mock import Mock

import pytest
from loguru import logger

from usb_provisioner.config.settings import ProvisionConfig
from usb_provisioner.domain.models import Filesystem, PartitionPlan, PartitionSpec
from usb_provisioner.plan.policies import (
    BIOS_BOOT_TYPE,
    EFI_SYSTEM_TYPE,
    LINUX_FILESYSTEM_TYPE,
    MICROSOFT_BASIC_DATA_TYPE,
)
from usb_provisioner.plan.resolver import resolve_layout
from usb_provisioner.plan.sizes import GIB, MIB, REMAINING

DEVICE_CAPACITY = 16 * GIB


# ==============================================================================
# Logging
# ==============================================================================


@pytest.fixture(autouse=True)
def quiet_logger():
    """Drop the default stderr sink so test output stays readable."""
    logger.remove()
    yield
    logger.remove()


@pytest.fixture
def captured_logs():
    """
    Collect loguru records emitted during a test.

    Returns:
        List that receives every record (level DEBUG and up)
    """
    records: list = []
    logger.add(lambda message: records.append(message.record), level="DEBUG")
    return records


# ==============================================================================
# Partition plans
# ==============================================================================


@pytest.fixture
def sample_plan_text() -> str:
    """Plan text for the default layout with a 1050MiB root."""
    return (
        "# slot name type filesystem size [flags]\n"
        f"2 BIOS\\ boot {BIOS_BOOT_TYPE} none 1MiB\n"
        f"3 EFI {EFI_SYSTEM_TYPE} fat32 300MiB\n"
        f"4 Live\\ OS {LINUX_FILESYSTEM_TYPE} ext4 1050MiB\n"
        f"5 casper-rw {LINUX_FILESYSTEM_TYPE} ext4 4GiB\n"
        "\n"
        f"1 Storage {MICROSOFT_BASIC_DATA_TYPE} ntfs 0\n"
    )


@pytest.fixture
def sample_plan() -> PartitionPlan:
    """PartitionPlan equivalent to ``sample_plan_text``."""
    return PartitionPlan(
        (
            PartitionSpec(2, "BIOS boot", BIOS_BOOT_TYPE, Filesystem.NONE, 1 * MIB),
            PartitionSpec(3, "EFI", EFI_SYSTEM_TYPE, Filesystem.FAT32, 300 * MIB),
            PartitionSpec(4, "Live OS", LINUX_FILESYSTEM_TYPE, Filesystem.EXT4, 1050 * MIB),
            PartitionSpec(5, "casper-rw", LINUX_FILESYSTEM_TYPE, Filesystem.EXT4, 4 * GIB),
            PartitionSpec(1, "Storage", MICROSOFT_BASIC_DATA_TYPE, Filesystem.NTFS, REMAINING),
        )
    )


@pytest.fixture
def sample_layout(sample_plan):
    """``sample_plan`` resolved against a 16GiB device."""
    return resolve_layout(sample_plan, DEVICE_CAPACITY)


# ==============================================================================
# Subprocess mocking
# ==============================================================================


@pytest.fixture
def completed_process():
    """
    Factory for run_command results.

    Example:
        mock_run.return_value = completed_process(stdout="512\\n")
    """

    def make(returncode: int = 0, stdout: str = "", stderr: str = "") -> Mock:
        return Mock(returncode=returncode, stdout=stdout, stderr=stderr)

    return make


@pytest.fixture
def mock_lsblk_mounted() -> str:
    """lsblk JSON for a device with one mounted partition."""
    return (
        '{"blockdevices": [{"name": "sdb", "path": "/dev/sdb", "mountpoint": null,'
        ' "children": [{"name": "sdb1", "path": "/dev/sdb1",'
        ' "mountpoint": "/media/usb"}]}]}'
    )


@pytest.fixture
def mock_lsblk_unmounted() -> str:
    return (
        '{"blockdevices": [{"name": "sdb", "path": "/dev/sdb", "mountpoint": null,'
        ' "children": [{"name": "sdb1", "path": "/dev/sdb1", "mountpoint": null}]}]}'
    )


# ==============================================================================
# Configuration
# ==============================================================================


@pytest.fixture
def image_file(tmp_path) -> Path:
    """A 1000MiB sparse file standing in for an OS image."""
    path = tmp_path / "live.iso"
    with path.open("wb") as handle:
        handle.truncate(1000 * MIB)
    return path


@pytest.fixture
def base_config(image_file) -> ProvisionConfig:
    return ProvisionConfig(device="/dev/sdb", image=str(image_file))


@pytest.fixture
def sample_settings_data() -> Dict[str, Any]:
    return {
        "storage": False,
        "persistence_size": "2GiB",
        "console_resolution": "800x600",
    }
