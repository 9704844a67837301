"""Builtin layout policies and well-known GPT partition types.

A policy is a fixed list of partition roles, each with a table slot, in
physical creation order. The default layout gives the Windows-readable storage
partition table slot 1 but lays it out after every other partition, where it
absorbs the leftover capacity.

Policies:
    default:        BIOS boot, EFI, root, persistence, storage
    no-storage:     BIOS boot, EFI, root, persistence (persistence takes the rest)
    no-persistence: BIOS boot, EFI, root, storage (storage takes the rest)

The policy is selected from two independent inputs, whether a storage
partition is wanted and whether the persistence size is zero. Asking for
neither storage nor persistence leaves nowhere for the leftover space to go
and is rejected.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from usb_provisioner.domain.models import Filesystem, PartitionPlan, PartitionSpec
from usb_provisioner.exceptions import InvalidPlanError
from usb_provisioner.logging import LoggerFactory
from usb_provisioner.plan.sizes import GIB, MIB, REMAINING, Size, floor_to_mib

log = LoggerFactory.for_plan()

# GPT partition type GUIDs
BIOS_BOOT_TYPE = "21686148-6449-6E6F-744E-656564454649"
EFI_SYSTEM_TYPE = "C12A7328-F81F-11D2-BA4B-00A0C93EC93B"
LINUX_FILESYSTEM_TYPE = "0FC63DAF-8483-4772-8E79-3D69D8477DE4"
MICROSOFT_BASIC_DATA_TYPE = "EBD0A0A2-B9E5-4433-87C0-68B6B72699C7"

DEFAULT_BIOS_BOOT_SIZE = 1 * MIB
DEFAULT_EFI_SIZE = 300 * MIB
DEFAULT_PERSISTENCE_SIZE = 4 * GIB
DEFAULT_PERSISTENCE_LABEL = "casper-rw"

# Root gets this much more than the image to absorb filesystem metadata
ROOT_SIZE_FACTOR = 1.05


class LayoutPolicy(Enum):
    DEFAULT = "default"
    NO_STORAGE = "no-storage"
    NO_PERSISTENCE = "no-persistence"


class PartitionRole(Enum):
    BIOS_BOOT = "bios-boot"
    EFI = "efi"
    ROOT = "root"
    PERSISTENCE = "persistence"
    STORAGE = "storage"


@dataclass(frozen=True)
class PolicyEntry:
    role: PartitionRole
    slot_index: int
    takes_remaining: bool = False


# Physical creation order per policy
POLICY_ENTRIES: dict[LayoutPolicy, tuple[PolicyEntry, ...]] = {
    LayoutPolicy.DEFAULT: (
        PolicyEntry(PartitionRole.BIOS_BOOT, 2),
        PolicyEntry(PartitionRole.EFI, 3),
        PolicyEntry(PartitionRole.ROOT, 4),
        PolicyEntry(PartitionRole.PERSISTENCE, 5),
        PolicyEntry(PartitionRole.STORAGE, 1, takes_remaining=True),
    ),
    LayoutPolicy.NO_STORAGE: (
        PolicyEntry(PartitionRole.BIOS_BOOT, 1),
        PolicyEntry(PartitionRole.EFI, 2),
        PolicyEntry(PartitionRole.ROOT, 3),
        PolicyEntry(PartitionRole.PERSISTENCE, 4, takes_remaining=True),
    ),
    LayoutPolicy.NO_PERSISTENCE: (
        PolicyEntry(PartitionRole.BIOS_BOOT, 2),
        PolicyEntry(PartitionRole.EFI, 3),
        PolicyEntry(PartitionRole.ROOT, 4),
        PolicyEntry(PartitionRole.STORAGE, 1, takes_remaining=True),
    ),
}


def select_policy(storage_requested: bool, persistence_size: int) -> LayoutPolicy:
    """Pick the builtin policy for the storage and persistence inputs.

    Raises:
        InvalidPlanError: If neither storage nor persistence is wanted
    """
    persistence_is_zero = persistence_size == 0
    if not storage_requested and persistence_is_zero:
        raise InvalidPlanError(
            "no storage partition and zero persistence size leave the remaining "
            "capacity unassigned"
        )
    if not storage_requested:
        return LayoutPolicy.NO_STORAGE
    if persistence_is_zero:
        return LayoutPolicy.NO_PERSISTENCE
    return LayoutPolicy.DEFAULT


def compute_root_size(image_size: int, override: Optional[int] = None) -> int:
    """Root partition size: the override, or 1.05x the image in whole MiB."""
    if override is not None:
        return override
    return floor_to_mib(int(image_size * ROOT_SIZE_FACTOR))


def _spec_for_role(
    entry: PolicyEntry,
    *,
    root_size: int,
    persistence_size: int,
    persistence_label: str,
) -> PartitionSpec:
    size: Size
    role = entry.role
    if role is PartitionRole.BIOS_BOOT:
        return PartitionSpec(
            entry.slot_index, "BIOS boot", BIOS_BOOT_TYPE, Filesystem.NONE,
            DEFAULT_BIOS_BOOT_SIZE,
        )
    if role is PartitionRole.EFI:
        return PartitionSpec(
            entry.slot_index, "EFI", EFI_SYSTEM_TYPE, Filesystem.FAT32, DEFAULT_EFI_SIZE
        )
    if role is PartitionRole.ROOT:
        return PartitionSpec(
            entry.slot_index, "Live OS", LINUX_FILESYSTEM_TYPE, Filesystem.EXT4, root_size
        )
    if role is PartitionRole.PERSISTENCE:
        size = REMAINING if entry.takes_remaining else persistence_size
        return PartitionSpec(
            entry.slot_index, persistence_label, LINUX_FILESYSTEM_TYPE,
            Filesystem.EXT4, size,
        )
    return PartitionSpec(
        entry.slot_index, "Storage", MICROSOFT_BASIC_DATA_TYPE, Filesystem.NTFS,
        REMAINING,
    )


def build_policy_plan(
    policy: LayoutPolicy,
    *,
    root_size: int,
    persistence_size: int = DEFAULT_PERSISTENCE_SIZE,
    persistence_label: str = DEFAULT_PERSISTENCE_LABEL,
) -> PartitionPlan:
    """Build the PartitionPlan for a builtin policy."""
    entries = tuple(
        _spec_for_role(
            entry,
            root_size=root_size,
            persistence_size=persistence_size,
            persistence_label=persistence_label,
        )
        for entry in POLICY_ENTRIES[policy]
    )
    log.debug(f"Built {policy.value} plan with {len(entries)} partitions")
    return PartitionPlan(entries)
