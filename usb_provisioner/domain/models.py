"""Domain model for partition plans and resolved layouts.

A plan keeps two independent orderings for its partitions. The sequence order
of ``PartitionPlan.entries`` is the physical creation order, the order extents
are laid out on the device. ``PartitionSpec.slot_index`` is the logical slot in
the partition table. Neither is ever inferred from the other.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Optional

from usb_provisioner.plan.sizes import Size, is_remaining

MAX_GPT_ATTRIBUTE_BIT = 63


# ==============================================================================
# Partition Plan Domain
# ==============================================================================


class Filesystem(Enum):
    """Filesystems the provisioner can create."""

    NONE = "none"
    FAT12 = "fat12"
    FAT16 = "fat16"
    FAT32 = "fat32"
    NTFS = "ntfs"
    EXT2 = "ext2"
    EXT3 = "ext3"
    EXT4 = "ext4"

    @property
    def is_fat(self) -> bool:
        return self.value.startswith("fat")

    @property
    def fat_bits(self) -> int:
        """FAT bit-width taken from the numeric suffix (fat32 -> 32)."""
        if not self.is_fat:
            raise ValueError(f"{self.value} is not a FAT filesystem")
        return int(self.value[3:])

    @classmethod
    def from_token(cls, token: str) -> "Filesystem":
        try:
            return cls(token)
        except ValueError:
            choices = "|".join(member.value for member in cls)
            raise ValueError(f"expected one of {choices}, got {token!r}") from None


@dataclass(frozen=True)
class PartitionSpec:
    """One partition plan entry."""

    slot_index: int  # 1-based position in the partition table
    name: str  # Partition name, also the volume label for ntfs/ext*
    type_id: str  # GPT partition type GUID (or sgdisk type code)
    filesystem: Filesystem
    size: Size  # Byte count or REMAINING
    flags: frozenset[int] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if self.slot_index < 1:
            raise ValueError(f"slot index must be positive, got {self.slot_index}")
        for bit in self.flags:
            if not 0 <= bit <= MAX_GPT_ATTRIBUTE_BIT:
                raise ValueError(
                    f"attribute bit must be in [0,{MAX_GPT_ATTRIBUTE_BIT}], got {bit}"
                )

    @property
    def takes_remaining(self) -> bool:
        return is_remaining(self.size)


@dataclass(frozen=True)
class PartitionPlan:
    """Partition entries in physical creation order (input appearance order)."""

    entries: tuple[PartitionSpec, ...]

    def __iter__(self) -> Iterator[PartitionSpec]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def slot_indices(self) -> list[int]:
        return [entry.slot_index for entry in self.entries]

    def by_slot(self) -> list[PartitionSpec]:
        return sorted(self.entries, key=lambda entry: entry.slot_index)


# ==============================================================================
# Resolved Layout Domain
# ==============================================================================


@dataclass(frozen=True)
class ResolvedPartition:
    """A plan entry bound to a concrete size and physical position."""

    spec: PartitionSpec
    size_bytes: int
    position: int  # 1-based physical creation position

    @property
    def slot_index(self) -> int:
        return self.spec.slot_index

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def type_id(self) -> str:
        return self.spec.type_id

    @property
    def filesystem(self) -> Filesystem:
        return self.spec.filesystem

    @property
    def flags(self) -> frozenset[int]:
        return self.spec.flags

    @property
    def takes_remaining(self) -> bool:
        return self.spec.takes_remaining


@dataclass(frozen=True)
class ResolvedLayout:
    """Read-only result of resolving a plan against a device capacity.

    ``partitions`` is in physical creation order. A resize needs a fresh
    resolution; nothing here is ever mutated.
    """

    partitions: tuple[ResolvedPartition, ...]
    device_capacity: int
    reserved_overhead: int

    def __iter__(self) -> Iterator[ResolvedPartition]:
        return iter(self.partitions)

    def __len__(self) -> int:
        return len(self.partitions)

    @property
    def total_size(self) -> int:
        return sum(partition.size_bytes for partition in self.partitions)

    @property
    def unallocated(self) -> int:
        return self.device_capacity - self.reserved_overhead - self.total_size

    def by_slot(self) -> list[ResolvedPartition]:
        return sorted(self.partitions, key=lambda partition: partition.slot_index)

    def get_slot(self, slot_index: int) -> ResolvedPartition:
        for partition in self.partitions:
            if partition.slot_index == slot_index:
                return partition
        raise KeyError(slot_index)

    def first_of_type(self, type_id: str) -> Optional[ResolvedPartition]:
        wanted = type_id.upper()
        for partition in self.partitions:
            if partition.type_id.upper() == wanted:
                return partition
        return None

    def to_plan(self) -> PartitionPlan:
        """Plan with every size replaced by its resolved byte count."""
        return PartitionPlan(
            tuple(
                PartitionSpec(
                    slot_index=partition.slot_index,
                    name=partition.name,
                    type_id=partition.type_id,
                    filesystem=partition.filesystem,
                    size=partition.size_bytes,
                    flags=partition.flags,
                )
                for partition in self.partitions
            )
        )


@dataclass(frozen=True)
class PartitionRoles:
    """Partitions the staging and bootloader stages operate on."""

    grub_target: ResolvedPartition  # BIOS boot partition
    boot: ResolvedPartition  # EFI system partition, holds boot/ and EFI/
    root: ResolvedPartition  # Receives the OS image payload
