"""Resolve a PartitionPlan against a device capacity.

Fixed sizes are taken verbatim. The single REMAINING entry, if any, receives
``capacity - sum(fixed sizes) - RESERVED_OVERHEAD``. With exactly one REMAINING
entry the resolved sizes therefore account for the whole usable capacity.

Physical creation order is the plan's appearance order; each resolved
partition also carries its table slot and its 1-based physical position.
"""

from __future__ import annotations

from usb_provisioner.domain.models import (
    Filesystem,
    PartitionPlan,
    PartitionRoles,
    ResolvedLayout,
    ResolvedPartition,
)
from usb_provisioner.exceptions import InvalidPlanError
from usb_provisioner.logging import LoggerFactory
from usb_provisioner.plan.policies import (
    BIOS_BOOT_TYPE,
    EFI_SYSTEM_TYPE,
    LINUX_FILESYSTEM_TYPE,
)
from usb_provisioner.plan.sizes import MIB, human_size

log = LoggerFactory.for_plan()

# 1 MiB leading alignment plus primary GPT, 1 MiB for the backup GPT and slack
RESERVED_OVERHEAD = 2 * MIB


def validate_plan(plan: PartitionPlan) -> None:
    """Check the invariants that need the whole plan.

    Raises:
        InvalidPlanError: If the plan is empty, slot indices are not a
            permutation of 1..N, or more than one entry takes REMAINING
    """
    if not plan.entries:
        raise InvalidPlanError("plan contains no partitions")

    slots = plan.slot_indices
    expected = set(range(1, len(slots) + 1))
    if len(set(slots)) != len(slots):
        duplicates = sorted({slot for slot in slots if slots.count(slot) > 1})
        raise InvalidPlanError(f"duplicate slot indices: {duplicates}")
    if set(slots) != expected:
        missing = sorted(expected - set(slots))
        raise InvalidPlanError(
            f"slot indices {sorted(slots)} do not form 1..{len(slots)} "
            f"(missing {missing})"
        )

    remaining = [entry for entry in plan if entry.takes_remaining]
    if len(remaining) > 1:
        names = ", ".join(entry.name for entry in remaining)
        raise InvalidPlanError(
            f"at most one partition may use the remaining space, found {len(remaining)}: {names}"
        )


def resolve_layout(
    plan: PartitionPlan,
    device_capacity: int,
    *,
    reserved_overhead: int = RESERVED_OVERHEAD,
) -> ResolvedLayout:
    """Bind every plan entry to a concrete size and physical position.

    Args:
        plan: Parsed partition plan
        device_capacity: Target device size in bytes
        reserved_overhead: Bytes kept free for the partition table and alignment

    Returns:
        ResolvedLayout in physical creation order

    Raises:
        InvalidPlanError: If the plan is invalid or does not fit the device
    """
    validate_plan(plan)

    usable = device_capacity - reserved_overhead
    fixed_total = sum(entry.size for entry in plan if not entry.takes_remaining)
    has_remaining = any(entry.takes_remaining for entry in plan)

    if fixed_total > usable or (has_remaining and fixed_total == usable):
        raise InvalidPlanError(
            f"partitions need {human_size(fixed_total)} but the device only has "
            f"{human_size(max(usable, 0))} usable"
        )

    partitions = []
    for position, entry in enumerate(plan, start=1):
        size = usable - fixed_total if entry.takes_remaining else entry.size
        partitions.append(ResolvedPartition(spec=entry, size_bytes=size, position=position))

    layout = ResolvedLayout(
        partitions=tuple(partitions),
        device_capacity=device_capacity,
        reserved_overhead=reserved_overhead,
    )
    for partition in layout:
        log.debug(
            f"#{partition.position} slot {partition.slot_index} {partition.name!r} "
            f"{partition.filesystem.value} {human_size(partition.size_bytes)}"
        )
    log.info(
        f"Resolved {len(layout)} partitions on {human_size(device_capacity)} device"
    )
    return layout


def resolve_roles(layout: ResolvedLayout, root_slot: int | None = None) -> PartitionRoles:
    """Find the grub target, boot and root partitions of a layout.

    The grub target is the first BIOS boot partition, boot the first EFI
    system partition, root ``root_slot`` when given, else the first Linux
    filesystem partition in physical order.

    Raises:
        InvalidPlanError: If a role has no matching partition
    """
    grub_target = layout.first_of_type(BIOS_BOOT_TYPE)
    if grub_target is None:
        raise InvalidPlanError("plan has no BIOS boot partition")
    boot = layout.first_of_type(EFI_SYSTEM_TYPE)
    if boot is None:
        raise InvalidPlanError("plan has no EFI system partition")
    if root_slot is not None:
        try:
            root = layout.get_slot(root_slot)
        except KeyError:
            raise InvalidPlanError(f"root slot {root_slot} is not in the plan") from None
    else:
        root = layout.first_of_type(LINUX_FILESYSTEM_TYPE)
        if root is None:
            raise InvalidPlanError("plan has no Linux filesystem partition for root")
    if root.filesystem is Filesystem.NONE:
        raise InvalidPlanError(f"root partition {root.name!r} has no filesystem")
    return PartitionRoles(grub_target=grub_target, boot=boot, root=root)
