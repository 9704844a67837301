"""Provisioning pipeline.

Stages run strictly in order, each to completion before the next starts:

    plan -> resolve -> device check -> partition table -> filesystems
         -> staging -> bootloader

Plan, layout and device errors are raised before the device is touched.
Stage failures after the wipe are not rolled back; the documented recovery is
to run the whole pipeline again, which starts by wiping the table.

``exit_code_for()`` is the single place errors are mapped to process exit codes.
"""

from __future__ import annotations

import os

from usb_provisioner.config.settings import ProvisionConfig
from usb_provisioner.domain.models import PartitionPlan, PartitionRoles, ResolvedLayout
from usb_provisioner.exceptions import (
    DeviceNotFoundError,
    DeviceStateError,
    InvalidPlanError,
    MalformedPlanError,
    PlanFileError,
    ProvisionerError,
    ProvisioningError,
    UnmountFailedError,
    UnsupportedFilesystemError,
)
from usb_provisioner.logging import LoggerFactory, operation_context
from usb_provisioner.plan.parser import parse_plan_file, serialize_layout
from usb_provisioner.plan.policies import (
    build_policy_plan,
    compute_root_size,
    select_policy,
)
from usb_provisioner.plan.resolver import resolve_layout, resolve_roles
from usb_provisioner.storage import (
    create_filesystems,
    ensure_device_ready,
    get_device_size,
    get_physical_block_size,
    install_bootloader,
    partition_path,
    stage_content,
    write_partition_table,
)
from usb_provisioner.storage.partition_table import build_partition_table_commands
from usb_provisioner.storage.validation import validate_device_path, validate_image_path

log = LoggerFactory.for_system()

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_DEVICE_BUSY = 2
EXIT_USAGE = 64
EXIT_DATAERR = 65


def build_plan(config: ProvisionConfig) -> PartitionPlan:
    """Plan from the custom plan file, or from the builtin policy.

    Raises:
        MalformedPlanError: If the plan file does not parse
        InvalidPlanError: If neither storage nor persistence is requested
    """
    if config.plan_path is not None:
        return parse_plan_file(config.plan_path)

    policy = select_policy(config.storage, config.persistence_size)
    image_size = os.path.getsize(config.image)
    root_size = compute_root_size(image_size, config.root_size)
    log.info(f"Using {policy.value} layout policy")
    return build_policy_plan(
        policy,
        root_size=root_size,
        persistence_size=config.persistence_size,
        persistence_label=config.persistence_label,
    )


def plan_layout(config: ProvisionConfig) -> tuple[ResolvedLayout, PartitionRoles]:
    """Everything that happens before the device is modified."""
    with operation_context("plan", device=config.device, image=config.image):
        plan = build_plan(config)
        capacity = get_device_size(config.device)
        layout = resolve_layout(plan, capacity)
        roles = resolve_roles(layout, config.root_slot)
    return layout, roles


def has_persistence(layout: ResolvedLayout, label: str) -> bool:
    """Whether the layout has a partition named after the persistence label."""
    return any(partition.name == label for partition in layout)


def provision(config: ProvisionConfig) -> ResolvedLayout:
    """Provision ``config.device`` end to end.

    Returns:
        The resolved layout that was written

    Raises:
        ProvisionerError: Any stage failure
    """
    validate_device_path(config.device)
    validate_image_path(config.image)

    layout, roles = plan_layout(config)
    log.debug(f"Resolved layout:\n{serialize_layout(layout)}")

    if config.dry_run:
        for command in build_partition_table_commands(layout, config.device):
            log.info(f"[dry-run] {' '.join(command)}")
        return layout

    ensure_device_ready(config.device, force_unmount=config.force_unmount)

    device = config.device
    boot_node = partition_path(device, roles.boot.slot_index)
    root_node = partition_path(device, roles.root.slot_index)
    grub_node = partition_path(device, roles.grub_target.slot_index)

    with operation_context("partition-table", device=device):
        write_partition_table(layout, device)

    with operation_context("filesystems", device=device):
        create_filesystems(layout, device, get_physical_block_size(device))

    with operation_context("staging", image=config.image):
        stage_content(boot_node, root_node, config.image)

    with operation_context("bootloader", target=grub_node):
        install_bootloader(
            grub_node,
            boot_node,
            root_position=roles.root.position,
            console_resolution=config.console_resolution,
            persistence=has_persistence(layout, config.persistence_label),
        )

    log.success(f"{device} provisioned with {len(layout)} partitions")
    return layout


def exit_code_for(error: Exception) -> int:
    """Exit code for an error raised by the pipeline."""
    if isinstance(error, (MalformedPlanError, PlanFileError)):
        return EXIT_USAGE
    if isinstance(error, (InvalidPlanError, UnsupportedFilesystemError)):
        return EXIT_DATAERR
    if isinstance(error, (DeviceStateError, UnmountFailedError)):
        return EXIT_DEVICE_BUSY
    if isinstance(error, (DeviceNotFoundError, FileNotFoundError, ValueError)):
        return EXIT_USAGE
    return EXIT_FAILURE


def run(config: ProvisionConfig) -> int:
    """Run the pipeline and map the outcome to an exit code."""
    log.info("Provisioning run", **config.describe())
    try:
        provision(config)
    except (ProvisionerError, FileNotFoundError, ValueError) as error:
        log.error(str(error))
        if isinstance(error, ProvisioningError):
            log.error("The device is left partially provisioned; re-run the full provisioning")
        return exit_code_for(error)
    return EXIT_OK
