"""Domain models for partition plans and resolved device layouts.

This package contains the immutable value types shared by the plan parser,
the layout resolver and the provisioning stages.
"""

from __future__ import annotations

from .models import (
    Filesystem,
    PartitionPlan,
    PartitionRoles,
    PartitionSpec,
    ResolvedLayout,
    ResolvedPartition,
)


__all__ = [
    "Filesystem",
    "PartitionPlan",
    "PartitionRoles",
    "PartitionSpec",
    "ResolvedLayout",
    "ResolvedPartition",
]
