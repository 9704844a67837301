"""Partition plan handling.

Modules:
    - sizes: IEC size parsing and formatting, the REMAINING sentinel
    - parser: plan text to PartitionPlan, and back
    - policies: builtin layouts and well-known partition type identifiers
    - resolver: PartitionPlan plus device capacity to ResolvedLayout
"""
