"""Tests for plan/parser.py - partition plan text format.

This test suite covers:
- Field splitting with backslash escapes
- Per-field validation with 1-based line numbers
- Comments and blank lines
- Serialization of plans and resolved layouts
"""

import pytest

from usb_provisioner.domain.models import Filesystem, PartitionSpec
from usb_provisioner.exceptions import MalformedPlanError, PlanFileError
from usb_provisioner.plan.parser import (
    escape_name,
    format_plan_line,
    parse_plan,
    parse_plan_file,
    parse_plan_line,
    serialize_layout,
    serialize_plan,
    split_fields,
)
from usb_provisioner.plan.policies import EFI_SYSTEM_TYPE, LINUX_FILESYSTEM_TYPE
from usb_provisioner.plan.sizes import GIB, MIB, REMAINING


class TestSplitFields:
    """Tests for split_fields()."""

    def test_whitespace_separated(self):
        assert split_fields("1  EFI\tabc fat32 1MiB") == ["1", "EFI", "abc", "fat32", "1MiB"]

    def test_escaped_space_kept_in_field(self):
        assert split_fields(r"4 Live\ OS x ext4 1GiB")[1] == "Live OS"

    def test_escaped_backslash(self):
        assert split_fields(r"a\\b") == ["a\\b"]

    def test_trailing_backslash_rejected(self):
        with pytest.raises(MalformedPlanError) as exc_info:
            split_fields("1 EFI\\", line_number=7)
        assert exc_info.value.line_number == 7

    def test_escape_name_inverts_split(self):
        name = "My Data\\Disk"
        assert split_fields(escape_name(name)) == [name]


class TestParsePlanLine:
    """Tests for parse_plan_line()."""

    def test_full_line(self):
        spec = parse_plan_line(f"3 EFI {EFI_SYSTEM_TYPE} fat32 300MiB 0 2", 1)

        assert spec == PartitionSpec(
            3, "EFI", EFI_SYSTEM_TYPE, Filesystem.FAT32, 300 * MIB, frozenset({0, 2})
        )

    def test_zero_size_means_remaining(self):
        spec = parse_plan_line(f"1 Storage {LINUX_FILESYSTEM_TYPE} ext4 0", 1)
        assert spec.size is REMAINING
        assert spec.takes_remaining

    def test_missing_field_named(self):
        with pytest.raises(MalformedPlanError) as exc_info:
            parse_plan_line("1 EFI abc fat32", 4)

        assert exc_info.value.line_number == 4
        assert exc_info.value.field == "size"

    @pytest.mark.parametrize(
        "line,field",
        [
            ("x EFI abc fat32 1MiB", "slot index"),
            ("0 EFI abc fat32 1MiB", "slot index"),
            ("1 EFI abc xfs 1MiB", "filesystem"),
            ("1 EFI abc fat32 1GB", "size"),
            ("1 EFI abc fat32 1MiB abc", "flag"),
            ("1 EFI abc fat32 1MiB 64", "flag"),
            ("\u00b2 EFI abc fat32 1MiB", "slot index"),
            ("1 EFI abc fat32 1MiB \u00b9", "flag"),
            ("1 EFI abc fat32 \u0663MiB", "size"),
        ],
    )
    def test_invalid_field_reported(self, line, field):
        with pytest.raises(MalformedPlanError) as exc_info:
            parse_plan_line(line, 2)

        assert exc_info.value.field == field
        assert str(exc_info.value).startswith(f"Line 2: invalid {field}")

    def test_highest_attribute_bit_accepted(self):
        spec = parse_plan_line("1 EFI abc fat32 1MiB 63", 1)
        assert spec.flags == frozenset({63})


class TestParsePlan:
    """Tests for parse_plan() and parse_plan_file()."""

    def test_keeps_appearance_order(self, sample_plan_text, sample_plan):
        plan = parse_plan(sample_plan_text.splitlines())

        assert plan == sample_plan
        assert plan.slot_indices == [2, 3, 4, 5, 1]

    def test_line_numbers_count_comments_and_blanks(self):
        lines = ["# header", "", "1 EFI abc fat32 1MiB", "2 Root abc ext9 1GiB"]

        with pytest.raises(MalformedPlanError) as exc_info:
            parse_plan(lines)

        assert exc_info.value.line_number == 4

    def test_parse_does_not_check_slot_permutation(self):
        """Whole-plan invariants belong to the resolver."""
        plan = parse_plan(["1 A abc ext4 1MiB", "1 B abc ext4 1MiB"])
        assert plan.slot_indices == [1, 1]

    def test_parse_plan_file(self, tmp_path, sample_plan_text, sample_plan):
        path = tmp_path / "layout.plan"
        path.write_text(sample_plan_text, encoding="utf-8")

        assert parse_plan_file(path) == sample_plan

    def test_parse_plan_file_missing(self, tmp_path):
        with pytest.raises(PlanFileError) as exc_info:
            parse_plan_file(tmp_path / "missing.plan")

        assert exc_info.value.path.endswith("missing.plan")

    def test_parse_plan_file_directory(self, tmp_path):
        with pytest.raises(PlanFileError, match="Cannot read partition plan"):
            parse_plan_file(tmp_path)

    def test_non_ascii_digit_reports_line(self):
        """Non-ASCII digits are reported like any other bad field."""
        with pytest.raises(MalformedPlanError) as exc_info:
            parse_plan(["# header", "\u00b2 EFI abc fat32 300MiB"])

        assert exc_info.value.line_number == 2


class TestSerialize:
    """Tests for plan and layout serialization."""

    def test_format_plan_line(self):
        spec = PartitionSpec(5, "casper rw", LINUX_FILESYSTEM_TYPE, Filesystem.EXT4, 4 * GIB,
                             frozenset({60, 2}))
        assert format_plan_line(spec) == (
            f"5 casper\\ rw {LINUX_FILESYSTEM_TYPE} ext4 4GiB 2 60"
        )

    def test_serialized_plan_parses_back(self, sample_plan):
        text = serialize_plan(sample_plan)

        assert parse_plan(text.splitlines()) == sample_plan

    def test_serialized_layout_has_concrete_sizes(self, sample_layout):
        text = serialize_layout(sample_layout)
        reparsed = parse_plan(text.splitlines())

        assert not any(spec.takes_remaining for spec in reparsed)
        assert reparsed.slot_indices == [2, 3, 4, 5, 1]
        assert [spec.size for spec in reparsed] == [p.size_bytes for p in sample_layout]
