"""Tests for storage/staging.py - copying the image payload."""

import subprocess
from contextlib import contextmanager
from unittest.mock import Mock

import pytest

from usb_provisioner.exceptions import MountFailedError, StagingError
from usb_provisioner.storage import staging


@pytest.fixture
def fake_mounts(tmp_path, mocker):
    """Replace scoped_mount with plain directories under tmp_path.

    Returns:
        Dict of label -> directory, filled as mounts are entered
    """
    mounted = {}

    @contextmanager
    def fake_scoped_mount(source, *, label, read_only=False, loop=False):
        path = tmp_path / label
        path.mkdir(exist_ok=True)
        mounted[label] = path
        yield path

    mocker.patch("usb_provisioner.storage.staging.scoped_mount", side_effect=fake_scoped_mount)
    return mounted


@pytest.fixture
def image_tree(tmp_path):
    image = tmp_path / "image"
    (image / "boot" / "grub").mkdir(parents=True)
    (image / "EFI" / "BOOT").mkdir(parents=True)
    (image / "casper").mkdir()
    return image


class TestStageContent:
    """Tests for stage_content()."""

    def test_copies_image_to_root_and_boot_trees(self, fake_mounts, image_tree, mocker):
        mock_run = mocker.patch(
            "usb_provisioner.storage.staging.run_command",
            return_value=Mock(returncode=0, stdout="", stderr=""),
        )

        staging.stage_content("/dev/sdb3", "/dev/sdb4", "/srv/live.iso")

        boot, root, image = fake_mounts["boot"], fake_mounts["root"], fake_mounts["image"]
        commands = [call.args[0] for call in mock_run.call_args_list]
        assert commands == [
            ["cp", "-a", f"{image}/.", str(root)],
            ["cp", "-a", str(image / "boot"), str(boot)],
            ["cp", "-a", str(image / "EFI"), str(boot)],
            ["sync"],
        ]

    def test_image_mounted_read_only_loop(self, fake_mounts, image_tree, mocker):
        mocker.patch("usb_provisioner.storage.staging.run_command")

        staging.stage_content("/dev/sdb3", "/dev/sdb4", "/srv/live.iso")

        calls = staging.scoped_mount.call_args_list
        assert calls[0].args == ("/dev/sdb3",)
        assert calls[1].args == ("/dev/sdb4",)
        assert calls[2].args == ("/srv/live.iso",)
        assert calls[2].kwargs == {"label": "image", "read_only": True, "loop": True}

    def test_missing_efi_tree(self, fake_mounts, tmp_path, mocker):
        (tmp_path / "image" / "boot").mkdir(parents=True)
        mocker.patch("usb_provisioner.storage.staging.run_command")

        with pytest.raises(StagingError, match="EFI/"):
            staging.stage_content("/dev/sdb3", "/dev/sdb4", "/srv/live.iso")

    def test_copy_failure(self, fake_mounts, image_tree, mocker):
        mocker.patch(
            "usb_provisioner.storage.staging.run_command",
            side_effect=subprocess.CalledProcessError(1, ["cp"], stderr="No space left on device"),
        )

        with pytest.raises(StagingError) as exc_info:
            staging.stage_content("/dev/sdb3", "/dev/sdb4", "/srv/live.iso")

        assert "No space left on device" in str(exc_info.value)
        assert exc_info.value.stage == "staging"

    def test_mount_failure_wrapped(self, mocker):
        mocker.patch(
            "usb_provisioner.storage.staging.scoped_mount",
            side_effect=MountFailedError("/dev/sdb3", "/tmp/x", "bad superblock"),
        )

        with pytest.raises(StagingError, match="bad superblock"):
            staging.stage_content("/dev/sdb3", "/dev/sdb4", "/srv/live.iso")


class TestStageContentMounts:
    """stage_content() with real scoped mounts and mocked commands."""

    def test_all_mounts_released_when_copy_fails(self, tmp_path, mocker):
        created = []

        def fake_mkdtemp(prefix):
            path = tmp_path / f"{prefix}{len(created)}"
            path.mkdir()
            created.append(path)
            return str(path)

        mocker.patch("usb_provisioner.storage.mount.tempfile.mkdtemp", side_effect=fake_mkdtemp)
        mount_run = mocker.patch(
            "usb_provisioner.storage.mount.run_command",
            return_value=Mock(returncode=0, stdout="", stderr=""),
        )
        mocker.patch(
            "usb_provisioner.storage.staging.run_command",
            side_effect=subprocess.CalledProcessError(1, ["cp"], stderr="Input/output error"),
        )

        with pytest.raises(StagingError, match="Input/output error"):
            staging.stage_content("/dev/sdb3", "/dev/sdb4", "/srv/live.iso")

        umounts = [
            call.args[0][1] for call in mount_run.call_args_list if call.args[0][0] == "umount"
        ]
        assert sorted(umounts) == sorted(str(path) for path in created)
        assert len(umounts) == 3
        # Released in reverse order of mounting
        assert umounts == [str(path) for path in reversed(created)]
        assert not any(path.exists() for path in created)
