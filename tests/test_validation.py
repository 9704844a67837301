"""Tests for storage/validation.py - pre-write safety checks."""

import stat
from unittest.mock import Mock, patch

import pytest

from usb_provisioner.exceptions import DeviceNotFoundError, DeviceStateError, UnmountFailedError
from usb_provisioner.storage import validation


class TestValidateDevicePath:
    """Tests for validate_device_path()."""

    @pytest.mark.parametrize("path", ["sdb", "/tmp/disk.img", "", "/dev/sdb; rm -rf /"])
    def test_rejects_bad_paths(self, path):
        with pytest.raises(ValueError):
            validation.validate_device_path(path)

    @patch("usb_provisioner.storage.validation.os.stat", side_effect=FileNotFoundError)
    def test_missing_device(self, mock_stat):
        with pytest.raises(DeviceNotFoundError):
            validation.validate_device_path("/dev/sdz")

    @patch("usb_provisioner.storage.validation.os.stat")
    def test_not_a_block_device(self, mock_stat):
        mock_stat.return_value = Mock(st_mode=stat.S_IFREG)

        with pytest.raises(DeviceNotFoundError):
            validation.validate_device_path("/dev/sdb")

    @patch("usb_provisioner.storage.validation.os.stat")
    def test_block_device_accepted(self, mock_stat):
        mock_stat.return_value = Mock(st_mode=stat.S_IFBLK)
        validation.validate_device_path("/dev/sdb")


class TestValidateImagePath:
    def test_existing_file(self, image_file):
        validation.validate_image_path(str(image_file))

    def test_missing_file(self, tmp_path):
        with pytest.raises(DeviceNotFoundError):
            validation.validate_image_path(str(tmp_path / "missing.iso"))


class TestEnsureDeviceReady:
    """Tests for ensure_device_ready()."""

    @patch("usb_provisioner.storage.validation.list_mounted_partitions", return_value=[])
    def test_unmounted_device(self, mock_list):
        validation.ensure_device_ready("/dev/sdb")

    @patch("usb_provisioner.storage.validation.unmount_partitions")
    @patch("usb_provisioner.storage.validation.list_mounted_partitions")
    def test_mounted_without_force(self, mock_list, mock_unmount):
        mock_list.return_value = [("/dev/sdb1", "/media/usb")]

        with pytest.raises(DeviceStateError) as exc_info:
            validation.ensure_device_ready("/dev/sdb")

        assert exc_info.value.mountpoints == ["/media/usb"]
        assert "--force-unmount" in str(exc_info.value)
        mock_unmount.assert_not_called()

    @patch("usb_provisioner.storage.validation.unmount_partitions", return_value=[])
    def test_force_unmount(self, mock_unmount):
        validation.ensure_device_ready("/dev/sdb", force_unmount=True)
        mock_unmount.assert_called_once_with("/dev/sdb")

    @patch("usb_provisioner.storage.validation.unmount_partitions", return_value=["/media/usb"])
    def test_force_unmount_leaves_mount(self, mock_unmount):
        with pytest.raises(UnmountFailedError, match="/media/usb"):
            validation.ensure_device_ready("/dev/sdb", force_unmount=True)
