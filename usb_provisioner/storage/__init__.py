"""Device-side stages of the provisioning pipeline.

Main Functions:
    - ensure_device_ready(): Refuse (or force-unmount) a device with mounted partitions
    - write_partition_table(): Wipe the device and create the resolved partitions
    - create_filesystems(): Format every partition in slot order
    - stage_content(): Copy the OS image onto the root and boot partitions
    - install_bootloader(): Rewrite grub.cfg and run grub-install

Helper Functions:
    - partition_path(): Device + table slot -> partition node
    - get_device_size(): Device capacity in bytes
    - get_physical_block_size(): Physical block size in bytes
    - scoped_mount(): Temporary mount released on every exit path
"""

from .bootloader import install_bootloader
from .devices import get_device_size, get_physical_block_size, partition_path
from .format import create_filesystems
from .mount import scoped_mount
from .partition_table import write_partition_table
from .staging import stage_content
from .validation import ensure_device_ready

__all__ = [
    "create_filesystems",
    "ensure_device_ready",
    "get_device_size",
    "get_physical_block_size",
    "install_bootloader",
    "partition_path",
    "scoped_mount",
    "stage_content",
    "write_partition_table",
]
