"""Provision a block device into a bootable live system with persistence."""

from .__version__ import __version__

__all__ = ["__version__"]
