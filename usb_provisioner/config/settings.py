"""Run configuration and optional settings file."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional, Union

from usb_provisioner.logging import LoggerFactory
from usb_provisioner.plan.policies import (
    DEFAULT_PERSISTENCE_LABEL,
    DEFAULT_PERSISTENCE_SIZE,
)
from usb_provisioner.plan.sizes import format_size, is_remaining, parse_size

log = LoggerFactory.for_system()

SETTINGS_PATH = Path(
    os.environ.get(
        "USB_PROVISIONER_SETTINGS_PATH",
        Path.home() / ".config" / "usb-provisioner" / "settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_CONSOLE_RESOLUTION = "1024x768"

DEFAULT_SETTINGS: dict[str, Any] = {
    "storage": True,
    "persistence_size": format_size(DEFAULT_PERSISTENCE_SIZE),
    "root_size": None,
    "console_resolution": DEFAULT_CONSOLE_RESOLUTION,
    "persistence_label": DEFAULT_PERSISTENCE_LABEL,
    "force_unmount": False,
    "log_dir": None,
}


def parse_byte_count(value: Union[int, str]) -> int:
    """Byte count from an int or an IEC size string; ``0`` stays zero.

    Raises:
        ValueError: If the value is negative or not a valid size
    """
    if isinstance(value, bool):
        raise ValueError(f"expected a size, got {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"size must not be negative, got {value}")
        return value
    size = parse_size(str(value))
    return 0 if is_remaining(size) else size


def load_settings(path: Optional[Path] = None) -> dict[str, Any]:
    """Defaults merged with the settings file, if it exists and parses."""
    path = path or SETTINGS_PATH
    values = dict(DEFAULT_SETTINGS)
    if not path.exists():
        return values
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as error:
        log.warning(f"Ignoring unreadable settings file {path}: {error}")
        return values
    if not isinstance(data, dict):
        log.warning(f"Ignoring settings file {path}: expected a JSON object")
        return values
    for key, value in data.items():
        if key in DEFAULT_SETTINGS:
            values[key] = value
        else:
            log.warning(f"Ignoring unknown setting {key!r} in {path}")
    return values


@dataclass(frozen=True)
class ProvisionConfig:
    """Immutable configuration for one provisioning run."""

    device: str
    image: str
    plan_path: Optional[Path] = None
    storage: bool = True
    persistence_size: int = DEFAULT_PERSISTENCE_SIZE
    root_size: Optional[int] = None
    console_resolution: str = DEFAULT_CONSOLE_RESOLUTION
    persistence_label: str = DEFAULT_PERSISTENCE_LABEL
    force_unmount: bool = False
    root_slot: Optional[int] = None
    dry_run: bool = False
    debug: bool = False
    trace: bool = False
    log_dir: Optional[Path] = None

    @classmethod
    def from_settings(
        cls, settings: dict[str, Any], **overrides: Any
    ) -> "ProvisionConfig":
        """Build a config from settings values; non-None overrides win.

        Raises:
            ValueError: If a size value cannot be parsed
        """
        merged = dict(settings)
        merged.update({key: value for key, value in overrides.items() if value is not None})

        known = {field.name for field in fields(cls)}
        values = {key: value for key, value in merged.items() if key in known}

        if "persistence_size" in values:
            values["persistence_size"] = parse_byte_count(values["persistence_size"])
        if values.get("root_size") is not None:
            values["root_size"] = parse_byte_count(values["root_size"])
            if values["root_size"] == 0:
                raise ValueError("root size must be positive")
        for key in ("plan_path", "log_dir"):
            if values.get(key) is not None:
                values[key] = Path(values[key])
        return cls(**values)

    def describe(self) -> dict[str, Any]:
        return {
            "device": self.device,
            "image": self.image,
            "plan": str(self.plan_path) if self.plan_path else None,
            "storage": self.storage,
            "persistence_size": format_size(self.persistence_size)
            if self.persistence_size
            else "0",
            "root_size": format_size(self.root_size) if self.root_size else None,
            "dry_run": self.dry_run,
        }
