"""Decide between first boot and normal boot."""

from __future__ import annotations

from config.settings import PathSettings
from core.ops_models import BootMode


def detect_boot_mode(paths: PathSettings) -> BootMode:
    """Return FIRST until provisioning completed and the database exists.

    A missing database after provisioning means the data partition was
    lost, so the node is provisioned again.
    """

    if not paths.provisioned_marker.exists():
        return BootMode.FIRST
    if not paths.database.exists():
        return BootMode.FIRST
    return BootMode.NORMAL


def parse_boot_mode(value: str, paths: PathSettings) -> BootMode:
    text = value.strip().lower()
    if text in {"", "auto"}:
        return detect_boot_mode(paths)
    return BootMode(text)
