"""Diagnostics routines for the network subsystem."""

from __future__ import annotations

from pathlib import Path

from diagnostics.models import DiagnosticResult, DiagnosticStatus
from network.modes import parse_mode
from network.netplan import is_generated
from storage.network_config import NetworkConfigStore


def probe(netplan_file: Path | None = None, db_path: Path | None = None) -> DiagnosticResult:
    """Check that the network document exists and was written by cubeos-init.

    Args:
        netplan_file: Optional document path for offline testing.
        db_path: Optional database path for offline testing.

    Returns:
        Diagnostic result naming the configured mode.
    """

    name = "network"
    if netplan_file is None or db_path is None:
        from config.settings import get_settings

        paths = get_settings().paths
        netplan_file = netplan_file if netplan_file is not None else paths.netplan_file
        db_path = db_path if db_path is not None else paths.database

    config = NetworkConfigStore(db_path).load()
    mode = parse_mode(config.mode).value if config is not None else "offline"

    if not netplan_file.exists():
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details=f"Network document missing at {netplan_file}",
        )
    if not is_generated(netplan_file):
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.WARN,
            details=f"{netplan_file} was not generated by cubeos-init (mode {mode})",
        )
    text = netplan_file.read_text(encoding="utf-8")
    if f"({mode})" not in text.splitlines()[0]:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.WARN,
            details=f"{netplan_file} does not match stored mode {mode}; re-apply the network mode",
        )
    return DiagnosticResult(
        name=name,
        status=DiagnosticStatus.PASS,
        details=f"Network document matches mode {mode}",
    )
