"""Diagnostics routines for the storage subsystem."""

from __future__ import annotations

from pathlib import Path

from diagnostics.models import DiagnosticResult, DiagnosticStatus
from storage.network_config import NetworkConfigStore


def probe(db_path: Path | None = None) -> DiagnosticResult:
    """Check that the network configuration row can be read.

    Args:
        db_path: Optional database path for offline testing.

    Returns:
        Diagnostic result indicating storage readiness. The database is only
        opened read-only.
    """

    name = "storage"
    if db_path is None:
        from config.settings import get_settings

        db_path = get_settings().paths.database

    store = NetworkConfigStore(db_path)
    if not store.exists():
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.WARN,
            details=f"No database at {db_path}; default network mode applies",
        )

    config = store.load()
    if config is None:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.WARN,
            details="network_config row missing or unreadable; default network mode applies",
        )

    static = "static" if config.static_ip_usable else "dhcp"
    return DiagnosticResult(
        name=name,
        status=DiagnosticStatus.PASS,
        details=f"network_config mode={config.mode} addressing={static}",
    )
