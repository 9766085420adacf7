"""Diagnostics routines for the core subsystem."""

from __future__ import annotations

from core.commands import CommandRunner
from diagnostics.models import DiagnosticResult, DiagnosticStatus


REQUIRED_TOOLS = ("docker", "ip", "iptables", "systemctl", "netplan", "iw")


def probe(runner: CommandRunner | None = None, tools: tuple[str, ...] = REQUIRED_TOOLS) -> DiagnosticResult:
    """Check logging and the external tools every component shells out to.

    Returns:
        Diagnostic result indicating core readiness.
    """

    name = "core"
    from core import logging as core_logging

    if core_logging.logger is None:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details="Core logger failed to initialize",
        )

    runner = runner or CommandRunner()
    missing = [tool for tool in tools if not runner.which(tool)]
    if "docker" in missing:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details=f"Missing tools: {', '.join(missing)}",
        )
    if missing:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.WARN,
            details=f"Missing tools: {', '.join(missing)}",
        )
    return DiagnosticResult(
        name=name,
        status=DiagnosticStatus.PASS,
        details="Rich logging enabled; all tools present",
    )
