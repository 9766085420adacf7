"""Diagnostics routines for the cluster subsystem."""

from __future__ import annotations

from cluster.docker import DockerCli
from core.commands import CommandRunner
from diagnostics.models import DiagnosticResult, DiagnosticStatus


def probe(
    docker: DockerCli | None = None,
    overlay_network: str | None = None,
) -> DiagnosticResult:
    """Report engine, swarm and overlay network state without changing them.

    Args:
        docker: Optional Docker wrapper for offline testing.
        overlay_network: Optional overlay network name.

    Returns:
        Diagnostic result indicating cluster readiness.
    """

    name = "cluster"
    if docker is None or overlay_network is None:
        from config.settings import get_settings

        settings = get_settings()
        docker = docker if docker is not None else DockerCli(CommandRunner(default_timeout_s=15))
        overlay_network = overlay_network or settings.cluster.overlay_network

    if not docker.engine_reachable():
        return DiagnosticResult(name=name, status=DiagnosticStatus.FAIL, details="Docker engine unreachable")

    swarm = docker.swarm_state() or "unknown"
    if swarm != "active":
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details=f"Swarm state is {swarm}",
        )

    scope = docker.network_scope(overlay_network)
    if scope != "swarm":
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.WARN,
            details=f"{overlay_network} scope={scope or 'missing'}",
        )

    stacks = sorted(docker.stack_names())
    return DiagnosticResult(
        name=name,
        status=DiagnosticStatus.PASS,
        details=f"Swarm active, {overlay_network} present, stacks: {', '.join(stacks) or 'none'}",
    )
