"""Diagnostics routines for the services subsystem."""

from __future__ import annotations

from collections.abc import Callable, Iterable

from config.settings import ServiceSpec
from diagnostics.models import DiagnosticResult, DiagnosticStatus
from services.health_probes import HealthProbeResult, probe_service


def probe(
    services: Iterable[ServiceSpec] | None = None,
    prober: Callable[[ServiceSpec], HealthProbeResult] | None = None,
) -> DiagnosticResult:
    """Probe every managed health endpoint.

    Args:
        services: Optional service list for offline testing.
        prober: Optional probe function for offline testing.

    Returns:
        Diagnostic result listing unhealthy services.
    """

    name = "services"
    if services is None:
        from config.settings import get_settings

        services = get_settings().health_checked_services
    prober = prober or probe_service

    results = [prober(spec) for spec in services if spec.has_health_endpoint]
    if not results:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.WARN,
            details="No services with health endpoints configured",
        )

    unhealthy = [result.name for result in results if not result.healthy]
    if len(unhealthy) == len(results):
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details=f"No service responding ({', '.join(unhealthy)})",
        )
    if unhealthy:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.WARN,
            details=f"Unhealthy: {', '.join(unhealthy)}",
        )
    return DiagnosticResult(
        name=name,
        status=DiagnosticStatus.PASS,
        details=f"{len(results)} services healthy",
    )
