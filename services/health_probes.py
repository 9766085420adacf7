"""HTTP health probes for the managed services."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
import time
from typing import Any, Mapping
import urllib.error
import urllib.request

from config.settings import ServiceSpec
from core.ops_models import HealthStatus


@dataclass(frozen=True)
class HealthProbeResult:
    """Result of a single service health probe."""

    name: str
    status: HealthStatus
    summary: str
    details: Mapping[str, str | float | int] = field(default_factory=dict)

    @property
    def healthy(self) -> bool:
        return self.status is HealthStatus.OK


def probe_http(
    name: str,
    url: str,
    *,
    timeout_s: float = 5.0,
    opener: Callable[..., Any] = urllib.request.urlopen,
) -> HealthProbeResult:
    """Probe ``url``; any successful HTTP response counts as healthy.

    The response body is never inspected.
    """

    started = time.monotonic()
    try:
        with opener(url, timeout=timeout_s) as response:
            code = int(getattr(response, "status", 200))
    except urllib.error.HTTPError as exc:
        return HealthProbeResult(
            name=name,
            status=HealthStatus.FAILING,
            summary=f"HTTP {exc.code}",
            details={"url": url, "code": exc.code},
        )
    except Exception as exc:  # noqa: BLE001 - probe should not raise
        return HealthProbeResult(
            name=name,
            status=HealthStatus.FAILING,
            summary="Unreachable",
            details={"url": url, "error": str(exc)},
        )

    elapsed_ms = round((time.monotonic() - started) * 1000, 1)
    if code >= 400:
        return HealthProbeResult(
            name=name,
            status=HealthStatus.FAILING,
            summary=f"HTTP {code}",
            details={"url": url, "code": code},
        )
    return HealthProbeResult(
        name=name,
        status=HealthStatus.OK,
        summary=f"HTTP {code}",
        details={"url": url, "code": code, "elapsed_ms": elapsed_ms},
    )


def probe_service(
    spec: ServiceSpec,
    *,
    timeout_s: float = 5.0,
    opener: Callable[..., Any] = urllib.request.urlopen,
) -> HealthProbeResult:
    if not spec.has_health_endpoint:
        return HealthProbeResult(
            name=spec.name,
            status=HealthStatus.DEGRADED,
            summary="No health endpoint",
        )
    return probe_http(spec.name, spec.health_url(), timeout_s=timeout_s, opener=opener)


def probe_services(
    specs: Iterable[ServiceSpec],
    *,
    timeout_s: float = 5.0,
    opener: Callable[..., Any] = urllib.request.urlopen,
) -> list[HealthProbeResult]:
    """Probe every service that exposes a health endpoint."""

    return [
        probe_service(spec, timeout_s=timeout_s, opener=opener)
        for spec in specs
        if spec.has_health_endpoint
    ]


def summarize(results: Iterable[HealthProbeResult]) -> tuple[int, int]:
    """Return ``(healthy, unhealthy)`` counts."""

    healthy = unhealthy = 0
    for result in results:
        if result.healthy:
            healthy += 1
        else:
            unhealthy += 1
    return healthy, unhealthy
