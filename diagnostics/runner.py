"""Run subsystem probes and render the report."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable

from core.logging import logger as LOGGER
from diagnostics.models import DiagnosticResult, DiagnosticStatus, Probe


def format_results(results: Iterable[DiagnosticResult]) -> str:
    """Return the plain-text report printed by ``cubeos-init diagnose``."""

    results = list(results)
    lines = ["Diagnostics report", "-" * 60]
    lines.extend(f"[{result.status.value}] {result.name}: {result.details}" for result in results)
    counts = Counter(result.status for result in results)
    lines.append("-" * 60)
    lines.append(
        f"{counts[DiagnosticStatus.PASS]} passed, "
        f"{counts[DiagnosticStatus.WARN]} warnings, "
        f"{counts[DiagnosticStatus.FAIL]} failed"
    )
    return "\n".join(lines)


def run_diagnostics(probes: Iterable[Probe]) -> list[DiagnosticResult]:
    """Run each probe in order; a probe that raises is reported as FAIL."""

    results: list[DiagnosticResult] = []
    for probe in probes:
        try:
            result = probe()
        except Exception as exc:  # noqa: BLE001 - diagnostics must keep running
            LOGGER.exception("[Diagnostics] Probe %s raised", getattr(probe, "__name__", probe))
            result = DiagnosticResult(
                name=getattr(probe, "__name__", "unknown_probe"),
                status=DiagnosticStatus.FAIL,
                details=f"Probe raised exception: {exc}",
            )
        results.append(result)
    return results
