"""Models for diagnostics results."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum


class DiagnosticStatus(str, Enum):
    """Status for diagnostics checks."""

    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"


@dataclass(frozen=True)
class DiagnosticResult:
    """Result for a single subsystem probe."""

    name: str
    status: DiagnosticStatus
    details: str

    @property
    def failed(self) -> bool:
        return self.status is DiagnosticStatus.FAIL


Probe = Callable[[], DiagnosticResult]


def exit_code(results: Iterable[DiagnosticResult]) -> int:
    """Return 1 when any probe failed; warnings never fail a report."""

    return 1 if any(result.failed for result in results) else 0
