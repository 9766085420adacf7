"""Read-only subsystem probes behind ``cubeos-init diagnose``."""

from diagnostics.models import DiagnosticResult, DiagnosticStatus, exit_code
from diagnostics.runner import format_results, run_diagnostics

__all__ = [
    "DiagnosticResult",
    "DiagnosticStatus",
    "exit_code",
    "format_results",
    "run_diagnostics",
]
