"""One-shot supervisor for an orchestrator stuck in the activating state."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from boot.recovery import RecoveryReport, run_recovery
from config.settings import ApplianceSettings
from core.commands import CommandRunner
from core.logging import logger as LOGGER


PROC_UPTIME = Path("/proc/uptime")


def read_uptime(path: Path = PROC_UPTIME) -> float | None:
    try:
        return float(path.read_text(encoding="utf-8").split()[0])
    except (OSError, ValueError, IndexError):
        return None


def unit_state(runner: CommandRunner, unit: str) -> str:
    result = runner.run(["systemctl", "show", unit, "--property=ActiveState", "--value"])
    return result.output if result.ok else ""


def check_boot_timeout(
    settings: ApplianceSettings,
    runner: CommandRunner,
    *,
    uptime: Callable[[], float | None] = read_uptime,
    recover: Callable[[ApplianceSettings, CommandRunner], RecoveryReport] = run_recovery,
) -> bool:
    """Kill the init unit if it is still starting past the boot timeout.

    Returns True when the unit was killed and recovery ran.
    """

    unit = settings.boot.init_unit
    state = unit_state(runner, unit)
    if state != "activating":
        LOGGER.info("[BootTimeout] %s is %s; nothing to do", unit, state or "unknown")
        return False

    elapsed = uptime()
    limit = settings.boot.boot_timeout_s
    if elapsed is not None and elapsed < limit:
        LOGGER.info("[BootTimeout] %s still starting after %.0fs (limit %.0fs)", unit, elapsed, limit)
        return False

    LOGGER.error("[BootTimeout] %s stuck in activating for more than %.0fs; killing it", unit, limit)
    killed = runner.run(["systemctl", "kill", unit])
    if not killed.ok:
        LOGGER.warning("[BootTimeout] systemctl kill %s: %s", unit, killed.error_text)
    runner.run(["systemctl", "reset-failed", unit])

    report = recover(settings, runner)
    LOGGER.info("[BootTimeout] Recovery finished with %d failures", report.failures)
    return True
