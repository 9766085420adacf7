"""Host-level checks shared by boot and the watchdog: swap, resolver, disk."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
import re
import shutil
import time

from config.settings import PathSettings
from core.commands import CommandRunner
from core.logging import logger as LOGGER
from core.ops_models import StepResult


ZRAM_UNIT = "systemd-zram-setup@zram0.service"
HARDWARE_WATCHDOG_UNIT = "watchdog"
FALLBACK_NAMESERVER = "nameserver 127.0.0.1\n"
_NAMESERVER = re.compile(r"^nameserver\s", re.MULTILINE)


class SystemChecks:
    def __init__(
        self,
        runner: CommandRunner,
        paths: PathSettings,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._runner = runner
        self._paths = paths
        self._sleep = sleep

    # -- compressed swap ---------------------------------------------------

    def zram_active(self) -> bool:
        result = self._runner.run(["swapon", "--show"])
        return result.ok and "zram" in result.stdout

    def ensure_zram(self) -> StepResult:
        if self.zram_active():
            return StepResult.ready("zram swap active")
        started = self._runner.run(["systemctl", "start", ZRAM_UNIT])
        if not started.ok:
            LOGGER.warning("[System] Starting %s failed: %s", ZRAM_UNIT, started.error_text)
        self._sleep(2)
        if self.zram_active():
            return StepResult.ready("zram swap started", changed=True)
        return StepResult.degraded("zram swap not available", changed=True)

    def start_hardware_watchdog(self) -> StepResult:
        if not self._paths.hardware_watchdog_device.exists():
            return StepResult.ready("no hardware watchdog device")
        result = self._runner.run(["systemctl", "start", HARDWARE_WATCHDOG_UNIT, "--no-block"])
        if not result.ok:
            return StepResult.degraded(f"hardware watchdog: {result.error_text}")
        return StepResult.ready("hardware watchdog starting")

    # -- resolver ----------------------------------------------------------

    def resolver_has_nameserver(self) -> bool:
        try:
            text = self._paths.resolv_conf.read_text(encoding="utf-8")
        except OSError:
            return False
        return bool(_NAMESERVER.search(text))

    def ensure_resolver(self) -> StepResult:
        if self.resolver_has_nameserver():
            return StepResult.ready("resolver has a nameserver")
        resolv_conf: Path = self._paths.resolv_conf
        try:
            if resolv_conf.is_symlink():
                resolv_conf.unlink()
            resolv_conf.write_text(FALLBACK_NAMESERVER, encoding="utf-8")
        except OSError as exc:
            return StepResult.failed(f"could not write {resolv_conf}: {exc}")
        LOGGER.info("[System] Wrote fallback nameserver to %s", resolv_conf)
        return StepResult.ready("added nameserver 127.0.0.1", changed=True)

    # -- disk --------------------------------------------------------------

    def disk_usage_percent(self, path: Path = Path("/")) -> float:
        usage = shutil.disk_usage(path)
        if usage.total == 0:
            return 0.0
        return usage.used * 100.0 / usage.total

    def free_kb(self, path: Path) -> int | None:
        try:
            return shutil.disk_usage(path).free // 1024
        except OSError:
            return None

    def cleanup_disk(self) -> StepResult:
        pruned = self._runner.run(
            ["docker", "system", "prune", "-f", "--filter", "until=24h"], timeout_s=600
        )
        vacuum = self._runner.run(["journalctl", "--vacuum-size=50M"])
        if not pruned.ok and not vacuum.ok:
            return StepResult.failed(f"cleanup failed: {pruned.error_text}", changed=True)
        return StepResult.ready("docker prune and journal vacuum done", changed=True)
