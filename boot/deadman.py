"""Dead-man's switch: supervise the orchestrator child process.

The supervisor owns the child's process handle. It polls on a fixed
interval and either terminates a stalled child (stale heartbeat) or kills
it and reboots the node when the whole boot overruns its ceiling.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from enum import Enum
import os
from pathlib import Path
import signal
import subprocess
import sys
import threading
import time
from typing import Protocol

from boot.markers import BootMarkers
from config.settings import BootSettings
from core.commands import CommandRunner
from core.logging import flush_file_logging
from core.logging import logger as LOGGER


MAIN_SCRIPT = Path(__file__).resolve().parent.parent / "main.py"


class ProcessHandle(Protocol):
    pid: int

    def poll(self) -> int | None: ...

    def wait(self, timeout: float | None = None) -> int: ...

    def send_signal(self, sig: int) -> None: ...


class Verdict(str, Enum):
    """What one poll decided."""

    RUNNING = "running"
    EXITED = "exited"
    STALLED = "stalled"
    OVERTIME = "overtime"


class DeadMansSwitch:
    def __init__(
        self,
        process: ProcessHandle,
        markers: BootMarkers,
        boot: BootSettings,
        runner: CommandRunner,
        *,
        process_group: bool = False,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], object] | None = None,
    ) -> None:
        self._process = process
        self._markers = markers
        self._boot = boot
        self._runner = runner
        self._process_group = process_group
        self._clock = clock
        self._wake = threading.Event()
        self._sleep = sleep if sleep is not None else self._wake.wait
        self._started = clock()
        self._thread: threading.Thread | None = None
        self.verdict: Verdict = Verdict.RUNNING

    def check(self) -> Verdict:
        """Classify the child's state without acting on it."""

        if self._process.poll() is not None:
            return Verdict.EXITED
        if self._clock() - self._started > self._boot.max_boot_time_s:
            return Verdict.OVERTIME
        age = self._markers.heartbeat_age()
        if age is not None and age > self._boot.stall_timeout_s:
            return Verdict.STALLED
        return Verdict.RUNNING

    def _signal(self, sig: int) -> None:
        try:
            if self._process_group:
                os.killpg(self._process.pid, sig)
            else:
                self._process.send_signal(sig)
        except ProcessLookupError:
            pass

    def terminate(self) -> None:
        """SIGTERM the child, escalating to SIGKILL after the grace period."""

        self._signal(signal.SIGTERM)
        try:
            self._process.wait(timeout=self._boot.kill_grace_s)
        except subprocess.TimeoutExpired:
            LOGGER.error("[DeadMan] Orchestrator ignored SIGTERM; sending SIGKILL")
            self._signal(signal.SIGKILL)
            self._process.wait()

    def watch(self) -> Verdict:
        """Poll until the child exits or a trigger fires."""

        while True:
            self._sleep(self._boot.poll_interval_s)
            verdict = self.check()
            if verdict is Verdict.EXITED:
                self.verdict = verdict
                return verdict
            if verdict is Verdict.STALLED:
                LOGGER.error(
                    "[DeadMan] No heartbeat for more than %.0fs; terminating hung boot",
                    self._boot.stall_timeout_s,
                )
                self.terminate()
                self.verdict = verdict
                return verdict
            if verdict is Verdict.OVERTIME:
                LOGGER.error(
                    "[DeadMan] Boot exceeded %.0fs; killing it and rebooting",
                    self._boot.max_boot_time_s,
                )
                self._signal(signal.SIGKILL)
                self._process.wait()
                flush_file_logging()
                self._runner.run(["systemctl", "reboot"])
                self.verdict = verdict
                return verdict

    def wake(self) -> None:
        """Cut the current poll short once the child is known to have exited."""

        self._wake.set()

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(target=self.watch, name="dead-mans-switch", daemon=True)
        self._thread.start()
        return self._thread


def supervise_boot(
    markers: BootMarkers,
    boot: BootSettings,
    runner: CommandRunner,
    mode: str,
    *,
    extra_args: Sequence[str] = (),
) -> int:
    """Start the orchestrator as a child process and guard it until it exits."""

    markers.beat()
    argv = [sys.executable, str(MAIN_SCRIPT), *extra_args, "run-stages", "--mode", mode]
    LOGGER.info("[DeadMan] Starting orchestrator: %s", " ".join(argv))
    process = subprocess.Popen(argv, start_new_session=True)
    switch = DeadMansSwitch(process, markers, boot, runner, process_group=True)
    watcher = switch.start()
    returncode = process.wait()
    switch.wake()
    watcher.join()
    if switch.verdict is Verdict.STALLED:
        return 1
    if returncode < 0:
        return 128 - returncode
    return returncode
