"""Boot markers: provisioning flag, heartbeat and progress files."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
import time

from config.settings import PathSettings
from core.logging import logger as LOGGER


TOTAL_STAGES = 9


class BootMarkers:
    """Read and write the small files shared by boot, supervisor and UI."""

    def __init__(self, paths: PathSettings, clock: Callable[[], float] = time.time) -> None:
        self._provisioned = paths.provisioned_marker
        self._heartbeat = paths.heartbeat_file
        self._progress = paths.progress_file
        self._clock = clock

    @property
    def heartbeat_path(self) -> Path:
        return self._heartbeat

    @property
    def progress_path(self) -> Path:
        return self._progress

    def beat(self) -> None:
        """Record that the orchestrator is alive."""

        try:
            self._heartbeat.parent.mkdir(parents=True, exist_ok=True)
            self._heartbeat.write_text(f"{int(self._clock())}\n", encoding="utf-8")
        except OSError as exc:
            LOGGER.warning("[Boot] Heartbeat write failed: %s", exc)

    def last_beat(self) -> float | None:
        try:
            return float(self._heartbeat.read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            return None

    def heartbeat_age(self, now: float | None = None) -> float | None:
        last = self.last_beat()
        if last is None:
            return None
        current = self._clock() if now is None else now
        return max(current - last, 0.0)

    def set_progress(self, stage: int, total: int = TOTAL_STAGES) -> None:
        self._progress.parent.mkdir(parents=True, exist_ok=True)
        self._progress.write_text(f"{stage}/{total}\n", encoding="utf-8")

    def progress(self) -> str | None:
        try:
            return self._progress.read_text(encoding="utf-8").strip() or None
        except OSError:
            return None

    def is_provisioned(self) -> bool:
        return self._provisioned.exists()

    def mark_provisioned(self) -> None:
        self._provisioned.parent.mkdir(parents=True, exist_ok=True)
        stamp = datetime.fromtimestamp(self._clock(), timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        self._provisioned.write_text(f"{stamp}\n", encoding="utf-8")

    def clear_ephemeral(self) -> None:
        """Remove heartbeat and progress at the end of boot."""

        for path in (self._heartbeat, self._progress):
            path.unlink(missing_ok=True)
