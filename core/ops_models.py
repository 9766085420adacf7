"""Shared result and health models for boot, cluster and watchdog runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping


class HealthStatus(str, Enum):
    """Health classification for a probed service or subsystem."""

    OK = "ok"
    DEGRADED = "degraded"
    FAILING = "failing"


class StepOutcome(str, Enum):
    """Outcome of a provisioning or reconciliation step."""

    READY = "ready"
    DEGRADED = "degraded"
    FAILED = "failed"

    @property
    def ok(self) -> bool:
        return self is StepOutcome.READY


@dataclass(frozen=True)
class StepResult:
    """Outcome plus a one-line explanation for logs and summaries."""

    outcome: StepOutcome
    detail: str = ""
    changed: bool = False

    @property
    def ok(self) -> bool:
        return self.outcome.ok

    @classmethod
    def ready(cls, detail: str = "", changed: bool = False) -> "StepResult":
        return cls(StepOutcome.READY, detail, changed)

    @classmethod
    def degraded(cls, detail: str, changed: bool = False) -> "StepResult":
        return cls(StepOutcome.DEGRADED, detail, changed)

    @classmethod
    def failed(cls, detail: str, changed: bool = False) -> "StepResult":
        return cls(StepOutcome.FAILED, detail, changed)


class BootMode(str, Enum):
    """Which stage sequence the orchestrator runs."""

    FIRST = "first"
    NORMAL = "normal"


@dataclass(frozen=True)
class ClusterState:
    """Container engine and swarm state, re-read before every cluster operation."""

    engine_reachable: bool
    swarm_active: bool
    overlay_present: bool
    overlay_scope: str | None = None


@dataclass(frozen=True)
class ServiceHealthRecord:
    """Per-cycle record of one checked service."""

    name: str
    running: bool
    healthy: bool
    action_taken: str | None = None


@dataclass
class ReconcileSummary:
    """Issue and fix counters accumulated over one watchdog cycle."""

    issues: int = 0
    fixes: int = 0
    records: list[ServiceHealthRecord] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return self.issues == 0

    def as_dict(self) -> Mapping[str, int]:
        return {"issues": self.issues, "fixes": self.fixes}
