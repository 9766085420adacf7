"""Manual and timeout-triggered recovery outside the timed orchestrator."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import time

from cluster.bootstrap import ClusterBootstrap
from cluster.docker import DockerCli
from cluster.secrets import SecretsManager
from config.settings import ApplianceSettings
from core.commands import CommandRunner
from core.logging import logger as LOGGER
from core.ops_models import StepOutcome, StepResult


@dataclass
class RecoveryReport:
    steps: list[tuple[str, StepResult]] = field(default_factory=list)

    @property
    def failures(self) -> int:
        return sum(1 for _, result in self.steps if result.outcome is StepOutcome.FAILED)

    @property
    def ok(self) -> bool:
        return self.failures == 0


def run_recovery(
    settings: ApplianceSettings,
    runner: CommandRunner,
    *,
    cluster: ClusterBootstrap | None = None,
    secrets: SecretsManager | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RecoveryReport:
    """Re-run cluster bootstrap, compose services and every stack.

    Every step is idempotent, so this is safe on a healthy node.
    """

    docker = DockerCli(runner, settings.cluster.compose_platform)
    cluster = cluster or ClusterBootstrap(settings, docker, sleep=sleep)
    secrets = secrets or SecretsManager(settings, docker)
    report = RecoveryReport()

    def record(name: str, result: StepResult) -> StepResult:
        report.steps.append((name, result))
        level = LOGGER.info if result.ok else LOGGER.warning
        level("[Recovery] %s: %s (%s)", name, result.outcome.value, result.detail)
        return result

    engine = record("engine", cluster.wait_for_engine())
    if engine.outcome is StepOutcome.FAILED:
        return report
    swarm = record("swarm", cluster.ensure_swarm())
    if swarm.ok:
        record("overlay network", cluster.ensure_overlay_network())
        record("HAL network", cluster.ensure_hal_network())
        record("swarm secrets", secrets.mirror_swarm_secrets())

    for spec in settings.compose_services:
        record(spec.name, cluster.start_compose_service(spec.name))

    if not swarm.ok:
        record("stacks", StepResult.failed("swarm not active; stacks skipped"))
        return report
    for name in settings.stacks.all:
        record(f"stack {name}", cluster.deploy_stack(name))
    return report
