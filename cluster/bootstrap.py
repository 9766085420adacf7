"""Bring the container engine to an active single-node swarm with its overlay network."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
import time

from cluster.docker import DockerCli
from config.settings import ApplianceSettings
from core.logging import logger as LOGGER
from core.ops_models import ClusterState, StepResult
from core.retry import DelayStrategy, RetryPolicy, retry, wait_until


OVERLAY_ATTEMPTS = 5
HAL_OVERLAY_ATTEMPTS = 3
OVERLAY_DELAY_S = 2.0


class ClusterBootstrap:
    """Swarm, overlay network, stack and compose-service operations.

    Every method re-reads engine state before acting; nothing is cached
    between calls because the watchdog or an operator may have changed it.
    """

    def __init__(
        self,
        settings: ApplianceSettings,
        docker: DockerCli,
        *,
        sleep: Callable[[float], None] = time.sleep,
        heartbeat: Callable[[], None] | None = None,
    ) -> None:
        self._settings = settings
        self._cluster = settings.cluster
        self._docker = docker
        self._sleep = sleep
        self._heartbeat = heartbeat

    @property
    def docker(self) -> DockerCli:
        return self._docker

    def _beat(self, *_args: object) -> None:
        if self._heartbeat is not None:
            self._heartbeat()

    def cluster_state(self) -> ClusterState:
        reachable = self._docker.engine_reachable()
        if not reachable:
            return ClusterState(False, False, False)
        scope = self._docker.network_scope(self._cluster.overlay_network)
        return ClusterState(
            engine_reachable=True,
            swarm_active=self._docker.swarm_active(),
            overlay_present=scope is not None,
            overlay_scope=scope,
        )

    # -- engine ------------------------------------------------------------

    def wait_for_engine(self) -> StepResult:
        """Wait for the engine, restarting it once if it never answers."""

        timeout = self._cluster.engine_wait_s
        if wait_until(
            self._docker.engine_reachable,
            timeout_s=timeout,
            interval_s=2.0,
            sleep=self._sleep,
            on_poll=self._beat,
            label="Docker engine",
        ):
            return StepResult.ready("engine reachable")

        LOGGER.warning("[Cluster] Docker not ready after %.0fs; restarting it", timeout)
        restarted = self._docker.restart_engine()
        if not restarted.ok:
            LOGGER.error("[Cluster] Docker restart failed: %s", restarted.error_text)
        if wait_until(
            self._docker.engine_reachable,
            timeout_s=timeout / 2,
            interval_s=2.0,
            sleep=self._sleep,
            on_poll=self._beat,
            label="Docker engine after restart",
        ):
            return StepResult.ready("engine reachable after restart", changed=True)
        LOGGER.error("[Cluster] Docker engine unavailable after one restart")
        return StepResult.failed("container engine unavailable", changed=True)

    # -- swarm -------------------------------------------------------------

    def _init_strategies(self) -> list[tuple[str, list[str]]]:
        gateway = self._settings.network.gateway_ip
        common = [
            "--listen-addr", self._cluster.listen_addr,
            "--task-history-limit", str(self._cluster.task_history_limit),
        ]
        return [
            ("advertise gateway", ["--advertise-addr", gateway, *common]),
            ("force new cluster", ["--advertise-addr", gateway, *common, "--force-new-cluster"]),
            ("auto address", list(common)),
        ]

    def ensure_swarm(self) -> StepResult:
        """Initialise the swarm, falling back through three init strategies."""

        if self._docker.swarm_active():
            return StepResult.ready("swarm already active")

        for index, (label, args) in enumerate(self._init_strategies(), start=1):
            self._beat()
            LOGGER.info("[Cluster] Swarm init attempt %d (%s)", index, label)
            result = self._docker.swarm_init(*args)
            if result.ok or self._docker.swarm_active():
                LOGGER.info("[Cluster] Swarm initialised (%s)", label)
                return StepResult.ready(f"swarm initialised ({label})", changed=True)
            LOGGER.warning("[Cluster] Swarm init attempt %d failed: %s", index, result.error_text)
        LOGGER.error("[Cluster] Swarm init failed after all strategies")
        return StepResult.degraded("swarm init failed", changed=True)

    # -- overlay networks --------------------------------------------------

    def ensure_overlay_network(self) -> StepResult:
        """Make sure the attachable overlay network exists with swarm scope."""

        return self._ensure_overlay(self._cluster.overlay_network, self._cluster.overlay_subnet, OVERLAY_ATTEMPTS)

    def ensure_hal_network(self) -> StepResult:
        """Make sure the restricted overlay shared by the API and HAL exists.

        Only the API stack joins it; application stacks never do.
        """

        return self._ensure_overlay(
            self._cluster.hal_overlay_network, self._cluster.hal_overlay_subnet, HAL_OVERLAY_ATTEMPTS
        )

    def _ensure_overlay(self, name: str, subnet: str, attempts: int) -> StepResult:
        scope = self._docker.network_scope(name)
        if scope == "swarm":
            return StepResult.ready(f"{name} present")
        if scope is not None:
            LOGGER.warning("[Cluster] %s has %s scope; recreating", name, scope)
            removed = self._docker.network_remove(name)
            if not removed.ok:
                LOGGER.warning("[Cluster] Removing %s failed: %s", name, removed.error_text)
            self._sleep(2)

        def _create(attempt: int) -> bool:
            result = self._docker.overlay_create(name, subnet)
            if not result.ok:
                LOGGER.warning(
                    "[Cluster] Creating %s (attempt %d/%d) failed: %s",
                    name,
                    attempt,
                    attempts,
                    result.error_text,
                )
            self._sleep(1)
            # A leftover local-scope network must never count as created.
            return self._docker.network_scope(name) == "swarm"

        outcome = retry(
            _create,
            RetryPolicy(attempts, OVERLAY_DELAY_S, DelayStrategy.LINEAR),
            sleep=self._sleep,
            on_attempt=self._beat,
            label=f"overlay {name}",
        )
        if outcome.succeeded:
            LOGGER.info("[Cluster] %s created (attempt %d)", name, outcome.attempts)
            return StepResult.ready(f"{name} created", changed=True)
        LOGGER.error("[Cluster] %s missing after %d attempts", name, outcome.attempts)
        return StepResult.degraded(f"{name} not created", changed=True)

    # -- stacks ------------------------------------------------------------

    def deploy_stack(self, name: str) -> StepResult:
        compose_file = self._settings.paths.compose_file(name)
        if not compose_file.exists():
            LOGGER.warning("[Cluster] No compose file for stack %s at %s", name, compose_file)
            return StepResult.degraded(f"{name}: compose file missing")

        if self._docker.network_scope(self._cluster.overlay_network) is None:
            LOGGER.warning("[Cluster] %s vanished before deploying %s", self._cluster.overlay_network, name)
            self.ensure_overlay_network()

        def _deploy(attempt: int) -> bool:
            result = self._docker.stack_deploy(compose_file, name)
            if not result.ok:
                LOGGER.warning("[Cluster] Deploying %s (attempt %d) failed: %s", name, attempt, result.error_text)
            return result.ok

        outcome = retry(
            _deploy,
            RetryPolicy(self._cluster.stack_deploy_attempts, self._cluster.stack_deploy_delay_s),
            sleep=self._sleep,
            on_attempt=self._beat,
        )
        if outcome.succeeded:
            LOGGER.info("[Cluster] Stack %s deployed", name)
            return StepResult.ready(f"{name} deployed", changed=True)
        LOGGER.error("[Cluster] Stack %s failed after %d attempts", name, outcome.attempts)
        return StepResult.failed(f"{name} deploy failed", changed=True)

    def deploy_stacks(self, names: tuple[str, ...] | list[str]) -> dict[str, StepResult]:
        return {name: self.deploy_stack(name) for name in names}

    # -- compose services --------------------------------------------------

    def start_compose_service(self, name: str) -> StepResult:
        spec = self._settings.service(name)
        container = spec.container_name if spec is not None else f"cubeos-{name}"
        if self._docker.container_running(container):
            return StepResult.ready(f"{container} running")
        compose_file: Path = self._settings.paths.compose_file(name)
        if not compose_file.exists():
            LOGGER.warning("[Cluster] No compose file for %s at %s", name, compose_file)
            return StepResult.degraded(f"{name}: compose file missing")
        self._beat()
        result = self._docker.compose_up(compose_file)
        if not result.ok:
            LOGGER.warning("[Cluster] docker compose up %s failed: %s", name, result.error_text)
            return StepResult.failed(f"{name} start failed", changed=True)
        LOGGER.info("[Cluster] %s started", name)
        return StepResult.ready(f"{name} started", changed=True)
