"""The nine-stage boot sequence.

Stages run strictly in order. A stage may degrade (warning, continue) or
fail (counted, continue); nothing aborts the sequence, so a partially
healthy appliance still reaches verification and exposes a recovery path.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import time

from boot.markers import TOTAL_STAGES, BootMarkers
from cluster.bootstrap import ClusterBootstrap
from cluster.docker import DockerCli
from cluster.secrets import SecretsManager
from config.settings import ApplianceSettings, ServiceSpec
from core.commands import CommandRunner
from core.logging import log_fail, log_info, log_ok, log_warn
from core.logging import logger as LOGGER
from core.ops_models import BootMode, StepOutcome, StepResult
from core.retry import wait_until
from network.access_point import derive_credentials, mac_suffix, write_credentials
from network.engine import NetworkModeEngine
from network.interfaces import write_interfaces_env
from network.nat import NatController
from services.health_probes import HealthProbeResult, probe_service
from services.system import SystemChecks


PIHOLE = "pihole"
API = "cubeos-api"
HAL = "cubeos-hal"


@dataclass
class BootReport:
    """Outcome of one boot run."""

    mode: BootMode
    failures: int = 0
    warnings: int = 0
    unhealthy: list[str] = field(default_factory=list)
    elapsed_s: float = 0.0


class BootOrchestrator:
    """Run the stage sequence for one boot mode."""

    def __init__(
        self,
        settings: ApplianceSettings,
        runner: CommandRunner,
        *,
        markers: BootMarkers | None = None,
        engine: NetworkModeEngine | None = None,
        cluster: ClusterBootstrap | None = None,
        secrets: SecretsManager | None = None,
        system: SystemChecks | None = None,
        firewall: NatController | None = None,
        prober: Callable[[ServiceSpec], HealthProbeResult] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self._runner = runner
        self._markers = markers or BootMarkers(settings.paths)
        heartbeat = self._markers.beat
        docker = DockerCli(runner, settings.cluster.compose_platform)
        self._engine = engine or NetworkModeEngine(settings, runner, sleep=sleep, heartbeat=heartbeat)
        self._cluster = cluster or ClusterBootstrap(settings, docker, sleep=sleep, heartbeat=heartbeat)
        self._secrets = secrets or SecretsManager(settings, docker)
        self._system = system or SystemChecks(runner, settings.paths, sleep=sleep)
        self._firewall = firewall or NatController(runner, settings.network.ap_subnet)
        timeout_s = settings.boot.health_timeout_s
        self._prober = prober or (lambda spec: probe_service(spec, timeout_s=timeout_s))
        self._sleep = sleep
        self._clock = clock
        self._report = BootReport(mode=BootMode.NORMAL)
        self._swarm_ready = False

    # -- bookkeeping -------------------------------------------------------

    def _record(self, name: str, result: StepResult) -> StepResult:
        if result.outcome is StepOutcome.FAILED:
            self._report.failures += 1
            log_fail(f"{name}: {result.detail}")
        elif result.outcome is StepOutcome.DEGRADED:
            self._report.warnings += 1
            log_warn(f"{name}: {result.detail}")
        else:
            log_ok(f"{name}: {result.detail}" if result.detail else name)
        self._markers.beat()
        return result

    def _stage(self, number: int, title: str) -> None:
        self._markers.beat()
        self._markers.set_progress(number, TOTAL_STAGES)
        LOGGER.info("[Boot] Step %d/%d: %s", number, TOTAL_STAGES, title)

    def _beat(self, *_args: object) -> None:
        self._markers.beat()

    def _wait_healthy(self, name: str, timeout_s: float) -> StepResult:
        spec = self._settings.service(name)
        if spec is None or not spec.has_health_endpoint:
            return StepResult.ready(f"{name} has no health endpoint")
        if wait_until(
            lambda: self._prober(spec).healthy,
            timeout_s=timeout_s,
            interval_s=2.0,
            sleep=self._sleep,
            on_poll=self._beat,
            label=name,
        ):
            return StepResult.ready(f"{name} healthy")
        return StepResult.degraded(f"{name} not responding after {timeout_s:.0f}s")

    # -- stages ------------------------------------------------------------

    def _memory(self) -> None:
        self._record("zram swap", self._system.ensure_zram())
        self._record("hardware watchdog", self._system.start_hardware_watchdog())

    def _interfaces(self) -> None:
        roles = self._engine.roles
        write_interfaces_env(roles, self._settings.paths.interfaces_env)
        report = self._engine.apply_network_mode(start_access_point=False, configure_dhcp=False)
        for name, result in report.steps:
            self._record(f"network {name}", result)

    def _credentials(self) -> None:
        paths = self._settings.paths
        iface = self._engine.roles.access_point
        credentials = derive_credentials(self._settings.network, mac_suffix(iface))
        if write_credentials(credentials, iface, paths.hostapd_conf, paths.ap_env_file):
            self._record("AP credentials", StepResult.ready(f"SSID {credentials.ssid}", changed=True))
        else:
            self._record("AP credentials", StepResult.ready(f"{paths.ap_env_file} kept"))
        self._record("secrets", self._secrets.ensure_secrets())

    def _cluster_stage(self) -> None:
        engine = self._record("docker engine", self._cluster.wait_for_engine())
        if engine.outcome is StepOutcome.FAILED:
            log_fail("container engine unavailable; cluster stages will be skipped")
            return
        swarm = self._record("swarm", self._cluster.ensure_swarm())
        self._swarm_ready = swarm.ok
        if not self._swarm_ready:
            return
        self._record("overlay network", self._cluster.ensure_overlay_network())
        self._record("HAL network", self._cluster.ensure_hal_network())
        self._record("swarm secrets", self._secrets.mirror_swarm_secrets())

    def _infrastructure(self) -> None:
        self._record(PIHOLE, self._cluster.start_compose_service(PIHOLE))
        self._record(f"{PIHOLE} health", self._wait_healthy(PIHOLE, self._settings.boot.pihole_wait_s))
        self._record("DHCP scope", self._engine.configure_dhcp_scope())

    def _access_point(self) -> None:
        profile = self._engine.resolve_profile(self._engine.read_config())
        if not profile.access_point:
            self._record("access point", StepResult.ready(f"not used in {profile.mode.value}"))
            return
        self._record("access point", self._engine.start_access_point())

    def _proxy_and_hardware(self) -> None:
        self._record("resolver", self._system.ensure_resolver())
        hal = self._settings.service(HAL)
        if hal is not None and hal.port is not None:
            self._record("HAL port", self._firewall.protect_hal_port(hal.port))
        for spec in self._settings.compose_services:
            if spec.name == PIHOLE:
                continue
            started = self._record(spec.name, self._cluster.start_compose_service(spec.name))
            if started.ok:
                self._record(f"{spec.name} health", self._wait_healthy(spec.name, self._settings.boot.api_wait_s))

    def _stacks(self) -> None:
        if not self._swarm_ready:
            self._record("stacks", StepResult.failed("swarm not active; run `cubeos-init recover`"))
            return
        plan = self._settings.stacks
        for name in plan.bootstrap + plan.core:
            self._record(f"stack {name}", self._cluster.deploy_stack(name))
        self._record(f"{API} health", self._wait_healthy(API, self._settings.boot.api_wait_s))
        for name in plan.post_api:
            self._record(f"stack {name}", self._cluster.deploy_stack(name))

    def _verify(self) -> None:
        for spec in self._settings.health_checked_services:
            self._markers.beat()
            result = self._prober(spec)
            if result.healthy:
                log_ok(f"{spec.name} ({result.summary})")
            else:
                log_warn(f"{spec.name}: {result.summary}")
                self._report.unhealthy.append(spec.name)

    # -- entry point -------------------------------------------------------

    def run(self, mode: BootMode) -> BootReport:
        """Run every stage for ``mode`` and return the report.

        Reaching verification always counts as a completed boot: the
        provisioning marker is written whatever the health summary says, so
        the next boot is a normal boot rather than another first boot.
        """

        started = self._clock()
        self._report = BootReport(mode=mode)
        self._swarm_ready = False
        log_info(f"CubeOS {mode.value} boot starting")

        stages: list[tuple[str, Callable[[], None]]] = [
            ("Memory and hardware watchdog", self._memory),
            ("Network interfaces", self._interfaces),
            ("Credentials", self._credentials),
            ("Docker and swarm", self._cluster_stage),
            ("DNS and DHCP", self._infrastructure),
            ("WiFi access point", self._access_point),
            ("Proxy and hardware services", self._proxy_and_hardware),
            ("Application stacks", self._stacks),
            ("Verification", self._verify),
        ]
        for number, (title, stage) in enumerate(stages, start=1):
            self._stage(number, title)
            stage()

        report = self._report
        report.elapsed_s = self._clock() - started
        self._markers.mark_provisioned()
        armed = self._runner.run(["systemctl", "start", self._settings.boot.watchdog_timer])
        if not armed.ok:
            LOGGER.warning("[Boot] Could not start %s: %s", self._settings.boot.watchdog_timer, armed.error_text)
        self._markers.clear_ephemeral()

        LOGGER.info(
            "[Boot] %s boot complete in %.0fs: %d failures, %d warnings, %d unhealthy services",
            mode.value,
            report.elapsed_s,
            report.failures,
            report.warnings,
            len(report.unhealthy),
        )
        if report.unhealthy:
            log_warn(
                f"{len(report.unhealthy)} service(s) not healthy ({', '.join(report.unhealthy)}); "
                "the watchdog retries every minute"
            )
        return report
