"""Watchdog reconciler: re-derive desired state and repair drift.

One :meth:`WatchdogReconciler.reconcile_once` call is one timer tick. Every
check either passes without touching anything, or counts an issue and makes
exactly one corrective attempt. A healthy node therefore sees no mutations.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
import shutil
import time

from cluster.bootstrap import ClusterBootstrap
from cluster.docker import DockerCli
from cluster.secrets import SecretsManager
from config.settings import ApplianceSettings, ServiceSpec
from core.commands import CommandRunner
from core.logging import log_ok, log_warn
from core.logging import logger as LOGGER
from core.ops_models import ReconcileSummary, ServiceHealthRecord, StepResult
from core.retry import wait_until
from network.access_point import AccessPoint
from network.interfaces import SYS_CLASS_NET, InterfaceRoles, detect_interfaces, ensure_address, has_address
from network.modes import ModeProfile, NetworkMode, parse_mode, profile_for
from services.health_probes import HealthProbeResult, probe_service
from services.system import SystemChecks
from storage.network_config import NetworkConfigStore


class WatchdogReconciler:
    """Stateless reconciliation over every managed subsystem."""

    def __init__(
        self,
        settings: ApplianceSettings,
        runner: CommandRunner,
        *,
        roles: InterfaceRoles | None = None,
        prober: Callable[[ServiceSpec], HealthProbeResult] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = datetime.now,
        sys_class_net: Path = SYS_CLASS_NET,
    ) -> None:
        self._settings = settings
        self._runner = runner
        self._docker = DockerCli(runner, settings.cluster.compose_platform)
        self._cluster = ClusterBootstrap(settings, self._docker, sleep=sleep)
        self._secrets = SecretsManager(settings, self._docker)
        self._system = SystemChecks(runner, settings.paths, sleep=sleep)
        self._roles = roles
        timeout_s = settings.boot.health_timeout_s
        self._prober = prober or (lambda spec: probe_service(spec, timeout_s=timeout_s))
        self._sleep = sleep
        self._now = now
        self._sys_class_net = sys_class_net
        self._summary = ReconcileSummary()

    # -- helpers -----------------------------------------------------------

    @property
    def roles(self) -> InterfaceRoles:
        if self._roles is None:
            self._roles = detect_interfaces(self._settings.network, self._sys_class_net)
        return self._roles

    def _profile(self) -> ModeProfile:
        config = NetworkConfigStore(self._settings.paths.database).load()
        mode = parse_mode(config.mode) if config is not None else NetworkMode.OFFLINE
        return profile_for(mode)

    def _repair(self, name: str, problem: str, fix: Callable[[], StepResult]) -> bool:
        """Count an issue, attempt ``fix`` once and count a fix when it worked."""

        self._summary.issues += 1
        log_warn(f"{name}: {problem}")
        result = fix()
        if result.ok:
            self._summary.fixes += 1
            LOGGER.info("[Watchdog] FIX %s: %s", name, result.detail)
            return True
        LOGGER.warning("[Watchdog] %s not fixed: %s", name, result.detail)
        return False

    def _issue(self, name: str, problem: str) -> None:
        self._summary.issues += 1
        log_warn(f"{name}: {problem}")

    @staticmethod
    def _from_command(success: str, result) -> StepResult:
        if result.ok:
            return StepResult.ready(success, changed=True)
        return StepResult.failed(result.error_text, changed=True)

    # -- checks ------------------------------------------------------------

    def check_engine(self) -> bool:
        if self._docker.engine_reachable():
            log_ok("docker engine")
            return True

        def _restart() -> StepResult:
            self._docker.restart_engine()
            if wait_until(self._docker.engine_reachable, timeout_s=10, interval_s=2, sleep=self._sleep):
                return StepResult.ready("docker restarted", changed=True)
            return StepResult.failed("docker still unreachable", changed=True)

        return self._repair("docker engine", "not reachable", _restart)

    def check_ap_address(self, profile: ModeProfile) -> None:
        if not profile.access_point:
            return
        network = self._settings.network
        iface = self.roles.access_point
        if has_address(self._runner, iface, network.gateway_ip):
            log_ok(f"{iface} has {network.gateway_ip}")
            return

        def _readd() -> StepResult:
            if ensure_address(
                self._runner, iface, network.gateway_ip, network.ap_prefix_len,
                timeout_s=5, sleep=self._sleep,
            ):
                return StepResult.ready(f"{network.gateway_ip} re-added to {iface}", changed=True)
            return StepResult.failed(f"{network.gateway_ip} still missing on {iface}", changed=True)

        self._repair(f"{iface} address", f"missing {network.gateway_ip}", _readd)

    def check_resolver(self) -> None:
        if self._system.resolver_has_nameserver():
            log_ok("resolver")
            return
        self._repair("resolver", f"{self._settings.paths.resolv_conf} has no nameserver", self._system.ensure_resolver)

    def check_compose_service(self, spec: ServiceSpec) -> None:
        container = spec.container_name
        if not self._docker.container_running(container):
            compose_file = self._settings.paths.compose_file(spec.name)

            def _start() -> StepResult:
                if not compose_file.exists():
                    return StepResult.failed(f"no compose file at {compose_file}")
                return self._from_command(f"{spec.name} started", self._docker.compose_up(compose_file))

            fixed = self._repair(spec.name, "container not running", _start)
            self._summary.records.append(
                ServiceHealthRecord(spec.name, running=False, healthy=False, action_taken="compose up" if fixed else None)
            )
            return

        if spec.has_health_endpoint:
            probe = self._prober(spec)
            if not probe.healthy:
                fixed = self._repair(
                    spec.name,
                    f"unhealthy ({probe.summary})",
                    lambda: self._from_command(f"{container} restarted", self._docker.container_restart(container)),
                )
                self._summary.records.append(
                    ServiceHealthRecord(spec.name, running=True, healthy=False, action_taken="restart" if fixed else None)
                )
                return
        log_ok(spec.name)
        self._summary.records.append(ServiceHealthRecord(spec.name, running=True, healthy=True))

    def check_swarm(self) -> bool:
        if self._docker.swarm_active():
            log_ok("swarm active")
            return True
        return self._repair("swarm", "not active", self._cluster.ensure_swarm)

    def check_overlay_network(self) -> None:
        name = self._settings.cluster.overlay_network
        scope = self._docker.network_scope(name)
        if scope == "swarm":
            log_ok(name)
            return
        self._repair(name, f"scope={scope or 'missing'}", self._cluster.ensure_overlay_network)

    def check_swarm_secrets(self) -> None:
        if not self._settings.paths.secrets_file.exists():
            return
        missing = self._secrets.missing_swarm_secrets()
        if not missing:
            log_ok("swarm secrets")
            return
        self._repair("swarm secrets", f"missing {', '.join(missing)}", self._secrets.mirror_swarm_secrets)

    def check_stack(self, name: str, deployed: set[str]) -> None:
        compose_file = self._settings.paths.compose_file(name)

        def _deploy() -> StepResult:
            if not compose_file.exists():
                return StepResult.failed(f"no compose file at {compose_file}")
            return self._from_command(f"{name} redeployed", self._docker.stack_deploy(compose_file, name))

        if name not in deployed:
            fixed = self._repair(f"stack {name}", "missing", _deploy)
            self._summary.records.append(
                ServiceHealthRecord(name, running=False, healthy=False, action_taken="deploy" if fixed else None)
            )
            return

        short = [count for count in self._docker.stack_replicas(name) if not count.satisfied]
        if short:
            detail = ", ".join(f"{count.service}={count.running}/{count.desired}" for count in short)
            fixed = self._repair(f"stack {name}", f"replicas {detail}", _deploy)
            self._summary.records.append(
                ServiceHealthRecord(name, running=False, healthy=False, action_taken="redeploy" if fixed else None)
            )
            return

        spec = self._settings.service(name)
        if spec is not None and spec.has_health_endpoint:
            probe = self._prober(spec)
            if not probe.healthy:
                self._issue(f"stack {name}", f"health check failed ({probe.summary})")
                self._summary.records.append(ServiceHealthRecord(name, running=True, healthy=False))
                return
        log_ok(f"stack {name}")
        self._summary.records.append(ServiceHealthRecord(name, running=True, healthy=True))

    def check_access_point(self, profile: ModeProfile) -> None:
        if not profile.access_point:
            return
        access_point = AccessPoint(self._runner, self._settings.network, self.roles.access_point, sleep=self._sleep)
        if access_point.is_active():
            log_ok("hostapd")
            return

        def _start() -> StepResult:
            self._runner.run(["rfkill", "unblock", "wifi"])
            return self._from_command("hostapd started", self._runner.run(["systemctl", "start", "hostapd"]))

        self._repair("hostapd", "not running", _start)

    def check_zram(self) -> None:
        if self._system.zram_active():
            log_ok("zram swap")
            return
        self._repair("zram swap", "not active", self._system.ensure_zram)

    def check_obsolete(self, deployed: set[str] | None) -> None:
        watchdog = self._settings.watchdog
        if deployed is not None:
            for name in watchdog.obsolete_stacks:
                if name in deployed:
                    self._repair(
                        f"obsolete stack {name}",
                        "still deployed",
                        lambda name=name: self._from_command(f"{name} removed", self._docker.stack_remove(name)),
                    )
            max_age_h = watchdog.task_container_max_age_h
            now = self._now().astimezone(timezone.utc)
            stale = self._docker.stale_task_containers(max_age_h, now)
            if stale:
                self._repair(
                    "task containers",
                    f"{len(stale)} exited more than {max_age_h}h ago",
                    lambda: self._from_command(
                        f"removed {len(stale)} task containers", self._docker.remove_containers(stale)
                    ),
                )
        for path in watchdog.obsolete_paths:
            if path.exists():
                self._repair(f"obsolete path {path}", "present", lambda path=path: self._remove_path(path))

    @staticmethod
    def _remove_path(path: Path) -> StepResult:
        try:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink()
        except OSError as exc:
            return StepResult.failed(f"could not remove {path}: {exc}")
        return StepResult.ready(f"removed {path}", changed=True)

    def check_disk(self) -> None:
        watchdog = self._settings.watchdog
        try:
            percent = self._system.disk_usage_percent(Path("/"))
        except OSError as exc:
            self._issue("disk", f"usage unavailable: {exc}")
            return
        free_kb = self._system.free_kb(self._settings.paths.data_dir)
        low_space = free_kb is not None and free_kb < watchdog.low_space_kb
        if percent <= watchdog.disk_cleanup_percent and not low_space:
            log_ok(f"disk {percent:.0f}% used")
            return
        problem = f"{percent:.0f}% used" if not low_space else f"only {free_kb} KB free on {self._settings.paths.data_dir}"
        self._repair("disk", problem, self._system.cleanup_disk)

    # -- cycle -------------------------------------------------------------

    def _run(self, name: str, check: Callable[[], object]) -> object:
        try:
            return check()
        except Exception as exc:  # noqa: BLE001 - one check must not stop the cycle
            LOGGER.exception("[Watchdog] Check %s raised: %s", name, exc)
            self._summary.issues += 1
            return None

    def reconcile_once(self) -> ReconcileSummary:
        """Run every check once and return the issue and fix counters."""

        self._summary = ReconcileSummary()
        LOGGER.info("[Watchdog] Health check started")
        profile = self._run("network mode", self._profile) or profile_for(NetworkMode.OFFLINE)

        engine_ok = bool(self._run("engine", self.check_engine))
        self._run("ap address", lambda: self.check_ap_address(profile))
        self._run("resolver", self.check_resolver)

        deployed: set[str] | None = None
        if engine_ok:
            for spec in self._settings.compose_services:
                self._run(spec.name, lambda spec=spec: self.check_compose_service(spec))
            swarm_ok = bool(self._run("swarm", self.check_swarm))
            if swarm_ok:
                self._run("overlay network", self.check_overlay_network)
                self._run("swarm secrets", self.check_swarm_secrets)
                deployed = self._docker.stack_names()
                for name in self._settings.stacks.all:
                    self._run(f"stack {name}", lambda name=name: self.check_stack(name, deployed))
        else:
            self._summary.notes.append("container checks skipped: engine unreachable")

        self._run("hostapd", lambda: self.check_access_point(profile))
        self._run("zram", self.check_zram)
        self._run("obsolete artifacts", lambda: self.check_obsolete(deployed))
        self._run("disk", self.check_disk)

        self._write_alert()
        if self._summary.healthy:
            LOGGER.info("[Watchdog] All healthy")
        else:
            LOGGER.warning(
                "[Watchdog] %d issues found, %d fixed",
                self._summary.issues,
                self._summary.fixes,
            )
        return self._summary

    def _write_alert(self) -> None:
        alert_file = self._settings.paths.alert_file
        summary = self._summary
        try:
            if summary.healthy:
                alert_file.unlink(missing_ok=True)
                return
            alert_file.parent.mkdir(parents=True, exist_ok=True)
            stamp = self._now().strftime("%Y-%m-%d %H:%M:%S")
            with alert_file.open("a", encoding="utf-8") as handle:
                handle.write(f"{stamp} issues={summary.issues} fixes={summary.fixes}\n")
        except OSError as exc:
            LOGGER.warning("[Watchdog] Could not update %s: %s", alert_file, exc)
