"""Network mode engine: one document, DHCP scope and NAT policy per mode."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
import time

from config.settings import ApplianceSettings
from core.commands import CommandRunner
from core.logging import logger as LOGGER
from core.ops_models import StepOutcome, StepResult
from core.retry import wait_until
from network.access_point import AccessPoint
from network.dhcp import PiholeClient, apply_dhcp_plan, client_from_settings, plan_for
from network.interfaces import (
    SYS_CLASS_NET,
    InterfaceRoles,
    detect_interfaces,
    ensure_address,
    flush_addresses,
    ipv4_addresses,
)
from network.modes import NetworkMode, ModeProfile, Upstream, parse_mode, profile_for
from network.nat import NatController
from network.netplan import MissingWifiCredentials, NetplanDocument, build_document, write_document
from storage.network_config import NetworkConfig, NetworkConfigStore


MDNS_UNIT = "avahi-daemon"


@dataclass
class ApplyReport:
    """What one :meth:`NetworkModeEngine.apply_network_mode` call did."""

    mode: NetworkMode
    document_changed: bool = False
    steps: list[tuple[str, StepResult]] = field(default_factory=list)

    def add(self, name: str, result: StepResult) -> StepResult:
        self.steps.append((name, result))
        return result

    @property
    def outcome(self) -> StepOutcome:
        outcomes = {result.outcome for _, result in self.steps}
        if StepOutcome.FAILED in outcomes:
            return StepOutcome.FAILED
        if StepOutcome.DEGRADED in outcomes:
            return StepOutcome.DEGRADED
        return StepOutcome.READY


class NetworkModeEngine:
    """Apply the stored network mode to the appliance.

    The console and the boot orchestrator only use the public operations
    here; they never build documents or touch NAT themselves.
    """

    def __init__(
        self,
        settings: ApplianceSettings,
        runner: CommandRunner,
        store: NetworkConfigStore | None = None,
        *,
        roles: InterfaceRoles | None = None,
        pihole: PiholeClient | None = None,
        sleep: Callable[[float], None] = time.sleep,
        heartbeat: Callable[[], None] | None = None,
        sys_class_net: Path = SYS_CLASS_NET,
    ) -> None:
        self._settings = settings
        self._runner = runner
        self._store = store if store is not None else NetworkConfigStore(settings.paths.database)
        self._roles = roles
        self._pihole = pihole
        self._sleep = sleep
        self._heartbeat = heartbeat
        self._sys_class_net = sys_class_net
        self._nat = NatController(runner, settings.network.ap_subnet)

    @property
    def roles(self) -> InterfaceRoles:
        if self._roles is None:
            self._roles = detect_interfaces(self._settings.network, self._sys_class_net)
        return self._roles

    @property
    def store(self) -> NetworkConfigStore:
        return self._store

    def _beat(self, *_args: object) -> None:
        if self._heartbeat is not None:
            self._heartbeat()

    # -- configuration -----------------------------------------------------

    def read_config(self) -> NetworkConfig:
        """Return the stored config, or the OFFLINE default when absent."""

        config = self._store.load()
        if config is None:
            LOGGER.info("[Network] No stored network config; using %s", NetworkMode.OFFLINE.value)
            return NetworkConfig(mode=NetworkMode.OFFLINE.value)
        return config

    def resolve_profile(self, config: NetworkConfig) -> ModeProfile:
        return profile_for(parse_mode(config.mode))

    def render_document(self, config: NetworkConfig) -> NetplanDocument:
        return build_document(
            self.resolve_profile(config),
            self.roles,
            config,
            self._settings.network,
        )

    def _write(self, config: NetworkConfig) -> StepResult:
        profile = self.resolve_profile(config)
        try:
            document = self.render_document(config)
        except MissingWifiCredentials as exc:
            LOGGER.warning("[Network] %s; keeping the existing network document", exc)
            return StepResult.degraded(str(exc))

        netplan_file = self._settings.paths.netplan_file
        changed = write_document(document, netplan_file)
        if not changed:
            return StepResult.ready(f"{netplan_file} already matches {profile.mode.value}")

        LOGGER.info("[Network] Wrote %s for mode %s", netplan_file, profile.mode.value)
        generated = self._runner.run(["netplan", "generate"])
        if not generated.ok:
            LOGGER.warning("[Network] netplan generate failed: %s", generated.error_text)
            return StepResult.degraded(f"netplan generate failed: {generated.error_text}", changed=True)
        return StepResult.ready(f"wrote {profile.mode.value} document", changed=True)

    # -- public operations -------------------------------------------------

    def write_early_network_config(self) -> StepResult:
        """Rewrite only the network document, before the renderer starts.

        Never touches live interfaces. Without a database the shipped
        document is already correct; without a row the existing one is kept.
        """

        if not self._store.exists():
            LOGGER.info("[Network] No database at %s; keeping shipped document", self._store.db_path)
            return StepResult.ready("no config store")
        config = self._store.load()
        if config is None:
            LOGGER.info("[Network] No network_config row; keeping existing document")
            return StepResult.ready("no config row")
        return self._write(config)

    def apply_network_mode(
        self,
        *,
        start_access_point: bool = True,
        configure_dhcp: bool = True,
    ) -> ApplyReport:
        """Write the mode's document and perform its runtime actions.

        Boot applies the mode before Pi-hole and hostapd are up, so it turns
        ``start_access_point`` and ``configure_dhcp`` off and runs those
        steps later through :meth:`start_access_point` and
        :meth:`configure_dhcp_scope`.
        """

        config = self.read_config()
        profile = self.resolve_profile(config)
        report = ApplyReport(mode=profile.mode)
        LOGGER.info("[Network] Applying network mode %s", profile.mode.value)

        written = report.add("document", self._write(config))
        report.document_changed = written.changed
        if written.outcome is StepOutcome.DEGRADED and profile.requires_ssid and not config.wifi_ssid.strip():
            LOGGER.warning("[Network] Skipping runtime changes for %s without WiFi credentials", profile.mode.value)
            return report

        if profile.access_point:
            report.add("ap-address", self.ensure_access_point_address())
            if start_access_point:
                report.add("access-point", self.start_access_point())
        else:
            report.add("access-point", self._access_point().stop())
            report.add("ap-address", self._flush_ap_address())

        report.add("upstream", self._bring_up_upstream(profile))

        if profile.nat:
            report.add("nat", self._nat.enable(self.roles.access_point, self._upstream_iface(profile)))
        else:
            report.add("nat", self._nat.disable())

        report.add("mdns", self._set_unit(MDNS_UNIT, running=profile.mdns))

        if configure_dhcp:
            report.add("dhcp", self.configure_dhcp_scope(config))

        for name, result in report.steps:
            if not result.ok:
                LOGGER.warning("[Network] %s: %s", name, result.detail)
        LOGGER.info("[Network] Mode %s applied (%s)", profile.mode.value, report.outcome.value)
        return report

    def start_access_point(self) -> StepResult:
        return self._access_point().start()

    def ensure_access_point_address(self) -> StepResult:
        network = self._settings.network
        if ensure_address(
            self._runner,
            self.roles.access_point,
            network.gateway_ip,
            network.ap_prefix_len,
            sleep=self._sleep,
            on_poll=self._beat,
        ):
            return StepResult.ready(f"{network.gateway_ip} on {self.roles.access_point}")
        return StepResult.degraded(f"{network.gateway_ip} missing on {self.roles.access_point}", changed=True)

    def configure_dhcp_scope(self, config: NetworkConfig | None = None) -> StepResult:
        config = config if config is not None else self.read_config()
        profile = self.resolve_profile(config)
        plan = plan_for(profile, self.roles, self._settings.network)
        if self._pihole is None:
            self._pihole = client_from_settings(self._settings.network, self._settings.paths.secrets_file)
        LOGGER.info("[Network] DHCP active=%s for %s", plan.active, profile.mode.value)
        return apply_dhcp_plan(
            self._pihole,
            plan,
            wait_s=self._settings.boot.pihole_wait_s,
            sleep=self._sleep,
            on_poll=self._beat,
        )

    # -- console operations ------------------------------------------------

    def set_mode(self, mode: str) -> NetworkConfig:
        """Persist a new mode; ``apply_network_mode`` makes it live."""

        text = mode.strip().lower()
        valid = {item.value for item in NetworkMode}
        if text not in valid:
            raise ValueError(f"Unknown network mode {mode!r}; expected one of {sorted(valid)}")
        return self._save(self.read_config().with_updates(mode=text))

    def set_wifi_credentials(self, ssid: str, password: str) -> NetworkConfig:
        if not ssid.strip():
            raise ValueError("SSID must not be empty")
        if password and not 8 <= len(password) <= 63:
            raise ValueError("WPA passphrase must be 8-63 characters")
        return self._save(self.read_config().with_updates(wifi_ssid=ssid.strip(), wifi_password=password))

    def set_static_ip(
        self,
        address: str,
        gateway: str,
        netmask: str = "255.255.255.0",
        dns_primary: str = "",
        dns_secondary: str = "",
    ) -> NetworkConfig:
        if not address.strip() or not gateway.strip():
            raise ValueError("Static IP needs both an address and a gateway")
        return self._save(
            self.read_config().with_updates(
                use_static_ip=True,
                static_ip=address.strip(),
                static_gateway=gateway.strip(),
                static_netmask=netmask.strip() or "255.255.255.0",
                static_dns_primary=dns_primary.strip(),
                static_dns_secondary=dns_secondary.strip(),
            )
        )

    def clear_static_ip(self) -> NetworkConfig:
        return self._save(self.read_config().with_updates(use_static_ip=False))

    def _save(self, config: NetworkConfig) -> NetworkConfig:
        self._store.save(config)
        LOGGER.info("[Network] Stored network config (mode=%s)", config.mode)
        return config

    # -- runtime helpers ---------------------------------------------------

    def _access_point(self) -> AccessPoint:
        return AccessPoint(self._runner, self._settings.network, self.roles.access_point, sleep=self._sleep)

    def _upstream_iface(self, profile: ModeProfile) -> str:
        if profile.upstream is Upstream.ETHERNET:
            return self.roles.ethernet
        if profile.upstream is Upstream.WIFI_DONGLE:
            return self.roles.wifi_client
        return self.roles.access_point

    def _flush_ap_address(self) -> StepResult:
        if flush_addresses(self._runner, self.roles.access_point):
            return StepResult.ready(f"{self.roles.access_point} flushed")
        return StepResult.degraded(f"could not flush {self.roles.access_point}")

    def _bring_up_upstream(self, profile: ModeProfile) -> StepResult:
        if profile.upstream is Upstream.NONE:
            return StepResult.ready("no upstream")
        iface = self._upstream_iface(profile)
        if profile.upstream is not Upstream.ETHERNET:
            self._runner.run(["networkctl", "reload"])
            self._sleep(2)
        result = self._runner.run(["networkctl", "reconfigure", iface])
        if not result.ok:
            LOGGER.warning("[Network] networkctl reconfigure %s: %s", iface, result.error_text)
        if profile.upstream is Upstream.ETHERNET:
            return StepResult.ready(f"{iface} reconfigured")

        wait_s = 30.0 if profile.is_server else 10.0
        if wait_until(
            lambda: bool(ipv4_addresses(self._runner, iface)),
            timeout_s=wait_s,
            interval_s=2.0,
            sleep=self._sleep,
            on_poll=self._beat,
            label=f"address on {iface}",
        ):
            return StepResult.ready(f"{iface} connected")
        return StepResult.degraded(f"{iface} has no address; check WiFi credentials")

    def _set_unit(self, unit: str, *, running: bool) -> StepResult:
        active = self._runner.run(["systemctl", "is-active", "--quiet", unit]).ok
        if active == running:
            return StepResult.ready(f"{unit} {'running' if running else 'stopped'}")
        action = "start" if running else "stop"
        result = self._runner.run(["systemctl", action, unit])
        if not result.ok:
            return StepResult.degraded(f"{unit} {action} failed: {result.error_text}")
        return StepResult.ready(f"{unit} {'started' if running else 'stopped'}", changed=True)
