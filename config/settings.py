"""Typed appliance settings built from the layered YAML configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import ipaddress
from pathlib import Path
from typing import Any, Mapping


@dataclass(frozen=True)
class PathSettings:
    """Filesystem locations used by the boot and watchdog processes."""

    config_dir: Path = Path("/cubeos/config")
    coreapps_dir: Path = Path("/cubeos/coreapps")
    apps_dir: Path = Path("/cubeos/apps")
    data_dir: Path = Path("/cubeos/data")
    database: Path = Path("/cubeos/data/cubeos.db")
    provisioned_marker: Path = Path("/cubeos/data/.provisioned")
    heartbeat_file: Path = Path("/tmp/cubeos-boot-heartbeat")
    progress_file: Path = Path("/tmp/cubeos-boot-progress")
    netplan_file: Path = Path("/etc/netplan/01-cubeos.yaml")
    secrets_file: Path = Path("/cubeos/config/secrets.env")
    hal_acl_file: Path = Path("/cubeos/coreapps/cubeos-hal/appdata/acl.json")
    interfaces_env: Path = Path("/cubeos/config/interfaces.env")
    hostapd_conf: Path = Path("/etc/hostapd/hostapd.conf")
    ap_env_file: Path = Path("/cubeos/config/ap.env")
    resolv_conf: Path = Path("/etc/resolv.conf")
    boot_log: Path = Path("/var/log/cubeos-boot.log")
    watchdog_log: Path = Path("/cubeos/data/watchdog/watchdog.log")
    alert_file: Path = Path("/cubeos/alerts/watchdog.alert")
    hardware_watchdog_device: Path = Path("/dev/watchdog")

    def compose_file(self, name: str) -> Path:
        """Return the compose definition for a core app or stack."""

        return self.coreapps_dir / name / "appconfig" / "docker-compose.yml"


@dataclass(frozen=True)
class NetworkSettings:
    """Fixed addressing and interface names for the appliance network."""

    gateway_ip: str = "10.42.24.1"
    ap_subnet: str = "10.42.24.0/24"
    domain: str = "cubeos.cube"
    ap_interface: str = "wlan0"
    eth_interface: str = "eth0"
    wifi_client_interface: str = "wlan1"
    country_code: str = "NL"
    tx_power_mbm: int = 2000
    ap_ssid_prefix: str = "CubeOS-"
    ap_key_prefix: str = "cubeos-"
    server_fallback_dns: tuple[str, ...] = ("1.1.1.1", "8.8.8.8")
    pihole_api_url: str = "http://127.0.0.1:6001"
    pihole_password_key: str = "CUBEOS_PIHOLE_PASSWORD"

    @property
    def ap_prefix_len(self) -> int:
        return ipaddress.ip_network(self.ap_subnet, strict=False).prefixlen

    @property
    def gateway_cidr(self) -> str:
        return f"{self.gateway_ip}/{self.ap_prefix_len}"


@dataclass(frozen=True)
class ClusterSettings:
    """Swarm and overlay network parameters."""

    listen_addr: str = "0.0.0.0:2377"
    task_history_limit: int = 1
    overlay_network: str = "cubeos-network"
    overlay_subnet: str = "10.42.25.0/24"
    hal_overlay_network: str = "hal-internal"
    hal_overlay_subnet: str = "10.42.26.0/24"
    compose_platform: str = "linux/arm64"
    engine_wait_s: float = 60.0
    stack_deploy_attempts: int = 3
    stack_deploy_delay_s: float = 3.0
    swarm_secrets: tuple[str, ...] = ("jwt_secret", "api_secret")


class ServiceKind(str, Enum):
    """How a managed service is run."""

    COMPOSE = "compose"
    STACK = "stack"


@dataclass(frozen=True)
class ServiceSpec:
    """A managed service and its HTTP liveness endpoint."""

    name: str
    kind: ServiceKind
    port: int | None = None
    path: str = "/"

    @property
    def container_name(self) -> str:
        if self.name.startswith("cubeos-"):
            return self.name
        return f"cubeos-{self.name}"

    @property
    def has_health_endpoint(self) -> bool:
        return self.port is not None

    def health_url(self, host: str = "127.0.0.1") -> str:
        return f"http://{host}:{self.port}{self.path}"


@dataclass(frozen=True)
class StackPlan:
    """Stack deployment order, grouped by boot phase."""

    bootstrap: tuple[str, ...] = ("registry",)
    core: tuple[str, ...] = ("cubeos-api", "cubeos-docsindex", "dozzle")
    post_api: tuple[str, ...] = ("cubeos-dashboard", "kiwix")

    @property
    def all(self) -> tuple[str, ...]:
        return self.bootstrap + self.core + self.post_api


@dataclass(frozen=True)
class BootSettings:
    """Timing for the orchestrator, dead-man's switch and timeout supervisor."""

    stall_timeout_s: float = 180.0
    max_boot_time_s: float = 900.0
    poll_interval_s: float = 15.0
    kill_grace_s: float = 5.0
    boot_timeout_s: float = 1200.0
    init_unit: str = "cubeos-init.service"
    watchdog_timer: str = "cubeos-watchdog.timer"
    health_timeout_s: float = 5.0
    pihole_wait_s: float = 60.0
    api_wait_s: float = 60.0


@dataclass(frozen=True)
class WatchdogSettings:
    """Thresholds for the watchdog reconciler."""

    interval_s: float = 60.0
    disk_cleanup_percent: float = 85.0
    low_space_kb: int = 512000
    log_max_bytes: int = 1048576
    task_container_max_age_h: int = 1
    obsolete_stacks: tuple[str, ...] = ()
    obsolete_paths: tuple[Path, ...] = ()


DEFAULT_SERVICES: tuple[ServiceSpec, ...] = (
    ServiceSpec("pihole", ServiceKind.COMPOSE, 6001, "/admin/"),
    ServiceSpec("npm", ServiceKind.COMPOSE, 81, "/api/"),
    ServiceSpec("cubeos-hal", ServiceKind.COMPOSE, 6005, "/health"),
    ServiceSpec("terminal", ServiceKind.COMPOSE),
    ServiceSpec("registry", ServiceKind.STACK, 5000, "/v2/"),
    ServiceSpec("cubeos-api", ServiceKind.STACK, 6010, "/health"),
    ServiceSpec("cubeos-docsindex", ServiceKind.STACK, 6032, "/health"),
    ServiceSpec("dozzle", ServiceKind.STACK),
    ServiceSpec("cubeos-dashboard", ServiceKind.STACK, 6011, "/"),
    ServiceSpec("kiwix", ServiceKind.STACK),
)


@dataclass(frozen=True)
class ApplianceSettings:
    """Everything a component needs to know about the appliance."""

    paths: PathSettings = field(default_factory=PathSettings)
    network: NetworkSettings = field(default_factory=NetworkSettings)
    cluster: ClusterSettings = field(default_factory=ClusterSettings)
    services: tuple[ServiceSpec, ...] = DEFAULT_SERVICES
    stacks: StackPlan = field(default_factory=StackPlan)
    boot: BootSettings = field(default_factory=BootSettings)
    watchdog: WatchdogSettings = field(default_factory=WatchdogSettings)
    logging_level: str = "INFO"

    def service(self, name: str) -> ServiceSpec | None:
        for spec in self.services:
            if spec.name == name:
                return spec
        return None

    @property
    def compose_services(self) -> tuple[ServiceSpec, ...]:
        return tuple(spec for spec in self.services if spec.kind is ServiceKind.COMPOSE)

    @property
    def health_checked_services(self) -> tuple[ServiceSpec, ...]:
        return tuple(spec for spec in self.services if spec.has_health_endpoint)


def _section(config: Mapping[str, Any], key: str) -> dict[str, Any]:
    value = config.get(key) or {}
    if not isinstance(value, Mapping):
        raise ValueError(f"Config section '{key}' must be a mapping")
    return dict(value)


def _build(cls, values: Mapping[str, Any], converters: Mapping[str, Any] | None = None):
    """Instantiate a settings dataclass from known keys, ignoring the rest."""

    converters = converters or {}
    known = cls.__dataclass_fields__
    kwargs: dict[str, Any] = {}
    for key, value in values.items():
        if key not in known or value is None:
            continue
        convert = converters.get(key)
        kwargs[key] = convert(value) if convert is not None else value
    return cls(**kwargs)


def _path_tuple(values: Any) -> tuple[Path, ...]:
    return tuple(Path(str(item)) for item in values or ())


def _str_tuple(values: Any) -> tuple[str, ...]:
    return tuple(str(item) for item in values or ())


def _parse_services(raw: Any) -> tuple[ServiceSpec, ...]:
    if raw is None:
        return DEFAULT_SERVICES
    services: list[ServiceSpec] = []
    for entry in raw:
        name = str(entry["name"])
        port = entry.get("port")
        services.append(
            ServiceSpec(
                name=name,
                kind=ServiceKind(str(entry.get("kind", ServiceKind.STACK.value))),
                port=int(port) if port is not None else None,
                path=str(entry.get("path", "/")),
            )
        )
    return tuple(services)


def load_settings(config: Mapping[str, Any]) -> ApplianceSettings:
    """Convert a merged configuration mapping into typed settings.

    Missing keys keep the reference installation defaults, so an empty
    mapping yields a fully usable settings object.
    """

    path_values = {
        key: Path(str(value)).expanduser()
        for key, value in _section(config, "paths").items()
        if value is not None
    }
    network_values = _section(config, "network")
    cluster_values = _section(config, "cluster")
    stack_values = _section(config, "stacks")
    boot_values = _section(config, "boot")
    watchdog_values = _section(config, "watchdog")

    return ApplianceSettings(
        paths=_build(PathSettings, path_values),
        network=_build(
            NetworkSettings,
            network_values,
            {"server_fallback_dns": _str_tuple, "tx_power_mbm": int},
        ),
        cluster=_build(
            ClusterSettings,
            cluster_values,
            {
                "swarm_secrets": _str_tuple,
                "task_history_limit": int,
                "stack_deploy_attempts": int,
                "engine_wait_s": float,
                "stack_deploy_delay_s": float,
            },
        ),
        services=_parse_services(config.get("services")),
        stacks=_build(
            StackPlan,
            stack_values,
            {"bootstrap": _str_tuple, "core": _str_tuple, "post_api": _str_tuple},
        ),
        boot=_build(
            BootSettings,
            boot_values,
            {key: float for key in BootSettings.__dataclass_fields__ if key.endswith("_s")},
        ),
        watchdog=_build(
            WatchdogSettings,
            watchdog_values,
            {
                "obsolete_stacks": _str_tuple,
                "obsolete_paths": _path_tuple,
                "interval_s": float,
                "disk_cleanup_percent": float,
                "low_space_kb": int,
                "log_max_bytes": int,
                "task_container_max_age_h": int,
            },
        ),
        logging_level=str(config.get("logging_level", "INFO")),
    )


def get_settings() -> ApplianceSettings:
    """Load settings from the active configuration controller."""

    from config.controller import ConfigController

    return load_settings(ConfigController.get_instance().get_config())
