"""Network modes and the per-mode policy each one implies."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from core.logging import logger as LOGGER


class NetworkMode(str, Enum):
    """Mutually exclusive connectivity modes."""

    OFFLINE = "offline"
    ONLINE_ETH = "online_eth"
    ONLINE_WIFI = "online_wifi"
    SERVER_ETH = "server_eth"
    SERVER_WIFI = "server_wifi"


# Names written by earlier API and console releases.
LEGACY_ALIASES: dict[str, NetworkMode] = {
    "offline_hotspot": NetworkMode.OFFLINE,
    "wifi_router": NetworkMode.ONLINE_ETH,
    "wifi_bridge": NetworkMode.ONLINE_WIFI,
    "eth_client": NetworkMode.SERVER_ETH,
    "wifi_client": NetworkMode.SERVER_WIFI,
}


class Upstream(str, Enum):
    """Which interface carries traffic out of the appliance."""

    NONE = "none"
    ETHERNET = "ethernet"
    WIFI_DONGLE = "wifi_dongle"
    WIFI_BUILTIN = "wifi_builtin"


class DhcpScope(str, Enum):
    """Where the built-in resolver serves DHCP."""

    ALL_INTERFACES = "all"
    ACCESS_POINT_ONLY = "ap_only"
    DISABLED = "disabled"


@dataclass(frozen=True)
class ModeProfile:
    """Runtime policy for one network mode."""

    mode: NetworkMode
    access_point: bool
    upstream: Upstream
    nat: bool
    dhcp: DhcpScope
    requires_ssid: bool
    mdns: bool

    @property
    def allows_static_ip(self) -> bool:
        return self.upstream is not Upstream.NONE

    @property
    def is_server(self) -> bool:
        return not self.access_point


PROFILES: dict[NetworkMode, ModeProfile] = {
    NetworkMode.OFFLINE: ModeProfile(
        mode=NetworkMode.OFFLINE,
        access_point=True,
        upstream=Upstream.NONE,
        nat=False,
        dhcp=DhcpScope.ALL_INTERFACES,
        requires_ssid=False,
        mdns=False,
    ),
    NetworkMode.ONLINE_ETH: ModeProfile(
        mode=NetworkMode.ONLINE_ETH,
        access_point=True,
        upstream=Upstream.ETHERNET,
        nat=True,
        dhcp=DhcpScope.ACCESS_POINT_ONLY,
        requires_ssid=False,
        mdns=False,
    ),
    NetworkMode.ONLINE_WIFI: ModeProfile(
        mode=NetworkMode.ONLINE_WIFI,
        access_point=True,
        upstream=Upstream.WIFI_DONGLE,
        nat=True,
        dhcp=DhcpScope.ACCESS_POINT_ONLY,
        requires_ssid=True,
        mdns=False,
    ),
    NetworkMode.SERVER_ETH: ModeProfile(
        mode=NetworkMode.SERVER_ETH,
        access_point=False,
        upstream=Upstream.ETHERNET,
        nat=False,
        dhcp=DhcpScope.DISABLED,
        requires_ssid=False,
        mdns=True,
    ),
    NetworkMode.SERVER_WIFI: ModeProfile(
        mode=NetworkMode.SERVER_WIFI,
        access_point=False,
        upstream=Upstream.WIFI_BUILTIN,
        nat=False,
        dhcp=DhcpScope.DISABLED,
        requires_ssid=True,
        mdns=True,
    ),
}


def parse_mode(value: str | None) -> NetworkMode:
    """Map a stored mode string to a mode; anything unknown is OFFLINE."""

    text = (value or "").strip().lower()
    if not text:
        return NetworkMode.OFFLINE
    for mode in NetworkMode:
        if mode.value == text:
            return mode
    legacy = LEGACY_ALIASES.get(text)
    if legacy is not None:
        return legacy
    LOGGER.warning("[Network] Unknown network mode %r; using %s", value, NetworkMode.OFFLINE.value)
    return NetworkMode.OFFLINE


def profile_for(mode: NetworkMode) -> ModeProfile:
    return PROFILES[mode]
