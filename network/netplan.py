"""Typed netplan documents, one variant per network mode, and their writer."""

from __future__ import annotations

from dataclasses import dataclass
import ipaddress
import os
from pathlib import Path
import tempfile
from typing import Any

import yaml

from config.settings import NetworkSettings
from core.logging import logger as LOGGER
from network.interfaces import InterfaceRoles
from network.modes import ModeProfile, NetworkMode, Upstream
from storage.network_config import NetworkConfig


GENERATED_MARKER = "CubeOS"
_HEADER = (
    "# CubeOS network configuration ({mode})\n"
    "# Generated by cubeos-init on every network mode apply. Do not edit.\n"
)


@dataclass(frozen=True)
class StaticAddressing:
    """Validated static-IP settings for one upstream interface."""

    address: str
    prefix_len: int
    gateway: str
    nameservers: tuple[str, ...]


def netmask_to_prefix(netmask: str, default: int = 24) -> int:
    try:
        return ipaddress.IPv4Network(f"0.0.0.0/{netmask.strip()}").prefixlen
    except (ipaddress.AddressValueError, ipaddress.NetmaskValueError, ValueError):
        return default


def static_addressing(
    config: NetworkConfig,
    fallback_dns: tuple[str, ...],
) -> StaticAddressing | None:
    """Return static settings, or ``None`` when DHCP must be used instead."""

    if not config.use_static_ip:
        return None
    if not config.static_ip_usable:
        LOGGER.warning("[Network] Static IP enabled without address or gateway; using DHCP")
        return None
    try:
        ipaddress.IPv4Address(config.static_ip.strip())
        ipaddress.IPv4Address(config.static_gateway.strip())
    except ipaddress.AddressValueError as exc:
        LOGGER.warning("[Network] Invalid static IP settings (%s); using DHCP", exc)
        return None
    nameservers = tuple(
        server.strip()
        for server in (config.static_dns_primary, config.static_dns_secondary)
        if server and server.strip()
    )
    if not config.static_dns_primary.strip():
        nameservers = fallback_dns
    return StaticAddressing(
        address=config.static_ip.strip(),
        prefix_len=netmask_to_prefix(config.static_netmask),
        gateway=config.static_gateway.strip(),
        nameservers=nameservers,
    )


@dataclass(frozen=True)
class InterfaceStanza:
    """One interface entry under ``ethernets`` or ``wifis``."""

    name: str
    addresses: tuple[str, ...] = ()
    dhcp4: bool = False
    dhcp_identifier_mac: bool = False
    ignore_dhcp_dns: bool = False
    gateway: str | None = None
    nameservers: tuple[str, ...] = ()
    link_local_disabled: bool = False
    access_points: tuple[tuple[str, str], ...] = ()

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {}
        if self.dhcp4:
            body["dhcp4"] = True
            if self.dhcp_identifier_mac:
                body["dhcp-identifier"] = "mac"
        if self.addresses:
            body["addresses"] = list(self.addresses)
        if self.gateway:
            body["routes"] = [{"to": "default", "via": self.gateway}]
        if self.ignore_dhcp_dns:
            body["dhcp4-overrides"] = {"use-dns": False}
        if self.nameservers:
            body["nameservers"] = {"addresses": list(self.nameservers)}
        if self.link_local_disabled:
            body["link-local"] = []
        body["optional"] = True
        if self.access_points:
            body["access-points"] = {
                ssid: {"password": password} if password else {}
                for ssid, password in self.access_points
            }
        return body


@dataclass(frozen=True)
class NetplanDocument:
    """A complete netplan document for one mode.

    The access-point interface is only ever listed under ``ethernets`` with
    the gateway address; ``wifis`` holds WiFi client interfaces only.
    """

    mode: NetworkMode
    ethernets: tuple[InterfaceStanza, ...] = ()
    wifis: tuple[InterfaceStanza, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        network: dict[str, Any] = {"version": 2, "renderer": "networkd"}
        if self.ethernets:
            network["ethernets"] = {stanza.name: stanza.to_dict() for stanza in self.ethernets}
        if self.wifis:
            network["wifis"] = {stanza.name: stanza.to_dict() for stanza in self.wifis}
        return {"network": network}

    def render(self) -> str:
        body = yaml.safe_dump(self.to_dict(), sort_keys=False, default_flow_style=False)
        return _HEADER.format(mode=self.mode.value) + body


class MissingWifiCredentials(ValueError):
    """Raised when a WiFi client mode has no SSID to join."""


def _ap_stanza(roles: InterfaceRoles, network: NetworkSettings) -> InterfaceStanza:
    return InterfaceStanza(
        name=roles.access_point,
        addresses=(network.gateway_cidr,),
        link_local_disabled=True,
    )


def _upstream_stanza(
    name: str,
    profile: ModeProfile,
    static: StaticAddressing | None,
    network: NetworkSettings,
    *,
    wifi: tuple[tuple[str, str], ...] = (),
) -> InterfaceStanza:
    behind_ap = profile.access_point
    if static is not None:
        return InterfaceStanza(
            name=name,
            addresses=(f"{static.address}/{static.prefix_len}",),
            gateway=static.gateway,
            nameservers=static.nameservers,
            access_points=wifi,
        )
    return InterfaceStanza(
        name=name,
        dhcp4=True,
        dhcp_identifier_mac=profile.upstream is Upstream.ETHERNET,
        ignore_dhcp_dns=behind_ap,
        nameservers=(network.gateway_ip,) if behind_ap else (),
        access_points=wifi,
    )


def build_document(
    profile: ModeProfile,
    roles: InterfaceRoles,
    config: NetworkConfig,
    network: NetworkSettings,
) -> NetplanDocument:
    """Build the netplan document for ``profile``.

    Raises:
        MissingWifiCredentials: when the mode joins a WiFi network and no
            SSID is stored.
    """

    mode = profile.mode
    static = None
    if profile.allows_static_ip:
        fallback = (network.gateway_ip,) if profile.access_point else network.server_fallback_dns
        static = static_addressing(config, fallback)

    wifi: tuple[tuple[str, str], ...] = ()
    if profile.requires_ssid:
        ssid = config.wifi_ssid.strip()
        if not ssid:
            raise MissingWifiCredentials(f"{mode.value} needs a WiFi SSID")
        wifi = ((ssid, config.wifi_password),)

    if mode is NetworkMode.OFFLINE:
        return NetplanDocument(
            mode=mode,
            ethernets=(
                InterfaceStanza(name=roles.ethernet, link_local_disabled=True),
                _ap_stanza(roles, network),
            ),
        )
    if mode is NetworkMode.ONLINE_ETH:
        return NetplanDocument(
            mode=mode,
            ethernets=(
                _upstream_stanza(roles.ethernet, profile, static, network),
                _ap_stanza(roles, network),
            ),
        )
    if mode is NetworkMode.ONLINE_WIFI:
        return NetplanDocument(
            mode=mode,
            ethernets=(_ap_stanza(roles, network),),
            wifis=(_upstream_stanza(roles.wifi_client, profile, static, network, wifi=wifi),),
        )
    if mode is NetworkMode.SERVER_ETH:
        return NetplanDocument(
            mode=mode,
            ethernets=(_upstream_stanza(roles.ethernet, profile, static, network),),
        )
    if mode is NetworkMode.SERVER_WIFI:
        return NetplanDocument(
            mode=mode,
            wifis=(_upstream_stanza(roles.access_point, profile, static, network, wifi=wifi),),
        )
    raise ValueError(f"Unhandled network mode {mode!r}")


def write_document(document: NetplanDocument, path: Path) -> bool:
    """Atomically replace ``path`` with the rendered document.

    Returns True when the file content changed. The file is always left
    with mode 0600, which netplan requires for documents holding secrets.
    """

    content = document.render()
    if path.exists() and path.read_text(encoding="utf-8") == content:
        os.chmod(path, 0o600)
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        os.chmod(tmp_name, 0o600)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return True


def is_generated(path: Path) -> bool:
    try:
        return GENERATED_MARKER in path.read_text(encoding="utf-8")
    except OSError:
        return False
