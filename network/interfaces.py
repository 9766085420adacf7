"""Interface role detection and address helpers."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import os
from pathlib import Path
import re
import time

from config.settings import NetworkSettings
from core.commands import CommandRunner
from core.logging import logger as LOGGER
from core.retry import wait_until


SYS_CLASS_NET = Path("/sys/class/net")

_VIRTUAL_PREFIXES = ("lo", "docker", "veth", "br-", "virbr")
_BUILTIN_BUSES = {"sdio", "mmc", "pci", "pcie", "platform"}
_INET_RE = re.compile(r"\binet (\d+\.\d+\.\d+\.\d+)(?:/(\d+))?")


@dataclass(frozen=True)
class InterfaceRoles:
    """Which physical interface fills each role."""

    access_point: str
    ethernet: str
    wifi_client: str
    builtin_wifi: str | None = None
    usb_wifi: str | None = None

    @classmethod
    def from_settings(cls, network: NetworkSettings) -> "InterfaceRoles":
        return cls(
            access_point=network.ap_interface,
            ethernet=network.eth_interface,
            wifi_client=network.wifi_client_interface,
        )


def _bus_of(iface_dir: Path) -> str:
    subsystem = iface_dir / "device" / "subsystem"
    if not subsystem.is_symlink():
        return ""
    return Path(os.path.realpath(subsystem)).name


def detect_interfaces(network: NetworkSettings, sys_class_net: Path = SYS_CLASS_NET) -> InterfaceRoles:
    """Assign AP, ethernet and WiFi-client roles from sysfs.

    A USB WiFi adapter is preferred for the access point. The configured
    names fill any role detection cannot.
    """

    if not sys_class_net.is_dir():
        return InterfaceRoles.from_settings(network)

    builtin_wifi: str | None = None
    usb_wifi: str | None = None
    eth: str | None = None
    for iface_dir in sorted(sys_class_net.iterdir()):
        name = iface_dir.name
        if name.startswith(_VIRTUAL_PREFIXES):
            continue
        if (iface_dir / "wireless").is_dir():
            bus = _bus_of(iface_dir)
            if bus == "usb":
                usb_wifi = usb_wifi or name
            elif bus in _BUILTIN_BUSES or builtin_wifi is None:
                builtin_wifi = builtin_wifi or name
            else:
                usb_wifi = usb_wifi or name
        elif (iface_dir / "device").exists() and eth is None:
            eth = name

    ap_iface = usb_wifi or builtin_wifi or network.ap_interface
    if usb_wifi and builtin_wifi:
        client_iface = builtin_wifi if ap_iface == usb_wifi else usb_wifi
    else:
        client_iface = network.wifi_client_interface
    roles = InterfaceRoles(
        access_point=ap_iface,
        ethernet=eth or network.eth_interface,
        wifi_client=client_iface,
        builtin_wifi=builtin_wifi,
        usb_wifi=usb_wifi,
    )
    LOGGER.info(
        "[Network] Interface roles: AP=%s ethernet=%s wifi-client=%s",
        roles.access_point,
        roles.ethernet,
        roles.wifi_client,
    )
    return roles


def write_interfaces_env(roles: InterfaceRoles, path: Path) -> bool:
    """Publish the detected roles for containers; returns True when changed."""

    content = (
        "# Detected network interfaces, generated by cubeos-init\n"
        f"CUBEOS_AP_INTERFACE={roles.access_point}\n"
        f"CUBEOS_ETH_INTERFACE={roles.ethernet}\n"
        f"CUBEOS_WIFI_CLIENT_INTERFACE={roles.wifi_client}\n"
        f"CUBEOS_BUILTIN_WIFI={roles.builtin_wifi or ''}\n"
        f"CUBEOS_USB_WIFI={roles.usb_wifi or ''}\n"
    )
    if path.exists() and path.read_text(encoding="utf-8") == content:
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return True


def ipv4_addresses(runner: CommandRunner, iface: str) -> list[str]:
    result = runner.run(["ip", "-4", "addr", "show", "dev", iface])
    if not result.ok:
        return []
    return [match.group(1) for match in _INET_RE.finditer(result.stdout)]


def has_address(runner: CommandRunner, iface: str, address: str) -> bool:
    return address in ipv4_addresses(runner, iface)


def ensure_address(
    runner: CommandRunner,
    iface: str,
    address: str,
    prefix_len: int,
    *,
    timeout_s: float = 15.0,
    sleep: Callable[[float], None] = time.sleep,
    on_poll: Callable[[int], None] | None = None,
) -> bool:
    """Bring ``iface`` up and make sure it carries ``address``."""

    if has_address(runner, iface, address):
        return True
    runner.run(["ip", "link", "set", iface, "up"])
    added = runner.run(["ip", "addr", "add", f"{address}/{prefix_len}", "dev", iface])
    if not added.ok:
        LOGGER.info("[Network] ip addr add on %s: %s", iface, added.error_text)
    return wait_until(
        lambda: has_address(runner, iface, address),
        timeout_s=timeout_s,
        interval_s=1.0,
        sleep=sleep,
        on_poll=on_poll,
        label=f"{address} on {iface}",
    )


def flush_addresses(runner: CommandRunner, iface: str) -> bool:
    if not ipv4_addresses(runner, iface):
        return True
    result = runner.run(["ip", "addr", "flush", "dev", iface])
    if not result.ok:
        LOGGER.warning("[Network] Flushing %s failed: %s", iface, result.error_text)
    return result.ok
