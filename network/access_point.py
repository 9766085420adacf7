"""hostapd management and MAC-derived access-point credentials."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
import re
import time

from config.settings import NetworkSettings
from core.commands import CommandRunner
from core.logging import logger as LOGGER
from core.ops_models import StepResult
from network.interfaces import SYS_CLASS_NET


HOSTAPD_UNIT = "hostapd"
FALLBACK_MAC_SUFFIX = "000000"


@dataclass(frozen=True)
class AccessPointCredentials:
    ssid: str
    key: str
    mac_suffix: str


def mac_suffix(iface: str, sys_class_net: Path = SYS_CLASS_NET) -> str:
    """Return the last six hex digits of the interface MAC, upper-cased."""

    address_file = sys_class_net / iface / "address"
    try:
        mac = address_file.read_text(encoding="utf-8").strip()
    except OSError:
        return FALLBACK_MAC_SUFFIX
    digits = re.sub(r"[^0-9A-Fa-f]", "", mac).upper()
    if len(digits) < 6:
        return FALLBACK_MAC_SUFFIX
    return digits[-6:]


def derive_credentials(network: NetworkSettings, suffix: str) -> AccessPointCredentials:
    return AccessPointCredentials(
        ssid=f"{network.ap_ssid_prefix}{suffix}",
        key=f"{network.ap_key_prefix}{suffix}",
        mac_suffix=suffix,
    )


def _set_conf_value(text: str, key: str, value: str) -> str:
    pattern = re.compile(rf"^{re.escape(key)}=.*$", re.MULTILINE)
    if pattern.search(text):
        return pattern.sub(f"{key}={value}", text)
    return text.rstrip("\n") + f"\n{key}={value}\n"


def write_credentials(
    credentials: AccessPointCredentials,
    iface: str,
    hostapd_conf: Path,
    ap_env: Path,
) -> bool:
    """Write hostapd.conf and ap.env once; an existing ap.env is kept.

    Returns True when anything was written.
    """

    if ap_env.exists():
        return False

    if hostapd_conf.exists():
        text = hostapd_conf.read_text(encoding="utf-8")
        text = _set_conf_value(text, "ssid", credentials.ssid)
        text = _set_conf_value(text, "wpa_passphrase", credentials.key)
        hostapd_conf.write_text(text, encoding="utf-8")
    else:
        LOGGER.warning("[AP] %s not found; only writing %s", hostapd_conf, ap_env)

    generated_at = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    ap_env.parent.mkdir(parents=True, exist_ok=True)
    ap_env.write_text(
        f"# Access point credentials derived from MAC suffix {credentials.mac_suffix}\n"
        f"# Generated at: {generated_at}\n"
        f"CUBEOS_AP_SSID={credentials.ssid}\n"
        f"CUBEOS_AP_KEY={credentials.key}\n"
        f"CUBEOS_AP_MAC_SUFFIX={credentials.mac_suffix}\n"
        f"CUBEOS_AP_INTERFACE={iface}\n",
        encoding="utf-8",
    )
    LOGGER.info("[AP] Credentials generated for SSID %s", credentials.ssid)
    return True


class AccessPoint:
    """Start, stop and verify the hostapd-managed access point."""

    def __init__(
        self,
        runner: CommandRunner,
        network: NetworkSettings,
        iface: str,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._runner = runner
        self._network = network
        self._iface = iface
        self._sleep = sleep

    @property
    def iface(self) -> str:
        return self._iface

    def is_active(self) -> bool:
        return self._runner.run(["systemctl", "is-active", "--quiet", HOSTAPD_UNIT]).ok

    def is_broadcasting(self) -> bool:
        result = self._runner.run(["iw", "dev", self._iface, "info"])
        return result.ok and "type AP" in result.stdout

    def _set_regulatory_domain(self) -> None:
        result = self._runner.run(["iw", "reg", "set", self._network.country_code])
        if not result.ok:
            LOGGER.warning("[AP] Setting regulatory domain failed: %s", result.error_text)

    def _cap_tx_power(self) -> None:
        self._runner.run(
            ["iw", "dev", self._iface, "set", "txpower", "fixed", str(self._network.tx_power_mbm)]
        )

    def start(self) -> StepResult:
        """Start hostapd and confirm the radio is in AP mode, restarting once."""

        if self.is_active() and self.is_broadcasting():
            return StepResult.ready("access point already broadcasting")

        self._runner.run(["rfkill", "unblock", "wifi"])
        self._set_regulatory_domain()
        self._sleep(2)

        started = self._runner.run(["systemctl", "start", HOSTAPD_UNIT])
        if not started.ok:
            LOGGER.warning("[AP] hostapd failed to start: %s", started.error_text)
            return StepResult.failed(f"hostapd failed: {started.error_text}", changed=True)
        self._sleep(3)
        self._cap_tx_power()
        if self.is_broadcasting():
            return StepResult.ready(f"broadcasting on {self._iface}", changed=True)

        LOGGER.warning("[AP] %s not in AP mode; restarting hostapd", self._iface)
        self._set_regulatory_domain()
        self._sleep(1)
        self._runner.run(["systemctl", "restart", HOSTAPD_UNIT])
        self._sleep(2)
        self._cap_tx_power()
        if self.is_broadcasting():
            return StepResult.ready(f"broadcasting on {self._iface} after restart", changed=True)
        return StepResult.degraded(f"{self._iface} still not broadcasting", changed=True)

    def stop(self) -> StepResult:
        if not self.is_active():
            return StepResult.ready("hostapd already stopped")
        result = self._runner.run(["systemctl", "stop", HOSTAPD_UNIT])
        if not result.ok:
            return StepResult.failed(f"hostapd stop failed: {result.error_text}")
        return StepResult.ready("hostapd stopped", changed=True)
