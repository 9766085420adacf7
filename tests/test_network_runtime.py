"""Tests for NAT, hostapd, DHCP scope and interface detection."""

from __future__ import annotations

import json
from pathlib import Path

from conftest import no_sleep
from core.ops_models import StepOutcome
from network.access_point import AccessPoint, derive_credentials, mac_suffix, write_credentials
from network.dhcp import PiholeClient, PiholeError, apply_dhcp_plan, plan_for, read_env_value
from network.interfaces import InterfaceRoles, detect_interfaces, write_interfaces_env
from network.modes import NetworkMode, PROFILES
from network.nat import FWD_CHAIN, HAL_CHAIN, NAT_CHAIN, NatController


class _FakePihole:
    def __init__(self, *, ready: bool = True, reject: int = 0, active_after: bool | None = None) -> None:
        self.ready = ready
        self.reject = reject
        self.active_after = active_after
        self.active: bool | None = None
        self.lines: tuple[str, ...] | None = None
        self.set_calls = 0

    def is_ready(self) -> bool:
        return self.ready

    def login(self) -> str:
        return "sid-1"

    def set_dhcp_active(self, sid: str, active: bool) -> None:
        self.set_calls += 1
        if self.set_calls <= self.reject:
            raise PiholeError("HTTP 400")
        self.active = active

    def get_dhcp_active(self, sid: str) -> bool | None:
        return self.active if self.active_after is None else self.active_after

    def set_dnsmasq_lines(self, sid: str, lines: tuple[str, ...]) -> None:
        self.lines = lines


def _enabled_runner(runner):
    runner.on("iptables", "-t", "nat", "-S", NAT_CHAIN, stdout=f"-N {NAT_CHAIN}\n-A {NAT_CHAIN} -s 10.42.24.0/24 -o eth0 -j MASQUERADE\n")
    runner.on(
        "iptables",
        "-S",
        FWD_CHAIN,
        stdout=(
            f"-N {FWD_CHAIN}\n"
            f"-A {FWD_CHAIN} -i wlan0 -o eth0 -j ACCEPT\n"
            f"-A {FWD_CHAIN} -i eth0 -o wlan0 -m conntrack --ctstate RELATED,ESTABLISHED -j ACCEPT\n"
        ),
    )
    return runner


def test_nat_enable_is_noop_when_rules_match(runner) -> None:
    nat = NatController(_enabled_runner(runner), "10.42.24.0/24")

    result = nat.enable("wlan0", "eth0")

    assert result.ok
    assert result.changed is False
    assert runner.count("iptables", "-t", "nat", "-F", NAT_CHAIN) == 0
    assert runner.count("sysctl") == 0


def test_nat_enable_rebuilds_for_new_upstream(runner) -> None:
    nat = NatController(_enabled_runner(runner), "10.42.24.0/24")

    result = nat.enable("wlan0", "wlan1")

    assert result.changed is True
    assert runner.count("iptables", "-t", "nat", "-F", NAT_CHAIN) == 1
    assert ("iptables", "-t", "nat", "-A", NAT_CHAIN, "-s", "10.42.24.0/24", "-o", "wlan1", "-j", "MASQUERADE") in runner.calls


def test_nat_rule_rejection_fails(runner) -> None:
    runner.on("iptables", "-t", "nat", "-A", returncode=1, stderr="bad rule")

    result = NatController(runner, "10.42.24.0/24").enable("wlan0", "eth0")

    assert result.outcome is StepOutcome.FAILED


def test_nat_disable_only_flushes_own_chains(runner) -> None:
    result = NatController(_enabled_runner(runner), "10.42.24.0/24").disable()

    assert result.changed is True
    flushed = [call for call in runner.calls if "-F" in call]
    assert {call[-1] for call in flushed} == {NAT_CHAIN, FWD_CHAIN}
    assert runner.count("sysctl") == 0


def test_hal_port_chain_built_and_jumped_from_input(runner) -> None:
    runner.on("iptables", "-S", HAL_CHAIN, returncode=1, stderr="No chain/target/match by that name")
    runner.on("iptables", "-C", "INPUT", returncode=1, stderr="Bad rule")

    result = NatController(runner, "10.42.24.0/24").protect_hal_port(6005)

    assert result.changed is True
    assert runner.count("iptables", "-N", HAL_CHAIN) == 1
    appended = [call[1:] for call in runner.called("iptables", "-A", HAL_CHAIN)]
    assert appended[-2:] == [
        ("-A", HAL_CHAIN, "-s", "10.42.24.0/24", "-j", "ACCEPT"),
        ("-A", HAL_CHAIN, "-j", "DROP"),
    ]
    assert ("iptables", "-I", "INPUT", "1", "-p", "tcp", "--dport", "6005", "-j", HAL_CHAIN) in runner.calls


def test_hal_port_chain_left_alone_when_current(runner) -> None:
    current = "\n".join(
        [f"-N {HAL_CHAIN}"]
        + [f"-A {HAL_CHAIN} -i {iface} -j ACCEPT" for iface in ("lo", "docker0", "docker_gwbridge", "br-+")]
        + [f"-A {HAL_CHAIN} -s 10.42.24.0/24 -j ACCEPT", f"-A {HAL_CHAIN} -j DROP"]
    )
    runner.on("iptables", "-S", HAL_CHAIN, stdout=current)

    result = NatController(runner, "10.42.24.0/24").protect_hal_port(6005)

    assert result.ok
    assert result.changed is False
    assert runner.count("iptables", "-F") == 0
    assert runner.count("iptables", "-A") == 0


def test_access_point_already_broadcasting(settings, runner) -> None:
    runner.on("iw", "dev", "wlan0", "info", stdout="Interface wlan0\n\ttype AP\n")

    result = AccessPoint(runner, settings.network, "wlan0", sleep=no_sleep).start()

    assert result.ok
    assert runner.count("systemctl", "start", "hostapd") == 0


def test_access_point_restarts_once_when_not_broadcasting(settings, runner) -> None:
    runner.sequence(
        "iw",
        "dev",
        "wlan0",
        "info",
        results=[(0, "type managed"), (0, "type managed"), (0, "type AP")],
    )

    result = AccessPoint(runner, settings.network, "wlan0", sleep=no_sleep).start()

    assert result.ok
    assert runner.count("rfkill", "unblock", "wifi") == 1
    assert runner.count("systemctl", "start", "hostapd") == 1
    assert runner.count("systemctl", "restart", "hostapd") == 1


def test_access_point_start_failure(settings, runner) -> None:
    runner.on("systemctl", "start", "hostapd", returncode=1, stderr="unit masked")

    result = AccessPoint(runner, settings.network, "wlan0", sleep=no_sleep).start()

    assert result.outcome is StepOutcome.FAILED


def test_credentials_derived_from_mac(tmp_path: Path, settings) -> None:
    iface_dir = tmp_path / "net" / "wlan0"
    iface_dir.mkdir(parents=True)
    (iface_dir / "address").write_text("dc:a6:32:ab:cd:ef\n", encoding="utf-8")

    suffix = mac_suffix("wlan0", tmp_path / "net")
    credentials = derive_credentials(settings.network, suffix)

    assert suffix == "ABCDEF"
    assert credentials.ssid.endswith("ABCDEF")
    assert credentials.key.endswith("ABCDEF")
    assert mac_suffix("wlan9", tmp_path / "net") == "000000"


def test_write_credentials_keeps_existing_env(settings) -> None:
    paths = settings.paths
    paths.hostapd_conf.parent.mkdir(parents=True)
    paths.hostapd_conf.write_text("interface=wlan0\nssid=placeholder\n", encoding="utf-8")
    credentials = derive_credentials(settings.network, "ABCDEF")

    assert write_credentials(credentials, "wlan0", paths.hostapd_conf, paths.ap_env_file) is True
    conf = paths.hostapd_conf.read_text(encoding="utf-8")
    assert f"ssid={credentials.ssid}" in conf
    assert f"wpa_passphrase={credentials.key}" in conf
    assert read_env_value(paths.ap_env_file, "CUBEOS_AP_SSID") == credentials.ssid

    other = derive_credentials(settings.network, "123456")
    assert write_credentials(other, "wlan0", paths.hostapd_conf, paths.ap_env_file) is False
    assert read_env_value(paths.ap_env_file, "CUBEOS_AP_SSID") == credentials.ssid


def test_dhcp_plan_per_mode(settings, roles) -> None:
    offline = plan_for(PROFILES[NetworkMode.OFFLINE], roles, settings.network)
    online_eth = plan_for(PROFILES[NetworkMode.ONLINE_ETH], roles, settings.network)
    online_wifi = plan_for(PROFILES[NetworkMode.ONLINE_WIFI], roles, settings.network)
    server = plan_for(PROFILES[NetworkMode.SERVER_ETH], roles, settings.network)

    assert offline.active is True
    assert not any(line.startswith("no-dhcp-interface") for line in offline.dnsmasq_lines)
    assert "no-dhcp-interface=eth0" in online_eth.dnsmasq_lines
    assert "no-dhcp-interface=wlan1" in online_wifi.dnsmasq_lines
    assert server.active is False


def test_apply_dhcp_plan_retries_and_verifies(settings, roles) -> None:
    client = _FakePihole(reject=2)
    plan = plan_for(PROFILES[NetworkMode.ONLINE_ETH], roles, settings.network)

    result = apply_dhcp_plan(client, plan, sleep=no_sleep)

    assert result.ok
    assert client.set_calls == 3
    assert client.lines == plan.dnsmasq_lines


def test_apply_dhcp_plan_reports_mismatch(settings, roles) -> None:
    client = _FakePihole(active_after=True)
    plan = plan_for(PROFILES[NetworkMode.SERVER_ETH], roles, settings.network)

    result = apply_dhcp_plan(client, plan, sleep=no_sleep)

    assert result.outcome is StepOutcome.DEGRADED
    assert client.lines is None


def test_apply_dhcp_plan_without_api(settings, roles) -> None:
    client = _FakePihole(ready=False)
    plan = plan_for(PROFILES[NetworkMode.OFFLINE], roles, settings.network)

    result = apply_dhcp_plan(client, plan, wait_s=6.0, sleep=no_sleep)

    assert result.outcome is StepOutcome.DEGRADED
    assert client.set_calls == 0


def _make_iface(root: Path, name: str, *, wireless: bool = False, bus: str | None = None) -> None:
    iface = root / name
    iface.mkdir(parents=True)
    if wireless:
        (iface / "wireless").mkdir()
    if bus is not None:
        bus_dir = root.parent / "bus" / bus
        bus_dir.mkdir(parents=True, exist_ok=True)
        device = iface / "device"
        device.mkdir()
        (device / "subsystem").symlink_to(bus_dir)


def test_detect_prefers_usb_wifi_for_access_point(tmp_path: Path, settings) -> None:
    net = tmp_path / "net"
    _make_iface(net, "lo")
    _make_iface(net, "docker0")
    _make_iface(net, "end0", bus="platform")
    _make_iface(net, "wlan0", wireless=True, bus="sdio")
    _make_iface(net, "wlan1", wireless=True, bus="usb")

    roles = detect_interfaces(settings.network, net)

    assert roles.access_point == "wlan1"
    assert roles.wifi_client == "wlan0"
    assert roles.ethernet == "end0"


def test_detect_falls_back_to_settings(tmp_path: Path, settings) -> None:
    roles = detect_interfaces(settings.network, tmp_path / "missing")

    assert roles == InterfaceRoles.from_settings(settings.network)


def test_interfaces_env_rewritten_only_on_change(settings, roles) -> None:
    path = settings.paths.interfaces_env

    assert write_interfaces_env(roles, path) is True
    assert write_interfaces_env(roles, path) is False
    assert read_env_value(path, "CUBEOS_AP_INTERFACE") == "wlan0"


class _FakeHttpResponse:
    def __init__(self, body: bytes, status: int = 200) -> None:
        self._body = body
        self.status = status

    def __enter__(self) -> "_FakeHttpResponse":
        return self

    def __exit__(self, *_exc) -> None:
        return None

    def read(self) -> bytes:
        return self._body


def test_pihole_client_requests() -> None:
    requests = []
    bodies = {
        ("POST", "/api/auth"): b'{"session": {"valid": true, "sid": "abc"}}',
        ("GET", "/api/config/dhcp/active"): b'{"config": {"dhcp": {"active": true}}}',
    }

    def opener(request, timeout=0.0):
        path = request.full_url.replace("http://127.0.0.1:6001", "")
        requests.append((request.get_method(), path, request.headers.get("X-ftl-sid"), request.data))
        return _FakeHttpResponse(bodies.get((request.get_method(), path), b""))

    client = PiholeClient("http://127.0.0.1:6001/", "cubeos", opener=opener)

    sid = client.login()
    client.set_dhcp_active(sid, True)
    active = client.get_dhcp_active(sid)
    client.set_dnsmasq_lines(sid, ("address=/cubeos.cube/10.42.24.1",))

    assert sid == "abc"
    assert active is True
    assert [(method, path) for method, path, _, _ in requests] == [
        ("POST", "/api/auth"),
        ("PUT", "/api/config/dhcp/active/true"),
        ("GET", "/api/config/dhcp/active"),
        ("PATCH", "/api/config"),
    ]
    assert all(sid_header == "abc" for _, _, sid_header, _ in requests[1:])
    assert json.loads(requests[-1][3]) == {"config": {"misc": {"dnsmasq_lines": ["address=/cubeos.cube/10.42.24.1"]}}}
