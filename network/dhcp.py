"""DHCP scope per network mode, applied through the Pi-hole v6 REST API."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import json
from pathlib import Path
import time
from typing import Any
import urllib.error
import urllib.request

from config.settings import NetworkSettings
from core.logging import logger as LOGGER
from core.ops_models import StepResult
from core.retry import RetryPolicy, retry, wait_until
from network.interfaces import InterfaceRoles
from network.modes import DhcpScope, ModeProfile, Upstream


DEFAULT_PIHOLE_PASSWORD = "cubeos"


class PiholeError(RuntimeError):
    """Raised when the Pi-hole API rejects or fails a request."""


@dataclass(frozen=True)
class DhcpPlan:
    """DHCP state and dnsmasq lines for one mode."""

    active: bool
    dnsmasq_lines: tuple[str, ...]


def plan_for(profile: ModeProfile, roles: InterfaceRoles, network: NetworkSettings) -> DhcpPlan:
    wildcard = f"address=/{network.domain}/{network.gateway_ip}"
    if profile.dhcp is DhcpScope.ALL_INTERFACES:
        return DhcpPlan(active=True, dnsmasq_lines=(wildcard,))
    if profile.dhcp is DhcpScope.ACCESS_POINT_ONLY:
        upstream = roles.ethernet if profile.upstream is Upstream.ETHERNET else roles.wifi_client
        return DhcpPlan(active=True, dnsmasq_lines=(wildcard, f"no-dhcp-interface={upstream}"))
    return DhcpPlan(active=False, dnsmasq_lines=(wildcard,))


def read_env_value(path: Path, key: str) -> str | None:
    """Return ``key`` from a KEY=VALUE file, or None."""

    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return None
    for line in lines:
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        name, value = line.split("=", 1)
        if name.strip() == key:
            return value.strip().strip('"')
    return None


class PiholeClient:
    """Minimal Pi-hole v6 REST client for the DHCP settings."""

    def __init__(
        self,
        base_url: str,
        password: str,
        *,
        timeout_s: float = 5.0,
        opener: Callable[..., Any] = urllib.request.urlopen,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._password = password
        self._timeout_s = timeout_s
        self._opener = opener

    def _request(
        self,
        method: str,
        path: str,
        *,
        sid: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> tuple[int, dict[str, Any]]:
        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        request = urllib.request.Request(f"{self._base_url}{path}", data=data, method=method)
        if data is not None:
            request.add_header("Content-Type", "application/json")
        if sid:
            request.add_header("X-FTL-SID", sid)
        try:
            with self._opener(request, timeout=self._timeout_s) as response:
                status = int(getattr(response, "status", 200))
                body = response.read()
        except urllib.error.HTTPError as exc:
            raise PiholeError(f"{method} {path} -> HTTP {exc.code}") from exc
        except (urllib.error.URLError, OSError) as exc:
            raise PiholeError(f"{method} {path} failed: {exc}") from exc
        if not body:
            return status, {}
        try:
            return status, json.loads(body)
        except ValueError:
            return status, {}

    def is_ready(self) -> bool:
        try:
            status, _ = self._request("GET", "/api/info/login")
        except PiholeError:
            return False
        return status == 200

    def login(self) -> str:
        _, body = self._request("POST", "/api/auth", payload={"password": self._password})
        sid = (body.get("session") or {}).get("sid")
        if not sid:
            raise PiholeError("login returned no session id")
        return str(sid)

    def set_dhcp_active(self, sid: str, active: bool) -> None:
        self._request("PUT", f"/api/config/dhcp/active/{str(active).lower()}", sid=sid)

    def get_dhcp_active(self, sid: str) -> bool | None:
        _, body = self._request("GET", "/api/config/dhcp/active", sid=sid)
        value = ((body.get("config") or {}).get("dhcp") or {}).get("active")
        return value if isinstance(value, bool) else None

    def set_dnsmasq_lines(self, sid: str, lines: tuple[str, ...]) -> None:
        self._request(
            "PATCH",
            "/api/config",
            sid=sid,
            payload={"config": {"misc": {"dnsmasq_lines": list(lines)}}},
        )


def client_from_settings(network: NetworkSettings, secrets_file: Path) -> PiholeClient:
    password = read_env_value(secrets_file, network.pihole_password_key) or DEFAULT_PIHOLE_PASSWORD
    return PiholeClient(network.pihole_api_url, password)


def apply_dhcp_plan(
    client: PiholeClient,
    plan: DhcpPlan,
    *,
    wait_s: float = 30.0,
    sleep: Callable[[float], None] = time.sleep,
    on_poll: Callable[[int], None] | None = None,
) -> StepResult:
    """Push ``plan`` to Pi-hole and verify the DHCP flag took effect."""

    if not wait_until(
        client.is_ready,
        timeout_s=wait_s,
        interval_s=3.0,
        sleep=sleep,
        on_poll=on_poll,
        label="Pi-hole API",
    ):
        return StepResult.degraded("Pi-hole API not ready; DHCP scope unchanged")

    try:
        sid = client.login()
    except PiholeError as exc:
        LOGGER.warning("[Network] Pi-hole login failed: %s", exc)
        return StepResult.degraded(f"Pi-hole login failed: {exc}")

    def _set(attempt: int) -> bool:
        try:
            client.set_dhcp_active(sid, plan.active)
        except PiholeError as exc:
            LOGGER.warning("[Network] DHCP active=%s attempt %d failed: %s", plan.active, attempt, exc)
            return False
        return True

    outcome = retry(_set, RetryPolicy(attempts=5, delay_s=3.0), sleep=sleep, on_attempt=on_poll)
    if not outcome.succeeded:
        return StepResult.degraded(f"Pi-hole rejected DHCP active={plan.active}", changed=True)

    try:
        actual = client.get_dhcp_active(sid)
    except PiholeError as exc:
        actual = None
        LOGGER.warning("[Network] DHCP verification failed: %s", exc)
    if actual is not plan.active:
        return StepResult.degraded(
            f"DHCP verification mismatch: expected {plan.active}, got {actual}", changed=True
        )

    try:
        client.set_dnsmasq_lines(sid, plan.dnsmasq_lines)
    except PiholeError as exc:
        LOGGER.warning("[Network] dnsmasq lines not applied: %s", exc)
        return StepResult.degraded(f"dnsmasq lines not applied: {exc}", changed=True)

    return StepResult.ready(f"DHCP active={str(plan.active).lower()}", changed=True)
