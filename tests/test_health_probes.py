from __future__ import annotations

import urllib.error

from config.settings import ServiceKind, ServiceSpec
from core.ops_models import HealthStatus
from services.health_probes import probe_http, probe_service, probe_services, summarize


class _FakeResponse:
    def __init__(self, status: int) -> None:
        self.status = status

    def __enter__(self) -> "_FakeResponse":
        return self

    def __exit__(self, *_exc) -> None:
        return None


class _FakeOpener:
    def __init__(self, outcomes: dict[str, object]) -> None:
        self._outcomes = outcomes
        self.urls: list[str] = []

    def __call__(self, url: str, timeout: float = 0.0) -> _FakeResponse:
        self.urls.append(url)
        outcome = self._outcomes.get(url, 200)
        if isinstance(outcome, Exception):
            raise outcome
        return _FakeResponse(int(outcome))


def test_probe_http_ok() -> None:
    result = probe_http("api", "http://127.0.0.1:6010/health", opener=_FakeOpener({}))

    assert result.status is HealthStatus.OK
    assert result.details["code"] == 200


def test_probe_http_error_status_is_failing() -> None:
    url = "http://127.0.0.1:6010/health"
    error = urllib.error.HTTPError(url, 503, "Service Unavailable", {}, None)

    result = probe_http("api", url, opener=_FakeOpener({url: error}))

    assert result.status is HealthStatus.FAILING
    assert result.summary == "HTTP 503"


def test_probe_http_unreachable() -> None:
    url = "http://127.0.0.1:6010/health"

    result = probe_http("api", url, opener=_FakeOpener({url: ConnectionRefusedError("refused")}))

    assert result.status is HealthStatus.FAILING
    assert result.summary == "Unreachable"
    assert "refused" in str(result.details["error"])


def test_probe_service_without_endpoint_is_degraded() -> None:
    opener = _FakeOpener({})

    result = probe_service(ServiceSpec("dozzle", ServiceKind.STACK), opener=opener)

    assert result.status is HealthStatus.DEGRADED
    assert opener.urls == []


def test_probe_services_skips_endpointless_and_summarizes() -> None:
    specs = [
        ServiceSpec("pihole", ServiceKind.COMPOSE, 6001, "/admin/"),
        ServiceSpec("terminal", ServiceKind.COMPOSE),
        ServiceSpec("registry", ServiceKind.STACK, 5000, "/v2/"),
    ]
    opener = _FakeOpener({"http://127.0.0.1:5000/v2/": 500})

    results = probe_services(specs, opener=opener)

    assert [result.name for result in results] == ["pihole", "registry"]
    assert opener.urls == ["http://127.0.0.1:6001/admin/", "http://127.0.0.1:5000/v2/"]
    assert summarize(results) == (1, 1)
