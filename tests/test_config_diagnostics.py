"""Tests for config loading, settings and config diagnostics."""

from __future__ import annotations

from pathlib import Path

import pytest

from config.controller import ConfigController, default_config_dir
from config.diagnostics import probe
from config.settings import ServiceKind, load_settings
from diagnostics.models import DiagnosticStatus


@pytest.fixture
def fresh_controller():
    ConfigController.reset_instance()
    yield
    ConfigController.reset_instance()


def test_config_probe_offline(tmp_path) -> None:
    """Config probe should pass with a default config present."""

    config_dir = tmp_path / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "default.yaml").write_text("{}", encoding="utf-8")

    result = probe(config_dir=config_dir)
    assert result.status is DiagnosticStatus.PASS


def test_config_probe_missing_dir(tmp_path) -> None:
    result = probe(config_dir=tmp_path / "absent")
    assert result.status is DiagnosticStatus.FAIL


def test_config_probe_invalid_override(tmp_path) -> None:
    (tmp_path / "default.yaml").write_text("{}", encoding="utf-8")
    (tmp_path / "override.yaml").write_text("network: [not, a, mapping]\n", encoding="utf-8")

    result = probe(config_dir=tmp_path)
    assert result.status is DiagnosticStatus.FAIL


def test_shipped_defaults_load() -> None:
    result = probe(config_dir=default_config_dir())
    assert result.status is DiagnosticStatus.PASS


def test_override_is_deep_merged(tmp_path, fresh_controller) -> None:
    (tmp_path / "default.yaml").write_text(
        "network:\n  gateway_ip: 10.42.24.1\n  country_code: NL\n",
        encoding="utf-8",
    )
    (tmp_path / "override.yaml").write_text("network:\n  country_code: DE\n", encoding="utf-8")

    controller = ConfigController(config_dir=tmp_path)
    settings = load_settings(controller.get_config())

    assert settings.network.country_code == "DE"
    assert settings.network.gateway_ip == "10.42.24.1"
    assert ConfigController.get_instance() is controller
    with pytest.raises(RuntimeError):
        ConfigController(config_dir=tmp_path)


def test_empty_config_yields_defaults() -> None:
    settings = load_settings({})

    assert settings.network.gateway_cidr == "10.42.24.1/24"
    assert settings.stacks.all[0] == "registry"
    assert settings.service("pihole").kind is ServiceKind.COMPOSE
    assert [spec.name for spec in settings.compose_services] == ["pihole", "npm", "cubeos-hal", "terminal"]
    assert settings.paths.compose_file("dozzle") == Path("/cubeos/coreapps/dozzle/appconfig/docker-compose.yml")


def test_typed_conversion_of_sections() -> None:
    settings = load_settings(
        {
            "boot": {"stall_timeout_s": "120"},
            "watchdog": {"obsolete_paths": ["/cubeos/coreapps/ollama"], "low_space_kb": "1024"},
            "services": [{"name": "api", "port": "6010", "path": "/health"}],
        }
    )

    assert settings.boot.stall_timeout_s == 120.0
    assert settings.watchdog.obsolete_paths == (Path("/cubeos/coreapps/ollama"),)
    assert settings.watchdog.low_space_kb == 1024
    assert settings.services[0].kind is ServiceKind.STACK
    assert settings.services[0].health_url() == "http://127.0.0.1:6010/health"
    assert settings.services[0].container_name == "cubeos-api"
