"""Shared fixtures: a scripted command runner and tmp-rooted settings."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import pytest

from config.settings import ApplianceSettings, load_settings
from core.commands import CommandResult
from network.interfaces import InterfaceRoles


@dataclass
class _Rule:
    prefix: tuple[str, ...]
    results: list[tuple[int, str, str]]


class FakeRunner:
    """Command runner double.

    Results are scripted per argument prefix; the most recently registered
    matching rule wins. A rule with several results hands them out in order
    and keeps repeating the last one. Unmatched commands succeed silently.
    """

    def __init__(self) -> None:
        self._rules: list[_Rule] = []
        self.calls: list[tuple[str, ...]] = []
        self.inputs: list[str | None] = []
        self.envs: list[dict[str, str] | None] = []
        self.missing_tools: set[str] = set()

    def on(self, *prefix: str, returncode: int = 0, stdout: str = "", stderr: str = "") -> "FakeRunner":
        self._rules.append(_Rule(tuple(prefix), [(returncode, stdout, stderr)]))
        return self

    def sequence(self, *prefix: str, results: Sequence[tuple[int, str]]) -> "FakeRunner":
        self._rules.append(_Rule(tuple(prefix), [(code, out, "") for code, out in results]))
        return self

    def run(self, args, *, timeout_s=None, input_text=None, env=None) -> CommandResult:
        argv = tuple(str(arg) for arg in args)
        self.calls.append(argv)
        self.inputs.append(input_text)
        self.envs.append(dict(env) if env else None)
        for rule in reversed(self._rules):
            if argv[: len(rule.prefix)] == rule.prefix:
                code, out, err = rule.results[0]
                if len(rule.results) > 1:
                    rule.results.pop(0)
                return CommandResult(argv, code, out, err)
        return CommandResult(argv, 0, "", "")

    def which(self, name: str) -> bool:
        return name not in self.missing_tools

    def called(self, *prefix: str) -> list[tuple[str, ...]]:
        return [call for call in self.calls if call[: len(prefix)] == prefix]

    def count(self, *prefix: str) -> int:
        return len(self.called(*prefix))


def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def roles() -> InterfaceRoles:
    return InterfaceRoles(access_point="wlan0", ethernet="eth0", wifi_client="wlan1")


@pytest.fixture
def settings(tmp_path) -> ApplianceSettings:
    root = tmp_path
    return load_settings(
        {
            "paths": {
                "config_dir": root / "config",
                "coreapps_dir": root / "coreapps",
                "apps_dir": root / "apps",
                "data_dir": root / "data",
                "database": root / "data" / "cubeos.db",
                "provisioned_marker": root / "data" / ".provisioned",
                "heartbeat_file": root / "run" / "heartbeat",
                "progress_file": root / "run" / "progress",
                "netplan_file": root / "netplan" / "01-cubeos.yaml",
                "secrets_file": root / "config" / "secrets.env",
                "hal_acl_file": root / "coreapps" / "cubeos-hal" / "appdata" / "acl.json",
                "interfaces_env": root / "config" / "interfaces.env",
                "hostapd_conf": root / "hostapd" / "hostapd.conf",
                "ap_env_file": root / "config" / "ap.env",
                "resolv_conf": root / "resolv.conf",
                "boot_log": root / "log" / "boot.log",
                "watchdog_log": root / "log" / "watchdog.log",
                "alert_file": root / "alerts" / "watchdog.alert",
                "hardware_watchdog_device": root / "dev" / "watchdog",
            },
            "watchdog": {
                "obsolete_stacks": ["ollama", "chromadb"],
                "obsolete_paths": [str(root / "coreapps" / "ollama")],
                "low_space_kb": 0,
                "disk_cleanup_percent": 100,
            },
        }
    )


def add_compose_file(settings: ApplianceSettings, name: str) -> None:
    compose_file = settings.paths.compose_file(name)
    compose_file.parent.mkdir(parents=True, exist_ok=True)
    compose_file.write_text("services: {}\n", encoding="utf-8")
