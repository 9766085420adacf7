"""Tests for core diagnostics."""

from __future__ import annotations

from conftest import FakeRunner
from core.diagnostics import probe
from diagnostics.models import DiagnosticStatus


def test_core_probe() -> None:
    """Core probe should pass when logging and every tool are available."""

    result = probe(runner=FakeRunner())
    assert result.status is DiagnosticStatus.PASS


def test_core_probe_warns_on_missing_tool() -> None:
    runner = FakeRunner()
    runner.missing_tools = {"iw"}

    result = probe(runner=runner)
    assert result.status is DiagnosticStatus.WARN
    assert "iw" in result.details


def test_core_probe_fails_without_docker() -> None:
    runner = FakeRunner()
    runner.missing_tools = {"docker", "netplan"}

    result = probe(runner=runner)
    assert result.status is DiagnosticStatus.FAIL
