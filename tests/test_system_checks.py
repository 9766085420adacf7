"""Tests for host-level swap, resolver and disk checks."""

from __future__ import annotations

from conftest import no_sleep
from core.ops_models import StepOutcome
from services.system import ZRAM_UNIT, SystemChecks


def _checks(settings, runner) -> SystemChecks:
    return SystemChecks(runner, settings.paths, sleep=no_sleep)


def test_zram_started_when_missing(settings, runner) -> None:
    runner.sequence("swapon", "--show", results=[(0, ""), (0, "/dev/zram0 partition 1G\n")])

    result = _checks(settings, runner).ensure_zram()

    assert result.ok and result.changed
    assert runner.count("systemctl", "start", ZRAM_UNIT) == 1


def test_zram_unavailable_is_degraded(settings, runner) -> None:
    result = _checks(settings, runner).ensure_zram()

    assert result.outcome is StepOutcome.DEGRADED


def test_hardware_watchdog_only_with_device(settings, runner) -> None:
    checks = _checks(settings, runner)

    assert checks.start_hardware_watchdog().ok
    assert runner.count("systemctl", "start", "watchdog") == 0

    device = settings.paths.hardware_watchdog_device
    device.parent.mkdir(parents=True)
    device.write_text("", encoding="utf-8")
    assert checks.start_hardware_watchdog().ok
    assert runner.called("systemctl", "start", "watchdog") == [("systemctl", "start", "watchdog", "--no-block")]


def test_resolver_fallback_replaces_symlink(settings, runner, tmp_path) -> None:
    target = tmp_path / "stub-resolv.conf"
    target.write_text("# no servers\n", encoding="utf-8")
    settings.paths.resolv_conf.symlink_to(target)

    result = _checks(settings, runner).ensure_resolver()

    assert result.changed
    assert not settings.paths.resolv_conf.is_symlink()
    assert settings.paths.resolv_conf.read_text(encoding="utf-8") == "nameserver 127.0.0.1\n"
    assert target.read_text(encoding="utf-8") == "# no servers\n"


def test_resolver_with_nameserver_is_kept(settings, runner) -> None:
    settings.paths.resolv_conf.write_text("nameserver 192.168.1.1\n", encoding="utf-8")

    result = _checks(settings, runner).ensure_resolver()

    assert result.ok and not result.changed


def test_cleanup_disk_runs_prune_and_vacuum(settings, runner) -> None:
    result = _checks(settings, runner).cleanup_disk()

    assert result.ok
    assert runner.count("docker", "system", "prune", "-f", "--filter", "until=24h") == 1
    assert runner.count("journalctl", "--vacuum-size=50M") == 1


def test_disk_usage_helpers(settings, runner, tmp_path) -> None:
    checks = _checks(settings, runner)

    assert 0.0 <= checks.disk_usage_percent(tmp_path) <= 100.0
    assert checks.free_kb(tmp_path) > 0
    assert checks.free_kb(tmp_path / "missing") is None
