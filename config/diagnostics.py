"""Diagnostics routines for the configuration subsystem."""

from __future__ import annotations

from pathlib import Path

import yaml

from config.controller import default_config_dir
from config.settings import load_settings
from diagnostics.models import DiagnosticResult, DiagnosticStatus


def probe(config_dir: Path | None = None) -> DiagnosticResult:
    """Run a configuration probe to validate config file availability.

    Args:
        config_dir: Optional configuration directory for offline testing.

    Returns:
        Diagnostic result indicating config readiness.
    """

    name = "config"
    config_dir = config_dir if config_dir is not None else default_config_dir()
    default_config = config_dir / "default.yaml"
    override_config = config_dir / "override.yaml"
    try:
        if not config_dir.exists():
            return DiagnosticResult(
                name=name,
                status=DiagnosticStatus.FAIL,
                details=f"Config directory missing at {config_dir}",
            )

        if not default_config.exists():
            return DiagnosticResult(
                name=name,
                status=DiagnosticStatus.WARN,
                details=f"No default config at {default_config}; built-in defaults apply",
            )

        merged = yaml.safe_load(default_config.read_text(encoding="utf-8")) or {}
        if override_config.exists():
            override = yaml.safe_load(override_config.read_text(encoding="utf-8")) or {}
            merged.update(override)
        load_settings(merged)

        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.PASS,
            details=f"Config files readable at {config_dir}",
        )
    except (OSError, yaml.YAMLError, ValueError, KeyError, TypeError) as exc:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details=f"Config invalid: {exc}",
        )
