"""Command-line entry point for running diagnostics.

Every probe is read-only; running diagnostics never changes the node.
"""

from __future__ import annotations

import argparse
from pathlib import Path
import tempfile

from cluster.diagnostics import probe as cluster_probe
from config.diagnostics import probe as config_probe
from core.diagnostics import probe as core_probe
from diagnostics.models import exit_code
from diagnostics.runner import format_results, run_diagnostics
from network.diagnostics import probe as network_probe
from services.diagnostics import probe as services_probe
from storage.diagnostics import probe as storage_probe


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""

    parser = argparse.ArgumentParser(description="Run diagnostics probes.")
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Run file-based probes against a temporary directory; skip Docker and HTTP.",
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Optional configuration directory to validate.",
    )
    return parser.parse_args(argv)


def run(offline: bool = False, config_dir: Path | None = None) -> int:
    """Run diagnostics, print the report and return an exit code."""

    if offline:
        with tempfile.TemporaryDirectory() as tmp_dir:
            tmp_base = Path(tmp_dir)
            offline_config = tmp_base / "config"
            offline_config.mkdir(parents=True, exist_ok=True)
            (offline_config / "default.yaml").write_text("{}", encoding="utf-8")
            netplan_file = tmp_base / "01-cubeos.yaml"
            netplan_file.write_text("# CubeOS network configuration (offline)\n", encoding="utf-8")
            db_path = tmp_base / "cubeos.db"

            def config_probe_offline():
                return config_probe(config_dir=config_dir or offline_config)

            def storage_probe_offline():
                return storage_probe(db_path=db_path)

            def network_probe_offline():
                return network_probe(netplan_file=netplan_file, db_path=db_path)

            def services_probe_offline():
                return services_probe(services=[])

            results = run_diagnostics(
                [
                    config_probe_offline,
                    core_probe,
                    storage_probe_offline,
                    network_probe_offline,
                    services_probe_offline,
                ]
            )
    else:
        def config_probe_live():
            return config_probe(config_dir=config_dir)

        results = run_diagnostics(
            [
                config_probe_live,
                core_probe,
                storage_probe,
                network_probe,
                cluster_probe,
                services_probe,
            ]
        )

    print(format_results(results))

    return exit_code(results)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    return run(offline=args.offline, config_dir=args.config_dir)


if __name__ == "__main__":
    raise SystemExit(main())
