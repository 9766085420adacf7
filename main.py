"""Command-line entry point for cubeos-init."""

from __future__ import annotations

import argparse
import getpass
from pathlib import Path
import sys

from config import ConfigController
from config.settings import ApplianceSettings, load_settings
from core.commands import CommandRunner
from core.logging import enable_file_logging, logger, set_level


def parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Raw command-line arguments.

    Returns:
        Parsed arguments namespace.
    """

    parser = argparse.ArgumentParser(description="CubeOS boot and cluster control plane.")
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Directory holding default.yaml and override.yaml.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    boot = commands.add_parser("boot", help="Supervised boot with the dead-man's switch.")
    boot.add_argument("--mode", choices=["auto", "first", "normal"], default="auto")

    stages = commands.add_parser("run-stages", help="Run the boot stages (child of `boot`).")
    stages.add_argument("--mode", choices=["auto", "first", "normal"], default="auto")

    commands.add_parser("early-netplan", help="Rewrite the network document before the renderer starts.")
    commands.add_parser("watchdog", help="Run one reconciliation cycle.")
    commands.add_parser("boot-timeout", help="Kill and recover a boot stuck in activating.")
    commands.add_parser("recover", help="Re-run cluster bootstrap and stack deployment.")

    diagnose = commands.add_parser("diagnose", help="Read-only diagnostics report.")
    diagnose.add_argument("--offline", action="store_true")

    network = commands.add_parser("network", help="Network mode console operations.")
    network_commands = network.add_subparsers(dest="network_command", required=True)
    network_commands.add_parser("show", help="Print the stored network config.")
    set_mode = network_commands.add_parser("set-mode", help="Store a new network mode.")
    set_mode.add_argument("mode")
    set_mode.add_argument("--apply", action="store_true", help="Apply the mode immediately.")
    set_wifi = network_commands.add_parser("set-wifi", help="Store WiFi client credentials.")
    set_wifi.add_argument("ssid")
    set_wifi.add_argument("--password", default=None)
    set_static = network_commands.add_parser("set-static", help="Store a static IP for the upstream.")
    set_static.add_argument("address")
    set_static.add_argument("gateway")
    set_static.add_argument("--netmask", default="255.255.255.0")
    set_static.add_argument("--dns", action="append", default=[])
    network_commands.add_parser("clear-static", help="Return the upstream to DHCP.")
    network_commands.add_parser("apply", help="Apply the stored network mode now.")

    return parser.parse_args(argv)


def load_app_settings(config_dir: Path | None) -> ApplianceSettings:
    if config_dir is not None and ConfigController._instance is None:
        ConfigController(config_dir=config_dir)
    settings = load_settings(ConfigController.get_instance().get_config())
    set_level(settings.logging_level)
    return settings


def _network(args: argparse.Namespace, settings: ApplianceSettings, runner: CommandRunner) -> int:
    from network.engine import NetworkModeEngine

    engine = NetworkModeEngine(settings, runner)
    command = args.network_command
    try:
        if command == "show":
            config = engine.read_config()
            print(f"mode:        {config.mode}")
            print(f"wifi_ssid:   {config.wifi_ssid or '-'}")
            if config.use_static_ip:
                print(f"static_ip:   {config.static_ip}/{config.static_netmask} via {config.static_gateway}")
                dns = ", ".join(server for server in (config.static_dns_primary, config.static_dns_secondary) if server)
                print(f"static_dns:  {dns or '-'}")
            else:
                print("static_ip:   off (DHCP)")
            return 0
        if command == "set-mode":
            engine.set_mode(args.mode)
            if not args.apply:
                return 0
        elif command == "set-wifi":
            password = args.password
            if password is None:
                password = getpass.getpass(f"Password for {args.ssid}: ")
            engine.set_wifi_credentials(args.ssid, password)
            return 0
        elif command == "set-static":
            dns = list(args.dns) + ["", ""]
            engine.set_static_ip(args.address, args.gateway, args.netmask, dns[0], dns[1])
            return 0
        elif command == "clear-static":
            engine.clear_static_ip()
            return 0
    except ValueError as exc:
        logger.error("[Network] %s", exc)
        return 1

    report = engine.apply_network_mode()
    for name, result in report.steps:
        print(f"[{result.outcome.value}] {name}: {result.detail}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Application entry point.

    Args:
        argv: Optional list of command-line arguments.

    Returns:
        Process exit code.
    """

    if argv is None:
        argv = sys.argv[1:]

    args = parse_args(argv)
    settings = load_app_settings(args.config_dir)
    runner = CommandRunner()
    paths = settings.paths

    if args.command == "boot":
        from boot.deadman import supervise_boot
        from boot.markers import BootMarkers

        enable_file_logging(paths.boot_log)
        extra_args = ["--config-dir", str(args.config_dir)] if args.config_dir else []
        return supervise_boot(BootMarkers(paths), settings.boot, runner, args.mode, extra_args=extra_args)

    if args.command == "run-stages":
        from boot.detect import parse_boot_mode
        from boot.orchestrator import BootOrchestrator

        enable_file_logging(paths.boot_log)
        mode = parse_boot_mode(args.mode, paths)
        BootOrchestrator(settings, runner).run(mode)
        return 0

    if args.command == "early-netplan":
        from network.engine import NetworkModeEngine

        NetworkModeEngine(settings, runner).write_early_network_config()
        return 0

    if args.command == "watchdog":
        from services.watchdog import WatchdogReconciler

        enable_file_logging(paths.watchdog_log, max_bytes=settings.watchdog.log_max_bytes)
        WatchdogReconciler(settings, runner).reconcile_once()
        return 0

    if args.command == "boot-timeout":
        from boot.timeout import check_boot_timeout

        enable_file_logging(paths.boot_log)
        check_boot_timeout(settings, runner)
        return 0

    if args.command == "recover":
        from boot.recovery import run_recovery

        enable_file_logging(paths.boot_log)
        report = run_recovery(settings, runner)
        for name, result in report.steps:
            print(f"[{result.outcome.value}] {name}: {result.detail}")
        return 0 if report.ok else 1

    if args.command == "diagnose":
        from diagnostics.run import run as run_diagnostics_report

        return run_diagnostics_report(offline=args.offline, config_dir=args.config_dir)

    if args.command == "network":
        return _network(args, settings, runner)

    return 1


def run() -> None:
    """Console-script entry point."""

    raise SystemExit(main())


if __name__ == "__main__":
    run()
