"""Masquerading for the access-point subnet and the HAL port filter.

Rules live in dedicated chains so rebuilding them never touches the rules
Docker maintains in the same tables.
"""

from __future__ import annotations

from core.commands import CommandRunner
from core.logging import logger as LOGGER
from core.ops_models import StepResult


NAT_CHAIN = "CUBEOS-NAT"
FWD_CHAIN = "CUBEOS-FWD"
HAL_CHAIN = "CUBEOS-HAL"

# Interfaces allowed to reach the HAL port: loopback and Docker bridges.
HAL_TRUSTED_INTERFACES = ("lo", "docker0", "docker_gwbridge", "br-+")


class NatController:
    """Appliance-owned iptables chains for NAT and the HAL port."""

    def __init__(self, runner: CommandRunner, ap_subnet: str) -> None:
        self._runner = runner
        self._ap_subnet = ap_subnet

    def _iptables(self, table: str | None, *args: str):
        argv = ["iptables"]
        if table is not None:
            argv += ["-t", table]
        return self._runner.run([*argv, *args])

    def _chain_rules(self, table: str | None, chain: str) -> list[str] | None:
        """Return the ``-A`` lines of a chain, or None when it does not exist."""

        result = self._iptables(table, "-S", chain)
        if not result.ok:
            return None
        return [line.strip() for line in result.stdout.splitlines() if line.startswith("-A ")]

    def _ensure_chain(self, table: str | None, chain: str) -> None:
        if self._chain_rules(table, chain) is None:
            self._iptables(table, "-N", chain)

    def _ensure_jump(self, table: str | None, parent: str, chain: str, *match: str) -> None:
        check = self._iptables(table, "-C", parent, *match, "-j", chain)
        if not check.ok:
            self._iptables(table, "-I", parent, "1", *match, "-j", chain)

    def _desired(self, ap_iface: str, upstream: str) -> tuple[list[str], list[str]]:
        nat_rules = [f"-A {NAT_CHAIN} -s {self._ap_subnet} -o {upstream} -j MASQUERADE"]
        fwd_rules = [
            f"-A {FWD_CHAIN} -i {ap_iface} -o {upstream} -j ACCEPT",
            f"-A {FWD_CHAIN} -i {upstream} -o {ap_iface} -m conntrack --ctstate RELATED,ESTABLISHED -j ACCEPT",
        ]
        return nat_rules, fwd_rules

    def is_enabled(self, ap_iface: str, upstream: str) -> bool:
        nat_rules, fwd_rules = self._desired(ap_iface, upstream)
        return (
            self._chain_rules("nat", NAT_CHAIN) == nat_rules
            and self._chain_rules(None, FWD_CHAIN) == fwd_rules
            and self._iptables("nat", "-C", "POSTROUTING", "-j", NAT_CHAIN).ok
            and self._iptables(None, "-C", "FORWARD", "-j", FWD_CHAIN).ok
        )

    def enable(self, ap_iface: str, upstream: str) -> StepResult:
        """Flush the appliance chains and masquerade out of ``upstream``."""

        if self.is_enabled(ap_iface, upstream):
            return StepResult.ready(f"NAT already active via {upstream}")

        forward = self._runner.run(["sysctl", "-w", "net.ipv4.ip_forward=1"])
        if not forward.ok:
            LOGGER.warning("[Network] Enabling IP forwarding failed: %s", forward.error_text)

        nat_rules, fwd_rules = self._desired(ap_iface, upstream)
        for table, chain, parent, rules in (
            ("nat", NAT_CHAIN, "POSTROUTING", nat_rules),
            (None, FWD_CHAIN, "FORWARD", fwd_rules),
        ):
            self._ensure_chain(table, chain)
            self._iptables(table, "-F", chain)
            for rule in rules:
                result = self._iptables(table, *rule.split())
                if not result.ok:
                    LOGGER.error("[Network] iptables %s failed: %s", rule, result.error_text)
                    return StepResult.failed(f"NAT rule rejected: {result.error_text}", changed=True)
            self._ensure_jump(table, parent, chain)

        LOGGER.info("[Network] NAT enabled: %s -> %s", self._ap_subnet, upstream)
        return StepResult.ready(f"NAT enabled via {upstream}", changed=True)

    def disable(self) -> StepResult:
        """Flush the appliance chains; IP forwarding stays on for Docker."""

        changed = False
        for table, chain in (("nat", NAT_CHAIN), (None, FWD_CHAIN)):
            rules = self._chain_rules(table, chain)
            if rules:
                result = self._iptables(table, "-F", chain)
                if not result.ok:
                    return StepResult.failed(f"Flushing {chain} failed: {result.error_text}")
                changed = True
        if changed:
            LOGGER.info("[Network] NAT disabled")
        return StepResult.ready("NAT disabled", changed=changed)

    def _hal_rules(self) -> list[str]:
        rules = [f"-A {HAL_CHAIN} -i {iface} -j ACCEPT" for iface in HAL_TRUSTED_INTERFACES]
        rules.append(f"-A {HAL_CHAIN} -s {self._ap_subnet} -j ACCEPT")
        rules.append(f"-A {HAL_CHAIN} -j DROP")
        return rules

    def protect_hal_port(self, port: int) -> StepResult:
        """Accept HAL connections only from the host, Docker bridges and the AP subnet."""

        match = ("-p", "tcp", "--dport", str(port))
        rules = self._hal_rules()
        if (
            self._chain_rules(None, HAL_CHAIN) == rules
            and self._iptables(None, "-C", "INPUT", *match, "-j", HAL_CHAIN).ok
        ):
            return StepResult.ready(f"HAL port {port} already protected")

        self._ensure_chain(None, HAL_CHAIN)
        self._iptables(None, "-F", HAL_CHAIN)
        for rule in rules:
            result = self._iptables(None, *rule.split())
            if not result.ok:
                LOGGER.error("[Network] iptables %s failed: %s", rule, result.error_text)
                return StepResult.failed(f"HAL rule rejected: {result.error_text}", changed=True)
        self._ensure_jump(None, "INPUT", HAL_CHAIN, *match)
        LOGGER.info("[Network] HAL port %d closed to external networks", port)
        return StepResult.ready(f"HAL port {port} protected", changed=True)
