"""Docker CLI wrapper used by the cluster bootstrap and the watchdog."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
import re

from core.commands import CommandResult, CommandRunner


SWARM_TASK_LABEL = "com.docker.swarm.task"
STACK_NAMESPACE_LABEL = "com.docker.stack.namespace"
_REPLICAS = re.compile(r"^(\d+)/(\d+)")
_DOCKER_TIME = "%Y-%m-%dT%H:%M:%S"


def parse_docker_time(value: str) -> datetime | None:
    """Parse an RFC 3339 engine timestamp (nanosecond precision) as UTC."""

    try:
        parsed = datetime.strptime(value[:19], _DOCKER_TIME)
    except ValueError:
        return None
    if parsed.year == 1:
        return None
    return parsed.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class ReplicaCount:
    """Running and desired replicas of one swarm service."""

    service: str
    running: int
    desired: int

    @property
    def satisfied(self) -> bool:
        return self.desired == 0 or self.running >= self.desired


def parse_replicas(service: str, text: str) -> ReplicaCount | None:
    match = _REPLICAS.match(text.strip())
    if match is None:
        return None
    return ReplicaCount(service, int(match.group(1)), int(match.group(2)))


class DockerCli:
    """Typed queries and actions over the ``docker`` command line."""

    def __init__(self, runner: CommandRunner, compose_platform: str = "linux/arm64") -> None:
        self._runner = runner
        self._compose_platform = compose_platform

    @property
    def runner(self) -> CommandRunner:
        return self._runner

    def docker(self, *args: str, timeout_s: float | None = None, input_text: str | None = None) -> CommandResult:
        return self._runner.run(["docker", *args], timeout_s=timeout_s, input_text=input_text)

    # -- engine and swarm --------------------------------------------------

    def engine_reachable(self) -> bool:
        return self.docker("info", "--format", "{{.ServerVersion}}", timeout_s=15).ok

    def swarm_state(self) -> str:
        result = self.docker("info", "--format", "{{.Swarm.LocalNodeState}}", timeout_s=15)
        return result.output if result.ok else ""

    def swarm_active(self) -> bool:
        return self.swarm_state() == "active"

    def swarm_init(self, *args: str) -> CommandResult:
        return self.docker("swarm", "init", *args, timeout_s=60)

    def restart_engine(self) -> CommandResult:
        return self._runner.run(["systemctl", "restart", "docker"], timeout_s=90)

    # -- networks ----------------------------------------------------------

    def network_scope(self, name: str) -> str | None:
        """Return ``swarm``/``local`` for an existing network, None when absent."""

        result = self.docker("network", "inspect", "--format", "{{.Scope}}", name)
        if not result.ok:
            return None
        return result.output or None

    def network_remove(self, name: str) -> CommandResult:
        return self.docker("network", "rm", name)

    def overlay_create(self, name: str, subnet: str) -> CommandResult:
        return self.docker(
            "network", "create", "--driver", "overlay", "--attachable", "--subnet", subnet, name
        )

    # -- stacks and services -----------------------------------------------

    def stack_names(self) -> set[str]:
        result = self.docker("stack", "ls", "--format", "{{.Name}}")
        if not result.ok:
            return set()
        return {line.strip() for line in result.stdout.splitlines() if line.strip()}

    def stack_deploy(self, compose_file: Path, name: str) -> CommandResult:
        return self.docker(
            "stack", "deploy", "-c", str(compose_file), "--resolve-image", "never", name,
            timeout_s=300,
        )

    def stack_remove(self, name: str) -> CommandResult:
        return self.docker("stack", "rm", name)

    def stack_replicas(self, name: str) -> list[ReplicaCount]:
        result = self.docker(
            "service", "ls",
            "--filter", f"label={STACK_NAMESPACE_LABEL}={name}",
            "--format", "{{.Name}} {{.Replicas}}",
        )
        if not result.ok:
            return []
        counts: list[ReplicaCount] = []
        for line in result.stdout.splitlines():
            parts = line.split()
            if len(parts) < 2:
                continue
            parsed = parse_replicas(parts[0], parts[1])
            if parsed is not None:
                counts.append(parsed)
        return counts

    # -- containers --------------------------------------------------------

    def container_running(self, name: str) -> bool:
        result = self.docker("inspect", "--format", "{{.State.Running}}", name)
        return result.ok and result.output == "true"

    def container_restart(self, name: str) -> CommandResult:
        return self.docker("restart", name, timeout_s=60)

    def compose_up(self, compose_file: Path) -> CommandResult:
        return self._runner.run(
            ["docker", "compose", "-f", str(compose_file), "up", "-d", "--pull", "never"],
            timeout_s=300,
            env={"DOCKER_DEFAULT_PLATFORM": self._compose_platform},
        )

    def exited_task_containers(self) -> list[str]:
        result = self.docker(
            "ps", "-a", "-q",
            "--filter", f"label={SWARM_TASK_LABEL}",
            "--filter", "status=exited",
        )
        if not result.ok:
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def stale_task_containers(self, max_age_h: int, now: datetime) -> list[str]:
        """Return exited task containers that finished more than ``max_age_h`` ago."""

        exited = self.exited_task_containers()
        if not exited:
            return []
        result = self.docker("inspect", "--format", "{{.Id}} {{.State.FinishedAt}}", *exited)
        if not result.ok:
            return []
        cutoff = now - timedelta(hours=max_age_h)
        stale = []
        for line in result.stdout.splitlines():
            parts = line.split()
            if len(parts) != 2:
                continue
            finished = parse_docker_time(parts[1])
            if finished is not None and finished < cutoff:
                stale.append(parts[0])
        return stale

    def remove_containers(self, ids: list[str]) -> CommandResult:
        return self.docker("container", "rm", *ids)

    # -- secrets -----------------------------------------------------------

    def secret_names(self) -> set[str]:
        result = self.docker("secret", "ls", "--format", "{{.Name}}")
        if not result.ok:
            return set()
        return {line.strip() for line in result.stdout.splitlines() if line.strip()}

    def secret_create(self, name: str, value: str) -> CommandResult:
        return self.docker("secret", "create", name, "-", input_text=value)
