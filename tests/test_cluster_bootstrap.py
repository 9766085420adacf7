"""Tests for swarm initialisation, the overlay network and stack deployment."""

from __future__ import annotations

from datetime import datetime, timezone

from cluster.bootstrap import HAL_OVERLAY_ATTEMPTS, OVERLAY_ATTEMPTS, ClusterBootstrap
from cluster.docker import DockerCli, parse_docker_time, parse_replicas
from conftest import add_compose_file, no_sleep
from core.ops_models import StepOutcome


SWARM_STATE = ("docker", "info", "--format", "{{.Swarm.LocalNodeState}}")
NETWORK_INSPECT = ("docker", "network", "inspect", "--format", "{{.Scope}}", "cubeos-network")
HAL_INSPECT = ("docker", "network", "inspect", "--format", "{{.Scope}}", "hal-internal")


def _bootstrap(settings, runner, sleep=no_sleep) -> ClusterBootstrap:
    return ClusterBootstrap(settings, DockerCli(runner), sleep=sleep)


def test_parse_replicas() -> None:
    assert parse_replicas("api", "1/1").satisfied
    assert not parse_replicas("api", "0/1").satisfied
    assert parse_replicas("api", "1/1 (max 1 per node)").desired == 1
    assert parse_replicas("api", "n/a") is None


def test_parse_docker_time() -> None:
    assert parse_docker_time("2026-03-01T09:00:00.123456789Z") == datetime(2026, 3, 1, 9, 0, 0, tzinfo=timezone.utc)
    assert parse_docker_time("0001-01-01T00:00:00Z") is None
    assert parse_docker_time("garbage") is None


def test_stack_replicas_filters_by_namespace(runner) -> None:
    runner.on("docker", "service", "ls", stdout="cubeos-api_api 1/1\ncubeos-api_worker 0/2\n")

    counts = DockerCli(runner).stack_replicas("cubeos-api")

    assert [count.service for count in counts] == ["cubeos-api_api", "cubeos-api_worker"]
    assert "label=com.docker.stack.namespace=cubeos-api" in runner.calls[0]


def test_wait_for_engine_restarts_once(settings, runner) -> None:
    runner.on("docker", "info", "--format", "{{.ServerVersion}}", returncode=1, stderr="no daemon")

    result = _bootstrap(settings, runner).wait_for_engine()

    assert result.outcome is StepOutcome.FAILED
    assert runner.count("systemctl", "restart", "docker") == 1


def test_wait_for_engine_ready(settings, runner) -> None:
    result = _bootstrap(settings, runner).wait_for_engine()

    assert result.ok
    assert runner.count("systemctl", "restart", "docker") == 0


def test_active_swarm_is_left_alone(settings, runner) -> None:
    runner.on(*SWARM_STATE, stdout="active\n")

    result = _bootstrap(settings, runner).ensure_swarm()

    assert result.ok
    assert runner.count("docker", "swarm", "init") == 0


def test_swarm_init_falls_back_in_order(settings, runner) -> None:
    runner.on(*SWARM_STATE, stdout="inactive\n")
    runner.sequence("docker", "swarm", "init", results=[(1, ""), (1, ""), (0, "")])

    result = _bootstrap(settings, runner).ensure_swarm()

    assert result.ok
    attempts = runner.called("docker", "swarm", "init")
    assert len(attempts) == 3
    assert attempts[0][3:5] == ("--advertise-addr", "10.42.24.1")
    assert "--force-new-cluster" not in attempts[0]
    assert attempts[1][-1] == "--force-new-cluster"
    assert "--advertise-addr" not in attempts[2]
    for attempt in attempts:
        assert "--task-history-limit" in attempt
        assert "0.0.0.0:2377" in attempt


def test_swarm_init_accepts_active_state_after_error(settings, runner) -> None:
    runner.sequence(*SWARM_STATE, results=[(0, "inactive"), (0, "active")])
    runner.on("docker", "swarm", "init", returncode=1, stderr="already part of a swarm")

    result = _bootstrap(settings, runner).ensure_swarm()

    assert result.ok
    assert runner.count("docker", "swarm", "init") == 1


def test_swarm_init_gives_up_degraded(settings, runner) -> None:
    runner.on(*SWARM_STATE, stdout="inactive\n")
    runner.on("docker", "swarm", "init", returncode=1, stderr="bad address")

    result = _bootstrap(settings, runner).ensure_swarm()

    assert result.outcome is StepOutcome.DEGRADED
    assert runner.count("docker", "swarm", "init") == 3


def test_local_overlay_is_recreated_with_swarm_scope(settings, runner) -> None:
    runner.sequence(*NETWORK_INSPECT, results=[(0, "local"), (1, ""), (1, ""), (0, "swarm")])

    result = _bootstrap(settings, runner).ensure_overlay_network()

    assert result.ok
    assert runner.count("docker", "network", "rm", "cubeos-network") == 1
    creates = runner.called("docker", "network", "create")
    assert len(creates) == 3
    assert creates[0] == (
        "docker", "network", "create", "--driver", "overlay", "--attachable",
        "--subnet", "10.42.25.0/24", "cubeos-network",
    )


def test_overlay_creation_is_bounded(settings, runner) -> None:
    pauses: list[float] = []
    runner.on(*NETWORK_INSPECT, returncode=1, stderr="not found")

    result = _bootstrap(settings, runner, sleep=pauses.append).ensure_overlay_network()

    assert result.outcome is StepOutcome.DEGRADED
    assert runner.count("docker", "network", "create") == OVERLAY_ATTEMPTS
    assert [pause for pause in pauses if pause != 1] == [2.0, 4.0, 6.0, 8.0]


def test_stuck_local_overlay_is_never_reported_created(settings, runner) -> None:
    runner.on(*NETWORK_INSPECT, stdout="local\n")
    runner.on("docker", "network", "rm", returncode=1, stderr="network has active endpoints")
    runner.on("docker", "network", "create", returncode=1, stderr="network with name cubeos-network already exists")

    result = _bootstrap(settings, runner).ensure_overlay_network()

    assert result.outcome is StepOutcome.DEGRADED
    assert runner.count("docker", "network", "create") == OVERLAY_ATTEMPTS


def test_hal_network_uses_its_own_subnet_and_fewer_attempts(settings, runner) -> None:
    pauses: list[float] = []
    runner.on(*NETWORK_INSPECT, stdout="swarm\n")
    runner.on(*HAL_INSPECT, returncode=1, stderr="not found")

    result = _bootstrap(settings, runner, sleep=pauses.append).ensure_hal_network()

    assert result.outcome is StepOutcome.DEGRADED
    creates = runner.called("docker", "network", "create")
    assert len(creates) == HAL_OVERLAY_ATTEMPTS
    assert creates[0][-3:] == ("--subnet", "10.42.26.0/24", "hal-internal")
    assert [pause for pause in pauses if pause != 1] == [2.0, 4.0]


def test_hal_network_created_once(settings, runner) -> None:
    runner.sequence(*HAL_INSPECT, results=[(1, ""), (0, "swarm")])

    result = _bootstrap(settings, runner).ensure_hal_network()

    assert result.ok and result.changed
    assert runner.count("docker", "network", "create") == 1


def test_swarm_overlay_is_kept(settings, runner) -> None:
    runner.on(*NETWORK_INSPECT, stdout="swarm\n")

    assert _bootstrap(settings, runner).ensure_overlay_network().ok
    assert runner.count("docker", "network", "create") == 0
    assert runner.count("docker", "network", "rm") == 0


def test_missing_compose_file_does_not_stop_later_stacks(settings, runner) -> None:
    runner.on(*NETWORK_INSPECT, stdout="swarm\n")
    add_compose_file(settings, "cubeos-api")
    add_compose_file(settings, "dozzle")

    results = _bootstrap(settings, runner).deploy_stacks(["cubeos-api", "cubeos-docsindex", "dozzle"])

    assert results["cubeos-api"].ok
    assert results["cubeos-docsindex"].outcome is StepOutcome.DEGRADED
    assert results["dozzle"].ok
    deployed = [call[-1] for call in runner.called("docker", "stack", "deploy")]
    assert deployed == ["cubeos-api", "dozzle"]
    assert "--resolve-image" in runner.called("docker", "stack", "deploy")[0]


def test_stack_deploy_retries_then_fails(settings, runner) -> None:
    runner.on(*NETWORK_INSPECT, stdout="swarm\n")
    runner.on("docker", "stack", "deploy", returncode=1, stderr="network not found")
    add_compose_file(settings, "registry")

    result = _bootstrap(settings, runner).deploy_stack("registry")

    assert result.outcome is StepOutcome.FAILED
    assert runner.count("docker", "stack", "deploy") == settings.cluster.stack_deploy_attempts


def test_stack_deploy_recreates_vanished_overlay(settings, runner) -> None:
    runner.sequence(*NETWORK_INSPECT, results=[(1, ""), (1, ""), (0, "swarm")])
    add_compose_file(settings, "registry")

    result = _bootstrap(settings, runner).deploy_stack("registry")

    assert result.ok
    assert runner.count("docker", "network", "create") == 1


def test_compose_service_started_once(settings, runner) -> None:
    add_compose_file(settings, "pihole")

    result = _bootstrap(settings, runner).start_compose_service("pihole")

    assert result.ok and result.changed
    index = runner.calls.index(runner.called("docker", "compose")[0])
    assert runner.envs[index] == {"DOCKER_DEFAULT_PLATFORM": "linux/arm64"}
    assert runner.calls[index][-3:] == ("-d", "--pull", "never")


def test_running_compose_service_is_left_alone(settings, runner) -> None:
    runner.on("docker", "inspect", "--format", "{{.State.Running}}", "cubeos-pihole", stdout="true\n")

    result = _bootstrap(settings, runner).start_compose_service("pihole")

    assert result.ok and not result.changed
    assert runner.count("docker", "compose") == 0


def test_compose_service_without_file_is_degraded(settings, runner) -> None:
    result = _bootstrap(settings, runner).start_compose_service("npm")

    assert result.outcome is StepOutcome.DEGRADED
