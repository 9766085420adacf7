"""Device secrets: generated once on disk, mirrored into swarm secrets."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
import json
import os
from pathlib import Path
import secrets
import shutil

from cluster.docker import DockerCli
from config.settings import ApplianceSettings
from core.logging import logger as LOGGER
from core.ops_models import StepResult
from network.dhcp import DEFAULT_PIHOLE_PASSWORD, read_env_value


SECRETS_GROUP = "docker"


def _default_values(token_hex: Callable[[int], str] = secrets.token_hex) -> dict[str, str]:
    return {
        "CUBEOS_JWT_SECRET": token_hex(32),
        "CUBEOS_API_SECRET": token_hex(32),
        "CUBEOS_ENCRYPTION_KEY": token_hex(16),
        "CUBEOS_SESSION_SECRET": token_hex(32),
        "CUBEOS_PIHOLE_PASSWORD": DEFAULT_PIHOLE_PASSWORD,
        "HAL_CORE_KEY": token_hex(32),
    }


def env_key_for(secret_name: str) -> str:
    """Map a swarm secret name such as ``jwt_secret`` to its env key."""

    return f"CUBEOS_{secret_name.upper()}"


def render_secrets_file(values: dict[str, str], generated_at: datetime) -> str:
    lines = [
        "# CubeOS device secrets, AUTO-GENERATED, DO NOT EDIT",
        f"# Generated at: {generated_at.strftime('%Y-%m-%dT%H:%M:%SZ')}",
        "",
    ]
    lines.extend(f"{key}={value}" for key, value in values.items() if key != "HAL_CORE_KEY")
    lines.extend(
        [
            "",
            "# HAL per-caller ACL key",
            f"HAL_CORE_KEY={values['HAL_CORE_KEY']}",
        ]
    )
    return "\n".join(lines) + "\n"


def _restrict(path: Path) -> None:
    os.chmod(path, 0o640)
    try:
        shutil.chown(path, user="root", group=SECRETS_GROUP)
    except (LookupError, PermissionError) as exc:
        LOGGER.warning("[Secrets] Could not chown %s to root:%s: %s", path, SECRETS_GROUP, exc)


class SecretsManager:
    """Generate the device secrets file and keep swarm secrets in step with it."""

    def __init__(
        self,
        settings: ApplianceSettings,
        docker: DockerCli,
        *,
        token_hex: Callable[[int], str] = secrets.token_hex,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._paths = settings.paths
        self._swarm_secrets = settings.cluster.swarm_secrets
        self._docker = docker
        self._token_hex = token_hex
        self._clock = clock

    def ensure_secrets(self) -> StepResult:
        """Write secrets.env and the HAL ACL once; never regenerate."""

        secrets_file = self._paths.secrets_file
        if secrets_file.exists():
            LOGGER.info("[Secrets] %s already exists; skipping generation", secrets_file)
            return self.mirror_swarm_secrets()

        values = _default_values(self._token_hex)
        secrets_file.parent.mkdir(parents=True, exist_ok=True)
        secrets_file.write_text(render_secrets_file(values, self._clock()), encoding="utf-8")
        _restrict(secrets_file)

        acl_file = self._paths.hal_acl_file
        acl_file.parent.mkdir(parents=True, exist_ok=True)
        acl_file.write_text(json.dumps({"keys": {values["HAL_CORE_KEY"]: "core"}}) + "\n", encoding="utf-8")
        os.chmod(acl_file, 0o640)
        LOGGER.info("[Secrets] Generated %s and %s", secrets_file, acl_file)

        mirrored = self.mirror_swarm_secrets()
        return StepResult(mirrored.outcome, f"secrets generated; {mirrored.detail}", changed=True)

    def missing_swarm_secrets(self) -> list[str]:
        existing = self._docker.secret_names()
        return [name for name in self._swarm_secrets if name not in existing]

    def mirror_swarm_secrets(self) -> StepResult:
        """Create any swarm secret that is missing, from the on-disk values.

        A forced swarm re-init drops every secret object, so this also serves
        as the watchdog's repair action.
        """

        if not self._docker.swarm_active():
            return StepResult.ready("swarm inactive; swarm secrets deferred")
        missing = self.missing_swarm_secrets()
        if not missing:
            return StepResult.ready("swarm secrets present")

        failed: list[str] = []
        for name in missing:
            value = read_env_value(self._paths.secrets_file, env_key_for(name))
            if not value:
                LOGGER.warning("[Secrets] %s has no value in %s", name, self._paths.secrets_file)
                failed.append(name)
                continue
            result = self._docker.secret_create(name, value)
            if result.ok:
                LOGGER.info("[Secrets] Created swarm secret %s", name)
            else:
                LOGGER.warning("[Secrets] Creating swarm secret %s failed: %s", name, result.error_text)
                failed.append(name)
        if failed:
            return StepResult.degraded(f"swarm secrets missing: {', '.join(failed)}", changed=True)
        return StepResult.ready(f"created swarm secrets: {', '.join(missing)}", changed=True)
