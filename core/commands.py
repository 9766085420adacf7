"""Thin subprocess wrapper returning typed results instead of raising."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
import os
import shutil
import subprocess

from core.logging import logger as LOGGER


EXIT_TIMEOUT = 124
EXIT_NOT_FOUND = 127


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external command."""

    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def command_line(self) -> str:
        return " ".join(self.args)

    @property
    def output(self) -> str:
        return self.stdout.strip()

    @property
    def error_text(self) -> str:
        """Return stderr, or stdout when stderr is empty, for log lines."""

        text = self.stderr.strip() or self.stdout.strip()
        return text or f"exit code {self.returncode}"


class CommandRunner:
    """Run external commands with a default timeout.

    Non-zero exits are returned, never raised. A missing binary maps to
    exit code 127 and a timeout to 124, the same codes a shell reports.
    """

    def __init__(self, default_timeout_s: float = 120.0) -> None:
        self.default_timeout_s = default_timeout_s

    def run(
        self,
        args: Sequence[str],
        *,
        timeout_s: float | None = None,
        input_text: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        argv = tuple(str(arg) for arg in args)
        timeout = self.default_timeout_s if timeout_s is None else timeout_s
        full_env = None
        if env:
            full_env = dict(os.environ)
            full_env.update(env)
        LOGGER.debug("[Cmd] %s", " ".join(argv))
        try:
            proc = subprocess.run(
                argv,
                input=input_text,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                timeout=timeout,
                env=full_env,
                check=False,
            )
        except FileNotFoundError:
            return CommandResult(argv, EXIT_NOT_FOUND, "", f"{argv[0]}: command not found")
        except subprocess.TimeoutExpired:
            return CommandResult(argv, EXIT_TIMEOUT, "", f"timed out after {timeout:.0f}s")
        return CommandResult(argv, proc.returncode, proc.stdout or "", proc.stderr or "")

    def which(self, name: str) -> bool:
        return shutil.which(name) is not None
