"""External tool invocation.

Every collaborator the pipelines drive (rustup, cargo, git, git-cliff) is
reached through a ``ToolRunner``.  The default ``SubprocessRunner`` blocks
until the command exits; tests substitute a scripted runner.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from keelson.models.results import CommandResult

logger = logging.getLogger(__name__)

_TAIL_CHARS = 2000


class ToolInvocationError(RuntimeError):
    """Raised when a tool cannot be started or exits non-zero under ``check``."""

    def __init__(self, message: str, result: CommandResult | None = None) -> None:
        super().__init__(message)
        self.result = result


@runtime_checkable
class ToolRunner(Protocol):
    """Protocol for running an external command to completion."""

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
    ) -> CommandResult:
        """Run *command* and return its result.

        With ``check=True`` a non-zero exit raises ``ToolInvocationError``.
        """
        ...


def output_tail(result: CommandResult, limit: int = _TAIL_CHARS) -> str:
    """The last *limit* characters of a command's combined output."""
    combined = "\n".join(part for part in (result.stdout, result.stderr) if part)
    return combined[-limit:]


class SubprocessRunner:
    """Runs commands with ``subprocess.run``, capturing text output.

    Parameters
    ----------
    cwd:
        Default working directory (the checked-out workspace).
    timeout_seconds:
        Per-command timeout; a timed-out command raises ``ToolInvocationError``.
    env:
        Extra environment variables layered over ``os.environ``.
    """

    def __init__(
        self,
        cwd: Path | None = None,
        *,
        timeout_seconds: int = 1800,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._cwd = cwd
        self._timeout = timeout_seconds
        self._env = dict(env or {})

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
    ) -> CommandResult:
        argv = [str(part) for part in command]
        workdir = cwd or self._cwd
        logger.info("$ %s", " ".join(argv))
        started = time.monotonic()
        try:
            proc = subprocess.run(
                argv,
                cwd=str(workdir) if workdir else None,
                env={**os.environ, **self._env, **(env or {})},
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            result = CommandResult(command=argv, returncode=127, stderr=str(exc))
            raise ToolInvocationError(f"Tool not found: {argv[0]}", result) from exc
        except subprocess.TimeoutExpired as exc:
            result = CommandResult(
                command=argv,
                returncode=-1,
                stderr=f"timed out after {self._timeout}s",
                duration_seconds=time.monotonic() - started,
            )
            raise ToolInvocationError(
                f"{argv[0]} timed out after {self._timeout}s", result
            ) from exc

        result = CommandResult(
            command=argv,
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
            duration_seconds=time.monotonic() - started,
        )
        logger.debug(
            "exit %d in %.2fs: %s", result.returncode, result.duration_seconds, result.display
        )
        if check and not result.ok:
            raise ToolInvocationError(
                f"{result.display} exited with status {result.returncode}: "
                f"{output_tail(result, 500).strip()}",
                result,
            )
        return result
