"""Async subprocess helpers used by the diff index and the analyzers."""

from __future__ import annotations

import asyncio
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Mapping, Sequence

from pr_quality.logger import get_logger

logger = get_logger()


class CommandNotFoundError(RuntimeError):
    """Raised when the executable of a command cannot be found."""

    def __init__(self, executable: str):
        super().__init__(f"Executable not found: {executable}")
        self.executable = executable


@dataclass(frozen=True, slots=True)
class CommandResult:
    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


CommandRunner = Callable[..., Awaitable[CommandResult]]


async def run_command(
    args: Sequence[str],
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
) -> CommandResult:
    """Execute a command without blocking the event loop and capture its output.

    ``env`` entries are layered over the current process environment; the
    process environment itself is never modified. A non-zero exit status is
    returned, not raised: linters and compilers use it to signal findings.
    """

    argv = tuple(str(arg) for arg in args)
    child_env = None
    if env:
        child_env = {**os.environ, **env}

    logger.debug(f"Running command: {' '.join(argv)} (cwd={cwd or os.getcwd()})")
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=str(cwd) if cwd is not None else None,
            env=child_env,
        )
    except FileNotFoundError as exc:
        raise CommandNotFoundError(argv[0]) from exc

    if timeout is None:
        stdout, stderr = await process.communicate()
    else:
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise

    result = CommandResult(
        args=argv,
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
    logger.debug(f"Command exited with {result.returncode}: {argv[0]}")
    return result
