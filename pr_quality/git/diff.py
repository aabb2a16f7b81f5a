"""Map a unified diff to the new-file lines each changed file touches."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Sequence

from pr_quality.config import DEFAULT_EXCLUDED_DIRS, DEFAULT_EXTENSIONS
from pr_quality.logger import get_logger
from pr_quality.models.finding import DiffMap
from pr_quality.utils.process import CommandNotFoundError, CommandRunner, run_command

logger = get_logger()

# @@ -a[,b] +c[,d] @@ -- captures the new-file start line (c)
_HUNK_RE = re.compile(r"^@@ -\d+(?:,\d+)? \+(?P<new_start>\d+)(?:,\d+)? @@")

_NEW_FILE_PREFIX = "+++ b/"


class DiffError(RuntimeError):
    """Raised when the diff between two revisions cannot be computed."""

    def __init__(self, message: str, stderr: str | None = None):
        super().__init__(message)
        self.stderr = stderr


@dataclass(slots=True)
class _ScanState:
    current_file: str | None = None
    is_binary: bool = False
    cursor: int = 0


def is_reviewable_path(
    path: str,
    *,
    extensions: Sequence[str] = DEFAULT_EXTENSIONS,
    excluded_dirs: Sequence[str] = DEFAULT_EXCLUDED_DIRS,
) -> bool:
    """Return True if ``path`` has an allowed extension and sits outside excluded dirs."""

    if not path.endswith(tuple(extensions)):
        return False
    prefixes = tuple(d.rstrip("/") + "/" for d in excluded_dirs)
    return not path.startswith(prefixes)


def parse_unified_diff(
    diff_text: str,
    *,
    extensions: Sequence[str] = DEFAULT_EXTENSIONS,
    excluded_dirs: Sequence[str] = DEFAULT_EXCLUDED_DIRS,
) -> DiffMap:
    """Build a DiffMap from unified diff text.

    Only ``+`` lines are recorded. ``-`` lines do not exist in the new file and
    leave the cursor alone; context lines advance it without being recorded.
    A file that passes the path filter but has no hunks (a pure rename, say)
    still gets an empty entry, which is distinct from not being changed.
    """

    diff_map: DiffMap = {}
    state = _ScanState()

    for line in diff_text.replace("\r\n", "\n").split("\n"):
        if line.startswith(_NEW_FILE_PREFIX):
            path = line[len(_NEW_FILE_PREFIX):]
            state.is_binary = False
            if is_reviewable_path(path, extensions=extensions, excluded_dirs=excluded_dirs):
                state.current_file = path
                diff_map.setdefault(path, set())
            else:
                state.current_file = None
            continue

        # old-side path; the new path drives everything
        if line.startswith("--- "):
            continue

        if line.startswith("Binary files"):
            state.is_binary = True
            state.current_file = None
            continue

        if line.startswith("diff --git"):
            state.is_binary = False
            state.current_file = None
            continue

        if state.current_file is None or state.is_binary:
            continue

        hunk = _HUNK_RE.match(line)
        if hunk:
            state.cursor = int(hunk.group("new_start"))
            continue

        if line.startswith("+"):
            diff_map[state.current_file].add(state.cursor)
            state.cursor += 1
        elif line.startswith(" "):
            state.cursor += 1
        # "-" lines and "\ No newline at end of file" markers leave the cursor alone

    return diff_map


def filter_changed_files(
    names: Iterable[str],
    *,
    extensions: Sequence[str] = DEFAULT_EXTENSIONS,
    excluded_dirs: Sequence[str] = DEFAULT_EXCLUDED_DIRS,
) -> List[str]:
    files: List[str] = []
    for name in names:
        name = name.strip()
        if name and is_reviewable_path(name, extensions=extensions, excluded_dirs=excluded_dirs):
            files.append(name)
    return files


async def _git(args: Sequence[str], cwd: str | Path | None, runner: CommandRunner) -> str:
    try:
        result = await runner(["git", *args], cwd=cwd)
    except CommandNotFoundError as exc:
        raise DiffError("git is not available on PATH") from exc
    if not result.ok:
        logger.error(f"Command failed: git {' '.join(args)}")
        logger.error(f"stderr: {result.stderr.strip()}")
        raise DiffError(
            f"git {args[0]} failed with exit code {result.returncode}", result.stderr
        )
    return result.stdout


async def get_changed_files(
    base: str,
    head: str,
    *,
    cwd: str | Path | None = None,
    extensions: Sequence[str] = DEFAULT_EXTENSIONS,
    excluded_dirs: Sequence[str] = DEFAULT_EXCLUDED_DIRS,
    runner: CommandRunner = run_command,
) -> List[str]:
    """List reviewable files changed between ``base`` and ``head`` (name-only diff)."""

    output = await _git(["diff", "--name-only", f"{base}...{head}"], cwd, runner)
    return filter_changed_files(
        output.replace("\r\n", "\n").split("\n"),
        extensions=extensions,
        excluded_dirs=excluded_dirs,
    )


async def build_diff_map(
    base: str,
    head: str,
    *,
    cwd: str | Path | None = None,
    extensions: Sequence[str] = DEFAULT_EXTENSIONS,
    excluded_dirs: Sequence[str] = DEFAULT_EXCLUDED_DIRS,
    runner: CommandRunner = run_command,
) -> DiffMap:
    """Compute the zero-context diff between two revisions and index its changed lines."""

    logger.info(f"Computing diff: {base}...{head}")
    raw = await _git(["diff", "-U0", "--no-color", f"{base}...{head}"], cwd, runner)
    diff_map = parse_unified_diff(raw, extensions=extensions, excluded_dirs=excluded_dirs)
    logger.debug(f"Diff indexed: {len(raw)} bytes, {len(diff_map)} reviewable file(s)")
    return diff_map
