"""Thin async wrapper around the ESLint command-line interface."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Mapping, Sequence

from pr_quality.logger import get_logger
from pr_quality.utils.process import CommandRunner, run_command

logger = get_logger()

ESLINT_ERROR_LEVEL = 2
ESLINT_WARNING_LEVEL = 1

# ESLint reports explicitly passed but ignored files with a single warning
# carrying no rule id; both flat and legacy modes start it this way.
_IGNORED_FILE_PREFIX = "File ignored"


class EslintEngineError(RuntimeError):
    """Raised when ESLint crashes or produces unreadable output."""

    def __init__(self, message: str, returncode: int | None = None, stderr: str | None = None):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


@dataclass(frozen=True, slots=True)
class EslintMessage:
    rule_id: str | None
    severity: int
    message: str
    line: int | None = None
    column: int | None = None
    fatal: bool = False


@dataclass(frozen=True, slots=True)
class EslintFileResult:
    file_path: str
    messages: List[EslintMessage] = field(default_factory=list)

    @property
    def ignored(self) -> bool:
        return (
            len(self.messages) == 1
            and self.messages[0].rule_id is None
            and self.messages[0].message.startswith(_IGNORED_FILE_PREFIX)
        )


def _optional_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    return None


def parse_eslint_json(payload: Any) -> List[EslintFileResult]:
    """Convert ``eslint --format json`` output into typed results."""

    if not isinstance(payload, list):
        raise EslintEngineError("ESLint JSON output is not a list of results")

    results: List[EslintFileResult] = []
    for entry in payload:
        if not isinstance(entry, dict):
            continue
        file_path = entry.get("filePath")
        if not isinstance(file_path, str):
            continue
        messages: List[EslintMessage] = []
        for message in entry.get("messages") or []:
            if not isinstance(message, dict):
                continue
            severity = _optional_int(message.get("severity"))
            rule_id = message.get("ruleId")
            messages.append(
                EslintMessage(
                    rule_id=rule_id if isinstance(rule_id, str) else None,
                    severity=severity if severity is not None else ESLINT_WARNING_LEVEL,
                    message=str(message.get("message") or "").strip(),
                    line=_optional_int(message.get("line")),
                    column=_optional_int(message.get("column")),
                    fatal=bool(message.get("fatal", False)),
                )
            )
        results.append(EslintFileResult(file_path=file_path, messages=messages))
    return results


class EslintEngine:
    """Run ESLint over a set of files and report per-file diagnostics."""

    def __init__(
        self,
        workspace: str | Path,
        *,
        command: Sequence[str] = ("npx", "--no-install", "eslint"),
        env: Mapping[str, str] | None = None,
        runner: CommandRunner = run_command,
    ) -> None:
        self._workspace = Path(workspace)
        self._command = tuple(command)
        self._env = dict(env or {})
        self._runner = runner

    async def lint_files(
        self,
        files: Sequence[str],
        *,
        config_file: str | Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> List[EslintFileResult]:
        """Lint ``files`` and return every result, ignored files included.

        Raises:
            CommandNotFoundError: if the ESLint executable is missing.
            EslintEngineError: on crashes, configuration errors or bad output.
        """

        if not files:
            return []
        args = [*self._command, "--format", "json", "--no-error-on-unmatched-pattern"]
        if config_file is not None:
            args.extend(["--config", str(config_file)])
        args.append("--")
        args.extend(files)

        result = await self._runner(
            args, cwd=self._workspace, env={**self._env, **(env or {})} or None
        )
        # exit 1 means lint problems were found; anything higher is a crash
        if result.returncode not in (0, 1):
            raise EslintEngineError(
                f"ESLint exited with code {result.returncode}: {result.stderr.strip()[:500]}",
                result.returncode,
                result.stderr,
            )
        try:
            payload = json.loads(result.stdout or "[]")
        except ValueError as exc:
            raise EslintEngineError(
                "ESLint returned invalid JSON output.", result.returncode, result.stderr
            ) from exc
        return parse_eslint_json(payload)

    def is_path_ignored(self, result: EslintFileResult) -> bool:
        """Return True if ESLint skipped the file because of project ignore rules."""

        return result.ignored
