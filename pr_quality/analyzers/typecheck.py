"""TypeScript compiler analyzer.

Every ``tsconfig.json`` in the workspace is treated as its own project, which
keeps monorepo workspaces independent. A project is only compiled when one of
its files is part of the diff.
"""

from __future__ import annotations

import asyncio
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, FrozenSet, Iterable, List, Sequence

from pr_quality.analyzers.base import Analyzer, RawDiagnostic, filter_to_diff
from pr_quality.logger import get_logger, log_with_context
from pr_quality.models.finding import Finding, FrozenDiffMap, Severity
from pr_quality.utils.process import CommandNotFoundError, CommandRunner, run_command

logger = get_logger()

TSCONFIG_NAME = "tsconfig.json"
IGNORED_DIRS: FrozenSet[str] = frozenset(
    {"node_modules", "dist", "build", "action-dist", ".git"}
)

_TSC_PATTERN = re.compile(
    r"^(?P<file>\S.*?)\((?P<line>\d+),(?P<col>\d+)\):\s*"
    r"(?P<category>error|warning|message)\s+TS(?P<code>\d+)\s*:\s*(?P<message>.*)$"
)
_EXTERNAL_MODULE_RE = re.compile(r"Cannot find module '(?!\.\.?/)[^']+'")


@dataclass(frozen=True, slots=True)
class TscDiagnostic:
    file: str
    line: int
    col: int
    category: str
    code: int
    message: str


NoisePredicate = Callable[[TscDiagnostic], bool]


def is_environment_noise(diag: TscDiagnostic) -> bool:
    """Return True for diagnostics caused by missing dependencies, not by the change.

    TS2307 for a bare module specifier means the package is not installed;
    relative imports stay reported since those are real mistakes. TS7026 is
    the implicit-any JSX error raised when React's ambient types are absent.
    """

    if diag.code == 2307:
        return bool(_EXTERNAL_MODULE_RE.search(diag.message))
    return diag.code == 7026


def parse_tsc_output(output: str) -> List[TscDiagnostic]:
    """Parse ``tsc --pretty false`` output, folding continuation lines into messages."""

    diagnostics: List[TscDiagnostic] = []
    for raw_line in output.replace("\r\n", "\n").split("\n"):
        match = _TSC_PATTERN.match(raw_line)
        if match:
            diagnostics.append(
                TscDiagnostic(
                    file=match.group("file").strip(),
                    line=int(match.group("line")),
                    col=int(match.group("col")),
                    category=match.group("category"),
                    code=int(match.group("code")),
                    message=match.group("message").strip(),
                )
            )
            continue
        if diagnostics and raw_line.startswith(" ") and raw_line.strip():
            last = diagnostics[-1]
            diagnostics[-1] = TscDiagnostic(
                file=last.file,
                line=last.line,
                col=last.col,
                category=last.category,
                code=last.code,
                message=f"{last.message}\n{raw_line.strip()}",
            )
    return diagnostics


def discover_tsconfigs(root: Path, ignored_dirs: Iterable[str] = IGNORED_DIRS) -> List[Path]:
    """Find every tsconfig.json below ``root`` without descending into ignored dirs."""

    ignored = set(ignored_dirs)
    found: List[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in ignored)
        if TSCONFIG_NAME in filenames:
            found.append(Path(dirpath) / TSCONFIG_NAME)
    return found


class TypeCheckAnalyzer(Analyzer):
    name = "typecheck"

    def __init__(
        self,
        workspace: str | Path,
        *,
        tsc_command: Sequence[str] = ("npx", "--no-install", "tsc"),
        noise_predicate: NoisePredicate = is_environment_noise,
        runner: CommandRunner = run_command,
    ) -> None:
        super().__init__(workspace)
        self._tsc_command = tuple(tsc_command)
        self._is_noise = noise_predicate
        self._runner = runner

    async def run(self, diff_map: FrozenDiffMap) -> List[Finding]:
        ctx_logger = log_with_context(logger, analyzer=self.name)
        findings: List[Finding] = []
        if not diff_map:
            return findings

        changed = {self.absolute_path(path).resolve() for path in diff_map}
        tsconfigs = await asyncio.to_thread(discover_tsconfigs, self.workspace)
        if not tsconfigs:
            ctx_logger.warning("No tsconfig.json found; skipping type check")
            return findings

        for tsconfig in tsconfigs:
            try:
                project_findings = await self._check_project(tsconfig, changed, diff_map)
            except CommandNotFoundError as exc:
                ctx_logger.info(f"TypeScript compiler unavailable ({exc}); skipping type check")
                return findings
            findings.extend(project_findings)

        ctx_logger.info(f"Type check complete: {len(findings)} finding(s)")
        return findings

    async def _list_project_files(self, tsconfig: Path) -> FrozenSet[Path] | None:
        result = await self._runner(
            [*self._tsc_command, "-p", str(tsconfig), "--listFilesOnly"],
            cwd=self.workspace,
        )
        if not result.ok:
            logger.warning(f"Failed to read {tsconfig}: {result.stdout.strip() or result.stderr.strip()}")
            return None
        files = set()
        for line in result.stdout.splitlines():
            line = line.strip()
            if line:
                path = Path(line)
                if not path.is_absolute():
                    path = self.workspace / path
                files.add(path.resolve())
        return frozenset(files)

    async def _check_project(
        self, tsconfig: Path, changed: set[Path], diff_map: FrozenDiffMap
    ) -> List[Finding]:
        project_files = await self._list_project_files(tsconfig)
        if project_files is None:
            return []

        project_dir = tsconfig.parent.resolve()
        relevant = [
            path for path in changed if path.is_relative_to(project_dir) and path in project_files
        ]
        if not relevant:
            logger.debug(f"{tsconfig}: no changed files in project, skipping")
            return []

        logger.info(f"{tsconfig}: {len(relevant)} changed file(s) in project")
        # --skipLibCheck keeps third-party .d.ts errors out of the report
        result = await self._runner(
            [
                *self._tsc_command,
                "-p",
                str(tsconfig),
                "--noEmit",
                "--pretty",
                "false",
                "--skipLibCheck",
            ],
            cwd=self.workspace,
        )

        diagnostics = parse_tsc_output(result.stdout)
        if not result.ok and not diagnostics:
            logger.warning(
                f"tsc exited with {result.returncode} for {tsconfig} without diagnostics: "
                f"{result.stderr.strip() or result.stdout.strip()}"
            )
            return []

        raw = [
            RawDiagnostic(
                file=diag.file,
                line=diag.line,
                col=diag.col,
                rule_id=f"TS{diag.code}",
                severity=Severity.BLOCKING if diag.category == "error" else Severity.WARNING,
                message=diag.message,
            )
            for diag in diagnostics
            if not self._is_noise(diag)
        ]
        return filter_to_diff(self, raw, diff_map)
