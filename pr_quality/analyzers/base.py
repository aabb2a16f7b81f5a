"""Common contract for analyzers that produce findings scoped to a diff."""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Iterable, List

from pr_quality.models.finding import Finding, FrozenDiffMap, Severity

# Any coroutine function over a DiffMap can take part in a review run.
Runner = Callable[[FrozenDiffMap], Awaitable[List[Finding]]]


@dataclass(frozen=True, slots=True)
class RawDiagnostic:
    """A diagnostic as reported by an engine, before diff scoping."""

    file: str
    line: int | None
    col: int | None
    rule_id: str | None
    severity: Severity
    message: str


class Analyzer(ABC):
    """A pluggable source of findings restricted to the lines of a diff.

    Implementations return an empty list for expected environmental gaps
    (no configuration, missing binary, nothing to check) and log why. They
    only raise for unexpected failures, which the pipeline contains.
    """

    name: str = "analyzer"

    def __init__(self, workspace: str | Path) -> None:
        self.workspace = Path(workspace).resolve()

    @abstractmethod
    async def run(self, diff_map: FrozenDiffMap) -> List[Finding]:
        """Return findings located on changed lines of ``diff_map``."""

    async def __call__(self, diff_map: FrozenDiffMap) -> List[Finding]:
        return await self.run(diff_map)

    def relative_path(self, path: str) -> str:
        """Normalise an engine-reported path to a repo-relative POSIX path."""

        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self.workspace / candidate
        relative = os.path.relpath(os.path.normpath(candidate), self.workspace)
        return Path(relative).as_posix()

    def absolute_path(self, relative: str) -> Path:
        return self.workspace / relative


def filter_to_diff(
    analyzer: Analyzer,
    diagnostics: Iterable[RawDiagnostic],
    diff_map: FrozenDiffMap,
    *,
    severity_override: Severity | None = None,
) -> List[Finding]:
    """Convert raw diagnostics to findings, keeping only changed ``(file, line)`` pairs."""

    findings: List[Finding] = []
    for diag in diagnostics:
        rel_path = analyzer.relative_path(diag.file)
        changed_lines = diff_map.get(rel_path)
        if changed_lines is None:
            continue
        if diag.line is None or diag.line not in changed_lines:
            continue
        findings.append(
            Finding(
                tool=analyzer.name,
                rule_id=diag.rule_id or "unknown",
                severity=severity_override or diag.severity,
                file=rel_path,
                line=diag.line,
                col=diag.col,
                message=diag.message,
            )
        )
    return findings
