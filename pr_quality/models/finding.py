"""Value objects shared by the diff index, analyzers and reporting."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Set, Tuple

# repo-relative path -> changed new-file line numbers (1-indexed)
DiffMap = Dict[str, Set[int]]

# read-only view handed to analyzers once the scan is complete
FrozenDiffMap = Mapping[str, frozenset[int]]

_NO_LINE = "no-line"


class Severity(str, Enum):
    BLOCKING = "BLOCKING"
    WARNING = "WARNING"


@dataclass(frozen=True, slots=True)
class Finding:
    tool: str
    rule_id: str
    severity: Severity
    file: str
    message: str
    line: int | None = None
    col: int | None = None
    # reserved for later enrichment passes (e.g. a second-stage reviewer)
    note: str | None = None

    @property
    def dedup_key(self) -> Tuple[str, str, str, str]:
        line = str(self.line) if self.line is not None else _NO_LINE
        return (self.tool, self.file, line, self.rule_id)

    @property
    def sort_key(self) -> Tuple[str, int, str]:
        return (self.file, self.line if self.line is not None else 0, self.tool)


@dataclass(frozen=True, slots=True)
class AggregatedResult:
    blocking: Tuple[Finding, ...] = ()
    warnings: Tuple[Finding, ...] = ()
    all: Tuple[Finding, ...] = ()

    @property
    def has_blocking(self) -> bool:
        return bool(self.blocking)

    @property
    def is_clean(self) -> bool:
        return not self.all


def freeze_diff_map(diff_map: DiffMap) -> FrozenDiffMap:
    """Return an immutable copy of ``diff_map`` safe to share across analyzers."""

    return {path: frozenset(lines) for path, lines in diff_map.items()}
