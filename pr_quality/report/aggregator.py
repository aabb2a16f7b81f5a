"""Merge findings from every analyzer into one deterministic result."""

from __future__ import annotations

from typing import Iterable, List, Set, Tuple

from pr_quality.models.finding import AggregatedResult, Finding, Severity


def aggregate(findings: Iterable[Finding]) -> AggregatedResult:
    """Deduplicate, sort and classify findings.

    - dedup key: tool, file, line and rule id; the first occurrence wins
    - order: file, then line (file-level findings first), then tool; ``sorted``
      is stable so equal keys keep their input order
    - ``blocking`` and ``warnings`` partition ``all`` in the same order
    """

    seen: Set[Tuple[str, str, str, str]] = set()
    unique: List[Finding] = []
    for finding in findings:
        key = finding.dedup_key
        if key in seen:
            continue
        seen.add(key)
        unique.append(finding)

    ordered = tuple(sorted(unique, key=lambda f: f.sort_key))
    return AggregatedResult(
        blocking=tuple(f for f in ordered if f.severity is Severity.BLOCKING),
        warnings=tuple(f for f in ordered if f.severity is Severity.WARNING),
        all=ordered,
    )
