"""Markdown rendering for the PR summary comment and inline line comments."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List

from pr_quality.config import DEFAULT_GROUP_LINE_GAP
from pr_quality.models.finding import AggregatedResult, Finding

# Hidden marker used to find this tool's comments again on later runs.
BOT_MARKER = "<!-- pr-quality-review -->"

REPORT_TITLE = "PR Quality Report"
NO_ISSUES_LINE = "No issues found in the changed files."

_STATUS_BLOCKING = "🔴"
_STATUS_WARNING = "🟡"
_STATUS_CLEAN = "🟢"


@dataclass
class FindingGroup:
    """Consecutive findings of one rule in one file, shown as a single entry."""

    tool: str
    rule_id: str
    file: str
    start_line: int | None
    end_line: int | None
    count: int
    message: str
    note: str | None = None


def group_findings(
    findings: Iterable[Finding], *, gap: int = DEFAULT_GROUP_LINE_GAP
) -> List[FindingGroup]:
    """Collapse runs of same file/rule/tool findings whose lines are at most ``gap`` apart.

    Expects findings in aggregated (sorted) order. File-level findings never
    join a group.
    """

    groups: List[FindingGroup] = []
    for finding in findings:
        last = groups[-1] if groups else None
        if (
            last is not None
            and last.file == finding.file
            and last.rule_id == finding.rule_id
            and last.tool == finding.tool
            and finding.line is not None
            and last.end_line is not None
            and finding.line - last.end_line <= gap
        ):
            last.end_line = finding.line
            last.count += 1
            continue
        groups.append(
            FindingGroup(
                tool=finding.tool,
                rule_id=finding.rule_id,
                file=finding.file,
                start_line=finding.line,
                end_line=finding.line,
                count=1,
                message=finding.message,
                note=finding.note,
            )
        )
    return groups


def _inline(message: str) -> str:
    # continuation lines are indented to stay inside the list item
    return "\n  ".join(line.strip() for line in message.strip().splitlines() if line.strip())


def format_group(group: FindingGroup) -> str:
    location = ""
    if group.start_line is not None:
        if group.start_line == group.end_line:
            location = f":{group.start_line}"
        else:
            location = f":{group.start_line}-{group.end_line}"
    count = f" _({group.count} occurrences)_" if group.count > 1 else ""
    note = f"\n  > {group.note}" if group.note else ""
    return (
        f"- `{group.file}{location}` **[{group.tool}/{group.rule_id}]** "
        f"{_inline(group.message)}{count}{note}"
    )


def status_icon(result: AggregatedResult) -> str:
    if result.blocking:
        return _STATUS_BLOCKING
    if result.warnings:
        return _STATUS_WARNING
    return _STATUS_CLEAN


def _summary_lines(result: AggregatedResult, *, gap: int) -> List[str]:
    blocking, warnings = result.blocking, result.warnings
    lines = [
        f"## {status_icon(result)} {REPORT_TITLE}",
        "",
        "| Severity | Count |",
        "|----------|-------|",
        f"| Blocking | **{len(blocking)}** |",
        f"| Warning  | {len(warnings)} |",
        "",
    ]

    if blocking:
        lines.append("### Blocking")
        lines.append("")
        lines.extend(format_group(g) for g in group_findings(blocking, gap=gap))
        lines.append("")

    if warnings:
        lines.append("<details>")
        lines.append(f"<summary>Warnings ({len(warnings)}, click to expand)</summary>")
        lines.append("")
        lines.extend(format_group(g) for g in group_findings(warnings, gap=gap))
        lines.append("")
        lines.append("</details>")

    if not blocking and not warnings:
        lines.append(NO_ISSUES_LINE)

    return lines


def format_summary(result: AggregatedResult, *, gap: int = DEFAULT_GROUP_LINE_GAP) -> str:
    """Render the PR summary comment, starting with the hidden bot marker."""

    return "\n".join([BOT_MARKER, *_summary_lines(result, gap=gap)])


def format_step_summary(result: AggregatedResult, *, gap: int = DEFAULT_GROUP_LINE_GAP) -> str:
    """Render the same report for the CI job summary page (no marker)."""

    return "\n".join(_summary_lines(result, gap=gap)) + "\n"


def format_line_comment(finding: Finding) -> str:
    """Render a single finding as an inline review comment body."""

    note = f"\n\n> {finding.note}" if finding.note else ""
    return f"**[{finding.tool}/{finding.rule_id}]** {finding.message}{note}"
