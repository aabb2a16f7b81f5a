"""Publish a review result as PR comments without duplicating earlier runs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Protocol, Set, Tuple

from pr_quality.config import DEFAULT_GROUP_LINE_GAP
from pr_quality.github_client import GitHubAPIError, PullRequestRef
from pr_quality.logger import get_logger, log_with_context
from pr_quality.models.finding import AggregatedResult, Finding
from pr_quality.report.formatter import BOT_MARKER, format_line_comment, format_summary

logger = get_logger()

CommentKey = Tuple[str, int]


class CommentStore(Protocol):
    async def list_issue_comments(self, pr: PullRequestRef) -> List[Dict[str, Any]]:
        ...

    async def create_issue_comment(self, pr: PullRequestRef, body: str) -> Dict[str, Any]:
        ...

    async def update_issue_comment(
        self, pr: PullRequestRef, comment_id: int, body: str
    ) -> Dict[str, Any]:
        ...

    async def list_review_comments(self, pr: PullRequestRef) -> List[Dict[str, Any]]:
        ...

    async def create_review_comment(
        self, pr: PullRequestRef, *, path: str, line: int, body: str, side: str = "RIGHT"
    ) -> Dict[str, Any]:
        ...


@dataclass
class ReconcileReport:
    summary_action: str = "none"
    created: int = 0
    skipped: int = 0
    failed: int = 0


def _is_bot_comment(comment: Dict[str, Any]) -> bool:
    body = comment.get("body") or ""
    user = comment.get("user") or {}
    return BOT_MARKER in body or user.get("type") == "Bot"


def existing_line_keys(comments: Iterable[Dict[str, Any]]) -> Set[CommentKey]:
    """Collect ``(path, line)`` keys of line comments left by earlier bot runs.

    Outdated comments lose ``line``; ``original_line`` keeps them matched.
    """

    keys: Set[CommentKey] = set()
    for comment in comments:
        if not _is_bot_comment(comment):
            continue
        path = comment.get("path")
        line = comment.get("line") or comment.get("original_line")
        if path and isinstance(line, int):
            keys.add((path, line))
    return keys


class CommentReconciler:
    """Create or update the summary comment and add missing blocking line comments."""

    def __init__(self, store: CommentStore, *, gap: int = DEFAULT_GROUP_LINE_GAP) -> None:
        self._store = store
        self._gap = gap

    async def reconcile(self, result: AggregatedResult, pr: PullRequestRef) -> ReconcileReport:
        report = ReconcileReport()
        report.summary_action = await self.upsert_summary(format_summary(result, gap=self._gap), pr)
        if result.blocking:
            await self.post_line_comments(result.blocking, pr, report)
        return report

    async def upsert_summary(self, body: str, pr: PullRequestRef) -> str:
        ctx_logger = log_with_context(logger, repository=pr.full_name, pull_number=pr.number)
        comments = await self._store.list_issue_comments(pr)
        existing = next((c for c in comments if BOT_MARKER in (c.get("body") or "")), None)

        if existing is not None:
            ctx_logger.info(f"Updating existing summary comment (id: {existing['id']})")
            await self._store.update_issue_comment(pr, existing["id"], body)
            return "updated"

        ctx_logger.info("Creating summary comment")
        await self._store.create_issue_comment(pr, body)
        return "created"

    async def post_line_comments(
        self, findings: Iterable[Finding], pr: PullRequestRef, report: ReconcileReport
    ) -> None:
        """Post one review comment per blocking finding, skipping known locations.

        Creation is sequential so the seen-set is current before each request.
        """

        ctx_logger = log_with_context(logger, repository=pr.full_name, pull_number=pr.number)
        seen = existing_line_keys(await self._store.list_review_comments(pr))

        for finding in findings:
            if finding.line is None:
                continue
            key = (finding.file, finding.line)
            if key in seen:
                ctx_logger.debug(f"Line comment already present, skipping: {key[0]}:{key[1]}")
                report.skipped += 1
                continue
            try:
                await self._store.create_review_comment(
                    pr,
                    path=finding.file,
                    line=finding.line,
                    body=f"{BOT_MARKER}\n{format_line_comment(finding)}",
                )
            except GitHubAPIError as exc:
                # typically the line is no longer part of the diff, or the file was removed
                ctx_logger.warning(
                    f"Failed to create line comment at {key[0]}:{key[1]} "
                    f"(status={exc.status_code}): {exc}"
                )
                report.failed += 1
                continue
            seen.add(key)
            report.created += 1
            ctx_logger.info(f"Created line comment: {key[0]}:{key[1]}")
