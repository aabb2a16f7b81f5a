from __future__ import annotations

import itertools
from typing import Any, Callable, Dict, List, Sequence, Tuple

import pytest

from pr_quality.config import Settings
from pr_quality.github_client import GitHubAPIError, PullRequestRef
from pr_quality.models.finding import Finding, Severity
from pr_quality.utils.process import CommandNotFoundError, CommandResult

Matcher = Callable[[Tuple[str, ...]], bool]


class FakeRunner:
    """Stand-in for ``run_command`` returning canned results by argument match."""

    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self._responses: List[Tuple[Matcher, CommandResult | Exception]] = []

    def on(self, matcher: Matcher, *, stdout: str = "", stderr: str = "", returncode: int = 0) -> "FakeRunner":
        self._responses.append(
            (matcher, CommandResult(args=(), returncode=returncode, stdout=stdout, stderr=stderr))
        )
        return self

    def raise_on(self, matcher: Matcher, exc: Exception) -> "FakeRunner":
        self._responses.append((matcher, exc))
        return self

    async def __call__(self, args: Sequence[str], *, cwd=None, env=None, timeout=None) -> CommandResult:
        argv = tuple(str(a) for a in args)
        self.calls.append({"args": argv, "cwd": cwd, "env": env})
        for matcher, response in self._responses:
            if matcher(argv):
                if isinstance(response, Exception):
                    raise response
                return CommandResult(
                    args=argv,
                    returncode=response.returncode,
                    stdout=response.stdout,
                    stderr=response.stderr,
                )
        raise CommandNotFoundError(argv[0])


class FakeCommentStore:
    """In-memory comment store that behaves like the GitHub comment endpoints."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.issue_comments: List[Dict[str, Any]] = []
        self.review_comments: List[Dict[str, Any]] = []
        self.updates: List[Tuple[int, str]] = []
        self.fail_paths: set[str] = set()

    async def list_issue_comments(self, pr: PullRequestRef) -> List[Dict[str, Any]]:
        return [dict(c) for c in self.issue_comments]

    async def create_issue_comment(self, pr: PullRequestRef, body: str) -> Dict[str, Any]:
        comment = {"id": next(self._ids), "body": body, "user": {"type": "Bot"}}
        self.issue_comments.append(comment)
        return comment

    async def update_issue_comment(self, pr: PullRequestRef, comment_id: int, body: str) -> Dict[str, Any]:
        self.updates.append((comment_id, body))
        for comment in self.issue_comments:
            if comment["id"] == comment_id:
                comment["body"] = body
                return comment
        raise GitHubAPIError("not found", 404)

    async def list_review_comments(self, pr: PullRequestRef) -> List[Dict[str, Any]]:
        return [dict(c) for c in self.review_comments]

    async def create_review_comment(
        self, pr: PullRequestRef, *, path: str, line: int, body: str, side: str = "RIGHT"
    ) -> Dict[str, Any]:
        if path in self.fail_paths:
            raise GitHubAPIError("line must be part of the diff", 422, {"message": "Validation Failed"})
        comment = {
            "id": next(self._ids),
            "path": path,
            "line": line,
            "side": side,
            "commit_id": pr.head_sha,
            "body": body,
            "user": {"type": "Bot"},
        }
        self.review_comments.append(comment)
        return comment


def make_finding(
    *,
    tool: str = "eslint",
    rule_id: str = "no-undef",
    severity: Severity = Severity.BLOCKING,
    file: str = "app.ts",
    line: int | None = 5,
    message: str = "'foo' is not defined.",
    col: int | None = None,
    note: str | None = None,
) -> Finding:
    return Finding(
        tool=tool,
        rule_id=rule_id,
        severity=severity,
        file=file,
        line=line,
        col=col,
        message=message,
        note=note,
    )


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def comment_store() -> FakeCommentStore:
    return FakeCommentStore()


@pytest.fixture
def pr_ref() -> PullRequestRef:
    return PullRequestRef(owner="octo", repo="app", number=7, head_sha="abc123")


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(workspace=tmp_path, github_token="test-token", repository="octo/app")
