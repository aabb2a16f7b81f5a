"""Resolve which pull request and revisions a review run targets."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

from pr_quality.config import Settings
from pr_quality.github_client import PullRequestRef
from pr_quality.logger import get_logger

logger = get_logger()


class RunContextError(RuntimeError):
    """Raised when the base/head revisions or the PR identity cannot be determined."""


@dataclass(frozen=True, slots=True)
class RunContext:
    repository: str
    base_sha: str
    head_sha: str
    pull_number: int

    def pull_request(self) -> PullRequestRef:
        return PullRequestRef.from_full_name(self.repository, self.pull_number, self.head_sha)


def load_event_payload(event_path: Path | None) -> Dict[str, Any]:
    """Load the CI event payload, returning an empty dict when none is available."""

    if event_path is None or not event_path.is_file():
        return {}
    try:
        with open(event_path, encoding="utf-8") as f:
            payload = json.load(f)
    except (OSError, ValueError) as exc:
        logger.warning(f"Could not read event payload at {event_path}: {exc}")
        return {}
    return payload if isinstance(payload, dict) else {}


def _parse_pull_number(raw: Any) -> int | None:
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise RunContextError(f"Invalid pull request number: {raw!r}") from exc


def resolve_run_context(
    settings: Settings,
    *,
    base: str | None = None,
    head: str | None = None,
    pr_number: int | str | None = None,
    repository: str | None = None,
) -> RunContext:
    """Combine explicit arguments, the event payload and environment variables.

    Explicit arguments win over the ``pull_request`` event payload, which wins
    over ``BASE_SHA`` / ``HEAD_SHA`` / ``PR_NUMBER``. Events without a pull
    request (e.g. ``issue_comment``) therefore need the explicit values.
    """

    event = load_event_payload(settings.event_path)
    pr = event.get("pull_request") or {}

    base_sha = base or (pr.get("base") or {}).get("sha") or os.getenv("BASE_SHA")
    head_sha = head or (pr.get("head") or {}).get("sha") or os.getenv("HEAD_SHA")
    if not base_sha or not head_sha:
        raise RunContextError(
            "No pull_request context available. Provide the base and head revisions "
            "(--base/--head or BASE_SHA/HEAD_SHA)."
        )

    number = _parse_pull_number(pr_number)
    if number is None:
        number = _parse_pull_number(pr.get("number"))
    if number is None:
        number = _parse_pull_number(os.getenv("PR_NUMBER"))
    if number is None:
        raise RunContextError(
            "No pull_request context available. Provide the PR number (--pr-number or PR_NUMBER)."
        )

    full_name = (
        repository
        or settings.repository
        or (event.get("repository") or {}).get("full_name")
    )
    if not full_name or "/" not in full_name:
        raise RunContextError(
            "Repository is unknown. Set GITHUB_REPOSITORY or pass --repository owner/name."
        )

    return RunContext(
        repository=full_name,
        base_sha=base_sha,
        head_sha=head_sha,
        pull_number=number,
    )
