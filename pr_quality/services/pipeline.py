"""Run the diff-scoped review end to end and decide the outcome."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import List, Sequence

import httpx

from pr_quality.analyzers.base import Analyzer, Runner
from pr_quality.analyzers.builtin import BaselineAnalyzer
from pr_quality.analyzers.eslint import LintAnalyzer
from pr_quality.analyzers.typecheck import TypeCheckAnalyzer
from pr_quality.config import Settings
from pr_quality.git.diff import build_diff_map
from pr_quality.github_client import GitHubAPIError
from pr_quality.logger import get_logger, log_failure, log_success, log_timing, log_with_context
from pr_quality.models.finding import AggregatedResult, Finding, FrozenDiffMap, freeze_diff_map
from pr_quality.report.aggregator import aggregate
from pr_quality.services.commenter import CommentReconciler, CommentStore
from pr_quality.services.run_context import RunContext
from pr_quality.utils.process import CommandRunner, run_command

logger = get_logger()


@dataclass(frozen=True, slots=True)
class ReviewOutcome:
    result: AggregatedResult
    passed: bool
    message: str


def default_analyzers(settings: Settings, *, runner: CommandRunner = run_command) -> List[Analyzer]:
    """Analyzers run on every review; extend this list to plug in new tools."""

    return [
        TypeCheckAnalyzer(settings.workspace, tsc_command=settings.tsc_command, runner=runner),
        LintAnalyzer(settings.workspace, eslint_command=settings.eslint_command, runner=runner),
        BaselineAnalyzer(settings.workspace, eslint_command=settings.eslint_command, runner=runner),
    ]


def _runner_name(runner: Runner) -> str:
    return getattr(runner, "name", None) or getattr(runner, "__name__", type(runner).__name__)


async def run_analyzers(runners: Sequence[Runner], diff_map: FrozenDiffMap) -> List[Finding]:
    """Run every analyzer concurrently; a failing analyzer contributes nothing."""

    outcomes = await asyncio.gather(
        *(runner(diff_map) for runner in runners), return_exceptions=True
    )
    findings: List[Finding] = []
    for runner, outcome in zip(runners, outcomes):
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                raise outcome
            log_failure(logger, f"Analyzer {_runner_name(runner)} crashed", outcome)
            continue
        findings.extend(outcome)
    return findings


def build_outcome(result: AggregatedResult) -> ReviewOutcome:
    if result.blocking:
        count = len(result.blocking)
        return ReviewOutcome(
            result=result,
            passed=False,
            message=f"{count} blocking issue(s) found. Fix them before merging.",
        )
    return ReviewOutcome(result=result, passed=True, message="Review complete: no blocking issues.")


class ReviewPipeline:
    def __init__(
        self,
        settings: Settings,
        *,
        analyzers: Sequence[Runner],
        store: CommentStore | None = None,
        runner: CommandRunner = run_command,
    ) -> None:
        self._settings = settings
        self._analyzers = list(analyzers)
        self._store = store
        self._runner = runner

    async def run(self, context: RunContext) -> ReviewOutcome:
        """Review one pull request.

        Raises:
            DiffError: if the diff between base and head cannot be computed.
        """

        ctx_logger = log_with_context(
            logger, repository=context.repository, pull_number=context.pull_number
        )
        ctx_logger.info(f"=== REVIEW: {context.base_sha[:8]}...{context.head_sha[:8]} ===")

        with log_timing(ctx_logger, "build_diff_map"):
            diff_map = await build_diff_map(
                context.base_sha,
                context.head_sha,
                cwd=self._settings.workspace,
                extensions=self._settings.extensions,
                excluded_dirs=self._settings.excluded_dirs,
                runner=self._runner,
            )

        if not diff_map:
            ctx_logger.info("No reviewable files changed; skipping analysis")
            return build_outcome(aggregate([]))

        ctx_logger.info(f"{len(diff_map)} changed file(s): {', '.join(sorted(diff_map))}")

        with log_timing(ctx_logger, "run_analyzers"):
            findings = await run_analyzers(self._analyzers, freeze_diff_map(diff_map))

        result = aggregate(findings)
        ctx_logger.info(
            f"Aggregated findings: blocking={len(result.blocking)}, warnings={len(result.warnings)}"
        )

        await self._publish(result, context)

        outcome = build_outcome(result)
        if outcome.passed:
            log_success(logger, outcome.message, repository=context.repository)
        return outcome

    async def _publish(self, result: AggregatedResult, context: RunContext) -> None:
        ctx_logger = log_with_context(
            logger, repository=context.repository, pull_number=context.pull_number
        )
        if self._store is None:
            ctx_logger.info("Comment publishing disabled")
            return

        reconciler = CommentReconciler(self._store, gap=self._settings.group_line_gap)
        try:
            with log_timing(ctx_logger, "publish_comments"):
                report = await reconciler.reconcile(result, context.pull_request())
        except (GitHubAPIError, httpx.HTTPError) as exc:
            # publishing failure shouldn't change the verdict of the analysis
            log_failure(logger, "Failed to publish PR comments", exc, repository=context.repository)
            return
        ctx_logger.info(
            f"Comments published: summary {report.summary_action}, "
            f"{report.created} line comment(s) created, {report.skipped} skipped, "
            f"{report.failed} failed"
        )
