"""Command-line entry point for CI jobs."""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import Sequence

from pr_quality.config import Settings, SettingsError, get_settings
from pr_quality.git.diff import DiffError
from pr_quality.github_client import (
    AppInstallationTokenProvider,
    GitHubClient,
    StaticTokenProvider,
    TokenProvider,
)
from pr_quality.logger import configure_logger, get_logger, log_failure
from pr_quality.report.formatter import format_step_summary
from pr_quality.services.pipeline import ReviewOutcome, ReviewPipeline, default_analyzers
from pr_quality.services.run_context import RunContextError, resolve_run_context

logger = get_logger()

EXIT_PASSED = 0
EXIT_FAILED = 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pr-quality",
        description="Type-check and lint the lines changed by a pull request and report them as PR comments.",
    )
    parser.add_argument("--base", default=None, help="Base revision (defaults to the PR base SHA)")
    parser.add_argument("--head", default=None, help="Head revision (defaults to the PR head SHA)")
    parser.add_argument("--pr-number", default=None, help="Pull request number")
    parser.add_argument("--repository", default=None, help="Repository as owner/name")
    parser.add_argument("--workspace", default=None, help="Repository checkout to analyze")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Analyze and report in the log only; do not post PR comments",
    )
    parser.add_argument("--log-level", default=None, help="Log level (default: INFO)")
    return parser


def build_token_provider(settings: Settings) -> TokenProvider:
    if settings.github_token:
        return StaticTokenProvider(settings.github_token)
    app = settings.require_app_credentials()
    return AppInstallationTokenProvider(
        app_id=app.app_id,
        private_key_pem=app.private_key_pem,
        installation_id=app.installation_id,
    )


def write_step_summary(outcome: ReviewOutcome, settings: Settings) -> None:
    """Append the report to the CI job summary when the runner provides one."""

    summary_path = os.getenv("GITHUB_STEP_SUMMARY")
    if not summary_path:
        logger.debug("GITHUB_STEP_SUMMARY not set, skipping job summary")
        return
    path = Path(summary_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        f.write(format_step_summary(outcome.result, gap=settings.group_line_gap))
    logger.info("Job summary written")


async def review(args: argparse.Namespace, settings: Settings) -> ReviewOutcome:
    context = resolve_run_context(
        settings,
        base=args.base,
        head=args.head,
        pr_number=args.pr_number,
        repository=args.repository,
    )
    analyzers = default_analyzers(settings)

    if args.dry_run or not settings.post_comments:
        return await ReviewPipeline(settings, analyzers=analyzers).run(context)

    async with GitHubClient(
        base_url=settings.normalized_github_api_base_url,
        token_provider=build_token_provider(settings),
        max_retries=settings.http_max_retries,
        backoff_seconds=settings.http_backoff_seconds,
    ) as client:
        return await ReviewPipeline(settings, analyzers=analyzers, store=client).run(context)


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.log_level:
        configure_logger(level=args.log_level.upper(), force=True)

    try:
        settings = get_settings()
        if args.workspace:
            settings = settings.model_copy(update={"workspace": Path(args.workspace)})
        outcome = asyncio.run(review(args, settings))
    except (SettingsError, RunContextError, DiffError) as exc:
        log_failure(logger, "Review could not start", exc)
        return EXIT_FAILED

    write_step_summary(outcome, settings)
    if not outcome.passed:
        logger.error(outcome.message)
        return EXIT_FAILED
    logger.info(outcome.message)
    return EXIT_PASSED


if __name__ == "__main__":
    sys.exit(main())
