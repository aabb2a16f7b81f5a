import asyncio

import pytest

from pr_quality.git.diff import DiffError
from pr_quality.github_client import GitHubAPIError
from pr_quality.models.finding import Severity
from pr_quality.report.aggregator import aggregate
from pr_quality.report.formatter import NO_ISSUES_LINE
from pr_quality.services.pipeline import (
    ReviewPipeline,
    build_outcome,
    default_analyzers,
    run_analyzers,
)
from pr_quality.services.run_context import RunContext

from conftest import make_finding

DIFF = "+++ b/app.ts\n@@ -5,0 +5,2 @@\n+a\n+b\n"


@pytest.fixture
def run_context() -> RunContext:
    return RunContext(repository="octo/app", base_sha="base000", head_sha="head111", pull_number=7)


@pytest.fixture
def git_runner(fake_runner):
    return fake_runner.on(lambda args: args[:2] == ("git", "diff"), stdout=DIFF)


class StaticAnalyzer:
    def __init__(self, name, findings, delay=0.0):
        self.name = name
        self.findings = findings
        self.delay = delay
        self.seen = None

    async def __call__(self, diff_map):
        self.seen = diff_map
        await asyncio.sleep(self.delay)
        return list(self.findings)


class CrashingAnalyzer:
    name = "crashing"

    async def __call__(self, diff_map):
        raise RuntimeError("engine exploded")


class FailingStore:
    async def list_issue_comments(self, pr):
        raise GitHubAPIError("forbidden", 403)


@pytest.mark.asyncio
async def test_crashing_analyzer_contributes_nothing() -> None:
    good = StaticAnalyzer("eslint", [make_finding()])

    findings = await run_analyzers([CrashingAnalyzer(), good], {"app.ts": frozenset({5})})

    assert findings == [make_finding()]


@pytest.mark.asyncio
async def test_analyzers_run_concurrently() -> None:
    other_started = asyncio.Event()

    class WaitsForOther:
        name = "waiting"

        async def __call__(self, diff_map):
            # only completes if the second analyzer starts while this one is pending
            await asyncio.wait_for(other_started.wait(), timeout=1)
            return [make_finding(tool="waiting")]

    class SignalsStart:
        name = "signalling"

        async def __call__(self, diff_map):
            other_started.set()
            return [make_finding(tool="signalling")]

    findings = await run_analyzers([WaitsForOther(), SignalsStart()], {"app.ts": frozenset({5})})

    assert {f.tool for f in findings} == {"waiting", "signalling"}


@pytest.mark.asyncio
async def test_blocking_finding_fails_run_and_posts_comments(
    settings, git_runner, comment_store, run_context
) -> None:
    analyzer = StaticAnalyzer(
        "eslint", [make_finding(tool="eslint", rule_id="no-undef", file="app.ts", line=5)]
    )
    pipeline = ReviewPipeline(settings, analyzers=[analyzer], store=comment_store, runner=git_runner)

    outcome = await pipeline.run(run_context)

    assert not outcome.passed
    assert outcome.message.startswith("1 blocking issue(s) found")
    assert analyzer.seen == {"app.ts": frozenset({5, 6})}
    summary = comment_store.issue_comments[0]["body"]
    assert "no-undef" in summary.split("### Blocking", 1)[1]
    assert comment_store.review_comments[0]["line"] == 5


@pytest.mark.asyncio
async def test_no_findings_passes_with_clean_summary(
    settings, git_runner, comment_store, run_context
) -> None:
    pipeline = ReviewPipeline(
        settings,
        analyzers=[StaticAnalyzer("eslint", []), CrashingAnalyzer()],
        store=comment_store,
        runner=git_runner,
    )

    outcome = await pipeline.run(run_context)

    assert outcome.passed
    assert NO_ISSUES_LINE in comment_store.issue_comments[0]["body"]
    assert comment_store.review_comments == []


@pytest.mark.asyncio
async def test_warnings_only_pass(settings, git_runner, run_context) -> None:
    analyzer = StaticAnalyzer("eslint", [make_finding(severity=Severity.WARNING)])
    pipeline = ReviewPipeline(settings, analyzers=[analyzer], runner=git_runner)

    outcome = await pipeline.run(run_context)

    assert outcome.passed
    assert len(outcome.result.warnings) == 1


@pytest.mark.asyncio
async def test_rerun_does_not_duplicate_comments(
    settings, git_runner, comment_store, run_context
) -> None:
    analyzer = StaticAnalyzer("eslint", [make_finding(line=5), make_finding(line=6)])
    pipeline = ReviewPipeline(settings, analyzers=[analyzer], store=comment_store, runner=git_runner)

    await pipeline.run(run_context)
    await pipeline.run(run_context)

    assert len(comment_store.issue_comments) == 1
    assert len(comment_store.updates) == 1
    assert len(comment_store.review_comments) == 2


@pytest.mark.asyncio
async def test_publish_failure_keeps_verdict(settings, git_runner, run_context) -> None:
    analyzer = StaticAnalyzer("eslint", [make_finding()])
    pipeline = ReviewPipeline(settings, analyzers=[analyzer], store=FailingStore(), runner=git_runner)

    outcome = await pipeline.run(run_context)

    assert not outcome.passed


@pytest.mark.asyncio
async def test_no_reviewable_files_skips_analysis(settings, fake_runner, comment_store, run_context) -> None:
    fake_runner.on(lambda args: True, stdout="+++ b/README.md\n@@ -0,0 +1 @@\n+x\n")
    analyzer = StaticAnalyzer("eslint", [make_finding()])
    pipeline = ReviewPipeline(settings, analyzers=[analyzer], store=comment_store, runner=fake_runner)

    outcome = await pipeline.run(run_context)

    assert outcome.passed
    assert analyzer.seen is None
    assert comment_store.issue_comments == []


@pytest.mark.asyncio
async def test_diff_failure_aborts_before_analysis(settings, fake_runner, run_context) -> None:
    fake_runner.on(lambda args: True, returncode=128, stderr="fatal: bad object")
    analyzer = StaticAnalyzer("eslint", [])
    pipeline = ReviewPipeline(settings, analyzers=[analyzer], runner=fake_runner)

    with pytest.raises(DiffError):
        await pipeline.run(run_context)
    assert analyzer.seen is None


def test_build_outcome_counts_blocking() -> None:
    outcome = build_outcome(aggregate([make_finding(line=1), make_finding(line=2)]))

    assert not outcome.passed
    assert "2 blocking issue(s)" in outcome.message


def test_default_analyzers_cover_typecheck_and_lint(settings) -> None:
    names = [analyzer.name for analyzer in default_analyzers(settings)]

    assert names == ["typecheck", "eslint", "eslint"]
