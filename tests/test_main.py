import pytest

from pr_quality import main as cli
from pr_quality.config import Settings, SettingsError, reset_settings_cache
from pr_quality.github_client import AppInstallationTokenProvider, StaticTokenProvider
from pr_quality.report.aggregator import aggregate
from pr_quality.report.formatter import REPORT_TITLE
from pr_quality.services.pipeline import build_outcome

from conftest import make_finding


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    for name in ("GITHUB_TOKEN", "GITHUB_APP_ID", "GITHUB_PRIVATE_KEY", "GITHUB_INSTALLATION_ID",
                 "GITHUB_EVENT_PATH", "GITHUB_STEP_SUMMARY", "BASE_SHA", "HEAD_SHA", "PR_NUMBER"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("GITHUB_REPOSITORY", "octo/app")
    monkeypatch.setenv("PR_QUALITY_WORKSPACE", str(tmp_path))
    reset_settings_cache()
    yield
    reset_settings_cache()


def _fake_review(outcome):
    async def review(args, settings):
        return outcome

    return review


def test_token_provider_prefers_static_token() -> None:
    provider = cli.build_token_provider(Settings(github_token="abc", github_app_id=1))

    assert isinstance(provider, StaticTokenProvider)


def test_token_provider_falls_back_to_app_credentials() -> None:
    settings = Settings(github_app_id=1, github_private_key_pem="pem", github_installation_id=2)

    assert isinstance(cli.build_token_provider(settings), AppInstallationTokenProvider)


def test_token_provider_without_credentials_fails() -> None:
    with pytest.raises(SettingsError):
        cli.build_token_provider(Settings())


def test_blocking_outcome_exits_nonzero_and_writes_job_summary(monkeypatch, tmp_path) -> None:
    summary = tmp_path / "summary.md"
    monkeypatch.setenv("GITHUB_STEP_SUMMARY", str(summary))
    monkeypatch.setattr(cli, "review", _fake_review(build_outcome(aggregate([make_finding()]))))

    assert cli.main(["--dry-run"]) == cli.EXIT_FAILED
    assert REPORT_TITLE in summary.read_text()


def test_clean_outcome_exits_zero(monkeypatch) -> None:
    monkeypatch.setattr(cli, "review", _fake_review(build_outcome(aggregate([]))))

    assert cli.main(["--dry-run"]) == cli.EXIT_PASSED


def test_missing_pull_request_context_exits_nonzero() -> None:
    assert cli.main(["--dry-run"]) == cli.EXIT_FAILED


def test_missing_credentials_exit_nonzero_when_posting() -> None:
    assert cli.main(["--base", "a", "--head", "b", "--pr-number", "3"]) == cli.EXIT_FAILED


def test_workspace_argument_overrides_settings(monkeypatch, tmp_path) -> None:
    seen = {}

    async def review(args, settings):
        seen["workspace"] = settings.workspace
        return build_outcome(aggregate([]))

    monkeypatch.setattr(cli, "review", review)
    other = tmp_path / "checkout"
    other.mkdir()

    cli.main(["--dry-run", "--workspace", str(other)])

    assert seen["workspace"] == other
