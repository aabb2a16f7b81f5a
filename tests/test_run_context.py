import json

import pytest

from pr_quality.services.run_context import RunContextError, load_event_payload, resolve_run_context

PR_EVENT = {
    "pull_request": {"number": 12, "base": {"sha": "base-sha"}, "head": {"sha": "head-sha"}},
    "repository": {"full_name": "event/repo"},
}


@pytest.fixture(autouse=True)
def clear_env(monkeypatch):
    for name in ("BASE_SHA", "HEAD_SHA", "PR_NUMBER"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def event_settings(settings, tmp_path):
    event_file = tmp_path / "event.json"
    event_file.write_text(json.dumps(PR_EVENT))
    return settings.model_copy(update={"event_path": event_file})


def test_pull_request_event_supplies_revisions(event_settings) -> None:
    context = resolve_run_context(event_settings)

    assert (context.base_sha, context.head_sha, context.pull_number) == ("base-sha", "head-sha", 12)
    assert context.repository == "octo/app"


def test_explicit_arguments_override_event(event_settings) -> None:
    context = resolve_run_context(event_settings, base="b2", head="h2", pr_number="99", repository="x/y")

    assert (context.base_sha, context.head_sha, context.pull_number, context.repository) == ("b2", "h2", 99, "x/y")
    assert context.pull_request().full_name == "x/y"


def test_repository_falls_back_to_event(event_settings) -> None:
    settings = event_settings.model_copy(update={"repository": None})

    assert resolve_run_context(settings).repository == "event/repo"


def test_environment_fallback(settings, monkeypatch) -> None:
    monkeypatch.setenv("BASE_SHA", "env-base")
    monkeypatch.setenv("HEAD_SHA", "env-head")
    monkeypatch.setenv("PR_NUMBER", "5")

    context = resolve_run_context(settings)

    assert (context.base_sha, context.head_sha, context.pull_number) == ("env-base", "env-head", 5)


def test_non_pull_request_event_without_revisions_fails(settings, tmp_path) -> None:
    event_file = tmp_path / "event.json"
    event_file.write_text(json.dumps({"issue": {"number": 3}, "comment": {"body": "/review"}}))

    with pytest.raises(RunContextError, match="No pull_request context"):
        resolve_run_context(settings.model_copy(update={"event_path": event_file}))


def test_missing_pr_number_fails(settings) -> None:
    with pytest.raises(RunContextError, match="PR number"):
        resolve_run_context(settings, base="a", head="b")


def test_invalid_pr_number_fails(settings) -> None:
    with pytest.raises(RunContextError, match="Invalid pull request number"):
        resolve_run_context(settings, base="a", head="b", pr_number="abc")


def test_unknown_repository_fails(settings) -> None:
    with pytest.raises(RunContextError, match="Repository is unknown"):
        resolve_run_context(settings.model_copy(update={"repository": None}), base="a", head="b", pr_number=1)


def test_unreadable_event_payload_is_empty(tmp_path) -> None:
    broken = tmp_path / "event.json"
    broken.write_text("{not json")

    assert load_event_payload(broken) == {}
    assert load_event_payload(tmp_path / "missing.json") == {}
    assert load_event_payload(None) == {}
