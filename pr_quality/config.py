"""Application configuration helpers."""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Final, Tuple

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, BaseModel, Field, ValidationError

# Load environment variables from a .env file in the working directory, if any
load_dotenv(dotenv_path=Path.cwd() / ".env")

DEFAULT_EXTENSIONS: Final[Tuple[str, ...]] = (".ts", ".tsx", ".js", ".jsx")
DEFAULT_EXCLUDED_DIRS: Final[Tuple[str, ...]] = ("node_modules", "dist", "build")
DEFAULT_GROUP_LINE_GAP: Final[int] = 2
DEFAULT_HTTP_RETRIES: Final[int] = 3
DEFAULT_HTTP_BACKOFF_SECONDS: Final[float] = 1.0


class SettingsError(RuntimeError):
    """Raised when application configuration is invalid or incomplete."""


@dataclass(frozen=True)
class GitHubAppCredentials:
    app_id: int
    private_key_pem: str
    installation_id: int


class Settings(BaseModel):
    """Runtime settings loaded from environment variables."""

    github_api_base_url: AnyHttpUrl = "https://api.github.com"
    github_token: str | None = None
    github_app_id: int | None = None
    github_private_key_pem: str | None = None
    github_installation_id: int | None = None
    repository: str | None = None
    event_path: Path | None = None
    workspace: Path = Field(default_factory=Path.cwd)
    extensions: Tuple[str, ...] = DEFAULT_EXTENSIONS
    excluded_dirs: Tuple[str, ...] = DEFAULT_EXCLUDED_DIRS
    group_line_gap: int = Field(default=DEFAULT_GROUP_LINE_GAP, ge=0)
    http_max_retries: int = Field(default=DEFAULT_HTTP_RETRIES, ge=0)
    http_backoff_seconds: float = Field(default=DEFAULT_HTTP_BACKOFF_SECONDS, ge=0)
    tsc_command: Tuple[str, ...] = ("npx", "--no-install", "tsc")
    eslint_command: Tuple[str, ...] = ("npx", "--no-install", "eslint")
    post_comments: bool = True

    @property
    def normalized_github_api_base_url(self) -> str:
        """Return the GitHub API base URL without a trailing slash."""
        return str(self.github_api_base_url).rstrip("/")

    def require_app_credentials(self) -> GitHubAppCredentials:
        """Ensure GitHub App secrets are configured and return them."""

        missing = []
        if self.github_app_id is None:
            missing.append("GITHUB_APP_ID")
        if not self.github_private_key_pem:
            missing.append("GITHUB_PRIVATE_KEY")
        if self.github_installation_id is None:
            missing.append("GITHUB_INSTALLATION_ID")

        if missing:
            missing_vars = ", ".join(missing)
            raise SettingsError(
                "GitHub access is not configured. Set GITHUB_TOKEN, or the GitHub App "
                f"variables. Missing: {missing_vars}."
            )

        return GitHubAppCredentials(
            app_id=int(self.github_app_id),
            private_key_pem=self.github_private_key_pem,
            installation_id=int(self.github_installation_id),
        )


_TRUE_VALUES: Final[set[str]] = {"1", "true", "yes", "on"}


def _parse_bool_env(raw_value: str | None, *, default: bool = False) -> bool:
    """Convert an environment variable string to a boolean value."""

    if raw_value is None:
        return default
    return raw_value.strip().lower() in _TRUE_VALUES


def _parse_list_env(raw_value: str | None, default: Tuple[str, ...]) -> Tuple[str, ...]:
    if raw_value is None or not raw_value.strip():
        return default
    return tuple(item.strip() for item in raw_value.split(",") if item.strip())


def _parse_command_env(raw_value: str | None, default: Tuple[str, ...]) -> Tuple[str, ...]:
    if raw_value is None or not raw_value.strip():
        return default
    return tuple(shlex.split(raw_value))


def _parse_int_env(name: str) -> int | None:
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return None
    try:
        return int(raw_value)
    except ValueError as exc:
        raise SettingsError(f"Invalid value for {name}. It must be an integer.") from exc


def _build_settings() -> Settings:
    workspace = os.getenv("PR_QUALITY_WORKSPACE") or os.getenv("GITHUB_WORKSPACE")
    event_path = os.getenv("GITHUB_EVENT_PATH")

    values: dict[str, object] = {
        "github_api_base_url": os.getenv("GITHUB_API_URL") or "https://api.github.com",
        "github_token": os.getenv("GITHUB_TOKEN") or None,
        "github_app_id": _parse_int_env("GITHUB_APP_ID"),
        "github_private_key_pem": os.getenv("GITHUB_PRIVATE_KEY") or None,
        "github_installation_id": _parse_int_env("GITHUB_INSTALLATION_ID"),
        "repository": os.getenv("GITHUB_REPOSITORY") or None,
        "event_path": Path(event_path) if event_path else None,
        "extensions": _parse_list_env(os.getenv("PR_QUALITY_EXTENSIONS"), DEFAULT_EXTENSIONS),
        "excluded_dirs": _parse_list_env(
            os.getenv("PR_QUALITY_EXCLUDED_DIRS"), DEFAULT_EXCLUDED_DIRS
        ),
        "tsc_command": _parse_command_env(
            os.getenv("PR_QUALITY_TSC_COMMAND"), ("npx", "--no-install", "tsc")
        ),
        "eslint_command": _parse_command_env(
            os.getenv("PR_QUALITY_ESLINT_COMMAND"), ("npx", "--no-install", "eslint")
        ),
        "post_comments": _parse_bool_env(os.getenv("PR_QUALITY_POST_COMMENTS"), default=True),
    }
    if workspace:
        values["workspace"] = Path(workspace)

    group_gap = _parse_int_env("PR_QUALITY_GROUP_GAP")
    if group_gap is not None:
        values["group_line_gap"] = group_gap
    retries = _parse_int_env("PR_QUALITY_HTTP_RETRIES")
    if retries is not None:
        values["http_max_retries"] = retries
    backoff = os.getenv("PR_QUALITY_HTTP_BACKOFF")
    if backoff:
        values["http_backoff_seconds"] = backoff

    try:
        return Settings(**values)
    except ValidationError as exc:
        raise SettingsError(f"Invalid application configuration: {exc}") from exc


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return _build_settings()


def get_settings() -> Settings:
    """Retrieve cached application settings."""
    return _cached_settings()


def reset_settings_cache() -> None:
    """Clear the cached settings (primarily for tests)."""
    _cached_settings.cache_clear()
