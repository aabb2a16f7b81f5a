"""GitHub API client helpers."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Protocol

import httpx
import jwt

from pr_quality.logger import get_logger

logger = get_logger()


class GitHubAPIError(RuntimeError):
    """Raised when a GitHub API request fails."""

    def __init__(self, message: str, status_code: int, response_body: Any | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


DEFAULT_ACCEPT_HEADER = "application/vnd.github+json"
DEFAULT_API_VERSION = "2022-11-28"
DEFAULT_USER_AGENT = "PR-Quality-Review/1.0"
PAGE_SIZE = 100
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class TokenProvider(Protocol):
    async def get_token(self, client: httpx.AsyncClient) -> str:
        ...


class StaticTokenProvider:
    """Token supplied by the CI runtime (e.g. ``GITHUB_TOKEN``)."""

    def __init__(self, token: str) -> None:
        self._token = token

    async def get_token(self, client: httpx.AsyncClient) -> str:
        return self._token


@dataclass
class InstallationToken:
    token: str
    expires_at: datetime
    permissions: Dict[str, Any] | None = None

    def is_active(self, *, skew_seconds: int = 60) -> bool:
        """Return True if the token is still valid accounting for clock skew."""

        return self.expires_at - timedelta(seconds=skew_seconds) > datetime.now(timezone.utc)


class AppInstallationTokenProvider:
    """Mint installation tokens for a GitHub App, caching them until near expiry."""

    def __init__(self, *, app_id: int, private_key_pem: str, installation_id: int) -> None:
        self._app_id = app_id
        # Normalize private key: handle escaped newlines from environment variables
        self._private_key = private_key_pem.replace("\\n", "\n")
        self._installation_id = installation_id
        self._cached: InstallationToken | None = None

    def _build_jwt(self) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "iat": int((now - timedelta(seconds=60)).timestamp()),
            "exp": int((now + timedelta(minutes=10)).timestamp()),
            "iss": str(self._app_id),
        }
        try:
            return jwt.encode(payload, self._private_key, algorithm="RS256")
        except Exception as exc:
            raise GitHubAPIError(
                f"Failed to encode JWT: {exc}. Check that GITHUB_PRIVATE_KEY is a valid RSA private key in PEM format.",
                0,
                None,
            ) from exc

    async def get_token(self, client: httpx.AsyncClient) -> str:
        if self._cached and self._cached.is_active():
            return self._cached.token

        url = f"/app/installations/{self._installation_id}/access_tokens"
        response = await client.post(
            url,
            headers={
                "Authorization": f"Bearer {self._build_jwt()}",
                "Accept": DEFAULT_ACCEPT_HEADER,
                "X-GitHub-Api-Version": DEFAULT_API_VERSION,
            },
        )
        if response.status_code >= 400:
            raise GitHubAPIError(
                f"GitHub API request to {url} failed with status {response.status_code}.",
                response.status_code,
                _response_detail(response),
            )
        data = response.json()
        token_value = data.get("token")
        expires_at_raw = data.get("expires_at")
        if not token_value or not expires_at_raw:
            raise GitHubAPIError(
                "GitHub did not return a usable installation token.",
                response.status_code,
                data,
            )
        self._cached = InstallationToken(
            token=token_value,
            expires_at=_parse_github_timestamp(expires_at_raw),
            permissions=data.get("permissions"),
        )
        return self._cached.token


@dataclass(frozen=True, slots=True)
class PullRequestRef:
    owner: str
    repo: str
    number: int
    head_sha: str

    @classmethod
    def from_full_name(cls, full_name: str, number: int, head_sha: str) -> "PullRequestRef":
        if "/" not in full_name:
            raise ValueError(f"Repository full name '{full_name}' is invalid.")
        owner, repo = full_name.split("/", 1)
        return cls(owner=owner, repo=repo, number=number, head_sha=head_sha)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


class GitHubClient:
    """Async client for the pull request comment endpoints."""

    def __init__(
        self,
        *,
        base_url: str,
        token_provider: TokenProvider,
        timeout: float = 10.0,
        user_agent: str = DEFAULT_USER_AGENT,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token_provider = token_provider
        self._max_retries = max_retries
        self._backoff_seconds = backoff_seconds
        self._client = client or httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout,
            headers={
                "User-Agent": user_agent,
                "Accept": DEFAULT_ACCEPT_HEADER,
                "X-GitHub-Api-Version": DEFAULT_API_VERSION,
            },
        )
        self._owns_client = client is None

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def _retry_delay(self, attempt: int, response: httpx.Response | None) -> float:
        if response is not None:
            retry_after = response.headers.get("Retry-After")
            if retry_after and retry_after.isdigit():
                return float(retry_after)
        return self._backoff_seconds * (2 ** attempt)

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: Dict[str, Any] | None = None,
        json: Any | None = None,
    ) -> httpx.Response:
        token = await self._token_provider.get_token(self._client)
        headers = {"Authorization": f"Bearer {token}"}

        attempt = 0
        while True:
            response: httpx.Response | None = None
            try:
                response = await self._client.request(
                    method, url, headers=headers, params=params, json=json
                )
            except httpx.TransportError as exc:
                if attempt >= self._max_retries:
                    raise GitHubAPIError(
                        f"GitHub API request to {url} failed: {exc}", 0, None
                    ) from exc
                logger.warning(f"GitHub API transport error on {method} {url}: {exc}; retrying")
            else:
                if response.status_code < 400:
                    return response
                if (
                    response.status_code not in RETRYABLE_STATUS_CODES
                    or attempt >= self._max_retries
                ):
                    raise GitHubAPIError(
                        f"GitHub API request to {url} failed with status {response.status_code}.",
                        response.status_code,
                        _response_detail(response),
                    )
                logger.warning(
                    f"GitHub API {method} {url} returned {response.status_code}; retrying"
                )

            delay = self._retry_delay(attempt, response)
            attempt += 1
            await asyncio.sleep(delay)

    async def _paginate(self, url: str) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        page = 1
        while True:
            response = await self._request("GET", url, params={"per_page": PAGE_SIZE, "page": page})
            batch = response.json()
            if not isinstance(batch, list):
                raise GitHubAPIError(
                    f"Unexpected response while listing {url}.",
                    response.status_code,
                    batch,
                )
            items.extend(batch)
            if len(batch) < PAGE_SIZE:
                break
            page += 1
        return items

    async def list_issue_comments(self, pr: PullRequestRef) -> List[Dict[str, Any]]:
        return await self._paginate(f"/repos/{pr.owner}/{pr.repo}/issues/{pr.number}/comments")

    async def create_issue_comment(self, pr: PullRequestRef, body: str) -> Dict[str, Any]:
        response = await self._request(
            "POST",
            f"/repos/{pr.owner}/{pr.repo}/issues/{pr.number}/comments",
            json={"body": body},
        )
        return response.json()

    async def update_issue_comment(
        self, pr: PullRequestRef, comment_id: int, body: str
    ) -> Dict[str, Any]:
        response = await self._request(
            "PATCH",
            f"/repos/{pr.owner}/{pr.repo}/issues/comments/{comment_id}",
            json={"body": body},
        )
        return response.json()

    async def list_review_comments(self, pr: PullRequestRef) -> List[Dict[str, Any]]:
        return await self._paginate(f"/repos/{pr.owner}/{pr.repo}/pulls/{pr.number}/comments")

    async def create_review_comment(
        self, pr: PullRequestRef, *, path: str, line: int, body: str, side: str = "RIGHT"
    ) -> Dict[str, Any]:
        response = await self._request(
            "POST",
            f"/repos/{pr.owner}/{pr.repo}/pulls/{pr.number}/comments",
            json={
                "body": body,
                "commit_id": pr.head_sha,
                "path": path,
                "line": line,
                "side": side,
            },
        )
        return response.json()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance owns it."""

        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


def _response_detail(response: httpx.Response) -> Any | None:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def _parse_github_timestamp(raw: str) -> datetime:
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    return datetime.fromisoformat(raw).astimezone(timezone.utc)
