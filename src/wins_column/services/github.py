import logging
from typing import Any, Dict, Optional

import httpx

from wins_column.exceptions import GitHubAPIError, GitHubNotFoundError, GitHubRateLimitError
from wins_column.schemas.github import CommitInfo, CompareResult, DiffFile, DiffReference, DiffStats

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
GITHUB_API_URL = "https://api.github.com"
USER_AGENT = "wins-column/0.1"


class GitHubClient:
    """Thin async wrapper over the GitHub REST endpoints the diff jobs need."""

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: str = GITHUB_API_URL,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        headers = {"Accept": "application/vnd.github+json", "User-Agent": USER_AGENT}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout)
        if client is not None:
            self.client.headers.update(headers)

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _request(self, operation: str, path: str, accept: Optional[str] = None) -> httpx.Response:
        headers = {"Accept": accept} if accept else None
        try:
            response = await self.client.get(path, headers=headers)
        except httpx.HTTPError as e:
            raise GitHubAPIError(f"GitHub API network error for {operation}: {e}") from e
        if response.is_success:
            return response
        raise self._error_for(response, operation)

    def _error_for(self, response: httpx.Response, operation: str) -> GitHubAPIError:
        try:
            message = response.json().get("message", response.text)
        except ValueError:
            message = response.text
        status = response.status_code
        remaining = response.headers.get("x-ratelimit-remaining")
        if status in (403, 429) and (remaining == "0" or status == 429):
            reset = response.headers.get("x-ratelimit-reset")
            reset_at = int(reset) if reset and reset.isdigit() else None
            return GitHubRateLimitError(
                f"GitHub API rate limit exceeded for {operation}. Resets at: {reset}", reset_at=reset_at
            )
        if status == 404:
            return GitHubNotFoundError(f"Not Found: GitHub API resource not found for {operation}", status_code=404)
        if status == 401:
            return GitHubAPIError(
                f"GitHub API authentication failed for {operation}: Invalid or expired token", status_code=401
            )
        return GitHubAPIError(f"GitHub API error for {operation} ({status}): {message}", status_code=status)

    @staticmethod
    def _compare_path(ref: DiffReference) -> str:
        return f"/repos/{ref.owner}/{ref.repo}/compare/{ref.base}...{ref.head}"

    async def get_diff(self, ref: DiffReference) -> CompareResult:
        response = await self._request("getDiff", self._compare_path(ref))
        body: Dict[str, Any] = response.json()
        files = [DiffFile.model_validate(f) for f in body.get("files") or []]
        return CompareResult(
            files=files,
            stats=DiffStats(
                total_files=len(files),
                additions=sum(f.additions for f in files),
                deletions=sum(f.deletions for f in files),
            ),
            commits=body.get("commits") or [],
            ahead_by=body.get("ahead_by", 0),
            behind_by=body.get("behind_by", 0),
            status=body.get("status", "unknown"),
        )

    async def get_diff_raw(self, ref: DiffReference) -> str:
        response = await self._request("getDiffRaw", self._compare_path(ref), accept="application/vnd.github.v3.diff")
        return response.text

    async def get_commit(self, owner: str, repo: str, sha: str) -> CommitInfo:
        response = await self._request("getCommit", f"/repos/{owner}/{repo}/commits/{sha}")
        body = response.json()
        return CommitInfo(
            sha=body.get("sha", sha),
            parents=body.get("parents") or [],
            message=(body.get("commit") or {}).get("message"),
        )


class StaticInstallationTokenProvider:
    """Hands out one configured token for every installation."""

    def __init__(self, token: Optional[str]):
        self.token = token

    async def get_installation_token(self, installation_id: int) -> str:
        if not self.token:
            raise GitHubAPIError(f"No GitHub token configured for installation {installation_id}")
        return self.token


def github_client_factory(base_url: str = GITHUB_API_URL, timeout: float = DEFAULT_TIMEOUT):
    def create(token: str) -> GitHubClient:
        return GitHubClient(token=token, base_url=base_url, timeout=timeout)

    return create
