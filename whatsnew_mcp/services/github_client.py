"""GitHub API client with retry, backoff and rate-limit detection"""

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import httpx
from pydantic import ValidationError

from whatsnew_mcp.models.document import (
    CommitDetail,
    CommitPage,
    CommitSummary,
    TreeEntry,
    TreeListing,
)
from whatsnew_mcp.models.sources_config import GitHubConfig, SourceRepository, SyncSettings

logger = logging.getLogger(__name__)

USER_AGENT = "whatsnew-doc-mcp/0.1.0"
RATE_LIMIT_STATUSES = (403, 429)


class GitHubAPIError(Exception):
    """Raised when a GitHub call fails after all retries or returns an unusable body"""

    def __init__(
        self,
        url: str,
        message: str,
        status_code: int | None = None,
        attempts: int = 1,
    ):
        self.url = url
        self.message = message
        self.status_code = status_code
        self.attempts = attempts
        super().__init__(f"GitHub API error for {url}: {message}")


class RateLimitError(GitHubAPIError):
    """Raised on a quota-exhausted response; never retried"""

    def __init__(self, url: str, status_code: int, reset_at: datetime | None):
        self.reset_at = reset_at
        reset_text = reset_at.isoformat() if reset_at else "unknown"
        super().__init__(
            url,
            f"rate limit exceeded (HTTP {status_code}). Reset at: {reset_text}",
            status_code=status_code,
        )


def _parse_reset(value: str | None) -> datetime | None:
    """Parse X-RateLimit-Reset (epoch seconds)"""
    if not value:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None


class GitHubClient:
    """Authenticated access to the GitHub REST API and raw content host"""

    def __init__(
        self,
        github_config: GitHubConfig | None = None,
        settings: SyncSettings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ):
        """
        Initialize GitHub client

        Args:
            github_config: Credential and base URLs
            settings: Retry policy, timeout and quota low-water mark
            transport: Optional httpx transport (tests inject a MockTransport)
            sleep: Optional coroutine used between retries (defaults to asyncio.sleep)
        """
        self.github_config = github_config or GitHubConfig()
        self.settings = settings or SyncSettings()
        self.token = self.github_config.token or os.getenv("GITHUB_TOKEN")
        self.api_url = self.github_config.api_url.rstrip("/")
        self.raw_url = self.github_config.raw_url.rstrip("/")
        self._sleep = sleep or asyncio.sleep

        headers = {"Accept": "application/vnd.github.v3+json", "User-Agent": USER_AGENT}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        else:
            logger.warning(
                "No GitHub token configured, using unauthenticated requests (60/hour limit)"
            )

        self.client = httpx.AsyncClient(
            headers=headers,
            timeout=httpx.Timeout(self.settings.http_timeout_seconds),
            follow_redirects=True,
            transport=transport,
        )

    @property
    def authenticated(self) -> bool:
        return bool(self.token)

    def _check_quota(self, response: httpx.Response) -> None:
        remaining = response.headers.get("X-RateLimit-Remaining")
        if remaining is None:
            return
        try:
            remaining_count = int(remaining)
        except ValueError:
            return
        if remaining_count < self.settings.rate_limit_low_water:
            logger.warning(f"GitHub API rate limit low: {remaining_count} requests remaining")

    async def request(self, url: str, params: dict[str, Any] | None = None) -> httpx.Response:
        """
        Issue a GET with retry and rate-limit handling

        Args:
            url: Absolute URL
            params: Optional query parameters

        Returns:
            The successful httpx.Response

        Raises:
            RateLimitError: On a 403/429 response (not retried)
            GitHubAPIError: When every attempt failed
        """
        max_attempts = self.settings.max_attempts
        last_error: GitHubAPIError | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                response = await self.client.get(url, params=params)
            except httpx.TransportError as e:
                error_type = "Timeout" if isinstance(e, httpx.TimeoutException) else "Network error"
                last_error = GitHubAPIError(url, f"{error_type}: {e}", attempts=attempt)
            else:
                self._check_quota(response)

                if response.status_code in RATE_LIMIT_STATUSES:
                    reset_at = _parse_reset(response.headers.get("X-RateLimit-Reset"))
                    error = RateLimitError(url, response.status_code, reset_at)
                    logger.error(str(error))
                    raise error

                if response.is_success:
                    return response

                last_error = GitHubAPIError(
                    url,
                    f"HTTP {response.status_code}",
                    status_code=response.status_code,
                    attempts=attempt,
                )

            if attempt < max_attempts:
                delay = attempt * self.settings.retry_base_delay_seconds
                logger.warning(
                    f"{last_error.message} for {url}, "
                    f"retry {attempt}/{max_attempts - 1} after {delay:.1f}s"
                )
                await self._sleep(delay)

        logger.error(f"All {max_attempts} attempts failed for {url}: {last_error.message}")
        raise last_error

    async def _get_json(
        self, url: str, params: dict[str, Any] | None = None
    ) -> tuple[Any, httpx.Response]:
        response = await self.request(url, params)
        try:
            return response.json(), response
        except ValueError as e:
            raise GitHubAPIError(url, f"Malformed JSON body: {e}", response.status_code) from e

    def _repo_url(self, source: SourceRepository, suffix: str) -> str:
        return f"{self.api_url}/repos/{source.owner}/{source.repo}/{suffix}"

    async def get_tip_revision(self, source: SourceRepository) -> str:
        """Identifier of the latest commit on the source branch"""
        url = self._repo_url(source, f"commits/{source.branch}")
        data, _ = await self._get_json(url)
        sha = data.get("sha") if isinstance(data, dict) else None
        if not isinstance(sha, str) or not sha:
            raise GitHubAPIError(url, "Response has no commit sha")
        return sha

    async def get_tree(self, source: SourceRepository) -> TreeListing:
        """Recursive file tree of the source branch"""
        url = self._repo_url(source, f"git/trees/{source.branch}")
        data, _ = await self._get_json(url, {"recursive": "1"})
        if not isinstance(data, dict) or not isinstance(data.get("tree"), list):
            raise GitHubAPIError(url, "Response has no tree")

        try:
            entries = [
                TreeEntry(
                    path=item["path"],
                    type=item["type"],
                    sha=item["sha"],
                    size=item.get("size"),
                )
                for item in data["tree"]
            ]
        except (KeyError, TypeError, ValidationError) as e:
            raise GitHubAPIError(url, f"Malformed tree entry: {e}") from e

        return TreeListing(entries=entries, truncated=bool(data.get("truncated", False)))

    async def get_raw_content(self, source: SourceRepository, path: str) -> str:
        """Raw file content at the tip of the source branch"""
        url = f"{self.raw_url}/{source.owner}/{source.repo}/{source.branch}/{path}"
        response = await self.request(url)
        try:
            return response.content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise GitHubAPIError(url, f"Body is not valid UTF-8: {e}", response.status_code) from e

    async def list_commits(
        self,
        source: SourceRepository,
        *,
        path: str | None = None,
        since: str | None = None,
        per_page: int = 100,
        page: int | None = None,
    ) -> CommitPage:
        """One page of commit history, newest first"""
        params: dict[str, Any] = {"sha": source.branch, "per_page": per_page}
        if path:
            params["path"] = path
        if since:
            params["since"] = since
        if page:
            params["page"] = page
        return await self.get_commit_page(self._repo_url(source, "commits"), params)

    async def get_commit_page(self, url: str, params: dict[str, Any] | None = None) -> CommitPage:
        """Fetch a commit list page, e.g. by following a Link header URL"""
        data, response = await self._get_json(url, params)
        if not isinstance(data, list):
            raise GitHubAPIError(url, "Expected a list of commits")

        try:
            commits = [self._parse_commit(item) for item in data]
        except (KeyError, TypeError, ValidationError) as e:
            raise GitHubAPIError(url, f"Malformed commit entry: {e}") from e

        last_page_url = response.links.get("last", {}).get("url")
        return CommitPage(commits=commits, last_page_url=last_page_url)

    async def get_commit_detail(self, source: SourceRepository, sha: str) -> CommitDetail:
        """A single commit including its changed file names"""
        url = self._repo_url(source, f"commits/{sha}")
        data, _ = await self._get_json(url)
        try:
            commit = data["commit"]
            return CommitDetail(
                sha=data["sha"],
                message=commit["message"],
                date=commit["author"]["date"],
                files=[item["filename"] for item in data.get("files") or []],
            )
        except (KeyError, TypeError, ValidationError) as e:
            raise GitHubAPIError(url, f"Malformed commit detail: {e}") from e

    @staticmethod
    def _parse_commit(item: dict[str, Any]) -> CommitSummary:
        commit = item["commit"]
        author = commit.get("author") or {}
        stats = item.get("stats") or {}
        return CommitSummary(
            sha=item["sha"],
            message=commit["message"],
            author=author.get("name"),
            date=author["date"],
            additions=stats.get("additions"),
            deletions=stats.get("deletions"),
            total=stats.get("total"),
        )

    async def close(self) -> None:
        """Close the HTTP client"""
        await self.client.aclose()

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
