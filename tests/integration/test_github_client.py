"""Integration tests for GitHubClient retry and rate-limit handling"""

import logging

import httpx
import pytest

from whatsnew_mcp.models.sources_config import GitHubConfig, SourceRepository, SyncSettings
from whatsnew_mcp.services.commit_history import CommitHistoryTracker
from whatsnew_mcp.services.github_client import GitHubAPIError, GitHubClient, RateLimitError

SOURCE = SourceRepository(owner="MicrosoftDocs", repo="dynamics-365-docs", base_path="articles")


def _sequenced_client(responses, sleeps, settings=None, token="test-token"):
    """Client whose transport answers with the given responses in order"""
    requests = []

    async def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return responses[min(len(requests), len(responses)) - 1]

    async def record_sleep(delay: float) -> None:
        sleeps.append(delay)

    client = GitHubClient(
        GitHubConfig(token=token),
        settings or SyncSettings(),
        transport=httpx.MockTransport(handler),
        sleep=record_sleep,
    )
    return client, requests


class TestRetry:
    """Test bounded retry with linear backoff"""

    async def test_transient_errors_then_success(self):
        sleeps = []
        client, requests = _sequenced_client(
            [
                httpx.Response(500),
                httpx.Response(500),
                httpx.Response(200, json={"sha": "abc123"}),
            ],
            sleeps,
        )

        async with client:
            sha = await client.get_tip_revision(SOURCE)

        assert sha == "abc123"
        assert len(requests) == 3
        assert sleeps == [1.0, 2.0]

    async def test_all_attempts_fail(self):
        sleeps = []
        client, requests = _sequenced_client([httpx.Response(502)], sleeps)

        async with client:
            with pytest.raises(GitHubAPIError) as exc_info:
                await client.get_tip_revision(SOURCE)

        assert len(requests) == 3
        assert exc_info.value.attempts == 3
        assert exc_info.value.status_code == 502
        assert not isinstance(exc_info.value, RateLimitError)

    async def test_network_errors_are_retried(self):
        sleeps = []
        calls = []

        async def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"sha": "def456"})

        async def record_sleep(delay: float) -> None:
            sleeps.append(delay)

        client = GitHubClient(
            GitHubConfig(token="t"),
            SyncSettings(),
            transport=httpx.MockTransport(handler),
            sleep=record_sleep,
        )
        async with client:
            assert await client.get_tip_revision(SOURCE) == "def456"

        assert sleeps == [1.0]

    async def test_single_attempt_setting(self):
        sleeps = []
        client, requests = _sequenced_client(
            [httpx.Response(500)], sleeps, settings=SyncSettings(max_attempts=1)
        )

        async with client:
            with pytest.raises(GitHubAPIError):
                await client.get_tip_revision(SOURCE)

        assert len(requests) == 1
        assert sleeps == []


class TestRateLimit:
    """Test quota handling"""

    @pytest.mark.parametrize("status", [403, 429])
    async def test_quota_response_is_not_retried(self, status):
        sleeps = []
        client, requests = _sequenced_client(
            [
                httpx.Response(
                    status,
                    headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1700000000"},
                    json={"message": "API rate limit exceeded"},
                )
            ],
            sleeps,
        )

        async with client:
            with pytest.raises(RateLimitError) as exc_info:
                await client.get_tree(SOURCE)

        assert len(requests) == 1
        assert sleeps == []
        assert "2023-11-14T22:13:20+00:00" in str(exc_info.value)
        assert exc_info.value.reset_at.year == 2023

    async def test_unknown_reset_time(self):
        client, _ = _sequenced_client([httpx.Response(429)], [])

        async with client:
            with pytest.raises(RateLimitError) as exc_info:
                await client.get_tip_revision(SOURCE)

        assert exc_info.value.reset_at is None
        assert "unknown" in str(exc_info.value)

    async def test_low_quota_warning(self, caplog):
        client, _ = _sequenced_client(
            [httpx.Response(200, json={"sha": "abc"}, headers={"X-RateLimit-Remaining": "3"})],
            [],
        )

        with caplog.at_level(logging.WARNING):
            async with client:
                await client.get_tip_revision(SOURCE)

        assert "rate limit low: 3 requests remaining" in caplog.text


class TestRequests:
    """Test request construction and response parsing"""

    async def test_bearer_token_header(self):
        client, requests = _sequenced_client([httpx.Response(200, json={"sha": "abc"})], [])

        async with client:
            await client.get_tip_revision(SOURCE)

        assert requests[0].headers["Authorization"] == "Bearer test-token"
        assert requests[0].url.path == "/repos/MicrosoftDocs/dynamics-365-docs/commits/main"

    async def test_unauthenticated_warning(self, monkeypatch, caplog):
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)

        with caplog.at_level(logging.WARNING):
            client, requests = _sequenced_client(
                [httpx.Response(200, json={"sha": "abc"})], [], token=None
            )
            async with client:
                await client.get_tip_revision(SOURCE)

        assert client.authenticated is False
        assert "Authorization" not in requests[0].headers
        assert "unauthenticated" in caplog.text

    async def test_tree_request_is_recursive(self):
        tree = {
            "tree": [
                {"path": "articles", "type": "tree", "sha": "t1"},
                {"path": "articles/whats-new.md", "type": "blob", "sha": "b1", "size": 12},
            ],
            "truncated": True,
        }
        client, requests = _sequenced_client([httpx.Response(200, json=tree)], [])

        async with client:
            listing = await client.get_tree(SOURCE)

        assert requests[0].url.params["recursive"] == "1"
        assert listing.truncated is True
        assert [entry.path for entry in listing.entries] == ["articles", "articles/whats-new.md"]
        assert listing.entries[1].size == 12

    async def test_malformed_json_is_not_retried(self):
        sleeps = []
        client, requests = _sequenced_client(
            [httpx.Response(200, content=b"<html>not json</html>")], sleeps
        )

        async with client:
            with pytest.raises(GitHubAPIError, match="Malformed JSON"):
                await client.get_tip_revision(SOURCE)

        assert len(requests) == 1

    async def test_raw_content_url(self):
        client, requests = _sequenced_client(
            [httpx.Response(200, content="# Title\n".encode("utf-8"))], []
        )

        async with client:
            content = await client.get_raw_content(SOURCE, "articles/whats-new.md")

        assert content == "# Title\n"
        assert str(requests[0].url) == (
            "https://raw.githubusercontent.com/MicrosoftDocs/dynamics-365-docs/main/"
            "articles/whats-new.md"
        )


class TestCommitHistory:
    """Test history lookups against the fake API"""

    @pytest.fixture
    def history_repo(self, fake_github):
        fake_github.add_repo(
            "org",
            "docs",
            files={"articles/whats-new.md": "---\ntitle: New\n---\n"},
            commits=[
                {
                    "sha": f"c{index}",
                    "message": f"Update {index}",
                    "date": f"2024-0{index}-01T00:00:00Z",
                    "files": ["articles/whats-new.md"],
                }
                for index in range(5, 0, -1)
            ],
        )
        return fake_github

    async def test_first_observed_follows_last_page(self, history_repo):
        source = history_repo.source("org/docs")

        async with history_repo.client() as client:
            stamp = await CommitHistoryTracker(client).first_observed(
                source, "articles/whats-new.md"
            )

        assert stamp.sha == "c1"
        assert stamp.date == "2024-01-01T00:00:00Z"
        # First page plus the rel="last" page
        assert history_repo.count("commits") == 2

    async def test_last_change_is_newest(self, history_repo):
        source = history_repo.source("org/docs")

        async with history_repo.client() as client:
            stamp = await CommitHistoryTracker(client).last_change(
                source, "articles/whats-new.md"
            )

        assert stamp.sha == "c5"

    async def test_unknown_path_has_no_history(self, history_repo):
        source = history_repo.source("org/docs")

        async with history_repo.client() as client:
            tracker = CommitHistoryTracker(client)
            assert await tracker.first_observed(source, "articles/missing.md") is None
            assert await tracker.last_change(source, "articles/missing.md") is None

    async def test_lookup_failure_returns_none(self, history_repo):
        history_repo.fail("commits", "org/docs", 500)
        source = history_repo.source("org/docs")

        async with history_repo.client(SyncSettings(retry_base_delay_seconds=0)) as client:
            stamp = await CommitHistoryTracker(client).last_change(
                source, "articles/whats-new.md"
            )

        assert stamp is None
