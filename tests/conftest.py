"""Shared fixtures: an in-process fake of the GitHub REST API and raw host"""

import asyncio
import hashlib
import os
import tempfile
from collections import Counter
from dataclasses import dataclass, field
from urllib.parse import urlencode

import httpx
import pytest

from whatsnew_mcp.models.sources_config import GitHubConfig, SourceRepository, SyncSettings
from whatsnew_mcp.services.github_client import GitHubClient
from whatsnew_mcp.services.store import Store

API_HOST = "api.github.com"
RAW_HOST = "raw.githubusercontent.com"


def blob_sha(content: str) -> str:
    return hashlib.sha1(content.encode("utf-8")).hexdigest()


def _touches(commit: dict, path: str) -> bool:
    prefix = path.rstrip("/") + "/"
    return any(name == path or name.startswith(prefix) for name in commit["files"])


@dataclass
class FakeRepo:
    owner: str
    repo: str
    branch: str = "main"
    tip: str = "tip-1"
    files: dict[str, str] = field(default_factory=dict)
    extra_entries: list[dict] = field(default_factory=list)
    truncated: bool = False
    # Newest first: {"sha", "message", "author", "date", "files": [...]}
    commits: list[dict] = field(default_factory=list)

    @property
    def key(self) -> str:
        return f"{self.owner}/{self.repo}"


class FakeGitHub:
    """Routes httpx requests to in-memory repositories and counts calls per endpoint"""

    def __init__(self):
        self.repos: dict[str, FakeRepo] = {}
        self.calls: Counter = Counter()
        self.failures: dict[tuple[str, str], tuple[int, dict]] = {}
        self.in_flight: Counter = Counter()
        self.max_in_flight: Counter = Counter()
        self.authorizations: list[str | None] = []
        self.transport = httpx.MockTransport(self.handler)

    def add_repo(self, owner: str, repo: str, **kwargs) -> FakeRepo:
        fake_repo = FakeRepo(owner=owner, repo=repo, **kwargs)
        self.repos[fake_repo.key] = fake_repo
        return fake_repo

    def fail(self, kind: str, target: str, status: int, headers: dict | None = None) -> None:
        """Make every `kind` call for a repo key or document path answer with `status`"""
        self.failures[(kind, target)] = (status, headers or {})

    def count(self, kind: str, target: str | None = None) -> int:
        return self.calls[(kind, target)] if target else self.calls[kind]

    def client(self, settings: SyncSettings | None = None, token: str | None = "test-token"):
        async def no_sleep(_delay: float) -> None:
            return None

        return GitHubClient(
            GitHubConfig(token=token),
            settings or SyncSettings(),
            transport=self.transport,
            sleep=no_sleep,
        )

    def source(self, key: str, base_path: str = "articles") -> SourceRepository:
        fake_repo = self.repos[key]
        return SourceRepository(
            owner=fake_repo.owner, repo=fake_repo.repo, branch=fake_repo.branch, base_path=base_path
        )

    async def handler(self, request: httpx.Request) -> httpx.Response:
        kind, target, route = self._route(request)
        self.authorizations.append(request.headers.get("Authorization"))
        self.calls[kind] += 1
        self.calls[(kind, target)] += 1
        self.in_flight[kind] += 1
        self.max_in_flight[kind] = max(self.max_in_flight[kind], self.in_flight[kind])
        try:
            # Yield so concurrent requests overlap
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            failure = self.failures.get((kind, target))
            if failure is not None:
                status, headers = failure
                return httpx.Response(status, headers=headers, json={"message": "failure"})
            return route()
        finally:
            self.in_flight[kind] -= 1

    def _route(self, request: httpx.Request):
        parts = request.url.path.strip("/").split("/")

        if request.url.host == RAW_HOST:
            fake_repo = self.repos[f"{parts[0]}/{parts[1]}"]
            path = "/".join(parts[3:])
            return "raw", f"{fake_repo.key}/{path}", lambda: self._raw(fake_repo, path)

        fake_repo = self.repos[f"{parts[1]}/{parts[2]}"]
        rest = parts[3:]
        if rest[:2] == ["git", "trees"]:
            return "tree", fake_repo.key, lambda: self._tree(fake_repo)
        if rest == ["commits"]:
            return "commits", fake_repo.key, lambda: self._commits(fake_repo, request)
        if rest[0] == "commits" and rest[1] == fake_repo.branch:
            return "tip", fake_repo.key, lambda: httpx.Response(200, json={"sha": fake_repo.tip})
        if rest[0] == "commits":
            return "detail", fake_repo.key, lambda: self._detail(fake_repo, rest[1])
        raise AssertionError(f"Unexpected request: {request.url}")

    def _raw(self, fake_repo: FakeRepo, path: str) -> httpx.Response:
        if path not in fake_repo.files:
            return httpx.Response(404, text="Not Found")
        return httpx.Response(200, content=fake_repo.files[path].encode("utf-8"))

    def _tree(self, fake_repo: FakeRepo) -> httpx.Response:
        tree = [
            {"path": path, "type": "blob", "sha": blob_sha(content), "size": len(content)}
            for path, content in fake_repo.files.items()
        ]
        tree.extend(fake_repo.extra_entries)
        return httpx.Response(200, json={"tree": tree, "truncated": fake_repo.truncated})

    @staticmethod
    def _commit_json(commit: dict) -> dict:
        return {
            "sha": commit["sha"],
            "commit": {
                "message": commit["message"],
                "author": {"name": commit.get("author", "Docs Bot"), "date": commit["date"]},
            },
        }

    def _commits(self, fake_repo: FakeRepo, request: httpx.Request) -> httpx.Response:
        params = request.url.params
        path = params.get("path")
        since = params.get("since")
        per_page = int(params.get("per_page", "30"))
        page = int(params.get("page", "1"))

        matching = [
            commit
            for commit in fake_repo.commits
            if (path is None or _touches(commit, path))
            and (since is None or commit["date"] >= since)
        ]
        pages = max(1, -(-len(matching) // per_page))
        chunk = matching[(page - 1) * per_page : page * per_page]

        headers = {}
        if pages > 1:
            last_params = dict(params)
            last_params["page"] = str(pages)
            last_url = f"https://{API_HOST}{request.url.path}?{urlencode(last_params)}"
            headers["Link"] = f'<{last_url}>; rel="last"'
        return httpx.Response(
            200, json=[self._commit_json(commit) for commit in chunk], headers=headers
        )

    def _detail(self, fake_repo: FakeRepo, sha: str) -> httpx.Response:
        for commit in fake_repo.commits:
            if commit["sha"] == sha:
                data = self._commit_json(commit)
                data["files"] = [{"filename": name} for name in commit["files"]]
                return httpx.Response(200, json=data)
        return httpx.Response(404, json={"message": "Not Found"})


@pytest.fixture
def fake_github():
    return FakeGitHub()


@pytest.fixture
def settings():
    """Sync settings with no interval gate so back-to-back runs proceed"""
    return SyncSettings(min_sync_interval_hours=0, retry_base_delay_seconds=0)


@pytest.fixture
def temp_dir():
    """Create temporary directory for test databases"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def store(temp_dir):
    """Open store on a temporary database file"""
    with Store(os.path.join(temp_dir, "whatsnew.db")) as opened:
        yield opened
