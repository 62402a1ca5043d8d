"""Freshness dates and change events derived from commit history"""

import logging
from datetime import datetime, timezone

from whatsnew_mcp.models.document import CommitRecord, RevisionStamp, document_path
from whatsnew_mcp.models.sources_config import SourceRepository, SyncSettings
from whatsnew_mcp.services.concurrency import gather_limited
from whatsnew_mcp.services.github_client import GitHubAPIError, GitHubClient
from whatsnew_mcp.services.heuristics import (
    has_document_extension,
    is_release_notes_path,
    is_under_prefix,
)

logger = logging.getLogger(__name__)

RELEASE_MESSAGE_MARKERS = ("whats-new", "what's new", "release")
MESSAGE_MAX_LENGTH = 200
STAMP_MESSAGE_MAX_LENGTH = 100


def _first_line(message: str, max_length: int) -> str:
    lines = message.splitlines()
    return (lines[0] if lines else "")[:max_length]


def _stamp_time(stamp: RevisionStamp) -> datetime:
    try:
        moment = datetime.fromisoformat(stamp.date.replace("Z", "+00:00"))
    except ValueError:
        return datetime.min.replace(tzinfo=timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def is_release_commit(message: str) -> bool:
    lower_message = message.lower()
    return any(marker in lower_message for marker in RELEASE_MESSAGE_MARKERS)


class CommitHistoryTracker:
    """Best-effort lookups over the remote revision history"""

    def __init__(self, client: GitHubClient, settings: SyncSettings | None = None):
        self.client = client
        self.settings = settings or SyncSettings()

    async def last_change(self, source: SourceRepository, file_path: str) -> RevisionStamp | None:
        """Most recent revision touching the path, or None if unknown"""
        try:
            page = await self.client.list_commits(source, path=file_path, per_page=1)
        except GitHubAPIError as e:
            logger.warning(f"Failed to get last change for {source.key}/{file_path}: {e}")
            return None

        if not page.commits:
            return None
        commit = page.commits[0]
        return RevisionStamp(sha=commit.sha, date=commit.date)

    async def first_observed(
        self, source: SourceRepository, file_path: str
    ) -> RevisionStamp | None:
        """
        Earliest revision touching the path, or None if unknown

        Requests one commit per page and jumps to the rel="last" page, whose
        single entry is the oldest commit.
        """
        try:
            page = await self.client.list_commits(source, path=file_path, per_page=1)
            if page.last_page_url:
                page = await self.client.get_commit_page(page.last_page_url)
        except GitHubAPIError as e:
            logger.warning(f"Failed to get first observed date for {source.key}/{file_path}: {e}")
            return None

        if not page.commits:
            return None
        commit = page.commits[-1]
        return RevisionStamp(sha=commit.sha, date=commit.date)

    async def recent_commits(
        self, sources: list[SourceRepository], since: str | None = None
    ) -> list[CommitRecord]:
        """
        Release-related commits under each source's base path

        Args:
            sources: Sources to query
            since: ISO timestamp lower bound (None = latest page only)

        Returns:
            CommitRecords from every source that answered
        """
        logger.info(f"Fetching recent commits (since={since or 'beginning'})")

        async def fetch_source(source: SourceRepository) -> list[CommitRecord]:
            page = await self.client.list_commits(
                source,
                path=source.base_path or None,
                since=since,
                per_page=self.settings.commit_page_size,
            )
            return [
                CommitRecord(
                    sha=commit.sha,
                    message=_first_line(commit.message, MESSAGE_MAX_LENGTH),
                    author=commit.author,
                    date=commit.date,
                    files_changed=commit.total,
                    additions=commit.additions,
                    deletions=commit.deletions,
                )
                for commit in page.commits
                if is_release_commit(commit.message)
            ]

        outcomes = await gather_limited(sources, fetch_source, self.settings.commit_concurrency)

        commits: list[CommitRecord] = []
        for outcome in outcomes:
            if outcome.ok:
                commits.extend(outcome.value)
            else:
                logger.warning(f"Failed to get commits for {outcome.item.key}: {outcome.error}")

        logger.info(f"Fetched {len(commits)} recent commits")
        return commits

    async def recently_changed_documents(
        self, sources: list[SourceRepository], since: str
    ) -> dict[str, RevisionStamp]:
        """
        Documents touched by recent commits, with their newest revision

        Only the first ``recent_commit_detail_limit`` commits of each source are
        expanded into their file lists. Listing and detail lookups run as two
        stages so each stays within ``commit_concurrency``.

        Returns:
            Mapping of document path -> newest RevisionStamp
        """
        limit = self.settings.recent_commit_detail_limit
        if limit == 0:
            return {}

        async def list_source(source: SourceRepository) -> list[str]:
            page = await self.client.list_commits(
                source, path=source.base_path or None, since=since, per_page=limit
            )
            return [commit.sha for commit in page.commits[:limit]]

        listings = await gather_limited(sources, list_source, self.settings.commit_concurrency)

        pending: list[tuple[SourceRepository, str]] = []
        for outcome in listings:
            if not outcome.ok:
                logger.warning(
                    f"Failed to get recent changes for {outcome.item.key}: {outcome.error}"
                )
                continue
            pending.extend((outcome.item, sha) for sha in outcome.value)

        async def fetch_detail(item: tuple[SourceRepository, str]):
            source, sha = item
            return await self.client.get_commit_detail(source, sha)

        details = await gather_limited(pending, fetch_detail, self.settings.commit_concurrency)

        changed: dict[str, RevisionStamp] = {}
        for outcome in details:
            source, sha = outcome.item
            if not outcome.ok:
                logger.warning(f"Failed to get commit {sha} in {source.key}: {outcome.error}")
                continue
            detail = outcome.value
            stamp = RevisionStamp(
                sha=detail.sha,
                date=detail.date,
                message=_first_line(detail.message, STAMP_MESSAGE_MAX_LENGTH),
            )
            for filename in detail.files:
                if not (
                    has_document_extension(filename)
                    and is_release_notes_path(filename)
                    and is_under_prefix(filename, source.base_path)
                ):
                    continue
                key = document_path(source.key, filename)
                existing = changed.get(key)
                if existing is None or _stamp_time(stamp) > _stamp_time(existing):
                    changed[key] = stamp

        logger.info(f"Found {len(changed)} recently changed documents")
        return changed
