"""Repository-granularity change detection via tip-revision probes"""

import logging
from dataclasses import dataclass, field

from whatsnew_mcp.models.sources_config import SourceRepository, SyncSettings
from whatsnew_mcp.services.concurrency import gather_limited
from whatsnew_mcp.services.github_client import GitHubClient, RateLimitError

logger = logging.getLogger(__name__)


class DiffCheckError(Exception):
    """Raised when the tip-revision probe step cannot complete"""

    def __init__(self, message: str, cause: Exception | None = None):
        self.message = message
        self.cause = cause
        super().__init__(message)


@dataclass
class DiffResult:
    """Which sources changed since the stored revisions"""

    changed: list[SourceRepository] = field(default_factory=list)
    skipped: list[SourceRepository] = field(default_factory=list)
    current: dict[str, str] = field(default_factory=dict)


def changed_sources(
    sources: list[SourceRepository],
    previous: dict[str, str],
    current: dict[str, str],
) -> DiffResult:
    """Split sources into changed/unchanged by comparing tip revisions

    A source is changed when no previous revision is known or the
    revisions differ.
    """
    result = DiffResult(current=dict(current))
    for source in sources:
        previous_sha = previous.get(source.key)
        if previous_sha is None or previous_sha != current.get(source.key):
            result.changed.append(source)
        else:
            result.skipped.append(source)
    return result


class RepositoryDiffChecker:
    """Probe every configured source for its current tip revision"""

    def __init__(self, client: GitHubClient, settings: SyncSettings | None = None):
        self.client = client
        self.settings = settings or SyncSettings()

    async def fetch_tip_revisions(self, sources: list[SourceRepository]) -> dict[str, str]:
        """
        Fetch the tip revision of every source in bounded parallel

        Args:
            sources: Source repositories to probe

        Returns:
            Mapping of source key -> revision id

        Raises:
            DiffCheckError: If any probe failed (a rate-limit cause is preferred)
        """
        logger.info(f"Checking tip revisions of {len(sources)} repositories")

        outcomes = await gather_limited(
            sources, self.client.get_tip_revision, self.settings.probe_concurrency
        )

        failures = [outcome for outcome in outcomes if not outcome.ok]
        if failures:
            for outcome in failures:
                logger.warning(f"Tip revision probe failed for {outcome.item.key}: {outcome.error}")
            rate_limited = [o for o in failures if isinstance(o.error, RateLimitError)]
            first = (rate_limited or failures)[0]
            raise DiffCheckError(
                f"Repository diff check failed for {first.item.key}: {first.error}",
                first.error,
            )

        revisions = {outcome.item.key: outcome.value for outcome in outcomes}
        logger.info(f"Got tip revisions for {len(revisions)} repositories")
        return revisions

    async def check(
        self, sources: list[SourceRepository], previous: dict[str, str]
    ) -> DiffResult:
        """Probe all sources and compare with the previously stored revisions"""
        current = await self.fetch_tip_revisions(sources)
        result = changed_sources(sources, previous, current)
        logger.info(
            f"Repository-level diff check: {len(result.changed)} changed, "
            f"{len(result.skipped)} unchanged"
        )
        return result
