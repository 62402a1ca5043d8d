"""Incremental synchronization of release-notes documents into the local store"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from whatsnew_mcp.models.document import CandidateDocument, RevisionStamp
from whatsnew_mcp.models.sources_config import SourceRepository, SyncSettings
from whatsnew_mcp.models.sync_state import SyncCheckpoint, SyncResult, SyncStatus
from whatsnew_mcp.services.commit_history import CommitHistoryTracker
from whatsnew_mcp.services.concurrency import gather_limited
from whatsnew_mcp.services.document_fetcher import DocumentFetcher
from whatsnew_mcp.services.github_client import GitHubClient
from whatsnew_mcp.services.repository_diff import RepositoryDiffChecker
from whatsnew_mcp.services.store import Store
from whatsnew_mcp.services.tree_scanner import TreeScanner

logger = logging.getLogger(__name__)

# How many failed paths are spelled out in the checkpoint error summary
SUMMARY_PATH_LIMIT = 10


@dataclass
class _RunState:
    """Bookkeeping for a single run"""

    sources_to_scan: list[SourceRepository] = field(default_factory=list)
    tip_revisions: dict[str, str] | None = None
    scanned: list[SourceRepository] = field(default_factory=list)
    failed_sources: list[str] = field(default_factory=list)
    deferred_sources: set[str] = field(default_factory=set)
    fetched: dict[str, CandidateDocument] = field(default_factory=dict)
    failed_documents: list[str] = field(default_factory=list)
    document_count: int = 0
    commit_count: int = 0


def _summarize(noun: str, items: list[str]) -> str:
    shown = ", ".join(items[:SUMMARY_PATH_LIMIT])
    if len(items) > SUMMARY_PATH_LIMIT:
        shown += f" (+{len(items) - SUMMARY_PATH_LIMIT} more)"
    plural = "" if len(items) == 1 else "s"
    return f"{len(items)} {noun}{plural} failed: {shown}"


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def _iso(moment: datetime) -> str:
    return _as_utc(moment).astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class SyncOrchestrator:
    """
    Drive one sync run: diff gate, tree scan, file gate, fetch, history backfill

    State machine on the persisted checkpoint: idle -> syncing -> idle | error.
    Per-item failures are counted and reported; only structural failures
    (such as the diff probe failing) move the checkpoint to error.
    """

    def __init__(
        self,
        store: Store,
        client: GitHubClient,
        sources: list[SourceRepository],
        settings: SyncSettings | None = None,
        product_mapping: dict[str, str] | None = None,
        default_product: str | None = None,
    ):
        """
        Initialize the orchestrator

        Args:
            store: Open store to merge results into
            client: GitHub client shared by all components
            sources: Enabled source repositories
            settings: Sync tunables (optional, uses defaults if None)
            product_mapping: Path keyword -> product label table (None = built-in)
            default_product: Label used when no keyword matches (None = built-in)
        """
        self.store = store
        self.client = client
        self.sources = list(sources)
        self.settings = settings or SyncSettings()
        self.diff_checker = RepositoryDiffChecker(client, self.settings)
        self.scanner = TreeScanner(
            client,
            self.settings,
            product_mapping=product_mapping,
            default_product=default_product,
        )
        self.fetcher = DocumentFetcher(client, self.settings)
        self.history = CommitHistoryTracker(client, self.settings)

    def get_checkpoint(self) -> SyncCheckpoint:
        return self.store.get_checkpoint()

    def _within_interval(self, checkpoint: SyncCheckpoint, now: datetime) -> bool:
        if checkpoint.last_sync is None or self.settings.min_sync_interval_hours <= 0:
            return False
        elapsed = now - _as_utc(checkpoint.last_sync)
        return elapsed < timedelta(hours=self.settings.min_sync_interval_hours)

    async def run(self, force: bool = False) -> SyncResult:
        """
        Run one synchronization

        Args:
            force: Skip the interval and diff gates and refetch every candidate

        Returns:
            SyncResult; success is False only when the run was aborted
        """
        start = time.monotonic()
        started_at = datetime.now(timezone.utc)
        checkpoint = self.store.get_checkpoint()

        if not force and self._within_interval(checkpoint, started_at):
            logger.info(
                f"Skipping sync, last sync at {checkpoint.last_sync.isoformat()} "
                f"is within {self.settings.min_sync_interval_hours}h"
            )
            return SyncResult(success=True, skipped=True)

        logger.info(f"Starting sync of {len(self.sources)} repositories (force={force})")
        self.store.update_checkpoint(status=SyncStatus.SYNCING, last_error=None)

        try:
            state = await self._run_steps(checkpoint, force)
        except Exception as e:
            duration_ms = int((time.monotonic() - start) * 1000)
            logger.error(f"✗ Sync failed: {e}")
            self.store.update_checkpoint(
                status=SyncStatus.ERROR, last_error=str(e), last_duration_ms=duration_ms
            )
            return SyncResult(success=False, duration_ms=duration_ms, error=str(e))

        duration_ms = int((time.monotonic() - start) * 1000)

        if state is None:
            self.store.update_checkpoint(
                status=SyncStatus.IDLE,
                last_sync=datetime.now(timezone.utc),
                last_duration_ms=duration_ms,
                record_count=0,
                last_error=None,
            )
            logger.info(f"No repository changes detected, sync skipped ({duration_ms}ms)")
            return SyncResult(success=True, skipped=True, duration_ms=duration_ms)

        failures = []
        if state.failed_documents:
            failures.append(_summarize("document", state.failed_documents))
        if state.failed_sources:
            failures.append(_summarize("repository", state.failed_sources))
        error_summary = "; ".join(failures) or None

        self.store.update_checkpoint(
            status=SyncStatus.IDLE,
            last_sync=datetime.now(timezone.utc),
            last_duration_ms=duration_ms,
            record_count=state.document_count,
            last_error=error_summary,
        )

        logger.info(
            f"✓ Sync complete: {state.document_count} documents, {state.commit_count} commits, "
            f"{len(state.failed_documents)} failed in {duration_ms}ms"
        )
        return SyncResult(
            success=True,
            document_count=state.document_count,
            commit_count=state.commit_count,
            duration_ms=duration_ms,
            failed_paths=state.failed_sources + state.failed_documents,
            error=error_summary,
        )

    async def _run_steps(self, checkpoint: SyncCheckpoint, force: bool) -> _RunState | None:
        """Run the sync phases in order; None when no source changed"""
        state = _RunState()

        if force:
            state.sources_to_scan = list(self.sources)
        else:
            previous = self.store.get_repository_revisions()
            diff = await self.diff_checker.check(self.sources, previous)
            if not diff.changed:
                return None
            state.sources_to_scan = diff.changed
            state.tip_revisions = diff.current

        candidates = await self._scan(state)
        await self._fetch_and_store(state, candidates, force)

        since = None if force or checkpoint.last_sync is None else _iso(checkpoint.last_sync)
        await self._store_recent_commits(state, since)
        await self._backfill_history(state)

        if state.tip_revisions is not None:
            persisted = {
                source.key: state.tip_revisions[source.key]
                for source in state.scanned
                if source.key in state.tip_revisions and source.key not in state.deferred_sources
            }
            self.store.save_repository_revisions(persisted)
            logger.info(f"Saved tip revisions for {len(persisted)} repositories")

        return state

    async def _scan(self, state: _RunState) -> list[CandidateDocument]:
        outcomes = await self.scanner.scan_all(state.sources_to_scan)

        candidates: list[CandidateDocument] = []
        for outcome in outcomes:
            if outcome.ok:
                state.scanned.append(outcome.item)
                candidates.extend(outcome.value)
            else:
                logger.warning(f"✗ Tree scan failed for {outcome.item.key}: {outcome.error}")
                state.failed_sources.append(outcome.item.key)
        return candidates

    async def _fetch_and_store(
        self, state: _RunState, candidates: list[CandidateDocument], force: bool
    ) -> None:
        stored_ids = self.store.get_content_ids()
        to_fetch = [
            candidate
            for candidate in candidates
            if force or stored_ids.get(candidate.path) != candidate.content_id
        ]
        logger.info(f"Files to process: {len(to_fetch)} changed of {len(candidates)} candidates")

        limit = self.settings.max_files_per_sync
        if len(to_fetch) > limit:
            deferred = to_fetch[limit:]
            state.deferred_sources.update(candidate.source.key for candidate in deferred)
            logger.warning(f"Deferring {len(deferred)} files to the next run (limit {limit})")
            to_fetch = to_fetch[:limit]

        outcomes = await self.fetcher.fetch_all(to_fetch)
        for outcome in outcomes:
            if outcome.ok:
                self.store.upsert_document(outcome.value)
                state.fetched[outcome.item.path] = outcome.item
                state.document_count += 1
            else:
                state.failed_documents.append(outcome.item.path)

    async def _store_recent_commits(self, state: _RunState, since: str | None) -> None:
        commits = await self.history.recent_commits(self.sources, since)
        for commit in commits:
            self.store.upsert_commit(commit)
        state.commit_count = len(commits)

    def _locate(self, path: str) -> tuple[SourceRepository, str] | None:
        for source in self.sources:
            prefix = f"{source.key}/"
            if path.startswith(prefix):
                return source, path[len(prefix) :]
        return None

    async def _backfill_history(self, state: _RunState) -> None:
        """Fill last-change and first-observed dates (best effort, capped)"""
        window_start = datetime.now(timezone.utc) - timedelta(
            days=self.settings.recent_change_window_days
        )
        changed = await self.history.recently_changed_documents(state.scanned, _iso(window_start))
        for path, stamp in changed.items():
            self.store.update_last_change(path, stamp.date, stamp.sha)

        await self._backfill_last_change(state)
        await self._backfill_first_observed(changed)

    async def _backfill_last_change(self, state: _RunState) -> None:
        missing = self.store.get_documents_missing("last_change_date", list(state.fetched))
        missing = missing[: self.settings.last_change_lookup_limit]
        if not missing:
            return

        async def lookup(path: str) -> RevisionStamp | None:
            candidate = state.fetched[path]
            return await self.history.last_change(candidate.source, candidate.file_path)

        outcomes = await gather_limited(missing, lookup, self.settings.commit_concurrency)
        updated = 0
        for outcome in outcomes:
            if outcome.ok and outcome.value is not None:
                updated += self.store.update_last_change(
                    outcome.item, outcome.value.date, outcome.value.sha
                )
        logger.info(f"Last change dates updated: {updated}")

    async def _backfill_first_observed(self, changed: dict[str, RevisionStamp]) -> None:
        newest_first = sorted(changed, key=lambda path: changed[path].date, reverse=True)
        missing = self.store.get_documents_missing("first_observed_date", newest_first)
        missing = missing[: self.settings.first_observed_backfill_limit]

        updated = 0
        for path in missing:
            located = self._locate(path)
            if located is None:
                continue
            source, file_path = located
            stamp = await self.history.first_observed(source, file_path)
            if stamp is not None:
                updated += self.store.update_first_observed(path, stamp.date)
        logger.info(f"First observed dates updated: {updated}")
