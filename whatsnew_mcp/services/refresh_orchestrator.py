"""Orchestrates scheduled and on-demand sync runs against a shared store"""

import asyncio
import logging
import threading
from datetime import datetime

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from whatsnew_mcp.models.sources_config import GitHubConfig, SourcesConfig, SyncSettings
from whatsnew_mcp.models.sync_state import SyncResult
from whatsnew_mcp.services.github_client import GitHubClient
from whatsnew_mcp.services.store import Store
from whatsnew_mcp.services.sync_orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

JOB_ID = "whatsnew_sync"
ALREADY_RUNNING = "sync already in progress"


class RefreshOrchestrator:
    """Serialize sync runs and optionally schedule them periodically"""

    def __init__(
        self,
        store: Store,
        sources_config: SourcesConfig,
        github_config: GitHubConfig | None = None,
        settings: SyncSettings | None = None,
        client_factory=None,
    ):
        """
        Initialize refresh orchestrator

        Args:
            store: Open store shared with the query surface
            sources_config: Sources to synchronize
            github_config: GitHub access settings (optional, uses defaults if None)
            settings: Sync tunables (optional, uses defaults if None)
            client_factory: Callable taking a GitHubConfig and returning a GitHubClient
                (tests inject fakes)
        """
        self.store = store
        self.sources_config = sources_config
        self.github_config = github_config or GitHubConfig()
        self.settings = settings or SyncSettings()
        self.client_factory = client_factory or (
            lambda github_config: GitHubClient(github_config, self.settings)
        )
        self.scheduler: BackgroundScheduler | None = None
        self._run_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    async def run_sync(self, force: bool = False, credential: str | None = None) -> SyncResult:
        """
        Run one sync unless another run holds the lock

        Args:
            force: Bypass the interval and diff gates
            credential: GitHub token for this run only, overriding the configured one

        Returns:
            SyncResult of the run, or a failed result if a run is already active
        """
        if not self._run_lock.acquire(blocking=False):
            logger.warning("Sync requested while another run is active")
            return SyncResult(success=False, error=ALREADY_RUNNING)

        try:
            github_config = self.github_config
            if credential:
                github_config = github_config.model_copy(update={"token": credential})

            async with self.client_factory(github_config) as client:
                orchestrator = SyncOrchestrator(
                    self.store,
                    client,
                    self.sources_config.get_enabled_sources(),
                    self.settings,
                    product_mapping=self.sources_config.products,
                    default_product=self.sources_config.default_product,
                )
                return await orchestrator.run(force=force)
        finally:
            self._run_lock.release()

    def sync_once(self, force: bool = False) -> SyncResult:
        """
        Execute a single sync from a worker thread

        Note: BackgroundScheduler runs jobs in threads, so asyncio.run() bridges
        to the async sync pipeline.
        """
        start_time = datetime.now()
        try:
            result = asyncio.run(self.run_sync(force=force))
        except Exception as e:
            logger.error(f"Scheduled sync failed with exception: {e}", exc_info=True)
            return SyncResult(success=False, error=str(e))

        duration_seconds = (datetime.now() - start_time).total_seconds()
        if result.success:
            logger.info(f"Scheduled sync completed in {duration_seconds:.2f}s")
        else:
            logger.warning(f"Scheduled sync did not complete: {result.error}")
        return result

    def configure_scheduler_sync(
        self,
        scheduler: BackgroundScheduler,
        interval_hours: float,
        max_concurrent_jobs: int = 1,
    ) -> None:
        """
        Register the periodic sync job on a BackgroundScheduler

        Args:
            scheduler: Initialized BackgroundScheduler instance
            interval_hours: Sync interval in hours
            max_concurrent_jobs: Maximum concurrent sync jobs
        """
        self.scheduler = scheduler

        trigger = IntervalTrigger(hours=interval_hours, start_date=datetime.now())

        self.scheduler.add_job(
            self.sync_once,
            trigger=trigger,
            id=JOB_ID,
            name="What's New Documentation Sync",
            max_instances=max_concurrent_jobs,
            replace_existing=True,
        )

        logger.info(f"Scheduled sync every {interval_hours} hours")

    def stop_scheduler_sync(self) -> None:
        """Remove the periodic sync job"""
        if self.scheduler:
            try:
                self.scheduler.remove_job(JOB_ID)
                logger.info("Stopped sync scheduler")
            except JobLookupError:
                logger.warning("Sync job not found during shutdown")
