"""MCP server implementation using fastmcp"""

import logging
import sys
import threading
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler
from fastmcp import FastMCP
from fastmcp.exceptions import McpError
from mcp.types import ErrorData
from pydantic import ValidationError
from starlette.responses import JSONResponse

from whatsnew_mcp.config import config
from whatsnew_mcp.models.document import DocumentRecord
from whatsnew_mcp.models.search_result import SearchFilters
from whatsnew_mcp.models.sources_config import GitHubConfig, SyncSettings
from whatsnew_mcp.services.heuristics import build_commits_url, classify_change
from whatsnew_mcp.services.refresh_orchestrator import RefreshOrchestrator
from whatsnew_mcp.services.search import SearchService
from whatsnew_mcp.services.store import Store
from whatsnew_mcp.services.telemetry import get_telemetry_service
from whatsnew_mcp.utils.sources_loader import load_sources_config

logger = logging.getLogger(__name__)

INVALID_PARAMS = -32602
NOT_FOUND = -32002
INTERNAL_ERROR = -32603

# Recent commits included in the sync status response
STATUS_COMMIT_LIMIT = 5

mcp = FastMCP(name="whatsnew-docs-search", version="0.1.0")

_store: Store | None = None
_search_service: SearchService | None = None
_refresh_orchestrator: RefreshOrchestrator | None = None
_scheduler: BackgroundScheduler | None = None

# Guards one-time service initialization across request and scheduler threads
_init_lock = threading.Lock()


def _get_services() -> tuple[Store, SearchService, RefreshOrchestrator]:
    """Get or initialize the store, search service and refresh orchestrator"""
    global _store, _search_service, _refresh_orchestrator

    with _init_lock:
        if _store is None:
            _store = Store(config.db_path).open()

        if _search_service is None:
            _search_service = SearchService(_store)

        if _refresh_orchestrator is None:
            sources_config = load_sources_config(config.sources_config_path)
            _refresh_orchestrator = RefreshOrchestrator(
                _store,
                sources_config,
                github_config=GitHubConfig.from_app_config(config),
                settings=SyncSettings.from_app_config(config),
            )

    return _store, _search_service, _refresh_orchestrator


def _document_payload(document: DocumentRecord) -> dict[str, Any]:
    payload = document.model_dump()
    payload["change_kind"] = classify_change(
        document.first_observed_date,
        document.last_change_date,
        config.new_document_threshold_days,
    )
    payload["commits_url"] = build_commits_url(document.file_url)
    return payload


@mcp.tool()
async def search_updates(
    query: str | None = None,
    product: str | None = None,
    version: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    limit: int | None = 20,
    offset: int = 0,
) -> dict[str, Any]:
    """Search synchronized what's-new release notes, newest first

    Args:
        query: Free text matched against titles and descriptions
        product: Exact product label (see available_products in any response)
        version: Substring of the version, e.g. "10.0.40"
        date_from: Inclusive lower bound, YYYY-MM-DD
        date_to: Inclusive upper bound, YYYY-MM-DD
        limit: Maximum number of documents to return (None = all)
        offset: Number of matches to skip

    Returns:
        dict: documents, total_count, available_products and query_time_ms
    """
    telemetry = get_telemetry_service()
    error: Exception | None = None
    response = None
    parameters = {
        "query": query,
        "product": product,
        "version": version,
        "date_from": date_from,
        "date_to": date_to,
        "limit": limit,
        "offset": offset,
    }

    try:
        try:
            filters = SearchFilters(**parameters)
        except ValidationError as e:
            error = e
            raise McpError(
                ErrorData(code=INVALID_PARAMS, message=f"Invalid search parameters: {e}")
            ) from e

        try:
            _, search_service, _ = _get_services()
            result = search_service.search(filters)
        except Exception as e:
            error = e
            raise McpError(ErrorData(code=INTERNAL_ERROR, message=f"Search failed: {e}")) from e

        response = {
            "documents": [_document_payload(document) for document in result.documents],
            "total_count": result.total_count,
            "available_products": result.available_products,
            "query_time_ms": result.query_time_ms,
        }
        return response

    finally:
        telemetry.log_tool_call(
            tool_name="search_updates", parameters=parameters, response=response, error=error
        )


@mcp.tool()
async def get_update(id: int) -> dict[str, Any]:
    """Retrieve one release-notes document by its numeric id

    Args:
        id: Document id from search_updates results

    Returns:
        dict: Document fields plus change_kind and commits_url
    """
    telemetry = get_telemetry_service()
    error: Exception | None = None
    response = None

    try:
        if id < 1:
            error = ValueError(f"id must be a positive integer, got: {id}")
            raise McpError(ErrorData(code=INVALID_PARAMS, message=str(error)))

        try:
            _, search_service, _ = _get_services()
            document = search_service.get_by_id(id)
        except Exception as e:
            error = e
            raise McpError(ErrorData(code=INTERNAL_ERROR, message=f"Lookup failed: {e}")) from e

        if document is None:
            error = LookupError(f"Document with ID {id} not found")
            raise McpError(ErrorData(code=NOT_FOUND, message=f"Document with ID {id} not found"))

        response = _document_payload(document)
        return response

    finally:
        telemetry.log_tool_call(
            tool_name="get_update", parameters={"id": id}, response=response, error=error
        )


@mcp.tool()
async def sync_updates(force: bool = False, token: str | None = None) -> dict[str, Any]:
    """Synchronize release notes from the configured GitHub repositories

    Unforced runs are skipped when the last sync is recent or no repository
    changed.

    Args:
        force: Ignore the interval and change checks and refetch everything
        token: GitHub token for this run only, in place of the configured one

    Returns:
        dict: success, document_count, commit_count, duration_ms, skipped, error
    """
    telemetry = get_telemetry_service()
    error: Exception | None = None
    response = None

    try:
        try:
            _, _, refresh_orchestrator = _get_services()
            result = await refresh_orchestrator.run_sync(force=force, credential=token)
        except Exception as e:
            error = e
            raise McpError(ErrorData(code=INTERNAL_ERROR, message=f"Sync failed: {e}")) from e

        response = result.model_dump()
        return response

    finally:
        telemetry.log_tool_call(
            tool_name="sync_updates",
            parameters={"force": force, "token_provided": token is not None},
            response=response,
            error=error,
        )


@mcp.tool()
async def get_sync_status() -> dict[str, Any]:
    """Report the sync checkpoint, store statistics and the latest release commits

    Returns:
        dict: status, last_sync, record_count, last_error, stats and recent_commits
    """
    telemetry = get_telemetry_service()
    error: Exception | None = None
    response = None

    try:
        try:
            store, _, refresh_orchestrator = _get_services()
            checkpoint = store.get_checkpoint()
            stats = store.stats()
            commits = store.recent_commits(STATUS_COMMIT_LIMIT)
        except Exception as e:
            error = e
            raise McpError(
                ErrorData(code=INTERNAL_ERROR, message=f"Status lookup failed: {e}")
            ) from e

        response = checkpoint.model_dump(mode="json")
        response["running"] = refresh_orchestrator.is_running
        response["stats"] = stats.model_dump()
        response["recent_commits"] = [commit.model_dump() for commit in commits]
        return response

    finally:
        telemetry.log_tool_call(
            tool_name="get_sync_status", parameters={}, response=response, error=error
        )


# Both / and /health serve the same check
@mcp.custom_route("/", methods=["GET"])
@mcp.custom_route("/health", methods=["GET"])
def health_check(request):
    return JSONResponse({"status": "ok"})


def _startup_sync() -> None:
    """Initialize background sync on server startup"""
    global _scheduler

    if not config.refresh_enabled:
        logger.info("Background sync is disabled")
        return

    try:
        _, _, refresh_orchestrator = _get_services()
        logger.info("Initializing background sync scheduler")
        _scheduler = BackgroundScheduler()
        refresh_orchestrator.configure_scheduler_sync(
            scheduler=_scheduler,
            interval_hours=config.refresh_interval_hours,
            max_concurrent_jobs=1,
        )
        _scheduler.start()
        logger.info("Background sync scheduler started successfully")
    except Exception as e:
        # Server still serves the existing replica without scheduled syncs
        logger.error(f"Failed to start background sync scheduler: {e}")


def _shutdown_sync() -> None:
    """Gracefully shutdown scheduler and store"""
    global _scheduler

    if _refresh_orchestrator:
        try:
            _refresh_orchestrator.stop_scheduler_sync()
        except Exception as e:
            logger.error(f"Error shutting down sync orchestrator: {e}")

    if _scheduler:
        try:
            logger.info("Shutting down background sync scheduler")
            _scheduler.shutdown(wait=False)
            logger.info("Background sync scheduler stopped")
        except Exception as e:
            logger.error(f"Error shutting down scheduler: {e}")
        _scheduler = None

    if _store:
        _store.close()


def main() -> None:
    """Entry point for the MCP server"""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    _startup_sync()

    try:
        mcp.run(transport="streamable-http", host=config.mcp_host, port=config.mcp_port)
    finally:
        _shutdown_sync()


if __name__ == "__main__":
    main()
