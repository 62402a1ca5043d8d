"""CLI command for running a single sync"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime

from dotenv import load_dotenv

from whatsnew_mcp.config import AppConfig
from whatsnew_mcp.models.sources_config import GitHubConfig, SyncSettings
from whatsnew_mcp.services.refresh_orchestrator import RefreshOrchestrator
from whatsnew_mcp.services.store import Store, StoreError
from whatsnew_mcp.utils.sources_loader import load_sources_config


def setup_logging() -> None:
    """Configure logging for CLI (stdout for K8s)"""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="whatsnew-refresh",
        description="Synchronize what's-new documents from GitHub into the local database",
    )
    parser.add_argument(
        "--force", action="store_true", help="Ignore interval and change checks"
    )
    parser.add_argument("--sources", help="Path to sources.yaml (default: from config)")
    parser.add_argument("--db", help="Path to the SQLite database (default: from config)")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for the sync CLI command

    Returns:
        int: Exit code (0 for success, 1 for failure)
    """
    load_dotenv()
    args = parse_args(argv)
    setup_logging()
    logger = logging.getLogger(__name__)

    app_config = AppConfig()
    sources_path = args.sources or app_config.sources_config_path
    db_path = args.db or app_config.db_path

    try:
        logger.info(f"Starting sync at {datetime.now().isoformat()}")
        sources_config = load_sources_config(sources_path)

        with Store(db_path) as store:
            orchestrator = RefreshOrchestrator(
                store,
                sources_config,
                github_config=GitHubConfig.from_app_config(app_config),
                settings=SyncSettings.from_app_config(app_config),
            )
            result = asyncio.run(orchestrator.run_sync(force=args.force))
            stats = store.stats()

    except FileNotFoundError as e:
        logger.error(f"Configuration file not found: {e}")
        return 1
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1
    except StoreError as e:
        logger.error(f"Database error: {e}")
        return 1
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        return 1

    if not result.success:
        logger.error(f"✗ Sync failed: {result.error}")
        return 1

    if result.skipped:
        logger.info(f"Sync skipped, nothing to do ({result.duration_ms}ms)")
    else:
        logger.info(
            f"✓ Sync complete: {result.document_count} documents, "
            f"{result.commit_count} commits in {result.duration_ms}ms"
        )
    if result.error:
        logger.warning(f"Partial failures: {result.error}")
    logger.info(
        f"Database: {stats.document_count} documents, {stats.commit_count} commits, "
        f"{stats.product_count} products, {stats.size_bytes / 1024:.1f} KiB"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
