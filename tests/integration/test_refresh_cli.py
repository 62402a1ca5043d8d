"""Integration tests for the whatsnew-refresh CLI"""

import os
from unittest.mock import AsyncMock, patch

import pytest

from whatsnew_mcp.models.sync_state import SyncResult
from whatsnew_mcp.refresh import main, parse_args

SOURCES = """
sources:
  - owner: org
    repo: docs
    base_path: articles
"""


@pytest.fixture
def sources_path(temp_dir):
    path = os.path.join(temp_dir, "sources.yaml")
    with open(path, "w", encoding="utf-8") as f:
        f.write(SOURCES)
    return path


def _run(sources_path, db_path, result, extra=()):
    with patch("whatsnew_mcp.refresh.RefreshOrchestrator") as mock_orchestrator_class:
        mock_orchestrator_class.return_value.run_sync = AsyncMock(return_value=result)
        exit_code = main(["--sources", sources_path, "--db", db_path, *extra])
    return exit_code, mock_orchestrator_class.return_value.run_sync


def test_parse_args_defaults():
    args = parse_args([])

    assert args.force is False
    assert args.sources is None
    assert args.db is None


def test_successful_sync(sources_path, temp_dir):
    db_path = os.path.join(temp_dir, "whatsnew.db")

    exit_code, run_sync = _run(
        sources_path, db_path, SyncResult(success=True, document_count=2), ["--force"]
    )

    assert exit_code == 0
    run_sync.assert_awaited_once_with(force=True)
    assert os.path.exists(db_path)


def test_partial_failures_still_succeed(sources_path, temp_dir):
    result = SyncResult(success=True, document_count=1, error="1 document failed: x")

    exit_code, _ = _run(sources_path, os.path.join(temp_dir, "whatsnew.db"), result)

    assert exit_code == 0


def test_aborted_sync_fails(sources_path, temp_dir):
    result = SyncResult(success=False, error="rate limit exceeded")

    exit_code, _ = _run(sources_path, os.path.join(temp_dir, "whatsnew.db"), result)

    assert exit_code == 1


def test_missing_sources_file(temp_dir):
    exit_code = main(
        [
            "--sources",
            os.path.join(temp_dir, "missing.yaml"),
            "--db",
            os.path.join(temp_dir, "whatsnew.db"),
        ]
    )

    assert exit_code == 1
