"""Data models for the what's-new sync server"""

from whatsnew_mcp.models.document import (
    CandidateDocument,
    CommitDetail,
    CommitPage,
    CommitRecord,
    CommitSummary,
    DocumentRecord,
    RevisionStamp,
    TreeEntry,
    TreeListing,
)
from whatsnew_mcp.models.search_result import SearchFilters, SearchOutput
from whatsnew_mcp.models.sources_config import (
    GitHubConfig,
    SourceRepository,
    SourcesConfig,
    SyncSettings,
)
from whatsnew_mcp.models.sync_state import SyncCheckpoint, SyncResult, SyncStatus, StoreStats

__all__ = [
    "CandidateDocument",
    "CommitDetail",
    "CommitPage",
    "CommitRecord",
    "CommitSummary",
    "DocumentRecord",
    "RevisionStamp",
    "TreeEntry",
    "TreeListing",
    "SearchFilters",
    "SearchOutput",
    "GitHubConfig",
    "SourceRepository",
    "SourcesConfig",
    "SyncSettings",
    "SyncCheckpoint",
    "SyncResult",
    "SyncStatus",
    "StoreStats",
]
