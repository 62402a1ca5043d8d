"""List and filter repository trees into candidate release-notes documents"""

import logging

from whatsnew_mcp.models.document import CandidateDocument, TreeEntry
from whatsnew_mcp.models.sources_config import GitHubConfig, SourceRepository, SyncSettings
from whatsnew_mcp.services.concurrency import Outcome, gather_limited
from whatsnew_mcp.services.github_client import GitHubClient
from whatsnew_mcp.services.heuristics import (
    DEFAULT_MARKERS,
    build_file_url,
    build_raw_url,
    extract_version,
    has_document_extension,
    infer_product,
    is_release_notes_path,
    is_under_prefix,
)

logger = logging.getLogger(__name__)


class TreeScanner:
    """Turn a source's recursive tree into CandidateDocuments"""

    def __init__(
        self,
        client: GitHubClient,
        settings: SyncSettings | None = None,
        *,
        product_mapping: dict[str, str] | None = None,
        default_product: str | None = None,
        markers: tuple[str, ...] = DEFAULT_MARKERS,
    ):
        self.client = client
        self.settings = settings or SyncSettings()
        self.product_mapping = product_mapping
        self.default_product = default_product
        self.markers = markers

    def filter_entries(
        self, source: SourceRepository, entries: list[TreeEntry]
    ) -> list[CandidateDocument]:
        """
        Keep release-notes documents under the source's base path

        Args:
            source: Source the entries belong to
            entries: Raw tree entries

        Returns:
            Candidate documents with inferred product and version
        """
        github_config: GitHubConfig = self.client.github_config
        candidates = []

        for entry in entries:
            if entry.type != "blob":
                continue
            if not has_document_extension(entry.path):
                continue
            if not is_under_prefix(entry.path, source.base_path):
                continue
            if not is_release_notes_path(entry.path, self.markers):
                continue

            candidates.append(
                CandidateDocument(
                    source=source,
                    file_path=entry.path,
                    content_id=entry.sha,
                    size=entry.size,
                    product=infer_product(entry.path, self.product_mapping, self.default_product),
                    version=extract_version(entry.path),
                    file_url=build_file_url(
                        github_config.web_url, source.owner, source.repo, source.branch, entry.path
                    ),
                    raw_url=build_raw_url(
                        github_config.raw_url, source.owner, source.repo, source.branch, entry.path
                    ),
                )
            )

        return candidates

    async def scan(self, source: SourceRepository) -> list[CandidateDocument]:
        """List one source's tree (single request) and filter it"""
        logger.info(f"Fetching repository tree for {source.key}@{source.branch}")
        listing = await self.client.get_tree(source)

        if listing.truncated:
            logger.warning(f"Repository tree was truncated for {source.key}, results are partial")

        candidates = self.filter_entries(source, listing.entries)
        logger.info(f"Found {len(candidates)} release-notes files in {source.key}")
        return candidates

    async def scan_all(
        self, sources: list[SourceRepository]
    ) -> list[Outcome[SourceRepository, list[CandidateDocument]]]:
        """Scan sources in bounded parallel; failures are reported per source"""
        return await gather_limited(sources, self.scan, self.settings.tree_concurrency)
