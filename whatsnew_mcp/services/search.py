"""Search service for querying synchronized release-notes documents"""

import time

from whatsnew_mcp.models.document import DocumentRecord
from whatsnew_mcp.models.search_result import SearchFilters, SearchOutput
from whatsnew_mcp.services.store import Store


class SearchService:
    """Handle document search and point lookups"""

    def __init__(self, store: Store):
        self.store = store

    def search(self, filters: SearchFilters) -> SearchOutput:
        """
        Execute a filtered document search

        Args:
            filters: Validated filters; every supplied filter must hold

        Returns:
            SearchOutput: Page of documents, total matches and known products
        """
        start_time = time.time()

        documents, total_count = self.store.search(filters)
        available_products = self.store.list_distinct_products()

        query_time_ms = (time.time() - start_time) * 1000

        return SearchOutput(
            documents=documents,
            total_count=total_count,
            available_products=available_products,
            query_time_ms=query_time_ms,
        )

    def get_by_id(self, document_id: int) -> DocumentRecord | None:
        return self.store.get_by_id(document_id)
