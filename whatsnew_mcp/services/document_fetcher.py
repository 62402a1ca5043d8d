"""Fetch raw release-notes documents and parse their front matter"""

import logging
import posixpath
import re
from dataclasses import dataclass
from datetime import date

import yaml
from markdown_it import MarkdownIt
from mdit_py_plugins.front_matter import front_matter_plugin

from whatsnew_mcp.models.document import CandidateDocument, DocumentRecord
from whatsnew_mcp.models.sources_config import SyncSettings
from whatsnew_mcp.services.concurrency import Outcome, gather_limited
from whatsnew_mcp.services.github_client import GitHubClient

logger = logging.getLogger(__name__)

DATE_KEYS = ("ms.date", "date")


def _header_line(key: str) -> re.Pattern:
    return re.compile(rf"""^{re.escape(key)}:\s*["']?(.+?)["']?\s*$""", re.MULTILINE)


# Line-wise fallback for headers that are not valid YAML
_HEADER_LINE_PATTERNS = {
    key: _header_line(key) for key in ("title", "description", *DATE_KEYS)
}


class DocumentParseError(Exception):
    """Raised when a fetched document cannot be parsed"""

    def __init__(self, path: str, message: str):
        self.path = path
        self.message = message
        super().__init__(f"Failed to parse {path}: {message}")


@dataclass
class FrontMatter:
    """Fields extracted from a document header"""

    title: str | None = None
    description: str | None = None
    date: str | None = None


def _as_text(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, date):
        return value.isoformat()
    text = str(value).strip()
    return text or None


class FrontMatterParser:
    """Extract title/description/date from a markdown document"""

    def __init__(self):
        self.md = MarkdownIt("commonmark")
        self.md.use(front_matter_plugin)

    def parse(self, content: str, path: str = "<document>") -> FrontMatter:
        """
        Parse the leading metadata block, falling back to the first heading

        Args:
            content: Raw markdown text
            path: Document path, used in error messages

        Returns:
            FrontMatter with whichever fields were found

        Raises:
            DocumentParseError: If the document is empty
        """
        if not content.strip():
            raise DocumentParseError(path, "empty document")

        tokens = self.md.parse(content)

        front_matter = FrontMatter()
        for token in tokens:
            if token.type == "front_matter":
                front_matter = self._parse_block(token.content, path)
                break

        if front_matter.title is None:
            front_matter.title = self._first_heading(tokens)
        return front_matter

    def _parse_block(self, block: str, path: str) -> FrontMatter:
        try:
            data = yaml.safe_load(block)
        except yaml.YAMLError as e:
            logger.debug(f"Front matter of {path} is not valid YAML ({e}), reading it line by line")
            return self._parse_lines(block)

        if data is None:
            return FrontMatter()
        if not isinstance(data, dict):
            logger.debug(f"Front matter of {path} is not a mapping, reading it line by line")
            return self._parse_lines(block)

        declared_date = next(
            (_as_text(data[key]) for key in DATE_KEYS if data.get(key) is not None), None
        )
        return FrontMatter(
            title=_as_text(data.get("title")),
            description=_as_text(data.get("description")),
            date=declared_date,
        )

    @staticmethod
    def _parse_lines(block: str) -> FrontMatter:
        values = {}
        for key, pattern in _HEADER_LINE_PATTERNS.items():
            match = pattern.search(block)
            values[key] = _as_text(match.group(1)) if match else None

        return FrontMatter(
            title=values["title"],
            description=values["description"],
            date=next((values[key] for key in DATE_KEYS if values[key]), None),
        )

    @staticmethod
    def _first_heading(tokens: list) -> str | None:
        for index, token in enumerate(tokens):
            if token.type == "heading_open" and token.tag == "h1":
                inline = tokens[index + 1] if index + 1 < len(tokens) else None
                if inline is not None and inline.type == "inline" and inline.content.strip():
                    return inline.content.strip()
        return None


class DocumentFetcher:
    """Retrieve and parse candidate documents"""

    def __init__(
        self,
        client: GitHubClient,
        settings: SyncSettings | None = None,
        parser: FrontMatterParser | None = None,
    ):
        self.client = client
        self.settings = settings or SyncSettings()
        self.parser = parser or FrontMatterParser()

    async def fetch(self, candidate: CandidateDocument) -> DocumentRecord:
        """Fetch raw content and build a DocumentRecord (freshness dates left unset)"""
        content = await self.client.get_raw_content(candidate.source, candidate.file_path)
        front_matter = self.parser.parse(content, candidate.path)

        title = front_matter.title or posixpath.basename(candidate.file_path)
        logger.debug(f"Fetched {candidate.path}")

        return DocumentRecord(
            path=candidate.path,
            repository=candidate.source.key,
            file_path=candidate.file_path,
            title=title,
            description=front_matter.description,
            product=candidate.product,
            version=candidate.version,
            release_date=front_matter.date,
            content_id=candidate.content_id,
            file_url=candidate.file_url,
            raw_content_url=candidate.raw_url,
        )

    async def fetch_all(
        self, candidates: list[CandidateDocument]
    ) -> list[Outcome[CandidateDocument, DocumentRecord]]:
        """Fetch candidates in bounded parallel; each failure stays with its candidate"""
        outcomes = await gather_limited(candidates, self.fetch, self.settings.file_concurrency)
        for outcome in outcomes:
            if not outcome.ok:
                logger.warning(f"✗ Failed to fetch {outcome.item.path}: {outcome.error}")
        return outcomes
