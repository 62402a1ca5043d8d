"""Typed filter model translated into parameterized SQL for document search"""

import re
from dataclasses import dataclass

from whatsnew_mcp.models.search_result import SearchFilters

DOCUMENT_COLUMNS = (
    "id",
    "path",
    "repository",
    "file_path",
    "title",
    "description",
    "product",
    "version",
    "release_date",
    "preview_date",
    "ga_date",
    "content_id",
    "last_change_date",
    "last_change_revision",
    "first_observed_date",
    "file_url",
    "raw_content_url",
)

# Declared release date when known, otherwise the day of the last change
EFFECTIVE_DATE_SQL = "COALESCE(d.release_date_iso, substr(d.last_change_date, 1, 10))"

_TOKEN_PATTERN = re.compile(r"\w+", re.UNICODE)


@dataclass(frozen=True)
class Predicate:
    """One WHERE condition with its bound parameters"""

    sql: str
    params: tuple = ()


@dataclass(frozen=True)
class DocumentQuery:
    """A page query plus the matching count query"""

    sql: str
    params: tuple
    count_sql: str
    count_params: tuple


def to_fts_query(text: str) -> str | None:
    """Quote each word as an FTS5 prefix term (implicit AND); None if no words"""
    tokens = _TOKEN_PATTERN.findall(text)
    if not tokens:
        return None
    return " ".join(f'"{token}"*' for token in tokens)


def escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def text_predicate(text: str, fts_enabled: bool) -> Predicate:
    fts_query = to_fts_query(text) if fts_enabled else None
    if fts_query:
        return Predicate(
            "d.id IN (SELECT rowid FROM documents_fts WHERE documents_fts MATCH ?)",
            (fts_query,),
        )
    pattern = f"%{escape_like(text)}%"
    return Predicate(
        "(d.title LIKE ? ESCAPE '\\' OR d.description LIKE ? ESCAPE '\\')",
        (pattern, pattern),
    )


def build_predicates(filters: SearchFilters, fts_enabled: bool) -> list[Predicate]:
    """Translate filters into predicates; every supplied filter must hold"""
    predicates: list[Predicate] = []

    if filters.query and filters.query.strip():
        predicates.append(text_predicate(filters.query.strip(), fts_enabled))
    if filters.product:
        predicates.append(Predicate("d.product = ?", (filters.product,)))
    if filters.version:
        predicates.append(
            Predicate("d.version LIKE ? ESCAPE '\\'", (f"%{escape_like(filters.version)}%",))
        )
    if filters.date_from:
        predicates.append(Predicate(f"{EFFECTIVE_DATE_SQL} >= ?", (filters.date_from.isoformat(),)))
    if filters.date_to:
        predicates.append(Predicate(f"{EFFECTIVE_DATE_SQL} <= ?", (filters.date_to.isoformat(),)))

    return predicates


def build_document_query(filters: SearchFilters, fts_enabled: bool) -> DocumentQuery:
    """
    Build the page and count statements for a search

    Results are ordered by effective date descending with undated rows last.
    """
    predicates = build_predicates(filters, fts_enabled)

    where = ""
    params: tuple = ()
    if predicates:
        where = " WHERE " + " AND ".join(p.sql for p in predicates)
        params = tuple(param for p in predicates for param in p.params)

    columns = ", ".join(f"d.{column}" for column in DOCUMENT_COLUMNS)
    sql = (
        f"SELECT {columns} FROM documents d{where}"
        f" ORDER BY {EFFECTIVE_DATE_SQL} IS NULL, {EFFECTIVE_DATE_SQL} DESC, d.id DESC"
    )
    page_params = params

    if filters.limit is not None or filters.offset:
        sql += " LIMIT ? OFFSET ?"
        limit = filters.limit if filters.limit is not None else -1
        page_params = params + (limit, filters.offset)

    count_sql = f"SELECT COUNT(*) FROM documents d{where}"
    return DocumentQuery(sql=sql, params=page_params, count_sql=count_sql, count_params=params)
