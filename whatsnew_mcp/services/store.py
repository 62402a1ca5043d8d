"""SQLite store for documents, commits, repository revisions and the sync checkpoint"""

import logging
import sqlite3
import threading
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path

from whatsnew_mcp.models.document import CommitRecord, DocumentRecord
from whatsnew_mcp.models.search_result import SearchFilters
from whatsnew_mcp.models.sync_state import StoreStats, SyncCheckpoint, SyncStatus
from whatsnew_mcp.services.heuristics import normalize_release_date
from whatsnew_mcp.services.query_builder import DOCUMENT_COLUMNS, build_document_query

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

_NOW_SQL = "(strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))"

_BASE_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL DEFAULT {_NOW_SQL}
);

CREATE TABLE IF NOT EXISTS sync_checkpoint (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    status TEXT NOT NULL DEFAULT 'idle',
    last_sync TEXT,
    last_duration_ms INTEGER,
    record_count INTEGER NOT NULL DEFAULT 0,
    last_error TEXT,
    updated_at TEXT NOT NULL DEFAULT {_NOW_SQL}
);

INSERT OR IGNORE INTO sync_checkpoint (id, status, record_count) VALUES (1, 'idle', 0);

CREATE TABLE IF NOT EXISTS documents (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    path TEXT NOT NULL UNIQUE,
    repository TEXT NOT NULL,
    file_path TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    product TEXT NOT NULL,
    version TEXT,
    release_date TEXT,
    preview_date TEXT,
    ga_date TEXT,
    content_id TEXT,
    last_change_date TEXT,
    file_url TEXT NOT NULL,
    raw_content_url TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT {_NOW_SQL},
    updated_at TEXT NOT NULL DEFAULT {_NOW_SQL}
);

CREATE TABLE IF NOT EXISTS commits (
    sha TEXT PRIMARY KEY,
    message TEXT NOT NULL,
    author TEXT,
    date TEXT NOT NULL,
    files_changed INTEGER,
    additions INTEGER,
    deletions INTEGER
);

CREATE INDEX IF NOT EXISTS idx_commits_date ON commits(date);
"""

# Columns added after the first schema version; applied when missing
_MIGRATIONS: dict[int, list[str]] = {
    2: [
        "ALTER TABLE documents ADD COLUMN first_observed_date TEXT",
        "ALTER TABLE documents ADD COLUMN last_change_revision TEXT",
        "ALTER TABLE documents ADD COLUMN release_date_iso TEXT",
        """
        CREATE TABLE IF NOT EXISTS repository_revisions (
            repo_key TEXT PRIMARY KEY,
            revision TEXT NOT NULL,
            checked_at TEXT NOT NULL DEFAULT {now}
        )
        """.format(now=_NOW_SQL),
    ],
}

_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_documents_product ON documents(product);
CREATE INDEX IF NOT EXISTS idx_documents_version ON documents(version);
CREATE INDEX IF NOT EXISTS idx_documents_release_date_iso ON documents(release_date_iso);
CREATE INDEX IF NOT EXISTS idx_documents_last_change_date ON documents(last_change_date);
"""

_FTS_SCHEMA = """
CREATE VIRTUAL TABLE IF NOT EXISTS documents_fts USING fts5(
    title,
    description,
    content='documents',
    content_rowid='id'
);

CREATE TRIGGER IF NOT EXISTS documents_ai AFTER INSERT ON documents BEGIN
    INSERT INTO documents_fts(rowid, title, description)
    VALUES (new.id, new.title, new.description);
END;

CREATE TRIGGER IF NOT EXISTS documents_au AFTER UPDATE ON documents BEGIN
    INSERT INTO documents_fts(documents_fts, rowid, title, description)
    VALUES ('delete', old.id, old.title, old.description);
    INSERT INTO documents_fts(rowid, title, description)
    VALUES (new.id, new.title, new.description);
END;

CREATE TRIGGER IF NOT EXISTS documents_ad AFTER DELETE ON documents BEGIN
    INSERT INTO documents_fts(documents_fts, rowid, title, description)
    VALUES ('delete', old.id, old.title, old.description);
END;
"""

_BACKFILL_FIELDS = ("first_observed_date", "last_change_date")
_CHECKPOINT_FIELDS = ("status", "last_sync", "last_duration_ms", "record_count", "last_error")

# Stay under SQLITE_MAX_VARIABLE_NUMBER on older builds
_IN_CHUNK_SIZE = 500


class StoreError(Exception):
    """Raised when the store cannot be opened or migrated"""

    def __init__(self, message: str, cause: Exception | None = None):
        self.message = message
        self.cause = cause
        super().__init__(message)


def _utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _chunks(items: list[str], size: int = _IN_CHUNK_SIZE) -> Iterable[list[str]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _row_to_document(row: sqlite3.Row) -> DocumentRecord:
    return DocumentRecord(**{column: row[column] for column in DOCUMENT_COLUMNS})


def _row_to_commit(row: sqlite3.Row) -> CommitRecord:
    return CommitRecord(**dict(row))


class Store:
    """Persistent local replica; one connection shared behind a lock"""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.fts_enabled = False
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreError("Store is not open")
        return self._conn

    def open(self) -> "Store":
        """
        Open the database, create the schema and apply pending migrations

        Returns:
            self, for chaining

        Raises:
            StoreError: If the database cannot be opened or migrated
        """
        if self._conn is not None:
            return self

        is_memory = self.db_path == ":memory:"
        if not is_memory:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            if not is_memory:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA busy_timeout = 5000")
        except sqlite3.Error as e:
            raise StoreError(f"Failed to open database {self.db_path}: {e}", e) from e

        self._conn = conn
        try:
            with self._lock:
                self._create_schema()
        except sqlite3.Error as e:
            self.close()
            raise StoreError(f"Failed to initialize schema in {self.db_path}: {e}", e) from e

        logger.info(f"Opened store at {self.db_path} (fts_enabled={self.fts_enabled})")
        return self

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "Store":
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _create_schema(self) -> None:
        conn = self.conn
        conn.executescript(_BASE_SCHEMA)
        conn.execute("INSERT OR IGNORE INTO schema_version (version) VALUES (1)")
        self._migrate()
        conn.executescript(_INDEXES)
        self.fts_enabled = self._create_fts()
        conn.commit()

    def _columns(self, table: str) -> set[str]:
        return {row["name"] for row in self.conn.execute(f"PRAGMA table_info({table})")}

    def _migrate(self) -> None:
        """Apply additive migrations; safe to run on every open"""
        conn = self.conn
        for version, statements in sorted(_MIGRATIONS.items()):
            for statement in statements:
                words = statement.split()
                if words[:2] == ["ALTER", "TABLE"]:
                    table, column = words[2], words[5]
                    if column in self._columns(table):
                        continue
                    logger.info(f"Migrating: adding {table}.{column}")
                conn.execute(statement)
            conn.execute("INSERT OR IGNORE INTO schema_version (version) VALUES (?)", (version,))

        # Backfill the normalized date for rows written before the column existed
        rows = conn.execute(
            "SELECT id, release_date FROM documents "
            "WHERE release_date IS NOT NULL AND release_date_iso IS NULL"
        ).fetchall()
        for row in rows:
            conn.execute(
                "UPDATE documents SET release_date_iso = ? WHERE id = ?",
                (normalize_release_date(row["release_date"]), row["id"]),
            )
        conn.commit()

    def _create_fts(self) -> bool:
        conn = self.conn
        existed = (
            conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'documents_fts'"
            ).fetchone()
            is not None
        )
        try:
            conn.executescript(_FTS_SCHEMA)
        except sqlite3.OperationalError as e:
            logger.warning(f"FTS5 unavailable, search falls back to substring matching: {e}")
            return False

        if not existed:
            # Index rows stored before the full-text table was created
            conn.execute("INSERT INTO documents_fts(documents_fts) VALUES ('rebuild')")
        return True

    # Documents

    def upsert_document(self, document: DocumentRecord) -> int:
        """
        Insert or update a document keyed by its path

        Every field is replaced by the incoming values except
        first_observed_date, which keeps the stored value once set.

        Args:
            document: Document to write

        Returns:
            Row id of the stored document
        """
        values = (
            document.path,
            document.repository,
            document.file_path,
            document.title,
            document.description,
            document.product,
            document.version,
            document.release_date,
            normalize_release_date(document.release_date),
            document.preview_date,
            document.ga_date,
            document.content_id,
            document.last_change_date,
            document.last_change_revision,
            document.first_observed_date,
            document.file_url,
            document.raw_content_url,
        )
        with self._lock, self.conn:
            self.conn.execute(
                """
                INSERT INTO documents (
                    path, repository, file_path, title, description, product, version,
                    release_date, release_date_iso, preview_date, ga_date, content_id,
                    last_change_date, last_change_revision, first_observed_date,
                    file_url, raw_content_url
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET
                    repository = excluded.repository,
                    file_path = excluded.file_path,
                    title = excluded.title,
                    description = excluded.description,
                    product = excluded.product,
                    version = excluded.version,
                    release_date = excluded.release_date,
                    release_date_iso = excluded.release_date_iso,
                    preview_date = excluded.preview_date,
                    ga_date = excluded.ga_date,
                    content_id = excluded.content_id,
                    last_change_date = excluded.last_change_date,
                    last_change_revision = excluded.last_change_revision,
                    first_observed_date = COALESCE(
                        documents.first_observed_date, excluded.first_observed_date
                    ),
                    file_url = excluded.file_url,
                    raw_content_url = excluded.raw_content_url,
                    updated_at = strftime('%Y-%m-%dT%H:%M:%SZ', 'now')
                """,
                values,
            )
            row = self.conn.execute(
                "SELECT id FROM documents WHERE path = ?", (document.path,)
            ).fetchone()
        return row["id"]

    def update_last_change(self, path: str, date: str, revision_id: str | None = None) -> bool:
        """Record a newer last-change revision; older or equal dates are ignored"""
        with self._lock, self.conn:
            cursor = self.conn.execute(
                """
                UPDATE documents
                SET last_change_date = ?, last_change_revision = ?,
                    updated_at = strftime('%Y-%m-%dT%H:%M:%SZ', 'now')
                WHERE path = ? AND (last_change_date IS NULL OR last_change_date < ?)
                """,
                (date, revision_id, path, date),
            )
        return cursor.rowcount > 0

    def update_first_observed(self, path: str, date: str) -> bool:
        """Set first_observed_date only where it is still unknown"""
        with self._lock, self.conn:
            cursor = self.conn.execute(
                """
                UPDATE documents
                SET first_observed_date = ?, updated_at = strftime('%Y-%m-%dT%H:%M:%SZ', 'now')
                WHERE path = ? AND first_observed_date IS NULL
                """,
                (date, path),
            )
        return cursor.rowcount > 0

    def get_content_ids(self) -> dict[str, str | None]:
        """Map of document path -> stored content identifier"""
        with self._lock:
            rows = self.conn.execute("SELECT path, content_id FROM documents").fetchall()
        return {row["path"]: row["content_id"] for row in rows}

    def get_documents_missing(self, field: str, paths: list[str]) -> list[str]:
        """
        Subset of paths whose stored field is NULL, in input order

        Args:
            field: first_observed_date or last_change_date
            paths: Document paths to check (unknown paths are ignored)

        Raises:
            ValueError: If field is not a backfillable column
        """
        if field not in _BACKFILL_FIELDS:
            raise ValueError(f"Unsupported field: {field}")

        missing: set[str] = set()
        with self._lock:
            for chunk in _chunks(list(paths)):
                placeholders = ", ".join("?" for _ in chunk)
                rows = self.conn.execute(
                    f"SELECT path FROM documents WHERE {field} IS NULL "
                    f"AND path IN ({placeholders})",
                    chunk,
                ).fetchall()
                missing.update(row["path"] for row in rows)
        return [path for path in paths if path in missing]

    def get_by_id(self, document_id: int) -> DocumentRecord | None:
        with self._lock:
            row = self.conn.execute(
                f"SELECT {', '.join(DOCUMENT_COLUMNS)} FROM documents WHERE id = ?",
                (document_id,),
            ).fetchone()
        return _row_to_document(row) if row else None

    def get_by_path(self, path: str) -> DocumentRecord | None:
        with self._lock:
            row = self.conn.execute(
                f"SELECT {', '.join(DOCUMENT_COLUMNS)} FROM documents WHERE path = ?", (path,)
            ).fetchone()
        return _row_to_document(row) if row else None

    def search(self, filters: SearchFilters) -> tuple[list[DocumentRecord], int]:
        """
        Run a filtered search

        Args:
            filters: Typed filters; every supplied filter must hold

        Returns:
            Tuple of (page of documents, total matches before limit/offset)
        """
        query = build_document_query(filters, self.fts_enabled)
        with self._lock:
            rows = self.conn.execute(query.sql, query.params).fetchall()
            total = self.conn.execute(query.count_sql, query.count_params).fetchone()[0]
        return [_row_to_document(row) for row in rows], total

    def list_distinct_products(self) -> list[str]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT DISTINCT product FROM documents ORDER BY product"
            ).fetchall()
        return [row["product"] for row in rows]

    # Commits

    def upsert_commit(self, commit: CommitRecord) -> None:
        with self._lock, self.conn:
            self.conn.execute(
                """
                INSERT INTO commits (
                    sha, message, author, date, files_changed, additions, deletions
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(sha) DO UPDATE SET
                    message = excluded.message,
                    author = excluded.author,
                    date = excluded.date,
                    files_changed = excluded.files_changed,
                    additions = excluded.additions,
                    deletions = excluded.deletions
                """,
                (
                    commit.sha,
                    commit.message,
                    commit.author,
                    commit.date,
                    commit.files_changed,
                    commit.additions,
                    commit.deletions,
                ),
            )

    def recent_commits(self, limit: int = 20) -> list[CommitRecord]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT sha, message, author, date, files_changed, additions, deletions "
                "FROM commits ORDER BY date DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [_row_to_commit(row) for row in rows]

    # Repository revisions

    def get_repository_revisions(self) -> dict[str, str]:
        """Map of owner/repo -> last successfully scanned tip revision"""
        with self._lock:
            rows = self.conn.execute(
                "SELECT repo_key, revision FROM repository_revisions"
            ).fetchall()
        return {row["repo_key"]: row["revision"] for row in rows}

    def save_repository_revisions(self, revisions: dict[str, str]) -> None:
        """Write all revisions in a single transaction"""
        if not revisions:
            return
        with self._lock, self.conn:
            self.conn.executemany(
                """
                INSERT INTO repository_revisions (repo_key, revision, checked_at)
                VALUES (?, ?, strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
                ON CONFLICT(repo_key) DO UPDATE SET
                    revision = excluded.revision,
                    checked_at = excluded.checked_at
                """,
                list(revisions.items()),
            )

    # Checkpoint

    def get_checkpoint(self) -> SyncCheckpoint:
        with self._lock:
            row = self.conn.execute(
                "SELECT status, last_sync, last_duration_ms, record_count, last_error, updated_at "
                "FROM sync_checkpoint WHERE id = 1"
            ).fetchone()
        if row is None:
            return SyncCheckpoint()
        return SyncCheckpoint(**dict(row))

    def update_checkpoint(self, **fields) -> None:
        """
        Update checkpoint columns

        Args:
            **fields: Any of status, last_sync, last_duration_ms, record_count, last_error

        Raises:
            ValueError: If an unknown field is passed
        """
        unknown = set(fields) - set(_CHECKPOINT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown checkpoint fields: {sorted(unknown)}")
        if not fields:
            return

        values = []
        for name in fields:
            value = fields[name]
            if isinstance(value, SyncStatus):
                value = value.value
            elif isinstance(value, datetime):
                value = value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
            values.append(value)

        assignments = ", ".join(f"{name} = ?" for name in fields)
        with self._lock, self.conn:
            self.conn.execute(
                f"UPDATE sync_checkpoint SET {assignments}, updated_at = ? WHERE id = 1",
                (*values, _utc_now()),
            )

    # Maintenance

    def stats(self) -> StoreStats:
        with self._lock:
            conn = self.conn
            document_count = conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
            commit_count = conn.execute("SELECT COUNT(*) FROM commits").fetchone()[0]
            repository_count = conn.execute(
                "SELECT COUNT(DISTINCT repository) FROM documents"
            ).fetchone()[0]
            product_count = conn.execute(
                "SELECT COUNT(DISTINCT product) FROM documents"
            ).fetchone()[0]
            page_count = conn.execute("PRAGMA page_count").fetchone()[0]
            page_size = conn.execute("PRAGMA page_size").fetchone()[0]

        return StoreStats(
            document_count=document_count,
            commit_count=commit_count,
            repository_count=repository_count,
            product_count=product_count,
            size_bytes=page_count * page_size,
            fts_enabled=self.fts_enabled,
        )

    def integrity_check(self) -> bool:
        """Run PRAGMA integrity_check; False on corruption or query failure"""
        try:
            with self._lock:
                result = self.conn.execute("PRAGMA integrity_check").fetchone()
        except sqlite3.Error as e:
            logger.error(f"Integrity check failed for {self.db_path}: {e}")
            return False
        if result is None or result[0] != "ok":
            detail = result[0] if result else "no result"
            logger.error(f"Database integrity check failed for {self.db_path}: {detail}")
            return False
        return True
