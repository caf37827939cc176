"""Local content mirror on SQLite with an FTS5 full-text index.

The store is the only component that persists mirrored items and sync
cursors. Every write that touches an item row also touches its FTS entry,
and both happen in one transaction: a failure rolls back both.

The API is synchronous. Async callers run it through ``asyncio.to_thread``;
a lock serializes access to the shared connection.
"""

import dataclasses
import json
import logging
import sqlite3
import threading
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from .errors import DataConflictError, ValidationError, classify_error
from .metrics import mirrored_items
from .models import ContentStats, MirroredItem, SearchHit, SourceKind, VersionInfo
from .validation import compute_content_hash, validate_item

logger = logging.getLogger("ji_mirror.store")

__all__ = ["ContentMirrorStore", "DEFAULT_MAX_BODY_BYTES"]

DEFAULT_MAX_BODY_BYTES = 10 * 1024 * 1024
MAX_QUERY_LENGTH = 1000

SCHEMA_VERSION = 1

_SCHEMA = """
CREATE TABLE IF NOT EXISTS mirrored_items (
    id TEXT PRIMARY KEY,
    source TEXT NOT NULL CHECK (source IN ('jira_issue', 'confluence_page')),
    remote_id TEXT NOT NULL,
    scope_key TEXT NOT NULL,
    title TEXT NOT NULL,
    body TEXT NOT NULL,
    url TEXT NOT NULL DEFAULT '',
    metadata TEXT NOT NULL DEFAULT '{}',
    revision INTEGER,
    created_at TEXT,
    updated_at TEXT,
    synced_at TEXT NOT NULL,
    content_hash TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_mirrored_items_scope ON mirrored_items (source, scope_key);
CREATE INDEX IF NOT EXISTS idx_mirrored_items_synced ON mirrored_items (synced_at);
CREATE VIRTUAL TABLE IF NOT EXISTS mirrored_items_fts USING fts5(
    id UNINDEXED,
    title,
    body
);
CREATE TABLE IF NOT EXISTS sync_cursors (
    source TEXT NOT NULL,
    scope_key TEXT NOT NULL,
    last_synced_at TEXT NOT NULL,
    PRIMARY KEY (source, scope_key)
);
CREATE TABLE IF NOT EXISTS schema_migrations (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);
"""

_ITEM_COLUMNS = (
    "id, source, remote_id, scope_key, title, body, url, metadata, "
    "revision, created_at, updated_at, synced_at, content_hash"
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_text(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _from_text(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _fts_query(query: str) -> str:
    """Quote each whitespace-separated term so user input is never FTS syntax."""
    terms = query.split()
    return " ".join('"' + term.replace('"', '""') + '"' for term in terms)


class ContentMirrorStore:
    """SQLite-backed mirror of remote issues and pages.

    Attributes:
        path: Database file (":memory:" for a private in-memory store)
        max_body_bytes: Largest accepted body, in UTF-8 bytes

    Example:
        >>> store = ContentMirrorStore(config.get_db_path())
        >>> store.upsert(item)
        >>> store.has_changed(item.item_id, new_hash)
    """

    def __init__(
        self,
        path: Path | str,
        *,
        max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.path = path
        self.max_body_bytes = max_body_bytes
        self._clock = clock
        self._lock = threading.RLock()

        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        # Autocommit mode: transactions are opened explicitly in _transaction()
        self._conn = sqlite3.connect(str(path), check_same_thread=False, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        with self._errors("initialize"):
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._migrate()

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as e:
            error = classify_error(e)
            logger.error(
                "store_operation_failed",
                extra={"operation": operation, "error_tag": error.tag.value, "error": str(e)},
            )
            raise error from e

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[sqlite3.Connection]:
        with self._lock, self._errors(operation):
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")

    def _query(self, sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
        with self._lock, self._errors("query"):
            return self._conn.execute(sql, tuple(params)).fetchall()

    def _migrate(self) -> None:
        self._conn.executescript(_SCHEMA)
        applied = self._conn.execute(
            "SELECT 1 FROM schema_migrations WHERE version = ?", (SCHEMA_VERSION,)
        ).fetchone()
        if applied is None:
            self._conn.execute(
                "INSERT INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                (SCHEMA_VERSION, _to_text(self._clock())),
            )
            logger.info("store_schema_applied", extra={"version": SCHEMA_VERSION})

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> MirroredItem:
        return MirroredItem(
            source=SourceKind(row["source"]),
            remote_id=row["remote_id"],
            scope_key=row["scope_key"],
            title=row["title"],
            body=row["body"],
            url=row["url"],
            metadata=json.loads(row["metadata"]),
            revision=row["revision"],
            created_at=_from_text(row["created_at"]),
            updated_at=_from_text(row["updated_at"]),
            synced_at=_from_text(row["synced_at"]),
            content_hash=row["content_hash"],
        )

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "ContentMirrorStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # item writes
    # ------------------------------------------------------------------

    def upsert(self, item: MirroredItem) -> MirroredItem:
        """Insert or replace an item and its full-text entry atomically.

        The content hash is always recomputed from the item's content and
        ``synced_at`` is set to now; incoming values for both are ignored.
        Writing the same content twice leaves one row with the same hash and
        a later ``synced_at``.

        Returns:
            The item as stored

        Raises:
            ValidationError: Missing required field or unknown source
            ContentTooLargeError: Body exceeds max_body_bytes
            DataConflictError: Stored revision is newer than the incoming one
            StorageError: Database failure (transaction rolled back)
        """
        validate_item(item, self.max_body_bytes)
        stored = dataclasses.replace(
            item,
            content_hash=compute_content_hash(item),
            synced_at=self._clock(),
        )
        item_id = stored.item_id

        with self._transaction("upsert") as conn:
            existing = conn.execute(
                "SELECT revision FROM mirrored_items WHERE id = ?", (item_id,)
            ).fetchone()
            if (
                existing is not None
                and existing["revision"] is not None
                and stored.revision is not None
                and stored.revision < existing["revision"]
            ):
                raise DataConflictError(
                    f"Stale write for {item_id}: stored revision {existing['revision']}, "
                    f"incoming {stored.revision}",
                    expected=existing["revision"],
                    actual=stored.revision,
                )

            conn.execute(
                f"""
                INSERT INTO mirrored_items ({_ITEM_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    source = excluded.source,
                    remote_id = excluded.remote_id,
                    scope_key = excluded.scope_key,
                    title = excluded.title,
                    body = excluded.body,
                    url = excluded.url,
                    metadata = excluded.metadata,
                    revision = excluded.revision,
                    created_at = COALESCE(excluded.created_at, mirrored_items.created_at),
                    updated_at = excluded.updated_at,
                    synced_at = excluded.synced_at,
                    content_hash = excluded.content_hash
                """,
                (
                    item_id,
                    stored.source.value,
                    stored.remote_id,
                    stored.scope_key,
                    stored.title,
                    stored.body,
                    stored.url,
                    json.dumps(stored.metadata, sort_keys=True, default=str),
                    stored.revision,
                    _to_text(stored.created_at),
                    _to_text(stored.updated_at),
                    _to_text(stored.synced_at),
                    stored.content_hash,
                ),
            )
            conn.execute("DELETE FROM mirrored_items_fts WHERE id = ?", (item_id,))
            conn.execute(
                "INSERT INTO mirrored_items_fts (id, title, body) VALUES (?, ?, ?)",
                (item_id, stored.title, stored.body),
            )

        logger.debug("item_upserted", extra={"item_id": item_id, "content_hash": stored.content_hash})
        return stored

    def delete_items(self, item_ids: Iterable[str]) -> int:
        """Delete items and their full-text entries. Returns rows removed."""
        ids = list(item_ids)
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        with self._transaction("delete_items") as conn:
            conn.execute(f"DELETE FROM mirrored_items_fts WHERE id IN ({placeholders})", ids)
            deleted = conn.execute(
                f"DELETE FROM mirrored_items WHERE id IN ({placeholders})", ids
            ).rowcount
        logger.info("items_deleted", extra={"requested": len(ids), "deleted": deleted})
        return deleted

    def delete(self, item_id: str) -> bool:
        return self.delete_items([item_id]) == 1

    def delete_by_scope(self, scope_key: str, source: SourceKind | None = None) -> int:
        """Delete every item of a project/space, plus the scope's sync cursor.

        Dropping the cursor makes the next incremental sync re-list the scope.
        """
        where = "scope_key = ?"
        params: list[Any] = [scope_key]
        if source is not None:
            where += " AND source = ?"
            params.append(source.value)

        with self._transaction("delete_by_scope") as conn:
            conn.execute(
                f"DELETE FROM mirrored_items_fts WHERE id IN "
                f"(SELECT id FROM mirrored_items WHERE {where})",
                params,
            )
            deleted = conn.execute(f"DELETE FROM mirrored_items WHERE {where}", params).rowcount
            conn.execute(f"DELETE FROM sync_cursors WHERE {where}", params)

        logger.info(
            "scope_deleted",
            extra={"scope_key": scope_key, "source": source.value if source else None, "deleted": deleted},
        )
        return deleted

    def cleanup_older_than(self, days: int) -> int:
        """Delete items not re-synced within the last ``days`` days."""
        if days < 0:
            raise ValidationError("days must be >= 0", field="days", value=days)
        cutoff = _to_text(self._clock() - timedelta(days=days))
        with self._transaction("cleanup_older_than") as conn:
            conn.execute(
                "DELETE FROM mirrored_items_fts WHERE id IN "
                "(SELECT id FROM mirrored_items WHERE synced_at < ?)",
                (cutoff,),
            )
            deleted = conn.execute(
                "DELETE FROM mirrored_items WHERE synced_at < ?", (cutoff,)
            ).rowcount
        logger.info("old_items_cleaned", extra={"days": days, "deleted": deleted})
        return deleted

    # ------------------------------------------------------------------
    # item reads
    # ------------------------------------------------------------------

    def get(self, item_id: str) -> MirroredItem | None:
        rows = self._query(f"SELECT {_ITEM_COLUMNS} FROM mirrored_items WHERE id = ?", (item_id,))
        return self._row_to_item(rows[0]) if rows else None

    def contains(self, item_id: str) -> bool:
        return bool(self._query("SELECT 1 FROM mirrored_items WHERE id = ?", (item_id,)))

    def has_changed(self, item_id: str, new_hash: str) -> bool:
        """True when the item is missing or its stored hash differs."""
        rows = self._query("SELECT content_hash FROM mirrored_items WHERE id = ?", (item_id,))
        return not rows or rows[0]["content_hash"] != new_hash

    def versions_by_scope(self, scope_key: str, source: SourceKind) -> dict[str, VersionInfo]:
        """Map remote id -> version info for every stored item of a scope."""
        rows = self._query(
            "SELECT remote_id, revision, updated_at, synced_at FROM mirrored_items "
            "WHERE scope_key = ? AND source = ?",
            (scope_key, source.value),
        )
        return {
            row["remote_id"]: VersionInfo(
                revision=row["revision"],
                updated_at=_from_text(row["updated_at"]),
                synced_at=_from_text(row["synced_at"]),
            )
            for row in rows
        }

    def iter_scope(self, scope_key: str, source: SourceKind | None = None) -> Iterator[MirroredItem]:
        """Yield a scope's items, most recently synced first."""
        sql = f"SELECT {_ITEM_COLUMNS} FROM mirrored_items WHERE scope_key = ?"
        params: list[Any] = [scope_key]
        if source is not None:
            sql += " AND source = ?"
            params.append(source.value)
        for row in self._query(sql + " ORDER BY synced_at DESC, id", params):
            yield self._row_to_item(row)

    def iter_source(self, source: SourceKind) -> Iterator[MirroredItem]:
        rows = self._query(
            f"SELECT {_ITEM_COLUMNS} FROM mirrored_items WHERE source = ? "
            "ORDER BY synced_at DESC, id",
            (source.value,),
        )
        for row in rows:
            yield self._row_to_item(row)

    def search(
        self,
        query: str,
        *,
        source: SourceKind | None = None,
        scope_key: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[SearchHit]:
        """Full-text search over titles and bodies.

        ``id:<item id>`` returns that exact item when it exists.

        Raises:
            ValidationError: Empty query, query over 1000 characters, or a
                non-positive limit
        """
        query = (query or "").strip()
        if not query:
            raise ValidationError("Search query must not be empty", field="query", value=query)
        if len(query) > MAX_QUERY_LENGTH:
            raise ValidationError(
                f"Search query exceeds {MAX_QUERY_LENGTH} characters",
                field="query",
                value=query,
            )
        if limit < 1 or offset < 0:
            raise ValidationError("limit must be >= 1 and offset >= 0", field="limit", value=limit)

        if query.startswith("id:"):
            item = self.get(query[3:].strip())
            if item is None:
                return []
            return [
                SearchHit(
                    item_id=item.item_id,
                    source=item.source,
                    scope_key=item.scope_key,
                    title=item.title,
                    url=item.url,
                    snippet=item.body[:200],
                    updated_at=item.updated_at,
                )
            ]

        sql = (
            "SELECT m.id, m.source, m.scope_key, m.title, m.url, m.updated_at, "
            "snippet(mirrored_items_fts, -1, '[', ']', '...', 16) AS excerpt "
            "FROM mirrored_items_fts JOIN mirrored_items m ON m.id = mirrored_items_fts.id "
            "WHERE mirrored_items_fts MATCH ?"
        )
        params: list[Any] = [_fts_query(query)]
        if source is not None:
            sql += " AND m.source = ?"
            params.append(source.value)
        if scope_key is not None:
            sql += " AND m.scope_key = ?"
            params.append(scope_key)
        sql += " ORDER BY rank LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        return [
            SearchHit(
                item_id=row["id"],
                source=SourceKind(row["source"]),
                scope_key=row["scope_key"],
                title=row["title"],
                url=row["url"],
                snippet=row["excerpt"],
                updated_at=_from_text(row["updated_at"]),
            )
            for row in self._query(sql, params)
        ]

    def stats(self) -> ContentStats:
        """Totals per source and per scope, plus the latest sync time."""
        stats = ContentStats()
        for row in self._query(
            "SELECT source, scope_key, COUNT(*) AS n FROM mirrored_items GROUP BY source, scope_key"
        ):
            source = SourceKind(row["source"])
            stats.total += row["n"]
            stats.by_source[source.value] = stats.by_source.get(source.value, 0) + row["n"]
            stats.by_scope[f"{source.namespace}:{row['scope_key']}"] = row["n"]

        last = self._query("SELECT MAX(last_synced_at) AS last FROM sync_cursors")
        stats.last_synced_at = _from_text(last[0]["last"]) if last else None

        for source in SourceKind:
            mirrored_items.labels(source=source.value).set(stats.by_source.get(source.value, 0))
        return stats

    # ------------------------------------------------------------------
    # sync cursors
    # ------------------------------------------------------------------

    def get_cursor(self, source: SourceKind, scope_key: str) -> datetime | None:
        rows = self._query(
            "SELECT last_synced_at FROM sync_cursors WHERE source = ? AND scope_key = ?",
            (source.value, scope_key),
        )
        return _from_text(rows[0]["last_synced_at"]) if rows else None

    def set_cursor(self, source: SourceKind, scope_key: str, started_at: datetime) -> None:
        with self._transaction("set_cursor") as conn:
            conn.execute(
                "INSERT INTO sync_cursors (source, scope_key, last_synced_at) VALUES (?, ?, ?) "
                "ON CONFLICT(source, scope_key) DO UPDATE SET last_synced_at = excluded.last_synced_at",
                (source.value, scope_key, _to_text(started_at)),
            )
        logger.debug(
            "sync_cursor_updated",
            extra={"source": source.value, "scope_key": scope_key, "last_synced_at": _to_text(started_at)},
        )
