"""SQLite storage of feed watermarks and item delivery state."""

import json
import sqlite3
import threading
from datetime import datetime, timezone

from rssgram.models import FeedItem, Watermark

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS feeds (
    url TEXT PRIMARY KEY,
    last_checked TEXT NOT NULL,
    last_post TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS items (
    id TEXT PRIMARY KEY,
    feed_title TEXT NOT NULL,
    title TEXT NOT NULL,
    link TEXT NOT NULL DEFAULT '',
    description TEXT NOT NULL DEFAULT '',
    image_url TEXT NOT NULL DEFAULT '',
    tags TEXT NOT NULL DEFAULT '[]',
    metadata TEXT NOT NULL DEFAULT '{}',
    published_at TEXT,
    updated_at TEXT,
    is_sent INTEGER NOT NULL DEFAULT 0,
    sent_at TEXT,
    failed_count INTEGER NOT NULL DEFAULT 0,
    modified_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_items_is_sent ON items(is_sent);
CREATE INDEX IF NOT EXISTS idx_items_published_at ON items(published_at);
"""


class StorageError(Exception):
    """Raised when the underlying database fails."""


class Database:
    """SQLite database manager for feed watermarks and items.

    A single connection is shared by the polling and sending loops, so every
    statement runs under an internal lock.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def connect(self) -> None:
        """Open database connection and initialize schema."""
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA_SQL)
        self._conn.commit()

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._lock:
            try:
                cursor = self.conn.execute(sql, params)
                self.conn.commit()
            except sqlite3.Error as e:
                self.conn.rollback()
                raise StorageError(str(e)) from e
        return cursor

    def _fetchall(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self.conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StorageError(str(e)) from e

    # --- Watermark operations ---

    def get_watermark(self, url: str) -> Watermark | None:
        """Look up a feed's watermark. None means the feed was never seen."""
        rows = self._fetchall(
            "SELECT url, last_checked, last_post FROM feeds WHERE url = ?", (url,)
        )
        return _row_to_watermark(rows[0]) if rows else None

    def get_all_watermarks(self) -> list[Watermark]:
        rows = self._fetchall("SELECT url, last_checked, last_post FROM feeds ORDER BY url")
        return [_row_to_watermark(r) for r in rows]

    def upsert_watermark(
        self, url: str, last_checked: datetime, last_posted: datetime
    ) -> None:
        """Insert or update a feed's watermark."""
        self._execute(
            """INSERT INTO feeds (url, last_checked, last_post) VALUES (?, ?, ?)
               ON CONFLICT(url) DO UPDATE SET
                   last_checked = excluded.last_checked,
                   last_post = excluded.last_post""",
            (url, _dt_to_str(last_checked), _dt_to_str(last_posted)),
        )

    def delete_watermark(self, url: str) -> bool:
        """Forget a feed. Returns True if a row was deleted."""
        cursor = self._execute("DELETE FROM feeds WHERE url = ?", (url,))
        return cursor.rowcount > 0

    # --- Item operations ---

    def insert_item(self, item: FeedItem) -> bool:
        """Store a new item.

        Returns:
            True if the row was inserted, False if an item with the same id
            already exists.

        Raises:
            StorageError: If the write fails.
        """
        cursor = self._execute(
            """INSERT INTO items (id, feed_title, title, link, description,
               image_url, tags, metadata, published_at, updated_at, modified_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO NOTHING""",
            (
                item.id,
                item.feed_title,
                item.title,
                item.link,
                item.description,
                item.image_url,
                item.tags_json(),
                item.metadata_json(),
                _dt_to_str(item.published_at),
                _dt_to_str(item.updated_at),
                _dt_to_str(_utcnow()),
            ),
        )
        return cursor.rowcount > 0

    def get_item(self, item_id: str) -> FeedItem | None:
        rows = self._fetchall("SELECT * FROM items WHERE id = ?", (item_id,))
        return _row_to_item(rows[0]) if rows else None

    def get_items_pending_delivery(self, limit: int = 0) -> list[FeedItem]:
        """Unsent items, oldest first. A limit <= 0 returns all of them."""
        query = "SELECT * FROM items WHERE is_sent = 0 ORDER BY published_at, rowid"
        params: tuple = ()
        if limit > 0:
            query += " LIMIT ?"
            params = (limit,)
        return [_row_to_item(r) for r in self._fetchall(query, params)]

    def count_pending_delivery(self) -> int:
        rows = self._fetchall("SELECT COUNT(*) AS cnt FROM items WHERE is_sent = 0")
        return rows[0]["cnt"]

    def count_failed(self) -> int:
        """Count unsent items that have failed at least once."""
        rows = self._fetchall(
            "SELECT COUNT(*) AS cnt FROM items WHERE is_sent = 0 AND failed_count > 0"
        )
        return rows[0]["cnt"]

    def mark_sent(self, item_id: str) -> None:
        now = _dt_to_str(_utcnow())
        self._execute(
            """UPDATE items SET is_sent = 1, sent_at = COALESCE(sent_at, ?),
               modified_at = ? WHERE id = ?""",
            (now, now, item_id),
        )

    def increment_failed_counter(self, item_id: str) -> None:
        self._execute(
            """UPDATE items SET failed_count = failed_count + 1, modified_at = ?
               WHERE id = ?""",
            (_dt_to_str(_utcnow()), item_id),
        )


# --- Helper functions ---


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dt_to_str(dt: datetime | None) -> str | None:
    """Convert datetime to a UTC ISO string for storage.

    All stored timestamps share one offset so that text ordering in SQL
    matches chronological ordering.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def _str_to_dt(s: str | None) -> datetime | None:
    """Convert stored ISO string back to datetime."""
    if not s:
        return None
    return datetime.fromisoformat(s)


def _row_to_watermark(row: sqlite3.Row) -> Watermark:
    return Watermark(
        url=row["url"],
        last_checked=_str_to_dt(row["last_checked"]),
        last_posted=_str_to_dt(row["last_post"]),
    )


def _row_to_item(row: sqlite3.Row) -> FeedItem:
    """Convert a database row to a FeedItem dataclass."""
    return FeedItem(
        id=row["id"],
        feed_title=row["feed_title"],
        title=row["title"],
        link=row["link"],
        image_url=row["image_url"],
        description=row["description"],
        published_at=_str_to_dt(row["published_at"]),
        updated_at=_str_to_dt(row["updated_at"]),
        tags=json.loads(row["tags"] or "[]"),
        metadata=json.loads(row["metadata"] or "{}"),
        is_sent=bool(row["is_sent"]),
        sent_at=_str_to_dt(row["sent_at"]),
        failed_count=row["failed_count"],
    )
