"""Local SQLite cache for merged history, favicons and search tokens."""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator

from history_sync.browser.models import BrowserType, HistoryItem
from history_sync.exceptions import CacheStoreError, CacheStoreInitError
from history_sync.favicons.models import Favicon
from history_sync.store.models import Token

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS favicons (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    url TEXT NOT NULL UNIQUE,
    image_data BLOB
);

CREATE TABLE IF NOT EXISTS history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    browser TEXT NOT NULL,
    profile TEXT NOT NULL,
    url TEXT NOT NULL UNIQUE,
    title TEXT NOT NULL DEFAULT '',
    last_visit INTEGER NOT NULL,
    visit_count INTEGER NOT NULL DEFAULT 0,
    domain TEXT NOT NULL DEFAULT '',
    favicon_id INTEGER REFERENCES favicons(id) ON DELETE SET NULL
);

CREATE INDEX IF NOT EXISTS idx_history_last_visit ON history(last_visit);
CREATE INDEX IF NOT EXISTS idx_history_domain ON history(domain);

CREATE TABLE IF NOT EXISTS tokens (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    text TEXT NOT NULL UNIQUE,
    frequency INTEGER NOT NULL DEFAULT 0,
    last_used INTEGER NOT NULL DEFAULT 0
);
"""

_HISTORY_SELECT = """
SELECT
    h.browser,
    h.profile,
    h.url,
    h.title,
    h.last_visit,
    h.visit_count,
    h.domain,
    f.id AS favicon_id,
    f.url AS favicon_url,
    f.image_data AS favicon_data
FROM history h
LEFT JOIN favicons f ON f.id = h.favicon_id
ORDER BY h.last_visit DESC, h.id ASC
"""


class CacheStore:
    """Durable store shared by every component.

    All reads and writes go through one lock, so at most one transaction is in
    flight at a time regardless of which thread calls in.
    """

    def __init__(self, db_path: Path, busy_timeout_ms: int = 5000):
        self.db_path = Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Open the database and create missing tables. Failure is fatal."""
        logger.info("[DB] Using database at: %s", self.db_path)
        conn: sqlite3.Connection | None = None
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000,
                isolation_level=None,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")
            conn.execute("PRAGMA foreign_keys=ON")
            conn.executescript(SCHEMA)
        except (OSError, sqlite3.Error) as e:
            if conn is not None:
                conn.close()
            raise CacheStoreInitError(f"Cannot open cache database at {self.db_path}: {e}") from e
        with self._lock:
            previous, self._conn = self._conn, conn
        if previous is not None:
            previous.close()

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            if self._conn is None:
                raise CacheStoreError("Cache store is not initialized")
            conn = self._conn
            try:
                conn.execute("BEGIN")
                yield conn
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                _rollback(conn)
                raise CacheStoreError(f"Cache store operation failed: {e}") from e
            except BaseException:
                _rollback(conn)
                raise

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def is_empty(self) -> bool:
        with self._transaction() as conn:
            return conn.execute("SELECT 1 FROM history LIMIT 1").fetchone() is None

    def upsert_items(self, items: Iterable[HistoryItem]) -> list[str]:
        """Insert or update items keyed by URL.

        Returns the distinct domains whose rows are still without a favicon.
        """
        with self._transaction() as conn:
            return self._upsert(conn, items)

    def _upsert(self, conn: sqlite3.Connection, items: Iterable[HistoryItem]) -> list[str]:
        missing: dict[str, None] = {}
        for item in items:
            row = conn.execute("SELECT id FROM history WHERE url = ?", (item.url,)).fetchone()
            if row is not None:
                history_id = row["id"]
                conn.execute(
                    """
                    UPDATE history
                    SET browser = ?, profile = ?, title = ?, last_visit = ?,
                        visit_count = ?, domain = ?
                    WHERE id = ?
                    """,
                    (
                        item.browser.value,
                        item.profile,
                        item.title,
                        item.last_visit,
                        item.visit_count,
                        item.domain,
                        history_id,
                    ),
                )
            else:
                cur = conn.execute(
                    """
                    INSERT INTO history
                        (browser, profile, url, title, last_visit, visit_count, domain)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        item.browser.value,
                        item.profile,
                        item.url,
                        item.title,
                        item.last_visit,
                        item.visit_count,
                        item.domain,
                    ),
                )
                history_id = cur.lastrowid

            if item.favicon is not None:
                favicon_id = self._lookup_or_create_favicon(
                    conn, item.favicon.url, item.favicon.image_data
                )
                conn.execute(
                    "UPDATE history SET favicon_id = ? WHERE id = ?", (favicon_id, history_id)
                )
                continue

            conn.execute(
                """
                UPDATE history
                SET favicon_id = (SELECT id FROM favicons WHERE url = domain)
                WHERE id = ? AND favicon_id IS NULL
                """,
                (history_id,),
            )
            linked = conn.execute(
                "SELECT favicon_id FROM history WHERE id = ?", (history_id,)
            ).fetchone()
            if linked["favicon_id"] is None and item.domain:
                missing[item.domain] = None
        return list(missing)

    def load_page(self, limit: int, offset: int = 0) -> list[HistoryItem]:
        with self._transaction() as conn:
            rows = conn.execute(_HISTORY_SELECT + " LIMIT ? OFFSET ?", (limit, offset)).fetchall()
        return _rows_to_items(rows)

    def load_all(self) -> list[HistoryItem]:
        with self._transaction() as conn:
            rows = conn.execute(_HISTORY_SELECT).fetchall()
        return _rows_to_items(rows)

    def delete_since(self, since_ms: int) -> int:
        """Remove rows visited at or after ``since_ms``."""
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM history WHERE last_visit >= ?", (since_ms,))
            return cur.rowcount

    def replace_since(
        self,
        since_ms: int,
        items: Iterable[HistoryItem],
        browsers: Iterable[BrowserType] | None = None,
        delete_favicons: bool = False,
    ) -> list[str]:
        """Swap the rows visited since ``since_ms`` for ``items`` in one transaction.

        ``browsers`` limits which sources' rows are removed; None removes all.
        Returns the domains still without a favicon, as ``upsert_items`` does.
        """
        with self._transaction() as conn:
            if browsers is None:
                conn.execute("DELETE FROM history WHERE last_visit >= ?", (since_ms,))
            else:
                for browser in browsers:
                    conn.execute(
                        "DELETE FROM history WHERE last_visit >= ? AND browser = ?",
                        (since_ms, browser.value),
                    )
            if delete_favicons:
                logger.info("[DB] Deleting all favicons from DB")
                conn.execute("DELETE FROM favicons")
            return self._upsert(conn, items)

    # ------------------------------------------------------------------
    # Favicons
    # ------------------------------------------------------------------

    def get_favicon(self, domain: str) -> Favicon | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT id, url, image_data FROM favicons WHERE url = ? LIMIT 1", (domain,)
            ).fetchone()
        if row is None:
            return None
        return Favicon(id=row["id"], url=row["url"], image_data=_as_bytes(row["image_data"]))

    def save_favicon(self, domain: str, image_data: bytes, overwrite: bool = True) -> Favicon:
        """Lookup-or-create the favicon row for ``domain`` and link its history rows."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT id, image_data FROM favicons WHERE url = ?", (domain,)
            ).fetchone()
            if row is None:
                cur = conn.execute(
                    "INSERT INTO favicons (url, image_data) VALUES (?, ?)", (domain, image_data)
                )
                favicon = Favicon(id=cur.lastrowid, url=domain, image_data=image_data)
            elif overwrite:
                conn.execute(
                    "UPDATE favicons SET image_data = ? WHERE id = ?", (image_data, row["id"])
                )
                favicon = Favicon(id=row["id"], url=domain, image_data=image_data)
            else:
                favicon = Favicon(id=row["id"], url=domain, image_data=_as_bytes(row["image_data"]))
            conn.execute(
                "UPDATE history SET favicon_id = ? WHERE domain = ?", (favicon.id, domain)
            )
        return favicon

    def delete_all_favicons(self) -> int:
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM favicons")
            return cur.rowcount

    @staticmethod
    def _lookup_or_create_favicon(
        conn: sqlite3.Connection, url: str, image_data: bytes | None
    ) -> int:
        row = conn.execute("SELECT id FROM favicons WHERE url = ?", (url,)).fetchone()
        if row is not None:
            return row["id"]
        cur = conn.execute(
            "INSERT INTO favicons (url, image_data) VALUES (?, ?)", (url, image_data or b"")
        )
        return cur.lastrowid

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def record_tokens(self, words: Iterable[str], now_ms: int) -> None:
        with self._transaction() as conn:
            for word in words:
                conn.execute(
                    """
                    INSERT INTO tokens (text, frequency, last_used) VALUES (?, 1, ?)
                    ON CONFLICT(text) DO UPDATE SET
                        frequency = frequency + 1,
                        last_used = excluded.last_used
                    """,
                    (word, now_ms),
                )

    def get_token(self, text: str) -> Token | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT text, frequency, last_used FROM tokens WHERE text = ?", (text,)
            ).fetchone()
        if row is None:
            return None
        return Token(text=row["text"], frequency=row["frequency"], last_used=row["last_used"])

    def suggestions(self, prefix: str, limit: int = 5) -> list[str]:
        """Tokens starting with ``prefix``, most frequent then most recent first."""
        pattern = _escape_like(prefix) + "%"
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT text FROM tokens
                WHERE text LIKE ? ESCAPE '\\'
                ORDER BY frequency DESC, last_used DESC
                LIMIT ?
                """,
                (pattern, limit),
            ).fetchall()
        return [row["text"] for row in rows]

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def counts(self) -> tuple[int, int]:
        """Row counts as (history, favicons)."""
        with self._transaction() as conn:
            history = conn.execute("SELECT COUNT(*) FROM history").fetchone()[0]
            favicons = conn.execute("SELECT COUNT(*) FROM favicons").fetchone()[0]
        return int(history), int(favicons)


def _rollback(conn: sqlite3.Connection) -> None:
    try:
        conn.execute("ROLLBACK")
    except sqlite3.Error as e:
        logger.debug("Rollback failed: %s", e)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _as_bytes(value) -> bytes | None:
    if value is None:
        return None
    return bytes(value)


def _rows_to_items(rows: list[sqlite3.Row]) -> list[HistoryItem]:
    items: list[HistoryItem] = []
    for row in rows:
        try:
            browser = BrowserType(row["browser"])
        except ValueError:
            logger.warning("Skipping row with unknown browser %r: %s", row["browser"], row["url"])
            continue
        favicon = None
        if row["favicon_id"] is not None:
            favicon = Favicon(
                id=row["favicon_id"],
                url=row["favicon_url"],
                image_data=_as_bytes(row["favicon_data"]),
            )
        items.append(
            HistoryItem(
                browser=browser,
                profile=row["profile"],
                url=row["url"],
                title=row["title"],
                last_visit=row["last_visit"],
                visit_count=row["visit_count"],
                domain=row["domain"],
                favicon=favicon,
            )
        )
    return items
