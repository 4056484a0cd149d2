"""SQLite backed archive of transcriptions with a synchronized FTS5 index."""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator, Optional, Tuple

from .exceptions import StorageError, TranscriptionNotFoundError
from .models import HistoryPage, TranscriptionRecord

APP_DIR = Path.home() / ".murmur"
DB_PATH = APP_DIR / "murmur.db"
SCHEMA_VERSION = 3
BUSY_TIMEOUT = 10.0

_COLUMNS = "id, text, duration_seconds, tokens_used, created_at, is_favorite"

# Columns added after the first release. Older archives get them backfilled.
_OPTIONAL_COLUMNS: Tuple[Tuple[str, str], ...] = (
    ("duration_seconds", "REAL"),
    ("tokens_used", "INTEGER"),
    ("is_favorite", "INTEGER DEFAULT 0"),
)


def _create_base_table(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS transcriptions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            text TEXT NOT NULL,
            created_at DATETIME DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_transcriptions_created_at ON transcriptions(created_at DESC)"
    )


def _backfill_optional_columns(conn: sqlite3.Connection) -> None:
    existing = {row[1] for row in conn.execute("PRAGMA table_info(transcriptions)")}
    for name, definition in _OPTIONAL_COLUMNS:
        if name not in existing:
            logging.info("Adding missing column %s to transcriptions", name)
            conn.execute(f"ALTER TABLE transcriptions ADD COLUMN {name} {definition}")


def _create_search_index(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE VIRTUAL TABLE IF NOT EXISTS transcriptions_fts USING fts5(
            text,
            content='transcriptions',
            content_rowid='id'
        )
        """
    )
    # Archives written by earlier builds carry an update trigger that fires on
    # every column; replace all three so the definitions below are the only ones.
    for trigger in ("transcriptions_ai", "transcriptions_ad", "transcriptions_au"):
        conn.execute(f"DROP TRIGGER IF EXISTS {trigger}")
    conn.execute(
        """
        CREATE TRIGGER transcriptions_ai AFTER INSERT ON transcriptions BEGIN
            INSERT INTO transcriptions_fts(rowid, text) VALUES (new.id, new.text);
        END
        """
    )
    conn.execute(
        """
        CREATE TRIGGER transcriptions_ad AFTER DELETE ON transcriptions BEGIN
            INSERT INTO transcriptions_fts(transcriptions_fts, rowid, text)
            VALUES ('delete', old.id, old.text);
        END
        """
    )
    conn.execute(
        """
        CREATE TRIGGER transcriptions_au AFTER UPDATE OF text ON transcriptions BEGIN
            INSERT INTO transcriptions_fts(transcriptions_fts, rowid, text)
            VALUES ('delete', old.id, old.text);
            INSERT INTO transcriptions_fts(rowid, text) VALUES (new.id, new.text);
        END
        """
    )
    # Rows that predate the index become searchable.
    conn.execute("INSERT INTO transcriptions_fts(transcriptions_fts) VALUES ('rebuild')")


# Index i migrates the archive to schema version i + 1.
_MIGRATIONS: Tuple[Callable[[sqlite3.Connection], None], ...] = (
    _create_base_table,
    _backfill_optional_columns,
    _create_search_index,
)


class Storage:
    """Manage persistence of transcriptions using SQLite.

    Every mutation touches the ``transcriptions`` table and its FTS5 shadow
    index inside one explicit transaction; triggers keep the two in step and
    a failure rolls both back. All calls are serialised by an instance lock.
    """

    def __init__(self, db_path: Path = DB_PATH) -> None:
        self.db_path = Path(db_path)
        self._lock = threading.RLock()
        self._ensure_initialised()

    @contextmanager
    def _connect(self, action: str) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.db_path, timeout=BUSY_TIMEOUT, isolation_level=None)
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to {action}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to {action}: {exc}") from exc
        finally:
            conn.close()

    @contextmanager
    def _transaction(self, conn: sqlite3.Connection, immediate: bool = True) -> Iterator[None]:
        conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
        try:
            yield
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")

    def _ensure_initialised(self) -> None:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot create archive directory {self.db_path.parent}: {exc}") from exc

        with self._lock, self._connect("initialise archive") as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            with self._transaction(conn):
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS metadata (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL
                    )
                    """
                )
            version = _schema_version(conn)
            for target, migration in enumerate(_MIGRATIONS, start=1):
                if target <= version:
                    continue
                with self._transaction(conn):
                    migration(conn)
                    conn.execute(
                        "INSERT OR REPLACE INTO metadata(key, value) VALUES(?, ?)",
                        ("schema_version", str(target)),
                    )
                logging.info("Migrated archive %s to schema version %d", self.db_path, target)

    def save_transcription(self, text: str, duration_seconds: Optional[float] = None) -> int:
        with self._lock, self._connect("save transcription") as conn:
            with self._transaction(conn):
                cur = conn.execute(
                    "INSERT INTO transcriptions(text, duration_seconds, created_at) VALUES(?, ?, ?)",
                    (text, duration_seconds, _utcnow()),
                )
            transcription_id = cur.lastrowid
        logging.debug("Saved transcription %s (%d chars)", transcription_id, len(text))
        return transcription_id

    def get_transcription(self, transcription_id: int) -> TranscriptionRecord:
        with self._lock, self._connect("read transcription") as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM transcriptions WHERE id = ?", (transcription_id,)
            ).fetchone()
        if row is None:
            raise TranscriptionNotFoundError(transcription_id)
        return _row_to_record(row)

    def list_transcriptions(self, page: int = 1, limit: int = 20) -> HistoryPage:
        offset = _offset(page, limit)
        with self._lock, self._connect("list transcriptions") as conn:
            with self._transaction(conn, immediate=False):
                total = conn.execute("SELECT COUNT(*) FROM transcriptions").fetchone()[0]
                rows = conn.execute(
                    f"SELECT {_COLUMNS} FROM transcriptions "
                    "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
                    (limit, offset),
                ).fetchall()
        return HistoryPage(items=[_row_to_record(row) for row in rows], total=total)

    def search_transcriptions(self, query: str, page: int = 1, limit: int = 20) -> HistoryPage:
        """Return transcriptions containing ``query`` as a phrase.

        The query is never interpreted as FTS syntax: quotes are escaped and
        the whole string becomes one phrase whose last word may be a prefix.
        """

        offset = _offset(page, limit)
        match = _phrase_prefix_query(query)
        with self._lock, self._connect("search transcriptions") as conn:
            with self._transaction(conn, immediate=False):
                total = conn.execute(
                    "SELECT COUNT(*) FROM transcriptions WHERE id IN "
                    "(SELECT rowid FROM transcriptions_fts WHERE transcriptions_fts MATCH ?)",
                    (match,),
                ).fetchone()[0]
                rows = conn.execute(
                    f"SELECT {_COLUMNS} FROM transcriptions WHERE id IN "
                    "(SELECT rowid FROM transcriptions_fts WHERE transcriptions_fts MATCH ?) "
                    "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
                    (match, limit, offset),
                ).fetchall()
        return HistoryPage(items=[_row_to_record(row) for row in rows], total=total)

    def delete_transcription(self, transcription_id: int) -> bool:
        with self._lock, self._connect("delete transcription") as conn:
            with self._transaction(conn):
                cur = conn.execute("DELETE FROM transcriptions WHERE id = ?", (transcription_id,))
        removed = cur.rowcount > 0
        logging.debug("Delete transcription %s: removed=%s", transcription_id, removed)
        return removed

    def clear_history(self) -> None:
        with self._lock, self._connect("clear history") as conn:
            with self._transaction(conn):
                cur = conn.execute("DELETE FROM transcriptions")
                conn.execute("INSERT INTO transcriptions_fts(transcriptions_fts) VALUES ('rebuild')")
        logging.info("Cleared %d transcriptions from the archive", max(cur.rowcount, 0))

    def toggle_favorite(self, transcription_id: int) -> bool:
        """Flip the favourite flag and return its new value.

        Raises :class:`TranscriptionNotFoundError` for an unknown id.
        """

        with self._lock, self._connect("toggle favorite") as conn:
            with self._transaction(conn):
                cur = conn.execute(
                    "UPDATE transcriptions "
                    "SET is_favorite = CASE WHEN is_favorite = 1 THEN 0 ELSE 1 END "
                    "WHERE id = ?",
                    (transcription_id,),
                )
                if cur.rowcount == 0:
                    raise TranscriptionNotFoundError(transcription_id)
                row = conn.execute(
                    "SELECT is_favorite FROM transcriptions WHERE id = ?", (transcription_id,)
                ).fetchone()
        return row[0] == 1

    def check_index(self) -> None:
        """Raise :class:`StorageError` if the search index disagrees with the table."""

        with self._lock, self._connect("check search index") as conn:
            try:
                conn.execute(
                    "INSERT INTO transcriptions_fts(transcriptions_fts, rank) VALUES ('integrity-check', 1)"
                )
            except sqlite3.DatabaseError as exc:
                raise StorageError(f"Search index is out of sync with the archive: {exc}") from exc

    def schema_version(self) -> int:
        with self._lock, self._connect("read schema version") as conn:
            return _schema_version(conn)


def _schema_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("SELECT value FROM metadata WHERE key = ?", ("schema_version",)).fetchone()
    return int(row[0]) if row is not None else 0


def _offset(page: int, limit: int) -> int:
    if limit < 1:
        raise ValueError(f"limit must be a positive integer, got {limit}")
    return (max(page, 1) - 1) * limit


def _phrase_prefix_query(query: str) -> str:
    escaped = query.replace('"', '""')
    return f'"{escaped}"*'


def _utcnow() -> str:
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.isoformat(sep=" ", timespec="microseconds")


def _row_to_record(row: sqlite3.Row) -> TranscriptionRecord:
    return TranscriptionRecord(
        id=row["id"],
        text=row["text"],
        duration_seconds=row["duration_seconds"],
        tokens_used=row["tokens_used"],
        created_at=datetime.fromisoformat(row["created_at"]),
        is_favorite=bool(row["is_favorite"]),
    )
