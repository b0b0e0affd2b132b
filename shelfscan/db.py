"""SQLite database handle and schema for the listing store.

One ``Database`` owns one connection. Every store operation runs as exactly
one transaction inside ``Database.transaction()``, which holds the handle's
lock for its whole duration, so no two transactions ever interleave.
"""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

__all__ = ["Database", "init_schema"]

SCHEMA = """
CREATE TABLE IF NOT EXISTS listings (
    id           INTEGER PRIMARY KEY,
    created      INTEGER NOT NULL,
    last_seen    INTEGER NOT NULL,
    website      TEXT NOT NULL,
    website_id   TEXT NOT NULL,
    price        INTEGER NOT NULL,
    title        TEXT NOT NULL,
    image_blob   INTEGER NOT NULL,
    star_rating  REAL,
    max_stars    REAL,
    num_reviews  INTEGER,
    UNIQUE (website, website_id)
);

CREATE TABLE IF NOT EXISTS blobs (
    id    INTEGER PRIMARY KEY,
    hash  TEXT NOT NULL,
    data  BLOB NOT NULL,
    UNIQUE (hash)
);

CREATE TABLE IF NOT EXISTS categories (
    listing_id  INTEGER NOT NULL,
    category    TEXT NOT NULL,
    PRIMARY KEY (listing_id, category)
);

CREATE TABLE IF NOT EXISTS source_status (
    source_id     TEXT PRIMARY KEY,
    last_updated  INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS log (
    id         INTEGER PRIMARY KEY,
    timestamp  INTEGER NOT NULL,
    source     TEXT,
    message    TEXT
);

CREATE INDEX IF NOT EXISTS listings_website_id ON listings(website, website_id);
CREATE INDEX IF NOT EXISTS listings_image_blob ON listings(image_blob);
CREATE INDEX IF NOT EXISTS listings_last_seen ON listings(last_seen);
CREATE INDEX IF NOT EXISTS categories_category ON categories(category);
CREATE INDEX IF NOT EXISTS log_timestamp ON log(timestamp);
"""


def init_schema(conn: sqlite3.Connection) -> None:
    """Create all tables and indexes if they do not exist yet."""
    conn.executescript(SCHEMA)


class Database:
    """Exclusive, lock-guarded handle to the listing database.

    Usage:
        db = Database.open("data/listings.db")
        with db.transaction() as conn:
            conn.execute("SELECT COUNT(*) FROM listings")
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = threading.Lock()
        self._owner: Optional[int] = None
        init_schema(conn)

    @classmethod
    def open(cls, db_path: str) -> "Database":
        """Open (and create if needed) a database file."""
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        # isolation_level=None: transactions are managed explicitly below.
        conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return cls(conn)

    @classmethod
    def open_in_memory(cls) -> "Database":
        return cls.open(":memory:")

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Run a block as one atomic transaction under the handle's lock.

        Commits when the block exits normally; rolls back and re-raises on
        any exception, leaving no partial state behind.
        """
        with self._lock:
            self._owner = threading.get_ident()
            try:
                self._conn.execute("BEGIN IMMEDIATE")
                try:
                    yield self._conn
                except BaseException:
                    self._rollback()
                    raise
                try:
                    self._conn.execute("COMMIT")
                except sqlite3.Error:
                    self._rollback()
                    raise
            finally:
                self._owner = None

    def _rollback(self) -> None:
        # SQLite may already have rolled back on its own (SQLITE_FULL, IOERR).
        if self._conn.in_transaction:
            self._conn.execute("ROLLBACK")

    def held_by_current_thread(self) -> bool:
        """Whether the calling thread is inside one of this handle's transactions."""
        return self._owner == threading.get_ident()

    def close(self) -> None:
        with self._lock:
            self._conn.close()
