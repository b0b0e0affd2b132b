"""Listing store: transactional upserts, sampling and source bookkeeping.

Every public function here is one transaction on the shared ``Database``.
"""

import random
import sqlite3
import time
from typing import Any, Dict, Iterable, List, Optional

from shelfscan.blobs import collect_blob, put_blob
from shelfscan.config import LOG_EXPIRATION
from shelfscan.db import Database
from shelfscan.levels import Level
from shelfscan.models import Listing, SampledListing, SourceStatus

__all__ = [
    "upsert_listing",
    "get_listing",
    "sample_listing",
    "level_count",
    "level_last_seen",
    "should_update_source",
    "mark_source_updated",
    "get_source_statuses",
    "insert_log_message",
    "get_log_messages",
    "get_store_stats",
]

_LISTING_COLUMNS = """
    listings.id, listings.created, listings.last_seen, listings.website,
    listings.website_id, listings.price, listings.title, listings.star_rating,
    listings.max_stars, listings.num_reviews, blobs.data AS image_data
"""

_NOT_EXCLUDED = "NOT EXISTS (SELECT 1 FROM excluded_ids WHERE excluded_ids.id = listings.id)"


def _now(now: Optional[int]) -> int:
    return int(time.time()) if now is None else int(now)


def _insert_categories(conn: sqlite3.Connection, listing_id: int, categories: Iterable[str]) -> None:
    conn.executemany(
        "INSERT OR IGNORE INTO categories (listing_id, category) VALUES (?, ?)",
        [(listing_id, category) for category in categories],
    )


def _load_exclusions(conn: sqlite3.Connection, exclude_ids: Iterable[int]) -> None:
    """Fill the connection's temp exclusion table with ``exclude_ids``.

    The ids live in an indexed temp table so queries can anti-join against
    them no matter how many a client has already seen.
    """
    conn.execute("CREATE TEMP TABLE IF NOT EXISTS excluded_ids (id INTEGER PRIMARY KEY)")
    conn.execute("DELETE FROM excluded_ids")
    conn.executemany(
        "INSERT OR IGNORE INTO excluded_ids (id) VALUES (?)",
        [(int(listing_id),) for listing_id in exclude_ids],
    )


def _row_to_sampled(conn: sqlite3.Connection, row: sqlite3.Row) -> SampledListing:
    categories = [
        r[0]
        for r in conn.execute(
            "SELECT category FROM categories WHERE listing_id = ? ORDER BY category",
            (row["id"],),
        )
    ]
    listing = Listing(
        website=row["website"],
        website_id=row["website_id"],
        price=row["price"],
        title=row["title"],
        image_data=bytes(row["image_data"]),
        categories=categories,
        star_rating=row["star_rating"],
        max_stars=row["max_stars"],
        num_reviews=row["num_reviews"],
    )
    return SampledListing(
        id=row["id"],
        listing=listing,
        created=row["created"],
        last_seen=row["last_seen"],
    )


def upsert_listing(db: Database, listing: Listing, now: Optional[int] = None) -> int:
    """Insert a new listing, or update it if ``(website, website_id)`` exists.

    On update the price, title, image and ``last_seen`` are replaced, the old
    image blob is collected if nothing references it anymore, and any new
    categories are added (existing categories are kept). The whole operation
    is one transaction.

    Args:
        db: Database handle
        listing: Listing to store
        now: Unix timestamp to record (default: current time)

    Returns:
        The listing's row id
    """
    timestamp = _now(now)
    with db.transaction() as conn:
        blob_id = put_blob(conn, listing.image_data)
        existing = conn.execute(
            "SELECT id, image_blob FROM listings WHERE website = ? AND website_id = ?",
            (listing.website, listing.website_id),
        ).fetchone()

        if existing:
            listing_id = existing["id"]
            conn.execute(
                """
                UPDATE listings SET
                    image_blob = ?,
                    price = ?,
                    title = ?,
                    last_seen = ?
                WHERE id = ?
                """,
                (blob_id, listing.price, listing.title, timestamp, listing_id),
            )
            if existing["image_blob"] != blob_id:
                collect_blob(conn, existing["image_blob"])
        else:
            cursor = conn.execute(
                """
                INSERT INTO listings (created, last_seen, website, website_id, price,
                                      title, image_blob, star_rating, max_stars, num_reviews)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (timestamp, timestamp, listing.website, listing.website_id, listing.price,
                 listing.title, blob_id, listing.star_rating, listing.max_stars,
                 listing.num_reviews),
            )
            listing_id = cursor.lastrowid

        _insert_categories(conn, listing_id, listing.categories)
    return listing_id


def get_listing(db: Database, website: str, website_id: str) -> Optional[SampledListing]:
    """Fetch one listing by its website key."""
    with db.transaction() as conn:
        row = conn.execute(
            f"""
            SELECT {_LISTING_COLUMNS}
            FROM listings JOIN blobs ON blobs.id = listings.image_blob
            WHERE listings.website = ? AND listings.website_id = ?
            """,
            (website, website_id),
        ).fetchone()
        if row is None:
            return None
        return _row_to_sampled(conn, row)


def sample_listing(
    db: Database,
    exclude_ids: Iterable[int],
    level: Level,
    rng: Optional[random.Random] = None,
) -> Optional[SampledListing]:
    """Pick one listing of ``level`` uniformly at random, skipping ``exclude_ids``.

    Returns:
        The sampled listing, or None when the level has no remaining candidates
    """
    rng = rng or random
    where, params = level.where()
    with db.transaction() as conn:
        _load_exclusions(conn, exclude_ids)
        (count,) = conn.execute(
            f"SELECT COUNT(*) FROM listings WHERE {where} AND {_NOT_EXCLUDED}",
            params,
        ).fetchone()
        if not count:
            return None
        row = conn.execute(
            f"""
            SELECT {_LISTING_COLUMNS}
            FROM listings JOIN blobs ON blobs.id = listings.image_blob
            WHERE {where} AND {_NOT_EXCLUDED}
            ORDER BY listings.id
            LIMIT 1 OFFSET ?
            """,
            params + [rng.randrange(count)],
        ).fetchone()
        return _row_to_sampled(conn, row)


def level_count(db: Database, exclude_ids: Iterable[int], level: Level) -> int:
    """Count the listings of ``level`` that are not in ``exclude_ids``."""
    where, params = level.where()
    with db.transaction() as conn:
        _load_exclusions(conn, exclude_ids)
        (count,) = conn.execute(
            f"SELECT COUNT(*) FROM listings WHERE {where} AND {_NOT_EXCLUDED}",
            params,
        ).fetchone()
    return count


def level_last_seen(db: Database, level: Level) -> Optional[int]:
    """Most recent ``last_seen`` among the level's listings, if any."""
    where, params = level.where()
    with db.transaction() as conn:
        (last_seen,) = conn.execute(
            f"SELECT MAX(last_seen) FROM listings WHERE {where}", params
        ).fetchone()
    return last_seen


def should_update_source(
    db: Database, source_id: str, max_age: int, now: Optional[int] = None
) -> bool:
    """Whether a source has never been updated or is older than ``max_age`` seconds."""
    timestamp = _now(now)
    with db.transaction() as conn:
        row = conn.execute(
            "SELECT last_updated FROM source_status WHERE source_id = ?", (source_id,)
        ).fetchone()
    if row is None:
        return True
    return row["last_updated"] + max_age < timestamp


def mark_source_updated(db: Database, source_id: str, now: Optional[int] = None) -> None:
    """Record that a source was just attempted, whether or not it succeeded."""
    timestamp = _now(now)
    with db.transaction() as conn:
        conn.execute(
            "INSERT OR REPLACE INTO source_status (source_id, last_updated) VALUES (?, ?)",
            (source_id, timestamp),
        )


def get_source_statuses(db: Database) -> List[SourceStatus]:
    with db.transaction() as conn:
        rows = conn.execute(
            "SELECT source_id, last_updated FROM source_status ORDER BY source_id"
        ).fetchall()
    return [SourceStatus(row["source_id"], row["last_updated"]) for row in rows]


def insert_log_message(
    db: Database, source: str, message: str, now: Optional[int] = None
) -> None:
    """Persist one log line and prune lines older than ``LOG_EXPIRATION``."""
    timestamp = _now(now)
    with db.transaction() as conn:
        conn.execute(
            "INSERT INTO log (timestamp, source, message) VALUES (?, ?, ?)",
            (timestamp, source, message),
        )
        conn.execute("DELETE FROM log WHERE timestamp < ?", (timestamp - LOG_EXPIRATION,))


def get_log_messages(db: Database, limit: int = 50) -> List[Dict[str, Any]]:
    """Return the newest persisted log lines, newest first."""
    with db.transaction() as conn:
        rows = conn.execute(
            "SELECT timestamp, source, message FROM log ORDER BY id DESC LIMIT ?",
            (limit,),
        ).fetchall()
    return [dict(row) for row in rows]


def get_store_stats(db: Database) -> Dict[str, int]:
    """Row counts for each table."""
    stats: Dict[str, int] = {}
    with db.transaction() as conn:
        for table in ("listings", "blobs", "categories", "source_status", "log"):
            (stats[table],) = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
    return stats
