"""Content-addressed blob storage.

Blobs are keyed by a truncated SHA-256 of their bytes. These helpers take the
connection of an already-open transaction; callers never use them on their
own, so a blob and the listing that references it always commit together.
"""

import hashlib
import sqlite3

__all__ = ["hash_blob", "put_blob", "collect_blob", "collect_orphan_blobs"]

HASH_BYTES = 16


def hash_blob(data: bytes) -> str:
    """Return the hex-encoded first 16 bytes of the SHA-256 of ``data``."""
    return hashlib.sha256(data).digest()[:HASH_BYTES].hex()


def put_blob(conn: sqlite3.Connection, data: bytes) -> int:
    """Store ``data`` if its hash is new and return the blob id."""
    digest = hash_blob(data)
    cursor = conn.execute(
        "INSERT OR IGNORE INTO blobs (hash, data) VALUES (?, ?)",
        (digest, sqlite3.Binary(data)),
    )
    if cursor.rowcount == 1:
        return cursor.lastrowid
    row = conn.execute("SELECT id FROM blobs WHERE hash = ?", (digest,)).fetchone()
    return row[0]


def collect_blob(conn: sqlite3.Connection, blob_id: int) -> bool:
    """Delete a blob if no listing references it.

    Returns:
        True if the blob was deleted
    """
    (count,) = conn.execute(
        "SELECT COUNT(*) FROM listings WHERE image_blob = ?", (blob_id,)
    ).fetchone()
    if count:
        return False
    cursor = conn.execute("DELETE FROM blobs WHERE id = ?", (blob_id,))
    return cursor.rowcount > 0


def collect_orphan_blobs(conn: sqlite3.Connection) -> int:
    """Delete every blob with no referencing listing, returning the count."""
    cursor = conn.execute(
        """
        DELETE FROM blobs WHERE NOT EXISTS (
            SELECT 1 FROM listings WHERE listings.image_blob = blobs.id
        )
        """
    )
    return cursor.rowcount
