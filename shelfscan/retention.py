"""Retention sweep: bound the number of listings kept per level.

The sweep is a mark-and-sweep over overlapping levels:

1. every listing starts marked "keep", so listings in no level are exempt;
2. every listing matched by some level is marked "drop";
3. each level re-marks its newest ``capacity`` listings as "keep";
4. listings still marked "drop" are deleted, together with their categories;
5. blobs left without any listing are deleted.

A listing in several levels survives if any one of them keeps it.
"""

from typing import Iterable, Optional

from shelfscan.blobs import collect_orphan_blobs
from shelfscan.db import Database
from shelfscan.levels import LEVELS, Level
from shelfscan.logging_config import get_logger
from shelfscan.models import SweepResult

__all__ = ["sweep"]

logger = get_logger("retention")


def sweep(
    db: Database,
    capacity: int,
    levels: Optional[Iterable[Level]] = None,
) -> SweepResult:
    """Run one retention sweep in a single transaction.

    Args:
        db: Database handle
        capacity: Maximum listings retained per level
        levels: Levels to enforce (default: the configured ``LEVELS``)

    Returns:
        Counts of deleted listings, blobs and category rows

    Raises:
        ValueError: If capacity is negative
    """
    if capacity < 0:
        raise ValueError(f"capacity must be non-negative, got {capacity}")
    levels = list(LEVELS if levels is None else levels)

    with db.transaction() as conn:
        conn.execute(
            "CREATE TEMP TABLE IF NOT EXISTS sweep_marks ("
            "listing_id INTEGER PRIMARY KEY, keep INTEGER NOT NULL)"
        )
        conn.execute("DELETE FROM sweep_marks")
        conn.execute("INSERT INTO sweep_marks (listing_id, keep) SELECT id, 1 FROM listings")

        for level in levels:
            where, params = level.where()
            conn.execute(
                f"UPDATE sweep_marks SET keep = 0 WHERE listing_id IN "
                f"(SELECT id FROM listings WHERE {where})",
                params,
            )

        for level in levels:
            where, params = level.where()
            conn.execute(
                f"""
                UPDATE sweep_marks SET keep = 1 WHERE listing_id IN (
                    SELECT id FROM listings WHERE {where}
                    ORDER BY last_seen DESC, id DESC
                    LIMIT ?
                )
                """,
                params + [capacity],
            )

        listings_deleted = conn.execute(
            "DELETE FROM listings WHERE id IN (SELECT listing_id FROM sweep_marks WHERE keep = 0)"
        ).rowcount
        categories_deleted = conn.execute(
            "DELETE FROM categories WHERE NOT EXISTS "
            "(SELECT 1 FROM listings WHERE listings.id = categories.listing_id)"
        ).rowcount
        blobs_deleted = collect_orphan_blobs(conn)
        conn.execute("DELETE FROM sweep_marks")

    logger.debug(
        f"Sweep removed {listings_deleted} listings, {blobs_deleted} blobs, "
        f"{categories_deleted} categories"
    )
    return SweepResult(
        listings=listings_deleted,
        blobs=blobs_deleted,
        categories=categories_deleted,
    )
