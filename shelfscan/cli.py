"""Command-line interface for the listing scraper."""

import argparse
import logging
from datetime import datetime, timezone
from typing import List, Optional

__all__ = ["main", "parse_args", "show_stats"]

from shelfscan.config import (
    CLIENT_RETRIES,
    DB_PATH,
    LOG_LEVEL,
    LOOP_CHECK_INTERVAL,
    MAX_LISTINGS_PER_LEVEL,
    UPDATE_INTERVAL,
)
from shelfscan.db import Database
from shelfscan.levels import LEVELS, find_level
from shelfscan.listings import get_log_messages, get_source_statuses, get_store_stats, level_count, level_last_seen
from shelfscan.logging_config import setup_logging, teardown_logging
from shelfscan.retention import sweep
from shelfscan.scheduler import SourceScheduler
from shelfscan.shutdown import get_shutdown_handler
from shelfscan.sources import default_sources
from shelfscan.transport import RetryingClient


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Scrape retail listings into SQLite and keep each level bounded",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the scheduler forever against data/listings.db
  shelfscan data/listings.db

  # Run a single pass over every due source, then exit
  shelfscan data/listings.db --once

  # Enforce a smaller per-level capacity right now
  shelfscan data/listings.db --sweep --capacity 500

  # Show database statistics
  shelfscan data/listings.db --stats
        """,
    )

    parser.add_argument(
        "db",
        nargs="?",
        default=DB_PATH,
        help=f"SQLite database path (default: {DB_PATH})",
    )

    # Scheduling
    parser.add_argument(
        "--update-interval",
        type=int,
        default=UPDATE_INTERVAL,
        help=f"Seconds before a source is scraped again (default: {UPDATE_INTERVAL})",
    )
    parser.add_argument(
        "--check-interval",
        type=float,
        default=LOOP_CHECK_INTERVAL,
        help=f"Seconds between scheduler passes (default: {LOOP_CHECK_INTERVAL})",
    )
    parser.add_argument(
        "--client-retries",
        type=int,
        default=CLIENT_RETRIES,
        help=f"Attempts per HTTP request (default: {CLIENT_RETRIES})",
    )
    parser.add_argument(
        "--capacity",
        type=int,
        default=MAX_LISTINGS_PER_LEVEL,
        help=f"Listings retained per level (default: {MAX_LISTINGS_PER_LEVEL})",
    )
    parser.add_argument(
        "--level",
        action="append",
        dest="levels",
        metavar="LEVEL_ID",
        help="Enforce only this level when sweeping (repeatable; default: all levels)",
    )

    # One-shot modes
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one scheduling pass and exit",
    )
    parser.add_argument(
        "--sweep",
        action="store_true",
        help="Run one retention sweep and exit",
    )

    # Info commands
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Show database statistics and exit",
    )
    parser.add_argument(
        "--list-sources",
        action="store_true",
        help="List configured sources and exit",
    )
    parser.add_argument(
        "--list-levels",
        action="store_true",
        help="List configured levels and exit",
    )

    # Logging
    parser.add_argument(
        "--log-level",
        default=LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help=f"Console log level (default: {LOG_LEVEL})",
    )
    parser.add_argument(
        "--no-log-file",
        action="store_true",
        help="Don't write JSONL log files",
    )

    return parser.parse_args(argv)


def _format_ts(ts: Optional[int]) -> str:
    if ts is None:
        return "never"
    return datetime.fromtimestamp(ts, timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def show_stats(db: Database, db_path: str) -> None:
    """Display database statistics."""
    stats = get_store_stats(db)

    print(f"\n{'='*50}")
    print(f"Database: {db_path}")
    print(f"{'='*50}")

    print(f"\nListings: {stats['listings']}")
    print(f"Blobs: {stats['blobs']}")
    print(f"Category tags: {stats['categories']}")

    print("\nListings by level:")
    for level in LEVELS:
        count = level_count(db, [], level)
        print(f"  {level.id} ({level.website_name} / {level.category_name}): {count}"
              f" - last seen: {_format_ts(level_last_seen(db, level))}")

    print("\nSource status:")
    statuses = get_source_statuses(db)
    if statuses:
        for status in statuses:
            print(f"  {status.source_id}: last updated {_format_ts(status.last_updated)}")
    else:
        print("  No sources updated yet")

    print("\nRecent log:")
    for entry in reversed(get_log_messages(db, limit=10)):
        print(f"  {_format_ts(entry['timestamp'])} {entry['source']}: {entry['message']}")

    print()


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for CLI."""
    args = parse_args(argv)

    if args.list_sources:
        print("Configured sources:")
        for source in default_sources():
            print(f"  {source.identifier()} (max {source.max_items} items per run)")
        return

    if args.list_levels:
        print("Configured levels:")
        for level in LEVELS:
            print(f"  {level.id}: {level.website_name} / {level.category_name}")
        return

    try:
        levels = [find_level(level_id) for level_id in args.levels] if args.levels else list(LEVELS)
    except ValueError as e:
        raise SystemExit(f"error: {e}")

    db = Database.open(args.db)
    try:
        if args.stats:
            show_stats(db, args.db)
            return

        setup_logging(
            level=getattr(logging, args.log_level),
            log_to_file=not args.no_log_file,
            db=db,
        )

        if args.sweep:
            result = sweep(db, args.capacity, levels)
            print(f"Deleted {result.listings} listings, {result.blobs} blobs, "
                  f"{result.categories} categories")
            return

        scheduler = SourceScheduler(
            db,
            RetryingClient(args.client_retries),
            default_sources(),
            update_interval=args.update_interval,
            capacity=args.capacity,
            levels=levels,
            check_interval=args.check_interval,
        )

        if args.once:
            result = scheduler.run_pass()
            print(f"Updated {len(result.updated)} sources, {len(result.failed)} failed, "
                  f"{result.stored} listings stored")
            return

        handler = get_shutdown_handler().install()
        try:
            scheduler.run_forever()
        finally:
            handler.uninstall()
    finally:
        teardown_logging()
        db.close()


if __name__ == "__main__":
    main()
