"""Retail listing scraper with a bounded, content-addressed SQLite store."""

__version__ = "0.1.0"

# Re-export main components for convenient imports
from shelfscan.config import DB_PATH, MAX_LISTINGS_PER_LEVEL, UPDATE_INTERVAL
from shelfscan.db import Database
from shelfscan.levels import LEVELS, Level, MatchCategory, MatchWebsite
from shelfscan.listings import level_count, sample_listing, upsert_listing
from shelfscan.models import Listing, SampledListing, SweepResult
from shelfscan.retention import sweep
from shelfscan.scheduler import SourceScheduler
from shelfscan.transport import RetryingClient, TransportError

__all__ = [
    # Version
    "__version__",
    # Config
    "DB_PATH",
    "MAX_LISTINGS_PER_LEVEL",
    "UPDATE_INTERVAL",
    # Models
    "Listing",
    "SampledListing",
    "SweepResult",
    # Store
    "Database",
    "upsert_listing",
    "sample_listing",
    "level_count",
    "sweep",
    # Levels
    "LEVELS",
    "Level",
    "MatchCategory",
    "MatchWebsite",
    # Scheduling
    "SourceScheduler",
    "RetryingClient",
    "TransportError",
]
