"""Configuration and constants for the listing scraper."""

import os

from dotenv import load_dotenv

__all__ = [
    "DB_PATH",
    "HEADERS",
    "REQUEST_TIMEOUT",
    "CLIENT_RETRIES",
    "RETRY_BACKOFF",
    "UPDATE_INTERVAL",
    "LOOP_CHECK_INTERVAL",
    "MAX_LISTINGS_PER_LEVEL",
    "AMAZON_RESULT_LIMIT",
    "TARGET_RESULT_LIMIT",
    "LOG_EXPIRATION",
    "LOG_LEVEL",
]

load_dotenv()

# Database
DB_PATH = os.getenv("SHELFSCAN_DB_PATH", "data/listings.db")

# HTTP headers sent with every provider request
HEADERS = {
    "User-Agent": os.getenv(
        "SHELFSCAN_USER_AGENT",
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0 Safari/537.36",
    ),
    "Accept-Encoding": "gzip, deflate",
}

# Per-attempt timeout; independent of the retry count
REQUEST_TIMEOUT = 30.0

# Retry settings for the shared transport
CLIENT_RETRIES = int(os.getenv("SHELFSCAN_CLIENT_RETRIES", "10"))
RETRY_BACKOFF = float(os.getenv("SHELFSCAN_RETRY_BACKOFF", "10"))

# How stale a source may get before it is scraped again (seconds)
UPDATE_INTERVAL = int(os.getenv("SHELFSCAN_UPDATE_INTERVAL", str(60 * 60 * 24)))

# How often the scheduler wakes up to look for due sources (seconds).
# This is not the update cadence of any single source.
LOOP_CHECK_INTERVAL = float(os.getenv("SHELFSCAN_CHECK_INTERVAL", "60"))

# Soft limit that keeps levels from growing without bound
MAX_LISTINGS_PER_LEVEL = int(os.getenv("SHELFSCAN_MAX_LISTINGS_PER_LEVEL", "4096"))

# Per-run item caps for the bundled providers
AMAZON_RESULT_LIMIT = 50
TARGET_RESULT_LIMIT = 50

# Persisted log messages older than this are pruned (seconds)
LOG_EXPIRATION = 60 * 60 * 24 * 5

LOG_LEVEL = os.getenv("SHELFSCAN_LOG_LEVEL", "INFO").upper()
