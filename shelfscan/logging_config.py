"""Logging setup for the scheduler and its sources.

Three destinations hang off the ``shelfscan`` logger:

- stderr, colored by level when attached to a terminal;
- one JSONL file per day under ``logs/``, carrying structured event fields;
- optionally the ``log`` table of the listing database, which keeps a short
  rolling history of scheduler activity next to the listings it describes.
"""

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from shelfscan.db import Database

__all__ = [
    "LOG_DIR",
    "DatabaseLogHandler",
    "setup_logging",
    "teardown_logging",
    "get_logger",
    "log_scrape_event",
]

LOG_DIR = Path(__file__).parent.parent / "logs"

ROOT_LOGGER = "shelfscan"

# These modules log while the store lock is held, so the database handler
# must never see their records.
_STORE_LOGGERS = tuple(f"{ROOT_LOGGER}.{name}" for name in ("db", "blobs", "listings", "retention"))


def _is_plain_record(record: logging.LogRecord) -> bool:
    """Structured events only go to the JSONL file."""
    return not hasattr(record, "event_type")


class DailyJSONLHandler(logging.Handler):
    """Append one JSON object per record to ``<prefix>_YYYYMMDD.jsonl``."""

    def __init__(self, log_dir: Path, prefix: str = ROOT_LOGGER):
        super().__init__()
        log_dir.mkdir(parents=True, exist_ok=True)
        self.log_dir = log_dir
        self.prefix = prefix

    def path_for(self, created: float) -> Path:
        day = datetime.fromtimestamp(created).strftime("%Y%m%d")
        return self.log_dir / f"{self.prefix}_{day}.jsonl"

    def emit(self, record: logging.LogRecord) -> None:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        event_type = getattr(record, "event_type", None)
        if event_type:
            entry["event_type"] = event_type
            entry.update(getattr(record, "event_data", {}))
        try:
            with open(self.path_for(record.created), "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
        except OSError:
            self.handleError(record)


class LevelColorFormatter(logging.Formatter):
    """Wrap each line in the ANSI color of its level."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        color = self.LEVEL_COLORS.get(record.levelno)
        return f"{color}{line}\033[0m" if color else line


class DatabaseLogHandler(logging.Handler):
    """Persist records into the ``log`` table, tagged with ``module:line``.

    Every insert also prunes rows older than ``LOG_EXPIRATION``. Records
    emitted by a thread that already holds the store lock (store internals,
    or a signal handler interrupting a transaction) are dropped.
    """

    def __init__(self, db: "Database", level: int = logging.INFO):
        super().__init__(level)
        self.db = db
        self.addFilter(_is_plain_record)
        self.addFilter(lambda record: not record.name.startswith(_STORE_LOGGERS))
        self.addFilter(lambda record: not db.held_by_current_thread())

    def emit(self, record: logging.LogRecord) -> None:
        from shelfscan.listings import insert_log_message

        try:
            insert_log_message(self.db, f"{record.module}:{record.lineno}", record.getMessage())
        except Exception:
            self.handleError(record)


def setup_logging(
    level: int = logging.INFO,
    log_to_file: bool = True,
    log_to_console: bool = True,
    log_dir: Optional[Path] = None,
    db: Optional["Database"] = None,
) -> logging.Logger:
    """Configure the ``shelfscan`` logger, replacing any earlier setup.

    Args:
        level: Threshold for the logger and the console
        log_to_file: Also write daily JSONL files (always at DEBUG)
        log_to_console: Also write to stderr
        log_dir: Directory for JSONL files (default: ``LOG_DIR``)
        db: Also persist INFO+ records into this database's log table

    Returns:
        The configured ``shelfscan`` logger
    """
    teardown_logging()
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)

    if log_to_console:
        console = logging.StreamHandler(sys.stderr)
        console.setLevel(level)
        console.addFilter(_is_plain_record)
        fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
        if sys.stderr.isatty():
            console.setFormatter(LevelColorFormatter(fmt, datefmt="%H:%M:%S"))
        else:
            console.setFormatter(logging.Formatter(fmt, datefmt="%H:%M:%S"))
        logger.addHandler(console)

    if log_to_file:
        jsonl = DailyJSONLHandler(log_dir or LOG_DIR)
        jsonl.setLevel(logging.DEBUG)
        logger.addHandler(jsonl)

    if db is not None:
        logger.addHandler(DatabaseLogHandler(db))

    return logger


def teardown_logging() -> None:
    """Detach and close every handler installed by ``setup_logging``."""
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """Return ``shelfscan.<name>`` (or the package logger itself)."""
    if name == ROOT_LOGGER:
        return logging.getLogger(ROOT_LOGGER)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def log_scrape_event(
    event_type: str,
    data: Dict[str, Any],
    level: int = logging.INFO,
    logger_name: str = "events",
) -> None:
    """Log a structured scheduler event.

    The JSONL handler writes ``event_type`` and every key of ``data`` as
    top-level fields; the console and database handlers skip these records.

    Args:
        event_type: Event name, e.g. 'source_start' or 'sweep_complete'
        data: Event fields; an optional 'message' key becomes the log message
        level: Log level
        logger_name: Logger to emit on, below ``shelfscan``
    """
    fields = {k: v for k, v in data.items() if k != "message"}
    message = data.get("message") or f"{event_type} {fields}"
    get_logger(logger_name).log(
        level,
        message,
        extra={"event_type": event_type, "event_data": fields},
        stacklevel=2,
    )
