"""Tests for logging setup and the persisted log handler."""

import json
import logging
import tempfile
from pathlib import Path

import pytest

from shelfscan.db import Database
from shelfscan.listings import get_log_messages
from shelfscan.logging_config import get_logger, log_scrape_event, setup_logging, teardown_logging


@pytest.fixture
def temp_dir():
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp)


@pytest.fixture
def db(temp_dir):
    db = Database.open(str(temp_dir / "listings.db"))
    yield db
    teardown_logging()
    db.close()


class TestSetupLogging:
    """Tests for setup_logging and its handlers."""

    def test_events_written_as_jsonl(self, temp_dir):
        log_dir = temp_dir / "logs"
        setup_logging(log_to_console=False, log_dir=log_dir)
        try:
            log_scrape_event("source_complete", {"source": "azn/x", "listings": 3})
        finally:
            teardown_logging()

        lines = [json.loads(line) for f in log_dir.glob("*.jsonl") for line in f.read_text().splitlines()]
        assert len(lines) == 1
        assert lines[0]["event_type"] == "source_complete"
        assert lines[0]["source"] == "azn/x"
        assert lines[0]["listings"] == 3

    def test_database_handler_persists_scheduler_records(self, db):
        setup_logging(log_to_file=False, log_to_console=False, db=db)

        get_logger("scheduler").info("Updating source azn/x")
        get_logger("listings").info("store internals")
        get_logger("scheduler").debug("too quiet")
        log_scrape_event("source_start", {"source": "azn/x"})

        messages = get_log_messages(db)
        assert [m["message"] for m in messages] == ["Updating source azn/x"]
        assert messages[0]["source"].startswith("test_logging:")

    def test_setup_replaces_previous_handlers(self, db):
        setup_logging(log_to_file=False, db=db)
        logger = setup_logging(log_to_file=False, db=db)
        assert len(logger.handlers) == 2

        teardown_logging()
        assert logging.getLogger("shelfscan").handlers == []
