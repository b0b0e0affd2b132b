"""Source scheduler: poll sources, store their listings, trigger retention.

Each pass walks the registered sources in order. A source is updated when
its ``source_status`` entry is older than the update interval; its stream is
drained into the listing store up to the source's ``max_items``. Failures are
logged per source and never stop the pass, and a source is marked as updated
even when it failed, so a broken upstream is retried only once per interval.
When at least one source was attempted the retention sweep runs.
"""

import enum
import itertools
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Sequence

from shelfscan.config import LOOP_CHECK_INTERVAL, MAX_LISTINGS_PER_LEVEL, UPDATE_INTERVAL
from shelfscan.db import Database
from shelfscan.levels import LEVELS, Level
from shelfscan.listings import mark_source_updated, should_update_source, upsert_listing
from shelfscan.logging_config import get_logger, log_scrape_event
from shelfscan.models import SweepResult
from shelfscan.retention import sweep
from shelfscan.shutdown import get_shutdown_handler
from shelfscan.sources.base import Source
from shelfscan.transport import RetryingClient

__all__ = ["SchedulerState", "PassResult", "SourceScheduler"]

logger = get_logger("scheduler")


class SchedulerState(enum.Enum):
    CHECKING = "checking"
    UPDATING = "updating"
    SWEEPING = "sweeping"
    SLEEPING = "sleeping"


@dataclass
class PassResult:
    """Outcome of one scheduling pass."""

    updated: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    stored: int = 0
    sweep: Optional[SweepResult] = None

    @property
    def attempted(self) -> List[str]:
        return self.updated + self.failed


class SourceScheduler:
    """Drives every registered source on its own cadence.

    Args:
        db: Listing database
        client: Shared retrying HTTP client handed to sources
        sources: Sources to poll, in order
        update_interval: Seconds before a source is due again
        capacity: Listings retained per level by the sweep
        levels: Levels enforced by the sweep
        check_interval: Seconds slept between passes
        clock: Returns the current Unix time
    """

    def __init__(
        self,
        db: Database,
        client: RetryingClient,
        sources: Sequence[Source],
        update_interval: int = UPDATE_INTERVAL,
        capacity: int = MAX_LISTINGS_PER_LEVEL,
        levels: Iterable[Level] = LEVELS,
        check_interval: float = LOOP_CHECK_INTERVAL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db = db
        self.client = client
        self.sources = list(sources)
        self.update_interval = update_interval
        self.capacity = capacity
        self.levels = list(levels)
        self.check_interval = check_interval
        self.clock = clock
        self.state = SchedulerState.SLEEPING

    def _now(self) -> int:
        return int(self.clock())

    def due_sources(self) -> List[Source]:
        """Sources whose last update is older than the update interval."""
        self.state = SchedulerState.CHECKING
        now = self._now()
        return [
            source
            for source in self.sources
            if should_update_source(self.db, source.identifier(), self.update_interval, now=now)
        ]

    def update_source(self, source: Source) -> int:
        """Drain one source into the store.

        Returns:
            Number of listings stored

        Raises:
            Exception: Whatever the source or the store raised; listings stored
                before the failure are kept
        """
        stored = 0
        stream = source.update(self.client, self.db)
        try:
            for listing in itertools.islice(stream, source.max_items):
                upsert_listing(self.db, listing, now=self._now())
                stored += 1
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                close()
        return stored

    def run_pass(self) -> PassResult:
        """Run one checking/updating/sweeping pass (without sleeping)."""
        result = PassResult()

        for source in self.due_sources():
            source_id = source.identifier()
            self.state = SchedulerState.UPDATING
            logger.info(f"Updating source {source_id}")
            log_scrape_event("source_start", {"source": source_id})
            try:
                stored = self.update_source(source)
            except Exception as e:
                logger.error(f"Error updating source {source_id}: {e}")
                log_scrape_event("source_error", {"source": source_id, "error": str(e)})
                result.failed.append(source_id)
            else:
                logger.info(f"Successfully updated source {source_id} ({stored} listings)")
                log_scrape_event("source_complete", {"source": source_id, "listings": stored})
                result.updated.append(source_id)
                result.stored += stored
            mark_source_updated(self.db, source_id, now=self._now())

        if result.attempted:
            self.state = SchedulerState.SWEEPING
            result.sweep = sweep(self.db, self.capacity, self.levels)
            logger.info(
                f"Ran delete cycle: {result.sweep.listings} listings, {result.sweep.blobs} blobs, "
                f"and {result.sweep.categories} categories deleted"
            )
            log_scrape_event("sweep_complete", {
                "listings": result.sweep.listings,
                "blobs": result.sweep.blobs,
                "categories": result.sweep.categories,
            })

        return result

    def run_forever(self) -> None:
        """Run passes until shutdown is requested.

        Store errors outside a single source's update are not caught here;
        they end the loop and are fatal to the caller.
        """
        handler = get_shutdown_handler()
        logger.info(
            f"Scheduler started with {len(self.sources)} sources "
            f"(update interval {self.update_interval}s, check interval {self.check_interval}s)"
        )
        while not handler.shutdown_requested:
            self.run_pass()
            self.state = SchedulerState.SLEEPING
            handler.wait(self.check_interval)
        logger.info("Scheduler stopped")
