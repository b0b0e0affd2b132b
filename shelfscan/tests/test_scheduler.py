"""Tests for the source scheduler."""

import tempfile
from pathlib import Path

import pytest

from shelfscan.db import Database
from shelfscan.levels import Level, MatchWebsite
from shelfscan.listings import get_source_statuses, get_store_stats, mark_source_updated
from shelfscan.models import Listing
from shelfscan.scheduler import SchedulerState, SourceScheduler
from shelfscan.shutdown import get_shutdown_handler

SHOP = Level("shop", MatchWebsite("shop.test"), "Shop", "Everything")


class FakeSource:
    """Source yielding canned listings, optionally failing partway."""

    def __init__(self, name, count=2, fail_after=None, max_items=100, on_update=None):
        self.name = name
        self.count = count
        self.fail_after = fail_after
        self.max_items = max_items
        self.on_update = on_update
        self.runs = 0
        self.produced = 0

    def identifier(self):
        return f"fake/{self.name}"

    def _generate(self):
        for i in range(self.count):
            if self.fail_after is not None and i == self.fail_after:
                raise RuntimeError(f"{self.name} broke")
            self.produced += 1
            yield Listing(
                website="shop.test",
                website_id=f"{self.name}-{i}",
                price=100 + i,
                title=f"{self.name} {i}",
                image_data=f"{self.name}-{i}".encode(),
                categories=[self.name],
            )

    def update(self, client, db):
        self.runs += 1
        if self.on_update is not None:
            self.on_update()
        return self._generate()


class FakeClock:
    def __init__(self, now=1_000_000):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def temp_db():
    """Create a temporary database."""
    with tempfile.TemporaryDirectory() as tmp:
        db = Database.open(str(Path(tmp) / "listings.db"))
        yield db
        db.close()


@pytest.fixture
def clock():
    return FakeClock()


def make_scheduler(db, sources, clock, capacity=1000):
    return SourceScheduler(
        db,
        client=object(),
        sources=sources,
        update_interval=3600,
        capacity=capacity,
        levels=[SHOP],
        check_interval=0,
        clock=clock,
    )


class TestRunPass:
    """Tests for a single scheduling pass."""

    def test_failing_source_does_not_stop_others(self, temp_db, clock):
        sources = [FakeSource("one"), FakeSource("two", fail_after=0), FakeSource("three")]
        scheduler = make_scheduler(temp_db, sources, clock)

        result = scheduler.run_pass()

        assert result.updated == ["fake/one", "fake/three"]
        assert result.failed == ["fake/two"]
        assert result.stored == 4
        statuses = {s.source_id: s.last_updated for s in get_source_statuses(temp_db)}
        assert statuses == {
            "fake/one": clock.now,
            "fake/two": clock.now,
            "fake/three": clock.now,
        }

    def test_fresh_sources_are_skipped(self, temp_db, clock):
        source = FakeSource("one")
        scheduler = make_scheduler(temp_db, [source], clock)

        scheduler.run_pass()
        clock.now += 60
        second = scheduler.run_pass()

        assert source.runs == 1
        assert second.attempted == []
        assert second.sweep is None

    def test_source_due_again_after_interval(self, temp_db, clock):
        source = FakeSource("one")
        scheduler = make_scheduler(temp_db, [source], clock)

        scheduler.run_pass()
        clock.now += 3601
        scheduler.run_pass()

        assert source.runs == 2

    def test_failed_source_waits_full_interval(self, temp_db, clock):
        source = FakeSource("bad", fail_after=0)
        scheduler = make_scheduler(temp_db, [source], clock)

        scheduler.run_pass()
        clock.now += 60
        scheduler.run_pass()

        assert source.runs == 1

    def test_no_sweep_when_nothing_due(self, temp_db, clock):
        mark_source_updated(temp_db, "fake/one", now=clock.now)
        scheduler = make_scheduler(temp_db, [FakeSource("one")], clock)

        result = scheduler.run_pass()

        assert result.sweep is None
        assert scheduler.state == SchedulerState.CHECKING

    def test_sweep_runs_after_update(self, temp_db, clock):
        scheduler = make_scheduler(temp_db, [FakeSource("one", count=5)], clock, capacity=3)

        result = scheduler.run_pass()

        assert result.sweep is not None
        assert result.sweep.listings == 2
        assert get_store_stats(temp_db)["listings"] == 3
        assert scheduler.state == SchedulerState.SWEEPING

    def test_max_items_caps_consumption(self, temp_db, clock):
        source = FakeSource("many", count=10, max_items=3)
        scheduler = make_scheduler(temp_db, [source], clock)

        result = scheduler.run_pass()

        assert result.stored == 3
        assert source.produced == 3
        assert get_store_stats(temp_db)["listings"] == 3

    def test_partial_failure_keeps_stored_listings(self, temp_db, clock):
        source = FakeSource("flaky", count=5, fail_after=2)
        scheduler = make_scheduler(temp_db, [source], clock)

        result = scheduler.run_pass()

        assert result.failed == ["fake/flaky"]
        assert get_store_stats(temp_db)["listings"] == 2


class TestRunForever:
    """Tests for the scheduler loop."""

    @pytest.fixture(autouse=True)
    def reset_shutdown(self):
        handler = get_shutdown_handler()
        handler.reset()
        yield
        handler.reset()

    def test_stops_when_shutdown_requested(self, temp_db, clock):
        handler = get_shutdown_handler()
        source = FakeSource("one", on_update=handler.request_shutdown)
        scheduler = make_scheduler(temp_db, [source], clock)

        scheduler.run_forever()

        assert source.runs == 1
        assert scheduler.state == SchedulerState.SLEEPING
        assert get_store_stats(temp_db)["listings"] == 2

    def test_does_not_start_after_shutdown(self, temp_db, clock):
        get_shutdown_handler().request_shutdown()
        source = FakeSource("one")

        make_scheduler(temp_db, [source], clock).run_forever()

        assert source.runs == 0
