"""Tests for listing sources: price parsing, streaming and the providers."""

import tempfile
import threading
import time
from pathlib import Path

import pytest

from shelfscan.db import Database
from shelfscan.levels import LEVELS
from shelfscan.listings import get_listing, get_store_stats
from shelfscan.models import Listing
from shelfscan.scheduler import SourceScheduler
from shelfscan.sources import amazon, default_sources, target
from shelfscan.sources.base import ListingStream, SourceError, parse_price

HOMEPAGE_HTML = r"""
<html><head>
<script>window.__PRELOADED__ = true;</script>
<script>
Object.defineProperties(window, {
  '__CONFIG__': {configurable: false, enumerable: true, value: deepFreeze(JSON.parse("{\"services\":{\"a\":{\"apiKey\":\"abc123\"},\"b\":{\"apiKey\":\"abc123\"},\"c\":{\"apiKey\":\"ffff00\"}}}")), writable: false},
  '__TGT_DATA__': {configurable: false, enumerable: true, value: deepFreeze(JSON.parse("{\"visitor_id\":\"0123ABCDEF\"}")), writable: false},
});
</script>
</head><body></body></html>
"""


def target_product(tcin, price):
    return {
        "tcin": tcin,
        "price": {"formatted_current_price": price},
        "item": {
            "product_description": {"title": f"Tent &amp; Tarp {tcin}"},
            "enrichment": {"images": {"primary_image_url": f"https://target.scene7.com/{tcin}.jpg"}},
        },
    }


def amazon_item(asin, price="$19.99", **extra):
    item = {
        "asin": asin,
        "price": price,
        "title": f"  Gadget {asin} ",
        "displayLargeImageURL": f"https://m.media-amazon.com/images/{asin}.jpg",
        "fullStarCount": 4,
        "reviewCount": "1,204",
    }
    item.update(extra)
    return item


class FakeClient:
    """Client returning canned pages; records every image download."""

    def __init__(self, pages=None, homepage=HOMEPAGE_HTML):
        self.pages = list(pages or [])
        self.homepage = homepage
        self.json_urls = []
        self.image_urls = []

    def get_text(self, url):
        return self.homepage

    def get_json(self, url):
        self.json_urls.append(url)
        return self.pages.pop(0)

    def get_bytes(self, url):
        self.image_urls.append(url)
        return url.encode()


@pytest.fixture
def temp_db():
    """Create a temporary database."""
    with tempfile.TemporaryDirectory() as tmp:
        db = Database.open(str(Path(tmp) / "listings.db"))
        yield db
        db.close()


class TestParsePrice:
    """Tests for parse_price."""

    @pytest.mark.parametrize("text,expected", [
        ("$12.34", 1234),
        ("$1,234.50", 123450),
        ("7", 700),
        ("12.345", 1235),
        ("N/A", None),
        ("$12.34 - $15.00", None),
        ("nan", None),
        ("", None),
        (None, None),
    ])
    def test_parse_price(self, text, expected):
        assert parse_price(text) == expected


class TestListingStream:
    """Tests for the producer-thread stream."""

    def test_yields_all_items_then_stops(self):
        stream = ListingStream(lambda: iter(["a", "b", "c"]))
        assert list(stream) == ["a", "b", "c"]
        with pytest.raises(StopIteration):
            next(stream)

    def test_producer_error_surfaces_after_items(self):
        def produce():
            yield "a"
            raise SourceError("boom")

        stream = ListingStream(produce)
        assert next(stream) == "a"
        with pytest.raises(SourceError, match="boom"):
            next(stream)

    def test_producer_stays_at_most_one_item_ahead(self):
        produced = []

        def produce():
            for i in range(100):
                produced.append(i)
                yield i

        stream = ListingStream(produce)
        assert next(stream) == 0
        time.sleep(0.3)
        # One item waits in the slot, one is blocked on hand-off.
        assert len(produced) <= 3
        stream.close()

    def test_close_stops_producer(self):
        finished = threading.Event()

        def produce():
            try:
                i = 0
                while True:
                    yield i
                    i += 1
            finally:
                finished.set()

        stream = ListingStream(produce)
        next(stream)
        stream.close()

        assert finished.wait(2)
        stream._thread.join(2)
        assert not stream._thread.is_alive()

    def test_close_does_not_pull_more_items(self):
        pulled = []

        def produce():
            for i in range(100):
                pulled.append(i)
                yield i

        stream = ListingStream(produce)
        assert next(stream) == 0
        # Item 1 waits in the slot, item 2 is blocked on hand-off.
        time.sleep(0.3)

        stream.close(timeout=2)

        assert not stream._thread.is_alive()
        assert pulled == [0, 1, 2]


class TestTargetSource:
    """Tests for the Target provider."""

    def test_parse_search_keys(self):
        keys = target.parse_search_keys(HOMEPAGE_HTML)
        assert keys.api_key == "abc123"
        assert keys.visitor_id == "0123ABCDEF"

    def test_parse_search_keys_missing_config(self):
        with pytest.raises(SourceError):
            target.parse_search_keys("<html><script>var x = 1;</script></html>")

    def test_unpriced_product_skipped_without_image_fetch(self):
        client = FakeClient()
        assert target.product_listing(client, "5xt85", target_product("1", "N/A")) is None
        assert client.image_urls == []

    def test_product_listing_fields(self):
        client = FakeClient()
        listing = target.product_listing(client, "5xt85", target_product("42", "$59.99"))

        assert listing == Listing(
            website="target.com",
            website_id="42",
            price=5999,
            title="Tent & Tarp 42",
            image_data=b"https://target.scene7.com/42.jpg",
            categories=["5xt85"],
        )

    def test_malformed_product_raises(self):
        with pytest.raises(SourceError):
            target.product_listing(FakeClient(), "5xt85", {"tcin": "1"})

    def test_scheduler_stores_priced_products(self, temp_db):
        pages = [
            {"data": {"search": {"products": [
                target_product("1", "$10.00"),
                target_product("2", "N/A"),
                target_product("3", "$30.00"),
            ]}}},
            {"data": {"search": {"products": []}}},
        ]
        client = FakeClient(pages)
        source = [s for s in default_sources() if s.identifier() == "tgt/5xt85"][0]
        scheduler = SourceScheduler(temp_db, client, [source], levels=LEVELS, clock=lambda: 1000)

        result = scheduler.run_pass()

        assert result.updated == ["tgt/5xt85"]
        assert result.stored == 2
        assert get_store_stats(temp_db)["listings"] == 2
        assert get_listing(temp_db, "target.com", "2") is None
        assert "key=abc123" in client.json_urls[0]


class TestAmazonSource:
    """Tests for the Amazon provider."""

    def test_stream_follows_pages_until_empty(self):
        client = FakeClient([
            {"asins": [amazon_item("A1"), amazon_item("A2", price=None)], "searchBlob": "blob-1"},
            {"asins": [amazon_item("A3")], "searchBlob": "blob-2"},
            {"asins": []},
        ])

        listings = list(amazon.stream_category(client, "interesting-finds"))

        assert [listing.website_id for listing in listings] == ["A1", "A3"]
        assert "searchBlob=blob-1" in client.json_urls[1]
        assert "offset=2" in client.json_urls[1]
        assert len(client.image_urls) == 2

    def test_item_fields(self):
        listing = amazon.item_listing(FakeClient(), "hgg-hol-hi", amazon_item("B7"))

        assert listing.title == "Gadget B7"
        assert listing.price == 1999
        assert listing.star_rating == 4.0
        assert listing.max_stars == 5.0
        assert listing.num_reviews == 1204
        assert listing.categories == ["hgg-hol-hi"]

    def test_half_star_rating(self):
        item = amazon_item("B8", hasHalfStar=True, starRating=3.5)
        assert amazon.item_listing(FakeClient(), "hgg-hol-hi", item).star_rating == 3.5

    def test_subcategory_in_page_url(self):
        url = amazon.page_url("EGGHOL22-Hub:toys", "", 0)
        assert "categoryId=EGGHOL22-Hub" in url
        assert "subcategoryIds=EGGHOL22-Hub%3Atoys" in url

    def test_unexpected_payload_raises(self):
        client = FakeClient([{"error": "nope"}])
        with pytest.raises(SourceError):
            list(amazon.stream_category(client, "interesting-finds"))


class TestRegistry:
    """Tests for the default source registry."""

    def test_identifiers(self):
        ids = [source.identifier() for source in default_sources()]
        assert ids == [
            "azn/interesting-finds",
            "azn/hgg-hol-hi",
            "azn/EGGHOL22-Hub",
            "tgt/rdihz",
            "tgt/5xt85",
        ]
