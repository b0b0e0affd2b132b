"""Amazon gift-finder categories, read through the scroll API."""

from typing import Any, Dict, Iterator, Optional
from urllib.parse import urlencode

from shelfscan.logging_config import get_logger
from shelfscan.models import Listing
from shelfscan.sources.base import SourceError, parse_price
from shelfscan.transport import RetryingClient

__all__ = ["WEBSITE", "CATEGORIES", "stream_category", "item_listing"]

logger = get_logger("sources.amazon")

WEBSITE = "amazon.com"

SCROLL_URL = "https://www.amazon.com/gcx/-/gfhz/api/scroll"
PAGE_SIZE = 50

# Category ids may carry a sub-category as "id:subid".
CATEGORIES = ("interesting-finds", "hgg-hol-hi", "EGGHOL22-Hub")


def page_url(category_id: str, search_blob: str, offset: int) -> str:
    main_id, _, sub_id = category_id.partition(":")
    params = {
        "canBeEGifted": "false",
        "canBeGiftWrapped": "false",
        "isLimitedTimeOffer": "false",
        "isPrime": "false",
        "priceFrom": "",
        "priceTo": "",
        "categoryId": main_id,
        "count": str(PAGE_SIZE),
        "offset": str(offset),
        "searchBlob": search_blob,
    }
    if sub_id:
        params["subcategoryIds"] = f"{main_id}:{sub_id}"
    return f"{SCROLL_URL}?{urlencode(params)}"


def _parse_int(text: Any) -> Optional[int]:
    try:
        return int(str(text).replace(",", ""))
    except ValueError:
        return None


def item_listing(client: RetryingClient, category_id: str, item: Dict[str, Any]) -> Optional[Listing]:
    """Turn one scroll-API result into a listing.

    Items without a parseable price or an image are skipped (None); the
    image is only downloaded for items that will be kept.
    """
    price = parse_price(item.get("price"))
    image_url = item.get("displayLargeImageURL")
    if price is None or not image_url:
        return None

    if item.get("hasHalfStar"):
        star_rating = float(item.get("starRating") or 0.0)
    else:
        star_rating = float(item.get("fullStarCount") or 0)

    return Listing(
        website=WEBSITE,
        website_id=str(item["asin"]),
        price=price,
        title=str(item.get("title") or "").strip(),
        image_data=client.get_bytes(image_url),
        categories=[category_id],
        star_rating=star_rating,
        max_stars=5.0,
        num_reviews=_parse_int(item.get("reviewCount")),
    )


def stream_category(client: RetryingClient, category_id: str) -> Iterator[Listing]:
    """Yield listings for a category, page by page, until the API runs dry."""
    search_blob = ""
    offset = 0
    while True:
        page = client.get_json(page_url(category_id, search_blob, offset))
        if not isinstance(page, dict) or "asins" not in page:
            raise SourceError(f"Unexpected scroll API payload for {category_id}")

        results = page["asins"] or []
        if not results:
            return
        logger.debug(f"{category_id}: {len(results)} results at offset {offset}")
        offset += len(results)
        search_blob = page.get("searchBlob") or ""

        for item in results:
            listing = item_listing(client, category_id, item)
            if listing is not None:
                yield listing
