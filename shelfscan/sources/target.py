"""Target category listings, read through the product-list search API.

The API wants a key and a visitor id that Target embeds in its homepage
scripts, so a run starts by scraping those from the homepage.
"""

import html
import json
import re
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional
from urllib.parse import urlencode

from bs4 import BeautifulSoup

from shelfscan.logging_config import get_logger
from shelfscan.models import Listing
from shelfscan.sources.base import SourceError, parse_price
from shelfscan.transport import RetryingClient

__all__ = [
    "WEBSITE",
    "CATEGORIES",
    "SearchKeys",
    "parse_search_keys",
    "product_listing",
    "stream_category",
]

logger = get_logger("sources.target")

WEBSITE = "target.com"

HOMEPAGE_URL = "https://www.target.com"
SEARCH_URL = "https://redsky.target.com/redsky_aggregations/v1/web/plp_search_v2"
PAGE_SIZE = 24
STORE_ID = "2766"

CATEGORIES: Dict[str, str] = {
    "Clothing, Shoes & Accessories": "rdihz",
    "Sports & Outdoors": "5xt85",
}

CONFIG_PREFIX = "Object.defineProperties(window, {"
CONFIG_PATTERN = re.compile(
    r"\s*'(.*)': \{.*value: deepFreeze\(JSON\.parse\((\".*\")\)\).*\},"
)
API_KEY_PATTERN = re.compile(r'apiKey":"([a-fA-F0-9]*)"')
VISITOR_ID_PATTERN = re.compile(r'visitor_id":"([0-9a-fA-F]*)"')


@dataclass
class SearchKeys:
    api_key: str
    visitor_id: str


def parse_search_keys(homepage: str) -> SearchKeys:
    """Extract the search API key and visitor id from the homepage HTML.

    The most frequent ``apiKey`` in the ``__CONFIG__`` blob wins.

    Raises:
        SourceError: If the page does not carry the expected config blobs
    """
    soup = BeautifulSoup(homepage, "html.parser")
    script_text = None
    for script in soup.find_all("script"):
        text = script.string or script.get_text()
        if text and CONFIG_PREFIX in text:
            script_text = text[text.index(CONFIG_PREFIX):]
            break
    if script_text is None:
        raise SourceError("search API key prefix not found")

    configs: Dict[str, str] = {}
    for match in CONFIG_PATTERN.finditer(script_text):
        configs[match.group(1)] = json.loads(match.group(2))
    for key in ("__CONFIG__", "__TGT_DATA__"):
        if key not in configs:
            raise SourceError(f"target search API key config missing: {key}")

    counts = Counter(API_KEY_PATTERN.findall(configs["__CONFIG__"]))
    if not counts:
        raise SourceError("no api keys found in Target homepage config")
    api_key = counts.most_common(1)[0][0]

    visitor = VISITOR_ID_PATTERN.search(configs["__TGT_DATA__"])
    if visitor is None:
        raise SourceError("no visitor ID found in Target homepage data")

    return SearchKeys(api_key=api_key, visitor_id=visitor.group(1))


def search_url(keys: SearchKeys, category_id: str, offset: int) -> str:
    params = {
        "key": keys.api_key,
        "category": category_id,
        "channel": "WEB",
        "count": str(PAGE_SIZE),
        "default_purchasability_filter": "true",
        "include_sponsored": "true",
        "offset": str(offset),
        "page": f"/c/{category_id}",
        "platform": "desktop",
        "pricing_store_id": STORE_ID,
        "scheduled_delivery_store_id": STORE_ID,
        "store_ids": STORE_ID,
        "visitor_id": keys.visitor_id,
        "zip": "19096",
    }
    return f"{SEARCH_URL}?{urlencode(params)}"


def product_listing(client: RetryingClient, category_id: str, product: Dict[str, Any]) -> Optional[Listing]:
    """Turn one search result into a listing, or None if it has no usable price."""
    try:
        price_text = product["price"]["formatted_current_price"]
        item = product["item"]
        title = item["product_description"]["title"]
        image_url = item["enrichment"]["images"]["primary_image_url"]
        tcin = product["tcin"]
    except (KeyError, TypeError) as e:
        raise SourceError(f"malformed Target product: missing {e}") from e

    price = parse_price(price_text)
    if price is None:
        logger.debug(f"Skipping {tcin}: unparseable price {price_text!r}")
        return None

    return Listing(
        website=WEBSITE,
        website_id=str(tcin),
        price=price,
        title=html.unescape(title),
        image_data=client.get_bytes(image_url),
        categories=[category_id],
    )


def stream_category(client: RetryingClient, category_id: str) -> Iterator[Listing]:
    """Yield listings for a category until the search returns an empty page."""
    keys = parse_search_keys(client.get_text(HOMEPAGE_URL))
    offset = 0
    while True:
        payload = client.get_json(search_url(keys, category_id, offset))
        try:
            products = payload["data"]["search"]["products"]
        except (KeyError, TypeError) as e:
            raise SourceError(f"Unexpected search payload for {category_id}") from e
        if not products:
            return
        offset += len(products)
        for product in products:
            listing = product_listing(client, category_id, product)
            if listing is not None:
                yield listing
