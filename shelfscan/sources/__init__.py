"""Listing sources and the default provider registry."""

from typing import List

from shelfscan.config import AMAZON_RESULT_LIMIT, TARGET_RESULT_LIMIT
from shelfscan.sources import amazon, target
from shelfscan.sources.base import (
    ListingStream,
    Source,
    SourceError,
    StreamingSearchSource,
    parse_price,
)

__all__ = [
    "Source",
    "SourceError",
    "ListingStream",
    "StreamingSearchSource",
    "parse_price",
    "amazon_source",
    "target_source",
    "default_sources",
]


def amazon_source(category: str) -> StreamingSearchSource:
    return StreamingSearchSource("azn", category, AMAZON_RESULT_LIMIT, amazon.stream_category)


def target_source(category: str) -> StreamingSearchSource:
    return StreamingSearchSource("tgt", category, TARGET_RESULT_LIMIT, target.stream_category)


def default_sources() -> List[Source]:
    """All sources the scheduler polls by default."""
    sources: List[Source] = [amazon_source(category) for category in amazon.CATEGORIES]
    sources.extend(target_source(category) for category in target.CATEGORIES.values())
    return sources
