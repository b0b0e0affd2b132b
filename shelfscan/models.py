"""Data models for listings and store bookkeeping."""

from dataclasses import dataclass, field
from typing import List, Optional

__all__ = ["Listing", "SampledListing", "SweepResult", "SourceStatus"]


@dataclass
class Listing:
    """A single product offering observed on a retail website.

    ``(website, website_id)`` identifies the listing across scrapes. The image
    bytes are stored content-addressed in the blobs table, so two listings
    with identical images share one blob row.
    """

    website: str
    website_id: str
    price: int  # minor currency units (cents)
    title: str
    image_data: bytes
    categories: List[str] = field(default_factory=list)

    # Optional per-website fields
    star_rating: Optional[float] = None
    max_stars: Optional[float] = None
    num_reviews: Optional[int] = None


@dataclass
class SampledListing:
    """A listing read back from the store, with its row id and timestamps."""

    id: int
    listing: Listing
    created: int
    last_seen: int


@dataclass
class SweepResult:
    """Row counts removed by one retention sweep."""

    listings: int = 0
    blobs: int = 0
    categories: int = 0


@dataclass
class SourceStatus:
    source_id: str
    last_updated: int
