"""Levels: named groupings of listings used for retention and sampling.

A level is defined by a structured predicate rather than a raw SQL string.
Each predicate renders itself into a parameterised condition over the
``listings`` table, so level definitions never splice text into queries.
"""

from dataclasses import dataclass
from typing import List, Tuple, Union

__all__ = [
    "MatchWebsite",
    "MatchCategory",
    "Predicate",
    "Level",
    "LEVELS",
    "find_level",
]


@dataclass(frozen=True)
class MatchWebsite:
    """Every listing from one website."""

    website: str

    def to_sql(self) -> Tuple[str, List[object]]:
        return "listings.website = ?", [self.website]


@dataclass(frozen=True)
class MatchCategory:
    """Listings from one website tagged with one category."""

    website: str
    category: str

    def to_sql(self) -> Tuple[str, List[object]]:
        return (
            "listings.website = ? AND EXISTS ("
            "SELECT 1 FROM categories WHERE categories.listing_id = listings.id "
            "AND categories.category = ?)",
            [self.website, self.category],
        )


Predicate = Union[MatchWebsite, MatchCategory]


@dataclass(frozen=True)
class Level:
    id: str
    predicate: Predicate
    website_name: str
    category_name: str

    def where(self) -> Tuple[str, List[object]]:
        """Return the SQL condition and parameters selecting this level."""
        return self.predicate.to_sql()


LEVELS: Tuple[Level, ...] = (
    Level(
        id="amazon-if",
        predicate=MatchCategory("amazon.com", "interesting-finds"),
        website_name="Amazon",
        category_name="Interesting Finds",
    ),
    Level(
        id="amazon-thi",
        predicate=MatchCategory("amazon.com", "hgg-hol-hi"),
        website_name="Amazon",
        category_name="Tools and Home Improvement",
    ),
    Level(
        id="target-csa",
        predicate=MatchCategory("target.com", "rdihz"),
        website_name="Target",
        category_name="Clothing, Shoes & Accessories",
    ),
    Level(
        id="target-so",
        predicate=MatchCategory("target.com", "5xt85"),
        website_name="Target",
        category_name="Sports & Outdoors",
    ),
)


def find_level(level_id: str) -> Level:
    """Look up a configured level by id.

    Raises:
        ValueError: If no level has this id
    """
    for level in LEVELS:
        if level.id == level_id:
            return level
    raise ValueError(f"Unknown level: {level_id}")
