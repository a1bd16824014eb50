"""
Data structures shared by the scraping pipeline.

SearchCriteria is what a user asks for, RawCandidate is what the markup gave
us, and ScrapedListing is the normalized record handed to reconciliation.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Tuple


ZIP_TOKEN_RE = re.compile(r'^\d{5}$')


class PropertyType(Enum):
    """Property types recognized from listing text."""
    HOUSE = "House"
    CONDO = "Condo"
    TOWNHOUSE = "Townhouse"
    UNKNOWN = "Unknown"


def is_zip_token(token: str) -> bool:
    """True when a location token is a bare 5-digit ZIP code."""
    return bool(ZIP_TOKEN_RE.match((token or '').strip()))


def _unique_tokens(locations: Iterable[str]) -> Tuple[str, ...]:
    seen = set()
    tokens = []
    for location in locations:
        token = (location or '').strip()
        if not token or token.lower() in seen:
            continue
        seen.add(token.lower())
        tokens.append(token)
    return tuple(tokens)


@dataclass(frozen=True)
class SearchCriteria:
    """
    Immutable filter for one property search.

    Locations keep their input order with duplicates removed. Each token is
    either free text ("Arlington VA") or a 5-digit ZIP.
    """
    max_price: float
    locations: Tuple[str, ...]
    min_price: Optional[float] = None
    min_bedrooms: int = 0
    min_bathrooms: float = 0

    def __post_init__(self):
        if self.max_price is None or self.max_price <= 0:
            raise ValueError("max_price is required and must be positive")
        if self.min_price is not None and self.min_price < 0:
            raise ValueError("min_price must not be negative")
        if self.min_bedrooms is None or self.min_bedrooms < 0:
            raise ValueError("min_bedrooms must be >= 0")
        if self.min_bathrooms is None or self.min_bathrooms < 0:
            raise ValueError("min_bathrooms must be >= 0")
        tokens = _unique_tokens(self.locations or ())
        if not tokens:
            raise ValueError("at least one location is required")
        # frozen dataclass: normalize through object.__setattr__
        object.__setattr__(self, 'locations', tokens)

    @classmethod
    def from_search(cls, search) -> 'SearchCriteria':
        """Build criteria from a stored PropertySearch row."""
        return cls(
            max_price=search.max_price,
            locations=tuple(search.location_list),
            min_price=search.min_price or None,
            min_bedrooms=search.min_bedrooms or 0,
            min_bathrooms=search.min_bathrooms or 0,
        )


@dataclass
class RawCandidate:
    """Field bag scraped straight from one result card. Never persisted."""
    price: Optional[str] = None
    full_address: Optional[str] = None
    beds: Optional[str] = None
    baths: Optional[str] = None
    sqft: Optional[str] = None
    details: Optional[str] = None
    detail_url: Optional[str] = None
    image_url: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.price and self.full_address and self.detail_url)


@dataclass
class ScrapedListing:
    """Standardized listing data after scraping."""
    address: str
    city: str
    state: str
    zip_code: str
    url: str
    source: str
    price: Optional[float] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[float] = None
    square_feet: Optional[int] = None
    property_type: PropertyType = PropertyType.UNKNOWN
    image_url: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'address': self.address,
            'city': self.city,
            'state': self.state,
            'zip_code': self.zip_code,
            'price': self.price,
            'bedrooms': self.bedrooms,
            'bathrooms': self.bathrooms,
            'square_feet': self.square_feet,
            'property_type': self.property_type.value,
            'url': self.url,
            'image_url': self.image_url,
            'source': self.source,
        }


class ScraperError(Exception):
    """Base class for errors raised while driving a listing source."""


class NavigationError(ScraperError):
    """Navigation to a search page failed."""

    def __init__(self, url: str, message: str = ""):
        self.url = url
        super().__init__(message or f"Navigation to {url} failed")


class NavigationTimeout(NavigationError):
    """Navigation did not finish within the configured bound."""

    def __init__(self, url: str, timeout: float):
        self.timeout = timeout
        super().__init__(url, f"Navigation to {url} timed out after {timeout:.0f}s")


class ChallengeUnresolved(ScraperError):
    """An anti-bot challenge is still showing after the automated attempt."""


class ExtractionIncomplete(ScraperError):
    """A result card lacked a required field and was dropped."""

    def __init__(self, missing: Tuple[str, ...]):
        self.missing = missing
        super().__init__(f"missing {', '.join(missing)}")
