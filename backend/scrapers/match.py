"""
Match predicate: decides whether a scraped listing satisfies a search.

Pure functions only. No logging, no I/O.
"""

from typing import Optional

from scrapers.models import ScrapedListing, SearchCriteria, is_zip_token


def _is_blank(value) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


def _missing_fields(listing: ScrapedListing):
    required = {
        'price': listing.price,
        'bedrooms': listing.bedrooms,
        'bathrooms': listing.bathrooms,
        'city': listing.city,
        'state': listing.state,
    }
    return [name for name, value in required.items() if _is_blank(value)]


def location_matches(listing: ScrapedListing, token: str) -> bool:
    """
    Check a single location token against a listing.

    ZIP tokens compare against the listing ZIP (exact, then contained in
    "city, state zip") and never match a listing without a ZIP. Free-text
    tokens compare against the city in either direction, then against
    "city, state".
    """
    token = (token or '').strip().lower()
    if not token:
        return False

    city = (listing.city or '').strip().lower()
    state = (listing.state or '').strip().lower()
    zip_code = (listing.zip_code or '').strip().lower()

    if is_zip_token(token):
        if not zip_code:
            return False
        if zip_code == token:
            return True
        return token in f"{city}, {state} {zip_code}"

    if city and (token == city or token in city or city in token):
        return True
    return token in f"{city}, {state}"


def rejection_reason(listing: ScrapedListing, criteria: SearchCriteria) -> Optional[str]:
    """Return why a listing fails the criteria, or None when it matches."""
    missing = _missing_fields(listing)
    if missing:
        return f"missing {', '.join(missing)}"

    if criteria.min_price is not None and listing.price < criteria.min_price:
        return f"price {listing.price:,.0f} below min {criteria.min_price:,.0f}"
    if listing.price > criteria.max_price:
        return f"price {listing.price:,.0f} above max {criteria.max_price:,.0f}"
    if listing.bedrooms < criteria.min_bedrooms:
        return f"{listing.bedrooms} beds < {criteria.min_bedrooms}"
    if listing.bathrooms < criteria.min_bathrooms:
        return f"{listing.bathrooms} baths < {criteria.min_bathrooms}"

    if not any(location_matches(listing, token) for token in criteria.locations):
        return f"location doesn't match any of: {', '.join(criteria.locations)}"
    return None


def matches(listing: ScrapedListing, criteria: SearchCriteria) -> bool:
    """True when the listing is complete and satisfies every criterion."""
    return rejection_reason(listing, criteria) is None
