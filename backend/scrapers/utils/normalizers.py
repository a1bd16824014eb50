"""
Data normalization utilities for scrapers.

These functions turn the raw strings pulled out of result cards into the typed
fields of a ScrapedListing.
"""

import re
from typing import Optional, Tuple
from urllib.parse import urljoin

from scrapers.models import PropertyType, RawCandidate, ScrapedListing


STATE_ZIP_RE = re.compile(r'[,\s]+([A-Z]{2})\s+(\d{5}(?:-?\d{4})?)\s*$')
ZIP_SHAPE_RE = re.compile(r'^\d{5}(?:-?\d{4})?$')


def parse_price(price_text: Optional[str]) -> Optional[float]:
    """
    Parse a display price into a number.

    Everything except digits and dots is stripped.

    Examples:
        $550,000 -> 550000.0
        $1,250,000+ -> 1250000.0
        Est. $--- -> None
    """
    if not price_text:
        return None
    cleaned = re.sub(r'[^0-9.]', '', price_text)
    # "Est." leaves a stray leading dot behind
    cleaned = cleaned.strip('.')
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def parse_int(text: Optional[str]) -> Optional[int]:
    """
    Parse the first integer in text, ignoring thousands separators.

    Examples:
        3 bds -> 3
        1,200 sqft -> 1200
        -- -> None
    """
    if not text:
        return None
    match = re.search(r'\d[\d,]*', text)
    if not match:
        return None
    return int(match.group(0).replace(',', ''))


def parse_decimal(text: Optional[str]) -> Optional[float]:
    """
    Parse the first decimal number in text (half baths).

    Examples:
        1.5 ba -> 1.5
        2 -> 2.0
    """
    if not text:
        return None
    match = re.search(r'\d+(?:\.\d+)?', text)
    if not match:
        return None
    return float(match.group(0))


def split_address(full_address: str) -> Tuple[str, str]:
    """
    Split a one-line address on its first comma.

    Returns:
        Tuple of (street, remainder) where remainder holds "city state zip"
    """
    if not full_address:
        return '', ''
    street, _, remainder = full_address.partition(',')
    return street.strip(), remainder.strip()


def parse_city_state_zip(remainder: str) -> Tuple[str, str, str]:
    """
    Parse the "city, ST 12345" part of an address.

    A trailing two-letter state and 5 or 9 digit ZIP is matched first. When
    that fails the tokens are read positionally: last token is the ZIP when it
    has ZIP shape, the token before it is the state, the rest is the city.

    Examples:
        Arlington, VA 22203 -> ('Arlington', 'VA', '22203')
        Falls Church VA 22046-1234 -> ('Falls Church', 'VA', '22046-1234')
        Arlington va 22203 -> ('Arlington', 'va', '22203')
        Arlington -> ('', 'Arlington', '')

    Returns:
        Tuple of (city, state, zip_code); missing parts are empty strings
    """
    if not remainder:
        return '', '', ''

    remainder = remainder.strip()
    match = STATE_ZIP_RE.search(remainder)
    if match:
        city = remainder[:match.start()].strip(' ,')
        return city, match.group(1), match.group(2)

    tokens = remainder.replace(',', ' ').split()
    zip_code = ''
    state = ''
    if tokens and ZIP_SHAPE_RE.match(tokens[-1]):
        zip_code = tokens.pop()
    if tokens:
        state = tokens.pop()
    return ' '.join(tokens), state, zip_code


def resolve_url(link: Optional[str], base_url: str) -> Optional[str]:
    """Make a listing link absolute against the source base URL."""
    if not link:
        return None
    link = link.strip()
    if link.startswith(('http://', 'https://')):
        return link
    return urljoin(base_url.rstrip('/') + '/', link.lstrip('/'))


def infer_property_type(details: Optional[str]) -> PropertyType:
    """
    Guess the property type from free detail text.

    "townhouse" contains "house", so it is checked first.
    """
    if not details:
        return PropertyType.UNKNOWN
    text = details.lower()
    if 'townhouse' in text or 'townhome' in text:
        return PropertyType.TOWNHOUSE
    if 'condo' in text:
        return PropertyType.CONDO
    if 'house' in text:
        return PropertyType.HOUSE
    return PropertyType.UNKNOWN


def normalize_candidate(raw: RawCandidate, base_url: str, source: str) -> ScrapedListing:
    """
    Convert a RawCandidate into a ScrapedListing.

    Fields that cannot be parsed stay None; the match predicate rejects them.
    """
    street, remainder = split_address(raw.full_address or '')
    city, state, zip_code = parse_city_state_zip(remainder)

    return ScrapedListing(
        address=street,
        city=city,
        state=state,
        zip_code=zip_code,
        url=resolve_url(raw.detail_url, base_url),
        source=source,
        price=parse_price(raw.price),
        bedrooms=parse_int(raw.beds),
        bathrooms=parse_decimal(raw.baths),
        square_feet=parse_int(raw.sqft),
        property_type=infer_property_type(raw.details),
        image_url=resolve_url(raw.image_url, base_url),
    )
