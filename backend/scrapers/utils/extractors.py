"""
Data extraction utilities for scrapers.

Result-page markup changes often, so every field is read through an ordered
list of strategies. A strategy is a plain function taking a card element and
returning a string or None; the first non-empty value wins.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup, Tag

from scrapers.models import ExtractionIncomplete, RawCandidate

logger = logging.getLogger(__name__)

FieldStrategy = Callable[[Tag], Optional[str]]

BEDS_RE = re.compile(r'(\d+)\s*(?:bds?|beds?|bd)\b', re.IGNORECASE)
BATHS_RE = re.compile(r'(\d+(?:\.\d+)?)\s*(?:ba|baths?)\b', re.IGNORECASE)
SQFT_RE = re.compile(r'(\d[\d,]*)\s*(?:sq\.?\s*ft|sqft)', re.IGNORECASE)


def _clean(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    text = ' '.join(text.split())
    return text or None


def text_at(selector: str) -> FieldStrategy:
    """Strategy reading the text of the first element matching selector."""
    def strategy(node: Tag) -> Optional[str]:
        el = node.select_one(selector)
        if el is None:
            return None
        return _clean(el.get_text(' ', strip=True))
    strategy.__name__ = f"text_at({selector})"
    return strategy


def attr_at(selector: str, *attrs: str) -> FieldStrategy:
    """
    Strategy reading an attribute of the first element matching selector.

    Attributes are tried in order, so attr_at('img', 'src', 'data-src') covers
    lazy-loaded images.
    """
    def strategy(node: Tag) -> Optional[str]:
        el = node.select_one(selector)
        if el is None:
            return None
        for attr in attrs:
            value = _clean(el.get(attr))
            if value:
                return value
        return None
    strategy.__name__ = f"attr_at({selector}, {', '.join(attrs)})"
    return strategy


def own_text(node: Tag) -> Optional[str]:
    """Strategy reading all text inside the card."""
    return _clean(node.get_text(' ', strip=True))


def first_value(strategies: Sequence[FieldStrategy], node: Tag) -> Optional[str]:
    """Run strategies in order and return the first non-empty value."""
    for strategy in strategies:
        try:
            value = strategy(node)
        except Exception as e:
            # A malformed selector should cost one strategy, not the item
            logger.debug(f"Strategy {getattr(strategy, '__name__', strategy)} failed: {e}")
            continue
        if value:
            return value
    return None


def parse_details(text: Optional[str]) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    """
    Extract beds, baths and square feet from detail text.

    Handles both grouped and free-text formats:
        3 bds | 2 ba | 1,200 sqft
        2 bd, 1.5 ba, 950 sqft - House for sale
        4 beds 3 baths 2,100 sq ft

    Returns:
        Tuple of (beds, baths, sqft) as strings, sqft without separators
    """
    if not text:
        return None, None, None

    beds_match = BEDS_RE.search(text)
    baths_match = BATHS_RE.search(text)
    sqft_match = SQFT_RE.search(text)

    beds = beds_match.group(1) if beds_match else None
    baths = baths_match.group(1) if baths_match else None
    sqft = sqft_match.group(1).replace(',', '') if sqft_match else None
    return beds, baths, sqft


@dataclass
class ExtractionLayout:
    """Where a source keeps each field of a result card."""
    container_selectors: List[str]
    card_selectors: List[str]
    price: List[FieldStrategy]
    address: List[FieldStrategy]
    link: List[FieldStrategy]
    image: List[FieldStrategy] = field(default_factory=list)
    detail_items_selector: Optional[str] = 'ul li'
    detail_fallback: List[FieldStrategy] = field(default_factory=list)
    type_text: List[FieldStrategy] = field(default_factory=list)


def find_cards(soup: BeautifulSoup, layout: ExtractionLayout) -> List[Tag]:
    """
    Locate result cards on a page.

    Known list containers are tried first; each direct li child is an item and
    the card inside it is used when present. Without a container, cards are
    matched directly anywhere in the page.
    """
    for selector in layout.container_selectors:
        container = soup.select_one(selector)
        if container is None:
            continue
        items = container.find_all('li', recursive=False)
        if not items:
            continue
        cards = []
        for item in items:
            card = None
            for card_selector in layout.card_selectors:
                card = item.select_one(card_selector)
                if card is not None:
                    break
            cards.append(card if card is not None else item)
        logger.debug(f"Found {len(cards)} items in container {selector}")
        return cards

    for selector in layout.card_selectors:
        cards = soup.select(selector)
        if cards:
            logger.debug(f"Found {len(cards)} cards with {selector}")
            return cards

    return []


def _detail_fields(card: Tag, layout: ExtractionLayout) -> Tuple[Optional[str], Optional[str], Optional[str], str]:
    texts = []
    if layout.detail_items_selector:
        texts = [_clean(li.get_text(' ', strip=True)) for li in card.select(layout.detail_items_selector)]
        texts = [t for t in texts if t]
    combined = ' | '.join(texts)
    beds, baths, sqft = parse_details(combined)

    if not beds or not baths:
        fallback = first_value(layout.detail_fallback, card)
        if fallback:
            fb_beds, fb_baths, fb_sqft = parse_details(fallback)
            beds = beds or fb_beds
            baths = baths or fb_baths
            sqft = sqft or fb_sqft
            combined = f"{combined} | {fallback}" if combined else fallback

    return beds, baths, sqft, combined


def extract_candidate(card: Tag, layout: ExtractionLayout) -> RawCandidate:
    """
    Read one card into a RawCandidate.

    Raises:
        ExtractionIncomplete: price, address or link is missing
    """
    beds, baths, sqft, detail_text = _detail_fields(card, layout)
    type_text = first_value(layout.type_text, card)

    candidate = RawCandidate(
        price=first_value(layout.price, card),
        full_address=first_value(layout.address, card),
        beds=beds,
        baths=baths,
        sqft=sqft,
        details=' | '.join(t for t in (detail_text, type_text) if t) or None,
        detail_url=first_value(layout.link, card),
        image_url=first_value(layout.image, card),
    )

    if not candidate.is_complete:
        missing = tuple(
            name for name, value in (
                ('price', candidate.price),
                ('address', candidate.full_address),
                ('link', candidate.detail_url),
            ) if not value
        )
        raise ExtractionIncomplete(missing)
    return candidate


def iter_candidates(soup: BeautifulSoup, layout: ExtractionLayout) -> Iterator[RawCandidate]:
    """
    Yield complete candidates from a parsed result page.

    Lazy and one-shot: the iterator walks the cards found at call time and
    cannot be restarted. Incomplete cards are logged and skipped.
    """
    cards = find_cards(soup, layout)
    for index, card in enumerate(cards, 1):
        try:
            yield extract_candidate(card, layout)
        except ExtractionIncomplete as e:
            logger.debug(f"Skipping card {index}/{len(cards)}: {e}")
