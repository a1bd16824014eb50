"""Shared utilities for scrapers."""

from .normalizers import (
    parse_price,
    parse_int,
    parse_decimal,
    split_address,
    parse_city_state_zip,
    resolve_url,
    infer_property_type,
    normalize_candidate,
)
from .extractors import (
    FieldStrategy,
    ExtractionLayout,
    text_at,
    attr_at,
    own_text,
    first_value,
    parse_details,
    find_cards,
    extract_candidate,
    iter_candidates,
)

__all__ = [
    'parse_price',
    'parse_int',
    'parse_decimal',
    'split_address',
    'parse_city_state_zip',
    'resolve_url',
    'infer_property_type',
    'normalize_candidate',
    'FieldStrategy',
    'ExtractionLayout',
    'text_at',
    'attr_at',
    'own_text',
    'first_value',
    'parse_details',
    'find_cards',
    'extract_candidate',
    'iter_candidates',
]
