"""
Listing scraper system for Property Finder.

This module provides the scrape side of the pipeline:
- Stealth Playwright page driver with challenge handling
- Cascading field extraction from result cards
- Normalization and the match predicate
"""

from .models import SearchCriteria, RawCandidate, ScrapedListing, PropertyType
from .base import BaseScraper, ScraperType, SiteConfig, ScrapeResult
from .match import matches
from .config import SITES, get_site_config, get_enabled_sites
from .manager import ScraperManager

__all__ = [
    'SearchCriteria',
    'RawCandidate',
    'ScrapedListing',
    'PropertyType',
    'BaseScraper',
    'ScraperType',
    'SiteConfig',
    'ScrapeResult',
    'matches',
    'SITES',
    'get_site_config',
    'get_enabled_sites',
    'ScraperManager',
]
