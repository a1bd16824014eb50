"""
Scraper Manager - orchestrates all site scrapers.

Provides a unified interface for running scrapers for one set of search
criteria, either for a single site or all enabled sites, and aggregates
their results.
"""

from typing import Callable, Dict, List, Optional
from datetime import datetime, timezone
import logging

from .base import BaseScraper, ScrapeResult
from .config import SITES, get_site_config, get_enabled_sites
from .models import ScrapedListing, SearchCriteria

# Import all implemented scrapers
from .sites.zillow import ZillowScraper

logger = logging.getLogger(__name__)


# Registry of implemented scrapers
# Add new scrapers here as they are implemented
SCRAPER_REGISTRY: Dict[str, Callable[[], BaseScraper]] = {
    'zillow': ZillowScraper,
}


class ScraperManager:
    """
    Manages and orchestrates all site scrapers.

    Usage:
        manager = ScraperManager()

        # Run single scraper
        listings = await manager.scrape_site('zillow', criteria)

        # Run all enabled scrapers
        by_site = await manager.scrape_all(criteria)

        # Check status
        status = manager.list_scrapers()
    """

    def __init__(self, registry: Optional[Dict[str, Callable[[], BaseScraper]]] = None):
        """
        Initialize the scraper manager.

        Args:
            registry: Site key to scraper factory; defaults to SCRAPER_REGISTRY
        """
        self.registry = registry if registry is not None else SCRAPER_REGISTRY
        self.results: Dict[str, ScrapeResult] = {}

    def get_scraper(self, site_key: str) -> Optional[BaseScraper]:
        """
        Get a fresh scraper instance for a site.

        A new instance means a new browser session per scrape.

        Args:
            site_key: Site identifier (e.g., 'zillow')

        Returns:
            Scraper instance or None if not implemented
        """
        if site_key not in self.registry:
            logger.warning(f"Scraper not implemented for site: {site_key}")
            return None
        return self.registry[site_key]()

    def enabled_site_keys(self) -> List[str]:
        """Enabled sites that have a scraper, in configuration order."""
        if self.registry is not SCRAPER_REGISTRY:
            return list(self.registry.keys())
        return [k for k in get_enabled_sites().keys() if k in self.registry]

    def _failed_result(self, site_key: str, error: str) -> ScrapeResult:
        now = datetime.now(timezone.utc)
        return ScrapeResult(
            source=site_key,
            started_at=now,
            completed_at=now,
            errors=1,
            error_details=[{'error': error}]
        )

    async def scrape_site(self, site_key: str, criteria: SearchCriteria) -> List[ScrapedListing]:
        """
        Run the scraper for a single site.

        Failures are recorded in self.results and yield an empty list.

        Args:
            site_key: Site identifier
            criteria: Search criteria to scrape for

        Returns:
            Accepted listings for the site
        """
        logger.info(f"Starting scrape for {site_key}")

        scraper = self.get_scraper(site_key)
        if not scraper:
            self.results[site_key] = self._failed_result(site_key, f'Scraper not implemented for {site_key}')
            return []

        try:
            listings = await scraper.scrape(criteria)
            self.results[site_key] = scraper.result
            return listings

        except Exception as e:
            logger.error(f"Scraper failed for {site_key}: {e}")
            self.results[site_key] = self._failed_result(site_key, str(e))
            return []

    async def scrape_all(
        self,
        criteria: SearchCriteria,
        site_keys: List[str] = None,
    ) -> Dict[str, List[ScrapedListing]]:
        """
        Run scrapers for multiple sites, one after another.

        Args:
            criteria: Search criteria to scrape for
            site_keys: List of site keys to scrape (defaults to all enabled)

        Returns:
            Dictionary mapping site_key to accepted listings
        """
        if site_keys is None:
            site_keys = self.enabled_site_keys()

        logger.info(f"Starting scrape for {len(site_keys)} sites: {site_keys}")

        listings = {}
        for key in site_keys:
            listings[key] = await self.scrape_site(key, criteria)
        return listings

    def list_scrapers(self) -> List[Dict]:
        """
        List all configured sites and their implementation status.

        Returns:
            List of site info dictionaries
        """
        scrapers = []
        for key, config in SITES.items():
            scrapers.append({
                'key': key,
                'name': config.name,
                'short_name': config.short_name,
                'type': config.scraper_type.value,
                'enabled': config.enabled,
                'implemented': key in self.registry,
                'url': config.search_url,
            })
        return scrapers

    def get_results_summary(self) -> Dict:
        """
        Get summary of all scrape results.

        Returns:
            Summary dictionary with totals
        """
        if not self.results:
            return {
                'total_sites': 0,
                'successful': 0,
                'failed': 0,
                'total_candidates': 0,
                'accepted_listings': 0,
            }

        successful = sum(1 for r in self.results.values() if r.success)

        return {
            'total_sites': len(self.results),
            'successful': successful,
            'failed': len(self.results) - successful,
            'total_candidates': sum(r.candidates for r in self.results.values()),
            'accepted_listings': sum(r.accepted for r in self.results.values()),
            'sites': {k: v.to_dict() for k, v in self.results.items()},
        }

