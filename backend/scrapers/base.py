"""
Base classes for the listing scraper system.

This module defines the abstract base class and the run bookkeeping used by
all site-specific scrapers. Listing data structures live in scrapers.models
and are re-exported here.
"""

from abc import ABC, abstractmethod
from typing import List, Dict, Optional, Sequence
from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime, timezone
import logging

from .models import (
    SearchCriteria,
    RawCandidate,
    ScrapedListing,
    PropertyType,
    ScraperError,
    NavigationError,
    NavigationTimeout,
    ChallengeUnresolved,
    ExtractionIncomplete,
)
from .match import rejection_reason
from .utils.extractors import ExtractionLayout, iter_candidates
from .utils.normalizers import normalize_candidate

logger = logging.getLogger(__name__)

# ANSI color codes for terminal output
class Colors:
    """ANSI color codes for colorized logging."""
    RESET = '\033[0m'
    BOLD = '\033[1m'
    DIM = '\033[2m'

    # Colors
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    GRAY = '\033[90m'

    @staticmethod
    def green(text):
        return f"{Colors.GREEN}{text}{Colors.RESET}"

    @staticmethod
    def yellow(text):
        return f"{Colors.YELLOW}{text}{Colors.RESET}"

    @staticmethod
    def red(text):
        return f"{Colors.RED}{text}{Colors.RESET}"

    @staticmethod
    def cyan(text):
        return f"{Colors.CYAN}{text}{Colors.RESET}"

    @staticmethod
    def gray(text):
        return f"{Colors.GRAY}{text}{Colors.RESET}"

    @staticmethod
    def bold(text):
        return f"{Colors.BOLD}{text}{Colors.RESET}"


class ScraperType(Enum):
    """Types of scrapers based on site requirements."""
    STEALTH = "stealth"         # Playwright + fingerprint evasion + challenge handling


@dataclass
class SiteConfig:
    """Configuration for a listing source."""
    name: str                           # Full display name
    short_name: str                     # Identifier stored on listings (e.g., 'zillow')
    search_url: str                     # Root of search result URLs
    base_url: str                       # Base URL for resolving relative links
    scraper_type: ScraperType           # Which driver setup to use
    rate_limit_seconds: float = 2.0     # Delay between navigations
    enabled: bool = True                # Whether to include in runs


@dataclass
class ScrapeResult:
    """Result of one scrape(criteria) call."""
    source: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    locations: int = 0
    candidates: int = 0
    accepted: int = 0
    errors: int = 0
    error_details: List[Dict] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.errors == 0

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at and self.started_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict:
        return {
            'source': self.source,
            'started_at': self.started_at.isoformat(),
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'duration_seconds': self.duration_seconds,
            'locations': self.locations,
            'candidates': self.candidates,
            'accepted': self.accepted,
            'errors': self.errors,
            'error_details': self.error_details[:10],  # Limit error details
            'success': self.success,
        }


class BaseScraper(ABC):
    """
    Abstract base class for all site scrapers.

    Subclasses must implement:
    - build_search_url(): Source-specific search URL for one location
    - layout: ExtractionLayout describing the result cards

    Optional overrides:
    - content_selectors / challenge_selectors / hold_selectors / result_selectors
    - create_driver(): Custom driver setup
    """

    layout: ExtractionLayout = None
    content_selectors: Sequence[str] = ()
    challenge_selectors: Sequence[str] = ()
    hold_selectors: Sequence[str] = ()
    result_selectors: Sequence[str] = ()

    def __init__(self, config: SiteConfig, driver=None):
        """
        Initialize the scraper.

        Args:
            config: Site configuration
            driver: Page driver to use; a StealthPageDriver is built when omitted
        """
        self.config = config
        self._driver = driver
        self.result = ScrapeResult(
            source=config.short_name,
            started_at=datetime.now(timezone.utc)
        )
        # Child loggers of 'scraper' inherit handlers configured in main.py
        self.logger = logging.getLogger(f"scraper.{config.short_name}")

    @property
    def driver(self):
        if self._driver is None:
            self._driver = self.create_driver()
        return self._driver

    def create_driver(self):
        """Build the page driver from application settings."""
        from api.config import settings
        from .crawlers.stealth import StealthPageDriver

        return StealthPageDriver.from_settings(
            settings,
            rate_limit=self.config.rate_limit_seconds,
            challenge_selectors=self.challenge_selectors,
            hold_selectors=self.hold_selectors,
            result_selectors=self.result_selectors,
        )

    @abstractmethod
    def build_search_url(self, location: str, criteria: SearchCriteria) -> str:
        """Build the source search URL for one location token."""
        pass

    def normalize(self, raw: RawCandidate) -> ScrapedListing:
        return normalize_candidate(raw, self.config.base_url, self.config.short_name)

    async def scrape_location(self, location: str, criteria: SearchCriteria) -> List[ScrapedListing]:
        """
        Scrape one location and return listings that match the criteria.

        Raises:
            NavigationError: the search page could not be loaded
        """
        url = self.build_search_url(location, criteria)
        self.logger.info(f"Scraping {Colors.bold(location)} {Colors.gray(f'({url})')}")

        await self.driver.open(url)
        await self.driver.detect_and_solve_challenge()
        await self.driver.wait_for_content(self.content_selectors)
        await self.driver.capture(f"{self.config.short_name}-{location}")

        soup = await self.driver.soup()
        accepted = []
        for raw in iter_candidates(soup, self.layout):
            self.result.candidates += 1
            listing = self.normalize(raw)
            label = f"{listing.address}, {listing.city}, {listing.state} {listing.zip_code}"
            reason = rejection_reason(listing, criteria)
            if reason is None:
                accepted.append(listing)
                self.logger.info(f"   {Colors.green('[MATCH]')} {label}")
            else:
                self.logger.debug(f"   {Colors.gray('[SKIP]')} {label}: {reason}")

        self.logger.info(f"{location}: {len(accepted)} matching listings")
        return accepted

    async def scrape(self, criteria: SearchCriteria) -> List[ScrapedListing]:
        """
        Main entry point - scrape every location in the criteria.

        A failure on one location is logged and recorded in self.result; the
        remaining locations still run. Listings are de-duplicated by URL in
        scrape order. The driver is always closed on exit.
        """
        self.logger.info(f"Starting scrape for {self.config.name}: {len(criteria.locations)} location(s)")
        self.result = ScrapeResult(source=self.config.short_name, started_at=datetime.now(timezone.utc))
        collected: Dict[str, ScrapedListing] = {}

        try:
            for location in criteria.locations:
                self.result.locations += 1
                try:
                    listings = await self.scrape_location(location, criteria)
                except Exception as e:
                    self.result.errors += 1
                    self.result.error_details.append({
                        'location': location,
                        'error': str(e),
                        'type': type(e).__name__,
                    })
                    self.logger.error(f"   {Colors.red('[ERR]')} {location}: {e}")
                    await self.driver.capture(f"{self.config.short_name}-error-{location}")
                    continue

                for listing in listings:
                    if listing.url not in collected:
                        collected[listing.url] = listing
        finally:
            try:
                await self.driver.close()
            except Exception as e:
                self.logger.warning(f"Error closing driver: {e}")
            self.result.accepted = len(collected)
            self.result.completed_at = datetime.now(timezone.utc)

        duration = self.result.duration_seconds or 0
        self.logger.info(
            f"Scrape complete in {duration:.1f}s: {self.result.accepted} accepted, "
            f"{self.result.candidates} candidates, {self.result.errors} errors"
        )
        return list(collected.values())
