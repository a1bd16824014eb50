"""
Stealth page driver for sites with bot detection.

Uses Playwright with a de-fingerprinted Chromium context and a best-effort
press-and-hold challenge solver. One driver owns one browser session and is
never shared between concurrent scrapes.
"""

import asyncio
import random
import re
import time
import os
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence, Tuple
from bs4 import BeautifulSoup
from playwright.async_api import async_playwright, Browser, BrowserContext, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
import logging

from scrapers.models import ChallengeUnresolved, NavigationError, NavigationTimeout

logger = logging.getLogger(__name__)


DEFAULT_USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36'
)

# Generic challenge markers; sites pass their own lists in front of these
DEFAULT_CHALLENGE_SELECTORS = [
    'iframe[title*="recaptcha"]',
    'iframe[src*="captcha"]',
    '.captcha-container',
    '#captcha',
]

FINGERPRINT_SCRIPT = """
    Object.defineProperty(navigator, 'webdriver', {
        get: () => undefined
    });

    // Chrome automation leaves window.chrome empty
    window.chrome = window.chrome || {};
    window.chrome.runtime = window.chrome.runtime || {};

    Object.defineProperty(navigator, 'plugins', {
        get: () => [{
            0: {type: 'application/x-google-chrome-pdf', suffixes: 'pdf', description: 'Portable Document Format'},
            description: 'Chrome PDF Plugin',
            filename: 'internal-pdf-viewer',
            length: 1,
            name: 'Chrome PDF Plugin'
        }]
    });

    Object.defineProperty(navigator, 'languages', {
        get: () => ['en-US', 'en']
    });

    const originalQuery = window.navigator.permissions.query;
    window.navigator.permissions.query = (parameters) => (
        parameters.name === 'notifications' ?
            Promise.resolve({ state: Notification.permission }) :
            originalQuery(parameters)
    );
"""


def _slug(label: str) -> str:
    return re.sub(r'[^a-z0-9]+', '-', label.lower()).strip('-') or 'page'


class StealthPageDriver:
    """
    Playwright page driver with anti-bot bypass features.

    Features:
    - Realistic user agent, headers, viewport and locale
    - Init script hiding automation properties
    - Bounded navigation and content waits
    - Press-and-hold challenge handling that never raises
    - Diagnostic screenshots
    """

    def __init__(
        self,
        headless: bool = True,
        navigation_timeout: float = 60.0,
        content_timeouts: Tuple[float, float] = (30.0, 10.0),
        user_agent: str = DEFAULT_USER_AGENT,
        rate_limit: float = 0.0,
        challenge_selectors: Optional[Sequence[str]] = None,
        hold_selectors: Optional[Sequence[str]] = None,
        result_selectors: Optional[Sequence[str]] = None,
        hold_range_ms: Tuple[int, int] = (3000, 5000),
        settle_ms: int = 2000,
        manual_solve_wait: float = 0.0,
        screenshot_dir: Optional[Path] = None,
        screenshots: bool = True,
    ):
        """
        Initialize the page driver.

        Args:
            headless: Run browser in headless mode
            navigation_timeout: Upper bound for one navigation, in seconds
            content_timeouts: (first selector, fallback selectors) wait bounds in seconds
            user_agent: User agent presented to the site
            rate_limit: Minimum seconds between navigations
            challenge_selectors: Selectors that indicate a challenge page, by priority
            hold_selectors: Press-and-hold controls, first located one is used
            result_selectors: Selectors proving the challenge was cleared
            hold_range_ms: Random hold duration bounds in milliseconds
            settle_ms: Wait after releasing the hold
            manual_solve_wait: Seconds to wait for a human in headed mode
            screenshot_dir: Where capture() writes images
            screenshots: Disable to skip all captures
        """
        self.headless = headless
        self.navigation_timeout = navigation_timeout
        self.content_timeouts = content_timeouts
        self.user_agent = user_agent
        self.rate_limit = rate_limit
        self.challenge_selectors = list(challenge_selectors or []) + [
            s for s in DEFAULT_CHALLENGE_SELECTORS if s not in (challenge_selectors or [])
        ]
        self.hold_selectors = list(hold_selectors or [])
        self.result_selectors = list(result_selectors or [])
        self.hold_range_ms = hold_range_ms
        self.settle_ms = settle_ms
        self.manual_solve_wait = manual_solve_wait
        self.screenshot_dir = Path(screenshot_dir) if screenshot_dir else None
        self.screenshots = screenshots and screenshot_dir is not None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self._playwright = None
        self._last_request_time = 0.0

    @classmethod
    def from_settings(cls, settings, **overrides) -> 'StealthPageDriver':
        """Build a driver from application settings; keyword args win."""
        options = dict(
            headless=settings.scraper_headless,
            navigation_timeout=settings.scraper_navigation_timeout,
            content_timeouts=(settings.scraper_content_timeout, settings.scraper_content_fallback_timeout),
            user_agent=settings.scraper_user_agent,
            rate_limit=settings.scraper_rate_limit,
            hold_range_ms=(settings.scraper_hold_min_ms, settings.scraper_hold_max_ms),
            settle_ms=settings.scraper_challenge_settle_ms,
            manual_solve_wait=settings.scraper_manual_challenge_wait,
            screenshot_dir=settings.screenshot_dir,
            screenshots=settings.scraper_screenshots,
        )
        options.update(overrides)
        return cls(**options)

    async def _wait_for_rate_limit(self):
        """Wait to respect rate limit with some randomization."""
        if self.rate_limit <= 0:
            return
        elapsed = time.time() - self._last_request_time
        wait_time = self.rate_limit - elapsed + random.uniform(0, 0.5)
        if wait_time > 0:
            await asyncio.sleep(wait_time)
        self._last_request_time = time.time()

    async def _init_browser(self):
        """Launch Playwright, Chromium and a stealth context."""
        try:
            self._playwright = await async_playwright().start()

            chromium_path = self._playwright.chromium.executable_path
            if not chromium_path or not os.path.exists(chromium_path):
                raise RuntimeError("Chromium browser not found. Run: playwright install chromium")

            logger.debug("Launching Chromium browser...")
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=[
                    '--disable-blink-features=AutomationControlled',
                    '--disable-dev-shm-usage',
                    '--no-sandbox',
                    '--disable-setuid-sandbox',
                    '--window-size=1920,1080',
                ],
                handle_sigint=False,
                handle_sigterm=False,
                handle_sighup=False,
            )

            self._context = await self._browser.new_context(
                viewport={'width': 1920, 'height': 1080},
                user_agent=self.user_agent,
                locale='en-US',
                timezone_id='America/New_York',
                extra_http_headers={
                    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8',
                    'Accept-Language': 'en-US,en;q=0.9',
                    'Connection': 'keep-alive',
                    'Upgrade-Insecure-Requests': '1',
                    'Sec-Fetch-Dest': 'document',
                    'Sec-Fetch-Mode': 'navigate',
                    'Sec-Fetch-Site': 'none',
                    'Sec-Fetch-User': '?1',
                }
            )
            await self._context.add_init_script(FINGERPRINT_SCRIPT)
            logger.debug("Browser initialization successful")

        except Exception as e:
            logger.error(f"Failed to initialize browser: {e}")
            await self._cleanup()
            raise

    async def _ensure_page(self) -> Page:
        """Get the session page, launching the browser on first use."""
        if self._page is not None:
            return self._page
        if self._context is None:
            await self._init_browser()
        self._page = await asyncio.wait_for(self._context.new_page(), timeout=10.0)
        self._page.set_default_navigation_timeout(self.navigation_timeout * 1000)
        return self._page

    async def open(self, url: str) -> Page:
        """
        Navigate the session page to url.

        Raises:
            NavigationTimeout: navigation exceeded navigation_timeout
            NavigationError: any other navigation failure
        """
        await self._wait_for_rate_limit()
        try:
            page = await self._ensure_page()
        except Exception as e:
            raise NavigationError(url, f"Browser unavailable for {url}: {e}") from e

        logger.debug(f"Opening {url}")
        try:
            # Hard bound on top of Playwright's own timeout so a wedged browser cannot hang the run
            response = await asyncio.wait_for(
                page.goto(url, wait_until='domcontentloaded', timeout=int(self.navigation_timeout * 1000)),
                timeout=self.navigation_timeout + 5,
            )
        except (PlaywrightTimeoutError, asyncio.TimeoutError) as e:
            raise NavigationTimeout(url, self.navigation_timeout) from e
        except Exception as e:
            raise NavigationError(url, f"Navigation to {url} failed: {e}") from e

        # Challenge pages often come back as 403; let the challenge step decide
        if response is not None and response.status >= 400:
            logger.warning(f"HTTP {response.status} for {url}")
        return page

    async def wait_for_content(
        self,
        selectors: Sequence[str],
        timeouts: Optional[Tuple[float, float]] = None,
    ) -> bool:
        """
        Wait for result content to appear.

        The first selector gets the primary timeout, later ones the fallback
        timeout. Never raises; False means nothing showed up and extraction
        will simply find no cards.
        """
        if self._page is None:
            return False
        primary, fallback = timeouts or self.content_timeouts
        for index, selector in enumerate(selectors):
            timeout = primary if index == 0 else fallback
            try:
                await self._page.wait_for_selector(selector, timeout=int(timeout * 1000))
                logger.debug(f"Content ready: {selector}")
                return True
            except Exception as e:
                logger.debug(f"No content for {selector} within {timeout:.0f}s: {e}")
        logger.warning("No result content found with any selector")
        return False

    async def _first_present(self, selectors: Sequence[str]) -> Optional[str]:
        for selector in selectors:
            if await self._page.query_selector(selector) is not None:
                return selector
        return None

    async def _results_present(self) -> bool:
        return await self._first_present(self.result_selectors) is not None

    async def _press_and_hold(self) -> bool:
        """Hold the first located control, then report whether results are showing."""
        control = None
        for selector in self.hold_selectors:
            control = await self._page.query_selector(selector)
            if control is not None:
                logger.info(f"Found press-and-hold control: {selector}")
                break
        if control is None:
            logger.info("Could not find a press-and-hold control")
            return False

        box = await control.bounding_box()
        if not box:
            logger.info("Press-and-hold control is not visible")
            return False

        await self._page.mouse.move(box['x'] + box['width'] / 2, box['y'] + box['height'] / 2)
        hold_ms = random.randint(*self.hold_range_ms)
        logger.info(f"Pressing and holding for {hold_ms}ms...")
        await self._page.mouse.down()
        await asyncio.sleep(hold_ms / 1000)
        await self._page.mouse.up()
        await asyncio.sleep(self.settle_ms / 1000)
        return await self._results_present()

    async def detect_and_solve_challenge(self) -> bool:
        """
        Detect an anti-bot challenge and try to clear it.

        Best-effort: every failure is logged and swallowed.

        Returns:
            True when no challenge is showing afterwards
        """
        if self._page is None:
            return True
        try:
            selector = await self._first_present(self.challenge_selectors)
            if selector is None:
                logger.debug("No challenge detected")
                return True

            logger.warning(f"Challenge detected with selector: {selector}")
            await self.capture('challenge-detected')

            cleared = await self._press_and_hold()
            await self.capture('challenge-after-attempt')

            if not cleared and not self.headless and self.manual_solve_wait > 0:
                logger.info(f"Headed browser: waiting {self.manual_solve_wait:.0f}s for manual solving...")
                await asyncio.sleep(self.manual_solve_wait)
                cleared = await self._results_present()

            if not cleared:
                raise ChallengeUnresolved(f"Challenge still present after automated attempt ({selector})")

            logger.info("Passed challenge verification")
            return True

        except ChallengeUnresolved as e:
            logger.warning(f"{e}; continuing without results")
            return False
        except Exception as e:
            logger.error(f"Error handling challenge: {e}")
            return False

    async def capture(self, label: str) -> Optional[Path]:
        """Save a full-page screenshot. Best-effort; returns the path when written."""
        if not self.screenshots or self._page is None:
            return None
        try:
            self.screenshot_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now().strftime('%Y%m%d-%H%M%S-%f')
            path = self.screenshot_dir / f"{stamp}-{_slug(label)}.png"
            await asyncio.wait_for(self._page.screenshot(path=str(path), full_page=True), timeout=15.0)
            logger.debug(f"Screenshot saved: {path}")
            return path
        except Exception as e:
            logger.debug(f"Screenshot '{label}' failed: {e}")
            return None

    async def content(self) -> str:
        """Current page HTML, empty when no page is open."""
        if self._page is None:
            return ''
        return await self._page.content()

    async def soup(self) -> BeautifulSoup:
        """Current page parsed with BeautifulSoup."""
        return BeautifulSoup(await self.content(), 'html.parser')

    async def _cleanup(self):
        """Clean up browser resources with timeouts to prevent hanging."""
        cleanup_timeout = 2.0

        if self._page:
            try:
                await asyncio.wait_for(self._page.close(), timeout=cleanup_timeout)
            except asyncio.TimeoutError:
                logger.warning("Page close timed out, forcing cleanup")
            except Exception as e:
                logger.debug(f"Error closing page: {e}")
            self._page = None

        if self._context:
            try:
                await asyncio.wait_for(self._context.close(), timeout=cleanup_timeout)
            except asyncio.TimeoutError:
                logger.warning("Context close timed out, forcing cleanup")
            except Exception as e:
                logger.warning(f"Error closing context: {e}")
            self._context = None

        if self._browser:
            try:
                await asyncio.wait_for(self._browser.close(), timeout=cleanup_timeout)
            except asyncio.TimeoutError:
                logger.warning("Browser close timed out, forcing cleanup")
            except Exception as e:
                logger.warning(f"Error closing browser: {e}")
            self._browser = None

        if self._playwright:
            try:
                await asyncio.wait_for(self._playwright.stop(), timeout=cleanup_timeout)
            except asyncio.TimeoutError:
                logger.warning("Playwright stop timed out, forcing cleanup")
            except Exception as e:
                logger.warning(f"Error stopping playwright: {e}")
            self._playwright = None

    @property
    def is_open(self) -> bool:
        return any(r is not None for r in (self._page, self._context, self._browser, self._playwright))

    async def close(self):
        """Close the browser and cleanup resources."""
        await self._cleanup()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self._cleanup()
