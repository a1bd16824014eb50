"""
Pytest configuration and fixtures for Property Finder tests.
"""

import json
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from api.database import Base, get_db
from api.main import app, get_engine
from api.notifications import NotificationService
from api.reconcile import ReconciliationEngine, SearchRunLocks
from api.store import ListingStore
from scrapers.base import ScrapeResult
from scrapers.manager import ScraperManager
from scrapers.models import PropertyType, ScrapedListing


# Create an in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    """Override the get_db dependency for testing."""
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store(db_session):
    return ListingStore(db_session)


# ============================================================
# Fakes
# ============================================================

class RecordingNotifier:
    """Notifier that records deliveries, or fails when told to."""

    def __init__(self, error=None):
        self.error = error
        self.sent = []

    async def send(self, to_address, listing):
        if self.error is not None:
            raise self.error
        self.sent.append((to_address, listing.url))


class FakeScraper:
    """Stands in for a site scraper: returns canned listings."""

    def __init__(self, listings=None, error=None, source='fake'):
        self.listings = list(listings or [])
        self.error = error
        self.calls = []
        self.result = ScrapeResult(source=source, started_at=datetime.now(timezone.utc))

    async def scrape(self, criteria):
        self.calls.append(criteria)
        if self.error is not None:
            raise self.error
        self.result.accepted = len(self.listings)
        self.result.completed_at = datetime.now(timezone.utc)
        return list(self.listings)


class FakeDriver:
    """
    Page driver serving canned HTML per URL fragment.

    pages maps a substring of the search URL to HTML; failures maps a
    substring to the exception open() should raise.
    """

    def __init__(self, pages=None, failures=None):
        self.pages = pages or {}
        self.failures = failures or {}
        self.opened = []
        self.captures = []
        self.closed = 0
        self._html = ''

    async def open(self, url):
        self.opened.append(url)
        for fragment, error in self.failures.items():
            if fragment in url:
                raise error
        self._html = ''
        for fragment, html in self.pages.items():
            if fragment in url:
                self._html = html
        return SimpleNamespace(url=url)

    async def detect_and_solve_challenge(self):
        return True

    async def wait_for_content(self, selectors, timeouts=None):
        return bool(self._html)

    async def capture(self, label):
        self.captures.append(label)

    async def soup(self):
        from bs4 import BeautifulSoup
        return BeautifulSoup(self._html, 'html.parser')

    async def close(self):
        self.closed += 1


class FakeElement:
    def __init__(self, box=None):
        self.box = box if box is not None else {'x': 10, 'y': 20, 'width': 100, 'height': 40}

    async def bounding_box(self):
        return self.box


class FakeMouse:
    def __init__(self, on_release=None):
        self.events = []
        self.on_release = on_release

    async def move(self, x, y):
        self.events.append(('move', x, y))

    async def down(self):
        self.events.append('down')

    async def up(self):
        self.events.append('up')
        if self.on_release:
            self.on_release()


class FakePage:
    """Minimal Playwright page double keyed by which selectors are present."""

    def __init__(self, present=(), html='<html></html>', goto_error=None, status=200,
                 cleared_by_hold=None, box=None):
        self.present = set(present)
        self.html = html
        self.goto_error = goto_error
        self.status = status
        self.cleared_by_hold = cleared_by_hold
        self.box = box
        self.mouse = FakeMouse(on_release=self._released)
        self.visited = []
        self.waited = []
        self.screenshots = []
        self.closed = False

    def _released(self):
        if self.cleared_by_hold is not None:
            removed, added = self.cleared_by_hold
            self.present -= set(removed)
            self.present |= set(added)

    async def goto(self, url, wait_until=None, timeout=None):
        self.visited.append((url, timeout))
        if self.goto_error is not None:
            raise self.goto_error
        return SimpleNamespace(status=self.status)

    async def query_selector(self, selector):
        return FakeElement(self.box) if selector in self.present else None

    async def wait_for_selector(self, selector, timeout=None):
        self.waited.append((selector, timeout))
        if selector in self.present:
            return FakeElement()
        raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded.")

    async def screenshot(self, path=None, full_page=False):
        self.screenshots.append(path)

    async def content(self):
        return self.html

    async def close(self):
        self.closed = True


@pytest.fixture
def fakes():
    """Fake collaborators for tests that build their own drivers, scrapers or notifiers."""
    return SimpleNamespace(
        Page=FakePage,
        Driver=FakeDriver,
        Scraper=FakeScraper,
        Notifier=RecordingNotifier,
    )


# ============================================================
# Sample data
# ============================================================

@pytest.fixture
def make_listing():
    """Factory for scraped listings; defaults describe a matching Arlington home."""
    def _make(**overrides):
        data = dict(
            address="123 Main St",
            city="Arlington",
            state="VA",
            zip_code="22203",
            url="https://x/1",
            source="fake",
            price=550000.0,
            bedrooms=2,
            bathrooms=1.5,
            square_feet=1200,
            property_type=PropertyType.HOUSE,
            image_url=None,
        )
        data.update(overrides)
        return ScrapedListing(**data)
    return _make


@pytest.fixture
def sample_user(db_session):
    """A user with a real email address."""
    from api.database import User

    user = User(external_id="user_abc123", name="Test User", email="buyer@realmail.test")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def placeholder_user(db_session):
    """A user who only has a placeholder email address."""
    from api.database import User

    user = User(external_id="user_placeholder", name="New User", email="user-1234@example.com")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


def _create_search(db_session, user, **overrides):
    from api.database import PropertySearch

    data = dict(
        user_id=user.id,
        name="DC suburbs",
        min_price=None,
        max_price=600000,
        min_bedrooms=2,
        min_bathrooms=1,
        locations=json.dumps(["Arlington VA", "22203"]),
        is_active=True,
        notify_on_new=True,
    )
    data.update(overrides)
    search = PropertySearch(**data)
    db_session.add(search)
    db_session.commit()
    db_session.refresh(search)
    return search


@pytest.fixture
def sample_search(db_session, sample_user):
    """Active search owned by sample_user."""
    return _create_search(db_session, sample_user)


@pytest.fixture
def placeholder_search(db_session, placeholder_user):
    """Active search owned by a user with a placeholder email."""
    return _create_search(db_session, placeholder_user, name="Placeholder owner")


@pytest.fixture
def inactive_search(db_session, sample_user):
    return _create_search(db_session, sample_user, name="Paused", is_active=False)


@pytest.fixture
def build_engine(store):
    """Build a ReconciliationEngine over the test store with fake scrapers."""
    def _build(scrapers=None, notifier=None, locks=None):
        registry = {
            key: (lambda scraper=scraper: scraper)
            for key, scraper in (scrapers or {}).items()
        }
        return ReconciliationEngine(
            store,
            manager=ScraperManager(registry=registry),
            notifications=NotificationService(store, notifier),
            locks=locks or SearchRunLocks(),
        )
    return _build


# ============================================================
# API client
# ============================================================

@pytest.fixture
def scraper_registry():
    """Registry used by the API's engine; tests put fakes in it."""
    return {}


@pytest.fixture
def api_notifier():
    return RecordingNotifier()


@pytest.fixture(scope="function")
def client(db_session, scraper_registry, api_notifier):
    """Create a test client with database and engine overrides."""
    def override_get_engine(db: Session = Depends(get_db)):
        test_store = ListingStore(db)
        return ReconciliationEngine(
            test_store,
            manager=ScraperManager(registry=scraper_registry),
            notifications=NotificationService(test_store, api_notifier),
            locks=SearchRunLocks(),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_engine] = override_get_engine
    Base.metadata.create_all(bind=engine)

    # Use TestClient directly without context manager so startup does not touch the real database
    test_client = TestClient(app)
    yield test_client

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)
