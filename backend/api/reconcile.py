"""
Reconciliation engine: one scrape-diff-persist-notify run for a search.

A run loads the search, scrapes every enabled source, stores listings whose
URL has never been seen, alerts the owner about them and records the outcome
in a SearchRun row. Re-sighted listings are left untouched.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from api.database import RUN_FAILED, RUN_RUNNING, RUN_SUCCESS, utc_now
from api.errors import (
    PersistenceFailure,
    PropertyFinderError,
    RunInProgress,
    SearchInactive,
    SearchNotFound,
)
from api.notifications import NOTIFY_FAILED, NOTIFY_SENT, NOTIFY_SKIPPED, NotificationService
from api.store import ListingStore
from scrapers.manager import ScraperManager
from scrapers.models import ScrapedListing, SearchCriteria

logger = logging.getLogger(__name__)

RUN_SOURCE = 'multiple'


class SearchRunLocks:
    """
    One active run per search id within this process.

    Acquisition never waits: a second run for a busy search is refused.
    """

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}

    def is_running(self, search_id: int) -> bool:
        lock = self._locks.get(search_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, search_id: int):
        lock = self._locks.setdefault(search_id, asyncio.Lock())
        if lock.locked():
            raise RunInProgress(search_id)
        await lock.acquire()
        try:
            yield
        finally:
            lock.release()
            if self._locks.get(search_id) is lock and not lock.locked():
                del self._locks[search_id]


# Shared by every engine in the process
run_locks = SearchRunLocks()


@dataclass
class RunSummary:
    """Outcome of one run, returned to the trigger."""
    search_id: Optional[int]
    run_id: Optional[int] = None
    status: str = RUN_RUNNING
    items_found: int = 0
    new_items: int = 0
    notified: int = 0
    notification_failures: int = 0
    notifications_skipped: int = 0
    started_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    error_message: Optional[str] = None
    sources: Dict[str, dict] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'search_id': self.search_id,
            'run_id': self.run_id,
            'status': self.status,
            'items_found': self.items_found,
            'new_items': self.new_items,
            'notified': self.notified,
            'notification_failures': self.notification_failures,
            'notifications_skipped': self.notifications_skipped,
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'error_message': self.error_message,
            'sources': self.sources,
        }


class ReconciliationEngine:
    """
    Runs the scrape-and-reconcile pipeline for one search at a time.

    Usage:
        engine = ReconciliationEngine(ListingStore(db), ScraperManager(), notifications)
        summary = await engine.run(search_id)
    """

    def __init__(
        self,
        store: ListingStore,
        manager: Optional[ScraperManager] = None,
        notifications: Optional[NotificationService] = None,
        locks: Optional[SearchRunLocks] = None,
        stale_after_minutes: int = 30,
    ):
        self.store = store
        self.manager = manager or ScraperManager()
        self.notifications = notifications or NotificationService(store, notifier=None)
        self.locks = locks or run_locks
        self.stale_after = timedelta(minutes=stale_after_minutes)

    def _record_setup_failure(self, search_id: Optional[int], error: Exception):
        """Log a run that never started; a failure to do so is not fatal."""
        try:
            now = utc_now()
            self.store.create_search_run(
                search_id,
                RUN_SOURCE,
                status=RUN_FAILED,
                start_time=now,
                end_time=now,
                error_message=str(error),
            )
        except Exception as e:
            logger.error(f"Could not record failed run for search {search_id}: {e}")
            self.store.rollback()

    async def run(self, search_id: int) -> RunSummary:
        """
        Execute one run for search_id.

        Raises:
            SearchNotFound: no such search
            SearchInactive: search is disabled
            RunInProgress: another run for the search is active
            PersistenceFailure: a store write failed mid-run
        """
        search = self.store.find_search_by_id(search_id)
        if search is None:
            error = SearchNotFound(search_id)
            # search_id is not a valid foreign key here; the id lives in the message
            self._record_setup_failure(None, error)
            raise error
        if not search.is_active:
            error = SearchInactive(search_id)
            self._record_setup_failure(search_id, error)
            raise error

        async with self.locks.hold(search_id):
            active = self.store.find_active_run(search_id, utc_now() - self.stale_after)
            if active is not None:
                logger.warning(f"Search {search_id} already has run {active.id} in progress")
                raise RunInProgress(search_id)

            try:
                run = self.store.create_search_run(search_id, RUN_SOURCE, status=RUN_RUNNING)
            except SQLAlchemyError as e:
                self.store.rollback()
                raise PersistenceFailure(f"Could not create run record: {e}") from e

            summary = RunSummary(search_id=search_id, run_id=run.id)
            logger.info(f"Run {run.id} started for search {search_id} ({search.name})")

            try:
                await self._execute(search, run, summary)
            except Exception as e:
                self._finalize_failed(run, summary, e)
                if isinstance(e, SQLAlchemyError):
                    raise PersistenceFailure(str(e)) from e
                raise

            return summary

    async def _execute(self, search, run, summary: RunSummary):
        criteria = SearchCriteria.from_search(search)

        by_source = await self.manager.scrape_all(criteria)
        accepted: List[ScrapedListing] = []
        for source, listings in by_source.items():
            accepted.extend(listings)
            result = self.manager.results.get(source)
            summary.sources[source] = result.to_dict() if result else {'accepted': len(listings)}
            if result and not result.success:
                logger.warning(f"{source}: {result.errors} error(s) during scrape")
        summary.items_found = len(accepted)

        handled = set()
        for listing in accepted:
            if listing.url in handled:
                continue
            handled.add(listing.url)
            await self._reconcile_listing(search, listing, summary)

        self.store.update_search_last_checked(search)
        summary.status = RUN_SUCCESS
        summary.finished_at = utc_now()
        summary.error_message = self._contained_errors(summary)
        self.store.update_search_run(
            run,
            status=RUN_SUCCESS,
            end_time=summary.finished_at,
            items_found=summary.items_found,
            new_items=summary.new_items,
            error_message=summary.error_message,
        )
        logger.info(
            f"Run {run.id} complete: {summary.items_found} found, {summary.new_items} new, "
            f"{summary.notified} notified"
        )

    async def _reconcile_listing(self, search, listing: ScrapedListing, summary: RunSummary):
        if self.store.find_listing_by_url(listing.url) is not None:
            logger.debug(f"Already stored: {listing.url}")
            return

        row = self.store.create_listing(listing, search.id)
        if row is None:
            return
        summary.new_items += 1
        logger.info(f"New listing: {listing.address}, {listing.city} ({listing.url})")

        if not search.notify_on_new:
            return
        outcome = await self.notifications.notify(row, search.user)
        if outcome == NOTIFY_SENT:
            summary.notified += 1
        elif outcome == NOTIFY_FAILED:
            summary.notification_failures += 1
        elif outcome == NOTIFY_SKIPPED:
            summary.notifications_skipped += 1

    @staticmethod
    def _contained_errors(summary: RunSummary) -> Optional[str]:
        notes = []
        for source, details in summary.sources.items():
            for detail in details.get('error_details', []):
                where = detail.get('location') or 'scraper'
                notes.append(f"{source}/{where}: {detail.get('error')}")
        return '; '.join(notes) or None

    def _finalize_failed(self, run, summary: RunSummary, error: Exception):
        self.store.rollback()
        summary.status = RUN_FAILED
        summary.finished_at = utc_now()
        summary.error_message = str(error) or type(error).__name__
        log = logger.warning if isinstance(error, PropertyFinderError) else logger.error
        log(f"Run {summary.run_id} failed: {summary.error_message}")
        try:
            self.store.update_search_run(
                run,
                status=RUN_FAILED,
                end_time=summary.finished_at,
                items_found=summary.items_found,
                new_items=summary.new_items,
                error_message=summary.error_message,
            )
        except Exception as e:
            # Run stays 'running' until it goes stale
            logger.error(f"Could not finalize run {summary.run_id}: {e}")
            self.store.rollback()
