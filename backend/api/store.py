"""
Relational store used by the pipeline.

Thin wrapper over a SQLAlchemy session exposing only the operations the
reconciliation engine, identity resolution and routes need. Every write
commits immediately; a failed write leaves the session rolled back.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from api.database import (
    Listing,
    NotificationAttempt,
    PropertySearch,
    SearchRun,
    User,
    NOTIFICATION_PENDING,
    RUN_RUNNING,
    utc_now,
)
from scrapers.models import ScrapedListing

logger = logging.getLogger(__name__)


class ListingStore:
    """Store operations over one database session."""

    def __init__(self, db: Session):
        self.db = db

    def _commit(self):
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    # ---------------------------------------------------------------
    # Users
    # ---------------------------------------------------------------

    def find_user_by_external_id(self, external_id: str) -> Optional[User]:
        return self.db.query(User).filter(User.external_id == external_id).first()

    def find_user_by_id(self, user_id: int) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def create_user(self, external_id: str, email: str, name: Optional[str] = None) -> User:
        """Insert a user. IntegrityError propagates when external_id is taken."""
        user = User(external_id=external_id, email=email, name=name)
        self.db.add(user)
        self._commit()
        self.db.refresh(user)
        return user

    # ---------------------------------------------------------------
    # Searches
    # ---------------------------------------------------------------

    def find_search_by_id(self, search_id: int) -> Optional[PropertySearch]:
        return self.db.query(PropertySearch).filter(PropertySearch.id == search_id).first()

    def update_search_last_checked(self, search: PropertySearch, checked_at: Optional[datetime] = None):
        search.last_checked_at = checked_at or utc_now()
        self._commit()

    # ---------------------------------------------------------------
    # Listings
    # ---------------------------------------------------------------

    def find_listing_by_url(self, url: str) -> Optional[Listing]:
        return self.db.query(Listing).filter(Listing.url == url).first()

    def create_listing(self, listing: ScrapedListing, search_id: int) -> Optional[Listing]:
        """
        Persist a newly seen listing associated with a search.

        Returns:
            The stored row, or None when another writer already stored this URL
        """
        row = Listing(
            address=listing.address,
            city=listing.city,
            state=listing.state,
            zip_code=listing.zip_code,
            price=listing.price,
            bedrooms=listing.bedrooms,
            bathrooms=listing.bathrooms,
            square_feet=listing.square_feet,
            property_type=listing.property_type.value,
            url=listing.url,
            image_url=listing.image_url,
            source=listing.source,
            is_notified=False,
            notification_status=NOTIFICATION_PENDING,
        )
        search = self.find_search_by_id(search_id)
        if search is not None:
            row.searches.append(search)

        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError:
            # URL unique constraint: a concurrent run got there first
            self.db.rollback()
            logger.info(f"Listing already stored by another run: {listing.url}")
            return None
        self.db.refresh(row)
        return row

    def mark_listing_notification(self, listing: Listing, status: str, notified: bool):
        listing.notification_status = status
        listing.is_notified = notified
        self._commit()

    # ---------------------------------------------------------------
    # Runs
    # ---------------------------------------------------------------

    def create_search_run(self, search_id: Optional[int], source: str, **fields) -> SearchRun:
        run = SearchRun(search_id=search_id, source=source, **fields)
        self.db.add(run)
        self._commit()
        self.db.refresh(run)
        return run

    def update_search_run(self, run: SearchRun, **fields) -> SearchRun:
        for key, value in fields.items():
            setattr(run, key, value)
        self._commit()
        return run

    def find_active_run(self, search_id: int, started_after: datetime) -> Optional[SearchRun]:
        """A run still marked running that started after the stale cutoff."""
        return (
            self.db.query(SearchRun)
            .filter(
                SearchRun.search_id == search_id,
                SearchRun.status == RUN_RUNNING,
                SearchRun.start_time >= started_after,
            )
            .order_by(SearchRun.start_time.desc())
            .first()
        )

    def recent_runs(self, search_id: int, limit: int = 20) -> List[SearchRun]:
        return (
            self.db.query(SearchRun)
            .filter(SearchRun.search_id == search_id)
            .order_by(SearchRun.start_time.desc(), SearchRun.id.desc())
            .limit(limit)
            .all()
        )

    # ---------------------------------------------------------------
    # Notification audit
    # ---------------------------------------------------------------

    def create_notification_attempt(
        self,
        user_id: int,
        listing_id: int,
        status: str,
        error_message: Optional[str] = None,
    ) -> NotificationAttempt:
        attempt = NotificationAttempt(
            user_id=user_id,
            listing_id=listing_id,
            status=status,
            error_message=error_message,
        )
        self.db.add(attempt)
        self._commit()
        return attempt

    def rollback(self):
        self.db.rollback()
