from sqlalchemy import create_engine, Column, Integer, String, Float, DateTime, Boolean, Text, ForeignKey, Table, Index
from sqlalchemy.orm import declarative_base, sessionmaker, relationship
from datetime import datetime, timezone
from pathlib import Path
import json


def utc_now():
    """Return current UTC time (timezone-aware). Replaces deprecated datetime.utcnow()."""
    return datetime.now(timezone.utc)

Base = declarative_base()

# Association table for many-to-many relationship between searches and listings
search_listings = Table('search_listings', Base.metadata,
    Column('search_id', Integer, ForeignKey('property_searches.id'), primary_key=True),
    Column('listing_id', Integer, ForeignKey('listings.id'), primary_key=True)
)

NOTIFICATION_PENDING = 'pending'
NOTIFICATION_SENT = 'sent'
NOTIFICATION_FAILED = 'failed'

RUN_RUNNING = 'running'
RUN_SUCCESS = 'success'
RUN_FAILED = 'failed'


class User(Base):
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    external_id = Column(String, unique=True, index=True)  # Identity provider subject
    name = Column(String)
    email = Column(String)  # May be a placeholder address
    created_at = Column(DateTime, default=utc_now)

    searches = relationship("PropertySearch", back_populates="user")


class PropertySearch(Base):
    __tablename__ = 'property_searches'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    name = Column(String, nullable=False)

    # Criteria
    min_price = Column(Float)
    max_price = Column(Float, nullable=False)
    min_bedrooms = Column(Integer, nullable=False, default=0)
    min_bathrooms = Column(Float, nullable=False, default=0)
    locations = Column(Text, nullable=False)  # JSON array of location tokens

    is_active = Column(Boolean, default=True, index=True)
    notify_on_new = Column(Boolean, default=True)
    last_checked_at = Column(DateTime)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    user = relationship("User", back_populates="searches")
    listings = relationship("Listing", secondary=search_listings, back_populates="searches")
    runs = relationship("SearchRun", back_populates="search")

    @property
    def location_list(self):
        """Decode the stored location tokens."""
        if not self.locations:
            return []
        return json.loads(self.locations)


class Listing(Base):
    __tablename__ = 'listings'

    id = Column(Integer, primary_key=True)

    # Address
    address = Column(String, nullable=False)
    city = Column(String, nullable=False, index=True)
    state = Column(String, nullable=False)
    zip_code = Column(String, index=True)

    # Details
    price = Column(Float, nullable=False)
    bedrooms = Column(Integer, nullable=False)
    bathrooms = Column(Float, nullable=False)
    square_feet = Column(Integer)
    property_type = Column(String, default='Unknown')

    # Identity: one row per listing URL
    url = Column(String, unique=True, nullable=False)
    image_url = Column(String)
    source = Column(String, nullable=False, index=True)

    # Notification bookkeeping
    is_notified = Column(Boolean, default=False)
    notification_status = Column(String, default=NOTIFICATION_PENDING)

    created_at = Column(DateTime, default=utc_now)

    searches = relationship("PropertySearch", secondary=search_listings, back_populates="listings")

    __table_args__ = (
        Index('ix_listings_city_state', 'city', 'state'),
    )


class SearchRun(Base):
    __tablename__ = 'search_runs'

    id = Column(Integer, primary_key=True)
    search_id = Column(Integer, ForeignKey('property_searches.id'), index=True)
    source = Column(String, nullable=False)
    status = Column(String, nullable=False, default=RUN_RUNNING, index=True)
    start_time = Column(DateTime, default=utc_now)
    end_time = Column(DateTime)
    items_found = Column(Integer, default=0)
    new_items = Column(Integer, default=0)
    error_message = Column(Text)

    search = relationship("PropertySearch", back_populates="runs")

    __table_args__ = (
        Index('ix_search_runs_search_status', 'search_id', 'status'),
    )


class NotificationAttempt(Base):
    __tablename__ = 'notification_attempts'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id'), index=True)
    listing_id = Column(Integer, ForeignKey('listings.id'), index=True)
    status = Column(String, nullable=False)  # sent | failed
    error_message = Column(Text)
    timestamp = Column(DateTime, default=utc_now)


# Database setup - import settings for database URL
from api.config import settings


def _engine_options(database_url: str) -> dict:
    if database_url.startswith('sqlite'):
        # Sessions cross the FastAPI threadpool boundary
        return {'connect_args': {'check_same_thread': False}}
    return {
        'pool_size': 5,           # Number of connections to keep in pool
        'max_overflow': 10,       # Additional connections allowed beyond pool_size
        'pool_pre_ping': True,    # Verify connections before use (handles stale connections)
        'pool_recycle': 3600,     # Recycle connections after 1 hour
    }


engine = create_engine(settings.database_url, echo=False, **_engine_options(settings.database_url))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

def init_db():
    database = engine.url.database
    if engine.url.get_backend_name() == 'sqlite' and database and database != ':memory:':
        Path(database).parent.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(bind=engine)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
