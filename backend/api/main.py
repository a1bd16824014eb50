from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import datetime
import logging
import asyncio
import re

from api.database import get_db, init_db, PropertySearch, User, engine
from api.config import settings
from api.errors import PersistenceFailure, RunInProgress, SearchInactive, SearchNotFound
from api.identity import get_current_user, verify_cron_key
from api.notifications import NotificationService, build_notifier
from api.reconcile import ReconciliationEngine, run_locks
from api.store import ListingStore
from scrapers.manager import ScraperManager
from pydantic import BaseModel

# Setup logging directory
settings.log_dir.mkdir(parents=True, exist_ok=True)


# Custom formatter to strip ANSI color codes from file logs
class ColorStripFormatter(logging.Formatter):
    """Formatter that strips ANSI color codes from log messages."""
    ansi_escape = re.compile(r'\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])')

    def format(self, record):
        message = super().format(record)
        return self.ansi_escape.sub('', message)

# Setup logging with color support for console, stripped for file
file_handler = logging.FileHandler(settings.log_file, encoding='utf-8')
file_handler.setFormatter(ColorStripFormatter(settings.log_format))

console_handler = logging.StreamHandler()
console_handler.setFormatter(logging.Formatter(settings.log_format))

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    handlers=[file_handler, console_handler],
    force=True  # Override any existing configuration
)

# Scraper loggers get their own handlers and do not propagate to root,
# so each message appears once
scraper_logger = logging.getLogger('scraper')
scraper_logger.propagate = False
# Only add handlers if not already present (prevents duplicates on module reload)
if not scraper_logger.handlers:
    scraper_file_handler = logging.FileHandler(settings.log_file, encoding='utf-8')
    scraper_file_handler.setFormatter(ColorStripFormatter(settings.log_format))
    scraper_logger.addHandler(scraper_file_handler)

    scraper_console_handler = logging.StreamHandler()
    scraper_console_handler.setFormatter(logging.Formatter(settings.log_format))
    scraper_logger.addHandler(scraper_console_handler)
scraper_logger.setLevel(getattr(logging, settings.log_level.upper()))

logger = logging.getLogger(__name__)


async def cleanup_resources():
    """Clean up all resources on shutdown."""
    logger.info("Cleaning up resources...")
    try:
        logger.info("Closing database connections...")
        # dispose is synchronous; keep it off the event loop
        await asyncio.wait_for(
            asyncio.get_running_loop().run_in_executor(None, lambda: engine.dispose(close=True)),
            timeout=2.0
        )
        logger.info("Database connections closed")
    except asyncio.TimeoutError:
        logger.warning("Database cleanup timed out, forcing close")
        engine.dispose(close=True)
    except Exception as e:
        logger.warning(f"Error closing database connections: {e}")
    logger.info("Resource cleanup complete")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    logger.info("=" * 60)
    logger.info("Property Finder Backend Starting Up")
    logger.info("=" * 60)
    logger.info(f"Log file: {settings.log_file}")
    logger.info(f"Database: {settings.database_url}")
    logger.info(f"CORS origins: {settings.cors_origins}")
    logger.info(f"Email delivery: {'configured' if settings.email_server else 'disabled'}")
    init_db()
    logger.info("Database initialized successfully")
    logger.info("Backend ready to accept requests")

    yield  # Application runs here

    logger.info("=" * 60)
    logger.info("Property Finder Backend Shutting Down")
    logger.info("=" * 60)
    try:
        await asyncio.wait_for(cleanup_resources(), timeout=5.0)
    except asyncio.TimeoutError:
        logger.warning("Shutdown cleanup timed out, forcing exit")
    except Exception as e:
        logger.error(f"Error during shutdown cleanup: {e}")
    logger.info("Shutdown complete")


app = FastAPI(
    title="Property Finder API",
    version="1.0.0",
    lifespan=lifespan
)

# Note: allow_credentials must be False when allow_origins is ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/favicon.ico", include_in_schema=False)
async def favicon():
    """Return empty response for favicon requests"""
    return Response(status_code=204)


# Pydantic models for requests and responses
class ScrapeRequest(BaseModel):
    search_id: int


class SearchRunResponse(BaseModel):
    id: int
    search_id: Optional[int] = None
    source: str
    status: str
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    items_found: int = 0
    new_items: int = 0
    error_message: Optional[str] = None

    class Config:
        from_attributes = True


def get_engine(db: Session = Depends(get_db)) -> ReconciliationEngine:
    """Build the reconciliation engine for one request."""
    store = ListingStore(db)
    notifications = NotificationService(
        store,
        build_notifier(settings),
        placeholder_domain=settings.placeholder_email_domain,
    )
    return ReconciliationEngine(
        store,
        manager=ScraperManager(),
        notifications=notifications,
        locks=run_locks,
        stale_after_minutes=settings.run_stale_after_minutes,
    )


async def _run_search(engine: ReconciliationEngine, search_id: int) -> dict:
    """Run the engine and map pipeline errors to HTTP status codes."""
    try:
        summary = await engine.run(search_id)
    except SearchNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (SearchInactive, RunInProgress) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PersistenceFailure as e:
        logger.error(f"Run for search {search_id} aborted: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to run scraper: {e}")
    except Exception as e:
        logger.exception(f"Run for search {search_id} failed")
        raise HTTPException(status_code=500, detail=f"Failed to run scraper: {e}")
    return {"success": True, "run": summary.to_dict()}


def _owned_search(db: Session, search_id: int, user: User) -> PropertySearch:
    search = db.query(PropertySearch).filter(
        PropertySearch.id == search_id,
        PropertySearch.user_id == user.id,
    ).first()
    if not search:
        raise HTTPException(status_code=404, detail="Search not found")
    return search


@app.get("/")
async def root():
    return {"message": "Property Finder API", "version": "1.0.0"}


@app.get("/api/scrapers")
async def list_scrapers():
    """List configured listing sources and whether they are implemented"""
    return {"scrapers": ScraperManager().list_scrapers()}


@app.post("/api/scrape")
async def trigger_scrape(
    request: ScrapeRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """Run the scraper for one of the caller's searches"""
    _owned_search(db, request.search_id, user)
    logger.info(f"User {user.id} triggered run for search {request.search_id}")
    return await _run_search(engine, request.search_id)


@app.get("/api/scrape")
async def scheduled_scrape(
    search_id: int = Query(..., description="Search to run"),
    _: bool = Depends(verify_cron_key),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """Run the scraper for a search on behalf of the scheduler"""
    logger.info(f"Scheduled run for search {search_id}")
    return await _run_search(engine, search_id)


@app.get("/api/searches/{search_id}/runs", response_model=List[SearchRunResponse])
async def get_search_runs(
    search_id: int,
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Recent run records for one of the caller's searches"""
    _owned_search(db, search_id, user)
    return ListingStore(db).recent_runs(search_id, limit=limit)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        access_log=True,
        log_config=None,  # Keep the logging configured above
        timeout_keep_alive=5,
        timeout_graceful_shutdown=5.0,
    )
