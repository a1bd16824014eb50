"""
Identity resolution.

The upstream identity provider authenticates callers and forwards a stable
user identifier. This module turns it into an internal User row, creating one
on first sight, and guards the scheduled trigger with a shared key.
"""

import hmac
import logging
import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from api.config import settings
from api.database import User, get_db
from api.errors import Unauthorized
from api.retry import call_with_retry
from api.store import ListingStore

logger = logging.getLogger(__name__)


def placeholder_email(domain: Optional[str] = None) -> str:
    """Synthetic address for users whose real email is not known yet."""
    return f"user-{uuid.uuid4()}@{domain or settings.placeholder_email_domain}"


def resolve_user(
    store: ListingStore,
    external_id: str,
    attempts: Optional[int] = None,
    delay: Optional[float] = None,
) -> User:
    """
    Resolve an external identity to an internal user, creating it if needed.

    Only external_id is matched. Internal ids are small integers and never
    stand in for an upstream identity.

    Two first requests for the same identity can race on the unique
    external_id; the loser rolls back and finds the winner's row on retry.

    Raises:
        Unauthorized: external_id is empty
        IntegrityError: creation kept conflicting after all attempts
    """
    external_id = (external_id or '').strip()
    if not external_id:
        raise Unauthorized("No user identity supplied")

    def lookup_or_create() -> User:
        user = store.find_user_by_external_id(external_id)
        if user is not None:
            return user
        logger.info(f"Creating user for external identity {external_id}")
        return store.create_user(external_id=external_id, email=placeholder_email())

    return call_with_retry(
        lookup_or_create,
        IntegrityError,
        attempts=attempts or settings.identity_retry_attempts,
        delay=settings.identity_retry_delay if delay is None else delay,
        on_retry=lambda e: store.rollback(),
    )


# ============================================================
# FastAPI dependencies
# ============================================================

def get_external_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Identity forwarded by the upstream provider in X-User-Id."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id.strip()


def get_current_user(
    external_id: str = Depends(get_external_user_id),
    db: Session = Depends(get_db),
) -> User:
    try:
        return resolve_user(ListingStore(db), external_id)
    except Unauthorized:
        raise HTTPException(status_code=401, detail="Unauthorized")


def verify_cron_key(x_api_key: Optional[str] = Header(None)) -> bool:
    """Check the scheduled caller's x-api-key against CRON_API_KEY."""
    expected = settings.cron_api_key
    if not expected or not x_api_key:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not hmac.compare_digest(x_api_key.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")
    return True
