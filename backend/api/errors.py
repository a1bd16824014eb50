"""
Error taxonomy for the scrape-and-reconcile pipeline.

Errors local to a location, listing or notification are contained by the
component that raises them. Errors in run setup and persistence abort the run
and reach the caller.
"""

from typing import Optional


class PropertyFinderError(Exception):
    """Base class for pipeline errors."""


class SearchNotFound(PropertyFinderError):
    """The requested search does not exist."""

    def __init__(self, search_id):
        self.search_id = search_id
        super().__init__(f"Search {search_id} not found")


class SearchInactive(PropertyFinderError):
    """The requested search exists but is disabled."""

    def __init__(self, search_id):
        self.search_id = search_id
        super().__init__(f"Search {search_id} is not active")


class Unauthorized(PropertyFinderError):
    """The caller lacks rights to act on the resource."""


class RunInProgress(PropertyFinderError):
    """Another run for the same search is still active."""

    def __init__(self, search_id):
        self.search_id = search_id
        super().__init__(f"A run for search {search_id} is already in progress")


class PersistenceFailure(PropertyFinderError):
    """A store write failed; the run is aborted."""


class NotificationFailure(PropertyFinderError):
    """Delivering a notification failed. Never fatal to a run."""

    def __init__(self, message: str, address: Optional[str] = None):
        self.address = address
        super().__init__(message)
