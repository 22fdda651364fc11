"""Exceptions raised by the calendar sync pipeline."""

from typing import Optional


class CalendarSyncError(Exception):
    """Base class for calendar sync failures."""


class FetchError(CalendarSyncError):
    """The feed URL could not be fetched or did not return a calendar."""

    def __init__(self, url: str, reason: str, status_code: Optional[int] = None):
        self.url = url
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"Failed to fetch calendar: {reason}")


class FeedParseError(CalendarSyncError):
    """The feed body is not an iCal document at all."""


class PropertyNotFound(CalendarSyncError):
    """No property exists with the requested id."""

    def __init__(self, property_id: int):
        self.property_id = property_id
        super().__init__(f"Property {property_id} not found")


class MisconfiguredSync(CalendarSyncError):
    """A sync was requested for a property without a feed URL.

    The orchestrator catches this and reports a successful no-op.
    """


class ReconciliationPartialFailure(CalendarSyncError):
    """One or more store writes in a reconciliation batch failed."""

    def __init__(self, succeeded: int, failed: int, errors: list[str]):
        self.succeeded = succeeded
        self.failed = failed
        self.errors = errors
        super().__init__(
            f"{failed} of {succeeded + failed} job operations failed"
        )
