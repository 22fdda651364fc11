"""Configuration for the cleaning sync service."""

from datetime import time
from enum import Enum
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class JobStatus(str, Enum):
    """Lifecycle status of a cleaning job."""

    OPEN = "open"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class JobSource(str, Enum):
    """Where a cleaning job came from."""

    FEED = "feed"
    MANUAL = "manual"


class SyncStatus(str, Enum):
    """Outcome of the last sync recorded on a property."""

    OK = "ok"
    PARTIAL = "partial"
    FAILED = "failed"
    DISCARDED = "discarded"


# A feed-owned job in one of these states is never rewritten by a sync
PROTECTED_STATUSES = frozenset(
    s.value for s in (JobStatus.IN_PROGRESS, JobStatus.COMPLETED, JobStatus.CANCELLED)
)

# Summaries that mark an unavailability block rather than a stay
DEFAULT_BLOCKED_SUMMARIES = [
    "blocked",
    "not available",
    "airbnb (not available)",
]


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="CLEANING_",
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///./cleaning_sync.db"

    # Feed fetching
    feed_fetch_timeout: float = 30.0
    feed_fetch_retries: int = 2
    feed_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
    )

    # Recurring sync of every linked feed
    sync_interval_hours: int = 6
    # Properties synced at once during a bulk sync
    sync_concurrency: int = 4
    # Store writes in flight at once within one property's sync
    write_concurrency: int = 4

    # Job defaults for checkout cleanings
    default_cleaning_time: time = time(10, 0)
    default_cleaning_hours: int = 3

    # Checkouts older than this many days are neither created nor removed; None disables
    past_checkout_days: Optional[int] = 0

    blocked_summaries: list[str] = Field(
        default_factory=lambda: list(DEFAULT_BLOCKED_SUMMARIES)
    )

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8099
    debug: bool = False


# Global settings instance
settings = Settings()
