"""Recurring trigger for calendar syncs."""

import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "calendar_sync"


class SyncScheduler:
    """Runs the feed sync callback on a fixed interval."""

    def __init__(
        self,
        on_sync: Callable[[], Awaitable[object]],
        interval_hours: int = 6,
        run_on_start: bool = True,
    ):
        """Initialize the scheduler.

        Args:
            on_sync: Callback that syncs every linked feed.
            interval_hours: Hours between syncs.
            run_on_start: Fire the first sync immediately instead of after one interval.
        """
        self._on_sync = on_sync
        self._interval_hours = interval_hours
        self._run_on_start = run_on_start
        self._scheduler = AsyncIOScheduler()
        self._last_run: Optional[datetime] = None

    @property
    def running(self) -> bool:
        return self._scheduler.running

    @property
    def last_run(self) -> Optional[datetime]:
        return self._last_run

    def start(self) -> None:
        """Start the scheduler."""
        # An explicit next_run_time of None would add the job paused
        extra = {"next_run_time": datetime.now()} if self._run_on_start else {}
        self._scheduler.add_job(
            self._handle_sync,
            IntervalTrigger(hours=self._interval_hours),
            id=SYNC_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **extra,
        )
        self._scheduler.start()
        logger.info(f"Scheduler started, syncing calendars every {self._interval_hours}h")

    def stop(self) -> None:
        """Stop the scheduler."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")

    def next_run_time(self) -> Optional[datetime]:
        job = self._scheduler.get_job(SYNC_JOB_ID)
        return job.next_run_time if job else None

    async def _handle_sync(self) -> None:
        """Handle a scheduled sync."""
        self._last_run = datetime.now()
        try:
            await self._on_sync()
        except Exception as e:
            logger.error(f"Error in scheduled calendar sync: {e}")
