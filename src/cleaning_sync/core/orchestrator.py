"""Drive calendar syncs end to end: fetch, parse, map, reconcile, apply."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from cleaning_sync.config import Settings, SyncStatus
from cleaning_sync.core.errors import FeedParseError, FetchError, MisconfiguredSync
from cleaning_sync.core.ical_parser import FeedFetcher, ParseWarning, parse_feed
from cleaning_sync.core.job_mapper import map_events
from cleaning_sync.core.reconciler import (
    OperationFailure,
    SkippedJob,
    apply_plan,
    reconcile,
)
from cleaning_sync.core.unlink import UnlinkResult, unlink_feed
from cleaning_sync.db.models import Property
from cleaning_sync.db.stores import JobStore, PropertyStore

logger = logging.getLogger(__name__)


def _plural(count: int, word: str, plural: Optional[str] = None) -> str:
    return f"{count} {word if count == 1 else (plural or word + 's')}"


@dataclass
class SyncSummary:
    """Result of syncing one property."""

    property_id: int
    address: str
    feed_url: Optional[str] = None
    status: SyncStatus = SyncStatus.OK
    created: list[int] = field(default_factory=list)
    updated: list[int] = field(default_factory=list)
    deleted: list[int] = field(default_factory=list)
    skipped: list[SkippedJob] = field(default_factory=list)
    failures: list[OperationFailure] = field(default_factory=list)
    warnings: list[ParseWarning] = field(default_factory=list)
    unchanged: int = 0
    unlinked: int = 0
    error: Optional[str] = None
    note: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status is not SyncStatus.FAILED

    def message(self) -> str:
        """Human-readable outcome for the host."""
        if self.status is SyncStatus.FAILED:
            return f"Could not sync calendar: {self.error}"

        parts = []
        if self.unlinked:
            parts.append(f"{_plural(self.unlinked, 'job')} removed from the previous calendar")
        if self.note:
            parts.append(self.note)
        # Notes mark runs that wrote nothing from the feed
        if self.note:
            return "; ".join(parts)

        if self.created:
            parts.append(f"{_plural(len(self.created), 'job')} created from calendar")
        if self.updated:
            parts.append(f"{len(self.updated)} updated")
        if self.deleted:
            parts.append(f"{len(self.deleted)} removed")
        if self.skipped:
            parts.append(f"{len(self.skipped)} left unchanged because already claimed or closed")
        if self.failures:
            parts.append(f"{_plural(len(self.failures), 'change')} failed")
        if not parts:
            return "Calendar already up to date"
        return "; ".join(parts)

    def to_result(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "propertyId": self.property_id,
            "jobsCreated": len(self.created),
            "jobsUpdated": len(self.updated),
            "jobsDeleted": len(self.deleted),
            "jobsSkipped": len(self.skipped),
            "jobsUnlinked": self.unlinked,
            "status": self.status.value,
            "error": self.error,
            "message": self.message(),
            "skipped": [
                {"jobId": s.job_id, "reservationId": s.reservation_id, "reason": s.reason}
                for s in self.skipped
            ],
            "warnings": [str(w) for w in self.warnings],
        }


@dataclass
class BulkSyncSummary:
    """Aggregated result of syncing several properties."""

    host_id: Optional[str]
    results: list[SyncSummary] = field(default_factory=list)

    @property
    def failed(self) -> list[SyncSummary]:
        return [r for r in self.results if not r.success]

    @property
    def success(self) -> bool:
        return not self.failed

    def to_result(self) -> dict[str, Any]:
        created = sum(len(r.created) for r in self.results)
        errors = [f"{r.address}: {r.error}" for r in self.failed]
        if not self.results:
            message = "No properties with a linked calendar"
        else:
            message = (
                f"Synced {_plural(len(self.results) - len(errors), 'property', 'properties')}, "
                f"{_plural(created, 'job')} created from calendar"
            )
            if errors:
                message += f"; {len(errors)} failed"
        return {
            "success": self.success,
            "jobsCreated": created,
            "jobsUpdated": sum(len(r.updated) for r in self.results),
            "jobsDeleted": sum(len(r.deleted) for r in self.results),
            "jobsSkipped": sum(len(r.skipped) for r in self.results),
            "propertiesSynced": len(self.results) - len(errors),
            "propertiesFailed": len(errors),
            "error": "; ".join(errors) or None,
            "message": message,
            "properties": [r.to_result() for r in self.results],
        }


class SyncOrchestrator:
    """Runs calendar syncs and unlinks, one at a time per property."""

    def __init__(
        self,
        settings: Settings,
        job_store: Optional[JobStore] = None,
        property_store: Optional[PropertyStore] = None,
        fetcher: Optional[FeedFetcher] = None,
    ):
        self.settings = settings
        self._jobs = job_store or JobStore()
        self._properties = property_store or PropertyStore()
        self._fetcher = fetcher or FeedFetcher(
            timeout=settings.feed_fetch_timeout,
            max_retries=settings.feed_fetch_retries,
            user_agent=settings.feed_user_agent,
        )
        # Job keys are partitioned by address, so syncs and unlinks serialize per address
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def jobs(self) -> JobStore:
        return self._jobs

    @property
    def properties(self) -> PropertyStore:
        return self._properties

    async def close(self) -> None:
        await self._fetcher.close()

    def _lock_for(self, address: str) -> asyncio.Lock:
        lock = self._locks.get(address)
        if lock is None:
            lock = self._locks[address] = asyncio.Lock()
        return lock

    def is_syncing(self, address: str) -> bool:
        lock = self._locks.get(address)
        return lock is not None and lock.locked()

    def _horizon(self) -> Optional[date]:
        if self.settings.past_checkout_days is None:
            return None
        return date.today() - timedelta(days=self.settings.past_checkout_days)

    @staticmethod
    def _require_feed_url(prop: Property) -> str:
        if not prop.feed_url or not prop.feed_url.strip():
            raise MisconfiguredSync("No calendar linked to this property")
        return prop.feed_url.strip()

    async def sync_property(self, property_id: int, wait: bool = True) -> SyncSummary:
        """Sync one property's feed into its cleaning jobs.

        Args:
            property_id: Property to sync
            wait: If False and a sync for the property is already running,
                return at once instead of queueing behind it

        Raises:
            PropertyNotFound: If the property does not exist
        """
        prop = await self._properties.get(property_id)
        lock = self._lock_for(prop.address)

        if not wait and lock.locked():
            logger.info(f"Sync already in progress for {prop.address}, skipping")
            return SyncSummary(
                property_id=prop.id,
                address=prop.address,
                feed_url=prop.feed_url,
                note="A calendar sync is already running for this property",
            )

        async with lock:
            return await self._sync_locked(property_id)

    async def _sync_locked(self, property_id: int) -> SyncSummary:
        # Re-read: the property may have changed while we queued for the lock
        prop = await self._properties.get(property_id)
        summary = SyncSummary(property_id=prop.id, address=prop.address, feed_url=prop.feed_url)

        try:
            feed_url = self._require_feed_url(prop)
        except MisconfiguredSync as e:
            logger.info(f"Property {prop.id} has no feed URL, nothing to sync")
            summary.note = str(e)
            return summary

        logger.info(f"Syncing calendar for property {prop.id} ({prop.address})")

        try:
            content = await self._fetcher.fetch(feed_url)
            events = parse_feed(
                content, prop.address, summary.warnings, self.settings.blocked_summaries
            )
            candidates = map_events(
                events,
                prop,
                self.settings.default_cleaning_time,
                self.settings.default_cleaning_hours,
                summary.warnings,
            )
            stored = await self._jobs.list_jobs(prop.address)
        except (FetchError, FeedParseError, SQLAlchemyError) as e:
            logger.error(f"Sync failed for property {prop.id}: {e}")
            summary.status = SyncStatus.FAILED
            summary.error = str(e)
            await self._properties.record_sync(prop.id, summary.status.value, summary.error)
            return summary

        plan = reconcile(stored, candidates, self._horizon())
        summary.skipped = plan.skipped
        summary.unchanged = plan.unchanged

        # A host may have cleared or swapped the URL while we were fetching
        current = await self._properties.get(prop.id)
        if (current.feed_url or "").strip() != feed_url:
            logger.warning(
                f"Feed URL for property {prop.id} changed during sync, discarding results"
            )
            summary.status = SyncStatus.DISCARDED
            summary.skipped = []
            summary.note = "Calendar link changed during sync; results discarded"
            await self._properties.record_sync(prop.id, summary.status.value)
            return summary

        result = await apply_plan(self._jobs, plan, self.settings.write_concurrency)
        summary.created = [job.id for job in result.created]
        summary.updated = [job.id for job in result.updated]
        summary.deleted = list(result.deleted)
        summary.failures = result.failures

        if result.failures:
            summary.status = SyncStatus.PARTIAL
            summary.error = (
                f"{result.failed} of {result.succeeded + result.failed} job operations failed"
            )

        await self._properties.record_sync(prop.id, summary.status.value, summary.error)
        logger.info(f"Property {prop.id}: {summary.message()}")
        return summary

    async def sync_all_properties(self, host_id: str) -> BulkSyncSummary:
        """Sync every feed-linked property of one host."""
        props = await self._properties.list_properties(host_id=host_id, linked_only=True)
        return await self._sync_many(props, host_id, wait=True)

    async def sync_all_feeds(self, wait: bool = False) -> BulkSyncSummary:
        """Sync every feed-linked property. Busy properties are skipped by default."""
        props = await self._properties.list_properties(linked_only=True)
        return await self._sync_many(props, None, wait=wait)

    async def _sync_many(
        self, props: list[Property], host_id: Optional[str], wait: bool
    ) -> BulkSyncSummary:
        semaphore = asyncio.Semaphore(max(1, self.settings.sync_concurrency))

        async def _one(prop: Property) -> SyncSummary:
            async with semaphore:
                try:
                    return await self.sync_property(prop.id, wait=wait)
                except Exception as e:
                    logger.error(f"Error syncing property {prop.id}: {e}")
                    return SyncSummary(
                        property_id=prop.id,
                        address=prop.address,
                        feed_url=prop.feed_url,
                        status=SyncStatus.FAILED,
                        error=str(e),
                    )

        logger.info(f"Syncing {_plural(len(props), 'calendar')}")
        results = await asyncio.gather(*(_one(prop) for prop in props))
        return BulkSyncSummary(host_id=host_id, results=list(results))

    async def unlink_feed(self, address: str) -> UnlinkResult:
        """Delete all feed-owned jobs at an address, waiting for any running sync."""
        async with self._lock_for(address):
            return await unlink_feed(self._jobs, address, self.settings.write_concurrency)

    async def change_feed_url(self, property_id: int, feed_url: Optional[str]) -> SyncSummary:
        """Set, replace or clear a property's feed URL.

        The new URL is stored at once, so a sync already running for the old
        one discards its results. Jobs from the old feed are then removed and
        the new feed synced, in that order, under the property lock.
        """
        old_url, prop = await self._properties.set_feed_url(property_id, feed_url)
        new_url = prop.feed_url

        if (old_url or None) == new_url:
            return await self.sync_property(property_id)

        logger.info(f"Feed URL for property {prop.id} changed")
        async with self._lock_for(prop.address):
            unlinked: Optional[UnlinkResult] = None
            if old_url:
                unlinked = await unlink_feed(
                    self._jobs, prop.address, self.settings.write_concurrency
                )
                if not unlinked.success:
                    return SyncSummary(
                        property_id=prop.id,
                        address=prop.address,
                        feed_url=new_url,
                        status=SyncStatus.FAILED,
                        unlinked=unlinked.deleted_count,
                        error=(
                            f"Could not remove {_plural(len(unlinked.failed), 'job')} "
                            "from the previous calendar"
                        ),
                    )

            if new_url:
                summary = await self._sync_locked(property_id)
            else:
                summary = SyncSummary(
                    property_id=prop.id,
                    address=prop.address,
                    note="Calendar unlinked",
                )

        if unlinked is not None:
            summary.unlinked = unlinked.deleted_count
        return summary
