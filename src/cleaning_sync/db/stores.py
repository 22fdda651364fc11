"""Job and property stores used by the sync pipeline.

Every method runs in its own session, so a failed write never rolls back
another operation in the same batch.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cleaning_sync.config import SyncStatus
from cleaning_sync.core.errors import PropertyNotFound
from cleaning_sync.db.database import get_session_context
from cleaning_sync.db.models import CleaningJob, Property
from cleaning_sync.db.normalize import normalize_legacy_job

logger = logging.getLogger(__name__)

# Columns a caller may never set directly
_READ_ONLY = {"id", "created_at", "updated_at"}


@dataclass
class ImportResult:
    """Outcome of importing legacy job records."""

    imported: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


class JobStore:
    """Cleaning jobs, queried by property address."""

    def __init__(self, session_maker: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_maker = session_maker

    async def list_jobs(
        self, address: str, statuses: Optional[list[str]] = None
    ) -> list[CleaningJob]:
        async with get_session_context(self._session_maker) as session:
            stmt = select(CleaningJob).where(CleaningJob.address == address)
            if statuses:
                stmt = stmt.where(CleaningJob.status.in_(statuses))
            result = await session.execute(stmt.order_by(CleaningJob.scheduled_date, CleaningJob.id))
            return list(result.scalars().all())

    async def get_job(self, job_id: int) -> Optional[CleaningJob]:
        async with get_session_context(self._session_maker) as session:
            return await session.get(CleaningJob, job_id)

    async def create_job(self, record: dict[str, Any]) -> CleaningJob:
        values = {k: v for k, v in record.items() if k not in _READ_ONLY}
        async with get_session_context(self._session_maker) as session:
            job = CleaningJob(**values)
            session.add(job)
            await session.flush()
            logger.debug(f"Created job {job.id} at {job.address} for {job.scheduled_date}")
            return job

    async def update_job(self, job_id: int, values: dict[str, Any]) -> CleaningJob:
        async with get_session_context(self._session_maker) as session:
            job = await session.get(CleaningJob, job_id)
            if job is None:
                raise ValueError(f"Cleaning job {job_id} not found")
            for key, value in values.items():
                if key in _READ_ONLY:
                    continue
                setattr(job, key, value)
            await session.flush()
            return job

    async def delete_job(self, job_id: int) -> None:
        async with get_session_context(self._session_maker) as session:
            job = await session.get(CleaningJob, job_id)
            if job is None:
                raise ValueError(f"Cleaning job {job_id} not found")
            await session.delete(job)

    async def import_legacy(self, records: list[dict[str, Any]]) -> ImportResult:
        """Normalize and store job records exported from the legacy document store."""
        result = ImportResult()
        for raw in records:
            try:
                await self.create_job(normalize_legacy_job(raw))
                result.imported += 1
            except (ValueError, SQLAlchemyError) as e:
                result.failed += 1
                result.errors.append(f"{raw.get('id', '<no id>')}: {e}")
                logger.warning(f"Could not import legacy job {raw.get('id')}: {e}")
        logger.info(f"Imported {result.imported} legacy jobs ({result.failed} failed)")
        return result


class PropertyStore:
    """Properties and their feed bookkeeping."""

    def __init__(self, session_maker: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_maker = session_maker

    async def get(self, property_id: int) -> Property:
        async with get_session_context(self._session_maker) as session:
            prop = await session.get(Property, property_id)
            if prop is None:
                raise PropertyNotFound(property_id)
            return prop

    async def list_properties(
        self, host_id: Optional[str] = None, linked_only: bool = False
    ) -> list[Property]:
        async with get_session_context(self._session_maker) as session:
            stmt = select(Property)
            if host_id is not None:
                stmt = stmt.where(Property.host_id == host_id)
            if linked_only:
                stmt = stmt.where(Property.feed_url.is_not(None), Property.feed_url != "")
            result = await session.execute(stmt.order_by(Property.id))
            return list(result.scalars().all())

    async def create(
        self,
        host_id: str,
        address: str,
        label: str = "",
        feed_url: Optional[str] = None,
    ) -> Property:
        async with get_session_context(self._session_maker) as session:
            prop = Property(
                host_id=host_id,
                address=address,
                label=label or address,
                feed_url=(feed_url or "").strip() or None,
            )
            session.add(prop)
            await session.flush()
            return prop

    async def set_feed_url(
        self, property_id: int, feed_url: Optional[str]
    ) -> tuple[Optional[str], Property]:
        """Store a new feed URL, returning the previous one."""
        async with get_session_context(self._session_maker) as session:
            prop = await session.get(Property, property_id)
            if prop is None:
                raise PropertyNotFound(property_id)
            old_url = prop.feed_url
            prop.feed_url = (feed_url or "").strip() or None
            await session.flush()
            return old_url, prop

    async def record_sync(
        self,
        property_id: int,
        status: str,
        error: Optional[str] = None,
        synced_at: Optional[datetime] = None,
    ) -> None:
        async with get_session_context(self._session_maker) as session:
            prop = await session.get(Property, property_id)
            if prop is None:
                raise PropertyNotFound(property_id)
            # The timestamp tracks the last sync that wrote anything
            if status in (SyncStatus.OK.value, SyncStatus.PARTIAL.value):
                prop.last_synced_at = synced_at or datetime.utcnow()
            prop.last_sync_status = status
            prop.last_sync_error = error
