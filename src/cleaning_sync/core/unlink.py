"""Remove feed-derived jobs when a property's calendar link is severed."""

import asyncio
import logging
from dataclasses import dataclass, field

from cleaning_sync.core.reconciler import partition_jobs
from cleaning_sync.db.stores import JobStore

logger = logging.getLogger(__name__)


@dataclass
class UnlinkResult:
    """Outcome of unlinking a feed from an address."""

    address: str
    deleted: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)
    manual_kept: int = 0

    @property
    def deleted_count(self) -> int:
        return len(self.deleted)

    @property
    def success(self) -> bool:
        return not self.failed


async def unlink_feed(store: JobStore, address: str, concurrency: int = 4) -> UnlinkResult:
    """Delete every feed-owned job at ``address``.

    Status is not a guard here: claimed and in-progress feed jobs go too.
    Manual jobs stay.
    """
    result = UnlinkResult(address=address)
    feed_owned, manual = partition_jobs(await store.list_jobs(address))
    result.manual_kept = len(manual)

    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _delete(job_id: int) -> None:
        async with semaphore:
            try:
                await store.delete_job(job_id)
            except Exception as e:
                logger.error(f"Failed to delete feed job {job_id} at {address}: {e}")
                result.failed[job_id] = str(e)
                return
        result.deleted.append(job_id)

    await asyncio.gather(*(_delete(job.id) for job in feed_owned))

    logger.info(
        f"Unlinked feed at {address}: deleted {result.deleted_count} feed jobs, "
        f"kept {result.manual_kept} manual jobs"
        + (f", {len(result.failed)} deletions failed" if result.failed else "")
    )
    return result
