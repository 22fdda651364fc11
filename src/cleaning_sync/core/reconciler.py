"""Reconcile stored cleaning jobs against the latest calendar feed.

``reconcile`` is a pure diff: it never touches the store. ``apply_plan``
then issues the writes, absorbing failures one operation at a time.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from functools import partial
from typing import Any, Awaitable, Callable, Optional, Sequence

from cleaning_sync.config import PROTECTED_STATUSES, JobSource, JobStatus
from cleaning_sync.core.errors import ReconciliationPartialFailure
from cleaning_sync.core.job_mapper import SYNCED_FIELDS, CandidateJob
from cleaning_sync.db.models import CleaningJob
from cleaning_sync.db.stores import JobStore

logger = logging.getLogger(__name__)


class Operation(str, Enum):
    """Kind of store write."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class JobUpdate:
    """Fields to rewrite on an existing feed job."""

    job_id: int
    reservation_id: str
    changes: dict[str, Any]


@dataclass
class SkippedJob:
    """A feed job the sync wanted to change but left alone."""

    job_id: int
    reservation_id: Optional[str]
    operation: Operation
    reason: str


@dataclass
class ReconciliationPlan:
    """The writes needed to make stored jobs match the feed."""

    creates: list[CandidateJob] = field(default_factory=list)
    updates: list[JobUpdate] = field(default_factory=list)
    deletes: list[CleaningJob] = field(default_factory=list)
    skipped: list[SkippedJob] = field(default_factory=list)
    unchanged: int = 0

    @property
    def is_empty(self) -> bool:
        return not (self.creates or self.updates or self.deletes)

    def counts(self) -> dict[str, int]:
        return {
            "create": len(self.creates),
            "update": len(self.updates),
            "delete": len(self.deletes),
            "skip": len(self.skipped),
            "unchanged": self.unchanged,
        }


def is_feed_owned(job: CleaningJob) -> bool:
    return job.source == JobSource.FEED.value


def is_protected(job: CleaningJob) -> bool:
    """True once a human has claimed or progressed the job."""
    return job.status in PROTECTED_STATUSES or bool(job.assigned_cleaner_id)


def is_deletable(job: CleaningJob) -> bool:
    return job.status == JobStatus.OPEN.value and not job.assigned_cleaner_id


def _hold_reason(job: CleaningJob) -> str:
    if job.assigned_cleaner_id:
        return f"cleaner {job.assigned_cleaner_id} is assigned"
    return f"job is {job.status}"


def partition_jobs(
    stored: Sequence[CleaningJob],
) -> tuple[list[CleaningJob], list[CleaningJob]]:
    """Split stored jobs into (feed_owned, manual)."""
    feed_owned: list[CleaningJob] = []
    manual: list[CleaningJob] = []
    for job in stored:
        (feed_owned if is_feed_owned(job) else manual).append(job)
    return feed_owned, manual


def _keeper_order(job: CleaningJob) -> tuple:
    # Protected jobs win, then the oldest
    return (not is_protected(job), job.created_at or datetime.min, job.id or 0)


def index_feed_jobs(
    feed_owned: Sequence[CleaningJob],
) -> tuple[dict[str, CleaningJob], list[tuple[CleaningJob, str]]]:
    """Index feed jobs by reservation id.

    Returns the index plus the jobs that can never match a candidate:
    jobs without a reservation id and surplus duplicates of one id.
    """
    grouped: dict[str, list[CleaningJob]] = {}
    orphans: list[tuple[CleaningJob, str]] = []

    for job in feed_owned:
        if not job.reservation_id:
            orphans.append((job, "no reservation id"))
            continue
        grouped.setdefault(job.reservation_id, []).append(job)

    index: dict[str, CleaningJob] = {}
    for reservation_id, jobs in grouped.items():
        jobs.sort(key=_keeper_order)
        keeper = jobs[0]
        index[reservation_id] = keeper
        for dup in jobs[1:]:
            orphans.append((dup, f"duplicate of job {keeper.id} for {reservation_id}"))

    return index, orphans


def diff_fields(job: CleaningJob, candidate: CandidateJob) -> dict[str, Any]:
    """Synced fields whose stored value differs from the candidate."""
    changes: dict[str, Any] = {}
    for name, value in candidate.synced_values().items():
        if getattr(job, name) != value:
            changes[name] = value
    return changes


def reconcile(
    stored: Sequence[CleaningJob],
    candidates: Sequence[CandidateJob],
    horizon: Optional[date] = None,
) -> ReconciliationPlan:
    """Compute the writes that converge stored jobs to the feed.

    Manual jobs are never touched. Feed jobs a human has claimed are never
    rewritten or deleted; they show up in ``plan.skipped`` instead. Output
    does not depend on the order of either input.

    Args:
        stored: Every job currently stored for the property's address
        candidates: Jobs mapped from the latest feed parse
        horizon: If set, nothing scheduled before this date is created or removed
    """
    plan = ReconciliationPlan()
    feed_owned, manual = partition_jobs(stored)
    index, orphans = index_feed_jobs(feed_owned)

    wanted: dict[str, CandidateJob] = {}
    for candidate in candidates:
        if horizon is not None and candidate.scheduled_date < horizon:
            continue
        wanted.setdefault(candidate.reservation_id, candidate)

    for reservation_id in sorted(wanted, key=lambda r: (wanted[r].scheduled_date, r)):
        candidate = wanted[reservation_id]
        job = index.get(reservation_id)

        if job is None:
            plan.creates.append(candidate)
            continue

        changes = diff_fields(job, candidate)
        if not changes:
            plan.unchanged += 1
        elif is_protected(job):
            plan.skipped.append(SkippedJob(
                job_id=job.id,
                reservation_id=reservation_id,
                operation=Operation.UPDATE,
                reason=f"feed changed {', '.join(sorted(changes))} but {_hold_reason(job)}",
            ))
        else:
            plan.updates.append(JobUpdate(job.id, reservation_id, changes))

    stale = [(job, "reservation no longer in feed") for rid, job in index.items() if rid not in wanted]
    stale.extend(orphans)

    for job, why in sorted(stale, key=lambda item: (item[0].scheduled_date, item[0].id)):
        if horizon is not None and job.scheduled_date < horizon:
            continue
        if is_deletable(job):
            plan.deletes.append(job)
        else:
            plan.skipped.append(SkippedJob(
                job_id=job.id,
                reservation_id=job.reservation_id,
                operation=Operation.DELETE,
                reason=f"{why}, but {_hold_reason(job)}",
            ))

    logger.debug(
        f"Reconciled {len(candidates)} candidates against {len(feed_owned)} feed jobs "
        f"({len(manual)} manual untouched): {plan.counts()}"
    )
    return plan


@dataclass
class OperationFailure:
    """A single store write that failed."""

    operation: Operation
    target: str
    error: str


@dataclass
class ApplyResult:
    """What actually happened when a plan was written."""

    created: list[CleaningJob] = field(default_factory=list)
    updated: list[CleaningJob] = field(default_factory=list)
    deleted: list[int] = field(default_factory=list)
    failures: list[OperationFailure] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return len(self.created) + len(self.updated) + len(self.deleted)

    @property
    def failed(self) -> int:
        return len(self.failures)

    def raise_for_failures(self) -> None:
        if self.failures:
            raise ReconciliationPartialFailure(
                self.succeeded,
                self.failed,
                [f"{f.operation.value} {f.target}: {f.error}" for f in self.failures],
            )


async def apply_plan(
    store: JobStore, plan: ReconciliationPlan, concurrency: int = 4
) -> ApplyResult:
    """Write a plan to the store.

    Writes target distinct jobs, so they run concurrently up to
    ``concurrency``. A failed write is recorded and the rest still run.
    """
    result = ApplyResult()
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _run(
        operation: Operation,
        target: str,
        call: Callable[[], Awaitable[Any]],
        on_success: Callable[[Any], None],
    ) -> None:
        async with semaphore:
            try:
                value = await call()
            except Exception as e:
                logger.error(f"Failed to {operation.value} job {target}: {e}")
                result.failures.append(OperationFailure(operation, target, str(e)))
                return
        on_success(value)

    tasks = []
    for candidate in plan.creates:
        tasks.append(_run(
            Operation.CREATE,
            candidate.reservation_id,
            partial(store.create_job, candidate.as_record()),
            result.created.append,
        ))
    for update in plan.updates:
        tasks.append(_run(
            Operation.UPDATE,
            str(update.job_id),
            partial(store.update_job, update.job_id, update.changes),
            result.updated.append,
        ))
    for job in plan.deletes:
        tasks.append(_run(
            Operation.DELETE,
            str(job.id),
            partial(store.delete_job, job.id),
            lambda _, job_id=job.id: result.deleted.append(job_id),
        ))

    await asyncio.gather(*tasks)

    if result.failures:
        logger.warning(
            f"Applied {result.succeeded} job operations, {result.failed} failed"
        )
    return result
