"""API routes for the cleaning sync service."""

from datetime import date, time
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError

from cleaning_sync.config import JobSource, JobStatus
from cleaning_sync.core.errors import PropertyNotFound
from cleaning_sync.core.orchestrator import SyncOrchestrator
from cleaning_sync.db.models import CleaningJob, Property

router = APIRouter()

# Dependency to get the orchestrator instance
_orchestrator: Optional[SyncOrchestrator] = None


def get_orchestrator() -> SyncOrchestrator:
    if _orchestrator is None:
        raise HTTPException(status_code=500, detail="Sync service not initialized")
    return _orchestrator


def set_orchestrator(orchestrator: Optional[SyncOrchestrator]) -> None:
    global _orchestrator
    _orchestrator = orchestrator


# Request/Response models


class PropertyRequest(BaseModel):
    host_id: str
    address: str
    label: str = ""
    feed_url: Optional[str] = None


class FeedUrlRequest(BaseModel):
    feed_url: Optional[str] = None


class UnlinkRequest(BaseModel):
    address: str


class ManualJobRequest(BaseModel):
    address: str
    scheduled_date: date
    scheduled_time: Optional[time] = None
    host_id: Optional[str] = None
    notes: str = ""
    cleaning_type: str = "standard"
    estimated_duration_hours: int = Field(default=3, ge=1)


class LegacyImportRequest(BaseModel):
    records: list[dict[str, Any]]


def _property_dict(prop: Property) -> dict:
    return {
        "id": prop.id,
        "host_id": prop.host_id,
        "label": prop.label,
        "address": prop.address,
        "feed_url": prop.feed_url,
        "last_synced_at": prop.last_synced_at.isoformat() if prop.last_synced_at else None,
        "last_sync_status": prop.last_sync_status,
        "last_sync_error": prop.last_sync_error,
    }


def _job_dict(job: CleaningJob) -> dict:
    return {
        "id": job.id,
        "address": job.address,
        "source": job.source,
        "status": job.status,
        "reservation_id": job.reservation_id,
        "scheduled_date": job.scheduled_date.isoformat(),
        "scheduled_time": job.scheduled_time.isoformat() if job.scheduled_time else None,
        "cleaning_type": job.cleaning_type,
        "guest_name": job.guest_name,
        "check_in_date": job.check_in_date.isoformat() if job.check_in_date else None,
        "check_out_date": job.check_out_date.isoformat() if job.check_out_date else None,
        "nights_stayed": job.nights_stayed,
        "phone_last_four": job.phone_last_four,
        "reservation_url": job.reservation_url,
        "notes": job.notes,
        "assigned_cleaner_id": job.assigned_cleaner_id,
        "assigned_cleaner_name": job.assigned_cleaner_name,
    }


# Health


@router.get("/health")
async def health_check(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Report service status."""
    props = await orchestrator.properties.list_properties(linked_only=True)
    return {
        "running": True,
        "linked_properties": len(props),
        "syncing": [p.address for p in props if orchestrator.is_syncing(p.address)],
    }


# Property endpoints


@router.get("/properties")
async def get_properties(
    host_id: Optional[str] = Query(None, description="Filter by host"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Get properties."""
    props = await orchestrator.properties.list_properties(host_id=host_id)
    return [_property_dict(p) for p in props]


@router.post("/properties", status_code=201)
async def create_property(
    request: PropertyRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Register a property so its calendar can be synced."""
    try:
        prop = await orchestrator.properties.create(
            host_id=request.host_id,
            address=request.address,
            label=request.label,
            feed_url=request.feed_url,
        )
    except IntegrityError:
        raise HTTPException(status_code=400, detail="A property with this address already exists")
    return _property_dict(prop)


@router.put("/properties/{property_id}/feed-url")
async def update_feed_url(
    property_id: int,
    request: FeedUrlRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Set, replace or clear a property's calendar feed URL."""
    try:
        summary = await orchestrator.change_feed_url(property_id, request.feed_url)
    except PropertyNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return summary.to_result()


@router.post("/properties/{property_id}/sync")
async def sync_property(
    property_id: int,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Sync one property's calendar now."""
    try:
        summary = await orchestrator.sync_property(property_id)
    except PropertyNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return summary.to_result()


@router.post("/hosts/{host_id}/sync")
async def sync_host(
    host_id: str,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Sync every linked calendar of a host."""
    bulk = await orchestrator.sync_all_properties(host_id)
    return bulk.to_result()


@router.post("/unlink")
async def unlink(
    request: UnlinkRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Delete every calendar-derived job at an address."""
    result = await orchestrator.unlink_feed(request.address)
    return {
        "success": result.success,
        "jobsDeleted": result.deleted_count,
        "failed": {str(k): v for k, v in result.failed.items()},
    }


# Job endpoints


@router.get("/jobs")
async def get_jobs(
    address: str = Query(..., description="Property address"),
    status: Optional[list[str]] = Query(None, description="Filter by status"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Get cleaning jobs at an address."""
    if status:
        valid = {s.value for s in JobStatus}
        unknown = [s for s in status if s not in valid]
        if unknown:
            raise HTTPException(status_code=400, detail=f"Unknown status: {', '.join(unknown)}")
    jobs = await orchestrator.jobs.list_jobs(address, status)
    return [_job_dict(j) for j in jobs]


@router.post("/jobs", status_code=201)
async def create_manual_job(
    request: ManualJobRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Create a job by hand. Calendar syncs never touch these."""
    job = await orchestrator.jobs.create_job({
        **request.model_dump(),
        "source": JobSource.MANUAL.value,
        "status": JobStatus.OPEN.value,
    })
    return _job_dict(job)


@router.post("/jobs/import")
async def import_legacy_jobs(
    request: LegacyImportRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Import job records exported from the legacy document store."""
    result = await orchestrator.jobs.import_legacy(request.records)
    return {
        "imported": result.imported,
        "failed": result.failed,
        "errors": result.errors,
    }
