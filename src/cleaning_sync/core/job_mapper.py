"""Turn parsed reservations into candidate checkout-cleaning jobs."""

import logging
from dataclasses import dataclass, fields
from datetime import date, time
from typing import Iterable, Optional

from cleaning_sync.config import JobSource
from cleaning_sync.core.ical_parser import ParseWarning, ReservationEvent
from cleaning_sync.db.models import Property

logger = logging.getLogger(__name__)

# Fields a sync may rewrite on an existing feed job
SYNCED_FIELDS = (
    "scheduled_date",
    "check_in_date",
    "check_out_date",
    "nights_stayed",
    "guest_name",
    "phone_last_four",
    "reservation_url",
    "notes",
)


@dataclass(frozen=True)
class CandidateJob:
    """The job a reservation should produce, before it touches the store."""

    reservation_id: str
    address: str
    property_id: Optional[int]
    host_id: Optional[str]
    scheduled_date: date
    scheduled_time: time
    check_in_date: date
    check_out_date: date
    nights_stayed: int
    guest_name: Optional[str]
    phone_last_four: Optional[str]
    reservation_url: Optional[str]
    notes: str
    estimated_duration_hours: int = 3
    cleaning_type: str = "checkout"
    source: str = JobSource.FEED.value

    def synced_values(self) -> dict:
        return {name: getattr(self, name) for name in SYNCED_FIELDS}

    def as_record(self) -> dict:
        """Column values for creating the stored job."""
        return {f.name: getattr(self, f.name) for f in fields(self)}


def map_event(
    event: ReservationEvent,
    prop: Property,
    cleaning_time: time = time(10, 0),
    cleaning_hours: int = 3,
) -> CandidateJob:
    """Map one reservation to the cleaning that follows its checkout."""
    notes = event.description
    if not notes and event.guest_name:
        notes = f"Guest checkout: {event.guest_name}"

    return CandidateJob(
        reservation_id=event.uid,
        address=prop.address,
        property_id=prop.id,
        host_id=prop.host_id,
        scheduled_date=event.end_date,
        scheduled_time=cleaning_time,
        check_in_date=event.start_date,
        check_out_date=event.end_date,
        nights_stayed=(event.end_date - event.start_date).days,
        guest_name=event.guest_name,
        phone_last_four=event.phone_last_four,
        reservation_url=event.reservation_url,
        notes=notes,
        estimated_duration_hours=cleaning_hours,
    )


def map_events(
    events: Iterable[ReservationEvent],
    prop: Property,
    cleaning_time: time = time(10, 0),
    cleaning_hours: int = 3,
    warnings: Optional[list[ParseWarning]] = None,
) -> list[CandidateJob]:
    """Map every bookable event, skipping blocks, cancellations and repeated UIDs."""
    candidates: list[CandidateJob] = []
    seen: set[str] = set()

    for event in events:
        if event.is_blocked:
            logger.debug(f"Skipping blocked dates {event.start_date}-{event.end_date}")
            continue
        if event.is_cancelled:
            logger.debug(f"Skipping cancelled reservation {event.uid}")
            continue
        if event.uid in seen:
            warning = ParseWarning(uid=event.uid, reason="duplicate UID in feed")
            logger.warning("Skipping feed entry %s", warning)
            if warnings is not None:
                warnings.append(warning)
            continue
        seen.add(event.uid)
        candidates.append(map_event(event, prop, cleaning_time, cleaning_hours))

    return candidates
