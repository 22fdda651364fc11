"""One-time normalization of legacy job records into the canonical schema.

Records exported from the old document store carry many historical field
names for the same concept and no explicit provenance. Everything is mapped
here, once, so no other code reads legacy names.
"""

from datetime import date, datetime, time, timezone
from typing import Any, Optional

from cleaning_sync.config import JobSource, JobStatus

# Guest labels only the old calendar import ever wrote
FEED_GUEST_PLACEHOLDERS = {"reserved", "reserved guest", "not available"}

LEGACY_STATUS_MAP = {
    "scheduled": JobStatus.OPEN,
    "pending": JobStatus.OPEN,
    "bidding": JobStatus.OPEN,
    "pending_approval": JobStatus.OPEN,
    "accepted": JobStatus.ASSIGNED,
}

# Newest name first
_CLEANER_ID_FIELDS = (
    "assignedCleanerId",
    "cleanerId",
    "assignedTeamMemberId",
    "assignedTo",
    "assignedCleaner",
)
_CLEANER_NAME_FIELDS = ("assignedCleanerName", "cleanerName")


def infer_source(record: dict[str, Any]) -> JobSource:
    """Classify a legacy record as feed-derived or manual."""
    if record.get("source") in ("ical", JobSource.FEED.value):
        return JobSource.FEED
    if record.get("reservationId") or record.get("icalEventId"):
        return JobSource.FEED
    guest = str(record.get("guestName") or "").strip().lower()
    if guest in FEED_GUEST_PLACEHOLDERS:
        return JobSource.FEED
    if record.get("checkInDate") and record.get("checkOutDate"):
        return JobSource.FEED
    return JobSource.MANUAL


def normalize_status(value: Optional[str]) -> str:
    if not value:
        return JobStatus.OPEN.value
    value = str(value).strip().lower()
    if value in LEGACY_STATUS_MAP:
        return LEGACY_STATUS_MAP[value].value
    try:
        return JobStatus(value).value
    except ValueError:
        raise ValueError(f"Unknown job status {value!r}") from None


def parse_legacy_date(value: Any) -> Optional[date]:
    """Dates were stored as epoch milliseconds or ISO strings."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc).date()
    text = str(value).strip()
    if text.isdigit():
        return datetime.fromtimestamp(int(text) / 1000, tz=timezone.utc).date()
    return datetime.fromisoformat(text.replace("Z", "+00:00")).date()


def parse_legacy_time(value: Any) -> Optional[time]:
    if not value:
        return None
    for fmt in ("%I:%M %p", "%H:%M"):
        try:
            return datetime.strptime(str(value).strip(), fmt).time()
        except ValueError:
            continue
    return None


def _cleaner_id(record: dict[str, Any]) -> Optional[str]:
    for name in _CLEANER_ID_FIELDS:
        value = record.get(name)
        if isinstance(value, dict):
            value = value.get("id") or value.get("uid")
        if value:
            return str(value)
    return None


def _cleaner_name(record: dict[str, Any]) -> Optional[str]:
    for name in _CLEANER_NAME_FIELDS:
        if record.get(name):
            return str(record[name])
    assigned = record.get("assignedCleaner")
    if isinstance(assigned, dict) and assigned.get("name"):
        return str(assigned["name"])
    full = " ".join(
        part for part in (record.get("cleanerFirstName"), record.get("cleanerLastName")) if part
    )
    return full or None


def normalize_legacy_job(record: dict[str, Any]) -> dict[str, Any]:
    """Map a legacy job document to CleaningJob column values.

    Raises:
        ValueError: If the record has no address or no usable date
    """
    # Some exports hold a property id string here instead of an embedded document
    prop = record.get("property")
    if not isinstance(prop, dict):
        prop = {}
    address = record.get("address") or prop.get("address")
    if not address:
        raise ValueError("record has no address")

    source = infer_source(record)

    check_in = parse_legacy_date(record.get("checkInDate") or record.get("guestCheckin"))
    check_out = parse_legacy_date(record.get("checkOutDate") or record.get("guestCheckout"))
    scheduled = parse_legacy_date(record.get("preferredDate")) or check_out
    if scheduled is None:
        raise ValueError("record has no preferredDate or checkout date")

    reservation_id = None
    if source is JobSource.FEED:
        reservation_id = record.get("reservationId") or record.get("icalEventId") or None

    return {
        "address": address,
        "host_id": record.get("hostId"),
        "source": source.value,
        "status": normalize_status(record.get("status")),
        "reservation_id": reservation_id,
        "scheduled_date": scheduled,
        "scheduled_time": parse_legacy_time(record.get("preferredTime")),
        "cleaning_type": record.get("cleaningType") or "checkout",
        "estimated_duration_hours": int(record.get("estimatedDuration") or 3),
        "notes": record.get("notes") or record.get("bookingDescription") or "",
        "check_in_date": check_in,
        "check_out_date": check_out,
        "nights_stayed": record.get("nightsStayed"),
        "guest_name": record.get("guestName"),
        "phone_last_four": record.get("phoneLastFour"),
        "reservation_url": record.get("reservationUrl"),
        "assigned_cleaner_id": _cleaner_id(record),
        "assigned_cleaner_name": _cleaner_name(record),
    }
