from datetime import date, time

import pytest

from cleaning_sync.config import JobSource
from cleaning_sync.db.normalize import (
    infer_source,
    normalize_legacy_job,
    normalize_status,
    parse_legacy_date,
    parse_legacy_time,
)

from feeds import AIRBNB_DESCRIPTION, FEED_URL, ics, vevent

ADDRESS = "12 Harbour Rd, Riverview, FL 33579"

LEGACY_FEED_JOB = {
    "id": "a1b2c3",
    "address": ADDRESS,
    "hostId": "host-1",
    "source": "ical",
    "reservationId": "evt-1",
    "checkInDate": 1717200000000,
    "checkOutDate": "2024-06-05T00:00:00.000Z",
    "preferredDate": "2024-06-05",
    "preferredTime": "10:00 AM",
    "guestName": "A. Smith",
    "status": "scheduled",
}


@pytest.mark.parametrize(
    "record, expected",
    [
        ({"source": "ical"}, JobSource.FEED),
        ({"icalEventId": "evt-1"}, JobSource.FEED),
        ({"guestName": "Reserved Guest"}, JobSource.FEED),
        ({"checkInDate": "2024-06-01", "checkOutDate": "2024-06-05"}, JobSource.FEED),
        ({"guestName": "Jo", "checkOutDate": "2024-06-05"}, JobSource.MANUAL),
        ({"notes": "Deep clean"}, JobSource.MANUAL),
    ],
)
def test_infer_source(record, expected):
    assert infer_source(record) is expected


def test_normalize_status():
    assert normalize_status("accepted") == "assigned"
    assert normalize_status("Bidding") == "open"
    assert normalize_status(None) == "open"
    assert normalize_status("completed") == "completed"
    with pytest.raises(ValueError):
        normalize_status("exploded")


def test_parse_legacy_values():
    assert parse_legacy_date(1717200000000) == date(2024, 6, 1)
    assert parse_legacy_date("1717200000000") == date(2024, 6, 1)
    assert parse_legacy_date("2024-06-05T00:00:00Z") == date(2024, 6, 5)
    assert parse_legacy_date("") is None
    assert parse_legacy_time("2:30 PM") == time(14, 30)
    assert parse_legacy_time("09:15") == time(9, 15)
    assert parse_legacy_time("whenever") is None


def test_normalize_feed_job():
    values = normalize_legacy_job(LEGACY_FEED_JOB)

    assert values["source"] == "feed"
    assert values["reservation_id"] == "evt-1"
    assert values["status"] == "open"
    assert values["scheduled_date"] == date(2024, 6, 5)
    assert values["scheduled_time"] == time(10, 0)
    assert values["check_in_date"] == date(2024, 6, 1)
    assert values["check_out_date"] == date(2024, 6, 5)
    assert values["host_id"] == "host-1"


def test_normalize_manual_job_with_cleaner():
    values = normalize_legacy_job({
        "property": {"address": ADDRESS},
        "preferredDate": "2024-07-01",
        "status": "accepted",
        "assignedCleaner": {"uid": "cl-7", "name": "Kim"},
        "bookingDescription": "Deep clean",
    })

    assert values["source"] == "manual"
    assert values["reservation_id"] is None
    assert values["status"] == "assigned"
    assert values["assigned_cleaner_id"] == "cl-7"
    assert values["assigned_cleaner_name"] == "Kim"
    assert values["notes"] == "Deep clean"


def test_cleaner_name_from_parts():
    values = normalize_legacy_job({
        "address": ADDRESS,
        "preferredDate": "2024-07-01",
        "cleanerId": "cl-2",
        "cleanerFirstName": "Ana",
        "cleanerLastName": "Ruiz",
    })
    assert values["assigned_cleaner_id"] == "cl-2"
    assert values["assigned_cleaner_name"] == "Ana Ruiz"


@pytest.mark.parametrize(
    "record",
    [
        {"preferredDate": "2024-07-01"},
        {"address": ADDRESS},
    ],
)
def test_unusable_records_are_rejected(record):
    with pytest.raises(ValueError):
        normalize_legacy_job(record)


async def test_import_legacy(job_store):
    result = await job_store.import_legacy([
        LEGACY_FEED_JOB,
        {"id": "bad", "address": ADDRESS, "status": "exploded", "preferredDate": "2024-07-01"},
        {"id": "manual", "address": ADDRESS, "preferredDate": "2024-07-02"},
    ])

    assert result.imported == 2
    assert result.failed == 1
    assert result.errors[0].startswith("bad:")
    sources = sorted(j.source for j in await job_store.list_jobs(ADDRESS))
    assert sources == ["feed", "manual"]


async def test_imported_feed_job_is_matched_by_sync(
    orchestrator, feed_server, job_store, property_store
):
    await job_store.import_legacy([LEGACY_FEED_JOB])
    prop = await property_store.create("host-1", ADDRESS, feed_url=FEED_URL)
    feed_server.set(FEED_URL, ics(vevent("evt-1", "20240601", "20240605", "A. Smith", AIRBNB_DESCRIPTION)))

    summary = await orchestrator.sync_property(prop.id)

    assert summary.created == []
    jobs = await job_store.list_jobs(ADDRESS)
    assert len(jobs) == 1
    assert jobs[0].reservation_id == "evt-1"
    assert jobs[0].phone_last_four == "0720"


def test_property_id_reference_is_not_an_address():
    with pytest.raises(ValueError):
        normalize_legacy_job({"property": "prop-42", "preferredDate": "2024-07-01"})

    values = normalize_legacy_job(
        {"property": "prop-42", "address": ADDRESS, "preferredDate": "2024-07-01"}
    )
    assert values["address"] == ADDRESS


async def test_import_continues_past_property_id_records(job_store):
    result = await job_store.import_legacy([
        {"id": "ref", "property": "prop-42", "preferredDate": "2024-07-01"},
        {"id": "ok", "address": ADDRESS, "preferredDate": "2024-07-02"},
    ])

    assert result.imported == 1
    assert result.failed == 1
    assert result.errors[0].startswith("ref:")
