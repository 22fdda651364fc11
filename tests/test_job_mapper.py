from datetime import date, time

from cleaning_sync.core.ical_parser import ParseWarning, ReservationEvent
from cleaning_sync.core.job_mapper import SYNCED_FIELDS, map_event, map_events
from cleaning_sync.db.models import Property


def make_property():
    return Property(id=7, host_id="host-1", address="12 Harbour Rd", feed_url="https://x/cal.ics")


def make_event(uid="evt-1", start=date(2024, 6, 1), end=date(2024, 6, 5), **kwargs):
    values = dict(
        uid=uid,
        start_date=start,
        end_date=end,
        guest_name="A. Smith",
        description="",
        reservation_url=None,
        phone_last_four=None,
        status=None,
        is_blocked=False,
    )
    values.update(kwargs)
    return ReservationEvent(**values)


def test_checkout_cleaning_on_end_date():
    candidate = map_event(make_event(), make_property())

    assert candidate.reservation_id == "evt-1"
    assert candidate.address == "12 Harbour Rd"
    assert candidate.property_id == 7
    assert candidate.host_id == "host-1"
    assert candidate.scheduled_date == date(2024, 6, 5)
    assert candidate.scheduled_time == time(10, 0)
    assert candidate.check_in_date == date(2024, 6, 1)
    assert candidate.check_out_date == date(2024, 6, 5)
    assert candidate.nights_stayed == 4
    assert candidate.guest_name == "A. Smith"
    assert candidate.source == "feed"
    assert candidate.cleaning_type == "checkout"


def test_notes_fall_back_to_guest():
    assert map_event(make_event(), make_property()).notes == "Guest checkout: A. Smith"
    with_description = map_event(make_event(description="Early arrival"), make_property())
    assert with_description.notes == "Early arrival"


def test_configured_time_and_duration():
    candidate = map_event(make_event(), make_property(), time(11, 30), 5)
    assert candidate.scheduled_time == time(11, 30)
    assert candidate.estimated_duration_hours == 5


def test_blocked_and_cancelled_are_not_mapped():
    events = [
        make_event("block", is_blocked=True, guest_name="Blocked"),
        make_event("gone", status="CANCELLED"),
        make_event("stay"),
    ]
    assert [c.reservation_id for c in map_events(events, make_property())] == ["stay"]


def test_duplicate_uid_keeps_first_and_warns():
    warnings: list[ParseWarning] = []
    events = [
        make_event("evt-1", end=date(2024, 6, 5)),
        make_event("evt-1", end=date(2024, 6, 9)),
    ]

    candidates = map_events(events, make_property(), warnings=warnings)

    assert len(candidates) == 1
    assert candidates[0].scheduled_date == date(2024, 6, 5)
    assert warnings[0].uid == "evt-1"
    assert "duplicate" in warnings[0].reason


def test_as_record_covers_synced_fields():
    record = map_event(make_event(), make_property()).as_record()
    for name in SYNCED_FIELDS:
        assert name in record
    assert record["source"] == "feed"
    assert "id" not in record
