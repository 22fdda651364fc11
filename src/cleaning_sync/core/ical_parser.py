"""iCal feed fetcher and parser."""

import asyncio
import hashlib
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Iterator, Optional

import httpx
from icalendar import Calendar

from cleaning_sync.config import DEFAULT_BLOCKED_SUMMARIES
from cleaning_sync.core.errors import FeedParseError, FetchError

logger = logging.getLogger(__name__)

# Longest pause between fetch retries (seconds)
MAX_BACKOFF = 5.0

_RESERVATION_URL_PATTERNS = [
    re.compile(r"https?://\S*airbnb\.[a-z.]+/hosting/reservations/details/\S+", re.IGNORECASE),
    re.compile(r"Reservation URL:\s*(https?://\S+)", re.IGNORECASE),
]

_PHONE_PATTERNS = [
    # Airbnb: "Phone Number (Last 4 Digits): 0720"
    re.compile(r"Last 4 Digits\)?:?\s*(\d{4})", re.IGNORECASE),
    # "Phone: XXXXXX0720", "Phone: (XXX) XXX-0720"
    re.compile(r"Phone:?\s*[\dX\-()\s]*?(\d{4})\b", re.IGNORECASE),
    re.compile(r"X{2,}(\d{4})"),
]


@dataclass
class ParseWarning:
    """A feed entry that was skipped."""

    uid: Optional[str]
    reason: str

    def __str__(self) -> str:
        return f"{self.uid or '<no uid>'}: {self.reason}"


@dataclass
class ReservationEvent:
    """A reservation parsed from a calendar feed."""

    uid: str
    start_date: date
    end_date: date
    guest_name: Optional[str]
    description: str
    reservation_url: Optional[str]
    phone_last_four: Optional[str]
    status: Optional[str]
    is_blocked: bool
    uid_synthesized: bool = False

    @property
    def is_cancelled(self) -> bool:
        return self.status == "CANCELLED"

    def __repr__(self) -> str:
        if self.is_blocked:
            return f"<ReservationEvent BLOCKED {self.start_date}-{self.end_date}>"
        return f"<ReservationEvent {self.uid} {self.guest_name} {self.start_date}-{self.end_date}>"


def parse_description(description: str) -> dict[str, Optional[str]]:
    """Pull the reservation URL and phone last four digits out of DESCRIPTION.

    Airbnb exports put both on their own lines:
    Reservation URL: https://www.airbnb.com/hosting/reservations/details/HM123
    Phone Number (Last 4 Digits): 0720
    """
    result: dict[str, Optional[str]] = {
        "reservation_url": None,
        "phone_last_four": None,
    }

    if not description:
        return result

    for pattern in _RESERVATION_URL_PATTERNS:
        match = pattern.search(description)
        if match:
            result["reservation_url"] = match.group(match.lastindex or 0)
            break

    for pattern in _PHONE_PATTERNS:
        match = pattern.search(description)
        if match:
            result["phone_last_four"] = match.group(1)
            break

    return result


def extract_date(dt_value) -> date:
    """Extract a date from an iCal date or datetime value.

    Raises:
        ValueError: If the value is not a recognisable date
    """
    if isinstance(dt_value, datetime):
        return dt_value.date()
    elif isinstance(dt_value, date):
        return dt_value
    else:
        return datetime.fromisoformat(str(dt_value).strip()).date()


def synthesize_uid(start: date, end: date, address: str) -> str:
    """Build a stable identifier for an event whose feed omits UID."""
    digest = hashlib.sha1(
        f"{start.isoformat()}|{end.isoformat()}|{address}".encode("utf-8")
    ).hexdigest()
    return f"synth-{digest[:16]}"


def _property_date(component, name: str) -> Optional[date]:
    prop = component.get(name)
    if prop is None:
        return None
    # Properties icalendar failed to decode have no .dt
    value = getattr(prop, "dt", prop)
    try:
        return extract_date(value)
    except (TypeError, ValueError):
        return None


def _end_date(component, start: date) -> date:
    end = _property_date(component, "DTEND")
    if end is not None:
        return end
    duration = component.get("DURATION")
    if duration is not None and isinstance(getattr(duration, "dt", None), timedelta):
        return (datetime.combine(start, datetime.min.time()) + duration.dt).date()
    # RFC 5545: a date-valued event without an end lasts one day
    return start + timedelta(days=1)


def parse_feed(
    ical_content: str,
    address: str,
    warnings: Optional[list[ParseWarning]] = None,
    blocked_summaries: Optional[Iterable[str]] = None,
) -> Iterator[ReservationEvent]:
    """Parse an iCal feed, yielding one ReservationEvent per usable VEVENT.

    Malformed entries are skipped and reported through ``warnings``.

    Args:
        ical_content: Raw iCal content as string
        address: Property address, used to synthesize missing UIDs
        warnings: Optional list that receives a ParseWarning per skipped entry
        blocked_summaries: Lower-case SUMMARY values that mark blocked dates

    Raises:
        FeedParseError: If the content is not an iCal document
    """
    blocked = {s.lower() for s in (blocked_summaries or DEFAULT_BLOCKED_SUMMARIES)}

    if "BEGIN:VCALENDAR" not in ical_content:
        raise FeedParseError("Content is not an iCal calendar")

    try:
        cal = Calendar.from_ical(ical_content)
    except Exception as e:
        raise FeedParseError(f"Failed to parse iCal content: {e}") from e

    def _skip(uid: Optional[str], reason: str) -> None:
        warning = ParseWarning(uid=uid, reason=reason)
        logger.warning("Skipping feed entry %s", warning)
        if warnings is not None:
            warnings.append(warning)

    for component in cal.walk("VEVENT"):
        raw_uid = str(component.get("UID", "")).strip() or None
        summary = str(component.get("SUMMARY", "")).strip()
        description = str(component.get("DESCRIPTION", "")).strip()
        status = str(component.get("STATUS", "")).strip().upper() or None

        start = _property_date(component, "DTSTART")
        if start is None:
            _skip(raw_uid, "missing or unparsable DTSTART")
            continue

        end = _end_date(component, start)
        if end < start:
            _skip(raw_uid, f"DTEND {end} is before DTSTART {start}")
            continue

        details = parse_description(description)

        yield ReservationEvent(
            uid=raw_uid or synthesize_uid(start, end, address),
            start_date=start,
            end_date=end,
            guest_name=summary or None,
            description=description,
            reservation_url=details["reservation_url"],
            phone_last_four=details["phone_last_four"],
            status=status,
            is_blocked=summary.lower() in blocked,
            uid_synthesized=raw_uid is None,
        )


class FeedFetcher:
    """Fetches raw iCal feeds over HTTP."""

    def __init__(
        self,
        timeout: float = 30.0,
        max_retries: int = 2,
        user_agent: Optional[str] = None,
        backoff_seconds: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self._headers = {"Accept": "text/calendar,application/ics,*/*"}
        if user_agent:
            self._headers["User-Agent"] = user_agent
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=self._headers,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def fetch(self, url: str) -> str:
        """Fetch a feed body.

        Transport errors and 5xx responses are retried up to ``max_retries``
        times with exponential backoff; anything else fails at once.

        Raises:
            FetchError: If the feed cannot be retrieved or is not a calendar
        """
        if not url:
            raise FetchError(url, "no feed URL given")

        # InvalidURL is not an httpx.HTTPError
        try:
            httpx.URL(url)
        except httpx.InvalidURL as e:
            raise FetchError(url, f"invalid URL: {e}") from e

        client = await self._get_client()
        attempt = 0

        while True:
            try:
                response = await client.get(url)
            except httpx.TimeoutException:
                error = FetchError(
                    url, "request timeout - the calendar server took too long to respond"
                )
            except httpx.HTTPError as e:
                error = FetchError(url, f"{type(e).__name__}: {e}")
            else:
                if response.status_code >= 500:
                    error = FetchError(
                        url,
                        f"server returned {response.status_code}",
                        status_code=response.status_code,
                    )
                elif not response.is_success:
                    raise FetchError(
                        url,
                        f"server returned {response.status_code}",
                        status_code=response.status_code,
                    )
                else:
                    return self._validate(url, response)

            if attempt >= self.max_retries:
                logger.error(f"Giving up on {url} after {attempt + 1} attempts: {error.reason}")
                raise error

            delay = min(self.backoff_seconds * 2 ** attempt, MAX_BACKOFF)
            attempt += 1
            logger.info(
                f"Feed fetch attempt {attempt} failed ({error.reason}), retrying in {delay:.1f}s"
            )
            await asyncio.sleep(delay)

    @staticmethod
    def _validate(url: str, response: httpx.Response) -> str:
        content = response.text
        if not content.strip():
            raise FetchError(url, "empty response body", status_code=response.status_code)
        if "BEGIN:VCALENDAR" not in content:
            raise FetchError(
                url, "response is not an iCal calendar", status_code=response.status_code
            )
        return content

    async def fetch_and_parse(
        self,
        url: str,
        address: str,
        warnings: Optional[list[ParseWarning]] = None,
        blocked_summaries: Optional[Iterable[str]] = None,
    ) -> list[ReservationEvent]:
        """Fetch a feed and parse every event in it."""
        content = await self.fetch(url)
        return list(parse_feed(content, address, warnings, blocked_summaries))
