"""Builders for iCal feed text and a fake feed server."""

from typing import Optional

import httpx

FEED_URL = "https://www.airbnb.com/calendar/ical/1234.ics?s=abc"


def vevent(
    uid: Optional[str],
    start: Optional[str],
    end: Optional[str],
    summary: Optional[str] = "Reserved",
    description: Optional[str] = None,
    status: Optional[str] = None,
) -> str:
    lines = ["BEGIN:VEVENT"]
    if uid:
        lines.append(f"UID:{uid}")
    if start:
        lines.append(f"DTSTART;VALUE=DATE:{start}")
    if end:
        lines.append(f"DTEND;VALUE=DATE:{end}")
    if summary is not None:
        lines.append(f"SUMMARY:{summary}")
    if description:
        lines.append(f"DESCRIPTION:{description}")
    if status:
        lines.append(f"STATUS:{status}")
    lines.append("END:VEVENT")
    return "\r\n".join(lines) + "\r\n"


def ics(*events: str) -> str:
    return (
        "BEGIN:VCALENDAR\r\n"
        "VERSION:2.0\r\n"
        "PRODID:-//Airbnb Inc//Hosting Calendar 0.8.8//EN\r\n"
        "CALSCALE:GREGORIAN\r\n"
        + "".join(events)
        + "END:VCALENDAR\r\n"
    )


AIRBNB_DESCRIPTION = (
    "Reservation URL: https://www.airbnb.com/hosting/reservations/details/HMABC123\\n"
    "Phone Number (Last 4 Digits): 0720"
)


class FakeFeedServer:
    """Serves feed bodies by URL through an httpx.MockTransport."""

    def __init__(self):
        self.routes: dict[str, tuple[int, str]] = {}
        self.requests: list[httpx.Request] = []
        self.before_response = None

    def set(self, url: str, body: str, status_code: int = 200) -> None:
        self.routes[url] = (status_code, body)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.before_response is not None:
            await self.before_response(request)
        status_code, body = self.routes.get(str(request.url), (404, "not found"))
        return httpx.Response(status_code, text=body)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)
