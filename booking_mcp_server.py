from __future__ import annotations

from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from booking_engine import BookingScheduler, ReservationYamlRepository, ScheduleRequest, YamlNotificationSink
from booking_engine.booking import ROLE_USER
from booking_engine.payloads import parse_booking_payload, parse_date

mcp = FastMCP(
    "Room Booking MCP Server",
    instructions="Check room availability and book rooms through the booking_engine scheduler.",
    json_response=True,
)

DATA_DIR = Path(__file__).parent / "data"
REPOSITORY = ReservationYamlRepository(DATA_DIR)
SCHEDULER = BookingScheduler(REPOSITORY, YamlNotificationSink(DATA_DIR))


def _booking_payload(
    room: str,
    date: str,
    start_time: str | None,
    end_time: str | None,
    repeat_type: str,
    repeat_end_date: str | None,
    weekly_schedule: dict[str, dict[str, Any]] | None,
) -> dict[str, Any]:
    return parse_booking_payload(
        {
            "room": room,
            "date": date,
            "start_time": start_time,
            "end_time": end_time,
            "repeat_type": repeat_type,
            "repeat_end_date": repeat_end_date,
            "weekly_schedule": weekly_schedule,
        }
    )


@mcp.tool()
def check_availability(
    room: str,
    date: str,
    start_time: str | None = None,
    end_time: str | None = None,
    repeat_type: str = "none",
    repeat_end_date: str | None = None,
    weekly_schedule: dict[str, dict[str, Any]] | None = None,
) -> list[str]:
    """Return the dates (YYYY-MM-DD) on which the requested slot is already taken.

    ``weekly_schedule`` maps weekday names to ``{"start_time", "end_time", "enabled"}``
    and is used with ``repeat_type="weekly"``.
    """
    parsed = _booking_payload(room, date, start_time, end_time, repeat_type, repeat_end_date, weekly_schedule)
    conflicts = SCHEDULER.check_availability(
        parsed["resource_id"], parsed["on_date"], parsed["start_time"], parsed["end_time"], parsed["recurrence"]
    )
    return [day.isoformat() for day in conflicts]


@mcp.tool()
def book_room(
    room: str,
    requester_id: str,
    title: str,
    date: str,
    start_time: str | None = None,
    end_time: str | None = None,
    repeat_type: str = "none",
    repeat_end_date: str | None = None,
    weekly_schedule: dict[str, dict[str, Any]] | None = None,
    role: str = ROLE_USER,
) -> dict[str, Any]:
    """Book a room, optionally repeating daily, weekly or on a per-weekday schedule. Either every date is booked or none."""
    parsed = _booking_payload(room, date, start_time, end_time, repeat_type, repeat_end_date, weekly_schedule)
    result = SCHEDULER.schedule(ScheduleRequest(requester_id=requester_id, title=title, role=role, **parsed))
    return {
        "status": result.status,
        "group_id": result.group_id,
        "notified": result.notified,
        "reservations": [row.to_dict() for row in result.reservations],
    }


@mcp.tool()
def list_room_bookings(room: str, date: str) -> list[dict[str, Any]]:
    """List the bookings of one room on one date, ordered by start time."""
    on_date = parse_date(date)
    rows = REPOSITORY.list_reservations(resource_id=room, start_date=on_date, end_date=on_date)
    return [row.to_dict() for row in rows]


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
