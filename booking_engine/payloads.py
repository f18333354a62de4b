from __future__ import annotations

import re
from datetime import date, datetime, time
from typing import Any, Mapping

from .recurrence import WEEKDAY_NAMES, Daily, DayWindow, NoRepeat, RecurrenceSpec, Weekly, WeeklySchedule

_TIME_RE = re.compile(r"^(?P<hour>[01]?\d|2[0-3]):(?P<minute>[0-5]\d)$")
_REPEAT_TYPES = ("none", "daily", "weekly")


def parse_date(value: Any, field_name: str = "date") -> date:
    text = str(value or "").strip()
    if not text:
        raise ValueError(f"{field_name} is required")
    try:
        # Timestamps keep only their date part.
        return date.fromisoformat(text.split("T", 1)[0])
    except ValueError as error:
        raise ValueError(f"{field_name} must be an ISO date (YYYY-MM-DD)") from error


def parse_time(value: Any, field_name: str = "time") -> time | None:
    """Accept ``HH:MM`` or a full ISO timestamp and keep only the wall-clock time."""
    if value is None or str(value).strip() == "":
        return None

    text = str(value).strip()
    match = _TIME_RE.match(text)
    if match:
        return time(int(match.group("hour")), int(match.group("minute")))

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as error:
        raise ValueError(f"{field_name} must look like HH:MM") from error
    return parsed.time().replace(second=0, microsecond=0, tzinfo=None)


def parse_weekly_schedule(payload: Mapping[str, Any]) -> dict[int, DayWindow]:
    if not isinstance(payload, Mapping):
        raise ValueError("weekly_schedule must be an object keyed by weekday")

    windows: dict[int, DayWindow] = {}
    for key, entry in payload.items():
        name = str(key).strip().lower()
        if name not in WEEKDAY_NAMES:
            raise ValueError(f"Unknown weekday in weekly_schedule: {key}")
        if not isinstance(entry, Mapping):
            raise ValueError(f"weekly_schedule.{name} must be an object")

        windows[WEEKDAY_NAMES.index(name)] = DayWindow(
            start_time=parse_time(entry.get("start_time"), f"weekly_schedule.{name}.start_time"),
            end_time=parse_time(entry.get("end_time"), f"weekly_schedule.{name}.end_time"),
            enabled=_parse_enabled(entry.get("enabled", False), name),
        )
    return windows


def _parse_enabled(value: Any, weekday: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"weekly_schedule.{weekday}.enabled must be true or false")
    return value


def parse_recurrence(payload: Mapping[str, Any]) -> RecurrenceSpec:
    repeat_type = str(payload.get("repeat_type") or "none").strip().lower()
    if repeat_type not in _REPEAT_TYPES:
        raise ValueError(f"repeat_type must be one of {', '.join(_REPEAT_TYPES)}")

    if repeat_type == "none":
        return NoRepeat()

    until = parse_date(payload.get("repeat_end_date"), "repeat_end_date")
    if repeat_type == "daily":
        return Daily(until=until)

    schedule = payload.get("weekly_schedule")
    if schedule:
        return WeeklySchedule(until=until, windows=parse_weekly_schedule(schedule))
    return Weekly(until=until)


def parse_booking_payload(payload: Mapping[str, Any]) -> dict[str, Any]:
    resource_id = str(payload.get("room") or payload.get("resource_id") or "").strip()
    if not resource_id:
        raise ValueError("room is required")

    return {
        "resource_id": resource_id,
        "on_date": parse_date(payload.get("date")),
        "start_time": parse_time(payload.get("start_time"), "start_time"),
        "end_time": parse_time(payload.get("end_time"), "end_time"),
        "recurrence": parse_recurrence(payload),
    }
