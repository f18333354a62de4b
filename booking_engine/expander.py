from __future__ import annotations

from datetime import date, time, timedelta
from typing import Iterator

from .booking import Occurrence
from .errors import InvalidRange, InvalidWindow, NoEnabledDay, RangeTooLarge
from .recurrence import Daily, NoRepeat, RecurrenceSpec, Weekly, WeeklySchedule, weekday_name

# Roughly two years of calendar days.
MAX_EXPANSION_DAYS = 731


def expand_occurrences(
    resource_id: str,
    on_date: date,
    start_time: time | None,
    end_time: time | None,
    recurrence: RecurrenceSpec,
    group_id: str | None = None,
) -> list[Occurrence]:
    """Turn one booking request into its concrete occurrences, ordered by date.

    ``start_time``/``end_time`` are the window for the single-window variants;
    ``WeeklySchedule`` carries its own window per weekday and ignores them.
    The result depends only on the arguments, so calling this twice gives the
    same list.
    """
    match recurrence:
        case NoRepeat():
            _validate_window(start_time, end_time)
            return [Occurrence(resource_id, on_date, start_time, end_time, group_id)]
        case Daily(until=until):
            _validate_window(start_time, end_time)
            _validate_range(on_date, until)
            return [
                Occurrence(resource_id, day, start_time, end_time, group_id)
                for day in _iter_days(on_date, until, step_days=1)
            ]
        case Weekly(until=until):
            _validate_window(start_time, end_time)
            _validate_range(on_date, until)
            return [
                Occurrence(resource_id, day, start_time, end_time, group_id)
                for day in _iter_days(on_date, until, step_days=7)
            ]
        case WeeklySchedule():
            return _expand_weekly_schedule(resource_id, on_date, recurrence, group_id)
        case _:
            raise TypeError(f"Unsupported recurrence: {recurrence!r}")


def _expand_weekly_schedule(
    resource_id: str,
    on_date: date,
    schedule: WeeklySchedule,
    group_id: str | None,
) -> list[Occurrence]:
    enabled = schedule.enabled_weekdays()
    if not enabled:
        raise NoEnabledDay("Please enable at least one day in the weekly schedule.")

    for weekday in enabled:
        window = schedule.windows[weekday]
        if window.is_complete and window.start_time >= window.end_time:
            raise InvalidWindow(
                f"End time must be after start time for {weekday_name(weekday)}.",
                weekday=weekday_name(weekday),
            )

    _validate_range(on_date, schedule.until)

    occurrences: list[Occurrence] = []
    for day in _iter_days(on_date, schedule.until, step_days=1):
        window = schedule.window_for(day)
        # Partially filled weekdays are skipped rather than rejected.
        if window is None or not window.is_complete:
            continue
        occurrences.append(Occurrence(resource_id, day, window.start_time, window.end_time, group_id))
    return occurrences


def _validate_window(start_time: time | None, end_time: time | None) -> None:
    if start_time is None or end_time is None:
        raise InvalidWindow("Start time and end time are required.")
    if start_time >= end_time:
        raise InvalidWindow("End time must be after start time.")


def _validate_range(on_date: date, until: date) -> None:
    if until < on_date:
        raise InvalidRange(
            f"Repeat end date {until.isoformat()} is before the booking date {on_date.isoformat()}."
        )
    if (until - on_date).days > MAX_EXPANSION_DAYS:
        raise RangeTooLarge(f"Repeating bookings may span at most {MAX_EXPANSION_DAYS} days.")


def _iter_days(start_inclusive: date, end_inclusive: date, step_days: int) -> Iterator[date]:
    cursor = start_inclusive
    step = timedelta(days=step_days)
    while cursor <= end_inclusive:
        yield cursor
        cursor += step
