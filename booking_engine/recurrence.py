from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, time
from typing import Mapping

WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


@dataclass(frozen=True)
class NoRepeat:
    pass


@dataclass(frozen=True)
class Daily:
    until: date


@dataclass(frozen=True)
class Weekly:
    """Same weekday as the request date, every 7 days."""

    until: date


@dataclass(frozen=True)
class DayWindow:
    start_time: time | None = None
    end_time: time | None = None
    enabled: bool = True

    @property
    def is_complete(self) -> bool:
        return self.start_time is not None and self.end_time is not None


@dataclass(frozen=True)
class WeeklySchedule:
    """Independent window per weekday; keys follow ``date.weekday()`` (Monday is 0)."""

    until: date
    windows: Mapping[int, DayWindow] = field(default_factory=dict)

    def enabled_weekdays(self) -> list[int]:
        return sorted(weekday for weekday, window in self.windows.items() if window.enabled)

    def window_for(self, day: date) -> DayWindow | None:
        window = self.windows.get(day.weekday())
        if window is None or not window.enabled:
            return None
        return window


RecurrenceSpec = NoRepeat | Daily | Weekly | WeeklySchedule


def weekday_name(weekday: int) -> str:
    return WEEKDAY_NAMES[weekday]
