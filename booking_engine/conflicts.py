from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from .booking import Occurrence, Reservation, first_overlap
from .storage import ReservationRepository


@dataclass(frozen=True)
class ConflictReport:
    occurrence: Occurrence
    blocking: Reservation

    def describe(self) -> str:
        blocker = self.blocking.occurrence
        return (
            f"Booking conflict on {_display_date(blocker)} "
            f"between {_display_time(blocker.start_time)} and {_display_time(blocker.end_time)}"
        )

    def to_dict(self) -> dict[str, str]:
        blocker = self.blocking.occurrence
        return {
            "date": self.occurrence.date.isoformat(),
            "requested_start": self.occurrence.start_time.strftime("%H:%M"),
            "requested_end": self.occurrence.end_time.strftime("%H:%M"),
            "blocking_reservation_id": self.blocking.reservation_id,
            "blocking_start": blocker.start_time.strftime("%H:%M"),
            "blocking_end": blocker.end_time.strftime("%H:%M"),
            "blocking_status": self.blocking.status,
        }


class ConflictChecker:
    """Checks proposed occurrences against what is stored for the same room and day.

    Every call reads the store again; nothing is cached between calls.
    """

    def __init__(self, repository: ReservationRepository) -> None:
        self._repository = repository

    def find_conflict(self, resource_id: str, occurrence: Occurrence) -> ConflictReport | None:
        existing = self._repository.find_reservations(resource_id, occurrence.date)
        blocking = first_overlap(occurrence, existing)
        if blocking is None:
            return None
        return ConflictReport(occurrence=occurrence, blocking=blocking)

    def find_conflicts(self, resource_id: str, occurrences: Iterable[Occurrence]) -> list[ConflictReport]:
        reports: list[ConflictReport] = []
        for occurrence in occurrences:
            report = self.find_conflict(resource_id, occurrence)
            if report is not None:
                reports.append(report)
        return reports


def _display_date(occurrence: Occurrence) -> str:
    return f"{occurrence.date.strftime('%b')} {occurrence.date.day}, {occurrence.date.year}"


def _display_time(value) -> str:
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {suffix}"
