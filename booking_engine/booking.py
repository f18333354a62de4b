from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Iterable

from .errors import InvalidWindow

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
RESERVATION_STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED)

ROLE_ADMIN = "admin"
ROLE_USER = "user"


def has_time_overlap(new_start: time, new_end: time, exist_start: time, exist_end: time) -> bool:
    """Return True when two time-of-day ranges overlap by even one minute.

    Ranges are treated as half-open: [start, end)
    so touching boundaries (e.g. 10:00-11:00 and 11:00-12:00) do not overlap.
    A range that contains the other is just a special case of this test.
    """
    return new_start < exist_end and exist_start < new_end


@dataclass(frozen=True)
class Interval:
    date: date
    start_time: time
    end_time: time

    def __post_init__(self) -> None:
        if self.start_time >= self.end_time:
            raise InvalidWindow(
                f"End time must be after start time ({_hhmm(self.start_time)}-{_hhmm(self.end_time)} on {self.date.isoformat()})."
            )

    def overlaps(self, other: "Interval") -> bool:
        return self.date == other.date and has_time_overlap(
            self.start_time, self.end_time, other.start_time, other.end_time
        )


@dataclass(frozen=True)
class Occurrence:
    resource_id: str
    date: date
    start_time: time
    end_time: time
    group_id: str | None = None

    @property
    def interval(self) -> Interval:
        return Interval(self.date, self.start_time, self.end_time)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "resource_id": self.resource_id,
            "date": self.date.isoformat(),
            "start_time": _hhmm(self.start_time),
            "end_time": _hhmm(self.end_time),
        }
        if self.group_id is not None:
            payload["group_id"] = self.group_id
        return payload


@dataclass(frozen=True)
class Reservation:
    reservation_id: str
    requester_id: str
    occurrence: Occurrence
    status: str
    created_at: datetime
    title: str = ""
    description: str = ""
    updated_at: datetime | None = None

    @property
    def resource_id(self) -> str:
        return self.occurrence.resource_id

    @property
    def date(self) -> date:
        return self.occurrence.date

    @property
    def interval(self) -> Interval:
        return self.occurrence.interval

    @property
    def blocks_resource(self) -> bool:
        return self.status != STATUS_REJECTED

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "reservation_id": self.reservation_id,
            "requester_id": self.requester_id,
            **self.occurrence.to_dict(),
            "status": self.status,
            "title": self.title,
            "description": self.description,
            "created_at": self.created_at.isoformat(timespec="seconds"),
        }
        if self.updated_at is not None:
            payload["updated_at"] = self.updated_at.isoformat(timespec="seconds")
        return payload

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Reservation":
        return Reservation(
            reservation_id=str(data["reservation_id"]),
            requester_id=str(data["requester_id"]),
            occurrence=Occurrence(
                resource_id=str(data["resource_id"]),
                date=date.fromisoformat(str(data["date"])),
                start_time=time.fromisoformat(str(data["start_time"])),
                end_time=time.fromisoformat(str(data["end_time"])),
                group_id=(str(data["group_id"]) if data.get("group_id") is not None else None),
            ),
            status=str(data["status"]),
            created_at=datetime.fromisoformat(str(data["created_at"])),
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            updated_at=(datetime.fromisoformat(str(data["updated_at"])) if data.get("updated_at") else None),
        )


def first_overlap(occurrence: Occurrence, existing: Iterable[Reservation]) -> Reservation | None:
    """Return the first non-rejected reservation whose interval overlaps the occurrence."""
    candidate = occurrence.interval
    for reservation in existing:
        if reservation.resource_id != occurrence.resource_id or not reservation.blocks_resource:
            continue
        if reservation.interval.overlaps(candidate):
            return reservation
    return None


def _hhmm(value: time) -> str:
    return value.strftime("%H:%M")
