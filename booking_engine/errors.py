from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .conflicts import ConflictReport
    from .booking import Occurrence, Reservation


class BookingError(Exception):
    """Base class for booking engine errors."""


class ValidationError(BookingError, ValueError):
    """Rejected input, detected before anything is written."""

    kind = "validation"


class InvalidWindow(ValidationError):
    kind = "invalid_window"

    def __init__(self, message: str, weekday: str | None = None) -> None:
        super().__init__(message)
        self.weekday = weekday


class NoEnabledDay(ValidationError):
    kind = "no_enabled_day"


class InvalidRange(ValidationError):
    kind = "invalid_range"


class RangeTooLarge(ValidationError):
    kind = "range_too_large"


class EmptyBatch(ValidationError):
    kind = "empty_batch"


class OutsideFacilityHours(ValidationError):
    kind = "outside_facility_hours"

    def __init__(self, message: str, on_date: date | None = None) -> None:
        super().__init__(message)
        self.on_date = on_date


class ConflictError(BookingError):
    def __init__(self, report: "ConflictReport") -> None:
        super().__init__(report.describe())
        self.report = report


class OverlapConstraintError(BookingError):
    """Raised by a store when an insert would overlap a non-rejected reservation."""

    def __init__(self, occurrence: "Occurrence", blocking: "Reservation") -> None:
        super().__init__(
            f"{occurrence.resource_id} on {occurrence.date.isoformat()} overlaps reservation {blocking.reservation_id}"
        )
        self.occurrence = occurrence
        self.blocking = blocking


class StorageUnavailable(BookingError):
    retryable = True


class ScheduleCancelled(BookingError):
    pass


class ReservationNotFound(BookingError, LookupError):
    pass


class InvalidStatusTransition(BookingError, ValueError):
    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"Cannot change reservation status from {current} to {requested}.")
        self.current = current
        self.requested = requested
