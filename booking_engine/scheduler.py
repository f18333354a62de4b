from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, time
from threading import Event, Lock
from time import monotonic
from typing import Any, Callable, Iterable, Iterator, Protocol
from uuid import uuid4

from .booking import ROLE_ADMIN, ROLE_USER, STATUS_APPROVED, STATUS_PENDING, Occurrence, Reservation
from .conflicts import ConflictChecker, ConflictReport
from .errors import (
    ConflictError,
    EmptyBatch,
    OutsideFacilityHours,
    OverlapConstraintError,
    ScheduleCancelled,
    StorageUnavailable,
)
from .expander import expand_occurrences
from .recurrence import NoRepeat, RecurrenceSpec
from .storage import ReservationRepository

FACILITY_OPEN = time(8, 0)
FACILITY_CLOSE = time(21, 0)
LOCK_TIMEOUT_SECONDS = 10.0

logger = logging.getLogger(__name__)

EVENT_BATCH_CREATED = "batch_created"

StatusPolicy = Callable[[str, str], str]


def default_status_policy(requester_id: str, role: str) -> str:
    """Admins are auto-approved, everybody else waits for approval."""
    return STATUS_APPROVED if role == ROLE_ADMIN else STATUS_PENDING


class NotificationSink(Protocol):
    def publish(self, event: dict[str, Any]) -> None: ...


@dataclass(frozen=True)
class ScheduleRequest:
    resource_id: str
    requester_id: str
    on_date: date
    start_time: time | None
    end_time: time | None
    recurrence: RecurrenceSpec = field(default_factory=NoRepeat)
    title: str = ""
    role: str = ROLE_USER
    description: str = ""


@dataclass(frozen=True)
class BatchCreatedEvent:
    requester_id: str
    resource_id: str
    occurrence_count: int
    first_date: date
    last_date: date
    status: str
    title: str
    group_id: str | None = None
    kind: str = EVENT_BATCH_CREATED

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "requester_id": self.requester_id,
            "resource_id": self.resource_id,
            "occurrence_count": self.occurrence_count,
            "date_range": {"start": self.first_date.isoformat(), "end": self.last_date.isoformat()},
            "status": self.status,
            "title": self.title,
            "group_id": self.group_id,
        }


@dataclass(frozen=True)
class ScheduleResult:
    reservations: tuple[Reservation, ...]
    status: str
    event: BatchCreatedEvent
    group_id: str | None = None
    notified: bool = True


class ResourceDayLocks:
    """One lock per (resource, date), created on demand and dropped when unused."""

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: dict[tuple[str, date], Lock] = {}
        self._users: dict[tuple[str, date], int] = {}

    def _checkout(self, key: tuple[str, date]) -> Lock:
        with self._guard:
            lock = self._locks.setdefault(key, Lock())
            self._users[key] = self._users.get(key, 0) + 1
            return lock

    def _checkin(self, key: tuple[str, date]) -> None:
        with self._guard:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    @contextmanager
    def hold(self, keys: Iterable[tuple[str, date]], timeout: float) -> Iterator[None]:
        # Sorted acquisition keeps overlapping batches from deadlocking.
        ordered = sorted(set(keys))
        deadline = monotonic() + timeout
        held: list[tuple[tuple[str, date], Lock]] = []
        checked_out: list[tuple[str, date]] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                checked_out.append(key)
                if not lock.acquire(timeout=max(0.0, deadline - monotonic())):
                    raise StorageUnavailable(
                        f"Timed out waiting for {key[0]} on {key[1].isoformat()}; please retry."
                    )
                held.append((key, lock))
            yield
        finally:
            for _, lock in reversed(held):
                lock.release()
            for key in checked_out:
                self._checkin(key)

    def active_keys(self) -> list[tuple[str, date]]:
        with self._guard:
            return sorted(self._locks)


class BookingScheduler:
    """Expands a booking request, validates every occurrence, then commits all of them or none."""

    def __init__(
        self,
        repository: ReservationRepository,
        notifier: NotificationSink | None = None,
        *,
        locks: ResourceDayLocks | None = None,
        lock_timeout: float = LOCK_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._repository = repository
        self._notifier = notifier
        self._checker = ConflictChecker(repository)
        self._locks = locks or ResourceDayLocks()
        self._lock_timeout = lock_timeout
        self._clock = clock

    def check_availability(
        self,
        resource_id: str,
        on_date: date,
        start_time: time | None,
        end_time: time | None,
        recurrence: RecurrenceSpec | None = None,
    ) -> list[date]:
        """Return the dates on which the request would conflict. Writes nothing."""
        occurrences = expand_occurrences(resource_id, on_date, start_time, end_time, recurrence or NoRepeat())
        reports = self._checker.find_conflicts(resource_id, occurrences)
        return [report.occurrence.date for report in reports]

    def schedule(
        self,
        request: ScheduleRequest,
        status_policy: StatusPolicy = default_status_policy,
        cancel_event: Event | None = None,
    ) -> ScheduleResult:
        group_id = None if isinstance(request.recurrence, NoRepeat) else uuid4().hex
        occurrences = expand_occurrences(
            request.resource_id,
            request.on_date,
            request.start_time,
            request.end_time,
            request.recurrence,
            group_id=group_id,
        )
        if not occurrences:
            raise EmptyBatch("The weekly schedule does not produce any booking in the selected date range.")
        if request.role != ROLE_ADMIN:
            _validate_facility_hours(occurrences)

        status = status_policy(request.requester_id, request.role)

        keys = [(request.resource_id, occurrence.date) for occurrence in occurrences]
        with self._locks.hold(keys, self._lock_timeout):
            for occurrence in occurrences:
                report = self._checker.find_conflict(request.resource_id, occurrence)
                if report is not None:
                    raise ConflictError(report)

            if cancel_event is not None and cancel_event.is_set():
                raise ScheduleCancelled("Booking request was cancelled before commit.")

            now = self._clock()
            batch = [
                Reservation(
                    reservation_id=uuid4().hex,
                    requester_id=request.requester_id,
                    occurrence=occurrence,
                    status=status,
                    created_at=now,
                    title=request.title,
                    description=request.description,
                )
                for occurrence in occurrences
            ]
            try:
                self._repository.insert_reservations(batch)
            except OverlapConstraintError as error:
                raise ConflictError(ConflictReport(occurrence=error.occurrence, blocking=error.blocking)) from error

        event = BatchCreatedEvent(
            requester_id=request.requester_id,
            resource_id=request.resource_id,
            occurrence_count=len(batch),
            first_date=occurrences[0].date,
            last_date=occurrences[-1].date,
            status=status,
            title=request.title,
            group_id=group_id,
        )
        notified = publish_event(self._notifier, event.to_dict())

        return ScheduleResult(
            reservations=tuple(batch),
            status=status,
            event=event,
            group_id=group_id,
            notified=notified,
        )


def _validate_facility_hours(occurrences: Iterable[Occurrence]) -> None:
    for occurrence in occurrences:
        if occurrence.start_time < FACILITY_OPEN or occurrence.end_time > FACILITY_CLOSE:
            raise OutsideFacilityHours(
                f"Bookings must be between {FACILITY_OPEN:%H:%M} and {FACILITY_CLOSE:%H:%M} "
                f"({occurrence.date.isoformat()}).",
                on_date=occurrence.date,
            )


def publish_event(notifier: NotificationSink | None, event: dict[str, Any]) -> bool:
    """Hand a committed change to the notification sink.

    Delivery happens after the reservations are stored, so a failing sink is
    logged and reported as ``False`` instead of failing the committed request.
    """
    if notifier is None:
        return True
    try:
        notifier.publish(event)
    except Exception:
        logger.exception("Failed to publish %s notification", event.get("kind"))
        return False
    return True
