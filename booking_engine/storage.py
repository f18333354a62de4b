from __future__ import annotations

from collections import defaultdict
from dataclasses import replace
from datetime import date, datetime
from threading import Lock
from typing import Iterable, Protocol, Sequence

from .booking import Reservation, first_overlap
from .errors import OverlapConstraintError, ReservationNotFound


class ReservationRepository(Protocol):
    """Storage collaborator used by the scheduler and the lifecycle helpers.

    Implementations raise ``StorageUnavailable`` when the backing store cannot
    be read or written; an empty result always means "no rows".
    ``insert_reservations`` must apply the whole batch or nothing and raise
    ``OverlapConstraintError`` when any row would overlap a non-rejected
    reservation already stored.
    """

    def find_reservations(self, resource_id: str, on_date: date) -> list[Reservation]: ...

    def insert_reservations(self, batch: Sequence[Reservation]) -> list[str]: ...

    def get_reservation(self, reservation_id: str) -> Reservation | None: ...

    def update_status(self, reservation_id: str, status: str, now: datetime | None = None) -> Reservation: ...

    def delete_reservation(self, reservation_id: str) -> Reservation: ...

    def list_reservations(
        self,
        resource_id: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        requester_id: str | None = None,
        status: str | None = None,
    ) -> list[Reservation]: ...


class InMemoryReservationRepository:
    def __init__(self, reservations: Iterable[Reservation] = ()) -> None:
        self._by_day: dict[tuple[str, date], list[Reservation]] = defaultdict(list)
        self._by_id: dict[str, Reservation] = {}
        self._lock = Lock()
        for reservation in reservations:
            self._store(reservation)

    def _store(self, reservation: Reservation) -> None:
        self._by_day[(reservation.resource_id, reservation.date)].append(reservation)
        self._by_id[reservation.reservation_id] = reservation

    def _unstore(self, reservation: Reservation) -> None:
        key = (reservation.resource_id, reservation.date)
        self._by_day[key] = [row for row in self._by_day[key] if row.reservation_id != reservation.reservation_id]
        if not self._by_day[key]:
            del self._by_day[key]
        del self._by_id[reservation.reservation_id]

    def find_reservations(self, resource_id: str, on_date: date) -> list[Reservation]:
        with self._lock:
            return list(self._by_day.get((resource_id, on_date), ()))

    def insert_reservations(self, batch: Sequence[Reservation]) -> list[str]:
        """Atomically checks every row for overlap and inserts the batch only if all pass."""
        with self._lock:
            accepted: list[Reservation] = []
            for reservation in batch:
                existing = self._by_day.get((reservation.resource_id, reservation.date), [])
                blocking = first_overlap(reservation.occurrence, [*existing, *accepted])
                if blocking is not None and reservation.blocks_resource:
                    raise OverlapConstraintError(reservation.occurrence, blocking)
                accepted.append(reservation)

            for reservation in accepted:
                self._store(reservation)
            return [reservation.reservation_id for reservation in accepted]

    def get_reservation(self, reservation_id: str) -> Reservation | None:
        with self._lock:
            return self._by_id.get(reservation_id)

    def update_status(self, reservation_id: str, status: str, now: datetime | None = None) -> Reservation:
        with self._lock:
            current = self._by_id.get(reservation_id)
            if current is None:
                raise ReservationNotFound(reservation_id)
            updated = replace(current, status=status, updated_at=now or datetime.now())
            self._unstore(current)
            self._store(updated)
            return updated

    def delete_reservation(self, reservation_id: str) -> Reservation:
        with self._lock:
            current = self._by_id.get(reservation_id)
            if current is None:
                raise ReservationNotFound(reservation_id)
            self._unstore(current)
            return current

    def list_reservations(
        self,
        resource_id: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        requester_id: str | None = None,
        status: str | None = None,
    ) -> list[Reservation]:
        with self._lock:
            rows = list(self._by_id.values())
        return sort_reservations(filter_reservations(rows, resource_id, start_date, end_date, requester_id, status))

    def reset(self) -> None:
        """Clear all reservations. For testing only."""
        with self._lock:
            self._by_day.clear()
            self._by_id.clear()


def filter_reservations(
    rows: Iterable[Reservation],
    resource_id: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    requester_id: str | None = None,
    status: str | None = None,
) -> list[Reservation]:
    return [
        row
        for row in rows
        if (resource_id is None or row.resource_id == resource_id)
        and (start_date is None or row.date >= start_date)
        and (end_date is None or row.date <= end_date)
        and (requester_id is None or row.requester_id == requester_id)
        and (status is None or row.status == status)
    ]


def sort_reservations(rows: Iterable[Reservation]) -> list[Reservation]:
    return sorted(rows, key=lambda row: (row.date, row.occurrence.start_time, row.resource_id))
