from __future__ import annotations

from datetime import datetime

from .booking import RESERVATION_STATUSES, STATUS_APPROVED, STATUS_PENDING, STATUS_REJECTED, Reservation
from .errors import InvalidStatusTransition, ReservationNotFound
from .scheduler import NotificationSink, publish_event
from .storage import ReservationRepository

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    STATUS_PENDING: frozenset({STATUS_APPROVED, STATUS_REJECTED}),
    STATUS_APPROVED: frozenset({STATUS_REJECTED}),
    STATUS_REJECTED: frozenset(),
}

EVENT_BOOKING_CANCELLED = "booking_cancelled"


def check_transition(current: str, requested: str) -> None:
    if requested not in RESERVATION_STATUSES:
        raise ValueError(f"Unknown reservation status: {requested}")
    if requested not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise InvalidStatusTransition(current, requested)


def change_status(
    repository: ReservationRepository,
    reservation_id: str,
    status: str,
    notifier: NotificationSink | None = None,
    notify_user: bool = True,
    now: datetime | None = None,
) -> Reservation:
    """Approve or reject a reservation and tell its requester about it.

    Approving never needs a fresh conflict check: a pending reservation
    already holds its slot.
    """
    current = repository.get_reservation(reservation_id)
    if current is None:
        raise ReservationNotFound(reservation_id)
    check_transition(current.status, status)

    updated = repository.update_status(reservation_id, status, now=now)
    if notify_user:
        publish_event(
            notifier,
            {
                "kind": f"booking_{status}",
                "reservation_id": updated.reservation_id,
                "requester_id": updated.requester_id,
                "resource_id": updated.resource_id,
                "date": updated.date.isoformat(),
                "title": updated.title,
            },
        )
    return updated


def cancel_reservation(
    repository: ReservationRepository,
    reservation_id: str,
    notifier: NotificationSink | None = None,
    cancelled_by: str | None = None,
) -> Reservation:
    deleted = repository.delete_reservation(reservation_id)
    if cancelled_by != deleted.requester_id:
        publish_event(
            notifier,
            {
                "kind": EVENT_BOOKING_CANCELLED,
                "reservation_id": deleted.reservation_id,
                "requester_id": deleted.requester_id,
                "resource_id": deleted.resource_id,
                "date": deleted.date.isoformat(),
                "title": deleted.title,
                "cancelled_by": cancelled_by,
            },
        )
    return deleted
