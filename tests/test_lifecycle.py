import unittest
from datetime import date, datetime, time
from typing import Any

from booking_engine import (
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_REJECTED,
    InMemoryReservationRepository,
    InvalidStatusTransition,
    Occurrence,
    Reservation,
    ReservationNotFound,
    StorageUnavailable,
    cancel_reservation,
    change_status,
)
from booking_engine.lifecycle import check_transition


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    def publish(self, event: dict[str, Any]) -> None:
        self.events.append(event)


class BrokenSink:
    def publish(self, event: dict[str, Any]) -> None:
        raise StorageUnavailable("notification outbox is unavailable")


def _repo_with(status: str) -> InMemoryReservationRepository:
    return InMemoryReservationRepository(
        [
            Reservation(
                reservation_id="r-1",
                requester_id="user-1",
                occurrence=Occurrence("room-101", date(2024, 1, 3), time(9, 0), time(10, 0)),
                status=status,
                created_at=datetime(2023, 12, 1, 9, 0),
                title="Review",
            )
        ]
    )


class TestStatusMachine(unittest.TestCase):
    def test_allowed_transitions(self) -> None:
        check_transition(STATUS_PENDING, STATUS_APPROVED)
        check_transition(STATUS_PENDING, STATUS_REJECTED)
        check_transition(STATUS_APPROVED, STATUS_REJECTED)

    def test_forbidden_transitions(self) -> None:
        for current, requested in (
            (STATUS_REJECTED, STATUS_APPROVED),
            (STATUS_REJECTED, STATUS_PENDING),
            (STATUS_APPROVED, STATUS_PENDING),
            (STATUS_PENDING, STATUS_PENDING),
        ):
            with self.subTest(current=current, requested=requested):
                with self.assertRaises(InvalidStatusTransition):
                    check_transition(current, requested)

    def test_unknown_status_is_a_value_error(self) -> None:
        with self.assertRaises(ValueError):
            check_transition(STATUS_PENDING, "archived")


class TestChangeStatus(unittest.TestCase):
    def test_approve_notifies_requester(self) -> None:
        repo = _repo_with(STATUS_PENDING)
        sink = RecordingSink()

        updated = change_status(repo, "r-1", STATUS_APPROVED, notifier=sink)

        self.assertEqual(updated.status, STATUS_APPROVED)
        self.assertEqual(repo.get_reservation("r-1").status, STATUS_APPROVED)
        self.assertEqual(sink.events[0]["kind"], "booking_approved")
        self.assertEqual(sink.events[0]["requester_id"], "user-1")

    def test_rejecting_frees_the_slot_for_lookups(self) -> None:
        repo = _repo_with(STATUS_APPROVED)

        change_status(repo, "r-1", STATUS_REJECTED, notify_user=False)

        rows = repo.find_reservations("room-101", date(2024, 1, 3))
        self.assertEqual([row.status for row in rows], [STATUS_REJECTED])

    def test_rejected_is_final(self) -> None:
        repo = _repo_with(STATUS_REJECTED)
        with self.assertRaises(InvalidStatusTransition):
            change_status(repo, "r-1", STATUS_APPROVED)

    def test_status_change_survives_a_broken_sink(self) -> None:
        repo = _repo_with(STATUS_PENDING)

        with self.assertLogs("booking_engine.scheduler", level="ERROR"):
            updated = change_status(repo, "r-1", STATUS_APPROVED, notifier=BrokenSink())

        self.assertEqual(updated.status, STATUS_APPROVED)
        self.assertEqual(repo.get_reservation("r-1").status, STATUS_APPROVED)

    def test_missing_reservation(self) -> None:
        with self.assertRaises(ReservationNotFound):
            change_status(InMemoryReservationRepository(), "nope", STATUS_APPROVED)


class TestCancelReservation(unittest.TestCase):
    def test_admin_cancellation_notifies_owner(self) -> None:
        repo = _repo_with(STATUS_APPROVED)
        sink = RecordingSink()

        cancel_reservation(repo, "r-1", notifier=sink, cancelled_by="admin-1")

        self.assertIsNone(repo.get_reservation("r-1"))
        self.assertEqual(sink.events[0]["kind"], "booking_cancelled")
        self.assertEqual(sink.events[0]["cancelled_by"], "admin-1")

    def test_cancellation_survives_a_broken_sink(self) -> None:
        repo = _repo_with(STATUS_APPROVED)

        with self.assertLogs("booking_engine.scheduler", level="ERROR"):
            cancel_reservation(repo, "r-1", notifier=BrokenSink(), cancelled_by="admin-1")

        self.assertIsNone(repo.get_reservation("r-1"))

    def test_owner_cancellation_is_silent(self) -> None:
        repo = _repo_with(STATUS_PENDING)
        sink = RecordingSink()

        cancel_reservation(repo, "r-1", notifier=sink, cancelled_by="user-1")

        self.assertEqual(sink.events, [])


if __name__ == "__main__":
    unittest.main()
