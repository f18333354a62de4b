import threading
import unittest
from datetime import date, datetime, time
from typing import Any

from booking_engine import (
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_REJECTED,
    BookingScheduler,
    ConflictChecker,
    ConflictError,
    Daily,
    DayWindow,
    EmptyBatch,
    InMemoryReservationRepository,
    InvalidRange,
    NoRepeat,
    Occurrence,
    OutsideFacilityHours,
    Reservation,
    ScheduleCancelled,
    ScheduleRequest,
    StorageUnavailable,
    WeeklySchedule,
)
from booking_engine.scheduler import ResourceDayLocks


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    def publish(self, event: dict[str, Any]) -> None:
        self.events.append(event)


class BrokenSink:
    def publish(self, event: dict[str, Any]) -> None:
        raise StorageUnavailable("notification outbox is unavailable")


def _existing(day: date, start: time, end: time, status: str = STATUS_APPROVED, room: str = "room-101") -> Reservation:
    return Reservation(
        reservation_id=f"existing-{room}-{day.isoformat()}-{start:%H%M}",
        requester_id="someone-else",
        occurrence=Occurrence(room, day, start, end),
        status=status,
        created_at=datetime(2023, 12, 1, 9, 0),
    )


def _daily_request(**overrides: Any) -> ScheduleRequest:
    values: dict[str, Any] = {
        "resource_id": "room-101",
        "requester_id": "user-1",
        "on_date": date(2024, 1, 1),
        "start_time": time(9, 0),
        "end_time": time(10, 0),
        "recurrence": Daily(until=date(2024, 1, 5)),
        "title": "Standup",
    }
    values.update(overrides)
    return ScheduleRequest(**values)


class TestConflictChecker(unittest.TestCase):
    def test_reports_blocking_reservation_with_its_times(self) -> None:
        repo = InMemoryReservationRepository([_existing(date(2024, 1, 3), time(9, 30), time(11, 0))])
        checker = ConflictChecker(repo)

        report = checker.find_conflict("room-101", Occurrence("room-101", date(2024, 1, 3), time(9, 0), time(10, 0)))

        self.assertIsNotNone(report)
        self.assertEqual(report.blocking.occurrence.start_time, time(9, 30))
        self.assertEqual(report.describe(), "Booking conflict on Jan 3, 2024 between 9:30 AM and 11:00 AM")

    def test_touching_reservation_is_not_a_conflict(self) -> None:
        repo = InMemoryReservationRepository([_existing(date(2024, 1, 3), time(10, 0), time(11, 0))])
        checker = ConflictChecker(repo)
        report = checker.find_conflict("room-101", Occurrence("room-101", date(2024, 1, 3), time(9, 0), time(10, 0)))
        self.assertIsNone(report)


class TestBookingScheduler(unittest.TestCase):
    def setUp(self) -> None:
        self.repo = InMemoryReservationRepository()
        self.sink = RecordingSink()
        self.scheduler = BookingScheduler(self.repo, self.sink, clock=lambda: datetime(2023, 12, 20, 12, 0))

    def test_daily_request_commits_every_occurrence_with_one_group(self) -> None:
        result = self.scheduler.schedule(_daily_request())

        self.assertEqual(len(result.reservations), 5)
        self.assertEqual(result.status, STATUS_PENDING)
        self.assertIsNotNone(result.group_id)
        self.assertEqual({row.occurrence.group_id for row in result.reservations}, {result.group_id})
        self.assertEqual(len(self.repo.list_reservations(resource_id="room-101")), 5)

    def test_single_booking_has_no_group(self) -> None:
        result = self.scheduler.schedule(_daily_request(recurrence=NoRepeat()))

        self.assertEqual(len(result.reservations), 1)
        self.assertIsNone(result.group_id)
        self.assertIsNone(result.reservations[0].occurrence.group_id)

    def test_conflict_in_the_middle_commits_nothing(self) -> None:
        self.repo.insert_reservations([_existing(date(2024, 1, 3), time(9, 30), time(10, 30))])

        with self.assertRaises(ConflictError) as context:
            self.scheduler.schedule(_daily_request())

        self.assertEqual(context.exception.report.occurrence.date, date(2024, 1, 3))
        self.assertIn("Jan 3, 2024", str(context.exception))
        self.assertEqual(len(self.repo.list_reservations(resource_id="room-101")), 1)
        self.assertEqual(self.sink.events, [])

    def test_first_conflict_in_date_order_is_reported(self) -> None:
        self.repo.insert_reservations(
            [
                _existing(date(2024, 1, 4), time(9, 0), time(10, 0)),
                _existing(date(2024, 1, 2), time(9, 0), time(10, 0)),
            ]
        )
        with self.assertRaises(ConflictError) as context:
            self.scheduler.schedule(_daily_request())
        self.assertEqual(context.exception.report.occurrence.date, date(2024, 1, 2))

    def test_rejected_reservation_does_not_block(self) -> None:
        self.repo.insert_reservations([_existing(date(2024, 1, 1), time(9, 0), time(10, 0), status=STATUS_REJECTED)])

        result = self.scheduler.schedule(_daily_request(recurrence=NoRepeat()))

        self.assertEqual(len(result.reservations), 1)

    def test_status_comes_from_policy(self) -> None:
        admin = self.scheduler.schedule(_daily_request(role="admin", recurrence=NoRepeat()))
        self.assertEqual(admin.status, STATUS_APPROVED)

        custom = self.scheduler.schedule(
            _daily_request(on_date=date(2024, 2, 1), recurrence=NoRepeat()),
            status_policy=lambda requester_id, role: STATUS_APPROVED,
        )
        self.assertEqual(custom.status, STATUS_APPROVED)

    def test_publishes_one_batch_created_event(self) -> None:
        self.scheduler.schedule(_daily_request())

        self.assertEqual(len(self.sink.events), 1)
        event = self.sink.events[0]
        self.assertEqual(event["kind"], "batch_created")
        self.assertEqual(event["requester_id"], "user-1")
        self.assertEqual(event["resource_id"], "room-101")
        self.assertEqual(event["occurrence_count"], 5)
        self.assertEqual(event["date_range"], {"start": "2024-01-01", "end": "2024-01-05"})

    def test_sink_failure_does_not_undo_a_committed_batch(self) -> None:
        scheduler = BookingScheduler(self.repo, BrokenSink())

        with self.assertLogs("booking_engine.scheduler", level="ERROR"):
            result = scheduler.schedule(_daily_request(recurrence=Daily(until=date(2024, 1, 3))))

        self.assertFalse(result.notified)
        self.assertEqual(len(result.reservations), 3)
        self.assertEqual(len(self.repo.list_reservations(resource_id="room-101")), 3)

    def test_successful_publish_is_reported(self) -> None:
        result = self.scheduler.schedule(_daily_request(recurrence=NoRepeat()))
        self.assertTrue(result.notified)

    def test_expansion_errors_propagate_before_any_write(self) -> None:
        with self.assertRaises(InvalidRange):
            self.scheduler.schedule(_daily_request(recurrence=Daily(until=date(2023, 12, 31))))
        self.assertEqual(self.repo.list_reservations(), [])

    def test_schedule_that_yields_no_days_is_rejected(self) -> None:
        schedule = WeeklySchedule(until=date(2024, 1, 2), windows={4: DayWindow(time(9, 0), time(10, 0))})
        with self.assertRaises(EmptyBatch):
            self.scheduler.schedule(_daily_request(recurrence=schedule))

    def test_facility_hours_apply_to_non_admins_only(self) -> None:
        late = _daily_request(start_time=time(20, 0), end_time=time(22, 0), recurrence=NoRepeat())
        with self.assertRaises(OutsideFacilityHours):
            self.scheduler.schedule(late)

        result = self.scheduler.schedule(
            _daily_request(start_time=time(20, 0), end_time=time(22, 0), recurrence=NoRepeat(), role="admin")
        )
        self.assertEqual(len(result.reservations), 1)

    def test_cancelled_request_writes_nothing(self) -> None:
        cancel = threading.Event()
        cancel.set()

        with self.assertRaises(ScheduleCancelled):
            self.scheduler.schedule(_daily_request(), cancel_event=cancel)
        self.assertEqual(self.repo.list_reservations(), [])

    def test_check_availability_lists_conflicting_dates_and_is_read_only(self) -> None:
        self.repo.insert_reservations(
            [
                _existing(date(2024, 1, 2), time(9, 0), time(10, 0)),
                _existing(date(2024, 1, 4), time(9, 30), time(9, 45)),
            ]
        )

        first = self.scheduler.check_availability("room-101", date(2024, 1, 1), time(9, 0), time(10, 0), Daily(until=date(2024, 1, 5)))
        second = self.scheduler.check_availability("room-101", date(2024, 1, 1), time(9, 0), time(10, 0), Daily(until=date(2024, 1, 5)))

        self.assertEqual(first, [date(2024, 1, 2), date(2024, 1, 4)])
        self.assertEqual(first, second)
        self.assertEqual(len(self.repo.list_reservations()), 2)
        self.assertEqual(self.sink.events, [])


class RacingRepository(InMemoryReservationRepository):
    """Slips a competing reservation in between the scheduler's check and its insert."""

    def __init__(self, intruder: Reservation) -> None:
        super().__init__()
        self._intruder = intruder
        self._intruded = False

    def insert_reservations(self, batch):
        if not self._intruded:
            self._intruded = True
            super().insert_reservations([self._intruder])
        return super().insert_reservations(batch)


class SlowRepository(InMemoryReservationRepository):
    def __init__(self, barrier: threading.Barrier) -> None:
        super().__init__()
        self._barrier = barrier

    def find_reservations(self, resource_id, on_date):
        rows = super().find_reservations(resource_id, on_date)
        self._barrier.wait(timeout=5)
        return rows


class TestSchedulerConcurrency(unittest.TestCase):
    def test_storage_constraint_violation_fails_the_whole_batch(self) -> None:
        repo = RacingRepository(_existing(date(2024, 1, 4), time(9, 0), time(10, 0)))
        scheduler = BookingScheduler(repo)

        with self.assertRaises(ConflictError) as context:
            scheduler.schedule(_daily_request())

        self.assertEqual(context.exception.report.occurrence.date, date(2024, 1, 4))
        self.assertEqual(len(repo.list_reservations()), 1)

    def test_same_slot_from_two_threads_commits_once(self) -> None:
        repo = InMemoryReservationRepository()
        scheduler = BookingScheduler(repo)
        outcomes: list[str] = []
        start = threading.Barrier(8)

        def attempt(index: int) -> None:
            start.wait(timeout=5)
            try:
                scheduler.schedule(_daily_request(requester_id=f"user-{index}"))
                outcomes.append("ok")
            except ConflictError:
                outcomes.append("conflict")

        threads = [threading.Thread(target=attempt, args=(index,)) for index in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        self.assertEqual(outcomes.count("ok"), 1)
        self.assertEqual(outcomes.count("conflict"), 7)
        self.assertEqual(len(repo.list_reservations()), 5)

    def test_disjoint_rooms_proceed_in_parallel(self) -> None:
        # Both calls must be inside their validate phase at the same time to pass the barrier.
        barrier = threading.Barrier(2)
        repo = SlowRepository(barrier)
        scheduler = BookingScheduler(repo, lock_timeout=5)
        errors: list[Exception] = []

        def book(room: str) -> None:
            try:
                scheduler.schedule(_daily_request(resource_id=room, recurrence=NoRepeat()))
            except Exception as error:  # collected for the assertion below
                errors.append(error)

        threads = [threading.Thread(target=book, args=(room,)) for room in ("room-101", "room-202")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        self.assertEqual(errors, [])
        self.assertEqual(len(repo.list_reservations()), 2)

    def test_lock_timeout_is_reported_as_retryable_storage_error(self) -> None:
        locks = ResourceDayLocks()
        scheduler = BookingScheduler(InMemoryReservationRepository(), locks=locks, lock_timeout=0.05)
        holding = threading.Event()
        release = threading.Event()

        def hold() -> None:
            with locks.hold([("room-101", date(2024, 1, 3))], timeout=1):
                holding.set()
                release.wait(timeout=5)

        holder = threading.Thread(target=hold)
        holder.start()
        holding.wait(timeout=5)
        try:
            with self.assertRaises(StorageUnavailable) as context:
                scheduler.schedule(_daily_request())
            self.assertTrue(context.exception.retryable)
        finally:
            release.set()
            holder.join(timeout=5)

        self.assertEqual(locks.active_keys(), [])


if __name__ == "__main__":
    unittest.main()
