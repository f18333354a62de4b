import tempfile
import unittest
from pathlib import Path
from unittest import mock

import booking_mcp_server
from booking_engine import BookingScheduler, ReservationYamlRepository

WEEKLY_SCHEDULE = {
    "monday": {"start_time": "09:00", "end_time": "10:00", "enabled": True},
    "wednesday": {"start_time": "14:00", "end_time": "15:00", "enabled": True},
}


class TestMcpTools(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_dir = tempfile.TemporaryDirectory()
        repository = ReservationYamlRepository(Path(self._temp_dir.name) / "data")
        patches = (
            mock.patch.object(booking_mcp_server, "REPOSITORY", repository),
            mock.patch.object(booking_mcp_server, "SCHEDULER", BookingScheduler(repository)),
        )
        for patcher in patches:
            patcher.start()
            self.addCleanup(patcher.stop)

    def tearDown(self) -> None:
        self._temp_dir.cleanup()

    def test_book_room_with_weekly_schedule(self) -> None:
        booked = booking_mcp_server.book_room(
            room="room-101",
            requester_id="user-1",
            title="Office hours",
            date="2024-01-01",
            repeat_type="weekly",
            repeat_end_date="2024-01-14",
            weekly_schedule=WEEKLY_SCHEDULE,
        )

        self.assertEqual(booked["status"], "pending")
        self.assertEqual(
            [row["date"] for row in booked["reservations"]],
            ["2024-01-01", "2024-01-03", "2024-01-08", "2024-01-10"],
        )

        conflicts = booking_mcp_server.check_availability(
            room="room-101",
            date="2024-01-01",
            repeat_type="weekly",
            repeat_end_date="2024-01-14",
            weekly_schedule={"wednesday": {"start_time": "14:30", "end_time": "15:30", "enabled": True}},
        )
        self.assertEqual(conflicts, ["2024-01-03", "2024-01-10"])

    def test_role_is_passed_to_the_status_policy(self) -> None:
        booked = booking_mcp_server.book_room(
            room="room-101",
            requester_id="admin-1",
            title="Board meeting",
            date="2024-01-02",
            start_time="09:00",
            end_time="10:00",
            role="admin",
        )

        self.assertEqual(booked["status"], "approved")
        listed = booking_mcp_server.list_room_bookings(room="room-101", date="2024-01-02")
        self.assertEqual([row["title"] for row in listed], ["Board meeting"])


if __name__ == "__main__":
    unittest.main()
