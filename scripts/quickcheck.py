from __future__ import annotations

from datetime import date, time, timedelta
from pathlib import Path
import tempfile
import traceback

from booking_engine import (
    BookingScheduler,
    ConflictError,
    Daily,
    ReservationYamlRepository,
    ScheduleRequest,
    YamlNotificationSink,
)


def main() -> int:
    print("[INFO] Booking Engine Quick Check")
    print("[INFO] Booking a daily series and probing a clash...")

    data_dir = Path(tempfile.mkdtemp(prefix="booking-quickcheck-"))
    repo = ReservationYamlRepository(data_dir)
    scheduler = BookingScheduler(repo, YamlNotificationSink(data_dir))

    first_day = date.today()
    series = Daily(until=first_day + timedelta(days=4))
    result = scheduler.schedule(
        ScheduleRequest(
            resource_id="quickcheck-room",
            requester_id="quickcheck",
            on_date=first_day,
            start_time=time(9, 0),
            end_time=time(10, 0),
            recurrence=series,
            title="Quick check standup",
        )
    )
    print(f"[OK] Booked {len(result.reservations)} occurrences with status {result.status}")

    conflicts = scheduler.check_availability("quickcheck-room", first_day, time(9, 30), time(10, 30), series)
    print(f"[OK] Conflicting dates for an overlapping series: {len(conflicts)}")

    try:
        scheduler.schedule(
            ScheduleRequest(
                resource_id="quickcheck-room",
                requester_id="quickcheck",
                on_date=first_day,
                start_time=time(9, 30),
                end_time=time(10, 30),
                title="Clashing request",
            )
        )
    except ConflictError as error:
        print(f"[OK] Clash rejected: {error}")

    print(f"[OK] Reservations YAML: {repo.reservations_file.resolve()}")
    print(f"[OK] Event Log YAML: {repo.log_file.resolve()}")
    print("[DONE] Quick check completed successfully.")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception:
        print("[ERROR] Quick check failed.")
        traceback.print_exc()
        raise SystemExit(1)
