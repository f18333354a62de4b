from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from flask import Flask, jsonify, request

from .booking import RESERVATION_STATUSES, ROLE_ADMIN, ROLE_USER
from .errors import (
    ConflictError,
    InvalidStatusTransition,
    ReservationNotFound,
    StorageUnavailable,
    ValidationError,
)
from .lifecycle import cancel_reservation, change_status
from .payloads import parse_booking_payload, parse_date
from .scheduler import BookingScheduler, ScheduleRequest
from .yaml_store import ReservationYamlRepository, YamlNotificationSink

USER_ID_HEADER = "X-User-Id"
USER_ROLE_HEADER = "X-User-Role"


def create_app(
    data_dir: str | Path = "data",
    now_provider: Callable[[], datetime] | None = None,
) -> Flask:
    app = Flask(__name__)
    repository = ReservationYamlRepository(data_dir)
    notifier = YamlNotificationSink(data_dir)
    clock: Callable[[], datetime] = now_provider or datetime.now
    scheduler = BookingScheduler(repository, notifier, clock=clock)

    def _caller() -> tuple[str, str]:
        requester_id = str(request.headers.get(USER_ID_HEADER, "")).strip()
        role = str(request.headers.get(USER_ROLE_HEADER, ROLE_USER)).strip().lower() or ROLE_USER
        return requester_id, role

    def _fail(status_code: int, message: str, **extra: Any) -> Any:
        return jsonify({"ok": False, "message": message, **extra}), status_code

    def _status_filter() -> str | None:
        status = str(request.args.get("status", "")).strip().lower()
        if not status:
            return None
        if status not in RESERVATION_STATUSES:
            raise ValueError(f"status must be one of {', '.join(RESERVATION_STATUSES)}")
        return status

    @app.after_request
    def add_cors_headers(response: Any) -> Any:
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = f"Content-Type,{USER_ID_HEADER},{USER_ROLE_HEADER}"
        return response

    @app.errorhandler(StorageUnavailable)
    def storage_unavailable(error: StorageUnavailable) -> Any:
        return _fail(503, str(error), retryable=True)

    @app.post("/api/bookings/check")
    def check_availability() -> Any:
        payload = request.get_json(silent=True) or {}
        try:
            parsed = parse_booking_payload(payload)
            conflicts = scheduler.check_availability(
                parsed["resource_id"],
                parsed["on_date"],
                parsed["start_time"],
                parsed["end_time"],
                parsed["recurrence"],
            )
        except ValidationError as error:
            return _fail(400, str(error), kind=error.kind)
        except ValueError as error:
            return _fail(400, str(error))

        return jsonify({"ok": True, "conflicts": [day.isoformat() for day in conflicts]})

    @app.post("/api/bookings")
    def create_booking() -> Any:
        requester_id, role = _caller()
        if not requester_id:
            return _fail(401, "Unauthorized")

        payload = request.get_json(silent=True) or {}
        title = str(payload.get("title", "")).strip()
        if not title:
            return _fail(400, "title is required")

        try:
            parsed = parse_booking_payload(payload)
            result = scheduler.schedule(
                ScheduleRequest(
                    requester_id=requester_id,
                    role=role,
                    title=title,
                    description=str(payload.get("description", "")).strip(),
                    **parsed,
                )
            )
        except ConflictError as error:
            return _fail(409, str(error), conflict=error.report.to_dict())
        except ValidationError as error:
            return _fail(400, str(error), kind=error.kind)
        except ValueError as error:
            return _fail(400, str(error))

        return (
            jsonify(
                {
                    "ok": True,
                    "status": result.status,
                    "group_id": result.group_id,
                    "notified": result.notified,
                    "repeat_count": len(result.reservations),
                    "reservations": [row.to_dict() for row in result.reservations],
                }
            ),
            201,
        )

    @app.get("/api/bookings")
    def list_my_bookings() -> Any:
        requester_id, _role = _caller()
        if not requester_id:
            return _fail(401, "Unauthorized")

        try:
            status = _status_filter()
        except ValueError as error:
            return _fail(400, str(error))

        rows = repository.list_reservations(requester_id=requester_id, status=status)
        return jsonify({"ok": True, "reservations": [row.to_dict() for row in rows]})

    @app.get("/api/admin/bookings")
    def list_all_bookings() -> Any:
        _requester_id, role = _caller()
        if role != ROLE_ADMIN:
            return _fail(403, "Only administrators can list every booking.")

        room = str(request.args.get("room", "")).strip() or None
        try:
            status = _status_filter()
            start_date = parse_date(request.args["start"], "start") if request.args.get("start") else None
            end_date = parse_date(request.args["end"], "end") if request.args.get("end") else None
        except ValueError as error:
            return _fail(400, str(error))
        if start_date and end_date and end_date < start_date:
            return _fail(400, "end must not be before start")

        rows = repository.list_reservations(
            resource_id=room,
            start_date=start_date,
            end_date=end_date,
            status=status,
        )
        return jsonify({"ok": True, "reservations": [row.to_dict() for row in rows]})

    @app.get("/api/rooms/<resource_id>/bookings")
    def list_room_bookings(resource_id: str) -> Any:
        try:
            on_date = parse_date(request.args.get("date"))
        except ValueError as error:
            return _fail(400, str(error))

        rows = repository.list_reservations(resource_id=resource_id, start_date=on_date, end_date=on_date)
        return jsonify({"ok": True, "reservations": [row.to_dict() for row in rows]})

    @app.post("/api/bookings/<reservation_id>/status")
    def update_booking_status(reservation_id: str) -> Any:
        _requester_id, role = _caller()
        if role != ROLE_ADMIN:
            return _fail(403, "Only administrators can change a booking status.")

        payload = request.get_json(silent=True) or {}
        status = str(payload.get("status", "")).strip().lower()
        if not status:
            return _fail(400, "status is required")

        try:
            updated = change_status(
                repository,
                reservation_id,
                status,
                notifier=notifier,
                notify_user=bool(payload.get("notify_user", True)),
                now=clock(),
            )
        except ReservationNotFound:
            return _fail(404, "Booking not found.")
        except InvalidStatusTransition as error:
            return _fail(409, str(error))
        except ValueError as error:
            return _fail(400, str(error))

        return jsonify({"ok": True, "reservation": updated.to_dict()})

    @app.post("/api/bookings/<reservation_id>/delete")
    def delete_booking(reservation_id: str) -> Any:
        requester_id, role = _caller()
        existing = repository.get_reservation(reservation_id)
        if existing is None:
            return _fail(404, "Booking not found.")
        if role != ROLE_ADMIN and existing.requester_id != requester_id:
            return _fail(403, "This booking cannot be deleted.")

        try:
            deleted = cancel_reservation(repository, reservation_id, notifier=notifier, cancelled_by=requester_id)
        except ReservationNotFound:
            return _fail(404, "Booking not found.")
        return jsonify({"ok": True, "reservation": deleted.to_dict()})

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(host="127.0.0.1", port=5000, debug=False)
