from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime
from pathlib import Path
from threading import RLock
from typing import Any, Sequence
import logging
import shutil

import yaml

from .booking import Reservation, first_overlap
from .errors import OverlapConstraintError, ReservationNotFound, StorageUnavailable
from .storage import filter_reservations, sort_reservations

logger = logging.getLogger(__name__)

ReservationIndex = dict[tuple[str, date], list[Reservation]]


class ReservationYamlRepository:
    """Keeps every reservation in one YAML list and an append-only event log beside it.

    All file access goes through one re-entrant lock, so a batch insert
    re-checks overlaps and writes the whole batch in a single replace.
    Parsed rows are cached with a ``(resource_id, date)`` index and re-read
    only when the file's modification time or size changes.
    """

    def __init__(self, base_dir: str | Path = "data") -> None:
        self.base_dir = Path(base_dir)
        self.reservations_file = self.base_dir / "reservations.yaml"
        self.log_file = self.base_dir / "reservation_events.yaml"
        self._io_lock = RLock()
        self._cached_signature: tuple[int, int] | None = None
        self._cached_rows: list[Reservation] = []
        self._cached_index: ReservationIndex = {}
        self._ensure_files()

    def _ensure_files(self) -> None:
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            for path in (self.reservations_file, self.log_file):
                if not path.exists():
                    path.write_text("[]\n", encoding="utf-8")
        except OSError as error:
            raise StorageUnavailable(f"Cannot prepare reservation storage in {self.base_dir}") from error

    def _file_signature(self) -> tuple[int, int] | None:
        try:
            stat = self.reservations_file.stat()
        except FileNotFoundError:
            return None
        except OSError as error:
            raise StorageUnavailable(f"Failed to stat YAML file: {self.reservations_file}") from error
        return stat.st_mtime_ns, stat.st_size

    def _read_reservation_rows(self) -> list[dict[str, Any]]:
        path = self.reservations_file
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            path.write_text("[]\n", encoding="utf-8")
            return []
        except yaml.YAMLError as error:
            backup = _backup_file(path)
            self._log_event("YAML_CORRUPTED", {"file": path.name, "backup": backup, "reason": str(error)})
            raise StorageUnavailable(f"Reservation file is corrupted: {path}") from error
        except (OSError, UnicodeDecodeError) as error:
            raise StorageUnavailable(f"Failed to read YAML file: {path}") from error

        if payload is None:
            return []
        if not isinstance(payload, list):
            raise StorageUnavailable(f"Reservation file does not hold a list: {path}")

        sanitized: list[dict[str, Any]] = []
        for index, row in enumerate(payload):
            if isinstance(row, dict):
                sanitized.append(row)
            else:
                self._log_event(
                    "YAML_ROW_SKIPPED",
                    {
                        "file": path.name,
                        "index": index,
                        "reason": "row is not a mapping",
                    },
                )
        return sanitized

    def _refresh(self) -> None:
        signature = self._file_signature()
        if signature is not None and signature == self._cached_signature:
            return

        rows = self._read_reservation_rows()
        try:
            reservations = [Reservation.from_dict(row) for row in rows]
        except (KeyError, TypeError, ValueError) as error:
            raise StorageUnavailable(f"Malformed reservation row in {self.reservations_file}") from error
        self._remember(reservations, self._file_signature())

    def _remember(self, reservations: Sequence[Reservation], signature: tuple[int, int] | None) -> None:
        index: ReservationIndex = {}
        for row in reservations:
            index.setdefault((row.resource_id, row.date), []).append(row)
        self._cached_rows = list(reservations)
        self._cached_index = index
        self._cached_signature = signature

    def _load(self) -> list[Reservation]:
        self._refresh()
        return list(self._cached_rows)

    def _save(self, reservations: Sequence[Reservation]) -> None:
        _write_yaml_list(self.reservations_file, [row.to_dict() for row in reservations])
        self._remember(reservations, self._file_signature())

    def _log_event(self, event_type: str, payload: dict[str, Any], event_time: datetime | None = None) -> None:
        """Append to the event log. A failed append never undoes a write that already landed."""
        timestamp = (event_time or datetime.now()).isoformat(timespec="seconds")
        with self._io_lock:
            events = _read_recoverable_list(self.log_file)
            events.append({"event_time": timestamp, "event_type": event_type, "payload": payload})
            try:
                _write_yaml_list(self.log_file, events)
            except StorageUnavailable:
                logger.warning("Could not record %s in %s", event_type, self.log_file, exc_info=True)

    def get_events(self) -> list[dict[str, Any]]:
        with self._io_lock:
            return _read_recoverable_list(self.log_file)

    def find_reservations(self, resource_id: str, on_date: date) -> list[Reservation]:
        with self._io_lock:
            self._refresh()
            return list(self._cached_index.get((resource_id, on_date), ()))

    def insert_reservations(self, batch: Sequence[Reservation]) -> list[str]:
        if not batch:
            return []

        with self._io_lock:
            stored = self._load()
            accepted: list[Reservation] = []
            for reservation in batch:
                blocking = first_overlap(reservation.occurrence, [*stored, *accepted])
                if blocking is not None and reservation.blocks_resource:
                    raise OverlapConstraintError(reservation.occurrence, blocking)
                accepted.append(reservation)

            self._save([*stored, *accepted])
            self._log_event(
                "RESERVATIONS_INSERTED",
                {
                    "count": len(accepted),
                    "resource_id": accepted[0].resource_id,
                    "group_id": accepted[0].occurrence.group_id,
                    "reservation_ids": [row.reservation_id for row in accepted],
                },
            )
        return [row.reservation_id for row in accepted]

    def get_reservation(self, reservation_id: str) -> Reservation | None:
        with self._io_lock:
            reservations = self._load()
        for row in reservations:
            if row.reservation_id == reservation_id:
                return row
        return None

    def update_status(self, reservation_id: str, status: str, now: datetime | None = None) -> Reservation:
        effective_now = now or datetime.now()
        with self._io_lock:
            reservations = self._load()
            found_index = _index_of(reservations, reservation_id)
            if found_index < 0:
                raise ReservationNotFound(reservation_id)

            current = reservations[found_index]
            updated = replace(current, status=status, updated_at=effective_now)
            reservations[found_index] = updated
            self._save(reservations)
            self._log_event(
                "RESERVATION_STATUS_CHANGED",
                {
                    "reservation_id": reservation_id,
                    "from": current.status,
                    "to": status,
                },
                effective_now,
            )
        return updated

    def delete_reservation(self, reservation_id: str) -> Reservation:
        with self._io_lock:
            reservations = self._load()
            found_index = _index_of(reservations, reservation_id)
            if found_index < 0:
                raise ReservationNotFound(reservation_id)

            deleted = reservations.pop(found_index)
            self._save(reservations)
            self._log_event(
                "RESERVATION_DELETED",
                {
                    "reservation_id": reservation_id,
                    "resource_id": deleted.resource_id,
                    "date": deleted.date.isoformat(),
                },
            )
        return deleted

    def list_reservations(
        self,
        resource_id: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        requester_id: str | None = None,
        status: str | None = None,
    ) -> list[Reservation]:
        with self._io_lock:
            reservations = self._load()
        return sort_reservations(filter_reservations(reservations, resource_id, start_date, end_date, requester_id, status))


class YamlNotificationSink:
    """Appends outbound booking events to a YAML list for the delivery side to pick up."""

    def __init__(self, base_dir: str | Path = "data") -> None:
        self.base_dir = Path(base_dir)
        self.notifications_file = self.base_dir / "notifications.yaml"
        self._io_lock = RLock()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        if not self.notifications_file.exists():
            self.notifications_file.write_text("[]\n", encoding="utf-8")

    def publish(self, event: dict[str, Any]) -> None:
        with self._io_lock:
            rows = _read_recoverable_list(self.notifications_file)
            rows.append({"created_at": datetime.now().isoformat(timespec="seconds"), "read": False, **event})
            _write_yaml_list(self.notifications_file, rows)

    def get_notifications(self) -> list[dict[str, Any]]:
        with self._io_lock:
            return _read_recoverable_list(self.notifications_file)


def _index_of(reservations: Sequence[Reservation], reservation_id: str) -> int:
    for index, row in enumerate(reservations):
        if row.reservation_id == reservation_id:
            return index
    return -1


def _read_recoverable_list(path: Path) -> list[dict[str, Any]]:
    """Read an append-only YAML list, starting over from a backup when it is unreadable."""
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return []
    except (OSError, UnicodeDecodeError, yaml.YAMLError):
        _backup_file(path)
        return []

    if not isinstance(payload, list):
        if payload is not None:
            _backup_file(path)
        return []
    return [row for row in payload if isinstance(row, dict)]


def _write_yaml_list(path: Path, rows: list[dict[str, Any]]) -> None:
    temp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        temp_path.write_text(yaml.safe_dump(rows, allow_unicode=True, sort_keys=False), encoding="utf-8")
        temp_path.replace(path)
    except OSError as error:
        raise StorageUnavailable(f"Failed to write YAML file: {path}") from error
    finally:
        if temp_path.exists():
            temp_path.unlink(missing_ok=True)


def _backup_file(path: Path) -> str | None:
    timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
    backup_path = path.with_name(f"{path.stem}.corrupt.{timestamp}{path.suffix}")
    try:
        if path.exists():
            shutil.copy2(path, backup_path)
            return backup_path.name
    except OSError:
        return None
    return None
