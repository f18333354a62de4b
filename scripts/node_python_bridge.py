from __future__ import annotations

import json
from pathlib import Path
import sys
from urllib.parse import quote


def _read_payload() -> dict:
    raw = sys.stdin.read().strip()
    if not raw:
        return {}
    try:
        data = json.loads(raw)
        if isinstance(data, dict):
            return data
        return {}
    except json.JSONDecodeError:
        return {}


def _emit(status_code: int, payload: dict) -> None:
    print(json.dumps({"status": status_code, "json": payload}))


def _identity_headers(payload: dict) -> dict[str, str]:
    return {
        "X-User-Id": str(payload.get("user_id", "")),
        "X-User-Role": str(payload.get("role", "user")),
    }


def main() -> int:
    if len(sys.argv) < 2:
        print("missing action", file=sys.stderr)
        return 2

    action = sys.argv[1]
    payload = _read_payload()

    workspace_root = Path(__file__).resolve().parent.parent
    if str(workspace_root) not in sys.path:
        sys.path.insert(0, str(workspace_root))

    from booking_engine.web_app import create_app

    app = create_app("data")
    client = app.test_client()

    if action == "check":
        response = client.post("/api/bookings/check", json=payload.get("booking") or {})
        _emit(response.status_code, response.get_json() or {})
        return 0

    if action == "book":
        response = client.post("/api/bookings", json=payload.get("booking") or {}, headers=_identity_headers(payload))
        _emit(response.status_code, response.get_json() or {})
        return 0

    if action == "room":
        room = quote(str(payload.get("room", "")))
        day = quote(str(payload.get("date", "")))
        response = client.get(f"/api/rooms/{room}/bookings?date={day}")
        _emit(response.status_code, response.get_json() or {})
        return 0

    print(f"unsupported action: {action}", file=sys.stderr)
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
