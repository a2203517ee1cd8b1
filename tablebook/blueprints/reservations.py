from flask import Blueprint, request, jsonify, current_app
from datetime import datetime, timezone
from ..entities import Client
from ..http import jerror, reservation_json
from ..auth import check_admin
from ..schemas import BookReservationRequest
from pydantic import ValidationError

bp = Blueprint("reservations", __name__)


def _engine():
    return current_app.extensions["tablebook"]


def _allow(ip: str) -> bool:
    window_seconds = current_app.config["RATE_LIMIT_WINDOW"]
    rate_state = current_app.extensions.setdefault("tablebook.rate_state", {})
    now = int(datetime.now(tz=timezone.utc).timestamp())
    window = now // window_seconds
    count, win = rate_state.get(ip, (0, window))
    if win != window:
        count, win = 0, window
    count += 1
    rate_state[ip] = (count, win)
    return count <= current_app.config["RATE_LIMIT_MAX"]


def _client_ip() -> str:
    fwd = request.headers.get("X-Forwarded-For")
    return (fwd.split(",")[0].strip() if fwd else request.remote_addr or "0.0.0.0")


@bp.post("")
def create_reservation():
    ip = _client_ip()
    if not _allow(ip):
        return jerror(429, "RATE_LIMITED", "Too many requests. Try again shortly.")

    payload = request.get_json(silent=True)
    if not payload:
        return jerror(400, "INVALID_PAYLOAD", "Missing or invalid JSON payload.")

    try:
        data = BookReservationRequest.model_validate(payload)
    except ValidationError as e:
        return jerror(422, "VALIDATION_ERROR", "Invalid input.",
                      details=e.errors(include_url=False, include_context=False))

    # Public bookings always register a new client record.
    client = Client(name=data.name, phone=data.phone, discount=data.discount)
    reservation = _engine().book(client, data.table, data.time)

    return jsonify(reservation_json(reservation)), 201


@bp.get("")
def list_reservations():
    """
    Admin list ordered by time. Query: ?q=<client name fragment>
    """
    if not check_admin():
        return jerror(401, "UNAUTHORIZED", "Missing or invalid bearer token.")

    rows = _engine().search_by_client_name(request.args.get("q", ""))

    return jsonify(total=len(rows), reservations=[reservation_json(r) for r in rows])


@bp.get("/<int:reservation_id>")
def get_reservation(reservation_id: int):
    if not check_admin():
        return jerror(401, "UNAUTHORIZED", "Missing or invalid bearer token.")
    return jsonify(reservation_json(_engine().find(reservation_id)))


@bp.delete("/<int:reservation_id>")
def cancel_reservation(reservation_id: int):
    if not check_admin():
        return jerror(401, "UNAUTHORIZED", "Missing or invalid bearer token.")
    _engine().cancel(reservation_id)
    return "", 204
