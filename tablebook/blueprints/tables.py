from flask import Blueprint, request, jsonify, current_app
from pydantic import ValidationError
from ..entities import Table
from ..http import jerror, table_json
from ..auth import check_admin
from ..schemas import UpsertTableRequest

bp = Blueprint("tables", __name__)


@bp.get("")
def list_tables():
    engine = current_app.extensions["tablebook"]
    available = request.args.get("available", "").lower() in ("1", "true", "yes")
    tables = engine.list_available_tables() if available else Table.list_all(engine.gateway)
    return jsonify(tables=[table_json(t) for t in tables])


@bp.put("/<int:numeral>")
def upsert_table(numeral: int):
    if not check_admin():
        return jerror(401, "UNAUTHORIZED", "Missing or invalid bearer token.")

    payload = request.get_json(silent=True)
    if not payload:
        return jerror(400, "INVALID_PAYLOAD", "Missing or invalid JSON payload.")

    try:
        data = UpsertTableRequest.model_validate(payload)
    except ValidationError as e:
        return jerror(422, "VALIDATION_ERROR", "Invalid input.",
                      details=e.errors(include_url=False, include_context=False))

    # Occupancy only changes through booking and cancellation.
    table, created = current_app.extensions["tablebook"].update_table(
        numeral, data.capacity, data.exclusive_view
    )

    return jsonify(table_json(table)), (201 if created else 200)
