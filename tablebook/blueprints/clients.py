from flask import Blueprint, jsonify, current_app
from ..entities import Client
from ..http import jerror, client_json
from ..auth import check_admin

bp = Blueprint("clients", __name__)


@bp.get("")
def list_clients():
    if not check_admin():
        return jerror(401, "UNAUTHORIZED", "Missing or invalid bearer token.")
    clients = Client.list_all(current_app.extensions["tablebook"].gateway)
    return jsonify(clients=[client_json(c) for c in clients])


@bp.get("/<int:client_id>")
def get_client(client_id: int):
    if not check_admin():
        return jerror(401, "UNAUTHORIZED", "Missing or invalid bearer token.")
    client = Client.find_by_id(current_app.extensions["tablebook"].gateway, client_id)
    if client is None:
        return jerror(404, "NOT_FOUND", f"Client {client_id} not found.")
    return jsonify(client_json(client))
