from flask import jsonify
from .utils.time import api_iso

def jerror(status: int, code: str, message: str, details=None):
    payload = {"code": code, "message": message}
    if details:
        payload["details"] = details
    return jsonify(payload), status

def client_json(client):
    return {
        "id": client.id,
        "name": client.name,
        "phone": client.phone,
        "discount": client.discount,
        "vip": client.is_vip,
    }

def table_json(table):
    return {
        "numeral": table.numeral,
        "capacity": table.capacity,
        "occupied": table.occupied,
        "vip": table.vip,
        "exclusiveView": table.exclusive_view,
    }

def reservation_json(reservation):
    return {
        "id": reservation.id,
        "time": api_iso(reservation.timestamp),
        "displayTime": reservation.display_time,
        "tableNumber": reservation.table_numeral,
        "client": client_json(reservation.client),
        "table": table_json(reservation.table),
    }
