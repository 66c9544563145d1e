# Overview: Flask API routes for lune machines; parses input and returns JSON responses.

from flask import Blueprint, jsonify, request, g, current_app

from ..decorators import require_auth, require_admin
from ..services import device_service, usage_service
from ..services.lifecycle_service import get_lifecycle_engine
from ..validation import ValidationError, ConflictError
from .helpers import json_body, query_bool, query_int, lifecycle_response


devices_bp = Blueprint("devices", __name__, url_prefix="/api/lune-machines")


@devices_bp.get("")
@require_auth
def list_devices_route():
    try:
        devices = device_service.list_devices(
            search=request.args.get("search"),
            office_id=query_int("office_id"),
            deleted=query_bool("deleted"),
        )
        return jsonify({"lune_machines": devices}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list lune machines")
        return jsonify({"error": "Internal server error"}), 500


@devices_bp.post("")
@require_auth
def create_device_route():
    try:
        device = device_service.create_device(json_body())
        return jsonify({
            "lune_machine": device_service.get_device(device.id),
            "message": "Lune machine created successfully",
        }), 201
    except device_service.DeviceError as e:
        return jsonify({"error": str(e)}), 404
    except (ValidationError, ConflictError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create lune machine")
        return jsonify({"error": "Internal server error"}), 500


@devices_bp.get("/<int:device_id>")
@require_auth
def get_device_route(device_id: int):
    device = device_service.get_device(device_id, include_deleted=query_bool("include_deleted"))
    if not device:
        return jsonify({"error": "Lune machine not found"}), 404
    return jsonify({"lune_machine": device}), 200


@devices_bp.put("/<int:device_id>")
@require_auth
def update_device_route(device_id: int):
    try:
        device = device_service.update_device(device_id, json_body())
        return jsonify({
            "lune_machine": device_service.get_device(device.id),
            "message": "Lune machine updated successfully",
        }), 200
    except device_service.DeviceNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update lune machine")
        return jsonify({"error": "Internal server error"}), 500


@devices_bp.get("/search/serial/<serial_number>")
@require_auth
def find_device_by_serial_route(serial_number: str):
    device = device_service.find_by_serial(serial_number)
    if not device:
        return jsonify({"error": "Lune machine not found"}), 404
    return jsonify({"lune_machine": device}), 200


@devices_bp.get("/<int:device_id>/stats/<int:year>/<int:month>")
@require_auth
def device_stats_route(device_id: int, year: int, month: int):
    try:
        return jsonify(usage_service.device_monthly_stats(device_id, year, month)), 200
    except usage_service.DeviceNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to fetch usage stats")
        return jsonify({"error": "Internal server error"}), 500


@devices_bp.get("/<int:device_id>/months")
@require_auth
def device_months_route(device_id: int):
    try:
        return jsonify({"months": usage_service.available_months(device_id)}), 200
    except Exception:
        current_app.logger.exception("Failed to fetch available months")
        return jsonify({"error": "Internal server error"}), 500


@devices_bp.delete("/<int:device_id>")
@require_auth
@require_admin
def delete_device_route(device_id: int):
    result = get_lifecycle_engine().soft_delete("device", device_id, g.current_user.id)
    return lifecycle_response(result, "Lune machine deleted successfully")


@devices_bp.patch("/<int:device_id>/restore")
@require_auth
def restore_device_route(device_id: int):
    result = get_lifecycle_engine().restore("device", device_id)
    return lifecycle_response(result, "Lune machine restored successfully")


@devices_bp.delete("/<int:device_id>/permanent")
@require_auth
@require_admin
def permanent_delete_device_route(device_id: int):
    result = get_lifecycle_engine().permanent_delete("device", device_id, g.current_user.id)
    return lifecycle_response(result, "Lune machine permanently deleted", value_key="deleted")
