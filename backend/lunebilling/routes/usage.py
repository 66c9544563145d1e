# Overview: Flask API routes for button usage ingestion; parses input and returns JSON responses.

from flask import Blueprint, jsonify, current_app

from ..decorators import require_auth
from ..services import usage_service
from ..validation import ValidationError
from ..time_utils import utcnow
from .helpers import json_body


usage_bp = Blueprint("usage", __name__, url_prefix="/api/button-usage")


@usage_bp.post("")
@require_auth
def record_usage_route():
    """
    Record one button press.

    Request: {"device_id", "button_number" (1-6), "start_time", "end_time", "usage_date"?}
    duration_seconds is derived server-side.
    """
    try:
        record = usage_service.record_usage(json_body())
        return jsonify({
            "usage": record.to_dict(),
            "message": "Button usage recorded successfully",
        }), 201
    except usage_service.DeviceNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to record button usage")
        return jsonify({"error": "Internal server error"}), 500


@usage_bp.post("/bulk")
@require_auth
def record_usage_bulk_route():
    """
    All-or-nothing ingestion. Request: {"usage_data": [...]}
    """
    try:
        records = usage_service.record_usage_bulk(json_body().get("usage_data"))
        return jsonify({
            "created": len(records),
            "message": f"{len(records)} button usage records created successfully",
        }), 201
    except usage_service.DeviceNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to record bulk button usage")
        return jsonify({"error": "Internal server error"}), 500


@usage_bp.post("/generate-sample/<int:device_id>")
@require_auth
def generate_sample_route(device_id: int):
    """
    Demo data. Request: {"month"?, "year"?, "records_per_day"? (default 10)}
    """
    try:
        data = json_body()
        now = utcnow()
        created = usage_service.generate_sample_usage(
            device_id,
            year=int(data.get("year") or now.year),
            month=int(data.get("month") or now.month),
            records_per_day=int(data.get("records_per_day") or 10),
        )
        return jsonify({
            "created": created,
            "message": f"Generated {created} sample usage records",
        }), 201
    except usage_service.DeviceNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except (ValidationError, ValueError, TypeError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to generate sample usage")
        return jsonify({"error": "Internal server error"}), 500
