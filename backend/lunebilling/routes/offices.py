# Overview: Flask API routes for dental offices; parses input and returns JSON responses.

"""
Dental office routes

Soft delete and permanent delete are admin-only and run through the
lifecycle engine (soft delete cascades onto the office's lune machines;
permanent delete removes usage, invoices and machines first). Restore only
requires an authenticated user.
"""

from flask import Blueprint, jsonify, request, g, current_app

from ..decorators import require_auth, require_admin
from ..services import office_service
from ..services.lifecycle_service import get_lifecycle_engine
from ..validation import ValidationError, ConflictError
from .helpers import json_body, query_bool, lifecycle_response


offices_bp = Blueprint("offices", __name__, url_prefix="/api/dental-offices")


@offices_bp.get("")
@require_auth
def list_offices_route():
    """
    Query parameters:
        search: matches name, NPI, state or town
        deleted: "true" lists soft-deleted offices instead of live ones
    """
    try:
        offices = office_service.list_offices(
            search=request.args.get("search"),
            deleted=query_bool("deleted"),
        )
        return jsonify({"offices": offices}), 200
    except Exception:
        current_app.logger.exception("Failed to list dental offices")
        return jsonify({"error": "Internal server error"}), 500


@offices_bp.post("")
@require_auth
def create_office_route():
    try:
        office = office_service.create_office(json_body(), created_by_user_id=g.current_user.id)
        return jsonify({
            "office": office_service.get_office(office.id),
            "message": "Dental office created successfully",
        }), 201
    except (ValidationError, ConflictError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create dental office")
        return jsonify({"error": "Internal server error"}), 500


@offices_bp.get("/<int:office_id>")
@require_auth
def get_office_route(office_id: int):
    office = office_service.get_office(office_id, include_deleted=query_bool("include_deleted"))
    if not office:
        return jsonify({"error": "Dental office not found"}), 404
    return jsonify({"office": office}), 200


@offices_bp.put("/<int:office_id>")
@require_auth
def update_office_route(office_id: int):
    try:
        office = office_service.update_office(office_id, json_body())
        return jsonify({"office": office_service.get_office(office.id), "message": "Dental office updated successfully"}), 200
    except office_service.OfficeNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except (ValidationError, ConflictError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update dental office")
        return jsonify({"error": "Internal server error"}), 500


@offices_bp.get("/search/npi/<npi_id>")
@require_auth
def find_office_by_npi_route(npi_id: str):
    office = office_service.find_by_npi(npi_id)
    if not office:
        return jsonify({"error": "Dental office not found"}), 404
    return jsonify({"office": office.to_dict()}), 200


@offices_bp.delete("/<int:office_id>")
@require_auth
@require_admin
def delete_office_route(office_id: int):
    result = get_lifecycle_engine().soft_delete("office", office_id, g.current_user.id)
    return lifecycle_response(result, "Dental office deleted successfully")


@offices_bp.patch("/<int:office_id>/restore")
@require_auth
def restore_office_route(office_id: int):
    result = get_lifecycle_engine().restore("office", office_id)
    return lifecycle_response(result, "Dental office restored successfully")


@offices_bp.delete("/<int:office_id>/permanent")
@require_auth
@require_admin
def permanent_delete_office_route(office_id: int):
    result = get_lifecycle_engine().permanent_delete("office", office_id, g.current_user.id)
    if result.ok:
        current_app.logger.warning(
            "Dental office %s (%s) permanently deleted by user %s",
            office_id, result.value["display_name"], g.current_user.id,
        )
    return lifecycle_response(result, "Dental office permanently deleted", value_key="deleted")
