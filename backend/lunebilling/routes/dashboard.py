# Overview: Flask API routes for the billing dashboard.

from flask import Blueprint, jsonify, current_app

from ..decorators import require_auth
from ..services.reporting_service import get_reporter, ReportError


dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")


@dashboard_bp.get("/summary")
@require_auth
def dashboard_summary_route():
    """
    Offices ordered by payment status (overdue first), global owed/paid
    totals and live entity counts.
    """
    try:
        return jsonify(get_reporter().dashboard_summary()), 200
    except Exception:
        current_app.logger.exception("Failed to build dashboard summary")
        return jsonify({"error": "Internal server error"}), 500


@dashboard_bp.get("/offices/<int:office_id>/status")
@require_auth
def office_status_route(office_id: int):
    try:
        return jsonify(get_reporter().compute_office_status(office_id)), 200
    except ReportError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to compute office status")
        return jsonify({"error": "Internal server error"}), 500
