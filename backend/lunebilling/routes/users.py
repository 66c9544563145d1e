# Overview: Flask API routes for user administration; parses input and returns JSON responses.

from flask import Blueprint, jsonify, g, current_app

from ..decorators import require_auth, require_admin
from ..services import auth_service
from ..services.auth_service import AuthError, SelfModificationError, UserNotFoundError
from ..services.lifecycle_service import get_lifecycle_engine
from ..validation import ValidationError
from .helpers import json_body, query_bool, lifecycle_response


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("")
@require_auth
@require_admin
def list_users_route():
    users = auth_service.list_users(include_inactive=query_bool("include_inactive"))
    return jsonify({"users": [user.to_dict() for user in users]}), 200


@users_bp.put("/<int:user_id>/role")
@require_auth
@require_admin
def change_role_route(user_id: int):
    try:
        user = auth_service.change_role(user_id, json_body().get("role"), acting_user_id=g.current_user.id)
        return jsonify({"user": user.to_dict(), "message": "User role updated successfully"}), 200
    except UserNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except (SelfModificationError, AuthError, ValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to change user role")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.delete("/<int:user_id>")
@require_auth
@require_admin
def deactivate_user_route(user_id: int):
    result = get_lifecycle_engine().soft_delete("user", user_id, g.current_user.id)
    return lifecycle_response(result, "User deactivated successfully")


@users_bp.patch("/<int:user_id>/restore")
@require_auth
def restore_user_route(user_id: int):
    result = get_lifecycle_engine().restore("user", user_id)
    return lifecycle_response(result, "User restored successfully")


@users_bp.delete("/<int:user_id>/permanent")
@require_auth
@require_admin
def permanent_delete_user_route(user_id: int):
    result = get_lifecycle_engine().permanent_delete("user", user_id, g.current_user.id)
    return lifecycle_response(result, "User permanently deleted", value_key="deleted")
