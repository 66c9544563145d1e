# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

- Self-registration (first account and ADMIN_SEED_USERNAMES become admins)
- Login with username or email; opaque bearer session tokens
- Failed logins are counted per identifier; too many lock it (429)
- Password change / forgot / reset
- Profile and notification preferences
"""

from flask import Blueprint, jsonify, current_app, g, request

from ..services import auth_service
from ..services import login_throttle_service
from ..services import session_service
from ..services.auth_service import AuthError, PasswordValidationError
from ..validation import ValidationError
from ..decorators import require_auth, bearer_token
from .helpers import json_body


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _start_session(user):
    session, token = session_service.create_session(
        user_id=user.id,
        user_agent=request.headers.get("User-Agent"),
        ip_address=request.remote_addr,
    )
    return session, token


@auth_bp.post("/register")
def register_route():
    """
    Create an account and log it in.

    Request: {"username", "email", "password", "full_name"?}
    """
    try:
        data = json_body()
        user = auth_service.create_user(
            username=data.get("username"),
            email=data.get("email"),
            password=data.get("password"),
            full_name=data.get("full_name"),
        )
        session, token = _start_session(user)
        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "session": session.to_dict(),
            "message": "User registered successfully",
        }), 201

    except (AuthError, PasswordValidationError, ValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to register user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included in Authorization header for protected routes.
    """
    try:
        data = json_body()
        identifier = data.get("username") or data.get("email") or data.get("identifier")
        password = data.get("password")

        if not all([identifier, password]):
            return jsonify({"error": "username/email and password required"}), 400

        identifier = str(identifier).strip()
        user_agent = request.headers.get("User-Agent")
        ip_address = request.remote_addr

        is_locked, seconds_remaining = login_throttle_service.is_account_locked(identifier)
        if is_locked:
            return jsonify({
                "error": "Account temporarily locked due to too many failed login attempts",
                "locked": True,
                "retry_after_seconds": seconds_remaining,
                "retry_after_minutes": seconds_remaining // 60 + 1,
            }), 429

        user = auth_service.authenticate(identifier, password)
        if not user:
            failed_count = login_throttle_service.record_failed_attempt(
                identifier, ip_address=ip_address, user_agent=user_agent
            )
            remaining = login_throttle_service.remaining_attempts(failed_count)
            if remaining == 0:
                return jsonify({
                    "error": "Account locked due to too many failed login attempts",
                    "locked": True,
                    "retry_after_minutes": login_throttle_service.lockout_minutes(),
                }), 429
            if remaining <= 3:
                return jsonify({
                    "error": "Invalid credentials",
                    "warning": f"{remaining} attempts remaining before account lockout",
                }), 401
            return jsonify({"error": "Invalid credentials"}), 401

        login_throttle_service.record_successful_login(identifier, ip_address=ip_address, user_agent=user_agent)
        session, token = _start_session(user)

        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "session": session.to_dict(),
            "message": "Login successful"
        }), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
def logout_route():
    """
    Revoke session token (logout).

    Expects Authorization header: Bearer <token>
    """
    try:
        token = bearer_token()
        if not token:
            return jsonify({"error": "Authorization header required"}), 401

        if not session_service.revoke_session(token, reason="User logout"):
            return jsonify({"error": "Invalid or expired token"}), 401

        return jsonify({"message": "Logout successful"}), 200

    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/profile")
@require_auth
def get_profile_route():
    return jsonify({"user": g.current_user.to_dict()}), 200


@auth_bp.put("/profile")
@require_auth
def update_profile_route():
    try:
        data = json_body()
        user = auth_service.update_profile(
            g.current_user,
            email=data.get("email"),
            full_name=data.get("full_name"),
        )
        return jsonify({"user": user.to_dict(), "message": "Profile updated successfully"}), 200

    except (AuthError, ValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update profile")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/change-password")
@require_auth
def change_password_route():
    """
    Change password. Other sessions of this user are revoked; the calling
    session stays valid.
    """
    try:
        data = json_body()
        current_password = data.get("current_password")
        new_password = data.get("new_password")
        if not current_password or not new_password:
            return jsonify({"error": "current_password and new_password required"}), 400

        auth_service.change_password(
            g.current_user,
            current_password,
            new_password,
            keep_token=g.session_token,
        )
        return jsonify({"message": "Password changed successfully"}), 200

    except (AuthError, PasswordValidationError, ValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to change password")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/forgot-password")
def forgot_password_route():
    """
    Email a reset link. The response never reveals whether the email exists.
    """
    try:
        data = json_body()
        if not data.get("email"):
            return jsonify({"error": "email required"}), 400

        auth_service.request_password_reset(data.get("email"))
        return jsonify({"message": "If the email exists, a password reset link has been sent"}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to process password reset request")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/reset-password")
def reset_password_route():
    try:
        data = json_body()
        auth_service.reset_password(data.get("token"), data.get("password") or data.get("new_password"))
        return jsonify({"message": "Password reset successfully"}), 200

    except (AuthError, PasswordValidationError, ValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to reset password")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/notification-preferences")
@require_auth
def get_notification_preferences_route():
    return jsonify({"email_notifications": g.current_user.email_notifications}), 200


@auth_bp.put("/notification-preferences")
@require_auth
def update_notification_preferences_route():
    try:
        data = json_body()
        user = auth_service.set_notification_preferences(g.current_user, data.get("email_notifications"))
        return jsonify({
            "email_notifications": user.email_notifications,
            "message": "Notification preferences updated successfully",
        }), 200

    except (AuthError, ValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update notification preferences")
        return jsonify({"error": "Internal server error"}), 500
