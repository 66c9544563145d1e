# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

Every action must be attributable. Uses bcrypt for password hashing.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 6 characters required
- Session tokens managed separately (see session_service.py)
- Password reset tokens are random, stored only as SHA-256 hashes, and expire
  after RESET_TOKEN_EXPIRY_MINUTES

ADMIN BOOTSTRAP:
- The very first account created becomes an admin.
- Usernames listed in ADMIN_SEED_USERNAMES become admins on creation.
- Operators can promote later with `flask users promote`.
"""

import re
from datetime import timedelta

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import User, ROLE_ADMIN, ROLE_USER, VALID_ROLES
from ..validation import EMAIL_PATTERN
from lunebilling.time_utils import utcnow
from . import notification_service, session_service


MIN_PASSWORD_LENGTH = 6
MAX_PASSWORD_LENGTH = 128
USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_.@-]+$")


class AuthError(Exception):
    """Raised when account operations fail."""
    pass


class UserNotFoundError(AuthError):
    pass


class SelfModificationError(AuthError):
    """An admin tried to demote their own account."""
    pass


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if len(password) > MAX_PASSWORD_LENGTH:
        raise PasswordValidationError(f"Password cannot exceed {MAX_PASSWORD_LENGTH} characters")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() is timing-safe.
    """
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash
        return False


def _validate_email(email) -> str:
    email = str(email or "").strip().lower()
    if not EMAIL_PATTERN.match(email) or len(email) > 100:
        raise AuthError("Please provide a valid email address")
    return email


def _validate_full_name(full_name) -> str | None:
    if full_name is None:
        return None
    full_name = str(full_name).strip()
    if len(full_name) > 100:
        raise AuthError("Full name cannot exceed 100 characters")
    return full_name or None


def _validate_username(username) -> str:
    username = str(username or "").strip()
    if not 3 <= len(username) <= 50:
        raise AuthError("Username must be between 3 and 50 characters")
    if not USERNAME_PATTERN.match(username):
        raise AuthError("Username can only contain letters, numbers, underscores, dots, @ and hyphens")
    return username


def _initial_role(username: str) -> str:
    if db.session.query(User.id).first() is None:
        return ROLE_ADMIN
    if username in (current_app.config.get("ADMIN_SEED_USERNAMES") or []):
        return ROLE_ADMIN
    return ROLE_USER


def create_user(
    username: str,
    email: str,
    password: str,
    full_name: str | None = None,
    role: str | None = None,
) -> User:
    """
    Create new user with bcrypt password hashing.

    role=None applies the admin bootstrap rules; otherwise the given role is
    used as-is (CLI and tests).

    Raises:
        AuthError: invalid fields, or username/email already taken
        PasswordValidationError: password doesn't meet requirements
    """
    username = _validate_username(username)
    email = _validate_email(email)
    full_name = _validate_full_name(full_name)

    if role is not None and role not in VALID_ROLES:
        raise AuthError("Role must be either 'user' or 'admin'")

    if db.session.query(User.id).filter(User.username == username).first():
        raise AuthError("Username already exists")
    if db.session.query(User.id).filter(User.email == email).first():
        raise AuthError("Email already exists")

    password_hash = hash_password(password)

    user = User(
        username=username,
        email=email,
        full_name=full_name,
        password_hash=password_hash,
        role=role or _initial_role(username),
        is_active=True,
    )

    db.session.add(user)
    db.session.commit()

    notification_service.notify_welcome(user)
    return user


def authenticate(identifier: str, password: str) -> User | None:
    """
    Authenticate user with username (or email) and password.

    Returns User if credentials valid, None otherwise.
    Updates last_login_at timestamp on successful authentication.
    """
    if not identifier or not password:
        return None

    user = db.session.query(User).filter(
        db.or_(User.username == identifier, User.email == identifier.strip().lower()),
        User.is_active.is_(True),
    ).first()

    if not user or not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def update_profile(user: User, *, email=None, full_name=None) -> User:
    if email is not None:
        email = _validate_email(email)
        taken = db.session.query(User.id).filter(User.email == email, User.id != user.id).first()
        if taken:
            raise AuthError("Email is already registered to another account")
        user.email = email
    if full_name is not None:
        user.full_name = _validate_full_name(full_name)

    db.session.commit()
    return user


def set_notification_preferences(user: User, email_notifications) -> User:
    if not isinstance(email_notifications, bool):
        raise AuthError("email_notifications must be a boolean value")
    user.email_notifications = email_notifications
    db.session.commit()
    return user


def change_password(user: User, current_password: str, new_password: str, *, keep_token: str | None = None) -> None:
    """
    Change password after verifying the current one.

    Every other session of the user is revoked; keep_token stays valid.
    """
    if not verify_password(current_password, user.password_hash):
        raise AuthError("Current password is incorrect")
    if verify_password(new_password, user.password_hash):
        raise AuthError("New password cannot be the same as your current password")

    user.password_hash = hash_password(new_password)
    db.session.commit()

    session_service.revoke_all_user_sessions(user.id, reason="Password changed", except_token=keep_token)
    notification_service.notify_password_changed(user)


def request_password_reset(email: str) -> str | None:
    """
    Issue a reset token for an active account with this email.

    Returns the plaintext token (emailed to the user) or None when no such
    account exists. Callers must not reveal which case occurred.
    """
    email = str(email or "").strip().lower()
    user = db.session.query(User).filter_by(email=email, is_active=True).first()
    if not user:
        return None

    expiry_minutes = current_app.config["RESET_TOKEN_EXPIRY_MINUTES"]
    token = session_service.generate_token()
    user.reset_token_hash = session_service.hash_token(token)
    user.reset_token_expires_at = utcnow() + timedelta(minutes=expiry_minutes)
    db.session.commit()

    notification_service.notify_password_reset(user, token, expiry_minutes)
    return token


def reset_password(token: str, new_password: str) -> User:
    if not token:
        raise AuthError("Invalid or expired reset token")

    user = db.session.query(User).filter_by(
        reset_token_hash=session_service.hash_token(token),
        is_active=True,
    ).first()
    if not user or not user.reset_token_expires_at or user.reset_token_expires_at < utcnow():
        raise AuthError("Invalid or expired reset token")

    if verify_password(new_password, user.password_hash):
        raise AuthError("New password cannot be the same as your current password")

    user.password_hash = hash_password(new_password)
    user.reset_token_hash = None
    user.reset_token_expires_at = None
    db.session.commit()

    session_service.revoke_all_user_sessions(user.id, reason="Password reset")
    notification_service.notify_password_changed(user)
    return user


# =============================================================================
# USER ADMINISTRATION
# =============================================================================

def list_users(*, include_inactive: bool = False) -> list[User]:
    query = db.session.query(User)
    if not include_inactive:
        query = query.filter(User.is_active.is_(True))
    return query.order_by(User.created_at.desc(), User.id.desc()).all()


def change_role(user_id: int, role: str, *, acting_user_id: int) -> User:
    if role not in VALID_ROLES:
        raise AuthError("Role must be either 'user' or 'admin'")

    if user_id == acting_user_id and role != ROLE_ADMIN:
        raise SelfModificationError("You cannot remove admin privileges from your own account")

    user = db.session.query(User).filter_by(id=user_id).first()
    if not user:
        raise UserNotFoundError("User not found")

    user.role = role
    db.session.commit()
    return user


def promote_user(username: str) -> User:
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        raise UserNotFoundError("User not found")
    user.role = ROLE_ADMIN
    db.session.commit()
    return user
