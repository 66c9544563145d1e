# Overview: Opaque bearer-token sessions for logged-in staff.

"""
Session Service

A login hands the client a random token; only its SHA-256 digest is kept in
the session_tokens table. A session dies when any of these happen:
- SESSION_ABSOLUTE_TIMEOUT passes since login
- SESSION_IDLE_TIMEOUT passes without a request
- it is revoked (logout, password change/reset, account deactivation)

Password reset tokens reuse generate_token / hash_token.
"""

import hashlib
import secrets
from datetime import timedelta

from sqlalchemy import update

from ..extensions import db
from ..models import SessionToken, User
from lunebilling.time_utils import utcnow


SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)
SESSION_IDLE_TIMEOUT = timedelta(hours=2)

TOKEN_BYTES = 32


def generate_token() -> str:
    """64 hex characters; returned to the client once and never stored."""
    return secrets.token_hex(TOKEN_BYTES)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _live_session(token: str) -> SessionToken | None:
    return (
        db.session.query(SessionToken)
        .filter(SessionToken.token_hash == hash_token(token), SessionToken.is_revoked.is_(False))
        .first()
    )


def _mark_revoked(session: SessionToken, reason: str, when) -> None:
    session.is_revoked = True
    session.revoked_at = when
    session.revoked_reason = reason


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """
    Open a session for an active user.

    Returns (session_row, plaintext_token). Raises ValueError for an unknown
    or deactivated user.
    """
    user = db.session.get(User, user_id)
    if user is None:
        raise ValueError("User not found")
    if not user.is_active:
        raise ValueError("User account is deactivated")

    token = generate_token()
    now = utcnow()
    session = SessionToken(
        user_id=user.id,
        token_hash=hash_token(token),
        created_at=now,
        last_used_at=now,
        expires_at=now + SESSION_ABSOLUTE_TIMEOUT,
        user_agent=(user_agent or "")[:255] or None,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, token


def validate_session(token: str) -> User | None:
    """
    Resolve a bearer token to its User, or None.

    Idle sessions and sessions of deactivated users are revoked on the way
    out. A successful lookup refreshes last_used_at.
    """
    session = _live_session(token)
    if session is None:
        return None

    now = utcnow()
    if session.expires_at < now:
        return None

    reason = None
    if now - session.last_used_at > SESSION_IDLE_TIMEOUT:
        reason = "Idle timeout"
    elif session.user is None or not session.user.is_active:
        reason = "User account deactivated"

    if reason:
        _mark_revoked(session, reason, now)
        db.session.commit()
        return None

    session.last_used_at = now
    db.session.commit()
    return session.user


def revoke_session(token: str, reason: str = "User logout") -> bool:
    session = _live_session(token)
    if session is None:
        return False
    _mark_revoked(session, reason, utcnow())
    db.session.commit()
    return True


def revoke_all_user_sessions(user_id: int, reason: str = "Revoke all sessions", *, except_token: str | None = None) -> int:
    """
    Revoke every live session of a user and return how many were closed.

    except_token keeps the caller's own session (password change from a
    logged-in client).
    """
    stmt = (
        update(SessionToken)
        .where(SessionToken.user_id == user_id, SessionToken.is_revoked.is_(False))
        .values(is_revoked=True, revoked_at=utcnow(), revoked_reason=reason)
    )
    if except_token:
        stmt = stmt.where(SessionToken.token_hash != hash_token(except_token))

    count = db.session.execute(stmt).rowcount
    db.session.commit()
    return count


def cleanup_expired_sessions(retention_days: int = 30) -> int:
    """Delete dead sessions created before the retention window."""
    now = utcnow()
    dead = db.or_(SessionToken.expires_at < now, SessionToken.is_revoked.is_(True))
    deleted = (
        db.session.query(SessionToken)
        .filter(dead, SessionToken.created_at < now - timedelta(days=retention_days))
        .delete(synchronize_session=False)
    )
    db.session.commit()
    return deleted
