# Overview: Failed-login tracking and temporary account lockout.

"""
Login Throttling Service

Brute-force protection for /api/auth/login.

- Every attempt is recorded in login_attempts under the normalized
  username/email that was typed (known or not).
- Failures count from the later of (now - window) and the last successful
  login, so a successful login resets the counter.
- Once the count reaches the limit the identifier is locked until
  lockout duration has passed since the most recent failure.

Limits come from LOGIN_MAX_FAILED_ATTEMPTS, LOGIN_LOCKOUT_WINDOW_MINUTES and
LOGIN_LOCKOUT_MINUTES in app config, with the module defaults below.
"""

from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import LoginAttempt
from lunebilling.time_utils import utcnow


MAX_FAILED_ATTEMPTS = 10
LOCKOUT_WINDOW = timedelta(minutes=15)
LOCKOUT_DURATION = timedelta(minutes=15)


def _max_attempts() -> int:
    return int(current_app.config.get("LOGIN_MAX_FAILED_ATTEMPTS", MAX_FAILED_ATTEMPTS))


def _window() -> timedelta:
    minutes = current_app.config.get("LOGIN_LOCKOUT_WINDOW_MINUTES")
    return timedelta(minutes=minutes) if minutes else LOCKOUT_WINDOW


def _duration() -> timedelta:
    minutes = current_app.config.get("LOGIN_LOCKOUT_MINUTES")
    return timedelta(minutes=minutes) if minutes else LOCKOUT_DURATION


def normalize_identifier(identifier: str) -> str:
    return str(identifier).strip().lower()[:100]


def _failures_since_reset(identifier: str, now):
    """Failed attempts inside the window that came after the last success."""
    since = now - _window()
    last_success = db.session.query(db.func.max(LoginAttempt.occurred_at)).filter(
        LoginAttempt.identifier == identifier,
        LoginAttempt.success.is_(True),
    ).scalar()
    if last_success is not None and last_success > since:
        since = last_success

    return db.session.query(LoginAttempt).filter(
        LoginAttempt.identifier == identifier,
        LoginAttempt.success.is_(False),
        LoginAttempt.occurred_at > since,
    )


def get_recent_failed_attempts(identifier: str) -> int:
    return _failures_since_reset(normalize_identifier(identifier), utcnow()).count()


def is_account_locked(identifier: str) -> tuple[bool, int | None]:
    """
    Returns (True, seconds_remaining) while locked, else (False, None).
    """
    identifier = normalize_identifier(identifier)
    now = utcnow()
    failures = _failures_since_reset(identifier, now)
    if failures.count() < _max_attempts():
        return False, None

    latest = failures.order_by(LoginAttempt.occurred_at.desc()).first()
    lockout_end = latest.occurred_at + _duration()
    if now >= lockout_end:
        return False, None
    return True, max(1, int((lockout_end - now).total_seconds()))


def _record(identifier: str, success: bool, ip_address: str | None, user_agent: str | None) -> None:
    db.session.add(LoginAttempt(
        identifier=normalize_identifier(identifier),
        success=success,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:255] or None,
        occurred_at=utcnow(),
    ))
    db.session.commit()


def record_failed_attempt(identifier: str, ip_address: str | None = None, user_agent: str | None = None) -> int:
    """Record a failure and return the failures counted towards lockout."""
    _record(identifier, False, ip_address, user_agent)
    return get_recent_failed_attempts(identifier)


def record_successful_login(identifier: str, ip_address: str | None = None, user_agent: str | None = None) -> None:
    _record(identifier, True, ip_address, user_agent)


def remaining_attempts(failed_count: int) -> int:
    return max(0, _max_attempts() - failed_count)


def lockout_minutes() -> int:
    return int(_duration().total_seconds() // 60)


def cleanup_login_attempts(retention_days: int = 30) -> int:
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.session.query(LoginAttempt).filter(
        LoginAttempt.occurred_at < cutoff
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
