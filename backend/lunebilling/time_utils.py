from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Naive UTC; every timestamp column stores this form."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse ISO-8601 into naive UTC. Blank input gives None.

    Offsets (including a trailing Z) are converted; naive input is taken as
    UTC already. Malformed input raises ValueError.
    """
    text = (value or "").strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return _as_naive_utc(datetime.fromisoformat(text))


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """YYYY-MM-DD, or the UTC date of a full ISO datetime."""
    text = (value or "").strip()
    if not text:
        return None
    if len(text) == 10:
        return date.fromisoformat(text)
    return parse_iso_datetime(text).date()


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Second-precision ISO-8601 with a trailing Z; naive input is UTC."""
    if dt is None:
        return None
    return _as_naive_utc(dt).replace(microsecond=0).isoformat() + "Z"


def to_iso_date(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d else None
