from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable

from sqlalchemy import Boolean, Date, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from lunebilling.time_utils import parse_iso_date, parse_iso_datetime


# $9,999,999.99
MAX_AMOUNT_CENTS = 999_999_999

NPI_PATTERN = re.compile(r"^\d{10}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """Duplicate NPI, serial number or invoice number."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Which columns a client may write, and which must be present on create.
    Anything outside writable_fields is rejected rather than ignored.
    """
    writable_fields: frozenset[str]
    required_on_create: frozenset[str] = field(default_factory=frozenset)


OFFICE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"name", "npi_id", "state", "town", "address", "phone_number", "email"}),
    required_on_create=frozenset({"name", "npi_id", "state", "town", "address"}),
)

_DEVICE_FIELDS = frozenset(
    {"serial_number", "office_id", "purchase_date", "connected_phone", "sbc_identifier", "plan_type"}
)

DEVICE_POLICY = ModelValidationPolicy(writable_fields=_DEVICE_FIELDS, required_on_create=_DEVICE_FIELDS)

# serial_number and office_id are fixed once a device exists
DEVICE_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"purchase_date", "connected_phone", "sbc_identifier", "plan_type"}),
)


def _to_int(key: str, value: Any) -> int:
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(f"{key} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and re.fullmatch(r"[+-]?\d+", value.strip()):
        return int(value.strip())
    raise ValidationError(f"{key} must be an integer")


def _to_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    raise ValidationError(f"{key} must be true or false")


def _to_datetime(key: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    try:
        parsed = parse_iso_datetime(value) if isinstance(value, str) else None
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError(f"{key} must be an ISO-8601 datetime")
    return parsed


def _to_date(key: str, value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        parsed = parse_iso_date(value) if isinstance(value, str) else None
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError(f"{key} must be an ISO-8601 date")
    return parsed


def _to_text(key: str, value: Any) -> str:
    if isinstance(value, (dict, list)):
        raise ValidationError(f"{key} must be a string")
    return str(value).strip()


# DateTime before Date: order matters for isinstance on column types
_COERCERS: tuple[tuple[type, Callable[[str, Any], Any]], ...] = (
    (Integer, _to_int),
    (Boolean, _to_bool),
    (DateTime, _to_datetime),
    (Date, _to_date),
    (String, _to_text),
    (Text, _to_text),
)


def _coerce(col, value: Any) -> Any:
    for coltype, coerce in _COERCERS:
        if isinstance(col.type, coltype):
            return coerce(col.key, value)
    return value


def _check_text(col, value: Any) -> None:
    if not isinstance(value, str):
        return
    if value == "" and not col.nullable:
        raise ValidationError(f"{col.key} cannot be blank")
    limit = getattr(col.type, "length", None)
    if limit and len(value) > limit:
        raise ValidationError(f"{col.key} exceeds max length {limit}")


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Clean a JSON body against a model's columns and a write policy.

    partial=False is create semantics: every required_on_create field must be
    present and non-empty. partial=True validates only the keys provided.
    Returns a dict of coerced values keyed by column name.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    columns = {c.key: c for c in model.__mapper__.columns}
    patch: dict = {}
    for key, raw in payload.items():
        if key not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {key}")
        col = columns.get(key)
        if col is None:
            raise ValidationError(f"Unknown field: {key}")

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{key} cannot be null")
            patch[key] = None
            continue

        value = _coerce(col, raw)
        _check_text(col, value)
        patch[key] = value

    return patch


def enforce_rules_office(patch: dict) -> None:
    npi_id = patch.get("npi_id")
    if npi_id is not None and not NPI_PATTERN.match(npi_id):
        raise ValidationError("NPI ID must be exactly 10 digits")
    if patch.get("email") and not EMAIL_PATTERN.match(patch["email"]):
        raise ValidationError("email must be a valid email address")


def enforce_rules_amount_cents(field_name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field_name} must be an integer number of cents")
    if value < 0:
        raise ValidationError(f"{field_name} must be >= 0")
    if value > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field_name} cannot exceed {MAX_AMOUNT_CENTS} (${MAX_AMOUNT_CENTS / 100:,.2f})")
    return value
