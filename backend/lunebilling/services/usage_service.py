# Overview: Button-usage ingestion, per-device monthly statistics, and demo data generation.

"""
Usage Ingestion Service

Every button press on a Lune machine is stored as an immutable UsageRecord.
duration_seconds is derived here, never taken from the client:

    duration_seconds = round_half_up((end_time - start_time) in seconds)

Records whose derived duration is <= 0 are rejected. Bulk ingestion
validates every record (including device existence) before writing any of
them, then commits the whole batch in one transaction.
"""

from __future__ import annotations

import calendar
import random
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import Integer, cast, extract, func

from ..extensions import db
from ..models import Device, Office, UsageRecord
from ..validation import ValidationError
from lunebilling.time_utils import parse_iso_datetime, parse_iso_date


MIN_BUTTON = 1
MAX_BUTTON = 6

_MICROS_PER_SECOND = 1_000_000


class UsageError(Exception):
    """Raised when usage operations fail."""
    pass


class DeviceNotFoundError(UsageError):
    pass


def compute_duration_seconds(start_time: datetime, end_time: datetime) -> int:
    """
    Whole seconds between start and end, halves rounded up.

    Raises ValidationError when the result is not positive.
    """
    delta = end_time - start_time
    micros = (delta.days * 86_400 + delta.seconds) * _MICROS_PER_SECOND + delta.microseconds
    seconds = (micros + _MICROS_PER_SECOND // 2) // _MICROS_PER_SECOND
    if seconds <= 0:
        raise ValidationError("End time must be after start time")
    return seconds


def _parse_timestamp(payload: dict, key: str) -> datetime:
    raw = payload.get(key)
    if isinstance(raw, datetime):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError(f"Valid {key.replace('_', ' ')} is required")
    try:
        return parse_iso_datetime(raw)
    except ValueError:
        raise ValidationError(f"Valid {key.replace('_', ' ')} is required")


def _parse_button(payload: dict) -> int:
    raw = payload.get("button_number")
    if isinstance(raw, bool):
        raise ValidationError("Button number must be between 1 and 6")
    try:
        button = int(raw)
    except (TypeError, ValueError):
        raise ValidationError("Button number must be between 1 and 6")
    if isinstance(raw, float) and raw != button:
        raise ValidationError("Button number must be between 1 and 6")
    if not MIN_BUTTON <= button <= MAX_BUTTON:
        raise ValidationError("Button number must be between 1 and 6")
    return button


def _parse_device_id(payload: dict) -> int:
    raw = payload.get("device_id", payload.get("lune_machine_id"))
    if isinstance(raw, bool):
        raise ValidationError("Valid lune machine ID is required")
    try:
        device_id = int(raw)
    except (TypeError, ValueError):
        raise ValidationError("Valid lune machine ID is required")
    if device_id < 1:
        raise ValidationError("Valid lune machine ID is required")
    return device_id


def _active_device_ids(device_ids: set[int]) -> set[int]:
    if not device_ids:
        return set()
    rows = db.session.query(Device.id).filter(
        Device.id.in_(device_ids),
        Device.is_deleted.is_(False),
    ).all()
    return {row[0] for row in rows}


def build_usage_record(payload: Any) -> UsageRecord:
    """Validate one payload and build an unsaved UsageRecord (device existence not checked)."""
    if not isinstance(payload, dict):
        raise ValidationError("Usage entry must be an object")

    device_id = _parse_device_id(payload)
    button = _parse_button(payload)
    start_time = _parse_timestamp(payload, "start_time")
    end_time = _parse_timestamp(payload, "end_time")

    duration = compute_duration_seconds(start_time, end_time)

    raw_date = payload.get("usage_date")
    if raw_date in (None, ""):
        usage_date = start_time.date()
    else:
        try:
            usage_date = parse_iso_date(str(raw_date))
        except ValueError:
            raise ValidationError("Valid usage date is required")

    return UsageRecord(
        device_id=device_id,
        button_number=button,
        start_time=start_time,
        end_time=end_time,
        duration_seconds=duration,
        usage_date=usage_date,
    )


def record_usage(payload: dict) -> UsageRecord:
    record = build_usage_record(payload)

    if record.device_id not in _active_device_ids({record.device_id}):
        raise DeviceNotFoundError("Lune machine not found")

    db.session.add(record)
    db.session.commit()
    return record


def record_usage_bulk(payloads: Any) -> list[UsageRecord]:
    """
    All-or-nothing ingestion.

    Raises ValidationError naming the index of the first bad entry; nothing
    is written in that case.
    """
    if not isinstance(payloads, list) or not payloads:
        raise ValidationError("Usage data array is required")

    records: list[UsageRecord] = []
    for index, payload in enumerate(payloads):
        try:
            records.append(build_usage_record(payload))
        except ValidationError as exc:
            if str(exc) == "End time must be after start time":
                raise ValidationError(f"Invalid duration for usage data at index {index}")
            raise ValidationError(f"usage_data[{index}]: {exc}")

    known = _active_device_ids({r.device_id for r in records})
    for index, record in enumerate(records):
        if record.device_id not in known:
            raise DeviceNotFoundError(f"Lune machine not found for usage data at index {index}")

    try:
        db.session.add_all(records)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return records


def _month_bounds(year: int, month: int) -> tuple[date, date]:
    if not 1 <= month <= 12:
        raise ValidationError("month must be between 1 and 12")
    if not 1970 <= year <= 9999:
        raise ValidationError("year is out of range")
    start = date(year, month, 1)
    end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return start, end


def _visible_device(device_id: int) -> Device | None:
    return (
        db.session.query(Device)
        .join(Office, Office.id == Device.office_id)
        .filter(Device.id == device_id, Device.is_deleted.is_(False), Office.is_deleted.is_(False))
        .first()
    )


def device_monthly_stats(device_id: int, year: int, month: int) -> dict:
    device = _visible_device(device_id)
    if not device:
        raise DeviceNotFoundError("Lune machine not found")

    start, end = _month_bounds(year, month)
    in_month = (
        UsageRecord.device_id == device_id,
        UsageRecord.usage_date >= start,
        UsageRecord.usage_date < end,
    )

    summary_rows = db.session.query(
        UsageRecord.button_number,
        func.count(UsageRecord.id),
        func.sum(UsageRecord.duration_seconds),
        func.avg(UsageRecord.duration_seconds),
        func.min(UsageRecord.duration_seconds),
        func.max(UsageRecord.duration_seconds),
    ).filter(*in_month).group_by(UsageRecord.button_number).order_by(UsageRecord.button_number.asc()).all()

    details = db.session.query(UsageRecord).filter(*in_month).order_by(UsageRecord.start_time.asc()).all()

    device_data = device.to_dict()
    device_data["office_name"] = device.office.name

    return {
        "device": device_data,
        "year": year,
        "month": month,
        "summary": [
            {
                "button_number": button,
                "press_count": count,
                "total_duration_seconds": int(total or 0),
                "avg_duration_seconds": float(avg or 0),
                "min_duration_seconds": min_d,
                "max_duration_seconds": max_d,
            }
            for button, count, total, avg, min_d, max_d in summary_rows
        ],
        "details": [record.to_dict() for record in details],
    }


def available_months(device_id: int) -> list[dict]:
    year_expr = cast(extract("year", UsageRecord.usage_date), Integer)
    month_expr = cast(extract("month", UsageRecord.usage_date), Integer)

    rows = db.session.query(
        year_expr.label("year"),
        month_expr.label("month"),
        func.count(UsageRecord.id).label("usage_count"),
    ).filter(
        UsageRecord.device_id == device_id,
    ).group_by(year_expr, month_expr).order_by(year_expr.desc(), month_expr.desc()).all()

    return [
        {"year": int(row.year), "month": int(row.month), "usage_count": row.usage_count}
        for row in rows
    ]


def generate_sample_usage(
    device_id: int,
    *,
    year: int,
    month: int,
    records_per_day: int = 10,
    seed: int | None = None,
) -> int:
    """
    Fill a month with plausible demo presses: buttons 1-6, between 08:00
    and 18:00, 30 to 329 seconds each. Returns the number of rows written.
    """
    if records_per_day < 1:
        raise ValidationError("records_per_day must be >= 1")
    _month_bounds(year, month)

    if device_id not in _active_device_ids({device_id}):
        raise DeviceNotFoundError("Lune machine not found")

    rng = random.Random(seed)
    days_in_month = calendar.monthrange(year, month)[1]

    records = []
    for day in range(1, days_in_month + 1):
        for _ in range(records_per_day):
            duration = 30 + rng.randrange(300)
            start_time = datetime(year, month, day, 8 + rng.randrange(10), rng.randrange(60))
            records.append(UsageRecord(
                device_id=device_id,
                button_number=rng.randint(MIN_BUTTON, MAX_BUTTON),
                start_time=start_time,
                end_time=start_time + timedelta(seconds=duration),
                duration_seconds=duration,
                usage_date=start_time.date(),
            ))

    db.session.add_all(records)
    db.session.commit()
    return len(records)
