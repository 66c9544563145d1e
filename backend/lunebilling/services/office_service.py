from __future__ import annotations

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Device, Office
from ..validation import (
    ConflictError,
    DEVICE_POLICY,
    OFFICE_POLICY,
    ValidationError,
    enforce_rules_office,
    validate_payload,
)


class OfficeError(Exception):
    """Raised when dental office operations fail."""
    pass


class OfficeNotFoundError(OfficeError):
    pass


def _ensure_unique_npi(npi_id: str, *, exclude_id: int | None = None) -> None:
    query = db.session.query(Office.id).filter(Office.npi_id == npi_id)
    if exclude_id is not None:
        query = query.filter(Office.id != exclude_id)
    if query.first():
        raise ConflictError("An office with this NPI ID already exists")


def _ensure_unique_serials(serials: list[str]) -> None:
    seen: set[str] = set()
    for serial in serials:
        if serial in seen:
            raise ConflictError(f"Duplicate serial number in request: {serial}")
        seen.add(serial)
    if serials:
        taken = db.session.query(Device.serial_number).filter(Device.serial_number.in_(serials)).first()
        if taken:
            raise ConflictError(f"A lune machine with serial number {taken[0]} already exists")


def create_office(payload: dict, *, created_by_user_id: int | None = None) -> Office:
    """
    Create an office, optionally with its initial devices ("lunes").

    The office and every device are written in one transaction.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    payload = dict(payload)
    lunes = payload.pop("lunes", None) or []
    if not isinstance(lunes, list):
        raise ValidationError("lunes must be a list")

    patch = validate_payload(model=Office, payload=payload, policy=OFFICE_POLICY, partial=False)
    enforce_rules_office(patch)
    _ensure_unique_npi(patch["npi_id"])

    device_patches = []
    for index, lune in enumerate(lunes):
        if not isinstance(lune, dict) or not lune.get("serial_number"):
            continue
        lune = {k: v for k, v in lune.items() if k != "office_id"}
        try:
            device_patch = validate_payload(
                model=Device,
                payload={**lune, "office_id": 0},
                policy=DEVICE_POLICY,
                partial=False,
            )
        except ValidationError as exc:
            raise ValidationError(f"lunes[{index}]: {exc}")
        device_patch.pop("office_id")
        device_patches.append(device_patch)

    _ensure_unique_serials([p["serial_number"] for p in device_patches])

    office = Office(created_by_user_id=created_by_user_id, **patch)
    db.session.add(office)
    try:
        db.session.flush()
        for device_patch in device_patches:
            db.session.add(Device(office_id=office.id, **device_patch))
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Office or lune machine violates a uniqueness constraint")
    return office


def update_office(office_id: int, payload: dict) -> Office:
    office = db.session.query(Office).filter_by(id=office_id, is_deleted=False).first()
    if not office:
        raise OfficeNotFoundError("Dental office not found")

    patch = validate_payload(model=Office, payload=payload, policy=OFFICE_POLICY, partial=True)
    enforce_rules_office(patch)
    if "npi_id" in patch:
        _ensure_unique_npi(patch["npi_id"], exclude_id=office_id)

    for key, value in patch.items():
        setattr(office, key, value)

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("An office with this NPI ID already exists")
    return office


def _device_stats_query():
    return db.session.query(
        Office,
        func.count(Device.id).label("lune_count"),
    ).outerjoin(
        Device, (Device.office_id == Office.id) & (Device.is_deleted.is_(False))
    ).group_by(Office.id)


def _office_row(office: Office, lune_count: int) -> dict:
    data = office.to_dict()
    data["lune_count"] = lune_count
    return data


def get_office(office_id: int, *, include_deleted: bool = False) -> dict | None:
    query = _device_stats_query().filter(Office.id == office_id)
    if not include_deleted:
        query = query.filter(Office.is_deleted.is_(False))
    row = query.first()
    if not row:
        return None
    office, lune_count = row
    data = _office_row(office, lune_count)
    data["lunes"] = [
        d.to_dict()
        for d in db.session.query(Device)
        .filter(Device.office_id == office_id, Device.is_deleted.is_(False))
        .order_by(Device.serial_number.asc())
    ]
    return data


def list_offices(*, search: str | None = None, deleted: bool = False) -> list[dict]:
    """
    Offices with their active device counts, newest first.

    deleted=True lists the soft-deleted offices instead of the live ones.
    """
    query = _device_stats_query().filter(Office.is_deleted.is_(deleted))

    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(
            Office.name.ilike(like),
            Office.npi_id.ilike(like),
            Office.state.ilike(like),
            Office.town.ilike(like),
        ))

    rows = query.order_by(Office.created_at.desc(), Office.id.desc()).all()
    return [_office_row(office, lune_count) for office, lune_count in rows]


def find_by_npi(npi_id: str) -> Office | None:
    return db.session.query(Office).filter_by(npi_id=npi_id, is_deleted=False).first()
