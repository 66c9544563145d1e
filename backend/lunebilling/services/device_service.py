from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Device, Office
from ..validation import (
    ConflictError,
    DEVICE_POLICY,
    DEVICE_UPDATE_POLICY,
    validate_payload,
)


class DeviceError(Exception):
    """Raised when lune machine operations fail."""
    pass


class DeviceNotFoundError(DeviceError):
    pass


def _device_row(device: Device, office: Office) -> dict:
    data = device.to_dict()
    data["office_name"] = office.name
    data["office_npi_id"] = office.npi_id
    data["office_state"] = office.state
    data["office_town"] = office.town
    return data


def create_device(payload: dict) -> Device:
    patch = validate_payload(model=Device, payload=payload, policy=DEVICE_POLICY, partial=False)

    office = db.session.query(Office).filter_by(id=patch["office_id"], is_deleted=False).first()
    if not office:
        raise DeviceError("Dental office not found")

    if db.session.query(Device.id).filter_by(serial_number=patch["serial_number"]).first():
        raise ConflictError("A lune machine with this serial number already exists")

    device = Device(**patch)
    db.session.add(device)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("A lune machine with this serial number already exists")
    return device


def update_device(device_id: int, payload: dict) -> Device:
    device = db.session.query(Device).filter_by(id=device_id, is_deleted=False).first()
    if not device:
        raise DeviceNotFoundError("Lune machine not found")

    patch = validate_payload(model=Device, payload=payload, policy=DEVICE_UPDATE_POLICY, partial=True)
    for key, value in patch.items():
        setattr(device, key, value)

    db.session.commit()
    return device


def get_device(device_id: int, *, include_deleted: bool = False) -> dict | None:
    query = db.session.query(Device, Office).join(Office, Office.id == Device.office_id).filter(Device.id == device_id)
    if not include_deleted:
        query = query.filter(Device.is_deleted.is_(False), Office.is_deleted.is_(False))
    row = query.first()
    if not row:
        return None
    return _device_row(*row)


def list_devices(
    *,
    search: str | None = None,
    office_id: int | None = None,
    deleted: bool = False,
) -> list[dict]:
    """
    Devices of live offices. deleted=True lists soft-deleted devices instead.
    """
    query = db.session.query(Device, Office).join(Office, Office.id == Device.office_id).filter(
        Device.is_deleted.is_(deleted),
        Office.is_deleted.is_(False),
    )
    if search:
        query = query.filter(Device.serial_number.ilike(f"%{search.strip()}%"))
    if office_id is not None:
        query = query.filter(Device.office_id == office_id)

    rows = query.order_by(Device.created_at.desc(), Device.id.desc()).all()
    return [_device_row(device, office) for device, office in rows]


def find_by_serial(serial_number: str) -> dict | None:
    row = db.session.query(Device, Office).join(Office, Office.id == Device.office_id).filter(
        Device.serial_number == serial_number,
        Device.is_deleted.is_(False),
        Office.is_deleted.is_(False),
    ).first()
    return _device_row(*row) if row else None
