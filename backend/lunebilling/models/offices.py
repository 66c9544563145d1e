from __future__ import annotations

from ..extensions import db
from lunebilling.time_utils import to_utc_z, to_iso_date


class Office(db.Model):
    """
    Dental office: the billing tenant.

    Owns Devices (Lune machines) and Invoices. Soft delete flips is_deleted
    and stamps deleted_at; the flag is cascaded onto the office's devices.
    """
    __tablename__ = "dental_offices"
    __table_args__ = (
        db.Index("ix_dental_offices_deleted", "is_deleted"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    npi_id = db.Column(db.String(20), nullable=False, unique=True, index=True)
    state = db.Column(db.String(50), nullable=False)
    town = db.Column(db.String(100), nullable=False)
    address = db.Column(db.Text, nullable=False)
    phone_number = db.Column(db.String(20), nullable=True)
    email = db.Column(db.String(100), nullable=True)

    is_deleted = db.Column(db.Boolean, nullable=False, default=False)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Office id={self.id} name={self.name!r} npi={self.npi_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "npi_id": self.npi_id,
            "state": self.state,
            "town": self.town,
            "address": self.address,
            "phone_number": self.phone_number,
            "email": self.email,
            "is_deleted": self.is_deleted,
            "deleted_at": to_utc_z(self.deleted_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Device(db.Model):
    """
    Lune machine installed at exactly one office.

    No deleted_at column: device soft delete only flips is_deleted.
    """
    __tablename__ = "lune_machines"
    __table_args__ = (
        db.Index("ix_lune_machines_office", "office_id"),
        db.Index("ix_lune_machines_deleted", "is_deleted"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    serial_number = db.Column(db.String(50), nullable=False, unique=True, index=True)
    office_id = db.Column(db.Integer, db.ForeignKey("dental_offices.id"), nullable=False)

    purchase_date = db.Column(db.Date, nullable=False)
    connected_phone = db.Column(db.String(20), nullable=False)
    sbc_identifier = db.Column(db.String(50), nullable=False)
    plan_type = db.Column(db.String(50), nullable=False)

    is_deleted = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    office = db.relationship("Office", backref=db.backref("devices", lazy=True, passive_deletes=True))

    def __repr__(self) -> str:
        return f"<Device id={self.id} serial={self.serial_number!r} office_id={self.office_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "serial_number": self.serial_number,
            "office_id": self.office_id,
            "purchase_date": to_iso_date(self.purchase_date),
            "connected_phone": self.connected_phone,
            "sbc_identifier": self.sbc_identifier,
            "plan_type": self.plan_type,
            "is_deleted": self.is_deleted,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
