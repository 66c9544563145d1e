from __future__ import annotations

from ..extensions import db
from lunebilling.time_utils import to_utc_z, to_iso_date


class UsageRecord(db.Model):
    """
    One button press on a Lune machine.

    Immutable once written. duration_seconds is derived from the start/end
    times at ingestion and is always > 0.
    """
    __tablename__ = "button_usage"
    __table_args__ = (
        db.CheckConstraint("duration_seconds > 0", name="ck_button_usage_duration_positive"),
        db.Index("ix_button_usage_device", "device_id"),
        db.Index("ix_button_usage_date", "usage_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    device_id = db.Column(db.Integer, db.ForeignKey("lune_machines.id"), nullable=False)
    button_number = db.Column(db.Integer, nullable=False)
    start_time = db.Column(db.DateTime(timezone=True), nullable=False)
    end_time = db.Column(db.DateTime(timezone=True), nullable=False)
    duration_seconds = db.Column(db.Integer, nullable=False)
    usage_date = db.Column(db.Date, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    device = db.relationship("Device", backref=db.backref("usage_records", lazy=True, passive_deletes=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "device_id": self.device_id,
            "button_number": self.button_number,
            "start_time": to_utc_z(self.start_time),
            "end_time": to_utc_z(self.end_time),
            "duration_seconds": self.duration_seconds,
            "usage_date": to_iso_date(self.usage_date),
        }
