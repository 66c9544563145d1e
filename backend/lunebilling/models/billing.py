from __future__ import annotations

from ..extensions import db
from lunebilling.time_utils import to_utc_z

INVOICE_UNPAID = "unpaid"
INVOICE_PAID = "paid"
VALID_INVOICE_STATUSES = (INVOICE_UNPAID, INVOICE_PAID)

KIND_PAYMENT_INTENT = "payment_intent"
KIND_CHECKOUT_SESSION = "checkout_session"


class Invoice(db.Model):
    """
    Monthly billing record for an office.

    Amounts are integer cents. status toggles between unpaid and paid only;
    paid_at is set when paid and cleared when flipped back.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.Index("ix_invoices_office", "office_id"),
        db.Index("ix_invoices_month_year", "year", "month"),
        db.Index("ix_invoices_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    office_id = db.Column(db.Integer, db.ForeignKey("dental_offices.id"), nullable=False)
    invoice_number = db.Column(db.String(50), nullable=False, unique=True, index=True)
    month = db.Column(db.Integer, nullable=False)
    year = db.Column(db.Integer, nullable=False)
    total_amount_cents = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=INVOICE_UNPAID)

    # Line items, tax, notes, pricing breakdown
    invoice_data = db.Column(db.JSON, nullable=True)

    generated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    is_deleted = db.Column(db.Boolean, nullable=False, default=False)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    office = db.relationship("Office", backref=db.backref("invoices", lazy=True, passive_deletes=True))

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.invoice_number!r} status={self.status}>"

    def to_dict(self, include_data: bool = True) -> dict:
        result = {
            "id": self.id,
            "office_id": self.office_id,
            "invoice_number": self.invoice_number,
            "month": self.month,
            "year": self.year,
            "total_amount_cents": self.total_amount_cents,
            "status": self.status,
            "generated_at": to_utc_z(self.generated_at),
            "paid_at": to_utc_z(self.paid_at),
            "is_deleted": self.is_deleted,
            "deleted_at": to_utc_z(self.deleted_at),
        }
        if include_data:
            result["invoice_data"] = self.invoice_data
        return result


class PaymentIntent(db.Model):
    """
    Local record of a payment-processor intent or hosted checkout session.

    Only the processor's id and status are kept; processor payloads are not
    interpreted. user_id is null for public payment links. kind tells a
    PaymentIntent id ("pi_...") from a checkout session id ("cs_...").
    """
    __tablename__ = "payment_intents"
    __table_args__ = (
        db.Index("ix_payment_intents_invoice", "invoice_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    external_intent_id = db.Column(db.String(255), nullable=False, unique=True, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False)
    office_id = db.Column(db.Integer, db.ForeignKey("dental_offices.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(8), nullable=False, default="usd")
    kind = db.Column(db.String(32), nullable=False, default=KIND_PAYMENT_INTENT)
    status = db.Column(db.String(32), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "external_intent_id": self.external_intent_id,
            "invoice_id": self.invoice_id,
            "office_id": self.office_id,
            "user_id": self.user_id,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "kind": self.kind,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
