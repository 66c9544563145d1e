# Overview: Invoice creation, usage-based generation, numbering, status changes and listing.

"""
Invoice Service

All amounts are integer cents. Invoice numbers follow INV-YYMM###### with a
sequence that restarts every month.

TIME PRICING (per usage session, by duration):
    under 5 minutes      -> $0.00
    [5, 7)  minutes      -> $8.00
    [7, 9)  minutes      -> $10.00
    ... +$2.00 per 2-minute band ...
    [25, 27) minutes     -> $28.00
    [27, 30) minutes     -> $30.00
    30 minutes and over  -> $30.00
"""

from __future__ import annotations

import base64
import binascii
from datetime import date

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Device, Invoice, Office, UsageRecord, INVOICE_PAID, INVOICE_UNPAID, VALID_INVOICE_STATUSES
from ..validation import ConflictError, ValidationError, enforce_rules_amount_cents
from lunebilling.time_utils import parse_iso_date, utcnow, to_iso_date
from . import notification_service


INVOICE_TYPE_CUSTOM = "custom"
INVOICE_TYPE_USAGE = "usage"

FREE_SECONDS = 5 * 60
BAND_START_SECONDS = 5 * 60
BAND_WIDTH_SECONDS = 2 * 60
BANDED_LIMIT_SECONDS = 27 * 60
CAP_SECONDS = 30 * 60
BASE_BAND_PRICE_CENTS = 800
BAND_STEP_CENTS = 200
CAP_PRICE_CENTS = 3000


class InvoiceError(Exception):
    """Raised when invoice operations fail."""
    pass


class InvoiceNotFoundError(InvoiceError):
    pass


# =============================================================================
# PRICING
# =============================================================================

def price_for_duration(duration_seconds: int) -> tuple[int, str]:
    """Return (charge_cents, price_range_label) for one usage session."""
    if duration_seconds < FREE_SECONDS:
        return 0, "under 5 min"
    if duration_seconds < BANDED_LIMIT_SECONDS:
        band = (duration_seconds - BAND_START_SECONDS) // BAND_WIDTH_SECONDS
        low = 5 + 2 * band
        return BASE_BAND_PRICE_CENTS + BAND_STEP_CENTS * band, f"{low}-{low + 2} min"
    if duration_seconds < CAP_SECONDS:
        return CAP_PRICE_CENTS, "27-30 min"
    return CAP_PRICE_CENTS, "30+ min"


# =============================================================================
# NUMBERING
# =============================================================================

def invoice_number_prefix(year: int, month: int) -> str:
    return f"INV-{year % 100:02d}{month:02d}"


def next_invoice_number(year: int, month: int) -> str:
    prefix = invoice_number_prefix(year, month)
    last = db.session.query(func.max(Invoice.invoice_number)).filter(
        Invoice.invoice_number.like(f"{prefix}%"),
        func.length(Invoice.invoice_number) == len(prefix) + 6,
    ).scalar()

    sequence = 1
    if last:
        try:
            sequence = int(last[len(prefix):]) + 1
        except ValueError:
            sequence = 1
    return f"{prefix}{sequence:06d}"


def _validate_period(month, year) -> tuple[int, int]:
    try:
        month = int(month)
        year = int(year)
    except (TypeError, ValueError):
        raise ValidationError("month and year must be integers")
    if not 1 <= month <= 12:
        raise ValidationError("month must be between 1 and 12")
    if not 2000 <= year <= 2099:
        raise ValidationError("year must be between 2000 and 2099")
    return month, year


def _active_office(office_id) -> Office:
    try:
        office_id = int(office_id)
    except (TypeError, ValueError):
        raise ValidationError("Valid dental office ID is required")
    office = db.session.query(Office).filter_by(id=office_id, is_deleted=False).first()
    if not office:
        raise InvoiceNotFoundError("Dental office not found")
    return office


def _office_snapshot(office: Office) -> dict:
    return {
        "id": office.id,
        "name": office.name,
        "npi_id": office.npi_id,
        "address": office.address,
        "town": office.town,
        "state": office.state,
        "phone_number": office.phone_number,
        "email": office.email,
    }


def _insert_invoice(invoice: Invoice) -> Invoice:
    db.session.add(invoice)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Invoice number already exists")
    return invoice


# =============================================================================
# CREATION
# =============================================================================

def _validate_items(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ValidationError("At least one item is required")

    cleaned = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{index}] must be an object")
        description = str(item.get("description") or "").strip()
        if not description:
            raise ValidationError(f"items[{index}]: Item description is required")

        quantity = item.get("quantity", 1)
        if isinstance(quantity, bool) or not isinstance(quantity, (int, float)) or quantity < 0:
            raise ValidationError(f"items[{index}]: Valid quantity is required")

        try:
            rate = enforce_rules_amount_cents("rate_cents", item.get("rate_cents", 0))
            amount = enforce_rules_amount_cents("amount_cents", item.get("amount_cents"))
        except ValidationError as exc:
            raise ValidationError(f"items[{index}]: {exc}")

        cleaned.append({
            "description": description,
            "quantity": quantity,
            "rate_cents": rate,
            "amount_cents": amount,
        })
    return cleaned


def create_custom_invoice(payload: dict) -> Invoice:
    """
    Create an invoice from explicit line items.

    Month/year default to the issue date's. subtotal defaults to the sum of
    the line amounts, tax to 0, total to subtotal + tax. An invoice number is
    assigned when none is supplied.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    office = _active_office(payload.get("office_id"))
    items = _validate_items(payload.get("items"))

    try:
        issue_date = parse_iso_date(str(payload["issue_date"])) if payload.get("issue_date") else None
        due_date = parse_iso_date(str(payload["due_date"])) if payload.get("due_date") else None
    except ValueError:
        raise ValidationError("issue_date and due_date must be ISO-8601 dates")
    if issue_date is None:
        raise ValidationError("Valid issue date is required")

    month, year = _validate_period(payload.get("month") or issue_date.month, payload.get("year") or issue_date.year)

    subtotal = payload.get("subtotal_cents")
    if subtotal is None:
        subtotal = sum(item["amount_cents"] for item in items)
    subtotal = enforce_rules_amount_cents("subtotal_cents", subtotal)
    tax = enforce_rules_amount_cents("tax_cents", payload.get("tax_cents", 0))
    total = payload.get("total_cents")
    if total is None:
        total = subtotal + tax
    total = enforce_rules_amount_cents("total_cents", total)
    if total != subtotal + tax:
        raise ValidationError("total_cents must equal subtotal_cents + tax_cents")

    invoice_number = str(payload.get("invoice_number") or "").strip()
    if invoice_number:
        if len(invoice_number) > 50:
            raise ValidationError("invoice_number exceeds max length 50")
        if db.session.query(Invoice.id).filter_by(invoice_number=invoice_number).first():
            raise ConflictError("Invoice number already exists")
    else:
        invoice_number = next_invoice_number(issue_date.year, issue_date.month)

    invoice = Invoice(
        office_id=office.id,
        invoice_number=invoice_number,
        month=month,
        year=year,
        total_amount_cents=total,
        status=INVOICE_UNPAID,
        generated_at=utcnow(),
        invoice_data={
            "type": INVOICE_TYPE_CUSTOM,
            "office": _office_snapshot(office),
            "issue_date": to_iso_date(issue_date),
            "due_date": to_iso_date(due_date),
            "description": str(payload.get("description") or ""),
            "items": items,
            "subtotal_cents": subtotal,
            "tax_cents": tax,
            "total_cents": total,
            "notes": str(payload.get("notes") or ""),
        },
    )
    _insert_invoice(invoice)
    notification_service.notify_invoice_generated(invoice, office)
    return invoice


def generate_usage_invoice(office_id: int, *, year: int, month: int) -> Invoice:
    """
    Bill an office for a month of button usage across its live devices,
    priced per session by the time pricing tiers.
    """
    office = _active_office(office_id)
    month, year = _validate_period(month, year)

    start = date(year, month, 1)
    end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)

    rows = db.session.query(UsageRecord, Device.serial_number).join(
        Device, Device.id == UsageRecord.device_id
    ).filter(
        Device.office_id == office.id,
        Device.is_deleted.is_(False),
        UsageRecord.usage_date >= start,
        UsageRecord.usage_date < end,
    ).order_by(Device.serial_number.asc(), UsageRecord.start_time.asc()).all()

    if not rows:
        raise InvoiceError("No usage data found for this office and period")

    device_breakdown: dict[str, dict] = {}
    price_breakdown: dict[str, dict] = {}
    total = 0
    total_seconds = 0

    for record, serial in rows:
        charge, label = price_for_duration(record.duration_seconds)
        total += charge
        total_seconds += record.duration_seconds

        per_device = device_breakdown.setdefault(serial, {
            "serial_number": serial,
            "sessions": 0,
            "total_seconds": 0,
            "amount_cents": 0,
        })
        per_device["sessions"] += 1
        per_device["total_seconds"] += record.duration_seconds
        per_device["amount_cents"] += charge

        per_range = price_breakdown.setdefault(label, {"sessions": 0, "amount_cents": 0})
        per_range["sessions"] += 1
        per_range["amount_cents"] += charge

    today = utcnow().date()
    invoice = Invoice(
        office_id=office.id,
        invoice_number=next_invoice_number(today.year, today.month),
        month=month,
        year=year,
        total_amount_cents=total,
        status=INVOICE_UNPAID,
        generated_at=utcnow(),
        invoice_data={
            "type": INVOICE_TYPE_USAGE,
            "office": _office_snapshot(office),
            "issue_date": to_iso_date(today),
            "total_sessions": len(rows),
            "total_seconds": total_seconds,
            "devices": list(device_breakdown.values()),
            "price_breakdown": price_breakdown,
            "total_cents": total,
        },
    )
    _insert_invoice(invoice)
    notification_service.notify_invoice_generated(invoice, office)
    return invoice


# =============================================================================
# STATUS & QUERIES
# =============================================================================

def set_invoice_status(invoice_id: int, status: str) -> Invoice:
    if status not in VALID_INVOICE_STATUSES:
        raise ValidationError("Status must be either paid or unpaid")

    invoice = db.session.query(Invoice).filter_by(id=invoice_id).first()
    if not invoice:
        raise InvoiceNotFoundError("Invoice not found")

    invoice.status = status
    invoice.paid_at = utcnow() if status == INVOICE_PAID else None
    db.session.commit()
    return invoice


def _invoice_row(invoice: Invoice, office: Office) -> dict:
    data = invoice.to_dict()
    data["office_name"] = office.name
    data["office_npi_id"] = office.npi_id
    return data


def get_invoice(invoice_id: int, *, include_deleted: bool = False) -> dict | None:
    query = db.session.query(Invoice, Office).join(Office, Office.id == Invoice.office_id).filter(
        Invoice.id == invoice_id,
        Office.is_deleted.is_(False),
    )
    if not include_deleted:
        query = query.filter(Invoice.is_deleted.is_(False))
    row = query.first()
    return _invoice_row(*row) if row else None


def list_invoices(
    *,
    office_id: int | None = None,
    status: str | None = None,
    year: int | None = None,
    month: int | None = None,
    include_deleted: bool = False,
) -> list[dict]:
    query = db.session.query(Invoice, Office).join(Office, Office.id == Invoice.office_id).filter(
        Office.is_deleted.is_(False),
    )
    if not include_deleted:
        query = query.filter(Invoice.is_deleted.is_(False))
    if office_id is not None:
        query = query.filter(Invoice.office_id == office_id)
    if status:
        if status not in VALID_INVOICE_STATUSES:
            raise ValidationError("Status must be either paid or unpaid")
        query = query.filter(Invoice.status == status)
    if year is not None:
        query = query.filter(Invoice.year == year)
    if month is not None:
        query = query.filter(Invoice.month == month)

    rows = query.order_by(
        Invoice.year.desc(), Invoice.month.desc(), Invoice.generated_at.desc(), Invoice.id.desc()
    ).all()
    return [_invoice_row(invoice, office) for invoice, office in rows]


# =============================================================================
# EMAIL
# =============================================================================

def _decode_pdf(pdf_base64: str | None) -> bytes | None:
    if not pdf_base64:
        return None
    payload = str(pdf_base64)
    if payload.startswith("data:"):
        payload = payload.split(",", 1)[-1]
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("pdf_base64 must be valid base64")


def email_invoice(
    *,
    invoice_id: int | None = None,
    invoice_number: str | None = None,
    to_email: str | None = None,
    pdf_base64: str | None = None,
) -> str:
    """
    Email a live invoice to its office (or to_email when given), optionally
    with a base64-encoded PDF attached. Returns the address used.
    """
    if invoice_id is None and not invoice_number:
        raise ValidationError("Invoice number and office email are required")

    query = db.session.query(Invoice, Office).join(Office, Office.id == Invoice.office_id).filter(
        Invoice.is_deleted.is_(False),
        Office.is_deleted.is_(False),
    )
    if invoice_id is not None:
        query = query.filter(Invoice.id == invoice_id)
    else:
        query = query.filter(Invoice.invoice_number == str(invoice_number).strip())
    row = query.first()
    if not row:
        raise InvoiceNotFoundError("Invoice not found")
    invoice, office = row

    to_email = (to_email or office.email or "").strip()
    if not to_email:
        raise ValidationError("Invoice number and office email are required")

    pdf_content = _decode_pdf(pdf_base64)
    if not notification_service.send_invoice_email(invoice, office, to_email, pdf_content):
        raise InvoiceError("Failed to send invoice email")
    return to_email
