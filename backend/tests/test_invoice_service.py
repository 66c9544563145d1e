"""
Invoice service tests: time pricing, numbering, custom and usage invoices.
"""

from datetime import datetime

import pytest

from lunebilling.models import Invoice, INVOICE_PAID, INVOICE_UNPAID
from lunebilling.services import invoice_service
from lunebilling.services.invoice_service import InvoiceError, InvoiceNotFoundError
from lunebilling.time_utils import utcnow
from lunebilling.validation import ConflictError, ValidationError


@pytest.mark.parametrize(
    "seconds,cents,label",
    [
        (0, 0, "under 5 min"),
        (299, 0, "under 5 min"),
        (300, 800, "5-7 min"),
        (419, 800, "5-7 min"),
        (420, 1000, "7-9 min"),
        (1500, 2800, "25-27 min"),
        (1619, 2800, "25-27 min"),
        (1620, 3000, "27-30 min"),
        (1799, 3000, "27-30 min"),
        (1800, 3000, "30+ min"),
        (7200, 3000, "30+ min"),
    ],
)
def test_price_for_duration(seconds, cents, label):
    assert invoice_service.price_for_duration(seconds) == (cents, label)


def _custom_payload(office_id, **overrides):
    payload = {
        "office_id": office_id,
        "issue_date": "2026-09-15",
        "due_date": "2026-10-15",
        "items": [
            {"description": "Maintenance visit", "quantity": 1, "rate_cents": 15000, "amount_cents": 15000},
            {"description": "Replacement tips", "quantity": 2, "rate_cents": 2500, "amount_cents": 5000},
        ],
    }
    payload.update(overrides)
    return payload


class TestNumbering:
    def test_first_number_of_month(self, db_session):
        assert invoice_service.next_invoice_number(2026, 9) == "INV-2609000001"

    def test_sequence_continues_from_highest(self, make_office):
        office = make_office()
        invoice_service.create_custom_invoice(_custom_payload(office.id, invoice_number="INV-2609000041"))

        assert invoice_service.next_invoice_number(2026, 9) == "INV-2609000042"
        assert invoice_service.next_invoice_number(2026, 10) == "INV-2610000001"


class TestCustomInvoice:
    def test_defaults_and_snapshot(self, make_office, outbox):
        office = make_office("Gentle Dental")

        invoice = invoice_service.create_custom_invoice(_custom_payload(office.id, tax_cents=1000))

        assert invoice.invoice_number == "INV-2609000001"
        assert (invoice.month, invoice.year) == (9, 2026)
        assert invoice.total_amount_cents == 21000
        assert invoice.status == INVOICE_UNPAID
        assert invoice.invoice_data["type"] == "custom"
        assert invoice.invoice_data["subtotal_cents"] == 20000
        assert invoice.invoice_data["office"]["name"] == "Gentle Dental"
        assert outbox[-1].subject == "Invoice INV-2609000001"

    def test_total_must_match(self, make_office):
        office = make_office()

        with pytest.raises(ValidationError, match="total_cents"):
            invoice_service.create_custom_invoice(_custom_payload(office.id, total_cents=1))

    def test_requires_items(self, make_office):
        office = make_office()

        with pytest.raises(ValidationError, match="At least one item is required"):
            invoice_service.create_custom_invoice(_custom_payload(office.id, items=[]))

    def test_requires_issue_date(self, make_office):
        office = make_office()

        with pytest.raises(ValidationError):
            invoice_service.create_custom_invoice(_custom_payload(office.id, issue_date=None))

    def test_duplicate_number(self, make_office):
        office = make_office()
        invoice_service.create_custom_invoice(_custom_payload(office.id, invoice_number="INV-CUSTOM-1"))

        with pytest.raises(ConflictError):
            invoice_service.create_custom_invoice(_custom_payload(office.id, invoice_number="INV-CUSTOM-1"))

    def test_deleted_office(self, make_office):
        office = make_office(is_deleted=True)

        with pytest.raises(InvoiceNotFoundError):
            invoice_service.create_custom_invoice(_custom_payload(office.id))


class TestUsageInvoice:
    def test_bills_live_devices_only(self, make_office, make_device, make_usage):
        office = make_office()
        live = make_device(office, serial_number="LUNE-A")
        retired = make_device(office, serial_number="LUNE-B", is_deleted=True)
        make_usage(live, start_time=datetime(2026, 9, 1, 9, 0), seconds=200)
        make_usage(live, start_time=datetime(2026, 9, 2, 9, 0), seconds=360)
        make_usage(live, start_time=datetime(2026, 9, 3, 9, 0), seconds=2000)
        make_usage(live, start_time=datetime(2026, 10, 1, 9, 0), seconds=2000)
        make_usage(retired, start_time=datetime(2026, 9, 4, 9, 0), seconds=2000)

        invoice = invoice_service.generate_usage_invoice(office.id, year=2026, month=9)

        assert invoice.total_amount_cents == 0 + 800 + 3000
        data = invoice.invoice_data
        assert data["type"] == "usage"
        assert data["total_sessions"] == 3
        assert [d["serial_number"] for d in data["devices"]] == ["LUNE-A"]
        assert data["price_breakdown"]["30+ min"] == {"sessions": 1, "amount_cents": 3000}

    def test_no_usage_is_rejected(self, make_office):
        office = make_office()

        with pytest.raises(InvoiceError, match="No usage data"):
            invoice_service.generate_usage_invoice(office.id, year=2026, month=9)

    def test_invalid_month(self, make_office):
        office = make_office()

        with pytest.raises(ValidationError):
            invoice_service.generate_usage_invoice(office.id, year=2026, month=13)


class TestStatusAndQueries:
    def test_mark_paid_then_unpaid(self, make_office, make_invoice):
        invoice_id = make_invoice(make_office()).id

        paid = invoice_service.set_invoice_status(invoice_id, INVOICE_PAID)
        assert paid.status == INVOICE_PAID
        assert paid.paid_at is not None

        unpaid = invoice_service.set_invoice_status(invoice_id, INVOICE_UNPAID)
        assert unpaid.paid_at is None

    def test_invalid_status(self, make_office, make_invoice):
        invoice_id = make_invoice(make_office()).id

        with pytest.raises(ValidationError, match="paid or unpaid"):
            invoice_service.set_invoice_status(invoice_id, "void")

    def test_list_hides_deleted_unless_asked(self, make_office, make_invoice):
        office = make_office()
        make_invoice(office)
        make_invoice(office, is_deleted=True)

        assert len(invoice_service.list_invoices(office_id=office.id)) == 1
        assert len(invoice_service.list_invoices(office_id=office.id, include_deleted=True)) == 2

    def test_invoices_of_deleted_office_are_hidden(self, make_office, make_invoice):
        office = make_office(is_deleted=True)
        invoice = make_invoice(office)

        assert invoice_service.get_invoice(invoice.id) is None
        assert invoice_service.list_invoices() == []

    def test_generated_number_uses_current_month(self, db_session, make_office, make_device, make_usage):
        office = make_office()
        make_usage(make_device(office), start_time=datetime(2026, 9, 1, 9, 0), seconds=600)
        now = utcnow()

        invoice = invoice_service.generate_usage_invoice(office.id, year=2026, month=9)

        assert invoice.invoice_number.startswith(invoice_service.invoice_number_prefix(now.year, now.month))
        assert db_session.query(Invoice).filter_by(office_id=office.id).count() == 1
