"""
Office, device, usage, invoice, payment and dashboard endpoints.
"""

import base64
from datetime import datetime

from lunebilling.models import INVOICE_PAID, KIND_CHECKOUT_SESSION


def _office_payload(**overrides):
    payload = {
        "name": "Sunrise Dental",
        "npi_id": "1234567890",
        "state": "OR",
        "town": "Bend",
        "address": "12 Pine Street",
        "email": "front@sunrise.example.com",
    }
    payload.update(overrides)
    return payload


def _lune(serial):
    return {
        "serial_number": serial,
        "purchase_date": "2025-03-01",
        "connected_phone": "555-0142",
        "sbc_identifier": f"SBC-{serial}",
        "plan_type": "premium",
    }


class TestOffices:
    def test_create_with_lunes(self, client, user_headers, db_session):
        resp = client.post("/api/dental-offices", headers=user_headers,
                           json=_office_payload(lunes=[_lune("LN-1"), _lune("LN-2")]))

        assert resp.status_code == 201
        office = resp.json["office"]
        assert office["lune_count"] == 2
        assert [d["serial_number"] for d in office["lunes"]] == ["LN-1", "LN-2"]

    def test_duplicate_npi(self, client, user_headers, make_office):
        make_office(npi_id="1234567890")

        resp = client.post("/api/dental-offices", headers=user_headers, json=_office_payload())

        assert resp.status_code == 400
        assert resp.json["error"] == "An office with this NPI ID already exists"

    def test_duplicate_serial_writes_nothing(self, client, user_headers, make_office, make_device):
        make_device(make_office(), serial_number="LN-TAKEN")

        resp = client.post("/api/dental-offices", headers=user_headers,
                           json=_office_payload(lunes=[_lune("LN-NEW"), _lune("LN-TAKEN")]))

        assert resp.status_code == 400
        assert client.get("/api/dental-offices/search/npi/1234567890", headers=user_headers).status_code == 404

    def test_invalid_npi(self, client, user_headers, db_session):
        resp = client.post("/api/dental-offices", headers=user_headers, json=_office_payload(npi_id="12345"))

        assert resp.status_code == 400
        assert resp.json["error"] == "NPI ID must be exactly 10 digits"

    def test_missing_fields(self, client, user_headers, db_session):
        resp = client.post("/api/dental-offices", headers=user_headers, json={"name": "Only Name"})

        assert resp.status_code == 400
        assert resp.json["error"].startswith("Missing required fields")

    def test_update_and_search(self, client, user_headers, make_office):
        office = make_office()

        resp = client.put(f"/api/dental-offices/{office.id}", headers=user_headers, json={"town": "Salem"})
        found = client.get("/api/dental-offices?search=salem", headers=user_headers).json["offices"]

        assert resp.status_code == 200
        assert [o["id"] for o in found] == [office.id]


class TestDevices:
    def test_create_requires_live_office(self, client, user_headers, make_office):
        office = make_office(is_deleted=True)

        resp = client.post("/api/lune-machines", headers=user_headers, json={**_lune("LN-9"), "office_id": office.id})

        assert resp.status_code == 404

    def test_serial_cannot_be_changed(self, client, user_headers, make_office, make_device):
        device = make_device(make_office())

        resp = client.put(f"/api/lune-machines/{device.id}", headers=user_headers, json={"serial_number": "NEW"})

        assert resp.status_code == 400

    def test_find_by_serial(self, client, user_headers, make_office, make_device):
        office = make_office("Serial Dental")
        make_device(office, serial_number="LN-FIND")

        resp = client.get("/api/lune-machines/search/serial/LN-FIND", headers=user_headers)

        assert resp.status_code == 200
        assert resp.json["lune_machine"]["office_name"] == "Serial Dental"


class TestUsage:
    def test_bulk_all_or_nothing(self, client, user_headers, db_session, make_office, make_device):
        device_id = make_device(make_office()).id
        entries = [
            {"device_id": device_id, "button_number": 1,
             "start_time": "2026-09-10T09:00:00Z", "end_time": "2026-09-10T09:06:00Z"}
            for _ in range(5)
        ]
        entries[2]["end_time"] = "2026-09-10T08:00:00Z"

        resp = client.post("/api/button-usage/bulk", headers=user_headers, json={"usage_data": entries})

        assert resp.status_code == 400
        assert "index 2" in resp.json["error"]
        stats = client.get(f"/api/lune-machines/{device_id}/stats/2026/9", headers=user_headers).json
        assert stats["details"] == []

    def test_single_usage(self, client, user_headers, make_office, make_device):
        device_id = make_device(make_office()).id

        resp = client.post("/api/button-usage", headers=user_headers, json={
            "device_id": device_id, "button_number": 2,
            "start_time": "2026-09-10T09:00:00Z", "end_time": "2026-09-10T09:00:30Z",
        })

        assert resp.status_code == 201
        assert resp.json["usage"]["duration_seconds"] == 30


class TestInvoicesAndPayments:
    def test_generate_and_pay(self, client, user_headers, db_session, make_office, make_device, make_usage):
        office = make_office()
        make_usage(make_device(office), start_time=datetime(2026, 9, 3, 10, 0), seconds=450)

        generated = client.post("/api/invoices/generate", headers=user_headers,
                                json={"office_id": office.id, "month": 9, "year": 2026})
        assert generated.status_code == 201
        invoice_id = generated.json["invoice"]["id"]
        assert generated.json["invoice"]["total_amount_cents"] == 1000

        intent = client.post(f"/api/payments/create-payment-intent/public/{invoice_id}")
        assert intent.status_code == 200
        assert intent.json["mock"] is True

        webhook = client.post("/api/payments/webhook", json={
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": intent.json["payment_intent_id"]}},
        })
        assert webhook.status_code == 200

        status = client.get(f"/api/payments/status/{invoice_id}", headers=user_headers).json
        assert status["invoice"]["status"] == INVOICE_PAID
        assert status["payment_intents"][0]["status"] == "succeeded"

        again = client.post(f"/api/payments/create-payment-intent/public/{invoice_id}")
        assert again.status_code == 404

    def test_status_patch(self, client, user_headers, make_office, make_invoice):
        invoice_id = make_invoice(make_office()).id

        bad = client.patch(f"/api/invoices/{invoice_id}/status", headers=user_headers, json={"status": "void"})
        good = client.patch(f"/api/invoices/{invoice_id}/status", headers=user_headers, json={"status": "paid"})

        assert bad.status_code == 400
        assert good.status_code == 200
        assert good.json["invoice"]["paid_at"] is not None

    def test_custom_invoice(self, client, user_headers, make_office):
        office = make_office()

        resp = client.post("/api/invoices", headers=user_headers, json={
            "office_id": office.id,
            "issue_date": "2026-09-01",
            "items": [{"description": "Training", "quantity": 1, "rate_cents": 9900, "amount_cents": 9900}],
        })

        assert resp.status_code == 201
        assert resp.json["invoice"]["total_amount_cents"] == 9900
        office_invoices = client.get(f"/api/invoices/office/{office.id}", headers=user_headers).json["invoices"]
        assert len(office_invoices) == 1


class TestDashboard:
    def test_summary(self, client, user_headers, make_office, make_invoice):
        office = make_office("Partial Dental")
        make_invoice(office, total_amount_cents=100, status=INVOICE_PAID)
        make_invoice(office, total_amount_cents=50)

        summary = client.get("/api/dashboard/summary", headers=user_headers).json
        status = client.get(f"/api/dashboard/offices/{office.id}/status", headers=user_headers).json

        assert summary["totals"] == {"total_owed_cents": 50, "total_paid_cents": 100}
        assert status["status"] == "partial"

    def test_unknown_office_status(self, client, user_headers):
        assert client.get("/api/dashboard/offices/999/status", headers=user_headers).status_code == 404


def test_health(client, db_session):
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json["checks"]["database"]["status"] == "healthy"
    assert resp.json["checks"]["integrations"]["details"]["payment_gateway"] == "mock"


class TestCheckoutRoutes:
    def test_checkout_then_success_page(self, client, user_headers, db_session, make_office, make_invoice):
        invoice_id = make_invoice(make_office()).id

        created = client.post("/api/payments/create-checkout-session", headers=user_headers,
                              json={"invoice_id": invoice_id})
        assert created.status_code == 200
        session_id = created.json["session_id"]
        assert session_id.startswith("cs_mock_")
        assert created.json["payment_intent"]["kind"] == KIND_CHECKOUT_SESSION

        success = client.post("/api/payments/payment-success", headers=user_headers,
                              json={"session_id": session_id, "invoice_id": invoice_id})
        assert success.status_code == 200
        assert success.json["message"] == "Payment processed successfully"
        assert success.json["invoice"]["status"] == INVOICE_PAID
        assert success.json["payment_intent"]["status"] == "completed"

        again = client.post("/api/payments/create-checkout-session", headers=user_headers,
                            json={"invoice_id": invoice_id})
        assert again.status_code == 404

    def test_checkout_requires_auth(self, client, make_office, make_invoice):
        invoice_id = make_invoice(make_office()).id

        resp = client.post("/api/payments/create-checkout-session", json={"invoice_id": invoice_id})

        assert resp.status_code == 401

    def test_checkout_requires_invoice_id(self, client, user_headers):
        resp = client.post("/api/payments/create-checkout-session", headers=user_headers, json={})

        assert resp.status_code == 400

    def test_success_with_unknown_session(self, client, user_headers, make_office, make_invoice):
        invoice_id = make_invoice(make_office()).id

        resp = client.post("/api/payments/payment-success", headers=user_headers,
                           json={"session_id": "cs_mock_missing", "invoice_id": invoice_id})

        assert resp.status_code == 404

    def test_success_requires_both_ids(self, client, user_headers):
        resp = client.post("/api/payments/payment-success", headers=user_headers, json={"session_id": "cs_x"})

        assert resp.status_code == 400


class TestInvoiceEmailRoute:
    def test_send_with_pdf(self, client, user_headers, make_office, make_invoice, outbox):
        office = make_office()
        invoice = make_invoice(office)
        pdf = base64.b64encode(b"%PDF-1.4 test").decode("ascii")

        resp = client.post("/api/invoices/send-email", headers=user_headers, json={
            "invoiceNumber": invoice.invoice_number,
            "officeEmail": "accounts@example.com",
            "pdfBase64": pdf,
        })

        assert resp.status_code == 200
        assert resp.json["message"] == "Invoice email sent successfully"
        assert outbox[-1].to_email == "accounts@example.com"
        assert outbox[-1].attachments[0].filename == f"{invoice.invoice_number}.pdf"
        assert outbox[-1].attachments[0].content == b"%PDF-1.4 test"

    def test_defaults_to_office_email(self, client, user_headers, make_office, make_invoice, outbox):
        office = make_office()
        invoice = make_invoice(office)

        resp = client.post("/api/invoices/send-email", headers=user_headers,
                           json={"invoice_id": invoice.id})

        assert resp.status_code == 200
        assert outbox[-1].to_email == office.email

    def test_unknown_invoice(self, client, user_headers, db_session):
        resp = client.post("/api/invoices/send-email", headers=user_headers,
                           json={"invoice_number": "INV-NOPE"})

        assert resp.status_code == 404

    def test_missing_invoice_reference(self, client, user_headers, db_session):
        resp = client.post("/api/invoices/send-email", headers=user_headers,
                           json={"office_email": "a@example.com"})

        assert resp.status_code == 400

    def test_invalid_pdf(self, client, user_headers, make_office, make_invoice):
        invoice = make_invoice(make_office())

        resp = client.post("/api/invoices/send-email", headers=user_headers,
                           json={"invoice_id": invoice.id, "pdf_base64": "%%%"})

        assert resp.status_code == 400
