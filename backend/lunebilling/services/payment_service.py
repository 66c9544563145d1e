# Overview: Payment-intent creation against the payment processor and webhook reconciliation.

"""
Payment Service

The processor is opaque: locally we persist only the processor's intent id
and its status (PaymentIntent rows). Two gateways exist:

- StripeGateway: used when STRIPE_SECRET_KEY is a real "sk_..." key.
- MockGateway: used otherwise. Produces "pi_mock_..." intents and
  "cs_mock_..." checkout sessions so the flows can be exercised without a
  processor account.

Two ways to pay an invoice:
- PaymentIntent (client-side card form): create_payment_intent
- Hosted checkout page: create_checkout_session, then confirm_checkout_session
  from the success page (or the checkout.session.completed webhook)

Webhook events reconcile local state:
- payment_intent.succeeded     -> intent "succeeded", invoice marked paid
- checkout.session.completed   -> session "completed", invoice (from metadata) marked paid
- payment_intent.payment_failed -> intent "failed"
Any other event type is acknowledged and ignored.
"""

from __future__ import annotations

import json
import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass

import stripe
from flask import current_app

from ..extensions import db
from ..models import Invoice, Office, PaymentIntent, INVOICE_PAID, KIND_CHECKOUT_SESSION, KIND_PAYMENT_INTENT
from ..validation import ValidationError, enforce_rules_amount_cents
from lunebilling.time_utils import utcnow
from . import notification_service


logger = logging.getLogger(__name__)

INTENT_STATUS_SUCCEEDED = "succeeded"
INTENT_STATUS_FAILED = "failed"
MOCK_INTENT_STATUS = "mock_created"
CHECKOUT_STATUS_CREATED = "created"
CHECKOUT_STATUS_COMPLETED = "completed"

# Stripe substitutes the session id into success_url
CHECKOUT_SESSION_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"

_PLACEHOLDER_MARKERS = ("your-stripe-secret-key", "_here", "test_secret_key_here")


class PaymentError(Exception):
    """Raised for payment operation errors."""
    pass


class InvoiceNotPayableError(PaymentError):
    """Invoice is missing, deleted, or already paid."""
    pass


class PaymentProcessorError(PaymentError):
    """The external processor rejected or failed the request."""
    pass


class WebhookVerificationError(PaymentError):
    pass


class CheckoutSessionNotFoundError(PaymentError):
    pass


class PaymentIncompleteError(PaymentError):
    """The processor has not (yet) collected the money."""
    pass


# =============================================================================
# GATEWAYS
# =============================================================================

@dataclass(frozen=True)
class GatewayIntent:
    id: str
    client_secret: str
    status: str


@dataclass(frozen=True)
class GatewayCheckout:
    id: str
    url: str
    status: str


class PaymentGateway(ABC):
    is_mock = False

    @abstractmethod
    def create_intent(self, *, amount_cents: int, currency: str, metadata: dict, description: str) -> GatewayIntent:
        """Open a processor PaymentIntent."""

    @abstractmethod
    def create_checkout_session(
        self,
        *,
        amount_cents: int,
        currency: str,
        product_name: str,
        description: str,
        metadata: dict,
        success_url: str,
        cancel_url: str,
    ) -> GatewayCheckout:
        """Open a hosted checkout page for a single line item."""

    @abstractmethod
    def checkout_payment_status(self, session_id: str) -> str:
        """The processor's payment_status for a checkout session ("paid", "unpaid", ...)."""

    @abstractmethod
    def verify_webhook(self, payload: bytes, signature: str | None) -> dict:
        """Return the event dict, or raise WebhookVerificationError."""


class StripeGateway(PaymentGateway):
    def __init__(self, api_key: str, webhook_secret: str | None):
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    def create_intent(self, *, amount_cents: int, currency: str, metadata: dict, description: str) -> GatewayIntent:
        intent = stripe.PaymentIntent.create(
            api_key=self.api_key,
            amount=amount_cents,
            currency=currency,
            metadata=metadata,
            description=description,
            automatic_payment_methods={"enabled": True},
        )
        return GatewayIntent(id=intent.id, client_secret=intent.client_secret, status=intent.status)

    def create_checkout_session(
        self,
        *,
        amount_cents: int,
        currency: str,
        product_name: str,
        description: str,
        metadata: dict,
        success_url: str,
        cancel_url: str,
    ) -> GatewayCheckout:
        session = stripe.checkout.Session.create(
            api_key=self.api_key,
            mode="payment",
            payment_method_types=["card"],
            line_items=[{
                "price_data": {
                    "currency": currency,
                    "product_data": {"name": product_name, "description": description},
                    "unit_amount": amount_cents,
                },
                "quantity": 1,
            }],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
        )
        return GatewayCheckout(id=session.id, url=session.url, status=session.status or CHECKOUT_STATUS_CREATED)

    def checkout_payment_status(self, session_id: str) -> str:
        session = stripe.checkout.Session.retrieve(session_id, api_key=self.api_key)
        return session.payment_status

    def verify_webhook(self, payload: bytes, signature: str | None) -> dict:
        if not self.webhook_secret:
            raise WebhookVerificationError("Webhook secret not configured")
        try:
            stripe.Webhook.construct_event(payload, signature or "", self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            raise WebhookVerificationError(f"Webhook Error: {exc}")
        return json.loads(payload)


class MockGateway(PaymentGateway):
    """
    Processor stand-in. Mock checkout sessions report "paid" as soon as they
    exist, which is what a completed hosted payment looks like.
    """
    is_mock = True

    def create_intent(self, *, amount_cents: int, currency: str, metadata: dict, description: str) -> GatewayIntent:
        intent_id = f"pi_mock_{secrets.token_hex(12)}"
        return GatewayIntent(id=intent_id, client_secret=f"{intent_id}_secret_mock", status=MOCK_INTENT_STATUS)

    def create_checkout_session(
        self,
        *,
        amount_cents: int,
        currency: str,
        product_name: str,
        description: str,
        metadata: dict,
        success_url: str,
        cancel_url: str,
    ) -> GatewayCheckout:
        session_id = f"cs_mock_{secrets.token_hex(12)}"
        return GatewayCheckout(
            id=session_id,
            url=success_url.replace(CHECKOUT_SESSION_PLACEHOLDER, session_id),
            status=CHECKOUT_STATUS_CREATED,
        )

    def checkout_payment_status(self, session_id: str) -> str:
        return "paid" if session_id.startswith("cs_mock_") else "unpaid"

    def verify_webhook(self, payload: bytes, signature: str | None) -> dict:
        try:
            event = json.loads(payload or b"{}")
        except ValueError as exc:
            raise WebhookVerificationError(f"Webhook Error: {exc}")
        if not isinstance(event, dict):
            raise WebhookVerificationError("Webhook Error: event must be an object")
        return event


def is_valid_stripe_key(key: str | None) -> bool:
    if not key or not key.startswith("sk_"):
        return False
    return not any(marker in key for marker in _PLACEHOLDER_MARKERS)


def build_payment_gateway(config) -> PaymentGateway:
    key = config.get("STRIPE_SECRET_KEY")
    if is_valid_stripe_key(key):
        return StripeGateway(key, config.get("STRIPE_WEBHOOK_SECRET"))
    logger.info("Using mock payment gateway; STRIPE_SECRET_KEY not configured")
    return MockGateway()


def get_payment_gateway() -> PaymentGateway:
    return current_app.extensions["payment_gateway"]


# =============================================================================
# INTENTS
# =============================================================================

def _payable_invoice(invoice_id: int) -> tuple[Invoice, Office]:
    row = db.session.query(Invoice, Office).join(Office, Office.id == Invoice.office_id).filter(
        Invoice.id == invoice_id,
        Invoice.is_deleted.is_(False),
        Office.is_deleted.is_(False),
        Invoice.status != INVOICE_PAID,
    ).first()
    if not row:
        raise InvoiceNotPayableError("Invoice not found or already paid")
    return row


def _charge_amount(invoice: Invoice, amount_cents) -> int:
    amount = invoice.total_amount_cents if amount_cents is None else amount_cents
    amount = enforce_rules_amount_cents("amount_cents", amount)
    if amount <= 0:
        raise ValidationError("amount_cents must be > 0")
    return amount


def _charge_currency(currency: str | None) -> str:
    currency = (currency or current_app.config["DEFAULT_CURRENCY"]).lower()
    if len(currency) != 3 or not currency.isalpha():
        raise ValidationError("currency must be a 3-letter ISO code")
    return currency


def _invoice_summary(invoice: Invoice, office: Office) -> dict:
    return {
        "id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "total_amount_cents": invoice.total_amount_cents,
        "office_name": office.name,
    }


def create_payment_intent(
    invoice_id: int,
    *,
    amount_cents: int | None = None,
    currency: str | None = None,
    user_id: int | None = None,
    description: str | None = None,
) -> dict:
    """
    Create a processor intent for an unpaid invoice and record it locally.

    user_id is None for public (unauthenticated) payment links. The amount
    defaults to the invoice total.
    """
    invoice, office = _payable_invoice(invoice_id)
    amount = _charge_amount(invoice, amount_cents)
    currency = _charge_currency(currency)

    gateway = get_payment_gateway()
    try:
        intent = gateway.create_intent(
            amount_cents=amount,
            currency=currency,
            metadata={
                "invoice_id": str(invoice.id),
                "office_id": str(office.id),
                "public_payment": "true" if user_id is None else "false",
            },
            description=description or f"Payment for invoice {invoice.invoice_number} - {office.name}",
        )
    except stripe.StripeError:
        logger.exception("Payment processor failed to create intent for invoice %s", invoice.id)
        raise PaymentProcessorError("Payment processor error")

    record = PaymentIntent(
        external_intent_id=intent.id,
        invoice_id=invoice.id,
        office_id=office.id,
        user_id=user_id,
        amount_cents=amount,
        currency=currency,
        kind=KIND_PAYMENT_INTENT,
        status=intent.status,
    )
    db.session.add(record)
    db.session.commit()

    return {
        "client_secret": intent.client_secret,
        "payment_intent_id": intent.id,
        "mock": gateway.is_mock,
        "payment_intent": record.to_dict(),
        "invoice": _invoice_summary(invoice, office),
    }


# =============================================================================
# CHECKOUT SESSIONS
# =============================================================================

def create_checkout_session(
    invoice_id: int,
    *,
    user_id: int | None = None,
    amount_cents: int | None = None,
    currency: str | None = None,
    success_url: str | None = None,
    cancel_url: str | None = None,
) -> dict:
    """
    Open a hosted checkout page for an unpaid invoice.

    Redirect URLs default to the frontend's /payment/success and
    /payment/cancel pages. The session is recorded as a PaymentIntent row
    with kind "checkout_session".
    """
    invoice, office = _payable_invoice(invoice_id)
    amount = _charge_amount(invoice, amount_cents)
    currency = _charge_currency(currency)

    frontend = current_app.config["FRONTEND_URL"].rstrip("/")
    success_url = success_url or (
        f"{frontend}/payment/success?session_id={CHECKOUT_SESSION_PLACEHOLDER}&invoice_id={invoice.id}"
    )
    cancel_url = cancel_url or f"{frontend}/payment/cancel?invoice_id={invoice.id}"

    gateway = get_payment_gateway()
    try:
        checkout = gateway.create_checkout_session(
            amount_cents=amount,
            currency=currency,
            product_name=f"Invoice Payment - {office.name}",
            description=f"Payment for invoice {invoice.invoice_number}",
            metadata={
                "invoice_id": str(invoice.id),
                "office_id": str(office.id),
                "user_id": str(user_id) if user_id is not None else "",
            },
            success_url=success_url,
            cancel_url=cancel_url,
        )
    except stripe.StripeError:
        logger.exception("Payment processor failed to create checkout session for invoice %s", invoice.id)
        raise PaymentProcessorError("Payment processor error")

    record = PaymentIntent(
        external_intent_id=checkout.id,
        invoice_id=invoice.id,
        office_id=office.id,
        user_id=user_id,
        amount_cents=amount,
        currency=currency,
        kind=KIND_CHECKOUT_SESSION,
        status=CHECKOUT_STATUS_CREATED,
    )
    db.session.add(record)
    db.session.commit()

    return {
        "session_id": checkout.id,
        "url": checkout.url,
        "mock": gateway.is_mock,
        "payment_intent": record.to_dict(),
        "invoice": _invoice_summary(invoice, office),
    }


def _complete_checkout(record: PaymentIntent, invoice: Invoice) -> bool:
    record.status = CHECKOUT_STATUS_COMPLETED
    newly_paid = _mark_invoice_paid(invoice)
    db.session.commit()
    if newly_paid:
        notification_service.notify_payment_received(invoice, invoice.office)
    return newly_paid


def confirm_checkout_session(session_id: str, invoice_id: int) -> dict:
    """
    Success-page callback: ask the processor whether the session was paid
    and, if so, mark the invoice paid. Calling it again is harmless.
    """
    record = db.session.query(PaymentIntent).filter_by(
        external_intent_id=session_id,
        invoice_id=invoice_id,
        kind=KIND_CHECKOUT_SESSION,
    ).first()
    invoice = db.session.get(Invoice, invoice_id) if record else None
    if record is None or invoice is None or invoice.is_deleted:
        raise CheckoutSessionNotFoundError("Checkout session not found for this invoice")

    try:
        payment_status = get_payment_gateway().checkout_payment_status(session_id)
    except stripe.StripeError:
        logger.exception("Payment processor failed to retrieve checkout session %s", session_id)
        raise PaymentProcessorError("Payment processor error")

    if payment_status != "paid":
        raise PaymentIncompleteError("Payment not completed")

    _complete_checkout(record, invoice)
    return {
        "invoice": invoice.to_dict(include_data=False),
        "payment_intent": record.to_dict(),
    }


def payment_status(invoice_id: int) -> dict | None:
    invoice = db.session.query(Invoice).filter_by(id=invoice_id).first()
    if not invoice:
        return None
    intents = db.session.query(PaymentIntent).filter_by(invoice_id=invoice_id).order_by(
        PaymentIntent.created_at.desc(), PaymentIntent.id.desc()
    ).all()
    return {
        "invoice": invoice.to_dict(include_data=False),
        "payment_intents": [intent.to_dict() for intent in intents],
    }


# =============================================================================
# WEBHOOKS
# =============================================================================

def _mark_invoice_paid(invoice: Invoice) -> bool:
    if invoice.status == INVOICE_PAID:
        return False
    invoice.status = INVOICE_PAID
    invoice.paid_at = utcnow()
    return True


def _invoice_from_metadata(obj: dict) -> Invoice | None:
    raw = (obj.get("metadata") or {}).get("invoice_id") or (obj.get("metadata") or {}).get("invoiceId")
    try:
        invoice_id = int(raw)
    except (TypeError, ValueError):
        return None
    return db.session.query(Invoice).filter_by(id=invoice_id).first()


def handle_webhook_event(event: dict) -> dict:
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}

    if event_type == "payment_intent.succeeded":
        record = db.session.query(PaymentIntent).filter_by(external_intent_id=obj.get("id")).first()
        invoice = None
        if record:
            record.status = INTENT_STATUS_SUCCEEDED
            invoice = db.session.query(Invoice).filter_by(id=record.invoice_id).first()
        if invoice is None:
            invoice = _invoice_from_metadata(obj)
        newly_paid = invoice is not None and _mark_invoice_paid(invoice)
        db.session.commit()
        if newly_paid:
            notification_service.notify_payment_received(invoice, invoice.office)
        return {"received": True, "handled": record is not None or invoice is not None}

    if event_type == "checkout.session.completed":
        record = db.session.query(PaymentIntent).filter_by(
            external_intent_id=obj.get("id"), kind=KIND_CHECKOUT_SESSION
        ).first()
        if record:
            record.status = CHECKOUT_STATUS_COMPLETED
        invoice = _invoice_from_metadata(obj)
        newly_paid = invoice is not None and _mark_invoice_paid(invoice)
        db.session.commit()
        if newly_paid:
            notification_service.notify_payment_received(invoice, invoice.office)
        return {"received": True, "handled": record is not None or invoice is not None}

    if event_type == "payment_intent.payment_failed":
        record = db.session.query(PaymentIntent).filter_by(external_intent_id=obj.get("id")).first()
        if record:
            record.status = INTENT_STATUS_FAILED
            db.session.commit()
        logger.info("Payment failed for intent %s", obj.get("id"))
        return {"received": True, "handled": record is not None}

    logger.info("Unhandled webhook event type %s", event_type)
    return {"received": True, "handled": False}
