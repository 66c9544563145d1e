# Overview: Flask API routes for invoice payments and processor webhooks.

"""
Payment routes

The public intent endpoint backs emailed "pay this invoice" links and needs
no session. Hosted checkout is a two-step flow: create-checkout-session
returns the processor URL, and the success page posts back to
/payment-success so the invoice is marked paid without waiting for the
webhook. The webhook reads the raw body so the processor signature can
be verified before the JSON is trusted.
"""

from flask import Blueprint, jsonify, request, g, current_app

from ..decorators import require_auth
from ..services import payment_service
from ..services.payment_service import (
    CheckoutSessionNotFoundError,
    InvoiceNotPayableError,
    PaymentIncompleteError,
    PaymentProcessorError,
    WebhookVerificationError,
)
from ..validation import ValidationError
from .helpers import json_body


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


def _intent_response(invoice_id, data: dict, user_id):
    try:
        result = payment_service.create_payment_intent(
            int(invoice_id),
            amount_cents=data.get("amount_cents"),
            currency=data.get("currency"),
            user_id=user_id,
            description=data.get("description"),
        )
        return jsonify(result), 200
    except (TypeError, ValueError):
        return jsonify({"error": "Valid invoice ID is required"}), 400
    except InvoiceNotPayableError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PaymentProcessorError as e:
        return jsonify({"error": str(e)}), 502


@payments_bp.post("/create-payment-intent")
@require_auth
def create_payment_intent_route():
    """
    Request: {"invoice_id", "amount_cents"?, "currency"?, "description"?}
    """
    try:
        data = json_body()
        if not data.get("invoice_id"):
            return jsonify({"error": "invoice_id is required"}), 400
        return _intent_response(data.get("invoice_id"), data, g.current_user.id)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create payment intent")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/create-payment-intent/public/<int:invoice_id>")
def create_public_payment_intent_route(invoice_id: int):
    try:
        return _intent_response(invoice_id, json_body(), None)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create public payment intent")
        return jsonify({"error": "Internal server error"}), 500


def _parse_invoice_id(raw) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError("Valid invoice ID is required")


@payments_bp.post("/create-checkout-session")
@require_auth
def create_checkout_session_route():
    """
    Request: {"invoice_id", "amount_cents"?, "currency"?, "success_url"?, "cancel_url"?}
    Response: {"session_id", "url", ...}
    """
    try:
        data = json_body()
        if not data.get("invoice_id"):
            return jsonify({"error": "invoice_id is required"}), 400
        result = payment_service.create_checkout_session(
            _parse_invoice_id(data.get("invoice_id")),
            user_id=g.current_user.id,
            amount_cents=data.get("amount_cents"),
            currency=data.get("currency"),
            success_url=data.get("success_url"),
            cancel_url=data.get("cancel_url"),
        )
        return jsonify(result), 200

    except InvoiceNotPayableError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PaymentProcessorError as e:
        return jsonify({"error": str(e)}), 502
    except Exception:
        current_app.logger.exception("Failed to create checkout session")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/payment-success")
@require_auth
def payment_success_route():
    """
    Request: {"session_id", "invoice_id"}
    """
    try:
        data = json_body()
        session_id = data.get("session_id")
        if not session_id or not data.get("invoice_id"):
            return jsonify({"error": "session_id and invoice_id are required"}), 400

        result = payment_service.confirm_checkout_session(
            str(session_id), _parse_invoice_id(data.get("invoice_id"))
        )
        return jsonify({**result, "message": "Payment processed successfully"}), 200

    except CheckoutSessionNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except (PaymentIncompleteError, ValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except PaymentProcessorError as e:
        return jsonify({"error": str(e)}), 502
    except Exception:
        current_app.logger.exception("Failed to confirm checkout session")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/webhook")
def webhook_route():
    payload = request.get_data()
    signature = request.headers.get("Stripe-Signature")
    try:
        event = payment_service.get_payment_gateway().verify_webhook(payload, signature)
    except WebhookVerificationError as e:
        current_app.logger.warning("Rejected payment webhook: %s", e)
        return jsonify({"error": str(e)}), 400

    try:
        return jsonify(payment_service.handle_webhook_event(event)), 200
    except Exception:
        current_app.logger.exception("Failed to process payment webhook")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/status/<int:invoice_id>")
@require_auth
def payment_status_route(invoice_id: int):
    status = payment_service.payment_status(invoice_id)
    if status is None:
        return jsonify({"error": "Invoice not found"}), 404
    return jsonify(status), 200
