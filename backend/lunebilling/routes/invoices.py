# Overview: Flask API routes for invoices; parses input and returns JSON responses.

from flask import Blueprint, jsonify, request, g, current_app

from ..decorators import require_auth, require_admin
from ..services import invoice_service
from ..services.invoice_service import InvoiceError, InvoiceNotFoundError
from ..services.lifecycle_service import get_lifecycle_engine
from ..validation import ValidationError, ConflictError
from .helpers import json_body, query_bool, query_int, lifecycle_response


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.get("")
@require_auth
def list_invoices_route():
    """
    Query parameters: office_id, status (paid|unpaid), year, month,
    include_deleted ("true" also returns soft-deleted invoices).
    """
    try:
        invoices = invoice_service.list_invoices(
            office_id=query_int("office_id"),
            status=request.args.get("status"),
            year=query_int("year"),
            month=query_int("month"),
            include_deleted=query_bool("include_deleted"),
        )
        return jsonify({"invoices": invoices}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("")
@require_auth
def create_invoice_route():
    try:
        invoice = invoice_service.create_custom_invoice(json_body())
        return jsonify({
            "invoice": invoice_service.get_invoice(invoice.id),
            "message": "Invoice created successfully",
        }), 201
    except InvoiceNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except (ValidationError, ConflictError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/generate")
@require_auth
def generate_invoice_route():
    """
    Bill a month of usage. Request: {"office_id", "month", "year"}
    """
    try:
        data = json_body()
        invoice = invoice_service.generate_usage_invoice(
            data.get("office_id"),
            year=data.get("year"),
            month=data.get("month"),
        )
        return jsonify({
            "invoice": invoice_service.get_invoice(invoice.id),
            "message": "Invoice generated successfully",
        }), 201
    except InvoiceNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except (InvoiceError, ValidationError, ConflictError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to generate invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/send-email")
@require_auth
def send_invoice_email_route():
    """
    Email an invoice to its office.

    Request: {"invoice_number" | "invoice_id", "office_email"?, "pdf_base64"?}
    camelCase keys (invoiceNumber, officeEmail, pdfBase64) are accepted too.
    """
    try:
        data = json_body()
        invoice_id = data.get("invoice_id") or data.get("invoiceId")
        if invoice_id is not None:
            try:
                invoice_id = int(invoice_id)
            except (TypeError, ValueError):
                raise ValidationError("invoice_id must be an integer")

        sent_to = invoice_service.email_invoice(
            invoice_id=invoice_id,
            invoice_number=data.get("invoice_number") or data.get("invoiceNumber"),
            to_email=data.get("office_email") or data.get("officeEmail"),
            pdf_base64=data.get("pdf_base64") or data.get("pdfBase64"),
        )
        return jsonify({"message": "Invoice email sent successfully", "sent_to": sent_to}), 200
    except InvoiceNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except InvoiceError as e:
        return jsonify({"error": str(e)}), 502
    except Exception:
        current_app.logger.exception("Failed to send invoice email")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/office/<int:office_id>")
@require_auth
def list_office_invoices_route(office_id: int):
    try:
        invoices = invoice_service.list_invoices(
            office_id=office_id,
            include_deleted=query_bool("include_deleted"),
        )
        return jsonify({"invoices": invoices}), 200
    except Exception:
        current_app.logger.exception("Failed to list office invoices")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>")
@require_auth
def get_invoice_route(invoice_id: int):
    invoice = invoice_service.get_invoice(invoice_id, include_deleted=query_bool("include_deleted"))
    if not invoice:
        return jsonify({"error": "Invoice not found"}), 404
    return jsonify({"invoice": invoice}), 200


@invoices_bp.patch("/<int:invoice_id>/status")
@require_auth
def update_invoice_status_route(invoice_id: int):
    try:
        invoice = invoice_service.set_invoice_status(invoice_id, json_body().get("status"))
        return jsonify({
            "invoice": invoice.to_dict(include_data=False),
            "message": "Invoice status updated successfully",
        }), 200
    except InvoiceNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update invoice status")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.delete("/<int:invoice_id>")
@require_auth
@require_admin
def delete_invoice_route(invoice_id: int):
    result = get_lifecycle_engine().soft_delete("invoice", invoice_id, g.current_user.id)
    return lifecycle_response(result, "Invoice deleted successfully")


@invoices_bp.patch("/<int:invoice_id>/restore")
@require_auth
def restore_invoice_route(invoice_id: int):
    result = get_lifecycle_engine().restore("invoice", invoice_id)
    return lifecycle_response(result, "Invoice restored successfully")


@invoices_bp.delete("/<int:invoice_id>/permanent")
@require_auth
@require_admin
def permanent_delete_invoice_route(invoice_id: int):
    result = get_lifecycle_engine().permanent_delete("invoice", invoice_id, g.current_user.id)
    return lifecycle_response(result, "Invoice permanently deleted", value_key="deleted")
