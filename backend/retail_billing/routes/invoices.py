# Overview: Flask API routes for invoices; parses input and returns JSON responses.

# backend/retail_billing/routes/invoices.py
"""
Invoice API Routes

WHY: The counter's main workflow. Creating an invoice decrements stock,
updates the customer's purchases and accrues loyalty points in one
transaction; voiding undoes all of it.

SECURITY:
- VIEW_INVOICES / CREATE_INVOICE: cashier and up
- UPDATE_INVOICE / VOID_INVOICE: admin only
- All writes are recorded in the activity log with user attribution
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import ServiceError, ValidationError
from ..services import invoice_service, return_service
from ..validation import optional_int
from ..decorators import require_auth, require_permission


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")

INVOICE_UPDATE_FIELDS = {"status", "payment_method", "payment_reference", "note"}


def _optional_str(payload: dict, field: str) -> str | None:
    value = payload.get(field)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    return value.strip() or None


# =============================================================================
# QUERIES
# =============================================================================

@invoices_bp.get("")
@require_auth
@require_permission("VIEW_INVOICES")
def list_invoices():
    """
    List invoices, newest first.

    Query params:
    - start / end: ISO-8601 (optional)
    - customer_id: int (optional)
    - status: DRAFT|PAID|PARTIALLY_PAID|VOIDED|REFUNDED (optional)
    - search: invoice number fragment (optional)
    - page / per_page: int (optional). Without page, up to `limit` rows (default 50).
    """
    try:
        result = invoice_service.list_invoices(
            start=request.args.get("start"),
            end=request.args.get("end"),
            customer_id=request.args.get("customer_id", type=int),
            status=request.args.get("status"),
            search=request.args.get("search"),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
            limit=request.args.get("limit", 50, type=int),
        )
        return jsonify(result), 200
    except ServiceError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>")
@require_auth
@require_permission("VIEW_INVOICES")
def get_invoice(invoice_id: int):
    """Invoice with items and any returns against it."""
    try:
        return jsonify({"invoice": invoice_service.get_invoice_detail(invoice_id)}), 200
    except ServiceError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>/returnable")
@require_auth
@require_permission("VIEW_INVOICES")
def get_returnable_items(invoice_id: int):
    """Per product: invoiced, already returned and still returnable quantities."""
    try:
        return jsonify(return_service.get_returnable_items(invoice_id)), 200
    except ServiceError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get returnable items")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# INVOICE CREATION
# =============================================================================

@invoices_bp.post("")
@require_auth
@require_permission("CREATE_INVOICE")
def create_invoice_route():
    """
    Create an invoice.

    Requires: CREATE_INVOICE permission
    Available to: admin, manager, cashier

    Request body:
    {
        "items": [
            {"product_id": 1, "quantity": 2},
            {"product_id": 7, "quantity": 1, "unit_price_cents": 450,
             "tax_rate_bps": 1000, "discount_cents": 50}
        ],
        "customer_id": 12,            (optional)
        "payment_method": "cash",     (optional)
        "payment_reference": "...",   (optional)
        "note": "...",                (optional)
        "status": "PAID"              (optional: DRAFT, PAID, PARTIALLY_PAID)
    }

    Returns:
        201: Invoice created (with items)
        400: Invalid input or insufficient stock (details.items)
        404: Product or customer not found
        409: Could not allocate a unique invoice number
    """
    payload = request.get_json(silent=True) or {}

    try:
        invoice = invoice_service.create_invoice(
            user_id=g.current_user.id,
            items=payload.get("items"),
            customer_id=optional_int(payload.get("customer_id"), "customer_id", minimum=1),
            payment_method=_optional_str(payload, "payment_method"),
            payment_reference=_optional_str(payload, "payment_reference"),
            note=_optional_str(payload, "note"),
            status=_optional_str(payload, "status"),
        )
        return jsonify({"invoice": invoice.to_dict(include_items=True)}), 201
    except ServiceError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# INVOICE UPDATE / VOID
# =============================================================================

@invoices_bp.put("/<int:invoice_id>")
@require_auth
@require_permission("UPDATE_INVOICE")
def update_invoice_route(invoice_id: int):
    """
    Move an invoice's status forward or edit its payment details.

    Requires: UPDATE_INVOICE permission
    Available to: admin

    Allowed transitions: DRAFT -> PAID|PARTIALLY_PAID, PARTIALLY_PAID -> PAID.
    Lines and amounts are immutable.
    """
    payload = request.get_json(silent=True) or {}

    try:
        unknown = sorted(set(payload) - INVOICE_UPDATE_FIELDS)
        if unknown:
            raise ValidationError(f"Field not allowed: {unknown[0]}")

        invoice = invoice_service.update_invoice(
            invoice_id,
            g.current_user.id,
            status=_optional_str(payload, "status"),
            payment_method=_optional_str(payload, "payment_method"),
            payment_reference=_optional_str(payload, "payment_reference"),
            note=_optional_str(payload, "note"),
            fields=set(payload) - {"status"},
        )
        return jsonify({"invoice": invoice.to_dict(include_items=True)}), 200
    except ServiceError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.delete("/<int:invoice_id>")
@require_auth
@require_permission("VOID_INVOICE")
def void_invoice_route(invoice_id: int):
    """
    Void an invoice: restore stock, reverse customer totals and loyalty.

    Requires: VOID_INVOICE permission
    Available to: admin

    Request body (optional):
    {"reason": "Rang up the wrong customer"}

    Returns:
        200: Invoice voided
        400: Already voided, or returns exist against it
        404: Invoice not found
    """
    payload = request.get_json(silent=True) or {}

    try:
        invoice = invoice_service.void_invoice(
            invoice_id,
            g.current_user.id,
            reason=_optional_str(payload, "reason"),
        )
        return jsonify({
            "message": "Invoice voided successfully",
            "invoice": invoice.to_dict(include_items=True),
        }), 200
    except ServiceError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to void invoice")
        return jsonify({"error": "Internal server error"}), 500
