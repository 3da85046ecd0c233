# Overview: Flask API routes for returns; parses input and returns JSON responses.

# backend/retail_billing/routes/returns.py
"""
Return Processing API Routes

WHY: Take goods back against an invoice and refund them.

DESIGN:
- A return references exactly one invoice
- Quantities are validated against what is left to return, across all
  earlier returns of that invoice
- COMPLETED returns (the default) restock, adjust the customer and may
  flip the invoice to REFUNDED immediately; PENDING returns wait for
  POST /<id>/complete

SECURITY:
- VIEW_RETURNS: cashier and up
- CREATE_RETURN / COMPLETE_RETURN: manager and up
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import ServiceError, ValidationError
from ..services import return_service
from ..validation import require_int
from ..decorators import require_auth, require_permission


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


@returns_bp.get("")
@require_auth
@require_permission("VIEW_RETURNS")
def list_returns():
    """
    Query params:
    - invoice_id: int (optional)
    - status: PENDING|COMPLETED (optional)
    - start / end: ISO-8601 on return_date (optional)
    - page / per_page: int (optional)
    """
    try:
        result = return_service.list_returns(
            invoice_id=request.args.get("invoice_id", type=int),
            status=request.args.get("status"),
            start=request.args.get("start"),
            end=request.args.get("end"),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200
    except ServiceError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list returns")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/<int:return_id>")
@require_auth
@require_permission("VIEW_RETURNS")
def get_return(return_id: int):
    try:
        return_order = return_service.get_return(return_id)
        return jsonify({"return": return_order.to_dict(include_items=True)}), 200
    except ServiceError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get return")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# RETURN CREATION
# =============================================================================

@returns_bp.post("")
@require_auth
@require_permission("CREATE_RETURN")
def create_return_route():
    """
    Create a return against an invoice.

    Requires: CREATE_RETURN permission
    Available to: admin, manager

    Request body:
    {
        "invoice_id": 123,
        "items": [
            {"product_id": 1, "quantity": 1, "reason": "Damaged"},
            {"product_id": 7, "quantity": 2, "unit_price_cents": 400}
        ],
        "reason": "Customer not satisfied",  (optional)
        "note": "...",                       (optional)
        "status": "COMPLETED"                (optional: PENDING, COMPLETED)
    }

    Returns:
        201: Return created
        400: Invalid input, quantity exceeds what is left, invoice not returnable
        403: Permission denied
        404: Invoice not found
    """
    payload = request.get_json(silent=True) or {}

    try:
        reason = payload.get("reason")
        if reason is not None and not isinstance(reason, str):
            raise ValidationError("reason must be a string")

        return_order = return_service.create_return(
            invoice_id=require_int(payload.get("invoice_id"), "invoice_id", minimum=1),
            user_id=g.current_user.id,
            items=payload.get("items"),
            reason=reason,
            note=payload.get("note"),
            status=payload.get("status"),
        )
        return jsonify({"return": return_order.to_dict(include_items=True)}), 201
    except ServiceError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/complete")
@require_auth
@require_permission("COMPLETE_RETURN")
def complete_return_route(return_id: int):
    """
    Complete a PENDING return.

    Requires: COMPLETE_RETURN permission
    Available to: admin, manager

    Returns:
        200: Return completed
        400: Invoice no longer returnable
        404: Return not found
        409: Return already completed
    """
    try:
        return_order = return_service.complete_return(return_id, g.current_user.id)
        return jsonify({"return": return_order.to_dict(include_items=True)}), 200
    except ServiceError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to complete return")
        return jsonify({"error": "Internal server error"}), 500
