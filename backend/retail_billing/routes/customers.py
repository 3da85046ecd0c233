# Overview: Flask API routes for customers; parses input and returns JSON responses.

"""
Customer routes.

Cashiers create and edit customers at the counter. Deleting one is an
admin action and only allowed while the customer has no invoices.

loyalty_points is never written directly: a PUT carrying it is recorded
as an ADJUST entry in the loyalty ledger for the difference.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import ServiceError
from ..models import Customer
from ..services import customer_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_customer,
    optional_int,
)
from ..decorators import require_auth, require_permission

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "email", "phone", "address"},
    required_on_create={"name"},
)

CUSTOMER_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "email", "phone", "address"},
    ignored_fields={"loyalty_points", "points_note"},
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_auth
@require_permission("VIEW_CUSTOMERS")
def list_customers():
    """
    Query params:
    - search: str (optional) - matches name, email, phone
    - loyal_only: bool (optional) - customers with loyalty points
    - page / per_page: int (optional)
    """
    try:
        result = customer_service.list_customers(
            query=request.args.get("search"),
            loyal_only=request.args.get("loyal_only", "false").lower() == "true",
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200
    except ServiceError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list customers")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>")
@require_auth
@require_permission("VIEW_CUSTOMERS")
def get_customer(customer_id: int):
    """Customer with loyalty history and recent invoices."""
    try:
        return jsonify({"customer": customer_service.get_customer_detail(customer_id)}), 200
    except ServiceError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.post("")
@require_auth
@require_permission("MANAGE_CUSTOMERS")
def create_customer_route():
    """
    Create a customer.

    Requires: MANAGE_CUSTOMERS permission
    Available to: admin, manager, cashier

    Returns:
        201: Customer created
        400: Invalid input
        409: Email or phone already in use
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
        enforce_rules_customer(patch)
        customer = customer_service.create_customer(patch=patch, user_id=g.current_user.id)
        return jsonify({"customer": customer.to_dict()}), 201
    except ServiceError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.put("/<int:customer_id>")
@require_auth
@require_permission("MANAGE_CUSTOMERS")
def update_customer_route(customer_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_UPDATE_POLICY, partial=True)
        enforce_rules_customer(patch)
        loyalty_points = optional_int(payload.get("loyalty_points"), "loyalty_points", minimum=0)
        customer = customer_service.update_customer(
            customer_id=customer_id,
            patch=patch,
            loyalty_points=loyalty_points,
            points_note=payload.get("points_note"),
            user_id=g.current_user.id,
        )
        return jsonify({"customer": customer.to_dict()}), 200
    except ServiceError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.delete("/<int:customer_id>")
@require_auth
@require_permission("DELETE_CUSTOMER")
def delete_customer_route(customer_id: int):
    """
    Requires: DELETE_CUSTOMER permission
    Available to: admin
    """
    try:
        customer_service.delete_customer(customer_id=customer_id, user_id=g.current_user.id)
        return jsonify({"ok": True}), 200
    except ServiceError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete customer")
        return jsonify({"error": "Internal server error"}), 500
