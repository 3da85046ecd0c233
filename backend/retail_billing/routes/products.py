# Overview: Flask API routes for products; parses input and returns JSON responses.

# backend/retail_billing/routes/products.py
"""
Product management routes.

SECURITY: All routes require authentication.
- Read operations require VIEW_PRODUCTS (cashier and up)
- Create/update require MANAGE_PRODUCTS (manager and up)
- Delete requires DELETE_PRODUCT (admin)

Stock edits made here are written to the stock ledger by catalog_service.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..errors import ServiceError
from ..models import Product
from ..services import catalog_service
from ..services.inventory_service import get_stock_history
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
)
from ..decorators import require_auth, require_permission

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "description", "sku", "barcode",
        "price_cents", "cost_cents", "tax_rate_bps",
        "stock", "min_stock", "category_id",
    },
    required_on_create={"name", "price_cents"},
    ignored_fields={"stock_note"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _validated_patch(payload: dict, *, partial: bool) -> dict:
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=partial)
    enforce_rules_product(patch)
    return patch


@products_bp.get("")
@require_auth
@require_permission("VIEW_PRODUCTS")
def list_products():
    """
    List products.

    Query params:
    - search: str (optional) - matches name, description, sku, barcode
    - category_id: int (optional)
    - low_stock: bool (optional) - only products at or below min_stock
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page: int (optional) - items per page (default 20, max 100)
    """
    try:
        result = catalog_service.list_products(
            query=request.args.get("search"),
            category_id=request.args.get("category_id", type=int),
            low_stock=request.args.get("low_stock", "false").lower() == "true",
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200
    except ServiceError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list products")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>")
@require_auth
@require_permission("VIEW_PRODUCTS")
def get_product(product_id: int):
    try:
        product = catalog_service.get_product(product_id)
        return jsonify({"product": product.to_dict()}), 200
    except ServiceError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>/stock-history")
@require_auth
@require_permission("VIEW_PRODUCTS")
def product_stock_history(product_id: int):
    """
    Stock ledger for one product, newest first.

    Query params:
    - type: purchase|sale|return|adjustment (optional)
    - limit: int (optional, default 100)
    """
    try:
        history = get_stock_history(
            product_id,
            movement_type=request.args.get("type"),
            limit=request.args.get("limit", 100, type=int),
        )
        return jsonify({"product_id": product_id, "history": history}), 200
    except ServiceError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load product stock history")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def create_product_route():
    """
    Create a product.

    Requires: MANAGE_PRODUCTS permission
    Available to: admin, manager

    Request body:
    {
        "name": "Espresso beans 1kg",
        "price_cents": 1899,
        "cost_cents": 1100,        (optional)
        "tax_rate_bps": 1000,      (optional, default: store default)
        "stock": 24,               (optional, recorded as purchase)
        "sku": "ESP-1KG",          (optional, unique)
        "barcode": "0123456789",   (optional, unique)
        "category_id": 3           (optional)
    }

    Returns:
        201: Product created
        400: Invalid input
        404: Category not found
        409: Duplicate sku/barcode
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = _validated_patch(payload, partial=False)
        product = catalog_service.create_product(patch=patch, user_id=g.current_user.id)
        return jsonify({"product": product.to_dict()}), 201
    except ServiceError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.put("/<int:product_id>")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def update_product_route(product_id: int):
    """
    Update a product.

    A changed `stock` is written to the ledger (purchase when it rises,
    adjustment when it falls); `stock_note` annotates that entry.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = _validated_patch(payload, partial=True)
        product = catalog_service.update_product(
            product_id=product_id,
            patch=patch,
            user_id=g.current_user.id,
            stock_note=payload.get("stock_note"),
        )
        return jsonify({"product": product.to_dict()}), 200
    except ServiceError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.patch("/bulk")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def bulk_update_products_route():
    """
    Update several products at once. Each entry reports its own outcome.

    Request body:
    {"products": [{"id": 1, "price_cents": 999}, {"id": 2, "stock": 0}]}
    """
    payload = request.get_json(silent=True) or {}

    try:
        results = catalog_service.bulk_update_products(
            updates=payload.get("products"),
            user_id=g.current_user.id,
            validate=lambda p: _validated_patch(p, partial=True),
        )
        succeeded = sum(1 for r in results if r.get("success"))
        return jsonify({
            "results": results,
            "succeeded": succeeded,
            "failed": len(results) - succeeded,
        }), 200
    except ServiceError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to bulk update products")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.delete("/<int:product_id>")
@require_auth
@require_permission("DELETE_PRODUCT")
def delete_product_route(product_id: int):
    """
    Delete a product that has never been invoiced.

    Requires: DELETE_PRODUCT permission
    Available to: admin
    """
    try:
        catalog_service.delete_product(product_id=product_id, user_id=g.current_user.id)
        return jsonify({"ok": True}), 200
    except ServiceError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete product")
        return jsonify({"error": "Internal server error"}), 500
