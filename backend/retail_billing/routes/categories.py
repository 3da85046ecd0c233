# Overview: Flask API routes for product categories.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import ServiceError
from ..models import Category
from ..services import catalog_service
from ..validation import ModelValidationPolicy, validate_payload
from ..decorators import require_auth, require_permission

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description"},
    required_on_create={"name"},
)

categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")


@categories_bp.get("")
@require_auth
@require_permission("VIEW_CATEGORIES")
def list_categories():
    """All categories, by name, each with its product_count."""
    return jsonify({"categories": catalog_service.list_categories()}), 200


@categories_bp.post("")
@require_auth
@require_permission("MANAGE_CATEGORIES")
def create_category_route():
    """
    Create a category.

    Requires: MANAGE_CATEGORIES permission
    Available to: admin, manager

    Returns:
        201: Category created
        400: Missing name
        409: Name already in use (case-insensitive)
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=False)
        category = catalog_service.create_category(patch=patch, user_id=g.current_user.id)
        return jsonify({"category": category.to_dict(product_count=0)}), 201
    except ServiceError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create category")
        return jsonify({"error": "Internal server error"}), 500


@categories_bp.put("/<int:category_id>")
@require_auth
@require_permission("MANAGE_CATEGORIES")
def update_category_route(category_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=True)
        category = catalog_service.update_category(category_id=category_id, patch=patch, user_id=g.current_user.id)
        return jsonify({"category": category.to_dict()}), 200
    except ServiceError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update category")
        return jsonify({"error": "Internal server error"}), 500


@categories_bp.delete("/<int:category_id>")
@require_auth
@require_permission("DELETE_CATEGORY")
def delete_category_route(category_id: int):
    """
    Delete a category.

    Requires: DELETE_CATEGORY permission
    Available to: admin

    Query params:
    - force: bool - required when products are attached; they become uncategorized
    """
    force = request.args.get("force", "false").lower() == "true"

    try:
        result = catalog_service.delete_category(category_id=category_id, force=force, user_id=g.current_user.id)
        return jsonify(result), 200
    except ServiceError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete category")
        return jsonify({"error": "Internal server error"}), 500
