# Overview: Flask API routes for store settings.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import ServiceError
from ..models import StoreSetting
from ..services import settings_service
from ..validation import ModelValidationPolicy, validate_payload, enforce_rules_settings
from ..decorators import require_auth, require_permission

SETTINGS_POLICY = ModelValidationPolicy(
    writable_fields={
        "store_name", "address", "phone", "email",
        "currency", "default_tax_rate_bps", "receipt_footer",
    },
)

settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


@settings_bp.get("")
@require_auth
@require_permission("VIEW_SETTINGS")
def get_settings():
    return jsonify({"settings": settings_service.get_settings()}), 200


@settings_bp.put("")
@require_auth
@require_permission("MANAGE_SETTINGS")
def update_settings_route():
    """
    Update store settings.

    Requires: MANAGE_SETTINGS permission
    Available to: admin

    default_tax_rate_bps applies to products created without a tax rate.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=StoreSetting, payload=payload, policy=SETTINGS_POLICY, partial=True)
        enforce_rules_settings(patch)
        settings = settings_service.update_settings(patch=patch, user_id=g.current_user.id)
        return jsonify({"settings": settings.to_dict()}), 200
    except ServiceError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update settings")
        return jsonify({"error": "Internal server error"}), 500
