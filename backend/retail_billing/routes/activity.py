# Overview: Read-only access to the activity log.

from flask import Blueprint, request, jsonify

from ..errors import ServiceError
from ..services.activity_service import list_activity
from ..decorators import require_auth, require_permission

activity_bp = Blueprint("activity", __name__, url_prefix="/api/activity")


@activity_bp.get("")
@require_auth
@require_permission("VIEW_ACTIVITY_LOG")
def list_activity_route():
    """
    Activity log, newest first.

    Query params:
    - action, entity_type: str (optional)
    - entity_id, user_id: int (optional)
    - start / end: ISO-8601 (optional)
    - page (default 1), per_page (default 50)
    """
    try:
        result = list_activity(
            action=request.args.get("action"),
            entity_type=request.args.get("entity_type"),
            entity_id=request.args.get("entity_id", type=int),
            user_id=request.args.get("user_id", type=int),
            start=request.args.get("start"),
            end=request.args.get("end"),
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", 50, type=int),
        )
        return jsonify(result), 200
    except ServiceError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list activity")
        return jsonify({"error": "Internal server error"}), 500
