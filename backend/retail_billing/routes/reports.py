from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import ServiceError
from ..services import customer_reporting_service, inventory_reporting_service, reporting_service


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def _flag(name: str) -> bool:
    return request.args.get(name, "false").lower() == "true"


@reports_bp.get("/sales")
@require_auth
@require_permission("VIEW_REPORTS")
def sales_report():
    try:
        report = reporting_service.sales_report(
            report_type=request.args.get("type", "overview"),
            start=request.args.get("start"),
            end=request.args.get("end"),
            period=request.args.get("period", "day"),
            include_voided=_flag("include_voided"),
        )
        return jsonify(report), 200
    except ServiceError as exc:
        return jsonify({"error": str(exc), "details": exc.details}), exc.status_code
    except Exception:
        current_app.logger.exception("Failed to build sales report")
        return jsonify({"error": "Internal server error"}), 500


@reports_bp.get("/inventory")
@require_auth
@require_permission("VIEW_REPORTS")
def inventory_report():
    try:
        report = inventory_reporting_service.inventory_report(
            report_type=request.args.get("type", "overview"),
            start=request.args.get("start"),
            end=request.args.get("end"),
            category_id=request.args.get("category_id", type=int),
            product_id=request.args.get("product_id", type=int),
            low_stock_only=_flag("low_stock_only"),
            out_of_stock_only=_flag("out_of_stock_only"),
            limit=request.args.get("limit", inventory_reporting_service.DEFAULT_LIMIT, type=int),
        )
        return jsonify(report), 200
    except ServiceError as exc:
        return jsonify({"error": str(exc), "details": exc.details}), exc.status_code
    except Exception:
        current_app.logger.exception("Failed to build inventory report")
        return jsonify({"error": "Internal server error"}), 500


@reports_bp.get("/customers")
@require_auth
@require_permission("VIEW_REPORTS")
def customer_report():
    try:
        report = customer_reporting_service.customer_report(
            report_type=request.args.get("type", "overview"),
            start=request.args.get("start"),
            end=request.args.get("end"),
        )
        return jsonify(report), 200
    except ServiceError as exc:
        return jsonify({"error": str(exc), "details": exc.details}), exc.status_code
    except Exception:
        current_app.logger.exception("Failed to build customer report")
        return jsonify({"error": "Internal server error"}), 500


@reports_bp.get("/dashboard")
@require_auth
@require_permission("VIEW_REPORTS")
def dashboard():
    try:
        report = reporting_service.dashboard_report(timeframe=request.args.get("timeframe", "last_30_days"))
        return jsonify(report), 200
    except ServiceError as exc:
        return jsonify({"error": str(exc), "details": exc.details}), exc.status_code
    except Exception:
        current_app.logger.exception("Failed to build dashboard")
        return jsonify({"error": "Internal server error"}), 500
