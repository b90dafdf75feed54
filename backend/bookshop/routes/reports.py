# Overview: Flask API routes for reports operations; parses input and returns JSON responses.

"""
Reporting endpoints.

SECURITY: Admin only. All amounts are cents.
"""

from flask import Blueprint, request, jsonify

from ..decorators import require_auth, require_admin
from ..services import reporting_service
from ..services.reporting_service import ReportError

reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/sales")
@require_auth
@require_admin
def sales_report_route():
    """Query params: start, end (ISO-8601), group_by (day|week|month), top (default 10)"""
    try:
        report = reporting_service.sales_summary(
            start=request.args.get("start"),
            end=request.args.get("end"),
            group_by=request.args.get("group_by", "day"),
            top_n=min(max(request.args.get("top", 10, type=int), 1), 100),
        )
    except ReportError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(report)


@reports_bp.get("/inventory")
@require_auth
@require_admin
def inventory_report_route():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    return jsonify(reporting_service.inventory_summary(include_inactive=include_inactive))


@reports_bp.get("/students")
@require_auth
@require_admin
def student_purchases_route():
    """Query params: start, end (ISO-8601)"""
    try:
        report = reporting_service.student_purchases(
            start=request.args.get("start"),
            end=request.args.get("end"),
        )
    except ReportError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(report)
