# Overview: Flask API routes for receipt operations; parses input and returns JSON responses.

"""
Purchase and receipt routes.

FLOW:
1. POST /api/receipts/quote    -> totals and gate state (enables "complete purchase")
2. POST /api/receipts          -> issues the receipt and posts stock reductions
3. GET  /api/receipts/...      -> read-only projections (JSON, text, CSV)

Request body shared by quote and complete:
{
    "student_id": 7,                                   // complete only
    "items": [{"book_id": 1, "quantity": 2}],
    "discount": {"mode": "percent", "value": 10},      // or {"mode": "flat", "value_cents": 2000}
    "payments": [{"method": "cash", "amount_cents": 7000},
                 {"method": "mobile_money", "amount_cents": 5000, "reference": "MM123"}],
    "override_code": "..."                             // only above the cashier ceiling
}

SECURITY: Cashiers and admins may quote, complete and read receipts.
Receipts are immutable: there is no update or delete route.
"""

from flask import Blueprint, Response, request, jsonify, g, current_app

from ..decorators import require_auth
from ..services import receipt_service
from ..services.cart_service import cart_from_payload
from ..services.discount_service import discount_from_payload, policy_from_config
from ..services.payment_service import payments_from_payload
from ..services.receipt_service import ReceiptError, ERROR_INSUFFICIENT_STOCK
from ..validation import ValidationError, NotFoundError

receipts_bp = Blueprint("receipts", __name__, url_prefix="/api/receipts")


def _parse_purchase(data: dict):
    cart = cart_from_payload(data.get("items") or [])
    discount = discount_from_payload(data.get("discount"))
    payments = payments_from_payload(data.get("payments"))
    override_code = data.get("override_code") or ""
    if not isinstance(override_code, str):
        raise ValidationError("override_code must be a string")
    override_code = override_code.strip() or None
    return cart, discount, payments, override_code


@receipts_bp.post("/quote")
@require_auth
def quote_route():
    """Totals and gates for the current cart. Nothing is written."""
    data = request.get_json(silent=True) or {}

    try:
        cart, discount, payments, override_code = _parse_purchase(data)
        quote = receipt_service.quote_purchase(
            cart, discount, g.current_user.role, payments,
            override_code=override_code,
            policy=policy_from_config(current_app.config),
        )
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to quote purchase")
        return jsonify({"error": "Internal server error"}), 500

    result = quote.to_dict()
    result["lines"] = [
        {
            "book_id": line.book_id,
            "title": line.title,
            "unit_price_cents": line.unit_price_cents,
            "quantity": line.quantity,
            "line_total_cents": line.line_total_cents,
        }
        for line in cart.lines
    ]
    return jsonify(result), 200


@receipts_bp.post("")
@require_auth
def complete_purchase_route():
    """
    Complete a purchase.

    Returns 201 with the receipt, or an error carrying the failed gate:
    - 400 EMPTY_CART / UNAUTHORIZED_DISCOUNT / PAYMENT_MISMATCH
    - 409 INSUFFICIENT_STOCK (unless ALLOW_OVERSELL)
    """
    data = request.get_json(silent=True) or {}

    student_id = data.get("student_id")
    if not student_id:
        return jsonify({"error": "student_id is required"}), 400

    try:
        cart, discount, payments, override_code = _parse_purchase(data)
        receipt = receipt_service.build_receipt(
            cart, student_id, discount, payments,
            actor=g.current_user,
            override_code=override_code,
        )
    except ReceiptError as e:
        status = 409 if e.code == ERROR_INSUFFICIENT_STOCK else 400
        return jsonify({"error": str(e), "code": e.code, "details": e.details}), status
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to complete purchase")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(receipt.to_dict()), 201


def _list_filters() -> dict:
    return {
        "start": request.args.get("start"),
        "end": request.args.get("end"),
        "student_id": request.args.get("student_id", type=int),
        "cashier_id": request.args.get("cashier_id", type=int),
        "payment_method": request.args.get("payment_method"),
    }


@receipts_bp.get("")
@require_auth
def list_receipts_route():
    """
    Query params: start, end (ISO-8601, inclusive), student_id, cashier_id,
    payment_method, limit (default 100, max 500), offset
    """
    limit = min(max(request.args.get("limit", 100, type=int), 1), 500)
    offset = max(request.args.get("offset", 0, type=int), 0)

    try:
        receipts, total = receipt_service.list_receipts(**_list_filters(), limit=limit, offset=offset)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({
        "items": [r.to_dict(include_lines=False) for r in receipts],
        "count": total,
        "limit": limit,
        "offset": offset,
    })


@receipts_bp.get("/export.csv")
@require_auth
def export_receipts_route():
    """CSV export of every receipt matching the list filters."""
    try:
        receipts, total = receipt_service.list_receipts(**_list_filters(), limit=None)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return Response(
        receipt_service.export_receipts_csv(receipts),
        mimetype="text/csv",
        headers={"Content-Disposition": "attachment; filename=receipts.csv"},
    )


@receipts_bp.get("/<int:receipt_id>")
@require_auth
def get_receipt_route(receipt_id: int):
    try:
        receipt = receipt_service.get_receipt(receipt_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(receipt.to_dict())


@receipts_bp.get("/number/<receipt_number>")
@require_auth
def get_receipt_by_number_route(receipt_number: str):
    try:
        receipt = receipt_service.get_receipt_by_number(receipt_number)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(receipt.to_dict())


@receipts_bp.get("/<int:receipt_id>/text")
@require_auth
def receipt_text_route(receipt_id: int):
    """Plain-text receipt for printing or resending."""
    try:
        receipt = receipt_service.get_receipt(receipt_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404

    text = receipt_service.receipt_text(receipt, current_app.config.get("CURRENCY_SYMBOL", ""))
    return Response(text, mimetype="text/plain")
