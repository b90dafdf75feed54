# Overview: Flask API routes for supplier operations; parses input and returns JSON responses.

"""
Supplier Routes

SECURITY: All routes require authentication and the admin role.

Supply orders add to what the shop owes a supplier; payments subtract.
The ledger endpoint returns the running-balance statement recomputed on
every request.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_admin
from ..services import supplier_service
from ..validation import ValidationError, NotFoundError


suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/api/suppliers")


@suppliers_bp.get("")
@require_auth
@require_admin
def list_suppliers_route():
    """
    Query parameters:
    - include_inactive: Include inactive suppliers (default: false)
    - search: Search term for name or email
    - limit: Maximum results (default: 100)
    - offset: Pagination offset (default: 0)

    Returns:
        {items: Supplier[], count: int, limit: int, offset: int}
    """
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    search = request.args.get("search")
    limit = request.args.get("limit", 100, type=int)
    offset = request.args.get("offset", 0, type=int)

    # Clamp limit
    if limit < 1:
        limit = 1
    if limit > 500:
        limit = 500
    if offset < 0:
        offset = 0

    suppliers, total = supplier_service.list_suppliers(
        include_inactive=include_inactive,
        search=search,
        limit=limit,
        offset=offset,
    )

    return jsonify({
        "items": [s.to_dict() for s in suppliers],
        "count": total,
        "limit": limit,
        "offset": offset,
    })


@suppliers_bp.post("")
@require_auth
@require_admin
def create_supplier_route():
    """
    Request body:
    {
        "name": "Accra Educational Books",  // required
        "contact": "024 000 0000",
        "email": "orders@aeb.example",
        "address": "..."
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        supplier = supplier_service.create_supplier(payload)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(supplier.to_dict()), 201


@suppliers_bp.get("/<int:supplier_id>")
@require_auth
@require_admin
def get_supplier_route(supplier_id: int):
    try:
        supplier = supplier_service.get_supplier(supplier_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(supplier.to_dict())


@suppliers_bp.put("/<int:supplier_id>")
@require_auth
@require_admin
def update_supplier_route(supplier_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        supplier = supplier_service.update_supplier(supplier_id, payload)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(supplier.to_dict())


@suppliers_bp.delete("/<int:supplier_id>")
@require_auth
@require_admin
def deactivate_supplier_route(supplier_id: int):
    try:
        supplier = supplier_service.deactivate_supplier(supplier_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(supplier.to_dict())


# =============================================================================
# SUPPLY ORDERS
# =============================================================================

@suppliers_bp.post("/<int:supplier_id>/orders")
@require_auth
@require_admin
def create_supply_order_route(supplier_id: int):
    """
    Request body:
    {
        "items": [{"book_id": 1, "quantity": 10, "cost_price_cents": 1900}],
        "invoice_number": "INV-001",
        "supply_date": "2026-01-10",
        "expected_payment_date": "2026-02-10",
        "status": "pending",    // or "received" to post stock immediately
        "notes": "..."
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        order = supplier_service.record_supply_order(
            supplier_id,
            data.get("items"),
            supply_date=data.get("supply_date"),
            invoice_number=data.get("invoice_number"),
            expected_payment_date=data.get("expected_payment_date"),
            status=data.get("status") or supplier_service.ORDER_PENDING,
            notes=data.get("notes"),
            user=g.current_user,
        )
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to record supply order for supplier %s", supplier_id)
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(order.to_dict()), 201


@suppliers_bp.get("/<int:supplier_id>/orders")
@require_auth
@require_admin
def list_supply_orders_route(supplier_id: int):
    try:
        supplier_service.get_supplier(supplier_id)
        orders = supplier_service.list_supply_orders(
            supplier_id=supplier_id, status=request.args.get("status"),
        )
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"items": [o.to_dict() for o in orders], "count": len(orders)})


@suppliers_bp.get("/orders/<int:order_id>")
@require_auth
@require_admin
def get_supply_order_route(order_id: int):
    try:
        order = supplier_service.get_supply_order(order_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(order.to_dict())


@suppliers_bp.post("/orders/<int:order_id>/status")
@require_auth
@require_admin
def update_supply_order_status_route(order_id: int):
    """Request body: {"status": "received" | "cancelled"}"""
    data = request.get_json(silent=True) or {}
    try:
        order = supplier_service.update_supply_order_status(
            order_id, data.get("status"), user=g.current_user,
        )
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(order.to_dict())


@suppliers_bp.get("/orders/overdue")
@require_auth
@require_admin
def overdue_orders_route():
    orders = supplier_service.get_overdue()
    return jsonify({"items": [o.to_dict(include_items=False) for o in orders], "count": len(orders)})


@suppliers_bp.get("/orders/upcoming")
@require_auth
@require_admin
def upcoming_orders_route():
    """Query params: days (default UPCOMING_PAYMENT_DAYS)"""
    try:
        orders = supplier_service.get_upcoming(request.args.get("days", type=int))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"items": [o.to_dict(include_items=False) for o in orders], "count": len(orders)})


# =============================================================================
# PAYMENTS & LEDGER
# =============================================================================

@suppliers_bp.post("/<int:supplier_id>/payments")
@require_auth
@require_admin
def create_payment_route(supplier_id: int):
    """
    Request body:
    {
        "amount_cents": 10000,          // required, > 0
        "payment_method": "bank_transfer",
        "reference": "TRX-99",
        "payment_date": "2026-02-01",
        "notes": "..."
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        payment = supplier_service.record_payment(
            supplier_id,
            data.get("amount_cents"),
            data.get("payment_method"),
            reference=data.get("reference"),
            payment_date=data.get("payment_date"),
            notes=data.get("notes"),
            user=g.current_user,
        )
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify(payment.to_dict()), 201


@suppliers_bp.get("/<int:supplier_id>/payments")
@require_auth
@require_admin
def list_payments_route(supplier_id: int):
    try:
        supplier_service.get_supplier(supplier_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    payments = supplier_service.list_payments(supplier_id)
    return jsonify({"items": [p.to_dict() for p in payments], "count": len(payments)})


@suppliers_bp.get("/<int:supplier_id>/ledger")
@require_auth
@require_admin
def ledger_route(supplier_id: int):
    try:
        entries = supplier_service.get_ledger(supplier_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({
        "supplier_id": supplier_id,
        "entries": [e.to_dict() for e in entries],
        "balance_cents": entries[-1].balance_cents if entries else 0,
    })


@suppliers_bp.get("/<int:supplier_id>/analytics")
@require_auth
@require_admin
def analytics_route(supplier_id: int):
    try:
        analytics = supplier_service.supplier_analytics(supplier_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(analytics.to_dict())
