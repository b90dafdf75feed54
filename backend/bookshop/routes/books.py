# Overview: Flask API routes for book operations; parses input and returns JSON responses.

"""
Book catalogue and stock routes.

SECURITY: All routes require authentication.
- Read operations are open to cashiers
- Catalogue edits and stock mutations are admin only

Stock is never edited directly: it changes through addition, wastage and
return entries (and sale reductions posted by receipts).
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import book_service, stock_service
from ..validation import ValidationError, NotFoundError
from ..decorators import require_auth, require_admin

books_bp = Blueprint("books", __name__, url_prefix="/api/books")


@books_bp.get("")
@require_auth
def list_books_route():
    """
    Query params:
    - class_name, subject: exact filters
    - search: matches title, author or ISBN
    - include_inactive: bool (default false)
    - limit (default 100, max 500), offset
    """
    limit = min(max(request.args.get("limit", 100, type=int), 1), 500)
    offset = max(request.args.get("offset", 0, type=int), 0)

    books, total = book_service.list_books(
        class_name=request.args.get("class_name"),
        subject=request.args.get("subject"),
        search=request.args.get("search"),
        include_inactive=request.args.get("include_inactive", "false").lower() == "true",
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "items": [b.to_dict() for b in books],
        "count": total,
        "limit": limit,
        "offset": offset,
    })


@books_bp.get("/low-stock")
@require_auth
def low_stock_route():
    books = stock_service.get_low_stock_books()
    return jsonify({"items": [b.to_dict() for b in books], "count": len(books)})


@books_bp.post("")
@require_auth
@require_admin
def create_book_route():
    """Create a book. Optional "stock" is posted as an opening-stock addition."""
    payload = request.get_json(silent=True) or {}

    try:
        book = book_service.create_book(payload, user=g.current_user)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify(book.to_dict()), 201


@books_bp.get("/<int:book_id>")
@require_auth
def get_book_route(book_id: int):
    try:
        book = book_service.get_book(book_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(book.to_dict())


@books_bp.put("/<int:book_id>")
@require_auth
@require_admin
def update_book_route(book_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        book = book_service.update_book(book_id, payload)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify(book.to_dict())


@books_bp.delete("/<int:book_id>")
@require_auth
@require_admin
def deactivate_book_route(book_id: int):
    """Soft delete: the book keeps its history but can no longer be sold."""
    try:
        book = book_service.deactivate_book(book_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(book.to_dict())


# =============================================================================
# STOCK
# =============================================================================

STOCK_OPERATIONS = {
    "add": stock_service.add_stock,
    "wastage": stock_service.mark_wastage,
    "return": stock_service.mark_return,
}


@books_bp.post("/<int:book_id>/stock/<operation>")
@require_auth
@require_admin
def stock_operation_route(book_id: int, operation: str):
    """
    Append one stock history entry.

    operation: add | wastage | return
    Request body: {"quantity": 5, "reference": "INV-22", "note": "..."}
    """
    handler = STOCK_OPERATIONS.get(operation)
    if handler is None:
        return jsonify({"error": f"Unknown stock operation: {operation}"}), 404

    data = request.get_json(silent=True) or {}
    kwargs = {"note": data.get("note"), "user": g.current_user}
    if data.get("reference"):
        kwargs["reference"] = data["reference"]

    try:
        entry = handler(book_id, data.get("quantity"), **kwargs)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to record stock %s for book %s", operation, book_id)
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({
        "entry": entry.to_dict(),
        "book": entry.book.to_dict(),
    }), 201


@books_bp.get("/<int:book_id>/stock-history")
@require_auth
def stock_history_route(book_id: int):
    try:
        book_service.get_book(book_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404

    entries = stock_service.get_stock_history(book_id)
    return jsonify({"items": [e.to_dict() for e in entries], "count": len(entries)})


@books_bp.get("/<int:book_id>/reconcile")
@require_auth
@require_admin
def reconcile_book_route(book_id: int):
    """Read-only consistency check of Book.stock against its history."""
    try:
        result = stock_service.recompute_from_history(book_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(result.to_dict())
