# Overview: Service-layer operations for reporting; encapsulates business logic and database work.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from bookshop.extensions import db
from bookshop.models import Book, Receipt, ReceiptLine, ReceiptPayment, Student
from bookshop.time_utils import parse_iso_datetime, to_utc_z
from bookshop.validation import ValidationError, NotFoundError


class ReportError(ValidationError):
    """Raised when report parameters are invalid."""
    pass


PERIOD_FORMATS = {
    "day": "%Y-%m-%d",
    "week": "%Y-W%W",
    "month": "%Y-%m",
}


def _parse_range(start, end) -> tuple[datetime | None, datetime | None]:
    try:
        start_dt = start if isinstance(start, datetime) else parse_iso_datetime(start)
        end_dt = end if isinstance(end, datetime) else parse_iso_datetime(end)
    except ValueError:
        raise ReportError("start and end must be ISO-8601 datetimes")
    if start_dt and end_dt and start_dt > end_dt:
        raise ReportError("start must be before end")
    return start_dt, end_dt


def _apply_range(query, start_dt, end_dt):
    if start_dt:
        query = query.filter(Receipt.created_at >= start_dt)
    if end_dt:
        query = query.filter(Receipt.created_at <= end_dt)
    return query


def sales_summary(*, start=None, end=None, group_by: str = "day", top_n: int = 10) -> dict:
    """
    Receipt totals per period plus a payment-method breakdown.

    Receipt-level sums and line-level sums come from separate queries so the
    line join cannot double count receipt totals.
    """
    if group_by not in PERIOD_FORMATS:
        raise ReportError("group_by must be day, week, or month")
    start_dt, end_dt = _parse_range(start, end)
    period_expr = func.strftime(PERIOD_FORMATS[group_by], Receipt.created_at)

    receipt_rows = _apply_range(
        db.session.query(
            period_expr.label("period"),
            func.count(Receipt.id).label("receipt_count"),
            func.coalesce(func.sum(Receipt.subtotal_cents), 0).label("subtotal_cents"),
            func.coalesce(func.sum(Receipt.discount_cents), 0).label("discount_cents"),
            func.coalesce(func.sum(Receipt.total_cents), 0).label("total_cents"),
        ),
        start_dt, end_dt,
    ).group_by("period").order_by("period").all()

    items_by_period = dict(
        _apply_range(
            db.session.query(
                period_expr.label("period"),
                func.coalesce(func.sum(ReceiptLine.quantity), 0),
            ).join(ReceiptLine, ReceiptLine.receipt_id == Receipt.id),
            start_dt, end_dt,
        ).group_by("period").all()
    )

    method_rows = _apply_range(
        db.session.query(
            ReceiptPayment.method,
            func.coalesce(func.sum(ReceiptPayment.amount_cents), 0),
        ).join(Receipt, Receipt.id == ReceiptPayment.receipt_id),
        start_dt, end_dt,
    ).group_by(ReceiptPayment.method).order_by(ReceiptPayment.method).all()

    rows = [
        {
            "period": row.period,
            "receipt_count": int(row.receipt_count or 0),
            "items_sold": int(items_by_period.get(row.period) or 0),
            "subtotal_cents": int(row.subtotal_cents or 0),
            "discount_cents": int(row.discount_cents or 0),
            "total_cents": int(row.total_cents or 0),
        }
        for row in receipt_rows
    ]

    top_books = _apply_range(
        db.session.query(
            ReceiptLine.book_id,
            func.max(ReceiptLine.title).label("title"),
            func.coalesce(func.sum(ReceiptLine.quantity), 0).label("quantity"),
            func.coalesce(func.sum(ReceiptLine.line_total_cents), 0).label("revenue_cents"),
        ).join(Receipt, Receipt.id == ReceiptLine.receipt_id),
        start_dt, end_dt,
    ).group_by(ReceiptLine.book_id).order_by(func.sum(ReceiptLine.quantity).desc(), ReceiptLine.book_id.asc()).limit(top_n).all()

    return {
        "group_by": group_by,
        "start": to_utc_z(start_dt) if start_dt else None,
        "end": to_utc_z(end_dt) if end_dt else None,
        "receipt_count": sum(r["receipt_count"] for r in rows),
        "items_sold": sum(r["items_sold"] for r in rows),
        "total_cents": sum(r["total_cents"] for r in rows),
        "discount_cents": sum(r["discount_cents"] for r in rows),
        "by_payment_method": {method: int(amount) for method, amount in method_rows},
        "top_books": [
            {
                "book_id": row.book_id,
                "title": row.title,
                "quantity": int(row.quantity or 0),
                "revenue_cents": int(row.revenue_cents or 0),
            }
            for row in top_books
        ],
        "rows": rows,
    }


def inventory_summary(*, include_inactive: bool = False) -> dict:
    """Stock on hand and its value at cost and selling price, grouped by class."""
    query = db.session.query(Book)
    if not include_inactive:
        query = query.filter(Book.is_active.is_(True))
    books = query.order_by(Book.class_name.asc(), Book.title.asc()).all()

    by_class: dict[str, dict] = {}
    for book in books:
        bucket = by_class.setdefault(book.class_name, {
            "class_name": book.class_name,
            "title_count": 0,
            "units_in_stock": 0,
            "cost_value_cents": 0,
            "retail_value_cents": 0,
            "low_stock_count": 0,
        })
        bucket["title_count"] += 1
        bucket["units_in_stock"] += book.stock
        bucket["cost_value_cents"] += book.stock * book.cost_price_cents
        bucket["retail_value_cents"] += book.stock * book.selling_price_cents
        if book.is_low_stock:
            bucket["low_stock_count"] += 1

    classes = list(by_class.values())
    return {
        "title_count": len(books),
        "units_in_stock": sum(c["units_in_stock"] for c in classes),
        "cost_value_cents": sum(c["cost_value_cents"] for c in classes),
        "retail_value_cents": sum(c["retail_value_cents"] for c in classes),
        "low_stock_count": sum(c["low_stock_count"] for c in classes),
        "by_class": classes,
        "low_stock": [
            {
                "book_id": b.id,
                "title": b.title,
                "class_name": b.class_name,
                "stock": b.stock,
                "min_stock": b.min_stock,
            }
            for b in books if b.is_low_stock
        ],
    }


def student_history(student_id: int) -> dict:
    """Everything a student has bought, with lifetime totals."""
    student = db.session.query(Student).filter_by(id=student_id).first()
    if not student:
        raise NotFoundError(f"Student {student_id} not found")

    receipts = (
        db.session.query(Receipt)
        .filter(Receipt.student_id == student_id)
        .order_by(Receipt.created_at.asc(), Receipt.id.asc())
        .all()
    )

    books: dict[int, dict] = {}
    for receipt in receipts:
        for line in receipt.lines:
            entry = books.setdefault(line.book_id, {
                "book_id": line.book_id,
                "title": line.title,
                "quantity": 0,
                "spent_cents": 0,
            })
            entry["quantity"] += line.quantity
            entry["spent_cents"] += line.line_total_cents

    return {
        "student": student.to_dict(),
        "receipt_count": len(receipts),
        "total_spent_cents": sum(r.total_cents for r in receipts),
        "total_discount_cents": sum(r.discount_cents for r in receipts),
        "books": list(books.values()),
        "receipts": [r.to_dict(include_lines=False) for r in receipts],
    }


def student_purchases(*, start=None, end=None) -> dict:
    """Receipt count and spend per student over a date range, biggest spenders first."""
    start_dt, end_dt = _parse_range(start, end)

    rows = _apply_range(
        db.session.query(
            Receipt.student_id,
            func.max(Receipt.student_name).label("student_name"),
            func.max(Receipt.student_class).label("student_class"),
            func.count(Receipt.id).label("receipt_count"),
            func.coalesce(func.sum(Receipt.total_cents), 0).label("total_cents"),
            func.coalesce(func.sum(Receipt.discount_cents), 0).label("discount_cents"),
        ),
        start_dt, end_dt,
    ).group_by(Receipt.student_id).order_by(
        func.sum(Receipt.total_cents).desc(), Receipt.student_id.asc()
    ).all()

    return {
        "start": to_utc_z(start_dt) if start_dt else None,
        "end": to_utc_z(end_dt) if end_dt else None,
        "rows": [
            {
                "student_id": row.student_id,
                "student_name": row.student_name,
                "student_class": row.student_class,
                "receipt_count": int(row.receipt_count or 0),
                "total_cents": int(row.total_cents or 0),
                "discount_cents": int(row.discount_cents or 0),
            }
            for row in rows
        ],
    }
