# Overview: Service-layer operations for books; encapsulates business logic and database work.

"""
Book catalogue CRUD.

STOCK IS NOT WRITABLE HERE: create_book accepts an opening stock quantity but
posts it through stock_service as an "addition" entry so the history replay
starts from zero. Updates never touch Book.stock.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Book, Supplier, User
from ..validation import (
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    validate_payload,
    enforce_rules_book,
)
from .concurrency import get_locked, run_with_retry
from . import stock_service


BOOK_TYPES = ["textbook", "workbook", "reference", "other"]

BOOK_POLICY = ModelValidationPolicy(
    writable_fields={
        "title",
        "author",
        "isbn",
        "class_name",
        "subject",
        "book_type",
        "selling_price_cents",
        "cost_price_cents",
        "min_stock",
        "supplier_id",
        "description",
        "is_active",
    },
    required_on_create={"title", "class_name", "subject", "selling_price_cents"},
)


def _check_book_rules(patch: dict) -> None:
    enforce_rules_book(patch)
    if "book_type" in patch and patch["book_type"] not in BOOK_TYPES:
        raise ValidationError(f"Invalid book_type: {patch['book_type']}. Must be one of {BOOK_TYPES}")
    if patch.get("supplier_id") is not None:
        if not db.session.query(Supplier.id).filter_by(id=patch["supplier_id"]).first():
            raise NotFoundError(f"Supplier {patch['supplier_id']} not found")


def create_book(payload: dict, *, user: User | None = None) -> Book:
    """
    Create a book. An optional "stock" key in the payload is the opening stock.
    """
    payload = dict(payload or {})
    opening_stock = payload.pop("stock", 0) or 0
    if isinstance(opening_stock, bool) or not isinstance(opening_stock, int) or opening_stock < 0:
        raise ValidationError("stock must be a non-negative integer")

    patch = validate_payload(model=Book, payload=payload, policy=BOOK_POLICY, partial=False)
    _check_book_rules(patch)

    book = Book(**patch, stock=0)
    db.session.add(book)
    db.session.flush()

    if opening_stock > 0:
        stock_service.add_stock(
            book.id, opening_stock, reference="Opening stock", user=user, commit=False,
        )

    db.session.commit()
    return book


def get_book(book_id: int) -> Book:
    book = db.session.query(Book).filter_by(id=book_id).first()
    if not book:
        raise NotFoundError(f"Book {book_id} not found")
    return book


def update_book(book_id: int, payload: dict) -> Book:
    if payload and "stock" in payload:
        raise ValidationError("stock cannot be edited directly; use a stock operation")

    patch = validate_payload(model=Book, payload=payload, policy=BOOK_POLICY, partial=True)
    _check_book_rules(patch)

    def _op():
        book = get_locked(Book, book_id, "Book")
        for key, value in patch.items():
            setattr(book, key, value)
        db.session.commit()
        return book

    return run_with_retry(_op)


def deactivate_book(book_id: int) -> Book:
    """Books with history are never deleted, only hidden from sale."""
    def _op():
        book = get_locked(Book, book_id, "Book")
        book.is_active = False
        db.session.commit()
        return book

    return run_with_retry(_op)


def list_books(
    *,
    class_name: str | None = None,
    subject: str | None = None,
    search: str | None = None,
    include_inactive: bool = False,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[Book], int]:
    query = db.session.query(Book)
    if not include_inactive:
        query = query.filter(Book.is_active.is_(True))
    if class_name:
        query = query.filter(Book.class_name == class_name)
    if subject:
        query = query.filter(Book.subject == subject)
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(db.or_(
            Book.title.ilike(term),
            Book.author.ilike(term),
            Book.isbn.ilike(term),
        ))

    total = query.count()
    books = (
        query.order_by(Book.class_name.asc(), Book.subject.asc(), Book.title.asc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return books, total
