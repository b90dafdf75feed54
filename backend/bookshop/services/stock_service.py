# Overview: Service-layer operations for stock; encapsulates business logic and database work.

"""
Bookshop Stock Invariants (authoritative)

Stock model:
- Every stock change appends exactly one StockHistoryEntry and updates
  exactly one Book.stock, in the same DB transaction.
- Book.stock is a cache of the latest entry's new_stock.
- History is append-only (no updates/deletes).

Arithmetic:
- addition / return:   new_stock = previous_stock + quantity
- wastage / reduction: new_stock = max(0, previous_stock - quantity)
  Over-reduction is absorbed by the floor, not rejected, so for a clamped
  entry new_stock - previous_stock can be smaller than the quantity recorded.

Failures:
- Unknown book -> NotFoundError
- quantity <= 0 -> ValidationError
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..extensions import db
from ..models import Book, StockHistoryEntry, User
from ..validation import ValidationError, require_positive_quantity
from bookshop.time_utils import utcnow
from .concurrency import get_locked, run_with_retry


STOCK_ADDITION = "addition"
STOCK_REDUCTION = "reduction"
STOCK_WASTAGE = "wastage"
STOCK_RETURN = "return"

VALID_STOCK_TYPES = [STOCK_ADDITION, STOCK_REDUCTION, STOCK_WASTAGE, STOCK_RETURN]

INCREASING_TYPES = {STOCK_ADDITION, STOCK_RETURN}


def apply_stock_change(previous_stock: int, entry_type: str, quantity: int) -> int:
    """Pure stock arithmetic for one history entry."""
    if entry_type in INCREASING_TYPES:
        return previous_stock + quantity
    if entry_type in (STOCK_WASTAGE, STOCK_REDUCTION):
        return max(0, previous_stock - quantity)
    raise ValidationError(f"Invalid stock entry type: {entry_type}. Must be one of {VALID_STOCK_TYPES}")


def _append_entry_locked(
    book: Book,
    *,
    entry_type: str,
    quantity: int,
    reference: str | None = None,
    note: str | None = None,
    user: User | None = None,
) -> StockHistoryEntry:
    """Core append without locking, retry, or commit. Caller holds the book row."""
    quantity = require_positive_quantity(quantity)

    previous_stock = book.stock
    new_stock = apply_stock_change(previous_stock, entry_type, quantity)

    entry = StockHistoryEntry(
        book_id=book.id,
        type=entry_type,
        quantity=quantity,
        previous_stock=previous_stock,
        new_stock=new_stock,
        reference=reference,
        note=note,
        user_id=user.id if user else None,
        user_name=user.name if user else None,
        created_at=utcnow(),
    )
    book.stock = new_stock

    db.session.add(entry)
    db.session.flush()
    return entry


def _mutate_stock(
    book_id: int,
    entry_type: str,
    quantity: int,
    *,
    reference: str | None,
    note: str | None,
    user: User | None,
    commit: bool,
) -> StockHistoryEntry:
    # Validate before taking the lock so bad input never touches the DB.
    quantity = require_positive_quantity(quantity)

    if not commit:
        book = get_locked(Book, book_id, "Book")
        return _append_entry_locked(
            book, entry_type=entry_type, quantity=quantity,
            reference=reference, note=note, user=user,
        )

    def _op():
        book = get_locked(Book, book_id, "Book")
        entry = _append_entry_locked(
            book, entry_type=entry_type, quantity=quantity,
            reference=reference, note=note, user=user,
        )
        db.session.commit()
        return entry

    return run_with_retry(_op)


def add_stock(
    book_id: int,
    quantity: int,
    reference: str | None = None,
    note: str | None = None,
    *,
    user: User | None = None,
    commit: bool = True,
) -> StockHistoryEntry:
    """Receive copies into stock (delivery, opening stock, supply order check-in)."""
    return _mutate_stock(
        book_id, STOCK_ADDITION, quantity,
        reference=reference, note=note, user=user, commit=commit,
    )


def mark_wastage(
    book_id: int,
    quantity: int,
    reference: str | None = "Wastage",
    note: str | None = None,
    *,
    user: User | None = None,
    commit: bool = True,
) -> StockHistoryEntry:
    """Write off damaged or lost copies. Floor-clamped at zero."""
    return _mutate_stock(
        book_id, STOCK_WASTAGE, quantity,
        reference=reference, note=note, user=user, commit=commit,
    )


def mark_return(
    book_id: int,
    quantity: int,
    reference: str | None = "Return",
    note: str | None = None,
    *,
    user: User | None = None,
    commit: bool = True,
) -> StockHistoryEntry:
    """Copies returned to the shelf."""
    return _mutate_stock(
        book_id, STOCK_RETURN, quantity,
        reference=reference, note=note, user=user, commit=commit,
    )


def record_sale(
    book_id: int,
    quantity: int,
    reference: str | None = None,
    *,
    user: User | None = None,
    commit: bool = False,
) -> StockHistoryEntry:
    """
    Post a sale reduction.

    Defaults to commit=False: receipt_service calls this inside the receipt
    transaction so the receipt and its reductions commit together.
    """
    return _mutate_stock(
        book_id, STOCK_REDUCTION, quantity,
        reference=reference, note=None, user=user, commit=commit,
    )


def get_stock_history(book_id: int) -> list[StockHistoryEntry]:
    return (
        db.session.query(StockHistoryEntry)
        .filter_by(book_id=book_id)
        .order_by(StockHistoryEntry.id.asc())
        .all()
    )


def get_low_stock_books(include_inactive: bool = False) -> list[Book]:
    """Books with stock <= min_stock, evaluated on demand."""
    query = db.session.query(Book).filter(Book.stock <= Book.min_stock)
    if not include_inactive:
        query = query.filter(Book.is_active.is_(True))
    return query.order_by(Book.class_name.asc(), Book.title.asc()).all()


# =============================================================================
# RECONCILIATION
# =============================================================================

@dataclass
class StockReconciliation:
    book_id: int
    cached_stock: int
    derived_stock: int
    entry_count: int
    # Entry ids whose previous_stock/new_stock disagree with the replay
    broken_links: list[int] = field(default_factory=list)
    repaired: bool = False

    @property
    def consistent(self) -> bool:
        return self.cached_stock == self.derived_stock and not self.broken_links

    def to_dict(self) -> dict:
        return {
            "book_id": self.book_id,
            "cached_stock": self.cached_stock,
            "derived_stock": self.derived_stock,
            "entry_count": self.entry_count,
            "broken_links": self.broken_links,
            "consistent": self.consistent,
            "repaired": self.repaired,
        }


def replay_history(entries: list[StockHistoryEntry]) -> tuple[int, list[int]]:
    """Fold the history from zero. Returns (derived_stock, broken entry ids)."""
    running = 0
    broken = []
    for entry in entries:
        expected = apply_stock_change(running, entry.type, entry.quantity)
        if entry.previous_stock != running or entry.new_stock != expected:
            broken.append(entry.id)
        running = expected
    return running, broken


def recompute_from_history(book_id: int, repair: bool = False) -> StockReconciliation:
    """
    Integrity check: compare the cached Book.stock with a replay of its history.

    With repair=True and drift found, Book.stock is overwritten with the
    derived value (history stays untouched: it is append-only).
    """
    def _op():
        book = get_locked(Book, book_id, "Book")
        entries = get_stock_history(book_id)
        derived, broken = replay_history(entries)

        result = StockReconciliation(
            book_id=book.id,
            cached_stock=book.stock,
            derived_stock=derived,
            entry_count=len(entries),
            broken_links=broken,
        )

        if repair and book.stock != derived:
            book.stock = derived
            result.repaired = True
            db.session.commit()
        return result

    return run_with_retry(_op)
