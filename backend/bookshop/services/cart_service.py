# Overview: In-memory cart for a sale in progress.

"""
Cart

The cart is transient: it lives in the caller (UI session or request body)
and is discarded once a receipt is built or the sale is abandoned. Each line
remembers the stock seen when the book was selected; quantity may not
exceed it at selection time.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from ..extensions import db
from ..models import Book
from ..validation import ValidationError, NotFoundError, require_positive_quantity


@dataclass(frozen=True)
class CartLine:
    book_id: int
    title: str
    unit_price_cents: int
    quantity: int
    stock_at_selection: int

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity


class Cart:
    def __init__(self, lines: list[CartLine] | None = None):
        self.lines: list[CartLine] = list(lines or [])

    def __len__(self) -> int:
        return len(self.lines)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def subtotal_cents(self) -> int:
        return sum(line.line_total_cents for line in self.lines)

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    def find(self, book_id: int) -> CartLine | None:
        for line in self.lines:
            if line.book_id == book_id:
                return line
        return None

    def _index(self, book_id: int) -> int:
        for i, line in enumerate(self.lines):
            if line.book_id == book_id:
                return i
        raise NotFoundError(f"Book {book_id} is not in the cart")

    def add_book(self, book: Book, quantity: int = 1, *, enforce_stock: bool = True) -> CartLine:
        """
        Add copies of a book, merging with an existing line for the same book.

        The stock snapshot is refreshed from `book` on every add.
        enforce_stock=False skips the selection-time check; build_receipt
        re-checks stock under a row lock.
        """
        quantity = require_positive_quantity(quantity)
        if not book.is_active:
            raise ValidationError(f"{book.title} is no longer sold")
        if book.selling_price_cents is None:
            raise ValidationError(f"{book.title} has no price")

        existing = self.find(book.id)
        new_quantity = quantity + (existing.quantity if existing else 0)
        if enforce_stock and new_quantity > book.stock:
            raise ValidationError(
                f"Only {book.stock} copies of {book.title} in stock"
            )

        line = CartLine(
            book_id=book.id,
            title=book.title,
            unit_price_cents=book.selling_price_cents,
            quantity=new_quantity,
            stock_at_selection=book.stock,
        )
        if existing:
            self.lines[self._index(book.id)] = line
        else:
            self.lines.append(line)
        return line

    def update_quantity(self, book_id: int, quantity: int) -> CartLine:
        """Set a line's quantity, checked against the stock seen at selection."""
        quantity = require_positive_quantity(quantity)
        i = self._index(book_id)
        line = self.lines[i]
        if quantity > line.stock_at_selection:
            raise ValidationError(
                f"Only {line.stock_at_selection} copies of {line.title} in stock"
            )
        self.lines[i] = replace(line, quantity=quantity)
        return self.lines[i]

    def remove(self, book_id: int) -> None:
        del self.lines[self._index(book_id)]

    def clear(self) -> None:
        self.lines.clear()


def cart_from_payload(items) -> Cart:
    """
    Build a cart from request rows [{"book_id": 1, "quantity": 2}, ...]
    against the current Book records.

    Stock is not checked here: completing the purchase locks the books and
    decides between INSUFFICIENT_STOCK and ALLOW_OVERSELL.
    """
    if not isinstance(items, list):
        raise ValidationError("items must be a list")

    cart = Cart()
    for i, row in enumerate(items):
        if not isinstance(row, dict):
            raise ValidationError(f"items[{i}] must be an object")
        book_id = row.get("book_id")
        if not book_id:
            raise ValidationError(f"items[{i}].book_id is required")
        book = db.session.query(Book).filter_by(id=book_id).first()
        if not book:
            raise NotFoundError(f"Book {book_id} not found")
        cart.add_book(book, row.get("quantity", 1), enforce_stock=False)
    return cart
