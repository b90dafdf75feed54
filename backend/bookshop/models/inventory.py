from __future__ import annotations

from ..extensions import db
from bookshop.time_utils import to_utc_z

class Book(db.Model):
    """
    Book master data.

    STOCK DESIGN DECISION:
    Book.stock is a cache of the latest StockHistoryEntry.new_stock for the book.
    - Only services.stock_service writes it, in the same transaction that
      appends the history entry.
    - CRUD updates (prices, class, subject, ...) never touch it.
    - stock_service.recompute_from_history() replays the history to check it.
    """
    __tablename__ = "books"
    __table_args__ = (
        db.Index("ix_books_class_subject", "class_name", "subject"),
        db.Index("ix_books_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    title = db.Column(db.String(255), nullable=False)
    author = db.Column(db.String(255), nullable=True)
    isbn = db.Column(db.String(32), nullable=True, index=True)

    # School class the book is prescribed for (e.g. "JHS 1")
    class_name = db.Column(db.String(64), nullable=False)
    subject = db.Column(db.String(128), nullable=False)
    book_type = db.Column(db.String(16), nullable=False, default="textbook")  # textbook, workbook, reference, other

    # Authoritative storage in cents (frontend may only format for display)
    selling_price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)

    stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)

    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)
    description = db.Column(db.Text, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    supplier = db.relationship("Supplier", backref=db.backref("books", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_low_stock(self) -> bool:
        return self.stock <= self.min_stock

    def __repr__(self) -> str:
        return f"<Book id={self.id} title={self.title!r} class={self.class_name!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "class_name": self.class_name,
            "subject": self.subject,
            "book_type": self.book_type,
            "selling_price_cents": self.selling_price_cents,
            "cost_price_cents": self.cost_price_cents,
            "stock": self.stock,
            "min_stock": self.min_stock,
            "is_low_stock": self.is_low_stock,
            "supplier_id": self.supplier_id,
            "description": self.description,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

class StockHistoryEntry(db.Model):
    """
    Append-only log of stock changes per book.

    TYPES:
    - addition: new_stock = previous_stock + quantity
    - return:   new_stock = previous_stock + quantity
    - wastage:  new_stock = max(0, previous_stock - quantity)
    - reduction (sale): new_stock = max(0, previous_stock - quantity)

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "stock_history"
    __table_args__ = (
        db.Index("ix_stock_history_book_created", "book_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    book_id = db.Column(db.Integer, db.ForeignKey("books.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    reference = db.Column(db.String(128), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    # Attribution (user_name is a snapshot, users can be renamed)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    user_name = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    book = db.relationship("Book", backref=db.backref("stock_history", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "type": self.type,
            "quantity": self.quantity,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "reference": self.reference,
            "note": self.note,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "created_at": to_utc_z(self.created_at),
        }
