from __future__ import annotations

from ..extensions import db
from bookshop.time_utils import to_utc_z

class Receipt(db.Model):
    """
    Finalized sale of books to a student.

    WHY: The receipt is the only persisted form of a sale. The cart that
    produced it is transient; every value needed to reprint the receipt is
    copied here (student name, cashier name, line titles and prices).

    IMMUTABLE: created once by services.receipt_service.build_receipt; no
    update or delete operation exists.
    """
    __tablename__ = "receipts"
    __table_args__ = (
        db.Index("ix_receipts_created", "created_at"),
        db.Index("ix_receipts_student_created", "student_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "RCPT-001000")
    receipt_number = db.Column(db.String(64), nullable=False, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False, index=True)
    student_name = db.Column(db.String(255), nullable=False)
    student_class = db.Column(db.String(64), nullable=True)

    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    cashier_name = db.Column(db.String(128), nullable=True)

    # Totals (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_mode = db.Column(db.String(16), nullable=True)  # percent, flat
    discount_value = db.Column(db.Integer, nullable=False, default=0)  # bps for percent, cents for flat
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    paid_cents = db.Column(db.Integer, nullable=False)

    discount_override_used = db.Column(db.Boolean, nullable=False, default=False)

    student = db.relationship("Student", backref=db.backref("receipts", lazy=True))
    cashier = db.relationship("User")

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "receipt_number": self.receipt_number,
            "created_at": to_utc_z(self.created_at),
            "student_id": self.student_id,
            "student_name": self.student_name,
            "student_class": self.student_class,
            "cashier_id": self.cashier_id,
            "cashier_name": self.cashier_name,
            "subtotal_cents": self.subtotal_cents,
            "discount_mode": self.discount_mode,
            "discount_value": self.discount_value,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "paid_cents": self.paid_cents,
            "discount_override_used": self.discount_override_used,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class ReceiptLine(db.Model):
    """Snapshot of one cart line at the moment the receipt was issued."""
    __tablename__ = "receipt_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    receipt_id = db.Column(db.Integer, db.ForeignKey("receipts.id"), nullable=False, index=True)
    book_id = db.Column(db.Integer, db.ForeignKey("books.id"), nullable=False, index=True)

    title = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    # Sale reduction posted for this line
    stock_entry_id = db.Column(db.Integer, db.ForeignKey("stock_history.id"), nullable=True)

    receipt = db.relationship(
        "Receipt",
        backref=db.backref("lines", lazy=True, order_by="ReceiptLine.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receipt_id": self.receipt_id,
            "book_id": self.book_id,
            "title": self.title,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "stock_entry_id": self.stock_entry_id,
        }


class ReceiptPayment(db.Model):
    """
    One tendered payment line of a split payment.

    METHODS: cash, mobile_money, bank_transfer, other
    """
    __tablename__ = "receipt_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    receipt_id = db.Column(db.Integer, db.ForeignKey("receipts.id"), nullable=False, index=True)

    method = db.Column(db.String(32), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    reference = db.Column(db.String(128), nullable=True)

    receipt = db.relationship(
        "Receipt",
        backref=db.backref("payments", lazy=True, order_by="ReceiptPayment.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receipt_id": self.receipt_id,
            "method": self.method,
            "amount_cents": self.amount_cents,
            "reference": self.reference,
        }
