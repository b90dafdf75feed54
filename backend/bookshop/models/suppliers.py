from __future__ import annotations

from ..extensions import db
from bookshop.time_utils import to_utc_z, to_iso_date

class Supplier(db.Model):
    """
    Book supplier.

    BALANCE SIGN: positive means the shop owes the supplier.
    balance_cents is a cache of the ledger fold (supply orders minus payments)
    and is written only by services.supplier_service in the same transaction
    that records the order or payment.
    """
    __tablename__ = "suppliers"
    __table_args__ = (
        db.Index("ix_suppliers_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    contact = db.Column(db.String(64), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.Text, nullable=True)

    balance_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "contact": self.contact,
            "email": self.email,
            "address": self.address,
            "balance_cents": self.balance_cents,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }


class SupplyOrder(db.Model):
    """
    Books supplied on credit. Increases the supplier balance by total_amount_cents.

    LIFECYCLE:
    1. pending: recorded, books not yet checked in
    2. received: books checked in (stock additions posted)
    3. cancelled: terminal; amount reversed from the balance, excluded from the ledger
    """
    __tablename__ = "supply_orders"
    __table_args__ = (
        db.Index("ix_supply_orders_supplier_date", "supplier_id", "supply_date"),
        db.Index("ix_supply_orders_status_due", "status", "expected_payment_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)

    document_number = db.Column(db.String(64), nullable=False, unique=True)
    invoice_number = db.Column(db.String(64), nullable=True)

    total_amount_cents = db.Column(db.Integer, nullable=False)

    supply_date = db.Column(db.Date, nullable=False)
    expected_payment_date = db.Column(db.Date, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    supplier = db.relationship("Supplier", backref=db.backref("supply_orders", lazy=True))

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "supplier_id": self.supplier_id,
            "document_number": self.document_number,
            "invoice_number": self.invoice_number,
            "total_amount_cents": self.total_amount_cents,
            "supply_date": to_iso_date(self.supply_date),
            "expected_payment_date": to_iso_date(self.expected_payment_date),
            "status": self.status,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "received_at": to_utc_z(self.received_at) if self.received_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SupplyOrderItem(db.Model):
    """Individual books on a supply order."""
    __tablename__ = "supply_order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    supply_order_id = db.Column(db.Integer, db.ForeignKey("supply_orders.id"), nullable=False, index=True)
    book_id = db.Column(db.Integer, db.ForeignKey("books.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    cost_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    supply_order = db.relationship(
        "SupplyOrder",
        backref=db.backref("items", lazy=True, order_by="SupplyOrderItem.id"),
    )
    book = db.relationship("Book")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "supply_order_id": self.supply_order_id,
            "book_id": self.book_id,
            "quantity": self.quantity,
            "cost_price_cents": self.cost_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class SupplierPayment(db.Model):
    """
    Money paid to a supplier. Decreases the supplier balance by amount_cents.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "supplier_payments"
    __table_args__ = (
        db.Index("ix_supplier_payments_supplier_date", "supplier_id", "payment_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)

    document_number = db.Column(db.String(64), nullable=False, unique=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(32), nullable=False)
    reference = db.Column(db.String(128), nullable=True)
    payment_date = db.Column(db.Date, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    supplier = db.relationship("Supplier", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "supplier_id": self.supplier_id,
            "document_number": self.document_number,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "reference": self.reference,
            "payment_date": to_iso_date(self.payment_date),
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
