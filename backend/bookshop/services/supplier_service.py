# Overview: Service-layer operations for suppliers; encapsulates business logic and database work.

"""
Supplier Service

WHY: Books are bought from suppliers on credit. Supply orders increase what
the shop owes; payments decrease it.

BALANCE SIGN: positive = shop owes supplier. Both mutating paths use this
convention:
- record_supply_order: balance += total_amount_cents
- record_payment:      balance -= amount_cents
- cancelling an order: balance -= total_amount_cents (order leaves the ledger)

LEDGER: get_ledger() is a projection recomputed on every read: this
supplier's non-cancelled orders (+) and payments (-) sorted by date, with a
running balance folded left to right. Supplier.balance_cents is a cache of
the same fold; recompute_balance() checks it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta

from flask import current_app

from ..extensions import db
from ..models import Book, Supplier, SupplyOrder, SupplyOrderItem, SupplierPayment, User
from ..validation import (
    ValidationError,
    NotFoundError,
    ModelValidationPolicy,
    validate_payload,
    require_positive_quantity,
    require_cents,
)
from bookshop.time_utils import utcnow, today as current_date, parse_iso_date, to_iso_date
from .concurrency import get_locked, run_with_retry
from .document_service import next_document_number
from . import stock_service


ORDER_PENDING = "pending"
ORDER_RECEIVED = "received"
ORDER_CANCELLED = "cancelled"

VALID_ORDER_STATUSES = [ORDER_PENDING, ORDER_RECEIVED, ORDER_CANCELLED]

# Orders that still represent money owed
OPEN_ORDER_STATUSES = [ORDER_PENDING, ORDER_RECEIVED]

ALLOWED_TRANSITIONS = {
    ORDER_PENDING: {ORDER_RECEIVED, ORDER_CANCELLED},
    ORDER_RECEIVED: {ORDER_CANCELLED},
    ORDER_CANCELLED: set(),
}

SUPPLIER_PAYMENT_METHODS = ["cash", "bank_transfer", "cheque", "mobile_money", "other"]

SUPPLIER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "contact", "email", "address"},
    required_on_create={"name"},
)


def _parse_date(value, field_name: str, *, required: bool = False) -> date | None:
    try:
        parsed = parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{field_name} must be an ISO-8601 date")
    if parsed is None and required:
        raise ValidationError(f"{field_name} is required")
    return parsed


# =============================================================================
# SUPPLIERS
# =============================================================================

def create_supplier(payload: dict) -> Supplier:
    patch = validate_payload(model=Supplier, payload=payload, policy=SUPPLIER_POLICY, partial=False)
    supplier = Supplier(**patch, balance_cents=0, is_active=True)
    db.session.add(supplier)
    db.session.commit()
    return supplier


def get_supplier(supplier_id: int) -> Supplier:
    supplier = db.session.query(Supplier).filter_by(id=supplier_id).first()
    if not supplier:
        raise NotFoundError(f"Supplier {supplier_id} not found")
    return supplier


def update_supplier(supplier_id: int, payload: dict) -> Supplier:
    """Update contact details. The balance is never writable here."""
    patch = validate_payload(model=Supplier, payload=payload, policy=SUPPLIER_POLICY, partial=True)

    def _op():
        supplier = get_locked(Supplier, supplier_id, "Supplier")
        for key, value in patch.items():
            setattr(supplier, key, value)
        db.session.commit()
        return supplier

    return run_with_retry(_op)


def deactivate_supplier(supplier_id: int) -> Supplier:
    def _op():
        supplier = get_locked(Supplier, supplier_id, "Supplier")
        supplier.is_active = False
        db.session.commit()
        return supplier

    return run_with_retry(_op)


def list_suppliers(
    *,
    include_inactive: bool = False,
    search: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[Supplier], int]:
    query = db.session.query(Supplier)
    if not include_inactive:
        query = query.filter(Supplier.is_active.is_(True))
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(db.or_(Supplier.name.ilike(term), Supplier.email.ilike(term)))

    total = query.count()
    suppliers = query.order_by(Supplier.name.asc()).offset(offset).limit(limit).all()
    return suppliers, total


# =============================================================================
# SUPPLY ORDERS
# =============================================================================

def _post_order_stock(order: SupplyOrder, user: User | None) -> None:
    reference = order.invoice_number or order.document_number
    for item in order.items:
        stock_service.add_stock(
            item.book_id,
            item.quantity,
            reference=reference,
            note=f"Supply order {order.document_number}",
            user=user,
            commit=False,
        )
    order.received_at = utcnow()


def record_supply_order(
    supplier_id: int,
    items: list[dict],
    *,
    supply_date=None,
    invoice_number: str | None = None,
    expected_payment_date=None,
    status: str = ORDER_PENDING,
    notes: str | None = None,
    user: User | None = None,
) -> SupplyOrder:
    """
    Record books supplied on credit and add the order total to the balance.

    items: [{"book_id": 1, "quantity": 10, "cost_price_cents": 1900}, ...]
    An order recorded directly as "received" also posts its stock additions.

    Raises:
        NotFoundError: Unknown supplier or book
        ValidationError: Empty items, quantity <= 0, negative cost, bad status/date
    """
    if status not in (ORDER_PENDING, ORDER_RECEIVED):
        raise ValidationError(f"New supply orders must be {ORDER_PENDING} or {ORDER_RECEIVED}")
    if not items or not isinstance(items, list):
        raise ValidationError("A supply order needs at least one item")

    parsed_items = []
    for i, row in enumerate(items):
        if not isinstance(row, dict):
            raise ValidationError(f"items[{i}] must be an object")
        book_id = row.get("book_id")
        if not book_id:
            raise ValidationError(f"items[{i}].book_id is required")
        quantity = require_positive_quantity(row.get("quantity"), f"items[{i}].quantity")
        cost = require_cents(row.get("cost_price_cents"), f"items[{i}].cost_price_cents")
        parsed_items.append((book_id, quantity, cost))

    supply_dt = _parse_date(supply_date, "supply_date") or current_date()
    due_dt = _parse_date(expected_payment_date, "expected_payment_date")
    if due_dt and due_dt < supply_dt:
        raise ValidationError("expected_payment_date cannot be before supply_date")

    def _op():
        supplier = get_locked(Supplier, supplier_id, "Supplier")
        if not supplier.is_active:
            raise ValidationError("Supplier is inactive")

        order = SupplyOrder(
            supplier_id=supplier.id,
            document_number=next_document_number(document_type="SUPPLY_ORDER", prefix="SO"),
            invoice_number=(invoice_number or "").strip() or None,
            total_amount_cents=0,
            supply_date=supply_dt,
            expected_payment_date=due_dt,
            status=status,
            notes=notes,
            created_by_user_id=user.id if user else None,
            created_at=utcnow(),
        )
        db.session.add(order)
        db.session.flush()

        total = 0
        for book_id, quantity, cost in parsed_items:
            if not db.session.query(Book.id).filter_by(id=book_id).first():
                raise NotFoundError(f"Book {book_id} not found")
            line_total = quantity * cost
            total += line_total
            db.session.add(SupplyOrderItem(
                supply_order_id=order.id,
                book_id=book_id,
                quantity=quantity,
                cost_price_cents=cost,
                line_total_cents=line_total,
            ))
        db.session.flush()

        order.total_amount_cents = total
        supplier.balance_cents += total

        if status == ORDER_RECEIVED:
            _post_order_stock(order, user)

        db.session.commit()
        return order

    return run_with_retry(_op)


def get_supply_order(order_id: int) -> SupplyOrder:
    order = db.session.query(SupplyOrder).filter_by(id=order_id).first()
    if not order:
        raise NotFoundError(f"Supply order {order_id} not found")
    return order


def update_supply_order_status(order_id: int, status: str, *, user: User | None = None) -> SupplyOrder:
    """
    Move an order through its lifecycle.

    - pending -> received: posts one stock addition per item
    - pending/received -> cancelled: reverses the order total from the balance
      (stock already received stays; correct it with wastage if needed)
    """
    if status not in VALID_ORDER_STATUSES:
        raise ValidationError(f"Invalid status: {status}. Must be one of {VALID_ORDER_STATUSES}")

    def _op():
        order = get_locked(SupplyOrder, order_id, "Supply order")
        if status == order.status:
            return order
        if status not in ALLOWED_TRANSITIONS[order.status]:
            raise ValidationError(f"Cannot change supply order from {order.status} to {status}")

        supplier = get_locked(Supplier, order.supplier_id, "Supplier")

        if status == ORDER_RECEIVED:
            _post_order_stock(order, user)
        elif status == ORDER_CANCELLED:
            supplier.balance_cents -= order.total_amount_cents
            order.cancelled_at = utcnow()

        order.status = status
        db.session.commit()
        return order

    return run_with_retry(_op)


def list_supply_orders(
    *,
    supplier_id: int | None = None,
    status: str | None = None,
) -> list[SupplyOrder]:
    query = db.session.query(SupplyOrder)
    if supplier_id:
        query = query.filter(SupplyOrder.supplier_id == supplier_id)
    if status:
        if status not in VALID_ORDER_STATUSES:
            raise ValidationError(f"Invalid status: {status}")
        query = query.filter(SupplyOrder.status == status)
    return query.order_by(SupplyOrder.supply_date.desc(), SupplyOrder.id.desc()).all()


# =============================================================================
# PAYMENTS
# =============================================================================

def record_payment(
    supplier_id: int,
    amount_cents: int,
    payment_method: str,
    *,
    reference: str | None = None,
    payment_date=None,
    notes: str | None = None,
    user: User | None = None,
) -> SupplierPayment:
    """
    Record money paid to a supplier and subtract it from the balance.

    Overpayment is allowed: the balance goes negative (supplier owes the shop).
    """
    amount_cents = require_cents(amount_cents, "amount_cents", allow_zero=False)
    method = (payment_method or "").strip().lower()
    if method not in SUPPLIER_PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {payment_method}. Must be one of {SUPPLIER_PAYMENT_METHODS}")
    paid_on = _parse_date(payment_date, "payment_date") or current_date()

    def _op():
        supplier = get_locked(Supplier, supplier_id, "Supplier")

        payment = SupplierPayment(
            supplier_id=supplier.id,
            document_number=next_document_number(document_type="SUPPLIER_PAYMENT", prefix="PAY"),
            amount_cents=amount_cents,
            payment_method=method,
            reference=(reference or "").strip() or None,
            payment_date=paid_on,
            notes=notes,
            created_by_user_id=user.id if user else None,
            created_at=utcnow(),
        )
        db.session.add(payment)
        supplier.balance_cents -= amount_cents

        db.session.commit()
        return payment

    return run_with_retry(_op)


def list_payments(supplier_id: int) -> list[SupplierPayment]:
    return (
        db.session.query(SupplierPayment)
        .filter_by(supplier_id=supplier_id)
        .order_by(SupplierPayment.payment_date.desc(), SupplierPayment.id.desc())
        .all()
    )


# =============================================================================
# LEDGER
# =============================================================================

@dataclass
class SupplierLedgerEntry:
    entry_id: int
    supplier_id: int
    type: str  # supply, payment
    reference: str
    description: str
    amount_cents: int  # signed: + supply, - payment
    balance_cents: int
    date: date

    def to_dict(self) -> dict:
        return {
            "id": self.entry_id,
            "supplier_id": self.supplier_id,
            "type": self.type,
            "reference": self.reference,
            "description": self.description,
            "amount_cents": self.amount_cents,
            "balance_cents": self.balance_cents,
            "date": to_iso_date(self.date),
        }


def _ledger_rows(supplier_id: int) -> list[tuple]:
    orders = (
        db.session.query(SupplyOrder)
        .filter(
            SupplyOrder.supplier_id == supplier_id,
            SupplyOrder.status != ORDER_CANCELLED,
        )
        .all()
    )
    payments = db.session.query(SupplierPayment).filter_by(supplier_id=supplier_id).all()

    rows = []
    for order in orders:
        rows.append((
            order.supply_date, 0, order.id, "supply",
            order.invoice_number or order.document_number,
            f"Supply Order - {len(order.items)} items",
            order.total_amount_cents,
        ))
    for payment in payments:
        rows.append((
            payment.payment_date, 1, payment.id, "payment",
            payment.reference or payment.document_number,
            f"Payment - {payment.payment_method}",
            -payment.amount_cents,
        ))

    # Date ascending; on the same day supplies come before payments.
    rows.sort(key=lambda row: (row[0], row[1], row[2]))
    return rows


def get_ledger(supplier_id: int) -> list[SupplierLedgerEntry]:
    """Chronological statement with a running balance, recomputed on every call."""
    get_supplier(supplier_id)

    ledger = []
    running = 0
    for entry_date, _, entry_id, entry_type, reference, description, amount in _ledger_rows(supplier_id):
        running += amount
        ledger.append(SupplierLedgerEntry(
            entry_id=entry_id,
            supplier_id=supplier_id,
            type=entry_type,
            reference=reference,
            description=description,
            amount_cents=amount,
            balance_cents=running,
            date=entry_date,
        ))
    return ledger


def get_overdue(today: date | None = None) -> list[SupplyOrder]:
    """Open orders whose expected payment date has passed."""
    today = today or current_date()
    return (
        db.session.query(SupplyOrder)
        .filter(
            SupplyOrder.status.in_(OPEN_ORDER_STATUSES),
            SupplyOrder.expected_payment_date.isnot(None),
            SupplyOrder.expected_payment_date < today,
        )
        .order_by(SupplyOrder.expected_payment_date.asc(), SupplyOrder.id.asc())
        .all()
    )


def get_upcoming(within_days: int | None = None, today: date | None = None) -> list[SupplyOrder]:
    """Open orders due between today and today + within_days (inclusive)."""
    if within_days is None:
        within_days = int(current_app.config.get("UPCOMING_PAYMENT_DAYS", 7))
    if within_days < 0:
        raise ValidationError("within_days must be >= 0")

    today = today or current_date()
    horizon = today + timedelta(days=within_days)
    return (
        db.session.query(SupplyOrder)
        .filter(
            SupplyOrder.status.in_(OPEN_ORDER_STATUSES),
            SupplyOrder.expected_payment_date.isnot(None),
            SupplyOrder.expected_payment_date >= today,
            SupplyOrder.expected_payment_date <= horizon,
        )
        .order_by(SupplyOrder.expected_payment_date.asc(), SupplyOrder.id.asc())
        .all()
    )


# =============================================================================
# RECONCILIATION & ANALYTICS
# =============================================================================

@dataclass
class BalanceReconciliation:
    supplier_id: int
    cached_balance_cents: int
    derived_balance_cents: int
    repaired: bool = False

    @property
    def consistent(self) -> bool:
        return self.cached_balance_cents == self.derived_balance_cents

    def to_dict(self) -> dict:
        return {
            "supplier_id": self.supplier_id,
            "cached_balance_cents": self.cached_balance_cents,
            "derived_balance_cents": self.derived_balance_cents,
            "consistent": self.consistent,
            "repaired": self.repaired,
        }


def recompute_balance(supplier_id: int, repair: bool = False) -> BalanceReconciliation:
    """Compare Supplier.balance_cents with a fresh ledger fold; optionally rewrite it."""
    def _op():
        supplier = get_locked(Supplier, supplier_id, "Supplier")
        derived = sum(row[6] for row in _ledger_rows(supplier_id))

        result = BalanceReconciliation(
            supplier_id=supplier.id,
            cached_balance_cents=supplier.balance_cents,
            derived_balance_cents=derived,
        )
        if repair and not result.consistent:
            supplier.balance_cents = derived
            result.repaired = True
            db.session.commit()
        return result

    return run_with_retry(_op)


@dataclass
class SupplierAnalytics:
    supplier_id: int
    total_supplies_cents: int
    total_payments_cents: int
    outstanding_balance_cents: int
    order_count: int
    average_order_value_cents: int
    last_order_date: date | None = None
    overdue_order_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "supplier_id": self.supplier_id,
            "total_supplies_cents": self.total_supplies_cents,
            "total_payments_cents": self.total_payments_cents,
            "outstanding_balance_cents": self.outstanding_balance_cents,
            "order_count": self.order_count,
            "average_order_value_cents": self.average_order_value_cents,
            "last_order_date": to_iso_date(self.last_order_date),
            "overdue_order_ids": self.overdue_order_ids,
        }


def supplier_analytics(supplier_id: int, today: date | None = None) -> SupplierAnalytics:
    supplier = get_supplier(supplier_id)

    orders = (
        db.session.query(SupplyOrder)
        .filter(
            SupplyOrder.supplier_id == supplier_id,
            SupplyOrder.status != ORDER_CANCELLED,
        )
        .all()
    )
    payments = db.session.query(SupplierPayment).filter_by(supplier_id=supplier_id).all()

    total_supplies = sum(o.total_amount_cents for o in orders)
    total_payments = sum(p.amount_cents for p in payments)
    overdue = [o.id for o in get_overdue(today) if o.supplier_id == supplier_id]

    return SupplierAnalytics(
        supplier_id=supplier.id,
        total_supplies_cents=total_supplies,
        total_payments_cents=total_payments,
        outstanding_balance_cents=supplier.balance_cents,
        order_count=len(orders),
        average_order_value_cents=total_supplies // len(orders) if orders else 0,
        last_order_date=max((o.supply_date for o in orders), default=None),
        overdue_order_ids=overdue,
    )
