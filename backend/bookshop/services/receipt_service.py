# Overview: Service-layer operations for receipts; encapsulates business logic and database work.

"""
Receipt Builder

WHY: A receipt is the immutable record of a finished sale. It is built in
one transaction together with the stock reductions for every line, so an
issued receipt and Book.stock can never disagree.

GATES (all must pass before anything is written):
- cart is not empty
- discount is authorized for the acting user (discount_service)
- payment lines add up exactly to the post-discount total (payment_service)
- each line is covered by current stock, unless ALLOW_OVERSELL is set
  (then the reduction is floor-clamped at zero like wastage)

IMMUTABLE: No update or delete operation exists. Print/resend/export are
read-only projections (receipt_text, export_receipts_csv).
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import Book, Receipt, ReceiptLine, ReceiptPayment, Student, User
from ..validation import ValidationError, NotFoundError
from bookshop.time_utils import utcnow, parse_iso_datetime
from .cart_service import Cart
from .concurrency import lock_for_update, run_with_retry
from .discount_service import (
    DEFAULT_POLICY,
    Discount,
    DiscountPolicy,
    DiscountResult,
    compute_discount,
    policy_from_config,
)
from .document_service import next_document_number
from .payment_service import PaymentLine, PaymentValidation, validate_payments, VALID_PAYMENT_METHODS
from . import stock_service


RECEIPT_DOCUMENT_TYPE = "RECEIPT"

ERROR_EMPTY_CART = "EMPTY_CART"
ERROR_UNAUTHORIZED_DISCOUNT = "UNAUTHORIZED_DISCOUNT"
ERROR_PAYMENT_MISMATCH = "PAYMENT_MISMATCH"
ERROR_INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"


class ReceiptError(ValidationError):
    """Raised when a purchase cannot be completed. `code` names the failed gate."""
    def __init__(self, message: str, code: str, details: dict | None = None):
        super().__init__(message)
        self.code = code
        self.details = details or {}


@dataclass(frozen=True)
class PurchaseQuote:
    subtotal_cents: int
    discount: DiscountResult
    total_cents: int
    payments: PaymentValidation
    cart_empty: bool

    @property
    def can_complete(self) -> bool:
        return not self.cart_empty and self.discount.authorized and self.payments.valid

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount.amount_cents,
            "discount_authorized": self.discount.authorized,
            "discount_requires_override": self.discount.requires_override,
            "total_cents": self.total_cents,
            "paid_cents": self.payments.sum_cents,
            "remaining_cents": self.payments.remaining_cents,
            "payments_valid": self.payments.valid,
            "payment_errors": list(self.payments.errors),
            "cart_empty": self.cart_empty,
            "can_complete": self.can_complete,
        }


def quote_purchase(
    cart: Cart,
    discount: Discount,
    actor_role: str,
    payments: list[PaymentLine],
    *,
    override_code: str | None = None,
    policy: DiscountPolicy | None = None,
) -> PurchaseQuote:
    """
    Totals and gate state for a cart. Pure: nothing is read or written.

    This is what enables or disables "complete purchase".
    """
    subtotal = cart.subtotal_cents
    discount_result = compute_discount(
        subtotal,
        discount,
        actor_role,
        override_code=override_code,
        policy=policy or DEFAULT_POLICY,
    )
    total = subtotal - discount_result.amount_cents
    return PurchaseQuote(
        subtotal_cents=subtotal,
        discount=discount_result,
        total_cents=total,
        payments=validate_payments(payments, total),
        cart_empty=cart.is_empty,
    )


def _check_gates(quote: PurchaseQuote) -> None:
    if quote.cart_empty:
        raise ReceiptError("Cannot complete a purchase with an empty cart", ERROR_EMPTY_CART)
    if not quote.discount.authorized:
        raise ReceiptError(
            "Discount exceeds the cashier limit; an override code is required",
            ERROR_UNAUTHORIZED_DISCOUNT,
        )
    if not quote.payments.valid:
        raise ReceiptError(
            "Payment lines must add up to the total",
            ERROR_PAYMENT_MISMATCH,
            details={
                "total_cents": quote.total_cents,
                "paid_cents": quote.payments.sum_cents,
                "errors": list(quote.payments.errors),
            },
        )


def _lock_books_and_check_stock(lines, allow_oversell: bool) -> None:
    requested: dict[int, int] = {}
    for line in lines:
        requested[line.book_id] = requested.get(line.book_id, 0) + line.quantity

    insufficient = []
    for book_id in sorted(requested):
        book = lock_for_update(db.session.query(Book).filter_by(id=book_id)).first()
        if not book:
            raise NotFoundError(f"Book {book_id} not found")
        if book.stock < requested[book_id]:
            insufficient.append({
                "book_id": book_id,
                "title": book.title,
                "requested_quantity": requested[book_id],
                "in_stock": book.stock,
            })

    if insufficient and not allow_oversell:
        raise ReceiptError(
            "Insufficient stock to complete purchase",
            ERROR_INSUFFICIENT_STOCK,
            details={"items": insufficient},
        )


def build_receipt(
    cart: Cart,
    student_id: int,
    discount: Discount,
    payments: list[PaymentLine],
    *,
    actor: User,
    override_code: str | None = None,
) -> Receipt:
    """
    Turn a validated cart into an issued receipt.

    Copies cart lines and payment lines (later cart changes cannot reach the
    receipt), allocates the receipt number from the database sequence, and
    posts one sale reduction per line, all in a single commit.

    Raises:
        ReceiptError: A gate failed (see module docstring); nothing written
        NotFoundError: Unknown student or book
    """
    config = current_app.config
    policy = policy_from_config(config)
    allow_oversell = bool(config.get("ALLOW_OVERSELL", False))

    # Snapshot now; the caller keeps its cart.
    lines = list(cart.lines)
    payment_lines = list(payments)
    quote = quote_purchase(
        Cart(lines), discount, actor.role, payment_lines,
        override_code=override_code, policy=policy,
    )
    if override_code and quote.discount.requires_override and not quote.discount.authorized:
        current_app.logger.warning("Rejected discount override code from user %s", actor.id)
    _check_gates(quote)

    def _op():
        student = db.session.query(Student).filter_by(id=student_id).first()
        if not student:
            raise NotFoundError(f"Student {student_id} not found")

        _lock_books_and_check_stock(lines, allow_oversell)

        receipt_number = next_document_number(
            document_type=RECEIPT_DOCUMENT_TYPE,
            prefix=config.get("RECEIPT_NUMBER_PREFIX", "RCPT"),
            start=int(config.get("RECEIPT_NUMBER_START", 1000)),
        )

        receipt = Receipt(
            receipt_number=receipt_number,
            created_at=utcnow(),
            student_id=student.id,
            student_name=student.name,
            student_class=student.class_name,
            cashier_id=actor.id,
            cashier_name=actor.name,
            subtotal_cents=quote.subtotal_cents,
            discount_mode=discount.mode if quote.discount.amount_cents else None,
            discount_value=discount.value if quote.discount.amount_cents else 0,
            discount_cents=quote.discount.amount_cents,
            total_cents=quote.total_cents,
            paid_cents=quote.payments.sum_cents,
            discount_override_used=quote.discount.override_used,
        )
        db.session.add(receipt)
        db.session.flush()

        for line in lines:
            entry = stock_service.record_sale(
                line.book_id,
                line.quantity,
                reference=receipt_number,
                user=actor,
                commit=False,
            )
            db.session.add(ReceiptLine(
                receipt_id=receipt.id,
                book_id=line.book_id,
                title=line.title,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                line_total_cents=line.line_total_cents,
                stock_entry_id=entry.id,
            ))

        for payment in payment_lines:
            db.session.add(ReceiptPayment(
                receipt_id=receipt.id,
                method=payment.method,
                amount_cents=payment.amount_cents,
                reference=payment.reference,
            ))

        db.session.commit()
        return receipt

    receipt = run_with_retry(_op)

    if receipt.discount_override_used:
        current_app.logger.info(
            "Discount override accepted on %s by user %s", receipt.receipt_number, actor.id
        )
    current_app.logger.info(
        "Issued receipt %s total=%s lines=%s", receipt.receipt_number, receipt.total_cents, len(lines)
    )
    return receipt


# =============================================================================
# READ-ONLY PROJECTIONS
# =============================================================================

def get_receipt(receipt_id: int) -> Receipt:
    receipt = db.session.query(Receipt).filter_by(id=receipt_id).first()
    if not receipt:
        raise NotFoundError(f"Receipt {receipt_id} not found")
    return receipt


def get_receipt_by_number(receipt_number: str) -> Receipt:
    receipt = db.session.query(Receipt).filter_by(receipt_number=receipt_number).first()
    if not receipt:
        raise NotFoundError(f"Receipt {receipt_number} not found")
    return receipt


def _parse_bound(value) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"Invalid datetime: {value}")


def list_receipts(
    *,
    start=None,
    end=None,
    student_id: int | None = None,
    cashier_id: int | None = None,
    payment_method: str | None = None,
    limit: int | None = 100,
    offset: int = 0,
) -> tuple[list[Receipt], int]:
    """Receipt history, newest first. Bounds are inclusive."""
    query = db.session.query(Receipt)

    start_dt = _parse_bound(start)
    end_dt = _parse_bound(end)
    if start_dt:
        query = query.filter(Receipt.created_at >= start_dt)
    if end_dt:
        query = query.filter(Receipt.created_at <= end_dt)
    if student_id:
        query = query.filter(Receipt.student_id == student_id)
    if cashier_id:
        query = query.filter(Receipt.cashier_id == cashier_id)
    if payment_method:
        if payment_method not in VALID_PAYMENT_METHODS:
            raise ValidationError(f"Invalid payment method: {payment_method}")
        query = query.filter(
            Receipt.payments.any(ReceiptPayment.method == payment_method)
        )

    total = query.count()
    receipts = (
        query.order_by(Receipt.created_at.desc(), Receipt.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return receipts, total


def format_money(cents: int, symbol: str = "", grouping: bool = True) -> str:
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    whole = f"{cents // 100:,}" if grouping else str(cents // 100)
    return f"{sign}{symbol}{whole}.{cents % 100:02d}"


def receipt_text(receipt: Receipt, currency_symbol: str = "") -> str:
    """Plain-text receipt for printing or sending over WhatsApp/email."""
    money = lambda cents: format_money(cents, currency_symbol)  # noqa: E731

    student = receipt.student_name
    if receipt.student_class:
        student = f"{student} ({receipt.student_class})"

    out = [
        "Bookshop Receipt",
        f"Receipt ID: {receipt.receipt_number}",
        f"Date: {receipt.created_at:%Y-%m-%d %H:%M}",
        f"Student: {student}",
    ]
    if receipt.cashier_name:
        out.append(f"Cashier: {receipt.cashier_name}")

    out += ["", "Items:"]
    for line in receipt.lines:
        out.append(f"- {line.title} x{line.quantity} @ {money(line.unit_price_cents)} = {money(line.line_total_cents)}")

    out += ["", f"Subtotal: {money(receipt.subtotal_cents)}"]
    if receipt.discount_cents > 0:
        out.append(f"Discount: -{money(receipt.discount_cents)}")
    out.append(f"Total: {money(receipt.total_cents)}")

    out += ["", "Payments:"]
    for payment in receipt.payments:
        label = payment.method.replace("_", " ").title()
        ref = f" (Ref: {payment.reference})" if payment.reference else ""
        out.append(f"- {label}: {money(payment.amount_cents)}{ref}")

    return "\n".join(out)


EXPORT_COLUMNS = [
    "Receipt ID", "Date", "Student", "Class", "Cashier",
    "Payment", "Subtotal", "Discount", "Total", "Paid",
]


def export_receipts_csv(receipts: list[Receipt]) -> str:
    """One row per receipt; amounts as plain decimals."""
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(EXPORT_COLUMNS)
    for r in receipts:
        writer.writerow([
            r.receipt_number,
            r.created_at.strftime("%Y-%m-%d %H:%M"),
            r.student_name,
            r.student_class or "",
            r.cashier_name or "",
            "+".join(p.method for p in r.payments),
            format_money(r.subtotal_cents, grouping=False),
            format_money(r.discount_cents, grouping=False),
            format_money(r.total_cents, grouping=False),
            format_money(r.paid_cents, grouping=False),
        ])
    return buf.getvalue()
