"""
Receipt builder tests.

A receipt and its stock reductions commit together or not at all.
"""

import csv
import io

import pytest

from bookshop.models import Book, Receipt, StockHistoryEntry
from bookshop.services import receipt_service
from bookshop.services.cart_service import Cart
from bookshop.services.discount_service import Discount, NO_DISCOUNT
from bookshop.services.payment_service import PaymentLine
from bookshop.services.receipt_service import (
    ReceiptError,
    ERROR_EMPTY_CART,
    ERROR_INSUFFICIENT_STOCK,
    ERROR_PAYMENT_MISMATCH,
    ERROR_UNAUTHORIZED_DISCOUNT,
    build_receipt,
    quote_purchase,
)
from bookshop.validation import NotFoundError


def make_cart(*books_and_quantities):
    cart = Cart()
    for book, quantity in books_and_quantities:
        cart.add_book(book, quantity)
    return cart


def test_end_to_end_purchase(db_session, book_a, book_b, student, cashier_user):
    # 2 x 50.00 + 1 x 40.00 = 140.00, flat 20.00 off = 120.00
    cart = make_cart((book_a, 2), (book_b, 1))
    discount = Discount("flat", 2000)
    payments = [PaymentLine("cash", 12000)]

    quote = quote_purchase(cart, discount, cashier_user.role, payments)
    assert quote.subtotal_cents == 14000
    assert quote.total_cents == 12000
    assert quote.can_complete

    receipt = build_receipt(cart, student.id, discount, payments, actor=cashier_user)

    assert receipt.total_cents == 12000
    assert receipt.subtotal_cents == 14000
    assert receipt.discount_cents == 2000
    assert receipt.paid_cents == 12000
    assert len(receipt.lines) == 2
    assert receipt.student_name == "Ama Mensah"
    assert receipt.cashier_name == "Kofi Cashier"

    reductions = (
        db_session.query(StockHistoryEntry)
        .filter_by(type="reduction", reference=receipt.receipt_number)
        .order_by(StockHistoryEntry.id)
        .all()
    )
    assert [(e.book_id, e.quantity) for e in reductions] == [(book_a.id, 2), (book_b.id, 1)]
    assert db_session.get(Book, book_a.id).stock == 8
    assert db_session.get(Book, book_b.id).stock == 4
    assert all(line.stock_entry_id for line in receipt.lines)


def test_receipt_is_a_snapshot_of_the_cart(db_session, book_a, book_b, student, admin_user):
    cart = make_cart((book_a, 1))
    receipt = build_receipt(cart, student.id, NO_DISCOUNT, [PaymentLine("cash", 5000)], actor=admin_user)

    cart.add_book(book_b, 3)
    cart.update_quantity(book_a.id, 5)

    db_session.expire_all()
    stored = db_session.get(Receipt, receipt.id)
    assert [(l.book_id, l.quantity) for l in stored.lines] == [(book_a.id, 1)]
    assert stored.total_cents == 5000


def test_receipt_numbers_are_sequential(db_session, book_a, student, admin_user):
    numbers = []
    for _ in range(3):
        cart = make_cart((book_a, 1))
        receipt = build_receipt(cart, student.id, NO_DISCOUNT, [PaymentLine("cash", 5000)], actor=admin_user)
        numbers.append(receipt.receipt_number)
    assert numbers == ["RCPT-001000", "RCPT-001001", "RCPT-001002"]


def test_split_payment_recorded(db_session, book_a, book_b, student, cashier_user):
    cart = make_cart((book_a, 2), (book_b, 1))
    payments = [PaymentLine("cash", 7000), PaymentLine("mobile_money", 7000, "MM-55")]
    receipt = build_receipt(cart, student.id, NO_DISCOUNT, payments, actor=cashier_user)

    assert [(p.method, p.amount_cents, p.reference) for p in receipt.payments] == [
        ("cash", 7000, None),
        ("mobile_money", 7000, "MM-55"),
    ]


class TestGates:

    def _assert_nothing_written(self, db_session):
        assert db_session.query(Receipt).count() == 0
        assert db_session.query(StockHistoryEntry).filter_by(type="reduction").count() == 0

    def test_empty_cart(self, db_session, student, cashier_user):
        with pytest.raises(ReceiptError) as exc:
            build_receipt(Cart(), student.id, NO_DISCOUNT, [PaymentLine("cash", 100)], actor=cashier_user)
        assert exc.value.code == ERROR_EMPTY_CART
        self._assert_nothing_written(db_session)

    def test_payment_mismatch(self, db_session, book_a, student, cashier_user):
        cart = make_cart((book_a, 1))
        with pytest.raises(ReceiptError) as exc:
            build_receipt(cart, student.id, NO_DISCOUNT, [PaymentLine("cash", 4999)], actor=cashier_user)
        assert exc.value.code == ERROR_PAYMENT_MISMATCH
        assert exc.value.details["paid_cents"] == 4999
        self._assert_nothing_written(db_session)

    def test_cashier_discount_over_ceiling(self, db_session, book_a, student, cashier_user):
        cart = make_cart((book_a, 2))  # 100.00, 15% -> 85.00
        discount = Discount("percent", 1500)
        payments = [PaymentLine("cash", 8500)]

        with pytest.raises(ReceiptError) as exc:
            build_receipt(cart, student.id, discount, payments, actor=cashier_user)
        assert exc.value.code == ERROR_UNAUTHORIZED_DISCOUNT

        with pytest.raises(ReceiptError):
            build_receipt(cart, student.id, discount, payments, actor=cashier_user, override_code="WRONG")
        self._assert_nothing_written(db_session)

        receipt = build_receipt(cart, student.id, discount, payments, actor=cashier_user, override_code="ADMIN123")
        assert receipt.discount_override_used is True
        assert receipt.discount_cents == 1500
        assert receipt.discount_value == 1500

    def test_admin_discount_over_ceiling_allowed(self, db_session, book_a, student, admin_user):
        cart = make_cart((book_a, 2))
        receipt = build_receipt(
            cart, student.id, Discount("percent", 2500), [PaymentLine("cash", 7500)], actor=admin_user,
        )
        assert receipt.total_cents == 7500
        assert receipt.discount_override_used is False

    def test_insufficient_stock_at_finalization(self, db_session, book_b, student, admin_user):
        cart = make_cart((book_b, 5))
        # Stock drops after the book was put in the cart
        from bookshop.services import stock_service
        stock_service.mark_wastage(book_b.id, 3)

        with pytest.raises(ReceiptError) as exc:
            build_receipt(cart, student.id, NO_DISCOUNT, [PaymentLine("cash", 20000)], actor=admin_user)
        assert exc.value.code == ERROR_INSUFFICIENT_STOCK
        assert exc.value.details["items"][0]["in_stock"] == 2
        self._assert_nothing_written(db_session)

    def test_oversell_allowed_when_configured(self, app, db_session, book_b, student, admin_user, monkeypatch):
        monkeypatch.setitem(app.config, "ALLOW_OVERSELL", True)
        cart = make_cart((book_b, 5))
        from bookshop.services import stock_service
        stock_service.mark_wastage(book_b.id, 3)

        receipt = build_receipt(cart, student.id, NO_DISCOUNT, [PaymentLine("cash", 20000)], actor=admin_user)
        assert receipt.total_cents == 20000
        assert db_session.get(Book, book_b.id).stock == 0

    def test_unknown_student(self, db_session, book_a, cashier_user):
        cart = make_cart((book_a, 1))
        with pytest.raises(NotFoundError):
            build_receipt(cart, 404, NO_DISCOUNT, [PaymentLine("cash", 5000)], actor=cashier_user)
        self._assert_nothing_written(db_session)
        assert db_session.get(Book, book_a.id).stock == 10


class TestProjections:

    @pytest.fixture
    def receipt(self, db_session, book_a, book_b, student, cashier_user):
        cart = make_cart((book_a, 2), (book_b, 1))
        return build_receipt(
            cart, student.id, Discount("flat", 2000),
            [PaymentLine("cash", 7000), PaymentLine("mobile_money", 5000, "MM1")],
            actor=cashier_user,
        )

    def test_lookup(self, receipt):
        assert receipt_service.get_receipt(receipt.id).id == receipt.id
        assert receipt_service.get_receipt_by_number("RCPT-001000").id == receipt.id
        with pytest.raises(NotFoundError):
            receipt_service.get_receipt_by_number("RCPT-999999")

    def test_list_filters(self, receipt, student):
        items, total = receipt_service.list_receipts(student_id=student.id)
        assert total == 1
        items, total = receipt_service.list_receipts(payment_method="bank_transfer")
        assert total == 0
        items, total = receipt_service.list_receipts(payment_method="mobile_money")
        assert total == 1
        items, total = receipt_service.list_receipts(start="2000-01-01T00:00:00Z", end="2000-12-31T00:00:00Z")
        assert total == 0

    def test_receipt_text(self, receipt):
        text = receipt_service.receipt_text(receipt, "GH₵")
        assert "Receipt ID: RCPT-001000" in text
        assert "Student: Ama Mensah (JHS 1)" in text
        assert "- English for JHS 1 x2 @ GH₵50.00 = GH₵100.00" in text
        assert "Discount: -GH₵20.00" in text
        assert "Total: GH₵120.00" in text
        assert "- Mobile Money: GH₵50.00 (Ref: MM1)" in text

    def test_csv_export(self, receipt):
        rows = list(csv.reader(io.StringIO(receipt_service.export_receipts_csv([receipt]))))
        assert rows[0] == receipt_service.EXPORT_COLUMNS
        assert rows[1][0] == "RCPT-001000"
        assert rows[1][5] == "cash+mobile_money"
        assert rows[1][6:] == ["140.00", "20.00", "120.00", "120.00"]
