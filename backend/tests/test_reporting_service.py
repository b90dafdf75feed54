"""Sales, inventory and student reports built from issued receipts."""

from datetime import timedelta

import pytest

from bookshop.services import reporting_service, student_service
from bookshop.services.cart_service import Cart
from bookshop.services.discount_service import Discount, NO_DISCOUNT
from bookshop.services.payment_service import PaymentLine
from bookshop.services.receipt_service import build_receipt
from bookshop.services.reporting_service import ReportError
from bookshop.time_utils import utcnow
from bookshop.validation import NotFoundError


@pytest.fixture
def sales(db_session, book_a, book_b, student, cashier_user):
    """Two receipts for Ama, one for Kwame."""
    kwame = student_service.create_student({
        "name": "Kwame Boateng",
        "class_name": "JHS 2",
        "roll_number": "JHS2-014",
    })

    cart = Cart()
    cart.add_book(book_a, 2)
    cart.add_book(book_b, 1)
    build_receipt(
        cart, student.id, Discount(mode="flat", value=2000),
        [PaymentLine("cash", 7000), PaymentLine("mobile_money", 5000)],
        actor=cashier_user,
    )

    cart = Cart()
    cart.add_book(book_b, 2)
    build_receipt(cart, student.id, NO_DISCOUNT, [PaymentLine("cash", 8000)], actor=cashier_user)

    cart = Cart()
    cart.add_book(book_a, 1)
    build_receipt(cart, kwame.id, NO_DISCOUNT, [PaymentLine("bank_transfer", 5000)], actor=cashier_user)

    return {"ama": student, "kwame": kwame}


def test_sales_summary_totals(sales, book_a, book_b):
    report = reporting_service.sales_summary(group_by="month")

    assert report["receipt_count"] == 3
    assert report["items_sold"] == 6
    assert report["total_cents"] == 12000 + 8000 + 5000
    assert report["discount_cents"] == 2000
    assert report["by_payment_method"] == {"bank_transfer": 5000, "cash": 15000, "mobile_money": 5000}
    assert len(report["rows"]) == 1
    assert report["rows"][0]["period"] == utcnow().strftime("%Y-%m")

    # Ties on quantity break by book id
    assert [(b["book_id"], b["quantity"]) for b in report["top_books"]] == [(book_a.id, 3), (book_b.id, 3)]
    assert report["top_books"][0]["revenue_cents"] == 15000


def test_sales_summary_range_excludes_everything(sales):
    future = utcnow() + timedelta(days=1)
    report = reporting_service.sales_summary(start=future.isoformat())
    assert report["receipt_count"] == 0
    assert report["rows"] == []
    assert report["by_payment_method"] == {}


@pytest.mark.parametrize("kwargs", [
    {"group_by": "year"},
    {"start": "yesterday"},
    {"start": "2026-02-01T00:00", "end": "2026-01-01T00:00"},
])
def test_sales_summary_rejects_bad_parameters(db_session, kwargs):
    with pytest.raises(ReportError):
        reporting_service.sales_summary(**kwargs)


def test_inventory_summary(sales, book_a, book_b):
    report = reporting_service.inventory_summary()

    # book_a 10 - 3, book_b 5 - 3
    assert report["units_in_stock"] == 9
    assert report["cost_value_cents"] == 7 * 3500 + 2 * 2500
    assert report["retail_value_cents"] == 7 * 5000 + 2 * 4000
    assert [row["book_id"] for row in report["low_stock"]] == [book_b.id]
    assert report["by_class"][0]["class_name"] == "JHS 1"


def test_student_history(sales, book_a, book_b):
    history = reporting_service.student_history(sales["ama"].id)

    assert history["receipt_count"] == 2
    assert history["total_spent_cents"] == 20000
    assert history["total_discount_cents"] == 2000
    books = {b["book_id"]: b["quantity"] for b in history["books"]}
    assert books == {book_a.id: 2, book_b.id: 3}


def test_student_history_unknown(db_session):
    with pytest.raises(NotFoundError):
        reporting_service.student_history(999)


def test_student_purchases_biggest_spender_first(sales):
    report = reporting_service.student_purchases()
    assert [(r["student_name"], r["total_cents"]) for r in report["rows"]] == [
        ("Ama Mensah", 20000),
        ("Kwame Boateng", 5000),
    ]
