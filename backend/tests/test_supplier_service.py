"""
Supplier ledger tests.

Balance sign: positive = shop owes supplier.
"""

from datetime import date

import pytest

from bookshop.models import Book, Supplier
from bookshop.services import supplier_service, stock_service
from bookshop.validation import ValidationError, NotFoundError


def order(supplier, book, *, quantity=10, cost=1900, **kwargs):
    kwargs.setdefault("supply_date", "2026-01-01")
    return supplier_service.record_supply_order(
        supplier.id,
        [{"book_id": book.id, "quantity": quantity, "cost_price_cents": cost}],
        **kwargs,
    )


def test_order_total_and_balance(db_session, supplier, book_a):
    created = supplier_service.record_supply_order(supplier.id, [
        {"book_id": book_a.id, "quantity": 10, "cost_price_cents": 1900},
        {"book_id": book_a.id, "quantity": 2, "cost_price_cents": 500},
    ], supply_date="2026-01-10", invoice_number="INV-001")

    assert created.total_amount_cents == 20000
    assert created.status == "pending"
    assert created.document_number.startswith("SO-")
    assert db_session.get(Supplier, supplier.id).balance_cents == 20000
    # Pending orders do not touch stock
    assert db_session.get(Book, book_a.id).stock == 10


def test_ledger_running_balance_sorted_by_date(db_session, supplier, book_a):
    # Inserted out of date order on purpose
    supplier_service.record_payment(supplier.id, 10000, "bank_transfer", reference="TRX-1", payment_date="2026-01-20")
    order(supplier, book_a, supply_date="2026-01-10", invoice_number="INV-001")

    ledger = supplier_service.get_ledger(supplier.id)

    assert [e.type for e in ledger] == ["supply", "payment"]
    assert [e.amount_cents for e in ledger] == [19000, -10000]
    assert [e.balance_cents for e in ledger] == [19000, 9000]
    assert [e.date for e in ledger] == [date(2026, 1, 10), date(2026, 1, 20)]
    assert ledger[0].reference == "INV-001"
    assert db_session.get(Supplier, supplier.id).balance_cents == 9000


def test_same_day_supply_sorts_before_payment(db_session, supplier, book_a):
    supplier_service.record_payment(supplier.id, 5000, "cash", payment_date="2026-01-10")
    order(supplier, book_a, supply_date="2026-01-10")

    ledger = supplier_service.get_ledger(supplier.id)
    assert [e.type for e in ledger] == ["supply", "payment"]
    assert [e.balance_cents for e in ledger] == [19000, 14000]


def test_overpayment_goes_negative(db_session, supplier):
    supplier_service.record_payment(supplier.id, 3000, "cash")
    assert db_session.get(Supplier, supplier.id).balance_cents == -3000


@pytest.mark.parametrize("amount", [0, -100, 10.5])
def test_payment_amount_must_be_positive_cents(db_session, supplier, amount):
    with pytest.raises(ValidationError):
        supplier_service.record_payment(supplier.id, amount, "cash")


def test_payment_method_validated(db_session, supplier):
    with pytest.raises(ValidationError):
        supplier_service.record_payment(supplier.id, 100, "barter")


def test_unknown_supplier(db_session, book_a):
    with pytest.raises(NotFoundError):
        supplier_service.record_payment(999, 100, "cash")
    with pytest.raises(NotFoundError):
        supplier_service.record_supply_order(999, [{"book_id": book_a.id, "quantity": 1, "cost_price_cents": 1}])
    with pytest.raises(NotFoundError):
        supplier_service.get_ledger(999)


@pytest.mark.parametrize("item", [
    {"quantity": 0, "cost_price_cents": 100},
    {"quantity": 1, "cost_price_cents": -100},
])
def test_order_items_validated(db_session, supplier, book_a, item):
    with pytest.raises(ValidationError):
        supplier_service.record_supply_order(supplier.id, [{"book_id": book_a.id, **item}])
    assert db_session.get(Supplier, supplier.id).balance_cents == 0


def test_order_needs_items(db_session, supplier):
    with pytest.raises(ValidationError):
        supplier_service.record_supply_order(supplier.id, [])


def test_order_unknown_book_rolls_back(db_session, supplier):
    with pytest.raises(NotFoundError):
        supplier_service.record_supply_order(supplier.id, [{"book_id": 999, "quantity": 1, "cost_price_cents": 100}])
    db_session.expire_all()
    assert db_session.get(Supplier, supplier.id).balance_cents == 0
    assert supplier_service.list_supply_orders(supplier_id=supplier.id) == []


class TestOrderStatus:

    def test_receiving_posts_stock_additions(self, db_session, supplier, book_a, admin_user):
        created = order(supplier, book_a, quantity=6, invoice_number="INV-9")
        received = supplier_service.update_supply_order_status(created.id, "received", user=admin_user)

        assert received.status == "received"
        assert received.received_at is not None
        assert db_session.get(Book, book_a.id).stock == 16
        last = stock_service.get_stock_history(book_a.id)[-1]
        assert (last.type, last.quantity, last.reference) == ("addition", 6, "INV-9")
        # Receiving does not change what is owed
        assert db_session.get(Supplier, supplier.id).balance_cents == 6 * 1900

    def test_order_recorded_as_received(self, db_session, supplier, book_a):
        order(supplier, book_a, quantity=4, status="received")
        assert db_session.get(Book, book_a.id).stock == 14

    def test_cancel_reverses_balance_and_leaves_ledger(self, db_session, supplier, book_a):
        keep = order(supplier, book_a, supply_date="2026-01-05")
        dropped = order(supplier, book_a, quantity=1, cost=700, supply_date="2026-01-06")
        assert db_session.get(Supplier, supplier.id).balance_cents == 19700

        supplier_service.update_supply_order_status(dropped.id, "cancelled")

        db_session.expire_all()
        assert db_session.get(Supplier, supplier.id).balance_cents == 19000
        ledger = supplier_service.get_ledger(supplier.id)
        assert [e.entry_id for e in ledger] == [keep.id]
        assert supplier_service.recompute_balance(supplier.id).consistent

    @pytest.mark.parametrize("path", [
        ["received", "pending"],
        ["cancelled", "received"],
        ["cancelled", "pending"],
    ])
    def test_invalid_transitions(self, db_session, supplier, book_a, path):
        created = order(supplier, book_a)
        supplier_service.update_supply_order_status(created.id, path[0])
        with pytest.raises(ValidationError):
            supplier_service.update_supply_order_status(created.id, path[1])

    def test_unknown_status(self, db_session, supplier, book_a):
        created = order(supplier, book_a)
        with pytest.raises(ValidationError):
            supplier_service.update_supply_order_status(created.id, "lost")


class TestDueDates:

    TODAY = date(2026, 3, 1)

    @pytest.fixture
    def orders(self, db_session, supplier, book_a):
        o = {}
        o["pending_past"] = order(supplier, book_a, expected_payment_date="2026-02-01")
        o["received_past"] = order(supplier, book_a, expected_payment_date="2026-02-15", status="received")
        o["received_future"] = order(supplier, book_a, expected_payment_date="2026-04-01", status="received")
        o["cancelled_past"] = order(supplier, book_a, expected_payment_date="2026-01-15")
        supplier_service.update_supply_order_status(o["cancelled_past"].id, "cancelled")
        o["no_due_date"] = order(supplier, book_a)
        o["due_today"] = order(supplier, book_a, expected_payment_date="2026-03-01")
        o["due_in_7"] = order(supplier, book_a, expected_payment_date="2026-03-08")
        o["due_in_8"] = order(supplier, book_a, expected_payment_date="2026-03-09")
        return {k: v.id for k, v in o.items()}

    def test_overdue(self, orders):
        overdue = [o.id for o in supplier_service.get_overdue(today=self.TODAY)]
        assert overdue == [orders["pending_past"], orders["received_past"]]

    def test_upcoming_is_inclusive(self, orders):
        upcoming = [o.id for o in supplier_service.get_upcoming(7, today=self.TODAY)]
        assert upcoming == [orders["due_today"], orders["due_in_7"]]

    def test_upcoming_default_window_from_config(self, app, orders, monkeypatch):
        monkeypatch.setitem(app.config, "UPCOMING_PAYMENT_DAYS", 8)
        upcoming = [o.id for o in supplier_service.get_upcoming(today=self.TODAY)]
        assert orders["due_in_8"] in upcoming

    def test_due_date_before_supply_date_rejected(self, db_session, supplier, book_a):
        with pytest.raises(ValidationError):
            order(supplier, book_a, supply_date="2026-02-01", expected_payment_date="2026-01-01")


class TestReconcileAndAnalytics:

    def test_drift_repaired(self, db_session, supplier, book_a):
        order(supplier, book_a)
        supplier_service.record_payment(supplier.id, 4000, "cash")

        row = db_session.get(Supplier, supplier.id)
        row.balance_cents = 1
        db_session.commit()

        result = supplier_service.recompute_balance(supplier.id)
        assert not result.consistent
        assert result.derived_balance_cents == 15000

        result = supplier_service.recompute_balance(supplier.id, repair=True)
        assert result.repaired
        db_session.expire_all()
        assert db_session.get(Supplier, supplier.id).balance_cents == 15000

    def test_analytics(self, db_session, supplier, book_a):
        order(supplier, book_a, supply_date="2026-01-05")
        order(supplier, book_a, quantity=5, cost=1000, supply_date="2026-02-05")
        supplier_service.record_payment(supplier.id, 9000, "cheque", payment_date="2026-02-10")

        stats = supplier_service.supplier_analytics(supplier.id, today=date(2026, 3, 1))
        assert stats.total_supplies_cents == 24000
        assert stats.total_payments_cents == 9000
        assert stats.outstanding_balance_cents == 15000
        assert stats.order_count == 2
        assert stats.average_order_value_cents == 12000
        assert stats.last_order_date == date(2026, 2, 5)


def test_supplier_crud(db_session, supplier):
    updated = supplier_service.update_supplier(supplier.id, {"contact": "0550000000"})
    assert updated.contact == "0550000000"

    with pytest.raises(ValidationError):
        supplier_service.update_supplier(supplier.id, {"balance_cents": 0})

    supplier_service.deactivate_supplier(supplier.id)
    items, total = supplier_service.list_suppliers()
    assert total == 0
    items, total = supplier_service.list_suppliers(include_inactive=True, search="accra")
    assert total == 1
