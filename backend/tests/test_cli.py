"""Flask CLI commands: bootstrap, user listing and the integrity checks."""

import pytest

from bookshop.models import Book, Supplier, User
from bookshop.services import supplier_service


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


def test_system_init_is_idempotent(runner, db_session):
    result = runner.invoke(args=["system", "init", "--admin-password", "Password123!"])
    assert result.exit_code == 0
    assert "PASS Created user: admin" in result.output

    roles = {u.username: u.role for u in db_session.query(User).all()}
    assert roles == {"admin": "admin", "cashier": "cashier"}

    result = runner.invoke(args=["system", "init", "--admin-password", "Password123!"])
    assert "already exists" in result.output
    assert db_session.query(User).count() == 2


def test_system_init_rejects_weak_password(runner, db_session):
    result = runner.invoke(args=["system", "init", "--admin-password", "short"])
    assert "FAIL Password validation failed" in result.output
    assert db_session.query(User).count() == 0


def test_users_list(runner, admin_user, cashier_user):
    result = runner.invoke(args=["users", "list"])
    assert result.exit_code == 0
    assert "admin@bookshop.local" in result.output
    assert "cashier@bookshop.local" in result.output


def test_users_create(runner, db_session):
    result = runner.invoke(args=[
        "users", "create",
        "--username", "efua", "--email", "efua@bookshop.local",
        "--password", "Password123!", "--role", "cashier",
    ])
    assert result.exit_code == 0
    assert db_session.query(User).filter_by(username="efua").one().role == "cashier"


def test_stock_reconcile_reports_and_repairs(runner, db_session, book_a, book_b):
    db_session.get(Book, book_a.id).stock = 99
    db_session.commit()

    result = runner.invoke(args=["stock", "reconcile"])
    assert result.exit_code == 0
    assert f"DRIFT book {book_a.id}: cached=99 derived=10" in result.output
    assert "Checked 2 books, 1 inconsistent" in result.output

    result = runner.invoke(args=["stock", "reconcile", "--book-id", str(book_a.id), "--repair"])
    assert f"REPAIRED book {book_a.id}" in result.output
    db_session.expire_all()
    assert db_session.get(Book, book_a.id).stock == 10


def test_stock_reconcile_unknown_book(runner, db_session):
    result = runner.invoke(args=["stock", "reconcile", "--book-id", "999"])
    assert result.exit_code == 1
    assert "FAIL" in result.output


def test_supplier_reconcile(runner, db_session, supplier, book_a):
    supplier_service.record_supply_order(
        supplier.id, [{"book_id": book_a.id, "quantity": 10, "cost_price_cents": 1900}],
    )
    db_session.get(Supplier, supplier.id).balance_cents = 0
    db_session.commit()

    result = runner.invoke(args=["suppliers", "reconcile", "--repair"])
    assert result.exit_code == 0
    assert f"REPAIRED supplier {supplier.id}: cached=0 derived=19000" in result.output
    db_session.expire_all()
    assert db_session.get(Supplier, supplier.id).balance_cents == 19000
