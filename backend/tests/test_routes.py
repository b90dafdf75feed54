"""
HTTP API tests.

Exercises the blueprints through the Flask test client: authentication,
role checks, and the purchase / supplier flows end to end.
"""

from bookshop.extensions import db
from bookshop.models import Book, Supplier
from bookshop.services import receipt_service


PASSWORD = "Password123!"


def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


def get_auth_token(client, username, password=PASSWORD):
    response = client.post("/api/auth/login", json={"username": username, "password": password})
    return response.json.get("token") if response.status_code == 200 else None


def purchase_body(student, *items, payments=None, discount=None, **extra):
    body = {
        "student_id": student.id,
        "items": [{"book_id": book.id, "quantity": quantity} for book, quantity in items],
        "payments": payments or [],
    }
    if discount is not None:
        body["discount"] = discount
    body.update(extra)
    return body


class TestAuth:

    def test_health_is_public(self, client, db_session):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json["status"] == "healthy"

    def test_requires_token(self, client, db_session):
        assert client.get("/api/books").status_code == 401
        assert client.post("/api/receipts/quote", json={}).status_code == 401

    def test_garbage_token_rejected(self, client, db_session):
        response = client.get("/api/books", headers=auth_headers("not-a-real-token"))
        assert response.status_code == 401

    def test_login_me_logout(self, client, cashier_user):
        response = client.post("/api/auth/login", json={"username": "cashier", "password": PASSWORD})
        assert response.status_code == 200
        token = response.json["token"]
        assert response.json["user"]["role"] == "cashier"
        assert "password_hash" not in response.json["user"]

        me = client.get("/api/auth/me", headers=auth_headers(token))
        assert me.status_code == 200
        assert me.json["user"]["username"] == "cashier"

        assert client.post("/api/auth/logout", headers=auth_headers(token)).status_code == 200
        assert client.get("/api/auth/me", headers=auth_headers(token)).status_code == 401

    def test_wrong_password(self, client, cashier_user):
        assert get_auth_token(client, "cashier", "wrong-password") is None
        response = client.post("/api/auth/login", json={"username": "cashier", "password": "nope"})
        assert response.status_code == 401

    def test_login_requires_fields(self, client, db_session):
        assert client.post("/api/auth/login", json={"username": "x"}).status_code == 400


class TestRoles:

    def test_cashier_blocked_from_admin_endpoints(self, client, cashier_headers, supplier, book_a):
        assert client.get("/api/users", headers=cashier_headers).status_code == 403
        assert client.get("/api/suppliers", headers=cashier_headers).status_code == 403
        assert client.get("/api/reports/sales", headers=cashier_headers).status_code == 403
        assert client.post("/api/books", headers=cashier_headers, json={}).status_code == 403
        response = client.post(
            f"/api/books/{book_a.id}/stock/add", headers=cashier_headers, json={"quantity": 5},
        )
        assert response.status_code == 403

    def test_cashier_can_browse_books(self, client, cashier_headers, book_a):
        response = client.get("/api/books", headers=cashier_headers)
        assert response.status_code == 200
        assert [b["title"] for b in response.json["items"]] == ["English for JHS 1"]

    def test_admin_creates_cashier(self, client, admin_headers):
        response = client.post("/api/users", headers=admin_headers, json={
            "username": "ama",
            "name": "Ama Cashier",
            "email": "ama@bookshop.local",
            "password": "AnotherPass1!",
            "role": "cashier",
        })
        assert response.status_code == 201
        assert response.json["user"]["role"] == "cashier"
        assert get_auth_token(client, "ama", "AnotherPass1!")

    def test_admin_cannot_deactivate_self(self, client, admin_headers, admin_user):
        response = client.patch(
            f"/api/users/{admin_user.id}", headers=admin_headers, json={"is_active": False},
        )
        assert response.status_code == 400


class TestPurchaseFlow:

    def test_quote_reports_gates(self, client, cashier_headers, book_a, book_b, student):
        body = purchase_body(
            student, (book_a, 2), (book_b, 1),
            discount={"mode": "flat", "value_cents": 2000},
            payments=[{"method": "cash", "amount_cents": 7000}],
        )
        response = client.post("/api/receipts/quote", headers=cashier_headers, json=body)

        assert response.status_code == 200
        quote = response.json
        assert quote["subtotal_cents"] == 14000
        assert quote["total_cents"] == 12000
        assert quote["remaining_cents"] == 5000
        assert quote["can_complete"] is False
        assert [line["line_total_cents"] for line in quote["lines"]] == [10000, 4000]

    def test_complete_purchase(self, client, app, cashier_headers, book_a, book_b, student):
        body = purchase_body(
            student, (book_a, 2), (book_b, 1),
            discount={"mode": "flat", "value_cents": 2000},
            payments=[
                {"method": "cash", "amount_cents": 7000},
                {"method": "mobile_money", "amount_cents": 5000, "reference": "MM123"},
            ],
        )
        response = client.post("/api/receipts", headers=cashier_headers, json=body)

        assert response.status_code == 201
        receipt = response.json
        assert receipt["receipt_number"] == "RCPT-001000"
        assert receipt["total_cents"] == 12000
        assert receipt["cashier_name"] == "Kofi Cashier"
        assert [p["method"] for p in receipt["payments"]] == ["cash", "mobile_money"]

        with app.app_context():
            assert db.session.get(Book, book_a.id).stock == 8
            assert db.session.get(Book, book_b.id).stock == 4

        text = client.get(f"/api/receipts/{receipt['id']}/text", headers=cashier_headers)
        assert text.status_code == 200
        assert "RCPT-001000" in text.get_data(as_text=True)

        by_number = client.get("/api/receipts/number/RCPT-001000", headers=cashier_headers)
        assert by_number.json["id"] == receipt["id"]

    def test_payment_mismatch(self, client, cashier_headers, book_a, student):
        body = purchase_body(student, (book_a, 1), payments=[{"method": "cash", "amount_cents": 4000}])
        response = client.post("/api/receipts", headers=cashier_headers, json=body)
        assert response.status_code == 400
        assert response.json["code"] == "PAYMENT_MISMATCH"

    def test_cashier_discount_needs_override(self, client, cashier_headers, book_a, student):
        body = purchase_body(
            student, (book_a, 2),
            discount={"mode": "percent", "value": 20},
            payments=[{"method": "cash", "amount_cents": 8000}],
        )
        response = client.post("/api/receipts", headers=cashier_headers, json=body)
        assert response.status_code == 400
        assert response.json["code"] == "UNAUTHORIZED_DISCOUNT"

        body["override_code"] = "ADMIN123"
        response = client.post("/api/receipts", headers=cashier_headers, json=body)
        assert response.status_code == 201
        assert response.json["discount_override_used"] is True

    def test_insufficient_stock_conflict(self, client, cashier_headers, book_b, student):
        body = purchase_body(student, (book_b, 6), payments=[{"method": "cash", "amount_cents": 24000}])
        response = client.post("/api/receipts", headers=cashier_headers, json=body)
        assert response.status_code == 409
        assert response.json["code"] == "INSUFFICIENT_STOCK"
        assert response.json["details"]["items"][0]["in_stock"] == 5
        db.session.expire_all()
        assert db.session.get(Book, book_b.id).stock == 5

    def test_oversell_allowed_floors_stock(self, client, app, monkeypatch, cashier_headers, book_b, student):
        monkeypatch.setitem(app.config, "ALLOW_OVERSELL", True)
        body = purchase_body(student, (book_b, 6), payments=[{"method": "cash", "amount_cents": 24000}])
        response = client.post("/api/receipts", headers=cashier_headers, json=body)

        assert response.status_code == 201
        assert response.json["lines"][0]["quantity"] == 6
        with app.app_context():
            assert db.session.get(Book, book_b.id).stock == 0

    def test_quote_ignores_stock(self, client, cashier_headers, book_b, student):
        body = purchase_body(student, (book_b, 6), payments=[{"method": "cash", "amount_cents": 24000}])
        response = client.post("/api/receipts/quote", headers=cashier_headers, json=body)
        assert response.status_code == 200
        assert response.json["can_complete"] is True

    def test_quote_rejects_non_string_fields(self, client, cashier_headers, book_a, student):
        bad_mode = purchase_body(student, (book_a, 1), discount={"mode": 5, "value": 10})
        bad_method = purchase_body(student, (book_a, 1), payments=[{"method": 1, "amount_cents": 5000}])
        bad_code = purchase_body(student, (book_a, 1), override_code=123)
        for body in (bad_mode, bad_method, bad_code):
            response = client.post("/api/receipts/quote", headers=cashier_headers, json=body)
            assert response.status_code == 400
            assert "must be a string" in response.json["error"]

        response = client.post("/api/receipts", headers=cashier_headers, json=bad_mode)
        assert response.status_code == 400

    def test_quote_unexpected_error_is_logged(self, client, monkeypatch, cashier_headers, book_a, student):
        def fail(*args, **kwargs):
            raise RuntimeError("database went away")

        monkeypatch.setattr(receipt_service, "quote_purchase", fail)
        body = purchase_body(student, (book_a, 1), payments=[{"method": "cash", "amount_cents": 5000}])
        response = client.post("/api/receipts/quote", headers=cashier_headers, json=body)
        assert response.status_code == 500
        assert response.json == {"error": "Internal server error"}

    def test_empty_cart(self, client, cashier_headers, student):
        response = client.post("/api/receipts", headers=cashier_headers, json=purchase_body(student))
        assert response.status_code == 400
        assert response.json["code"] == "EMPTY_CART"

    def test_unknown_student(self, client, cashier_headers, book_a):
        response = client.post("/api/receipts", headers=cashier_headers, json={
            "student_id": 999,
            "items": [{"book_id": book_a.id, "quantity": 1}],
            "payments": [{"method": "cash", "amount_cents": 5000}],
        })
        assert response.status_code == 404

    def test_list_and_export(self, client, cashier_headers, book_a, student):
        for _ in range(2):
            body = purchase_body(student, (book_a, 1), payments=[{"method": "cash", "amount_cents": 5000}])
            assert client.post("/api/receipts", headers=cashier_headers, json=body).status_code == 201

        listing = client.get("/api/receipts?payment_method=cash", headers=cashier_headers)
        assert listing.json["count"] == 2
        assert "lines" not in listing.json["items"][0]

        export = client.get("/api/receipts/export.csv", headers=cashier_headers)
        assert export.status_code == 200
        assert export.mimetype == "text/csv"
        rows = export.get_data(as_text=True).strip().splitlines()
        assert len(rows) == 3


class TestBooksAndStock:

    def test_stock_operations(self, client, admin_headers, book_a):
        response = client.post(
            f"/api/books/{book_a.id}/stock/wastage", headers=admin_headers,
            json={"quantity": 3, "note": "Water damage"},
        )
        assert response.status_code == 201
        assert response.json["entry"]["previous_stock"] == 10
        assert response.json["book"]["stock"] == 7

        history = client.get(f"/api/books/{book_a.id}/stock-history", headers=admin_headers)
        assert [e["type"] for e in history.json["items"]] == ["addition", "wastage"]

        reconcile = client.get(f"/api/books/{book_a.id}/reconcile", headers=admin_headers)
        assert reconcile.json["consistent"] is True

    def test_stock_operation_validation(self, client, admin_headers, book_a):
        url = f"/api/books/{book_a.id}/stock"
        assert client.post(f"{url}/add", headers=admin_headers, json={"quantity": 0}).status_code == 400
        assert client.post(f"{url}/steal", headers=admin_headers, json={"quantity": 1}).status_code == 404
        assert client.post("/api/books/999/stock/add", headers=admin_headers, json={"quantity": 1}).status_code == 404

    def test_low_stock(self, client, cashier_headers, book_a, book_b):
        response = client.get("/api/books/low-stock", headers=cashier_headers)
        assert [b["id"] for b in response.json["items"]] == [book_b.id]


class TestSupplierApi:

    def test_ledger_flow(self, client, app, admin_headers, supplier, book_a):
        order = client.post(f"/api/suppliers/{supplier.id}/orders", headers=admin_headers, json={
            "items": [{"book_id": book_a.id, "quantity": 10, "cost_price_cents": 1900}],
            "invoice_number": "INV-001",
            "supply_date": "2026-01-10",
            "expected_payment_date": "2026-02-10",
        })
        assert order.status_code == 201
        assert order.json["total_amount_cents"] == 19000

        payment = client.post(f"/api/suppliers/{supplier.id}/payments", headers=admin_headers, json={
            "amount_cents": 10000,
            "payment_method": "bank_transfer",
            "payment_date": "2026-01-20",
        })
        assert payment.status_code == 201

        ledger = client.get(f"/api/suppliers/{supplier.id}/ledger", headers=admin_headers).json
        assert [e["balance_cents"] for e in ledger["entries"]] == [19000, 9000]
        assert ledger["balance_cents"] == 9000

        received = client.post(
            f"/api/suppliers/orders/{order.json['id']}/status", headers=admin_headers,
            json={"status": "received"},
        )
        assert received.status_code == 200
        with app.app_context():
            assert db.session.get(Book, book_a.id).stock == 20
            assert db.session.get(Supplier, supplier.id).balance_cents == 9000

        back = client.post(
            f"/api/suppliers/orders/{order.json['id']}/status", headers=admin_headers,
            json={"status": "pending"},
        )
        assert back.status_code == 400

    def test_payment_validation(self, client, admin_headers, supplier):
        url = f"/api/suppliers/{supplier.id}/payments"
        assert client.post(url, headers=admin_headers, json={"amount_cents": 0, "payment_method": "cash"}).status_code == 400
        assert client.post("/api/suppliers/999/payments", headers=admin_headers,
                           json={"amount_cents": 100, "payment_method": "cash"}).status_code == 404

    def test_upcoming_rejects_negative_window(self, client, admin_headers, db_session):
        assert client.get("/api/suppliers/orders/upcoming?days=-1", headers=admin_headers).status_code == 400


class TestReportsApi:

    def test_reports(self, client, admin_headers, cashier_headers, book_a, book_b, student):
        body = purchase_body(student, (book_a, 1), payments=[{"method": "cash", "amount_cents": 5000}])
        assert client.post("/api/receipts", headers=cashier_headers, json=body).status_code == 201

        sales = client.get("/api/reports/sales", headers=admin_headers)
        assert sales.status_code == 200
        assert sales.json["total_cents"] == 5000
        assert sales.json["by_payment_method"] == {"cash": 5000}

        inventory = client.get("/api/reports/inventory", headers=admin_headers).json
        assert inventory["units_in_stock"] == 14
        assert inventory["low_stock_count"] == 1

        students = client.get("/api/reports/students", headers=admin_headers).json
        assert students["rows"][0]["student_name"] == "Ama Mensah"

        assert client.get("/api/reports/sales?group_by=year", headers=admin_headers).status_code == 400
