"""
Pytest fixtures for bookshop backend tests.

Provides test database setup, default users, catalogue records and an
authenticated test client.
"""

import pytest
from bookshop import create_app
from bookshop.extensions import db
from bookshop.services import auth_service, book_service, student_service, supplier_service


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def admin_user(db_session):
    return auth_service.create_user(
        username="admin",
        name="Mrs Asante",
        email="admin@bookshop.local",
        password=PASSWORD,
        role="admin",
    )


@pytest.fixture(scope='function')
def cashier_user(db_session):
    return auth_service.create_user(
        username="cashier",
        name="Kofi Cashier",
        email="cashier@bookshop.local",
        password=PASSWORD,
        role="cashier",
    )


@pytest.fixture(scope='function')
def supplier(db_session):
    return supplier_service.create_supplier({
        "name": "Accra Educational Books",
        "contact": "0240000000",
        "email": "orders@aeb.example",
    })


@pytest.fixture(scope='function')
def book_a(db_session, admin_user):
    """English textbook: 50.00, 10 in stock, low at 2."""
    return book_service.create_book({
        "title": "English for JHS 1",
        "class_name": "JHS 1",
        "subject": "English",
        "selling_price_cents": 5000,
        "cost_price_cents": 3500,
        "min_stock": 2,
        "stock": 10,
    }, user=admin_user)


@pytest.fixture(scope='function')
def book_b(db_session, admin_user):
    """Maths workbook: 40.00, 5 in stock, low at 5."""
    return book_service.create_book({
        "title": "Maths Workbook JHS 1",
        "class_name": "JHS 1",
        "subject": "Mathematics",
        "book_type": "workbook",
        "selling_price_cents": 4000,
        "cost_price_cents": 2500,
        "min_stock": 5,
        "stock": 5,
    }, user=admin_user)


@pytest.fixture(scope='function')
def student(db_session):
    return student_service.create_student({
        "name": "Ama Mensah",
        "class_name": "JHS 1",
        "roll_number": "JHS1-001",
    })


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(client, admin_user):
    return auth_headers(get_auth_token(client, admin_user.username))


@pytest.fixture(scope='function')
def cashier_headers(client, cashier_user):
    return auth_headers(get_auth_token(client, cashier_user.username))
