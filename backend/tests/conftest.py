"""
Pytest fixtures for BranchPOS backend tests.

Provides test database setup, two isolated tenants (each with branches,
staff of every role and stocked products), and auth header helpers.
"""

import bcrypt
import pytest

from branchpos import create_app
from branchpos.extensions import db
from branchpos.models import Branch, Business, Product, ReceiptSequence, StaffMember
from branchpos.permissions import Role
from branchpos.services import session_service


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


@pytest.fixture(scope='session')
def password_hash():
    """One low-cost bcrypt hash of PASSWORD, shared by every fixture account."""
    return bcrypt.hashpw(PASSWORD.encode('utf-8'), bcrypt.gensalt(rounds=4)).decode('utf-8')


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


def _business(db_session, name):
    business = Business(
        name=name,
        subscription_plan="Pro",
        max_branches=10,
        max_staff=50,
        currency="KES",
        timezone="Africa/Nairobi",
    )
    db_session.add(business)
    db_session.flush()
    db_session.add(ReceiptSequence(business_id=business.id, next_number=1))
    db_session.commit()
    return business


def _branch(db_session, business, name):
    branch = Branch(business_id=business.id, name=name, location=f"{name} street")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def business_a(db_session):
    """Business A (first tenant)."""
    return _business(db_session, "Duka A")


@pytest.fixture(scope='function')
def business_b(db_session):
    """Business B (second tenant)."""
    return _business(db_session, "Duka B")


@pytest.fixture(scope='function')
def branch_a1(db_session, business_a):
    return _branch(db_session, business_a, "Westlands")


@pytest.fixture(scope='function')
def branch_a2(db_session, business_a):
    return _branch(db_session, business_a, "Kilimani")


@pytest.fixture(scope='function')
def branch_b1(db_session, business_b):
    return _branch(db_session, business_b, "Mombasa Road")


@pytest.fixture(scope='function')
def make_staff(db_session, password_hash):
    """Factory: make_staff(business, Role.CASHIER, branch, email=..., must_change=False)."""
    counter = {"n": 0}

    def _make(business, role, branch=None, *, email=None, full_name=None, must_change=False):
        counter["n"] += 1
        staff = StaffMember(
            business_id=business.id,
            branch_id=branch.id if branch is not None else None,
            email=email or f"{role.value.lower()}{counter['n']}@b{business.id}.test",
            full_name=full_name or f"{role.value.title()} {counter['n']}",
            role=role,
            password_hash=password_hash,
            must_change_credential=must_change,
            is_active=True,
        )
        db_session.add(staff)
        db_session.flush()
        if role == Role.OWNER:
            business.owner_id = staff.id
        db_session.commit()
        return staff

    return _make


@pytest.fixture(scope='function')
def owner_a(make_staff, business_a):
    return make_staff(business_a, Role.OWNER, email="owner@a.test")


@pytest.fixture(scope='function')
def owner_b(make_staff, business_b):
    return make_staff(business_b, Role.OWNER, email="owner@b.test")


@pytest.fixture(scope='function')
def accountant_a(make_staff, business_a):
    return make_staff(business_a, Role.ACCOUNTANT, email="accountant@a.test")


@pytest.fixture(scope='function')
def manager_a1(make_staff, business_a, branch_a1):
    return make_staff(business_a, Role.MANAGER, branch_a1, email="manager1@a.test")


@pytest.fixture(scope='function')
def cashier_a1(make_staff, business_a, branch_a1):
    return make_staff(business_a, Role.CASHIER, branch_a1, email="cashier1@a.test")


@pytest.fixture(scope='function')
def cashier_a2(make_staff, business_a, branch_a2):
    return make_staff(business_a, Role.CASHIER, branch_a2, email="cashier2@a.test")


@pytest.fixture(scope='function')
def cashier_b1(make_staff, business_b, branch_b1):
    return make_staff(business_b, Role.CASHIER, branch_b1, email="cashier1@b.test")


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: make_product(branch, sku, stock=..., retail=..., cost=..., wholesale=None)."""
    def _make(branch, sku, *, name=None, stock=10, retail=1000, cost=600, wholesale=None, threshold=5):
        product = Product(
            business_id=branch.business_id,
            branch_id=branch.id,
            sku=sku,
            name=name or f"Product {sku}",
            unit_cost_cents=cost,
            retail_price_cents=retail,
            wholesale_price_cents=wholesale,
            stock_quantity=stock,
            low_stock_threshold=threshold,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def sugar_a1(make_product, branch_a1):
    return make_product(branch_a1, "SUGAR-1KG", name="Sugar 1kg", stock=10, retail=1500, cost=1100, wholesale=1300)


@pytest.fixture(scope='function')
def bread_a1(make_product, branch_a1):
    return make_product(branch_a1, "BREAD-400G", name="Bread 400g", stock=5, retail=650, cost=480)


@pytest.fixture(scope='function')
def sugar_a2(make_product, branch_a2):
    return make_product(branch_a2, "SUGAR-1KG", name="Sugar 1kg", stock=8, retail=1550, cost=1100)


@pytest.fixture(scope='function')
def sugar_b1(make_product, branch_b1):
    return make_product(branch_b1, "SUGAR-1KG", name="Sugar 1kg", stock=20, retail=1400, cost=1000)


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def login_headers(db_session):
    """Factory: open a session for staff directly and return Authorization headers."""
    def _headers(staff):
        _, token = session_service.create_session(staff)
        return auth_headers(token)

    return _headers
