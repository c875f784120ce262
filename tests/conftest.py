"""
Shared pytest fixtures for the RFP Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - company / buyer / supplier_user: pre-created auth entities
    - make_rfp: RFP factory
    - auth_headers: Bearer header factory for a user
"""

from datetime import datetime, timedelta, timezone

import pytest

from rfp_platform import create_app
from rfp_platform.models import db as _db
from rfp_platform.models.auth import Company, User
from rfp_platform.models.rfp import RFP
from rfp_platform.services.jwt_service import generate_access_token

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Auth fixtures ────────────────────────────────────────────────────────


def make_company(name="Acme Buyers"):
    c = Company(name=name)
    _db.session.add(c)
    _db.session.flush()
    return c


def make_user(company, email, role="buyer", **kwargs):
    u = User(company_id=company.id, email=email, role=role, full_name=email.split("@")[0], **kwargs)
    _db.session.add(u)
    _db.session.flush()
    return u


@pytest.fixture()
def company():
    return make_company()


@pytest.fixture()
def buyer(company):
    u = make_user(company, "buyer@acme.test")
    _db.session.commit()
    return u


@pytest.fixture()
def supplier_user():
    vendor = make_company("Vendor Inc")
    u = make_user(vendor, "sales@vendor.test", role="supplier")
    _db.session.commit()
    return u


@pytest.fixture()
def other_buyer():
    """Buyer of a second company (for isolation checks)."""
    u = make_user(make_company("Globex"), "buyer@globex.test")
    _db.session.commit()
    return u


@pytest.fixture()
def auth_headers():
    """Return a function building Bearer headers for a user."""
    def _headers(user):
        token = generate_access_token(user.id, user.company_id, user.role)
        return {"Authorization": f"Bearer {token}"}
    return _headers


# ── RFP factory ──────────────────────────────────────────────────────────


@pytest.fixture()
def make_rfp(buyer):
    """Return a function creating an RFP owned by ``buyer``'s company."""
    def _make(title="Cloud ERP Replacement", stage="INTAKE", entered_days_ago=0, **fields):
        fields.setdefault("created_at", NOW - timedelta(days=30))
        rfp = RFP(
            company_id=fields.pop("company_id", buyer.company_id),
            user_id=buyer.id,
            title=title,
            stage=stage,
            entered_stage_at=NOW - timedelta(days=entered_days_ago),
            **fields,
        )
        _db.session.add(rfp)
        _db.session.commit()
        return rfp
    return _make
