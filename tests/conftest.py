"""Shared fixtures.

Importing lms_payments.main builds the module-level ``app`` from the
environment, so DATABASE_URL and JWT_SECRET get defaults before any
lms_payments import. Each test still runs against its own app and
SQLite file built from the ``settings`` fixture.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
from decimal import Decimal
from fastapi.testclient import TestClient
from jose import jwt

from lms_payments.config import Settings
from lms_payments.database import Base
from lms_payments.events import signature_for
from lms_payments.fawaterak import FawaterakClient, get_gateway
from lms_payments.main import create_app
from lms_payments.models import BalanceTransaction, Payment, PaymentStatus, User

JWT_SECRET = "test-secret"
VENDOR_KEY = "vendor-api-key"
PROVIDER_KEY = "provider-key"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'test_payments.db'}",
        jwt_secret=JWT_SECRET,
        fawaterak_api_key=VENDOR_KEY,
        fawaterak_provider_key=PROVIDER_KEY,
        public_url="https://lms.example.com",
    )


@pytest.fixture
def fastapi_app(settings):
    application = create_app(settings)
    yield application
    Base.metadata.drop_all(bind=application.state.engine)
    application.state.engine.dispose()


@pytest.fixture
def db(fastapi_app):
    session = fastapi_app.state.session_factory()
    yield session
    session.close()


@pytest.fixture
def gateway(fastapi_app, mocker):
    mock_gateway = mocker.Mock(spec=FawaterakClient)
    mock_gateway.configured = True
    fastapi_app.dependency_overrides[get_gateway] = lambda: mock_gateway
    return mock_gateway


@pytest.fixture
def client(fastapi_app, gateway):
    with TestClient(fastapi_app) as c:
        yield c
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def user(db):
    u = User(id="user-1", full_name="Sara Ahmed Ali", phone_number="01012345678", balance=0)
    db.add(u)
    db.commit()
    return u


@pytest.fixture
def other_user(db):
    u = User(id="user-2", full_name="Omar", phone_number="01198765432", balance=0)
    db.add(u)
    db.commit()
    return u


def auth_headers(user_id):
    token = jwt.encode({"sub": user_id}, JWT_SECRET, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


def signed(payload):
    """Attach the gateway's hashKey to a webhook payload."""
    payload = dict(payload)
    payload["hashKey"] = signature_for(
        payload.get("invoice_id", ""),
        payload.get("invoice_key", ""),
        payload.get("payment_method", ""),
        VENDOR_KEY,
    )
    return payload


def add_payment(db, user_id, amount="100.00", status=PaymentStatus.PENDING, invoice_key=None, **kwargs):
    payment = Payment(
        user_id=user_id,
        amount=Decimal(amount),
        status=status.value,
        fawaterak_invoice_id=invoice_key,
        **kwargs,
    )
    db.add(payment)
    db.commit()
    db.refresh(payment)
    return payment


def reload(db, model, pk):
    db.expire_all()
    return db.get(model, pk)


def ledger_of(db, user_id):
    db.expire_all()
    return db.query(BalanceTransaction).filter_by(user_id=user_id).all()
