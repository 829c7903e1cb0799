import itertools
from types import SimpleNamespace

import pytest
from cryptography.fernet import Fernet
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from chitfund import config, crud, models, payments
from chitfund.db import Base, get_db
from chitfund.security import encrypt_secret

PLATFORM_KEY_ID = "rzp_test_platform"
PLATFORM_SECRET = "platform_secret_for_tests"
JWT_SECRET = "jwt-secret-for-tests"


@pytest.fixture(autouse=True)
def test_config(monkeypatch):
    """
    Known secrets for every test, and no real email / SMS transport.
    """
    monkeypatch.setattr(config, "RAZORPAY_KEY_ID", PLATFORM_KEY_ID)
    monkeypatch.setattr(config, "RAZORPAY_KEY_SECRET", PLATFORM_SECRET)
    monkeypatch.setattr(config, "FERNET_KEY", Fernet.generate_key().decode())
    monkeypatch.setattr(config, "JWT_SECRET", JWT_SECRET)
    monkeypatch.setattr(config, "JWT_ALGORITHM", "HS256")
    monkeypatch.setattr(config, "COMMISSION_RATE", "0.02")
    monkeypatch.setattr(config, "SMTP_HOST", "")
    monkeypatch.setattr(config, "SMS_GATEWAY_URL", "")
    monkeypatch.setattr(payments, "_client", None)


@pytest.fixture
def db():
    """
    Function-scoped in-memory database. StaticPool keeps one connection so the
    API thread pool and the test see the same tables.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(bind=engine, autoflush=False, future=True, expire_on_commit=False)
    session = Session()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def gateway(mocker):
    """
    Razorpay SDK replaced by a mock whose order.create echoes the request
    with sequential order ids.
    """
    counter = itertools.count(1)

    def _create(data=None, **kwargs):
        return {
            "id": f"order_{next(counter)}",
            "entity": "order",
            "amount": data["amount"],
            "currency": data["currency"],
            "receipt": data["receipt"],
            "status": "created",
        }

    client = mocker.MagicMock()
    client.order.create.side_effect = _create
    factory = mocker.patch("chitfund.payments.razorpay.Client", return_value=client)
    return SimpleNamespace(client=client, factory=factory)


# -------------------------------------------------------------------
# Factories
# -------------------------------------------------------------------
@pytest.fixture
def make_user(db):
    seq = itertools.count(1)

    def _make(**kw):
        n = next(seq)
        user = models.User(
            name=kw.pop("name", f"User {n}"),
            email=kw.pop("email", f"user{n}@example.com"),
            phone=kw.pop("phone", f"98765000{n:02d}"),
            **kw,
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def make_merchant(db):
    seq = itertools.count(1)

    def _make(own_keys=None, **kw):
        n = next(seq)
        kw.setdefault("bank_verification_status", "verified")
        merchant = models.Merchant(
            name=kw.pop("name", f"Merchant {n}"),
            email=kw.pop("email", f"merchant{n}@example.com"),
            phone=kw.pop("phone", f"91234000{n:02d}"),
            **kw,
        )
        if own_keys:
            merchant.razorpay_key_id = encrypt_secret(own_keys[0])
            merchant.razorpay_key_secret = encrypt_secret(own_keys[1])
        db.add(merchant)
        db.commit()
        return merchant

    return _make


@pytest.fixture
def make_plan(db):
    def _make(merchant, monthly_amount=500, duration_months=3, **kw):
        return crud.create_plan(
            db,
            merchant_id=merchant.id,
            plan_name=kw.pop("plan_name", "Gold Savings"),
            monthly_amount=monthly_amount,
            duration_months=duration_months,
            **kw,
        )

    return _make


@pytest.fixture
def sign():
    """Build the PaymentProof Razorpay checkout would hand back."""
    seq = itertools.count(1)

    def _sign(order_id, secret=PLATFORM_SECRET, payment_id=None):
        payment_id = payment_id or f"pay_{next(seq)}"
        return payments.PaymentProof(
            order_id, payment_id, payments.generate_signature(order_id, payment_id, secret)
        )

    return _sign


@pytest.fixture
def paid_proof(db, gateway, sign):
    """Create an installment order for (plan, user) and return a valid proof for it."""
    def _paid(plan, user, secret=PLATFORM_SECRET):
        handle = payments.create_order(db, payments.InstallmentPurpose(plan, user.id))
        return sign(handle.order_id, secret=secret)

    return _paid


# -------------------------------------------------------------------
# HTTP
# -------------------------------------------------------------------
def token_for(account, role="user"):
    return jwt.encode(
        {"uid": account.id, "role": role, "sub": account.email},
        JWT_SECRET,
        algorithm="HS256",
    )


def auth_header(account, role="user"):
    return {"Authorization": f"Bearer {token_for(account, role)}"}


@pytest.fixture
def client(db):
    from fastapi.testclient import TestClient
    from chitfund.main import app

    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth():
    return auth_header
