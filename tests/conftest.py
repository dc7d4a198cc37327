"""
Shared fixtures: in-memory SQLite database, model factories, a fake gateway.
Environment is populated before any checkout module reads settings.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "test_key_secret")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "test_webhook_secret")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-for-checkout-suite-0001")

from datetime import datetime, timedelta, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402
from uuid import uuid4  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import checkout.models  # noqa: E402,F401  (registers all tables)
from checkout.core.config import CheckoutConfig, GatewayConfig  # noqa: E402
from checkout.db.base import Base  # noqa: E402
from checkout.models.coupon import Coupon  # noqa: E402
from checkout.models.plan import Plan  # noqa: E402
from checkout.models.user import User  # noqa: E402

NOW = datetime(2026, 8, 31, 10, 0, 0, tzinfo=timezone.utc)


class FakeGateway:
    """In-memory stand-in for RazorpayClient."""

    def __init__(self, key_id: str = "rzp_test_key") -> None:
        self.key_id = key_id
        self.orders: list[dict] = []
        self.payments: dict[str, dict] = {}
        self.order_payments: dict[str, list[dict]] = {}
        self.create_error: Exception | None = None

    def create_order(self, amount: int, currency: str, receipt: str, notes: dict | None = None) -> dict:
        if self.create_error is not None:
            raise self.create_error
        order = {
            "id": f"order_{len(self.orders) + 1}",
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
            "status": "created",
        }
        self.orders.append(order)
        return order

    def fetch_payment(self, payment_id: str) -> dict:
        return self.payments[payment_id]

    def fetch_order_payments(self, order_id: str) -> list[dict]:
        return self.order_payments.get(order_id, [])

    def add_payment(self, payment_id: str, order_id: str, status: str = "captured", **extra) -> dict:
        payment = {"id": payment_id, "order_id": order_id, "status": status, **extra}
        self.payments[payment_id] = payment
        self.order_payments.setdefault(order_id, []).append(payment)
        return payment


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def gateway_config() -> GatewayConfig:
    return GatewayConfig(
        key_id="rzp_test_key",
        key_secret="test_key_secret",
        webhook_secret="test_webhook_secret",
    )


@pytest.fixture
def checkout_config() -> CheckoutConfig:
    return CheckoutConfig()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def make_user(db):
    def _make(**kwargs) -> User:
        user = User(
            id=kwargs.pop("id", str(uuid4())),
            full_name=kwargs.pop("full_name", "Asha Verma"),
            email=kwargs.pop("email", f"{uuid4().hex[:8]}@example.com"),
            phone=kwargs.pop("phone", "9999999999"),
            **kwargs,
        )
        db.add(user)
        db.commit()
        return user
    return _make


@pytest.fixture
def make_plan(db):
    def _make(plan_type: str = "premium", price="299", **kwargs) -> Plan:
        plan = Plan(
            id=kwargs.pop("id", str(uuid4())),
            title=kwargs.pop("title", f"{plan_type.title()} Plan"),
            plan_type=plan_type,
            price=Decimal(str(price)),
            **kwargs,
        )
        db.add(plan)
        db.commit()
        return plan
    return _make


@pytest.fixture
def make_coupon(db):
    def _make(code: str = "SAVE10", discount_percent: int = 10, **kwargs) -> Coupon:
        coupon = Coupon(
            code=code,
            discount_percent=discount_percent,
            is_active=kwargs.pop("is_active", True),
            expiry_date=kwargs.pop("expiry_date", NOW + timedelta(days=30)),
            applicable_plans=kwargs.pop("applicable_plans", ["premium", "josaa"]),
            **kwargs,
        )
        db.add(coupon)
        db.commit()
        return coupon
    return _make


@pytest.fixture
def order_service(db, gateway, gateway_config, checkout_config):
    from checkout.services.payments.orders import OrderService

    return OrderService(db, gateway, gateway_config, checkout_config)


@pytest.fixture
def place_order(order_service, db):
    """Create a `created` purchase through OrderService; returns the Purchase row."""
    from checkout.services.payments.ledger import PurchaseLedger

    def _place(user, plan, coupon_code=None, now=NOW):
        resp = order_service.create_order(user.id, plan.id, coupon_code, now=now)
        return PurchaseLedger(db).get_by_order_id(resp.order_id)
    return _place
