"""Tests for OrderService — pricing, coupons, idempotent creation, verification."""
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
import redis

from checkout.core.errors import (
    AccountDeactivated,
    AlreadyPurchased,
    Conflict,
    CouponExpired,
    CouponInactive,
    CouponNotApplicable,
    CouponNotFound,
    Forbidden,
    GatewayUnavailable,
    InvalidSignature,
    NotFound,
    RateLimited,
    ValidationError,
)
from checkout.models.audit_log import AuditLog
from checkout.models.purchase import Purchase, PurchaseStatus
from checkout.models.user import User
from checkout.services.payments.ledger import Outcome, PurchaseLedger
from checkout.services.payments.orders import OrderService
from checkout.services.payments.signature import sign
from conftest import NOW

KEY_SECRET = "test_key_secret"


def _signature(order_id, payment_id):
    return sign(f"{order_id}|{payment_id}".encode(), KEY_SECRET)


class TestCreateOrder:
    def test_premium_price_in_minor_units(self, order_service, gateway, make_user, make_plan):
        user = make_user()
        plan = make_plan("premium", price="299")

        resp = order_service.create_order(user.id, plan.id, now=NOW)

        assert resp.success is True
        assert resp.amount == 29900
        assert resp.currency == "INR"
        assert resp.order_id == "order_1"
        assert resp.key_id == "rzp_test_key"
        assert gateway.orders[0]["amount"] == 29900
        assert gateway.orders[0]["notes"]["userId"] == user.id

    def test_end_to_end_premium_purchase(self, db, order_service, gateway, make_user, make_plan):
        user = make_user()
        plan = make_plan("premium", price="299")
        resp = order_service.create_order(user.id, plan.id, now=NOW)
        gateway.add_payment("pay_1", resp.order_id)

        verified = order_service.verify_payment(resp.order_id, "pay_1", _signature(resp.order_id, "pay_1"), user_id=user.id)

        assert verified.success is True
        assert verified.status == PurchaseStatus.PAID
        assert verified.already_applied is False
        db.expire_all()
        stored = db.get(User, user.id)
        assert stored.premium is True
        assert stored.premium_since is not None

    def test_repeat_create_reuses_open_order(self, order_service, gateway, make_user, make_plan, make_coupon):
        make_coupon("SAVE10", 10)
        user = make_user()
        plan = make_plan("premium")

        first = order_service.create_order(user.id, plan.id, "SAVE10", now=NOW)
        second = order_service.create_order(user.id, plan.id, now=NOW)

        assert second.order_id == first.order_id
        assert second.purchase_id == first.purchase_id
        assert second.amount == first.amount == 26910
        assert second.message == "Order already created. Proceed to payment."
        assert len(gateway.orders) == 1

    def test_paid_plan_cannot_be_bought_again(self, db, order_service, make_user, make_plan, place_order):
        user = make_user()
        plan = make_plan("premium")
        purchase = place_order(user, plan)
        PurchaseLedger(db).apply_outcome("pay_1", purchase.order_id, Outcome.PAID)

        with pytest.raises(AlreadyPurchased) as exc:
            order_service.create_order(user.id, plan.id, now=NOW)
        assert exc.value.status_code == 403

    def test_failed_order_allows_new_one(self, db, order_service, make_user, make_plan, place_order):
        user = make_user()
        plan = make_plan("premium")
        purchase = place_order(user, plan)
        PurchaseLedger(db).apply_outcome("pay_1", purchase.order_id, Outcome.FAILED)

        resp = order_service.create_order(user.id, plan.id, now=NOW)
        assert resp.order_id != purchase.order_id
        assert db.query(Purchase).filter(Purchase.user_id == user.id).count() == 2

    def test_unknown_user(self, order_service, make_plan):
        with pytest.raises(NotFound):
            order_service.create_order("missing", make_plan().id, now=NOW)

    def test_unknown_or_inactive_plan(self, order_service, make_user, make_plan):
        user = make_user()
        with pytest.raises(NotFound):
            order_service.create_order(user.id, "missing", now=NOW)
        with pytest.raises(NotFound):
            order_service.create_order(user.id, make_plan(is_active=False).id, now=NOW)

    def test_deactivated_account(self, order_service, gateway, make_user, make_plan):
        user = make_user(is_active=False)
        with pytest.raises(AccountDeactivated) as exc:
            order_service.create_order(user.id, make_plan().id, now=NOW)
        assert exc.value.status_code == 403
        assert gateway.orders == []

    def test_unsupported_plan_type(self, order_service, make_user, make_plan):
        with pytest.raises(ValidationError):
            order_service.create_order(make_user().id, make_plan("gold").id, now=NOW)

    def test_amount_below_gateway_minimum(self, order_service, gateway, make_user, make_plan):
        with pytest.raises(ValidationError):
            order_service.create_order(make_user().id, make_plan(price="0.50").id, now=NOW)
        assert gateway.orders == []

    def test_gateway_failure_leaves_no_purchase(self, db, order_service, gateway, make_user, make_plan):
        gateway.create_error = GatewayUnavailable("Payment gateway unavailable")
        user = make_user()
        plan = make_plan()

        with pytest.raises(GatewayUnavailable):
            order_service.create_order(user.id, plan.id, now=NOW)
        assert db.query(Purchase).count() == 0

        gateway.create_error = None
        assert order_service.create_order(user.id, plan.id, now=NOW).order_id == "order_1"


class TestCoupons:
    def test_discount_applied(self, order_service, make_user, make_plan, make_coupon):
        make_coupon("SAVE10", 10)
        resp = order_service.create_order(make_user().id, make_plan(price="299").id, "SAVE10", now=NOW)
        assert resp.amount == 26910

    def test_discount_floors_fractional_paise(self, order_service, make_user, make_plan, make_coupon):
        make_coupon("ODD33", 33)
        resp = order_service.create_order(make_user().id, make_plan(price="9.99").id, "ODD33", now=NOW)
        assert resp.amount == 669

    def test_coupon_expiring_one_millisecond_ago_rejected(self, order_service, make_user, make_plan, make_coupon):
        make_coupon("LATE", 10, expiry_date=NOW - timedelta(milliseconds=1))
        with pytest.raises(CouponExpired):
            order_service.create_order(make_user().id, make_plan().id, "LATE", now=NOW)

    def test_coupon_expiring_one_millisecond_ahead_accepted(self, order_service, make_user, make_plan, make_coupon):
        make_coupon("JUST", 10, expiry_date=NOW + timedelta(milliseconds=1))
        resp = order_service.create_order(make_user().id, make_plan().id, "JUST", now=NOW)
        assert resp.amount == 26910

    def test_unknown_coupon(self, order_service, make_user, make_plan):
        with pytest.raises(CouponNotFound) as exc:
            order_service.create_order(make_user().id, make_plan().id, "NOPE", now=NOW)
        assert exc.value.status_code == 400

    def test_inactive_coupon(self, order_service, make_user, make_plan, make_coupon):
        make_coupon("OFF", 10, is_active=False)
        with pytest.raises(CouponInactive):
            order_service.create_order(make_user().id, make_plan().id, "OFF", now=NOW)

    def test_coupon_not_applicable_to_plan_type(self, order_service, gateway, make_user, make_plan, make_coupon):
        make_coupon("JOSAAONLY", 10, applicable_plans=["josaa"])
        with pytest.raises(CouponNotApplicable):
            order_service.create_order(make_user().id, make_plan("premium").id, "JOSAAONLY", now=NOW)
        assert gateway.orders == []

    def test_blank_coupon_ignored(self, order_service, make_user, make_plan):
        resp = order_service.create_order(make_user().id, make_plan().id, "  ", now=NOW)
        assert resp.amount == 29900


class TestRateLimit:
    def _service(self, db, gateway, gateway_config, checkout_config, redis_client):
        return OrderService(db, gateway, gateway_config, checkout_config, redis_client=redis_client)

    def test_over_limit_rejected(self, db, gateway, gateway_config, checkout_config, make_user, make_plan):
        redis_client = MagicMock()
        redis_client.incr.return_value = checkout_config.purchase_rate_limit + 1
        svc = self._service(db, gateway, gateway_config, checkout_config, redis_client)

        with pytest.raises(RateLimited):
            svc.create_order(make_user().id, make_plan().id, now=NOW)
        assert gateway.orders == []

    def test_first_attempt_sets_window(self, db, gateway, gateway_config, checkout_config, make_user, make_plan):
        redis_client = MagicMock()
        redis_client.incr.return_value = 1
        user = make_user()
        svc = self._service(db, gateway, gateway_config, checkout_config, redis_client)

        svc.create_order(user.id, make_plan().id, now=NOW)
        redis_client.expire.assert_called_once_with(f"purchase_rate:{user.id}", checkout_config.purchase_rate_window)

    def test_redis_outage_fails_open(self, db, gateway, gateway_config, checkout_config, make_user, make_plan):
        redis_client = MagicMock()
        redis_client.incr.side_effect = redis.ConnectionError("down")
        svc = self._service(db, gateway, gateway_config, checkout_config, redis_client)

        assert svc.create_order(make_user().id, make_plan().id, now=NOW).order_id == "order_1"


class TestVerifyPayment:
    @pytest.fixture
    def order(self, make_user, make_plan, place_order):
        user = make_user()
        return user, place_order(user, make_plan("premium"))

    def test_bad_signature_rejected_and_audited(self, db, order_service, gateway, order):
        user, purchase = order
        gateway.add_payment("pay_1", purchase.order_id)

        with pytest.raises(InvalidSignature):
            order_service.verify_payment(purchase.order_id, "pay_1", "0" * 64, user_id=user.id, source_ip="10.0.0.9")

        assert PurchaseLedger(db).get_by_order_id(purchase.order_id).status == PurchaseStatus.CREATED
        entry = db.query(AuditLog).filter(AuditLog.action == "payment_signature_invalid").one()
        assert entry.entity_id == purchase.order_id
        assert entry.payload["source_ip"] == "10.0.0.9"

    def test_duplicate_verify_is_success(self, order_service, gateway, order):
        user, purchase = order
        gateway.add_payment("pay_1", purchase.order_id)
        sig = _signature(purchase.order_id, "pay_1")

        order_service.verify_payment(purchase.order_id, "pay_1", sig, user_id=user.id)
        again = order_service.verify_payment(purchase.order_id, "pay_1", sig, user_id=user.id)
        assert again.success is True
        assert again.already_applied is True

    def test_second_payment_conflicts(self, db, order_service, gateway, order):
        user, purchase = order
        gateway.add_payment("pay_1", purchase.order_id)
        gateway.add_payment("pay_2", purchase.order_id)
        order_service.verify_payment(purchase.order_id, "pay_1", _signature(purchase.order_id, "pay_1"), user_id=user.id)

        with pytest.raises(Conflict) as exc:
            order_service.verify_payment(purchase.order_id, "pay_2", _signature(purchase.order_id, "pay_2"), user_id=user.id)
        assert exc.value.status_code == 409
        assert PurchaseLedger(db).get_by_order_id(purchase.order_id).payment_id == "pay_1"
        assert db.query(AuditLog).filter(AuditLog.action == "purchase_transition_conflict").count() == 1

    def test_payment_for_other_order_rejected(self, order_service, gateway, order):
        user, purchase = order
        gateway.add_payment("pay_1", "order_other")
        with pytest.raises(ValidationError):
            order_service.verify_payment(purchase.order_id, "pay_1", _signature(purchase.order_id, "pay_1"), user_id=user.id)

    def test_other_users_order_forbidden(self, order_service, gateway, order):
        _, purchase = order
        gateway.add_payment("pay_1", purchase.order_id)
        with pytest.raises(Forbidden):
            order_service.verify_payment(purchase.order_id, "pay_1", _signature(purchase.order_id, "pay_1"), user_id="someone-else")

    def test_unknown_order(self, order_service):
        with pytest.raises(NotFound):
            order_service.verify_payment("order_missing", "pay_1", _signature("order_missing", "pay_1"))

    def test_authorized_payment_is_pending(self, db, order_service, gateway, order):
        user, purchase = order
        gateway.add_payment("pay_1", purchase.order_id, status="authorized")

        resp = order_service.verify_payment(purchase.order_id, "pay_1", _signature(purchase.order_id, "pay_1"), user_id=user.id)
        assert resp.success is False
        assert resp.status == "pending"
        assert PurchaseLedger(db).get_by_order_id(purchase.order_id).status == PurchaseStatus.CREATED

    def test_failed_payment_recorded(self, db, order_service, gateway, order):
        user, purchase = order
        gateway.add_payment("pay_1", purchase.order_id, status="failed", error_description="Card declined")

        resp = order_service.verify_payment(purchase.order_id, "pay_1", _signature(purchase.order_id, "pay_1"), user_id=user.id)
        assert resp.success is False
        assert resp.status == PurchaseStatus.FAILED
        stored = PurchaseLedger(db).get_by_order_id(purchase.order_id)
        assert stored.failure_reason == "Card declined"
        assert db.get(User, user.id).premium is False
