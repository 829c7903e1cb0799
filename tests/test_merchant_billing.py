from datetime import datetime, timedelta

import pytest

from chitfund import payments
from chitfund.errors import Forbidden, InvalidSignature, PaymentAlreadyProcessed, ValidationFailed
from chitfund.services import merchant_billing

NOW = datetime(2026, 6, 1, 12, 0)


def test_renewal_after_expiry_starts_from_now(db, make_merchant):
    merchant = make_merchant(plan="Basic", subscription_expiry_date=NOW - timedelta(days=5))

    merchant_billing.apply_renewal(db, merchant, "Standard", "monthly", now=NOW)

    assert merchant.plan == "Standard"
    assert merchant.subscription_status == "active"
    assert merchant.subscription_expiry_date == NOW + timedelta(days=30)
    assert merchant.subscription_start_date == NOW


def test_renewal_while_active_carries_over(db, make_merchant):
    expiry = NOW + timedelta(days=10)
    merchant = make_merchant(plan="Standard", subscription_expiry_date=expiry)

    merchant_billing.apply_renewal(db, merchant, "Standard", "yearly", now=NOW)

    assert merchant.subscription_expiry_date == datetime(2027, 6, 11, 12, 0)
    assert merchant.billing_cycle == "yearly"


def test_premium_to_standard_is_scheduled(db, make_merchant):
    expiry = NOW + timedelta(days=10)
    merchant = make_merchant(plan="Premium", subscription_expiry_date=expiry)

    merchant_billing.apply_renewal(db, merchant, "Standard", "monthly", now=NOW)

    assert merchant.plan == "Premium"
    assert merchant.upcoming_plan == "Standard"
    assert merchant.plan_switch_date == expiry
    assert merchant.subscription_expiry_date == expiry + timedelta(days=30)


def test_upgrade_clears_scheduled_switch(db, make_merchant):
    merchant = make_merchant(
        plan="Premium",
        subscription_expiry_date=NOW + timedelta(days=10),
        upcoming_plan="Standard",
        plan_switch_date=NOW + timedelta(days=10),
    )

    merchant_billing.apply_renewal(db, merchant, "Premium", "monthly", now=NOW)

    assert merchant.plan == "Premium"
    assert merchant.upcoming_plan is None
    assert merchant.plan_switch_date is None


def test_lazy_refresh_applies_switch_and_expiry(db, make_merchant):
    merchant = make_merchant(
        plan="Premium",
        subscription_status="active",
        subscription_expiry_date=NOW - timedelta(hours=1),
        upcoming_plan="Standard",
        plan_switch_date=NOW - timedelta(days=1),
    )

    assert merchant_billing.refresh_subscription_status(db, merchant, now=NOW) is True
    assert merchant.plan == "Standard"
    assert merchant.upcoming_plan is None
    assert merchant.subscription_status == "expired"
    assert merchant_billing.in_grace_period(merchant, now=NOW)
    assert not merchant_billing.in_grace_period(merchant, now=NOW + timedelta(days=2))

    assert merchant_billing.refresh_subscription_status(db, merchant, now=NOW) is False


def test_tier_capacity(db, make_merchant, make_plan):
    merchant = make_merchant(plan="Standard")
    for i in range(4):
        make_plan(merchant, plan_name=f"Plan {i}")
    db.refresh(merchant)

    with pytest.raises(ValidationFailed):
        merchant_billing.check_tier_capacity(merchant, "Basic")
    merchant_billing.check_tier_capacity(merchant, "Standard")
    with pytest.raises(ValidationFailed):
        merchant_billing.check_tier_capacity(merchant, "Gold")


def test_verify_renewal_uses_paid_tier(db, gateway, make_merchant, sign):
    merchant = make_merchant(plan="Basic")
    handle = merchant_billing.create_renewal_order(db, merchant, "Premium", "yearly")

    # client claims a different tier than what was paid for
    merchant_billing.verify_renewal(db, merchant, sign(handle.order_id), "Basic", "monthly")

    assert merchant.plan == "Premium"
    assert merchant.billing_cycle == "yearly"


def test_verify_renewal_replay_and_owner(db, gateway, make_merchant, sign):
    merchant = make_merchant()
    handle = merchant_billing.create_renewal_order(db, merchant, "Standard")
    proof = sign(handle.order_id)

    with pytest.raises(Forbidden):
        merchant_billing.verify_renewal(db, make_merchant(), proof)

    merchant_billing.verify_renewal(db, merchant, proof)
    with pytest.raises(PaymentAlreadyProcessed):
        merchant_billing.verify_renewal(db, merchant, proof)


def test_verify_renewal_with_forged_signature(db, gateway, make_merchant):
    merchant = make_merchant()
    handle = merchant_billing.create_renewal_order(db, merchant, "Standard")
    forged = payments.PaymentProof(handle.order_id, "pay_1", "deadbeef")

    with pytest.raises(InvalidSignature):
        merchant_billing.verify_renewal(db, merchant, forged)


def test_renewal_proof_for_order_not_issued_here_never_renews(db, make_merchant, sign):
    expiry = NOW + timedelta(days=10)
    merchant = make_merchant(plan="Basic", subscription_expiry_date=expiry)
    proof = sign("order_not_issued_here")

    for _ in range(3):
        with pytest.raises(InvalidSignature):
            merchant_billing.verify_renewal(db, merchant, proof, "Premium", "yearly")

    db.refresh(merchant)
    assert merchant.plan == "Basic"
    assert merchant.subscription_expiry_date == expiry
