# chitfund/services/merchant_billing.py
"""
Platform subscription of merchants (Basic / Standard / Premium).

There is no scheduler: expiry and scheduled plan switches are applied lazily,
whenever an authenticated merchant request loads the merchant row.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from chitfund import models, payments
from chitfund.db import utcnow
from chitfund.errors import Forbidden, PaymentAlreadyProcessed, ValidationFailed

log = logging.getLogger("chitfund.merchant_billing")

GRACE_PERIOD = timedelta(days=1)

# chit plans a merchant may hold per tier; Premium is unbounded
TIER_PLAN_LIMITS = {"Basic": 3, "Standard": 6}


def refresh_subscription_status(db: Session, merchant: models.Merchant, now: Optional[datetime] = None) -> bool:
    """Apply a due plan switch and mark an elapsed subscription expired. True if the row changed."""
    now = now or utcnow()
    changed = False

    if merchant.upcoming_plan and merchant.plan_switch_date and merchant.plan_switch_date <= now:
        log.info("Merchant %s switching plan %s -> %s", merchant.id, merchant.plan, merchant.upcoming_plan)
        merchant.plan = merchant.upcoming_plan
        merchant.upcoming_plan = None
        merchant.plan_switch_date = None
        changed = True

    expiry = merchant.subscription_expiry_date
    if expiry is not None and now > expiry and merchant.subscription_status != "expired":
        log.info("Merchant %s subscription expired at %s", merchant.id, expiry)
        merchant.subscription_status = "expired"
        changed = True

    if changed:
        db.commit()
    return changed


def in_grace_period(merchant: models.Merchant, now: Optional[datetime] = None) -> bool:
    """Expired, but less than a day ago (the dashboard still lets them renew)."""
    now = now or utcnow()
    expiry = merchant.subscription_expiry_date
    return expiry is not None and expiry < now <= expiry + GRACE_PERIOD


def check_tier_capacity(merchant: models.Merchant, tier: str) -> None:
    if tier not in payments.RENEWAL_PRICES:
        raise ValidationFailed("Invalid plan selected")
    limit = TIER_PLAN_LIMITS.get(tier)
    held = len(merchant.chit_plans)
    if limit is not None and held > limit:
        raise ValidationFailed(f"You have more than {limit} chits. Choose a higher plan than {tier}.")


def _extend(start: datetime, billing_cycle: str) -> datetime:
    if billing_cycle == "yearly":
        return start + relativedelta(years=1)
    return start + timedelta(days=30)


def apply_renewal(
    db: Session,
    merchant: models.Merchant,
    tier: str,
    billing_cycle: Optional[str] = None,
    now: Optional[datetime] = None,
) -> models.Merchant:
    """
    Extend the merchant's subscription by one billing cycle.

    Unexpired time carries over. Premium -> Standard while still active keeps
    Premium until the current expiry and queues the switch.
    """
    now = now or utcnow()
    cycle = billing_cycle or merchant.billing_cycle or "monthly"
    current_expiry = merchant.subscription_expiry_date
    active = current_expiry is not None and current_expiry > now

    if active and merchant.plan == "Premium" and tier == "Standard":
        merchant.upcoming_plan = "Standard"
        merchant.plan_switch_date = current_expiry
    else:
        merchant.plan = tier
        merchant.upcoming_plan = None
        merchant.plan_switch_date = None

    merchant.subscription_expiry_date = _extend(current_expiry if active else now, cycle)
    merchant.subscription_start_date = now
    merchant.subscription_status = "active"
    merchant.billing_cycle = cycle
    db.commit()
    db.refresh(merchant)

    log.info(
        "Merchant %s renewed: plan=%s upcoming=%s cycle=%s expires=%s",
        merchant.id, merchant.plan, merchant.upcoming_plan, cycle, merchant.subscription_expiry_date,
    )
    return merchant


def create_renewal_order(db: Session, merchant: models.Merchant, tier: str, billing_cycle: str = "monthly"):
    check_tier_capacity(merchant, tier)
    return payments.create_order(db, payments.MerchantFeePurpose(merchant, tier, billing_cycle))


def verify_renewal(
    db: Session,
    merchant: models.Merchant,
    proof: payments.PaymentProof,
    tier: Optional[str] = None,
    billing_cycle: Optional[str] = None,
) -> models.Merchant:
    order = payments.verify_payment_proof(db, proof, purpose=payments.PURPOSE_MERCHANT_FEE)
    if order.merchant_id != merchant.id:
        raise Forbidden("Order was not issued to this merchant")
    if order.payment_id:
        raise PaymentAlreadyProcessed()
    order.payment_id = proof.payment_id

    # what was paid for wins over what the client reports
    if (tier and tier != order.tier) or (billing_cycle and billing_cycle != order.billing_cycle):
        log.warning(
            "Merchant %s reported %s/%s for an order paid as %s/%s",
            merchant.id, tier, billing_cycle, order.tier, order.billing_cycle,
        )
    return apply_renewal(db, merchant, order.tier, order.billing_cycle)
