# -----------------------------------------------------------
# chitfund/services/subscription_engine.py
# Subscribe / installments / offline payments + read views
# -----------------------------------------------------------
"""
Every state change here writes the ledger row and moves the subscription
counter in the same transaction: a Completed payment always means exactly one
installment credited.

Checks run before anything is staged, so a rejected request leaves no trace.
Subscription rows are versioned; a concurrent write to the same row is
retried up to config.OPTIMISTIC_RETRIES times.
"""

import logging
from datetime import date, datetime, time as dtime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from chitfund import config, crud, models, payments
from chitfund.commission import from_minor, to_money
from chitfund.db import utcnow
from chitfund.errors import (
    ChitFundError, ConcurrencyConflict, DuplicateSubscription, Forbidden, InvalidSignature,
    InvalidState, NotFound, PaymentAlreadyProcessed, ValidationFailed,
)
from chitfund.schemas import merchant_brief, payment_out
from chitfund.services import notifications_service as notify

log = logging.getLogger("chitfund.subscription_engine")


# -------------------------------------------------
# HELPERS
# -------------------------------------------------
def credit_installment(sub: models.PlanSubscription, plan: models.ChitPlan, amount, paid_at: datetime) -> None:
    """+1 installment; flips active -> completed once the plan's duration is reached."""
    sub.installments_paid = (sub.installments_paid or 0) + 1
    sub.total_paid = to_money(to_money(sub.total_paid or 0) + to_money(amount))
    sub.last_payment_date = paid_at
    if sub.status == models.STATUS_ACTIVE and sub.installments_paid >= plan.duration_months:
        sub.status = models.STATUS_COMPLETED


def _integrity_error(e: IntegrityError) -> Exception:
    msg = str(getattr(e, "orig", e))
    if "uq_plan_subscriber" in msg or "plan_subscriptions" in msg:
        return DuplicateSubscription()
    if "gateway_payment_id" in msg:
        return PaymentAlreadyProcessed()
    return e


def run_unit_of_work(db: Session, work: Callable[[], Any], label: str):
    """
    Run `work` and commit. `work` must (re)load what it mutates, since a
    retry starts from a rolled-back session.
    """
    attempts = max(1, int(config.OPTIMISTIC_RETRIES))
    for attempt in range(1, attempts + 1):
        try:
            result = work()
            db.commit()
            return result
        except StaleDataError:
            db.rollback()
            log.warning("Concurrent update during %s (attempt %s/%s)", label, attempt, attempts)
        except IntegrityError as e:
            db.rollback()
            raise _integrity_error(e) from e
        except ChitFundError:
            db.rollback()
            raise
        except Exception:
            db.rollback()
            log.exception("%s failed", label)
            raise
    raise ConcurrencyConflict()


def _load_plan(db: Session, plan_id: int) -> models.ChitPlan:
    plan = crud.get_plan(db, plan_id)
    if plan is None:
        raise NotFound("Chit plan not found")
    return plan


def _ensure_owner(plan: models.ChitPlan, merchant: models.Merchant) -> None:
    if plan.merchant_id != merchant.id:
        raise Forbidden("Not authorized")


def _ensure_payer(order: models.GatewayOrder, user: models.User) -> None:
    if order.user_id is not None and order.user_id != user.id:
        raise InvalidSignature("Order was not issued to this user")


def _online_amounts(order: models.GatewayOrder):
    """(base, commission) in rupees, as charged by the order."""
    return from_minor(order.base_amount_minor), from_minor(order.commission_minor)


def _record_online_payment(
    db: Session,
    plan: models.ChitPlan,
    user: models.User,
    proof: payments.PaymentProof,
    order: models.GatewayOrder,
    payment_type: str,
    base: Decimal,
    commission: Decimal,
    paid_at: datetime,
) -> models.Payment:
    return crud.add_payment(
        db,
        user_id=user.id,
        merchant_id=plan.merchant_id,
        plan_id=plan.id,
        amount=base,
        commission_amount=commission,
        gateway_order_id=proof.order_id,
        gateway_payment_id=proof.payment_id,
        status=models.PAYMENT_COMPLETED,
        type=payment_type,
        payment_date=paid_at,
        payment_details={
            "razorpay_order_id": proof.order_id,
            "razorpay_payment_id": proof.payment_id,
            "razorpay_signature": proof.signature,
            "credential_mode": order.credential_mode,
            "commission_paid": str(commission),
        },
    )


# =================================================
# ONLINE
# =================================================
def subscribe(
    db: Session,
    plan_id: int,
    user: models.User,
    proof: payments.PaymentProof,
) -> models.PlanSubscription:
    """
    First installment + enrolment. A second call for the same (plan, user)
    is DuplicateSubscription, whatever proof it carries.
    """
    plan = _load_plan(db, plan_id)
    order = payments.verify_payment_proof(db, proof, plan=plan)
    _ensure_payer(order, user)
    base, commission = _online_amounts(order)

    def work():
        if crud.get_subscription(db, plan.id, user.id) is not None:
            raise DuplicateSubscription()
        if crud.gateway_payment_consumed(db, proof.payment_id):
            raise PaymentAlreadyProcessed()

        now = utcnow()
        sub = crud.add_subscription(db, plan, user.id)
        _record_online_payment(db, plan, user, proof, order, models.TYPE_ONLINE_SUBSCRIPTION, base, commission, now)
        credit_installment(sub, plan, base, now)
        return sub

    sub = run_unit_of_work(db, work, f"subscribe plan={plan.id} user={user.id}")
    log.info("User %s subscribed to plan %s (payment %s)", user.id, plan.id, proof.payment_id)

    notify.notify(user, notify.payment_approved_template(user.name, base, plan.plan_name))
    notify.notify(plan.merchant, notify.payment_approved_merchant_template(
        plan.merchant.name, user.name, base, plan.plan_name))
    return sub


def pay_installment(
    db: Session,
    plan_id: int,
    user: models.User,
    proof: payments.PaymentProof,
) -> models.PlanSubscription:
    plan = _load_plan(db, plan_id)
    order = payments.verify_payment_proof(db, proof, plan=plan)
    _ensure_payer(order, user)
    base, commission = _online_amounts(order)

    def work():
        sub = crud.get_subscription(db, plan.id, user.id)
        if sub is None:
            raise NotFound("Subscription not found for this user")
        if sub.status != models.STATUS_ACTIVE:
            raise InvalidState(f"Subscription is {sub.status}, no further installments are due")
        if crud.gateway_payment_consumed(db, proof.payment_id):
            raise PaymentAlreadyProcessed()

        now = utcnow()
        _record_online_payment(db, plan, user, proof, order, models.TYPE_ONLINE_INSTALLMENT, base, commission, now)
        credit_installment(sub, plan, base, now)
        return sub

    sub = run_unit_of_work(db, work, f"installment plan={plan.id} user={user.id}")
    log.info(
        "Installment %s/%s credited for user=%s plan=%s (payment %s)",
        sub.installments_paid, plan.duration_months, user.id, plan.id, proof.payment_id,
    )

    notify.notify(user, notify.payment_approved_template(user.name, base, plan.plan_name))
    notify.notify(plan.merchant, notify.payment_approved_merchant_template(
        plan.merchant.name, user.name, base, plan.plan_name))
    return sub


# =================================================
# OFFLINE
# =================================================
def request_offline_payment(
    db: Session,
    plan_id: int,
    user: models.User,
    amount,
    notes: Optional[str] = None,
    proof_image: Optional[str] = None,
    payment_date: Optional[datetime] = None,
) -> models.Payment:
    plan = _load_plan(db, plan_id)
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationFailed("Amount must be > 0")

    sub = crud.get_subscription(db, plan.id, user.id)
    if sub is None:
        raise NotFound("Subscription not found for this user")
    if sub.status != models.STATUS_ACTIVE:
        raise InvalidState(f"Subscription is {sub.status}, no further installments are due")

    now = utcnow()
    payment = crud.add_payment(
        db,
        user_id=user.id,
        merchant_id=plan.merchant_id,
        plan_id=plan.id,
        amount=amount,
        commission_amount=to_money(0),
        status=models.PAYMENT_PENDING,
        type=models.TYPE_OFFLINE,
        payment_date=payment_date or now,
        notes=notes,
        proof_image=proof_image,
        payment_details={"method": "offline_request", "requested_at": now.isoformat()},
    )
    run_unit_of_work(db, lambda: payment, f"offline request plan={plan.id} user={user.id}")
    log.info("Offline payment %s requested by user=%s plan=%s", payment.id, user.id, plan.id)

    notify.notify(user, notify.payment_request_template(user.name, amount, plan.plan_name, payment.payment_date))
    notify.notify(plan.merchant, notify.payment_request_merchant_template(
        plan.merchant.name, user.name, amount, plan.plan_name))
    return payment


def _load_payment_for_merchant(db: Session, payment_id: int, merchant: models.Merchant) -> models.Payment:
    payment = crud.get_payment(db, payment_id)
    if payment is None:
        raise NotFound("Payment not found")
    if payment.merchant_id != merchant.id:
        raise Forbidden("Not authorized")
    if payment.status != models.PAYMENT_PENDING:
        raise InvalidState(f"Payment already {payment.status.lower()}")
    return payment


def approve_offline_payment(db: Session, payment_id: int, merchant: models.Merchant) -> models.Payment:
    def work():
        payment = _load_payment_for_merchant(db, payment_id, merchant)
        plan = crud.get_plan(db, payment.plan_id) if payment.plan_id else None
        if plan is None:
            raise NotFound("Associated chit plan not found")
        sub = crud.get_subscription(db, plan.id, payment.user_id)
        if sub is None:
            raise NotFound("Subscription not found for this user")
        if sub.status != models.STATUS_ACTIVE:
            raise InvalidState(f"Subscription is {sub.status}, no further installments are due")

        payment.status = models.PAYMENT_COMPLETED
        payment.updated_at = utcnow()
        credit_installment(sub, plan, payment.amount, payment.payment_date)
        return payment, plan

    payment, plan = run_unit_of_work(db, work, f"approve offline payment={payment_id}")
    log.info("Offline payment %s approved by merchant=%s", payment.id, merchant.id)

    user = payment.user
    notify.notify(user, notify.payment_approved_template(user.name, payment.amount, plan.plan_name))
    notify.notify(merchant, notify.payment_approved_merchant_template(
        merchant.name, user.name, payment.amount, plan.plan_name))
    return payment


def reject_offline_payment(db: Session, payment_id: int, merchant: models.Merchant) -> models.Payment:
    def work():
        payment = _load_payment_for_merchant(db, payment_id, merchant)
        payment.status = models.PAYMENT_REJECTED
        payment.updated_at = utcnow()
        return payment

    payment = run_unit_of_work(db, work, f"reject offline payment={payment_id}")
    log.info("Offline payment %s rejected by merchant=%s", payment.id, merchant.id)

    plan_name = payment.plan.plan_name if payment.plan is not None else "Chit Plan"
    notify.notify(payment.user, notify.payment_rejected_template(payment.user.name, payment.amount, plan_name))
    return payment


def record_manual_payment(
    db: Session,
    merchant: models.Merchant,
    plan_id: int,
    user_id: int,
    amount,
    notes: Optional[str] = None,
    payment_date: Optional[datetime] = None,
) -> models.Payment:
    """Cash collected in person: Completed immediately, merchant is the authority."""
    plan = _load_plan(db, plan_id)
    _ensure_owner(plan, merchant)
    user = crud.get_user(db, user_id)
    if user is None:
        raise NotFound("User not found")
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationFailed("Amount must be > 0")

    def work():
        sub = crud.get_subscription(db, plan.id, user.id)
        if sub is None:
            raise NotFound("Subscription not found for this user")
        if sub.status != models.STATUS_ACTIVE:
            raise InvalidState(f"Subscription is {sub.status}, no further installments are due")

        paid_at = payment_date or utcnow()
        payment = crud.add_payment(
            db,
            user_id=user.id,
            merchant_id=merchant.id,
            plan_id=plan.id,
            amount=amount,
            commission_amount=to_money(0),
            status=models.PAYMENT_COMPLETED,
            type=models.TYPE_OFFLINE,
            payment_date=paid_at,
            notes=notes or "Recorded manually by merchant",
            payment_details={"method": "manual_entry", "recorded_by": merchant.id},
        )
        credit_installment(sub, plan, amount, paid_at)
        return payment

    payment = run_unit_of_work(db, work, f"manual payment plan={plan.id} user={user.id}")
    log.info("Manual payment %s recorded by merchant=%s for user=%s", payment.id, merchant.id, user.id)

    notify.notify(user, notify.payment_approved_template(user.name, amount, plan.plan_name))
    notify.notify(merchant, notify.payment_approved_merchant_template(merchant.name, user.name, amount, plan.plan_name))
    return payment


# =================================================
# READ VIEWS
# =================================================
def progress(sub: models.PlanSubscription, plan: models.ChitPlan) -> Dict[str, Any]:
    paid = sub.installments_paid or 0
    monthly = to_money(plan.monthly_amount)
    return {
        "installments_paid": paid,
        "next_due_date": (sub.joined_at + relativedelta(months=paid)).isoformat(),
        "remaining_months": max(0, plan.duration_months - paid),
        "total_saved": float(monthly * paid),
    }


def list_user_plans(db: Session, user: models.User) -> List[Dict[str, Any]]:
    out = []
    for sub in crud.list_user_subscriptions(db, user.id):
        plan = sub.plan
        row = {
            "id": plan.id,
            "plan_name": plan.plan_name,
            "merchant": merchant_brief(plan.merchant),
            "total_amount": float(plan.total_amount),
            "monthly_amount": float(plan.monthly_amount),
            "duration_months": plan.duration_months,
            "joined_at": sub.joined_at.isoformat(),
            "status": sub.status,
            "withdrawal_request": sub.withdrawal_request,
            "settlement_details": sub.settlement_details,
        }
        row.update(progress(sub, plan))
        out.append(row)
    return out


def list_merchant_subscribers(db: Session, merchant: models.Merchant) -> List[Dict[str, Any]]:
    out = []
    for sub in crud.list_merchant_subscriptions(db, merchant.id):
        plan, user = sub.plan, sub.user
        if user is None:
            continue
        view = progress(sub, plan)
        pending = max(0, plan.duration_months - view["installments_paid"]) * to_money(plan.monthly_amount)
        out.append({
            "subscriber_id": sub.id,
            "user": {"id": user.id, "name": user.name, "email": user.email, "phone": user.phone},
            "plan": {
                "id": plan.id,
                "plan_name": plan.plan_name,
                "monthly_amount": float(plan.monthly_amount),
                "total_amount": float(plan.total_amount),
                "duration_months": plan.duration_months,
                "return_type": plan.return_type,
            },
            "subscription": dict(
                view,
                joined_at=sub.joined_at.isoformat(),
                total_amount_paid=float(sub.total_paid or 0),
                pending_amount=float(pending),
                status=sub.status,
                withdrawal_request=sub.withdrawal_request,
                settlement_details=sub.settlement_details,
            ),
        })
    return out


def payment_history(db: Session, merchant: models.Merchant, plan_id: int, user_id: int) -> List[Dict[str, Any]]:
    plan = _load_plan(db, plan_id)
    _ensure_owner(plan, merchant)
    return [payment_out(p) for p in crud.list_payments(db, plan.id, user_id)]


def pending_offline_payments(db: Session, merchant: models.Merchant) -> List[Dict[str, Any]]:
    out = []
    for p in crud.list_pending_offline_payments(db, merchant.id):
        row = payment_out(p)
        row["user"] = {"id": p.user.id, "name": p.user.name, "email": p.user.email, "phone": p.user.phone}
        row["plan"] = {"id": p.plan.id, "plan_name": p.plan.plan_name, "monthly_amount": float(p.plan.monthly_amount)} if p.plan else None
        out.append(row)
    return out


def payments_by_date(db: Session, merchant: models.Merchant, day: date) -> List[Dict[str, Any]]:
    if merchant.plan != "Premium":
        raise Forbidden("This feature is available only for Premium merchants")
    start = datetime.combine(day, dtime.min)
    end = datetime.combine(day, dtime.max)
    out = []
    for p in crud.list_completed_payments_between(db, merchant.id, start, end):
        row = payment_out(p)
        row["user"] = {"id": p.user.id, "name": p.user.name, "phone": p.user.phone, "email": p.user.email}
        row["plan"] = {"id": p.plan.id, "plan_name": p.plan.plan_name, "total_amount": float(p.plan.total_amount)} if p.plan else None
        out.append(row)
    return out
