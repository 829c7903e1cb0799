# chitfund/services/withdrawal_service.py
"""
Matured savings payout: the subscriber asks, the merchant settles offline and
records the transfer reference. `settled` is terminal.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from chitfund import crud, models
from chitfund.commission import to_money
from chitfund.db import utcnow
from chitfund.errors import Forbidden, InvalidState, NotFound, ValidationFailed
from chitfund.services import notifications_service as notify
from chitfund.services.subscription_engine import run_unit_of_work

log = logging.getLogger("chitfund.withdrawals")


def is_withdrawable(sub: models.PlanSubscription, plan: models.ChitPlan) -> bool:
    if sub.status == models.STATUS_COMPLETED:
        return True
    # status may lag behind the counter on rows written before completion was tracked
    return sub.status == models.STATUS_ACTIVE and (sub.installments_paid or 0) >= plan.duration_months


def request_withdrawal(
    db: Session,
    plan_id: int,
    user: models.User,
    bank_details: Optional[Dict[str, Any]] = None,
    message: Optional[str] = None,
) -> models.PlanSubscription:
    plan = crud.get_plan(db, plan_id)
    if plan is None:
        raise NotFound("Chit plan not found")

    def work():
        sub = crud.get_subscription(db, plan.id, user.id)
        if sub is None:
            raise NotFound("You are not subscribed to this plan")
        if not is_withdrawable(sub, plan):
            raise InvalidState("Plan is not yet completed. Cannot withdraw.")

        sub.withdrawal_request = {
            "bank_details": bank_details or {},
            "message": message,
            "requested_at": utcnow().isoformat(),
            "status": "pending",
        }
        sub.status = models.STATUS_REQUESTED_WITHDRAWAL
        return sub

    sub = run_unit_of_work(db, work, f"withdrawal request plan={plan.id} user={user.id}")
    log.info("Withdrawal requested by user=%s on plan=%s", user.id, plan.id)

    notify.notify(plan.merchant, notify.withdrawal_requested_template(plan.merchant.name, user.name, plan.plan_name))
    return sub


def settle(
    db: Session,
    plan_id: int,
    merchant: models.Merchant,
    user_id: int,
    amount,
    transaction_id: Optional[str] = None,
    note: Optional[str] = None,
) -> models.PlanSubscription:
    plan = crud.get_plan(db, plan_id)
    if plan is None:
        raise NotFound("Chit plan not found")
    if plan.merchant_id != merchant.id:
        raise Forbidden("Not authorized")
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationFailed("Amount must be > 0")

    def work():
        sub = crud.get_subscription(db, plan.id, user_id)
        if sub is None:
            raise NotFound("Subscriber not found")
        if sub.status != models.STATUS_REQUESTED_WITHDRAWAL:
            raise InvalidState("No pending withdrawal request for this subscriber")

        ledger = crud.completed_installment_count(db, plan.id, user_id)
        if ledger != sub.installments_paid:
            log.warning(
                "Settling plan=%s user=%s with %s completed payments against %s credited installments",
                plan.id, user_id, ledger, sub.installments_paid,
            )

        now = utcnow()
        sub.settlement_details = {
            "amount": float(amount),
            "transaction_id": transaction_id,
            "settled_at": now.isoformat(),
            "note": note,
            "ledger_installments": ledger,
        }
        # JSON column: assign a new dict so the change is tracked
        request = dict(sub.withdrawal_request or {})
        request["status"] = "approved"
        sub.withdrawal_request = request
        sub.status = models.STATUS_SETTLED
        return sub

    sub = run_unit_of_work(db, work, f"settle plan={plan.id} user={user_id}")
    log.info("Subscriber %s settled on plan=%s amount=%s ref=%s", user_id, plan.id, amount, transaction_id)

    notify.notify(sub.user, notify.settlement_template(sub.user.name, amount, plan.plan_name, transaction_id))
    return sub
