"""
Plan store, ledger store and account lookups.

Plan CRUD commits on its own. Subscription and ledger helpers only stage
changes on the session; the caller commits them as one unit of work.
"""

from typing import Optional, Dict, Any, List
from datetime import datetime

from sqlalchemy.orm import Session, joinedload
from sqlalchemy import desc, func

from chitfund import models
from chitfund.commission import to_money
from chitfund.db import utcnow


# -------------------------------------------------
# HELPERS
# -------------------------------------------------
def _now() -> datetime:
    return utcnow()


def _paginate(query, page: int, limit: int):
    page = max(1, int(page or 1))
    limit = max(1, int(limit or 10))
    total = query.count()
    items = query.offset(limit * (page - 1)).limit(limit).all()
    pages = (total + limit - 1) // limit
    return items, page, pages, total


# =================================================
# ACCOUNTS
# =================================================
def get_user(db: Session, user_id: int) -> Optional[models.User]:
    return db.get(models.User, user_id)


def get_merchant(db: Session, merchant_id: int) -> Optional[models.Merchant]:
    return db.get(models.Merchant, merchant_id)


# =================================================
# PLANS CRUD
# =================================================
def get_plan(db: Session, plan_id: int) -> Optional[models.ChitPlan]:
    return (
        db.query(models.ChitPlan)
        .options(joinedload(models.ChitPlan.merchant))
        .filter(models.ChitPlan.id == plan_id)
        .first()
    )


def create_plan(
    db: Session,
    merchant_id: int,
    plan_name: str,
    monthly_amount,
    duration_months: int,
    description: Optional[str] = None,
    return_type: Optional[str] = None,
    total_amount=None,
) -> models.ChitPlan:
    monthly = to_money(monthly_amount)
    total = to_money(total_amount) if total_amount else to_money(monthly * int(duration_months))

    plan = models.ChitPlan(
        merchant_id=merchant_id,
        plan_name=plan_name,
        monthly_amount=monthly,
        duration_months=int(duration_months),
        total_amount=total,
        description=description,
        return_type=return_type or "cash",
        created_at=_now(),
        updated_at=_now(),
    )
    db.add(plan)
    db.commit()
    db.refresh(plan)
    return plan


def update_plan(db: Session, plan: models.ChitPlan, changes: Dict[str, Any]) -> models.ChitPlan:
    """
    Apply non-empty `changes`. total_amount follows monthly * duration when
    amount or duration change, unless an explicit total_amount is given.
    """
    if changes.get("plan_name"):
        plan.plan_name = changes["plan_name"]
    if changes.get("monthly_amount"):
        plan.monthly_amount = to_money(changes["monthly_amount"])
    if changes.get("duration_months"):
        plan.duration_months = int(changes["duration_months"])
    if changes.get("description"):
        plan.description = changes["description"]
    if changes.get("return_type"):
        plan.return_type = changes["return_type"]

    if changes.get("total_amount"):
        plan.total_amount = to_money(changes["total_amount"])
    elif changes.get("monthly_amount") or changes.get("duration_months"):
        plan.total_amount = to_money(to_money(plan.monthly_amount) * plan.duration_months)

    plan.updated_at = _now()
    db.commit()
    db.refresh(plan)
    return plan


def delete_plan(db: Session, plan: models.ChitPlan) -> None:
    db.delete(plan)
    db.commit()


def list_plans(db: Session, keyword: Optional[str] = None, page: int = 1, limit: int = 10):
    q = db.query(models.ChitPlan).options(joinedload(models.ChitPlan.merchant))
    if keyword:
        q = q.filter(func.lower(models.ChitPlan.plan_name).contains(keyword.lower()))
    return _paginate(q.order_by(desc(models.ChitPlan.created_at), desc(models.ChitPlan.id)), page, limit)


def list_merchant_plans(db: Session, merchant_id: int, page: int = 1, limit: int = 10):
    q = (
        db.query(models.ChitPlan)
        .filter(models.ChitPlan.merchant_id == merchant_id)
        .order_by(desc(models.ChitPlan.created_at), desc(models.ChitPlan.id))
    )
    return _paginate(q, page, limit)


# =================================================
# SUBSCRIPTIONS
# =================================================
def get_subscription(db: Session, plan_id: int, user_id: int) -> Optional[models.PlanSubscription]:
    return (
        db.query(models.PlanSubscription)
        .filter(
            models.PlanSubscription.plan_id == plan_id,
            models.PlanSubscription.user_id == user_id,
        )
        .first()
    )


def add_subscription(db: Session, plan: models.ChitPlan, user_id: int) -> models.PlanSubscription:
    """Stage an empty subscription; the first credited installment fills it in."""
    sub = models.PlanSubscription(
        plan_id=plan.id,
        user_id=user_id,
        joined_at=_now(),
        installments_paid=0,
        total_paid=to_money(0),
        status=models.STATUS_ACTIVE,
    )
    db.add(sub)
    return sub


def list_user_subscriptions(db: Session, user_id: int) -> List[models.PlanSubscription]:
    return (
        db.query(models.PlanSubscription)
        .options(joinedload(models.PlanSubscription.plan).joinedload(models.ChitPlan.merchant))
        .filter(models.PlanSubscription.user_id == user_id)
        .order_by(desc(models.PlanSubscription.joined_at))
        .all()
    )


def list_merchant_subscriptions(db: Session, merchant_id: int) -> List[models.PlanSubscription]:
    return (
        db.query(models.PlanSubscription)
        .join(models.ChitPlan, models.PlanSubscription.plan_id == models.ChitPlan.id)
        .options(
            joinedload(models.PlanSubscription.plan),
            joinedload(models.PlanSubscription.user),
        )
        .filter(models.ChitPlan.merchant_id == merchant_id)
        .order_by(desc(models.PlanSubscription.joined_at), desc(models.PlanSubscription.id))
        .all()
    )


# =================================================
# LEDGER
# =================================================
def add_payment(db: Session, **fields) -> models.Payment:
    now = _now()
    fields.setdefault("payment_date", now)
    payment = models.Payment(created_at=now, updated_at=now, **fields)
    db.add(payment)
    return payment


def get_payment(db: Session, payment_id: int) -> Optional[models.Payment]:
    return (
        db.query(models.Payment)
        .options(joinedload(models.Payment.user), joinedload(models.Payment.plan))
        .filter(models.Payment.id == payment_id)
        .first()
    )


def gateway_payment_consumed(db: Session, gateway_payment_id: str) -> bool:
    return (
        db.query(models.Payment.id)
        .filter(models.Payment.gateway_payment_id == gateway_payment_id)
        .first()
        is not None
    )


def list_payments(db: Session, plan_id: int, user_id: int) -> List[models.Payment]:
    return (
        db.query(models.Payment)
        .filter(models.Payment.plan_id == plan_id, models.Payment.user_id == user_id)
        .order_by(desc(models.Payment.created_at), desc(models.Payment.id))
        .all()
    )


def list_pending_offline_payments(db: Session, merchant_id: int) -> List[models.Payment]:
    return (
        db.query(models.Payment)
        .options(joinedload(models.Payment.user), joinedload(models.Payment.plan))
        .filter(
            models.Payment.merchant_id == merchant_id,
            models.Payment.status == models.PAYMENT_PENDING,
            models.Payment.type == models.TYPE_OFFLINE,
        )
        .order_by(desc(models.Payment.created_at), desc(models.Payment.id))
        .all()
    )


def list_completed_payments_between(
    db: Session, merchant_id: int, start: datetime, end: datetime
) -> List[models.Payment]:
    return (
        db.query(models.Payment)
        .options(joinedload(models.Payment.user), joinedload(models.Payment.plan))
        .filter(
            models.Payment.merchant_id == merchant_id,
            models.Payment.status == models.PAYMENT_COMPLETED,
            models.Payment.payment_date >= start,
            models.Payment.payment_date <= end,
        )
        .order_by(desc(models.Payment.payment_date))
        .all()
    )


def completed_installment_count(db: Session, plan_id: int, user_id: int) -> int:
    return (
        db.query(func.count(models.Payment.id))
        .filter(
            models.Payment.plan_id == plan_id,
            models.Payment.user_id == user_id,
            models.Payment.status == models.PAYMENT_COMPLETED,
        )
        .scalar()
        or 0
    )
