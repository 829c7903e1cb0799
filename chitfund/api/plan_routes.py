# chitfund/api/plan_routes.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from chitfund import crud, models
from chitfund.deps import get_current_merchant, get_current_user, get_db
from chitfund.errors import Forbidden, NotFound, Unauthorized
from chitfund.payments import PaymentProof
from chitfund.schemas import (
    PaymentProofIn, PlanCreateIn, PlanUpdateIn, SettleIn, WithdrawIn, plan_out, subscription_out,
)
from chitfund.services import subscription_engine, withdrawal_service

log = logging.getLogger("chitfund.plan_routes")

router = APIRouter(prefix="/chit-plans", tags=["chit-plans"])


def _owned_plan(db: Session, plan_id: int, merchant: models.Merchant, action: str) -> models.ChitPlan:
    plan = crud.get_plan(db, plan_id)
    if plan is None:
        raise NotFound("Chit plan not found")
    if plan.merchant_id != merchant.id:
        raise Unauthorized(f"Not authorized to {action} this plan")
    return plan


# ---------------------------------------------------------
# PLANS
# ---------------------------------------------------------
@router.get("")
def list_plans(
    keyword: Optional[str] = None,
    page: int = Query(1, ge=1, alias="pageNumber"),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    plans, page, pages, total = crud.list_plans(db, keyword, page, limit)
    return {"plans": [plan_out(p, with_merchant=True) for p in plans], "page": page, "pages": pages, "total": total}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_plan(
    payload: PlanCreateIn,
    merchant: models.Merchant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
):
    if merchant.bank_verification_status != "verified":
        raise Forbidden("Bank details verification required to create chit plans.")

    plan = crud.create_plan(
        db,
        merchant_id=merchant.id,
        plan_name=payload.plan_name,
        monthly_amount=payload.monthly_amount,
        duration_months=payload.duration_months,
        description=payload.description,
        return_type=payload.return_type,
        total_amount=payload.total_amount,
    )
    log.info("Merchant %s created chit plan %s", merchant.id, plan.id)
    return plan_out(plan)


@router.get("/my-plans")
def my_plans(user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return subscription_engine.list_user_plans(db, user)


@router.get("/my-subscribers")
def my_subscribers(merchant: models.Merchant = Depends(get_current_merchant), db: Session = Depends(get_db)):
    return subscription_engine.list_merchant_subscribers(db, merchant)


@router.get("/merchant/{merchant_id}")
def merchant_plans(
    merchant_id: int,
    page: int = Query(1, ge=1, alias="pageNumber"),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    plans, page, pages, total = crud.list_merchant_plans(db, merchant_id, page, limit)
    return {"plans": [plan_out(p) for p in plans], "page": page, "pages": pages, "total": total}


@router.put("/{plan_id}")
def update_plan(
    plan_id: int,
    payload: PlanUpdateIn,
    merchant: models.Merchant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
):
    plan = _owned_plan(db, plan_id, merchant, "update")
    plan = crud.update_plan(db, plan, payload.model_dump(exclude_none=True))
    return plan_out(plan)


@router.delete("/{plan_id}")
def delete_plan(
    plan_id: int,
    merchant: models.Merchant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
):
    plan = _owned_plan(db, plan_id, merchant, "delete")
    crud.delete_plan(db, plan)
    log.info("Merchant %s deleted chit plan %s", merchant.id, plan_id)
    return {"message": "Chit plan removed"}


# ---------------------------------------------------------
# SUBSCRIBE
# ---------------------------------------------------------
@router.post("/{plan_id}/subscribe", status_code=status.HTTP_201_CREATED)
def subscribe(
    plan_id: int,
    payload: PaymentProofIn,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    proof = PaymentProof(payload.order_id, payload.payment_id, payload.signature)
    sub = subscription_engine.subscribe(db, plan_id, user, proof)
    return {"message": "Subscribed successfully", "subscription": subscription_out(sub)}


# ---------------------------------------------------------
# WITHDRAWAL / SETTLEMENT
# ---------------------------------------------------------
@router.post("/{plan_id}/withdraw")
def withdraw(
    plan_id: int,
    payload: WithdrawIn,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    sub = withdrawal_service.request_withdrawal(db, plan_id, user, payload.bank_details, payload.message)
    return {"message": "Withdrawal requested", "subscription": subscription_out(sub)}


@router.post("/{plan_id}/settle")
def settle(
    plan_id: int,
    payload: SettleIn,
    merchant: models.Merchant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
):
    sub = withdrawal_service.settle(
        db, plan_id, merchant, payload.user_id, payload.amount, payload.transaction_id, payload.note,
    )
    return {"message": "Subscriber settled", "subscription": subscription_out(sub)}
