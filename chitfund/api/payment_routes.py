# chitfund/api/payment_routes.py
import logging
from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from chitfund import crud, models, payments
from chitfund.deps import get_current_merchant, get_current_user, get_db
from chitfund.errors import NotFound
from chitfund.schemas import (
    CreateOrderIn, InstallmentProofIn, ManualPaymentIn, OfflineRequestIn, SubscriptionProofIn, payment_out,
    subscription_out,
)
from chitfund.services import subscription_engine

log = logging.getLogger("chitfund.payment_routes")

router = APIRouter(prefix="/payments", tags=["payments"])


def _proof(payload) -> payments.PaymentProof:
    return payments.PaymentProof(payload.order_id, payload.payment_id, payload.signature)


def _create_plan_order(db: Session, payload: CreateOrderIn, user: models.User):
    plan = crud.get_plan(db, payload.chit_plan_id)
    if plan is None:
        raise NotFound("Chit plan not found")
    handle = payments.create_order(
        db, payments.InstallmentPurpose(plan, user.id), amount=payload.amount, currency=payload.currency,
    )
    out = handle.as_dict()
    out["keyId"] = handle.key_id
    return out


# ---------------------------------------------------------
# CREATE RAZORPAY ORDERS
# ---------------------------------------------------------
@router.post("/create-subscription-order")
def create_subscription_order(
    payload: CreateOrderIn,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _create_plan_order(db, payload, user)


@router.post("/create-installment-order")
def create_installment_order(
    payload: CreateOrderIn,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if crud.get_subscription(db, payload.chit_plan_id, user.id) is None:
        raise NotFound("Subscription not found for this user")
    return _create_plan_order(db, payload, user)


# ---------------------------------------------------------
# VERIFY PAYMENTS
# ---------------------------------------------------------
@router.post("/verify-subscription-payment")
def verify_subscription_payment(
    payload: SubscriptionProofIn,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Signature check only; enrolment happens on POST /chit-plans/{id}/subscribe."""
    plan = crud.get_plan(db, payload.chit_plan_id) if payload.chit_plan_id else None
    payments.verify_payment_proof(db, _proof(payload), plan=plan)
    return {"status": "success", "message": "Payment verified"}


@router.post("/verify-installment")
def verify_installment(
    payload: InstallmentProofIn,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    sub = subscription_engine.pay_installment(db, payload.chit_plan_id, user, _proof(payload))
    return {
        "status": "success",
        "message": "Installment verified and updated",
        "subscription": subscription_out(sub),
    }


# ---------------------------------------------------------
# OFFLINE / MANUAL
# ---------------------------------------------------------
@router.post("/offline/request", status_code=status.HTTP_201_CREATED)
def request_offline(
    payload: OfflineRequestIn,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    payment = subscription_engine.request_offline_payment(
        db, payload.chit_plan_id, user, payload.amount,
        notes=payload.notes, proof_image=payload.proof_image, payment_date=payload.date,
    )
    return payment_out(payment)


@router.get("/offline/pending")
def pending_offline(merchant: models.Merchant = Depends(get_current_merchant), db: Session = Depends(get_db)):
    return subscription_engine.pending_offline_payments(db, merchant)


@router.put("/offline/{payment_id}/approve")
def approve_offline(
    payment_id: int,
    merchant: models.Merchant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
):
    payment = subscription_engine.approve_offline_payment(db, payment_id, merchant)
    return {"message": "Payment approved", "payment": payment_out(payment)}


@router.put("/offline/{payment_id}/reject")
def reject_offline(
    payment_id: int,
    merchant: models.Merchant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
):
    payment = subscription_engine.reject_offline_payment(db, payment_id, merchant)
    return {"message": "Payment rejected", "payment": payment_out(payment)}


@router.post("/offline/record", status_code=status.HTTP_201_CREATED)
def record_manual(
    payload: ManualPaymentIn,
    merchant: models.Merchant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
):
    payment = subscription_engine.record_manual_payment(
        db, merchant, payload.chit_plan_id, payload.user_id, payload.amount,
        notes=payload.notes, payment_date=payload.date,
    )
    return payment_out(payment)


# ---------------------------------------------------------
# HISTORY
# ---------------------------------------------------------
@router.get("/history/{plan_id}/{user_id}")
def history(
    plan_id: int,
    user_id: int,
    merchant: models.Merchant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
):
    return subscription_engine.payment_history(db, merchant, plan_id, user_id)


@router.get("/search/date")
def search_by_date(
    day: date = Query(..., alias="date"),
    merchant: models.Merchant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
):
    return subscription_engine.payments_by_date(db, merchant, day)
