# chitfund/api/merchant_routes.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from chitfund import models
from chitfund.deps import get_current_merchant, get_db
from chitfund.payments import PaymentProof
from chitfund.schemas import RenewalOrderIn, RenewalVerifyIn, merchant_out
from chitfund.services import merchant_billing

router = APIRouter(prefix="/merchants", tags=["merchants"])


def _merchant_view(merchant: models.Merchant):
    out = merchant_out(merchant)
    out["is_grace_period"] = merchant_billing.in_grace_period(merchant)
    return out


@router.get("/me")
def me(merchant: models.Merchant = Depends(get_current_merchant)):
    return _merchant_view(merchant)


@router.post("/create-renewal-order")
def create_renewal_order(
    payload: RenewalOrderIn,
    merchant: models.Merchant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
):
    handle = merchant_billing.create_renewal_order(db, merchant, payload.plan, payload.billing_cycle)
    return {"order": handle.as_dict(), "keyId": handle.key_id}


@router.post("/verify-renewal")
def verify_renewal(
    payload: RenewalVerifyIn,
    merchant: models.Merchant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
):
    proof = PaymentProof(payload.order_id, payload.payment_id, payload.signature)
    merchant = merchant_billing.verify_renewal(db, merchant, proof, payload.plan, payload.billing_cycle)
    return {"success": True, "merchant": _merchant_view(merchant)}
