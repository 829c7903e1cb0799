# chitfund/schemas.py

from datetime import datetime
from decimal import Decimal
from typing import Optional, Any, Dict

from pydantic import BaseModel, ConfigDict, Field, AliasChoices

from chitfund import models


def _float(value) -> Optional[float]:
    if value is None:
        return None
    return float(value)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# =====================================================
# REQUESTS
# =====================================================
class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class PaymentProofIn(_Body):
    """Checkout confirmation; accepts camelCase or Razorpay's snake_case names."""
    order_id: Optional[str] = Field(None, validation_alias=AliasChoices("orderId", "razorpay_order_id", "order_id"))
    payment_id: Optional[str] = Field(None, validation_alias=AliasChoices("paymentId", "razorpay_payment_id", "payment_id"))
    signature: Optional[str] = Field(None, validation_alias=AliasChoices("signature", "razorpay_signature"))


class InstallmentProofIn(PaymentProofIn):
    chit_plan_id: int = Field(..., validation_alias=AliasChoices("chitPlanId", "chit_plan_id"))


class SubscriptionProofIn(PaymentProofIn):
    chit_plan_id: Optional[int] = Field(None, validation_alias=AliasChoices("chitPlanId", "chit_plan_id"))


class CreateOrderIn(_Body):
    amount: Optional[Decimal] = None
    currency: str = "INR"
    chit_plan_id: int = Field(..., validation_alias=AliasChoices("chitPlanId", "chit_plan_id"))


class PlanCreateIn(_Body):
    plan_name: str = Field(..., min_length=1, validation_alias=AliasChoices("planName", "plan_name"))
    monthly_amount: Decimal = Field(..., gt=0, validation_alias=AliasChoices("monthlyAmount", "monthly_amount"))
    duration_months: int = Field(..., gt=0, validation_alias=AliasChoices("durationMonths", "duration_months"))
    total_amount: Optional[Decimal] = Field(None, gt=0, validation_alias=AliasChoices("totalAmount", "total_amount"))
    description: Optional[str] = None
    return_type: Optional[str] = Field(None, validation_alias=AliasChoices("returnType", "return_type"))


class PlanUpdateIn(_Body):
    plan_name: Optional[str] = Field(None, validation_alias=AliasChoices("planName", "plan_name"))
    monthly_amount: Optional[Decimal] = Field(None, gt=0, validation_alias=AliasChoices("monthlyAmount", "monthly_amount"))
    duration_months: Optional[int] = Field(None, gt=0, validation_alias=AliasChoices("durationMonths", "duration_months"))
    total_amount: Optional[Decimal] = Field(None, gt=0, validation_alias=AliasChoices("totalAmount", "total_amount"))
    description: Optional[str] = None
    return_type: Optional[str] = Field(None, validation_alias=AliasChoices("returnType", "return_type"))


class OfflineRequestIn(_Body):
    chit_plan_id: int = Field(..., validation_alias=AliasChoices("chitPlanId", "chit_plan_id"))
    amount: Decimal = Field(..., gt=0)
    notes: Optional[str] = None
    proof_image: Optional[str] = Field(None, validation_alias=AliasChoices("proofImage", "proof_image"))
    date: Optional[datetime] = None


class ManualPaymentIn(_Body):
    chit_plan_id: int = Field(..., validation_alias=AliasChoices("chitPlanId", "chit_plan_id"))
    user_id: int = Field(..., validation_alias=AliasChoices("userId", "user_id"))
    amount: Decimal = Field(..., gt=0)
    notes: Optional[str] = None
    date: Optional[datetime] = None


class WithdrawIn(_Body):
    bank_details: Dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("bankDetails", "bank_details"))
    message: Optional[str] = None


class SettleIn(_Body):
    user_id: int = Field(..., validation_alias=AliasChoices("userId", "user_id"))
    amount: Decimal = Field(..., gt=0)
    transaction_id: Optional[str] = Field(None, validation_alias=AliasChoices("transactionId", "transaction_id"))
    note: Optional[str] = None


class RenewalOrderIn(_Body):
    plan: str
    billing_cycle: str = Field("monthly", validation_alias=AliasChoices("billingCycle", "billing_cycle"))


class RenewalVerifyIn(PaymentProofIn):
    plan: Optional[str] = None
    billing_cycle: Optional[str] = Field(None, validation_alias=AliasChoices("billingCycle", "billing_cycle"))


# =====================================================
# RESPONSES
# =====================================================
def merchant_brief(m: Optional[models.Merchant]) -> Optional[Dict[str, Any]]:
    if m is None:
        return None
    return {"id": m.id, "name": m.name, "email": m.email, "phone": m.phone}


def plan_out(p: models.ChitPlan, with_merchant: bool = False) -> Dict[str, Any]:
    out = {
        "id": p.id,
        "merchant_id": p.merchant_id,
        "plan_name": p.plan_name,
        "monthly_amount": _float(p.monthly_amount),
        "duration_months": p.duration_months,
        "total_amount": _float(p.total_amount),
        "description": p.description,
        "return_type": p.return_type,
        "created_at": _iso(p.created_at),
    }
    if with_merchant:
        out["merchant"] = merchant_brief(p.merchant)
    return out


def subscription_out(s: models.PlanSubscription) -> Dict[str, Any]:
    return {
        "id": s.id,
        "plan_id": s.plan_id,
        "user_id": s.user_id,
        "joined_at": _iso(s.joined_at),
        "installments_paid": s.installments_paid,
        "total_paid": _float(s.total_paid),
        "last_payment_date": _iso(s.last_payment_date),
        "status": s.status,
        "withdrawal_request": s.withdrawal_request,
        "settlement_details": s.settlement_details,
    }


def payment_out(p: models.Payment) -> Dict[str, Any]:
    return {
        "id": p.id,
        "user_id": p.user_id,
        "merchant_id": p.merchant_id,
        "plan_id": p.plan_id,
        "amount": _float(p.amount),
        "commission_amount": _float(p.commission_amount),
        "order_id": p.gateway_order_id,
        "payment_id": p.gateway_payment_id,
        "status": p.status,
        "type": p.type,
        "payment_date": _iso(p.payment_date),
        "notes": p.notes,
        "proof_image": p.proof_image,
        "payment_details": p.payment_details,
        "created_at": _iso(p.created_at),
    }


def merchant_out(m: models.Merchant) -> Dict[str, Any]:
    return {
        "id": m.id,
        "name": m.name,
        "email": m.email,
        "plan": m.plan,
        "billing_cycle": m.billing_cycle,
        "subscription_status": m.subscription_status,
        "subscription_start_date": _iso(m.subscription_start_date),
        "subscription_expiry_date": _iso(m.subscription_expiry_date),
        "upcoming_plan": m.upcoming_plan,
        "plan_switch_date": _iso(m.plan_switch_date),
        "kyc_status": m.kyc_status,
        "has_own_gateway_keys": m.has_own_gateway_keys,
    }
