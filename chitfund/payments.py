# -----------------------------------------------------------
# chitfund/payments.py
# Razorpay orders (platform or merchant-owned keys, Route splits)
# + payment signature verification
# -----------------------------------------------------------

import hmac
import hashlib
import logging
import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple, Union

import razorpay
from cryptography.fernet import InvalidToken
from sqlalchemy.orm import Session

from chitfund import config
from chitfund.commission import CommissionPolicy, default_policy, from_minor, to_minor, to_money
from chitfund.errors import GatewayFailure, InvalidSignature, ValidationFailed
from chitfund.models import ChitPlan, GatewayOrder, Merchant
from chitfund.security import decrypt_secret

log = logging.getLogger("chitfund.payments")

MODE_PLATFORM = "platform"
MODE_MERCHANT = "merchant"

PURPOSE_INSTALLMENT = "installment"
PURPOSE_MERCHANT_FEE = "merchant_fee"

# Merchant platform fee in rupees, GST (18%) included
RENEWAL_PRICES = {
    "Basic": {"monthly": 1770, "yearly": 17700},
    "Standard": {"monthly": 2950, "yearly": 29500},
    "Premium": {"monthly": 4130, "yearly": 41300},
}


# -----------------------------------------------------------
# Credentials
# -----------------------------------------------------------
@dataclass(frozen=True)
class GatewayCredentials:
    mode: str
    key_id: str
    key_secret: str = field(repr=False)


def platform_credentials() -> GatewayCredentials:
    return GatewayCredentials(MODE_PLATFORM, config.RAZORPAY_KEY_ID, config.RAZORPAY_KEY_SECRET)


def resolve_credentials(merchant: Optional[Merchant]) -> GatewayCredentials:
    """
    Merchant-owned keys when both are stored and decrypt cleanly,
    platform keys otherwise. Decryption errors never propagate.
    """
    if merchant is None or not merchant.has_own_gateway_keys:
        return platform_credentials()

    try:
        key_id = decrypt_secret(merchant.razorpay_key_id)
        key_secret = decrypt_secret(merchant.razorpay_key_secret)
    except (InvalidToken, ValueError) as e:
        log.warning(
            "Could not decrypt gateway keys for merchant=%s, falling back to platform keys: %r",
            merchant.id, e,
        )
        return platform_credentials()

    if not key_id or not key_secret:
        return platform_credentials()
    return GatewayCredentials(MODE_MERCHANT, key_id, key_secret)


# -----------------------------------------------------------
# Razorpay Client (platform singleton)
# -----------------------------------------------------------
_client = None


def get_razorpay_client():
    global _client
    if _client is None:
        _client = razorpay.Client(auth=(config.RAZORPAY_KEY_ID, config.RAZORPAY_KEY_SECRET))
    return _client


def client_for(creds: GatewayCredentials):
    if creds.mode == MODE_PLATFORM:
        return get_razorpay_client()
    return razorpay.Client(auth=(creds.key_id, creds.key_secret))


# -----------------------------------------------------------
# Payment purposes
# -----------------------------------------------------------
@dataclass(frozen=True)
class InstallmentPurpose:
    """A subscriber paying a plan installment (commission + optional Route split)."""
    plan: ChitPlan
    user_id: int


@dataclass(frozen=True)
class MerchantFeePurpose:
    """A merchant paying the platform subscription fee (platform keys, no commission)."""
    merchant: Merchant
    tier: str
    billing_cycle: str = "monthly"


PaymentPurpose = Union[InstallmentPurpose, MerchantFeePurpose]


@dataclass
class OrderHandle:
    order_id: str
    amount: int          # paise, what the payer is charged
    currency: str
    key_id: str
    receipt: str
    credential_mode: str
    base_amount: Decimal
    commission_amount: Decimal
    notes: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.order_id,
            "order_id": self.order_id,
            "amount": self.amount,
            "currency": self.currency,
            "receipt": self.receipt,
            "key_id": self.key_id,
            "credential_mode": self.credential_mode,
            "base_amount": float(self.base_amount),
            "commission_amount": float(self.commission_amount),
            "notes": self.notes,
        }


def new_receipt(prefix: str = "rcpt") -> str:
    return f"{prefix}_{int(time.time())}_{uuid.uuid4().hex[:8]}"


def transfer_directive(account_id: str, amount_minor: int, currency: str) -> Dict[str, Any]:
    """Route transfer moving the base amount to the merchant's linked account."""
    return {
        "account": account_id,
        "amount": amount_minor,
        "currency": currency,
        "notes": {"branch": "Main", "name": "Merchant Payout"},
        "linked_account_notes": ["branch"],
        "on_hold": 0,
    }


def _installment_order(purpose: InstallmentPurpose, amount, currency: str, policy: CommissionPolicy):
    plan = purpose.plan
    merchant = plan.merchant
    base = to_money(plan.monthly_amount)

    if amount is not None and to_minor(amount) != to_minor(base):
        raise ValidationFailed("Amount does not match the plan's monthly installment")

    base_minor, commission_minor, total_minor = policy.split(base)
    creds = resolve_credentials(merchant)
    receipt = new_receipt()

    options: Dict[str, Any] = {
        "amount": total_minor,
        "currency": currency,
        "receipt": receipt,
        "payment_capture": 1,
        "notes": {
            "base_amount": str(base),
            "commission_amount": str(from_minor(commission_minor)),
            "chit_plan_id": str(plan.id),
        },
    }

    # direct mode: funds already land in the merchant's own account
    transfer_account = None
    if creds.mode == MODE_PLATFORM and merchant is not None and merchant.razorpay_account_id:
        transfer_account = merchant.razorpay_account_id
        options["transfers"] = [transfer_directive(transfer_account, base_minor, currency)]

    record = dict(
        purpose=PURPOSE_INSTALLMENT,
        plan_id=plan.id,
        user_id=purpose.user_id,
        merchant_id=plan.merchant_id,
        base_amount_minor=base_minor,
        commission_minor=commission_minor,
        total_minor=total_minor,
        transfer_account=transfer_account,
    )
    return creds, options, record


def _merchant_fee_order(purpose: MerchantFeePurpose, currency: str):
    prices = RENEWAL_PRICES.get(purpose.tier)
    if prices is None:
        raise ValidationFailed("Invalid plan selected")
    cycle = "yearly" if (purpose.billing_cycle or "").lower() == "yearly" else "monthly"

    total_minor = to_minor(prices[cycle])
    creds = platform_credentials()
    receipt = new_receipt("rnw")
    options = {
        "amount": total_minor,
        "currency": currency,
        "receipt": receipt,
        "payment_capture": 1,
        "notes": {"merchant_id": str(purpose.merchant.id), "plan": purpose.tier, "billing_cycle": cycle},
    }
    record = dict(
        purpose=PURPOSE_MERCHANT_FEE,
        merchant_id=purpose.merchant.id,
        base_amount_minor=total_minor,
        commission_minor=0,
        total_minor=total_minor,
        tier=purpose.tier,
        billing_cycle=cycle,
    )
    return creds, options, record


# -----------------------------------------------------------
# Create Razorpay Order
# -----------------------------------------------------------
def create_order(
    db: Session,
    purpose: PaymentPurpose,
    amount=None,
    currency: Optional[str] = None,
    policy: Optional[CommissionPolicy] = None,
) -> OrderHandle:
    """
    amount = INR (e.g. 1499.00), optional cross-check for installments.
    Razorpay expects paise -> conversion done here.
    The credential set used is persisted with the order so verification
    can use the matching secret.
    """
    currency = (currency or config.DEFAULT_CURRENCY).upper()

    if isinstance(purpose, InstallmentPurpose):
        creds, options, record = _installment_order(purpose, amount, currency, policy or default_policy())
    elif isinstance(purpose, MerchantFeePurpose):
        creds, options, record = _merchant_fee_order(purpose, currency)
    else:
        raise TypeError(f"Unsupported payment purpose: {purpose!r}")

    client = client_for(creds)
    try:
        order = client.order.create(data=options, timeout=config.RAZORPAY_TIMEOUT_SECONDS)
    except Exception as e:
        log.exception("Razorpay order creation failed (mode=%s receipt=%s)", creds.mode, options["receipt"])
        raise GatewayFailure("Error creating order", extra=str(e))

    order_id = order.get("id")
    if not order_id:
        raise GatewayFailure("Error creating order", extra=order)

    db.add(GatewayOrder(
        order_id=order_id,
        credential_mode=creds.mode,
        key_id=creds.key_id,
        currency=currency,
        receipt=options["receipt"],
        provider_response=order,
        **record,
    ))
    db.commit()

    log.info(
        "Razorpay order %s created: purpose=%s mode=%s amount=%s",
        order_id, record["purpose"], creds.mode, options["amount"],
    )
    return OrderHandle(
        order_id=order_id,
        amount=int(order.get("amount", options["amount"])),
        currency=order.get("currency", currency),
        key_id=creds.key_id,
        receipt=options["receipt"],
        credential_mode=creds.mode,
        base_amount=from_minor(record["base_amount_minor"]),
        commission_amount=from_minor(record["commission_minor"]),
        notes=options["notes"],
    )


# -----------------------------------------------------------
# Verify Razorpay Payment Signature
# -----------------------------------------------------------
@dataclass(frozen=True)
class PaymentProof:
    order_id: Optional[str]
    payment_id: Optional[str]
    signature: Optional[str]

    def is_complete(self) -> bool:
        return bool(self.order_id and self.payment_id and self.signature)


def generate_signature(order_id: str, payment_id: str, secret: str) -> str:
    return hmac.new(
        secret.encode("utf-8"),
        f"{order_id}|{payment_id}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def verify_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    if not order_id or not payment_id or not signature or not secret:
        return False
    expected = generate_signature(order_id, payment_id, secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


def _secret_for_order(
    db: Session,
    order_id: str,
    purpose: str,
    plan: Optional[ChitPlan],
) -> Tuple[str, GatewayOrder]:
    order = db.query(GatewayOrder).filter(GatewayOrder.order_id == order_id).first()
    if order is None:
        log.warning("Proof for unknown gateway order %s", order_id)
        raise InvalidSignature("Order was not issued by this service")

    if order.purpose != purpose:
        raise InvalidSignature("Order was not issued for this payment")
    if plan is not None and order.plan_id != plan.id:
        raise InvalidSignature("Order was not issued for this plan")

    if order.credential_mode == MODE_MERCHANT:
        merchant = db.get(Merchant, order.merchant_id)
        creds = resolve_credentials(merchant)
        if creds.mode != MODE_MERCHANT or creds.key_id != order.key_id:
            log.warning(
                "Merchant gateway keys changed since order %s was created (merchant=%s)",
                order_id, order.merchant_id,
            )
        return creds.key_secret, order

    return platform_credentials().key_secret, order


def verify_payment_proof(
    db: Session,
    proof: PaymentProof,
    plan: Optional[ChitPlan] = None,
    purpose: str = PURPOSE_INSTALLMENT,
) -> GatewayOrder:
    """
    Check that Razorpay produced `proof` for an order we issued.
    Raises InvalidSignature on any mismatch; nothing is written.
    Returns the stored GatewayOrder.
    """
    if not proof.is_complete():
        raise ValidationFailed("orderId, paymentId and signature are required")

    secret, order = _secret_for_order(db, proof.order_id, purpose, plan)
    if not verify_signature(proof.order_id, proof.payment_id, proof.signature, secret):
        log.warning("Signature mismatch for order=%s payment=%s", proof.order_id, proof.payment_id)
        raise InvalidSignature()
    return order
