# chitfund/models/payment_models.py
from sqlalchemy import (
    Column, Integer, String, Text, Numeric, DateTime, JSON, ForeignKey
)
from sqlalchemy.orm import relationship

from chitfund.db import Base, utcnow


class Payment(Base):
    """
    Ledger entry. Only `status` changes after insert
    (Pending Approval -> Completed | Rejected).
    """
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    merchant_id = Column(Integer, ForeignKey("merchants.id"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("chit_plans.id", ondelete="SET NULL"), nullable=True, index=True)
    amount = Column(Numeric(12, 2), nullable=False)                    # base amount, rupees
    commission_amount = Column(Numeric(12, 2), nullable=False, default=0)
    gateway_order_id = Column(String(128), nullable=True, index=True)  # Razorpay order id
    # unique: one gateway payment can credit at most one installment
    gateway_payment_id = Column(String(128), nullable=True, unique=True)
    status = Column(String(32), nullable=False, default="Pending Approval")  # Pending Approval / Completed / Rejected
    type = Column(String(32), nullable=False)                               # online-subscription / online-installment / offline
    payment_date = Column(DateTime, default=utcnow, nullable=False)
    notes = Column(Text, nullable=True)
    payment_details = Column(JSON, nullable=True)                      # provider response / method info
    proof_image = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User")
    plan = relationship("ChitPlan")


class GatewayOrder(Base):
    """
    Every Razorpay order we create, with the credential set it was issued under.
    Verification reads `credential_mode` from here instead of re-deriving it.
    """
    __tablename__ = "gateway_orders"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(128), nullable=False, unique=True, index=True)
    purpose = Column(String(32), nullable=False)           # installment / merchant_fee
    credential_mode = Column(String(16), nullable=False)   # platform / merchant
    key_id = Column(String(128), nullable=True)
    plan_id = Column(Integer, ForeignKey("chit_plans.id", ondelete="SET NULL"), nullable=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    merchant_id = Column(Integer, ForeignKey("merchants.id"), nullable=True)
    base_amount_minor = Column(Integer, nullable=False)    # paise
    commission_minor = Column(Integer, nullable=False, default=0)
    total_minor = Column(Integer, nullable=False)
    currency = Column(String(12), nullable=False, default="INR")
    receipt = Column(String(64), nullable=False)
    transfer_account = Column(String(64), nullable=True)   # Route linked account, platform mode only
    tier = Column(String(32), nullable=True)               # merchant_fee only
    billing_cycle = Column(String(16), nullable=True)      # merchant_fee only
    # merchant_fee only: the gateway payment that settled this order
    payment_id = Column(String(128), nullable=True, unique=True)
    provider_response = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
