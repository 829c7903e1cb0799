# chitfund/models/plan_models.py
from sqlalchemy import (
    Column, Integer, String, Text, Numeric, DateTime, JSON, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import relationship

from chitfund.db import Base, utcnow


class ChitPlan(Base):
    __tablename__ = "chit_plans"

    id = Column(Integer, primary_key=True, index=True)
    merchant_id = Column(Integer, ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False, index=True)
    plan_name = Column(String(255), nullable=False)
    monthly_amount = Column(Numeric(12, 2), nullable=False)   # rupees
    duration_months = Column(Integer, nullable=False)
    total_amount = Column(Numeric(14, 2), nullable=False)     # monthly * duration unless overridden
    description = Column(Text, nullable=True)
    return_type = Column(String(32), nullable=False, default="cash")
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    merchant = relationship("Merchant", back_populates="chit_plans")
    subscriptions = relationship(
        "PlanSubscription",
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="PlanSubscription.id",
    )


class PlanSubscription(Base):
    """
    One subscriber's progress inside a chit plan.

    status moves forward only: active -> completed -> requested_withdrawal -> settled.
    `version` is the optimistic-concurrency counter; a stale write raises
    StaleDataError at flush time.
    """
    __tablename__ = "plan_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    plan_id = Column(Integer, ForeignKey("chit_plans.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    joined_at = Column(DateTime, default=utcnow, nullable=False)
    installments_paid = Column(Integer, nullable=False, default=0)
    total_paid = Column(Numeric(14, 2), nullable=False, default=0)
    last_payment_date = Column(DateTime, nullable=True)
    status = Column(String(32), nullable=False, default="active")
    withdrawal_request = Column(JSON, nullable=True)   # {bank_details, message, requested_at, status}
    settlement_details = Column(JSON, nullable=True)   # {amount, transaction_id, settled_at, note, ledger_installments}
    version = Column(Integer, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    plan = relationship("ChitPlan", back_populates="subscriptions")
    user = relationship("User")

    __table_args__ = (UniqueConstraint("plan_id", "user_id", name="uq_plan_subscriber"),)
    __mapper_args__ = {"version_id_col": version}
