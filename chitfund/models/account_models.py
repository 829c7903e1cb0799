# chitfund/models/account_models.py
"""
Account directory: subscribers (users) and merchants.

Registration, OTP and KYC document flows live outside this service; these rows
only carry what the payment core reads.
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text
from sqlalchemy.orm import relationship

from chitfund.db import Base, utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(32), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class Merchant(Base):
    __tablename__ = "merchants"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(32), nullable=True)
    address = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True)

    # platform subscription tier: Basic / Standard / Premium
    plan = Column(String(32), nullable=False, default="Standard")
    billing_cycle = Column(String(16), nullable=False, default="monthly")
    subscription_start_date = Column(DateTime, nullable=True)
    subscription_expiry_date = Column(DateTime, nullable=True)
    subscription_status = Column(String(16), nullable=False, default="active")  # active / expired / cancelled
    upcoming_plan = Column(String(32), nullable=True)
    plan_switch_date = Column(DateTime, nullable=True)

    kyc_status = Column(String(16), nullable=False, default="pending")                # pending / verified / rejected
    bank_verification_status = Column(String(16), nullable=False, default="pending")  # pending / verified / failed

    # Razorpay Route linked account (fund splits)
    razorpay_account_id = Column(String(64), nullable=True)
    # merchant-owned Razorpay key pair, Fernet encrypted
    razorpay_key_id = Column(Text, nullable=True)
    razorpay_key_secret = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    chit_plans = relationship(
        "ChitPlan",
        back_populates="merchant",
        cascade="all, delete-orphan",
    )

    @property
    def has_own_gateway_keys(self) -> bool:
        return bool(self.razorpay_key_id and self.razorpay_key_secret)
