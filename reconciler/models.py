from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String

from reconciler.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class Business(Base):
    __tablename__ = "businesses"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String)
    owner_email = Column(String)


class BusinessIntegration(Base):
    __tablename__ = "business_integrations"

    id = Column(String, primary_key=True, default=new_id)
    business_id = Column(String, index=True, nullable=False)
    provider = Column(String, default="stripe_connect", nullable=False)
    account_id = Column(String, unique=True, index=True, nullable=False)   # Stripe connected account ID
    is_active = Column(Boolean, default=False, nullable=False)
    charges_enabled = Column(Boolean, default=False, nullable=False)
    payouts_enabled = Column(Boolean, default=False, nullable=False)
    details_submitted = Column(Boolean, default=False, nullable=False)
    requirements_due = Column(JSON, default=list)
    deauthorized = Column(Boolean, default=False, nullable=False)
    deauthorized_at = Column(DateTime(timezone=True))
    onboarding_completed_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Appointment(Base):
    """Only the payment columns of an appointment; the rest belongs to the dashboard."""

    __tablename__ = "appointments"

    id = Column(String, primary_key=True, default=new_id)
    business_id = Column(String, index=True)
    deposit_paid_at = Column(DateTime(timezone=True))
    deposit_amount_cents = Column(Integer)
    deposit_transaction_id = Column(String)
    balance_paid_at = Column(DateTime(timezone=True))
    balance_amount_cents = Column(Integer)
    balance_transaction_id = Column(String)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class PaymentTransaction(Base):
    __tablename__ = "payment_transactions"

    id = Column(String, primary_key=True, default=new_id)
    business_id = Column(String, index=True, nullable=False)
    appointment_id = Column(String, index=True)
    stripe_payment_intent_id = Column(String, unique=True, index=True, nullable=False)
    stripe_charge_id = Column(String, index=True)
    amount_cents = Column(Integer, nullable=False)
    application_fee_cents = Column(Integer, default=0)
    currency = Column(String)
    status = Column(String, nullable=False)          # pending | succeeded | failed | refunded | partially_refunded
    payment_type = Column(String, default="full")    # deposit | balance | full
    customer_email = Column(String)
    customer_phone = Column(String)
    description = Column(String)
    failure_reason = Column(String)
    refunded_amount_cents = Column(Integer, default=0)
    stripe_transfer_id = Column(String, index=True)
    transfer_status = Column(String)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Transfer(Base):
    __tablename__ = "connect_transfers"

    id = Column(String, primary_key=True, default=new_id)
    stripe_transfer_id = Column(String, unique=True, index=True, nullable=False)
    stripe_account_id = Column(String, index=True)   # destination
    amount_cents = Column(Integer)
    currency = Column(String)
    status = Column(String, nullable=False)          # created | failed
    source_transaction = Column(String)              # charge or payment intent ID as sent by Stripe
    transaction_id = Column(String)                  # PaymentTransaction.id once linked
    description = Column(String)
    stripe_metadata = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Payout(Base):
    __tablename__ = "connect_payouts"

    id = Column(String, primary_key=True, default=new_id)
    stripe_payout_id = Column(String, unique=True, index=True, nullable=False)
    stripe_account_id = Column(String, index=True, nullable=False)
    amount_cents = Column(Integer)
    currency = Column(String)
    status = Column(String, nullable=False)          # paid | failed
    failure_code = Column(String)
    failure_message = Column(String)
    method = Column(String)
    type = Column(String)
    description = Column(String)
    bank_account_last4 = Column(String)
    arrival_date = Column(DateTime(timezone=True))
    paid_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Refund(Base):
    __tablename__ = "payment_refunds"

    id = Column(String, primary_key=True, default=new_id)
    stripe_refund_id = Column(String, unique=True, index=True, nullable=False)
    stripe_charge_id = Column(String, index=True)
    stripe_payment_intent_id = Column(String, index=True)
    business_id = Column(String, index=True)
    amount_cents = Column(Integer)
    currency = Column(String)
    status = Column(String)
    reason = Column(String)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
