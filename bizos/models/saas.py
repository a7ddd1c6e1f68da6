"""
Normalized SaaS billing entities (Stripe)
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, JSON, Boolean, Text, ForeignKey, UniqueConstraint

from bizos.models.base import Base, NormalizedEntityMixin


class SaasPlan(NormalizedEntityMixin, Base):
    __tablename__ = "saas_plans"
    __table_args__ = (
        UniqueConstraint("workspace_id", "source", "external_id", name="uq_saas_plans_identity"),
    )

    name = Column(String, nullable=False)
    description = Column(Text)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String, nullable=False, default="USD")
    interval = Column(String)  # day, week, month, year
    interval_count = Column(Integer, default=1)
    trial_days = Column(Integer)
    is_active = Column(Boolean, default=True)
    metadata_json = Column("metadata", JSON)


class SaasCustomer(NormalizedEntityMixin, Base):
    __tablename__ = "saas_customers"
    __table_args__ = (
        UniqueConstraint("workspace_id", "source", "external_id", name="uq_saas_customers_identity"),
    )

    email = Column(String, index=True)
    name = Column(String)
    description = Column(Text)
    currency = Column(String, default="USD")
    balance = Column(Numeric(12, 2), default=0)
    metadata_json = Column("metadata", JSON)
    source_created_at = Column(DateTime)


class SaasSubscription(NormalizedEntityMixin, Base):
    __tablename__ = "saas_subscriptions"
    __table_args__ = (
        UniqueConstraint("workspace_id", "source", "external_id", name="uq_saas_subscriptions_identity"),
    )

    customer_id = Column(String, ForeignKey("saas_customers.id", ondelete="CASCADE"), nullable=False, index=True)
    plan_id = Column(String, ForeignKey("saas_plans.id"), nullable=True)
    # trialing, active, past_due, canceled, unpaid, incomplete, incomplete_expired, paused
    status = Column(String, nullable=False, index=True)
    mrr = Column(Numeric(12, 2), nullable=False)
    currency = Column(String, nullable=False, default="USD")
    quantity = Column(Integer, default=1)
    current_period_start = Column(DateTime)
    current_period_end = Column(DateTime)
    trial_start = Column(DateTime)
    trial_end = Column(DateTime)
    canceled_at = Column(DateTime)
    cancel_at_period_end = Column(Boolean, default=False)
    metadata_json = Column("metadata", JSON)
    source_created_at = Column(DateTime, nullable=False)


class SaasInvoice(NormalizedEntityMixin, Base):
    __tablename__ = "saas_invoices"
    __table_args__ = (
        UniqueConstraint("workspace_id", "source", "external_id", name="uq_saas_invoices_identity"),
    )

    customer_id = Column(String, ForeignKey("saas_customers.id", ondelete="CASCADE"), nullable=False, index=True)
    subscription_id = Column(String, ForeignKey("saas_subscriptions.id"), nullable=True)
    status = Column(String, nullable=False)  # draft, open, paid, void, uncollectible
    number = Column(String)
    subtotal = Column(Numeric(12, 2))
    tax = Column(Numeric(12, 2))
    total = Column(Numeric(12, 2), nullable=False)
    amount_paid = Column(Numeric(12, 2))
    amount_due = Column(Numeric(12, 2))
    currency = Column(String, nullable=False, default="USD")
    period_start = Column(DateTime)
    period_end = Column(DateTime)
    paid_at = Column(DateTime)
    voided_at = Column(DateTime)
    metadata_json = Column("metadata", JSON)
    source_created_at = Column(DateTime, nullable=False)
