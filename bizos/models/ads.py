"""
Normalized ad-platform entities (Meta Ads)

Hierarchy: ad account -> campaign -> ad set -> ad, with daily performance
rows attributed to the ad (and its parents).
"""
from sqlalchemy import Column, Integer, String, Numeric, Date, DateTime, JSON, ForeignKey, UniqueConstraint

from bizos.models.base import Base, NormalizedEntityMixin


class AdAccount(NormalizedEntityMixin, Base):
    __tablename__ = "ad_accounts"
    __table_args__ = (
        UniqueConstraint("workspace_id", "source", "external_id", name="uq_ad_accounts_identity"),
    )

    name = Column(String, nullable=False)
    currency = Column(String, nullable=False, default="USD")
    timezone = Column(String, nullable=False, default="UTC")
    status = Column(String, nullable=False, default="active")
    amount_spent = Column(Numeric(14, 2))
    balance = Column(Numeric(14, 2))
    last_sync_at = Column(DateTime)


class AdCampaign(NormalizedEntityMixin, Base):
    __tablename__ = "ad_campaigns"
    __table_args__ = (
        UniqueConstraint("workspace_id", "source", "external_id", name="uq_ad_campaigns_identity"),
    )

    ad_account_id = Column(String, ForeignKey("ad_accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    status = Column(String, nullable=False, default="active")
    objective = Column(String)
    budget_type = Column(String)  # daily, lifetime
    budget = Column(Numeric(12, 2))
    budget_remaining = Column(Numeric(12, 2))
    start_date = Column(Date)
    end_date = Column(Date)
    source_created_at = Column(DateTime)


class AdSet(NormalizedEntityMixin, Base):
    __tablename__ = "ad_sets"
    __table_args__ = (
        UniqueConstraint("workspace_id", "source", "external_id", name="uq_ad_sets_identity"),
    )

    campaign_id = Column(String, ForeignKey("ad_campaigns.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    status = Column(String, nullable=False, default="active")
    budget_type = Column(String)
    budget = Column(Numeric(12, 2))
    bid_strategy = Column(String)
    bid_amount = Column(Numeric(12, 4))
    targeting = Column(JSON)
    start_date = Column(Date)
    end_date = Column(Date)
    source_created_at = Column(DateTime)


class Ad(NormalizedEntityMixin, Base):
    __tablename__ = "ads"
    __table_args__ = (
        UniqueConstraint("workspace_id", "source", "external_id", name="uq_ads_identity"),
    )

    ad_set_id = Column(String, ForeignKey("ad_sets.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    status = Column(String, nullable=False, default="active")
    creative = Column(JSON)
    source_created_at = Column(DateTime)


class AdPerformance(NormalizedEntityMixin, Base):
    """Daily insight row; external_id is '<ad id>:<date>'."""
    __tablename__ = "ad_performance"
    __table_args__ = (
        UniqueConstraint("workspace_id", "source", "external_id", name="uq_ad_performance_identity"),
    )

    ad_account_id = Column(String, ForeignKey("ad_accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    campaign_id = Column(String, ForeignKey("ad_campaigns.id", ondelete="SET NULL"), nullable=True)
    ad_set_id = Column(String, ForeignKey("ad_sets.id", ondelete="SET NULL"), nullable=True)
    ad_id = Column(String, ForeignKey("ads.id", ondelete="SET NULL"), nullable=True)
    date = Column(Date, nullable=False, index=True)

    impressions = Column(Integer, nullable=False, default=0)
    clicks = Column(Integer, nullable=False, default=0)
    spend = Column(Numeric(12, 2), nullable=False, default=0)
    reach = Column(Integer, default=0)
    frequency = Column(Numeric(8, 4))

    conversions = Column(Integer, default=0)
    conversion_value = Column(Numeric(12, 2), default=0)
    add_to_cart = Column(Integer, default=0)
    leads = Column(Integer, default=0)

    ctr = Column(Numeric(8, 4))
    cpc = Column(Numeric(8, 4))
    cpm = Column(Numeric(8, 4))
    cpa = Column(Numeric(12, 4))
    roas = Column(Numeric(8, 4))
    attribution_window = Column(String)
