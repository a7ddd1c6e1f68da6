"""
GA4 report rows, aggregated by day and dimensions
"""
from sqlalchemy import Column, Integer, String, Float, Date, UniqueConstraint

from bizos.models.base import Base, NormalizedEntityMixin


class GA4Session(NormalizedEntityMixin, Base):
    __tablename__ = "ga4_sessions"
    __table_args__ = (
        UniqueConstraint("workspace_id", "source", "external_id", name="uq_ga4_sessions_identity"),
    )

    property_id = Column(String, nullable=False)
    date = Column(Date, nullable=False, index=True)

    country = Column(String)
    city = Column(String)
    device_category = Column(String)
    browser = Column(String)
    operating_system = Column(String)

    sessions = Column(Integer, nullable=False, default=0)
    engaged_sessions = Column(Integer, nullable=False, default=0)
    engagement_rate = Column(Float, default=0)
    average_session_duration = Column(Float, default=0)
    bounce_rate = Column(Float, default=0)
    screen_page_views = Column(Integer, nullable=False, default=0)


class GA4TrafficSource(NormalizedEntityMixin, Base):
    __tablename__ = "ga4_traffic_sources"
    __table_args__ = (
        UniqueConstraint("workspace_id", "source", "external_id", name="uq_ga4_traffic_sources_identity"),
    )

    property_id = Column(String, nullable=False)
    date = Column(Date, nullable=False, index=True)

    session_source = Column(String)
    session_medium = Column(String)
    session_campaign = Column(String)
    channel_group = Column(String)

    sessions = Column(Integer, nullable=False, default=0)
    total_users = Column(Integer, nullable=False, default=0)
    new_users = Column(Integer, nullable=False, default=0)
    conversions = Column(Integer, nullable=False, default=0)
    total_revenue = Column(Float, default=0)


class GA4Event(NormalizedEntityMixin, Base):
    __tablename__ = "ga4_events"
    __table_args__ = (
        UniqueConstraint("workspace_id", "source", "external_id", name="uq_ga4_events_identity"),
    )

    property_id = Column(String, nullable=False)
    date = Column(Date, nullable=False, index=True)

    event_name = Column(String, nullable=False)
    country = Column(String)
    device_category = Column(String)

    event_count = Column(Integer, nullable=False, default=0)
    total_users = Column(Integer, nullable=False, default=0)
    event_value = Column(Float, default=0)
