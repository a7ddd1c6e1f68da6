"""
Connector, sync log and webhook event models

A Connector is a workspace's credentialed link to one external provider.
SyncLog is the per-run audit trail; WebhookEvent records each inbound
delivery for observability and dedup.
"""
from enum import Enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, JSON, Boolean, Text, UniqueConstraint

from bizos.models.base import Base, generate_id


class ConnectorType(str, Enum):
    SHOPIFY = "shopify"
    STRIPE = "stripe"
    META_ADS = "meta_ads"
    GA4 = "ga4"
    TIENDANUBE = "tiendanube"


class ConnectorStatus(str, Enum):
    PENDING = "pending"
    CONNECTED = "connected"
    ACTIVE = "active"
    SYNCING = "syncing"
    ERROR = "error"
    DISCONNECTED = "disconnected"


# Connectors in these states are never picked up for sync; everything else
# (including error) is retried on the next run
UNSYNCABLE_STATUSES = (ConnectorStatus.PENDING.value, ConnectorStatus.DISCONNECTED.value)


class SyncStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class WebhookEventStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class Connector(Base):
    __tablename__ = "connectors"

    id = Column(String, primary_key=True, default=generate_id)
    workspace_id = Column(String, nullable=False, index=True)
    type = Column(String, nullable=False, index=True)  # ConnectorType value
    name = Column(String, nullable=True)

    credentials = Column(JSON, nullable=True)  # provider-specific, see connectors.credentials
    settings = Column(JSON, nullable=True)
    webhook_secret = Column(String, nullable=True)

    status = Column(String, nullable=False, default=ConnectorStatus.PENDING.value)
    is_enabled = Column(Boolean, nullable=False, default=True)

    last_sync_at = Column(DateTime, nullable=True)
    last_sync_status = Column(String, nullable=True, default=SyncStatus.IDLE.value)
    last_sync_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class SyncLog(Base):
    """One row per sync attempt; running -> completed|failed, never reversed."""
    __tablename__ = "sync_logs"

    id = Column(String, primary_key=True, default=generate_id)
    connector_id = Column(String, nullable=False, index=True)
    workspace_id = Column(String, nullable=False, index=True)

    status = Column(String, nullable=False, default=SyncStatus.RUNNING.value)
    sync_type = Column(String, nullable=False)  # full, incremental

    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    records_processed = Column(JSON, nullable=True)  # {"orders": 260, ...}
    errors = Column(JSON, nullable=True)  # [{"type": ..., "message": ...}]

    @property
    def is_terminal(self) -> bool:
        return self.status in (SyncStatus.COMPLETED.value, SyncStatus.FAILED.value)


class WebhookEvent(Base):
    __tablename__ = "webhook_events"
    __table_args__ = (
        UniqueConstraint("provider", "external_event_id", name="uq_webhook_events_provider_event"),
    )

    id = Column(String, primary_key=True, default=generate_id)
    workspace_id = Column(String, nullable=True, index=True)
    connector_id = Column(String, nullable=True, index=True)

    provider = Column(String, nullable=False, index=True)
    external_event_id = Column(String, nullable=False)
    event_type = Column(String, nullable=False)
    payload = Column(JSON, nullable=True)

    status = Column(String, nullable=False, default=WebhookEventStatus.PENDING.value, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    last_error = Column(Text, nullable=True)

    received_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    processing_started_at = Column(DateTime, nullable=True)
    processed_at = Column(DateTime, nullable=True)
