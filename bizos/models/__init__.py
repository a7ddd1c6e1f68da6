"""Database models for the AI Business OS sync core"""

from bizos.models.connector import (
    Connector,
    ConnectorType,
    ConnectorStatus,
    SyncLog,
    SyncStatus,
    WebhookEvent,
    WebhookEventStatus,
)

from bizos.models.ecommerce import (
    EcommerceCustomer,
    EcommerceProduct,
    EcommerceOrder,
    EcommerceOrderItem,
)

from bizos.models.saas import (
    SaasPlan,
    SaasCustomer,
    SaasSubscription,
    SaasInvoice,
)

from bizos.models.ads import (
    AdAccount,
    AdCampaign,
    AdSet,
    Ad,
    AdPerformance,
)

from bizos.models.ga4 import (
    GA4Session,
    GA4TrafficSource,
    GA4Event,
)

__all__ = [
    "Connector", "ConnectorType", "ConnectorStatus", "SyncLog", "SyncStatus",
    "WebhookEvent", "WebhookEventStatus",
    "EcommerceCustomer", "EcommerceProduct", "EcommerceOrder", "EcommerceOrderItem",
    "SaasPlan", "SaasCustomer", "SaasSubscription", "SaasInvoice",
    "AdAccount", "AdCampaign", "AdSet", "Ad", "AdPerformance",
    "GA4Session", "GA4TrafficSource", "GA4Event",
]
