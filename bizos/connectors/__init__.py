"""Provider connectors for AI Business OS"""

from bizos.connectors.base_connector import BaseConnector, SyncResult, WebhookOutcome
from bizos.connectors.registry import ConnectorRegistry, build_default_registry

__all__ = [
    "BaseConnector",
    "SyncResult",
    "WebhookOutcome",
    "ConnectorRegistry",
    "build_default_registry",
]
