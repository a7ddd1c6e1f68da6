"""
Connector registry

Maps a ConnectorType to its connector class and builds connector instances
from stored Connector rows.
"""
from typing import Dict, List, Optional, Type

from sqlalchemy.orm import Session

from bizos.connectors.base_client import ProviderLimiter
from bizos.connectors.base_connector import BaseConnector
from bizos.connectors.credentials import parse_credentials
from bizos.connectors.errors import UnsupportedConnectorError
from bizos.models.connector import Connector, ConnectorType


class ConnectorRegistry:
    def __init__(self):
        self._connectors: Dict[ConnectorType, Type[BaseConnector]] = {}

    def register(self, connector_cls: Type[BaseConnector]) -> Type[BaseConnector]:
        self._connectors[connector_cls.CONNECTOR_TYPE] = connector_cls
        return connector_cls

    def get(self, connector_type) -> Type[BaseConnector]:
        try:
            key = ConnectorType(connector_type)
        except ValueError:
            raise UnsupportedConnectorError(f"Unknown connector type: {connector_type}")
        if key not in self._connectors:
            raise UnsupportedConnectorError(f"No connector registered for {key.value}")
        return self._connectors[key]

    def supports(self, connector_type) -> bool:
        try:
            return ConnectorType(connector_type) in self._connectors
        except ValueError:
            return False

    def supported(self) -> List[str]:
        return [connector_type.value for connector_type in self._connectors]

    def create(self, connector: Connector, db: Session, limiter: Optional[ProviderLimiter] = None) -> BaseConnector:
        """Instantiate the connector for a stored row. Raises CredentialsError on bad credentials."""
        connector_cls = self.get(connector.type)
        credentials = parse_credentials(connector.type, connector.credentials)
        return connector_cls(
            connector.workspace_id,
            credentials,
            db,
            limiter=limiter,
            connector_id=connector.id,
            options=connector.settings or {},
        )


def build_default_registry() -> ConnectorRegistry:
    from bizos.connectors.ga4_connector import GA4Connector
    from bizos.connectors.meta_ads_connector import MetaAdsConnector
    from bizos.connectors.shopify_connector import ShopifyConnector
    from bizos.connectors.stripe_connector import StripeConnector
    from bizos.connectors.tiendanube_connector import TiendanubeConnector

    registry = ConnectorRegistry()
    for connector_cls in (ShopifyConnector, StripeConnector, MetaAdsConnector, GA4Connector, TiendanubeConnector):
        registry.register(connector_cls)
    return registry
