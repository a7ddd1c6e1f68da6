"""
Tiendanube connector

Same stage order as Shopify. Incremental runs filter on updated_at_min so
edited orders are picked up. Webhooks only carry {store_id, event, id}, so
the resource is fetched before it is upserted.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from bizos.connectors.base_client import ListParams, ProviderLimiter
from bizos.connectors.base_connector import WebhookOutcome
from bizos.connectors.credentials import TiendanubeCredentials
from bizos.connectors.ecommerce_connector import EcommerceConnector
from bizos.connectors.tiendanube_client import PAGE_SIZE, TiendanubeClient
from bizos.models.connector import ConnectorType
from bizos.models.ecommerce import EcommerceOrder
from bizos.transformers import tiendanube as tiendanube_transformer


class TiendanubeConnector(EcommerceConnector):
    CONNECTOR_TYPE = ConnectorType.TIENDANUBE
    SOURCE = tiendanube_transformer.SOURCE
    PAGE_SIZE = PAGE_SIZE

    transformer = tiendanube_transformer

    WEBHOOK_ROUTES = {
        "order/created": "_handle_order",
        "order/updated": "_handle_order",
        "order/paid": "_handle_order",
        "order/packed": "_handle_order",
        "order/fulfilled": "_handle_order",
        "order/cancelled": "_cancel_order",
        "product/created": "_handle_product",
        "product/updated": "_handle_product",
        "product/deleted": "_delete_product",
        "category/created": "_acknowledge",
        "category/updated": "_acknowledge",
        "category/deleted": "_acknowledge",
        "app/uninstalled": "_acknowledge",
    }

    def build_client(self, credentials: TiendanubeCredentials,
                     limiter: Optional[ProviderLimiter]) -> TiendanubeClient:
        return TiendanubeClient(credentials, limiter=limiter)

    def list_params(self, since: Optional[datetime] = None, **extra) -> ListParams:
        return ListParams(limit=self.PAGE_SIZE, updated_at_min=since, extra=extra)

    async def fetch_resource(self, kind: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        resource_id = payload.get("id")
        if resource_id is None:
            return None
        fetch = getattr(self.client, f"get_{kind}")
        return await fetch(str(resource_id))

    async def _cancel_order(self, payload: Dict[str, Any]) -> WebhookOutcome:
        external_id = str(payload.get("id") or "")
        order_id = self.reconciler.patch(
            EcommerceOrder, self.workspace_id, self.SOURCE, external_id, {"status": "cancelled"}
        ) if external_id else None
        if order_id is None:
            # Never synced; pull it so the cancellation is not lost
            return await self._handle_order(payload)
        return WebhookOutcome(action="updated", object_id=order_id)
