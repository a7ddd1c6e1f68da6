"""
Shopify connector

Syncs customers, products and orders (with line items) from the Admin REST
API, and applies orders/customers/products webhooks. Shopify webhook
bodies carry the full resource, so no follow-up fetch is needed.
"""
from typing import Optional

from bizos.connectors.base_client import ProviderLimiter
from bizos.connectors.credentials import ShopifyCredentials
from bizos.connectors.ecommerce_connector import EcommerceConnector
from bizos.connectors.shopify_client import PAGE_SIZE, ShopifyClient
from bizos.models.connector import ConnectorType
from bizos.transformers import shopify as shopify_transformer


class ShopifyConnector(EcommerceConnector):
    CONNECTOR_TYPE = ConnectorType.SHOPIFY
    SOURCE = shopify_transformer.SOURCE
    PAGE_SIZE = PAGE_SIZE

    transformer = shopify_transformer

    WEBHOOK_ROUTES = {
        "orders/create": "_handle_order",
        "orders/updated": "_handle_order",
        "orders/paid": "_handle_order",
        "orders/cancelled": "_handle_order",
        "orders/fulfilled": "_handle_order",
        "customers/create": "_handle_customer",
        "customers/update": "_handle_customer",
        "customers/delete": "_delete_customer",
        "products/create": "_handle_product",
        "products/update": "_handle_product",
        "products/delete": "_delete_product",
        "app/uninstalled": "_acknowledge",
    }

    def build_client(self, credentials: ShopifyCredentials, limiter: Optional[ProviderLimiter]) -> ShopifyClient:
        return ShopifyClient(credentials, limiter=limiter, api_version=self.options.get("api_version"))
