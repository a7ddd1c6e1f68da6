"""
Shopify Admin REST API client

Pagination is since_id based: each page asks for ids greater than the last
one seen. Shopify gives no end marker on this style of paging, so the
orchestrator applies the full-page rule.
"""
from typing import Any, Dict, Optional

from bizos.config import get_settings
from bizos.connectors.base_client import BaseClient, ListParams, Page, ProviderLimiter, isoformat_utc
from bizos.connectors.credentials import ShopifyCredentials

settings = get_settings()

PAGE_SIZE = 250


class ShopifyClient(BaseClient):
    """Thin client for one shop"""

    PROVIDER = "shopify"

    def __init__(self, credentials: ShopifyCredentials, limiter: Optional[ProviderLimiter] = None,
                 api_version: Optional[str] = None):
        super().__init__(limiter)
        self.credentials = credentials
        shop = credentials.shop_domain.replace("https://", "").replace("http://", "").rstrip("/")
        self.base_url = f"https://{shop}/admin/api/{api_version or settings.shopify_api_version}"

    def _headers(self) -> Dict[str, str]:
        return {
            "X-Shopify-Access-Token": self.credentials.access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _ping(self):
        return await self.get_shop()

    async def get_shop(self) -> Dict[str, Any]:
        data = await self._request("GET", f"{self.base_url}/shop.json")
        return data.get("shop", {})

    def _list_query(self, params: ListParams) -> Dict[str, Any]:
        query = {
            "limit": params.limit,
            "since_id": params.cursor,
            "created_at_min": isoformat_utc(params.created_at_min),
            "created_at_max": isoformat_utc(params.created_at_max),
            "updated_at_min": isoformat_utc(params.updated_at_min),
        }
        query.update(params.extra)
        return query

    async def _list(self, resource: str, params: ListParams, extra: Optional[Dict[str, Any]] = None) -> Page:
        query = self._list_query(params)
        if extra:
            query.update(extra)
        data = await self._request("GET", f"{self.base_url}/{resource}.json", params=query)
        items = data.get(resource, [])
        next_cursor = str(items[-1]["id"]) if items else None
        return Page(items=items, next_cursor=next_cursor)

    async def list_orders(self, params: ListParams) -> Page:
        return await self._list("orders", params, extra={"status": "any"})

    async def list_products(self, params: ListParams) -> Page:
        return await self._list("products", params)

    async def list_customers(self, params: ListParams) -> Page:
        return await self._list("customers", params)

