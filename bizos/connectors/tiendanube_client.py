"""
Tiendanube (Nuvemshop) REST API client

Page-number pagination with no end marker. The API answers 404 when asked
for a page past the last one, which is read as an empty page.
"""
from typing import Any, Dict, Optional

from bizos.config import get_settings
from bizos.connectors.base_client import BaseClient, ListParams, Page, ProviderLimiter, isoformat_utc
from bizos.connectors.credentials import TiendanubeCredentials
from bizos.connectors.errors import ProviderAPIError

settings = get_settings()

API_BASE_URL = "https://api.tiendanube.com/v1"
PAGE_SIZE = 200


class TiendanubeClient(BaseClient):
    PROVIDER = "tiendanube"

    def __init__(self, credentials: TiendanubeCredentials, limiter: Optional[ProviderLimiter] = None,
                 user_agent: Optional[str] = None):
        super().__init__(limiter)
        self.credentials = credentials
        self.base_url = f"{API_BASE_URL}/{credentials.store_id}"
        self.user_agent = user_agent or settings.tiendanube_user_agent

    def _headers(self) -> Dict[str, str]:
        # Tiendanube uses "Authentication", not "Authorization"
        return {
            "Authentication": f"bearer {self.credentials.access_token}",
            "User-Agent": self.user_agent,
            "Content-Type": "application/json",
        }

    async def _ping(self):
        return await self.get_store()

    async def get_store(self) -> Dict[str, Any]:
        return await self._request("GET", f"{self.base_url}/store")

    async def _list(self, resource: str, params: ListParams) -> Page:
        page_number = int(params.cursor or 1)
        query = {
            "page": page_number,
            "per_page": min(params.limit, PAGE_SIZE),
            "created_at_min": isoformat_utc(params.created_at_min),
            "created_at_max": isoformat_utc(params.created_at_max),
            "updated_at_min": isoformat_utc(params.updated_at_min),
        }
        query.update(params.extra)
        try:
            items = await self._request("GET", f"{self.base_url}/{resource}", params=query)
        except ProviderAPIError as e:
            if e.status == 404 and page_number > 1:
                return Page(items=[], next_cursor=None, has_more=False)
            raise
        items = items if isinstance(items, list) else []
        return Page(items=items, next_cursor=str(page_number + 1))

    async def list_customers(self, params: ListParams) -> Page:
        return await self._list("customers", params)

    async def list_products(self, params: ListParams) -> Page:
        return await self._list("products", params)

    async def list_orders(self, params: ListParams) -> Page:
        return await self._list("orders", params)

    async def get_order(self, order_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"{self.base_url}/orders/{order_id}")

    async def get_product(self, product_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"{self.base_url}/products/{product_id}")

    async def get_customer(self, customer_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"{self.base_url}/customers/{customer_id}")
