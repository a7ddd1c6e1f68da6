"""
Stripe REST API client

Cursor pagination via starting_after, with has_more as the authoritative
end marker. Deleted customers are dropped from customer pages.
"""
import asyncio
import calendar
from datetime import datetime
from typing import Any, Dict, Optional

from bizos.connectors.base_client import BaseClient, ListParams, Page, ProviderLimiter
from bizos.connectors.credentials import StripeCredentials

BASE_URL = "https://api.stripe.com/v1"
PAGE_SIZE = 100
PAGE_DELAY_SECONDS = 0.1  # between pages, to stay under Stripe rate limits


def _unix(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    return calendar.timegm(value.utctimetuple())


class StripeClient(BaseClient):
    PROVIDER = "stripe"

    def __init__(self, credentials: StripeCredentials, limiter: Optional[ProviderLimiter] = None,
                 page_delay: float = PAGE_DELAY_SECONDS):
        super().__init__(limiter)
        self.credentials = credentials
        self.page_delay = page_delay

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.credentials.api_key}",
            "Accept": "application/json",
        }

    async def _ping(self):
        return await self._request("GET", f"{BASE_URL}/balance")

    def _list_query(self, params: ListParams) -> Dict[str, Any]:
        query = {
            "limit": min(params.limit, PAGE_SIZE),
            "starting_after": params.cursor,
            "created[gte]": _unix(params.created_at_min),
            "created[lte]": _unix(params.created_at_max),
        }
        query.update(params.extra)
        return query

    async def _list(self, resource: str, params: ListParams, extra: Optional[Dict[str, Any]] = None) -> Page:
        if params.cursor and self.page_delay:
            await asyncio.sleep(self.page_delay)
        query = self._list_query(params)
        if extra:
            query.update(extra)
        data = await self._request("GET", f"{BASE_URL}/{resource}", params=query)
        raw_items = data.get("data", [])
        has_more = bool(data.get("has_more"))
        next_cursor = raw_items[-1]["id"] if raw_items else None
        return Page(items=raw_items, next_cursor=next_cursor, has_more=has_more)

    async def list_customers(self, params: ListParams) -> Page:
        page = await self._list("customers", params)
        # Cursor stays on the last raw item so deleted entries don't stall paging
        page.items = [c for c in page.items if not c.get("deleted")]
        return page

    async def list_prices(self, params: ListParams) -> Page:
        return await self._list("prices", params, extra={"type": "recurring", "expand[]": "data.product"})

    async def list_subscriptions(self, params: ListParams) -> Page:
        return await self._list("subscriptions", params, extra={"status": "all"})

    async def list_invoices(self, params: ListParams) -> Page:
        return await self._list("invoices", params)

    async def get_customer(self, customer_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"{BASE_URL}/customers/{customer_id}")

    async def get_product(self, product_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"{BASE_URL}/products/{product_id}")
