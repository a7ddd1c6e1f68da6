"""
Test doubles for provider clients and connector rows.

FakeClient serves list_<resource> / get_<resource> calls from in-memory
collections, records every list request, and can be told to fail a
resource or to return authoritative end markers.
"""
import asyncio
from functools import partial
from typing import Any, Dict, List, Optional

from bizos.connectors.base_client import ListParams, Page
from bizos.connectors.registry import ConnectorRegistry
from bizos.models.connector import Connector, ConnectorStatus


def _run(coro):
    """Run an async coroutine in a sync test."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None
    if loop and loop.is_running():
        import concurrent.futures
        with concurrent.futures.ThreadPoolExecutor() as pool:
            return pool.submit(asyncio.run, coro).result()
    return asyncio.run(coro)


class FakeClient:
    PROVIDER = "fake"

    def __init__(
        self,
        collections: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        resources: Optional[Dict[str, Any]] = None,
        failures: Optional[Dict[str, Exception]] = None,
        authoritative: bool = False,
        connected: bool = True,
        delay: float = 0.0,
    ):
        self.collections = collections or {}
        self.resources = resources or {}
        self.failures = failures or {}
        self.authoritative = authoritative
        self.connected = connected
        self.delay = delay
        self.calls: List[tuple] = []
        self.credentials = None

    async def test_connection(self) -> bool:
        return self.connected

    def __getattr__(self, name):
        if name.startswith("list_"):
            return partial(self._list, name[len("list_"):])
        if name.startswith("get_"):
            return partial(self._get, name[len("get_"):])
        raise AttributeError(name)

    def requests_for(self, resource: str) -> List[ListParams]:
        return [params for called, params in self.calls if called == resource]

    async def _list(self, resource: str, params: ListParams) -> Page:
        self.calls.append((resource, params))
        if self.delay:
            await asyncio.sleep(self.delay)
        if resource in self.failures:
            raise self.failures[resource]
        items = self.collections.get(resource, [])
        start = int(params.cursor or 0)
        chunk = items[start:start + params.limit]
        end = start + len(chunk)
        has_more = end < len(items) if self.authoritative else None
        return Page(items=list(chunk), next_cursor=str(end), has_more=has_more)

    async def _get(self, resource: str, *ids):
        self.calls.append((f"get_{resource}", ids))
        if resource in self.failures:
            raise self.failures[resource]
        value = self.resources.get(resource)
        if ids and isinstance(value, dict):
            return value.get(ids[0])
        return value


class FakeReportClient(FakeClient):
    """GA4-shaped client: run_report picks the collection from the requested dimensions."""

    async def run_report(self, request: Dict[str, Any], params: ListParams) -> Page:
        dimensions = [d["name"] for d in request.get("dimensions", [])]
        if "sessionSource" in dimensions:
            resource = "traffic"
        elif "eventName" in dimensions:
            resource = "events"
        else:
            resource = "sessions"
        self.calls.append(("report_request", request))
        return await self._list(resource, params)


def registry_with(connector_cls, client) -> ConnectorRegistry:
    """A registry whose connector of this type always talks to the given client."""

    class _Connector(connector_cls):
        def build_client(self, credentials, limiter):
            return client

    registry = ConnectorRegistry()
    registry.register(_Connector)
    return registry


def make_connector_row(db, workspace_id="ws_1", type="shopify", credentials=None, **fields) -> Connector:
    defaults = {
        "shopify": {"shop_domain": "acme.myshopify.com", "access_token": "shpat_test"},
        "stripe": {"api_key": "sk_test_123"},
        "tiendanube": {"store_id": "1234", "access_token": "tn_token"},
        "meta_ads": {"access_token": "meta_token", "ad_account_id": "987"},
        "ga4": {"property_id": "555", "access_token": "ya29.token"},
    }
    row = Connector(
        workspace_id=workspace_id,
        type=type,
        name=fields.pop("name", f"{type} connector"),
        credentials=credentials if credentials is not None else defaults.get(type),
        status=fields.pop("status", ConnectorStatus.CONNECTED.value),
        **fields,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def shopify_order(order_id: int, customer_id: Optional[int] = None, product_id: Optional[int] = None, **overrides):
    order = {
        "id": order_id,
        "order_number": 1000 + order_id,
        "created_at": "2024-03-01T10:00:00-05:00",
        "financial_status": "paid",
        "fulfillment_status": None,
        "subtotal_price": "20.00",
        "total_discounts": "0.00",
        "total_tax": "1.50",
        "total_price": "21.50",
        "currency": "USD",
        "line_items": [
            {"id": order_id * 10, "product_id": product_id, "title": "Widget", "quantity": 2, "price": "10.00"},
        ],
    }
    if customer_id is not None:
        order["customer"] = {"id": customer_id}
    order.update(overrides)
    return order
