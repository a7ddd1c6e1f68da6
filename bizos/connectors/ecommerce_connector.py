"""
Shared sync flow for e-commerce stores (Shopify, Tiendanube)

Customers and products are synced before orders so orders can link to the
customer row and line items to the product row.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from bizos.connectors.base_connector import BaseConnector, SyncResult, SyncStage, WebhookOutcome
from bizos.models.ecommerce import EcommerceCustomer, EcommerceOrder, EcommerceOrderItem, EcommerceProduct
from bizos.utils.logger import log


class EcommerceConnector(BaseConnector):
    """Store connector; subclasses set SOURCE, transformer and the webhook routes."""

    transformer: Any = None

    def stages(self) -> List[SyncStage]:
        return [
            SyncStage("customer", self.sync_customers),
            SyncStage("product", self.sync_products),
            SyncStage("order", self.sync_orders),
        ]

    async def sync_customers(self, since: Optional[datetime], result: SyncResult):
        await self.upsert_pages(
            result,
            "customers",
            EcommerceCustomer,
            self.client.list_customers,
            self.list_params(since),
            lambda record: self.transformer.transform_customer(record, self.workspace_id),
        )

    async def sync_products(self, since: Optional[datetime], result: SyncResult):
        await self.upsert_pages(
            result,
            "products",
            EcommerceProduct,
            self.client.list_products,
            self.list_params(since),
            lambda record: self.transformer.transform_product(record, self.workspace_id),
        )

    async def sync_orders(self, since: Optional[datetime], result: SyncResult):
        async for orders in self.paginate(self.client.list_orders, self.list_params(since)):
            for order in orders:
                _, item_count = self.save_order(order)
                result.count("orders")
                result.count("order_items", item_count)

    def save_order(self, order: Dict[str, Any]) -> Tuple[str, int]:
        """Upsert an order, link its customer and replace its line items."""
        entity = self.transformer.transform_order(order, self.workspace_id)
        entity["customer_id"] = self.reconciler.find_id(
            EcommerceCustomer, self.workspace_id, self.SOURCE, self.transformer.customer_ref(order)
        )
        saved = self.reconciler.upsert(EcommerceOrder, entity)

        items = self.transformer.transform_line_items(order, self.workspace_id)
        for item in items:
            item["product_id"] = self.reconciler.find_id(
                EcommerceProduct, self.workspace_id, self.SOURCE, item.get("external_product_id")
            )
        self.reconciler.replace_children(EcommerceOrderItem, "order_id", saved.id, items)
        return saved.id, len(items)

    async def fetch_resource(self, kind: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Full resource for a webhook payload; Shopify sends it inline."""
        return payload

    # Webhook handlers

    async def _handle_order(self, payload: Dict[str, Any]) -> WebhookOutcome:
        order = await self.fetch_resource("order", payload)
        if not order:
            return WebhookOutcome(action="ignored")
        order_id, _ = self.save_order(order)
        return WebhookOutcome(action="upserted", object_id=order_id)

    async def _handle_customer(self, payload: Dict[str, Any]) -> WebhookOutcome:
        customer = await self.fetch_resource("customer", payload)
        if not customer:
            return WebhookOutcome(action="ignored")
        saved = self.reconciler.upsert(
            EcommerceCustomer, self.transformer.transform_customer(customer, self.workspace_id)
        )
        return WebhookOutcome(action="upserted", object_id=saved.id)

    async def _handle_product(self, payload: Dict[str, Any]) -> WebhookOutcome:
        product = await self.fetch_resource("product", payload)
        if not product:
            return WebhookOutcome(action="ignored")
        saved = self.reconciler.upsert(
            EcommerceProduct, self.transformer.transform_product(product, self.workspace_id)
        )
        return WebhookOutcome(action="upserted", object_id=saved.id)

    async def _delete_customer(self, payload: Dict[str, Any]) -> WebhookOutcome:
        return self._delete(EcommerceCustomer, payload, (EcommerceOrder, "customer_id"))

    async def _delete_product(self, payload: Dict[str, Any]) -> WebhookOutcome:
        return self._delete(EcommerceProduct, payload, (EcommerceOrderItem, "product_id"))

    def _delete(self, model, payload: Dict[str, Any], referenced_by=None) -> WebhookOutcome:
        external_id = str(payload.get("id") or "")
        if external_id and referenced_by is not None:
            child_model, field_name = referenced_by
            row_id = self.reconciler.find_id(model, self.workspace_id, self.SOURCE, external_id)
            self.reconciler.unlink(child_model, field_name, row_id)
        deleted = bool(external_id) and self.reconciler.delete(model, self.workspace_id, self.SOURCE, external_id)
        if not deleted:
            log.info(f"{self.name}: {model.__tablename__} {external_id} not found for delete")
            return WebhookOutcome(action="ignored", object_id=external_id or None)
        return WebhookOutcome(action="deleted", object_id=external_id)
