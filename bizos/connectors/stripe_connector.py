"""
Stripe connector

Syncs customers, recurring prices (as plans), subscriptions and invoices.
Subscriptions and invoices need their customer row; rows whose customer
has not been synced are skipped and counted.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from bizos.connectors.base_client import ProviderLimiter
from bizos.connectors.base_connector import BaseConnector, SyncResult, SyncStage, WebhookOutcome
from bizos.connectors.credentials import StripeCredentials
from bizos.connectors.stripe_client import PAGE_SIZE, StripeClient
from bizos.models.connector import ConnectorType
from bizos.models.saas import SaasCustomer, SaasInvoice, SaasPlan, SaasSubscription
from bizos.transformers import stripe as stripe_transformer
from bizos.transformers.common import parse_datetime
from bizos.utils.logger import log

SOURCE = stripe_transformer.SOURCE


class StripeConnector(BaseConnector):
    CONNECTOR_TYPE = ConnectorType.STRIPE
    SOURCE = SOURCE
    PAGE_SIZE = PAGE_SIZE

    WEBHOOK_ROUTES = {
        "customer.created": "_handle_customer",
        "customer.updated": "_handle_customer",
        "customer.deleted": "_delete_customer",
        "price.created": "_handle_price",
        "price.updated": "_handle_price",
        "price.deleted": "_deactivate_price",
        "product.created": "_acknowledge",
        "product.updated": "_acknowledge",
        "product.deleted": "_acknowledge",
        "customer.subscription.created": "_handle_subscription",
        "customer.subscription.updated": "_handle_subscription",
        "customer.subscription.deleted": "_cancel_subscription",
        "invoice.created": "_handle_invoice",
        "invoice.updated": "_handle_invoice",
        "invoice.finalized": "_handle_invoice",
        "invoice.payment_failed": "_handle_invoice",
        "invoice.paid": "_handle_invoice_paid",
        "invoice.voided": "_handle_invoice_voided",
    }

    def build_client(self, credentials: StripeCredentials, limiter: Optional[ProviderLimiter]) -> StripeClient:
        return StripeClient(credentials, limiter=limiter)

    def stages(self) -> List[SyncStage]:
        return [
            SyncStage("customer", self.sync_customers),
            SyncStage("plan", self.sync_plans),
            SyncStage("subscription", self.sync_subscriptions),
            SyncStage("invoice", self.sync_invoices),
        ]

    async def sync_customers(self, since: Optional[datetime], result: SyncResult):
        await self.upsert_pages(
            result, "customers", SaasCustomer, self.client.list_customers, self.list_params(since),
            lambda customer: stripe_transformer.transform_customer(customer, self.workspace_id),
        )

    async def sync_plans(self, since: Optional[datetime], result: SyncResult):
        await self.upsert_pages(
            result, "plans", SaasPlan, self.client.list_prices, self.list_params(since),
            lambda price: stripe_transformer.transform_plan(price, self.workspace_id),
        )

    async def sync_subscriptions(self, since: Optional[datetime], result: SyncResult):
        await self.upsert_pages(
            result, "subscriptions", SaasSubscription, self.client.list_subscriptions, self.list_params(since),
            self._subscription_entity,
        )

    async def sync_invoices(self, since: Optional[datetime], result: SyncResult):
        await self.upsert_pages(
            result, "invoices", SaasInvoice, self.client.list_invoices, self.list_params(since),
            self._invoice_entity,
        )

    def _subscription_entity(self, subscription: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        refs = stripe_transformer.subscription_refs(subscription)
        customer_id = self.reconciler.find_id(SaasCustomer, self.workspace_id, SOURCE, refs["customer"])
        if customer_id is None:
            log.debug(f"stripe: subscription {subscription.get('id')} skipped, customer {refs['customer']} not synced")
            return None
        entity = stripe_transformer.transform_subscription(subscription, self.workspace_id)
        entity["customer_id"] = customer_id
        entity["plan_id"] = self.reconciler.find_id(SaasPlan, self.workspace_id, SOURCE, refs["price"])
        return entity

    def _invoice_entity(self, invoice: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        refs = stripe_transformer.invoice_refs(invoice)
        customer_id = self.reconciler.find_id(SaasCustomer, self.workspace_id, SOURCE, refs["customer"])
        if customer_id is None:
            log.debug(f"stripe: invoice {invoice.get('id')} skipped, customer {refs['customer']} not synced")
            return None
        entity = stripe_transformer.transform_invoice(invoice, self.workspace_id)
        entity["customer_id"] = customer_id
        entity["subscription_id"] = self.reconciler.find_id(
            SaasSubscription, self.workspace_id, SOURCE, refs["subscription"]
        )
        return entity

    # Webhook handlers; payload is the event's data.object

    async def _handle_customer(self, customer: Dict[str, Any]) -> WebhookOutcome:
        saved = self.reconciler.upsert(SaasCustomer, stripe_transformer.transform_customer(customer, self.workspace_id))
        return WebhookOutcome(action="upserted", object_id=saved.id)

    async def _delete_customer(self, customer: Dict[str, Any]) -> WebhookOutcome:
        deleted = self.reconciler.delete(SaasCustomer, self.workspace_id, SOURCE, customer["id"])
        return WebhookOutcome(action="deleted" if deleted else "ignored", object_id=customer["id"])

    async def _handle_price(self, price: Dict[str, Any]) -> WebhookOutcome:
        if not stripe_transformer.is_recurring_price(price):
            return WebhookOutcome(action="ignored", object_id=price.get("id"))
        product = price.get("product")
        if isinstance(product, str):
            product = await self.client.get_product(product)
        saved = self.reconciler.upsert(
            SaasPlan, stripe_transformer.transform_plan(price, self.workspace_id, product=product or None)
        )
        return WebhookOutcome(action="upserted", object_id=saved.id)

    async def _deactivate_price(self, price: Dict[str, Any]) -> WebhookOutcome:
        plan_id = self.reconciler.patch(SaasPlan, self.workspace_id, SOURCE, price["id"], {"is_active": False})
        return WebhookOutcome(action="updated" if plan_id else "ignored", object_id=plan_id)

    async def _handle_subscription(self, subscription: Dict[str, Any]) -> WebhookOutcome:
        entity = self._subscription_entity(subscription)
        if entity is None:
            # Customer events can arrive after subscription events
            customer_ref = stripe_transformer.subscription_refs(subscription)["customer"]
            if not customer_ref:
                return WebhookOutcome(action="ignored", object_id=subscription.get("id"))
            customer = await self.client.get_customer(customer_ref)
            if not customer or customer.get("deleted"):
                return WebhookOutcome(action="ignored", object_id=subscription.get("id"))
            await self._handle_customer(customer)
            entity = self._subscription_entity(subscription)
        saved = self.reconciler.upsert(SaasSubscription, entity)
        return WebhookOutcome(action="upserted", object_id=saved.id)

    async def _cancel_subscription(self, subscription: Dict[str, Any]) -> WebhookOutcome:
        values = {
            "status": "canceled",
            "canceled_at": parse_datetime(subscription.get("canceled_at")) or datetime.utcnow(),
        }
        subscription_id = self.reconciler.patch(SaasSubscription, self.workspace_id, SOURCE, subscription["id"], values)
        return WebhookOutcome(action="updated" if subscription_id else "ignored", object_id=subscription_id)

    async def _handle_invoice(self, invoice: Dict[str, Any]) -> WebhookOutcome:
        if not invoice.get("id"):
            return WebhookOutcome(action="ignored")
        entity = self._invoice_entity(invoice)
        if entity is None:
            return WebhookOutcome(action="ignored", object_id=invoice["id"])
        saved = self.reconciler.upsert(SaasInvoice, entity)
        return WebhookOutcome(action="upserted", object_id=saved.id)

    async def _handle_invoice_paid(self, invoice: Dict[str, Any]) -> WebhookOutcome:
        outcome = await self._handle_invoice(invoice)
        if outcome.action != "upserted":
            return outcome
        paid_at = parse_datetime((invoice.get("status_transitions") or {}).get("paid_at")) or datetime.utcnow()
        self.reconciler.patch(SaasInvoice, self.workspace_id, SOURCE, invoice["id"], {"status": "paid", "paid_at": paid_at})
        return outcome

    async def _handle_invoice_voided(self, invoice: Dict[str, Any]) -> WebhookOutcome:
        values = {"status": "void", "voided_at": datetime.utcnow()}
        invoice_id = self.reconciler.patch(SaasInvoice, self.workspace_id, SOURCE, invoice["id"], values)
        return WebhookOutcome(action="updated" if invoice_id else "ignored", object_id=invoice_id)
