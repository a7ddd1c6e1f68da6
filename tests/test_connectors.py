"""
Sync orchestrator tests.

Guards against:
1. Pagination stopping after the first page (or never stopping)
2. Incremental runs dropping the lower-bound filter on later pages
3. One failing stage discarding the others' work
4. Child rows written while their parent is missing
"""
from datetime import datetime, timedelta
from decimal import Decimal

from bizos.connectors.credentials import (
    GA4Credentials,
    MetaAdsCredentials,
    ShopifyCredentials,
    StripeCredentials,
    TiendanubeCredentials,
)
from bizos.connectors.errors import ProviderAPIError
from bizos.connectors.ga4_connector import GA4Connector
from bizos.connectors.meta_ads_connector import MetaAdsConnector
from bizos.connectors.shopify_connector import ShopifyConnector
from bizos.connectors.stripe_connector import StripeConnector
from bizos.connectors.tiendanube_connector import TiendanubeConnector
from bizos.models.ads import Ad, AdAccount, AdCampaign, AdPerformance, AdSet
from bizos.models.ecommerce import EcommerceCustomer, EcommerceOrder, EcommerceOrderItem, EcommerceProduct
from bizos.models.ga4 import GA4Event, GA4Session, GA4TrafficSource
from bizos.models.saas import SaasCustomer, SaasInvoice, SaasPlan, SaasSubscription
from bizos.services.upsert import UpsertReconciler

from helpers import FakeClient, FakeReportClient, _run, shopify_order

SHOPIFY = ShopifyCredentials(shop_domain="acme.myshopify.com", access_token="shpat_test")
STRIPE = StripeCredentials(api_key="sk_test_123")
META = MetaAdsCredentials(access_token="meta_token", ad_account_id="987")
GA4 = GA4Credentials(property_id="555", access_token="ya29.token")
TIENDANUBE = TiendanubeCredentials(store_id="1234", access_token="tn_token")


# ---------------------------------------------------------------------------
# Shopify: pagination and incremental filter
# ---------------------------------------------------------------------------

class TestShopifySync:

    def test_second_page_is_fetched(self, db):
        """260 orders with a page size of 250 take exactly two requests."""
        client = FakeClient(collections={"orders": [shopify_order(i) for i in range(1, 261)]})
        connector = ShopifyConnector("ws_1", SHOPIFY, db, client=client)

        result = _run(connector.full_sync())

        assert result.success
        assert len(client.requests_for("orders")) == 2
        assert result.records_processed["orders"] == 260
        assert db.query(EcommerceOrder).count() == 260

    def test_resync_is_idempotent_and_refreshes_updated_at(self, db):
        client = FakeClient(collections={"orders": [shopify_order(i) for i in range(1, 261)]})
        connector = ShopifyConnector("ws_1", SHOPIFY, db, client=client)
        _run(connector.full_sync())

        later = datetime(2030, 1, 1)
        connector.reconciler = UpsertReconciler(db, clock=lambda: later)
        _run(connector.full_sync())

        orders = db.query(EcommerceOrder).all()
        assert len(orders) == 260
        assert all(order.updated_at == later for order in orders)
        assert db.query(EcommerceOrderItem).count() == 260

    def test_full_pages_then_partial(self, db):
        """N full pages plus a partial one is N+1 requests."""
        client = FakeClient(collections={"orders": [shopify_order(i) for i in range(1, 511)]})
        _run(ShopifyConnector("ws_1", SHOPIFY, db, client=client).full_sync())
        assert len(client.requests_for("orders")) == 3

    def test_exact_multiple_ends_on_empty_page(self, db):
        client = FakeClient(collections={"orders": [shopify_order(i) for i in range(1, 501)]})
        _run(ShopifyConnector("ws_1", SHOPIFY, db, client=client).full_sync())
        requests = client.requests_for("orders")
        assert len(requests) == 3
        assert db.query(EcommerceOrder).count() == 500

    def test_incremental_filter_on_every_request(self, db):
        since = datetime(2024, 3, 1, 0, 0, 0)
        client = FakeClient(collections={
            "customers": [{"id": i} for i in range(1, 300)],
            "orders": [shopify_order(i) for i in range(1, 261)],
        })
        _run(ShopifyConnector("ws_1", SHOPIFY, db, client=client).incremental_sync(since))

        assert len(client.calls) == 2 + 1 + 2
        assert all(params.created_at_min == since for _, params in client.calls)

    def test_full_sync_has_no_lower_bound(self, db):
        client = FakeClient(collections={"orders": [shopify_order(1)]})
        _run(ShopifyConnector("ws_1", SHOPIFY, db, client=client).full_sync())
        assert all(params.created_at_min is None for _, params in client.calls)

    def test_orders_link_customers_and_products(self, db):
        client = FakeClient(collections={
            "customers": [{"id": 5, "email": "ana@example.com"}],
            "products": [{"id": 7, "title": "Widget", "variants": [{"price": "10.00"}]}],
            "orders": [shopify_order(1, customer_id=5, product_id=7)],
        })
        result = _run(ShopifyConnector("ws_1", SHOPIFY, db, client=client).full_sync())

        customer = db.query(EcommerceCustomer).one()
        product = db.query(EcommerceProduct).one()
        order = db.query(EcommerceOrder).one()
        item = db.query(EcommerceOrderItem).one()
        assert order.customer_id == customer.id
        assert item.order_id == order.id
        assert item.product_id == product.id
        assert result.records_processed == {"customers": 1, "products": 1, "orders": 1, "order_items": 1}

    def test_failed_stage_does_not_stop_later_stages(self, db):
        client = FakeClient(
            collections={"customers": [{"id": 5}], "orders": [shopify_order(1)]},
            failures={"products": ProviderAPIError("shopify", 500, "upstream down")},
        )
        result = _run(ShopifyConnector("ws_1", SHOPIFY, db, client=client).full_sync())

        assert result.success is False
        assert [e["type"] for e in result.errors] == ["product_sync_error"]
        assert db.query(EcommerceCustomer).count() == 1
        assert db.query(EcommerceOrder).count() == 1
        assert result.completed_at is not None


# ---------------------------------------------------------------------------
# Shopify / Tiendanube webhook handlers
# ---------------------------------------------------------------------------

class TestEcommerceWebhooks:

    def test_order_webhook_upserts_inline_payload(self, db):
        connector = ShopifyConnector("ws_1", SHOPIFY, db, client=FakeClient())
        outcome = _run(connector.process_webhook("orders/create", shopify_order(9)))
        assert outcome.action == "upserted"
        assert db.query(EcommerceOrder).one().external_id == "9"

    def test_unknown_event_is_ignored(self, db):
        connector = ShopifyConnector("ws_1", SHOPIFY, db, client=FakeClient())
        outcome = _run(connector.process_webhook("carts/create", {"id": 1}))
        assert outcome.action == "ignored"

    def test_customer_delete_unlinks_orders(self, db):
        connector = ShopifyConnector("ws_1", SHOPIFY, db, client=FakeClient())
        _run(connector.process_webhook("customers/create", {"id": 5, "email": "ana@example.com"}))
        _run(connector.process_webhook("orders/create", shopify_order(1, customer_id=5)))

        outcome = _run(connector.process_webhook("customers/delete", {"id": 5}))

        assert outcome.action == "deleted"
        assert db.query(EcommerceCustomer).count() == 0
        db.expire_all()
        assert db.query(EcommerceOrder).one().customer_id is None

    def test_tiendanube_webhook_fetches_resource(self, db):
        order = {"id": 321, "number": 55, "total": "1500.00", "created_at": "2024-04-02T12:00:00-03:00",
                 "payment_status": "paid", "products": []}
        client = FakeClient(resources={"order": {"321": order}})
        connector = TiendanubeConnector("ws_1", TIENDANUBE, db, client=client)

        outcome = _run(connector.process_webhook("order/paid", {"store_id": 1234, "event": "order/paid", "id": 321}))

        assert outcome.action == "upserted"
        saved = db.query(EcommerceOrder).one()
        assert saved.source == "tiendanube"
        assert saved.status == "paid"
        assert saved.currency == "ARS"

    def test_tiendanube_cancel_patches_known_order(self, db):
        order = {"id": 321, "total": "10.00", "created_at": "2024-04-02T12:00:00Z", "payment_status": "paid"}
        client = FakeClient(resources={"order": {"321": order}})
        connector = TiendanubeConnector("ws_1", TIENDANUBE, db, client=client)
        _run(connector.process_webhook("order/created", {"id": 321}))

        outcome = _run(connector.process_webhook("order/cancelled", {"id": 321}))

        assert outcome.action == "updated"
        db.expire_all()
        assert db.query(EcommerceOrder).one().status == "cancelled"

    def test_tiendanube_incremental_filters_on_update_time(self, db):
        since = datetime(2024, 4, 1)
        client = FakeClient()
        _run(TiendanubeConnector("ws_1", TIENDANUBE, db, client=client).incremental_sync(since))
        assert all(p.updated_at_min == since and p.created_at_min is None for _, p in client.calls)


# ---------------------------------------------------------------------------
# Stripe: authoritative end markers and missing parents
# ---------------------------------------------------------------------------

def _stripe_subscription(sub_id, customer):
    return {
        "id": sub_id,
        "customer": customer,
        "status": "active",
        "created": 1700000000,
        "items": {"data": [{"quantity": 1, "price": {
            "id": "price_1", "type": "recurring", "unit_amount": 2900, "currency": "usd",
            "recurring": {"interval": "month", "interval_count": 1},
        }}]},
    }


class TestStripeSync:

    def test_has_more_false_stops_on_a_full_page(self, db):
        client = FakeClient(
            collections={"customers": [{"id": f"cus_{i}", "created": 1700000000} for i in range(100)]},
            authoritative=True,
        )
        _run(StripeConnector("ws_1", STRIPE, db, client=client).full_sync())
        assert len(client.requests_for("customers")) == 1
        assert db.query(SaasCustomer).count() == 100

    def test_has_more_true_keeps_paging(self, db):
        client = FakeClient(
            collections={"customers": [{"id": f"cus_{i}", "created": 1700000000} for i in range(150)]},
            authoritative=True,
        )
        _run(StripeConnector("ws_1", STRIPE, db, client=client).full_sync())
        assert len(client.requests_for("customers")) == 2
        assert db.query(SaasCustomer).count() == 150

    def test_rows_without_customer_are_skipped_and_counted(self, db):
        client = FakeClient(collections={
            "customers": [{"id": "cus_1", "email": "a@example.com", "created": 1700000000}],
            "prices": [{"id": "price_1", "type": "recurring", "unit_amount": 2900, "currency": "usd",
                        "recurring": {"interval": "month"}, "product": {"id": "prod_1", "name": "Pro"}}],
            "subscriptions": [_stripe_subscription("sub_1", "cus_1"), _stripe_subscription("sub_2", "cus_gone")],
            "invoices": [
                {"id": "in_1", "customer": "cus_1", "subscription": "sub_1", "status": "paid",
                 "total": 2900, "currency": "usd", "created": 1700000000},
                {"id": "in_2", "customer": "cus_gone", "status": "open", "total": 100, "created": 1700000000},
            ],
        })
        result = _run(StripeConnector("ws_1", STRIPE, db, client=client).full_sync())

        assert result.success
        assert result.records_processed == {
            "customers": 1, "plans": 1,
            "subscriptions": 1, "skipped_subscriptions": 1,
            "invoices": 1, "skipped_invoices": 1,
        }
        plan = db.query(SaasPlan).one()
        subscription = db.query(SaasSubscription).one()
        invoice = db.query(SaasInvoice).one()
        assert plan.name == "Pro"
        assert subscription.plan_id == plan.id
        assert subscription.mrr == Decimal("29.00")
        assert invoice.subscription_id == subscription.id

    def test_subscription_webhook_pulls_missing_customer(self, db):
        client = FakeClient(resources={"customer": {"cus_7": {"id": "cus_7", "email": "late@example.com"}}})
        connector = StripeConnector("ws_1", STRIPE, db, client=client)

        outcome = _run(connector.process_webhook("customer.subscription.created", _stripe_subscription("sub_7", "cus_7")))

        assert outcome.action == "upserted"
        assert db.query(SaasCustomer).one().external_id == "cus_7"
        assert db.query(SaasSubscription).one().customer_id == db.query(SaasCustomer).one().id

    def test_subscription_deleted_marks_canceled(self, db):
        connector = StripeConnector("ws_1", STRIPE, db, client=FakeClient())
        _run(connector.process_webhook("customer.created", {"id": "cus_1"}))
        _run(connector.process_webhook("customer.subscription.created", _stripe_subscription("sub_1", "cus_1")))

        outcome = _run(connector.process_webhook("customer.subscription.deleted", {"id": "sub_1", "canceled_at": 1700000500}))

        assert outcome.action == "updated"
        db.expire_all()
        subscription = db.query(SaasSubscription).one()
        assert subscription.status == "canceled"
        assert subscription.canceled_at == datetime.utcfromtimestamp(1700000500)


# ---------------------------------------------------------------------------
# Meta Ads: prerequisite stage and hierarchy
# ---------------------------------------------------------------------------

AD_ACCOUNT = {"id": "act_987", "account_id": "987", "name": "Acme Ads", "currency": "USD", "account_status": 1}


class TestMetaAdsSync:

    def test_ad_account_failure_writes_nothing(self, db):
        client = FakeClient(
            collections={"campaigns": [{"id": "c1", "name": "C1"}]},
            failures={"ad_account": ProviderAPIError("meta_ads", 400, {"error": {"message": "Invalid token"}})},
        )
        result = _run(MetaAdsConnector("ws_1", META, db, client=client).full_sync())

        assert result.success is False
        assert [e["type"] for e in result.errors] == ["ad_account_sync_error"]
        assert client.requests_for("campaigns") == []
        assert db.query(AdAccount).count() == 0
        assert db.query(AdCampaign).count() == 0

    def test_insights_failure_keeps_structure(self, db):
        client = FakeClient(
            resources={"ad_account": AD_ACCOUNT},
            collections={
                "campaigns": [{"id": "c1", "name": "C1"}],
                "ad_sets": [{"id": "s1", "campaign_id": "c1", "name": "S1"},
                            {"id": "s2", "campaign_id": "c_unknown", "name": "S2"}],
                "ads": [{"id": "a1", "adset_id": "s1", "name": "A1"}],
            },
            failures={"insights": ProviderAPIError("meta_ads", 500, "try later")},
        )
        result = _run(MetaAdsConnector("ws_1", META, db, client=client).full_sync())

        assert result.success is False
        assert [e["type"] for e in result.errors] == ["insights_sync_error"]
        assert db.query(AdCampaign).count() == 1
        assert db.query(AdSet).count() == 1
        assert db.query(Ad).count() == 1
        assert result.records_processed["skipped_ad_sets"] == 1
        assert db.query(AdAccount).one().last_sync_at is not None

    def test_insights_link_to_hierarchy(self, db):
        client = FakeClient(
            resources={"ad_account": AD_ACCOUNT},
            collections={
                "campaigns": [{"id": "c1", "name": "C1"}],
                "ad_sets": [{"id": "s1", "campaign_id": "c1", "name": "S1"}],
                "ads": [{"id": "a1", "adset_id": "s1", "name": "A1"}],
                "insights": [
                    {"ad_id": "a1", "adset_id": "s1", "campaign_id": "c1", "date_start": "2024-02-01", "spend": "10.00"},
                    {"ad_id": None, "date_start": "2024-02-01"},
                ],
            },
        )
        result = _run(MetaAdsConnector("ws_1", META, db, client=client).full_sync())

        assert result.success
        row = db.query(AdPerformance).one()
        assert row.ad_id == db.query(Ad).one().id
        assert row.campaign_id == db.query(AdCampaign).one().id
        assert row.ad_account_id == db.query(AdAccount).one().id
        assert result.records_processed["skipped_insights"] == 1

        [insights_params] = client.requests_for("insights")
        window = insights_params.created_at_max - insights_params.created_at_min
        assert timedelta(days=29) < window <= timedelta(days=30, seconds=1)

    def test_incremental_insights_start_at_since(self, db):
        since = datetime(2024, 2, 10)
        client = FakeClient(resources={"ad_account": AD_ACCOUNT})
        _run(MetaAdsConnector("ws_1", META, db, client=client).incremental_sync(since))
        [insights_params] = client.requests_for("insights")
        assert insights_params.created_at_min == since
        assert client.requests_for("campaigns")[0].created_at_min is None


# ---------------------------------------------------------------------------
# GA4
# ---------------------------------------------------------------------------

def _report_row(dimensions, metrics):
    return {
        "dimensionValues": [{"value": v} for v in dimensions],
        "metricValues": [{"value": v} for v in metrics],
    }


def test_ga4_reports_are_independent(db):
    client = FakeReportClient(
        collections={
            "sessions": [_report_row(["20240115", "AR", "Rosario", "mobile", "Chrome", "Android"],
                                     ["10", "5", "0.5", "30", "0.5", "40"])],
            "events": [_report_row(["20240115", "purchase", "AR", "mobile"], ["3", "2", "99.5"])],
        },
        failures={"traffic": ProviderAPIError("ga4", 429, "quota")},
    )
    result = _run(GA4Connector("ws_1", GA4, db, client=client).full_sync())

    assert [e["type"] for e in result.errors] == ["traffic_source_sync_error"]
    assert db.query(GA4Session).count() == 1
    assert db.query(GA4Event).one().event_name == "purchase"
    assert db.query(GA4TrafficSource).count() == 0


def test_ga4_incremental_window_starts_at_since(db):
    client = FakeReportClient()
    _run(GA4Connector("ws_1", GA4, db, client=client).incremental_sync(datetime(2024, 1, 10, 8, 30)))
    requests = [request for name, request in client.calls if name == "report_request"]
    assert len(requests) == 3
    assert all(r["dateRanges"][0]["startDate"] == "2024-01-10" for r in requests)
