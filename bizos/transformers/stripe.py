"""
Stripe -> normalized SaaS entities

Stripe amounts are integer minor units; they are converted with Decimal
arithmetic and rounded half-up to cents. MRR normalizes every recurring
interval to a month.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

from bizos.transformers.common import (
    CENTS,
    entity,
    from_minor_units,
    parse_datetime,
    stringify_id,
)

SOURCE = "stripe"

SUBSCRIPTION_STATUSES = {
    "trialing", "active", "past_due", "canceled", "unpaid",
    "incomplete", "incomplete_expired", "paused",
}
INVOICE_STATUSES = {"draft", "open", "paid", "void", "uncollectible"}

# Months per unit of each billing interval
_MONTHLY_FACTORS = {
    "day": Decimal("30"),
    "week": Decimal("4.33"),
    "month": Decimal("1"),
    "year": Decimal("1") / Decimal("12"),
}


def map_subscription_status(status: Optional[str]) -> str:
    return status if status in SUBSCRIPTION_STATUSES else "active"


def map_invoice_status(status: Optional[str]) -> str:
    return status if status in INVOICE_STATUSES else "draft"


def _currency(value: Optional[str]) -> str:
    return (value or "usd").upper()


def _ref_id(value: Any) -> Optional[str]:
    """Stripe references are either an id string or an expanded object."""
    if isinstance(value, dict):
        return stringify_id(value.get("id"))
    return stringify_id(value)


def calculate_mrr(subscription: Dict[str, Any]) -> Decimal:
    """Sum of recurring items normalized to a monthly amount, in currency units."""
    total_cents = Decimal("0")
    for item in (subscription.get("items") or {}).get("data") or []:
        price = item.get("price") or {}
        recurring = price.get("recurring")
        if price.get("type") != "recurring" or not recurring:
            continue
        unit_amount = Decimal(price.get("unit_amount") or 0)
        interval_count = Decimal(recurring.get("interval_count") or 1)
        factor = _MONTHLY_FACTORS.get(recurring.get("interval"), Decimal("1"))
        quantity = Decimal(item.get("quantity") or 1)
        total_cents += unit_amount * factor / interval_count * quantity
    return (total_cents / Decimal("100")).quantize(CENTS, rounding=ROUND_HALF_UP)


def transform_customer(customer: Dict[str, Any], workspace_id: str) -> Dict[str, Any]:
    return entity(
        workspace_id,
        SOURCE,
        customer["id"],
        email=customer.get("email"),
        name=customer.get("name"),
        description=customer.get("description"),
        currency=_currency(customer.get("currency")),
        balance=from_minor_units(customer.get("balance") or 0),
        metadata_json=customer.get("metadata") or {},
        source_created_at=parse_datetime(customer.get("created")),
    )


def transform_plan(price: Dict[str, Any], workspace_id: str, product: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """A recurring Stripe price becomes a plan; name falls back product -> nickname -> id suffix."""
    if product is None and isinstance(price.get("product"), dict):
        product = price["product"]
    recurring = price.get("recurring") or {}
    name = (product or {}).get("name") or price.get("nickname") or f"Plan {price['id'][-8:]}"
    return entity(
        workspace_id,
        SOURCE,
        price["id"],
        name=name,
        description=(product or {}).get("description"),
        amount=from_minor_units(price.get("unit_amount") or 0),
        currency=_currency(price.get("currency")),
        interval=recurring.get("interval"),
        interval_count=recurring.get("interval_count") or 1,
        trial_days=recurring.get("trial_period_days"),
        is_active=bool(price.get("active", True)),
        metadata_json={
            "product_id": _ref_id(price.get("product")),
            "lookup_key": price.get("lookup_key"),
        },
    )


def transform_subscription(subscription: Dict[str, Any], workspace_id: str) -> Dict[str, Any]:
    items = (subscription.get("items") or {}).get("data") or []
    first = items[0] if items else {}
    first_price = first.get("price") or {}
    quantity = sum(item.get("quantity") or 1 for item in items) or 1
    # Newer API versions moved the period onto subscription items
    period_start = subscription.get("current_period_start") or first.get("current_period_start")
    period_end = subscription.get("current_period_end") or first.get("current_period_end")
    return entity(
        workspace_id,
        SOURCE,
        subscription["id"],
        status=map_subscription_status(subscription.get("status")),
        mrr=calculate_mrr(subscription),
        currency=_currency(subscription.get("currency") or first_price.get("currency")),
        quantity=quantity,
        current_period_start=parse_datetime(period_start),
        current_period_end=parse_datetime(period_end),
        trial_start=parse_datetime(subscription.get("trial_start")),
        trial_end=parse_datetime(subscription.get("trial_end")),
        canceled_at=parse_datetime(subscription.get("canceled_at")),
        cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
        metadata_json=subscription.get("metadata") or {},
        source_created_at=parse_datetime(subscription.get("created")),
    )


def transform_invoice(invoice: Dict[str, Any], workspace_id: str) -> Dict[str, Any]:
    transitions = invoice.get("status_transitions") or {}
    period_start = invoice.get("period_start")
    period_end = invoice.get("period_end")
    return entity(
        workspace_id,
        SOURCE,
        invoice["id"],
        status=map_invoice_status(invoice.get("status")),
        number=invoice.get("number"),
        subtotal=from_minor_units(invoice.get("subtotal")),
        tax=from_minor_units(invoice.get("tax")),
        total=from_minor_units(invoice.get("total") or 0),
        amount_paid=from_minor_units(invoice.get("amount_paid")),
        amount_due=from_minor_units(invoice.get("amount_due")),
        currency=_currency(invoice.get("currency")),
        period_start=parse_datetime(period_start),
        period_end=parse_datetime(period_end),
        paid_at=parse_datetime(transitions.get("paid_at")),
        voided_at=parse_datetime(transitions.get("voided_at")),
        metadata_json=invoice.get("metadata") or {},
        source_created_at=parse_datetime(invoice.get("created")),
    )


def subscription_refs(subscription: Dict[str, Any]) -> Dict[str, Optional[str]]:
    """Provider ids of the subscription's customer and first recurring price."""
    items = (subscription.get("items") or {}).get("data") or []
    price = (items[0].get("price") or {}) if items else {}
    return {
        "customer": _ref_id(subscription.get("customer")),
        "price": stringify_id(price.get("id")),
    }


def invoice_refs(invoice: Dict[str, Any]) -> Dict[str, Optional[str]]:
    subscription = invoice.get("subscription")
    if subscription is None:
        # 2025 API versions nest it under parent.subscription_details
        details = (invoice.get("parent") or {}).get("subscription_details") or {}
        subscription = details.get("subscription")
    return {
        "customer": _ref_id(invoice.get("customer")),
        "subscription": _ref_id(subscription),
    }


def is_recurring_price(price: Dict[str, Any]) -> bool:
    return price.get("type") == "recurring" and bool(price.get("recurring"))
