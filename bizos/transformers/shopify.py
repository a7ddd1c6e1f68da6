"""
Shopify -> normalized e-commerce entities

Pure functions: no I/O. Parent references (customer, product) are returned
as provider ids for the orchestrator to resolve against the store.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from bizos.transformers.common import (
    CENTS,
    decimal_or_zero,
    entity,
    parse_datetime,
    split_tags,
    stringify_id,
    strip_html,
    to_decimal,
    to_int,
)

SOURCE = "shopify"


def map_order_status(order: Dict[str, Any]) -> str:
    """Collapse Shopify's financial/fulfillment pair into one order status."""
    if order.get("cancelled_at"):
        return "cancelled"
    financial = order.get("financial_status")
    if financial == "refunded":
        return "refunded"
    if financial == "paid" and order.get("fulfillment_status") == "fulfilled":
        return "fulfilled"
    if financial == "paid":
        return "paid"
    return "pending"


def transform_customer(customer: Dict[str, Any], workspace_id: str) -> Dict[str, Any]:
    return entity(
        workspace_id,
        SOURCE,
        customer["id"],
        email=customer.get("email"),
        first_name=customer.get("first_name"),
        last_name=customer.get("last_name"),
        phone=customer.get("phone"),
        total_orders=to_int(customer.get("orders_count")),
        total_spent=decimal_or_zero(customer.get("total_spent")),
        currency=customer.get("currency") or "USD",
        tags=split_tags(customer.get("tags")),
        metadata_json={
            "state": customer.get("state"),
            "verified_email": customer.get("verified_email"),
            "accepts_marketing": customer.get("accepts_marketing"),
        },
        source_created_at=parse_datetime(customer.get("created_at")),
    )


def transform_product(product: Dict[str, Any], workspace_id: str) -> Dict[str, Any]:
    """The first variant carries price/SKU; inventory is summed across variants."""
    variants = product.get("variants") or []
    first = variants[0] if variants else {}
    image = product.get("image") or {}

    inventory = None
    if variants:
        inventory = sum(to_int(v.get("inventory_quantity")) for v in variants)

    return entity(
        workspace_id,
        SOURCE,
        product["id"],
        title=product.get("title") or "",
        description=strip_html(product.get("body_html")),
        vendor=product.get("vendor"),
        product_type=product.get("product_type"),
        status=product.get("status"),
        price=to_decimal(first.get("price")),
        compare_at_price=to_decimal(first.get("compare_at_price")),
        sku=first.get("sku"),
        barcode=first.get("barcode"),
        inventory_quantity=inventory,
        image_url=image.get("src"),
        tags=split_tags(product.get("tags")),
        metadata_json={
            "handle": product.get("handle"),
            "variant_count": len(variants),
        },
        source_created_at=parse_datetime(product.get("created_at")),
    )


def transform_order(order: Dict[str, Any], workspace_id: str) -> Dict[str, Any]:
    line_items = order.get("line_items") or []
    shipping = sum(
        (decimal_or_zero(line.get("price")) for line in order.get("shipping_lines") or []),
        Decimal("0.00"),
    )
    return entity(
        workspace_id,
        SOURCE,
        order["id"],
        order_number=stringify_id(order.get("order_number") or order.get("name")),
        status=map_order_status(order),
        financial_status=order.get("financial_status"),
        fulfillment_status=order.get("fulfillment_status"),
        subtotal_price=to_decimal(order.get("subtotal_price")),
        total_discount=to_decimal(order.get("total_discounts")),
        total_tax=to_decimal(order.get("total_tax")),
        total_shipping=shipping.quantize(CENTS),
        total_price=decimal_or_zero(order.get("total_price")),
        currency=order.get("currency") or "USD",
        item_count=sum(to_int(line.get("quantity")) for line in line_items),
        discount_codes=[d.get("code") for d in order.get("discount_codes") or [] if d.get("code")],
        tags=split_tags(order.get("tags")),
        note=order.get("note"),
        cancelled_at=parse_datetime(order.get("cancelled_at")),
        refunded_at=_refunded_at(order),
        source_created_at=parse_datetime(order.get("created_at")),
    )


def transform_line_items(order: Dict[str, Any], workspace_id: str) -> List[Dict[str, Any]]:
    """Order items; total = price * quantity - discount."""
    currency = order.get("currency") or "USD"
    items = []
    for line in order.get("line_items") or []:
        price = decimal_or_zero(line.get("price"))
        quantity = to_int(line.get("quantity"), default=1)
        discount = decimal_or_zero(line.get("total_discount"))
        items.append({
            "workspace_id": workspace_id,
            "external_id": stringify_id(line.get("id")),
            "external_product_id": stringify_id(line.get("product_id")),
            "title": line.get("title") or "",
            "variant_title": line.get("variant_title"),
            "sku": line.get("sku"),
            "quantity": quantity,
            "price": price,
            "total_discount": discount,
            "total_price": (price * quantity - discount).quantize(CENTS),
            "currency": currency,
        })
    return items


def customer_ref(order: Dict[str, Any]) -> Optional[str]:
    customer = order.get("customer") or {}
    return stringify_id(customer.get("id"))


def _refunded_at(order: Dict[str, Any]):
    refunds = order.get("refunds") or []
    if not refunds:
        return None
    return parse_datetime(refunds[-1].get("created_at"))
