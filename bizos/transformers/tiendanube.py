"""
Tiendanube -> normalized e-commerce entities

Product names and descriptions are multi-locale objects; see
common.pick_localized for the fixed preference order.
"""
from typing import Any, Dict, List, Optional

from bizos.transformers.common import (
    CENTS,
    decimal_or_zero,
    entity,
    parse_datetime,
    pick_localized,
    split_tags,
    stringify_id,
    strip_html,
    to_decimal,
    to_int,
)

SOURCE = "tiendanube"
DEFAULT_CURRENCY = "ARS"

PAYMENT_STATUS_MAP = {
    "pending": "pending",
    "authorized": "pending",
    "paid": "paid",
    "abandoned": "voided",
    "refunded": "refunded",
    "voided": "voided",
}

SHIPPING_STATUS_MAP = {
    "unpacked": "unfulfilled",
    "unfulfilled": "unfulfilled",
    "shipped": "fulfilled",
    "delivered": "fulfilled",
}


def map_payment_status(status: Optional[str]) -> str:
    return PAYMENT_STATUS_MAP.get(status or "", "pending")


def map_shipping_status(status: Optional[str]) -> str:
    return SHIPPING_STATUS_MAP.get(status or "", "unfulfilled")


def map_order_status(order: Dict[str, Any]) -> str:
    """Same vocabulary as the Shopify mapping: cancelled/refunded/fulfilled/paid/pending."""
    if order.get("status") == "cancelled" or order.get("cancelled_at"):
        return "cancelled"
    payment = map_payment_status(order.get("payment_status"))
    if payment == "refunded":
        return "refunded"
    if payment == "paid" and map_shipping_status(order.get("shipping_status")) == "fulfilled":
        return "fulfilled"
    if payment == "paid":
        return "paid"
    return "pending"


def split_name(name: Optional[str]):
    parts = (name or "").split()
    if not parts:
        return None, None
    return parts[0], " ".join(parts[1:]) or None


def transform_customer(customer: Dict[str, Any], workspace_id: str) -> Dict[str, Any]:
    first_name, last_name = split_name(customer.get("name"))
    return entity(
        workspace_id,
        SOURCE,
        customer["id"],
        email=customer.get("email"),
        first_name=first_name,
        last_name=last_name,
        phone=customer.get("phone"),
        total_orders=to_int(customer.get("orders_count")) if customer.get("orders_count") is not None else 0,
        total_spent=decimal_or_zero(customer.get("total_spent")),
        currency=customer.get("total_spent_currency") or DEFAULT_CURRENCY,
        tags=[],
        metadata_json={
            "identification": customer.get("identification"),
            "billing_name": customer.get("billing_name"),
            "billing_phone": customer.get("billing_phone"),
            "accepts_marketing": customer.get("accepts_marketing"),
        },
        source_created_at=parse_datetime(customer.get("created_at")),
    )


def transform_product(product: Dict[str, Any], workspace_id: str) -> Dict[str, Any]:
    variants = product.get("variants") or []
    default = variants[0] if variants else {}
    images = product.get("images") or []
    categories = product.get("categories") or []
    return entity(
        workspace_id,
        SOURCE,
        product["id"],
        title=pick_localized(product.get("name")) or "",
        description=strip_html(pick_localized(product.get("description"))),
        vendor=product.get("brand"),
        product_type=pick_localized(categories[0].get("name")) if categories else None,
        status="active" if product.get("published") else "draft",
        price=decimal_or_zero(default.get("price")),
        compare_at_price=to_decimal(default.get("compare_at_price")),
        currency=DEFAULT_CURRENCY,
        sku=default.get("sku"),
        barcode=default.get("barcode"),
        inventory_quantity=to_int(default.get("stock")),
        image_url=images[0].get("src") if images else None,
        tags=split_tags(product.get("tags")),
        metadata_json={
            "handle": pick_localized(product.get("handle")),
            "variant_count": len(variants),
        },
        source_created_at=parse_datetime(product.get("created_at")),
    )


def transform_order(order: Dict[str, Any], workspace_id: str) -> Dict[str, Any]:
    items = order.get("products") or []
    return entity(
        workspace_id,
        SOURCE,
        order["id"],
        order_number=stringify_id(order.get("number")),
        status=map_order_status(order),
        financial_status=map_payment_status(order.get("payment_status")),
        fulfillment_status=map_shipping_status(order.get("shipping_status")),
        subtotal_price=to_decimal(order.get("subtotal")),
        total_discount=to_decimal(order.get("discount")),
        total_tax=decimal_or_zero(0),  # taxes are included in prices
        total_shipping=to_decimal(order.get("shipping_cost_customer")),
        total_price=decimal_or_zero(order.get("total")),
        currency=order.get("currency") or DEFAULT_CURRENCY,
        item_count=sum(to_int(item.get("quantity"), default=1) for item in items),
        discount_codes=[c.get("code") for c in order.get("coupon") or [] if c.get("code")],
        tags=[],
        note=order.get("note"),
        cancelled_at=parse_datetime(order.get("cancelled_at")),
        metadata_json={
            "gateway": order.get("gateway_name") or order.get("gateway"),
            "shipping_option": order.get("shipping_option"),
            "shipping_tracking_number": order.get("shipping_tracking_number"),
            "total_usd": order.get("total_usd"),
        },
        source_created_at=parse_datetime(order.get("created_at")),
    )


def transform_line_items(order: Dict[str, Any], workspace_id: str) -> List[Dict[str, Any]]:
    currency = order.get("currency") or DEFAULT_CURRENCY
    lines = []
    for item in order.get("products") or []:
        price = decimal_or_zero(item.get("price"))
        quantity = to_int(item.get("quantity"), default=1)
        variant_values = [pick_localized(v) for v in item.get("variant_values") or []]
        lines.append({
            "workspace_id": workspace_id,
            "external_id": stringify_id(item.get("id")),
            "external_product_id": stringify_id(item.get("product_id")),
            "title": pick_localized(item.get("name")) or "",
            "variant_title": " / ".join(v for v in variant_values if v) or None,
            "sku": item.get("sku"),
            "quantity": quantity,
            "price": price,
            "total_discount": decimal_or_zero(0),
            "total_price": (price * quantity).quantize(CENTS),
            "currency": currency,
        })
    return lines


def customer_ref(order: Dict[str, Any]) -> Optional[str]:
    customer = order.get("customer") or {}
    return stringify_id(customer.get("id"))
