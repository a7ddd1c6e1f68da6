"""
Normalized e-commerce entities (Shopify, Tiendanube)
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, JSON, Text, ForeignKey, UniqueConstraint
from datetime import datetime

from bizos.models.base import Base, NormalizedEntityMixin, generate_id


class EcommerceCustomer(NormalizedEntityMixin, Base):
    __tablename__ = "ecommerce_customers"
    __table_args__ = (
        UniqueConstraint("workspace_id", "source", "external_id", name="uq_ecommerce_customers_identity"),
    )

    email = Column(String, index=True)
    first_name = Column(String)
    last_name = Column(String)
    phone = Column(String)
    total_orders = Column(Integer, default=0)
    total_spent = Column(Numeric(12, 2), default=0)
    currency = Column(String, default="USD")
    tags = Column(JSON)
    metadata_json = Column("metadata", JSON)
    source_created_at = Column(DateTime)


class EcommerceProduct(NormalizedEntityMixin, Base):
    __tablename__ = "ecommerce_products"
    __table_args__ = (
        UniqueConstraint("workspace_id", "source", "external_id", name="uq_ecommerce_products_identity"),
    )

    title = Column(String, nullable=False)
    description = Column(Text)
    vendor = Column(String)
    product_type = Column(String)
    status = Column(String)  # active, draft, archived
    price = Column(Numeric(12, 2))
    compare_at_price = Column(Numeric(12, 2))
    currency = Column(String, default="USD")
    sku = Column(String)
    barcode = Column(String)
    inventory_quantity = Column(Integer)
    image_url = Column(String)
    tags = Column(JSON)
    metadata_json = Column("metadata", JSON)
    source_created_at = Column(DateTime)


class EcommerceOrder(NormalizedEntityMixin, Base):
    __tablename__ = "ecommerce_orders"
    __table_args__ = (
        UniqueConstraint("workspace_id", "source", "external_id", name="uq_ecommerce_orders_identity"),
    )

    customer_id = Column(String, ForeignKey("ecommerce_customers.id"), nullable=True, index=True)
    order_number = Column(String)
    status = Column(String)  # pending, paid, fulfilled, cancelled, refunded
    financial_status = Column(String)
    fulfillment_status = Column(String)

    subtotal_price = Column(Numeric(12, 2))
    total_discount = Column(Numeric(12, 2))
    total_tax = Column(Numeric(12, 2))
    total_shipping = Column(Numeric(12, 2))
    total_price = Column(Numeric(12, 2), nullable=False)
    currency = Column(String, nullable=False, default="USD")

    item_count = Column(Integer, default=0)
    discount_codes = Column(JSON)
    tags = Column(JSON)
    note = Column(Text)
    cancelled_at = Column(DateTime)
    refunded_at = Column(DateTime)
    metadata_json = Column("metadata", JSON)
    source_created_at = Column(DateTime, nullable=False)


class EcommerceOrderItem(Base):
    """Line items are owned by their order and replaced wholesale on update."""
    __tablename__ = "ecommerce_order_items"

    id = Column(String, primary_key=True, default=generate_id)
    workspace_id = Column(String, nullable=False, index=True)
    order_id = Column(String, ForeignKey("ecommerce_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String, ForeignKey("ecommerce_products.id"), nullable=True)
    external_id = Column(String)
    external_product_id = Column(String)
    title = Column(String, nullable=False)
    variant_title = Column(String)
    sku = Column(String)
    quantity = Column(Integer, nullable=False, default=1)
    price = Column(Numeric(12, 2), nullable=False)
    total_discount = Column(Numeric(12, 2), default=0)
    total_price = Column(Numeric(12, 2), nullable=False)
    currency = Column(String, nullable=False, default="USD")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
