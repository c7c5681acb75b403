from sqlalchemy import (
    Table, Column, String, Integer, Numeric, Enum, DateTime, JSON, MetaData, ForeignKey
)
from sqlalchemy.sql import func

from marketplace.domain.models import OrderStatus, PaymentStatus, PaymentMethod

metadata = MetaData()

MONEY = Numeric(14, 2)


orders_tbl = Table(
    "orders",
    metadata,
    Column("id", String, primary_key=True),
    Column("user_id", String, nullable=False, index=True),
    Column("shipping_address", String, nullable=False),
    Column("phone", String, nullable=True),
    Column("payment_method", Enum(PaymentMethod), nullable=False),
    Column("payment_status", Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING),
    Column("status", Enum(OrderStatus), nullable=False, default=OrderStatus.CREATED, index=True),
    Column("subtotal", MONEY, nullable=False),
    Column("tax", MONEY, nullable=False),
    Column("shipping", MONEY, nullable=False),
    Column("total", MONEY, nullable=False),
    Column("transaction_ref", String, unique=True, nullable=True, index=True),
    Column("idempotency_key", String, unique=True, nullable=True, index=True),
    Column("notes", String, nullable=True),
    Column("shipping_date", DateTime(timezone=True), nullable=True),
    Column("delivery_date", DateTime(timezone=True), nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now(), index=True),
    Column("updated_at", DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
)


order_items_tbl = Table(
    "order_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", String, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("position", Integer, nullable=False),
    Column("product_id", String, nullable=False),
    Column("product_name", String, nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("unit_price", MONEY, nullable=False)
)


order_status_history_tbl = Table(
    "order_status_history",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", String, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("from_status", Enum(OrderStatus), nullable=False),
    Column("to_status", Enum(OrderStatus), nullable=False),
    Column("notes", String, nullable=True),
    Column("changed_by", String, nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now())
)


outbox_events_tbl = Table(
    "outbox_events",
    metadata,
    Column("id", String, primary_key=True),
    Column("event_type", String, nullable=False),
    Column("event_data", JSON, nullable=False),
    Column("order_id", String, nullable=False),
    Column("status", String, default="pending"),
    Column("created_at", DateTime(timezone=True), server_default=func.now())
)
