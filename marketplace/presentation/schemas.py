from pydantic import BaseModel
from datetime import datetime
from decimal import Decimal
from typing import Generic, List, Optional, TypeVar

from marketplace.domain.models import (
    OrderStatus, PaymentStatus, PaymentMethod, Page
)

T = TypeVar("T")


class OrderLineRequest(BaseModel):
    product_id: str
    quantity: int


class CreateOrderRequest(BaseModel):
    items: List[OrderLineRequest]
    shipping_address: str
    payment_method: PaymentMethod
    phone: Optional[str] = None
    notes: Optional[str] = None
    idempotency_key: Optional[str] = None


class OrderItemResponse(BaseModel):
    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class OrderResponse(BaseModel):
    id: str
    user_id: str
    shipping_address: str
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    status: OrderStatus
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal
    item_count: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, order):
        return cls(
            id=order.id,
            user_id=order.user_id,
            shipping_address=order.shipping_address,
            payment_method=order.payment_method,
            payment_status=order.payment_status,
            status=order.status,
            subtotal=order.subtotal,
            tax=order.tax,
            shipping=order.shipping,
            total=order.total,
            item_count=order.item_count,
            created_at=order.created_at,
            updated_at=order.updated_at
        )


class OrderDetailResponse(OrderResponse):
    items: List[OrderItemResponse]
    phone: Optional[str] = None
    transaction_ref: Optional[str] = None
    notes: Optional[str] = None
    shipping_date: Optional[datetime] = None
    delivery_date: Optional[datetime] = None

    @classmethod
    def from_domain(cls, order):
        summary = OrderResponse.from_domain(order)
        return cls(
            **summary.model_dump(),
            items=[
                OrderItemResponse(
                    product_id=item.product_id,
                    product_name=item.product_name,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    line_total=item.line_total
                )
                for item in order.items
            ],
            phone=order.phone,
            transaction_ref=order.transaction_ref,
            notes=order.notes,
            shipping_date=order.shipping_date,
            delivery_date=order.delivery_date
        )


class PagedResponse(BaseModel, Generic[T]):
    items: List[T]
    total: int
    page: int
    size: int
    total_pages: int
    has_next: bool

    @classmethod
    def from_page(cls, page: Page, mapper):
        return cls(
            items=[mapper(item) for item in page.items],
            total=page.total,
            page=page.page,
            size=page.size,
            total_pages=page.total_pages,
            has_next=page.has_next
        )


class UpdateOrderStatusRequest(BaseModel):
    status: OrderStatus
    notes: Optional[str] = None


class TopProduct(BaseModel):
    product_id: str
    product_name: str
    quantity: int


class DashboardResponse(BaseModel):
    total_orders: int
    pending_orders: int
    orders_by_status: dict
    total_revenue: Decimal
    revenue_this_month: Decimal
    revenue_last_month: Decimal
    monthly_growth: float
    total_customers: int
    top_products: List[TopProduct]
    generated_at: datetime

    @classmethod
    def from_domain(cls, metrics):
        return cls(**metrics.model_dump())


class PaymentRequest(BaseModel):
    order_id: str


class PaymentResponse(BaseModel):
    order_id: str
    payment_status: PaymentStatus
    amount: Decimal
    transaction_ref: Optional[str] = None
    payment_url: Optional[str] = None

    @classmethod
    def from_result(cls, result):
        return cls(**result.model_dump())


class PaymentCallbackRequest(BaseModel):
    payment_id: str
    status: str
    order_id: Optional[str] = None
    amount: Optional[str] = None
    error_message: Optional[str] = None


class AdminPaymentUpdateRequest(BaseModel):
    status: PaymentStatus


class ProviderConfigResponse(BaseModel):
    client_key: str


class ErrorResponse(BaseModel):
    detail: str
