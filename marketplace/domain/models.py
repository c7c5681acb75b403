from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Generic, List, Optional, TypeVar
from pydantic import BaseModel

CENTS = Decimal("0.01")


class OrderStatus(str, Enum):
    CREATED = "CREATED"
    PAID = "PAID"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class PaymentMethod(str, Enum):
    COD = "COD"
    VNPAY = "VNPAY"
    CARD = "CARD"
    WALLET = "WALLET"


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


# Единая таблица допустимых переходов статуса заказа
ORDER_TRANSITIONS = {
    OrderStatus.CREATED: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Пользователь может отменить заказ только до отправки
USER_CANCELLABLE = frozenset({OrderStatus.CREATED, OrderStatus.PAID})

TERMINAL_PAYMENT_STATUSES = frozenset({PaymentStatus.SUCCESS, PaymentStatus.FAILED})


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS[current]


def is_terminal(status: OrderStatus) -> bool:
    return not ORDER_TRANSITIONS[status]


def to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


class Identity(BaseModel):
    """Пользователь, от имени которого выполняется запрос"""
    user_id: str
    role: Role = Role.USER
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class OrderItem(BaseModel):
    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class Order(BaseModel):
    """Domain Entity: заказ"""
    id: str
    user_id: str
    items: List[OrderItem] = []
    shipping_address: str
    phone: Optional[str] = None
    payment_method: PaymentMethod
    payment_status: PaymentStatus = PaymentStatus.PENDING
    status: OrderStatus = OrderStatus.CREATED
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal
    transaction_ref: Optional[str] = None
    idempotency_key: Optional[str] = None
    notes: Optional[str] = None
    shipping_date: Optional[datetime] = None
    delivery_date: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    def is_owned_by(self, identity: Identity) -> bool:
        return self.user_id == identity.user_id

    def can_be_cancelled_by_user(self) -> bool:
        """Бизнес-правило: пользователь может отменить только CREATED или PAID"""
        return self.status in USER_CANCELLABLE

    def can_transition_to(self, target: OrderStatus) -> bool:
        return can_transition(self.status, target)

    def is_payment_resolved(self) -> bool:
        return self.payment_status in TERMINAL_PAYMENT_STATUSES

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)


class Product(BaseModel):
    """Value Object: товар из каталога"""
    id: str
    name: str
    price: Decimal
    available_qty: int


class Totals(BaseModel):
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal


def compute_totals(
    items: List[OrderItem],
    tax_rate: Decimal,
    shipping_fee: Decimal,
    free_shipping_threshold: Decimal
) -> Totals:
    """Считает суммы заказа, total всегда равен subtotal + tax + shipping"""
    subtotal = to_cents(sum((item.line_total for item in items), Decimal("0")))
    tax = to_cents(subtotal * tax_rate)
    shipping = Decimal("0.00") if subtotal >= free_shipping_threshold else to_cents(shipping_fee)
    return Totals(subtotal=subtotal, tax=tax, shipping=shipping, total=subtotal + tax + shipping)


T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    items: List[T]
    total: int
    page: int
    size: int

    @property
    def total_pages(self) -> int:
        if self.size == 0:
            return 0
        return (self.total + self.size - 1) // self.size

    @property
    def has_next(self) -> bool:
        return self.page + 1 < self.total_pages


class ByReference(BaseModel):
    """Поиск заказа по ссылке на транзакцию провайдера"""
    transaction_ref: str


class ById(BaseModel):
    """Поиск заказа по внутреннему ID"""
    order_id: str


class DashboardMetrics(BaseModel):
    total_orders: int
    pending_orders: int
    orders_by_status: dict
    total_revenue: Decimal
    revenue_this_month: Decimal
    revenue_last_month: Decimal
    monthly_growth: float
    total_customers: int
    top_products: List[dict]
    generated_at: datetime
