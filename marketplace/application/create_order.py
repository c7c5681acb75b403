import logging
from decimal import Decimal
from pydantic import BaseModel
from datetime import datetime, timezone
from typing import List, Optional
import uuid
from sqlalchemy.exc import IntegrityError

from marketplace.domain.models import (
    Order, OrderItem, OrderStatus, PaymentStatus, PaymentMethod, Identity, compute_totals
)
from marketplace.domain.exceptions import (
    InvalidRequestError, ItemNotFoundError, InsufficientStockError, UnauthenticatedError
)
from marketplace.application.interfaces import CatalogService


logger = logging.getLogger(__name__)


class OrderLineDTO(BaseModel):
    product_id: str
    quantity: int


class CreateOrderDTO(BaseModel):
    items: List[OrderLineDTO]
    shipping_address: str
    payment_method: PaymentMethod
    phone: Optional[str] = None
    notes: Optional[str] = None
    idempotency_key: Optional[str] = None


class CreateOrderUseCase:
    def __init__(
        self,
        unit_of_work,
        catalog_service: CatalogService,
        tax_rate: Decimal,
        shipping_fee: Decimal,
        free_shipping_threshold: Decimal
    ):
        self._uow = unit_of_work
        self._catalog = catalog_service
        self._tax_rate = tax_rate
        self._shipping_fee = shipping_fee
        self._free_shipping_threshold = free_shipping_threshold

    async def __call__(self, order_data: CreateOrderDTO, identity: Optional[Identity]) -> Order:
        if identity is None:
            raise UnauthenticatedError("Пользователь не определен")

        logger.info(f"Создание заказа для пользователя {identity.user_id}, позиций: {len(order_data.items)}")

        # 1. Проверка идемпотентности
        if order_data.idempotency_key:
            existing = await self._find_existing(order_data.idempotency_key, identity)
            if existing:
                return existing

        # 2. Проверка каталога
        items = await self._resolve_items(order_data.items)

        # 3. Расчет суммы
        totals = compute_totals(
            items, self._tax_rate, self._shipping_fee, self._free_shipping_threshold
        )

        # 4. Создание заказа
        now = datetime.now(timezone.utc)
        order = Order(
            id=str(uuid.uuid4()),
            user_id=identity.user_id,
            items=items,
            shipping_address=order_data.shipping_address,
            phone=order_data.phone,
            payment_method=order_data.payment_method,
            payment_status=PaymentStatus.PENDING,
            status=OrderStatus.CREATED,
            subtotal=totals.subtotal,
            tax=totals.tax,
            shipping=totals.shipping,
            total=totals.total,
            idempotency_key=order_data.idempotency_key,
            notes=order_data.notes,
            created_at=now,
            updated_at=now
        )
        try:
            async with self._uow() as uow:
                await uow.orders.create(order)
                await uow.commit()
        except IntegrityError:
            if not order_data.idempotency_key:
                raise
            # Параллельный запрос с тем же ключом успел создать заказ
            existing = await self._find_existing(order_data.idempotency_key, identity)
            if existing is None:
                raise
            return existing
        logger.info(f"Заказ создан: {order.id}, сумма {order.total}")

        return order

    async def _find_existing(self, idempotency_key: str, identity: Identity) -> Optional[Order]:
        async with self._uow() as uow:
            existing = await uow.orders.get_by_idempotency_key(idempotency_key)
        if existing is None:
            return None
        if not existing.is_owned_by(identity):
            raise InvalidRequestError("Ключ идемпотентности уже использован")
        logger.info(f"Заказ уже существует: {existing.id}")
        return existing

    async def _resolve_items(self, lines: List[OrderLineDTO]) -> List[OrderItem]:
        if not lines:
            raise InvalidRequestError("Заказ не содержит товаров")

        items = []
        for line in lines:
            if line.quantity <= 0:
                raise InvalidRequestError(f"Некорректное количество товара {line.product_id}: {line.quantity}")

            product = await self._catalog.get_product(line.product_id)
            if not product:
                raise ItemNotFoundError(f"Товар {line.product_id} не найден")
            if product.available_qty < line.quantity:
                raise InsufficientStockError(product.id, product.available_qty, line.quantity)

            items.append(
                OrderItem(
                    product_id=product.id,
                    product_name=product.name,
                    quantity=line.quantity,
                    unit_price=product.price
                )
            )
        return items
