import logging
from pydantic import BaseModel
from decimal import Decimal
from typing import Optional

from marketplace.domain.models import (
    OrderStatus, PaymentStatus, PaymentMethod, Identity
)
from marketplace.domain.exceptions import (
    OrderNotFoundError, OrderAlreadyPaidError, InvalidStateTransitionError,
    InvalidRequestError, UnauthenticatedError, PaymentGatewayTimeout
)
from marketplace.application.get_order import ensure_can_view
from marketplace.application.interfaces import PaymentGateway

logger = logging.getLogger(__name__)


class ProcessPaymentDTO(BaseModel):
    order_id: str


class PaymentResult(BaseModel):
    order_id: str
    payment_status: PaymentStatus
    amount: Decimal
    transaction_ref: Optional[str] = None
    payment_url: Optional[str] = None


class GetProviderSecretUseCase:
    def __init__(self, client_key: str):
        self._client_key = client_key

    def __call__(self) -> str:
        return self._client_key


class ProcessPaymentUseCase:
    def __init__(self, unit_of_work, payment_gateway: PaymentGateway, service_url: str):
        self._uow = unit_of_work
        self._payments = payment_gateway
        self._service_url = service_url

    async def __call__(self, dto: ProcessPaymentDTO, identity: Optional[Identity]) -> PaymentResult:
        if identity is None:
            raise UnauthenticatedError("Пользователь не определен")

        async with self._uow() as uow:
            order = await uow.orders.get_by_id(dto.order_id)
        if not order:
            raise OrderNotFoundError(f"Заказ {dto.order_id} не найден")
        ensure_can_view(order, identity)

        if order.payment_status == PaymentStatus.SUCCESS:
            raise OrderAlreadyPaidError(f"Заказ {order.id} уже оплачен")
        if order.payment_status == PaymentStatus.FAILED or order.status == OrderStatus.CANCELLED:
            raise InvalidStateTransitionError(order.status, OrderStatus.PAID)
        if order.payment_method == PaymentMethod.COD:
            raise InvalidRequestError(f"Заказ {order.id} оплачивается при получении")

        logger.info(f"Создание платежа для заказа {order.id}, сумма {order.total}")
        try:
            callback_url = f"{self._service_url}/api/payment/callback"
            payment = await self._payments.create_payment(
                order_id=order.id,
                amount=str(order.total),
                callback_url=callback_url,
                idempotency_key=f"payment_{order.id}"
            )
        except PaymentGatewayTimeout:
            # Результат придет через callback или ручную сверку
            logger.warning(f"Таймаут платежного шлюза для заказа {order.id}, платеж остается PENDING")
            return PaymentResult(
                order_id=order.id,
                payment_status=PaymentStatus.PENDING,
                amount=order.total
            )

        transaction_ref = payment["id"]
        async with self._uow() as uow:
            await uow.orders.update_transaction_ref(order.id, transaction_ref)
            await uow.commit()
        logger.info(f"Платеж {transaction_ref} создан для заказа {order.id}")

        return PaymentResult(
            order_id=order.id,
            payment_status=PaymentStatus.PENDING,
            amount=order.total,
            transaction_ref=transaction_ref,
            payment_url=payment.get("payment_url")
        )
