import logging
from typing import Optional

from marketplace.domain.models import Order, OrderStatus, PaymentStatus, Identity
from marketplace.domain.exceptions import (
    OrderNotFoundError, InvalidStateTransitionError, UnauthenticatedError,
    ConcurrentModificationError
)
from marketplace.application.get_order import ensure_can_view

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3


async def record_refund_intent(uow, order: Order, reason: str) -> None:
    """Компенсирующий возврат, пишется в той же транзакции, что и отмена"""
    await uow.outbox.create(
        event_type="refund.requested",
        event_data={
            "order_id": order.id,
            "user_id": order.user_id,
            "amount": str(order.total),
            "transaction_ref": order.transaction_ref,
            "reason": reason,
            "idempotency_key": f"refund_{order.id}"
        },
        order_id=order.id
    )
    logger.info(f"Запрошен возврат {order.total} по заказу {order.id}")


async def record_cancellation(uow, order: Order, reason: str) -> None:
    await uow.outbox.create(
        event_type="order.cancelled",
        event_data={
            "order_id": order.id,
            "user_id": order.user_id,
            "reason": reason,
            "items": [
                {"product_id": item.product_id, "quantity": item.quantity}
                for item in order.items
            ]
        },
        order_id=order.id
    )
    if order.payment_status == PaymentStatus.SUCCESS:
        await record_refund_intent(uow, order, reason)


class CancelOrderUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, order_id: str, identity: Optional[Identity]) -> Order:
        if identity is None:
            raise UnauthenticatedError("Пользователь не определен")

        for attempt in range(MAX_ATTEMPTS):
            async with self._uow() as uow:
                order = await uow.orders.get_by_id(order_id)
                if not order:
                    raise OrderNotFoundError(f"Заказ {order_id} не найден")
                ensure_can_view(order, identity)

                if not order.can_be_cancelled_by_user():
                    raise InvalidStateTransitionError(order.status, OrderStatus.CANCELLED)

                if not await uow.orders.compare_and_set_status(
                    order.id, order.status, order.payment_status, OrderStatus.CANCELLED
                ):
                    logger.warning(f"Заказ {order_id} изменен параллельно (попытка {attempt + 1})")
                    continue

                await uow.orders.add_status_history(
                    order.id, order.status, OrderStatus.CANCELLED,
                    notes="Отменен пользователем", changed_by=identity.user_id
                )
                await record_cancellation(uow, order, "Отменен пользователем")
                await uow.commit()

            logger.info(f"Заказ {order_id} отменен пользователем {identity.user_id}")
            return order.model_copy(update={"status": OrderStatus.CANCELLED})

        raise ConcurrentModificationError(f"Не удалось отменить заказ {order_id}, повторите запрос")
