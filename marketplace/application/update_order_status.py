import logging
from datetime import datetime, timezone
from pydantic import BaseModel
from typing import Optional

from marketplace.domain.models import Order, OrderStatus, Identity
from marketplace.domain.exceptions import (
    OrderNotFoundError, InvalidStateTransitionError, ForbiddenError,
    UnauthenticatedError, ConcurrentModificationError
)
from marketplace.application.cancel_order import record_cancellation, MAX_ATTEMPTS

logger = logging.getLogger(__name__)


class UpdateOrderStatusDTO(BaseModel):
    status: OrderStatus
    notes: Optional[str] = None


class UpdateOrderStatusUseCase:
    """Административная смена статуса, только по таблице переходов"""

    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, order_id: str, dto: UpdateOrderStatusDTO, identity: Optional[Identity]) -> Order:
        if identity is None:
            raise UnauthenticatedError("Пользователь не определен")
        if not identity.is_admin:
            raise ForbiddenError("Менять статус заказа может только администратор")

        for attempt in range(MAX_ATTEMPTS):
            async with self._uow() as uow:
                order = await uow.orders.get_by_id(order_id)
                if not order:
                    raise OrderNotFoundError(f"Заказ {order_id} не найден")

                if not order.can_transition_to(dto.status):
                    raise InvalidStateTransitionError(order.status, dto.status)

                stamps = self._stamps_for(dto.status)
                if not await uow.orders.compare_and_set_status(
                    order.id, order.status, order.payment_status, dto.status, **stamps
                ):
                    logger.warning(f"Заказ {order_id} изменен параллельно (попытка {attempt + 1})")
                    continue

                await uow.orders.add_status_history(
                    order.id, order.status, dto.status,
                    notes=dto.notes, changed_by=identity.user_id
                )
                if dto.status == OrderStatus.CANCELLED:
                    await record_cancellation(uow, order, dto.notes or "Отменен администратором")
                elif dto.status == OrderStatus.PAID:
                    await uow.outbox.create(
                        event_type="order.paid",
                        event_data={"order_id": order.id, "user_id": order.user_id, "source": "admin"},
                        order_id=order.id
                    )
                await uow.commit()

            logger.info(f"Заказ {order_id}: {order.status.value} -> {dto.status.value} ({identity.user_id})")
            return order.model_copy(update={"status": dto.status, **stamps})

        raise ConcurrentModificationError(f"Не удалось обновить заказ {order_id}, повторите запрос")

    @staticmethod
    def _stamps_for(status: OrderStatus) -> dict:
        now = datetime.now(timezone.utc)
        if status == OrderStatus.SHIPPED:
            return {"shipping_date": now}
        if status == OrderStatus.DELIVERED:
            return {"delivery_date": now}
        return {}
