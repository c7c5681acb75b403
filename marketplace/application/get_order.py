from typing import Optional

from marketplace.domain.models import Order, Identity
from marketplace.domain.exceptions import (
    OrderNotFoundError, ForbiddenError, UnauthenticatedError
)


def ensure_can_view(order: Order, identity: Identity) -> None:
    if not identity.is_admin and not order.is_owned_by(identity):
        raise ForbiddenError(f"Нет доступа к заказу {order.id}")


class GetOrderUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, order_id: str, identity: Optional[Identity]) -> Order:
        if identity is None:
            raise UnauthenticatedError("Пользователь не определен")

        async with self._uow() as uow:
            order = await uow.orders.get_by_id(order_id)
            if not order:
                raise OrderNotFoundError(f"Заказ {order_id} не найден")
            ensure_can_view(order, identity)
            return order
