import logging
from typing import Optional, Union

from marketplace.domain.models import (
    Order, OrderStatus, PaymentStatus, Identity, ByReference, ById, USER_CANCELLABLE
)
from marketplace.domain.exceptions import (
    OrderNotFoundError, UnknownTransactionReferenceError, ConflictingPaymentOutcomeError,
    InvalidRequestError, UnauthenticatedError, ForbiddenError, ConcurrentModificationError
)
from marketplace.application.cancel_order import record_cancellation, record_refund_intent
from marketplace.application.get_order import ensure_can_view

logger = logging.getLogger(__name__)

PaymentKey = Union[ByReference, ById]


def resolve_order_status(order: Order, outcome: PaymentStatus) -> OrderStatus:
    """Статус заказа после применения результата оплаты"""
    if outcome == PaymentStatus.SUCCESS:
        return OrderStatus.PAID if order.status == OrderStatus.CREATED else order.status
    if order.status in USER_CANCELLABLE:
        return OrderStatus.CANCELLED
    return order.status


class UpdatePaymentUseCase:
    """Применяет результат оплаты к заказу.

    Повтор того же результата ничего не меняет, другой результат для уже
    завершенного платежа приводит к ConflictingPaymentOutcomeError.
    Запись делается через compare-and-set по payment_status, поэтому два
    параллельных callback'а не могут оба увидеть PENDING и оба записаться.
    """

    def __init__(self, unit_of_work, max_attempts: int = 3):
        self._uow = unit_of_work
        self._max_attempts = max_attempts

    async def __call__(self, key: PaymentKey, new_status: PaymentStatus) -> Order:
        if new_status == PaymentStatus.PENDING:
            raise InvalidRequestError("Callback должен содержать итоговый статус платежа")

        logger.info(f"Обработка результата оплаты {new_status.value} для {key!r}")

        for attempt in range(self._max_attempts):
            async with self._uow() as uow:
                order = await self._resolve(uow, key)

                if order.is_payment_resolved():
                    if order.payment_status == new_status:
                        logger.info(f"Заказ {order.id} уже обработан ({new_status.value})")
                        return order
                    raise ConflictingPaymentOutcomeError(order.id, order.payment_status, new_status)

                target = resolve_order_status(order, new_status)
                if not await uow.orders.compare_and_set_payment(
                    order.id, PaymentStatus.PENDING, new_status, order.status, target
                ):
                    logger.warning(f"Заказ {order.id} изменен параллельно (попытка {attempt + 1})")
                    continue

                if target != order.status:
                    await uow.orders.add_status_history(
                        order.id, order.status, target,
                        notes=f"Оплата {new_status.value}", changed_by="payment"
                    )
                await self._record_events(uow, order, new_status, target)
                await uow.commit()

            logger.info(f"Заказ {order.id}: оплата {new_status.value}, статус {target.value}")
            return order.model_copy(update={"payment_status": new_status, "status": target})

        raise ConcurrentModificationError("Не удалось применить результат оплаты, повторите запрос")

    async def _resolve(self, uow, key: PaymentKey) -> Order:
        if isinstance(key, ByReference):
            order = await uow.orders.get_by_transaction_ref(key.transaction_ref)
            if not order:
                raise UnknownTransactionReferenceError(f"Транзакция {key.transaction_ref} не найдена")
            return order

        order = await uow.orders.get_by_id(key.order_id)
        if not order:
            raise OrderNotFoundError(f"Заказ {key.order_id} не найден")
        return order

    async def _record_events(self, uow, order: Order, outcome: PaymentStatus, target: OrderStatus) -> None:
        paid_order = order.model_copy(update={"payment_status": outcome, "status": target})

        if outcome == PaymentStatus.SUCCESS:
            await uow.outbox.create(
                event_type="order.paid",
                event_data={
                    "order_id": order.id,
                    "user_id": order.user_id,
                    "amount": str(order.total),
                    "transaction_ref": order.transaction_ref,
                    "idempotency_key": f"order_paid_{order.id}"
                },
                order_id=order.id
            )
            if order.status == OrderStatus.CANCELLED:
                # Заказ уже отменен, деньги нужно вернуть
                await record_refund_intent(uow, paid_order, "Оплата пришла после отмены заказа")
            return

        await uow.outbox.create(
            event_type="payment.failed",
            event_data={
                "order_id": order.id,
                "user_id": order.user_id,
                "transaction_ref": order.transaction_ref
            },
            order_id=order.id
        )
        if target == OrderStatus.CANCELLED and order.status != OrderStatus.CANCELLED:
            await record_cancellation(uow, paid_order, "Платеж не прошел")


class AdminUpdatePaymentUseCase:
    """Ручная сверка оплаты администратором по ID заказа"""

    def __init__(self, update_payment: UpdatePaymentUseCase):
        self._update_payment = update_payment

    async def __call__(self, order_id: str, new_status: PaymentStatus, identity: Optional[Identity]) -> Order:
        if identity is None:
            raise UnauthenticatedError("Пользователь не определен")
        if not identity.is_admin:
            raise ForbiddenError("Сверять оплату может только администратор")

        logger.info(f"Ручная сверка заказа {order_id}: {new_status.value} ({identity.user_id})")
        return await self._update_payment(ById(order_id=order_id), new_status)


class CancelPendingPaymentUseCase:
    """Пользователь прервал оплату на стороне провайдера"""

    def __init__(self, unit_of_work, update_payment: UpdatePaymentUseCase):
        self._uow = unit_of_work
        self._update_payment = update_payment

    async def __call__(self, order_id: str, identity: Optional[Identity]) -> Order:
        if identity is None:
            raise UnauthenticatedError("Пользователь не определен")

        async with self._uow() as uow:
            order = await uow.orders.get_by_id(order_id)
        if not order:
            raise OrderNotFoundError(f"Заказ {order_id} не найден")
        ensure_can_view(order, identity)

        return await self._update_payment(ById(order_id=order_id), PaymentStatus.FAILED)
