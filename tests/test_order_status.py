import pytest

from marketplace.domain.models import OrderStatus, PaymentStatus, PaymentMethod, ById
from marketplace.domain.exceptions import (
    InvalidStateTransitionError, ForbiddenError, OrderNotFoundError
)
from marketplace.application.cancel_order import CancelOrderUseCase
from marketplace.application.update_order_status import UpdateOrderStatusUseCase, UpdateOrderStatusDTO
from marketplace.application.update_payment import UpdatePaymentUseCase
from marketplace.infrastructure.repositories import SQLAlchemyOrderRepository


@pytest.fixture
def cancel(uow):
    return CancelOrderUseCase(uow)


@pytest.fixture
def set_status(uow, admin):
    use_case = UpdateOrderStatusUseCase(uow)

    async def _set(order_id, status, notes=None, identity=None):
        return await use_case(order_id, UpdateOrderStatusDTO(status=status, notes=notes), identity or admin)
    return _set


async def test_cancel_created_order(make_order, cancel, stored_order, pending_events, alice):
    order = await make_order()

    result = await cancel(order.id, alice)

    assert result.status == OrderStatus.CANCELLED
    assert (await stored_order(order.id)).status == OrderStatus.CANCELLED
    event_types = [e["event_type"] for e in await pending_events(order.id)]
    assert event_types == ["order.cancelled"]


async def test_cancel_paid_order_records_refund(make_order, cancel, uow, stored_order, pending_events, alice):
    order = await make_order()
    await UpdatePaymentUseCase(uow)(ById(order_id=order.id), PaymentStatus.SUCCESS)

    await cancel(order.id, alice)

    stored = await stored_order(order.id)
    assert stored.status == OrderStatus.CANCELLED
    assert stored.payment_status == PaymentStatus.SUCCESS
    refunds = [e for e in await pending_events(order.id) if e["event_type"] == "refund.requested"]
    assert len(refunds) == 1
    assert refunds[0]["event_data"]["amount"] == str(order.total)


@pytest.mark.parametrize("path", [
    [OrderStatus.PAID, OrderStatus.SHIPPED],
    [OrderStatus.PAID, OrderStatus.SHIPPED, OrderStatus.DELIVERED],
])
async def test_cancel_after_shipping_rejected(make_order, cancel, set_status, stored_order, alice, path):
    order = await make_order()
    for status in path:
        await set_status(order.id, status)

    with pytest.raises(InvalidStateTransitionError):
        await cancel(order.id, alice)
    assert (await stored_order(order.id)).status == path[-1]


async def test_cancel_twice_rejected(make_order, cancel, alice):
    order = await make_order()
    await cancel(order.id, alice)

    with pytest.raises(InvalidStateTransitionError):
        await cancel(order.id, alice)


async def test_cancel_foreign_order_forbidden(make_order, cancel, bob):
    order = await make_order()

    with pytest.raises(ForbiddenError):
        await cancel(order.id, bob)


async def test_cancel_missing_order(cancel, alice):
    with pytest.raises(OrderNotFoundError):
        await cancel("missing", alice)


async def test_admin_cannot_skip_shipping(make_order, set_status, stored_order):
    order = await make_order()

    with pytest.raises(InvalidStateTransitionError):
        await set_status(order.id, OrderStatus.DELIVERED)
    assert (await stored_order(order.id)).status == OrderStatus.CREATED


async def test_admin_stepwise_progression(make_order, set_status, stored_order):
    order = await make_order()

    for status in (OrderStatus.PAID, OrderStatus.SHIPPED, OrderStatus.DELIVERED):
        result = await set_status(order.id, status)
        assert result.status == status

    stored = await stored_order(order.id)
    assert stored.status == OrderStatus.DELIVERED
    assert stored.shipping_date is not None
    assert stored.delivery_date is not None


@pytest.mark.parametrize("terminal", [OrderStatus.DELIVERED, OrderStatus.CANCELLED])
async def test_terminal_states_are_final(make_order, set_status, terminal):
    order = await make_order()
    if terminal == OrderStatus.DELIVERED:
        for status in (OrderStatus.PAID, OrderStatus.SHIPPED):
            await set_status(order.id, status)
    await set_status(order.id, terminal)

    for target in OrderStatus:
        with pytest.raises(InvalidStateTransitionError):
            await set_status(order.id, target)


async def test_admin_can_cancel_shipped_order(make_order, set_status, stored_order):
    order = await make_order()
    await set_status(order.id, OrderStatus.PAID)
    await set_status(order.id, OrderStatus.SHIPPED)

    await set_status(order.id, OrderStatus.CANCELLED, notes="Утеряно при доставке")

    assert (await stored_order(order.id)).status == OrderStatus.CANCELLED


async def test_notes_are_kept_in_history(make_order, set_status, uow, admin):
    order = await make_order()

    await set_status(order.id, OrderStatus.PAID, notes="Оплачено наличными")

    async with uow() as u:
        history = await u.orders.get_status_history(order.id)
    assert history == [
        {
            "from_status": OrderStatus.CREATED,
            "to_status": OrderStatus.PAID,
            "notes": "Оплачено наличными",
            "changed_by": admin.user_id,
            "created_at": history[0]["created_at"]
        }
    ]


async def test_status_update_requires_admin(make_order, set_status, alice):
    order = await make_order()

    with pytest.raises(ForbiddenError):
        await set_status(order.id, OrderStatus.PAID, identity=alice)


async def test_status_update_missing_order(set_status):
    with pytest.raises(OrderNotFoundError):
        await set_status("missing", OrderStatus.PAID)


@pytest.fixture
def payment_lands_after_read(uow, monkeypatch):
    """Первое чтение заказа сразу же обгоняет успешный callback оплаты"""
    original = SQLAlchemyOrderRepository.get_by_id
    landed = []

    async def get_by_id(self, order_id):
        order = await original(self, order_id)
        if not landed:
            landed.append(order_id)
            await UpdatePaymentUseCase(uow)(ById(order_id=order_id), PaymentStatus.SUCCESS)
        return order

    def _arm():
        monkeypatch.setattr(SQLAlchemyOrderRepository, "get_by_id", get_by_id)
        return landed
    return _arm


async def test_cancel_racing_payment_still_requests_refund(
    make_order, cancel, set_status, payment_lands_after_read, stored_order, pending_events, alice
):
    order = await make_order(payment_method=PaymentMethod.COD)
    await set_status(order.id, OrderStatus.PAID)
    landed = payment_lands_after_read()

    await cancel(order.id, alice)

    assert landed == [order.id]
    stored = await stored_order(order.id)
    assert stored.status == OrderStatus.CANCELLED
    assert stored.payment_status == PaymentStatus.SUCCESS
    refunds = [e for e in await pending_events(order.id) if e["event_type"] == "refund.requested"]
    assert len(refunds) == 1


async def test_admin_cancel_racing_payment_still_requests_refund(
    make_order, set_status, payment_lands_after_read, stored_order, pending_events
):
    order = await make_order(payment_method=PaymentMethod.COD)
    await set_status(order.id, OrderStatus.PAID)
    await set_status(order.id, OrderStatus.SHIPPED)
    payment_lands_after_read()

    await set_status(order.id, OrderStatus.CANCELLED, notes="Возврат от перевозчика")

    stored = await stored_order(order.id)
    assert stored.status == OrderStatus.CANCELLED
    assert stored.payment_status == PaymentStatus.SUCCESS
    event_types = [e["event_type"] for e in await pending_events(order.id)]
    assert event_types.count("refund.requested") == 1
