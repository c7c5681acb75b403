import asyncio
from decimal import Decimal

import pytest

from marketplace.domain.models import OrderStatus, PaymentStatus, PaymentMethod
from marketplace.domain.exceptions import (
    InvalidRequestError, ItemNotFoundError, InsufficientStockError,
    UnauthenticatedError, CatalogServiceError
)
from marketplace.application.create_order import CreateOrderDTO, OrderLineDTO


def _dto(lines, **kwargs):
    return CreateOrderDTO(
        items=[OrderLineDTO(product_id=p, quantity=q) for p, q in lines],
        shipping_address="Хюэ, ул. Ле Лой 5",
        payment_method=kwargs.pop("payment_method", PaymentMethod.COD),
        **kwargs
    )


@pytest.mark.parametrize("lines", [
    [("seeds", 2)],
    [("gloves", 3)],
    [("seeds", 1), ("gloves", 1)],
    [("tractor-oil", 2)],
])
async def test_total_is_sum_of_parts(make_order, lines):
    order = await make_order(lines=lines)

    assert order.total == order.subtotal + order.tax + order.shipping
    assert order.status == OrderStatus.CREATED
    assert order.payment_status == PaymentStatus.PENDING


async def test_amounts_are_computed_from_catalog_prices(make_order):
    order = await make_order(lines=[("seeds", 2)])

    assert order.subtotal == Decimal("200000.00")
    assert order.tax == Decimal("20000.00")
    assert order.shipping == Decimal("30000.00")
    assert order.total == Decimal("250000.00")


async def test_order_is_persisted_with_items(make_order, stored_order, alice):
    order = await make_order(lines=[("seeds", 1), ("gloves", 4)])

    stored = await stored_order(order.id)
    assert stored.user_id == alice.user_id
    assert [(i.product_id, i.quantity) for i in stored.items] == [("seeds", 1), ("gloves", 4)]
    assert stored.items[1].unit_price == Decimal("19999.99")
    assert stored.total == order.total
    assert stored.phone == "+84900000000"


async def test_empty_items_rejected(create_order, alice):
    with pytest.raises(InvalidRequestError):
        await create_order(_dto([]), alice)


async def test_unknown_product_rejected(create_order, alice):
    with pytest.raises(ItemNotFoundError):
        await create_order(_dto([("seeds", 1), ("unknown", 1)]), alice)


async def test_insufficient_stock_rejected(create_order, alice):
    with pytest.raises(InsufficientStockError) as exc:
        await create_order(_dto([("tractor-oil", 3)]), alice)
    assert exc.value.available == 2
    assert isinstance(exc.value, InvalidRequestError)


@pytest.mark.parametrize("quantity", [0, -1])
async def test_non_positive_quantity_rejected(create_order, alice, quantity):
    with pytest.raises(InvalidRequestError):
        await create_order(_dto([("seeds", quantity)]), alice)


async def test_anonymous_caller_rejected(create_order):
    with pytest.raises(UnauthenticatedError):
        await create_order(_dto([("seeds", 1)]), None)


async def test_nothing_persisted_on_rejection(create_order, uow, alice):
    with pytest.raises(ItemNotFoundError):
        await create_order(_dto([("unknown", 1)]), alice)

    async with uow() as u:
        page = await u.orders.list_by_user(alice.user_id, 0, 10)
    assert page.total == 0


async def test_catalog_outage_is_transient(create_order, catalog, alice):
    catalog.error = CatalogServiceError("catalog down")

    with pytest.raises(CatalogServiceError):
        await create_order(_dto([("seeds", 1)]), alice)


async def test_idempotency_key_returns_existing_order(make_order, uow, alice):
    first = await make_order(idempotency_key="checkout-1")
    second = await make_order(idempotency_key="checkout-1")

    assert second.id == first.id
    async with uow() as u:
        page = await u.orders.list_by_user(alice.user_id, 0, 10)
    assert page.total == 1


async def test_idempotency_key_of_other_user_rejected(make_order, bob):
    await make_order(idempotency_key="checkout-2")

    with pytest.raises(InvalidRequestError):
        await make_order(identity=bob, idempotency_key="checkout-2")


async def test_concurrent_creates_with_same_key_return_one_order(make_order, uow, alice):
    results = await asyncio.gather(
        make_order(idempotency_key="checkout-3"),
        make_order(idempotency_key="checkout-3")
    )

    assert results[0].id == results[1].id
    async with uow() as u:
        page = await u.orders.list_by_user(alice.user_id, 0, 10)
    assert page.total == 1


async def test_concurrent_creates_with_same_key_by_other_user(make_order, bob):
    results = await asyncio.gather(
        make_order(idempotency_key="checkout-4"),
        make_order(identity=bob, idempotency_key="checkout-4"),
        return_exceptions=True
    )

    errors = [r for r in results if isinstance(r, Exception)]
    assert len(errors) == 1
    assert isinstance(errors[0], InvalidRequestError)
