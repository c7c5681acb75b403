from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from marketplace.domain.models import Identity, Role, Product, PaymentMethod
from marketplace.domain.exceptions import PaymentGatewayTimeout
from marketplace.application.interfaces import CatalogService, PaymentGateway, EventProducer
from marketplace.application.create_order import CreateOrderUseCase, CreateOrderDTO, OrderLineDTO
from marketplace.infrastructure.db_schema import metadata
from marketplace.infrastructure.unit_of_work import UnitOfWork

TAX_RATE = Decimal("0.10")
SHIPPING_FEE = Decimal("30000")
FREE_SHIPPING_THRESHOLD = Decimal("500000")


class FakeCatalog(CatalogService):
    def __init__(self, products):
        self.products = {product.id: product for product in products}
        self.error = None

    async def get_product(self, product_id):
        if self.error:
            raise self.error
        return self.products.get(product_id)


class FakePaymentGateway(PaymentGateway):
    def __init__(self):
        self.calls = []
        self.timeout = False

    async def create_payment(self, order_id, amount, callback_url, idempotency_key):
        self.calls.append({
            "order_id": order_id,
            "amount": amount,
            "callback_url": callback_url,
            "idempotency_key": idempotency_key
        })
        if self.timeout:
            raise PaymentGatewayTimeout(f"timeout {order_id}")
        return {"id": f"txn_{order_id}", "payment_url": f"https://pay.example/{order_id}"}


class FakeProducer(EventProducer):
    def __init__(self, succeed=True):
        self.succeed = succeed
        self.published = []

    async def publish(self, event_type, event_data, key):
        if not self.succeed:
            return False
        self.published.append((event_type, event_data, key))
        return True


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}",
        connect_args={"timeout": 30}
    )
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def uow(session_factory):
    return UnitOfWork(session_factory)


@pytest.fixture
def catalog():
    return FakeCatalog([
        Product(id="seeds", name="Семена томатов", price=Decimal("100000.00"), available_qty=10),
        Product(id="tractor-oil", name="Масло для трактора", price=Decimal("250000.00"), available_qty=2),
        Product(id="gloves", name="Перчатки", price=Decimal("19999.99"), available_qty=100),
    ])


@pytest.fixture
def gateway():
    return FakePaymentGateway()


@pytest.fixture
def alice():
    return Identity(user_id="alice", role=Role.USER)


@pytest.fixture
def bob():
    return Identity(user_id="bob", role=Role.USER)


@pytest.fixture
def admin():
    return Identity(user_id="admin", role=Role.ADMIN)


@pytest.fixture
def create_order(uow, catalog):
    return CreateOrderUseCase(uow, catalog, TAX_RATE, SHIPPING_FEE, FREE_SHIPPING_THRESHOLD)


@pytest.fixture
def make_order(create_order, alice):
    async def _make(identity=None, lines=None, payment_method=PaymentMethod.VNPAY, idempotency_key=None):
        dto = CreateOrderDTO(
            items=[OrderLineDTO(product_id=p, quantity=q) for p, q in (lines or [("seeds", 2)])],
            shipping_address="Ханой, ул. Ланг 12",
            payment_method=payment_method,
            phone="+84900000000",
            idempotency_key=idempotency_key
        )
        return await create_order(dto, identity or alice)
    return _make


@pytest.fixture
def pending_events(uow):
    async def _pending(order_id=None):
        async with uow() as u:
            events = await u.outbox.get_pending(limit=100)
        return [e for e in events if order_id is None or e["order_id"] == order_id]
    return _pending


@pytest.fixture
def stored_order(uow):
    async def _get(order_id):
        async with uow() as u:
            return await u.orders.get_by_id(order_id)
    return _get


@pytest.fixture
def producer():
    return FakeProducer()
