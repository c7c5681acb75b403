from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List

from marketplace.domain.models import (
    Order, OrderStatus, PaymentStatus, Product, Page
)


class OrderRepository(ABC):
    @abstractmethod
    async def get_by_id(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_transaction_ref(self, transaction_ref: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def create(self, order: Order) -> None:
        pass

    @abstractmethod
    async def list_by_user(self, user_id: str, page: int, size: int) -> Page:
        pass

    @abstractmethod
    async def list_filtered(
        self,
        page: int,
        size: int,
        status: Optional[OrderStatus] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None
    ) -> Page:
        pass

    @abstractmethod
    async def compare_and_set_status(
        self, order_id: str, expected: OrderStatus, expected_payment: PaymentStatus, new: OrderStatus, **stamps
    ) -> bool:
        pass

    @abstractmethod
    async def compare_and_set_payment(
        self,
        order_id: str,
        expected_payment: PaymentStatus,
        new_payment: PaymentStatus,
        expected_status: OrderStatus,
        new_status: OrderStatus
    ) -> bool:
        pass

    @abstractmethod
    async def update_transaction_ref(self, order_id: str, transaction_ref: str) -> None:
        pass

    @abstractmethod
    async def add_status_history(
        self,
        order_id: str,
        from_status: OrderStatus,
        to_status: OrderStatus,
        notes: Optional[str] = None,
        changed_by: Optional[str] = None
    ) -> None:
        pass

    @abstractmethod
    async def get_status_history(self, order_id: str) -> List[dict]:
        pass

    @abstractmethod
    async def dashboard_snapshot(self, month_start: datetime, prev_month_start: datetime) -> dict:
        pass


class OutboxRepository(ABC):
    @abstractmethod
    async def create(self, event_type: str, event_data: dict, order_id: str) -> str:
        pass

    @abstractmethod
    async def get_pending(self, limit: int = 10) -> List[dict]:
        pass

    @abstractmethod
    async def mark_as_published(self, event_id: str) -> None:
        pass


class UnitOfWork(ABC):
    @property
    @abstractmethod
    def orders(self) -> OrderRepository:
        pass

    @property
    @abstractmethod
    def outbox(self) -> OutboxRepository:
        pass

    @abstractmethod
    async def __call__(self, snapshot: bool = False):
        pass

    @abstractmethod
    async def commit(self):
        pass

    @abstractmethod
    async def rollback(self):
        pass


class CatalogService(ABC):
    @abstractmethod
    async def get_product(self, product_id: str) -> Optional[Product]:
        pass


class PaymentGateway(ABC):
    @abstractmethod
    async def create_payment(
        self, order_id: str, amount: str, callback_url: str, idempotency_key: str
    ) -> dict:
        pass


class EventProducer(ABC):
    @abstractmethod
    async def publish(self, event_type: str, event_data: dict, key: str) -> bool:
        pass
