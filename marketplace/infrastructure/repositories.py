import uuid
from collections import defaultdict
from decimal import Decimal
from typing import Optional, List
from datetime import datetime, timezone
from sqlalchemy import select, insert, update, func, distinct
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.domain.models import (
    Order, OrderItem, OrderStatus, PaymentStatus, PaymentMethod, Page
)
from marketplace.infrastructure.db_schema import (
    orders_tbl, order_items_tbl, order_status_history_tbl, outbox_events_tbl
)
from marketplace.application.interfaces import OrderRepository, OutboxRepository


class SQLAlchemyOrderRepository(OrderRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        return await self._fetch_one(orders_tbl.c.id == order_id)

    async def get_by_transaction_ref(self, transaction_ref: str) -> Optional[Order]:
        return await self._fetch_one(orders_tbl.c.transaction_ref == transaction_ref)

    async def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        return await self._fetch_one(orders_tbl.c.idempotency_key == key)

    async def create(self, order: Order) -> None:
        await self._session.execute(
            insert(orders_tbl).values(
                id=order.id,
                user_id=order.user_id,
                shipping_address=order.shipping_address,
                phone=order.phone,
                payment_method=order.payment_method,
                payment_status=order.payment_status,
                status=order.status,
                subtotal=order.subtotal,
                tax=order.tax,
                shipping=order.shipping,
                total=order.total,
                transaction_ref=order.transaction_ref,
                idempotency_key=order.idempotency_key,
                notes=order.notes,
                created_at=order.created_at,
                updated_at=order.updated_at
            )
        )
        if order.items:
            await self._session.execute(
                insert(order_items_tbl),
                [
                    {
                        "order_id": order.id,
                        "position": position,
                        "product_id": item.product_id,
                        "product_name": item.product_name,
                        "quantity": item.quantity,
                        "unit_price": item.unit_price
                    }
                    for position, item in enumerate(order.items)
                ]
            )

    async def list_by_user(self, user_id: str, page: int, size: int) -> Page:
        return await self._paginate([orders_tbl.c.user_id == user_id], page, size)

    async def list_filtered(
        self,
        page: int,
        size: int,
        status: Optional[OrderStatus] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None
    ) -> Page:
        conditions = []
        if status is not None:
            conditions.append(orders_tbl.c.status == status)
        if start_date is not None:
            conditions.append(orders_tbl.c.created_at >= start_date)
        if end_date is not None:
            conditions.append(orders_tbl.c.created_at <= end_date)
        return await self._paginate(conditions, page, size)

    async def compare_and_set_status(
        self,
        order_id: str,
        expected: OrderStatus,
        expected_payment: PaymentStatus,
        new: OrderStatus,
        **stamps
    ) -> bool:
        """Меняет статус, только если статус и оплата в БД не изменились с момента чтения"""
        result = await self._session.execute(
            update(orders_tbl)
            .where(
                orders_tbl.c.id == order_id,
                orders_tbl.c.status == expected,
                orders_tbl.c.payment_status == expected_payment
            )
            .values(status=new, updated_at=datetime.now(timezone.utc), **stamps)
        )
        return result.rowcount == 1

    async def compare_and_set_payment(
        self,
        order_id: str,
        expected_payment: PaymentStatus,
        new_payment: PaymentStatus,
        expected_status: OrderStatus,
        new_status: OrderStatus
    ) -> bool:
        result = await self._session.execute(
            update(orders_tbl)
            .where(
                orders_tbl.c.id == order_id,
                orders_tbl.c.payment_status == expected_payment,
                orders_tbl.c.status == expected_status
            )
            .values(
                payment_status=new_payment,
                status=new_status,
                updated_at=datetime.now(timezone.utc)
            )
        )
        return result.rowcount == 1

    async def update_transaction_ref(self, order_id: str, transaction_ref: str) -> None:
        await self._session.execute(
            update(orders_tbl)
            .where(orders_tbl.c.id == order_id)
            .values(
                transaction_ref=transaction_ref,
                updated_at=datetime.now(timezone.utc)
            )
        )

    async def add_status_history(
        self,
        order_id: str,
        from_status: OrderStatus,
        to_status: OrderStatus,
        notes: Optional[str] = None,
        changed_by: Optional[str] = None
    ) -> None:
        await self._session.execute(
            insert(order_status_history_tbl).values(
                order_id=order_id,
                from_status=from_status,
                to_status=to_status,
                notes=notes,
                changed_by=changed_by,
                created_at=datetime.now(timezone.utc)
            )
        )

    async def get_status_history(self, order_id: str) -> List[dict]:
        result = await self._session.execute(
            select(order_status_history_tbl)
            .where(order_status_history_tbl.c.order_id == order_id)
            .order_by(order_status_history_tbl.c.id.asc())
        )
        return [
            {
                "from_status": OrderStatus(row.from_status),
                "to_status": OrderStatus(row.to_status),
                "notes": row.notes,
                "changed_by": row.changed_by,
                "created_at": row.created_at
            }
            for row in result.fetchall()
        ]

    async def dashboard_snapshot(self, month_start: datetime, prev_month_start: datetime) -> dict:
        """Агрегаты для дашборда, вызывать внутри одной транзакции"""
        by_status_rows = await self._session.execute(
            select(orders_tbl.c.status, func.count()).group_by(orders_tbl.c.status)
        )
        orders_by_status = {OrderStatus(status).value: count for status, count in by_status_rows.fetchall()}

        paid = [
            orders_tbl.c.payment_status == PaymentStatus.SUCCESS,
            orders_tbl.c.status != OrderStatus.CANCELLED
        ]
        revenue = func.coalesce(func.sum(orders_tbl.c.total), 0)

        total_revenue = await self._session.scalar(select(revenue).where(*paid))
        revenue_this_month = await self._session.scalar(
            select(revenue).where(*paid, orders_tbl.c.created_at >= month_start)
        )
        revenue_last_month = await self._session.scalar(
            select(revenue).where(
                *paid,
                orders_tbl.c.created_at >= prev_month_start,
                orders_tbl.c.created_at < month_start
            )
        )
        total_customers = await self._session.scalar(
            select(func.count(distinct(orders_tbl.c.user_id)))
        )

        quantity = func.sum(order_items_tbl.c.quantity).label("quantity")
        top_rows = await self._session.execute(
            select(order_items_tbl.c.product_id, order_items_tbl.c.product_name, quantity)
            .join(orders_tbl, orders_tbl.c.id == order_items_tbl.c.order_id)
            .where(orders_tbl.c.status != OrderStatus.CANCELLED)
            .group_by(order_items_tbl.c.product_id, order_items_tbl.c.product_name)
            .order_by(quantity.desc(), order_items_tbl.c.product_id)
            .limit(5)
        )

        return {
            "orders_by_status": orders_by_status,
            "total_revenue": Decimal(str(total_revenue or 0)),
            "revenue_this_month": Decimal(str(revenue_this_month or 0)),
            "revenue_last_month": Decimal(str(revenue_last_month or 0)),
            "total_customers": total_customers or 0,
            "top_products": [
                {"product_id": row.product_id, "product_name": row.product_name, "quantity": int(row.quantity)}
                for row in top_rows.fetchall()
            ]
        }

    async def _fetch_one(self, condition) -> Optional[Order]:
        result = await self._session.execute(select(orders_tbl).where(condition))
        row = result.fetchone()
        if not row:
            return None
        items = await self._load_items([row.id])
        return self._to_domain(row, items.get(row.id, []))

    async def _paginate(self, conditions, page: int, size: int) -> Page:
        total = await self._session.scalar(
            select(func.count()).select_from(orders_tbl).where(*conditions)
        )
        if size == 0:
            return Page(items=[], total=total, page=page, size=size)

        result = await self._session.execute(
            select(orders_tbl)
            .where(*conditions)
            .order_by(orders_tbl.c.created_at.desc(), orders_tbl.c.id.desc())
            .offset(page * size)
            .limit(size)
        )
        rows = result.fetchall()
        items = await self._load_items([row.id for row in rows]) if rows else {}
        return Page(
            items=[self._to_domain(row, items.get(row.id, [])) for row in rows],
            total=total,
            page=page,
            size=size
        )

    async def _load_items(self, order_ids: List[str]) -> dict:
        result = await self._session.execute(
            select(order_items_tbl)
            .where(order_items_tbl.c.order_id.in_(order_ids))
            .order_by(order_items_tbl.c.order_id, order_items_tbl.c.position)
        )
        grouped = defaultdict(list)
        for row in result.fetchall():
            grouped[row.order_id].append(
                OrderItem(
                    product_id=row.product_id,
                    product_name=row.product_name,
                    quantity=row.quantity,
                    unit_price=row.unit_price
                )
            )
        return grouped

    def _to_domain(self, row, items: List[OrderItem]) -> Order:
        """Трансформация DB → Domain"""
        return Order(
            id=row.id,
            user_id=row.user_id,
            items=items,
            shipping_address=row.shipping_address,
            phone=row.phone,
            payment_method=PaymentMethod(row.payment_method),
            payment_status=PaymentStatus(row.payment_status),
            status=OrderStatus(row.status),
            subtotal=row.subtotal,
            tax=row.tax,
            shipping=row.shipping,
            total=row.total,
            transaction_ref=row.transaction_ref,
            idempotency_key=row.idempotency_key,
            notes=row.notes,
            shipping_date=row.shipping_date,
            delivery_date=row.delivery_date,
            created_at=row.created_at,
            updated_at=row.updated_at
        )


class SQLAlchemyOutboxRepository(OutboxRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, event_type: str, event_data: dict, order_id: str) -> str:
        event_id = str(uuid.uuid4())
        stmt = insert(outbox_events_tbl).values(
            id=event_id,
            event_type=event_type,
            event_data=event_data,  # SQLAlchemy JSON column сериализует автоматически
            order_id=order_id,
            status="pending",
            created_at=datetime.now(timezone.utc)
        )
        await self._session.execute(stmt)
        return event_id

    async def get_pending(self, limit: int = 10) -> List[dict]:
        result = await self._session.execute(
            select(outbox_events_tbl)
            .where(outbox_events_tbl.c.status == "pending")
            .order_by(outbox_events_tbl.c.created_at.asc())
            .limit(limit)
        )
        rows = result.fetchall()

        return [
            {
                "id": row.id,
                "event_type": row.event_type,
                "event_data": row.event_data,
                "order_id": row.order_id
            }
            for row in rows
        ]

    async def mark_as_published(self, event_id: str) -> None:
        stmt = (
            update(outbox_events_tbl)
            .where(outbox_events_tbl.c.id == event_id)
            .values(status="published")
        )
        await self._session.execute(stmt)
