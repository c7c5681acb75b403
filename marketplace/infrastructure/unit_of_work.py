import logging
from contextlib import asynccontextmanager
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.domain.exceptions import StoreUnavailableError
from marketplace.infrastructure.repositories import (
    SQLAlchemyOrderRepository,
    SQLAlchemyOutboxRepository
)

logger = logging.getLogger(__name__)


class UnitOfWork:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def __call__(self, snapshot: bool = False):
        async with self._session_factory() as session:
            try:
                if snapshot and session.get_bind().dialect.name == "postgresql":
                    # Все чтения внутри транзакции видят один снимок
                    await session.connection(
                        execution_options={"isolation_level": "REPEATABLE READ"}
                    )
                uow_impl = _UnitOfWorkImpl(session)
                yield uow_impl
                # Без commit откатываем
                await session.rollback()
            except (OperationalError, InterfaceError) as e:
                await session.rollback()
                logger.error(f"БД недоступна: {e}")
                raise StoreUnavailableError("Хранилище заказов недоступно") from e
            except Exception:
                await session.rollback()
                raise


class _UnitOfWorkImpl:
    def __init__(self, session: AsyncSession):
        self._session = session
        self.orders = SQLAlchemyOrderRepository(session)
        self.outbox = SQLAlchemyOutboxRepository(session)

    async def commit(self):
        await self._session.commit()

    async def rollback(self):
        await self._session.rollback()
