import logging
from datetime import datetime, timezone
from typing import Optional, Tuple

from marketplace.domain.models import Identity, OrderStatus, Page
from marketplace.domain.exceptions import (
    InvalidRequestError, ForbiddenError, UnauthenticatedError
)

logger = logging.getLogger(__name__)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_page(page: int, size: int, max_size: int) -> Tuple[int, int]:
    """page и size не могут быть отрицательными, size ограничен max_size"""
    if page < 0 or size < 0:
        raise InvalidRequestError(f"Некорректная пагинация: page={page}, size={size}")
    return page, min(size, max_size)


class GetUserOrdersUseCase:
    def __init__(self, unit_of_work, max_page_size: int):
        self._uow = unit_of_work
        self._max_page_size = max_page_size

    async def __call__(self, identity: Optional[Identity], page: int, size: int) -> Page:
        if identity is None:
            raise UnauthenticatedError("Пользователь не определен")
        page, size = normalize_page(page, size, self._max_page_size)

        async with self._uow() as uow:
            return await uow.orders.list_by_user(identity.user_id, page, size)


class GetAllOrdersUseCase:
    def __init__(self, unit_of_work, max_page_size: int):
        self._uow = unit_of_work
        self._max_page_size = max_page_size

    async def __call__(
        self,
        identity: Optional[Identity],
        page: int,
        size: int,
        status: Optional[OrderStatus] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None
    ) -> Page:
        if identity is None:
            raise UnauthenticatedError("Пользователь не определен")
        if not identity.is_admin:
            raise ForbiddenError("Список всех заказов доступен только администратору")

        page, size = normalize_page(page, size, self._max_page_size)
        start_date, end_date = as_utc(start_date), as_utc(end_date)
        if start_date and end_date and start_date > end_date:
            raise InvalidRequestError("Дата начала позже даты окончания")

        logger.info(f"Админ {identity.user_id} запросил заказы: status={status}, {start_date} - {end_date}")
        async with self._uow() as uow:
            return await uow.orders.list_filtered(page, size, status, start_date, end_date)
