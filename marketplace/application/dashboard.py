from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from marketplace.domain.models import DashboardMetrics, Identity, OrderStatus
from marketplace.domain.exceptions import ForbiddenError, UnauthenticatedError


def month_bounds(now: datetime):
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if month_start.month == 1:
        prev_month_start = month_start.replace(year=month_start.year - 1, month=12)
    else:
        prev_month_start = month_start.replace(month=month_start.month - 1)
    return month_start, prev_month_start


def growth_percent(current: Decimal, previous: Decimal) -> float:
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return round(float((current - previous) / previous * 100), 2)


class GetDashboardMetricsUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, identity: Optional[Identity], now: Optional[datetime] = None) -> DashboardMetrics:
        if identity is None:
            raise UnauthenticatedError("Пользователь не определен")
        if not identity.is_admin:
            raise ForbiddenError("Дашборд доступен только администратору")

        now = now or datetime.now(timezone.utc)
        month_start, prev_month_start = month_bounds(now)

        async with self._uow(snapshot=True) as uow:
            snapshot = await uow.orders.dashboard_snapshot(month_start, prev_month_start)

        by_status = {status.value: snapshot["orders_by_status"].get(status.value, 0) for status in OrderStatus}
        return DashboardMetrics(
            total_orders=sum(by_status.values()),
            pending_orders=by_status[OrderStatus.CREATED.value],
            orders_by_status=by_status,
            total_revenue=snapshot["total_revenue"],
            revenue_this_month=snapshot["revenue_this_month"],
            revenue_last_month=snapshot["revenue_last_month"],
            monthly_growth=growth_percent(snapshot["revenue_this_month"], snapshot["revenue_last_month"]),
            total_customers=snapshot["total_customers"],
            top_products=snapshot["top_products"],
            generated_at=now
        )
