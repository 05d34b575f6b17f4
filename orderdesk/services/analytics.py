from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Tuple

from sqlalchemy import case, distinct, func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from orderdesk.core.models import (
    DailyTrendPoint, FulfillmentMetrics, OrderStatistics, TopCustomer, TopProduct,
)
from orderdesk.core.status import OrderStatus
from orderdesk.data.database import AsyncSessionLocal, db_errors
from orderdesk.data.models import Order, OrderItem, utcnow


CENT = Decimal("0.01")


def _in_range(stmt, start: Optional[datetime], end: Optional[datetime]):
    if start is not None:
        stmt = stmt.where(Order.created_at >= start)
    if end is not None:
        stmt = stmt.where(Order.created_at <= end)
    return stmt


def _as_date(value) -> date:
    # func.date() comes back as a string on SQLite and as a date on PostgreSQL
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def _mean_hours(spans: Iterable[Tuple[Optional[datetime], Optional[datetime]]]) -> float:
    hours = [
        (end - start).total_seconds() / 3600
        for start, end in spans
        if start is not None and end is not None
    ]
    if not hours:
        return 0.0
    return sum(hours) / len(hours)


def _rate(part: int, total: int) -> float:
    return round(part / total * 100, 2) if total else 0.0


class FulfillmentAnalytics:
    """Read-only aggregates over persisted orders, optionally limited to a created_at range."""

    def __init__(
        self,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.clock = clock

    async def order_statistics(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> OrderStatistics:
        by_status = _in_range(
            select(Order.status, func.count(Order.id), func.coalesce(func.sum(Order.total_amount), 0))
            .group_by(Order.status),
            start, end,
        )
        customers = _in_range(select(func.count(distinct(Order.user_id))), start, end)

        async with self.session_factory() as session:
            with db_errors("getting order statistics"):
                rows = (await session.execute(by_status)).all()
                unique_customers = (await session.execute(customers)).scalar_one()

        status_counts = {status.value: 0 for status in OrderStatus}
        total_orders = 0
        total_revenue = Decimal("0")
        for status, count, revenue in rows:
            status_counts[OrderStatus(status).value] = count
            total_orders += count
            total_revenue += Decimal(revenue)

        average = (total_revenue / total_orders).quantize(CENT) if total_orders else Decimal("0")
        return OrderStatistics(
            total_orders=total_orders,
            status_counts=status_counts,
            total_revenue=total_revenue.quantize(CENT),
            average_order_value=average,
            unique_customers=unique_customers,
        )

    async def daily_trend(self, days: int = 30) -> List[DailyTrendPoint]:
        """
        Orders placed and revenue per calendar day for the last ``days`` days,
        oldest first, with empty days filled in. Revenue leaves out cancelled orders.
        """
        days = max(days, 1)
        today = self.clock().date()
        first_day = today - timedelta(days=days - 1)
        since = datetime.combine(first_day, datetime.min.time())

        day = func.date(Order.created_at).label("day")
        revenue = func.sum(
            case((Order.status != OrderStatus.CANCELLED, Order.total_amount), else_=0)
        )
        stmt = (
            select(day, func.count(Order.id), func.coalesce(revenue, 0))
            .where(Order.created_at >= since)
            .group_by(day)
        )

        async with self.session_factory() as session:
            with db_errors("getting daily order trend"):
                rows = (await session.execute(stmt)).all()

        totals = {_as_date(value): (count, Decimal(amount)) for value, count, amount in rows}
        trend = []
        for offset in range(days):
            current = first_day + timedelta(days=offset)
            count, amount = totals.get(current, (0, Decimal("0")))
            trend.append(DailyTrendPoint(day=current, orders=count, revenue=amount.quantize(CENT)))
        return trend

    async def top_products(
        self, limit: int = 10, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> List[TopProduct]:
        quantity = func.sum(OrderItem.quantity).label("quantity_sold")
        stmt = _in_range(
            select(
                OrderItem.product_id,
                func.max(OrderItem.product_name),
                func.max(OrderItem.full_code),
                quantity,
                func.sum(OrderItem.subtotal),
            )
            .join(Order, Order.id == OrderItem.order_id)
            .where(Order.status != OrderStatus.CANCELLED)
            .group_by(OrderItem.product_id)
            .order_by(quantity.desc(), OrderItem.product_id)
            .limit(limit),
            start, end,
        )
        async with self.session_factory() as session:
            with db_errors("getting top products"):
                rows = (await session.execute(stmt)).all()

        return [
            TopProduct(
                product_id=product_id,
                product_name=name,
                full_code=full_code,
                quantity_sold=sold,
                revenue=Decimal(revenue).quantize(CENT),
            )
            for product_id, name, full_code, sold, revenue in rows
        ]

    async def top_customers(
        self, limit: int = 10, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> List[TopCustomer]:
        spent = func.sum(Order.total_amount).label("total_spent")
        stmt = _in_range(
            select(Order.user_id, func.max(Order.customer_name), func.count(Order.id), spent)
            .where(Order.status != OrderStatus.CANCELLED)
            .group_by(Order.user_id)
            .order_by(spent.desc(), Order.user_id)
            .limit(limit),
            start, end,
        )
        async with self.session_factory() as session:
            with db_errors("getting top customers"):
                rows = (await session.execute(stmt)).all()

        return [
            TopCustomer(
                user_id=user_id,
                customer_name=name,
                orders=count,
                total_spent=Decimal(total).quantize(CENT),
            )
            for user_id, name, count, total in rows
        ]

    async def fulfillment_metrics(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> FulfillmentMetrics:
        stmt = _in_range(
            select(
                Order.status,
                Order.created_at,
                Order.confirmed_at,
                Order.shipped_at,
                Order.delivered_at,
            ),
            start, end,
        )
        async with self.session_factory() as session:
            with db_errors("getting fulfillment metrics"):
                rows = (await session.execute(stmt)).all()

        total = len(rows)
        delivered = sum(1 for row in rows if row.status == OrderStatus.DELIVERED)
        cancelled = sum(1 for row in rows if row.status == OrderStatus.CANCELLED)

        return FulfillmentMetrics(
            total_orders=total,
            delivered_orders=delivered,
            cancelled_orders=cancelled,
            avg_confirmation_time_hours=_mean_hours((r.created_at, r.confirmed_at) for r in rows),
            avg_shipping_time_hours=_mean_hours((r.confirmed_at, r.shipped_at) for r in rows),
            avg_delivery_time_hours=_mean_hours((r.shipped_at, r.delivered_at) for r in rows),
            avg_total_fulfillment_time_hours=_mean_hours((r.created_at, r.delivered_at) for r in rows),
            delivery_success_rate=_rate(delivered, total),
            cancellation_rate=_rate(cancelled, total),
        )
