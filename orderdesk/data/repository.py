import math
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.models import OrderFilters, OrderPage, OrderSummary, Pagination
from orderdesk.core.status import OrderStatus
from orderdesk.data.database import db_errors
from orderdesk.data.models import Order, OrderItem, OrderStatusHistory


class OrderRepository:
    """
    Persistence for orders, their items and their status history.

    Every method runs inside the session it was built with; callers own the
    transaction boundary (``async with session.begin()``), so an order and its
    items, or a status change and its history row, commit together.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # writes

    async def add_order(self, order: Order, items: Sequence[OrderItem]) -> Order:
        with db_errors("creating order"):
            order.items = list(items)
            self.session.add(order)
            await self.session.flush()
        return order

    async def record_transition(
        self,
        order: Order,
        new_status: OrderStatus,
        changed_by: Optional[int],
        notes: Optional[str] = None,
        changes: Optional[Dict[str, object]] = None,
    ) -> OrderStatusHistory:
        old_status = order.status
        history = OrderStatusHistory(
            order_id=order.id,
            old_status=old_status,
            new_status=new_status,
            changed_by=changed_by,
            notes=notes,
        )
        with db_errors("updating order status"):
            order.status = new_status
            for field, value in (changes or {}).items():
                setattr(order, field, value)
            self.session.add(history)
            await self.session.flush()
        return history

    # reads

    async def get_by_id(self, order_id: int, for_update: bool = False) -> Optional[Order]:
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        with db_errors("finding order"):
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()

    async def get_by_order_number(self, order_number: str) -> Optional[Order]:
        stmt = (
            select(Order)
            .where(Order.order_number == order_number)
            .execution_options(populate_existing=True)
        )
        with db_errors("finding order by number"):
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()

    async def order_number_exists(self, order_number: str) -> bool:
        stmt = select(Order.id).where(Order.order_number == order_number).limit(1)
        with db_errors("checking order number"):
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none() is not None

    async def count_order_numbers_with_prefix(self, prefix: str) -> int:
        stmt = select(func.count(Order.id)).where(Order.order_number.like(f"{prefix}%"))
        with db_errors("counting order numbers"):
            result = await self.session.execute(stmt)
            return result.scalar_one()

    async def get_status_history(self, order_id: int) -> List[OrderStatusHistory]:
        stmt = (
            select(OrderStatusHistory)
            .where(OrderStatusHistory.order_id == order_id)
            .order_by(OrderStatusHistory.created_at.desc(), OrderStatusHistory.id.desc())
        )
        with db_errors("getting order status history"):
            result = await self.session.execute(stmt)
            return list(result.scalars().all())

    # listing

    def _apply_filters(self, stmt, filters: Optional[OrderFilters]):
        if filters is None:
            return stmt
        if filters.status is not None:
            stmt = stmt.where(Order.status == filters.status)
        if filters.user_id is not None:
            stmt = stmt.where(Order.user_id == filters.user_id)
        if filters.start_date is not None:
            stmt = stmt.where(Order.created_at >= filters.start_date)
        if filters.end_date is not None:
            stmt = stmt.where(Order.created_at <= filters.end_date)
        if filters.search:
            pattern = f"%{filters.search}%"
            stmt = stmt.where(
                or_(
                    Order.order_number.like(pattern),
                    Order.customer_name.like(pattern),
                    Order.customer_phone.like(pattern),
                )
            )
        return stmt

    async def count_orders(self, filters: Optional[OrderFilters] = None) -> int:
        stmt = self._apply_filters(select(func.count(Order.id)), filters)
        with db_errors("counting orders"):
            result = await self.session.execute(stmt)
            return result.scalar_one()

    async def list_orders(
        self, filters: Optional[OrderFilters] = None, page: int = 1, limit: int = 10
    ) -> OrderPage:
        page = max(page, 1)
        limit = max(limit, 1)
        total = await self.count_orders(filters)

        items_count = (
            select(func.count(OrderItem.id))
            .where(OrderItem.order_id == Order.id)
            .correlate(Order)
            .scalar_subquery()
        )
        stmt = self._apply_filters(select(Order, items_count.label("items_count")), filters)
        stmt = (
            stmt.order_by(Order.created_at.desc(), Order.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )
        with db_errors("getting orders"):
            result = await self.session.execute(stmt)
            rows = result.all()

        orders = [
            OrderSummary.model_validate(order).model_copy(update={"items_count": count})
            for order, count in rows
        ]
        return OrderPage(
            orders=orders,
            pagination=Pagination(
                page=page,
                limit=limit,
                total=total,
                total_pages=math.ceil(total / limit),
            ),
        )

    async def list_user_orders(
        self, user_id: int, page: int = 1, limit: int = 10, status: Optional[OrderStatus] = None
    ) -> OrderPage:
        return await self.list_orders(OrderFilters(user_id=user_id, status=status), page, limit)

    async def list_by_status(self, status: OrderStatus, page: int = 1, limit: int = 10) -> OrderPage:
        return await self.list_orders(OrderFilters(status=status), page, limit)
