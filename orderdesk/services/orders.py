from typing import List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from orderdesk.core.exceptions import NotFoundError, ValidationError
from orderdesk.core.models import OrderFilters, OrderPage, OrderResponse, StatusHistoryResponse
from orderdesk.core.status import OrderStatus, parse_status
from orderdesk.data.database import AsyncSessionLocal
from orderdesk.data.repository import OrderRepository


def coerce_status(value) -> OrderStatus:
    try:
        return parse_status(value)
    except ValueError:
        valid = ", ".join(status.value for status in OrderStatus)
        raise ValidationError(f"Invalid status. Must be one of: {valid}") from None


class OrderQueryService:
    """Read side of the order lifecycle: lookups, listings and history."""

    def __init__(self, session_factory: async_sessionmaker = AsyncSessionLocal):
        self.session_factory = session_factory

    async def get_order(self, order_id: int) -> OrderResponse:
        async with self.session_factory() as session:
            order = await OrderRepository(session).get_by_id(order_id)
            if order is None:
                raise NotFoundError("Order not found")
            return OrderResponse.model_validate(order)

    async def get_order_by_number(self, order_number: str) -> OrderResponse:
        async with self.session_factory() as session:
            order = await OrderRepository(session).get_by_order_number(order_number)
            if order is None:
                raise NotFoundError("Order not found")
            return OrderResponse.model_validate(order)

    async def get_user_order(self, order_id: int, user_id: int) -> OrderResponse:
        # other customers' orders are reported as missing
        order = await self.get_order(order_id)
        if order.user_id != user_id:
            raise NotFoundError("Order not found")
        return order

    async def get_user_order_by_number(self, order_number: str, user_id: int) -> OrderResponse:
        order = await self.get_order_by_number(order_number)
        if order.user_id != user_id:
            raise NotFoundError("Order not found")
        return order

    async def list_orders(
        self, filters: Optional[OrderFilters] = None, page: int = 1, limit: int = 10
    ) -> OrderPage:
        async with self.session_factory() as session:
            return await OrderRepository(session).list_orders(filters, page, limit)

    async def list_user_orders(
        self, user_id: int, page: int = 1, limit: int = 10, status=None
    ) -> OrderPage:
        status = coerce_status(status) if status is not None else None
        async with self.session_factory() as session:
            return await OrderRepository(session).list_user_orders(user_id, page, limit, status)

    async def list_by_status(self, status, page: int = 1, limit: int = 10) -> OrderPage:
        status = coerce_status(status)
        async with self.session_factory() as session:
            return await OrderRepository(session).list_by_status(status, page, limit)

    async def get_status_history(self, order_id: int) -> List[StatusHistoryResponse]:
        async with self.session_factory() as session:
            repository = OrderRepository(session)
            if await repository.get_by_id(order_id) is None:
                raise NotFoundError("Order not found")
            history = await repository.get_status_history(order_id)
            return [StatusHistoryResponse.model_validate(row) for row in history]
