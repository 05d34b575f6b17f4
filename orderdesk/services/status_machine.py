import logging
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy.ext.asyncio import async_sessionmaker

from orderdesk.core.config import settings
from orderdesk.core.exceptions import BusinessLogicError, NotFoundError
from orderdesk.core.models import OrderResponse
from orderdesk.core.status import OrderStatus, is_transition_allowed
from orderdesk.data.database import AsyncSessionLocal, db_errors
from orderdesk.data.models import Order, utcnow
from orderdesk.data.repository import OrderRepository
from orderdesk.messaging.producer import default_publisher
from orderdesk.services.notifications import OrderEventPublisher, publish_safely
from orderdesk.services.orders import OrderQueryService, coerce_status

logger = logging.getLogger(__name__)

# status -> (timestamp column, actor column) stamped when the status is first reached
MILESTONES: Dict[OrderStatus, Tuple[str, str]] = {
    OrderStatus.CONFIRMED: ("confirmed_at", "confirmed_by"),
    OrderStatus.SHIPPED: ("shipped_at", "shipped_by"),
    OrderStatus.DELIVERED: ("delivered_at", "delivered_by"),
}

Guard = Callable[[Order], None]


def _guard_cancellable(order: Order) -> None:
    if order.status == OrderStatus.CANCELLED:
        raise BusinessLogicError("Order is already cancelled")
    if order.status == OrderStatus.DELIVERED:
        raise BusinessLogicError("Cannot cancel delivered order")


class OrderStatusMachine:
    """
    Moves orders through pending -> confirmed -> preparing -> ready_to_ship ->
    shipped -> delivered, with cancellation as a side exit.

    With the "strict" policy an order may only advance to the next status or
    be cancelled. "permissive" allows any non-terminal status to move to any
    other status. Delivered and cancelled orders never change again.

    The order update and its history row commit together. The customer
    notification is published after the commit and its failure is only logged.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        publisher: Optional[OrderEventPublisher] = None,
        policy: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.publisher = publisher if publisher is not None else default_publisher()
        self.policy = policy or settings.ORDER_TRANSITION_POLICY
        self.clock = clock
        self.queries = OrderQueryService(session_factory)

    async def apply_transition(
        self, order_id: int, new_status, actor_id: int, notes: Optional[str] = None
    ) -> OrderResponse:
        return await self._transition(order_id, coerce_status(new_status), actor_id, notes)

    async def cancel_order(
        self, order_id: int, actor_id: int, reason: Optional[str] = None
    ) -> OrderResponse:
        return await self._transition(
            order_id, OrderStatus.CANCELLED, actor_id, reason, guard=_guard_cancellable
        )

    async def get_status_history(self, order_id: int):
        return await self.queries.get_status_history(order_id)

    def check_transition(self, current: OrderStatus, target: OrderStatus) -> None:
        if current == target:
            raise BusinessLogicError(f"Order is already in {target.value} status")
        if current.is_terminal:
            raise BusinessLogicError(f"Cannot change status of a {current.value} order")
        if not is_transition_allowed(current, target, self.policy):
            raise BusinessLogicError(
                f"Cannot change order status from {current.value} to {target.value}"
            )

    async def _transition(
        self,
        order_id: int,
        target: OrderStatus,
        actor_id: int,
        notes: Optional[str],
        guard: Optional[Guard] = None,
    ) -> OrderResponse:
        async with self.session_factory() as session:
            with db_errors("updating order status"):
                async with session.begin():
                    repository = OrderRepository(session)
                    order = await repository.get_by_id(order_id, for_update=True)
                    if order is None:
                        raise NotFoundError("Order not found")
                    if guard is not None:
                        guard(order)

                    old_status = order.status
                    self.check_transition(old_status, target)

                    changes = self._milestone_changes(order, target, actor_id)
                    if notes:
                        changes["admin_notes"] = notes
                    await repository.record_transition(order, target, actor_id, notes, changes)

                    event = {
                        "order_id": order.id,
                        "order_number": order.order_number,
                        "customer_phone": order.customer_phone,
                        "old_status": old_status.value,
                        "new_status": target.value,
                        "changed_by": actor_id,
                        "notes": notes,
                    }

        logger.info(
            f"Order {event['order_number']} moved from {old_status.value} to {target.value} by {actor_id}"
        )
        await publish_safely(self.publisher, "publish_status_changed", event)
        return await self.queries.get_order(order_id)

    def _milestone_changes(self, order: Order, target: OrderStatus, actor_id: int) -> Dict[str, object]:
        milestone = MILESTONES.get(target)
        if milestone is None:
            return {}
        at_field, by_field = milestone
        # a milestone is recorded once; permissive back-and-forth moves keep the first stamp
        if getattr(order, at_field) is not None:
            return {}
        return {at_field: self.clock(), by_field: actor_id}
