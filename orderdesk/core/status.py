from enum import Enum
from typing import Dict, FrozenSet


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY_TO_SHIP = "ready_to_ship"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


PROGRESSION = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY_TO_SHIP,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)

TERMINAL_STATUSES: FrozenSet[OrderStatus] = frozenset(
    {OrderStatus.DELIVERED, OrderStatus.CANCELLED}
)

# next step in the progression, or cancellation
STRICT_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    current: frozenset({nxt, OrderStatus.CANCELLED})
    for current, nxt in zip(PROGRESSION, PROGRESSION[1:])
}
STRICT_TRANSITIONS[OrderStatus.DELIVERED] = frozenset()
STRICT_TRANSITIONS[OrderStatus.CANCELLED] = frozenset()


def parse_status(value) -> OrderStatus:
    """Coerce a raw value into an OrderStatus, raising ValueError if unknown."""
    if isinstance(value, OrderStatus):
        return value
    return OrderStatus(str(value))


def is_transition_allowed(
    current: OrderStatus, target: OrderStatus, policy: str = "strict"
) -> bool:
    if current == target or current.is_terminal:
        return False
    if policy == "permissive":
        return True
    return target in STRICT_TRANSITIONS[current]
