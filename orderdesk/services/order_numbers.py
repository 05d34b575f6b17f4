import logging
import random
from datetime import datetime
from typing import Callable, Optional, Protocol

from redis.exceptions import RedisError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.caching.redis_client import RedisClient, redis_client
from orderdesk.core.exceptions import DatabaseError
from orderdesk.data.database import db_errors
from orderdesk.data.models import OrderNumberSequence, utcnow
from orderdesk.data.repository import OrderRepository

logger = logging.getLogger(__name__)

ORDER_NUMBER_PREFIX = "ORD"
REDIS_SEQUENCE_TTL_SECONDS = 2 * 24 * 60 * 60


def format_order_number(day: str, sequence: int) -> str:
    return f"{ORDER_NUMBER_PREFIX}{day}{sequence:03d}"


class DailySequence(Protocol):
    async def next_value(self, day: str) -> int:
        ...


class DatabaseSequence:
    """
    Per-day counter row incremented with a single conditional UPDATE.

    Runs in the order-creation transaction, so the row stays locked until the
    order commits. The first order of a day inserts the row; two concurrent
    first orders collide on the primary key and the loser is retried by the
    caller.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repository = OrderRepository(session)

    async def next_value(self, day: str) -> int:
        stmt = (
            update(OrderNumberSequence)
            .where(OrderNumberSequence.day == day)
            .values(last_value=OrderNumberSequence.last_value + 1)
            .execution_options(synchronize_session=False)
        )
        with db_errors("generating order number"):
            result = await self.session.execute(stmt)
            if result.rowcount:
                value = await self.session.execute(
                    select(OrderNumberSequence.last_value).where(OrderNumberSequence.day == day)
                )
                return value.scalar_one()

        # numbers issued before the counter row existed still count
        seed = await self.repository.count_order_numbers_with_prefix(
            f"{ORDER_NUMBER_PREFIX}{day}"
        )
        with db_errors("generating order number"):
            self.session.add(OrderNumberSequence(day=day, last_value=seed + 1))
            await self.session.flush()
        return seed + 1


class RedisSequence:
    """
    Per-day counter kept in Redis with INCR.

    A counter that comes back as 1 may have been lost mid-day (flush or
    restart), so it is moved past the numbers the database already holds for
    that day.
    """

    def __init__(
        self,
        client: RedisClient = redis_client,
        ttl: int = REDIS_SEQUENCE_TTL_SECONDS,
        repository: Optional[OrderRepository] = None,
    ):
        self.client = client
        self.ttl = ttl
        self.repository = repository

    async def next_value(self, day: str) -> int:
        key = f"order_seq:{day}"
        try:
            value = await self.client.incr_with_expiry(key, self.ttl)
            if value == 1 and self.repository is not None:
                issued = await self.repository.count_order_numbers_with_prefix(
                    f"{ORDER_NUMBER_PREFIX}{day}"
                )
                if issued:
                    logger.warning(f"Order sequence {key} restarted, reseeding past {issued} issued numbers")
                    value = await self.client.incr_by(key, issued)
            return value
        except RedisError as exc:
            raise DatabaseError(f"Error generating order number: {exc}", exc) from exc


def build_sequence(session: AsyncSession, backend: str) -> DailySequence:
    if backend == "redis":
        return RedisSequence(repository=OrderRepository(session))
    return DatabaseSequence(session)


class OrderNumberGenerator:
    """Produces ORD + YYMMDD + 3-digit daily sequence, e.g. ORD240115003."""

    def __init__(
        self,
        repository: OrderRepository,
        sequence: DailySequence,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.sequence = sequence
        self.clock = clock

    async def generate(self) -> str:
        day = self.clock().strftime("%y%m%d")
        value = await self.sequence.next_value(day)
        candidate = format_order_number(day, value)

        if await self.repository.order_number_exists(candidate):
            suffixed = f"{candidate}{random.randint(0, 98)}"
            logger.warning(f"Order number {candidate} already taken, falling back to {suffixed}")
            return suffixed
        return candidate
