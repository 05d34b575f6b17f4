import re
import pytest
from unittest.mock import AsyncMock

from redis.exceptions import ConnectionError as RedisConnectionError

from orderdesk.core.exceptions import DatabaseError
from orderdesk.data.repository import OrderRepository
from orderdesk.services.order_numbers import (
    DatabaseSequence, OrderNumberGenerator, RedisSequence, build_sequence, format_order_number,
)

from conftest import fixed_clock, insert_order


class FixedSequence:
    def __init__(self, value):
        self.value = value

    async def next_value(self, day):
        return self.value


def test_format_pads_sequence_to_three_digits():
    assert format_order_number("240115", 3) == "ORD240115003"
    assert format_order_number("240115", 42) == "ORD240115042"
    assert format_order_number("240115", 1234) == "ORD2401151234"


@pytest.mark.asyncio
async def test_database_sequence_counts_per_day(session_factory):
    async with session_factory() as session:
        async with session.begin():
            sequence = DatabaseSequence(session)
            assert [await sequence.next_value("240115") for _ in range(3)] == [1, 2, 3]
            assert await sequence.next_value("240116") == 1
            assert await sequence.next_value("240115") == 4


@pytest.mark.asyncio
async def test_database_sequence_starts_after_existing_numbers(session_factory):
    await insert_order(session_factory, "ORD240115001")
    await insert_order(session_factory, "ORD240115002")
    await insert_order(session_factory, "ORD240114009")

    async with session_factory() as session:
        async with session.begin():
            assert await DatabaseSequence(session).next_value("240115") == 3


@pytest.mark.asyncio
async def test_generator_formats_date_and_sequence(session_factory):
    async with session_factory() as session:
        generator = OrderNumberGenerator(OrderRepository(session), FixedSequence(7), fixed_clock)
        assert await generator.generate() == "ORD240115007"


@pytest.mark.asyncio
async def test_generator_appends_suffix_on_collision(session_factory):
    await insert_order(session_factory, "ORD240115001")

    async with session_factory() as session:
        generator = OrderNumberGenerator(OrderRepository(session), FixedSequence(1), fixed_clock)
        number = await generator.generate()

    match = re.fullmatch(r"ORD240115001(\d{1,2})", number)
    assert match is not None
    assert 0 <= int(match.group(1)) <= 98


@pytest.mark.asyncio
async def test_redis_sequence_uses_daily_key():
    client = AsyncMock()
    client.incr_with_expiry.return_value = 12

    assert await RedisSequence(client, ttl=60).next_value("240115") == 12
    client.incr_with_expiry.assert_awaited_once_with("order_seq:240115", 60)


@pytest.mark.asyncio
async def test_redis_sequence_reseeds_lost_counter_from_database(session_factory):
    await insert_order(session_factory, "ORD240115001")
    await insert_order(session_factory, "ORD240115002")
    await insert_order(session_factory, "ORD240115003")
    client = AsyncMock()
    client.incr_with_expiry.return_value = 1
    client.incr_by.return_value = 4

    async with session_factory() as session:
        sequence = RedisSequence(client, ttl=60, repository=OrderRepository(session))
        assert await sequence.next_value("240115") == 4

    client.incr_by.assert_awaited_once_with("order_seq:240115", 3)


@pytest.mark.asyncio
async def test_redis_sequence_first_order_of_day_is_not_reseeded(session_factory):
    client = AsyncMock()
    client.incr_with_expiry.return_value = 1

    async with session_factory() as session:
        sequence = RedisSequence(client, ttl=60, repository=OrderRepository(session))
        assert await sequence.next_value("240115") == 1

    client.incr_by.assert_not_awaited()


@pytest.mark.asyncio
async def test_redis_failure_is_wrapped():
    client = AsyncMock()
    client.incr_with_expiry.side_effect = RedisConnectionError("refused")

    with pytest.raises(DatabaseError) as exc_info:
        await RedisSequence(client).next_value("240115")
    assert isinstance(exc_info.value.cause, RedisConnectionError)


def test_build_sequence_picks_backend():
    assert isinstance(build_sequence(None, "redis"), RedisSequence)
    assert isinstance(build_sequence(object(), "database"), DatabaseSequence)
