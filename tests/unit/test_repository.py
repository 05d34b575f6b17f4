import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from orderdesk.core.exceptions import NotFoundError, ValidationError
from orderdesk.core.models import OrderFilters
from orderdesk.core.status import OrderStatus
from orderdesk.data.repository import OrderRepository
from orderdesk.services.orders import OrderQueryService

from conftest import CUSTOMER_ID, FIXED_NOW, OTHER_CUSTOMER_ID, insert_order


@pytest.fixture
def queries(session_factory):
    return OrderQueryService(session_factory)


async def seed_orders(session_factory):
    await insert_order(session_factory, "ORD240113001", created_at=FIXED_NOW - timedelta(days=2),
                       items=[(1, "Widget", Decimal("10.00"), 1)])
    await insert_order(session_factory, "ORD240114001", created_at=FIXED_NOW - timedelta(days=1),
                       status=OrderStatus.CONFIRMED,
                       items=[(1, "Widget", Decimal("10.00"), 1), (2, "Gadget", Decimal("5.00"), 2)])
    await insert_order(session_factory, "ORD240115001", created_at=FIXED_NOW,
                       user_id=OTHER_CUSTOMER_ID, customer_name="Noor Kareem",
                       customer_phone="+9647709876543")


@pytest.mark.asyncio
async def test_lookup_by_number_includes_items_and_current_product(session_factory, queries):
    await seed_orders(session_factory)

    order = await queries.get_order_by_number("ORD240114001")

    assert order.status == OrderStatus.CONFIRMED
    assert [item.product_name for item in order.items] == ["Widget", "Gadget"]
    assert order.items[1].current_product_name == "Gadget"
    assert order.items[0].image_url == "/img/widget.png"

    with pytest.raises(NotFoundError):
        await queries.get_order_by_number("ORD000000000")


@pytest.mark.asyncio
async def test_listing_is_newest_first_and_paginated(session_factory, queries):
    await seed_orders(session_factory)

    first = await queries.list_orders(page=1, limit=2)
    second = await queries.list_orders(page=2, limit=2)

    assert [o.order_number for o in first.orders] == ["ORD240115001", "ORD240114001"]
    assert [o.order_number for o in second.orders] == ["ORD240113001"]
    assert first.pagination.total == 3
    assert first.pagination.total_pages == 2
    assert first.orders[1].items_count == 2
    assert first.orders[0].items_count == 0


@pytest.mark.asyncio
async def test_listing_filters(session_factory, queries):
    await seed_orders(session_factory)

    by_status = await queries.list_orders(OrderFilters(status=OrderStatus.CONFIRMED))
    assert [o.order_number for o in by_status.orders] == ["ORD240114001"]

    by_user = await queries.list_user_orders(OTHER_CUSTOMER_ID)
    assert [o.order_number for o in by_user.orders] == ["ORD240115001"]

    by_search = await queries.list_orders(OrderFilters(search="Noor"))
    assert by_search.pagination.total == 1

    by_range = await queries.list_orders(OrderFilters(
        start_date=FIXED_NOW - timedelta(days=1, hours=1),
        end_date=FIXED_NOW - timedelta(hours=1),
    ))
    assert [o.order_number for o in by_range.orders] == ["ORD240114001"]

    pending = await queries.list_by_status("pending")
    assert pending.pagination.total == 2


@pytest.mark.asyncio
async def test_listing_rejects_unknown_status(queries):
    with pytest.raises(ValidationError):
        await queries.list_by_status("teleported")


@pytest.mark.asyncio
async def test_count_matches_filters(session_factory):
    await seed_orders(session_factory)

    async with session_factory() as session:
        repository = OrderRepository(session)
        assert await repository.count_orders() == 3
        assert await repository.count_orders(OrderFilters(user_id=CUSTOMER_ID)) == 2
        assert await repository.count_orders(OrderFilters(search="ORD24011")) == 3


@pytest.mark.asyncio
async def test_customers_only_see_their_own_orders(session_factory, queries):
    await seed_orders(session_factory)
    other = await queries.get_order_by_number("ORD240115001")

    assert (await queries.get_user_order(other.id, OTHER_CUSTOMER_ID)).id == other.id
    with pytest.raises(NotFoundError):
        await queries.get_user_order(other.id, CUSTOMER_ID)


@pytest.mark.asyncio
async def test_customers_track_only_their_own_orders_by_number(session_factory, queries):
    await seed_orders(session_factory)

    own = await queries.get_user_order_by_number("ORD240114001", CUSTOMER_ID)
    assert own.order_number == "ORD240114001"
    assert len(own.items) == 2

    with pytest.raises(NotFoundError, match="Order not found"):
        await queries.get_user_order_by_number("ORD240115001", CUSTOMER_ID)
    with pytest.raises(NotFoundError, match="Order not found"):
        await queries.get_user_order_by_number("ORD000000000", CUSTOMER_ID)


@pytest.mark.asyncio
async def test_history_is_newest_first_with_actor_names(session_factory, machine, queries):
    order_id = await insert_order(session_factory, "ORD240115001")
    await machine.apply_transition(order_id, "confirmed", 7)
    await machine.apply_transition(order_id, "preparing", 7, notes="Packing today")

    history = await queries.get_status_history(order_id)

    assert [row.new_status for row in history] == [OrderStatus.PREPARING, OrderStatus.CONFIRMED]
    assert history[0].notes == "Packing today"
    assert history[0].changed_by_name == "Sara Admin"
    assert isinstance(history[0].created_at, datetime)
