import pytest
import pytest_asyncio
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from orderdesk.core.models import OrderHeader
from orderdesk.core.status import OrderStatus
from orderdesk.data.database import Base
from orderdesk.data.models import Order, OrderItem, Product, User
from orderdesk.services.order_factory import OrderFactory
from orderdesk.services.status_machine import OrderStatusMachine

CUSTOMER_ID = 1
ADMIN_ID = 7
OTHER_CUSTOMER_ID = 2
FIXED_NOW = datetime(2024, 1, 15, 9, 30)


def fixed_clock():
    return FIXED_NOW


class RecordingPublisher:
    def __init__(self):
        self.created = []
        self.changed = []

    async def publish_order_created(self, order_data: dict):
        self.created.append(order_data)

    async def publish_status_changed(self, change_data: dict):
        self.changed.append(change_data)


class FailingPublisher:
    async def publish_order_created(self, order_data: dict):
        raise ConnectionError("broker unavailable")

    async def publish_status_changed(self, change_data: dict):
        raise ConnectionError("broker unavailable")


class RecordingDispatcher:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def notify(self, phone: str, message: str) -> bool:
        if self.fail:
            raise RuntimeError("sms gateway down")
        self.sent.append((phone, message))
        return True


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


async def seed_catalog(factory):
    async with factory() as session:
        async with session.begin():
            session.add_all([
                User(id=CUSTOMER_ID, first_name="Ali", last_name="Hassan", phone_number="+9647701234567"),
                User(id=OTHER_CUSTOMER_ID, first_name="Noor", last_name="Kareem", phone_number="+9647709876543"),
                User(id=ADMIN_ID, first_name="Sara", last_name="Admin", phone_number="+9647700000007"),
                Product(id=1, name="Widget", code="W01", category_code="HW", full_code="HWW01",
                        price=Decimal("10.00"), stock_quantity=5, is_active=True,
                        image_url="/img/widget.png"),
                Product(id=2, name="Gadget", code="G01", category_code="HW", full_code="HWG01",
                        price=Decimal("5.00"), stock_quantity=10, is_active=True),
                Product(id=3, name="Retired Lamp", code="L01", category_code="LT", full_code="LTL01",
                        price=Decimal("12.50"), stock_quantity=20, is_active=False),
                Product(id=4, name="Rare Vase", code="V01", category_code="DC", full_code="DCV01",
                        price=Decimal("99.99"), stock_quantity=1, is_active=True),
            ])


@pytest_asyncio.fixture
async def session_factory(engine):
    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    await seed_catalog(factory)
    return factory


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def factory(session_factory, publisher):
    return OrderFactory(session_factory, publisher=publisher, sequence_backend="database", clock=fixed_clock)


@pytest.fixture
def machine(session_factory, publisher):
    return OrderStatusMachine(session_factory, publisher=publisher, policy="strict")


@pytest.fixture
def header():
    return OrderHeader(
        user_id=CUSTOMER_ID,
        customer_name="Ali Hassan",
        customer_phone="+9647701234567",
        delivery_address="12 Palestine Street, Baghdad",
        delivery_notes="Call before arriving",
    )


async def insert_order(
    session_factory,
    order_number: str,
    user_id: int = CUSTOMER_ID,
    status: OrderStatus = OrderStatus.PENDING,
    total_amount: Decimal = Decimal("10.00"),
    created_at: Optional[datetime] = None,
    items: Optional[list] = None,
    **fields,
) -> int:
    """Writes an order straight to the tables, bypassing OrderFactory."""
    async with session_factory() as session:
        async with session.begin():
            order = Order(
                order_number=order_number,
                user_id=user_id,
                customer_name=fields.pop("customer_name", "Ali Hassan"),
                customer_phone=fields.pop("customer_phone", "+9647701234567"),
                delivery_address=fields.pop("delivery_address", "12 Palestine Street, Baghdad"),
                total_amount=total_amount,
                status=status,
                created_at=created_at or FIXED_NOW,
                **fields,
            )
            for product_id, name, price, quantity in items or []:
                order.items.append(OrderItem(
                    product_id=product_id, product_name=name, product_code="X",
                    category_code="Y", full_code="YX", price=price, quantity=quantity,
                    subtotal=price * quantity,
                ))
            session.add(order)
            await session.flush()
            return order.id
