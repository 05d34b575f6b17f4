import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional, Sequence, Tuple, Union

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orderdesk.core.config import settings
from orderdesk.core.exceptions import BusinessLogicError, DatabaseError, NotFoundError, ValidationError
from orderdesk.core.models import OrderHeader, OrderItemCreate, OrderResponse
from orderdesk.core.status import OrderStatus
from orderdesk.data.catalog import ProductCatalog, SqlProductCatalog
from orderdesk.data.database import AsyncSessionLocal, db_errors, is_unique_violation
from orderdesk.data.models import Order, OrderItem, utcnow
from orderdesk.data.repository import OrderRepository
from orderdesk.messaging.producer import default_publisher
from orderdesk.services.notifications import OrderEventPublisher, publish_safely
from orderdesk.services.order_numbers import OrderNumberGenerator, build_sequence
from orderdesk.services.orders import OrderQueryService

logger = logging.getLogger(__name__)

ItemInput = Union[OrderItemCreate, dict]


class OrderFactory:
    """
    Creates orders from a customer header and a list of {product_id, quantity}.

    Product lookups, the optional stock reservation, order number assignment
    and the order + items inserts all run in one transaction. A unique
    violation (normally two orders racing for the same number) rolls the
    whole attempt back and retries it. Any other storage failure is raised
    as is.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        publisher: Optional[OrderEventPublisher] = None,
        catalog_factory: Callable[[AsyncSession], ProductCatalog] = SqlProductCatalog,
        sequence_backend: Optional[str] = None,
        reserve_stock: Optional[bool] = None,
        max_attempts: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.publisher = publisher if publisher is not None else default_publisher()
        self.catalog_factory = catalog_factory
        self.sequence_backend = sequence_backend or settings.ORDER_SEQUENCE_BACKEND
        self.reserve_stock = settings.RESERVE_STOCK_ON_ORDER if reserve_stock is None else reserve_stock
        self.max_attempts = max(1, max_attempts or settings.ORDER_NUMBER_MAX_ATTEMPTS)
        self.clock = clock
        self.queries = OrderQueryService(session_factory)

    async def create_order(self, header: OrderHeader, items: Sequence[ItemInput]) -> OrderResponse:
        lines = self.validate_items(items)
        if not header.delivery_address or not header.delivery_address.strip():
            raise ValidationError("Delivery address is required")

        for attempt in range(1, self.max_attempts + 1):
            try:
                order_id = await self._create_once(header, lines)
                break
            except DatabaseError as exc:
                if is_unique_violation(exc.cause) and attempt < self.max_attempts:
                    logger.warning(f"Order creation conflict on attempt {attempt}, retrying: {exc.cause}")
                    continue
                raise

        order = await self.queries.get_order(order_id)
        logger.info(f"Created order {order.order_number} for user {order.user_id} (total {order.total_amount})")

        await publish_safely(self.publisher, "publish_order_created", {
            "order_id": order.id,
            "order_number": order.order_number,
            "user_id": order.user_id,
            "customer_phone": order.customer_phone,
            "total_amount": str(order.total_amount),
            "items": [
                {"product_id": i.product_id, "quantity": i.quantity, "price": str(i.price)}
                for i in order.items
            ],
        })
        return order

    def validate_items(self, items: Sequence[ItemInput]) -> List[OrderItemCreate]:
        if not items or isinstance(items, (str, bytes, dict)):
            raise ValidationError("Order must contain at least one item")
        if len(items) > settings.MAX_ITEMS_PER_ORDER:
            raise ValidationError(
                f"Order cannot contain more than {settings.MAX_ITEMS_PER_ORDER} items"
            )

        lines = []
        for item in items:
            try:
                line = OrderItemCreate.model_validate(item)
            except SchemaValidationError:
                raise ValidationError("Invalid product or quantity") from None
            if line.product_id <= 0 or line.quantity <= 0:
                raise ValidationError("Invalid product or quantity")
            if line.quantity > settings.MAX_QUANTITY_PER_ITEM:
                raise ValidationError(
                    f"Quantity cannot exceed {settings.MAX_QUANTITY_PER_ITEM}"
                )
            lines.append(line)
        return lines

    async def _create_once(self, header: OrderHeader, lines: List[OrderItemCreate]) -> int:
        async with self.session_factory() as session:
            with db_errors("creating order"):
                async with session.begin():
                    repository = OrderRepository(session)
                    catalog = self.catalog_factory(session)

                    order_items, total_amount = await self._build_items(catalog, lines)

                    generator = OrderNumberGenerator(
                        repository, build_sequence(session, self.sequence_backend), self.clock
                    )
                    order_number = await generator.generate()

                    order = Order(
                        order_number=order_number,
                        user_id=header.user_id,
                        customer_name=header.customer_name,
                        customer_phone=header.customer_phone,
                        delivery_address=header.delivery_address,
                        delivery_notes=header.delivery_notes or None,
                        total_amount=total_amount,
                        status=OrderStatus.PENDING,
                    )
                    await repository.add_order(order, order_items)
                    return order.id

    async def _build_items(
        self, catalog: ProductCatalog, lines: List[OrderItemCreate]
    ) -> Tuple[List[OrderItem], Decimal]:
        order_items = []
        total_amount = Decimal("0")

        for line in lines:
            product = await catalog.get_by_id(line.product_id)
            if product is None:
                raise NotFoundError(f"Product with ID {line.product_id} not found")
            if not product.is_active:
                raise BusinessLogicError(f'Product "{product.name}" is not available')
            if product.stock_quantity < line.quantity:
                raise self._insufficient_stock(product.name, product.stock_quantity, line.quantity)
            if self.reserve_stock and not await catalog.reserve_stock(product.id, line.quantity):
                raise self._insufficient_stock(product.name, product.stock_quantity, line.quantity)

            price = Decimal(product.price)
            subtotal = price * line.quantity
            total_amount += subtotal

            # snapshot of the product as it is right now
            order_items.append(OrderItem(
                product_id=product.id,
                product_name=product.name,
                product_code=product.code,
                category_code=product.category_code,
                full_code=product.full_code,
                price=price,
                quantity=line.quantity,
                subtotal=subtotal,
            ))

        return order_items, total_amount

    @staticmethod
    def _insufficient_stock(name: str, available: int, requested: int) -> BusinessLogicError:
        return BusinessLogicError(
            f'Insufficient stock for "{name}". Available: {available}, Requested: {requested}'
        )
