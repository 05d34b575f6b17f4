import logging
from typing import Optional, Protocol

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.models import ProductInfo
from orderdesk.data.models import Product

logger = logging.getLogger(__name__)


class ProductCatalog(Protocol):
    async def get_by_id(self, product_id: int) -> Optional[ProductInfo]:
        ...


class SqlProductCatalog:
    """Reads products from the shared catalog tables within the caller's session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, product_id: int) -> Optional[ProductInfo]:
        product = await self.session.get(Product, product_id)
        if product is None:
            return None
        return ProductInfo.model_validate(product)

    async def reserve_stock(self, product_id: int, quantity: int) -> bool:
        """Decrement stock only if enough is left. Returns False when it was not."""
        stmt = (
            update(Product)
            .where(Product.id == product_id, Product.stock_quantity >= quantity)
            .values(stock_quantity=Product.stock_quantity - quantity)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        reserved = result.rowcount == 1
        if not reserved:
            logger.warning(f"Stock reservation failed for product {product_id} (requested {quantity})")
        return reserved
