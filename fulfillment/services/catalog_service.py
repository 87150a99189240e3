"""
Catalog Service - authoritative prices for cart lines.
"""

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Sequence, Tuple, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.errors import ValidationError
from fulfillment.models.product import Product

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CartLine:
    """A priced cart line. unit_price always comes from the catalog."""

    product_id: uuid.UUID
    quantity: int
    unit_price: Decimal


class CatalogService:
    """Read-only access to products for checkout."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_product(self, product_id: uuid.UUID) -> Product:
        result = await self.db.execute(select(Product).where(Product.id == product_id))
        product = result.scalar_one_or_none()
        if not product:
            raise ValidationError(f"Unknown product {product_id}")
        return product

    async def price_cart(
        self,
        lines: Sequence[Tuple[Union[str, uuid.UUID], int]],
    ) -> List[CartLine]:
        """
        Resolve (product_id, quantity) pairs to priced cart lines.

        Client-supplied prices are never accepted here.
        """
        if not lines:
            raise ValidationError("Cart is empty")

        product_ids = []
        for raw_id, _quantity in lines:
            try:
                product_ids.append(raw_id if isinstance(raw_id, uuid.UUID) else uuid.UUID(str(raw_id)))
            except ValueError:
                raise ValidationError(f"Invalid product id: {raw_id}")

        result = await self.db.execute(select(Product).where(Product.id.in_(set(product_ids))))
        products: Dict[uuid.UUID, Product] = {p.id: p for p in result.scalars().all()}

        priced = []
        for product_id, (_raw_id, quantity) in zip(product_ids, lines):
            product = products.get(product_id)
            if not product:
                logger.warning(f"Checkout referenced unknown product {product_id}")
                raise ValidationError(f"Unknown product {product_id}")
            priced.append(
                CartLine(
                    product_id=product_id,
                    quantity=quantity,
                    unit_price=Decimal(product.price),
                )
            )

        return priced
