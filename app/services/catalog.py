"""
Catalog repository

Read/write access to products and variants for the dropship services.
Returns plain records so callers never hold ORM objects outside a session.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.utils import utcnow
from app.models.product import CJ_SOURCE, Product, ProductVariant

logger = logging.getLogger(__name__)


@dataclass
class VariantRecord:
    id: str
    name: Optional[str] = None
    sku: Optional[str] = None
    cj_variant_id: Optional[str] = None
    stock: int = 0


@dataclass
class ProductRecord:
    id: str
    name: str
    price: Decimal = Decimal("0")
    source: Optional[str] = None
    cj_product_id: Optional[str] = None
    origin_country_code: Optional[str] = None
    variants: List[VariantRecord] = field(default_factory=list)

    @property
    def is_cj(self) -> bool:
        return self.source == CJ_SOURCE

    def find_variant(self, variant_id: Optional[str]) -> Optional[VariantRecord]:
        """Requested variant by local or CJ id, else the first variant."""
        if variant_id is None:
            return self.variants[0] if self.variants else None
        for variant in self.variants:
            if variant_id in (variant.id, variant.cj_variant_id):
                return variant
        return None


def _to_record(product: Product) -> ProductRecord:
    return ProductRecord(
        id=product.id,
        name=product.name,
        price=Decimal(product.price or 0),
        source=product.source,
        cj_product_id=product.cj_product_id,
        origin_country_code=product.origin_country_code,
        variants=[
            VariantRecord(
                id=v.id,
                name=v.name,
                sku=v.sku,
                cj_variant_id=v.cj_variant_id,
                stock=v.stock or 0,
            )
            for v in product.variants
            if v.is_active
        ],
    )


class ProductRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_product(self, product_id: str) -> Optional[ProductRecord]:
        result = await self.db.execute(
            select(Product)
            .options(selectinload(Product.variants))
            .where(Product.id == product_id, Product.is_active == True)  # noqa: E712
        )
        product = result.scalar_one_or_none()
        return _to_record(product) if product else None

    async def list_cj_products(self, product_ids: Optional[Sequence[str]] = None) -> List[ProductRecord]:
        query = (
            select(Product)
            .options(selectinload(Product.variants))
            .where(Product.source == CJ_SOURCE, Product.is_active == True)  # noqa: E712
        )
        if product_ids:
            query = query.where(Product.id.in_(list(product_ids)))
        result = await self.db.execute(query)
        return [_to_record(p) for p in result.scalars().all()]

    async def update_variant_stock(
        self,
        product_id: str,
        stock_by_cj_variant: Dict[str, int],
        synced_at: Optional[datetime] = None,
    ) -> int:
        """Write stock onto variants matched by CJ variant id. Returns rows updated."""
        synced_at = synced_at or utcnow()
        result = await self.db.execute(
            select(ProductVariant).where(ProductVariant.product_id == product_id)
        )
        updated = 0
        for variant in result.scalars().all():
            if variant.cj_variant_id in stock_by_cj_variant:
                variant.stock = stock_by_cj_variant[variant.cj_variant_id]
                variant.stock_synced_at = synced_at
                updated += 1
        await self.db.flush()
        return updated
