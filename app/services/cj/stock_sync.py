"""
CJ Stock Sync Service

Writes CJ stock back onto local variant rows so product pages can show
availability without calling CJ. Each product costs at least one throttled
call, so a full sync takes at least ~1.5s per product.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import UpstreamError
from app.services.catalog import ProductRepository
from app.services.cj.stock import CJStockAggregator

logger = logging.getLogger(__name__)


@dataclass
class StockSyncResult:
    """Result of a stock sync run."""
    success: bool
    total_checked: int = 0
    updated_count: int = 0
    out_of_stock_count: int = 0
    error_count: int = 0
    errors: List[str] = field(default_factory=list)
    duration_ms: int = 0


class CJStockSyncService:
    def __init__(self, aggregator: CJStockAggregator, db: AsyncSession):
        self.aggregator = aggregator
        self.db = db
        self.repository = ProductRepository(db)

    async def sync_product_stock(self, product_id: str) -> StockSyncResult:
        """Sync one product. UpstreamError propagates to the caller."""
        result = StockSyncResult(success=True, total_checked=1)
        product = await self.repository.get_product(product_id)
        if product is None or not product.is_cj or not product.cj_product_id:
            result.success = False
            result.error_count = 1
            result.errors.append(f"Not a CJ product: {product_id}")
            return result

        variants = await self.aggregator.get_variants_with_stock(product.cj_product_id)
        stock = {v.variant_id: v.total_stock for v in variants}
        result.updated_count = await self.repository.update_variant_stock(product.id, stock)
        result.out_of_stock_count = sum(
            1 for variant in product.variants
            if variant.cj_variant_id in stock and stock[variant.cj_variant_id] == 0
        )
        return result

    async def sync_products(self, product_ids: Optional[Sequence[str]] = None) -> StockSyncResult:
        """
        Sync several products (all active CJ products when ids is None).

        A provider failure on one product is recorded and the run continues.
        """
        start = time.time()
        aggregate = StockSyncResult(success=True)

        if product_ids is None:
            products = await self.repository.list_cj_products()
            product_ids = [p.id for p in products]

        for product_id in product_ids:
            aggregate.total_checked += 1
            try:
                single = await self.sync_product_stock(product_id)
            except UpstreamError as e:
                logger.error(f"[CJ_STOCK] Sync failed for {product_id}: {e.message}")
                aggregate.error_count += 1
                aggregate.errors.append(f"{product_id}: {e.message}")
                continue

            aggregate.updated_count += single.updated_count
            aggregate.out_of_stock_count += single.out_of_stock_count
            aggregate.error_count += single.error_count
            aggregate.errors.extend(single.errors)

        aggregate.success = aggregate.error_count == 0
        aggregate.duration_ms = int((time.time() - start) * 1000)
        logger.info(
            f"[CJ_STOCK] Sync complete: {aggregate.total_checked} checked, "
            f"{aggregate.updated_count} updated, {aggregate.out_of_stock_count} OOS, "
            f"{aggregate.error_count} errors, {aggregate.duration_ms}ms"
        )
        return aggregate
