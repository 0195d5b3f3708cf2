"""
CJ Stock Aggregator

Builds per-variant stock for a CJ product.

Strategy:
1. Bulk inventory by product (one call for every variant).
2. Bulk returned stock: join with product details by variant id. Stock
   entries the details do not list are kept with synthesized metadata.
   If details cannot be fetched, every entry is synthesized.
3. Bulk empty or failed: list variants, then join a second bulk call by
   variant id. Variants without stock get 0.

VariantStock is recomputed on every call; nothing is merged across calls.
"""
import logging
from typing import Dict, List

from app.core.exceptions import UpstreamError
from app.services.cj.client import CJAPIClient
from app.services.cj.parsers import synthesize_metadata
from app.services.cj.types import VariantMetadata, VariantStock, VariantWithStock

logger = logging.getLogger(__name__)


class CJStockAggregator:
    def __init__(self, client: CJAPIClient):
        self.client = client

    async def get_variants_with_stock(self, product_id: str) -> List[VariantWithStock]:
        try:
            bulk = await self.client.get_inventory_bulk(product_id)
        except UpstreamError as e:
            logger.warning(f"[CJ_STOCK] Bulk inventory failed for {product_id}: {e.message}, using fallback")
            bulk = {}

        if not bulk:
            return await self._fallback(product_id)

        metadata = await self._detail_metadata(product_id)
        variants: List[VariantWithStock] = []

        for vid, meta in metadata.items():
            variants.append(VariantWithStock(
                metadata=meta,
                stock=bulk.get(vid, VariantStock(variant_id=vid)),
            ))

        for vid, stock in bulk.items():
            if vid in metadata:
                continue
            variants.append(VariantWithStock(
                metadata=synthesize_metadata(vid, product_id),
                stock=stock,
                synthesized=True,
            ))

        synthesized = sum(1 for v in variants if v.synthesized)
        total = sum(v.total_stock for v in variants)
        logger.info(
            f"[CJ_STOCK] {product_id}: {len(variants)} variant(s), {total} unit(s)"
            + (f", {synthesized} synthesized" if synthesized else "")
        )
        return variants

    async def _detail_metadata(self, product_id: str) -> Dict[str, VariantMetadata]:
        try:
            details = await self.client.get_product_details(product_id)
        except UpstreamError as e:
            logger.warning(f"[CJ_STOCK] Product details failed for {product_id}: {e.message}")
            return {}
        if not details:
            return {}
        return {meta.variant_id: meta for meta in details["variants"]}

    async def _fallback(self, product_id: str) -> List[VariantWithStock]:
        listed = await self.client.get_product_variants(product_id)
        if not listed:
            logger.warning(f"[CJ_STOCK] No variants found for {product_id}")
            return []

        try:
            bulk = await self.client.get_inventory_bulk(product_id)
        except UpstreamError as e:
            logger.warning(f"[CJ_STOCK] Fallback bulk inventory failed for {product_id}: {e.message}")
            bulk = {}

        return [
            VariantWithStock(
                metadata=meta,
                stock=bulk.get(meta.variant_id, VariantStock(variant_id=meta.variant_id)),
            )
            for meta in listed
        ]

    async def get_variant_stock(self, variant_id: str) -> VariantStock:
        return await self.client.get_inventory_by_variant(variant_id)

    async def get_stock_by_sku(self, sku: str) -> VariantStock:
        return await self.client.get_inventory_by_sku(sku)
