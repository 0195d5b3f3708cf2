"""
Tests for CJStockAggregator join and fallback strategy.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.exceptions import UpstreamError
from app.services.cj.stock import CJStockAggregator
from app.services.cj.types import VariantMetadata, VariantStock, WarehouseStock


def stock(vid: str, *quantities: int) -> VariantStock:
    return VariantStock(
        variant_id=vid,
        per_warehouse=tuple(WarehouseStock(country_code="CN", total_qty=q) for q in quantities),
    )


def meta(vid: str, name: str) -> VariantMetadata:
    return VariantMetadata(variant_id=vid, product_id="P1", name=name, sku=f"SKU-{vid}")


@pytest.fixture
def client():
    client = MagicMock()
    client.get_inventory_bulk = AsyncMock()
    client.get_product_details = AsyncMock()
    client.get_product_variants = AsyncMock()
    client.get_inventory_by_variant = AsyncMock()
    client.get_inventory_by_sku = AsyncMock()
    return client


class TestBulkPath:

    @pytest.mark.asyncio
    async def test_joins_bulk_stock_with_details(self, client):
        client.get_inventory_bulk.return_value = {"V1": stock("V1", 10, 5), "V2": stock("V2", 0)}
        client.get_product_details.return_value = {"variants": [meta("V1", "Red"), meta("V2", "Blue")]}

        variants = await CJStockAggregator(client).get_variants_with_stock("P1")

        assert [(v.variant_id, v.metadata.name, v.total_stock, v.synthesized) for v in variants] == [
            ("V1", "Red", 15, False),
            ("V2", "Blue", 0, False),
        ]
        client.get_product_variants.assert_not_called()

    @pytest.mark.asyncio
    async def test_stock_without_metadata_is_synthesized(self, client):
        client.get_inventory_bulk.return_value = {"V1": stock("V1", 3), "V9": stock("V9", 7)}
        client.get_product_details.return_value = {"variants": [meta("V1", "Red")]}

        variants = await CJStockAggregator(client).get_variants_with_stock("P1")

        assert len(variants) == 2
        extra = variants[1]
        assert extra.variant_id == "V9"
        assert extra.synthesized is True
        assert extra.metadata.name == "V9"
        assert extra.metadata.sku == "V9"
        assert extra.total_stock == 7

    @pytest.mark.asyncio
    async def test_detail_failure_synthesizes_everything(self, client):
        client.get_inventory_bulk.return_value = {"V1": stock("V1", 3), "V2": stock("V2", 4)}
        client.get_product_details.side_effect = UpstreamError("boom", code=500)

        variants = await CJStockAggregator(client).get_variants_with_stock("P1")

        assert [v.variant_id for v in variants] == ["V1", "V2"]
        assert all(v.synthesized for v in variants)
        assert sum(v.total_stock for v in variants) == 7

    @pytest.mark.asyncio
    async def test_detail_variant_missing_from_bulk_has_zero_stock(self, client):
        client.get_inventory_bulk.return_value = {"V1": stock("V1", 3)}
        client.get_product_details.return_value = {"variants": [meta("V1", "Red"), meta("V2", "Blue")]}

        variants = await CJStockAggregator(client).get_variants_with_stock("P1")

        assert variants[1].variant_id == "V2"
        assert variants[1].total_stock == 0


class TestFallbackPath:

    @pytest.mark.asyncio
    async def test_empty_bulk_uses_variant_listing(self, client):
        client.get_inventory_bulk.side_effect = [{}, {"V2": stock("V2", 8)}]
        client.get_product_variants.return_value = [meta("V1", "Red"), meta("V2", "Blue")]

        variants = await CJStockAggregator(client).get_variants_with_stock("P1")

        assert [(v.variant_id, v.total_stock) for v in variants] == [("V1", 0), ("V2", 8)]
        assert client.get_inventory_bulk.await_count == 2
        client.get_product_details.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_bulk_uses_variant_listing(self, client):
        client.get_inventory_bulk.side_effect = [UpstreamError("down", code=500), UpstreamError("down", code=500)]
        client.get_product_variants.return_value = [meta("V1", "Red")]

        variants = await CJStockAggregator(client).get_variants_with_stock("P1")

        assert len(variants) == 1
        assert variants[0].total_stock == 0
        assert variants[0].synthesized is False

    @pytest.mark.asyncio
    async def test_no_variants_anywhere(self, client):
        client.get_inventory_bulk.return_value = {}
        client.get_product_variants.return_value = []

        assert await CJStockAggregator(client).get_variants_with_stock("P1") == []


class TestIdempotence:

    @pytest.mark.asyncio
    async def test_repeated_calls_do_not_accumulate(self, client):
        client.get_inventory_bulk.return_value = {"V1": stock("V1", 10)}
        client.get_product_details.return_value = {"variants": [meta("V1", "Red")]}
        aggregator = CJStockAggregator(client)

        first = await aggregator.get_variants_with_stock("P1")
        second = await aggregator.get_variants_with_stock("P1")

        assert first == second
        assert second[0].total_stock == 10


class TestSingleVariantLookups:

    @pytest.mark.asyncio
    async def test_variant_and_sku_lookups_delegate(self, client):
        client.get_inventory_by_variant.return_value = stock("V1", 4)
        client.get_inventory_by_sku.return_value = stock("SKU-1", 6)
        aggregator = CJStockAggregator(client)

        assert (await aggregator.get_variant_stock("V1")).total_stock == 4
        assert (await aggregator.get_stock_by_sku("SKU-1")).total_stock == 6
