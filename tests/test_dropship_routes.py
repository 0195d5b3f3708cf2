from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.api.deps import get_cj_client, get_shipping_service
from app.core.exceptions import RateLimitError
from app.main import app
from app.models.product import CJ_SOURCE
from app.services.catalog import ProductRecord, VariantRecord
from app.services.cj.parsers import FreightShape, ParsedFreightOption
from app.services.cj.types import ShippingQuote
from app.services.shipping_cache import ShippingQuoteCache
from app.services.shipping_validation import ShippingValidationService

PRODUCTS = {
    "lamp": ProductRecord(
        id="lamp",
        name="Desk Lamp",
        price=Decimal("10.00"),
        source=CJ_SOURCE,
        cj_product_id="P1",
        origin_country_code="CN",
        variants=[VariantRecord(id="lamp-bk", cj_variant_id="V1")],
    ),
    "mug": ProductRecord(
        id="mug",
        name="Mug",
        price=Decimal("6.50"),
        source="local",
        origin_country_code="FR",
        variants=[VariantRecord(id="mug-1")],
    ),
}


@pytest.fixture
def shipping_service():
    client = MagicMock()
    client.calculate_freight = AsyncMock(return_value=[
        ParsedFreightOption(
            quote=ShippingQuote(carrier_name="CJPacket", transit_time="7-12", freight=Decimal("4.50")),
            shape=FreightShape.FLAT,
        )
    ])
    repository = MagicMock()
    repository.get_product = AsyncMock(side_effect=lambda pid: PRODUCTS.get(pid))
    return ShippingValidationService(client, repository, cache=ShippingQuoteCache(ttl_seconds=60, max_size=10))


@pytest_asyncio.fixture
async def api(shipping_service):
    app.dependency_overrides[get_shipping_service] = lambda: shipping_service
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_shipping_check_with_quotes(api):
    resp = await api.get("/api/dropship/shipping/lamp", params={"destination": "fr"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["shippable"] is True
    assert body["destination"] == "FR"
    assert body["origin_country_code"] == "CN"
    assert body["quotes"][0]["carrier_name"] == "CJPacket"
    assert Decimal(body["quotes"][0]["freight"]) == Decimal("4.50")


@pytest.mark.asyncio
async def test_shipping_check_unknown_product(api):
    resp = await api.get("/api/dropship/shipping/ghost", params={"destination": "FR"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["shippable"] is False
    assert body["error_code"] == "PRODUCT_NOT_FOUND"


@pytest.mark.asyncio
async def test_shipping_check_rejects_bad_destination(api):
    resp = await api.get("/api/dropship/shipping/lamp", params={"destination": "FRA"})

    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_cart_grouping(api):
    resp = await api.post("/api/dropship/cart/group", json={
        "destination": "de",
        "items": [
            {"product_id": "lamp", "quantity": 2},
            {"product_id": "mug", "quantity": 1},
        ],
    })

    assert resp.status_code == 200
    body = resp.json()
    assert body["destination"] == "DE"
    assert [g["origin_country"] for g in body["groups"]] == ["CN", "FR"]
    cn, fr = body["groups"]
    assert Decimal(cn["subtotal"]) == Decimal("20.00")
    assert Decimal(cn["shipping_cost"]) == Decimal("4.50")
    assert cn["selected_shipping_option"]["carrier_name"] == "CJPacket"
    assert Decimal(fr["shipping_cost"]) == Decimal("0")
    assert Decimal(body["total"]) == Decimal("31.00")


@pytest.mark.asyncio
async def test_upstream_errors_map_to_status(api, shipping_service):
    shipping_service.repository.get_product = AsyncMock(side_effect=RateLimitError("Too Many Requests", code=1600200))

    resp = await api.post("/api/dropship/cart/group", json={
        "destination": "DE",
        "items": [{"product_id": "lamp", "quantity": 1}],
    })

    assert resp.status_code == 429
    assert resp.json()["code"] == "1600200"


@pytest.mark.asyncio
async def test_status_reports_connection(api):
    cj_client = MagicMock()
    cj_client.token_manager.connection_info.return_value = {"connected": True, "tier": "plus"}
    app.dependency_overrides[get_cj_client] = lambda: cj_client

    resp = await api.get("/api/dropship/status")

    assert resp.status_code == 200
    body = resp.json()
    assert body["connection"]["connected"] is True
    assert "min_interval_seconds" in body["throttle"]
    assert "hits" in body["shipping_cache"]


@pytest.mark.asyncio
async def test_status_without_client_is_unavailable(api):
    resp = await api.get("/api/dropship/status")

    assert resp.status_code == 503
