"""
Dropship routes

Shipping availability per product and checkout cart grouping by origin.
"""
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_cj_client, get_shipping_service
from app.schemas.dropship import (
    CartGroupRequest,
    CartGroupResponse,
    CartOriginGroupResponse,
    ShippingCheckResponse,
    ShippingQuoteResponse,
)
from app.services.cart_grouping import CartGroupingService, load_cart_items
from app.services.cj.client import CJAPIClient
from app.services.cj.throttle import get_global_throttle
from app.services.shipping_cache import shipping_quote_cache
from app.services.shipping_validation import ShippingValidationService

router = APIRouter()


@router.get("/shipping/{product_id}", response_model=ShippingCheckResponse)
async def check_product_shipping(
    product_id: str,
    destination: str = Query(..., min_length=2, max_length=2),
    variant_id: Optional[str] = Query(None),
    shipping: ShippingValidationService = Depends(get_shipping_service),
):
    """Whether a product ships to a country, with carrier quotes."""
    destination = destination.upper()
    outcome = await shipping.check_shipping(product_id, destination, variant_id)

    if outcome.shippable:
        return ShippingCheckResponse(
            product_id=product_id,
            destination=destination,
            shippable=True,
            origin_country_code=outcome.origin,
            quotes=[ShippingQuoteResponse.model_validate(q) for q in outcome.quotes],
        )
    return ShippingCheckResponse(
        product_id=product_id,
        destination=destination,
        shippable=False,
        origin_country_code=outcome.origin,
        reason=outcome.reason,
        error_code=outcome.error_code,
    )


@router.post("/cart/group", response_model=CartGroupResponse)
async def group_cart(
    request: CartGroupRequest,
    shipping: ShippingValidationService = Depends(get_shipping_service),
):
    """Group cart lines by origin country with per-group freight."""
    items = await load_cart_items(
        shipping.repository, [line.model_dump() for line in request.items]
    )
    groups = await CartGroupingService(shipping).group_by_origin(items, request.destination)

    subtotal = sum((g.subtotal for g in groups), Decimal("0"))
    shipping_cost = sum((g.shipping_cost for g in groups), Decimal("0"))
    return CartGroupResponse(
        destination=request.destination,
        groups=[CartOriginGroupResponse.model_validate(g) for g in groups],
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        total=subtotal + shipping_cost,
    )


@router.get("/status")
async def dropship_status(client: CJAPIClient = Depends(get_cj_client)):
    """Provider connection, throttle and shipping cache state."""
    return {
        "connection": client.token_manager.connection_info(),
        "throttle": get_global_throttle().get_status(),
        "shipping_cache": shipping_quote_cache.get_stats(),
    }
