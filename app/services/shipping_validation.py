"""
Shipping Validation Service

Answers "can this product ship to this country, and how?" for product pages
and cart grouping.

Flow:
1. Cache lookup (key per product/destination/variant, 1h TTL)
2. Product lookup; origin = product origin or DEFAULT_ORIGIN_COUNTRY
3. Non-CJ products: shippable everywhere, no quotes (not cached)
4. CJ products: freight calculation for one unit of the chosen variant

Every outcome except rate limiting and missing configuration is cached,
including "not shippable". Provider failures never raise out of
check_shipping; they become NotShippable with the provider error code.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from app.core.config import settings
from app.core.exceptions import ConfigError, RateLimitError, UpstreamError
from app.services.catalog import ProductRepository
from app.services.cj.client import CJAPIClient
from app.services.cj.types import FreightLine, ShippingQuote
from app.services.shipping_cache import ShippingQuoteCache, shipping_quote_cache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Shippable:
    quotes: List[ShippingQuote] = field(default_factory=list)
    origin: Optional[str] = None

    shippable = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shippable": True,
            "origin_country_code": self.origin,
            "quotes": [q.to_dict() for q in self.quotes],
        }


@dataclass(frozen=True)
class NotShippable:
    reason: str
    error_code: Optional[str] = None
    origin: Optional[str] = None

    shippable = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shippable": False,
            "origin_country_code": self.origin,
            "reason": self.reason,
            "error_code": self.error_code,
        }


ShippingOutcome = Union[Shippable, NotShippable]


class ShippingValidationService:
    def __init__(
        self,
        client: CJAPIClient,
        repository: ProductRepository,
        cache: Optional[ShippingQuoteCache] = None,
    ):
        self.client = client
        self.repository = repository
        self.cache = cache if cache is not None else shipping_quote_cache

    async def check_shipping(
        self,
        product_id: str,
        destination: str,
        variant_id: Optional[str] = None,
    ) -> ShippingOutcome:
        destination = destination.upper()

        cached = self.cache.get(product_id, destination, variant_id)
        if cached is not None:
            return cached

        outcome, cacheable = await self._resolve(product_id, destination, variant_id)
        if cacheable:
            self.cache.set(product_id, destination, variant_id, outcome)
        return outcome

    async def _resolve(
        self,
        product_id: str,
        destination: str,
        variant_id: Optional[str],
    ):
        """Returns (outcome, cacheable)."""
        product = await self.repository.get_product(product_id)
        if product is None:
            return NotShippable(reason="product not found", error_code="PRODUCT_NOT_FOUND"), True

        origin = (product.origin_country_code or settings.DEFAULT_ORIGIN_COUNTRY).upper()

        if not product.is_cj:
            return Shippable(quotes=[], origin=origin), False

        variant = product.find_variant(variant_id)
        if variant is None or not variant.cj_variant_id:
            logger.warning(f"[SHIPPING_CACHE] No CJ variant for product {product_id} (variant={variant_id})")
            return NotShippable(
                reason="variant unavailable", error_code="VARIANT_UNAVAILABLE", origin=origin
            ), True

        try:
            options = await self.client.calculate_freight(
                origin, destination, [FreightLine(variant_id=variant.cj_variant_id, quantity=1)]
            )
        except ConfigError as e:
            logger.error(f"[SHIPPING_CACHE] CJ not configured: {e.message}")
            return NotShippable(reason=e.message, error_code=e.code, origin=origin), False
        except RateLimitError as e:
            logger.warning(f"[SHIPPING_CACHE] Rate limited for {product_id} -> {destination}, not caching")
            return NotShippable(reason=e.message, error_code=e.code, origin=origin), False
        except UpstreamError as e:
            logger.error(f"[SHIPPING_CACHE] Freight failed for {product_id} -> {destination}: {e.message}")
            return NotShippable(reason=e.message, error_code=e.code, origin=origin), True

        if not options:
            return NotShippable(
                reason=f"no shipping options to {destination}",
                error_code="NO_SHIPPING_OPTIONS",
                origin=origin,
            ), True

        return Shippable(quotes=[option.quote for option in options], origin=origin), True

    def invalidate(
        self,
        product_id: str,
        destination: Optional[str] = None,
        variant_id: Optional[str] = None,
    ) -> int:
        return self.cache.invalidate(
            product_id, destination.upper() if destination else None, variant_id
        )

    def clear_cache(self) -> None:
        self.cache.clear()

    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.get_stats()
