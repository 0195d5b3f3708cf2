"""
Shipping Quote Cache

Freight lookups cost a throttled CJ call (~1.5s), and cart grouping asks for
the same product/destination pairs repeatedly, so outcomes are cached.

- Key: shipping:{product_id}:{destination}:{variant_id or "default"}
- TTL: 1 hour (SHIPPING_QUOTE_CACHE_TTL_SECONDS)
- Max size: 1000 entries (LRU eviction)
- Stores shippable and not-shippable outcomes alike; the caller decides what
  is cacheable (rate-limited lookups never are)

Usage:
    from app.services.shipping_cache import shipping_quote_cache

    cached = shipping_quote_cache.get(product_id, "FR", variant_id)
    if cached is None:
        outcome = await resolve(...)
        shipping_quote_cache.set(product_id, "FR", variant_id, outcome)
"""
import logging
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional, Tuple

from app.core.config import settings

logger = logging.getLogger(__name__)


def make_cache_key(product_id: str, destination: str, variant_id: Optional[str] = None) -> str:
    return f"shipping:{product_id}:{destination.upper()}:{variant_id or 'default'}"


class ShippingQuoteCache:
    """
    LRU cache with TTL for shipping outcomes.

    Safe for single-threaded asyncio use: no awaits happen between a read and
    the matching write.
    """

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        max_size: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds or settings.SHIPPING_QUOTE_CACHE_TTL_SECONDS
        self.max_size = max_size or settings.SHIPPING_QUOTE_CACHE_MAX_SIZE
        self._clock = clock
        self._cache: "OrderedDict[str, Tuple[float, Any]]" = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __len__(self) -> int:
        return len(self._cache)

    def get(self, product_id: str, destination: str, variant_id: Optional[str] = None) -> Optional[Any]:
        key = make_cache_key(product_id, destination, variant_id)

        entry = self._cache.get(key)
        if entry is None:
            self._misses += 1
            return None

        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._cache[key]
            self._misses += 1
            logger.debug(f"[SHIPPING_CACHE] Expired: {key}")
            return None

        self._cache.move_to_end(key)
        self._hits += 1
        logger.debug(f"[SHIPPING_CACHE] Hit: {key}")
        return value

    def set(self, product_id: str, destination: str, variant_id: Optional[str], value: Any) -> None:
        key = make_cache_key(product_id, destination, variant_id)

        if key in self._cache:
            del self._cache[key]
        while len(self._cache) >= self.max_size:
            self._cache.popitem(last=False)
            self._evictions += 1
            logger.debug("[SHIPPING_CACHE] Evicted oldest entry (capacity)")

        self._cache[key] = (self._clock() + self.ttl_seconds, value)
        logger.debug(f"[SHIPPING_CACHE] Stored: {key}")

    def invalidate(
        self,
        product_id: str,
        destination: Optional[str] = None,
        variant_id: Optional[str] = None,
    ) -> int:
        """
        Drop one entry, or every entry for the product when destination is None.

        Returns the number of entries removed.
        """
        if destination is not None:
            key = make_cache_key(product_id, destination, variant_id)
            if key in self._cache:
                del self._cache[key]
                return 1
            return 0

        prefix = f"shipping:{product_id}:"
        keys = [k for k in self._cache if k.startswith(prefix)]
        for key in keys:
            del self._cache[key]
        if keys:
            logger.info(f"[SHIPPING_CACHE] Invalidated {len(keys)} entries for product {product_id}")
        return len(keys)

    def clear(self) -> None:
        count = len(self._cache)
        self._cache.clear()
        logger.info(f"[SHIPPING_CACHE] Cleared {count} entries")

    def get_stats(self) -> Dict[str, Any]:
        total = self._hits + self._misses
        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total, 4) if total > 0 else 0.0,
            "size": len(self._cache),
            "max_size": self.max_size,
            "ttl_seconds": self.ttl_seconds,
            "evictions": self._evictions,
        }


# Global cache instance shared by request handlers
shipping_quote_cache = ShippingQuoteCache()
