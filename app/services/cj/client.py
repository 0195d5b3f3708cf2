"""
CJ Dropshipping API client

Thin endpoint methods over CJRequestExecutor. Each method owns its
endpoint's quirks (success criteria, response nesting) and returns canonical
records or plain dicts, never the raw envelope.

Usage:
    client = CJAPIClient.create()
    variants = await client.get_product_variants(pid)
    ...
    await client.close()
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import httpx

from app.core.config import settings
from app.core.exceptions import UpstreamError
from app.services.cj.executor import CJRequestExecutor
from app.services.cj.parsers import (
    InventoryShape,
    ParsedFreightOption,
    extract_variant_list,
    parse_bulk_inventory,
    parse_freight_options,
    parse_product_details,
    parse_variant_metadata,
    parse_warehouse_list,
)
from app.services.cj.throttle import GlobalThrottle
from app.services.cj.token_manager import CJTokenManager
from app.services.cj.token_store import TokenStore
from app.services.cj.types import (
    CJResponse,
    FreightLine,
    OrderRequest,
    VariantMetadata,
    VariantStock,
)

logger = logging.getLogger(__name__)

MAX_SEARCH_PAGE_SIZE = 100  # listV2 rejects larger pages


@dataclass
class ProductSearchPage:
    """One page of listV2 results."""
    page: int
    size: int
    total: int = 0
    products: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total_pages(self) -> int:
        if not self.size:
            return 0
        return (self.total + self.size - 1) // self.size


@dataclass
class ReviewPage:
    page: int
    size: int
    total: int = 0
    reviews: List[Dict[str, Any]] = field(default_factory=list)


def build_http_client(transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """Shared httpx client for CJ: base URL, timeout, JSON headers."""
    return httpx.AsyncClient(
        base_url=settings.CJ_API_BASE_URL,
        timeout=settings.CJ_HTTP_TIMEOUT_SECONDS,
        headers={
            "Content-Type": "application/json",
            "User-Agent": settings.CJ_USER_AGENT,
        },
        transport=transport,
    )


def _first_image(value: Any) -> str:
    """listV2 images arrive as a URL, a list, or a JSON-encoded list."""
    if isinstance(value, list):
        return value[0] if value else ""
    if isinstance(value, str) and value.startswith("["):
        try:
            parsed = json.loads(value)
        except ValueError:
            return value if value.startswith("http") else ""
        return parsed[0] if isinstance(parsed, list) and parsed else ""
    return value or ""


class CJAPIClient:
    """CJ Dropshipping endpoints."""

    def __init__(self, executor: CJRequestExecutor, http_client: Optional[httpx.AsyncClient] = None):
        self._executor = executor
        self._http = http_client

    @classmethod
    def create(
        cls,
        store: Optional[TokenStore] = None,
        throttle: Optional[GlobalThrottle] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "CJAPIClient":
        """Wire http client, token manager and executor with the shared throttle."""
        http_client = build_http_client(transport)
        tokens = CJTokenManager(http_client, store=store)
        executor = CJRequestExecutor(http_client, tokens, throttle=throttle)
        return cls(executor, http_client=http_client)

    @property
    def executor(self) -> CJRequestExecutor:
        return self._executor

    @property
    def token_manager(self) -> CJTokenManager:
        return self._executor.token_manager

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    @staticmethod
    def _has_data(response: CJResponse) -> bool:
        return response.code in CJResponse.SUCCESS_CODES and response.data is not None

    # ==================== PRODUCTS ====================

    async def get_product_details(self, pid: str, include_video: bool = True) -> Optional[Dict[str, Any]]:
        """Product with its variants. None when CJ has no such product."""
        params = {"pid": pid}
        if include_video:
            params["features"] = "enable_video"
        response = await self._executor.execute("GET", "/product/query", params)

        if not response.ok:
            raise UpstreamError(
                response.message or f"CJ product {pid} not found",
                code=response.code,
                request_id=response.request_id,
                status_code=response.status_code,
                endpoint="/product/query",
            )
        return parse_product_details(response.data, pid)

    async def get_product_variants(self, pid: str) -> List[VariantMetadata]:
        response = await self._executor.execute("GET", "/product/variant/query", {"pid": pid})
        if not self._has_data(response):
            logger.warning(f"[CJ_STOCK] No variants for {pid} (code={response.code}, message={response.message!r})")
            return []
        variants = [parse_variant_metadata(raw, pid) for raw in extract_variant_list(response.data)]
        logger.info(f"[CJ_STOCK] {len(variants)} variant(s) for product {pid}")
        return variants

    async def search_products(
        self,
        keyword: Optional[str] = None,
        page: int = 1,
        size: int = 20,
        category_id: Optional[str] = None,
        country_code: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
    ) -> ProductSearchPage:
        size = min(size, MAX_SEARCH_PAGE_SIZE)
        params: Dict[str, Any] = {"page": page, "size": size}
        if keyword:
            params["keyWord"] = keyword
        if category_id:
            params["categoryId"] = category_id
        if country_code:
            params["countryCode"] = country_code
        if min_price is not None:
            params["startSellPrice"] = min_price
        if max_price is not None:
            params["endSellPrice"] = max_price

        response = await self._executor.execute("GET", "/product/listV2", params)
        result = ProductSearchPage(page=page, size=size)
        if not self._has_data(response) or not isinstance(response.data, dict):
            return result

        content = response.data.get("content") or []
        if not content or not isinstance(content[0], dict):
            return result

        result.total = int(response.data.get("totalRecords") or content[0].get("total") or 0)
        for raw in content[0].get("productList") or []:
            pid = raw.get("id") or raw.get("pid") or ""
            result.products.append({
                "pid": pid,
                "name": raw.get("nameEn") or raw.get("productNameEn") or raw.get("name") or "",
                "sku": raw.get("sku") or raw.get("productSku") or "",
                "image": _first_image(raw.get("bigImage") or raw.get("productImage")),
                "sell_price": raw.get("sellPrice") or raw.get("nowPrice"),
                "category_id": raw.get("categoryId") or raw.get("threeCategoryId"),
                "category_name": raw.get("categoryName") or raw.get("threeCategoryName") or "",
                "warehouse_inventory": raw.get("warehouseInventoryNum"),
            })
        return result

    async def get_categories(self) -> List[Dict[str, Any]]:
        response = await self._executor.execute("GET", "/product/getCategory")
        if self._has_data(response) and isinstance(response.data, list):
            return response.data
        return []

    async def get_product_reviews(self, pid: str, page: int = 1, size: int = 100) -> ReviewPage:
        response = await self._executor.execute(
            "GET", "/product/productComments", {"pid": pid, "pageNum": page, "pageSize": size}
        )
        result = ReviewPage(page=page, size=size)
        data = response.data if self._has_data(response) else None
        if not isinstance(data, dict) or not isinstance(data.get("list"), list):
            return result
        result.total = int(data.get("total") or 0)
        result.reviews = [
            {
                "id": raw.get("commentId"),
                "author": raw.get("commentUser"),
                "rating": int(raw.get("score") or 0),
                "comment": raw.get("comment") or "",
                "images": raw.get("commentUrls") or [],
                "country_code": raw.get("countryCode"),
                "created_at": raw.get("commentDate"),
            }
            for raw in data["list"]
            if isinstance(raw, dict)
        ]
        return result

    # ==================== INVENTORY ====================

    async def get_inventory_bulk(self, pid: str) -> Dict[str, VariantStock]:
        """All variant stock for a product in one call. Empty on a non-success envelope."""
        response = await self._executor.execute("GET", "/product/stock/getInventoryByPid", {"pid": pid})
        if not response.ok:
            logger.warning(f"[CJ_STOCK] Bulk inventory unavailable for {pid} (code={response.code})")
            return {}
        stock = parse_bulk_inventory(response.data)
        logger.info(f"[CJ_STOCK] Bulk inventory for {pid}: {len(stock)} variant(s)")
        return stock

    async def get_inventory_by_variant(self, vid: str) -> VariantStock:
        response = await self._executor.execute("GET", "/product/stock/queryByVid", {"vid": vid})
        if not self._has_data(response):
            return VariantStock(variant_id=vid)
        return VariantStock(
            variant_id=vid,
            per_warehouse=parse_warehouse_list(response.data, InventoryShape.BY_VARIANT),
        )

    async def get_inventory_by_sku(self, sku: str) -> VariantStock:
        """Stock by SKU. The SKU stands in for the variant id on the result."""
        response = await self._executor.execute("GET", "/product/stock/queryBySku", {"sku": sku})
        if not self._has_data(response):
            return VariantStock(variant_id=sku)
        return VariantStock(
            variant_id=sku,
            per_warehouse=parse_warehouse_list(response.data, InventoryShape.BY_SKU),
        )

    # ==================== LOGISTICS ====================

    async def calculate_freight(
        self,
        origin: str,
        destination: str,
        lines: Sequence[FreightLine],
    ) -> List[ParsedFreightOption]:
        logger.info(f"[CJ_HTTP] Freight {origin} -> {destination} ({len(lines)} line(s))")
        response = await self._executor.execute(
            "POST",
            "/logistic/freightCalculate",
            {
                "startCountryCode": origin,
                "endCountryCode": destination,
                "products": [line.to_payload() for line in lines],
            },
        )
        if not response.ok:
            logger.warning(
                f"[CJ_HTTP] Freight calculation returned code={response.code} message={response.message!r}"
            )
            return []
        return parse_freight_options(response.data)

    async def get_tracking(self, track_number: str) -> Any:
        response = await self._executor.execute("GET", f"/logistics/track/{track_number}")
        return response.data

    # ==================== ORDERS ====================

    async def create_order(self, order: OrderRequest) -> Dict[str, Any]:
        if not order.lines:
            raise ValueError("Order has no lines")
        for line in order.lines:
            if not line.variant_id:
                raise ValueError(f"Order line without variant id: {line!r}")
            if line.quantity <= 0:
                raise ValueError(f"Order line with invalid quantity: {line!r}")

        endpoint = "/shopping/order/createOrderV3"
        response = await self._executor.execute("POST", endpoint, order.to_payload())
        if response.code != 200 or not isinstance(response.data, dict):
            raise UpstreamError(
                response.message or f"CJ order creation failed (code {response.code})",
                code=response.code,
                request_id=response.request_id,
                status_code=response.status_code,
                endpoint=endpoint,
            )
        logger.info(f"[CJ_HTTP] Order {order.order_number} created: {response.data.get('orderId')}")
        return response.data

    async def get_order_status(self, order_id: str) -> Optional[Dict[str, Any]]:
        response = await self._executor.execute("GET", f"/order/orderStatus/{order_id}")
        if response.code == 200 and isinstance(response.data, dict):
            return response.data
        return None

    # ==================== ACCOUNT ====================

    async def get_balance(self) -> Optional[Dict[str, Any]]:
        response = await self._executor.execute("GET", "/user/balance")
        return response.data if self._has_data(response) else None

    async def logout(self) -> None:
        """Invalidate the token upstream, then drop it locally."""
        try:
            await self._executor.execute("POST", "/user/logout")
        finally:
            await self.token_manager.clear()
        logger.info("[CJ_AUTH] Logged out")
