"""
CJ response parsers

CJ endpoints describe the same concepts with different field names and
nesting. Each endpoint's shape is named explicitly here and mapped onto the
canonical records in app.services.cj.types before anything else sees it.

Inventory shapes:
    BULK        getInventoryByPid   totalInventory / cjInventory / factoryInventory
    BY_VARIANT  queryByVid          totalInventoryNum (or storageNum) / cjInventoryNum / factoryInventoryNum
    BY_SKU      queryBySku          totalInventoryNum / cjInventoryNum / factoryInventoryNum

Freight shapes:
    FLAT        logisticName / logisticAging / logisticPrice
    NESTED      option|channel.enName|cnName, arrivalTime, wrapPostage > postage > totalPostageFee
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from app.core.utils import to_decimal, to_int
from app.services.cj.types import ShippingQuote, VariantMetadata, VariantStock, WarehouseStock

logger = logging.getLogger(__name__)


# =============================================================================
# INVENTORY
# =============================================================================

class InventoryShape(str, Enum):
    BULK = "bulk"
    BY_VARIANT = "by_variant"
    BY_SKU = "by_sku"


# Candidate keys per canonical field, first present wins
_INVENTORY_KEYS: Dict[InventoryShape, Dict[str, Tuple[str, ...]]] = {
    InventoryShape.BULK: {
        "total_qty": ("totalInventory", "totalInventoryNum"),
        "provider_qty": ("cjInventory", "cjInventoryNum"),
        "factory_qty": ("factoryInventory", "factoryInventoryNum"),
    },
    InventoryShape.BY_VARIANT: {
        "total_qty": ("totalInventoryNum", "storageNum"),  # storageNum is deprecated
        "provider_qty": ("cjInventoryNum",),
        "factory_qty": ("factoryInventoryNum",),
    },
    InventoryShape.BY_SKU: {
        "total_qty": ("totalInventoryNum", "storageNum"),
        "provider_qty": ("cjInventoryNum",),
        "factory_qty": ("factoryInventoryNum",),
    },
}


def _first_present(raw: Dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


def parse_warehouse(raw: Dict[str, Any], shape: InventoryShape) -> WarehouseStock:
    """Normalize one warehouse entry. Absent or unparseable quantities are 0."""
    keys = _INVENTORY_KEYS[shape]
    area_id = raw.get("areaId")
    return WarehouseStock(
        country_code=str(raw.get("countryCode") or "").upper(),
        total_qty=max(0, to_int(_first_present(raw, keys["total_qty"]))),
        provider_qty=max(0, to_int(_first_present(raw, keys["provider_qty"]))),
        factory_qty=max(0, to_int(_first_present(raw, keys["factory_qty"]))),
        verified=bool(raw.get("verifiedWarehouse")),
        area_id=str(area_id) if area_id is not None else None,
        area_name=raw.get("areaEn") or None,
    )


def parse_warehouse_list(data: Any, shape: InventoryShape) -> Tuple[WarehouseStock, ...]:
    if not isinstance(data, list):
        return ()
    return tuple(parse_warehouse(item, shape) for item in data if isinstance(item, dict))


def parse_bulk_inventory(data: Any) -> Dict[str, VariantStock]:
    """
    Parse getInventoryByPid data into variant id -> VariantStock.

    Order follows the provider's variantInventories list.
    """
    if not isinstance(data, dict):
        return {}
    result: Dict[str, VariantStock] = {}
    for entry in data.get("variantInventories") or []:
        if not isinstance(entry, dict) or not entry.get("vid"):
            continue
        vid = str(entry["vid"])
        result[vid] = VariantStock(
            variant_id=vid,
            per_warehouse=parse_warehouse_list(entry.get("inventory"), InventoryShape.BULK),
        )
    return result


# =============================================================================
# VARIANTS / PRODUCTS
# =============================================================================

def extract_variant_list(data: Any) -> List[Dict[str, Any]]:
    """
    variant/query returns a bare list, {list: [...]}, {data: [...]} or a single
    variant object depending on the account and product.
    """
    if isinstance(data, list):
        items = data
    elif isinstance(data, dict):
        if isinstance(data.get("list"), list):
            items = data["list"]
        elif isinstance(data.get("data"), list):
            items = data["data"]
        elif data.get("vid"):
            items = [data]
        else:
            items = []
    else:
        items = []
    return [item for item in items if isinstance(item, dict) and (item.get("vid") or item.get("variantId"))]


def parse_variant_metadata(raw: Dict[str, Any], product_id: str) -> VariantMetadata:
    vid = str(raw.get("vid") or raw.get("variantId"))
    return VariantMetadata(
        variant_id=vid,
        product_id=str(raw.get("pid") or product_id),
        name=raw.get("variantNameEn") or raw.get("variantName") or vid,
        sku=raw.get("variantSku") or vid,
        image=raw.get("variantImage") or None,
        sell_price=to_decimal(raw.get("variantSellPrice")),
        variant_key=raw.get("variantKey") or None,
    )


def synthesize_metadata(variant_id: str, product_id: str) -> VariantMetadata:
    """Placeholder metadata for a stocked variant the detail endpoints did not list."""
    return VariantMetadata(
        variant_id=variant_id,
        product_id=product_id,
        name=variant_id,
        sku=variant_id,
    )


def parse_product_details(data: Any, product_id: str) -> Optional[Dict[str, Any]]:
    """Return the product dict when it looks like a real product, else None."""
    if not isinstance(data, dict) or not data.get("pid"):
        return None
    variants = [
        parse_variant_metadata(raw, product_id)
        for raw in extract_variant_list(data.get("variants") or [])
    ]
    return {
        "pid": str(data["pid"]),
        "name": data.get("productNameEn") or data.get("productName") or str(data["pid"]),
        "sku": data.get("productSku"),
        "image": data.get("productImage"),
        "sell_price": data.get("sellPrice"),
        "category": data.get("categoryName"),
        "variants": variants,
        "raw": data,
    }


# =============================================================================
# FREIGHT
# =============================================================================

class FreightShape(str, Enum):
    FLAT = "flat"
    NESTED = "nested"


@dataclass
class ParsedFreightOption:
    quote: ShippingQuote
    shape: FreightShape
    warnings: List[str] = field(default_factory=list)


def detect_freight_shape(item: Dict[str, Any]) -> FreightShape:
    flat_keys = ("logisticName", "logisticPrice", "logisticAging")
    if any(item.get(key) is not None for key in flat_keys):
        return FreightShape.FLAT
    return FreightShape.NESTED


def _nested_name(item: Dict[str, Any]) -> Optional[str]:
    for container in ("option", "channel"):
        inner = item.get(container)
        if isinstance(inner, dict):
            name = inner.get("enName") or inner.get("cnName")
            if name:
                return name
    return None


def _nested_transit(item: Dict[str, Any]) -> Optional[str]:
    if item.get("arrivalTime"):
        return item["arrivalTime"]
    option = item.get("option")
    if isinstance(option, dict) and option.get("arrivalTime"):
        return option["arrivalTime"]
    return None


def parse_freight_option(item: Dict[str, Any]) -> ParsedFreightOption:
    shape = detect_freight_shape(item)
    warnings: List[str] = []

    if shape == FreightShape.FLAT:
        carrier = item.get("logisticName") or _nested_name(item)
        transit = item.get("logisticAging") or _nested_transit(item)
        raw_price = _first_present(item, ("logisticPrice", "wrapPostage", "postage", "totalPostageFee"))
    else:
        carrier = _nested_name(item)
        transit = _nested_transit(item)
        raw_price = _first_present(item, ("wrapPostage", "postage", "totalPostageFee"))

    carrier = carrier or "Unknown"
    price = to_decimal(raw_price)
    if price is None or price < 0:
        warnings.append(f"invalid freight price {raw_price!r} for {carrier}, using 0")
        price = Decimal("0")

    return ParsedFreightOption(
        quote=ShippingQuote(
            carrier_name=str(carrier),
            transit_time=str(transit) if transit else "N/A",
            freight=price,
            currency="USD",
        ),
        shape=shape,
        warnings=warnings,
    )


def parse_freight_options(data: Any) -> List[ParsedFreightOption]:
    """Parse freightCalculate data. Anything but a list yields no options."""
    if not isinstance(data, list):
        return []
    options = []
    for item in data:
        if not isinstance(item, dict):
            continue
        parsed = parse_freight_option(item)
        for warning in parsed.warnings:
            logger.warning(f"[CJ_HTTP] Freight option: {warning}")
        options.append(parsed)
    return options
