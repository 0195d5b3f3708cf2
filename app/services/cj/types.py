"""
CJ Dropshipping domain records

Canonical shapes every provider response is normalized into before any
business logic touches it. Raw provider dicts never leave app.services.cj.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class CJTier(str, Enum):
    """Provider account service level."""
    FREE = "free"
    PLUS = "plus"
    PRIME = "prime"
    ADVANCED = "advanced"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["CJTier"]:
        """Returns None for unknown tiers; callers fall back to default timings."""
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class CJCredentials:
    """Provider credentials. Immutable for the lifetime of a token manager."""
    email: str
    api_key: str
    tier: Optional[CJTier] = CJTier.FREE
    platform_token: Optional[str] = None

    def __repr__(self) -> str:
        # Never log the api key
        tier = self.tier.value if self.tier else None
        return f"CJCredentials(email={self.email!r}, tier={tier!r})"


@dataclass(frozen=True)
class TokenState:
    """Access/refresh token pair with its expiry."""
    access_token: str
    refresh_token: Optional[str]
    expires_at: datetime

    def is_stale(self, now: datetime, margin: timedelta) -> bool:
        """A token inside the refresh margin is treated as already expired."""
        return now >= self.expires_at - margin


@dataclass
class CJResponse:
    """Provider response envelope: {code, result, message, data, requestId}."""
    code: Optional[int]
    result: bool = False
    message: str = ""
    data: Any = None
    request_id: Optional[str] = None
    success: bool = False
    status_code: int = 200

    SUCCESS_CODES = (200, 0)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], status_code: int = 200) -> "CJResponse":
        code = payload.get("code")
        try:
            code = int(code) if code is not None else None
        except (TypeError, ValueError):
            code = None
        return cls(
            code=code,
            result=payload.get("result") is True,
            message=str(payload.get("message") or ""),
            data=payload.get("data"),
            request_id=payload.get("requestId"),
            success=payload.get("success") is True,
            status_code=status_code,
        )

    @property
    def ok(self) -> bool:
        """Endpoints disagree on result vs success; either counts."""
        return self.code in self.SUCCESS_CODES and (self.result or self.success)


# =============================================================================
# STOCK
# =============================================================================

@dataclass(frozen=True)
class WarehouseStock:
    """Stock held in one provider warehouse, canonical field names."""
    country_code: str
    total_qty: int = 0
    provider_qty: int = 0
    factory_qty: int = 0
    verified: bool = False
    area_id: Optional[str] = None
    area_name: Optional[str] = None


@dataclass(frozen=True)
class VariantStock:
    """Per-variant inventory. Derived fresh on every fetch."""
    variant_id: str
    per_warehouse: Tuple[WarehouseStock, ...] = ()

    @property
    def total_stock(self) -> int:
        return sum(w.total_qty for w in self.per_warehouse)


@dataclass(frozen=True)
class VariantMetadata:
    """Display fields for a variant as returned by detail/listing endpoints."""
    variant_id: str
    product_id: str
    name: str
    sku: str
    image: Optional[str] = None
    sell_price: Optional[Decimal] = None
    variant_key: Optional[str] = None


@dataclass(frozen=True)
class VariantWithStock:
    """Variant metadata joined with its stock."""
    metadata: VariantMetadata
    stock: VariantStock
    synthesized: bool = False  # metadata built from the variant id alone

    @property
    def variant_id(self) -> str:
        return self.metadata.variant_id

    @property
    def total_stock(self) -> int:
        return self.stock.total_stock


# =============================================================================
# SHIPPING
# =============================================================================

@dataclass(frozen=True)
class ShippingQuote:
    """One carrier option for shipping a set of variants origin -> destination."""
    carrier_name: str
    transit_time: str
    freight: Decimal
    currency: str = "USD"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "carrier_name": self.carrier_name,
            "transit_time": self.transit_time,
            "freight": str(self.freight),
            "currency": self.currency,
        }


@dataclass(frozen=True)
class FreightLine:
    """Freight request line."""
    variant_id: str
    quantity: int = 1

    def to_payload(self) -> Dict[str, Any]:
        return {"vid": self.variant_id, "quantity": self.quantity}


@dataclass
class OrderLine:
    variant_id: str
    quantity: int
    store_line_item_id: Optional[str] = None


@dataclass
class OrderRequest:
    """
    Order creation payload (V3).

    order_number is the caller-generated idempotency key: the executor resends
    identical payloads on retry and the provider rejects duplicate numbers.
    """
    order_number: str
    shipping_country_code: str
    shipping_country: str
    shipping_city: str
    shipping_address: str
    shipping_customer_name: str
    logistic_name: str
    lines: List[OrderLine] = field(default_factory=list)
    shipping_province: Optional[str] = None
    shipping_address2: Optional[str] = None
    shipping_zip: Optional[str] = None
    shipping_phone: Optional[str] = None
    email: Optional[str] = None
    from_country_code: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload = {
            "orderNumber": self.order_number,
            "shippingCountryCode": self.shipping_country_code,
            "shippingCountry": self.shipping_country,
            "shippingCity": self.shipping_city,
            "shippingAddress": self.shipping_address,
            "shippingCustomerName": self.shipping_customer_name,
            "logisticName": self.logistic_name,
            "products": [
                {
                    "vid": line.variant_id,
                    "quantity": line.quantity,
                    **({"storeLineItemId": line.store_line_item_id} if line.store_line_item_id else {}),
                }
                for line in self.lines
            ],
        }
        optional = {
            "shippingProvince": self.shipping_province,
            "shippingAddress2": self.shipping_address2,
            "shippingZip": self.shipping_zip,
            "shippingPhone": self.shipping_phone,
            "email": self.email,
            "fromCountryCode": self.from_country_code,
        }
        payload.update({k: v for k, v in optional.items() if v})
        return payload
