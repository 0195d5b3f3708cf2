"""
Dropship schemas
"""
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class ShippingQuoteResponse(BaseModel):
    carrier_name: str
    transit_time: str
    freight: Decimal
    currency: str = "USD"

    class Config:
        from_attributes = True


class ShippingCheckResponse(BaseModel):
    product_id: str
    destination: str
    shippable: bool
    origin_country_code: Optional[str] = None
    quotes: List[ShippingQuoteResponse] = []
    reason: Optional[str] = None
    error_code: Optional[str] = None


class CartLineRequest(BaseModel):
    id: Optional[str] = None
    product_id: str
    variant_id: Optional[str] = None
    quantity: int = Field(default=1, ge=1)


class CartGroupRequest(BaseModel):
    destination: str = Field(..., min_length=2, max_length=2)
    items: List[CartLineRequest]

    @field_validator("destination")
    @classmethod
    def upper_destination(cls, v: str) -> str:
        return v.upper()


class CartGroupItemResponse(BaseModel):
    id: str
    product_id: str
    product_name: str
    price: Decimal
    quantity: int
    variant_id: Optional[str] = None
    cj_variant_id: Optional[str] = None
    image: Optional[str] = None

    class Config:
        from_attributes = True


class CartOriginGroupResponse(BaseModel):
    origin_country: str
    origin_country_name: str
    items: List[CartGroupItemResponse]
    shipping_options: List[ShippingQuoteResponse]
    selected_shipping_option: Optional[ShippingQuoteResponse] = None
    subtotal: Decimal
    shipping_cost: Decimal
    total: Decimal

    class Config:
        from_attributes = True


class CartGroupResponse(BaseModel):
    destination: str
    groups: List[CartOriginGroupResponse]
    subtotal: Decimal
    shipping_cost: Decimal
    total: Decimal
