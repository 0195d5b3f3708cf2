"""
Cart Grouping Service

Splits a cart into one group per origin country so checkout can show a
shipment (and a shipping cost) per warehouse origin.

Freight per group comes from a single check_shipping call for the group's
first CJ item; its first quote is pre-selected. Groups without CJ items
ship free for now.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from app.core.config import settings
from app.core.countries import country_name
from app.services.catalog import ProductRepository
from app.services.cj.types import ShippingQuote
from app.services.shipping_validation import ShippingValidationService

logger = logging.getLogger(__name__)


@dataclass
class CartItemInput:
    """A cart line with the product fields grouping needs."""
    id: str
    product_id: str
    product_name: str
    price: Decimal
    quantity: int
    origin_country_code: Optional[str] = None
    variant_id: Optional[str] = None
    cj_variant_id: Optional[str] = None
    image: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


@dataclass
class CartOriginGroup:
    origin_country: str
    origin_country_name: str
    items: List[CartItemInput] = field(default_factory=list)
    shipping_options: List[ShippingQuote] = field(default_factory=list)
    selected_shipping_option: Optional[ShippingQuote] = None
    subtotal: Decimal = Decimal("0")
    shipping_cost: Decimal = Decimal("0")

    @property
    def total(self) -> Decimal:
        return self.subtotal + self.shipping_cost

    def to_dict(self) -> Dict[str, Any]:
        return {
            "origin_country": self.origin_country,
            "origin_country_name": self.origin_country_name,
            "items": [
                {
                    "id": item.id,
                    "product_id": item.product_id,
                    "product_name": item.product_name,
                    "price": str(item.price),
                    "quantity": item.quantity,
                    "variant_id": item.variant_id,
                    "cj_variant_id": item.cj_variant_id,
                    "image": item.image,
                }
                for item in self.items
            ],
            "shipping_options": [q.to_dict() for q in self.shipping_options],
            "selected_shipping_option": (
                self.selected_shipping_option.to_dict() if self.selected_shipping_option else None
            ),
            "subtotal": str(self.subtotal),
            "shipping_cost": str(self.shipping_cost),
            "total": str(self.total),
        }


class CartGroupingService:
    def __init__(self, shipping: ShippingValidationService):
        self.shipping = shipping

    async def group_by_origin(
        self,
        cart_items: Sequence[CartItemInput],
        destination: str,
    ) -> List[CartOriginGroup]:
        groups: Dict[str, CartOriginGroup] = {}

        for item in cart_items:
            origin = (item.origin_country_code or settings.DEFAULT_ORIGIN_COUNTRY).upper()
            group = groups.get(origin)
            if group is None:
                group = CartOriginGroup(origin_country=origin, origin_country_name=country_name(origin))
                groups[origin] = group
            group.items.append(item)
            group.subtotal += item.line_total

        for group in groups.values():
            await self._price_group(group, destination)

        return list(groups.values())

    async def _price_group(self, group: CartOriginGroup, destination: str) -> None:
        first_cj_item = next((item for item in group.items if item.cj_variant_id), None)
        if first_cj_item is None:
            # TODO: flat-rate freight for non-CJ origins once carrier rates are configured
            group.shipping_cost = Decimal("0")
            return

        try:
            outcome = await self.shipping.check_shipping(
                first_cj_item.product_id, destination, first_cj_item.variant_id
            )
        except Exception as e:
            # One group's freight failure must not fail the whole cart
            logger.error(
                f"[CART_GROUPING] Freight check failed for {group.origin_country} -> {destination}: {e}"
            )
            group.shipping_cost = Decimal("0")
            return

        if not outcome.shippable:
            logger.warning(
                f"[CART_GROUPING] No shipping for {group.origin_country} -> {destination}: "
                f"{outcome.reason} ({outcome.error_code})"
            )
            group.shipping_cost = Decimal("0")
            return

        group.shipping_options = list(outcome.quotes)
        if group.shipping_options:
            group.selected_shipping_option = group.shipping_options[0]
            group.shipping_cost = group.selected_shipping_option.freight


async def load_cart_items(
    repository: ProductRepository,
    lines: Sequence[Dict[str, Any]],
) -> List[CartItemInput]:
    """
    Build CartItemInputs from {id?, product_id, variant_id?, quantity} lines.

    Unknown products are skipped with a warning.
    """
    items: List[CartItemInput] = []
    for index, line in enumerate(lines):
        product = await repository.get_product(line["product_id"])
        if product is None:
            logger.warning(f"[CART_GROUPING] Skipping unknown product {line['product_id']}")
            continue
        variant = product.find_variant(line.get("variant_id"))
        items.append(CartItemInput(
            id=line.get("id") or f"line-{index}",
            product_id=product.id,
            product_name=product.name,
            price=product.price,
            quantity=line["quantity"],
            origin_country_code=product.origin_country_code,
            variant_id=variant.id if variant else None,
            cj_variant_id=variant.cj_variant_id if variant else None,
        ))
    return items
