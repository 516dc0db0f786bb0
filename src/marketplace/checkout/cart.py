"""Resolving cart items against the catalogue."""

from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal

from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from marketplace.catalogue.listing import Listing
from marketplace.catalogue.vendor import Vendor
from marketplace.shared.money import quantize, to_decimal


@dataclass(frozen=True)
class CartLine:
    listing_id: str
    vendor_id: str
    variant_id: str | None
    sku: str
    name: str
    unit_price: Decimal
    quantity: int
    discount: Decimal | None
    shipping_profile_id: str | None
    weight: float | None = None
    length: float | None = None
    width: float | None = None
    height: float | None = None

    @property
    def line_subtotal(self) -> Decimal:
        return quantize(self.unit_price * self.quantity)

    def physical(self) -> dict:
        return {
            "weight": self.weight,
            "length": self.length,
            "width": self.width,
            "height": self.height,
            "quantity": self.quantity,
        }


def resolve_cart(items: list[dict]) -> tuple[list[CartLine], dict[str, Vendor]]:
    """Look up every cart item; returns the lines and the vendors they belong to."""
    if not items:
        raise ValidationError({"items": ["Cart is empty"]})

    listing_repo = current_domain.repository_for(Listing)
    vendor_repo = current_domain.repository_for(Vendor)

    lines = []
    vendors: dict[str, Vendor] = {}
    errors = []
    for item in items:
        quantity = item.get("quantity")
        if not isinstance(quantity, int) or quantity <= 0:
            errors.append(f"{item.get('listing_id')}: quantity must be a positive whole number")
            continue
        try:
            listing = listing_repo.get(item["listing_id"])
        except ObjectNotFoundError:
            errors.append(f"{item['listing_id']}: listing not found")
            continue

        vendor_id = str(listing.vendor_id)
        if vendor_id not in vendors:
            vendors[vendor_id] = vendor_repo.get(vendor_id)

        variant_id = item.get("variant_id")
        discount = item.get("discount_amount")
        lines.append(
            CartLine(
                listing_id=str(listing.id),
                vendor_id=vendor_id,
                variant_id=variant_id,
                sku=listing.sku_for(variant_id),
                name=listing.display_name(variant_id),
                unit_price=to_decimal(listing.unit_price_for(variant_id)),
                quantity=quantity,
                discount=quantize(discount) if discount is not None else None,
                shipping_profile_id=str(listing.shipping_profile_id) if listing.shipping_profile_id else None,
                weight=listing.weight,
                length=listing.length,
                width=listing.width,
                height=listing.height,
            )
        )
    if errors:
        raise ValidationError({"items": errors})

    return lines, vendors


def group_by_vendor(lines: list[CartLine]) -> "OrderedDict[str, list[CartLine]]":
    """Vendor groups in the order vendors first appear in the cart."""
    groups: OrderedDict[str, list[CartLine]] = OrderedDict()
    for line in lines:
        groups.setdefault(line.vendor_id, []).append(line)
    return groups
