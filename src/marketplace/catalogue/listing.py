"""Listing aggregate: a sellable item with optional variants and physical data.

Weights are in ounces and dimensions in inches; all four are optional; a
listing without them simply cannot contribute to a measured parcel.
"""

from datetime import UTC, datetime

from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, HasMany, Identifier, String

from marketplace.domain import marketplace


@marketplace.event(part_of="Listing")
class ListingRegistered:
    __version__ = "v1"

    listing_id = Identifier(required=True)
    vendor_id = Identifier(required=True)
    sku = String(required=True, max_length=100)
    title = String(required=True, max_length=255)
    price = Float(required=True)


@marketplace.entity(part_of="Listing")
class ListingVariant:
    sku = String(required=True, max_length=100)
    title = String(required=True, max_length=255)
    price = Float(min_value=0.0)


@marketplace.aggregate
class Listing:
    vendor_id = Identifier(required=True)
    sku = String(required=True, max_length=100)
    title = String(required=True, max_length=255)
    price = Float(required=True, min_value=0.0)
    weight = Float(min_value=0.0)
    length = Float(min_value=0.0)
    width = Float(min_value=0.0)
    height = Float(min_value=0.0)
    shipping_profile_id = Identifier()
    variants = HasMany(ListingVariant)
    created_at = DateTime()

    @classmethod
    def register(cls, vendor_id, sku, title, price, variants: list[dict] | None = None, **physical):
        listing = cls(
            vendor_id=vendor_id,
            sku=sku,
            title=title,
            price=price,
            created_at=datetime.now(UTC),
            **physical,
        )
        for variant in variants or []:
            listing.add_variants(ListingVariant(**variant))
        listing.raise_(
            ListingRegistered(
                listing_id=str(listing.id),
                vendor_id=vendor_id,
                sku=sku,
                title=title,
                price=price,
            )
        )
        return listing

    def variant(self, variant_id: str | None) -> ListingVariant | None:
        if variant_id is None:
            return None
        variant = next((v for v in self.variants or [] if str(v.id) == str(variant_id)), None)
        if variant is None:
            raise ValidationError({"variant_id": [f"Variant {variant_id} does not belong to listing {self.title}"]})
        return variant

    def sku_for(self, variant_id: str | None) -> str:
        variant = self.variant(variant_id)
        return variant.sku if variant else self.sku

    def unit_price_for(self, variant_id: str | None) -> float:
        variant = self.variant(variant_id)
        if variant is not None and variant.price is not None:
            return variant.price
        return self.price

    def display_name(self, variant_id: str | None = None) -> str:
        variant = self.variant(variant_id)
        return f"{self.title} ({variant.title})" if variant else self.title

    @property
    def is_measured(self) -> bool:
        return None not in (self.weight, self.length, self.width, self.height)
