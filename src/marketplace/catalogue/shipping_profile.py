"""Shipping profiles: where a vendor ships and what a manual rate costs.

A profile holds destination rules. A rule targets one country or
``everywhere_else``; excluded rules block a country even when an
``everywhere_else`` rule would otherwise cover it.
"""

from decimal import Decimal
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import Boolean, Float, HasMany, Identifier, Integer, String

from marketplace.domain import marketplace
from marketplace.shared.money import quantize, to_decimal


class DestinationType(Enum):
    COUNTRY = "country"
    EVERYWHERE_ELSE = "everywhere_else"


@marketplace.event(part_of="ShippingProfile")
class ShippingProfileDefined:
    __version__ = "v1"

    profile_id = Identifier(required=True)
    vendor_id = Identifier(required=True)
    name = String(required=True, max_length=100)
    destination_count = Integer()


@marketplace.entity(part_of="ShippingProfile")
class ShippingDestination:
    destination_type = String(choices=DestinationType, default=DestinationType.COUNTRY.value)
    country_code = String(max_length=2)
    excluded = Boolean(default=False)
    first_item_price = Float(default=0.0, min_value=0.0)
    additional_item_price = Float(default=0.0, min_value=0.0)
    free_shipping = Boolean(default=False)

    def matches_country(self, country: str) -> bool:
        return (
            self.destination_type == DestinationType.COUNTRY.value
            and (self.country_code or "").upper() == country.upper()
        )

    @property
    def is_everywhere_else(self) -> bool:
        return self.destination_type == DestinationType.EVERYWHERE_ELSE.value


@marketplace.aggregate
class ShippingProfile:
    vendor_id = Identifier(required=True)
    name = String(required=True, max_length=100)
    destinations = HasMany(ShippingDestination)

    @classmethod
    def define(cls, vendor_id: str, name: str, destinations: list[dict]):
        profile = cls(vendor_id=vendor_id, name=name)
        for data in destinations:
            destination = ShippingDestination(**data)
            if destination.destination_type == DestinationType.COUNTRY.value and not destination.country_code:
                raise ValidationError({"destinations": ["Country destinations need a country code"]})
            profile.add_destinations(destination)
        profile.raise_(
            ShippingProfileDefined(
                profile_id=str(profile.id),
                vendor_id=vendor_id,
                name=name,
                destination_count=len(destinations),
            )
        )
        return profile

    def destination_for(self, country: str) -> ShippingDestination | None:
        """The rule that applies to ``country``, or None when it cannot ship there."""
        destinations = self.destinations or []
        exact = [d for d in destinations if d.matches_country(country)]
        if any(d.excluded for d in exact):
            return None
        if exact:
            return exact[0]
        return next((d for d in destinations if d.is_everywhere_else and not d.excluded), None)

    def ships_to(self, country: str) -> bool:
        return self.destination_for(country) is not None

    def manual_rate(self, country: str, item_count: int) -> Decimal | None:
        """First item price plus the additional price for every further item."""
        destination = self.destination_for(country)
        if destination is None:
            return None
        if destination.free_shipping or item_count <= 0:
            return quantize(0)
        first = to_decimal(destination.first_item_price)
        additional = to_decimal(destination.additional_item_price)
        return quantize(first + additional * (item_count - 1))
