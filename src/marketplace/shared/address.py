"""Postal address value object shared by vendors (origin) and orders (snapshots)."""

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import String

from marketplace.domain import marketplace


@marketplace.value_object
class Address:
    name = String(max_length=200)
    street = String(required=True, max_length=255)
    city = String(required=True, max_length=100)
    state = String(max_length=100)
    postal_code = String(required=True, max_length=20)
    country = String(required=True, max_length=2)

    @invariant.post
    def country_must_be_iso_alpha2(self):
        if not self.country or len(self.country) != 2 or not self.country.isalpha():
            raise ValidationError({"country": [f"Country must be a two-letter ISO code, got '{self.country}'"]})

    def as_dict(self) -> dict:
        return {
            "name": self.name,
            "street": self.street,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "country": self.country,
        }
