"""Vendor aggregate: an independent seller sharing the marketplace checkout."""

from datetime import UTC, datetime

from protean.fields import DateTime, Identifier, String, ValueObject

from marketplace.domain import marketplace
from marketplace.shared.address import Address


@marketplace.event(part_of="Vendor")
class VendorRegistered:
    __version__ = "v1"

    vendor_id = Identifier(required=True)
    name = String(required=True, max_length=200)
    owner_id = Identifier(required=True)
    registered_at = DateTime(required=True)


@marketplace.aggregate
class Vendor:
    name = String(required=True, max_length=200)
    owner_id = Identifier(required=True)
    support_email = String(max_length=254)
    origin = ValueObject(Address)
    default_shipping_profile_id = Identifier()
    created_at = DateTime()

    @classmethod
    def register(cls, name, owner_id, origin: Address | None = None, support_email=None):
        now = datetime.now(UTC)
        vendor = cls(
            name=name,
            owner_id=owner_id,
            origin=origin,
            support_email=support_email,
            created_at=now,
        )
        vendor.raise_(
            VendorRegistered(
                vendor_id=str(vendor.id),
                name=name,
                owner_id=owner_id,
                registered_at=now,
            )
        )
        return vendor

    def is_operated_by(self, identity_id: str | None) -> bool:
        return identity_id is not None and str(self.owner_id) == str(identity_id)

    def use_shipping_profile(self, profile_id: str) -> None:
        self.default_shipping_profile_id = profile_id
