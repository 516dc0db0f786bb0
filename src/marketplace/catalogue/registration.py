"""Catalogue registration: commands and handlers for vendors, listings and profiles."""

import json

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Boolean, Float, Identifier, String, Text
from protean.utils.globals import current_domain

from marketplace.catalogue.listing import Listing
from marketplace.catalogue.shipping_profile import ShippingProfile
from marketplace.catalogue.vendor import Vendor
from marketplace.domain import marketplace
from marketplace.shared.address import Address


@marketplace.command(part_of="Vendor")
class RegisterVendor:
    name = String(required=True, max_length=200)
    owner_id = Identifier(required=True)
    support_email = String(max_length=254)
    origin = Text()  # JSON address


@marketplace.command(part_of="Listing")
class RegisterListing:
    vendor_id = Identifier(required=True)
    sku = String(required=True, max_length=100)
    title = String(required=True, max_length=255)
    price = Float(required=True)
    weight = Float()
    length = Float()
    width = Float()
    height = Float()
    shipping_profile_id = Identifier()
    variants = Text()  # JSON list of {sku, title, price}


@marketplace.command(part_of="ShippingProfile")
class DefineShippingProfile:
    vendor_id = Identifier(required=True)
    name = String(required=True, max_length=100)
    destinations = Text(required=True)  # JSON list of destination rules
    make_default = Boolean(default=True)


@marketplace.command_handler(part_of=Vendor)
class VendorRegistrationHandler:
    @handle(RegisterVendor)
    def register_vendor(self, command):
        origin = Address(**json.loads(command.origin)) if command.origin else None
        vendor = Vendor.register(
            name=command.name,
            owner_id=command.owner_id,
            origin=origin,
            support_email=command.support_email,
        )
        current_domain.repository_for(Vendor).add(vendor)
        return str(vendor.id)


@marketplace.command_handler(part_of=Listing)
class ListingRegistrationHandler:
    @handle(RegisterListing)
    def register_listing(self, command):
        # Unknown vendors raise ObjectNotFoundError
        current_domain.repository_for(Vendor).get(command.vendor_id)

        physical = {
            key: getattr(command, key)
            for key in ("weight", "length", "width", "height", "shipping_profile_id")
            if getattr(command, key) is not None
        }
        listing = Listing.register(
            vendor_id=command.vendor_id,
            sku=command.sku,
            title=command.title,
            price=command.price,
            variants=json.loads(command.variants) if command.variants else [],
            **physical,
        )
        current_domain.repository_for(Listing).add(listing)
        return str(listing.id)


@marketplace.command_handler(part_of=ShippingProfile)
class ShippingProfileHandler:
    @handle(DefineShippingProfile)
    def define_profile(self, command):
        destinations = json.loads(command.destinations)
        if not destinations:
            raise ValidationError({"destinations": ["A shipping profile needs at least one destination"]})

        profile = ShippingProfile.define(
            vendor_id=command.vendor_id,
            name=command.name,
            destinations=destinations,
        )
        current_domain.repository_for(ShippingProfile).add(profile)

        if command.make_default:
            vendor_repo = current_domain.repository_for(Vendor)
            vendor = vendor_repo.get(command.vendor_id)
            vendor.use_shipping_profile(str(profile.id))
            vendor_repo.add(vendor)

        return str(profile.id)
