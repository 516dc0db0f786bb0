"""Per-item shipping availability for a destination country."""

from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from marketplace.catalogue.shipping_profile import ShippingProfile
from marketplace.catalogue.vendor import Vendor
from marketplace.checkout.cart import CartLine
from marketplace.exceptions import ShippingUnavailable


def _profile_for(line: CartLine, vendor: Vendor, cache: dict) -> ShippingProfile | None:
    profile_id = line.shipping_profile_id or vendor.default_shipping_profile_id
    if not profile_id:
        return None
    profile_id = str(profile_id)
    if profile_id not in cache:
        try:
            cache[profile_id] = current_domain.repository_for(ShippingProfile).get(profile_id)
        except ObjectNotFoundError:
            cache[profile_id] = None
    return cache[profile_id]


def check_shipping_availability(lines: list[CartLine], country: str, vendors: dict[str, Vendor]) -> None:
    """Raise ``ShippingUnavailable`` naming every item that cannot reach ``country``."""
    cache: dict[str, ShippingProfile | None] = {}
    unshippable = []
    for line in lines:
        profile = _profile_for(line, vendors[line.vendor_id], cache)
        if profile is None:
            unshippable.append({"name": line.name, "reason": "no shipping profile"})
        elif not profile.ships_to(country):
            unshippable.append({"name": line.name, "reason": f"does not ship to {country.upper()}"})
    if unshippable:
        raise ShippingUnavailable(unshippable)
