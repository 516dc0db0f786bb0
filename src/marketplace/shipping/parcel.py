"""Parcel envelope for a vendor shipment.

Items ship side by side and stack: the envelope takes the largest length and
width, and sums height and weight over every unit. Items without complete
physical data are left out; a shipment with no measurable item has no parcel.
"""

from marketplace.exceptions import ShippingUnavailable
from marketplace.shipping.provider.port import Parcel

MIN_PARCEL_DIMENSION = 1.0  # inches
MIN_PARCEL_WEIGHT = 0.1  # ounces
MAX_PARCEL_DIMENSION_IN = 108.0
MAX_PARCEL_WEIGHT_OZ = 1120.0

_PHYSICAL_KEYS = ("weight", "length", "width", "height")


def _is_measured(item: dict) -> bool:
    return all(item.get(key) is not None for key in _PHYSICAL_KEYS)


def build_parcel(items: list[dict]) -> Parcel | None:
    """Envelope for ``items`` (dicts with weight, length, width, height, quantity)."""
    measured = [item for item in items if _is_measured(item)]
    if not measured:
        return None

    length = max(float(item["length"]) for item in measured)
    width = max(float(item["width"]) for item in measured)
    height = sum(float(item["height"]) * int(item.get("quantity", 1)) for item in measured)
    weight = sum(float(item["weight"]) * int(item.get("quantity", 1)) for item in measured)

    return Parcel(
        length=max(length, MIN_PARCEL_DIMENSION),
        width=max(width, MIN_PARCEL_DIMENSION),
        height=max(height, MIN_PARCEL_DIMENSION),
        weight=round(max(weight, MIN_PARCEL_WEIGHT), 2),
    )


def ensure_within_limits(parcel: Parcel, vendor_name: str) -> None:
    problems = []
    if parcel.weight > MAX_PARCEL_WEIGHT_OZ:
        problems.append(f"parcel weighs {parcel.weight} oz, the limit is {MAX_PARCEL_WEIGHT_OZ:g} oz")
    longest = max(parcel.length, parcel.width, parcel.height)
    if longest > MAX_PARCEL_DIMENSION_IN:
        problems.append(f"parcel is {longest:g} in long, the limit is {MAX_PARCEL_DIMENSION_IN:g} in")
    if problems:
        raise ShippingUnavailable([{"name": vendor_name, "reason": problem} for problem in problems])
