"""Inventory read model: current stock per unit, derived from the ledger."""

from protean.utils.globals import current_domain

from marketplace.inventory.stock import StockUnit


def stock_levels(vendor_id: str | None = None) -> list[dict]:
    repo = current_domain.repository_for(StockUnit)
    if vendor_id is not None:
        units = repo.for_vendor(vendor_id)
    else:
        units = repo.all_units()

    return [
        {
            "sku": unit.sku,
            "listing_id": str(unit.listing_id),
            "variant_id": str(unit.variant_id) if unit.variant_id else None,
            "vendor_id": str(unit.vendor_id),
            "on_hand": unit.on_hand,
            "reserved": unit.reserved,
            "available": unit.available,
        }
        for unit in units
    ]
