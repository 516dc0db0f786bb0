"""Stock receiving and reconciliation: commands and handler."""

from protean import handle
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain

from marketplace.catalogue.listing import Listing
from marketplace.domain import marketplace
from marketplace.inventory.stock import StockUnit


@marketplace.command(part_of="StockUnit")
class ReceiveStock:
    """Book inbound units for a listing (or one of its variants)."""

    listing_id = Identifier(required=True)
    variant_id = Identifier()
    quantity = Integer(required=True, min_value=1)


@marketplace.command(part_of="StockUnit")
class ReconcileStock:
    sku = String(required=True, max_length=100)


@marketplace.command_handler(part_of=StockUnit)
class StockReceivingHandler:
    @handle(ReceiveStock)
    def receive_stock(self, command):
        listing = current_domain.repository_for(Listing).get(command.listing_id)
        sku = listing.sku_for(command.variant_id)

        repo = current_domain.repository_for(StockUnit)
        unit = repo.find_by_sku(sku)
        if unit is None:
            unit = StockUnit.open(
                sku=sku,
                listing_id=str(listing.id),
                variant_id=command.variant_id,
                vendor_id=str(listing.vendor_id),
            )
        unit.receive(command.quantity)
        repo.add(unit)
        return str(unit.id)

    @handle(ReconcileStock)
    def reconcile_stock(self, command):
        repo = current_domain.repository_for(StockUnit)
        unit = repo.find_by_sku(command.sku)
        if unit is None:
            return {}
        drift = unit.reconcile()
        repo.add(unit)
        return drift
