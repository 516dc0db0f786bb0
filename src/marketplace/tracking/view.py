"""Customer-facing tracking view, looked up by the order group's token."""

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from marketplace.catalogue.vendor import Vendor
from marketplace.order.order import Order
from marketplace.order.status import master_fulfillment_status

logger = structlog.get_logger(__name__)


def _tracking_info(order: Order) -> list[dict]:
    return [
        {
            "carrier": f.carrier,
            "tracking_number": f.tracking_number,
            "tracking_url": f.tracking_url,
            "shipped_at": f.shipped_at.isoformat() if f.shipped_at else None,
            "quantities": f.covered(),
        }
        for f in sorted(order.fulfillments or [], key=lambda f: f.shipped_at)
    ]


def get_tracking_view(tracking_token: str) -> dict:
    """Per-vendor shipment status for every order sharing ``tracking_token``."""
    orders = current_domain.repository_for(Order).for_tracking_token(tracking_token) if tracking_token else []
    if not orders:
        logger.info("Unknown tracking token requested")
        raise ObjectNotFoundError({"_entity": "No orders found for this tracking link"})

    vendor_repo = current_domain.repository_for(Vendor)
    vendors = []
    for order in orders:
        vendor = vendor_repo.get(order.vendor_id)
        vendors.append(
            {
                "vendor_id": str(order.vendor_id),
                "vendor_name": vendor.name,
                "order_number": order.order_number,
                "status": order.vendor_fulfillment_status,
                "tracking_info": _tracking_info(order),
            }
        )

    return {
        "order_group_id": str(orders[0].order_group_id),
        "master_status": master_fulfillment_status([o.vendor_fulfillment_status for o in orders]),
        "vendors": vendors,
    }
