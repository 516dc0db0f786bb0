"""Master fulfillment status of an order group, derived on every read.

There is deliberately no column for it: the value is a pure function of the
vendor orders' own statuses.

- every vendor canceled → canceled
- otherwise canceled vendors are ignored, and of the rest:
  all unfulfilled → unfulfilled; all fulfilled → fulfilled; anything else → partial
"""

from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from marketplace.order.order import FulfillmentStatus, Order


def master_fulfillment_status(statuses: list[str]) -> str:
    if not statuses:
        raise ValueError("An order group has at least one vendor order")

    canceled = FulfillmentStatus.CANCELED.value
    active = [s for s in statuses if s != canceled]
    if not active:
        return canceled
    if all(s == FulfillmentStatus.UNFULFILLED.value for s in active):
        return FulfillmentStatus.UNFULFILLED.value
    if all(s == FulfillmentStatus.FULFILLED.value for s in active):
        return FulfillmentStatus.FULFILLED.value
    return FulfillmentStatus.PARTIAL.value


def aggregate_fulfillment_status(order_group_id: str) -> str:
    orders = current_domain.repository_for(Order).for_group(order_group_id)
    if not orders:
        raise ObjectNotFoundError({"_entity": f"Order group {order_group_id} not found"})
    return master_fulfillment_status([o.vendor_fulfillment_status for o in orders])
