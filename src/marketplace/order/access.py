"""Who may act on a vendor order."""

from protean.utils.globals import current_domain

from marketplace.catalogue.vendor import Vendor
from marketplace.exceptions import AuthorizationError
from marketplace.identity.caller import Caller
from marketplace.order.order import Order


def operates(caller: Caller, order: Order) -> bool:
    vendor = current_domain.repository_for(Vendor).get(order.vendor_id)
    return vendor.is_operated_by(caller.identity_id)


def is_buyer(caller: Caller, order: Order) -> bool:
    if caller.is_guest:
        return False
    if order.buyer_identity_id and str(order.buyer_identity_id) == str(caller.identity_id):
        return True
    return caller.is_authenticated_as(order.customer_email)


def ensure_vendor_operator(caller: Caller, order: Order, action: str) -> None:
    """Only the selling vendor's operator or an admin may ``action`` the order."""
    if caller.is_admin or operates(caller, order):
        return
    raise AuthorizationError({"order_id": [f"Not allowed to {action} order {order.order_number}"]})
