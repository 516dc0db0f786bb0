"""Who may buy what."""

from marketplace.catalogue.vendor import Vendor
from marketplace.checkout.cart import CartLine
from marketplace.exceptions import CheckoutNotAllowed
from marketplace.identity.caller import Caller


def check_purchase_permission(caller: Caller, lines: list[CartLine], vendors: dict[str, Vendor]) -> None:
    """Admins cannot check out and sellers cannot buy from their own store.

    Guests and customers may buy anything.
    """
    if caller.is_admin:
        raise CheckoutNotAllowed([line.name for line in lines], reason="Administrators cannot place orders")

    own_items = [line.name for line in lines if vendors[line.vendor_id].is_operated_by(caller.identity_id)]
    if own_items:
        raise CheckoutNotAllowed(own_items, reason="Cannot purchase from your own store")
