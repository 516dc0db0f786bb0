"""Vendor-scoped customer records.

Every vendor keeps its own customer list. At checkout the buyer is matched to
an existing record or a new one is created for the vendor.
"""

from datetime import UTC, datetime

from protean.fields import DateTime, Identifier, String

from marketplace.domain import marketplace
from marketplace.identity.caller import Caller


@marketplace.event(part_of="Customer")
class CustomerRegistered:
    __version__ = "v1"

    customer_id = Identifier(required=True)
    vendor_id = Identifier(required=True)
    identity_id = Identifier()
    email = String(required=True, max_length=254)
    registered_at = DateTime(required=True)


@marketplace.event(part_of="Customer")
class CustomerIdentityLinked:
    __version__ = "v1"

    customer_id = Identifier(required=True)
    identity_id = Identifier(required=True)


@marketplace.aggregate
class Customer:
    vendor_id = Identifier(required=True)
    identity_id = Identifier()
    email = String(required=True, max_length=254)
    name = String(max_length=200)
    created_at = DateTime()

    @classmethod
    def register(cls, vendor_id: str, email: str, identity_id: str | None = None, name: str | None = None):
        now = datetime.now(UTC)
        customer = cls(
            vendor_id=vendor_id,
            identity_id=identity_id,
            email=email.lower(),
            name=name,
            created_at=now,
        )
        customer.raise_(
            CustomerRegistered(
                customer_id=str(customer.id),
                vendor_id=vendor_id,
                identity_id=identity_id,
                email=customer.email,
                registered_at=now,
            )
        )
        return customer

    def link_identity(self, identity_id: str) -> None:
        if self.identity_id:
            return
        self.identity_id = identity_id
        self.raise_(CustomerIdentityLinked(customer_id=str(self.id), identity_id=identity_id))


@marketplace.repository(part_of=Customer)
class CustomerRepository:
    def _first(self, **filters):
        items = self._dao.query.filter(**filters).all().items
        return items[0] if items else None

    def _linkable(self, vendor_id: str, email: str, identity_id: str):
        """This vendor's record for ``email`` that is unlinked or already ours."""
        candidates = self._dao.query.filter(email=email, vendor_id=vendor_id).all().items
        return next((c for c in candidates if not c.identity_id or str(c.identity_id) == str(identity_id)), None)

    def lookup(self, vendor_id: str, caller: Caller, email: str) -> Customer | None:
        """Find the best existing record for a buyer at checkout.

        Signed-in buyers match by identity, then by email, and a record at this
        vendor always wins over one at another vendor. Guests only match by
        email at this vendor.
        """
        email = email.lower()
        if caller.is_guest:
            return self._first(email=email, vendor_id=vendor_id)
        return (
            self._first(identity_id=caller.identity_id, vendor_id=vendor_id)
            or self._linkable(vendor_id, email, caller.identity_id)
            or self._first(identity_id=caller.identity_id)
            or self._first(email=email)
        )


def resolve_customer(repo: CustomerRepository, vendor_id: str, caller: Caller, email: str, name: str | None = None):
    """Return the vendor's customer for this buyer, creating one when needed.

    A match found at another vendor seeds a new record for this vendor, so a
    customer row never spans stores.
    """
    match = repo.lookup(vendor_id, caller, email)
    identity_id = None if caller.is_guest else caller.identity_id

    other_identity = bool(identity_id and match and match.identity_id and str(match.identity_id) != str(identity_id))
    if match is not None and match.vendor_id == vendor_id and not other_identity:
        if identity_id:
            match.link_identity(identity_id)
        return match

    return Customer.register(
        vendor_id=vendor_id,
        email=email,
        identity_id=identity_id,
        name=name or (match.name if match else None),
    )
