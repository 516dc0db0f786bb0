"""Matching buyers to vendor-scoped customer records at checkout."""

from protean import current_domain

from marketplace.identity.caller import Caller, Role
from marketplace.identity.customer import Customer
from marketplace.order.order import Order


def _customer_for(group, vendor_id) -> Customer:
    order_id = next(o.order_id for o in group.orders if o.vendor_id == vendor_id)
    order = current_domain.repository_for(Order).get(order_id)
    return current_domain.repository_for(Customer).get(order.customer_id)


class TestCustomerResolution:
    def test_repeat_buyer_keeps_one_record_per_vendor(self, store_a, checkout, buyer):
        item = [{"listing_id": store_a.listings["AP-MUG"], "quantity": 1}]
        first = checkout(item, caller=buyer)
        second = checkout(item, caller=buyer)

        assert _customer_for(first, store_a.vendor_id).id == _customer_for(second, store_a.vendor_id).id

    def test_each_vendor_gets_its_own_record(self, mixed_group, store_a, store_b):
        customer_a = _customer_for(mixed_group, store_a.vendor_id)
        customer_b = _customer_for(mixed_group, store_b.vendor_id)

        assert customer_a.id != customer_b.id
        assert customer_a.vendor_id == store_a.vendor_id
        assert customer_b.vendor_id == store_b.vendor_id

    def test_guest_matched_by_email_at_the_vendor(self, store_a, checkout):
        item = [{"listing_id": store_a.listings["AP-MUG"], "quantity": 1}]
        first = checkout(item, customer_email="Guest@Example.com")
        second = checkout(item, customer_email="guest@example.com")

        customer = _customer_for(second, store_a.vendor_id)
        assert customer.id == _customer_for(first, store_a.vendor_id).id
        assert customer.email == "guest@example.com"
        assert customer.identity_id is None

    def test_guest_record_linked_when_buyer_signs_in(self, store_a, checkout, buyer):
        item = [{"listing_id": store_a.listings["AP-MUG"], "quantity": 1}]
        guest = checkout(item)
        signed_in = checkout(item, caller=buyer)

        customer = _customer_for(signed_in, store_a.vendor_id)
        assert customer.id == _customer_for(guest, store_a.vendor_id).id
        assert customer.identity_id == buyer.identity_id

    def test_record_seeded_from_another_vendor(self, store_a, store_b, checkout, buyer):
        checkout([{"listing_id": store_a.listings["AP-MUG"], "quantity": 1}], caller=buyer, customer_name="J. Doe")
        later = checkout(
            [{"listing_id": store_b.listings["BG-LAMP"], "quantity": 1}], caller=buyer, customer_name=None
        )

        customer = _customer_for(later, store_b.vendor_id)
        assert customer.vendor_id == store_b.vendor_id
        assert customer.identity_id == buyer.identity_id
        assert customer.name == "J. Doe"

    def test_guest_is_not_matched_across_vendors(self, store_a, store_b, checkout):
        checkout([{"listing_id": store_a.listings["AP-MUG"], "quantity": 1}], customer_email="guest@example.com")
        later = checkout([{"listing_id": store_b.listings["BG-LAMP"], "quantity": 1}], customer_email="guest@example.com")

        customer = _customer_for(later, store_b.vendor_id)
        assert customer.vendor_id == store_b.vendor_id
        assert current_domain.repository_for(Customer).lookup(
            store_b.vendor_id, Caller(role=Role.GUEST.value), "guest@example.com"
        ).id == customer.id

    def test_signed_in_buyer_reuses_guest_record_at_this_vendor(self, store_a, store_b, checkout, buyer):
        checkout([{"listing_id": store_b.listings["BG-LAMP"], "quantity": 1}])
        guest = checkout([{"listing_id": store_a.listings["AP-MUG"], "quantity": 1}])
        signed_in = checkout([{"listing_id": store_a.listings["AP-MUG"], "quantity": 1}], caller=buyer)

        customer = _customer_for(signed_in, store_a.vendor_id)
        assert customer.id == _customer_for(guest, store_a.vendor_id).id
        assert customer.identity_id == buyer.identity_id
        records = current_domain.repository_for(Customer)._dao.query.filter(vendor_id=store_a.vendor_id).all().items
        assert len(records) == 1

    def test_signed_in_buyer_with_another_email_keeps_their_record(self, store_a, checkout, buyer):
        item = [{"listing_id": store_a.listings["AP-MUG"], "quantity": 1}]
        first = checkout(item, caller=buyer)
        second = checkout(item, caller=buyer, customer_email="jane@work.example.com")

        assert _customer_for(second, store_a.vendor_id).id == _customer_for(first, store_a.vendor_id).id

    def test_record_linked_to_someone_else_is_not_taken(self, store_a, checkout, buyer):
        item = [{"listing_id": store_a.listings["AP-MUG"], "quantity": 1}]
        other = Caller(identity_id="buyer-002", role=Role.CUSTOMER.value, email="jane.doe@example.com")
        first = checkout(item, caller=other)
        second = checkout(item, caller=buyer)

        customer = _customer_for(second, store_a.vendor_id)
        assert customer.id != _customer_for(first, store_a.vendor_id).id
        assert customer.identity_id == buyer.identity_id
