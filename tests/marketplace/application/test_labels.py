"""Buying shipping labels with the rate quoted at checkout."""

import pytest
from protean import current_domain
from protean.exceptions import ValidationError

from marketplace import operations
from marketplace.exceptions import PaymentNotConfirmed, ShippingUnavailable
from marketplace.order.order import Order


@pytest.fixture()
def express_group(store_a, store_b, checkout):
    return checkout(
        [
            {"listing_id": store_a.listings["AP-MUG"], "quantity": 1},
            {"listing_id": store_b.listings["BG-LAMP"], "quantity": 1},
        ],
        service="Express",
    )


def _order(order_id) -> Order:
    return current_domain.repository_for(Order).get(order_id)


class TestPurchase:
    def test_label_bought_with_stored_rate(self, express_group, store_a, pay):
        pay(express_group)
        order_id = express_group.orders[0].order_id
        rate_id = _order(order_id).shipping_rate.rate_id

        outcome = operations.purchase_shipping_label(store_a.caller, order_id)

        assert outcome.requoted is False
        assert outcome.rate_id == rate_id
        assert outcome.tracking_number.startswith("UPS")
        assert outcome.label_url.endswith(f"{rate_id}.pdf")

        rate = _order(order_id).shipping_rate
        assert rate.label_url == outcome.label_url
        assert rate.tracking_number == outcome.tracking_number

    def test_second_label_is_rejected(self, express_group, store_a, pay):
        pay(express_group)
        order_id = express_group.orders[0].order_id
        operations.purchase_shipping_label(store_a.caller, order_id)

        with pytest.raises(ValidationError):
            operations.purchase_shipping_label(store_a.caller, order_id)

    def test_label_needs_payment(self, express_group, store_a):
        with pytest.raises(PaymentNotConfirmed):
            operations.purchase_shipping_label(store_a.caller, express_group.orders[0].order_id)

    def test_label_needs_a_quoted_rate(self, paid_group, store_a):
        with pytest.raises(ValidationError):
            operations.purchase_shipping_label(store_a.caller, paid_group.orders[0].order_id)


class TestExpiredRate:
    def test_expired_rate_is_requoted(self, express_group, store_a, pay, rate_provider):
        pay(express_group)
        order_id = express_group.orders[0].order_id
        old_rate_id = _order(order_id).shipping_rate.rate_id

        rate_provider.expire(old_rate_id)
        rate_provider.set_rates(
            [
                {"carrier": "USPS", "service": "Standard", "price": "8.00"},
                {"carrier": "UPS", "service": "Express", "price": "21.00"},
            ],
            origin_postal_code=store_a.postal_code,
        )

        outcome = operations.purchase_shipping_label(store_a.caller, order_id)

        assert outcome.requoted is True
        assert outcome.rate_id != old_rate_id
        assert float(outcome.price_drift) == pytest.approx(3.0)

        order = _order(order_id)
        assert order.shipping_rate.rate_id == outcome.rate_id
        assert order.shipping_amount == pytest.approx(18.0)
        assert "rate_requoted" in {a.kind for a in order.activities}

    def test_strict_policy_refuses_a_different_service(self, express_group, store_a, pay, rate_provider, monkeypatch):
        monkeypatch.setenv("UNMATCHED_SERVICE_POLICY", "strict")
        pay(express_group)
        order_id = express_group.orders[0].order_id

        rate_provider.expire(_order(order_id).shipping_rate.rate_id)
        rate_provider.set_rates(
            [{"carrier": "USPS", "service": "Standard", "price": "8.00"}],
            origin_postal_code=store_a.postal_code,
        )

        with pytest.raises(ShippingUnavailable):
            operations.purchase_shipping_label(store_a.caller, order_id)
        assert _order(order_id).shipping_rate.label_url is None

    def test_cheapest_policy_falls_back_to_any_service(self, express_group, store_a, pay, rate_provider):
        pay(express_group)
        order_id = express_group.orders[0].order_id

        rate_provider.expire(_order(order_id).shipping_rate.rate_id)
        rate_provider.set_rates(
            [
                {"carrier": "USPS", "service": "Standard", "price": "8.00"},
                {"carrier": "FedEx", "service": "Ground", "price": "9.50"},
            ],
            origin_postal_code=store_a.postal_code,
        )

        outcome = operations.purchase_shipping_label(store_a.caller, order_id)

        assert outcome.requoted is True
        assert _order(order_id).shipping_rate.service == "Standard"
        assert float(outcome.price_drift) == pytest.approx(-10.0)
