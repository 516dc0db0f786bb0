"""Marking vendor orders shipped: payment gating, idempotency, tokens and notices."""

import pytest
from protean import current_domain

from marketplace import operations
from marketplace.exceptions import AuthorizationError, PaymentNotConfirmed
from marketplace.order.order import FulfillmentStatus, Order, OrderStatus
from marketplace.tracking.token import TRACKING_TOKEN_LENGTH


def _order(order_id) -> Order:
    return current_domain.repository_for(Order).get(order_id)


def _line(order_id, sku):
    return next(i for i in _order(order_id).items if i.sku == sku)


class TestPaymentGate:
    def test_shipping_before_payment_is_rejected(self, mixed_group, store_a):
        order_id = mixed_group.orders[0].order_id
        with pytest.raises(PaymentNotConfirmed):
            operations.mark_vendor_shipped(store_a.caller, order_id, "UPS", "1Z001")

        order = _order(order_id)
        assert not order.fulfillments
        assert order.tracking_token is None

    def test_only_the_selling_vendor_may_ship(self, paid_group, store_b):
        with pytest.raises(AuthorizationError):
            operations.mark_vendor_shipped(store_b.caller, paid_group.orders[0].order_id, "UPS", "1Z001")


class TestShipment:
    def test_first_shipment_issues_group_token(self, paid_group, store_a):
        a_id, b_id = (o.order_id for o in paid_group.orders)
        result = operations.mark_vendor_shipped(store_a.caller, a_id, "UPS", "1Z001")

        assert result.duplicate is False
        assert result.token_issued is True
        assert len(result.tracking_token) == TRACKING_TOKEN_LENGTH
        assert result.vendor_fulfillment_status == FulfillmentStatus.FULFILLED.value
        assert result.order_status == OrderStatus.COMPLETED.value
        assert result.master_status == "partial"
        assert _order(b_id).tracking_token == result.tracking_token

    def test_shipped_units_leave_stock(self, paid_group, store_a):
        operations.mark_vendor_shipped(store_a.caller, paid_group.orders[0].order_id, "UPS", "1Z001")

        mug = next(r for r in operations.stock_levels(store_a.vendor_id) if r["sku"] == "AP-MUG")
        assert mug["on_hand"] == 9
        assert mug["reserved"] == 0
        assert mug["available"] == 9

    def test_second_vendor_reuses_token_and_fulfills_group(self, paid_group, store_a, store_b):
        a_id, b_id = (o.order_id for o in paid_group.orders)
        first = operations.mark_vendor_shipped(store_a.caller, a_id, "UPS", "1Z001")
        second = operations.mark_vendor_shipped(store_b.caller, b_id, "FedEx", "FX001")

        assert second.token_issued is False
        assert second.tracking_token == first.tracking_token
        assert second.master_status == "fulfilled"
        assert operations.get_aggregate_fulfillment_status(paid_group.order_group_id) == "fulfilled"

    def test_resubmission_is_a_no_op(self, paid_group, store_a, notifier):
        order_id = paid_group.orders[0].order_id
        first = operations.mark_vendor_shipped(store_a.caller, order_id, "UPS", "1Z001")
        again = operations.mark_vendor_shipped(store_a.caller, order_id, "UPS", "1Z001")

        assert again.duplicate is True
        assert again.fulfillment_id == first.fulfillment_id
        assert len(_order(order_id).fulfillments) == 1
        assert len(notifier.sent) == 2  # payment received + first shipment

    def test_partial_shipment_by_line(self, paid_group, store_a):
        order_id = paid_group.orders[0].order_id
        mug = _line(order_id, "AP-MUG")

        result = operations.mark_vendor_shipped(
            store_a.caller,
            order_id,
            "UPS",
            "1Z001",
            covered_lines=[{"line_item_id": str(mug.id), "quantity": 1}],
        )

        assert result.vendor_fulfillment_status == FulfillmentStatus.PARTIAL.value
        assert result.order_status == OrderStatus.OPEN.value
        assert _line(order_id, "AP-BOWL").outstanding_quantity == 1


class TestNotifications:
    def test_first_then_fulfilled(self, paid_group, store_a, store_b, notifier):
        a_id, b_id = (o.order_id for o in paid_group.orders)
        operations.mark_vendor_shipped(store_a.caller, a_id, "UPS", "1Z001")
        operations.mark_vendor_shipped(store_b.caller, b_id, "FedEx", "FX001")

        first = notifier.sent_of_kind("first_shipment")
        assert len(first) == 1
        assert first[0]["recipient"] == "jane.doe@example.com"
        assert first[0]["payload"]["tracking_number"] == "1Z001"
        assert len(notifier.sent_of_kind("group_fulfilled")) == 1

    def test_additional_shipment(self, paid_group, store_a, notifier):
        order_id = paid_group.orders[0].order_id
        mug = _line(order_id, "AP-MUG")
        operations.mark_vendor_shipped(
            store_a.caller, order_id, "UPS", "1Z001", covered_lines=[{"line_item_id": str(mug.id), "quantity": 1}]
        )
        operations.mark_vendor_shipped(store_a.caller, order_id, "UPS", "1Z002")

        assert len(notifier.sent_of_kind("first_shipment")) == 1
        assert len(notifier.sent_of_kind("additional_shipment")) == 1

    def test_parcel_shared_by_vendors_is_announced_once(self, paid_group, store_a, store_b, notifier):
        a_id, b_id = (o.order_id for o in paid_group.orders)
        operations.mark_vendor_shipped(store_a.caller, a_id, "UPS", "1ZSHARED")
        result = operations.mark_vendor_shipped(store_b.caller, b_id, "UPS", "1ZSHARED")

        assert result.notification is None
        assert len(notifier.sent) == 2  # payment received + first shipment

    def test_delivery_failure_does_not_fail_shipment(self, paid_group, store_a, notifier):
        notifier.configure(should_raise=True)
        order_id = paid_group.orders[0].order_id

        result = operations.mark_vendor_shipped(store_a.caller, order_id, "UPS", "1Z001")

        assert result.duplicate is False
        assert len(_order(order_id).fulfillments) == 1
