"""Proportional, quantity-bounded refund amounts."""

from decimal import Decimal

import pytest
from protean.exceptions import ValidationError

from marketplace.exceptions import RefundQuantityExceeded
from marketplace.order.order import Order, PaymentStatus, RefundKind, RefundState
from marketplace.order.refund import RefundReceipt, calculate_refund, refund_fingerprint
from marketplace.shared.address import Address


def _order(quantity, line_total, discount=0.0, unit_price=10.0):
    order = Order.create(
        order_number="MKT-1001",
        order_group_id="grp-001",
        vendor_id="ven-001",
        lines=[
            {
                "listing_id": "lst-mug",
                "sku": "AP-MUG",
                "title": "Stoneware Mug",
                "quantity": quantity,
                "unit_price": unit_price,
                "line_subtotal": unit_price * quantity,
                "discount": discount,
                "line_total": line_total,
            }
        ],
        amounts={
            "subtotal": unit_price * quantity,
            "discount": discount,
            "shipping": 0,
            "tax": 0,
            "total": line_total,
        },
        shipping_address=Address(street="1 Main St", city="Austin", postal_code="73301", country="US"),
        customer_email="jane.doe@example.com",
        customer_name="Jane Doe",
    )
    order.place()
    order.mark_paid("pi_001")
    return order


def _apply(order, computation, key):
    return order.apply_refund(
        lines=[line.as_dict() for line in computation.lines],
        amount=computation.amount,
        kind=computation.kind.value,
        request_key=key,
        reason="Chipped",
    )


@pytest.fixture()
def discounted():
    """Three units at $10 with a $3 line discount: line total $27."""
    return _order(quantity=3, line_total=27.0, discount=3.0)


class TestProportionalAmount:
    def test_refund_uses_effective_line_price(self, discounted):
        item = discounted.items[0]
        computation = calculate_refund(discounted, [(str(item.id), 1)])

        assert computation.amount == Decimal("9.00")
        assert computation.kind == RefundKind.PARTIAL

        _apply(discounted, computation, "rf-1")
        assert item.refunded_quantity == 1
        assert item.refundable_quantity == 2
        assert discounted.payment_status == PaymentStatus.PARTIALLY_REFUNDED.value

    def test_closing_refund_takes_the_remainder(self, discounted):
        item = discounted.items[0]
        _apply(discounted, calculate_refund(discounted, [(str(item.id), 1)]), "rf-1")

        computation = calculate_refund(discounted, [(str(item.id), 2)])
        assert computation.amount == Decimal("18.00")
        assert computation.kind == RefundKind.FULL

        _apply(discounted, computation, "rf-2")
        assert discounted.payment_status == PaymentStatus.REFUNDED.value
        assert Decimal(str(discounted.refunded_amount)) == Decimal("27.00")

    def test_repeated_partials_add_up_to_line_total(self):
        order = _order(quantity=3, line_total=10.0, unit_price=10.0 / 3)
        item = order.items[0]
        amounts = []
        for key in ("rf-1", "rf-2", "rf-3"):
            computation = calculate_refund(order, [(str(item.id), 1)])
            amounts.append(computation.amount)
            _apply(order, computation, key)

        assert amounts == [Decimal("3.33"), Decimal("3.33"), Decimal("3.34")]
        assert sum(amounts) == Decimal("10.00")


class TestBounds:
    def test_more_than_refundable_is_rejected(self, discounted):
        item = discounted.items[0]
        with pytest.raises(RefundQuantityExceeded) as exc:
            calculate_refund(discounted, [(str(item.id), 4)])
        assert exc.value.violations == [{"line_item_id": str(item.id), "requested": 4, "refundable": 3}]

    def test_already_refunded_units_count(self, discounted):
        item = discounted.items[0]
        _apply(discounted, calculate_refund(discounted, [(str(item.id), 2)]), "rf-1")
        with pytest.raises(RefundQuantityExceeded):
            calculate_refund(discounted, [(str(item.id), 2)])

    def test_zero_quantity_is_rejected(self, discounted):
        with pytest.raises(RefundQuantityExceeded):
            calculate_refund(discounted, [(str(discounted.items[0].id), 0)])

    def test_unpaid_order_cannot_be_refunded(self):
        order = _order(quantity=1, line_total=10.0)
        order.payment_status = PaymentStatus.PENDING.value
        with pytest.raises(ValidationError):
            calculate_refund(order, [(str(order.items[0].id), 1)])

    def test_empty_request_is_rejected(self, discounted):
        with pytest.raises(ValidationError):
            calculate_refund(discounted, [])


class TestClaims:
    def _claim(self, order, quantity, key):
        computation = calculate_refund(order, [(str(order.items[0].id), quantity)])
        return order.claim_refund(
            lines=[line.as_dict() for line in computation.lines],
            amount=computation.amount,
            kind=computation.kind.value,
            request_key=key,
        )

    def test_claimed_units_are_no_longer_refundable(self, discounted):
        record = self._claim(discounted, 2, "rf-1")

        assert record.state == RefundState.PENDING.value
        with pytest.raises(RefundQuantityExceeded) as exc:
            calculate_refund(discounted, [(str(discounted.items[0].id), 2)])
        assert exc.value.violations[0]["refundable"] == 1
        assert discounted.payment_status == PaymentStatus.PAID.value

    def test_remainder_excludes_claimed_amount(self, discounted):
        self._claim(discounted, 2, "rf-1")
        computation = calculate_refund(discounted, [(str(discounted.items[0].id), 1)])
        assert computation.amount == Decimal("9.00")

    def test_dropped_claim_gives_units_back(self, discounted):
        record = self._claim(discounted, 2, "rf-1")
        discounted.drop_refund_claim(str(record.id))

        assert discounted.items[0].refundable_quantity == 3
        assert not discounted.refunds
        assert discounted.find_refund("rf-1") is None

    def test_confirmed_claim_is_applied(self, discounted):
        record = self._claim(discounted, 3, "rf-1")
        confirmed, movements = discounted.confirm_refund(str(record.id), "re_001")

        assert confirmed.state == RefundState.CONFIRMED.value
        assert confirmed.gateway_refund_id == "re_001"
        assert discounted.payment_status == PaymentStatus.REFUNDED.value
        assert discounted.items[0].pending_refund_quantity == 0
        assert movements == [{"sku": "AP-MUG", "unshipped": 3, "shipped": 0}]

    def test_request_key_is_taken_by_a_claim(self, discounted):
        self._claim(discounted, 1, "rf-1")
        with pytest.raises(ValidationError):
            self._claim(discounted, 1, "rf-1")

    def test_confirmed_refund_cannot_be_dropped(self, discounted):
        record, _ = _apply(discounted, calculate_refund(discounted, [(str(discounted.items[0].id), 1)]), "rf-1")
        with pytest.raises(ValidationError):
            discounted.drop_refund_claim(str(record.id))


class TestFingerprint:
    def test_same_request_same_fingerprint(self):
        first = refund_fingerprint("ord-1", [("a", 1), ("b", 2)], "Chipped", False)
        second = refund_fingerprint("ord-1", [("b", 2), ("a", 1)], " Chipped ", False)
        assert first == second
        assert first.startswith("fp-")
        assert len(first) == 43

    def test_different_request_different_fingerprint(self):
        base = refund_fingerprint("ord-1", [("a", 1)], None, False)
        assert base != refund_fingerprint("ord-1", [("a", 1)], None, True)
        assert base != refund_fingerprint("ord-1", [("a", 2)], None, False)


class TestReceipt:
    def test_receipt_lists_refunded_lines(self, discounted):
        item = discounted.items[0]
        record, _ = _apply(discounted, calculate_refund(discounted, [(str(item.id), 1)]), "rf-1")

        text = RefundReceipt.for_refund(discounted, str(record.id), "Alder & Pine").render()

        assert "REFUND" in text
        assert "MKT-1001" in text
        assert "From: Alder & Pine" in text
        assert "Refund amount: 9.00 USD" in text
        assert "Refunded to date: 9.00 of 27.00 USD" in text
        assert "Reason: Chipped" in text

    def test_unknown_refund(self, discounted):
        with pytest.raises(ValidationError):
            RefundReceipt.for_refund(discounted, "missing", "Alder & Pine")
