"""BDD tests for refunding discounted lines."""

from decimal import Decimal

from protean import current_domain
from pytest_bdd import given, parsers, scenarios, then, when

from marketplace import operations
from marketplace.order.order import Order

scenarios("features/partial_refunds.feature")


def _candle_lines(order_id, quantity):
    line_id = str(current_domain.repository_for(Order).get(order_id).items[0].id)
    return [{"line_item_id": line_id, "quantity": quantity}]


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given("a candle shop selling $10 candles", target_fixture="shop")
def _(open_store):
    return open_store("Wick & Co", "seller-c", "60601", [("WC-CANDLE", "Soy Candle", 10.0, 10)])


@given("the buyer paid for 3 candles with a $3 discount", target_fixture="order_id")
def _(shop, checkout, pay):
    group = checkout([{"listing_id": shop.listings["WC-CANDLE"], "quantity": 3}], discount_amount=3)
    pay(group)
    return group.orders[0].order_id


@given("the shop refunded 1 candle")
def _(shop, order_id):
    operations.process_refund(shop.caller, order_id, _candle_lines(order_id, 1))


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when(parsers.re(r"the shop refunds (?P<quantity>\d+) candles?$"), converters={"quantity": int})
def _(shop, order_id, attempt, quantity):
    attempt(operations.process_refund, shop.caller, order_id, _candle_lines(order_id, quantity))


@when(
    parsers.re(r'the shop refunds (?P<quantity>\d+) candles? with key "(?P<key>[^"]+)"$'),
    converters={"quantity": int},
)
def _(shop, order_id, attempt, quantity, key):
    attempt(
        operations.process_refund,
        shop.caller,
        order_id,
        _candle_lines(order_id, quantity),
        idempotency_key=key,
    )


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse("the refund amount is {amount}"))
def _(outcome, amount):
    assert outcome["result"].amount == Decimal(amount)


@then(parsers.cfparse('the refund is "{kind}"'))
def _(outcome, kind):
    assert outcome["result"].kind == kind


@then(parsers.cfparse('the order payment status is "{payment_status}"'))
def _(order_id, payment_status):
    assert current_domain.repository_for(Order).get(order_id).payment_status == payment_status


@then(parsers.cfparse("the gateway was asked for {count:d} refund"))
def _(gateway, count):
    assert len([c for c in gateway.calls if c["method"] == "refund"]) == count


@then("the refund was already applied")
def _(outcome):
    assert outcome["result"].already_applied is True
