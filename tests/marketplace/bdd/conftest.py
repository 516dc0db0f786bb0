"""Shared BDD fixtures and step definitions for the marketplace."""

import pytest
from protean.exceptions import ValidationError
from pytest_bdd import given, parsers, then

from marketplace import operations
from marketplace.exceptions import (
    AuthorizationError,
    CheckoutNotAllowed,
    ExternalServiceError,
    InsufficientStock,
    PaymentNotConfirmed,
    RefundQuantityExceeded,
    ShippingUnavailable,
)

# Map error names used in feature files to exception classes
_ERROR_CLASSES = {
    "AuthorizationError": AuthorizationError,
    "CheckoutNotAllowed": CheckoutNotAllowed,
    "ExternalServiceError": ExternalServiceError,
    "InsufficientStock": InsufficientStock,
    "PaymentNotConfirmed": PaymentNotConfirmed,
    "RefundQuantityExceeded": RefundQuantityExceeded,
    "ShippingUnavailable": ShippingUnavailable,
    "ValidationError": ValidationError,
}


@pytest.fixture()
def outcome():
    """What the last step produced: its result, or the error it raised."""
    return {"result": None, "error": None}


@pytest.fixture()
def attempt(outcome):
    def _attempt(operation, *args, **kwargs):
        try:
            outcome["result"] = operation(*args, **kwargs)
            outcome["error"] = None
        except (ValidationError, ExternalServiceError) as exc:
            outcome["result"] = None
            outcome["error"] = exc
        return outcome["result"]

    return _attempt


@pytest.fixture()
def order_for_vendor(stores):
    """The group's order sold by the named vendor."""

    def _order_for_vendor(group, vendor_name):
        vendor_id = stores[vendor_name].vendor_id
        return next(o.order_id for o in group.orders if o.vendor_id == vendor_id)

    return _order_for_vendor


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given("two vendors with stocked listings", target_fixture="stores")
def _(store_a, store_b):
    return {store_a.name: store_a, store_b.name: store_b}


@given("the buyer checked out a mug, a bowl and a lamp", target_fixture="group")
def _(mixed_group):
    return mixed_group


@given("the order group was paid")
def _(group, pay):
    pay(group)


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse("the step fails with {error_name}"))
def _(outcome, error_name):
    assert isinstance(outcome["error"], _ERROR_CLASSES[error_name]), outcome["error"]


@then(parsers.cfparse('the master status is "{master_status}"'))
def _(group, master_status):
    assert operations.get_aggregate_fulfillment_status(group.order_group_id) == master_status
