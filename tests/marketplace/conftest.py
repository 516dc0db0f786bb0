"""Fixtures shared by every marketplace test.

Each test runs inside a pushed domain context against the in-memory
providers, with fresh fakes for the payment gateway, rate provider and
notifier, and with post-commit tasks executed inline so their effects can be
asserted right after the operation returns.
"""

import json
import os
from concurrent.futures import Executor, Future
from dataclasses import dataclass, field
from uuid import uuid4

import pytest
from protean import current_domain

from marketplace.catalogue.registration import DefineShippingProfile, RegisterListing, RegisterVendor
from marketplace.identity.caller import Caller, Role
from marketplace.inventory.receiving import ReceiveStock
from marketplace.payments.gateway import get_gateway, reset_gateway
from marketplace.shipping.provider import get_rate_provider, reset_rate_provider
from marketplace.tracking.dispatch import reset_executor, set_executor
from marketplace.tracking.notifier import get_notifier, reset_notifier

US_ADDRESS = {
    "name": "Jane Doe",
    "street": "1 Main St",
    "city": "Austin",
    "state": "TX",
    "postal_code": "73301",
    "country": "US",
}


class InlineExecutor(Executor):
    """Runs submitted work immediately on the calling thread."""

    def submit(self, fn, /, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future


@pytest.fixture(scope="session")
def _marketplace_domain(request):
    """Initialize the marketplace domain once per session."""
    os.environ["PROTEAN_ENV"] = request.config.option.env

    from marketplace.domain import marketplace

    marketplace.init()
    return marketplace


@pytest.fixture(scope="session", autouse=True)
def setup_db(_marketplace_domain):
    from marketplace.utils.db import drop_db, setup_db

    setup_db(_marketplace_domain)

    yield

    drop_db(_marketplace_domain)


@pytest.fixture(autouse=True)
def run_around_tests(_marketplace_domain):
    """Push domain context before each test, cleanup after."""
    reset_gateway()
    reset_rate_provider()
    reset_notifier()
    set_executor(InlineExecutor())

    ctx = _marketplace_domain.domain_context()
    ctx.push()

    yield

    for _, provider in current_domain.providers.items():
        provider._data_reset()

    for _, broker in current_domain.brokers.items():
        broker._data_reset()

    current_domain.event_store.store._data_reset()
    ctx.pop()
    reset_executor()


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------
@pytest.fixture()
def gateway():
    return get_gateway()


@pytest.fixture()
def rate_provider():
    return get_rate_provider()


@pytest.fixture()
def notifier():
    return get_notifier()


# ---------------------------------------------------------------------------
# Storefronts
# ---------------------------------------------------------------------------
@dataclass
class Store:
    vendor_id: str
    owner_id: str
    name: str
    postal_code: str
    listings: dict[str, str] = field(default_factory=dict)

    @property
    def caller(self) -> Caller:
        return Caller(identity_id=self.owner_id, role=Role.SELLER.value, email=f"{self.owner_id}@example.com")


def _open_store(name, owner_id, postal_code, listings, destinations=None):
    """Register a vendor with a default profile and stocked listings.

    ``listings`` holds ``(sku, title, price, stock)`` tuples.
    """
    vendor_id = current_domain.process(
        RegisterVendor(
            name=name,
            owner_id=owner_id,
            support_email=f"support@{owner_id}.example.com",
            origin=json.dumps(
                {"street": "12 Mill Lane", "city": "Portland", "postal_code": postal_code, "country": "US"}
            ),
        ),
        asynchronous=False,
    )
    current_domain.process(
        DefineShippingProfile(
            vendor_id=vendor_id,
            name="Domestic",
            destinations=json.dumps(
                destinations
                or [{"destination_type": "country", "country_code": "US", "first_item_price": 5.0}]
            ),
        ),
        asynchronous=False,
    )

    store = Store(vendor_id=vendor_id, owner_id=owner_id, name=name, postal_code=postal_code)
    for sku, title, price, stock in listings:
        listing_id = current_domain.process(
            RegisterListing(
                vendor_id=vendor_id,
                sku=sku,
                title=title,
                price=price,
                weight=16.0,
                length=10.0,
                width=8.0,
                height=4.0,
            ),
            asynchronous=False,
        )
        if stock:
            current_domain.process(ReceiveStock(listing_id=listing_id, quantity=stock), asynchronous=False)
        store.listings[sku] = listing_id
    return store


@pytest.fixture()
def store_a():
    return _open_store(
        "Alder & Pine",
        "seller-a",
        "97201",
        [("AP-MUG", "Stoneware Mug", 30.0, 10), ("AP-BOWL", "Serving Bowl", 20.0, 10)],
    )


@pytest.fixture()
def store_b():
    return _open_store("Birch Goods", "seller-b", "10001", [("BG-LAMP", "Desk Lamp", 50.0, 10)])


@pytest.fixture()
def buyer():
    return Caller(identity_id="buyer-001", role=Role.CUSTOMER.value, email="jane.doe@example.com", name="Jane Doe")


def _signed_payment_event(gateway, order_group_id, payment_intent_id, amount, fee=0.0, event_id=None):
    """A gateway payload and its signature for a successful payment."""
    payload = json.dumps(
        {
            "id": event_id or f"evt_{uuid4().hex[:16]}",
            "type": "payment_intent.succeeded",
            "data": {
                "payment_intent": payment_intent_id,
                "amount": amount,
                "fee": fee,
                "currency": "USD",
                "metadata": {"order_group_id": order_group_id},
            },
        }
    )
    return payload, gateway.sign(payload)


def _pay_for(group):
    """Create an intent for the group and deliver its success webhook."""
    from marketplace import operations

    intent = operations.create_payment_intent(group.order_group_id)
    payload, signature = _signed_payment_event(
        get_gateway(), group.order_group_id, intent["payment_intent_id"], intent["amount"]
    )
    return operations.confirm_payment_event(payload, signature)


@pytest.fixture()
def open_store():
    return _open_store


@pytest.fixture()
def signed_event():
    return _signed_payment_event


@pytest.fixture()
def pay():
    return _pay_for


@pytest.fixture()
def us_address():
    return dict(US_ADDRESS)


def _checkout(items, caller=None, customer_email="jane.doe@example.com", shipping_address=None, **kwargs):
    from marketplace import operations

    kwargs.setdefault("customer_name", "Jane Doe")
    return operations.create_checkout(
        caller=caller,
        items=items,
        shipping_address=shipping_address or dict(US_ADDRESS),
        customer_email=customer_email,
        **kwargs,
    )


@pytest.fixture()
def checkout():
    """Place a checkout for ``items`` ({listing_id, quantity, ...}) shipping to Austin."""
    return _checkout


@pytest.fixture()
def mixed_group(store_a, store_b, checkout):
    """Mug and bowl from Alder & Pine, a lamp from Birch Goods: $100 before adjustments."""
    return checkout(
        [
            {"listing_id": store_a.listings["AP-MUG"], "quantity": 1},
            {"listing_id": store_a.listings["AP-BOWL"], "quantity": 1},
            {"listing_id": store_b.listings["BG-LAMP"], "quantity": 1},
        ],
        discount_amount=10,
        shipping_amount=15,
    )


@pytest.fixture()
def paid_group(mixed_group, pay):
    pay(mixed_group)
    return mixed_group
