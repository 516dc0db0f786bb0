"""Checkout placement: turning one cart into one order per vendor.

Everything here runs in a single unit of work. Rates have already been quoted
by the caller and arrive as resolved values; no external service is called
while the transaction is open. Stock for the whole cart is checked before any
order exists, and nothing is handed to the repositories until every vendor
group has been built and the stock ledger has passed its version check, so a
failure for one vendor leaves no order behind for any other.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

import structlog
from protean import handle
from protean.fields import Float, Identifier, String, Text
from protean.utils.globals import current_domain

from marketplace import config
from marketplace.checkout.allocation import allocate, checkout_total
from marketplace.checkout.availability import check_shipping_availability
from marketplace.checkout.cart import group_by_vendor, resolve_cart
from marketplace.checkout.permissions import check_purchase_permission
from marketplace.domain import marketplace
from marketplace.identity.caller import Caller
from marketplace.identity.customer import Customer, resolve_customer
from marketplace.inventory.ledger import InventoryLedger
from marketplace.order.numbering import OrderNumberSequence
from marketplace.order.order import Order, VendorShippingRate
from marketplace.shared.address import Address
from marketplace.shared.money import ZERO, quantize, to_decimal

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PlacedOrder:
    order_id: str
    order_number: str
    vendor_id: str
    total: Decimal

    def as_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "order_number": self.order_number,
            "vendor_id": self.vendor_id,
            "total": float(self.total),
        }


@dataclass(frozen=True)
class OrderGroup:
    order_group_id: str
    currency: str
    cart_total: Decimal
    orders: list[PlacedOrder] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "order_group_id": self.order_group_id,
            "currency": self.currency,
            "cart_total": float(self.cart_total),
            "orders": [o.as_dict() for o in self.orders],
        }


@marketplace.command(part_of="Order")
class PlaceCheckout:
    order_group_id = Identifier()
    caller = Text()  # JSON caller identity
    items = Text(required=True)  # JSON [{listing_id, variant_id, quantity, discount_amount}]
    shipping_address = Text(required=True)  # JSON address
    billing_address = Text()
    customer_email = String(required=True, max_length=254)
    customer_name = String(max_length=200)
    vendor_rates = Text()  # JSON {vendor_id: rate}, quoted before the transaction
    discount_amount = Float(default=0.0)
    shipping_amount = Float(default=0.0)
    tax_amount = Float(default=0.0)
    payment_intent_id = String(max_length=255)
    currency = String(max_length=3)


def _shipping_rate(rate: dict | None, currency: str) -> VendorShippingRate:
    if rate is None:
        return VendorShippingRate(price=0.0, currency=currency, source="none")
    expires_at = rate.get("expires_at")
    if isinstance(expires_at, str):
        expires_at = datetime.fromisoformat(expires_at)
    return VendorShippingRate(
        carrier=rate.get("carrier"),
        service=rate.get("service"),
        price=float(quantize(rate.get("price", 0))),
        currency=rate.get("currency") or currency,
        rate_id=rate.get("rate_id"),
        expires_at=expires_at,
        source=rate.get("source", "quoted"),
    )


def _vendor_rates(command, vendor_ids, currency) -> tuple[dict[str, Decimal] | None, dict[str, VendorShippingRate]]:
    """Shipping charged per vendor and the rate value object stored on each order."""
    if not command.vendor_rates:
        prorated = {v: VendorShippingRate(price=0.0, currency=currency, source="prorated") for v in vendor_ids}
        return None, prorated

    quoted = json.loads(command.vendor_rates)
    fallback = config.flat_fallback_shipping_rate()
    charges: dict[str, Decimal] = {}
    rates: dict[str, VendorShippingRate] = {}
    for vendor_id in vendor_ids:
        rate = quoted.get(vendor_id)
        if rate is None and fallback is not None:
            rate = {"price": str(fallback), "source": "fallback"}
        rates[vendor_id] = _shipping_rate(rate, currency)
        charges[vendor_id] = to_decimal(rate["price"]) if rate else ZERO
    return charges, rates


@marketplace.command_handler(part_of=Order)
class CheckoutHandler:
    @handle(PlaceCheckout)
    def place_checkout(self, command):
        caller = Caller.from_dict(json.loads(command.caller) if command.caller else None)
        currency = (command.currency or config.currency()).upper()
        shipping_address = Address(**json.loads(command.shipping_address))
        billing_address = Address(**json.loads(command.billing_address)) if command.billing_address else None

        lines, vendors = resolve_cart(json.loads(command.items))
        check_purchase_permission(caller, lines, vendors)
        check_shipping_availability(lines, shipping_address.country, vendors)

        groups = group_by_vendor(lines)
        vendor_charges, vendor_rates = _vendor_rates(command, list(groups), currency)
        allocations = allocate(
            groups,
            discount_amount=to_decimal(command.discount_amount),
            shipping_amount=to_decimal(command.shipping_amount),
            tax_amount=to_decimal(command.tax_amount),
            vendor_shipping=vendor_charges,
        )

        ledger = InventoryLedger()
        requested: dict[str, int] = {}
        for line in lines:
            requested[line.sku] = requested.get(line.sku, 0) + line.quantity
        ledger.ensure_available(requested)

        sequence_repo = current_domain.repository_for(OrderNumberSequence)
        sequence = sequence_repo.for_prefix()
        customer_repo = current_domain.repository_for(Customer)
        order_group_id = command.order_group_id or str(uuid4())

        orders = []
        customers = []
        for allocation in allocations:
            customer = resolve_customer(
                customer_repo,
                vendor_id=allocation.vendor_id,
                caller=caller,
                email=command.customer_email,
                name=command.customer_name,
            )
            customers.append(customer)

            order = Order.create(
                order_number=sequence.next_number(),
                order_group_id=order_group_id,
                vendor_id=allocation.vendor_id,
                lines=[line.as_order_line() for line in allocation.lines],
                amounts=allocation.amounts(),
                shipping_address=shipping_address,
                billing_address=billing_address,
                shipping_rate=vendor_rates[allocation.vendor_id],
                customer_id=str(customer.id),
                buyer_identity_id=caller.identity_id,
                customer_email=command.customer_email.lower(),
                customer_name=command.customer_name,
                currency=currency,
                payment_intent_id=command.payment_intent_id,
            )
            order.place()
            ledger.reserve_all(str(order.id), [(a.line.sku, a.line.quantity) for a in allocation.lines])
            orders.append(order)

        # Nothing is written until the ledger confirms no competing reservation
        ledger.verify()

        for customer in customers:
            customer_repo.add(customer)
        order_repo = current_domain.repository_for(Order)
        for order in orders:
            order_repo.add(order)
        ledger.persist()
        sequence_repo.add(sequence)

        group = OrderGroup(
            order_group_id=order_group_id,
            currency=currency,
            cart_total=checkout_total(allocations),
            orders=[
                PlacedOrder(
                    order_id=str(order.id),
                    order_number=order.order_number,
                    vendor_id=str(order.vendor_id),
                    total=quantize(order.total_amount),
                )
                for order in orders
            ],
        )
        logger.info(
            "Checkout placed",
            order_group_id=order_group_id,
            vendors=len(orders),
            cart_total=str(group.cart_total),
        )
        return group
