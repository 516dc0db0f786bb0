"""Shipping label purchase for a vendor order.

The label is bought with the rate token stored on the order at checkout.
Tokens expire: an expired token is re-quoted for the same parcel, preferring
the same carrier and service, and the price difference is recorded on the
order's timeline. The customer is not re-charged for drift.

``LabelPurchaser`` talks to the rate provider and must run outside any unit
of work; ``AttachShippingLabel`` stores its outcome.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, Identifier, String
from protean.utils.globals import current_domain

from marketplace import config
from marketplace.catalogue.listing import Listing
from marketplace.catalogue.vendor import Vendor
from marketplace.domain import marketplace
from marketplace.exceptions import RateExpired, ShippingUnavailable
from marketplace.order.order import Order
from marketplace.shared.money import quantize, to_decimal
from marketplace.shipping.parcel import build_parcel
from marketplace.shipping.provider import get_rate_provider
from marketplace.shipping.provider.port import RateProvider, RateQuote

logger = structlog.get_logger(__name__)


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


@marketplace.command(part_of="Order")
class AttachShippingLabel:
    order_id = Identifier(required=True)
    rate_id = String(required=True, max_length=255)
    tracking_number = String(required=True, max_length=255)
    label_url = String(required=True, max_length=1000)
    tracking_url = String(max_length=1000)
    requoted = Boolean(default=False)
    price_drift = Float(default=0.0)
    carrier = String(max_length=100)
    service = String(max_length=100)
    expires_at = DateTime()


@dataclass(frozen=True)
class LabelOutcome:
    order_id: str
    rate_id: str
    tracking_number: str
    label_url: str
    tracking_url: str | None
    requoted: bool
    price_drift: Decimal

    def as_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "rate_id": self.rate_id,
            "tracking_number": self.tracking_number,
            "label_url": self.label_url,
            "tracking_url": self.tracking_url,
            "requoted": self.requoted,
            "price_drift": float(self.price_drift),
        }


class LabelPurchaser:
    def __init__(self, provider: RateProvider | None = None):
        self.provider = provider or get_rate_provider()

    def _parcel_items(self, order: Order) -> list[dict]:
        listing_repo = current_domain.repository_for(Listing)
        items = []
        for item in order.items:
            if item.outstanding_quantity <= 0:
                continue
            listing = listing_repo.get(item.listing_id)
            items.append(
                {
                    "weight": listing.weight,
                    "length": listing.length,
                    "width": listing.width,
                    "height": listing.height,
                    "quantity": item.outstanding_quantity,
                }
            )
        return items

    def requote(self, order: Order) -> RateQuote:
        """A fresh rate for the order's remaining parcel, matching the original service."""
        vendor = current_domain.repository_for(Vendor).get(order.vendor_id)
        parcel = build_parcel(self._parcel_items(order))
        if parcel is None or vendor.origin is None:
            raise ShippingUnavailable([{"name": vendor.name, "reason": "parcel cannot be measured for a new quote"}])

        rates = self.provider.quote_rates(vendor.origin.as_dict(), order.shipping_address.as_dict(), parcel)
        if not rates:
            raise ShippingUnavailable([{"name": vendor.name, "reason": "no carrier serves this destination"}])

        previous = order.shipping_rate
        same = [r for r in rates if r.service == previous.service]
        same_carrier = [r for r in same if r.carrier == previous.carrier]
        candidates = same_carrier or same
        if not candidates:
            if config.unmatched_service_policy() == "strict":
                raise ShippingUnavailable([{"name": vendor.name, "reason": f"no longer offers {previous.service}"}])
            candidates = rates
        return min(candidates, key=lambda r: (r.price, r.carrier))

    def purchase(self, order: Order) -> AttachShippingLabel:
        """Buy the label, re-quoting once when the stored token has expired."""
        rate = order.shipping_rate
        if rate is None or not rate.rate_id:
            raise ValidationError({"shipping_rate": [f"Order {order.order_number} has no quoted rate to buy a label with"]})
        if rate.label_url:
            raise ValidationError({"shipping_rate": [f"A label was already purchased for order {order.order_number}"]})
        order.assert_can_ship()

        requote = None
        expires_at = _aware(rate.expires_at)
        if expires_at is not None and expires_at <= datetime.now(UTC):
            requote = self.requote(order)
            purchase = self.provider.purchase_label(requote.rate_id)
        else:
            try:
                purchase = self.provider.purchase_label(rate.rate_id)
            except RateExpired:
                requote = self.requote(order)
                purchase = self.provider.purchase_label(requote.rate_id)

        if requote is None:
            return AttachShippingLabel(
                order_id=str(order.id),
                rate_id=rate.rate_id,
                tracking_number=purchase.tracking_number,
                label_url=purchase.label_url,
                tracking_url=purchase.tracking_url,
            )

        drift = quantize(requote.price - to_decimal(rate.price))
        logger.warning(
            "Shipping rate expired and was re-quoted",
            order_id=str(order.id),
            previous_rate_id=rate.rate_id,
            rate_id=requote.rate_id,
            price_drift=str(drift),
        )
        return AttachShippingLabel(
            order_id=str(order.id),
            rate_id=requote.rate_id,
            tracking_number=purchase.tracking_number,
            label_url=purchase.label_url,
            tracking_url=purchase.tracking_url,
            requoted=True,
            price_drift=float(drift),
            carrier=requote.carrier,
            service=requote.service,
            expires_at=requote.expires_at,
        )


@marketplace.command_handler(part_of=Order)
class ShippingLabelHandler:
    @handle(AttachShippingLabel)
    def attach_shipping_label(self, command):
        order_repo = current_domain.repository_for(Order)
        order = order_repo.get(command.order_id)

        requote = None
        if command.requoted:
            requote = {"carrier": command.carrier, "service": command.service, "expires_at": command.expires_at}
        order.attach_label(
            rate_id=command.rate_id,
            tracking_number=command.tracking_number,
            label_url=command.label_url,
            tracking_url=command.tracking_url,
            price_drift=to_decimal(command.price_drift),
            requoted=command.requoted,
            requote=requote,
        )
        order_repo.add(order)

        logger.info(
            "Shipping label attached",
            order_id=str(order.id),
            tracking_number=command.tracking_number,
            requoted=command.requoted,
        )
        return LabelOutcome(
            order_id=str(order.id),
            rate_id=command.rate_id,
            tracking_number=command.tracking_number,
            label_url=command.label_url,
            tracking_url=command.tracking_url,
            requoted=bool(command.requoted),
            price_drift=quantize(command.price_drift),
        )
