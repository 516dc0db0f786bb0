"""Shipping rate allocator.

The customer picks one *global* service (e.g. "Express") while each vendor
ships and is priced separately. The allocator quotes every vendor's parcel,
works out which global services can be offered, and maps the chosen service
back to one concrete rate per vendor.

Global services are the names every quoted vendor offers. When vendors share
no service name at all, every offered name becomes a global option and the
vendors lacking it are listed as ``missing``. Selecting a service with
missing vendors follows ``UNMATCHED_SERVICE_POLICY``:

- ``cheapest``: the vendor ships with its cheapest available rate
- ``strict``: the selection fails with ``ShippingUnavailable``
"""

from dataclasses import dataclass, field
from decimal import Decimal

import structlog
from protean.exceptions import ValidationError

from marketplace import config
from marketplace.exceptions import ShippingUnavailable
from marketplace.shared.money import quantize
from marketplace.shipping.parcel import ensure_within_limits
from marketplace.shipping.provider import get_rate_provider
from marketplace.shipping.provider.port import Parcel, RateProvider, RateQuote

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class VendorShipment:
    vendor_id: str
    vendor_name: str
    origin: dict
    parcel: Parcel | None


@dataclass
class GlobalServiceOption:
    service: str
    total: Decimal
    rates: dict[str, RateQuote]
    missing: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.missing

    def as_dict(self) -> dict:
        return {
            "service": self.service,
            "total": float(self.total),
            "complete": self.complete,
            "missing_vendors": list(self.missing),
            "rates": {vendor_id: rate.as_dict() for vendor_id, rate in self.rates.items()},
        }


@dataclass
class ShippingQuote:
    destination: dict
    vendor_names: dict[str, str]
    vendor_rates: dict[str, list[RateQuote]]
    unmeasured: list[str]
    options: list[GlobalServiceOption]
    intersected: bool

    def option(self, service: str) -> GlobalServiceOption | None:
        return next((o for o in self.options if o.service == service), None)

    def as_dict(self) -> dict:
        return {
            "intersected": self.intersected,
            "unmeasured_vendors": list(self.unmeasured),
            "options": [option.as_dict() for option in self.options],
        }


def _cheapest(rates: list[RateQuote]) -> RateQuote:
    return min(rates, key=lambda r: (r.price, r.carrier))


def _rate_for_service(rates: list[RateQuote], service: str) -> RateQuote | None:
    matching = [r for r in rates if r.service == service]
    return _cheapest(matching) if matching else None


class ShippingRateAllocator:
    def __init__(self, provider: RateProvider | None = None):
        self.provider = provider or get_rate_provider()

    def quote(self, shipments: list[VendorShipment], destination: dict) -> ShippingQuote:
        """Quote every measurable vendor shipment and derive the global options."""
        vendor_rates: dict[str, list[RateQuote]] = {}
        unmeasured = []
        for shipment in shipments:
            if shipment.parcel is None:
                unmeasured.append(shipment.vendor_id)
                continue
            ensure_within_limits(shipment.parcel, shipment.vendor_name)
            rates = self.provider.quote_rates(shipment.origin, destination, shipment.parcel)
            if not rates:
                raise ShippingUnavailable(
                    [{"name": shipment.vendor_name, "reason": "no carrier serves this destination"}]
                )
            vendor_rates[shipment.vendor_id] = rates

        offered = [{r.service for r in rates} for rates in vendor_rates.values()]
        common = set.intersection(*offered) if offered else set()
        intersected = bool(common) or not offered
        service_names = common if common else set().union(*offered) if offered else set()

        options = []
        for service in sorted(service_names):
            chosen = {}
            missing = []
            for vendor_id, rates in vendor_rates.items():
                rate = _rate_for_service(rates, service)
                if rate is None:
                    missing.append(vendor_id)
                else:
                    chosen[vendor_id] = rate
            total = quantize(sum((rate.price for rate in chosen.values()), Decimal("0")))
            options.append(GlobalServiceOption(service=service, total=total, rates=chosen, missing=missing))
        options.sort(key=lambda o: (not o.complete, o.total, o.service))

        if not intersected:
            logger.info(
                "Vendors share no shipping service, offering the union",
                services=sorted(service_names),
                vendors=list(vendor_rates),
            )

        return ShippingQuote(
            destination=destination,
            vendor_names={s.vendor_id: s.vendor_name for s in shipments},
            vendor_rates=vendor_rates,
            unmeasured=unmeasured,
            options=options,
            intersected=intersected,
        )

    def select(self, quote: ShippingQuote, service: str, policy: str | None = None) -> dict[str, RateQuote]:
        """Map the chosen global service to one rate per quoted vendor."""
        option = quote.option(service)
        if option is None:
            raise ValidationError({"service": [f"Shipping service '{service}' is not available for this cart"]})

        policy = policy or config.unmatched_service_policy()
        selection = dict(option.rates)
        if option.missing and policy == "strict":
            raise ShippingUnavailable(
                [
                    {"name": quote.vendor_names.get(vendor_id, vendor_id), "reason": f"does not offer {service}"}
                    for vendor_id in option.missing
                ]
            )
        for vendor_id in option.missing:
            fallback = _cheapest(quote.vendor_rates[vendor_id])
            logger.info(
                "Vendor lacks selected service, using its cheapest rate",
                vendor_id=vendor_id,
                service=service,
                fallback_service=fallback.service,
            )
            selection[vendor_id] = fallback
        return selection
