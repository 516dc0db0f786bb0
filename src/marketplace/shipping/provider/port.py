"""Shipping rate provider port.

The allocator and label purchase program against this interface; adapters
are swapped via ``RATE_PROVIDER_ADAPTER``. Adapters raise
``ExternalServiceError`` for transport or provider failures.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal


@dataclass(frozen=True)
class Parcel:
    """Outer envelope of one vendor shipment (inches / ounces)."""

    length: float
    width: float
    height: float
    weight: float

    def as_dict(self) -> dict:
        return {"length": self.length, "width": self.width, "height": self.height, "weight": self.weight}


@dataclass(frozen=True)
class RateQuote:
    """A priced shipping option. ``rate_id`` is an opaque, expiring token."""

    rate_id: str
    carrier: str
    service: str
    price: Decimal
    currency: str
    expires_at: datetime | None = None

    def is_expired(self, at: datetime) -> bool:
        return self.expires_at is not None and at >= self.expires_at

    def as_dict(self) -> dict:
        return {
            "rate_id": self.rate_id,
            "carrier": self.carrier,
            "service": self.service,
            "price": float(self.price),
            "currency": self.currency,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


@dataclass(frozen=True)
class LabelPurchase:
    tracking_number: str
    label_url: str
    tracking_url: str | None = None


class RateProvider(ABC):
    @abstractmethod
    def quote_rates(self, origin: dict, destination: dict, parcel: Parcel) -> list[RateQuote]:
        """Priced options for shipping ``parcel`` from ``origin`` to ``destination``."""
        ...

    @abstractmethod
    def purchase_label(self, rate_id: str) -> LabelPurchase:
        """Buy the label for a previously quoted, unexpired rate."""
        ...
