"""Fake rate provider: deterministic rates for tests and local development.

Rate tables can be set per origin postal code so different vendors can offer
different services. Issued rate tokens expire after ``quote_ttl``.
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from uuid import uuid4

from marketplace.exceptions import ExternalServiceError, RateExpired
from marketplace.shipping.provider.port import LabelPurchase, Parcel, RateProvider, RateQuote

DEFAULT_RATES = [
    {"carrier": "USPS", "service": "Standard", "price": "7.50"},
    {"carrier": "UPS", "service": "Express", "price": "18.00"},
    {"carrier": "FedEx", "service": "Overnight", "price": "32.00"},
]


class FakeRateProvider(RateProvider):
    def __init__(self, quote_ttl: timedelta = timedelta(minutes=30)) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Rate provider unavailable"
        self.quote_ttl = quote_ttl
        self.calls: list[dict] = []
        self._tables: dict[str | None, list[dict]] = {None: DEFAULT_RATES}
        self._issued: dict[str, RateQuote] = {}

    def configure(self, should_succeed: bool = True, failure_reason: str = "Rate provider unavailable") -> None:
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def set_rates(self, rates: list[dict], origin_postal_code: str | None = None) -> None:
        """Rates offered from ``origin_postal_code`` (or everywhere when None)."""
        self._tables[origin_postal_code] = rates

    def quote_rates(self, origin: dict, destination: dict, parcel: Parcel) -> list[RateQuote]:
        self.calls.append(
            {
                "method": "quote_rates",
                "origin": origin,
                "destination": destination,
                "parcel": parcel.as_dict(),
            }
        )
        if not self.should_succeed:
            raise ExternalServiceError("rate_provider", self.failure_reason)

        table = self._tables.get((origin or {}).get("postal_code"), self._tables[None])
        expires_at = datetime.now(UTC) + self.quote_ttl
        quotes = []
        for row in table:
            quote = RateQuote(
                rate_id=f"rate_{uuid4().hex[:16]}",
                carrier=row["carrier"],
                service=row["service"],
                price=Decimal(str(row["price"])),
                currency=row.get("currency", "USD"),
                expires_at=expires_at,
            )
            self._issued[quote.rate_id] = quote
            quotes.append(quote)
        return quotes

    def purchase_label(self, rate_id: str) -> LabelPurchase:
        self.calls.append({"method": "purchase_label", "rate_id": rate_id})
        if not self.should_succeed:
            raise ExternalServiceError("rate_provider", self.failure_reason)

        quote = self._issued.get(rate_id)
        if quote is None:
            raise ExternalServiceError("rate_provider", f"Unknown rate {rate_id}")
        if quote.is_expired(datetime.now(UTC)):
            raise RateExpired(rate_id)

        tracking_number = f"{quote.carrier.upper()}{uuid4().hex[:12].upper()}"
        return LabelPurchase(
            tracking_number=tracking_number,
            label_url=f"https://labels.fake-rates.example.com/{rate_id}.pdf",
            tracking_url=f"https://track.fake-rates.example.com/{tracking_number}",
        )

    def expire(self, rate_id: str) -> None:
        """Force a previously issued token past its validity window."""
        quote = self._issued[rate_id]
        self._issued[rate_id] = RateQuote(
            rate_id=quote.rate_id,
            carrier=quote.carrier,
            service=quote.service,
            price=quote.price,
            currency=quote.currency,
            expires_at=datetime.now(UTC) - timedelta(seconds=1),
        )
