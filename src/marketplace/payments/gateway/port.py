"""Payment gateway port (abstract interface).

Checkout, webhook processing and refunds program against this contract, so
the fake gateway used in development and tests can be swapped for a real
provider adapter without touching domain code.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class PaymentIntent:
    """A gateway-side intent to collect ``amount`` for an order group."""

    reference: str
    amount: Decimal
    currency: str
    client_secret: str | None = None


@dataclass(frozen=True)
class PaymentEvent:
    """A verified payment notification.

    ``idempotency_key`` is the provider's own event identifier and is the
    deduplication key for webhook redelivery.
    """

    idempotency_key: str
    event_type: str
    amount: Decimal
    fee_amount: Decimal
    reference_id: str
    currency: str = "USD"
    metadata: dict = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.event_type == "payment_intent.succeeded"


@dataclass(frozen=True)
class RefundConfirmation:
    success: bool
    gateway_refund_id: str | None = None
    failure_reason: str | None = None


class PaymentGateway(ABC):
    @abstractmethod
    def create_payment_intent(self, amount: Decimal, currency: str, metadata: dict) -> PaymentIntent:
        ...

    @abstractmethod
    def verify_webhook_signature(self, payload: str, signature: str) -> bool:
        ...

    @abstractmethod
    def confirm_event(self, payload: str, signature: str) -> PaymentEvent:
        """Verify and parse a signed webhook payload."""
        ...

    @abstractmethod
    def refund(
        self,
        payment_reference: str,
        amount: Decimal,
        reason: str | None = None,
        idempotency_key: str | None = None,
    ) -> RefundConfirmation:
        """Return money to the buyer. A repeated ``idempotency_key`` must not pay out twice."""
        ...
