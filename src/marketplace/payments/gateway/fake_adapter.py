"""Configurable fake payment gateway for development and testing.

Webhook payloads are signed with an HMAC of the body, mirroring how real
providers sign callbacks. ``sign()`` produces a valid signature for tests.
Payload shape::

    {"id": "evt_...", "type": "payment_intent.succeeded",
     "data": {"payment_intent": "pi_...", "amount": 105.0, "fee": 3.35,
              "currency": "USD", "metadata": {"order_group_id": "..."}}}
"""

import hashlib
import hmac
import json
from decimal import Decimal
from uuid import uuid4

from marketplace.exceptions import AuthorizationError, ExternalServiceError
from marketplace.payments.gateway.port import PaymentEvent, PaymentGateway, PaymentIntent, RefundConfirmation

DEFAULT_WEBHOOK_SECRET = "whsec_fake_marketplace"


class FakeGateway(PaymentGateway):
    def __init__(self, webhook_secret: str = DEFAULT_WEBHOOK_SECRET) -> None:
        self.webhook_secret = webhook_secret
        self.should_succeed: bool = True
        self.failure_reason: str = "Gateway unavailable"
        self.calls: list[dict] = []
        self.refunds: dict[str, RefundConfirmation] = {}  # by idempotency key

    def configure(self, should_succeed: bool, failure_reason: str = "Gateway unavailable") -> None:
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def sign(self, payload: str) -> str:
        return hmac.new(self.webhook_secret.encode(), payload.encode(), hashlib.sha256).hexdigest()

    def create_payment_intent(self, amount: Decimal, currency: str, metadata: dict) -> PaymentIntent:
        self.calls.append(
            {"method": "create_payment_intent", "amount": amount, "currency": currency, "metadata": metadata}
        )
        if not self.should_succeed:
            raise ExternalServiceError("payment_gateway", self.failure_reason)
        reference = f"pi_fake_{uuid4().hex[:16]}"
        return PaymentIntent(
            reference=reference,
            amount=amount,
            currency=currency,
            client_secret=f"{reference}_secret_{uuid4().hex[:8]}",
        )

    def verify_webhook_signature(self, payload: str, signature: str) -> bool:
        return bool(signature) and hmac.compare_digest(self.sign(payload), signature)

    def confirm_event(self, payload: str, signature: str) -> PaymentEvent:
        self.calls.append({"method": "confirm_event", "payload": payload})
        if not self.verify_webhook_signature(payload, signature):
            raise AuthorizationError({"signature": ["Invalid webhook signature"]})

        body = json.loads(payload)
        data = body.get("data", {})
        return PaymentEvent(
            idempotency_key=body["id"],
            event_type=body.get("type", ""),
            amount=Decimal(str(data.get("amount", 0))),
            fee_amount=Decimal(str(data.get("fee", 0))),
            reference_id=data.get("payment_intent", ""),
            currency=data.get("currency", "USD"),
            metadata=data.get("metadata", {}),
        )

    def refund(
        self,
        payment_reference: str,
        amount: Decimal,
        reason: str | None = None,
        idempotency_key: str | None = None,
    ) -> RefundConfirmation:
        self.calls.append(
            {
                "method": "refund",
                "payment_reference": payment_reference,
                "amount": amount,
                "reason": reason,
                "idempotency_key": idempotency_key,
            }
        )
        if idempotency_key in self.refunds:
            return self.refunds[idempotency_key]
        if not self.should_succeed:
            return RefundConfirmation(success=False, failure_reason=self.failure_reason)

        confirmation = RefundConfirmation(success=True, gateway_refund_id=f"re_fake_{uuid4().hex[:12]}")
        if idempotency_key:
            self.refunds[idempotency_key] = confirmation
        return confirmation
