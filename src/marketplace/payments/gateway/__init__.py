"""Payment gateway factory.

``get_gateway()`` / ``set_gateway()`` swap implementations; the fake gateway
is the default and the only adapter shipped with the engine.
"""

import os

from marketplace.payments.gateway.fake_adapter import DEFAULT_WEBHOOK_SECRET, FakeGateway
from marketplace.payments.gateway.port import PaymentGateway

_current_gateway: PaymentGateway | None = None


def get_gateway() -> PaymentGateway:
    global _current_gateway
    if _current_gateway is None:
        adapter = os.environ.get("PAYMENT_GATEWAY_ADAPTER", "fake")
        if adapter != "fake":
            raise ValueError(f"Unknown payment gateway adapter: {adapter}")
        _current_gateway = FakeGateway(webhook_secret=os.environ.get("WEBHOOK_SECRET", DEFAULT_WEBHOOK_SECRET))
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the active payment gateway (useful for tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    global _current_gateway
    _current_gateway = None
