"""Engine settings that are not Protean concerns.

Protean itself is configured through ``domain.toml`` (selected by
``PROTEAN_ENV``). The values below tune checkout and fulfillment behaviour and
are read from the environment on every call so tests can override them with
``monkeypatch.setenv``.
"""

import os
from decimal import Decimal

UNMATCHED_SERVICE_POLICIES = ("cheapest", "strict")


def currency() -> str:
    return os.environ.get("MARKETPLACE_CURRENCY", "USD").upper()


def rate_quote_ttl_minutes() -> int:
    return int(os.environ.get("RATE_QUOTE_TTL_MINUTES", "30"))


def unmatched_service_policy() -> str:
    """How a global service maps onto a vendor that does not offer it."""
    policy = os.environ.get("UNMATCHED_SERVICE_POLICY", "cheapest").lower()
    if policy not in UNMATCHED_SERVICE_POLICIES:
        raise ValueError(f"Unknown unmatched service policy: {policy}")
    return policy


def flat_fallback_shipping_rate() -> Decimal | None:
    """Shipping charged to a vendor whose parcel could not be measured."""
    raw = os.environ.get("FLAT_FALLBACK_SHIPPING_RATE")
    if not raw:
        return None
    return Decimal(raw)


def refund_epsilon() -> Decimal:
    return Decimal(os.environ.get("REFUND_EPSILON", "0.01"))
