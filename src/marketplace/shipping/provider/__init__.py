"""Rate provider factory: pluggable shipping-rate integration."""

import os
from datetime import timedelta

from marketplace import config
from marketplace.shipping.provider.port import RateProvider

_provider_instance: RateProvider | None = None


def get_rate_provider() -> RateProvider:
    """Return the configured rate provider (singleton).

    Uses FakeRateProvider by default; select another adapter with the
    ``RATE_PROVIDER_ADAPTER`` environment variable.
    """
    global _provider_instance
    if _provider_instance is None:
        adapter = os.environ.get("RATE_PROVIDER_ADAPTER", "fake")
        if adapter == "fake":
            from marketplace.shipping.provider.fake_adapter import FakeRateProvider

            _provider_instance = FakeRateProvider(quote_ttl=timedelta(minutes=config.rate_quote_ttl_minutes()))
        else:
            raise ValueError(f"Unknown rate provider adapter: {adapter}")
    return _provider_instance


def set_rate_provider(provider: RateProvider) -> None:
    global _provider_instance
    _provider_instance = provider


def reset_rate_provider() -> None:
    global _provider_instance
    _provider_instance = None
