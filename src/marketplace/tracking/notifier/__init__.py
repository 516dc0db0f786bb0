"""Notifier registry.

Uses the fake notifier by default; it is the only adapter shipped with the
engine. ``NOTIFIER_ADAPTER`` selects the adapter by name.
"""

import os

from marketplace.tracking.notifier.fake_adapter import FakeNotifier
from marketplace.tracking.notifier.port import Notifier

_current_notifier: Notifier | None = None


def get_notifier() -> Notifier:
    global _current_notifier
    if _current_notifier is None:
        adapter = os.environ.get("NOTIFIER_ADAPTER", "fake")
        if adapter != "fake":
            raise ValueError(f"Unknown notifier adapter: {adapter}")
        _current_notifier = FakeNotifier()
    return _current_notifier


def set_notifier(notifier: Notifier) -> None:
    """Override the active notifier (useful for tests)."""
    global _current_notifier
    _current_notifier = notifier


def reset_notifier() -> None:
    global _current_notifier
    _current_notifier = None
