"""Notifier port: abstract interface for customer and vendor messages."""

from abc import ABC, abstractmethod


class Notifier(ABC):
    """Abstract interface for notification adapters."""

    @abstractmethod
    def send(self, recipient: str, kind: str, payload: dict) -> dict:
        """Deliver one notification.

        Returns:
            dict with keys: message_id, status ("sent" or "failed"), error (optional)
        """
        ...

    @abstractmethod
    def open_conversation(self, vendor_id: str, customer_email: str, order_number: str, subject: str) -> dict:
        """Open a buyer/vendor support conversation for an order.

        Returns:
            dict with keys: conversation_id, status ("opened" or "failed"), error (optional)
        """
        ...
