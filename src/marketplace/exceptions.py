"""Error taxonomy for the marketplace engine.

Business-rule violations derive from Protean's ``ValidationError`` so they
carry a structured ``messages`` dict naming the offending items or vendors.
``ExternalServiceError`` is not a ``ValidationError``: it signals a transient
failure of the rate provider or payment gateway that callers may retry.
"""

from protean.exceptions import ValidationError


class AuthorizationError(ValidationError):
    """The caller's role or ownership does not permit the operation."""

    retryable = False


class CheckoutNotAllowed(AuthorizationError):
    """The caller may not purchase one or more items in the cart."""

    def __init__(self, items: list[str], reason: str = "Not allowed to purchase"):
        self.items = list(items)
        super().__init__({"items": [f"{reason}: {name}" for name in self.items]})


class InsufficientStock(ValidationError):
    """A reservation could not be satisfied. Retryable after re-quoting."""

    retryable = True

    def __init__(self, shortages: list[dict]):
        self.shortages = list(shortages)
        super().__init__(
            {
                "stock": [
                    f"{s['sku']}: Insufficient stock: {s['available']} available, {s['requested']} requested"
                    for s in self.shortages
                ]
            }
        )


class ShippingUnavailable(ValidationError):
    """One or more items cannot ship to the destination."""

    retryable = False

    def __init__(self, unshippable: list[dict]):
        self.unshippable = list(unshippable)
        super().__init__({"shipping": [f"{u['name']}: {u['reason']}" for u in self.unshippable]})


class PaymentNotConfirmed(ValidationError):
    """Fulfillment was attempted before the order's payment was captured."""

    retryable = False

    def __init__(self, order_id: str, payment_status: str):
        self.order_id = order_id
        self.payment_status = payment_status
        super().__init__(
            {"payment_status": [f"Order {order_id} cannot be fulfilled while payment is {payment_status}"]}
        )


class RefundQuantityExceeded(ValidationError):
    """A refund asked for more units than remain refundable on a line."""

    retryable = False

    def __init__(self, violations: list[dict]):
        self.violations = list(violations)
        super().__init__(
            {
                "lines": [
                    f"{v['line_item_id']}: requested {v['requested']}, refundable {v['refundable']}"
                    for v in self.violations
                ]
            }
        )


class ExternalServiceError(Exception):
    """A rate provider or payment gateway call failed transiently."""

    retryable = True

    def __init__(self, service: str, message: str):
        self.service = service
        self.message = message
        super().__init__(f"{service}: {message}")


class RateExpired(ExternalServiceError):
    """A quoted rate token is past its validity window and must be re-quoted."""

    def __init__(self, rate_id: str):
        self.rate_id = rate_id
        super().__init__("rate_provider", f"Rate {rate_id} has expired")
