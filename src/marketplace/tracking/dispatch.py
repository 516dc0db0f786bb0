"""Post-commit notification dispatch.

Shipment handlers decide *whether* and *what* to announce while their unit of
work is open (``decide_notification`` is pure), but delivery only happens
after commit and off the request path: ``run_detached`` hands the call to a
thread pool. A delivery failure is logged and never reaches the caller, whose
state change has already been committed.
"""

from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum

import structlog

from marketplace.tracking.notifier import get_notifier

logger = structlog.get_logger(__name__)


class NotificationKind(Enum):
    FIRST_SHIPMENT = "first_shipment"
    ADDITIONAL_SHIPMENT = "additional_shipment"
    GROUP_FULFILLED = "group_fulfilled"
    PAYMENT_RECEIVED = "payment_received"


@dataclass(frozen=True)
class ShipmentNotification:
    kind: NotificationKind
    recipient: str
    order_group_id: str
    order_number: str
    carrier: str
    tracking_number: str
    tracking_token: str | None = None
    tracking_url: str | None = None

    def payload(self) -> dict:
        return {
            "order_group_id": self.order_group_id,
            "order_number": self.order_number,
            "carrier": self.carrier,
            "tracking_number": self.tracking_number,
            "tracking_token": self.tracking_token,
            "tracking_url": self.tracking_url,
        }


def decide_notification(
    created: bool,
    token_issued: bool,
    tracking_number: str,
    announced: set[str],
    master_status: str,
) -> NotificationKind | None:
    """Which notification a vendor shipment triggers, if any.

    Replays of a shipment and tracking numbers already announced for the
    group (one parcel shared by several vendors) stay silent.
    """
    if not created or tracking_number in announced:
        return None
    if token_issued:
        return NotificationKind.FIRST_SHIPMENT
    if master_status == "fulfilled":
        return NotificationKind.GROUP_FULFILLED
    return NotificationKind.ADDITIONAL_SHIPMENT


# ---------------------------------------------------------------------------
# Detached execution
# ---------------------------------------------------------------------------
_executor: Executor | None = None


def get_executor() -> Executor:
    global _executor
    if _executor is None:
        _executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="marketplace-dispatch")
    return _executor


def set_executor(executor: Executor) -> None:
    """Override the dispatch executor (tests use one that runs inline)."""
    global _executor
    _executor = executor


def reset_executor() -> None:
    global _executor
    if _executor is not None and isinstance(_executor, ThreadPoolExecutor):
        _executor.shutdown(wait=True)
    _executor = None


def _guarded(task, *args, **kwargs):
    try:
        return task(*args, **kwargs)
    except Exception:
        logger.exception("Post-commit task failed", task=getattr(task, "__name__", repr(task)))
        return None


def run_detached(task, *args, **kwargs):
    """Run ``task`` after the caller returns; exceptions are logged, not raised."""
    return get_executor().submit(_guarded, task, *args, **kwargs)


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------
def _deliver(recipient: str, kind: str, payload: dict) -> None:
    result = get_notifier().send(recipient, kind, payload)
    if result.get("status") != "sent":
        logger.warning("Notification not delivered", kind=kind, recipient=recipient, error=result.get("error"))
    else:
        logger.info("Notification sent", kind=kind, message_id=result.get("message_id"))


def send_shipment_notification(notification: ShipmentNotification) -> None:
    _deliver(notification.recipient, notification.kind.value, notification.payload())


def send_payment_received(recipient: str, order_group_id: str, order_numbers: list[str], amount: float) -> None:
    _deliver(
        recipient,
        NotificationKind.PAYMENT_RECEIVED.value,
        {"order_group_id": order_group_id, "order_numbers": order_numbers, "amount": amount},
    )


def open_support_conversations(conversations: list[dict]) -> None:
    """Open one buyer/vendor conversation per placed order."""
    notifier = get_notifier()
    for conversation in conversations:
        result = notifier.open_conversation(
            vendor_id=conversation["vendor_id"],
            customer_email=conversation["customer_email"],
            order_number=conversation["order_number"],
            subject=f"Order {conversation['order_number']}",
        )
        if result.get("status") != "opened":
            logger.warning(
                "Support conversation not opened",
                order_number=conversation["order_number"],
                error=result.get("error"),
            )
