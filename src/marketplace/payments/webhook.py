"""Payment confirmation: idempotent processing of gateway payment events."""

from dataclasses import dataclass, field
from enum import Enum

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Float, Identifier, String
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.order.order import Order
from marketplace.payments.payment import PaymentRecord
from marketplace.shared.money import ZERO, quantize, to_decimal

logger = structlog.get_logger(__name__)


class PaymentEventOutcome(Enum):
    NEW = "new"
    ALREADY_PROCESSED = "already_processed"
    IGNORED = "ignored"


@dataclass(frozen=True)
class PaymentConfirmation:
    outcome: PaymentEventOutcome
    payment_record_id: str | None = None
    order_group_id: str | None = None
    paid_order_ids: list[str] = field(default_factory=list)


@marketplace.command(part_of="PaymentRecord")
class RecordPaymentEvent:
    """A verified gateway event, already parsed outside the transaction."""

    idempotency_key = String(required=True, max_length=255)
    event_type = String(required=True, max_length=100)
    reference_id = String(required=True, max_length=255)
    order_group_id = Identifier()
    amount = Float(required=True)
    fee_amount = Float(default=0.0)
    currency = String(max_length=3, default="USD")


@marketplace.command_handler(part_of=PaymentRecord)
class PaymentEventHandler:
    @handle(RecordPaymentEvent)
    def record_payment_event(self, command):
        payments = current_domain.repository_for(PaymentRecord)
        existing = payments.find_by_key(command.idempotency_key)
        if existing is not None:
            logger.info(
                "Payment event already processed",
                idempotency_key=command.idempotency_key,
                payment_record_id=str(existing.id),
            )
            return PaymentConfirmation(
                outcome=PaymentEventOutcome.ALREADY_PROCESSED,
                payment_record_id=str(existing.id),
                order_group_id=str(existing.order_group_id),
            )

        if command.event_type != "payment_intent.succeeded":
            logger.info(
                "Ignoring payment event type",
                idempotency_key=command.idempotency_key,
                event_type=command.event_type,
            )
            return PaymentConfirmation(outcome=PaymentEventOutcome.IGNORED)

        order_repo = current_domain.repository_for(Order)
        if command.order_group_id:
            orders = order_repo.for_group(command.order_group_id)
        else:
            orders = order_repo.for_payment_intent(command.reference_id)
        if not orders:
            raise ObjectNotFoundError({"_entity": f"No orders found for payment {command.reference_id}"})

        order_group_id = str(orders[0].order_group_id)
        expected = quantize(sum((to_decimal(o.total_amount) for o in orders), ZERO))
        received = quantize(command.amount)
        mismatch = received != expected
        record = PaymentRecord.capture(
            idempotency_key=command.idempotency_key,
            order_group_id=order_group_id,
            reference_id=command.reference_id,
            amount=command.amount,
            fee_amount=command.fee_amount or 0,
            currency=command.currency,
            orders=orders,
        )
        payments.add(record)

        if mismatch:
            logger.warning(
                "Payment amount does not match the order group total",
                order_group_id=order_group_id,
                reference_id=command.reference_id,
                received=str(received),
                expected=str(expected),
            )

        paid = []
        for order in orders:
            if order.mark_paid(command.reference_id):
                if mismatch:
                    order.record_activity(
                        "payment_mismatch",
                        f"Payment of {received} {command.currency} does not match the checkout total {expected}",
                    )
                paid.append(str(order.id))
                order_repo.add(order)

        logger.info(
            "Payment recorded",
            order_group_id=order_group_id,
            payment_record_id=str(record.id),
            paid_orders=len(paid),
        )
        return PaymentConfirmation(
            outcome=PaymentEventOutcome.NEW,
            payment_record_id=str(record.id),
            order_group_id=order_group_id,
            paid_order_ids=paid,
        )
