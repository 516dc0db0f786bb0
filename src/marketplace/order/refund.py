"""Refunds: proportional, quantity-bounded refunds against a vendor order.

A refund request names ``(line_item_id, quantity)`` pairs. Each line is
refunded at its own effective price, ``line_total / quantity``, so discounts
baked into the line are returned proportionally instead of being recomputed
from the list price. The request that closes a line out is given exactly
what is left on the line; repeated partial refunds of one line therefore
always add up to its ``line_total``.

A refund moves through three units of work around the payment gateway (see
``marketplace.operations.process_refund``). ``ClaimRefund`` computes the
amount and holds the units and the request key on the order, so an
overlapping request fails validation before it reaches the gateway.
``ConfirmRefund`` applies the claim once the gateway has paid out;
``ReleaseRefundClaim`` gives it back when the gateway declined.
"""

import hashlib
import io
import json
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Boolean, Identifier, String, Text
from protean.utils.globals import current_domain
from rich.console import Console
from rich.table import Table

from marketplace import config
from marketplace.domain import marketplace
from marketplace.exceptions import RefundQuantityExceeded
from marketplace.inventory.ledger import InventoryLedger
from marketplace.order.order import Order, RefundKind, RefundRecord
from marketplace.shared.money import ZERO, quantize, to_decimal

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Calculation
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class RefundLine:
    line_item_id: str
    sku: str
    title: str
    quantity: int
    amount: Decimal

    def as_dict(self) -> dict:
        return {
            "line_item_id": self.line_item_id,
            "sku": self.sku,
            "title": self.title,
            "quantity": self.quantity,
            "amount": str(self.amount),
        }


@dataclass(frozen=True)
class RefundComputation:
    lines: list[RefundLine]
    amount: Decimal
    kind: RefundKind


def _merge(requests) -> dict[str, int]:
    merged: dict[str, int] = {}
    for line_item_id, quantity in requests:
        merged[str(line_item_id)] = merged.get(str(line_item_id), 0) + int(quantity)
    return merged


def calculate_refund(order: Order, requests, epsilon: Decimal | None = None) -> RefundComputation:
    """Compute a refund for ``requests``, an iterable of ``(line_item_id, quantity)``.

    Raises ``RefundQuantityExceeded`` naming every offending line and
    ``ValidationError`` when the order has no captured payment.
    """
    if not order.payment_captured:
        raise ValidationError(
            {"payment_status": [f"Order {order.order_number} cannot be refunded while payment is {order.payment_status}"]}
        )

    requested = _merge(requests)
    if not requested:
        raise ValidationError({"lines": ["At least one line must be refunded"]})

    violations = []
    for line_item_id, quantity in requested.items():
        item = order.item(line_item_id)
        if quantity <= 0 or quantity > item.refundable_quantity:
            violations.append(
                {"line_item_id": line_item_id, "requested": quantity, "refundable": item.refundable_quantity}
            )
    if violations:
        raise RefundQuantityExceeded(violations)

    lines = []
    for line_item_id, quantity in requested.items():
        item = order.item(line_item_id)
        if quantity == item.refundable_quantity:
            amount = item.remaining_refundable_amount
        else:
            amount = quantize(to_decimal(item.line_total) / item.quantity * quantity)
        lines.append(
            RefundLine(line_item_id=str(item.id), sku=item.sku, title=item.title, quantity=quantity, amount=amount)
        )

    total = quantize(sum((line.amount for line in lines), ZERO))
    remaining = quantize(sum((i.remaining_refundable_amount for i in order.items), ZERO))
    epsilon = config.refund_epsilon() if epsilon is None else epsilon
    kind = RefundKind.FULL if abs(remaining - total) <= epsilon else RefundKind.PARTIAL
    return RefundComputation(lines=lines, amount=total, kind=kind)


def refund_fingerprint(order_id: str, requests, reason: str | None, restock: bool) -> str:
    """Stable key for a refund request that arrives without an idempotency key."""
    canonical = json.dumps(
        {
            "order_id": str(order_id),
            "lines": sorted(_merge(requests).items()),
            "reason": (reason or "").strip(),
            "restock": bool(restock),
        },
        sort_keys=True,
    )
    return "fp-" + hashlib.sha256(canonical.encode()).hexdigest()[:40]


# ---------------------------------------------------------------------------
# Result and receipt
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class RefundResult:
    order_id: str
    refund_id: str
    amount: Decimal
    kind: str
    payment_status: str
    lines: list[dict] = field(default_factory=list)
    gateway_refund_id: str | None = None
    already_applied: bool = False

    @classmethod
    def from_record(cls, order: Order, record: RefundRecord, already_applied: bool = False) -> "RefundResult":
        return cls(
            order_id=str(order.id),
            refund_id=str(record.id),
            amount=quantize(record.amount),
            kind=record.kind,
            payment_status=order.payment_status,
            lines=record.refunded_lines(),
            gateway_refund_id=record.gateway_refund_id,
            already_applied=already_applied,
        )

    def as_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "refund_id": self.refund_id,
            "amount": float(self.amount),
            "kind": self.kind,
            "payment_status": self.payment_status,
            "lines": self.lines,
            "gateway_refund_id": self.gateway_refund_id,
            "already_applied": self.already_applied,
        }


@dataclass(frozen=True)
class RefundReceipt:
    order_number: str
    vendor_name: str
    customer_name: str | None
    customer_email: str | None
    currency: str
    lines: list[dict]
    amount: Decimal
    order_total: Decimal
    refunded_to_date: Decimal
    reason: str | None
    issued_at: datetime

    @classmethod
    def for_refund(cls, order: Order, refund_id: str, vendor_name: str) -> "RefundReceipt":
        record = next((r for r in order.refunds or [] if str(r.id) == str(refund_id) and r.confirmed), None)
        if record is None:
            raise ValidationError({"refund_id": [f"Refund {refund_id} not found on order {order.order_number}"]})
        return cls(
            order_number=order.order_number,
            vendor_name=vendor_name,
            customer_name=order.customer_name,
            customer_email=order.customer_email,
            currency=order.currency,
            lines=record.refunded_lines(),
            amount=quantize(record.amount),
            order_total=quantize(order.total_amount),
            refunded_to_date=quantize(order.refunded_amount),
            reason=record.reason,
            issued_at=record.created_at,
        )

    def render(self) -> str:
        """Plain-text credit note."""
        table = Table(title=f"REFUND RECEIPT  Order #{self.order_number}", show_lines=False)
        table.add_column("Item")
        table.add_column("Qty", justify="right")
        table.add_column("Refunded", justify="right")
        for line in self.lines:
            title = line["title"] if len(line["title"]) <= 40 else line["title"][:37] + "..."
            table.add_row(title, str(line["quantity"]), f"{quantize(line['amount'])} {self.currency}")

        buffer = io.StringIO()
        console = Console(file=buffer, width=80, color_system=None)
        console.print(f"From: {self.vendor_name}")
        if self.customer_name or self.customer_email:
            console.print(f"Refunded to: {' '.join(filter(None, [self.customer_name, self.customer_email]))}")
        console.print(f"Date: {self.issued_at:%Y-%m-%d}")
        console.print(table)
        console.print(f"Refund amount: {self.amount} {self.currency}")
        console.print(f"Refunded to date: {self.refunded_to_date} of {self.order_total} {self.currency}")
        if self.reason:
            console.print(f"Reason: {self.reason}")
        return buffer.getvalue()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
@marketplace.command(part_of="Order")
class ClaimRefund:
    order_id = Identifier(required=True)
    lines = Text(required=True)  # JSON [{line_item_id, quantity}]
    request_key = String(required=True, max_length=128)
    reason = String(max_length=500)
    restock = Boolean(default=False)


@marketplace.command(part_of="Order")
class ConfirmRefund:
    order_id = Identifier(required=True)
    refund_id = Identifier(required=True)
    gateway_refund_id = String(max_length=255)


@marketplace.command(part_of="Order")
class ReleaseRefundClaim:
    order_id = Identifier(required=True)
    refund_id = Identifier(required=True)


@dataclass(frozen=True)
class RefundClaim:
    """What a ``ClaimRefund`` left on the order."""

    order_id: str
    refund_id: str
    amount: Decimal
    already_applied: bool = False


def requested_lines(payload) -> list[tuple[str, int]]:
    if isinstance(payload, str):
        payload = json.loads(payload)
    return [(str(line["line_item_id"]), int(line["quantity"])) for line in payload]


@marketplace.command_handler(part_of=Order)
class RefundHandler:
    @handle(ClaimRefund)
    def claim_refund(self, command):
        order_repo = current_domain.repository_for(Order)
        order = order_repo.get(command.order_id)

        existing = order.find_refund(command.request_key)
        if existing is not None:
            if not existing.confirmed:
                raise ValidationError(
                    {"request_key": [f"Refund for order {order.order_number} is already being processed"]}
                )
            return RefundClaim(
                order_id=str(order.id),
                refund_id=str(existing.id),
                amount=quantize(existing.amount),
                already_applied=True,
            )

        computation = calculate_refund(order, requested_lines(command.lines))
        record = order.claim_refund(
            lines=[line.as_dict() for line in computation.lines],
            amount=computation.amount,
            kind=computation.kind.value,
            request_key=command.request_key,
            reason=command.reason,
            restock=command.restock,
        )
        order_repo.add(order)

        logger.info(
            "Refund claimed",
            order_id=str(order.id),
            refund_id=str(record.id),
            amount=str(computation.amount),
        )
        return RefundClaim(order_id=str(order.id), refund_id=str(record.id), amount=computation.amount)

    @handle(ReleaseRefundClaim)
    def release_refund_claim(self, command):
        order_repo = current_domain.repository_for(Order)
        order = order_repo.get(command.order_id)
        order.drop_refund_claim(command.refund_id)
        order_repo.add(order)
        logger.info("Refund claim released", order_id=str(order.id), refund_id=command.refund_id)

    @handle(ConfirmRefund)
    def confirm_refund(self, command):
        order_repo = current_domain.repository_for(Order)
        order = order_repo.get(command.order_id)

        record, movements = order.confirm_refund(command.refund_id, command.gateway_refund_id)

        ledger = InventoryLedger()
        for movement in movements:
            if movement["unshipped"]:
                ledger.release(str(order.id), movement["sku"], movement["unshipped"])
            if movement["shipped"] and record.restocked:
                ledger.restock(str(order.id), movement["sku"], movement["shipped"])
        ledger.flush()
        order_repo.add(order)

        logger.info(
            "Refund applied",
            order_id=str(order.id),
            order_number=order.order_number,
            amount=str(quantize(record.amount)),
            kind=record.kind,
            payment_status=order.payment_status,
        )
        return RefundResult.from_record(order, record)
