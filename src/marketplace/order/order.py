"""Order aggregate (CQRS): one vendor's share of a customer checkout.

Orders from one checkout share an ``order_group_id`` and, after the first
shipment, a tracking token. Each order carries three independent status
fields:

Order status:
    DRAFT → OPEN → COMPLETED
    {DRAFT, OPEN} → CANCELED      (only before anything has shipped)
    any non-archived → ARCHIVED   (terminal visibility flag)

Payment status:
    PENDING → PAID → PARTIALLY_REFUNDED → REFUNDED

Vendor fulfillment status (derived from line quantities after every change):
    UNFULFILLED → PARTIAL → FULFILLED
    non-terminal → CANCELED

An open order is completed once nothing is left to ship and payment has been
received, even if the payment was refunded in full afterwards.

The vendor's workflow flag (NORMAL, IN_PROGRESS, ON_HOLD) is independent of
the statuses above. ON_HOLD requires a reason and blocks shipments and label
purchases; refunds and cancellation are still allowed.

Money is computed as ``Decimal`` (see ``marketplace.shared.money``) and
stored rounded to cents.
"""

import json
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, HasMany, Identifier, Integer, String, Text, ValueObject

from marketplace.domain import marketplace
from marketplace.exceptions import PaymentNotConfirmed
from marketplace.order.events import (
    OrderArchived,
    OrderCanceled,
    OrderCompleted,
    OrderPaid,
    OrderPlaced,
    OrderWorkflowChanged,
    RefundIssued,
    ShippingLabelPurchased,
    TrackingTokenIssued,
    VendorShipmentRecorded,
)
from marketplace.shared.address import Address
from marketplace.shared.money import quantize, to_decimal, to_float


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    DRAFT = "draft"
    OPEN = "open"
    COMPLETED = "completed"
    CANCELED = "canceled"
    ARCHIVED = "archived"


class PaymentStatus(Enum):
    PENDING = "pending"
    PAID = "paid"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"


class FulfillmentStatus(Enum):
    UNFULFILLED = "unfulfilled"
    PARTIAL = "partial"
    FULFILLED = "fulfilled"
    CANCELED = "canceled"


class RefundKind(Enum):
    FULL = "full"
    PARTIAL = "partial"


class RefundState(Enum):
    PENDING = "pending"  # claimed, gateway not yet confirmed
    CONFIRMED = "confirmed"


class WorkflowStatus(Enum):
    NORMAL = "normal"
    IN_PROGRESS = "in_progress"
    ON_HOLD = "on_hold"


_VALID_TRANSITIONS = {
    OrderStatus.DRAFT: {OrderStatus.OPEN, OrderStatus.CANCELED, OrderStatus.ARCHIVED},
    OrderStatus.OPEN: {OrderStatus.COMPLETED, OrderStatus.CANCELED, OrderStatus.ARCHIVED},
    OrderStatus.COMPLETED: {OrderStatus.ARCHIVED},
    OrderStatus.CANCELED: {OrderStatus.ARCHIVED},
    OrderStatus.ARCHIVED: set(),  # terminal
}

# Payment states in which money has been captured
CAPTURED_PAYMENT_STATUSES = {PaymentStatus.PAID.value, PaymentStatus.PARTIALLY_REFUNDED.value}


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@marketplace.value_object(part_of="Order")
class VendorShippingRate:
    """The rate chosen for this vendor's shipment at checkout.

    ``rate_id`` is the provider's token, kept verbatim so the label can be
    bought later. Only the label and tracking fields change after checkout.
    """

    carrier = String(max_length=100)
    service = String(max_length=100)
    price = Float(default=0.0)
    currency = String(max_length=3, default="USD")
    rate_id = String(max_length=255)
    expires_at = DateTime()
    source = String(max_length=20, default="quoted")  # quoted, prorated, fallback, none
    label_url = String(max_length=1000)
    tracking_number = String(max_length=255)
    tracking_url = String(max_length=1000)

    def with_changes(self, **changes) -> "VendorShippingRate":
        values = {
            "carrier": self.carrier,
            "service": self.service,
            "price": self.price,
            "currency": self.currency,
            "rate_id": self.rate_id,
            "expires_at": self.expires_at,
            "source": self.source,
            "label_url": self.label_url,
            "tracking_number": self.tracking_number,
            "tracking_url": self.tracking_url,
        }
        values.update(changes)
        return VendorShippingRate(**values)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@marketplace.entity(part_of="Order")
class OrderLineItem:
    listing_id = Identifier(required=True)
    variant_id = Identifier()
    sku = String(required=True, max_length=100)
    title = String(required=True, max_length=255)
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(required=True, min_value=0.0)
    line_subtotal = Float(required=True)
    discount_amount = Float(default=0.0)
    line_total = Float(required=True)
    fulfilled_quantity = Integer(default=0)
    canceled_quantity = Integer(default=0)
    refunded_quantity = Integer(default=0)
    refunded_amount = Float(default=0.0)
    pending_refund_quantity = Integer(default=0)  # held by unconfirmed refund claims
    pending_refund_amount = Float(default=0.0)

    @property
    def refundable_quantity(self) -> int:
        return self.quantity - (self.refunded_quantity or 0) - (self.pending_refund_quantity or 0)

    @property
    def outstanding_quantity(self) -> int:
        """Units that still have to ship."""
        return self.quantity - (self.fulfilled_quantity or 0) - (self.canceled_quantity or 0)

    @property
    def remaining_refundable_amount(self) -> Decimal:
        return quantize(
            to_decimal(self.line_total) - to_decimal(self.refunded_amount) - to_decimal(self.pending_refund_amount)
        )


@marketplace.entity(part_of="Order")
class Fulfillment:
    """One vendor shipment event."""

    carrier = String(required=True, max_length=100)
    tracking_number = String(required=True, max_length=255)
    tracking_url = String(max_length=1000)
    quantities = Text(required=True)  # JSON {line_item_id: quantity}
    shipped_by = Identifier()
    shipped_at = DateTime(required=True)

    def covered(self) -> dict[str, int]:
        return json.loads(self.quantities)


@marketplace.entity(part_of="Order")
class RefundRecord:
    amount = Float(required=True)
    kind = String(required=True, choices=RefundKind)
    state = String(choices=RefundState, default=RefundState.PENDING.value)
    reason = String(max_length=500)
    lines = Text(required=True)  # JSON [{line_item_id, quantity, amount}]
    restocked = Boolean(default=False)
    gateway_refund_id = String(max_length=255)
    request_key = String(required=True, max_length=128)
    created_at = DateTime(required=True)

    @property
    def confirmed(self) -> bool:
        return self.state == RefundState.CONFIRMED.value

    def refunded_lines(self) -> list[dict]:
        return json.loads(self.lines)


@marketplace.entity(part_of="Order")
class OrderActivity:
    """Timeline entry shown to vendors and support."""

    kind = String(required=True, max_length=50)
    message = Text()
    occurred_at = DateTime(required=True)


# ---------------------------------------------------------------------------
# Aggregate Root (CQRS)
# ---------------------------------------------------------------------------
@marketplace.aggregate
class Order:
    order_number = String(required=True, max_length=30)
    order_group_id = Identifier(required=True)
    vendor_id = Identifier(required=True)
    customer_id = Identifier()
    buyer_identity_id = Identifier()
    customer_email = String(max_length=254)
    customer_name = String(max_length=200)
    currency = String(max_length=3, default="USD")
    subtotal = Float(default=0.0)
    discount_amount = Float(default=0.0)
    shipping_amount = Float(default=0.0)
    tax_amount = Float(default=0.0)
    total_amount = Float(default=0.0)
    refunded_amount = Float(default=0.0)
    status = String(choices=OrderStatus, default=OrderStatus.DRAFT.value)
    payment_status = String(choices=PaymentStatus, default=PaymentStatus.PENDING.value)
    vendor_fulfillment_status = String(choices=FulfillmentStatus, default=FulfillmentStatus.UNFULFILLED.value)
    workflow_status = String(choices=WorkflowStatus, default=WorkflowStatus.NORMAL.value)
    hold_reason = String(max_length=500)
    shipping_address = ValueObject(Address)
    billing_address = ValueObject(Address)
    shipping_rate = ValueObject(VendorShippingRate)
    tracking_token = String(max_length=64)
    payment_intent_id = String(max_length=255)
    payment_reference = String(max_length=255)
    cancellation_reason = String(max_length=500)
    items = HasMany(OrderLineItem)
    fulfillments = HasMany(Fulfillment)
    refunds = HasMany(RefundRecord)
    activities = HasMany(OrderActivity)
    placed_at = DateTime()
    paid_at = DateTime()
    completed_at = DateTime()
    canceled_at = DateTime()
    archived_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Invariants
    # -------------------------------------------------------------------
    @invariant.post
    def total_must_balance(self):
        expected = (
            to_decimal(self.subtotal)
            + to_decimal(self.shipping_amount)
            + to_decimal(self.tax_amount)
            - to_decimal(self.discount_amount)
        )
        if abs(quantize(expected) - quantize(self.total_amount)) > Decimal("0.005"):
            raise ValidationError({"total_amount": ["Total must equal subtotal + shipping + tax - discount"]})
        if to_decimal(self.total_amount) < 0:
            raise ValidationError({"total_amount": ["Total cannot be negative"]})

    @invariant.post
    def line_quantities_must_stay_within_ordered(self):
        for item in self.items or []:
            if (item.refunded_quantity or 0) + (item.pending_refund_quantity or 0) > item.quantity:
                raise ValidationError({"items": [f"{item.title}: refunded quantity exceeds ordered quantity"]})
            if (item.fulfilled_quantity or 0) + (item.canceled_quantity or 0) > item.quantity:
                raise ValidationError({"items": [f"{item.title}: shipped quantity exceeds ordered quantity"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        order_number: str,
        order_group_id: str,
        vendor_id: str,
        lines: list[dict],
        amounts: dict,
        shipping_address: Address,
        billing_address: Address | None = None,
        shipping_rate: VendorShippingRate | None = None,
        customer_id: str | None = None,
        buyer_identity_id: str | None = None,
        customer_email: str | None = None,
        customer_name: str | None = None,
        currency: str = "USD",
        payment_intent_id: str | None = None,
    ):
        """Create a draft order with its line items and money already allocated."""
        now = datetime.now(UTC)
        order = cls(
            order_number=order_number,
            order_group_id=order_group_id,
            vendor_id=vendor_id,
            customer_id=customer_id,
            buyer_identity_id=buyer_identity_id,
            customer_email=customer_email,
            customer_name=customer_name,
            currency=currency,
            subtotal=to_float(amounts["subtotal"]),
            discount_amount=to_float(amounts["discount"]),
            shipping_amount=to_float(amounts["shipping"]),
            tax_amount=to_float(amounts["tax"]),
            total_amount=to_float(amounts["total"]),
            status=OrderStatus.DRAFT.value,
            shipping_address=shipping_address,
            billing_address=billing_address or shipping_address,
            shipping_rate=shipping_rate,
            payment_intent_id=payment_intent_id,
            updated_at=now,
        )
        with atomic_change(order):
            for line in lines:
                order.add_items(
                    OrderLineItem(
                        listing_id=line["listing_id"],
                        variant_id=line.get("variant_id"),
                        sku=line["sku"],
                        title=line["title"],
                        quantity=line["quantity"],
                        unit_price=to_float(line["unit_price"]),
                        line_subtotal=to_float(line["line_subtotal"]),
                        discount_amount=to_float(line["discount"]),
                        line_total=to_float(line["line_total"]),
                    )
                )
        return order

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target: OrderStatus) -> None:
        current = OrderStatus(self.status)
        if target not in _VALID_TRANSITIONS.get(current, set()):
            raise ValidationError({"status": [f"Cannot transition from {current.value} to {target.value}"]})

    def record_activity(self, kind: str, message: str) -> None:
        self.add_activities(OrderActivity(kind=kind, message=message, occurred_at=datetime.now(UTC)))

    def item(self, line_item_id: str) -> OrderLineItem:
        item = next((i for i in self.items or [] if str(i.id) == str(line_item_id)), None)
        if item is None:
            raise ValidationError({"line_item_id": [f"Line item {line_item_id} not found on order {self.order_number}"]})
        return item

    @property
    def payment_captured(self) -> bool:
        return self.payment_status in CAPTURED_PAYMENT_STATUSES

    @property
    def has_shipments(self) -> bool:
        return bool(self.fulfillments)

    # -------------------------------------------------------------------
    # Placement
    # -------------------------------------------------------------------
    def place(self) -> None:
        self._assert_can_transition(OrderStatus.OPEN)
        now = datetime.now(UTC)
        self.status = OrderStatus.OPEN.value
        self.placed_at = now
        self.updated_at = now
        self.record_activity("placed", f"Order {self.order_number} placed")

        items_payload = [
            {
                "line_item_id": str(i.id),
                "sku": i.sku,
                "title": i.title,
                "quantity": i.quantity,
                "unit_price": i.unit_price,
                "line_total": i.line_total,
            }
            for i in self.items
        ]
        self.raise_(
            OrderPlaced(
                order_id=str(self.id),
                order_number=self.order_number,
                order_group_id=str(self.order_group_id),
                vendor_id=str(self.vendor_id),
                customer_id=str(self.customer_id) if self.customer_id else None,
                items=json.dumps(items_payload),
                subtotal=self.subtotal,
                discount_amount=self.discount_amount,
                shipping_amount=self.shipping_amount,
                tax_amount=self.tax_amount,
                total_amount=self.total_amount,
                currency=self.currency,
                placed_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Payment
    # -------------------------------------------------------------------
    def attach_payment_intent(self, payment_intent_id: str) -> None:
        self.payment_intent_id = payment_intent_id
        self.updated_at = datetime.now(UTC)

    def mark_paid(self, payment_reference: str, paid_at: datetime | None = None) -> bool:
        """Record captured payment. Returns False when payment was already recorded."""
        if self.payment_status != PaymentStatus.PENDING.value:
            return False

        paid_at = paid_at or datetime.now(UTC)
        self.payment_status = PaymentStatus.PAID.value
        self.payment_reference = payment_reference
        self.paid_at = paid_at
        self.updated_at = paid_at
        self.record_activity("payment_received", f"Payment {payment_reference} received")
        self.raise_(
            OrderPaid(
                order_id=str(self.id),
                order_group_id=str(self.order_group_id),
                payment_reference=payment_reference,
                amount=self.total_amount,
                paid_at=paid_at,
            )
        )
        self._complete_if_done()
        return True

    # -------------------------------------------------------------------
    # Fulfillment
    # -------------------------------------------------------------------
    def assert_can_ship(self) -> None:
        if not self.payment_captured:
            raise PaymentNotConfirmed(str(self.id), self.payment_status)
        if self.status != OrderStatus.OPEN.value:
            raise ValidationError({"status": [f"Order {self.order_number} is {self.status} and cannot be fulfilled"]})
        if self.on_hold:
            raise ValidationError(
                {"workflow_status": [f"Order {self.order_number} is on hold: {self.hold_reason}"]}
            )

    @property
    def on_hold(self) -> bool:
        return self.workflow_status == WorkflowStatus.ON_HOLD.value

    def set_workflow_status(self, workflow_status: str, hold_reason: str | None = None) -> bool:
        """Change the vendor's workflow flag. Returns False when nothing changed.

        Statuses, stock and payment are left untouched.
        """
        target = WorkflowStatus(workflow_status)
        if self.status in (OrderStatus.CANCELED.value, OrderStatus.ARCHIVED.value):
            raise ValidationError({"status": [f"Order {self.order_number} is {self.status}"]})

        reason = (hold_reason or "").strip() or None
        if target == WorkflowStatus.ON_HOLD and not reason:
            raise ValidationError({"hold_reason": ["A reason is required to put an order on hold"]})
        if target != WorkflowStatus.ON_HOLD:
            reason = None
        if self.workflow_status == target.value and self.hold_reason == reason:
            return False

        previous = self.workflow_status
        now = datetime.now(UTC)
        self.workflow_status = target.value
        self.hold_reason = reason
        self.updated_at = now

        messages = {
            WorkflowStatus.NORMAL: "Order returned to normal",
            WorkflowStatus.IN_PROGRESS: "Order marked as in progress",
            WorkflowStatus.ON_HOLD: f"Order put on hold: {reason}",
        }
        self.record_activity("workflow_changed", messages[target])
        self.raise_(
            OrderWorkflowChanged(
                order_id=str(self.id),
                previous_status=previous,
                workflow_status=target.value,
                hold_reason=reason,
                changed_at=now,
            )
        )
        return True

    def find_fulfillment(self, carrier: str, tracking_number: str) -> Fulfillment | None:
        return next(
            (
                f
                for f in self.fulfillments or []
                if f.carrier.lower() == carrier.lower() and f.tracking_number == tracking_number
            ),
            None,
        )

    def record_shipment(
        self,
        carrier: str,
        tracking_number: str,
        quantities: dict[str, int] | None = None,
        tracking_url: str | None = None,
        shipped_by: str | None = None,
    ) -> tuple[Fulfillment, bool]:
        """Record a vendor shipment.

        Idempotent per (carrier, tracking number): a resubmission returns the
        existing row and ``False``. ``quantities`` defaults to every unit that
        has not shipped yet.
        """
        if not carrier or not tracking_number:
            raise ValidationError({"tracking_number": ["Carrier and tracking number are required"]})

        existing = self.find_fulfillment(carrier, tracking_number)
        if existing is not None:
            return existing, False

        self.assert_can_ship()

        if not quantities:
            quantities = {str(i.id): i.outstanding_quantity for i in self.items if i.outstanding_quantity > 0}
        if not quantities:
            raise ValidationError({"items": [f"Nothing left to ship on order {self.order_number}"]})

        errors = []
        for line_item_id, quantity in quantities.items():
            item = self.item(line_item_id)
            if quantity is None or quantity <= 0:
                errors.append(f"{item.title}: shipped quantity must be positive")
            elif quantity > item.outstanding_quantity:
                errors.append(f"{item.title}: {quantity} requested, {item.outstanding_quantity} left to ship")
        if errors:
            raise ValidationError({"items": errors})

        now = datetime.now(UTC)
        with atomic_change(self):
            for line_item_id, quantity in quantities.items():
                item = self.item(line_item_id)
                item.fulfilled_quantity = (item.fulfilled_quantity or 0) + quantity
            fulfillment = Fulfillment(
                carrier=carrier,
                tracking_number=tracking_number,
                tracking_url=tracking_url,
                quantities=json.dumps({str(k): v for k, v in quantities.items()}),
                shipped_by=shipped_by,
                shipped_at=now,
            )
            self.add_fulfillments(fulfillment)
            if self.shipping_rate is not None and not self.shipping_rate.tracking_number:
                self.shipping_rate = self.shipping_rate.with_changes(
                    tracking_number=tracking_number, tracking_url=tracking_url
                )
            self.refresh_fulfillment_status()
            self.updated_at = now

        self.record_activity("shipped", f"Shipped via {carrier}, tracking {tracking_number}")
        self.raise_(
            VendorShipmentRecorded(
                order_id=str(self.id),
                order_group_id=str(self.order_group_id),
                vendor_id=str(self.vendor_id),
                fulfillment_id=str(fulfillment.id),
                carrier=carrier,
                tracking_number=tracking_number,
                quantities=fulfillment.quantities,
                vendor_fulfillment_status=self.vendor_fulfillment_status,
                shipped_at=now,
            )
        )
        self._complete_if_done()
        return fulfillment, True

    def refresh_fulfillment_status(self) -> None:
        """Derive the vendor fulfillment status from line quantities."""
        if self.vendor_fulfillment_status == FulfillmentStatus.CANCELED.value:
            return

        items = self.items or []
        shipped = sum(i.fulfilled_quantity or 0 for i in items)
        if items and all(i.outstanding_quantity == 0 for i in items):
            status = FulfillmentStatus.FULFILLED if shipped else FulfillmentStatus.CANCELED
        elif shipped:
            status = FulfillmentStatus.PARTIAL
        else:
            status = FulfillmentStatus.UNFULFILLED
        self.vendor_fulfillment_status = status.value

    def issue_tracking_token(self, token: str) -> bool:
        if self.tracking_token:
            return False
        self.tracking_token = token
        self.raise_(
            TrackingTokenIssued(
                order_id=str(self.id),
                order_group_id=str(self.order_group_id),
                tracking_token=token,
            )
        )
        return True

    def attach_label(
        self,
        rate_id: str,
        tracking_number: str,
        label_url: str,
        tracking_url: str | None = None,
        price_drift: Decimal | None = None,
        requoted: bool = False,
        requote: dict | None = None,
    ) -> None:
        """Store a purchased label on the shipping rate, with any re-quoted token."""
        changes = {
            "rate_id": rate_id,
            "label_url": label_url,
            "tracking_number": tracking_number,
            "tracking_url": tracking_url,
        }
        if requote:
            changes.update(requote)
        self.shipping_rate = (self.shipping_rate or VendorShippingRate()).with_changes(**changes)
        self.updated_at = datetime.now(UTC)

        drift = quantize(price_drift or 0)
        if requoted:
            self.record_activity(
                "rate_requoted",
                f"Shipping rate expired and was re-quoted, price drift {drift} {self.currency}",
            )
        self.record_activity("label_purchased", f"Label purchased, tracking {tracking_number}")
        self.raise_(
            ShippingLabelPurchased(
                order_id=str(self.id),
                rate_id=rate_id,
                tracking_number=tracking_number,
                label_url=label_url,
                requoted=requoted,
                price_drift=float(drift),
            )
        )

    # -------------------------------------------------------------------
    # Completion, cancellation, archiving
    # -------------------------------------------------------------------
    def _complete_if_done(self) -> None:
        if (
            self.status == OrderStatus.OPEN.value
            and self.vendor_fulfillment_status == FulfillmentStatus.FULFILLED.value
            and self.payment_status != PaymentStatus.PENDING.value
        ):
            now = datetime.now(UTC)
            self.status = OrderStatus.COMPLETED.value
            self.completed_at = now
            self.updated_at = now
            self.record_activity("completed", "Order completed")
            self.raise_(OrderCompleted(order_id=str(self.id), completed_at=now))

    def cancel(self, reason: str | None = None) -> dict[str, int]:
        """Cancel before anything ships. Returns ``{sku: units}`` still to release."""
        if self.has_shipments:
            raise ValidationError({"status": [f"Order {self.order_number} has shipments and cannot be canceled"]})
        self._assert_can_transition(OrderStatus.CANCELED)

        now = datetime.now(UTC)
        to_release: dict[str, int] = {}
        with atomic_change(self):
            for item in self.items or []:
                outstanding = item.outstanding_quantity
                if outstanding > 0:
                    to_release[item.sku] = to_release.get(item.sku, 0) + outstanding
                    item.canceled_quantity = (item.canceled_quantity or 0) + outstanding
            self.status = OrderStatus.CANCELED.value
            self.vendor_fulfillment_status = FulfillmentStatus.CANCELED.value
            self.cancellation_reason = reason
            self.canceled_at = now
            self.updated_at = now

        self.record_activity("canceled", reason or "Order canceled")
        self.raise_(
            OrderCanceled(
                order_id=str(self.id),
                order_group_id=str(self.order_group_id),
                reason=reason,
                canceled_at=now,
            )
        )
        return to_release

    def archive(self) -> None:
        if self.status == OrderStatus.ARCHIVED.value:
            raise ValidationError({"status": [f"Order {self.order_number} is already archived"]})
        self._assert_can_transition(OrderStatus.ARCHIVED)

        now = datetime.now(UTC)
        self.status = OrderStatus.ARCHIVED.value
        self.archived_at = now
        self.updated_at = now
        self.raise_(OrderArchived(order_id=str(self.id), archived_at=now))

    # -------------------------------------------------------------------
    # Refunds
    # -------------------------------------------------------------------
    def find_refund(self, request_key: str) -> RefundRecord | None:
        return next((r for r in self.refunds or [] if r.request_key == request_key), None)

    def refund(self, refund_id: str) -> RefundRecord:
        record = next((r for r in self.refunds or [] if str(r.id) == str(refund_id)), None)
        if record is None:
            raise ValidationError({"refund_id": [f"Refund {refund_id} not found on order {self.order_number}"]})
        return record

    def claim_refund(
        self,
        lines: list[dict],
        amount: Decimal,
        kind: str,
        request_key: str,
        reason: str | None = None,
        restock: bool = False,
    ) -> RefundRecord:
        """Hold an already computed refund before the gateway is asked for money.

        ``lines`` hold ``line_item_id``, ``quantity`` and ``amount``. The claimed
        units and amounts stop being refundable until the claim is confirmed
        or dropped, and the request key is taken.
        """
        if not self.payment_captured:
            raise ValidationError({"payment_status": [f"Order {self.order_number} has no captured payment to refund"]})
        if self.find_refund(request_key) is not None:
            raise ValidationError({"request_key": [f"Refund request {request_key} was already made"]})

        with atomic_change(self):
            for line in lines:
                item = self.item(line["line_item_id"])
                item.pending_refund_quantity = (item.pending_refund_quantity or 0) + line["quantity"]
                item.pending_refund_amount = to_float(
                    to_decimal(item.pending_refund_amount) + to_decimal(line["amount"])
                )
            record = RefundRecord(
                amount=to_float(amount),
                kind=kind,
                state=RefundState.PENDING.value,
                reason=reason,
                lines=json.dumps(lines),
                restocked=restock,
                request_key=request_key,
                created_at=datetime.now(UTC),
            )
            self.add_refunds(record)
            self.updated_at = record.created_at
        return record

    def _unclaim(self, record: RefundRecord) -> None:
        for line in record.refunded_lines():
            item = self.item(line["line_item_id"])
            item.pending_refund_quantity = (item.pending_refund_quantity or 0) - line["quantity"]
            item.pending_refund_amount = to_float(to_decimal(item.pending_refund_amount) - to_decimal(line["amount"]))

    def drop_refund_claim(self, refund_id: str) -> None:
        """Give back what a claim held after the gateway declined the refund."""
        record = self.refund(refund_id)
        if record.confirmed:
            raise ValidationError({"refund_id": [f"Refund {refund_id} was already confirmed"]})
        with atomic_change(self):
            self._unclaim(record)
            self.remove_refunds(record)
            self.updated_at = datetime.now(UTC)

    def confirm_refund(self, refund_id: str, gateway_refund_id: str | None = None) -> tuple[RefundRecord, list[dict]]:
        """Apply a claimed refund once the gateway has returned the money.

        Refunded units that had not shipped are canceled on the line. Returns
        the record and, per line, how many units were unshipped and how many
        had shipped.
        """
        record = self.refund(refund_id)
        if record.confirmed:
            raise ValidationError({"refund_id": [f"Refund {refund_id} was already confirmed"]})

        now = datetime.now(UTC)
        movements = []
        with atomic_change(self):
            self._unclaim(record)
            for line in record.refunded_lines():
                item = self.item(line["line_item_id"])
                quantity = line["quantity"]
                unshipped = min(quantity, item.outstanding_quantity)
                item.refunded_quantity = (item.refunded_quantity or 0) + quantity
                item.refunded_amount = to_float(to_decimal(item.refunded_amount) + to_decimal(line["amount"]))
                item.canceled_quantity = (item.canceled_quantity or 0) + unshipped
                movements.append({"sku": item.sku, "unshipped": unshipped, "shipped": quantity - unshipped})

            record.state = RefundState.CONFIRMED.value
            record.gateway_refund_id = gateway_refund_id
            self.refunded_amount = to_float(to_decimal(self.refunded_amount) + to_decimal(record.amount))

            fully_refunded = all((i.refunded_quantity or 0) == i.quantity for i in self.items)
            self.payment_status = (
                PaymentStatus.REFUNDED.value if fully_refunded else PaymentStatus.PARTIALLY_REFUNDED.value
            )
            self.refresh_fulfillment_status()
            if (
                self.vendor_fulfillment_status == FulfillmentStatus.CANCELED.value
                and self.status == OrderStatus.OPEN.value
            ):
                self.status = OrderStatus.CANCELED.value
                self.canceled_at = now
            self.updated_at = now

        self.record_activity("refunded", f"Refunded {quantize(record.amount)} {self.currency} ({record.kind})")
        self.raise_(
            RefundIssued(
                order_id=str(self.id),
                refund_id=str(record.id),
                amount=record.amount,
                kind=record.kind,
                lines=record.lines,
                restocked=bool(record.restocked),
                payment_status=self.payment_status,
                refunded_at=now,
            )
        )
        self._complete_if_done()
        return record, movements

    def apply_refund(
        self,
        lines: list[dict],
        amount: Decimal,
        kind: str,
        request_key: str,
        reason: str | None = None,
        restock: bool = False,
        gateway_refund_id: str | None = None,
    ) -> tuple[RefundRecord, list[dict]]:
        """Claim and confirm in one step, for refunds already settled elsewhere."""
        record = self.claim_refund(lines, amount, kind, request_key, reason=reason, restock=restock)
        return self.confirm_refund(str(record.id), gateway_refund_id)


@marketplace.repository(part_of=Order)
class OrderRepository:
    def _load(self, **filters) -> list[Order]:
        rows = self._dao.query.filter(**filters).order_by("order_number").all().items
        return [self.get(row.id) for row in rows]

    def for_group(self, order_group_id: str) -> list[Order]:
        return self._load(order_group_id=order_group_id)

    def for_tracking_token(self, tracking_token: str) -> list[Order]:
        return self._load(tracking_token=tracking_token)

    def for_payment_intent(self, payment_intent_id: str) -> list[Order]:
        return self._load(payment_intent_id=payment_intent_id)
