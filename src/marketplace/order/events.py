"""Domain events raised by the Order aggregate."""

from protean.fields import Boolean, DateTime, Float, Identifier, String, Text

from marketplace.domain import marketplace


@marketplace.event(part_of="Order")
class OrderPlaced:
    __version__ = "v1"

    order_id = Identifier(required=True)
    order_number = String(required=True, max_length=30)
    order_group_id = Identifier(required=True)
    vendor_id = Identifier(required=True)
    customer_id = Identifier()
    items = Text(required=True)  # JSON
    subtotal = Float(required=True)
    discount_amount = Float(required=True)
    shipping_amount = Float(required=True)
    tax_amount = Float(required=True)
    total_amount = Float(required=True)
    currency = String(max_length=3, required=True)
    placed_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class OrderPaid:
    __version__ = "v1"

    order_id = Identifier(required=True)
    order_group_id = Identifier(required=True)
    payment_reference = String(required=True, max_length=255)
    amount = Float(required=True)
    paid_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class VendorShipmentRecorded:
    __version__ = "v1"

    order_id = Identifier(required=True)
    order_group_id = Identifier(required=True)
    vendor_id = Identifier(required=True)
    fulfillment_id = Identifier(required=True)
    carrier = String(required=True, max_length=100)
    tracking_number = String(required=True, max_length=255)
    quantities = Text(required=True)  # JSON {line_item_id: quantity}
    vendor_fulfillment_status = String(required=True, max_length=20)
    shipped_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class TrackingTokenIssued:
    __version__ = "v1"

    order_id = Identifier(required=True)
    order_group_id = Identifier(required=True)
    tracking_token = String(required=True, max_length=64)


@marketplace.event(part_of="Order")
class OrderCompleted:
    __version__ = "v1"

    order_id = Identifier(required=True)
    completed_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class OrderCanceled:
    __version__ = "v1"

    order_id = Identifier(required=True)
    order_group_id = Identifier(required=True)
    reason = String(max_length=500)
    canceled_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class OrderArchived:
    __version__ = "v1"

    order_id = Identifier(required=True)
    archived_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class RefundIssued:
    __version__ = "v1"

    order_id = Identifier(required=True)
    refund_id = Identifier(required=True)
    amount = Float(required=True)
    kind = String(required=True, max_length=10)
    lines = Text(required=True)  # JSON
    restocked = Boolean(default=False)
    payment_status = String(required=True, max_length=30)
    refunded_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class ShippingLabelPurchased:
    __version__ = "v1"

    order_id = Identifier(required=True)
    rate_id = String(required=True, max_length=255)
    tracking_number = String(required=True, max_length=255)
    label_url = String(max_length=1000)
    requoted = Boolean(default=False)
    price_drift = Float(default=0.0)


@marketplace.event(part_of="Order")
class OrderWorkflowChanged:
    __version__ = "v1"

    order_id = Identifier(required=True)
    previous_status = String(max_length=20)
    workflow_status = String(required=True, max_length=20)
    hold_reason = String(max_length=500)
    changed_at = DateTime(required=True)
