"""Operations exposed to the rest of the system.

Every operation follows the same shape: read what is needed and call external
services (rate provider, payment gateway) first, then process one command so
the state change happens in a single unit of work with the external results
passed in as resolved values, then schedule best-effort follow-ups with
``run_detached``. A follow-up failure is logged and never turns a committed
operation into a reported failure.

Refunds are the exception: money leaves at the gateway, so the refund is
claimed on the order in its own unit of work first and confirmed or released
once the gateway has answered.

All functions expect an active ``marketplace`` domain context.
"""

import json
from decimal import Decimal

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from marketplace.catalogue.vendor import Vendor
from marketplace.checkout.availability import check_shipping_availability
from marketplace.checkout.cart import CartLine, group_by_vendor, resolve_cart
from marketplace.checkout.permissions import check_purchase_permission
from marketplace.checkout.placement import OrderGroup, PlaceCheckout
from marketplace.exceptions import ExternalServiceError
from marketplace.identity.caller import GUEST, Caller
from marketplace.inventory import levels
from marketplace.order.access import ensure_vendor_operator
from marketplace.order.cancellation import ArchiveOrder, CancelOrder, SetWorkflowStatus
from marketplace.order.labels import LabelOutcome, LabelPurchaser
from marketplace.order.order import Order
from marketplace.order.refund import (
    ClaimRefund,
    ConfirmRefund,
    RefundReceipt,
    RefundResult,
    ReleaseRefundClaim,
    refund_fingerprint,
    requested_lines,
)
from marketplace.order.shipping import MarkVendorShipped, ShipmentResult
from marketplace.order.status import aggregate_fulfillment_status
from marketplace.payments.gateway import get_gateway
from marketplace.payments.intent import AttachPaymentIntent
from marketplace.payments.webhook import PaymentConfirmation, PaymentEventOutcome, RecordPaymentEvent
from marketplace.shared.money import ZERO, quantize
from marketplace.shipping.allocator import ShippingQuote, ShippingRateAllocator, VendorShipment
from marketplace.shipping.parcel import build_parcel
from marketplace.tracking import view
from marketplace.tracking.dispatch import (
    open_support_conversations,
    run_detached,
    send_payment_received,
    send_shipment_notification,
)

logger = structlog.get_logger(__name__)


def _caller_json(caller: Caller | None) -> str:
    return json.dumps((caller or GUEST).as_dict())


def _process(command):
    return current_domain.process(command, asynchronous=False)


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------
def _shipments(lines: list[CartLine], vendors: dict[str, Vendor]) -> list[VendorShipment]:
    shipments = []
    for vendor_id, group in group_by_vendor(lines).items():
        vendor = vendors[vendor_id]
        shipments.append(
            VendorShipment(
                vendor_id=vendor_id,
                vendor_name=vendor.name,
                origin=vendor.origin.as_dict() if vendor.origin else {},
                parcel=build_parcel([line.physical() for line in group]),
            )
        )
    return shipments


def quote_shipping(items: list[dict], shipping_address: dict) -> ShippingQuote:
    """Global shipping options for a cart, one priced rate per vendor underneath."""
    lines, vendors = resolve_cart(items)
    check_shipping_availability(lines, shipping_address["country"], vendors)
    return ShippingRateAllocator().quote(_shipments(lines, vendors), shipping_address)


def create_checkout(
    caller: Caller | None,
    items: list[dict],
    shipping_address: dict,
    customer_email: str,
    customer_name: str | None = None,
    billing_address: dict | None = None,
    service: str | None = None,
    discount_amount=0,
    shipping_amount=0,
    tax_amount=0,
    payment_intent_id: str | None = None,
    order_group_id: str | None = None,
) -> OrderGroup:
    """Split a cart into one order per vendor.

    When ``service`` names a global shipping service, every vendor's parcel
    is quoted and priced separately; otherwise ``shipping_amount`` is
    pro-rated across vendors.
    """
    caller = caller or GUEST

    # Reject a doomed cart before spending a round trip on the rate provider
    lines, vendors = resolve_cart(items)
    check_purchase_permission(caller, lines, vendors)
    check_shipping_availability(lines, shipping_address["country"], vendors)

    vendor_rates = None
    if service:
        allocator = ShippingRateAllocator()
        quote = allocator.quote(_shipments(lines, vendors), shipping_address)
        if quote.vendor_rates:
            selection = allocator.select(quote, service)
            vendor_rates = {vendor_id: {**rate.as_dict(), "source": "quoted"} for vendor_id, rate in selection.items()}
        else:
            # Nobody could be quoted: every vendor takes the flat fallback or ships free
            logger.info("No vendor parcel could be measured", service=service, vendors=quote.unmeasured)
            vendor_rates = {}

    group = _process(
        PlaceCheckout(
            order_group_id=order_group_id,
            caller=_caller_json(caller),
            items=json.dumps(items),
            shipping_address=json.dumps(shipping_address),
            billing_address=json.dumps(billing_address) if billing_address else None,
            customer_email=customer_email,
            customer_name=customer_name,
            vendor_rates=json.dumps(vendor_rates) if vendor_rates is not None else None,
            discount_amount=float(quantize(discount_amount)),
            shipping_amount=float(quantize(shipping_amount)),
            tax_amount=float(quantize(tax_amount)),
            payment_intent_id=payment_intent_id,
        )
    )

    run_detached(
        open_support_conversations,
        [
            {"vendor_id": o.vendor_id, "customer_email": customer_email, "order_number": o.order_number}
            for o in group.orders
        ],
    )
    return group


# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------
def create_payment_intent(order_group_id: str) -> dict:
    """Ask the gateway to collect the whole checkout total for an order group."""
    orders = current_domain.repository_for(Order).for_group(order_group_id)
    if not orders:
        raise ObjectNotFoundError({"_entity": f"Order group {order_group_id} not found"})

    amount = quantize(sum((Decimal(str(o.total_amount)) for o in orders), ZERO))
    currency = orders[0].currency
    intent = get_gateway().create_payment_intent(amount, currency, {"order_group_id": order_group_id})
    _process(AttachPaymentIntent(order_group_id=order_group_id, payment_intent_id=intent.reference))

    logger.info("Payment intent created", order_group_id=order_group_id, amount=str(amount))
    return {
        "payment_intent_id": intent.reference,
        "client_secret": intent.client_secret,
        "amount": float(amount),
        "currency": currency,
    }


def confirm_payment_event(payload: str, signature: str) -> PaymentConfirmation:
    """Verify a gateway webhook and record the payment exactly once."""
    event = get_gateway().confirm_event(payload, signature)
    confirmation = _process(
        RecordPaymentEvent(
            idempotency_key=event.idempotency_key,
            event_type=event.event_type,
            reference_id=event.reference_id,
            order_group_id=event.metadata.get("order_group_id"),
            amount=float(event.amount),
            fee_amount=float(event.fee_amount),
            currency=event.currency,
        )
    )

    if confirmation.outcome == PaymentEventOutcome.NEW:
        orders = current_domain.repository_for(Order).for_group(confirmation.order_group_id)
        recipient = next((o.customer_email for o in orders if o.customer_email), None)
        if recipient:
            run_detached(
                send_payment_received,
                recipient,
                confirmation.order_group_id,
                [o.order_number for o in orders],
                float(event.amount),
            )
    return confirmation


# ---------------------------------------------------------------------------
# Fulfillment
# ---------------------------------------------------------------------------
def mark_vendor_shipped(
    caller: Caller,
    order_id: str,
    carrier: str,
    tracking_number: str,
    covered_lines: list[dict] | None = None,
    tracking_url: str | None = None,
) -> ShipmentResult:
    result = _process(
        MarkVendorShipped(
            order_id=order_id,
            caller=_caller_json(caller),
            carrier=carrier,
            tracking_number=tracking_number,
            tracking_url=tracking_url,
            covered_lines=json.dumps(covered_lines) if covered_lines else None,
        )
    )
    if result.notification is not None:
        run_detached(send_shipment_notification, result.notification)
    return result


def purchase_shipping_label(caller: Caller, order_id: str) -> LabelOutcome:
    order = current_domain.repository_for(Order).get(order_id)
    ensure_vendor_operator(caller, order, "buy a label for")
    return _process(LabelPurchaser().purchase(order))


def cancel_order(caller: Caller, order_id: str, reason: str | None = None) -> dict[str, int]:
    return _process(CancelOrder(order_id=order_id, caller=_caller_json(caller), reason=reason))


def archive_order(caller: Caller, order_id: str) -> str:
    return _process(ArchiveOrder(order_id=order_id, caller=_caller_json(caller)))


def set_workflow_status(caller: Caller, order_id: str, workflow_status: str, hold_reason: str | None = None) -> str:
    return _process(
        SetWorkflowStatus(
            order_id=order_id,
            caller=_caller_json(caller),
            workflow_status=workflow_status,
            hold_reason=hold_reason,
        )
    )


def get_aggregate_fulfillment_status(order_group_id: str) -> str:
    return aggregate_fulfillment_status(order_group_id)


def get_tracking_view(tracking_token: str) -> dict:
    return view.get_tracking_view(tracking_token)


# ---------------------------------------------------------------------------
# Refunds
# ---------------------------------------------------------------------------
def process_refund(
    caller: Caller,
    order_id: str,
    lines: list[dict],
    reason: str | None = None,
    restock: bool = False,
    idempotency_key: str | None = None,
) -> RefundResult:
    """Refund lines of a vendor order.

    The refund is claimed on the order before the gateway is asked for
    money, so an overlapping request for the same units or the same key is
    turned away without a second payout.
    """
    order = current_domain.repository_for(Order).get(order_id)
    ensure_vendor_operator(caller, order, "refund")

    requests = requested_lines(lines)
    request_key = idempotency_key or refund_fingerprint(order_id, requests, reason, restock)
    claim = _process(
        ClaimRefund(
            order_id=order_id,
            lines=json.dumps([{"line_item_id": i, "quantity": q} for i, q in requests]),
            request_key=request_key,
            reason=reason,
            restock=restock,
        )
    )
    if claim.already_applied:
        logger.info("Refund already applied", order_id=order_id, refund_id=claim.refund_id)
        order = current_domain.repository_for(Order).get(order_id)
        return RefundResult.from_record(order, order.refund(claim.refund_id), already_applied=True)

    try:
        confirmation = get_gateway().refund(order.payment_reference, claim.amount, reason, idempotency_key=request_key)
    except Exception:
        _process(ReleaseRefundClaim(order_id=order_id, refund_id=claim.refund_id))
        raise

    if not confirmation.success:
        _process(ReleaseRefundClaim(order_id=order_id, refund_id=claim.refund_id))
        logger.warning(
            "Gateway refused refund",
            order_id=order_id,
            amount=str(claim.amount),
            reason=confirmation.failure_reason,
        )
        raise ExternalServiceError("payment_gateway", confirmation.failure_reason or "Refund failed")

    try:
        return _process(
            ConfirmRefund(
                order_id=order_id,
                refund_id=claim.refund_id,
                gateway_refund_id=confirmation.gateway_refund_id,
            )
        )
    except Exception:
        # The claim stays pending, so the units cannot be refunded a second time
        logger.error(
            "Gateway refund succeeded but was not recorded",
            order_id=order_id,
            refund_id=claim.refund_id,
            gateway_refund_id=confirmation.gateway_refund_id,
            amount=str(claim.amount),
        )
        raise


def refund_receipt(order_id: str, refund_id: str) -> str:
    order = current_domain.repository_for(Order).get(order_id)
    vendor = current_domain.repository_for(Vendor).get(order.vendor_id)
    return RefundReceipt.for_refund(order, refund_id, vendor.name).render()


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------
def stock_levels(vendor_id: str | None = None) -> list[dict]:
    return levels.stock_levels(vendor_id)
