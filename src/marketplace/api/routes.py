"""FastAPI routes for the marketplace engine."""

import json

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import PlainTextResponse
from protean.utils.globals import current_domain

from marketplace import operations
from marketplace.api.dependencies import current_caller
from marketplace.api.schemas import (
    CancelOrderRequest,
    CancelOrderResponse,
    CheckoutRequest,
    DefineShippingProfileRequest,
    LabelResponse,
    ListingIdResponse,
    MarkShippedRequest,
    MasterStatusResponse,
    OrderGroupResponse,
    PaymentEventResponse,
    PaymentIntentResponse,
    QuoteShippingRequest,
    ReceiveStockRequest,
    RefundRequest,
    RefundResponse,
    RegisterListingRequest,
    RegisterVendorRequest,
    ShipmentResponse,
    ShippingProfileIdResponse,
    StatusResponse,
    StockLevelResponse,
    StockUnitIdResponse,
    VendorIdResponse,
    WorkflowStatusRequest,
    WorkflowStatusResponse,
)
from marketplace.catalogue.registration import DefineShippingProfile, RegisterListing, RegisterVendor
from marketplace.identity.caller import Caller
from marketplace.inventory.receiving import ReceiveStock
from marketplace.payments.gateway import get_gateway

# ---------------------------------------------------------------------------
# Catalogue Router
# ---------------------------------------------------------------------------
catalogue_router = APIRouter(tags=["catalogue"])


@catalogue_router.post("/vendors", status_code=201, response_model=VendorIdResponse)
async def register_vendor(body: RegisterVendorRequest) -> VendorIdResponse:
    command = RegisterVendor(
        name=body.name,
        owner_id=body.owner_id,
        support_email=body.support_email,
        origin=json.dumps(body.origin.model_dump()) if body.origin else None,
    )
    result = current_domain.process(command, asynchronous=False)
    return VendorIdResponse(vendor_id=result)


@catalogue_router.post(
    "/vendors/{vendor_id}/shipping-profiles", status_code=201, response_model=ShippingProfileIdResponse
)
async def define_shipping_profile(vendor_id: str, body: DefineShippingProfileRequest) -> ShippingProfileIdResponse:
    command = DefineShippingProfile(
        vendor_id=vendor_id,
        name=body.name,
        destinations=json.dumps([d.model_dump() for d in body.destinations]),
        make_default=body.make_default,
    )
    result = current_domain.process(command, asynchronous=False)
    return ShippingProfileIdResponse(shipping_profile_id=result)


@catalogue_router.post("/listings", status_code=201, response_model=ListingIdResponse)
async def register_listing(body: RegisterListingRequest) -> ListingIdResponse:
    command = RegisterListing(
        vendor_id=body.vendor_id,
        sku=body.sku,
        title=body.title,
        price=body.price,
        weight=body.weight,
        length=body.length,
        width=body.width,
        height=body.height,
        shipping_profile_id=body.shipping_profile_id,
        variants=json.dumps([v.model_dump() for v in body.variants]),
    )
    result = current_domain.process(command, asynchronous=False)
    return ListingIdResponse(listing_id=result)


# ---------------------------------------------------------------------------
# Inventory Router
# ---------------------------------------------------------------------------
inventory_router = APIRouter(prefix="/stock", tags=["inventory"])


@inventory_router.post("/receive", status_code=201, response_model=StockUnitIdResponse)
async def receive_stock(body: ReceiveStockRequest) -> StockUnitIdResponse:
    command = ReceiveStock(listing_id=body.listing_id, variant_id=body.variant_id, quantity=body.quantity)
    result = current_domain.process(command, asynchronous=False)
    return StockUnitIdResponse(stock_unit_id=result)


@inventory_router.get("", response_model=list[StockLevelResponse])
async def list_stock_levels(vendor_id: str | None = None) -> list[StockLevelResponse]:
    return [StockLevelResponse(**row) for row in operations.stock_levels(vendor_id)]


# ---------------------------------------------------------------------------
# Checkout Router
# ---------------------------------------------------------------------------
checkout_router = APIRouter(tags=["checkout"])


@checkout_router.post("/checkout/quote")
async def quote_shipping(body: QuoteShippingRequest) -> dict:
    """Global shipping options for a cart."""
    quote = operations.quote_shipping(
        items=[item.model_dump() for item in body.items],
        shipping_address=body.shipping_address.model_dump(),
    )
    return quote.as_dict()


@checkout_router.post("/checkout", status_code=201, response_model=OrderGroupResponse)
async def create_checkout(body: CheckoutRequest, caller: Caller = Depends(current_caller)) -> OrderGroupResponse:
    """Split a cart into one order per vendor."""
    group = operations.create_checkout(
        caller=caller,
        items=[item.model_dump() for item in body.items],
        shipping_address=body.shipping_address.model_dump(),
        billing_address=body.billing_address.model_dump() if body.billing_address else None,
        customer_email=body.customer_email,
        customer_name=body.customer_name,
        service=body.service,
        discount_amount=body.discount_amount,
        shipping_amount=body.shipping_amount,
        tax_amount=body.tax_amount,
        payment_intent_id=body.payment_intent_id,
    )
    return OrderGroupResponse(**group.as_dict())


@checkout_router.post("/order-groups/{order_group_id}/payment-intent", response_model=PaymentIntentResponse)
async def create_payment_intent(order_group_id: str) -> PaymentIntentResponse:
    return PaymentIntentResponse(**operations.create_payment_intent(order_group_id))


@checkout_router.get("/order-groups/{order_group_id}/status", response_model=MasterStatusResponse)
async def get_master_status(order_group_id: str) -> MasterStatusResponse:
    status = operations.get_aggregate_fulfillment_status(order_group_id)
    return MasterStatusResponse(order_group_id=order_group_id, status=status)


# ---------------------------------------------------------------------------
# Payment Router
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/payments", tags=["payments"])


@payment_router.post("/webhook", response_model=PaymentEventResponse)
async def payment_webhook(
    request: Request,
    x_gateway_signature: str = Header(default=""),
) -> PaymentEventResponse:
    """Process a signed payment gateway event. Redelivery is harmless."""
    payload = (await request.body()).decode()
    if not get_gateway().verify_webhook_signature(payload, x_gateway_signature):
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    confirmation = operations.confirm_payment_event(payload, x_gateway_signature)
    return PaymentEventResponse(
        outcome=confirmation.outcome.value,
        payment_record_id=confirmation.payment_record_id,
        order_group_id=confirmation.order_group_id,
        paid_order_ids=confirmation.paid_order_ids,
    )


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.post("/{order_id}/shipments", response_model=ShipmentResponse)
async def mark_shipped(
    order_id: str, body: MarkShippedRequest, caller: Caller = Depends(current_caller)
) -> ShipmentResponse:
    result = operations.mark_vendor_shipped(
        caller=caller,
        order_id=order_id,
        carrier=body.carrier,
        tracking_number=body.tracking_number,
        tracking_url=body.tracking_url,
        covered_lines=[line.model_dump() for line in body.covered_lines],
    )
    return ShipmentResponse(**result.as_dict())


@order_router.post("/{order_id}/label", response_model=LabelResponse)
async def purchase_label(order_id: str, caller: Caller = Depends(current_caller)) -> LabelResponse:
    outcome = operations.purchase_shipping_label(caller, order_id)
    return LabelResponse(**outcome.as_dict())


@order_router.post("/{order_id}/refunds", response_model=RefundResponse)
async def refund_order(order_id: str, body: RefundRequest, caller: Caller = Depends(current_caller)) -> RefundResponse:
    result = operations.process_refund(
        caller=caller,
        order_id=order_id,
        lines=[line.model_dump() for line in body.lines],
        reason=body.reason,
        restock=body.restock,
        idempotency_key=body.idempotency_key,
    )
    return RefundResponse(**result.as_dict())


@order_router.get("/{order_id}/refunds/{refund_id}/receipt", response_class=PlainTextResponse)
async def refund_receipt(order_id: str, refund_id: str) -> str:
    return operations.refund_receipt(order_id, refund_id)


@order_router.post("/{order_id}/cancel", response_model=CancelOrderResponse)
async def cancel_order(
    order_id: str, body: CancelOrderRequest, caller: Caller = Depends(current_caller)
) -> CancelOrderResponse:
    released = operations.cancel_order(caller, order_id, reason=body.reason)
    return CancelOrderResponse(released=released)


@order_router.post("/{order_id}/archive", response_model=StatusResponse)
async def archive_order(order_id: str, caller: Caller = Depends(current_caller)) -> StatusResponse:
    status = operations.archive_order(caller, order_id)
    return StatusResponse(status=status)


@order_router.post("/{order_id}/workflow", response_model=WorkflowStatusResponse)
async def set_workflow_status(
    order_id: str, body: WorkflowStatusRequest, caller: Caller = Depends(current_caller)
) -> WorkflowStatusResponse:
    """Flag an order in progress or on hold. A held order cannot ship."""
    status = operations.set_workflow_status(caller, order_id, body.workflow_status, hold_reason=body.hold_reason)
    return WorkflowStatusResponse(order_id=order_id, workflow_status=status)


# ---------------------------------------------------------------------------
# Tracking Router
# ---------------------------------------------------------------------------
tracking_router = APIRouter(prefix="/tracking", tags=["tracking"])


@tracking_router.get("/{tracking_token}")
async def tracking_view(tracking_token: str) -> dict:
    """Public, unauthenticated view for the customer's tracking link."""
    return operations.get_tracking_view(tracking_token)
