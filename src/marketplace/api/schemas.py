"""Pydantic request/response schemas for the marketplace API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

# --- Shared ---


class AddressSchema(BaseModel):
    name: str | None = Field(None, max_length=200)
    street: str = Field(..., max_length=255)
    city: str = Field(..., max_length=100)
    state: str | None = Field(None, max_length=100)
    postal_code: str = Field(..., max_length=20)
    country: str = Field(..., min_length=2, max_length=2)


class StatusResponse(BaseModel):
    status: str = "ok"


# --- Catalogue ---


class RegisterVendorRequest(BaseModel):
    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "name": "Alder & Pine",
                    "owner_id": "seller-001",
                    "support_email": "help@alderpine.example.com",
                    "origin": {
                        "street": "12 Mill Lane",
                        "city": "Portland",
                        "state": "OR",
                        "postal_code": "97201",
                        "country": "US",
                    },
                }
            ]
        }
    }

    name: str = Field(..., max_length=200)
    owner_id: str = Field(..., max_length=255)
    support_email: str | None = Field(None, max_length=254)
    origin: AddressSchema | None = None


class VendorIdResponse(BaseModel):
    vendor_id: str


class VariantSchema(BaseModel):
    sku: str = Field(..., max_length=100)
    title: str = Field(..., max_length=255)
    price: float | None = Field(None, ge=0)


class RegisterListingRequest(BaseModel):
    vendor_id: str
    sku: str = Field(..., max_length=100)
    title: str = Field(..., max_length=255)
    price: float = Field(..., ge=0)
    weight: float | None = Field(None, ge=0)
    length: float | None = Field(None, ge=0)
    width: float | None = Field(None, ge=0)
    height: float | None = Field(None, ge=0)
    shipping_profile_id: str | None = None
    variants: list[VariantSchema] = Field(default_factory=list)


class ListingIdResponse(BaseModel):
    listing_id: str


class ShippingDestinationSchema(BaseModel):
    destination_type: str = Field("country", pattern="^(country|everywhere_else)$")
    country_code: str | None = Field(None, max_length=2)
    excluded: bool = False
    first_item_price: float = Field(0.0, ge=0)
    additional_item_price: float = Field(0.0, ge=0)
    free_shipping: bool = False


class DefineShippingProfileRequest(BaseModel):
    name: str = Field(..., max_length=100)
    destinations: list[ShippingDestinationSchema]
    make_default: bool = True


class ShippingProfileIdResponse(BaseModel):
    shipping_profile_id: str


# --- Inventory ---


class ReceiveStockRequest(BaseModel):
    listing_id: str
    variant_id: str | None = None
    quantity: int = Field(..., ge=1)


class StockUnitIdResponse(BaseModel):
    stock_unit_id: str


class StockLevelResponse(BaseModel):
    sku: str
    listing_id: str
    variant_id: str | None = None
    vendor_id: str
    on_hand: int
    reserved: int
    available: int


# --- Checkout ---


class CartItemSchema(BaseModel):
    listing_id: str
    variant_id: str | None = None
    quantity: int
    discount_amount: float | None = Field(None, ge=0)


class QuoteShippingRequest(BaseModel):
    items: list[CartItemSchema]
    shipping_address: AddressSchema


class CheckoutRequest(BaseModel):
    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "items": [{"listing_id": "lst-001", "quantity": 2}],
                    "shipping_address": {
                        "street": "1 Main St",
                        "city": "Austin",
                        "state": "TX",
                        "postal_code": "73301",
                        "country": "US",
                    },
                    "customer_email": "jane.doe@example.com",
                    "service": "Express",
                }
            ]
        }
    }

    items: list[CartItemSchema]
    shipping_address: AddressSchema
    billing_address: AddressSchema | None = None
    customer_email: str = Field(..., max_length=254)
    customer_name: str | None = Field(None, max_length=200)
    service: str | None = Field(None, max_length=100)
    discount_amount: float = Field(0.0, ge=0)
    shipping_amount: float = Field(0.0, ge=0)
    tax_amount: float = Field(0.0, ge=0)
    payment_intent_id: str | None = Field(None, max_length=255)


class PlacedOrderResponse(BaseModel):
    order_id: str
    order_number: str
    vendor_id: str
    total: float


class OrderGroupResponse(BaseModel):
    order_group_id: str
    currency: str
    cart_total: float
    orders: list[PlacedOrderResponse]


class PaymentIntentResponse(BaseModel):
    payment_intent_id: str
    client_secret: str | None = None
    amount: float
    currency: str


class MasterStatusResponse(BaseModel):
    order_group_id: str
    status: str


class PaymentEventResponse(BaseModel):
    outcome: str
    payment_record_id: str | None = None
    order_group_id: str | None = None
    paid_order_ids: list[str] = Field(default_factory=list)


# --- Fulfillment ---


class CoveredLineSchema(BaseModel):
    line_item_id: str
    quantity: int


class MarkShippedRequest(BaseModel):
    carrier: str = Field(..., max_length=100)
    tracking_number: str = Field(..., max_length=255)
    tracking_url: str | None = Field(None, max_length=1000)
    covered_lines: list[CoveredLineSchema] = Field(default_factory=list)


class ShipmentResponse(BaseModel):
    order_id: str
    fulfillment_id: str
    duplicate: bool
    tracking_token: str | None = None
    token_issued: bool
    vendor_fulfillment_status: str
    order_status: str
    master_status: str
    notification: str | None = None


class LabelResponse(BaseModel):
    order_id: str
    rate_id: str
    tracking_number: str
    label_url: str
    tracking_url: str | None = None
    requoted: bool
    price_drift: float


class CancelOrderRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class CancelOrderResponse(BaseModel):
    status: str = "canceled"
    released: dict[str, int] = Field(default_factory=dict)


class WorkflowStatusRequest(BaseModel):
    workflow_status: Literal["normal", "in_progress", "on_hold"]
    hold_reason: str | None = Field(None, max_length=500)


class WorkflowStatusResponse(BaseModel):
    order_id: str
    workflow_status: str


# --- Refunds ---


class RefundLineSchema(BaseModel):
    line_item_id: str
    quantity: int


class RefundRequest(BaseModel):
    lines: list[RefundLineSchema]
    reason: str | None = Field(None, max_length=500)
    restock: bool = False
    idempotency_key: str | None = Field(None, max_length=128)


class RefundResponse(BaseModel):
    order_id: str
    refund_id: str
    amount: float
    kind: str
    payment_status: str
    lines: list[dict]
    gateway_refund_id: str | None = None
    already_applied: bool = False
