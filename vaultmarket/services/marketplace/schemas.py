"""API request/response schemas for marketplace endpoints."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

PaymentMethod = Literal["stripe", "crypto"]
DisputeReason = Literal["item_not_received", "item_not_as_described", "counterfeit", "other"]


class ShippingAddressIn(BaseModel):
    """Destination captured at checkout."""

    full_name: str = Field(min_length=1, max_length=200)
    line1: str = Field(min_length=1, max_length=200)
    line2: str | None = Field(default=None, max_length=200)
    city: str = Field(min_length=1, max_length=100)
    state: str = Field(min_length=1, max_length=100)
    postal_code: str = Field(min_length=1, max_length=20)
    country: str = Field(default="US", max_length=2)


class CreateOrderParams(BaseModel):
    """Everything needed to open a pending checkout order."""

    listing_id: str
    buyer_id: str
    seller_id: str
    total_amount: int = Field(ge=0)
    shipping_address: ShippingAddressIn
    payment_method: PaymentMethod


class CheckoutRequest(BaseModel):
    listing_id: str = Field(min_length=1)
    shipping_address: ShippingAddressIn


class CheckoutResponse(BaseModel):
    order_id: str
    url: str


class OfferAcceptRequest(BaseModel):
    """Seller accepts a buyer's negotiated price for a listing."""

    buyer_id: str = Field(min_length=1)
    offer_amount: int = Field(ge=100)


class StatusUpdateRequest(BaseModel):
    status: Literal["shipped", "delivered", "cancelled"]
    tracking_number: str | None = Field(default=None, max_length=100)
    shipping_carrier: str | None = Field(default=None, max_length=50)


class DisputeCreateRequest(BaseModel):
    reason: DisputeReason
    description: str = Field(min_length=10, max_length=5000)


class DisputeResolveRequest(BaseModel):
    outcome: Literal["refunded", "delivered"]
    resolution: str | None = Field(default=None, max_length=5000)


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    listing_id: str
    buyer_id: str
    seller_id: str
    status: str
    total_amount: int
    platform_fee_bps: int
    platform_fee_amount: int
    seller_payout_amount: int | None
    payment_method: str | None
    tracking_number: str | None
    shipping_carrier: str | None


class OrderActionsResponse(BaseModel):
    order_id: str
    status: str
    actions: list[str]


class DisputeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    order_id: str
    reason: str
    status: str
    resolution: str | None


class BalanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    pending_amount: int
    available_amount: int
    total_earned: int


class PayoutCreateRequest(BaseModel):
    amount: int = Field(ge=100)
    method: PaymentMethod


class PayoutResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    amount: int
    method: str
    status: str
