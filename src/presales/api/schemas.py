"""Pydantic request/response schemas for the Presales API.

These are external contracts (anti-corruption layer), separate from
internal Protean commands.
"""

from datetime import datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------
class RegisterSellerRequest(BaseModel):
    name: str
    payout_account_ref: str | None = None
    onboarding_complete: bool = False
    charges_enabled: bool = False
    fee_exempt: bool = False


class ListProductRequest(BaseModel):
    seller_id: str
    title: str
    unit_price: float = Field(ge=0)
    currency: str = "GBP"
    is_presale: bool = True
    target_orders: int | None = Field(default=None, gt=0)
    deadline: datetime | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "seller_id": "seller-001",
                    "title": "Night Drive (Limited 180g Pressing)",
                    "unit_price": 25.0,
                    "currency": "GBP",
                    "is_presale": True,
                    "target_orders": 100,
                    "deadline": "2026-12-31T23:59:59Z",
                }
            ]
        }
    }


class CartItemSchema(BaseModel):
    product_id: str
    quantity: int = Field(gt=0)
    unit_price: float = Field(ge=0)


class CheckoutRequest(BaseModel):
    buyer_ref: str
    items: list[CartItemSchema]


class WebhookRequest(BaseModel):
    type: str
    data: dict


class ConfigureGatewayRequest(BaseModel):
    should_succeed: bool = True
    failure_reason: str = "Card declined"


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------
class SellerIdResponse(BaseModel):
    seller_id: str


class ProductIdResponse(BaseModel):
    product_id: str


class CheckoutLineResponse(BaseModel):
    product_id: str
    quantity: int
    status: str
    payment_auth_id: str | None = None
    order_id: str | None = None
    error: str | None = None


class CheckoutResponse(BaseModel):
    buyer_ref: str
    lines: list[CheckoutLineResponse]


class ThresholdResponse(BaseModel):
    product_id: str
    target_orders: int
    current_orders: int
    status: str
    attempts_started: int
    reached_at: datetime | None = None
    resolved_at: datetime | None = None


class OrderResponse(BaseModel):
    order_id: str
    buyer_ref: str
    quantity: int
    amount: float
    payment_auth_id: str
    payment_status: str
    platform_fee_amount: float
    transfer_amount: float
    capture_failures: int


class CaptureAttemptResponse(BaseModel):
    attempt_number: int
    status: str
    total_orders: int
    successful_captures: int
    failed_captures: int
    created_at: datetime
    completed_at: datetime | None = None
    next_attempt_not_before: datetime | None = None


class StatusResponse(BaseModel):
    status: str


class SweepResponse(BaseModel):
    processed: int


class GatewayConfigResponse(BaseModel):
    gateway: str
    should_succeed: bool
    failure_reason: str
