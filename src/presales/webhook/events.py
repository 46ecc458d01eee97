"""Gateway webhook events, validated at the boundary.

Each gateway callback is parsed into exactly one of the variants below,
selected by its ``type``. Anything that does not fit is rejected before it
reaches the ledger.
"""

from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter

CHECKOUT_COMPLETED = "checkout.session.completed"
PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"


class CheckoutCompleted(BaseModel):
    """The buyer finished checkout and the gateway holds (or took) their funds."""

    type: Literal["checkout.session.completed"]
    payment_auth_id: str = Field(min_length=1)
    product_id: str = Field(min_length=1)
    buyer_ref: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    unit_price: float = Field(ge=0)
    currency: str = "GBP"
    is_presale: bool = True
    captured: bool = False
    seller_account_ref: str | None = None
    platform_fee_amount: float = Field(default=0.0, ge=0)
    transfer_amount: float | None = None


class PaymentSucceeded(BaseModel):
    """Funds for an authorization were collected."""

    type: Literal["payment_intent.succeeded"]
    payment_auth_id: str = Field(min_length=1)
    amount_captured: float | None = None


class PaymentFailed(BaseModel):
    type: Literal["payment_intent.payment_failed"]
    payment_auth_id: str = Field(min_length=1)
    product_id: str = Field(min_length=1)
    buyer_ref: str = Field(min_length=1)
    quantity: int = Field(default=1, gt=0)
    unit_price: float = Field(default=0.0, ge=0)
    failure_reason: str = "Payment failed"


GatewayEvent = Annotated[CheckoutCompleted | PaymentSucceeded | PaymentFailed, Field(discriminator="type")]

_adapter = TypeAdapter(GatewayEvent)


def parse_gateway_event(event_type: str, payload: dict) -> CheckoutCompleted | PaymentSucceeded | PaymentFailed:
    """Raises pydantic.ValidationError for unknown types or malformed payloads."""
    return _adapter.validate_python({**payload, "type": event_type})
