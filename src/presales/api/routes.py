"""FastAPI routes for the Presales domain.

Routes that call the payment gateway are plain functions and run in
FastAPI's threadpool.
"""

import os

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from protean.utils.globals import current_domain

from presales.api.schemas import (
    CaptureAttemptResponse,
    CheckoutLineResponse,
    CheckoutRequest,
    CheckoutResponse,
    ConfigureGatewayRequest,
    GatewayConfigResponse,
    ListProductRequest,
    OrderResponse,
    ProductIdResponse,
    RegisterSellerRequest,
    SellerIdResponse,
    StatusResponse,
    SweepResponse,
    ThresholdResponse,
    WebhookRequest,
)
from presales.capture.orchestrator import CaptureOrchestrator
from presales.capture.sweep import process_due_captures
from presales.catalogue.listing import ListProduct, RegisterSeller
from presales.checkout.initiator import CartItem, CheckoutInitiator
from presales.errors import CaptureExhaustedError
from presales.gateway import get_gateway
from presales.gateway.fake_adapter import FakeGateway
from presales.ledger.queries import get_capture_history, get_orders_for_product, get_threshold
from presales.reaper.expiry import ExpiryReaper
from presales.webhook.handler import WebhookHandler, WebhookOutcome

# ---------------------------------------------------------------------------
# Seller Router
# ---------------------------------------------------------------------------
seller_router = APIRouter(prefix="/sellers", tags=["sellers"])


@seller_router.post("", status_code=201, response_model=SellerIdResponse)
async def register_seller(body: RegisterSellerRequest) -> SellerIdResponse:
    command = RegisterSeller(
        name=body.name,
        payout_account_ref=body.payout_account_ref,
        onboarding_complete=body.onboarding_complete,
        charges_enabled=body.charges_enabled,
        fee_exempt=body.fee_exempt,
    )
    seller_id = current_domain.process(command, asynchronous=False)
    return SellerIdResponse(seller_id=seller_id)


# ---------------------------------------------------------------------------
# Presale Router
# ---------------------------------------------------------------------------
presale_router = APIRouter(prefix="/presales", tags=["presales"])


@presale_router.post("", status_code=201, response_model=ProductIdResponse)
async def list_product(body: ListProductRequest) -> ProductIdResponse:
    """List a product, as a presale unless ``is_presale`` is false."""
    command = ListProduct(
        seller_id=body.seller_id,
        title=body.title,
        unit_price=body.unit_price,
        currency=body.currency,
        is_presale=body.is_presale,
        target_orders=body.target_orders,
        deadline=body.deadline,
    )
    product_id = current_domain.process(command, asynchronous=False)
    return ProductIdResponse(product_id=product_id)


@presale_router.get("/{product_id}/threshold", response_model=ThresholdResponse)
async def read_threshold(product_id: str) -> ThresholdResponse:
    threshold = get_threshold(product_id)
    if threshold is None:
        raise HTTPException(status_code=404, detail=f"No presale for product {product_id}")
    return ThresholdResponse(
        product_id=str(threshold.product_id),
        target_orders=threshold.target_orders,
        current_orders=threshold.current_orders,
        status=threshold.status,
        attempts_started=threshold.attempts_started,
        reached_at=threshold.reached_at,
        resolved_at=threshold.resolved_at,
    )


@presale_router.get("/{product_id}/orders", response_model=list[OrderResponse])
async def read_orders(product_id: str) -> list[OrderResponse]:
    return [
        OrderResponse(
            order_id=str(order.id),
            buyer_ref=order.buyer_ref,
            quantity=order.quantity,
            amount=order.amount,
            payment_auth_id=order.payment_auth_id,
            payment_status=order.payment_status,
            platform_fee_amount=order.platform_fee_amount,
            transfer_amount=order.transfer_amount,
            capture_failures=order.capture_failures,
        )
        for order in get_orders_for_product(product_id)
    ]


@presale_router.get("/{product_id}/captures", response_model=list[CaptureAttemptResponse])
async def read_capture_history(product_id: str) -> list[CaptureAttemptResponse]:
    return [
        CaptureAttemptResponse(
            attempt_number=attempt.attempt_number,
            status=attempt.status,
            total_orders=attempt.total_orders,
            successful_captures=attempt.successful_captures,
            failed_captures=attempt.failed_captures,
            created_at=attempt.created_at,
            completed_at=attempt.completed_at,
            next_attempt_not_before=attempt.next_attempt_not_before,
        )
        for attempt in get_capture_history(product_id)
    ]


@presale_router.post("/{product_id}/capture", response_model=StatusResponse)
def start_capture(product_id: str) -> StatusResponse:
    """Start capturing a funded presale (manual capture mode)."""
    try:
        attempt = CaptureOrchestrator().start(product_id)
    except CaptureExhaustedError:
        return StatusResponse(status="Failed")
    if attempt is None:
        return StatusResponse(status="not_started")
    return StatusResponse(status=attempt.status)


# ---------------------------------------------------------------------------
# Checkout Router
# ---------------------------------------------------------------------------
checkout_router = APIRouter(prefix="/checkout", tags=["checkout"])


@checkout_router.post("", status_code=201, response_model=CheckoutResponse)
def checkout(body: CheckoutRequest) -> CheckoutResponse:
    result = CheckoutInitiator().checkout(
        buyer_ref=body.buyer_ref,
        items=[CartItem(product_id=i.product_id, quantity=i.quantity, unit_price=i.unit_price) for i in body.items],
    )
    return CheckoutResponse(
        buyer_ref=result.buyer_ref,
        lines=[
            CheckoutLineResponse(
                product_id=line.product_id,
                quantity=line.quantity,
                status=line.status.value,
                payment_auth_id=line.payment_auth_id,
                order_id=line.order_id,
                error=str(line.error) if line.error else None,
            )
            for line in result.lines
        ],
    )


# ---------------------------------------------------------------------------
# Webhook Router
# ---------------------------------------------------------------------------
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def raw_body(request: Request) -> str:
    """The undecoded request body, as the gateway signed it."""
    return (await request.body()).decode("utf-8")


@webhook_router.post("/gateway", response_model=StatusResponse)
def gateway_webhook(
    body: WebhookRequest,
    payload: str = Depends(raw_body),
    x_gateway_signature: str = Header(default=""),
) -> StatusResponse:
    """Receive a payment gateway callback."""
    if not get_gateway().verify_webhook_signature(payload, x_gateway_signature):
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    outcome = WebhookHandler().handle(body.type, body.data)
    if outcome == WebhookOutcome.ERROR:
        raise HTTPException(status_code=422, detail="Webhook event could not be processed")
    return StatusResponse(status=outcome.value)


# ---------------------------------------------------------------------------
# Maintenance Router
# ---------------------------------------------------------------------------
maintenance_router = APIRouter(prefix="/maintenance", tags=["maintenance"])


@maintenance_router.post("/expire-presales", response_model=SweepResponse)
def expire_presales() -> SweepResponse:
    return SweepResponse(processed=ExpiryReaper().run())


@maintenance_router.post("/process-captures", response_model=SweepResponse)
def process_captures() -> SweepResponse:
    return SweepResponse(processed=process_due_captures())


@maintenance_router.post("/gateway/configure", response_model=GatewayConfigResponse)
async def configure_gateway(body: ConfigureGatewayRequest) -> GatewayConfigResponse:
    """Configure the FakeGateway behavior (non-production only)."""
    if os.environ.get("PROTEAN_ENV") == "production":
        raise HTTPException(status_code=403, detail="Gateway configuration not available in production")

    gateway = get_gateway()
    if not isinstance(gateway, FakeGateway):
        raise HTTPException(status_code=400, detail="Gateway configuration only available for FakeGateway")

    gateway.configure(should_succeed=body.should_succeed, failure_reason=body.failure_reason)
    return GatewayConfigResponse(
        gateway=type(gateway).__name__,
        should_succeed=gateway.should_succeed,
        failure_reason=gateway.failure_reason,
    )
