"""Stripe payment gateway adapter.

Presale items are authorized as manual-capture PaymentIntents so the funds
stay on hold until the presale is funded. When the seller has a connected
account the platform fee is taken as an application fee and the remainder
is routed to the seller through ``transfer_data``.
"""

import stripe
import structlog

from presales.errors import GatewayError
from presales.gateway.port import (
    AuthorizationRequest,
    AuthorizationResult,
    CancelResult,
    CaptureResult,
    PaymentGateway,
    RefundResult,
)

logger = structlog.get_logger(__name__)


def to_minor_units(amount: float) -> int:
    """Stripe amounts are integers in the currency's smallest unit."""
    return int(round(amount * 100))


class StripeGateway(PaymentGateway):
    """Production gateway backed by the stripe-python SDK."""

    def __init__(self, api_key: str, webhook_secret: str) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        stripe.api_key = api_key

    def authorize(self, request: AuthorizationRequest) -> AuthorizationResult:
        params = {
            "amount": to_minor_units(request.amount),
            "currency": request.currency.lower(),
            "customer": request.payer_ref,
            "capture_method": "automatic" if request.capture_immediately else "manual",
            "metadata": {key: str(value) for key, value in request.metadata.items()},
            "confirm": True,
            "off_session": True,
        }
        if request.metadata.get("payment_method"):
            params["payment_method"] = request.metadata["payment_method"]
        if request.payee_ref:
            params["transfer_data"] = {"destination": request.payee_ref}
            if request.fee_amount:
                params["application_fee_amount"] = to_minor_units(request.fee_amount)

        try:
            intent = stripe.PaymentIntent.create(**params)
        except stripe.CardError as exc:
            logger.info("Stripe declined authorization", payer_ref=request.payer_ref, reason=exc.user_message)
            return AuthorizationResult(
                success=False,
                gateway_status="declined",
                failure_reason=exc.user_message or str(exc),
            )
        except stripe.StripeError as exc:
            raise GatewayError(f"Stripe authorization failed: {exc}") from exc

        return AuthorizationResult(
            success=intent.status in ("requires_capture", "succeeded"),
            auth_id=intent.id,
            captured=intent.status == "succeeded",
            gateway_status=intent.status,
            failure_reason=None if intent.status in ("requires_capture", "succeeded") else intent.status,
        )

    def capture(self, auth_id: str) -> CaptureResult:
        try:
            intent = stripe.PaymentIntent.capture(auth_id)
        except stripe.StripeError as exc:
            logger.warning("Stripe capture failed", auth_id=auth_id, error=str(exc))
            return CaptureResult(success=False, auth_id=auth_id, failure_reason=str(exc))

        return CaptureResult(
            success=intent.status == "succeeded",
            auth_id=auth_id,
            amount_captured=intent.amount_received / 100 if intent.amount_received else None,
            gateway_status=intent.status,
            failure_reason=None if intent.status == "succeeded" else intent.status,
        )

    def cancel(self, auth_id: str) -> CancelResult:
        try:
            intent = stripe.PaymentIntent.cancel(auth_id)
        except stripe.StripeError as exc:
            logger.warning("Stripe cancellation failed", auth_id=auth_id, error=str(exc))
            return CancelResult(success=False, auth_id=auth_id, failure_reason=str(exc))

        return CancelResult(success=intent.status == "canceled", auth_id=auth_id, gateway_status=intent.status)

    def refund(self, auth_id: str, amount: float, reason: str) -> RefundResult:
        try:
            refund = stripe.Refund.create(
                payment_intent=auth_id,
                amount=to_minor_units(amount),
                metadata={"reason": reason},
            )
        except stripe.StripeError as exc:
            return RefundResult(success=False, auth_id=auth_id, failure_reason=str(exc))

        return RefundResult(success=True, auth_id=auth_id, gateway_refund_id=refund.id)

    def verify_webhook_signature(self, payload: str, signature: str) -> bool:
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError):
            return False
        return True
