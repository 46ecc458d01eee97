"""Webhook Idempotency Layer: the single entry point for gateway callbacks.

Gateways deliver at least once and in no particular order. Every event is
keyed by its payment authorization id and goes through the Order Ledger,
which checks for an existing order inside the same unit of work, so a
repeat delivery is recognised and ignored.
"""

from enum import Enum

import pydantic
import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from presales import config
from presales.capture.orchestrator import CaptureOrchestrator
from presales.errors import CaptureExhaustedError, DuplicateEventError, ThresholdRaceError
from presales.ledger.order import PaymentStatus
from presales.ledger.recording import (
    RecordAuthorizedOrder,
    RecordCapture,
    RecordPaymentFailure,
    RecordStrayCapture,
    find_order_by_auth_id,
)
from presales.threshold import tracker
from presales.webhook.events import CheckoutCompleted, PaymentFailed, PaymentSucceeded, parse_gateway_event

logger = structlog.get_logger(__name__)


class WebhookOutcome(Enum):
    CREATED = "created"
    DUPLICATE_IGNORED = "duplicate-ignored"
    ERROR = "error"


class WebhookHandler:
    def __init__(self, orchestrator: CaptureOrchestrator | None = None):
        self.orchestrator = orchestrator or CaptureOrchestrator()

    def handle(self, event_type: str, payload: dict) -> WebhookOutcome:
        try:
            event = parse_gateway_event(event_type, payload)
        except pydantic.ValidationError as exc:
            logger.warning("Rejected malformed webhook", event_type=event_type, errors=exc.error_count())
            return WebhookOutcome.ERROR

        try:
            if isinstance(event, CheckoutCompleted):
                return self._checkout_completed(event)
            if isinstance(event, PaymentSucceeded):
                return self._payment_succeeded(event)
            return self._payment_failed(event)
        except DuplicateEventError as exc:
            logger.info(
                "Duplicate webhook ignored",
                event_type=event_type,
                payment_auth_id=exc.payment_auth_id,
                order_id=exc.order_id,
            )
            return WebhookOutcome.DUPLICATE_IGNORED
        except (ValidationError, ThresholdRaceError) as exc:
            logger.error("Webhook could not be applied", event_type=event_type, error=str(exc))
            return WebhookOutcome.ERROR

    def _checkout_completed(self, event: CheckoutCompleted) -> WebhookOutcome:
        command = RecordAuthorizedOrder(
            payment_auth_id=event.payment_auth_id,
            product_id=event.product_id,
            buyer_ref=event.buyer_ref,
            quantity=event.quantity,
            unit_price=event.unit_price,
            currency=event.currency,
            is_presale=event.is_presale,
            captured=event.captured,
            seller_account_ref=event.seller_account_ref,
            platform_fee_amount=event.platform_fee_amount,
            transfer_amount=event.transfer_amount,
        )

        for attempt in range(config.MAX_RECORD_RETRIES):
            try:
                current_domain.process(command, asynchronous=False)
                break
            except ThresholdRaceError:
                if attempt == config.MAX_RECORD_RETRIES - 1:
                    raise

        logger.info("Order recorded from webhook", payment_auth_id=event.payment_auth_id)
        if event.is_presale and not event.captured and tracker.is_reached(event.product_id):
            try:
                self.orchestrator.on_pledges_recorded(event.product_id)
            except CaptureExhaustedError as exc:
                logger.error("Presale capture exhausted", product_id=event.product_id, error=str(exc))
        return WebhookOutcome.CREATED

    def _payment_succeeded(self, event: PaymentSucceeded) -> WebhookOutcome:
        order = find_order_by_auth_id(event.payment_auth_id)
        if order is None:
            # Arrived before checkout completed; the gateway will redeliver
            logger.warning("Payment succeeded for unknown authorization", payment_auth_id=event.payment_auth_id)
            return WebhookOutcome.ERROR

        if order.payment_status == PaymentStatus.CAPTURED.value:
            raise DuplicateEventError(event.payment_auth_id, order_id=str(order.id))
        if order.payment_status != PaymentStatus.AUTHORIZED.value:
            # Cancelled or failed locally, but the gateway took the money anyway
            current_domain.process(
                RecordStrayCapture(
                    payment_auth_id=event.payment_auth_id,
                    reason=f"captured_after_{order.payment_status.lower()}",
                ),
                asynchronous=False,
            )
            return WebhookOutcome.CREATED

        current_domain.process(RecordCapture(order_id=str(order.id)), asynchronous=False)
        return WebhookOutcome.CREATED

    def _payment_failed(self, event: PaymentFailed) -> WebhookOutcome:
        current_domain.process(
            RecordPaymentFailure(
                payment_auth_id=event.payment_auth_id,
                product_id=event.product_id,
                buyer_ref=event.buyer_ref,
                quantity=event.quantity,
                unit_price=event.unit_price,
                reason=event.failure_reason,
            ),
            asynchronous=False,
        )
        return WebhookOutcome.CREATED
