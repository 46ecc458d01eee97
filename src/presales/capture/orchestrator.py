"""Capture Orchestrator: collects the held funds of a funded presale.

Per product the orchestrator walks through numbered attempts:

    Idle → attempt in progress → full | partial
    partial → next attempt (at most 5, spaced by the retry interval,
              all starting within 3 days of the first)
    resolved → Completed, or Failed with captured funds flagged for a
               manual refund

Each attempt is claimed with a conditional update on the presale threshold,
so two schedulers or a duplicate trigger can never run the same attempt
twice. The claim is released however the attempt ends, and a claim held
longer than the stale-claim window is taken over by the next run. Orders are
captured one at a time and independently; a failed capture leaves the order
authorized for the next attempt, and an error on one order is recorded as a
failed outcome without stopping the others.
"""

from datetime import UTC, datetime, timedelta

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from presales import config
from presales.capture.attempt import AttemptStatus, CaptureAttempt
from presales.capture.refund_flags import FlagPaymentsForManualRefund
from presales.catalogue.listing import ConvertPresaleToDigital, MarkPresaleFunded
from presales.catalogue.product import Product, ProductStatus, as_utc
from presales.channel import notify
from presales.channel.port import OrderCaptured, PresaleCompleted, PresaleFailed, ThresholdReached
from presales.errors import CaptureExhaustedError, GatewayError
from presales.gateway import get_gateway
from presales.gateway.port import CaptureResult
from presales.ledger.order import HOLDING_STATUSES, PaymentStatus
from presales.ledger.queries import get_capture_history, get_orders_for_product
from presales.ledger.recording import (
    RecordCapture,
    RecordCaptureFailure,
    RecordStrayCapture,
    ReleaseOrderHold,
    find_captured_payment,
)
from presales.threshold import tracker
from presales.threshold.threshold import ThresholdStatus

logger = structlog.get_logger(__name__)


class CaptureOrchestrator:
    def __init__(self, gateway=None, dispatcher=None):
        self.gateway = gateway or get_gateway()
        self.dispatcher = dispatcher

    # -------------------------------------------------------------------
    # Triggers
    # -------------------------------------------------------------------
    def on_pledges_recorded(self, product_id, as_of: datetime | None = None) -> CaptureAttempt | None:
        """Move a presale that just reached its target into processing.

        Only the caller that wins the ACTIVE → PROCESSING transition goes on;
        it announces the milestone and, unless capture is manual, runs the
        first attempt.
        """
        as_of = as_of or datetime.now(UTC)
        if not tracker.mark_processing(product_id, as_of):
            return None

        threshold = tracker.find_threshold(product_id)
        notify(
            ThresholdReached(
                product_id=str(product_id),
                current_orders=threshold.current_orders,
                target_orders=threshold.target_orders,
                reached_at=as_of,
            ),
            self.dispatcher,
        )

        if config.capture_trigger() == config.CaptureTrigger.MANUAL:
            logger.info("Presale funded, awaiting manual capture", product_id=str(product_id))
            return None
        return self.run_attempt(product_id, as_of)

    def start(self, product_id, as_of: datetime | None = None) -> CaptureAttempt | None:
        """Operator-initiated start of the first capture attempt."""
        as_of = as_of or datetime.now(UTC)
        threshold = tracker.find_threshold(product_id)
        if threshold is None:
            raise ObjectNotFoundError(f"No presale threshold for product {product_id}")

        if threshold.status == ThresholdStatus.ACTIVE.value:
            if not threshold.is_reached():
                raise ValidationError({"presale": ["Presale has not reached its target"]})
            if tracker.mark_processing(product_id, as_of):
                notify(
                    ThresholdReached(
                        product_id=str(product_id),
                        current_orders=threshold.current_orders,
                        target_orders=threshold.target_orders,
                        reached_at=as_of,
                    ),
                    self.dispatcher,
                )
            threshold = tracker.find_threshold(product_id)

        if threshold.status != ThresholdStatus.PROCESSING.value:
            raise ValidationError({"presale": [f"Presale is {threshold.status}"]})
        if threshold.attempts_started > 0:
            raise ValidationError({"presale": ["Capture has already started for this presale"]})

        return self.run_attempt(product_id, as_of)

    # -------------------------------------------------------------------
    # Attempts
    # -------------------------------------------------------------------
    def run_attempt(self, product_id, as_of: datetime | None = None) -> CaptureAttempt | None:
        """Run the next capture attempt if one is due. Returns None when there was nothing to do."""
        as_of = as_of or datetime.now(UTC)
        product_id = str(product_id)

        threshold = tracker.find_threshold(product_id)
        if threshold is None or threshold.status != ThresholdStatus.PROCESSING.value:
            return None
        if threshold.sweep_in_progress:
            if not tracker.reclaim_stale(product_id, as_of - config.stale_claim_after()):
                logger.info("Capture sweep already running", product_id=product_id)
                return None
            self._abandon_in_progress(product_id, as_of)
            threshold = tracker.find_threshold(product_id)

        history = get_capture_history(product_id)
        last = history[-1] if history else None
        if last is not None:
            if last.status != AttemptStatus.PARTIAL.value:
                return None
            if threshold.attempts_started >= config.MAX_CAPTURE_ATTEMPTS or as_utc(last.retry_deadline) < as_of:
                return self._expire(threshold, last, as_of)
            if last.next_attempt_not_before and as_utc(last.next_attempt_not_before) > as_of:
                return None

        if not tracker.claim_attempt(product_id, threshold.attempts_started, as_of):
            logger.info("Lost capture attempt claim", product_id=product_id)
            return None

        attempt_number = threshold.attempts_started + 1
        retry_deadline = as_utc(history[0].retry_deadline) if history else as_of + config.CAPTURE_RETRY_WINDOW
        repo = current_domain.repository_for(CaptureAttempt)
        attempt = CaptureAttempt.begin(product_id, attempt_number, retry_deadline, as_of)
        repo.add(attempt)

        logger.info("Capture attempt started", product_id=product_id, attempt_number=attempt_number)
        try:
            try:
                self._capture_orders(attempt)
            except Exception:
                logger.exception("Capture attempt aborted", product_id=product_id, attempt_number=attempt_number)
                attempt.finish(AttemptStatus.PARTIAL, retry_interval=config.capture_retry_interval(), as_of=as_of)
                repo.add(attempt)
                raise
            return self._decide(attempt, retry_deadline, as_of)
        finally:
            tracker.release_claim(product_id)

    def _decide(self, attempt: CaptureAttempt, retry_deadline: datetime, as_of: datetime) -> CaptureAttempt:
        """Close the attempt as completed, partial or failed, and resolve the presale when it is over."""
        product_id = str(attempt.product_id)
        attempt_number = attempt.attempt_number
        repo = current_domain.repository_for(CaptureAttempt)

        successes = sum(1 for outcome in attempt.outcomes if outcome.succeeded)
        total = len(attempt.outcomes)
        if total == 0:
            attempt.finish(AttemptStatus.FAILED, as_of=as_of)
            repo.add(attempt)
            if tracker.resolve(product_id, ThresholdStatus.FAILED, as_of):
                self._fail_without_holds(product_id, attempt_number)
            return attempt

        success_rate = successes / total
        logger.info(
            "Capture attempt finished",
            product_id=product_id,
            attempt_number=attempt_number,
            successful_captures=successes,
            total_orders=total,
            success_rate=round(success_rate, 4),
        )

        if success_rate >= config.SUCCESS_RATE_THRESHOLD:
            attempt.finish(AttemptStatus.COMPLETED, as_of=as_of)
            repo.add(attempt)
            self._complete(product_id, attempt, as_of)
            return attempt

        retry_interval = config.capture_retry_interval()
        if attempt_number < config.MAX_CAPTURE_ATTEMPTS and as_of + retry_interval <= retry_deadline:
            attempt.finish(AttemptStatus.PARTIAL, retry_interval=retry_interval, as_of=as_of)
            repo.add(attempt)
            logger.warning(
                "Capture attempt below success threshold, retry scheduled",
                product_id=product_id,
                attempt_number=attempt_number,
                next_attempt_not_before=attempt.next_attempt_not_before.isoformat(),
            )
            return attempt

        attempt.finish(AttemptStatus.FAILED, as_of=as_of)
        repo.add(attempt)
        if tracker.resolve(product_id, ThresholdStatus.FAILED, as_of):
            self._fail(product_id, attempt_number, as_of)
        return attempt

    def _abandon_in_progress(self, product_id: str, as_of: datetime) -> None:
        """Close the attempt a dead worker left open so the next one may start right away."""
        history = get_capture_history(product_id)
        if not history or history[-1].status != AttemptStatus.IN_PROGRESS.value:
            return
        abandoned = history[-1]
        abandoned.finish(AttemptStatus.PARTIAL, retry_interval=timedelta(0), as_of=as_of)
        current_domain.repository_for(CaptureAttempt).add(abandoned)
        logger.warning(
            "Abandoned capture attempt closed",
            product_id=product_id,
            attempt_number=abandoned.attempt_number,
            outcomes_recorded=abandoned.total_orders,
        )

    def _capture_orders(self, attempt: CaptureAttempt) -> None:
        orders = [order for order in get_orders_for_product(attempt.product_id, HOLDING_STATUSES) if order.is_presale]

        for order in orders:
            try:
                self._capture_order(attempt, order)
            except Exception as exc:
                logger.exception(
                    "Capture of order failed unexpectedly",
                    order_id=str(order.id),
                    payment_auth_id=order.payment_auth_id,
                )
                if not any(str(outcome.order_id) == str(order.id) for outcome in attempt.outcomes):
                    attempt.record_outcome(order.id, order.payment_auth_id, succeeded=False, error=str(exc)[:500])

    def _capture_order(self, attempt: CaptureAttempt, order) -> None:
        if order.payment_status == PaymentStatus.CAPTURED.value or find_captured_payment(order.payment_auth_id):
            attempt.record_outcome(order.id, order.payment_auth_id, succeeded=True, previously_captured=True)
            return

        try:
            result = self.gateway.capture(order.payment_auth_id)
        except GatewayError as exc:
            result = CaptureResult(success=False, auth_id=order.payment_auth_id, failure_reason=str(exc))

        if not result.success:
            reason = result.failure_reason or "Capture failed"
            try:
                current_domain.process(
                    RecordCaptureFailure(order_id=str(order.id), reason=reason),
                    asynchronous=False,
                )
            except ValidationError as exc:
                # The order left Authorized while its capture was in flight
                logger.warning(
                    "Capture failure not recorded on order",
                    order_id=str(order.id),
                    payment_auth_id=order.payment_auth_id,
                    error=str(exc),
                )
            attempt.record_outcome(order.id, order.payment_auth_id, succeeded=False, error=reason)
            logger.warning(
                "Capture failed",
                order_id=str(order.id),
                payment_auth_id=order.payment_auth_id,
                reason=reason,
            )
            return

        try:
            current_domain.process(RecordCapture(order_id=str(order.id)), asynchronous=False)
        except ValidationError as exc:
            error = f"Captured after the order was closed: {exc}"[:500]
            if find_captured_payment(order.payment_auth_id) is None:
                current_domain.process(
                    RecordStrayCapture(payment_auth_id=order.payment_auth_id, reason="captured_after_close"),
                    asynchronous=False,
                )
            attempt.record_outcome(order.id, order.payment_auth_id, succeeded=False, error=error)
            return

        attempt.record_outcome(order.id, order.payment_auth_id, succeeded=True)
        notify(
            OrderCaptured(
                product_id=str(attempt.product_id),
                order_id=str(order.id),
                payment_auth_id=order.payment_auth_id,
                buyer_ref=order.buyer_ref,
                amount=order.amount,
            ),
            self.dispatcher,
        )

    # -------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------
    def _complete(self, product_id: str, attempt: CaptureAttempt, as_of: datetime) -> None:
        if not tracker.resolve(product_id, ThresholdStatus.COMPLETED, as_of):
            return

        released = self._release_uncaptured(product_id, reason="presale_completed")
        product = current_domain.repository_for(Product).get(product_id)
        if product.status == ProductStatus.PRESALE.value:
            current_domain.process(MarkPresaleFunded(product_id=product_id), asynchronous=False)

        captured_amount = round(
            sum(order.amount for order in get_orders_for_product(product_id, [PaymentStatus.CAPTURED.value])),
            2,
        )
        logger.info(
            "Presale completed",
            product_id=product_id,
            attempt_number=attempt.attempt_number,
            captured_amount=captured_amount,
            released_orders=released,
        )
        notify(
            PresaleCompleted(
                product_id=product_id,
                attempt_number=attempt.attempt_number,
                successful_captures=attempt.successful_captures,
                total_orders=attempt.total_orders,
                captured_amount=captured_amount,
            ),
            self.dispatcher,
        )

    def _expire(self, threshold, last_attempt: CaptureAttempt, as_of: datetime):
        """The retry window closed with the last attempt still partial."""
        if not tracker.resolve(threshold.product_id, ThresholdStatus.FAILED, as_of):
            return None

        last_attempt.expire(as_of)
        current_domain.repository_for(CaptureAttempt).add(last_attempt)
        self._fail(str(threshold.product_id), last_attempt.attempt_number, as_of)
        return last_attempt

    def _fail(self, product_id: str, attempts: int, as_of: datetime) -> None:
        """Flag what was captured, release what was not, and raise CaptureExhaustedError."""
        flagged = current_domain.process(
            FlagPaymentsForManualRefund(product_id=product_id, reason="capture_exhausted"),
            asynchronous=False,
        )
        released = self._release_uncaptured(product_id, reason="capture_exhausted")

        product = current_domain.repository_for(Product).get(product_id)
        if product.status == ProductStatus.PRESALE.value:
            current_domain.process(
                ConvertPresaleToDigital(product_id=product_id, reason="capture_exhausted"),
                asynchronous=False,
            )

        threshold = tracker.find_threshold(product_id)
        logger.error(
            "Presale capture exhausted",
            product_id=product_id,
            attempts=attempts,
            flagged_payments=flagged["count"],
            flagged_amount=flagged["amount"],
            released_orders=released,
        )
        notify(
            PresaleFailed(
                product_id=product_id,
                reason="capture_exhausted",
                current_orders=threshold.current_orders,
                target_orders=threshold.target_orders,
                released_orders=released,
                flagged_payments=flagged["count"],
                flagged_amount=flagged["amount"],
            ),
            self.dispatcher,
        )
        raise CaptureExhaustedError(product_id, attempts, flagged["count"], flagged["amount"])

    def _fail_without_holds(self, product_id: str, attempt_number: int) -> None:
        """Every pledge was withdrawn before capture, so there is nothing to capture, release or flag."""
        product = current_domain.repository_for(Product).get(product_id)
        if product.status == ProductStatus.PRESALE.value:
            current_domain.process(
                ConvertPresaleToDigital(product_id=product_id, reason="no_held_payments"),
                asynchronous=False,
            )

        threshold = tracker.find_threshold(product_id)
        logger.warning(
            "Presale failed with no held payments",
            product_id=product_id,
            attempt_number=attempt_number,
            current_orders=threshold.current_orders,
            target_orders=threshold.target_orders,
        )
        notify(
            PresaleFailed(
                product_id=product_id,
                reason="no_held_payments",
                current_orders=threshold.current_orders,
                target_orders=threshold.target_orders,
            ),
            self.dispatcher,
        )

    def _release_uncaptured(self, product_id: str, reason: str) -> int:
        """Cancel every hold that was never captured. Returns how many orders were released."""
        released = 0
        for order in get_orders_for_product(product_id, [PaymentStatus.AUTHORIZED.value]):
            if not order.is_presale:
                continue
            result = self.gateway.cancel(order.payment_auth_id)
            if not result.success:
                logger.warning(
                    "Could not cancel payment hold",
                    order_id=str(order.id),
                    payment_auth_id=order.payment_auth_id,
                    reason=result.failure_reason,
                )
            current_domain.process(
                ReleaseOrderHold(order_id=str(order.id), reason=reason, cancelled=result.success),
                asynchronous=False,
            )
            released += 1
        return released
