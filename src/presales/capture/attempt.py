"""CaptureAttempt aggregate: one sweep over a funded presale's held payments.

Each attempt records how many orders it covered and how many captures
succeeded, plus a per-order outcome. ``successful_captures +
failed_captures == total_orders`` once the attempt has finished.

State Machine:
    IN_PROGRESS → COMPLETED | PARTIAL | FAILED
    PARTIAL → FAILED   (retry window ran out before the next attempt)
"""

from datetime import UTC, datetime, timedelta
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, HasMany, Identifier, Integer, String

from presales.domain import presales


class AttemptStatus(Enum):
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    PARTIAL = "Partial"
    FAILED = "Failed"


_VALID_TRANSITIONS = {
    AttemptStatus.IN_PROGRESS: {AttemptStatus.COMPLETED, AttemptStatus.PARTIAL, AttemptStatus.FAILED},
    AttemptStatus.PARTIAL: {AttemptStatus.FAILED},
    AttemptStatus.COMPLETED: set(),
    AttemptStatus.FAILED: set(),
}


@presales.entity(part_of="CaptureAttempt")
class CaptureOutcome:
    """What happened to one order during the attempt."""

    order_id = Identifier(required=True)
    payment_auth_id = String(required=True, max_length=255)
    succeeded = Boolean(default=False)
    previously_captured = Boolean(default=False)
    error = String(max_length=500)


@presales.aggregate
class CaptureAttempt:
    product_id = Identifier(required=True)
    attempt_number = Integer(required=True, min_value=1)
    total_orders = Integer(default=0)
    successful_captures = Integer(default=0)
    failed_captures = Integer(default=0)
    status = String(choices=AttemptStatus, default=AttemptStatus.IN_PROGRESS.value)
    outcomes = HasMany(CaptureOutcome)
    created_at = DateTime(required=True)
    completed_at = DateTime()
    retry_deadline = DateTime(required=True)
    next_attempt_not_before = DateTime()

    @invariant.post
    def counts_add_up_once_finished(self):
        if self.status != AttemptStatus.IN_PROGRESS.value and (
            self.successful_captures + self.failed_captures != self.total_orders
        ):
            raise ValidationError({"total_orders": ["Successful and failed captures must add up to total orders"]})

    @classmethod
    def begin(cls, product_id, attempt_number, retry_deadline: datetime, as_of: datetime | None = None):
        return cls(
            product_id=product_id,
            attempt_number=attempt_number,
            status=AttemptStatus.IN_PROGRESS.value,
            created_at=as_of or datetime.now(UTC),
            retry_deadline=retry_deadline,
        )

    def _assert_can_transition(self, target_status: AttemptStatus) -> None:
        current = AttemptStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise ValidationError({"status": [f"Cannot transition from {current.value} to {target_status.value}"]})

    def record_outcome(self, order_id, payment_auth_id, succeeded, previously_captured=False, error=None):
        self.add_outcomes(
            CaptureOutcome(
                order_id=order_id,
                payment_auth_id=payment_auth_id,
                succeeded=succeeded,
                previously_captured=previously_captured,
                error=error,
            )
        )

    def success_rate(self) -> float:
        if not self.total_orders:
            return 0.0
        return self.successful_captures / self.total_orders

    def finish(self, status: AttemptStatus, retry_interval: timedelta | None = None, as_of: datetime | None = None):
        """Close the attempt using the tallied outcomes."""
        self._assert_can_transition(status)
        now = as_of or datetime.now(UTC)
        successes = sum(1 for outcome in self.outcomes if outcome.succeeded)
        with atomic_change(self):
            self.total_orders = len(self.outcomes)
            self.successful_captures = successes
            self.failed_captures = self.total_orders - successes
            self.status = status.value
            self.completed_at = now
            if status == AttemptStatus.PARTIAL and retry_interval is not None:
                self.next_attempt_not_before = now + retry_interval

    def expire(self, as_of: datetime | None = None):
        """A partial attempt whose retry window closed before it could be retried."""
        self._assert_can_transition(AttemptStatus.FAILED)
        self.status = AttemptStatus.FAILED.value
        self.completed_at = as_of or datetime.now(UTC)
