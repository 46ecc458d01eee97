"""Order aggregate: one buyer pledge, keyed by its payment authorization.

An order is written exactly once per ``payment_auth_id``; checkout and the
gateway's webhooks both go through the same recording step, which makes a
repeated authorization a no-op.

State Machine:
    PENDING → AUTHORIZED | CAPTURED | FAILED | CANCELLED
    AUTHORIZED → CAPTURED | FAILED | CANCELLED
    CAPTURED, FAILED, CANCELLED → (terminal)

A failed capture leaves the order AUTHORIZED so the next attempt can try
again; the failure is counted on the order.
"""

from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, Identifier, Integer, String

from presales.config import DEFAULT_CURRENCY
from presales.domain import presales
from presales.ledger.events import (
    OrderAuthorized,
    OrderCancelled,
    OrderCaptured,
    OrderCaptureFailed,
    OrderFailed,
)


class PaymentStatus(Enum):
    PENDING = "Pending"
    AUTHORIZED = "Authorized"
    CAPTURED = "Captured"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


_VALID_TRANSITIONS = {
    PaymentStatus.PENDING: {
        PaymentStatus.AUTHORIZED,
        PaymentStatus.CAPTURED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    },
    PaymentStatus.AUTHORIZED: {PaymentStatus.CAPTURED, PaymentStatus.FAILED, PaymentStatus.CANCELLED},
    PaymentStatus.CAPTURED: set(),  # Terminal
    PaymentStatus.FAILED: set(),  # Terminal
    PaymentStatus.CANCELLED: set(),  # Terminal
}

# Orders in these states count towards the presale's pledge total
HOLDING_STATUSES = (PaymentStatus.AUTHORIZED.value, PaymentStatus.CAPTURED.value)


@presales.aggregate
class Order:
    product_id = Identifier(required=True)
    buyer_ref = String(required=True, max_length=255)
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(required=True, min_value=0.0)
    amount = Float(default=0.0)
    currency = String(max_length=3, default=DEFAULT_CURRENCY)
    payment_auth_id = String(required=True, max_length=255, unique=True)
    payment_status = String(choices=PaymentStatus, default=PaymentStatus.PENDING.value)
    is_presale = Boolean(default=True)
    seller_account_ref = String(max_length=255)
    platform_fee_amount = Float(default=0.0)
    transfer_amount = Float(default=0.0)
    capture_failures = Integer(default=0)
    failure_reason = String(max_length=500)
    created_at = DateTime()
    captured_at = DateTime()
    cancelled_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factories
    # -------------------------------------------------------------------
    @classmethod
    def authorize(
        cls,
        product_id,
        buyer_ref,
        quantity,
        unit_price,
        payment_auth_id,
        is_presale=True,
        seller_account_ref=None,
        platform_fee_amount=0.0,
        transfer_amount=None,
        currency=DEFAULT_CURRENCY,
    ):
        """Record a pledge whose funds are now held at the gateway."""
        now = datetime.now(UTC)
        amount = round(quantity * unit_price, 2)
        order = cls(
            product_id=product_id,
            buyer_ref=buyer_ref,
            quantity=quantity,
            unit_price=unit_price,
            amount=amount,
            currency=currency,
            payment_auth_id=payment_auth_id,
            payment_status=PaymentStatus.PENDING.value,
            is_presale=is_presale,
            seller_account_ref=seller_account_ref,
            platform_fee_amount=platform_fee_amount or 0.0,
            transfer_amount=amount if transfer_amount is None else transfer_amount,
            capture_failures=0,
            created_at=now,
            updated_at=now,
        )
        order._assert_can_transition(PaymentStatus.AUTHORIZED)
        order.payment_status = PaymentStatus.AUTHORIZED.value
        order.raise_(
            OrderAuthorized(
                order_id=str(order.id),
                product_id=str(product_id),
                buyer_ref=buyer_ref,
                payment_auth_id=payment_auth_id,
                quantity=quantity,
                amount=amount,
                platform_fee_amount=order.platform_fee_amount,
                transfer_amount=order.transfer_amount,
                authorized_at=now,
            )
        )
        return order

    @classmethod
    def failed_payment(cls, product_id, buyer_ref, quantity, unit_price, payment_auth_id, reason):
        """Record a payment the gateway reported as failed before any order existed."""
        now = datetime.now(UTC)
        order = cls(
            product_id=product_id,
            buyer_ref=buyer_ref,
            quantity=quantity,
            unit_price=unit_price,
            amount=round(quantity * unit_price, 2),
            payment_auth_id=payment_auth_id,
            payment_status=PaymentStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        order.fail(reason)
        return order

    # -------------------------------------------------------------------
    # State transitions
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status: PaymentStatus) -> None:
        current = PaymentStatus(self.payment_status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise ValidationError(
                {"payment_status": [f"Cannot transition from {current.value} to {target_status.value}"]}
            )

    def holds_funds(self) -> bool:
        return self.payment_status in HOLDING_STATUSES

    def capture(self):
        self._assert_can_transition(PaymentStatus.CAPTURED)
        now = datetime.now(UTC)
        self.payment_status = PaymentStatus.CAPTURED.value
        self.captured_at = now
        self.updated_at = now
        self.raise_(
            OrderCaptured(
                order_id=str(self.id),
                product_id=str(self.product_id),
                payment_auth_id=self.payment_auth_id,
                amount=self.amount,
                captured_at=now,
            )
        )

    def record_capture_failure(self, reason: str):
        if self.payment_status != PaymentStatus.AUTHORIZED.value:
            raise ValidationError({"payment_status": ["Only authorized orders can fail a capture"]})

        now = datetime.now(UTC)
        self.capture_failures = (self.capture_failures or 0) + 1
        self.failure_reason = reason
        self.updated_at = now
        self.raise_(
            OrderCaptureFailed(
                order_id=str(self.id),
                payment_auth_id=self.payment_auth_id,
                reason=reason,
                failure_count=self.capture_failures,
                failed_at=now,
            )
        )

    def cancel(self, reason: str):
        self._assert_can_transition(PaymentStatus.CANCELLED)
        now = datetime.now(UTC)
        self.payment_status = PaymentStatus.CANCELLED.value
        self.failure_reason = reason
        self.cancelled_at = now
        self.updated_at = now
        self.raise_(
            OrderCancelled(
                order_id=str(self.id),
                product_id=str(self.product_id),
                payment_auth_id=self.payment_auth_id,
                reason=reason,
                cancelled_at=now,
            )
        )

    def fail(self, reason: str):
        self._assert_can_transition(PaymentStatus.FAILED)
        now = datetime.now(UTC)
        self.payment_status = PaymentStatus.FAILED.value
        self.failure_reason = reason
        self.updated_at = now
        self.raise_(
            OrderFailed(
                order_id=str(self.id),
                product_id=str(self.product_id),
                payment_auth_id=self.payment_auth_id,
                reason=reason,
                failed_at=now,
            )
        )
