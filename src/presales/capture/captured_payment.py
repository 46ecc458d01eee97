"""CapturedPayment aggregate: money actually collected for a presale order.

If a presale ultimately fails after some captures went through, those
payments are flagged for a person to refund. Nothing in the system refunds
them automatically.
"""

from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, Identifier, String

from presales.config import DEFAULT_CURRENCY
from presales.domain import presales


class CapturedPaymentStatus(Enum):
    CAPTURED = "Captured"
    FLAGGED_FOR_MANUAL_REFUND = "FlaggedForManualRefund"


@presales.aggregate
class CapturedPayment:
    payment_auth_id = String(required=True, max_length=255, unique=True)
    product_id = Identifier(required=True)
    order_id = Identifier(required=True)
    amount = Float(required=True, min_value=0.0)
    currency = String(max_length=3, default=DEFAULT_CURRENCY)
    status = String(choices=CapturedPaymentStatus, default=CapturedPaymentStatus.CAPTURED.value)
    flag_reason = String(max_length=500)
    captured_at = DateTime()
    flagged_at = DateTime()

    @classmethod
    def record(cls, order):
        return cls(
            payment_auth_id=order.payment_auth_id,
            product_id=order.product_id,
            order_id=order.id,
            amount=order.amount,
            currency=order.currency,
            status=CapturedPaymentStatus.CAPTURED.value,
            captured_at=order.captured_at or datetime.now(UTC),
        )

    @classmethod
    def record_stray(cls, order, reason: str):
        """Funds the gateway captured for an order that no longer holds them."""
        now = datetime.now(UTC)
        return cls(
            payment_auth_id=order.payment_auth_id,
            product_id=order.product_id,
            order_id=order.id,
            amount=order.amount,
            currency=order.currency,
            status=CapturedPaymentStatus.FLAGGED_FOR_MANUAL_REFUND.value,
            flag_reason=reason,
            captured_at=now,
            flagged_at=now,
        )

    def flag_for_manual_refund(self, reason: str):
        if self.status != CapturedPaymentStatus.CAPTURED.value:
            raise ValidationError({"status": ["Payment is already flagged for manual refund"]})
        self.status = CapturedPaymentStatus.FLAGGED_FOR_MANUAL_REFUND.value
        self.flag_reason = reason
        self.flagged_at = datetime.now(UTC)
