"""Presale error taxonomy.

Input problems are reported with protean's ``ValidationError`` and never
retried. The classes below cover what can go wrong once money is involved.
"""


class PresaleError(Exception):
    """Base class for presale orchestration errors."""


class GatewayError(PresaleError):
    """The payment gateway could not be reached or returned an unexpected error."""


class GatewayDeclineError(GatewayError):
    """The gateway declined an authorization request."""

    def __init__(self, reason: str, product_id: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.product_id = product_id


class DuplicateEventError(PresaleError):
    """An order already exists for this payment authorization."""

    def __init__(self, payment_auth_id: str, order_id: str | None = None) -> None:
        super().__init__(f"Order already recorded for authorization {payment_auth_id}")
        self.payment_auth_id = payment_auth_id
        self.order_id = order_id


class ThresholdRaceError(PresaleError):
    """A concurrent pledge changed the counter between read and conditional update."""

    def __init__(self, product_id: str, observed: int) -> None:
        super().__init__(f"Pledge counter for {product_id} moved from {observed}")
        self.product_id = product_id
        self.observed = observed


class CaptureExhaustedError(PresaleError):
    """Capture retries ran out; captured funds are flagged for manual refund."""

    def __init__(
        self,
        product_id: str,
        attempts: int,
        flagged_payments: int,
        flagged_amount: float,
    ) -> None:
        super().__init__(
            f"Capture for presale {product_id} failed after {attempts} attempt(s); "
            f"{flagged_payments} payment(s) totalling {flagged_amount:.2f} need manual refund"
        )
        self.product_id = product_id
        self.attempts = attempts
        self.flagged_payments = flagged_payments
        self.flagged_amount = flagged_amount
