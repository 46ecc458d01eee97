"""Configurable fake payment gateway for development and testing.

Simulates holds, captures and cancellations in memory. Declines can be
switched on globally via ``configure`` and capture or cancel failures can be
scripted per authorization, which is what the capture-retry tests rely on.
"""

from uuid import uuid4

from presales.gateway.port import (
    AuthorizationRequest,
    AuthorizationResult,
    CancelResult,
    CaptureResult,
    PaymentGateway,
    RefundResult,
)


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Card declined"
        self.calls: list[dict] = []
        self.holds: dict[str, dict] = {}
        # auth_id -> remaining failures (None means fail every time)
        self._capture_failures: dict[str, int | None] = {}
        self._cancel_failures: set[str] = set()

    def configure(self, should_succeed: bool, failure_reason: str = "Card declined") -> None:
        """Configure authorization behaviour at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def fail_capture(self, auth_id: str, times: int | None = None) -> None:
        """Make the next ``times`` captures of ``auth_id`` fail (every capture when None)."""
        self._capture_failures[auth_id] = times

    def fail_cancel(self, auth_id: str) -> None:
        self._cancel_failures.add(auth_id)

    def calls_to(self, method: str) -> list[dict]:
        return [call for call in self.calls if call["method"] == method]

    def authorize(self, request: AuthorizationRequest) -> AuthorizationResult:
        self.calls.append(
            {
                "method": "authorize",
                "amount": request.amount,
                "currency": request.currency,
                "payer_ref": request.payer_ref,
                "payee_ref": request.payee_ref,
                "fee_amount": request.fee_amount,
                "capture_immediately": request.capture_immediately,
                "metadata": dict(request.metadata),
            }
        )

        if not self.should_succeed:
            return AuthorizationResult(
                success=False,
                gateway_status="declined",
                failure_reason=self.failure_reason,
            )

        auth_id = f"fake_auth_{uuid4().hex[:12]}"
        status = "succeeded" if request.capture_immediately else "requires_capture"
        self.holds[auth_id] = {"amount": request.amount, "status": status}
        return AuthorizationResult(
            success=True,
            auth_id=auth_id,
            captured=request.capture_immediately,
            gateway_status=status,
        )

    def capture(self, auth_id: str) -> CaptureResult:
        self.calls.append({"method": "capture", "auth_id": auth_id})

        if auth_id in self._capture_failures:
            remaining = self._capture_failures[auth_id]
            if remaining is None or remaining > 0:
                if remaining is not None:
                    self._capture_failures[auth_id] = remaining - 1
                return CaptureResult(
                    success=False,
                    auth_id=auth_id,
                    gateway_status="requires_capture",
                    failure_reason="Capture failed",
                )

        hold = self.holds.setdefault(auth_id, {"amount": None, "status": "requires_capture"})
        hold["status"] = "succeeded"
        return CaptureResult(
            success=True,
            auth_id=auth_id,
            amount_captured=hold["amount"],
            gateway_status="succeeded",
        )

    def cancel(self, auth_id: str) -> CancelResult:
        self.calls.append({"method": "cancel", "auth_id": auth_id})

        if auth_id in self._cancel_failures:
            return CancelResult(success=False, auth_id=auth_id, failure_reason="Cancel failed")

        hold = self.holds.setdefault(auth_id, {"amount": None, "status": "requires_capture"})
        hold["status"] = "canceled"
        return CancelResult(success=True, auth_id=auth_id, gateway_status="canceled")

    def refund(self, auth_id: str, amount: float, reason: str) -> RefundResult:
        self.calls.append({"method": "refund", "auth_id": auth_id, "amount": amount, "reason": reason})
        return RefundResult(
            success=True,
            auth_id=auth_id,
            gateway_refund_id=f"fake_ref_{uuid4().hex[:12]}",
        )

    def verify_webhook_signature(self, payload: str, signature: str) -> bool:  # noqa: ARG002
        return signature == "test-signature"
