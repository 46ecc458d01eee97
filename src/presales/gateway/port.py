"""Payment gateway port (abstract interface).

Presale orders are paid in two steps: the buyer's funds are held
(authorized) at checkout and only captured once the presale is funded.
Every adapter implements the same hold/capture/cancel primitives so the
orchestration code never touches a gateway SDK directly.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class AuthorizationResult:
    """Result of placing a hold (or an immediate charge) on the buyer's funds."""

    success: bool
    auth_id: str | None = None
    captured: bool = False
    gateway_status: str | None = None
    failure_reason: str | None = None


@dataclass(frozen=True)
class CaptureResult:
    """Result of capturing a previously held authorization."""

    success: bool
    auth_id: str
    amount_captured: float | None = None
    gateway_status: str | None = None
    failure_reason: str | None = None


@dataclass(frozen=True)
class CancelResult:
    """Result of releasing a hold without capturing it."""

    success: bool
    auth_id: str
    gateway_status: str | None = None
    failure_reason: str | None = None


@dataclass(frozen=True)
class RefundResult:
    success: bool
    auth_id: str
    gateway_refund_id: str | None = None
    failure_reason: str | None = None


@dataclass(frozen=True)
class AuthorizationRequest:
    """Everything the gateway needs to place a hold for one cart item."""

    amount: float
    currency: str
    payer_ref: str
    payee_ref: str | None = None
    fee_amount: float | None = None
    capture_immediately: bool = False
    metadata: dict = field(default_factory=dict)


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    @abstractmethod
    def authorize(self, request: AuthorizationRequest) -> AuthorizationResult:
        """Hold funds, or charge them outright when ``capture_immediately`` is set."""
        ...

    @abstractmethod
    def capture(self, auth_id: str) -> CaptureResult:
        """Capture a held authorization."""
        ...

    @abstractmethod
    def cancel(self, auth_id: str) -> CancelResult:
        """Release a held authorization."""
        ...

    @abstractmethod
    def refund(self, auth_id: str, amount: float, reason: str) -> RefundResult:
        """Refund captured funds. Orchestration code never calls this; refunds are a human decision."""
        ...

    @abstractmethod
    def verify_webhook_signature(self, payload: str, signature: str) -> bool:
        """Verify that a webhook payload is authentically from the gateway."""
        ...
