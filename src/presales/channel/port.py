"""Notification dispatcher port.

Presale outcomes are handed to the dispatcher as structured events. Turning
them into emails or push messages is the dispatcher's business.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class ThresholdReached:
    product_id: str
    current_orders: int
    target_orders: int
    reached_at: datetime


@dataclass(frozen=True)
class PresaleFailed:
    product_id: str
    reason: str  # deadline_passed | capture_exhausted | no_held_payments
    current_orders: int
    target_orders: int
    released_orders: int = 0
    flagged_payments: int = 0
    flagged_amount: float = 0.0


@dataclass(frozen=True)
class PresaleCompleted:
    product_id: str
    attempt_number: int
    successful_captures: int
    total_orders: int
    captured_amount: float


@dataclass(frozen=True)
class OrderCaptured:
    product_id: str
    order_id: str
    payment_auth_id: str
    buyer_ref: str
    amount: float


PresaleNotification = ThresholdReached | PresaleFailed | PresaleCompleted | OrderCaptured


class NotificationDispatcher(ABC):
    """Abstract interface for presale notification adapters."""

    @abstractmethod
    def dispatch(self, event: PresaleNotification) -> None:
        """Deliver one structured notification event."""
        ...
