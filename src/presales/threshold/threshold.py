"""PresaleThreshold aggregate: the pledge counter for one presale.

``current_orders`` always equals the total quantity of the product's orders
whose funds are held or captured. Status only moves forward:

    ACTIVE → PROCESSING → COMPLETED | FAILED
    ACTIVE → FAILED     (deadline passed short of the target)

The record is written once, when the presale is listed. Every later change
goes through the conditional updates in ``presales.threshold.tracker`` so
that concurrent writers are arbitrated by the store.
"""

from datetime import UTC, datetime
from enum import Enum

from protean.fields import Boolean, DateTime, Identifier, Integer, String

from presales.domain import presales


class ThresholdStatus(Enum):
    ACTIVE = "Active"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"


@presales.aggregate
class PresaleThreshold:
    product_id = Identifier(required=True, unique=True)
    target_orders = Integer(required=True, min_value=1)
    current_orders = Integer(default=0, min_value=0)
    status = String(choices=ThresholdStatus, default=ThresholdStatus.ACTIVE.value)
    attempts_started = Integer(default=0)
    sweep_in_progress = Boolean(default=False)
    claimed_at = DateTime()
    reached_at = DateTime()
    resolved_at = DateTime()
    created_at = DateTime()

    @classmethod
    def open(cls, product_id, target_orders):
        return cls(
            product_id=product_id,
            target_orders=target_orders,
            current_orders=0,
            status=ThresholdStatus.ACTIVE.value,
            attempts_started=0,
            sweep_in_progress=False,
            created_at=datetime.now(UTC),
        )

    def is_reached(self) -> bool:
        return self.current_orders >= self.target_orders

    def remaining(self) -> int:
        return max(self.target_orders - self.current_orders, 0)
