"""Expiry Reaper: fails presales whose deadline passed short of the target.

Designed to be triggered periodically by the scheduler or via the
maintenance API endpoint. Held funds of a failed presale are released,
never captured, and the release falls back to a digital-only offering.

Overlapping runs are safe: the ACTIVE → FAILED transition is conditional
on the pledge count the reaper observed, so a pledge that lands in between
makes the transition miss and the presale is left alone.
"""

from datetime import UTC, datetime

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from presales.catalogue.listing import ConvertPresaleToDigital
from presales.catalogue.product import Product, ProductStatus
from presales.channel import notify
from presales.channel.port import PresaleFailed
from presales.gateway import get_gateway
from presales.ledger.order import PaymentStatus
from presales.ledger.queries import get_orders_for_product
from presales.ledger.recording import ReleaseOrderHold
from presales.threshold import tracker
from presales.threshold.threshold import ThresholdStatus

logger = structlog.get_logger(__name__)

DEADLINE_PASSED = "deadline_passed"


class ExpiryReaper:
    def __init__(self, gateway=None, dispatcher=None):
        self.gateway = gateway or get_gateway()
        self.dispatcher = dispatcher

    def run(self, as_of: datetime | None = None) -> int:
        """Fail every expired, unfunded presale. Returns how many were failed."""
        as_of = as_of or datetime.now(UTC)
        logger.info("Checking for expired presales", as_of=as_of.isoformat())

        expired_count = 0
        for threshold in tracker.thresholds_with_status(ThresholdStatus.ACTIVE):
            try:
                product = current_domain.repository_for(Product).get(threshold.product_id)
            except ObjectNotFoundError:
                logger.warning("Threshold without product", product_id=str(threshold.product_id))
                continue

            if not product.is_past_deadline(as_of) or threshold.is_reached():
                continue

            if self.expire(threshold, product, as_of):
                expired_count += 1

        logger.info("Expired presale sweep complete", expired_count=expired_count)
        return expired_count

    def expire(self, threshold, product, as_of: datetime) -> bool:
        product_id = str(product.id)
        if not tracker.mark_failed_if_unreached(product_id, threshold.current_orders, as_of):
            logger.info("Presale changed while expiring, skipped", product_id=product_id)
            return False

        released = 0
        for order in get_orders_for_product(product_id, [PaymentStatus.AUTHORIZED.value]):
            result = self.gateway.cancel(order.payment_auth_id)
            if not result.success:
                logger.warning(
                    "Could not cancel payment hold",
                    order_id=str(order.id),
                    payment_auth_id=order.payment_auth_id,
                    reason=result.failure_reason,
                )
            current_domain.process(
                ReleaseOrderHold(order_id=str(order.id), reason=DEADLINE_PASSED, cancelled=result.success),
                asynchronous=False,
            )
            released += 1

        if product.status == ProductStatus.PRESALE.value:
            current_domain.process(
                ConvertPresaleToDigital(product_id=product_id, reason=DEADLINE_PASSED),
                asynchronous=False,
            )

        logger.info(
            "Presale expired",
            product_id=product_id,
            current_orders=threshold.current_orders,
            target_orders=threshold.target_orders,
            released_orders=released,
        )
        notify(
            PresaleFailed(
                product_id=product_id,
                reason=DEADLINE_PASSED,
                current_orders=threshold.current_orders,
                target_orders=threshold.target_orders,
                released_orders=released,
            ),
            self.dispatcher,
        )
        return True
