"""Order Ledger: the one place orders are written.

Checkout and the gateway webhooks both record pledges through
``RecordAuthorizedOrder``. Inside a single unit of work it checks for an
existing order with the same authorization, inserts the order and bumps the
presale counter, so a pledge is either fully recorded or not at all.
"""

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Boolean, Float, Identifier, Integer, String
from protean.utils.globals import current_domain

from presales.capture.captured_payment import CapturedPayment
from presales.config import DEFAULT_CURRENCY
from presales.domain import presales
from presales.errors import DuplicateEventError
from presales.ledger.order import Order, PaymentStatus
from presales.threshold import tracker

logger = structlog.get_logger(__name__)


def find_order_by_auth_id(payment_auth_id: str) -> Order | None:
    items = current_domain.repository_for(Order)._dao.query.filter(payment_auth_id=payment_auth_id).all().items
    return items[0] if items else None


def find_captured_payment(payment_auth_id: str) -> CapturedPayment | None:
    items = (
        current_domain.repository_for(CapturedPayment)._dao.query.filter(payment_auth_id=payment_auth_id).all().items
    )
    return items[0] if items else None


@presales.command(part_of="Order")
class RecordAuthorizedOrder:
    """Record a pledge whose payment the gateway has authorized."""

    payment_auth_id = String(required=True, max_length=255)
    product_id = Identifier(required=True)
    buyer_ref = String(required=True, max_length=255)
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(required=True, min_value=0.0)
    currency = String(max_length=3, default=DEFAULT_CURRENCY)
    is_presale = Boolean(default=True)
    captured = Boolean(default=False)  # charged immediately (non-presale items)
    seller_account_ref = String(max_length=255)
    platform_fee_amount = Float(default=0.0)
    transfer_amount = Float()


@presales.command(part_of="Order")
class RecordReleasedHold:
    """Record a pledge that was authorized but could not be accepted, after its hold was released."""

    payment_auth_id = String(required=True, max_length=255)
    product_id = Identifier(required=True)
    buyer_ref = String(required=True, max_length=255)
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(required=True, min_value=0.0)
    reason = String(required=True, max_length=500)


@presales.command(part_of="Order")
class RecordPaymentFailure:
    """The gateway reported that a payment failed."""

    payment_auth_id = String(required=True, max_length=255)
    product_id = Identifier(required=True)
    buyer_ref = String(required=True, max_length=255)
    quantity = Integer(default=1, min_value=1)
    unit_price = Float(default=0.0)
    reason = String(required=True, max_length=500)


@presales.command(part_of="Order")
class RecordCapture:
    """The gateway captured the funds held for an order."""

    order_id = Identifier(required=True)


@presales.command(part_of="Order")
class RecordCaptureFailure:
    order_id = Identifier(required=True)
    reason = String(required=True, max_length=500)


@presales.command(part_of="Order")
class RecordStrayCapture:
    """The gateway captured funds for an order that was already cancelled or failed."""

    payment_auth_id = String(required=True, max_length=255)
    reason = String(required=True, max_length=500)


@presales.command(part_of="Order")
class ReleaseOrderHold:
    """Take an authorized order out of the presale once its hold is gone.

    ``cancelled`` is False when the gateway refused the cancellation; the order
    is then marked failed rather than cancelled.
    """

    order_id = Identifier(required=True)
    reason = String(required=True, max_length=500)
    cancelled = Boolean(default=True)


@presales.command_handler(part_of=Order)
class OrderLedgerHandler:
    @handle(RecordAuthorizedOrder)
    def record_authorized_order(self, command):
        existing = find_order_by_auth_id(command.payment_auth_id)
        if existing is not None:
            raise DuplicateEventError(command.payment_auth_id, order_id=str(existing.id))

        order = Order.authorize(
            product_id=command.product_id,
            buyer_ref=command.buyer_ref,
            quantity=command.quantity,
            unit_price=command.unit_price,
            payment_auth_id=command.payment_auth_id,
            is_presale=command.is_presale,
            seller_account_ref=command.seller_account_ref,
            platform_fee_amount=command.platform_fee_amount,
            transfer_amount=command.transfer_amount,
            currency=command.currency,
        )

        if command.captured:
            order.capture()
        elif command.is_presale:
            tracker.increment(command.product_id, command.quantity)

        current_domain.repository_for(Order).add(order)
        if command.captured:
            current_domain.repository_for(CapturedPayment).add(CapturedPayment.record(order))

        logger.info(
            "Order recorded",
            order_id=str(order.id),
            product_id=str(command.product_id),
            payment_auth_id=command.payment_auth_id,
            payment_status=order.payment_status,
        )
        return str(order.id)

    @handle(RecordReleasedHold)
    def record_released_hold(self, command):
        existing = find_order_by_auth_id(command.payment_auth_id)
        if existing is not None:
            raise DuplicateEventError(command.payment_auth_id, order_id=str(existing.id))

        order = Order.authorize(
            product_id=command.product_id,
            buyer_ref=command.buyer_ref,
            quantity=command.quantity,
            unit_price=command.unit_price,
            payment_auth_id=command.payment_auth_id,
        )
        order.cancel(command.reason)
        current_domain.repository_for(Order).add(order)
        return str(order.id)

    @handle(RecordPaymentFailure)
    def record_payment_failure(self, command):
        repo = current_domain.repository_for(Order)
        order = find_order_by_auth_id(command.payment_auth_id)

        if order is None:
            order = Order.failed_payment(
                product_id=command.product_id,
                buyer_ref=command.buyer_ref,
                quantity=command.quantity,
                unit_price=command.unit_price,
                payment_auth_id=command.payment_auth_id,
                reason=command.reason,
            )
            repo.add(order)
            return str(order.id)

        if order.payment_status != PaymentStatus.AUTHORIZED.value:
            raise DuplicateEventError(command.payment_auth_id, order_id=str(order.id))

        order.fail(command.reason)
        if order.is_presale:
            tracker.decrement(order.product_id, order.quantity)
        repo.add(order)
        return str(order.id)

    @handle(RecordCapture)
    def record_capture(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.capture()
        repo.add(order)

        if find_captured_payment(order.payment_auth_id) is None:
            current_domain.repository_for(CapturedPayment).add(CapturedPayment.record(order))

    @handle(RecordCaptureFailure)
    def record_capture_failure(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.record_capture_failure(command.reason)
        repo.add(order)

    @handle(RecordStrayCapture)
    def record_stray_capture(self, command):
        order = find_order_by_auth_id(command.payment_auth_id)
        if order is None:
            raise ObjectNotFoundError(f"No order for payment {command.payment_auth_id}")

        existing = find_captured_payment(command.payment_auth_id)
        if existing is not None:
            raise DuplicateEventError(command.payment_auth_id, order_id=str(order.id))

        payment = CapturedPayment.record_stray(order, command.reason)
        current_domain.repository_for(CapturedPayment).add(payment)
        logger.error(
            "Funds captured for an order that no longer holds them, flagged for manual refund",
            order_id=str(order.id),
            product_id=str(order.product_id),
            payment_auth_id=command.payment_auth_id,
            payment_status=order.payment_status,
            amount=order.amount,
            reason=command.reason,
        )
        return str(payment.id)

    @handle(ReleaseOrderHold)
    def release_order_hold(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        if command.cancelled:
            order.cancel(command.reason)
        else:
            order.fail(command.reason)

        if order.is_presale:
            tracker.decrement(order.product_id, order.quantity)
        repo.add(order)
