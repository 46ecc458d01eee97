"""Read functions over the ledger, thresholds and capture history."""

from protean.utils.globals import current_domain

from presales.capture.attempt import CaptureAttempt
from presales.capture.captured_payment import CapturedPayment, CapturedPaymentStatus
from presales.ledger.order import Order
from presales.threshold import tracker
from presales.threshold.threshold import PresaleThreshold


def get_orders_for_product(product_id, statuses=None) -> list[Order]:
    orders = current_domain.repository_for(Order)._dao.query.filter(product_id=str(product_id)).all().items
    if statuses is not None:
        orders = [order for order in orders if order.payment_status in statuses]
    return sorted(orders, key=lambda order: order.created_at)


def get_threshold(product_id) -> PresaleThreshold | None:
    return tracker.find_threshold(product_id)


def get_capture_history(product_id) -> list[CaptureAttempt]:
    attempts = (
        current_domain.repository_for(CaptureAttempt)._dao.query.filter(product_id=str(product_id)).all().items
    )
    return sorted(attempts, key=lambda attempt: attempt.attempt_number)


def get_captured_payments(product_id, status: CapturedPaymentStatus | None = None) -> list[CapturedPayment]:
    payments = (
        current_domain.repository_for(CapturedPayment)._dao.query.filter(product_id=str(product_id)).all().items
    )
    if status is not None:
        payments = [payment for payment in payments if payment.status == status.value]
    return payments
