"""Flag captured payments of a failed presale for manual refund."""

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from presales.capture.captured_payment import CapturedPayment, CapturedPaymentStatus
from presales.domain import presales

logger = structlog.get_logger(__name__)


@presales.command(part_of="CapturedPayment")
class FlagPaymentsForManualRefund:
    product_id = Identifier(required=True)
    reason = String(required=True, max_length=500)


@presales.command_handler(part_of=CapturedPayment)
class CapturedPaymentHandler:
    @handle(FlagPaymentsForManualRefund)
    def flag_for_manual_refund(self, command):
        repo = current_domain.repository_for(CapturedPayment)
        payments = repo._dao.query.filter(
            product_id=str(command.product_id),
            status=CapturedPaymentStatus.CAPTURED.value,
        ).all()

        total = 0.0
        for payment in payments.items:
            payment.flag_for_manual_refund(command.reason)
            repo.add(payment)
            total += payment.amount
            logger.warning(
                "Captured payment flagged for manual refund",
                product_id=str(command.product_id),
                order_id=str(payment.order_id),
                payment_auth_id=payment.payment_auth_id,
                amount=payment.amount,
                currency=payment.currency,
            )

        return {"count": len(payments.items), "amount": round(total, 2)}
