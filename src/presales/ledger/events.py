"""Domain events for the Order aggregate.

Together with the CaptureAttempt rows these form the audit trail of what
happened to every pledge.
"""

from protean.fields import DateTime, Float, Identifier, Integer, String

from presales.domain import presales


@presales.event(part_of="Order")
class OrderAuthorized:
    """The buyer's funds are held for this order."""

    __version__ = 1

    order_id = Identifier(required=True)
    product_id = Identifier(required=True)
    buyer_ref = String(required=True)
    payment_auth_id = String(required=True)
    quantity = Integer(required=True)
    amount = Float(required=True)
    platform_fee_amount = Float()
    transfer_amount = Float()
    authorized_at = DateTime(required=True)


@presales.event(part_of="Order")
class OrderCaptured:
    """The held funds were collected."""

    __version__ = 1

    order_id = Identifier(required=True)
    product_id = Identifier(required=True)
    payment_auth_id = String(required=True)
    amount = Float(required=True)
    captured_at = DateTime(required=True)


@presales.event(part_of="Order")
class OrderCaptureFailed:
    """A capture attempt failed; the hold is still in place."""

    __version__ = 1

    order_id = Identifier(required=True)
    payment_auth_id = String(required=True)
    reason = String(required=True)
    failure_count = Integer(required=True)
    failed_at = DateTime(required=True)


@presales.event(part_of="Order")
class OrderCancelled:
    """The hold was released without collecting the funds."""

    __version__ = 1

    order_id = Identifier(required=True)
    product_id = Identifier(required=True)
    payment_auth_id = String(required=True)
    reason = String(required=True)
    cancelled_at = DateTime(required=True)


@presales.event(part_of="Order")
class OrderFailed:
    """The payment failed at the gateway."""

    __version__ = 1

    order_id = Identifier(required=True)
    product_id = Identifier(required=True)
    payment_auth_id = String(required=True)
    reason = String(required=True)
    failed_at = DateTime(required=True)
