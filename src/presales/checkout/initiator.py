"""Checkout Initiator: turns a buyer's cart into held payments.

Flow per checkout:
1. Validate every cart item up front; any ValidationError aborts the whole
   checkout before a single authorization is requested.
2. For each item, ask the gateway to hold the funds (presale items) or to
   charge them outright (everything else). A decline only affects its item.
3. Record the order and bump the presale counter in one unit of work. A
   lost counter race is retried transparently; a presale that filled up or
   closed in the meantime gets its hold released again.
4. Presales that reached their target are handed to the Capture
   Orchestrator.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from presales import config
from presales.capture.orchestrator import CaptureOrchestrator
from presales.catalogue.product import Product, ProductStatus
from presales.catalogue.seller import Seller, Settlement
from presales.errors import CaptureExhaustedError, DuplicateEventError, GatewayDeclineError, ThresholdRaceError
from presales.gateway import get_gateway
from presales.gateway.port import AuthorizationRequest
from presales.ledger.recording import RecordAuthorizedOrder, RecordReleasedHold
from presales.threshold import tracker
from presales.threshold.threshold import ThresholdStatus

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CartItem:
    product_id: str
    quantity: int
    unit_price: float


class LineStatus(Enum):
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    DECLINED = "declined"
    REJECTED = "rejected"


@dataclass
class CheckoutLine:
    product_id: str
    quantity: int
    status: LineStatus
    payment_auth_id: str | None = None
    order_id: str | None = None
    error: Exception | None = None


@dataclass
class CheckoutResult:
    buyer_ref: str
    lines: list[CheckoutLine] = field(default_factory=list)

    @property
    def accepted(self) -> list[CheckoutLine]:
        return [line for line in self.lines if line.status in (LineStatus.AUTHORIZED, LineStatus.CAPTURED)]


@dataclass(frozen=True)
class _PlannedItem:
    item: CartItem
    product: Product
    settlement: Settlement

    @property
    def amount(self) -> float:
        return round(self.item.quantity * self.item.unit_price, 2)


class CheckoutInitiator:
    def __init__(self, gateway=None, orchestrator: CaptureOrchestrator | None = None):
        self.gateway = gateway or get_gateway()
        self.orchestrator = orchestrator or CaptureOrchestrator(gateway=self.gateway)

    def checkout(self, buyer_ref: str, items: list[CartItem], as_of: datetime | None = None) -> CheckoutResult:
        as_of = as_of or datetime.now(UTC)
        if not buyer_ref:
            raise ValidationError({"buyer_ref": ["Buyer reference is required"]})
        if not items:
            raise ValidationError({"items": ["Cart is empty"]})

        planned = self._validate(items, as_of)

        result = CheckoutResult(buyer_ref=buyer_ref)
        for plan in planned:
            result.lines.append(self._authorize_and_record(buyer_ref, plan))

        reached = {line.product_id for line in result.accepted if line.status == LineStatus.AUTHORIZED}
        for product_id in reached:
            if tracker.is_reached(product_id):
                try:
                    self.orchestrator.on_pledges_recorded(product_id, as_of)
                except CaptureExhaustedError as exc:
                    logger.error("Presale capture exhausted", product_id=product_id, error=str(exc))

        logger.info(
            "Checkout processed",
            buyer_ref=buyer_ref,
            items=len(items),
            accepted=len(result.accepted),
        )
        return result

    # -------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------
    def _validate(self, items: list[CartItem], as_of: datetime) -> list[_PlannedItem]:
        planned = []
        requested = defaultdict(int)

        for item in items:
            if item.quantity is None or item.quantity < 1:
                raise ValidationError({"quantity": ["Quantity must be at least 1"]})

            try:
                product = current_domain.repository_for(Product).get(item.product_id)
            except ObjectNotFoundError:
                raise ValidationError({"product_id": [f"Product {item.product_id} not found"]}) from None

            if abs(product.unit_price - item.unit_price) >= 0.005:
                raise ValidationError({"unit_price": [f"Price of {product.title} has changed"]})

            if product.is_presale:
                requested[str(product.id)] += item.quantity
                self._validate_presale(product, requested[str(product.id)], as_of)
            elif product.status != ProductStatus.ON_SALE.value:
                raise ValidationError({"product_id": [f"{product.title} is not on sale"]})

            seller = current_domain.repository_for(Seller).get(product.seller_id)
            amount = round(item.quantity * item.unit_price, 2)
            planned.append(_PlannedItem(item=item, product=product, settlement=seller.settlement_for(amount)))

        return planned

    def _validate_presale(self, product: Product, quantity: int, as_of: datetime) -> None:
        if not product.is_open_for_pledges(as_of):
            raise ValidationError({"presale": [f"Presale for {product.title} has ended"]})

        threshold = tracker.find_threshold(product.id)
        if threshold is None or threshold.status != ThresholdStatus.ACTIVE.value:
            raise ValidationError({"presale": [f"Presale for {product.title} is no longer accepting orders"]})
        if threshold.current_orders + quantity > threshold.target_orders:
            raise ValidationError({"quantity": ["Order would exceed presale target"]})

    # -------------------------------------------------------------------
    # Authorization + recording
    # -------------------------------------------------------------------
    def _authorize_and_record(self, buyer_ref: str, plan: _PlannedItem) -> CheckoutLine:
        item, product, settlement = plan.item, plan.product, plan.settlement
        product_id = str(product.id)

        authorization = self.gateway.authorize(
            AuthorizationRequest(
                amount=plan.amount,
                currency=product.currency,
                payer_ref=buyer_ref,
                payee_ref=settlement.payee_ref,
                fee_amount=settlement.platform_fee,
                capture_immediately=not product.is_presale,
                metadata={"product_id": product_id, "buyer_ref": buyer_ref, "quantity": item.quantity},
            )
        )
        if not authorization.success:
            logger.info("Authorization declined", product_id=product_id, reason=authorization.failure_reason)
            return CheckoutLine(
                product_id=product_id,
                quantity=item.quantity,
                status=LineStatus.DECLINED,
                error=GatewayDeclineError(authorization.failure_reason or "Declined", product_id=product_id),
            )

        command = RecordAuthorizedOrder(
            payment_auth_id=authorization.auth_id,
            product_id=product_id,
            buyer_ref=buyer_ref,
            quantity=item.quantity,
            unit_price=item.unit_price,
            currency=product.currency,
            is_presale=product.is_presale,
            captured=authorization.captured,
            seller_account_ref=settlement.payee_ref,
            platform_fee_amount=settlement.platform_fee,
            transfer_amount=settlement.transfer_amount,
        )
        status = LineStatus.CAPTURED if authorization.captured else LineStatus.AUTHORIZED

        for _ in range(config.MAX_RECORD_RETRIES):
            try:
                order_id = current_domain.process(command, asynchronous=False)
            except ThresholdRaceError:
                continue
            except DuplicateEventError as exc:
                # The gateway webhook recorded this authorization first
                order_id = exc.order_id
            except ValidationError as exc:
                return self._release(buyer_ref, plan, authorization.auth_id, exc)

            return CheckoutLine(
                product_id=product_id,
                quantity=item.quantity,
                status=status,
                payment_auth_id=authorization.auth_id,
                order_id=order_id,
            )

        return self._release(
            buyer_ref,
            plan,
            authorization.auth_id,
            ThresholdRaceError(product_id, observed=-1),
        )

    def _release(self, buyer_ref: str, plan: _PlannedItem, auth_id: str, error: Exception) -> CheckoutLine:
        """Give back a hold that could not be turned into an order."""
        product_id = str(plan.product.id)
        result = self.gateway.cancel(auth_id)
        if not result.success:
            logger.error("Could not release payment hold", payment_auth_id=auth_id, reason=result.failure_reason)

        logger.info("Pledge rejected after authorization", product_id=product_id, error=str(error))
        try:
            order_id = current_domain.process(
                RecordReleasedHold(
                    payment_auth_id=auth_id,
                    product_id=product_id,
                    buyer_ref=buyer_ref,
                    quantity=plan.item.quantity,
                    unit_price=plan.item.unit_price,
                    reason=str(error),
                ),
                asynchronous=False,
            )
        except DuplicateEventError as exc:
            order_id = exc.order_id

        return CheckoutLine(
            product_id=product_id,
            quantity=plan.item.quantity,
            status=LineStatus.REJECTED,
            payment_auth_id=auth_id,
            order_id=order_id,
            error=error,
        )
