"""Product aggregate: a record offered for sale.

A presale product only gets pressed once enough buyers pledge before the
deadline. The terms of a running presale (price, target, deadline) are
fixed; the only changes after listing are the terminal ones:

    PRESALE → FUNDED    (captures succeeded)
    PRESALE → DIGITAL   (presale failed; sold as a digital release instead)

Products listed outside a presale are ON_SALE and sold immediately.
"""

from datetime import UTC, datetime
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, Identifier, Integer, String

from presales.catalogue.events import PresaleConvertedToDigital, PresaleFunded, ProductListed
from presales.config import DEFAULT_CURRENCY
from presales.domain import presales


class ProductStatus(Enum):
    ON_SALE = "OnSale"
    PRESALE = "Presale"
    FUNDED = "Funded"
    DIGITAL = "Digital"


class ProductFormat(Enum):
    VINYL = "Vinyl"
    DIGITAL = "Digital"


_VALID_TRANSITIONS = {
    ProductStatus.ON_SALE: set(),
    ProductStatus.PRESALE: {ProductStatus.FUNDED, ProductStatus.DIGITAL},
    ProductStatus.FUNDED: set(),
    ProductStatus.DIGITAL: set(),
}


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes coming back from the store as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


@presales.aggregate
class Product:
    seller_id = Identifier(required=True)
    title = String(required=True, max_length=255)
    unit_price = Float(required=True, min_value=0.0)
    currency = String(max_length=3, default=DEFAULT_CURRENCY)
    format = String(choices=ProductFormat, default=ProductFormat.VINYL.value)
    is_presale = Boolean(default=True)
    target_orders = Integer(min_value=1)
    deadline = DateTime()
    status = String(choices=ProductStatus, default=ProductStatus.PRESALE.value)
    digital_price = Float()
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def presale_needs_target_and_deadline(self):
        if self.is_presale and (not self.target_orders or self.deadline is None):
            raise ValidationError({"presale": ["A presale needs a target order count and a deadline"]})

    @classmethod
    def list_for_sale(
        cls,
        seller_id,
        title,
        unit_price,
        is_presale=True,
        target_orders=None,
        deadline=None,
        currency=DEFAULT_CURRENCY,
    ):
        """List a product, as a presale or for immediate sale."""
        now = datetime.now(UTC)
        if is_presale and deadline is not None and as_utc(deadline) <= now:
            raise ValidationError({"deadline": ["Presale deadline must be in the future"]})

        product = cls(
            seller_id=seller_id,
            title=title,
            unit_price=unit_price,
            currency=currency,
            format=ProductFormat.VINYL.value,
            is_presale=is_presale,
            target_orders=target_orders,
            deadline=deadline,
            status=(ProductStatus.PRESALE if is_presale else ProductStatus.ON_SALE).value,
            created_at=now,
            updated_at=now,
        )
        product.raise_(
            ProductListed(
                product_id=str(product.id),
                seller_id=str(seller_id),
                title=title,
                unit_price=unit_price,
                is_presale=str(is_presale),
                target_orders=target_orders,
                deadline=deadline,
                listed_at=now,
            )
        )
        return product

    def _assert_can_transition(self, target_status: ProductStatus) -> None:
        current = ProductStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise ValidationError({"status": [f"Cannot transition from {current.value} to {target_status.value}"]})

    def is_open_for_pledges(self, as_of: datetime | None = None) -> bool:
        as_of = as_of or datetime.now(UTC)
        return self.status == ProductStatus.PRESALE.value and as_utc(self.deadline) > as_of

    def is_past_deadline(self, as_of: datetime | None = None) -> bool:
        as_of = as_of or datetime.now(UTC)
        return self.deadline is not None and as_utc(self.deadline) < as_of

    def mark_funded(self):
        self._assert_can_transition(ProductStatus.FUNDED)
        now = datetime.now(UTC)
        self.status = ProductStatus.FUNDED.value
        self.updated_at = now
        self.raise_(PresaleFunded(product_id=str(self.id), funded_at=now))

    def convert_to_digital(self, reason: str):
        """Fall back to a digital-only release at half the vinyl price."""
        self._assert_can_transition(ProductStatus.DIGITAL)
        now = datetime.now(UTC)
        self.status = ProductStatus.DIGITAL.value
        self.format = ProductFormat.DIGITAL.value
        self.digital_price = round(self.unit_price / 2, 2)
        self.updated_at = now
        self.raise_(
            PresaleConvertedToDigital(
                product_id=str(self.id),
                reason=reason,
                digital_price=self.digital_price,
                converted_at=now,
            )
        )
