"""Domain events for sellers and presale products."""

from protean.fields import DateTime, Float, Identifier, Integer, String

from presales.domain import presales


@presales.event(part_of="Seller")
class SellerRegistered:
    """A seller joined the marketplace."""

    __version__ = 1

    seller_id = Identifier(required=True)
    name = String(required=True)
    payout_account_ref = String()
    fee_exempt = String(required=True)  # "True"/"False"
    registered_at = DateTime(required=True)


@presales.event(part_of="Seller")
class SellerPayoutAccountUpdated:
    __version__ = 1

    seller_id = Identifier(required=True)
    payout_account_ref = String()
    onboarding_complete = String(required=True)
    charges_enabled = String(required=True)
    updated_at = DateTime(required=True)


@presales.event(part_of="Product")
class ProductListed:
    """A product went on sale, either as a presale or for immediate purchase."""

    __version__ = 1

    product_id = Identifier(required=True)
    seller_id = Identifier(required=True)
    title = String(required=True)
    unit_price = Float(required=True)
    is_presale = String(required=True)  # "True"/"False"
    target_orders = Integer()
    deadline = DateTime()
    listed_at = DateTime(required=True)


@presales.event(part_of="Product")
class PresaleFunded:
    """Enough pledges were captured; the pressing goes ahead."""

    __version__ = 1

    product_id = Identifier(required=True)
    funded_at = DateTime(required=True)


@presales.event(part_of="Product")
class PresaleConvertedToDigital:
    """The presale failed and the release falls back to a digital-only offering."""

    __version__ = 1

    product_id = Identifier(required=True)
    reason = String(required=True)
    digital_price = Float(required=True)
    converted_at = DateTime(required=True)
