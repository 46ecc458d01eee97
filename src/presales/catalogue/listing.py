"""Seller registration and product listing: commands and handlers.

Listing a presale opens its pledge counter in the same unit of work, so a
presale product never exists without a threshold.
"""

from protean import handle
from protean.fields import Boolean, DateTime, Float, Identifier, Integer, String
from protean.utils.globals import current_domain

from presales.catalogue.product import Product
from presales.catalogue.seller import Seller
from presales.config import DEFAULT_CURRENCY
from presales.domain import presales
from presales.threshold.threshold import PresaleThreshold


@presales.command(part_of="Seller")
class RegisterSeller:
    name = String(required=True, max_length=255)
    payout_account_ref = String(max_length=255)
    onboarding_complete = Boolean(default=False)
    charges_enabled = Boolean(default=False)
    fee_exempt = Boolean(default=False)


@presales.command(part_of="Seller")
class UpdatePayoutAccount:
    """Reflect the seller's connected-account status reported by the gateway."""

    seller_id = Identifier(required=True)
    payout_account_ref = String(max_length=255)
    onboarding_complete = Boolean(default=False)
    charges_enabled = Boolean(default=False)


@presales.command(part_of="Product")
class ListProduct:
    seller_id = Identifier(required=True)
    title = String(required=True, max_length=255)
    unit_price = Float(required=True, min_value=0.0)
    currency = String(max_length=3, default=DEFAULT_CURRENCY)
    is_presale = Boolean(default=True)
    target_orders = Integer(min_value=1)
    deadline = DateTime()


@presales.command(part_of="Product")
class MarkPresaleFunded:
    product_id = Identifier(required=True)


@presales.command(part_of="Product")
class ConvertPresaleToDigital:
    product_id = Identifier(required=True)
    reason = String(required=True, max_length=255)


@presales.command_handler(part_of=Seller)
class SellerHandler:
    @handle(RegisterSeller)
    def register_seller(self, command):
        seller = Seller.register(
            name=command.name,
            payout_account_ref=command.payout_account_ref,
            onboarding_complete=command.onboarding_complete,
            charges_enabled=command.charges_enabled,
            fee_exempt=command.fee_exempt,
        )
        current_domain.repository_for(Seller).add(seller)
        return str(seller.id)

    @handle(UpdatePayoutAccount)
    def update_payout_account(self, command):
        repo = current_domain.repository_for(Seller)
        seller = repo.get(command.seller_id)
        seller.update_payout_account(
            payout_account_ref=command.payout_account_ref,
            onboarding_complete=command.onboarding_complete,
            charges_enabled=command.charges_enabled,
        )
        repo.add(seller)


@presales.command_handler(part_of=Product)
class ProductHandler:
    @handle(ListProduct)
    def list_product(self, command):
        # Raises ObjectNotFoundError for unknown sellers
        current_domain.repository_for(Seller).get(command.seller_id)

        product = Product.list_for_sale(
            seller_id=command.seller_id,
            title=command.title,
            unit_price=command.unit_price,
            is_presale=command.is_presale,
            target_orders=command.target_orders,
            deadline=command.deadline,
            currency=command.currency,
        )
        current_domain.repository_for(Product).add(product)

        if product.is_presale:
            threshold = PresaleThreshold.open(product_id=str(product.id), target_orders=product.target_orders)
            current_domain.repository_for(PresaleThreshold).add(threshold)

        return str(product.id)

    @handle(MarkPresaleFunded)
    def mark_funded(self, command):
        repo = current_domain.repository_for(Product)
        product = repo.get(command.product_id)
        product.mark_funded()
        repo.add(product)

    @handle(ConvertPresaleToDigital)
    def convert_to_digital(self, command):
        repo = current_domain.repository_for(Product)
        product = repo.get(command.product_id)
        product.convert_to_digital(command.reason)
        repo.add(product)
