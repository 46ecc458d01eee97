"""Seller aggregate: who gets paid for a presale, and how.

A seller is paid out through a connected account at the gateway. Until that
account has finished onboarding and can accept charges, the seller cannot
take orders, unless they are on a paid tier where the platform collects the
full amount and settles with them separately.
"""

from dataclasses import dataclass
from datetime import UTC, datetime

from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, String

from presales.catalogue.events import SellerPayoutAccountUpdated, SellerRegistered
from presales.config import PLATFORM_FEE_RATE
from presales.domain import presales


@dataclass(frozen=True)
class Settlement:
    """How one payment is split between the platform and the seller."""

    payee_ref: str | None
    platform_fee: float
    transfer_amount: float


def platform_fee_for(amount: float) -> float:
    """Platform fee, rounded to the nearest minor unit."""
    return round(round(amount * 100) * PLATFORM_FEE_RATE) / 100


@presales.aggregate
class Seller:
    name = String(required=True, max_length=255)
    payout_account_ref = String(max_length=255)
    onboarding_complete = Boolean(default=False)
    charges_enabled = Boolean(default=False)
    fee_exempt = Boolean(default=False)
    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def register(
        cls,
        name,
        payout_account_ref=None,
        onboarding_complete=False,
        charges_enabled=False,
        fee_exempt=False,
    ):
        now = datetime.now(UTC)
        seller = cls(
            name=name,
            payout_account_ref=payout_account_ref,
            onboarding_complete=onboarding_complete,
            charges_enabled=charges_enabled,
            fee_exempt=fee_exempt,
            created_at=now,
            updated_at=now,
        )
        seller.raise_(
            SellerRegistered(
                seller_id=str(seller.id),
                name=name,
                payout_account_ref=payout_account_ref,
                fee_exempt=str(fee_exempt),
                registered_at=now,
            )
        )
        return seller

    def update_payout_account(self, payout_account_ref, onboarding_complete, charges_enabled):
        now = datetime.now(UTC)
        self.payout_account_ref = payout_account_ref
        self.onboarding_complete = onboarding_complete
        self.charges_enabled = charges_enabled
        self.updated_at = now
        self.raise_(
            SellerPayoutAccountUpdated(
                seller_id=str(self.id),
                payout_account_ref=payout_account_ref,
                onboarding_complete=str(onboarding_complete),
                charges_enabled=str(charges_enabled),
                updated_at=now,
            )
        )

    def can_receive_payouts(self) -> bool:
        return bool(self.payout_account_ref) and self.onboarding_complete and self.charges_enabled

    def settlement_for(self, amount: float) -> Settlement:
        """Split ``amount`` between the platform fee and the seller's transfer.

        Raises ValidationError when the seller has no usable payout destination.
        """
        if self.fee_exempt and not self.can_receive_payouts():
            return Settlement(payee_ref=None, platform_fee=0.0, transfer_amount=amount)

        if not self.can_receive_payouts():
            raise ValidationError({"seller": [f"Seller {self.name} has not completed onboarding"]})

        fee = platform_fee_for(amount)
        return Settlement(
            payee_ref=self.payout_account_ref,
            platform_fee=fee,
            transfer_amount=round(amount - fee, 2),
        )
