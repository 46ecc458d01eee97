import pytest
from presales.catalogue.seller import Seller, platform_fee_for
from protean.exceptions import ValidationError


def _make_seller(**overrides):
    defaults = {
        "name": "Rough Trade Pressings",
        "payout_account_ref": "acct_123",
        "onboarding_complete": True,
        "charges_enabled": True,
    }
    defaults.update(overrides)
    return Seller.register(**defaults)


class TestPlatformFee:
    def test_fifteen_percent(self):
        assert platform_fee_for(100.0) == 15.0

    def test_rounds_to_nearest_minor_unit(self):
        # 2499p * 0.15 = 374.85p
        assert platform_fee_for(24.99) == 3.75


class TestSettlement:
    def test_onboarded_seller_gets_amount_less_fee(self):
        settlement = _make_seller().settlement_for(50.0)
        assert settlement.payee_ref == "acct_123"
        assert settlement.platform_fee == 7.5
        assert settlement.transfer_amount == 42.5

    def test_fee_and_transfer_add_up(self):
        settlement = _make_seller().settlement_for(24.99)
        assert round(settlement.platform_fee + settlement.transfer_amount, 2) == 24.99

    def test_incomplete_onboarding_is_rejected(self):
        seller = _make_seller(onboarding_complete=False)
        with pytest.raises(ValidationError) as exc:
            seller.settlement_for(50.0)
        assert "has not completed onboarding" in str(exc.value.messages)

    def test_charges_disabled_is_rejected(self):
        with pytest.raises(ValidationError):
            _make_seller(charges_enabled=False).settlement_for(50.0)

    def test_missing_account_is_rejected(self):
        with pytest.raises(ValidationError):
            _make_seller(payout_account_ref=None).settlement_for(50.0)

    def test_fee_exempt_seller_without_account_is_settled_by_platform(self):
        seller = _make_seller(payout_account_ref=None, onboarding_complete=False, fee_exempt=True)
        settlement = seller.settlement_for(50.0)
        assert settlement.payee_ref is None
        assert settlement.platform_fee == 0.0
        assert settlement.transfer_amount == 50.0

    @pytest.mark.parametrize(
        "overrides",
        [
            {"onboarding_complete": False},
            {"charges_enabled": False},
        ],
    )
    def test_fee_exempt_seller_mid_onboarding_is_settled_by_platform(self, overrides):
        seller = _make_seller(fee_exempt=True, **overrides)
        settlement = seller.settlement_for(50.0)
        assert settlement.payee_ref is None
        assert settlement.platform_fee == 0.0
        assert settlement.transfer_amount == 50.0

    def test_onboarded_fee_exempt_seller_is_paid_out(self):
        settlement = _make_seller(fee_exempt=True).settlement_for(50.0)
        assert settlement.payee_ref == "acct_123"

    def test_payout_account_update(self):
        seller = _make_seller(payout_account_ref=None, onboarding_complete=False, charges_enabled=False)
        assert not seller.can_receive_payouts()
        seller.update_payout_account("acct_new", onboarding_complete=True, charges_enabled=True)
        assert seller.can_receive_payouts()
