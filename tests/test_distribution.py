"""
Tests for the sale distribution engine.

Amounts are in the smallest settlement unit. The reference sale is a
price of 10_000_000 with a 250 bps market fee and a 50% referral share.
"""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest

from distribution import (
    DistributionParams,
    FlatCreatorSplit,
    PaymentRole,
    ReferralTarget,
    RoyaltyCreatorSplit,
    calculate_distribution,
    select_creator_split,
)
from errors import ErrorCode, ParameterError
from records import Creator, PassBook

PRICE = 10_000_000
CREATORS = [Creator("creator-a", 50), Creator("creator-b", 50)]
PARAMS = DistributionParams(market_fee_basis_points=250, referral_share=50)


class TestReferenceSale:
    """A sale with market operator and open referral."""

    def test_amounts(self):
        plan = calculate_distribution(
            PRICE,
            PARAMS,
            CREATORS,
            market_authority="market",
            referrer=ReferralTarget("referrer"),
        )
        amounts = plan.amounts_by_recipient()

        assert amounts == {
            "creator-a": 4_875_000,
            "creator-b": 4_875_000,
            "market": 125_000,
            "referrer": 125_000,
        }
        assert plan.creator_pool == 9_750_000
        assert plan.market_pool == 250_000
        assert plan.undisbursed == 0
        assert plan.total_paid == PRICE

    def test_roles(self):
        plan = calculate_distribution(
            PRICE, PARAMS, CREATORS, market_authority="market", referrer=ReferralTarget("referrer")
        )
        roles = {(p.recipient, p.role) for p in plan.payments}
        assert ("market", PaymentRole.MARKET) in roles
        assert ("referrer", PaymentRole.REFERRER) in roles
        assert ("creator-a", PaymentRole.CREATOR) in roles

    def test_without_market_authority_market_amount_is_undisbursed(self):
        plan = calculate_distribution(PRICE, PARAMS, CREATORS, referrer=ReferralTarget("referrer"))
        amounts = plan.amounts_by_recipient()

        assert "market" not in amounts
        assert amounts["referrer"] == 125_000
        assert plan.undisbursed == 125_000

    def test_without_market_or_referrer(self):
        plan = calculate_distribution(PRICE, PARAMS, CREATORS)
        assert plan.undisbursed == 250_000
        assert plan.total_paid == 9_750_000

    def test_lapsed_referral_is_undisbursed(self):
        plan = calculate_distribution(
            PRICE,
            PARAMS,
            CREATORS,
            market_authority="market",
            referrer=ReferralTarget("referrer", end_date=1000),
            now=1001,
        )
        amounts = plan.amounts_by_recipient()

        assert "referrer" not in amounts
        assert amounts["market"] == 125_000
        assert plan.undisbursed == 125_000

    def test_referral_window_is_inclusive(self):
        plan = calculate_distribution(
            PRICE, PARAMS, CREATORS, referrer=ReferralTarget("referrer", end_date=1000), now=1000
        )
        assert plan.amounts_by_recipient()["referrer"] == 125_000


class TestKickback:
    """Part of the referral share handed back to creators."""

    def test_kickback_split_by_share(self):
        params = DistributionParams(
            market_fee_basis_points=250, referral_share=50, referral_kick_back_share=20
        )
        plan = calculate_distribution(
            PRICE, params, CREATORS, market_authority="market", referrer=ReferralTarget("referrer")
        )
        amounts = plan.amounts_by_recipient()

        assert amounts["creator-a"] == 4_875_000 + 12_500
        assert amounts["creator-b"] == 4_875_000 + 12_500
        assert amounts["referrer"] == 100_000
        assert amounts["market"] == 125_000
        assert plan.undisbursed == 0

        kickbacks = [p for p in plan.payments if p.role == PaymentRole.KICKBACK]
        assert [p.amount for p in kickbacks] == [12_500, 12_500]

    def test_no_kickback_without_referrer(self):
        params = DistributionParams(referral_share=50, referral_kick_back_share=100)
        plan = calculate_distribution(PRICE, params, CREATORS)
        assert not [p for p in plan.payments if p.role == PaymentRole.KICKBACK]


class TestRounding:
    """Truncating division leaves dust undisbursed."""

    def test_dust(self):
        creators = [Creator("a", 33), Creator("b", 33), Creator("c", 34)]
        plan = calculate_distribution(101, DistributionParams(), creators)

        assert plan.amounts_by_recipient() == {"a": 33, "b": 33, "c": 34}
        assert plan.undisbursed == 1

    def test_conservation(self):
        creators = [Creator("a", 17), Creator("b", 29), Creator("c", 54)]
        params = DistributionParams(
            market_fee_basis_points=333, referral_share=37, referral_kick_back_share=11
        )
        for price in (1, 99, 12_345, 987_654_321):
            plan = calculate_distribution(
                price, params, creators, market_authority="m", referrer=ReferralTarget("r")
            )
            assert plan.total_paid + plan.undisbursed == price
            assert all(p.amount > 0 for p in plan.payments)

    def test_zero_price_pays_nothing(self):
        plan = calculate_distribution(0, PARAMS, CREATORS, market_authority="market")
        assert plan.payments == []
        assert plan.undisbursed == 0


class TestStrategies:
    """Creator split strategy selection."""

    def test_royalty_split(self):
        strategy = RoyaltyCreatorSplit(seller_fee_basis_points=500, seller="seller")
        plan = calculate_distribution(1_000_000, DistributionParams(), CREATORS, strategy=strategy)
        amounts = plan.amounts_by_recipient()

        assert amounts == {"creator-a": 25_000, "creator-b": 25_000, "seller": 950_000}
        assert plan.strategy == "royalty"

    def test_flat_by_default(self):
        plan = calculate_distribution(1_000, DistributionParams(), CREATORS)
        assert plan.strategy == "flat"

    def test_select_before_and_after_primary_sale(self):
        book = PassBook(
            authority="seller",
            mint="m",
            name="n",
            description="",
            uri="",
            price=1,
            price_mint="native",
            creators=CREATORS,
            seller_fee_basis_points=500,
        )
        assert isinstance(select_creator_split(book), FlatCreatorSplit)

        book.primary_sale_happened = True
        strategy = select_creator_split(book)
        assert isinstance(strategy, RoyaltyCreatorSplit)
        assert strategy.seller == "seller"
        assert strategy.seller_fee_basis_points == 500


class TestParams:
    """Rate validation."""

    @pytest.mark.parametrize(
        "params,code",
        [
            (DistributionParams(market_fee_basis_points=10_001), ErrorCode.INVALID_BASIS_POINTS),
            (DistributionParams(referral_share=101), ErrorCode.WRONG_REFERRAL_SHARE),
            (DistributionParams(referral_kick_back_share=101), ErrorCode.WRONG_REFERRAL_SHARE),
            (DistributionParams(referral_share=-1), ErrorCode.WRONG_REFERRAL_SHARE),
        ],
    )
    def test_out_of_range(self, params, code):
        with pytest.raises(ParameterError) as exc:
            calculate_distribution(PRICE, params, CREATORS)
        assert exc.value.code == code

    def test_full_market_fee(self):
        params = DistributionParams(market_fee_basis_points=10_000)
        plan = calculate_distribution(PRICE, params, CREATORS, market_authority="market")
        assert plan.amounts_by_recipient() == {"market": PRICE}

    def test_to_dict(self):
        plan = calculate_distribution(PRICE, PARAMS, CREATORS, market_authority="market")
        data = plan.to_dict()
        assert data["price"] == PRICE
        assert data["payments"][0] == {"recipient": "creator-a", "role": "creator", "amount": 4_875_000}
