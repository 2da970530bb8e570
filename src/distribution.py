"""
PassBook - Distribution Engine

Splits a sale price across creators, the PassBook seller, the market
operator and the referrer. Pure integer arithmetic with truncating
division; every step is checked and fails closed.

Order of computation:
1. creator_pool = price - floor(price * market_fee_bps / 10000)
2. creator payments, by the selected CreatorSplitStrategy
3. market_pool = price - creator_pool
4. market operator gets market_pool - floor(market_pool * referral_share / 100)
5. an open referrer gets floor(market_pool * referral_share / 100), less a
   kickback that is redistributed to the creators by share
6. zero payments are dropped; whatever is left is undisbursed

The engine is stateless: it returns a DistributionPlan and the processor
turns the plan into payout credits and token transfers.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from errors import ErrorCode, fail
from records import MAX_BASIS_POINTS, MAX_PERCENT, Creator, PassBook
from safe_math import checked_add, checked_sub, mul_div, to_u64


class PaymentRole(Enum):
    """Why a recipient is being paid."""

    CREATOR = "creator"
    SELLER = "seller"  # non-royalty proceeds of a secondary sale
    MARKET = "market"
    REFERRER = "referrer"
    KICKBACK = "kickback"  # referral share handed back to creators


@dataclass(frozen=True)
class Payment:
    recipient: str
    role: PaymentRole
    amount: int

    def to_dict(self) -> dict[str, Any]:
        return {"recipient": self.recipient, "role": self.role.value, "amount": self.amount}


@dataclass(frozen=True)
class DistributionParams:
    """Caller-supplied rates for one purchase."""

    market_fee_basis_points: int = 0
    referral_share: int = 0
    referral_kick_back_share: int = 0

    def validate(self) -> None:
        """Reject out-of-range rates before anything is staged."""
        to_u64(self.market_fee_basis_points, ErrorCode.INVALID_BASIS_POINTS)
        to_u64(self.referral_share, ErrorCode.WRONG_REFERRAL_SHARE)
        to_u64(self.referral_kick_back_share, ErrorCode.WRONG_REFERRAL_SHARE)
        if self.referral_share > MAX_PERCENT or self.referral_kick_back_share > MAX_PERCENT:
            fail(
                ErrorCode.WRONG_REFERRAL_SHARE,
                operation="distribution",
                referral_share=self.referral_share,
                referral_kick_back_share=self.referral_kick_back_share,
            )
        if self.market_fee_basis_points > MAX_BASIS_POINTS:
            fail(
                ErrorCode.INVALID_BASIS_POINTS,
                operation="distribution",
                market_fee_basis_points=self.market_fee_basis_points,
            )


@dataclass(frozen=True)
class ReferralTarget:
    """A store's referrer and the end of its referral window."""

    authority: str
    end_date: int | None = None

    def is_open(self, now: int) -> bool:
        return self.end_date is None or now <= self.end_date


@dataclass
class DistributionPlan:
    """Every payment for one sale plus the amount nobody receives."""

    price: int
    creator_pool: int
    market_pool: int
    strategy: str
    payments: list[Payment] = field(default_factory=list)
    undisbursed: int = 0

    @property
    def total_paid(self) -> int:
        total = 0
        for payment in self.payments:
            total = checked_add(total, payment.amount)
        return total

    def amounts_by_recipient(self) -> dict[str, int]:
        """Sum payments per recipient, in first-payment order."""
        amounts: dict[str, int] = {}
        for payment in self.payments:
            amounts[payment.recipient] = checked_add(
                amounts.get(payment.recipient, 0), payment.amount
            )
        return amounts

    def to_dict(self) -> dict[str, Any]:
        return {
            "price": self.price,
            "creator_pool": self.creator_pool,
            "market_pool": self.market_pool,
            "strategy": self.strategy,
            "payments": [p.to_dict() for p in self.payments],
            "undisbursed": self.undisbursed,
        }


# =============================================================================
# Creator split strategies
# =============================================================================


class CreatorSplitStrategy(ABC):
    """How the creator pool is divided."""

    name: str = ""

    @abstractmethod
    def split(self, creator_pool: int, creators: list[Creator]) -> list[Payment]:
        pass


class FlatCreatorSplit(CreatorSplitStrategy):
    """Primary sale: each creator takes its share of the whole pool."""

    name = "flat"

    def split(self, creator_pool: int, creators: list[Creator]) -> list[Payment]:
        return [
            Payment(c.address, PaymentRole.CREATOR, mul_div(creator_pool, c.share, MAX_PERCENT))
            for c in creators
        ]


class RoyaltyCreatorSplit(CreatorSplitStrategy):
    """
    Secondary sale: creators share a royalty of ``seller_fee_basis_points``
    of the pool and the seller keeps the rest.
    """

    name = "royalty"

    def __init__(self, seller_fee_basis_points: int, seller: str):
        self.seller_fee_basis_points = seller_fee_basis_points
        self.seller = seller

    def split(self, creator_pool: int, creators: list[Creator]) -> list[Payment]:
        royalty_pool = mul_div(creator_pool, self.seller_fee_basis_points, MAX_BASIS_POINTS)
        payments = [
            Payment(c.address, PaymentRole.CREATOR, mul_div(royalty_pool, c.share, MAX_PERCENT))
            for c in creators
        ]
        payments.append(
            Payment(self.seller, PaymentRole.SELLER, checked_sub(creator_pool, royalty_pool))
        )
        return payments


def select_creator_split(pass_book: PassBook) -> CreatorSplitStrategy:
    """Flat until the first sale has happened, royalty-aware afterwards."""
    if pass_book.primary_sale_happened:
        return RoyaltyCreatorSplit(pass_book.seller_fee_basis_points, pass_book.authority)
    return FlatCreatorSplit()


# =============================================================================
# Engine
# =============================================================================


def calculate_distribution(
    price: int,
    params: DistributionParams,
    creators: list[Creator],
    strategy: CreatorSplitStrategy | None = None,
    market_authority: str | None = None,
    referrer: ReferralTarget | None = None,
    now: int = 0,
) -> DistributionPlan:
    """
    Compute every payment for a sale of ``price``.

    Args:
        price: Sale price in the smallest settlement unit
        params: Market fee and referral rates
        creators: Ordered creator targets with shares summing to 100
        strategy: Creator split (defaults to flat)
        market_authority: Market operator, if any
        referrer: Store referrer and its window, if any
        now: Current unix time, for the referral window

    Returns:
        DistributionPlan whose payments plus undisbursed equal price
    """
    params.validate()
    to_u64(price)
    strategy = strategy or FlatCreatorSplit()

    market_cut = mul_div(price, params.market_fee_basis_points, MAX_BASIS_POINTS)
    creator_pool = checked_sub(price, market_cut)
    payments = strategy.split(creator_pool, creators)

    market_pool = checked_sub(price, creator_pool)
    referrer_amount = mul_div(market_pool, params.referral_share, MAX_PERCENT)

    if market_authority is not None:
        payments.append(
            Payment(market_authority, PaymentRole.MARKET, checked_sub(market_pool, referrer_amount))
        )

    if referrer is not None and referrer.is_open(now):
        kickback = mul_div(referrer_amount, params.referral_kick_back_share, MAX_PERCENT)
        for creator in creators:
            payments.append(
                Payment(
                    creator.address,
                    PaymentRole.KICKBACK,
                    mul_div(kickback, creator.share, MAX_PERCENT),
                )
            )
        payments.append(
            Payment(referrer.authority, PaymentRole.REFERRER, checked_sub(referrer_amount, kickback))
        )

    plan = DistributionPlan(
        price=price,
        creator_pool=creator_pool,
        market_pool=market_pool,
        strategy=strategy.name,
        payments=[p for p in payments if p.amount > 0],
    )
    plan.undisbursed = checked_sub(price, plan.total_paid)
    return plan
