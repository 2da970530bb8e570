"""
PassBook - Ledger Records

The five record kinds that the engine creates and mutates:

- PassBook: a sellable pass definition (the catalog entry)
- Store: per-authority aggregate with referrer settings and counters
- Payout: per-recipient accumulator for one settlement asset
- TradeHistory: per-buyer purchase counter for one PassBook
- Membership: per-buyer validity window for one Store

Records are plain dataclasses. Persistence lives in record_codec and the
transition rules that span several records live in processor.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

from errors import ErrorCode, fail
from safe_math import checked_add, checked_mul, checked_sub, increment, to_u64

# =============================================================================
# Constants
# =============================================================================

MAX_NAME_LENGTH = 32
MAX_DESCRIPTION_LENGTH = 500
MAX_URI_LENGTH = 200
MAX_BLUR_HASH_LENGTH = 90
MAX_CREATORS = 5

SECONDS_PER_DAY = 86400
MAX_BASIS_POINTS = 10000
MAX_PERCENT = 100


# =============================================================================
# Enums
# =============================================================================


class AccountType(IntEnum):
    """First byte of every packed record."""

    UNINITIALIZED = 0
    STORE = 1
    PASS_BOOK = 2
    PAYOUT = 3
    TRADE_HISTORY = 4
    MEMBERSHIP = 5


class PassBookState(IntEnum):
    """Lifecycle of a PassBook."""

    NOT_ACTIVATED = 0
    ACTIVATED = 1
    DEACTIVATED = 2
    ENDED = 3  # terminal, reached when supply hits max_supply


class MembershipState(IntEnum):
    NOT_ACTIVATED = 0
    ACTIVATED = 1
    EXPIRED = 2


# =============================================================================
# Field checks
# =============================================================================


def check_text(value: str, limit: int, code: ErrorCode) -> str:
    """Text fields are measured in UTF-8 bytes against their fixed slot."""
    if not isinstance(value, str):
        fail(code, f"Expected text, got {type(value).__name__}", operation="records")
    if len(value.encode("utf-8")) > limit:
        fail(code, operation="records", limit=limit, length=len(value.encode("utf-8")))
    return value


def check_basis_points(value: int) -> int:
    to_u64(value, ErrorCode.INVALID_BASIS_POINTS)
    if value > MAX_BASIS_POINTS:
        fail(ErrorCode.INVALID_BASIS_POINTS, operation="records", basis_points=value)
    return value


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class Creator:
    """A creator payout target and its share of the creator pool."""

    address: str
    share: int  # percent, all creators of a PassBook sum to 100

    def to_dict(self) -> dict[str, Any]:
        return {"address": self.address, "share": self.share}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Creator":
        return cls(address=data["address"], share=data["share"])


def check_creators(creators: list[Creator]) -> list[Creator]:
    """1 to MAX_CREATORS unique creators whose shares sum to 100."""
    if not 1 <= len(creators) <= MAX_CREATORS:
        fail(ErrorCode.INVALID_CREATOR_SHARES, operation="records", count=len(creators))
    if len({c.address for c in creators}) != len(creators):
        fail(ErrorCode.INVALID_CREATOR_SHARES, "Duplicate creator", operation="records")
    for creator in creators:
        if isinstance(creator.share, bool) or not isinstance(creator.share, int):
            fail(ErrorCode.INVALID_CREATOR_SHARES, operation="records", share=creator.share)
        if not 0 <= creator.share <= MAX_PERCENT:
            fail(ErrorCode.INVALID_CREATOR_SHARES, operation="records", share=creator.share)
    if sum(c.share for c in creators) != MAX_PERCENT:
        fail(ErrorCode.INVALID_CREATOR_SHARES, operation="records")
    return creators


@dataclass
class Uses:
    """Remaining and total uses of a membership."""

    remaining: int
    total: int

    def consume(self) -> None:
        if self.remaining == 0:
            fail(ErrorCode.NO_REMAINING_USES, operation="use_membership")
        self.remaining = checked_sub(self.remaining, 1)

    def to_dict(self) -> dict[str, Any]:
        return {"remaining": self.remaining, "total": self.total}


@dataclass
class PassBook:
    """A sellable pass definition."""

    authority: str
    mint: str
    name: str
    description: str
    uri: str
    price: int
    price_mint: str
    mutable: bool = True
    state: PassBookState = PassBookState.NOT_ACTIVATED
    # Days of access granted by each purchase
    access: int | None = None
    # Minutes consumed per use
    duration: int | None = None
    supply: int = 0
    max_supply: int | None = None
    max_uses: int | None = None
    blur_hash: str | None = None
    created_at: int = 0
    market_authority: str | None = None
    pieces_in_one_wallet: int | None = None
    creators: list[Creator] = field(default_factory=list)
    seller_fee_basis_points: int = 0
    primary_sale_happened: bool = False

    def is_exhausted(self) -> bool:
        """True once no further passes may be sold."""
        if self.state == PassBookState.ENDED:
            return True
        return self.max_supply is not None and self.supply >= self.max_supply

    def record_sale(self) -> None:
        """Advance supply for one sold pass, ending the book at its cap."""
        supply = increment(self.supply)
        if self.max_supply is not None and supply > self.max_supply:
            fail(
                ErrorCode.SUPPLY_IS_GT_THAN_MAX_SUPPLY,
                operation="buy_pass",
                supply=self.supply,
                max_supply=self.max_supply,
            )
        self.supply = supply
        if self.max_supply is not None and self.supply == self.max_supply:
            self.state = PassBookState.ENDED

    def validate(self) -> None:
        check_text(self.name, MAX_NAME_LENGTH, ErrorCode.NAME_TOO_LONG)
        check_text(self.description, MAX_DESCRIPTION_LENGTH, ErrorCode.DESCRIPTION_TOO_LONG)
        check_text(self.uri, MAX_URI_LENGTH, ErrorCode.URI_TOO_LONG)
        if self.blur_hash is not None:
            check_text(self.blur_hash, MAX_BLUR_HASH_LENGTH, ErrorCode.BLUR_HASH_TOO_LONG)
        to_u64(self.price)
        check_basis_points(self.seller_fee_basis_points)
        check_creators(self.creators)

    def to_dict(self) -> dict[str, Any]:
        return {
            "authority": self.authority,
            "mint": self.mint,
            "name": self.name,
            "description": self.description,
            "uri": self.uri,
            "price": self.price,
            "price_mint": self.price_mint,
            "mutable": self.mutable,
            "state": self.state.name.lower(),
            "access": self.access,
            "duration": self.duration,
            "supply": self.supply,
            "max_supply": self.max_supply,
            "max_uses": self.max_uses,
            "blur_hash": self.blur_hash,
            "created_at": self.created_at,
            "market_authority": self.market_authority,
            "pieces_in_one_wallet": self.pieces_in_one_wallet,
            "creators": [c.to_dict() for c in self.creators],
            "seller_fee_basis_points": self.seller_fee_basis_points,
            "primary_sale_happened": self.primary_sale_happened,
        }


@dataclass
class Store:
    """Per-authority aggregate. Counters only ever go up."""

    authority: str
    redemptions_count: int = 0
    membership_count: int = 0
    active_membership_count: int = 0
    pass_count: int = 0
    pass_book_count: int = 0
    referrer: str | None = None
    referral_end_date: int | None = None

    def set_referrer(self, referrer: str, referral_end_date: int | None) -> None:
        """The referrer can be set once per store lifetime."""
        if self.referrer is None:
            self.referrer = referrer
            self.referral_end_date = referral_end_date
        elif self.referrer != referrer:
            fail(
                ErrorCode.REFERRER_ALREADY_SET,
                operation="init_pass_book",
                referrer=self.referrer,
            )

    def referral_active(self, now: int) -> bool:
        if self.referrer is None:
            return False
        return self.referral_end_date is None or now <= self.referral_end_date

    def to_dict(self) -> dict[str, Any]:
        return {
            "authority": self.authority,
            "redemptions_count": self.redemptions_count,
            "membership_count": self.membership_count,
            "active_membership_count": self.active_membership_count,
            "pass_count": self.pass_count,
            "pass_book_count": self.pass_book_count,
            "referrer": self.referrer,
            "referral_end_date": self.referral_end_date,
        }


@dataclass
class Payout:
    """Accumulated funds owed to one recipient in one settlement asset."""

    authority: str
    mint: str
    treasury_holder: str  # fixed at creation
    cash_in: int = 0
    cash_out: int = 0

    @property
    def balance(self) -> int:
        return checked_sub(self.cash_in, self.cash_out)

    def credit(self, amount: int) -> None:
        self.cash_in = checked_add(self.cash_in, amount)

    def withdraw(self, amount: int) -> None:
        if amount > self.balance:
            fail(
                ErrorCode.INSUFFICIENT_PAYOUT_BALANCE,
                operation="withdraw_payout",
                requested=amount,
                available=self.balance,
            )
        self.cash_out = checked_add(self.cash_out, amount)

    def to_dict(self) -> dict[str, Any]:
        return {
            "authority": self.authority,
            "mint": self.mint,
            "treasury_holder": self.treasury_holder,
            "cash_in": self.cash_in,
            "cash_out": self.cash_out,
            "balance": self.balance,
        }


@dataclass
class TradeHistory:
    """How many passes one wallet bought from one PassBook."""

    pass_book: str
    wallet: str
    already_bought: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "pass_book": self.pass_book,
            "wallet": self.wallet,
            "already_bought": self.already_bought,
        }


@dataclass
class Membership:
    """A wallet's validity window at one store."""

    store: str
    owner: str
    pass_book: str | None = None
    state: MembershipState = MembershipState.NOT_ACTIVATED
    expires_at: int | None = None
    activated_at: int | None = None
    uses: Uses | None = None

    def is_expired(self, now: int) -> bool:
        return self.expires_at is not None and now > self.expires_at

    def is_active(self, now: int) -> bool:
        """Activated and inside its window. Stored state alone is not enough."""
        return self.state == MembershipState.ACTIVATED and not self.is_expired(now)

    def activate(self, now: int, pass_book_address: str, pass_book: PassBook) -> bool:
        """
        Start a new validity window from ``pass_book``'s terms.

        Returns True when the stored state transitions into Activated.
        """
        transitioned = self.state != MembershipState.ACTIVATED
        if pass_book.access is not None:
            self.expires_at = checked_add(now, checked_mul(pass_book.access, SECONDS_PER_DAY))
        else:
            self.expires_at = None
        self.state = MembershipState.ACTIVATED
        self.activated_at = now
        self.pass_book = pass_book_address
        if pass_book.max_uses is not None:
            self.uses = Uses(remaining=pass_book.max_uses, total=pass_book.max_uses)
        else:
            self.uses = None
        return transitioned

    def to_dict(self) -> dict[str, Any]:
        return {
            "store": self.store,
            "owner": self.owner,
            "pass_book": self.pass_book,
            "state": self.state.name.lower(),
            "expires_at": self.expires_at,
            "activated_at": self.activated_at,
            "uses": self.uses.to_dict() if self.uses else None,
        }


RECORD_TYPES: dict[type, AccountType] = {
    Store: AccountType.STORE,
    PassBook: AccountType.PASS_BOOK,
    Payout: AccountType.PAYOUT,
    TradeHistory: AccountType.TRADE_HISTORY,
    Membership: AccountType.MEMBERSHIP,
}
