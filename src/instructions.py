"""
PassBook - Instructions

Typed argument records for every engine operation, built from plain
dictionaries (HTTP bodies, queued jobs) and validated before any record
is touched. ``process_instruction`` routes a named instruction to the
processor.
"""

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import TYPE_CHECKING, Any

from addressing import NATIVE_MINT, validate_key
from authorization import AuthContext
from distribution import DistributionParams
from errors import ErrorCode, fail
from records import (
    MAX_BLUR_HASH_LENGTH,
    MAX_DESCRIPTION_LENGTH,
    MAX_NAME_LENGTH,
    MAX_URI_LENGTH,
    Creator,
    check_basis_points,
    check_creators,
    check_text,
)
from safe_math import to_u64

if TYPE_CHECKING:
    from processor import PassBookProcessor


class InstructionType(Enum):
    INIT_PASS_BOOK = "init_pass_book"
    ACTIVATE_PASS_BOOK = "activate_pass_book"
    DEACTIVATE_PASS_BOOK = "deactivate_pass_book"
    EDIT_PASS_BOOK = "edit_pass_book"
    DELETE_PASS_BOOK = "delete_pass_book"
    BUY_PASS = "buy_pass"
    USE_MEMBERSHIP = "use_membership"
    EXPIRE_MEMBERSHIP = "expire_membership"
    WITHDRAW_PAYOUT = "withdraw_payout"


def _require(data: dict[str, Any], *names: str) -> None:
    missing = [name for name in names if data.get(name) is None]
    if missing:
        raise ValueError(f"Missing required fields: {', '.join(missing)}")


def _known(cls, data: dict[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


def _optional_u64(value: int | None, code: ErrorCode) -> None:
    if value is not None:
        to_u64(value, code)


@dataclass
class InitPassBookArgs:
    """Everything needed to list a new PassBook."""

    authority: str
    mint: str
    source_token_account: str
    name: str
    description: str
    uri: str
    price: int
    creators: list[Creator]
    price_mint: str = NATIVE_MINT
    mutable: bool = True
    access: int | None = None
    duration: int | None = None
    max_supply: int | None = None
    max_uses: int | None = None
    blur_hash: str | None = None
    seller_fee_basis_points: int = 0
    pieces_in_one_wallet: int | None = None
    market_authority: str | None = None
    referrer: str | None = None
    referral_end_date: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InitPassBookArgs":
        _require(
            data, "authority", "mint", "source_token_account", "name", "description",
            "uri", "price", "creators",
        )
        values = _known(cls, data)
        values["creators"] = [
            c if isinstance(c, Creator) else Creator.from_dict(c) for c in data["creators"]
        ]
        return cls(**values)

    def validate(self) -> None:
        validate_key(self.authority, ErrorCode.INVALID_AUTHORITY_KEY)
        validate_key(self.mint, ErrorCode.INVALID_MINT_KEY)
        validate_key(self.price_mint, ErrorCode.INVALID_MINT_KEY)
        validate_key(self.source_token_account, ErrorCode.INVALID_TOKEN_ACCOUNT_KEY)
        for optional_key in (self.market_authority, self.referrer):
            if optional_key is not None:
                validate_key(optional_key)

        check_text(self.name, MAX_NAME_LENGTH, ErrorCode.NAME_TOO_LONG)
        check_text(self.description, MAX_DESCRIPTION_LENGTH, ErrorCode.DESCRIPTION_TOO_LONG)
        check_text(self.uri, MAX_URI_LENGTH, ErrorCode.URI_TOO_LONG)
        if self.blur_hash is not None:
            check_text(self.blur_hash, MAX_BLUR_HASH_LENGTH, ErrorCode.BLUR_HASH_TOO_LONG)

        if self.duration == 0:
            fail(ErrorCode.WRONG_DURATION, operation="init_pass_book")
        if self.access == 0:
            fail(ErrorCode.WRONG_VALIDITY_PERIOD, operation="init_pass_book")
        if self.max_supply == 0:
            fail(ErrorCode.WRONG_MAX_SUPPLY, operation="init_pass_book")
        _optional_u64(self.duration, ErrorCode.WRONG_DURATION)
        _optional_u64(self.access, ErrorCode.WRONG_VALIDITY_PERIOD)
        _optional_u64(self.max_supply, ErrorCode.WRONG_MAX_SUPPLY)
        _optional_u64(self.max_uses, ErrorCode.INVALID_AMOUNT)
        _optional_u64(self.pieces_in_one_wallet, ErrorCode.INVALID_AMOUNT)
        _optional_u64(self.referral_end_date, ErrorCode.INVALID_AMOUNT)

        to_u64(self.price)
        check_basis_points(self.seller_fee_basis_points)
        for creator in self.creators:
            validate_key(creator.address, ErrorCode.INVALID_CREATOR_KEY)
        check_creators(self.creators)


@dataclass
class EditPassBookArgs:
    """Fields to change. None means leave as is."""

    name: str | None = None
    description: str | None = None
    uri: str | None = None
    price: int | None = None
    price_mint: str | None = None
    mutable: bool | None = None
    blur_hash: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EditPassBookArgs":
        return cls(**_known(cls, data))

    def provided(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}

    def validate(self) -> None:
        if self.name is not None:
            check_text(self.name, MAX_NAME_LENGTH, ErrorCode.NAME_TOO_LONG)
        if self.description is not None:
            check_text(self.description, MAX_DESCRIPTION_LENGTH, ErrorCode.DESCRIPTION_TOO_LONG)
        if self.uri is not None:
            check_text(self.uri, MAX_URI_LENGTH, ErrorCode.URI_TOO_LONG)
        if self.blur_hash is not None:
            check_text(self.blur_hash, MAX_BLUR_HASH_LENGTH, ErrorCode.BLUR_HASH_TOO_LONG)
        if self.price is not None:
            to_u64(self.price)
        if self.price_mint is not None:
            validate_key(self.price_mint, ErrorCode.INVALID_MINT_KEY)


@dataclass
class BuyPassArgs:
    market_fee_basis_points: int = 0
    referral_share: int = 0
    referral_kick_back_share: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BuyPassArgs":
        return cls(**_known(cls, data))

    def params(self) -> DistributionParams:
        return DistributionParams(
            market_fee_basis_points=self.market_fee_basis_points,
            referral_share=self.referral_share,
            referral_kick_back_share=self.referral_kick_back_share,
        )


@dataclass
class DeletePassBookArgs:
    """
    Where a deleted PassBook's holdings go.

    The collectible moves to ``collectible_destination`` (opened for the
    PassBook authority if it does not exist); native value held at the
    PassBook address moves to the ``refund_destination`` wallet.
    """

    refund_destination: str
    collectible_destination: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeletePassBookArgs":
        _require(data, "refund_destination", "collectible_destination")
        return cls(**_known(cls, data))

    def validate(self) -> None:
        validate_key(self.refund_destination)
        validate_key(self.collectible_destination, ErrorCode.INVALID_TOKEN_ACCOUNT_KEY)


@dataclass
class WithdrawPayoutArgs:
    amount: int
    destination: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WithdrawPayoutArgs":
        _require(data, "amount", "destination")
        return cls(**_known(cls, data))

    def validate(self) -> None:
        to_u64(self.amount)
        if self.amount == 0:
            fail(ErrorCode.INVALID_AMOUNT, "Withdrawal amount must be positive", operation="withdraw_payout")
        validate_key(self.destination, ErrorCode.INVALID_TOKEN_ACCOUNT_KEY)


@dataclass
class Instruction:
    """A named operation plus the addressing fields it targets."""

    type: InstructionType
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Instruction":
        _require(data, "instruction")
        try:
            instruction_type = InstructionType(data["instruction"])
        except ValueError:
            raise ValueError(f"Unknown instruction: {data['instruction']}") from None
        return cls(type=instruction_type, payload=data.get("args") or {})


def process_instruction(
    processor: "PassBookProcessor", instruction: Instruction, auth: AuthContext
) -> Any:
    """
    Run ``instruction`` against ``processor``.

    Raises:
        ValueError: If a required addressing field is missing
        PassBookError: If the operation is rejected
    """
    payload = instruction.payload
    kind = instruction.type

    if kind == InstructionType.INIT_PASS_BOOK:
        return processor.init_pass_book(InitPassBookArgs.from_dict(payload), auth)

    if kind in (
        InstructionType.ACTIVATE_PASS_BOOK,
        InstructionType.DEACTIVATE_PASS_BOOK,
        InstructionType.EDIT_PASS_BOOK,
        InstructionType.DELETE_PASS_BOOK,
    ):
        _require(payload, "pass_book")
        address = payload["pass_book"]
        if kind == InstructionType.ACTIVATE_PASS_BOOK:
            return processor.activate_pass_book(address, auth)
        if kind == InstructionType.DEACTIVATE_PASS_BOOK:
            return processor.deactivate_pass_book(address, auth)
        if kind == InstructionType.EDIT_PASS_BOOK:
            return processor.edit_pass_book(address, EditPassBookArgs.from_dict(payload), auth)
        return processor.delete_pass_book(address, DeletePassBookArgs.from_dict(payload), auth)

    if kind == InstructionType.BUY_PASS:
        _require(payload, "pass_book", "buyer", "user_token_account")
        return processor.buy_pass(
            payload["pass_book"],
            payload["buyer"],
            payload["user_token_account"],
            BuyPassArgs.from_dict(payload),
            auth,
            store=payload.get("store"),
            trade_history=payload.get("trade_history"),
            membership=payload.get("membership"),
        )

    if kind in (InstructionType.USE_MEMBERSHIP, InstructionType.EXPIRE_MEMBERSHIP):
        _require(payload, "store_authority", "wallet")
        if kind == InstructionType.USE_MEMBERSHIP:
            return processor.use_membership(payload["store_authority"], payload["wallet"], auth)
        return processor.expire_membership(payload["store_authority"], payload["wallet"])

    _require(payload, "authority", "mint")
    return processor.withdraw_payout(
        payload["authority"], payload["mint"], WithdrawPayoutArgs.from_dict(payload), auth
    )
