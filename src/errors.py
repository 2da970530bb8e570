"""
PassBook - Error Hierarchy

Every failure raised by the engine is a PassBookError carrying a stable
numeric code, a category and structured details. Callers branch on the
category (or the exact code) and never on message text.

Categories:
- VALIDATION: derived address mismatch, wrong owner, missing signature
- STATE: wrong lifecycle state, immutable entry, already initialized
- ARITHMETIC: checked u64 overflow/underflow
- LIMIT: buy limit, supply exhausted, active membership, no uses left
- PARAMETER: out-of-range rates, zero durations, oversized text
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, IntEnum
from typing import Any


class ErrorCategory(Enum):
    """Broad classes of failure."""

    VALIDATION = "validation"
    STATE = "state"
    ARITHMETIC = "arithmetic"
    LIMIT = "limit"
    PARAMETER = "parameter"


class ErrorCode(IntEnum):
    """Stable error codes. Numbers are part of the wire contract."""

    PASS_NOT_ACTIVATED = 0
    CANT_SET_THE_SAME_VALUE = 1
    INVALID_CREATOR_KEY = 2
    INVALID_MINT_KEY = 3
    INVALID_AUTHORITY_KEY = 4
    INVALID_STORE_KEY = 5
    INVALID_PAYOUT_KEY = 6
    WRONG_PASS_STATE = 7
    IMMUTABLE_PASS_BOOK = 8
    OVERFLOW = 9
    UNDERFLOW = 10
    INVALID_PASS_BOOK_KEY = 11
    INVALID_DURATION = 12
    NAME_TOO_LONG = 13
    URI_TOO_LONG = 14
    DESCRIPTION_TOO_LONG = 15
    INVALID_BASIS_POINTS = 16
    WRONG_MAX_SUPPLY = 17
    WRONG_VALIDITY_PERIOD = 18
    WRONG_DURATION = 19
    INVALID_TOKEN_ACCOUNT_KEY = 20
    PASS_BOOK_IS_ALREADY_ACTIVATED = 21
    PASS_BOOK_IS_ALREADY_DEACTIVATED = 22
    PRICE_TOKEN_MISMATCH = 23
    USER_WALLET_MUST_MATCH_USER_TOKEN_ACCOUNT = 24
    INVALID_MARKET_AUTHORITY = 25
    MATH_OVERFLOW = 26
    WRONG_REFERRAL_SHARE = 27
    INVALID_TRADE_HISTORY_KEY = 28
    SUPPLY_IS_GT_THAN_MAX_SUPPLY = 29
    USER_REACH_BUY_LIMIT = 30
    INVALID_MEMBERSHIP_KEY = 31
    USER_HAS_ACTIVE_MEMBERSHIP = 32
    MISSING_REQUIRED_SIGNATURE = 33
    ILLEGAL_OWNER = 34
    INVALID_ACCOUNT_DATA = 35
    ACCOUNT_ALREADY_INITIALIZED = 36
    UNINITIALIZED = 37
    INVALID_DERIVATION = 38
    INVALID_CREATOR_SHARES = 39
    REFERRER_ALREADY_SET = 40
    MEMBERSHIP_NOT_ACTIVE = 41
    NO_REMAINING_USES = 42
    MEMBERSHIP_NOT_EXPIRED = 43
    INSUFFICIENT_PAYOUT_BALANCE = 44
    KEY_TOO_LONG = 45
    BLUR_HASH_TOO_LONG = 46
    INVALID_AMOUNT = 47


# code -> (category, message)
ERROR_DETAILS: dict[ErrorCode, tuple[ErrorCategory, str]] = {
    ErrorCode.PASS_NOT_ACTIVATED: (ErrorCategory.STATE, "Pass should be activated"),
    ErrorCode.CANT_SET_THE_SAME_VALUE: (ErrorCategory.STATE, "Can't set the same value"),
    ErrorCode.INVALID_CREATOR_KEY: (ErrorCategory.VALIDATION, "Invalid creator key"),
    ErrorCode.INVALID_MINT_KEY: (ErrorCategory.VALIDATION, "Invalid mint key"),
    ErrorCode.INVALID_AUTHORITY_KEY: (ErrorCategory.VALIDATION, "Invalid authority key"),
    ErrorCode.INVALID_STORE_KEY: (ErrorCategory.VALIDATION, "Invalid store key"),
    ErrorCode.INVALID_PAYOUT_KEY: (ErrorCategory.VALIDATION, "Invalid payout key"),
    ErrorCode.WRONG_PASS_STATE: (ErrorCategory.STATE, "Wrong pass state to change data"),
    ErrorCode.IMMUTABLE_PASS_BOOK: (ErrorCategory.STATE, "Pass is immutable"),
    ErrorCode.OVERFLOW: (ErrorCategory.ARITHMETIC, "Overflow"),
    ErrorCode.UNDERFLOW: (ErrorCategory.ARITHMETIC, "Underflow"),
    ErrorCode.INVALID_PASS_BOOK_KEY: (ErrorCategory.VALIDATION, "Invalid pass book key"),
    ErrorCode.INVALID_DURATION: (ErrorCategory.PARAMETER, "Invalid duration"),
    ErrorCode.NAME_TOO_LONG: (ErrorCategory.PARAMETER, "Name too long"),
    ErrorCode.URI_TOO_LONG: (ErrorCategory.PARAMETER, "URI too long"),
    ErrorCode.DESCRIPTION_TOO_LONG: (ErrorCategory.PARAMETER, "Description too long"),
    ErrorCode.INVALID_BASIS_POINTS: (ErrorCategory.PARAMETER, "Invalid basis points"),
    ErrorCode.WRONG_MAX_SUPPLY: (ErrorCategory.PARAMETER, "Wrong max supply"),
    ErrorCode.WRONG_VALIDITY_PERIOD: (ErrorCategory.PARAMETER, "Wrong validity period"),
    ErrorCode.WRONG_DURATION: (ErrorCategory.PARAMETER, "Wrong duration"),
    ErrorCode.INVALID_TOKEN_ACCOUNT_KEY: (ErrorCategory.VALIDATION, "Invalid token account key"),
    ErrorCode.PASS_BOOK_IS_ALREADY_ACTIVATED: (ErrorCategory.STATE, "Pass book is already activated"),
    ErrorCode.PASS_BOOK_IS_ALREADY_DEACTIVATED: (
        ErrorCategory.STATE,
        "Pass book is already deactivated",
    ),
    ErrorCode.PRICE_TOKEN_MISMATCH: (
        ErrorCategory.VALIDATION,
        "Price token does not match what was provided",
    ),
    ErrorCode.USER_WALLET_MUST_MATCH_USER_TOKEN_ACCOUNT: (
        ErrorCategory.VALIDATION,
        "User wallet must match user token account",
    ),
    ErrorCode.INVALID_MARKET_AUTHORITY: (ErrorCategory.VALIDATION, "Invalid market authority"),
    ErrorCode.MATH_OVERFLOW: (ErrorCategory.ARITHMETIC, "Math overflow"),
    ErrorCode.WRONG_REFERRAL_SHARE: (ErrorCategory.PARAMETER, "Wrong referral share"),
    ErrorCode.INVALID_TRADE_HISTORY_KEY: (ErrorCategory.VALIDATION, "Invalid trade history key"),
    ErrorCode.SUPPLY_IS_GT_THAN_MAX_SUPPLY: (
        ErrorCategory.LIMIT,
        "Supply is greater than max supply",
    ),
    ErrorCode.USER_REACH_BUY_LIMIT: (ErrorCategory.LIMIT, "User reached buy limit"),
    ErrorCode.INVALID_MEMBERSHIP_KEY: (ErrorCategory.VALIDATION, "Invalid membership key"),
    ErrorCode.USER_HAS_ACTIVE_MEMBERSHIP: (ErrorCategory.LIMIT, "User has active membership"),
    ErrorCode.MISSING_REQUIRED_SIGNATURE: (ErrorCategory.VALIDATION, "Missing required signature"),
    ErrorCode.ILLEGAL_OWNER: (ErrorCategory.VALIDATION, "Illegal owner"),
    ErrorCode.INVALID_ACCOUNT_DATA: (ErrorCategory.VALIDATION, "Invalid account data"),
    ErrorCode.ACCOUNT_ALREADY_INITIALIZED: (ErrorCategory.STATE, "Account already initialized"),
    ErrorCode.UNINITIALIZED: (ErrorCategory.STATE, "Uninitialized"),
    ErrorCode.INVALID_DERIVATION: (
        ErrorCategory.VALIDATION,
        "Write capability does not derive to the target address",
    ),
    ErrorCode.INVALID_CREATOR_SHARES: (
        ErrorCategory.PARAMETER,
        "Creator shares must be between 1 and 5 entries summing to 100",
    ),
    ErrorCode.REFERRER_ALREADY_SET: (ErrorCategory.STATE, "Store referrer is already set"),
    ErrorCode.MEMBERSHIP_NOT_ACTIVE: (ErrorCategory.LIMIT, "Membership is not active"),
    ErrorCode.NO_REMAINING_USES: (ErrorCategory.LIMIT, "Membership has no remaining uses"),
    ErrorCode.MEMBERSHIP_NOT_EXPIRED: (ErrorCategory.STATE, "Membership has not expired"),
    ErrorCode.INSUFFICIENT_PAYOUT_BALANCE: (
        ErrorCategory.LIMIT,
        "Withdrawal exceeds payout balance",
    ),
    ErrorCode.KEY_TOO_LONG: (ErrorCategory.PARAMETER, "Key too long"),
    ErrorCode.BLUR_HASH_TOO_LONG: (ErrorCategory.PARAMETER, "Blur hash too long"),
    ErrorCode.INVALID_AMOUNT: (ErrorCategory.PARAMETER, "Invalid amount"),
}


@dataclass
class ErrorContext:
    """Structured context attached to every error."""

    operation: str
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "timestamp": self.timestamp,
            "details": self.details,
        }


class PassBookError(Exception):
    """
    Base exception for all engine errors.

    Use PassBookError.from_code() to get an instance of the subclass
    matching the code's category.
    """

    category: ErrorCategory = ErrorCategory.VALIDATION

    def __init__(
        self,
        code: ErrorCode,
        message: str | None = None,
        operation: str = "unknown",
        details: dict[str, Any] | None = None,
    ):
        _, default_message = ERROR_DETAILS[code]
        self.code = code
        self.message = message or default_message
        self.context = ErrorContext(operation=operation, details=details or {})
        super().__init__(self.message)

    @classmethod
    def from_code(
        cls,
        code: ErrorCode,
        message: str | None = None,
        operation: str = "unknown",
        **details: Any,
    ) -> "PassBookError":
        """Build the category-specific error for a code."""
        category, _ = ERROR_DETAILS[code]
        error_cls = _CATEGORY_CLASSES[category]
        return error_cls(code, message=message, operation=operation, details=details)

    @property
    def name(self) -> str:
        """CamelCase code name, e.g. ``UserReachBuyLimit``."""
        return "".join(part.capitalize() for part in self.code.name.split("_"))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": type(self).__name__,
            "code": int(self.code),
            "name": self.name,
            "category": self.category.value,
            "message": self.message,
            **self.context.to_dict(),
        }

    def __str__(self) -> str:
        return f"[{self.name}] {self.message}"


class ValidationError(PassBookError):
    """Caller presented the wrong records, owners or signatures."""

    category = ErrorCategory.VALIDATION


class StateError(PassBookError):
    """Record is not in a state that allows the operation."""

    category = ErrorCategory.STATE


class MathError(PassBookError):
    """Checked arithmetic failed."""

    category = ErrorCategory.ARITHMETIC


class LimitError(PassBookError):
    """A buy, supply, membership or balance limit was hit."""

    category = ErrorCategory.LIMIT


class ParameterError(PassBookError):
    """Request parameters are out of range."""

    category = ErrorCategory.PARAMETER


_CATEGORY_CLASSES: dict[ErrorCategory, type[PassBookError]] = {
    ErrorCategory.VALIDATION: ValidationError,
    ErrorCategory.STATE: StateError,
    ErrorCategory.ARITHMETIC: MathError,
    ErrorCategory.LIMIT: LimitError,
    ErrorCategory.PARAMETER: ParameterError,
}


def fail(code: ErrorCode, message: str | None = None, operation: str = "unknown", **details: Any):
    """Raise the error for ``code``."""
    raise PassBookError.from_code(code, message=message, operation=operation, **details)
