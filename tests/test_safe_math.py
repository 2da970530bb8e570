"""
Tests for checked arithmetic and the error hierarchy.
"""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest

from errors import (
    ErrorCategory,
    ErrorCode,
    LimitError,
    MathError,
    ParameterError,
    PassBookError,
    StateError,
    ValidationError,
    fail,
)
from safe_math import (
    U64_MAX,
    checked_add,
    checked_div,
    checked_mul,
    checked_sub,
    increment,
    mul_div,
    to_u64,
)


class TestCheckedArithmetic:
    """Tests for u64 checked operations."""

    def test_add_within_range(self):
        assert checked_add(2, 3) == 5
        assert checked_add(U64_MAX - 1, 1) == U64_MAX

    def test_add_overflow(self):
        with pytest.raises(MathError) as exc:
            checked_add(U64_MAX, 1)
        assert exc.value.code == ErrorCode.OVERFLOW

    def test_sub_underflow(self):
        with pytest.raises(MathError) as exc:
            checked_sub(1, 2)
        assert exc.value.code == ErrorCode.UNDERFLOW

    def test_mul_overflow(self):
        with pytest.raises(MathError) as exc:
            checked_mul(U64_MAX, 2)
        assert exc.value.code == ErrorCode.MATH_OVERFLOW

    def test_div_truncates(self):
        assert checked_div(7, 2) == 3

    def test_div_by_zero_fails_closed(self):
        with pytest.raises(MathError) as exc:
            checked_div(1, 0)
        assert exc.value.code == ErrorCode.MATH_OVERFLOW

    def test_mul_div_floors(self):
        assert mul_div(101, 33, 100) == 33
        assert mul_div(10_000_000, 250, 10_000) == 250_000

    def test_mul_div_intermediate_must_fit(self):
        """The product is checked before the division."""
        with pytest.raises(MathError):
            mul_div(U64_MAX, 100, 100)

    def test_increment(self):
        assert increment(0) == 1
        assert increment(5, by=3) == 8
        with pytest.raises(MathError):
            increment(U64_MAX)


class TestToU64:
    """Tests for u64 input coercion."""

    def test_accepts_range(self):
        assert to_u64(0) == 0
        assert to_u64(U64_MAX) == U64_MAX

    @pytest.mark.parametrize("value", [-1, U64_MAX + 1, 1.5, "10", None, True])
    def test_rejects_out_of_range_and_non_ints(self, value):
        with pytest.raises(ParameterError) as exc:
            to_u64(value)
        assert exc.value.code == ErrorCode.INVALID_AMOUNT

    def test_custom_code(self):
        with pytest.raises(PassBookError) as exc:
            to_u64(-5, ErrorCode.WRONG_MAX_SUPPLY)
        assert exc.value.code == ErrorCode.WRONG_MAX_SUPPLY


class TestErrorHierarchy:
    """Tests for PassBookError construction and serialization."""

    @pytest.mark.parametrize(
        "code,error_cls",
        [
            (ErrorCode.INVALID_STORE_KEY, ValidationError),
            (ErrorCode.WRONG_PASS_STATE, StateError),
            (ErrorCode.OVERFLOW, MathError),
            (ErrorCode.USER_REACH_BUY_LIMIT, LimitError),
            (ErrorCode.NAME_TOO_LONG, ParameterError),
        ],
    )
    def test_from_code_picks_category_class(self, code, error_cls):
        error = PassBookError.from_code(code)
        assert isinstance(error, error_cls)
        assert isinstance(error, PassBookError)

    def test_every_code_has_details(self):
        for code in ErrorCode:
            error = PassBookError.from_code(code)
            assert error.message
            assert isinstance(error.category, ErrorCategory)

    def test_name_is_camel_case(self):
        error = PassBookError.from_code(ErrorCode.USER_REACH_BUY_LIMIT)
        assert error.name == "UserReachBuyLimit"
        assert str(error).startswith("[UserReachBuyLimit]")

    def test_codes_are_stable(self):
        assert ErrorCode.PASS_NOT_ACTIVATED == 0
        assert ErrorCode.USER_HAS_ACTIVE_MEMBERSHIP == 32

    def test_to_dict(self):
        error = PassBookError.from_code(
            ErrorCode.SUPPLY_IS_GT_THAN_MAX_SUPPLY, operation="buy_pass", supply=3, max_supply=3
        )
        data = error.to_dict()

        assert data["error_type"] == "LimitError"
        assert data["code"] == 29
        assert data["category"] == "limit"
        assert data["operation"] == "buy_pass"
        assert data["details"] == {"supply": 3, "max_supply": 3}
        assert "timestamp" in data

    def test_fail_raises_with_custom_message(self):
        with pytest.raises(StateError) as exc:
            fail(ErrorCode.UNINITIALIZED, "Store does not exist", operation="buy_pass")
        assert exc.value.message == "Store does not exist"
        assert exc.value.context.operation == "buy_pass"
