"""
Tests for the fixed-size record layout.
"""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest

from errors import ErrorCode, PassBookError, StateError, ValidationError
from record_codec import RECORD_SIZES, pack, unpack, unpack_any
from records import (
    AccountType,
    Creator,
    Membership,
    MembershipState,
    PassBook,
    PassBookState,
    Payout,
    Store,
    TradeHistory,
    Uses,
)


def sparse_book() -> PassBook:
    return PassBook(
        authority="a",
        mint="m",
        name="",
        description="",
        uri="",
        price=0,
        price_mint="native",
        creators=[Creator("c", 100)],
    )


def full_book() -> PassBook:
    return PassBook(
        authority="authority-wallet",
        mint="collectible-mint",
        name="n" * 32,
        description="d" * 500,
        uri="u" * 200,
        price=2**64 - 1,
        price_mint="usdc-mint",
        mutable=False,
        state=PassBookState.ENDED,
        access=30,
        duration=60,
        supply=7,
        max_supply=7,
        max_uses=10,
        blur_hash="b" * 90,
        created_at=1_700_000_000,
        market_authority="market",
        pieces_in_one_wallet=2,
        creators=[Creator(f"creator-{i}", 20) for i in range(5)],
        seller_fee_basis_points=500,
        primary_sale_happened=True,
    )


class TestFixedSize:
    """Every record of a kind packs to the same size."""

    def test_pass_book_size_constant(self):
        assert len(pack(sparse_book())) == len(pack(full_book())) == RECORD_SIZES[AccountType.PASS_BOOK]

    def test_store_size_constant(self):
        bare = Store(authority="a")
        full = Store("a" * 64, 1, 2, 3, 4, 5, referrer="r" * 64, referral_end_date=99)
        assert len(pack(bare)) == len(pack(full)) == RECORD_SIZES[AccountType.STORE]

    def test_membership_size_constant(self):
        bare = Membership(store="s", owner="o")
        full = Membership(
            store="s",
            owner="o",
            pass_book="p",
            state=MembershipState.ACTIVATED,
            expires_at=10,
            activated_at=5,
            uses=Uses(remaining=1, total=2),
        )
        assert len(pack(bare)) == len(pack(full)) == RECORD_SIZES[AccountType.MEMBERSHIP]

    def test_first_byte_is_account_type(self):
        assert pack(TradeHistory("b", "w"))[0] == AccountType.TRADE_HISTORY
        assert pack(Payout("a", "m", "t"))[0] == AccountType.PAYOUT


class TestRestore:
    """Unpacking restores every field."""

    def test_full_pass_book(self):
        book = full_book()
        assert unpack(pack(book), PassBook) == book

    def test_optional_fields_stay_absent(self):
        book = sparse_book()
        restored = unpack(pack(book), PassBook)
        assert restored.max_supply is None
        assert restored.blur_hash is None
        assert restored.market_authority is None

    def test_unpack_any_dispatches_on_type(self):
        member = Membership(store="s", owner="o", uses=Uses(0, 3))
        assert unpack_any(pack(member)) == member

    def test_utf8_text(self):
        book = sparse_book()
        book.name = "Café pass ☕"
        assert unpack(pack(book), PassBook).name == "Café pass ☕"


class TestRejects:
    """Malformed data fails with InvalidAccountData."""

    def test_wrong_type(self):
        data = pack(Store(authority="a"))
        with pytest.raises(ValidationError) as exc:
            unpack(data, PassBook)
        assert exc.value.code == ErrorCode.INVALID_ACCOUNT_DATA

    def test_wrong_size(self):
        data = pack(Store(authority="a"))
        with pytest.raises(ValidationError) as exc:
            unpack(data + b"\x00", Store)
        assert exc.value.code == ErrorCode.INVALID_ACCOUNT_DATA

    def test_empty_is_uninitialized(self):
        with pytest.raises(StateError) as exc:
            unpack(b"", Store)
        assert exc.value.code == ErrorCode.UNINITIALIZED

    def test_unknown_state_byte(self):
        data = bytearray(pack(TradeHistory("b", "w")))
        data[0] = 99
        with pytest.raises(PassBookError) as exc:
            unpack_any(bytes(data))
        assert exc.value.code == ErrorCode.INVALID_ACCOUNT_DATA

    def test_oversized_text_rejected_on_pack(self):
        book = sparse_book()
        book.name = "n" * 33
        with pytest.raises(PassBookError) as exc:
            pack(book)
        assert exc.value.code == ErrorCode.NAME_TOO_LONG

    def test_not_a_record(self):
        with pytest.raises(TypeError):
            pack({"authority": "a"})
