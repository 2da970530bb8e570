"""
Fixed-size binary layout for ledger records.

Every record of a kind packs to the same number of bytes, whatever its
optional fields hold:

- byte 0 is the AccountType
- integers are little-endian (u8, u16, u64)
- text and identifiers are a u32 byte length followed by a zero-padded
  slot of the field's maximum size
- optionals are a u8 presence flag followed by the value's full slot
- creators are a u8 count followed by MAX_CREATORS fixed slots

Unpacking checks the account type and the exact size, and fails with
InvalidAccountData on any mismatch.
"""

import struct

from addressing import MAX_KEY_LENGTH
from errors import ErrorCode, PassBookError, fail
from records import (
    MAX_BLUR_HASH_LENGTH,
    MAX_CREATORS,
    MAX_DESCRIPTION_LENGTH,
    MAX_NAME_LENGTH,
    MAX_URI_LENGTH,
    RECORD_TYPES,
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

U8 = 1
U16 = 2
U32 = 4
U64 = 8
BOOL = 1


def text_slot(limit: int) -> int:
    return U32 + limit


KEY = text_slot(MAX_KEY_LENGTH)
CREATOR = KEY + U8


def optional(slot: int) -> int:
    return U8 + slot


STORE_SIZE = (
    U8  # account type
    + KEY  # authority
    + 5 * U64  # counters
    + optional(KEY)  # referrer
    + optional(U64)  # referral_end_date
)

PASS_BOOK_SIZE = (
    U8  # account type
    + KEY  # authority
    + KEY  # mint
    + text_slot(MAX_NAME_LENGTH)
    + text_slot(MAX_DESCRIPTION_LENGTH)
    + text_slot(MAX_URI_LENGTH)
    + BOOL  # mutable
    + U8  # state
    + optional(U64)  # access
    + optional(U64)  # duration
    + U64  # supply
    + optional(U64)  # max_supply
    + optional(U64)  # max_uses
    + optional(text_slot(MAX_BLUR_HASH_LENGTH))
    + U64  # created_at
    + U64  # price
    + KEY  # price_mint
    + optional(KEY)  # market_authority
    + optional(U64)  # pieces_in_one_wallet
    + U8 + MAX_CREATORS * CREATOR  # creators
    + U16  # seller_fee_basis_points
    + BOOL  # primary_sale_happened
)

PAYOUT_SIZE = U8 + KEY + KEY + KEY + U64 + U64

TRADE_HISTORY_SIZE = U8 + KEY + KEY + U64

MEMBERSHIP_SIZE = (
    U8  # account type
    + KEY  # store
    + KEY  # owner
    + optional(KEY)  # pass_book
    + U8  # state
    + optional(U64)  # expires_at
    + optional(U64)  # activated_at
    + optional(U64 + U64)  # uses
)

RECORD_SIZES: dict[AccountType, int] = {
    AccountType.STORE: STORE_SIZE,
    AccountType.PASS_BOOK: PASS_BOOK_SIZE,
    AccountType.PAYOUT: PAYOUT_SIZE,
    AccountType.TRADE_HISTORY: TRADE_HISTORY_SIZE,
    AccountType.MEMBERSHIP: MEMBERSHIP_SIZE,
}


class _Writer:
    def __init__(self):
        self._parts: list[bytes] = []

    def u8(self, value: int) -> None:
        self._parts.append(struct.pack("<B", value))

    def u16(self, value: int) -> None:
        self._parts.append(struct.pack("<H", value))

    def u64(self, value: int) -> None:
        try:
            self._parts.append(struct.pack("<Q", value))
        except struct.error:
            fail(ErrorCode.OVERFLOW, f"{value} does not fit in u64", operation="pack")

    def flag(self, value: bool) -> None:
        self.u8(1 if value else 0)

    def text(self, value: str, limit: int, code: ErrorCode) -> None:
        raw = value.encode("utf-8")
        if len(raw) > limit:
            fail(code, operation="pack", limit=limit, length=len(raw))
        self._parts.append(struct.pack("<I", len(raw)))
        self._parts.append(raw.ljust(limit, b"\x00"))

    def key(self, value: str) -> None:
        self.text(value, MAX_KEY_LENGTH, ErrorCode.KEY_TOO_LONG)

    def blank(self, size: int) -> None:
        self._parts.append(b"\x00" * size)

    def opt_u64(self, value: int | None) -> None:
        self.flag(value is not None)
        if value is None:
            self.blank(U64)
        else:
            self.u64(value)

    def opt_key(self, value: str | None) -> None:
        self.flag(value is not None)
        if value is None:
            self.blank(KEY)
        else:
            self.key(value)

    def getvalue(self) -> bytes:
        return b"".join(self._parts)


class _Reader:
    def __init__(self, data: bytes):
        self._data = data
        self._offset = 0

    def _take(self, size: int) -> bytes:
        chunk = self._data[self._offset : self._offset + size]
        if len(chunk) != size:
            fail(ErrorCode.INVALID_ACCOUNT_DATA, "Record truncated", operation="unpack")
        self._offset += size
        return chunk

    def u8(self) -> int:
        return struct.unpack("<B", self._take(U8))[0]

    def u16(self) -> int:
        return struct.unpack("<H", self._take(U16))[0]

    def u64(self) -> int:
        return struct.unpack("<Q", self._take(U64))[0]

    def flag(self) -> bool:
        value = self.u8()
        if value not in (0, 1):
            fail(ErrorCode.INVALID_ACCOUNT_DATA, f"Bad flag byte {value}", operation="unpack")
        return value == 1

    def text(self, limit: int) -> str:
        length = struct.unpack("<I", self._take(U32))[0]
        slot = self._take(limit)
        if length > limit:
            fail(ErrorCode.INVALID_ACCOUNT_DATA, "Text length exceeds slot", operation="unpack")
        try:
            return slot[:length].decode("utf-8")
        except UnicodeDecodeError as e:
            raise PassBookError.from_code(
                ErrorCode.INVALID_ACCOUNT_DATA, f"Invalid text: {e}", operation="unpack"
            ) from e

    def key(self) -> str:
        return self.text(MAX_KEY_LENGTH)

    def skip(self, size: int) -> None:
        self._take(size)

    def opt_u64(self) -> int | None:
        if self.flag():
            return self.u64()
        self.skip(U64)
        return None

    def opt_key(self) -> str | None:
        if self.flag():
            return self.key()
        self.skip(KEY)
        return None


# =============================================================================
# Per-kind encoders
# =============================================================================


def _pack_store(w: _Writer, store: Store) -> None:
    w.key(store.authority)
    w.u64(store.redemptions_count)
    w.u64(store.membership_count)
    w.u64(store.active_membership_count)
    w.u64(store.pass_count)
    w.u64(store.pass_book_count)
    w.opt_key(store.referrer)
    w.opt_u64(store.referral_end_date)


def _unpack_store(r: _Reader) -> Store:
    return Store(
        authority=r.key(),
        redemptions_count=r.u64(),
        membership_count=r.u64(),
        active_membership_count=r.u64(),
        pass_count=r.u64(),
        pass_book_count=r.u64(),
        referrer=r.opt_key(),
        referral_end_date=r.opt_u64(),
    )


def _pack_pass_book(w: _Writer, book: PassBook) -> None:
    w.key(book.authority)
    w.key(book.mint)
    w.text(book.name, MAX_NAME_LENGTH, ErrorCode.NAME_TOO_LONG)
    w.text(book.description, MAX_DESCRIPTION_LENGTH, ErrorCode.DESCRIPTION_TOO_LONG)
    w.text(book.uri, MAX_URI_LENGTH, ErrorCode.URI_TOO_LONG)
    w.flag(book.mutable)
    w.u8(book.state)
    w.opt_u64(book.access)
    w.opt_u64(book.duration)
    w.u64(book.supply)
    w.opt_u64(book.max_supply)
    w.opt_u64(book.max_uses)
    w.flag(book.blur_hash is not None)
    if book.blur_hash is None:
        w.blank(text_slot(MAX_BLUR_HASH_LENGTH))
    else:
        w.text(book.blur_hash, MAX_BLUR_HASH_LENGTH, ErrorCode.BLUR_HASH_TOO_LONG)
    w.u64(book.created_at)
    w.u64(book.price)
    w.key(book.price_mint)
    w.opt_key(book.market_authority)
    w.opt_u64(book.pieces_in_one_wallet)
    if len(book.creators) > MAX_CREATORS:
        fail(ErrorCode.INVALID_CREATOR_SHARES, operation="pack", count=len(book.creators))
    w.u8(len(book.creators))
    for creator in book.creators:
        w.key(creator.address)
        w.u8(creator.share)
    w.blank((MAX_CREATORS - len(book.creators)) * CREATOR)
    w.u16(book.seller_fee_basis_points)
    w.flag(book.primary_sale_happened)


def _unpack_pass_book(r: _Reader) -> PassBook:
    authority = r.key()
    mint = r.key()
    name = r.text(MAX_NAME_LENGTH)
    description = r.text(MAX_DESCRIPTION_LENGTH)
    uri = r.text(MAX_URI_LENGTH)
    mutable = r.flag()
    state = _enum(PassBookState, r.u8())
    access = r.opt_u64()
    duration = r.opt_u64()
    supply = r.u64()
    max_supply = r.opt_u64()
    max_uses = r.opt_u64()
    if r.flag():
        blur_hash = r.text(MAX_BLUR_HASH_LENGTH)
    else:
        r.skip(text_slot(MAX_BLUR_HASH_LENGTH))
        blur_hash = None
    created_at = r.u64()
    price = r.u64()
    price_mint = r.key()
    market_authority = r.opt_key()
    pieces_in_one_wallet = r.opt_u64()
    count = r.u8()
    if count > MAX_CREATORS:
        fail(ErrorCode.INVALID_ACCOUNT_DATA, "Too many creators", operation="unpack")
    creators = [Creator(address=r.key(), share=r.u8()) for _ in range(count)]
    r.skip((MAX_CREATORS - count) * CREATOR)
    return PassBook(
        authority=authority,
        mint=mint,
        name=name,
        description=description,
        uri=uri,
        price=price,
        price_mint=price_mint,
        mutable=mutable,
        state=state,
        access=access,
        duration=duration,
        supply=supply,
        max_supply=max_supply,
        max_uses=max_uses,
        blur_hash=blur_hash,
        created_at=created_at,
        market_authority=market_authority,
        pieces_in_one_wallet=pieces_in_one_wallet,
        creators=creators,
        seller_fee_basis_points=r.u16(),
        primary_sale_happened=r.flag(),
    )


def _pack_payout(w: _Writer, payout: Payout) -> None:
    w.key(payout.authority)
    w.key(payout.mint)
    w.key(payout.treasury_holder)
    w.u64(payout.cash_in)
    w.u64(payout.cash_out)


def _unpack_payout(r: _Reader) -> Payout:
    return Payout(
        authority=r.key(),
        mint=r.key(),
        treasury_holder=r.key(),
        cash_in=r.u64(),
        cash_out=r.u64(),
    )


def _pack_trade_history(w: _Writer, history: TradeHistory) -> None:
    w.key(history.pass_book)
    w.key(history.wallet)
    w.u64(history.already_bought)


def _unpack_trade_history(r: _Reader) -> TradeHistory:
    return TradeHistory(pass_book=r.key(), wallet=r.key(), already_bought=r.u64())


def _pack_membership(w: _Writer, membership: Membership) -> None:
    w.key(membership.store)
    w.key(membership.owner)
    w.opt_key(membership.pass_book)
    w.u8(membership.state)
    w.opt_u64(membership.expires_at)
    w.opt_u64(membership.activated_at)
    w.flag(membership.uses is not None)
    if membership.uses is None:
        w.blank(U64 + U64)
    else:
        w.u64(membership.uses.remaining)
        w.u64(membership.uses.total)


def _unpack_membership(r: _Reader) -> Membership:
    store = r.key()
    owner = r.key()
    pass_book = r.opt_key()
    state = _enum(MembershipState, r.u8())
    expires_at = r.opt_u64()
    activated_at = r.opt_u64()
    if r.flag():
        uses = Uses(remaining=r.u64(), total=r.u64())
    else:
        r.skip(U64 + U64)
        uses = None
    return Membership(
        store=store,
        owner=owner,
        pass_book=pass_book,
        state=state,
        expires_at=expires_at,
        activated_at=activated_at,
        uses=uses,
    )


def _enum(enum_cls, value: int):
    try:
        return enum_cls(value)
    except ValueError as e:
        raise PassBookError.from_code(
            ErrorCode.INVALID_ACCOUNT_DATA,
            f"Unknown {enum_cls.__name__} value {value}",
            operation="unpack",
        ) from e


_CODECS = {
    AccountType.STORE: (_pack_store, _unpack_store),
    AccountType.PASS_BOOK: (_pack_pass_book, _unpack_pass_book),
    AccountType.PAYOUT: (_pack_payout, _unpack_payout),
    AccountType.TRADE_HISTORY: (_pack_trade_history, _unpack_trade_history),
    AccountType.MEMBERSHIP: (_pack_membership, _unpack_membership),
}


# =============================================================================
# Public API
# =============================================================================


def account_type_of(record) -> AccountType:
    try:
        return RECORD_TYPES[type(record)]
    except KeyError:
        raise TypeError(f"Not a ledger record: {type(record).__name__}") from None


def pack(record) -> bytes:
    """Serialize a record into its fixed-size layout."""
    account_type = account_type_of(record)
    packer, _ = _CODECS[account_type]
    w = _Writer()
    w.u8(account_type)
    packer(w, record)
    data = w.getvalue()
    # Layout and size table must agree
    if len(data) != RECORD_SIZES[account_type]:
        raise AssertionError(
            f"{account_type.name} packed to {len(data)} bytes, "
            f"expected {RECORD_SIZES[account_type]}"
        )
    return data


def unpack(data: bytes, record_type: type):
    """Deserialize ``data`` as ``record_type``, checking the account type and size."""
    expected_type = RECORD_TYPES[record_type]
    if not data:
        fail(ErrorCode.UNINITIALIZED, operation="unpack", record_type=record_type.__name__)
    if data[0] != expected_type:
        fail(
            ErrorCode.INVALID_ACCOUNT_DATA,
            operation="unpack",
            expected=expected_type.name,
            found=data[0],
        )
    if len(data) != RECORD_SIZES[expected_type]:
        fail(
            ErrorCode.INVALID_ACCOUNT_DATA,
            operation="unpack",
            expected_size=RECORD_SIZES[expected_type],
            size=len(data),
        )
    _, unpacker = _CODECS[expected_type]
    r = _Reader(data)
    r.skip(U8)
    return unpacker(r)


def unpack_any(data: bytes):
    """Deserialize a record of whatever kind its first byte names."""
    if not data:
        fail(ErrorCode.UNINITIALIZED, operation="unpack")
    try:
        account_type = AccountType(data[0])
    except ValueError:
        fail(ErrorCode.INVALID_ACCOUNT_DATA, operation="unpack", found=data[0])
    if account_type == AccountType.UNINITIALIZED:
        fail(ErrorCode.UNINITIALIZED, operation="unpack")
    record_type = next(t for t, a in RECORD_TYPES.items() if a == account_type)
    return unpack(data, record_type)
