"""
Deterministic addressing for ledger records.

Every record lives at an address derived from a namespace and a key
tuple. The derivation is a SHA-256 over length-prefixed seeds, so two
different key tuples can never collide by concatenation. A DerivedAddress
doubles as the write capability for its slot: the ledger re-derives it on
every write and rejects anything that does not match.
"""

import hashlib
from dataclasses import dataclass
from enum import Enum

from errors import ErrorCode, fail

# Global prefix mixed into every derivation
PREFIX = "passbook"

# Settlement asset identifier for the chain's native value
NATIVE_MINT = "native"

# Identifiers (wallets, mints, addresses) are stored in fixed 64-byte slots
MAX_KEY_LENGTH = 64


class Namespace(Enum):
    """Purpose tags for derived addresses."""

    STORE = "store"
    PASS_BOOK = "passbook"
    PAYOUT = "payout"
    TRADE_HISTORY = "history"
    MEMBERSHIP = "membership"
    TREASURY = "treasury"
    VAULT = "vault"


@dataclass(frozen=True)
class DerivedAddress:
    """A canonical address plus the seeds that produced it."""

    address: str
    namespace: Namespace
    seeds: tuple[str, ...]
    program_id: str

    def verify(self, program_id: str | None = None) -> bool:
        """Re-derive and compare. Optionally pin the expected program."""
        if program_id is not None and program_id != self.program_id:
            return False
        expected = derive_address(self.program_id, self.namespace, *self.seeds)
        return expected.address == self.address

    def __str__(self) -> str:
        return self.address


def validate_key(value: str, code: ErrorCode = ErrorCode.KEY_TOO_LONG) -> str:
    """Identifiers must be non-empty strings that fit a key slot."""
    if not isinstance(value, str) or not value:
        fail(code, f"Invalid identifier: {value!r}", operation="addressing")
    if len(value.encode("utf-8")) > MAX_KEY_LENGTH:
        fail(code, f"Identifier exceeds {MAX_KEY_LENGTH} bytes", operation="addressing")
    return value


def derive_address(program_id: str, namespace: Namespace, *seeds: str) -> DerivedAddress:
    """Map ``(program, namespace, seeds...)`` to a stable 64-hex address."""
    digest = hashlib.sha256()
    for part in (PREFIX, program_id, namespace.value, *seeds):
        raw = part.encode("utf-8")
        digest.update(len(raw).to_bytes(4, "little"))
        digest.update(raw)
    return DerivedAddress(
        address=digest.hexdigest(),
        namespace=namespace,
        seeds=tuple(seeds),
        program_id=program_id,
    )


def find_store_address(program_id: str, authority: str) -> DerivedAddress:
    return derive_address(program_id, Namespace.STORE, authority)


def find_pass_book_address(program_id: str, mint: str) -> DerivedAddress:
    return derive_address(program_id, Namespace.PASS_BOOK, mint)


def find_payout_address(program_id: str, authority: str, mint: str) -> DerivedAddress:
    return derive_address(program_id, Namespace.PAYOUT, authority, mint)


def find_trade_history_address(program_id: str, pass_book: str, wallet: str) -> DerivedAddress:
    return derive_address(program_id, Namespace.TRADE_HISTORY, pass_book, wallet)


def find_membership_address(program_id: str, store: str, wallet: str) -> DerivedAddress:
    return derive_address(program_id, Namespace.MEMBERSHIP, store, wallet)


def find_treasury_holder(program_id: str, authority: str, mint: str) -> DerivedAddress:
    """Token account that custodies a recipient's payouts in one asset."""
    return derive_address(program_id, Namespace.TREASURY, authority, mint)


def find_vault_address(program_id: str, pass_book: str) -> DerivedAddress:
    """Token account that holds a PassBook's master collectible."""
    return derive_address(program_id, Namespace.VAULT, pass_book)


def assert_address(claimed: str | None, expected: DerivedAddress, code: ErrorCode) -> None:
    """
    Check a caller-claimed address against its derivation.

    A claim of None means the caller did not name the record, which is
    fine: the derived address is used directly.
    """
    if claimed is not None and claimed != expected.address:
        fail(
            code,
            operation="addressing",
            claimed=claimed,
            expected=expected.address,
            namespace=expected.namespace.value,
        )
