"""
PassBook - Ledger

Record access for the engine. A Ledger wraps a StorageBackend, a
TokenTransferService and a LockManager; every operation runs inside one
LedgerTransaction:

    txn = ledger.transaction("buy_pass")
    book = txn.read(address, PassBook)
    book.record_sale()
    txn.write(find_pass_book_address(program_id, mint), book)
    txn.transfer(Transfer(...))
    txn.commit()

Reads remember the version they saw. Commit locks every touched address,
re-checks those versions, runs the transfer batch and writes all records
in one backend batch. If the record batch fails the transfers are reverted.
"""

from collections.abc import Callable
from dataclasses import replace

from addressing import DerivedAddress, Namespace
from errors import ErrorCode, fail
from monitoring import get_logger, timed
from record_codec import pack, unpack
from records import Membership, PassBook, Payout, Store, TradeHistory
from scaling import LockManager, get_lock_manager
from storage import RecordWrite, StorageBackend
from token_transfer import TokenTransferService, Transfer

logger = get_logger(__name__)

DEFAULT_PROGRAM_ID = "passbook-program"

# Storage kind label for each record type
RECORD_KINDS: dict[type, str] = {
    Store: "store",
    PassBook: "pass_book",
    Payout: "payout",
    TradeHistory: "trade_history",
    Membership: "membership",
}

# Namespace a record type must be written under
RECORD_NAMESPACES: dict[type, Namespace] = {
    Store: Namespace.STORE,
    PassBook: Namespace.PASS_BOOK,
    Payout: Namespace.PAYOUT,
    TradeHistory: Namespace.TRADE_HISTORY,
    Membership: Namespace.MEMBERSHIP,
}


def _credit_payout(amount: int, template: Payout) -> Callable[[bytes | None], bytes]:
    """Increment applied to whatever Payout is stored at commit time."""

    def apply(current: bytes | None) -> bytes:
        payout = unpack(current, Payout) if current is not None else replace(template)
        payout.credit(amount)
        return pack(payout)

    return apply


class Ledger:
    """Typed, address-checked access to stored records."""

    def __init__(
        self,
        storage: StorageBackend,
        token_service: TokenTransferService,
        program_id: str = DEFAULT_PROGRAM_ID,
        lock_manager: LockManager | None = None,
        lock_timeout: float = 10.0,
    ):
        self.storage = storage
        self.token_service = token_service
        self.program_id = program_id
        self.lock_manager = lock_manager or get_lock_manager()
        self.lock_timeout = lock_timeout

    def get(self, address: str, record_type: type):
        """Load and decode one record, or None if the slot is empty."""
        stored = self.storage.get(address)
        if stored is None:
            return None
        return unpack(stored.data, record_type)

    def scan(self, record_type: type) -> list[tuple[str, object]]:
        """All records of one type as ``(address, record)`` pairs."""
        return [
            (stored.address, unpack(stored.data, record_type))
            for stored in self.storage.scan(RECORD_KINDS[record_type])
        ]

    def transaction(self, operation: str = "unknown") -> "LedgerTransaction":
        return LedgerTransaction(self, operation)


class LedgerTransaction:
    """
    One unit of work against the ledger.

    Records read through the transaction are cached, so every read of the
    same address returns the same object and mutations accumulate.
    """

    def __init__(self, ledger: Ledger, operation: str = "unknown"):
        self.ledger = ledger
        self.operation = operation
        self._cache: dict[str, object] = {}
        self._versions: dict[str, int] = {}
        self._writes: dict[str, RecordWrite] = {}
        self._credits: dict[str, tuple[int, Payout]] = {}
        self._transfers: list[Transfer] = []
        self.committed = False

    # Reads

    def read(self, address: str, record_type: type):
        """Load a record and remember its version. None if absent."""
        if address in self._cache:
            record = self._cache[address]
            if record is not None and not isinstance(record, record_type):
                fail(
                    ErrorCode.INVALID_ACCOUNT_DATA,
                    operation=self.operation,
                    address=address,
                    expected=record_type.__name__,
                )
            return record

        stored = self.ledger.storage.get(address)
        record = unpack(stored.data, record_type) if stored else None
        self._versions[address] = stored.version if stored else 0
        self._cache[address] = record
        return record

    def exists(self, address: str) -> bool:
        if address in self._cache:
            return self._cache[address] is not None
        return self.ledger.storage.get(address) is not None

    # Staging

    def _check_capability(self, derived: DerivedAddress, record_type: type | None = None) -> None:
        if not derived.verify(self.ledger.program_id):
            fail(
                ErrorCode.INVALID_DERIVATION,
                operation=self.operation,
                address=derived.address,
            )
        if record_type is not None and derived.namespace != RECORD_NAMESPACES[record_type]:
            fail(
                ErrorCode.INVALID_DERIVATION,
                f"{record_type.__name__} cannot live in namespace {derived.namespace.value}",
                operation=self.operation,
                address=derived.address,
            )

    def write(self, derived: DerivedAddress, record) -> None:
        """Stage ``record`` for ``derived``. Unread slots must still be empty at commit."""
        record_type = type(record)
        self._check_capability(derived, record_type)
        address = derived.address
        if address in self._credits:
            fail(
                ErrorCode.INVALID_ACCOUNT_DATA,
                "Payout already has a pending credit in this transaction",
                operation=self.operation,
                address=address,
            )
        self._writes[address] = RecordWrite(
            address=address,
            kind=RECORD_KINDS[record_type],
            data=pack(record),
            expected_version=self._versions.get(address, 0),
        )
        self._cache[address] = record

    def delete(self, derived: DerivedAddress, record_type: type) -> None:
        self._check_capability(derived, record_type)
        address = derived.address
        if address not in self._versions:
            self.read(address, record_type)
        self._writes[address] = RecordWrite(
            address=address,
            kind=RECORD_KINDS[record_type],
            data=None,
            expected_version=self._versions[address],
        )
        self._cache[address] = None

    def credit_payout(self, derived: DerivedAddress, amount: int, template: Payout) -> None:
        """
        Stage ``cash_in += amount`` on a Payout, creating it from
        ``template`` if nothing is stored. A zero amount only ensures the
        record exists.
        """
        self._check_capability(derived, Payout)
        address = derived.address
        if address in self._writes:
            fail(
                ErrorCode.INVALID_ACCOUNT_DATA,
                "Payout already has a pending write in this transaction",
                operation=self.operation,
                address=address,
            )
        pending, _ = self._credits.get(address, (0, template))
        self._credits[address] = (pending + amount, template)

    def transfer(self, transfer: Transfer) -> None:
        self._transfers.append(transfer)

    @property
    def transfers(self) -> list[Transfer]:
        return list(self._transfers)

    @property
    def pending_writes(self) -> list[RecordWrite]:
        credits = [
            RecordWrite(
                address=address,
                kind=RECORD_KINDS[Payout],
                mutate=_credit_payout(amount, template),
            )
            for address, (amount, template) in self._credits.items()
        ]
        return list(self._writes.values()) + credits

    # Commit

    @timed("ledger_commit_ms")
    def commit(self) -> dict[str, int]:
        """
        Apply every staged change or none.

        Returns:
            Mapping of written address to its new version

        Raises:
            StorageConflictError: A read record changed before commit
            TransferError: The transfer batch was rejected
            TimeoutError: Locks could not be acquired
        """
        if self.committed:
            raise RuntimeError("Transaction already committed")

        writes = self.pending_writes
        touched = set(self._versions) | {w.address for w in writes}
        lock_names = [f"record:{address}" for address in touched]

        with self.ledger.lock_manager.lock_many(lock_names, timeout=self.ledger.lock_timeout):
            self.ledger.storage.check_versions(self._versions)
            receipt = self.ledger.token_service.execute(self._transfers)
            try:
                versions = self.ledger.storage.commit(writes)
            except Exception:
                logger.error(
                    "Record commit failed, reverting transfers",
                    extra={"operation": self.operation, "transfers": len(receipt)},
                )
                self.ledger.token_service.revert(receipt)
                raise

        self.committed = True
        logger.debug(
            "Committed %d record(s) and %d transfer(s)",
            len(writes),
            len(receipt),
            extra={"operation": self.operation},
        )
        return versions
