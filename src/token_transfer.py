"""
PassBook - Token Transfer Service

The engine never moves value itself. It stages Transfer instructions and
hands the whole batch to a TokenTransferService at commit time. A batch is
all-or-nothing: if any transfer in it fails, no balance changes.

InMemoryTokenService is the reference implementation used by tests and
single-node deployments. Token accounts are addressed by string; an
account holding the native asset is addressed by its owner's wallet.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from monitoring import get_logger

logger = get_logger(__name__)


class TransferError(Exception):
    """A transfer batch was rejected. No balance changed."""

    def __init__(self, message: str, transfer: "Transfer | None" = None):
        self.transfer = transfer
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "message": str(self),
            "transfer": self.transfer.to_dict() if self.transfer else None,
        }


@dataclass(frozen=True)
class TokenAccount:
    """Balance of one asset held by one owner."""

    address: str
    owner: str
    mint: str
    balance: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "owner": self.owner,
            "mint": self.mint,
            "balance": self.balance,
        }


@dataclass(frozen=True)
class Transfer:
    """
    Move ``amount`` of ``mint`` from ``source`` to ``destination``.

    ``authority`` must own the source account. When the destination does
    not exist yet and ``destination_owner`` is set, the service opens it.
    """

    source: str
    destination: str
    amount: int
    mint: str
    authority: str
    destination_owner: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "destination": self.destination,
            "amount": self.amount,
            "mint": self.mint,
            "authority": self.authority,
        }


class TokenTransferService(ABC):
    """Contract the engine needs from the value-moving layer."""

    @abstractmethod
    def get_account(self, address: str) -> TokenAccount | None:
        pass

    @abstractmethod
    def execute(self, transfers: list[Transfer]) -> list[Transfer]:
        """
        Apply every transfer or none.

        Returns:
            The applied transfers, usable as a receipt for revert()

        Raises:
            TransferError: If any transfer is invalid
        """
        pass

    @abstractmethod
    def revert(self, receipt: list[Transfer]) -> None:
        """Undo a batch previously returned by execute()."""
        pass

    def balance(self, address: str) -> int:
        account = self.get_account(address)
        return account.balance if account else 0

    def primary_sale_happened(self, mint: str) -> bool:
        """True once the collectible behind `mint` has had its primary sale."""
        return False


class InMemoryTokenService(TokenTransferService):
    """Thread-safe in-process ledger of token accounts."""

    def __init__(self):
        self._accounts: dict[str, TokenAccount] = {}
        self._resold_mints: set[str] = set()
        self._lock = threading.RLock()

    def create_account(self, address: str, owner: str, mint: str, balance: int = 0) -> TokenAccount:
        """Open an account. Opening an existing address is an error."""
        with self._lock:
            if address in self._accounts:
                raise TransferError(f"Token account {address} already exists")
            account = TokenAccount(address=address, owner=owner, mint=mint, balance=balance)
            self._accounts[address] = account
            return account

    def mint_to(self, address: str, amount: int) -> TokenAccount:
        """Credit freshly issued value to an existing account."""
        with self._lock:
            account = self._accounts.get(address)
            if account is None:
                raise TransferError(f"Token account {address} does not exist")
            updated = TokenAccount(
                address=account.address,
                owner=account.owner,
                mint=account.mint,
                balance=account.balance + amount,
            )
            self._accounts[address] = updated
            return updated

    def mark_primary_sale(self, mint: str) -> None:
        """Record that the collectible behind `mint` has had its primary sale."""
        with self._lock:
            self._resold_mints.add(mint)

    def primary_sale_happened(self, mint: str) -> bool:
        with self._lock:
            return mint in self._resold_mints

    def get_account(self, address: str) -> TokenAccount | None:
        with self._lock:
            return self._accounts.get(address)

    def accounts(self) -> list[TokenAccount]:
        with self._lock:
            return [self._accounts[a] for a in sorted(self._accounts)]

    def _apply(self, accounts: dict[str, TokenAccount], transfer: Transfer) -> None:
        """Apply one transfer to a working copy of the accounts."""
        if transfer.amount <= 0:
            raise TransferError("Transfer amount must be positive", transfer)
        if transfer.source == transfer.destination:
            raise TransferError("Source and destination are the same account", transfer)

        source = accounts.get(transfer.source)
        if source is None:
            raise TransferError(f"Source account {transfer.source} does not exist", transfer)
        if source.owner != transfer.authority:
            raise TransferError("Transfer authority does not own the source account", transfer)
        if source.mint != transfer.mint:
            raise TransferError("Source account holds a different asset", transfer)
        if source.balance < transfer.amount:
            raise TransferError(
                f"Insufficient funds: {source.balance} < {transfer.amount}", transfer
            )

        destination = accounts.get(transfer.destination)
        if destination is None:
            if transfer.destination_owner is None:
                raise TransferError(
                    f"Destination account {transfer.destination} does not exist", transfer
                )
            destination = TokenAccount(
                address=transfer.destination,
                owner=transfer.destination_owner,
                mint=transfer.mint,
            )
        elif destination.mint != transfer.mint:
            raise TransferError("Destination account holds a different asset", transfer)

        accounts[source.address] = TokenAccount(
            address=source.address,
            owner=source.owner,
            mint=source.mint,
            balance=source.balance - transfer.amount,
        )
        accounts[destination.address] = TokenAccount(
            address=destination.address,
            owner=destination.owner,
            mint=destination.mint,
            balance=destination.balance + transfer.amount,
        )

    def execute(self, transfers: list[Transfer]) -> list[Transfer]:
        with self._lock:
            working = dict(self._accounts)
            for transfer in transfers:
                self._apply(working, transfer)
            self._accounts = working
            if transfers:
                logger.debug("Executed %d transfer(s)", len(transfers))
            return list(transfers)

    def revert(self, receipt: list[Transfer]) -> None:
        with self._lock:
            working = dict(self._accounts)
            for transfer in reversed(receipt):
                destination = working[transfer.destination]
                owner = working[transfer.source].owner
                self._apply(
                    working,
                    Transfer(
                        source=transfer.destination,
                        destination=transfer.source,
                        amount=transfer.amount,
                        mint=transfer.mint,
                        authority=destination.owner,
                        destination_owner=owner,
                    ),
                )
            self._accounts = working
            logger.warning("Reverted %d transfer(s)", len(receipt))
