"""
Tests for the in-memory token transfer service.
"""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest

from token_transfer import InMemoryTokenService, Transfer, TransferError


@pytest.fixture
def service():
    service = InMemoryTokenService()
    service.create_account("alice", "alice", "native", balance=1000)
    service.create_account("bob", "bob", "native")
    service.create_account("alice-usdc", "alice", "usdc", balance=50)
    return service


def pay(source="alice", destination="bob", amount=100, mint="native", authority="alice", **kw):
    return Transfer(source, destination, amount, mint, authority, **kw)


class TestAccounts:
    """Tests for account management."""

    def test_create_and_balance(self, service):
        assert service.balance("alice") == 1000
        assert service.balance("missing") == 0
        assert service.get_account("alice-usdc").mint == "usdc"

    def test_create_duplicate(self, service):
        with pytest.raises(TransferError):
            service.create_account("alice", "alice", "native")

    def test_mint_to(self, service):
        service.mint_to("bob", 25)
        assert service.balance("bob") == 25
        with pytest.raises(TransferError):
            service.mint_to("missing", 1)

    def test_accounts_sorted(self, service):
        assert [a.address for a in service.accounts()] == ["alice", "alice-usdc", "bob"]

    def test_primary_sale_flag(self, service):
        assert service.primary_sale_happened("collectible") is False
        service.mark_primary_sale("collectible")
        assert service.primary_sale_happened("collectible") is True
        assert service.primary_sale_happened("other-collectible") is False


class TestExecute:
    """Tests for batch execution."""

    def test_simple_transfer(self, service):
        receipt = service.execute([pay()])
        assert service.balance("alice") == 900
        assert service.balance("bob") == 100
        assert len(receipt) == 1

    def test_opens_destination_with_owner(self, service):
        service.execute([pay(destination="vault", destination_owner="program")])
        vault = service.get_account("vault")
        assert vault.owner == "program"
        assert vault.mint == "native"
        assert vault.balance == 100

    def test_missing_destination_without_owner(self, service):
        with pytest.raises(TransferError):
            service.execute([pay(destination="nowhere")])

    @pytest.mark.parametrize(
        "transfer",
        [
            pay(amount=0),
            pay(amount=5000),
            pay(authority="mallory"),
            pay(mint="usdc"),
            pay(destination="alice"),
            pay(source="missing"),
            pay(source="alice-usdc", mint="usdc", destination="bob"),
        ],
    )
    def test_invalid_transfers(self, service, transfer):
        with pytest.raises(TransferError) as exc:
            service.execute([transfer])
        assert exc.value.transfer == transfer
        assert exc.value.to_dict()["transfer"]["source"] == transfer.source

    def test_batch_is_all_or_nothing(self, service):
        with pytest.raises(TransferError):
            service.execute([pay(amount=600), pay(amount=600)])
        assert service.balance("alice") == 1000
        assert service.balance("bob") == 0

    def test_revert(self, service):
        receipt = service.execute([
            pay(amount=300),
            pay(destination="vault", amount=200, destination_owner="program"),
        ])
        service.revert(receipt)

        assert service.balance("alice") == 1000
        assert service.balance("bob") == 0
        assert service.balance("vault") == 0
