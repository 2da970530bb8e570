"""
PassBook - Processor

Orchestrates every PassBook operation as one ledger transaction:
validate, load or lazily create records, compute the distribution, stage
payout credits and token transfers, advance counters, commit.

Usage:
    processor = PassBookProcessor(ledger)
    address = processor.init_pass_book(args, AuthContext.of(authority))
    processor.activate_pass_book(address, AuthContext.of(authority))
    result = processor.buy_pass(address, buyer, buyer, BuyPassArgs(), AuthContext.of(buyer))
"""

import time
from collections.abc import Callable
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from addressing import (
    NATIVE_MINT,
    DerivedAddress,
    assert_address,
    find_membership_address,
    find_pass_book_address,
    find_payout_address,
    find_store_address,
    find_trade_history_address,
    find_treasury_holder,
    find_vault_address,
)
from authorization import AuthContext
from distribution import (
    DistributionPlan,
    ReferralTarget,
    calculate_distribution,
    select_creator_split,
)
from errors import ErrorCode, PassBookError, fail
from instructions import (
    BuyPassArgs,
    DeletePassBookArgs,
    EditPassBookArgs,
    InitPassBookArgs,
    WithdrawPayoutArgs,
)
from ledger import Ledger, LedgerTransaction
from monitoring import LoggingContext, get_logger, metrics
from records import (
    Membership,
    MembershipState,
    PassBook,
    PassBookState,
    Payout,
    Store,
    TradeHistory,
)
from safe_math import increment
from storage import StorageConflictError
from token_transfer import Transfer

logger = get_logger(__name__)


@dataclass
class BuyResult:
    """Records as committed by a successful purchase."""

    pass_book: PassBook
    trade_history: TradeHistory
    membership: Membership
    plan: DistributionPlan

    def to_dict(self) -> dict[str, Any]:
        return {
            "pass_book": self.pass_book.to_dict(),
            "trade_history": self.trade_history.to_dict(),
            "membership": self.membership.to_dict(),
            "distribution": self.plan.to_dict(),
        }


class PassBookProcessor:
    """Entry point for every state-changing PassBook operation."""

    def __init__(self, ledger: Ledger, clock: Callable[[], int] | None = None):
        self.ledger = ledger
        self.clock = clock or (lambda: int(time.time()))

    @property
    def program_id(self) -> str:
        return self.ledger.program_id

    @property
    def token_service(self):
        return self.ledger.token_service

    # =========================================================================
    # Plumbing
    # =========================================================================

    @contextmanager
    def _operation(self, operation: str, **context):
        """Run one transaction with logging and metrics around it."""
        start = time.perf_counter()
        outcome = "failed"
        with LoggingContext(operation=operation, **context):
            try:
                txn = self.ledger.transaction(operation)
                yield txn
                txn.commit()
                outcome = "committed"
                logger.info("%s committed", operation)
            except PassBookError as e:
                outcome = "rejected"
                logger.warning(
                    "%s rejected: %s", operation, e, extra={"error_code": e.code.name}
                )
                raise
            except StorageConflictError as e:
                outcome = "conflict"
                logger.warning("%s conflicted: %s", operation, e)
                raise
            except Exception:
                logger.exception("%s failed", operation)
                raise
            finally:
                metrics.increment(
                    "operations_total", labels={"operation": operation, "outcome": outcome}
                )
                metrics.timing(
                    "operation_duration_ms",
                    (time.perf_counter() - start) * 1000,
                    labels={"operation": operation},
                )

    def _load_pass_book(
        self, txn: LedgerTransaction, address: str
    ) -> tuple[PassBook, DerivedAddress]:
        book = txn.read(address, PassBook)
        if book is None:
            fail(ErrorCode.UNINITIALIZED, "PassBook does not exist", operation=txn.operation)
        derived = find_pass_book_address(self.program_id, book.mint)
        assert_address(address, derived, ErrorCode.INVALID_PASS_BOOK_KEY)
        return book, derived

    def _payout_slot(self, authority: str, mint: str) -> tuple[DerivedAddress, Payout]:
        """Derived Payout address plus the record to create if it is absent."""
        derived = find_payout_address(self.program_id, authority, mint)
        holder = find_treasury_holder(self.program_id, authority, mint)
        return derived, Payout(authority=authority, mint=mint, treasury_holder=holder.address)

    def _check_payment_account(self, book: PassBook, buyer: str, user_token_account: str) -> None:
        if book.price_mint == NATIVE_MINT and user_token_account != buyer:
            fail(
                ErrorCode.USER_WALLET_MUST_MATCH_USER_TOKEN_ACCOUNT,
                operation="buy_pass",
                user_token_account=user_token_account,
            )
        account = self.token_service.get_account(user_token_account)
        if account is None or account.mint != book.price_mint:
            fail(
                ErrorCode.PRICE_TOKEN_MISMATCH,
                operation="buy_pass",
                expected=book.price_mint,
                found=account.mint if account else None,
            )
        if account.owner != buyer:
            fail(ErrorCode.ILLEGAL_OWNER, operation="buy_pass", owner=account.owner)

    # =========================================================================
    # PassBook lifecycle
    # =========================================================================

    def init_pass_book(self, args: InitPassBookArgs, auth: AuthContext) -> str:
        """
        List a new PassBook and return its address.

        Creates the authority's Store on first use, moves the master
        collectible into the PassBook vault and opens a Payout for every
        creator, the market authority and the store referrer.
        """
        book_slot = find_pass_book_address(self.program_id, args.mint)
        store_slot = find_store_address(self.program_id, args.authority)

        with self._operation(
            "init_pass_book", pass_book=book_slot.address, authority=args.authority
        ) as txn:
            args.validate()
            auth.require_signer(args.authority, "init_pass_book")

            if txn.read(book_slot.address, PassBook) is not None:
                fail(
                    ErrorCode.ACCOUNT_ALREADY_INITIALIZED,
                    operation="init_pass_book",
                    pass_book=book_slot.address,
                )

            store = txn.read(store_slot.address, Store) or Store(authority=args.authority)
            if store.authority != args.authority:
                fail(ErrorCode.INVALID_AUTHORITY_KEY, operation="init_pass_book")
            if args.referrer is not None:
                store.set_referrer(args.referrer, args.referral_end_date)
            store.pass_book_count = increment(store.pass_book_count)

            source = self.token_service.get_account(args.source_token_account)
            if source is None or source.mint != args.mint or source.balance < 1:
                fail(
                    ErrorCode.INVALID_TOKEN_ACCOUNT_KEY,
                    "Source account does not hold the collectible",
                    operation="init_pass_book",
                )
            if source.owner != args.authority:
                fail(ErrorCode.ILLEGAL_OWNER, operation="init_pass_book", owner=source.owner)

            vault = find_vault_address(self.program_id, book_slot.address)
            txn.transfer(
                Transfer(
                    source=args.source_token_account,
                    destination=vault.address,
                    amount=1,
                    mint=args.mint,
                    authority=args.authority,
                    destination_owner=book_slot.address,
                )
            )

            book = PassBook(
                authority=args.authority,
                mint=args.mint,
                name=args.name,
                description=args.description,
                uri=args.uri,
                price=args.price,
                price_mint=args.price_mint,
                mutable=args.mutable,
                access=args.access,
                duration=args.duration,
                max_supply=args.max_supply,
                max_uses=args.max_uses,
                blur_hash=args.blur_hash,
                created_at=self.clock(),
                market_authority=args.market_authority,
                pieces_in_one_wallet=args.pieces_in_one_wallet,
                creators=list(args.creators),
                seller_fee_basis_points=args.seller_fee_basis_points,
                primary_sale_happened=self.token_service.primary_sale_happened(args.mint),
            )

            recipients = [c.address for c in book.creators]
            recipients += [r for r in (book.market_authority, store.referrer) if r]
            for recipient in dict.fromkeys(recipients):
                slot, template = self._payout_slot(recipient, book.price_mint)
                txn.credit_payout(slot, 0, template)

            txn.write(book_slot, book)
            txn.write(store_slot, store)

        return book_slot.address

    def activate_pass_book(self, address: str, auth: AuthContext) -> PassBook:
        with self._operation("activate_pass_book", pass_book=address) as txn:
            book, slot = self._load_pass_book(txn, address)
            auth.require_authority(book.authority, "activate_pass_book")
            if book.state == PassBookState.ACTIVATED:
                fail(ErrorCode.PASS_BOOK_IS_ALREADY_ACTIVATED, operation="activate_pass_book")
            if book.state == PassBookState.ENDED:
                fail(ErrorCode.WRONG_PASS_STATE, operation="activate_pass_book", state=book.state.name)
            book.state = PassBookState.ACTIVATED
            txn.write(slot, book)
        return book

    def deactivate_pass_book(self, address: str, auth: AuthContext) -> PassBook:
        with self._operation("deactivate_pass_book", pass_book=address) as txn:
            book, slot = self._load_pass_book(txn, address)
            auth.require_authority(book.authority, "deactivate_pass_book")
            if book.state == PassBookState.DEACTIVATED:
                fail(ErrorCode.PASS_BOOK_IS_ALREADY_DEACTIVATED, operation="deactivate_pass_book")
            if book.state != PassBookState.ACTIVATED:
                fail(ErrorCode.PASS_NOT_ACTIVATED, operation="deactivate_pass_book", state=book.state.name)
            book.state = PassBookState.DEACTIVATED
            txn.write(slot, book)
        return book

    def edit_pass_book(self, address: str, args: EditPassBookArgs, auth: AuthContext) -> PassBook:
        """Change any subset of the editable fields; each must actually change."""
        with self._operation("edit_pass_book", pass_book=address) as txn:
            changes = args.provided()
            if not changes:
                fail(ErrorCode.CANT_SET_THE_SAME_VALUE, "No fields to edit", operation="edit_pass_book")
            args.validate()

            book, slot = self._load_pass_book(txn, address)
            auth.require_authority(book.authority, "edit_pass_book")
            if not book.mutable:
                fail(ErrorCode.IMMUTABLE_PASS_BOOK, operation="edit_pass_book")
            if book.state == PassBookState.ACTIVATED:
                fail(ErrorCode.WRONG_PASS_STATE, operation="edit_pass_book", state=book.state.name)

            for name, value in changes.items():
                if getattr(book, name) == value:
                    fail(ErrorCode.CANT_SET_THE_SAME_VALUE, operation="edit_pass_book", field=name)
                setattr(book, name, value)
            book.validate()
            txn.write(slot, book)
        return book

    def delete_pass_book(self, address: str, args: DeletePassBookArgs, auth: AuthContext) -> None:
        """Hand back the collectible and any native value, then close the record."""
        with self._operation("delete_pass_book", pass_book=address) as txn:
            args.validate()
            book, slot = self._load_pass_book(txn, address)
            auth.require_authority(book.authority, "delete_pass_book")

            vault = find_vault_address(self.program_id, slot.address)
            held = self.token_service.balance(vault.address)
            if held:
                txn.transfer(
                    Transfer(
                        source=vault.address,
                        destination=args.collectible_destination,
                        amount=held,
                        mint=book.mint,
                        authority=slot.address,
                        destination_owner=book.authority,
                    )
                )

            residual = self.token_service.get_account(slot.address)
            if residual is not None and residual.mint == NATIVE_MINT and residual.balance:
                txn.transfer(
                    Transfer(
                        source=slot.address,
                        destination=args.refund_destination,
                        amount=residual.balance,
                        mint=NATIVE_MINT,
                        authority=slot.address,
                        destination_owner=args.refund_destination,
                    )
                )

            txn.delete(slot, PassBook)

    # =========================================================================
    # Purchase
    # =========================================================================

    def buy_pass(
        self,
        pass_book_address: str,
        buyer: str,
        user_token_account: str,
        args: BuyPassArgs,
        auth: AuthContext,
        store: str | None = None,
        trade_history: str | None = None,
        membership: str | None = None,
    ) -> BuyResult:
        """
        Sell one pass to ``buyer``, paying from ``user_token_account``.

        ``store``, ``trade_history`` and ``membership`` are optional
        caller-claimed addresses; when given they must match their
        derivations.
        """
        with self._operation("buy_pass", pass_book=pass_book_address, buyer=buyer) as txn:
            params = args.params()
            params.validate()
            auth.require_signer(buyer, "buy_pass")

            book, book_slot = self._load_pass_book(txn, pass_book_address)
            store_slot = find_store_address(self.program_id, book.authority)
            assert_address(store, store_slot, ErrorCode.INVALID_STORE_KEY)
            history_slot = find_trade_history_address(self.program_id, book_slot.address, buyer)
            assert_address(trade_history, history_slot, ErrorCode.INVALID_TRADE_HISTORY_KEY)
            member_slot = find_membership_address(self.program_id, store_slot.address, buyer)
            assert_address(membership, member_slot, ErrorCode.INVALID_MEMBERSHIP_KEY)

            self._check_payment_account(book, buyer, user_token_account)
            if book.market_authority is not None and not auth.is_signer(book.market_authority):
                fail(ErrorCode.INVALID_MARKET_AUTHORITY, operation="buy_pass")

            if book.is_exhausted():
                fail(
                    ErrorCode.SUPPLY_IS_GT_THAN_MAX_SUPPLY,
                    operation="buy_pass",
                    supply=book.supply,
                    max_supply=book.max_supply,
                )
            if book.state != PassBookState.ACTIVATED:
                fail(ErrorCode.PASS_NOT_ACTIVATED, operation="buy_pass", state=book.state.name)

            store_record = txn.read(store_slot.address, Store)
            if store_record is None:
                fail(ErrorCode.UNINITIALIZED, "Store does not exist", operation="buy_pass")

            history = txn.read(history_slot.address, TradeHistory) or TradeHistory(
                pass_book=book_slot.address, wallet=buyer
            )
            limit = book.pieces_in_one_wallet
            if limit is not None and history.already_bought >= limit:
                fail(
                    ErrorCode.USER_REACH_BUY_LIMIT,
                    operation="buy_pass",
                    already_bought=history.already_bought,
                    limit=limit,
                )

            now = self.clock()
            member = txn.read(member_slot.address, Membership)
            new_member = member is None
            if new_member:
                member = Membership(store=store_slot.address, owner=buyer)
            if book.access is not None and member.is_active(now):
                fail(
                    ErrorCode.USER_HAS_ACTIVE_MEMBERSHIP,
                    operation="buy_pass",
                    expires_at=member.expires_at,
                )
            if member.activate(now, book_slot.address, book):
                store_record.active_membership_count = increment(
                    store_record.active_membership_count
                )

            book.primary_sale_happened = self.token_service.primary_sale_happened(book.mint)
            referrer = None
            if store_record.referrer is not None:
                referrer = ReferralTarget(store_record.referrer, store_record.referral_end_date)
            plan = calculate_distribution(
                book.price,
                params,
                book.creators,
                strategy=select_creator_split(book),
                market_authority=book.market_authority,
                referrer=referrer,
                now=now,
            )
            for recipient, amount in plan.amounts_by_recipient().items():
                slot, template = self._payout_slot(recipient, book.price_mint)
                txn.credit_payout(slot, amount, template)
                txn.transfer(
                    Transfer(
                        source=user_token_account,
                        destination=template.treasury_holder,
                        amount=amount,
                        mint=book.price_mint,
                        authority=buyer,
                        destination_owner=slot.address,
                    )
                )

            if new_member:
                store_record.membership_count = increment(store_record.membership_count)
            store_record.pass_count = increment(store_record.pass_count)
            history.already_bought = increment(history.already_bought)
            book.record_sale()

            txn.write(book_slot, book)
            txn.write(store_slot, store_record)
            txn.write(history_slot, history)
            txn.write(member_slot, member)

        metrics.increment("passes_sold_total", labels={"asset": book.price_mint})
        metrics.increment(
            "distributed_amount_total", plan.total_paid, labels={"asset": book.price_mint}
        )
        if plan.undisbursed:
            logger.info(
                "Sale left %d undisbursed",
                plan.undisbursed,
                extra={"pass_book": book_slot.address},
            )
        return BuyResult(pass_book=book, trade_history=history, membership=member, plan=plan)

    # =========================================================================
    # Memberships
    # =========================================================================

    def use_membership(self, store_authority: str, wallet: str, auth: AuthContext) -> Membership:
        """Redeem one use. The store authority vouches for the redemption."""
        store_slot = find_store_address(self.program_id, store_authority)
        member_slot = find_membership_address(self.program_id, store_slot.address, wallet)

        with self._operation("use_membership", store=store_slot.address, wallet=wallet) as txn:
            auth.require_authority(store_authority, "use_membership")
            store = txn.read(store_slot.address, Store)
            if store is None:
                fail(ErrorCode.UNINITIALIZED, "Store does not exist", operation="use_membership")
            member = txn.read(member_slot.address, Membership)
            if member is None or not member.is_active(self.clock()):
                fail(ErrorCode.MEMBERSHIP_NOT_ACTIVE, operation="use_membership")
            if member.uses is not None:
                member.uses.consume()
            store.redemptions_count = increment(store.redemptions_count)
            txn.write(member_slot, member)
            txn.write(store_slot, store)
        return member

    def expire_membership(self, store_authority: str, wallet: str) -> Membership:
        """Sweep a lapsed membership into Expired. Anyone may call this."""
        store_slot = find_store_address(self.program_id, store_authority)
        member_slot = find_membership_address(self.program_id, store_slot.address, wallet)

        with self._operation("expire_membership", store=store_slot.address, wallet=wallet) as txn:
            member = txn.read(member_slot.address, Membership)
            if member is None or member.state == MembershipState.EXPIRED:
                fail(ErrorCode.MEMBERSHIP_NOT_ACTIVE, operation="expire_membership")
            if not member.is_expired(self.clock()):
                fail(
                    ErrorCode.MEMBERSHIP_NOT_EXPIRED,
                    operation="expire_membership",
                    expires_at=member.expires_at,
                )
            member.state = MembershipState.EXPIRED
            txn.write(member_slot, member)
        return member

    # =========================================================================
    # Payouts
    # =========================================================================

    def withdraw_payout(
        self, authority: str, mint: str, args: WithdrawPayoutArgs, auth: AuthContext
    ) -> Payout:
        """Move ``args.amount`` from the recipient's treasury holder to ``args.destination``."""
        slot = find_payout_address(self.program_id, authority, mint)

        with self._operation("withdraw_payout", payout=slot.address) as txn:
            args.validate()
            auth.require_authority(authority, "withdraw_payout")
            payout = txn.read(slot.address, Payout)
            if payout is None:
                fail(ErrorCode.UNINITIALIZED, "Payout does not exist", operation="withdraw_payout")
            payout.withdraw(args.amount)
            txn.write(slot, payout)
            txn.transfer(
                Transfer(
                    source=payout.treasury_holder,
                    destination=args.destination,
                    amount=args.amount,
                    mint=mint,
                    authority=slot.address,
                    destination_owner=authority,
                )
            )
        return payout

    # =========================================================================
    # Reads
    # =========================================================================

    def get_pass_book(self, address: str) -> PassBook | None:
        return self.ledger.get(address, PassBook)

    def list_pass_books(self) -> list[tuple[str, PassBook]]:
        return self.ledger.scan(PassBook)

    def get_store(self, authority: str) -> Store | None:
        return self.ledger.get(find_store_address(self.program_id, authority).address, Store)

    def get_payout(self, authority: str, mint: str) -> Payout | None:
        return self.ledger.get(find_payout_address(self.program_id, authority, mint).address, Payout)

    def get_trade_history(self, pass_book: str, wallet: str) -> TradeHistory | None:
        slot = find_trade_history_address(self.program_id, pass_book, wallet)
        return self.ledger.get(slot.address, TradeHistory)

    def get_membership(self, store_authority: str, wallet: str) -> Membership | None:
        store_slot = find_store_address(self.program_id, store_authority)
        slot = find_membership_address(self.program_id, store_slot.address, wallet)
        return self.ledger.get(slot.address, Membership)
