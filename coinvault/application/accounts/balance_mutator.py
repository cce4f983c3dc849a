"""
Use case primitive: transactional balance mutation.

Every change to an account balance, from any caller, runs through
BalanceMutator.apply:

    lock account ─▶ lock portfolio ─▶ decide(context) ─▶ write balance and
    portfolio_value in one statement ─▶ loss record ─▶ audit rows ─▶ commit
    ─▶ publish change notification

Input: account id plus a decision callback returning a BalanceChange (or None).
Output: MutationResult
Side effects: account, portfolio, trades, transactions, admin_audit rows;
    one change notification after commit.
Failure cases: AccountNotFoundError, InsufficientFundsError,
    PriceUnavailableError, anything raised by the decision (all roll back).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from coinvault.application.accounts.dtos import MutationResult
from coinvault.application.accounts.portfolio_allocator import PortfolioAllocator
from coinvault.domain.accounts.entities import (
    ZERO,
    Account,
    Asset,
    Portfolio,
    SimulationState,
    TradeRecord,
    TradeType,
    TransactionRecord,
    quantize_money,
)
from coinvault.domain.accounts.errors import InsufficientFundsError
from coinvault.domain.accounts.ports import ChangeNotifier, Ledger, LedgerUnitOfWork

logger = logging.getLogger(__name__)

LOSS_ASSET = "LOSS"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class MutationContext:
    """What a decision callback sees: locked rows, the open unit of work and
    the price snapshot taken before locking."""

    uow: LedgerUnitOfWork
    account: Account
    portfolio: Portfolio
    now: datetime
    prices: dict[Asset, Decimal] = field(default_factory=dict)


@dataclass
class BalanceChange:
    """A decided balance change, applied by BalanceMutator.

    Attributes:
        new_balance: Target balance before any reallocation.
        reason: Short machine name, logged and sent as the event `type`.
        event_type: Notification event name.
        event_data: Extra notification fields.
        trades: Audit trades to append (loss records are added automatically).
        transactions: Ledger transactions to append.
        tax_id: New tax identifier when `set_tax_id` is true.
        simulation: New simulator state, if it changes.
        reallocate: Re-run the allocator on the new balance; the holdings are
            replaced and the balance itself is stored unchanged.
        holdings: Explicit holdings to store (ignored when reallocating).
        audit_action: Admin audit action name; None for no audit row.
        details: Caller data copied into the MutationResult.
    """

    new_balance: Decimal
    reason: str
    event_type: str = "balance_updated"
    event_data: dict = field(default_factory=dict)
    trades: list[TradeRecord] = field(default_factory=list)
    transactions: list[TransactionRecord] = field(default_factory=list)
    set_tax_id: bool = False
    tax_id: Optional[str] = None
    simulation: Optional[SimulationState] = None
    reallocate: bool = False
    holdings: Optional[dict[Asset, Decimal]] = None
    audit_action: Optional[str] = None
    audit_details: dict = field(default_factory=dict)
    details: dict = field(default_factory=dict)


Decision = Callable[[MutationContext], Optional[BalanceChange]]


class BalanceMutator:
    """The single writer of `accounts.balance`.

    Guarantees, per call: one transaction, fixed lock order, balance and
    portfolio_value written together, at most one loss record, and a
    notification only for committed changes.
    """

    def __init__(
        self,
        ledger: Ledger,
        allocator: PortfolioAllocator,
        notifier: Optional[ChangeNotifier] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._ledger = ledger
        self._allocator = allocator
        self._notifier = notifier
        self._clock = clock

    def apply(self, account_id: int, decide: Decision) -> MutationResult:
        """Lock the account, apply the decided change and commit.

        Args:
            account_id: Account to mutate.
            decide: Called once under the locks. Return None for a no-op;
                any writes it made through the unit of work are still
                committed.

        Returns:
            MutationResult describing what was committed.
        """
        # Read outside the locks; a refresh may call the upstream feed.
        prices = self._allocator.current_prices()

        with self._ledger.transaction() as uow:
            account = uow.lock_account(account_id)
            portfolio = uow.lock_portfolio(account_id)
            before = account.balance
            context = MutationContext(
                uow=uow,
                account=account,
                portfolio=portfolio,
                now=self._clock(),
                prices=prices,
            )

            change = decide(context)
            if change is None:
                return MutationResult(
                    account_id=account_id,
                    applied=False,
                    balance_before=before,
                    balance_after=before,
                )

            target = quantize_money(change.new_balance)
            if target < ZERO:
                raise InsufficientFundsError(required=before - target, available=before)

            has_tax_id = account.has_tax_id
            if change.set_tax_id:
                uow.update_tax_id(account_id, change.tax_id)
                has_tax_id = bool(change.tax_id and change.tax_id.strip())
            if change.simulation is not None:
                uow.update_simulation(account_id, change.simulation)

            if change.reallocate:
                allocation = self._allocator.allocate(target, prices)
                uow.write_portfolio(account_id, allocation.holdings, target)
            else:
                holdings = change.holdings if change.holdings is not None else portfolio.holdings
                uow.write_portfolio(account_id, holdings, target)

            uow.write_balance(account_id, target)

            loss_recorded = False
            if target < before and not has_tax_id:
                diff = before - target
                uow.append_trade(
                    TradeRecord(
                        account_id=account_id,
                        trade_type=TradeType.LOSS,
                        asset=LOSS_ASSET,
                        quantity=diff,
                        price=Decimal("1"),
                        total=diff,
                        balance_before=before,
                        balance_after=target,
                        is_simulated=False,
                        created_at=context.now,
                    )
                )
                loss_recorded = True

            for trade in change.trades:
                uow.append_trade(trade)
            for record in change.transactions:
                uow.append_transaction(record)
            if change.audit_action:
                uow.record_admin_action(
                    change.audit_action,
                    {
                        "account_id": account_id,
                        "balance_before": str(before),
                        "balance_after": str(target),
                        **change.audit_details,
                    },
                )

        logger.info(
            "Balance committed: account=%s reason=%s before=%s after=%s",
            account_id,
            change.reason,
            before,
            target,
        )
        self._publish(account_id, change, target)

        return MutationResult(
            account_id=account_id,
            applied=True,
            balance_before=before,
            balance_after=target,
            loss_recorded=loss_recorded,
            details=dict(change.details),
        )

    def _publish(self, account_id: int, change: BalanceChange, balance: Decimal) -> None:
        if self._notifier is None:
            return
        payload = {
            "type": change.reason,
            "balance": balance,
            "portfolio_value": balance,
            **change.event_data,
        }
        try:
            self._notifier.publish(account_id, change.event_type, payload)
        except Exception:
            logger.exception("Change notification failed for account=%s", account_id)
