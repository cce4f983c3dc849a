"""
Simulated account activity.

GrowthSimulator
    Trading-day batch over every active account with the simulator enabled.
    One growth policy is configured (random boost or fixed rate); each tick
    appends one simulated buy/sell trade and a trade ledger entry.

TickSimulator
    Polls for accounts whose own schedule is due, compounds their balance
    by a fixed rate, records a PROFIT trade, reschedules the account and
    reallocates its portfolio.

Both process one account per transaction. A failure is logged with the
account id and the batch moves on.
"""

import logging
import random
import threading
from dataclasses import replace
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable, Optional

from coinvault.application.accounts.balance_mutator import (
    BalanceChange,
    BalanceMutator,
    MutationContext,
    utcnow,
)
from coinvault.application.accounts.dtos import MutationResult, SimulationRunSummary
from coinvault.domain.accounts.allocation import scale_holding
from coinvault.domain.accounts.entities import (
    MONEY_QUANTUM,
    SUPPORTED_ASSETS,
    ZERO,
    TradeRecord,
    TradeType,
    TransactionRecord,
    TransactionStatus,
    TransactionType,
)
from coinvault.domain.accounts.growth import GrowthPolicy, apply_growth, is_trading_day
from coinvault.domain.accounts.errors import PriceUnavailableError
from coinvault.domain.accounts.ports import Ledger

logger = logging.getLogger(__name__)

PROFIT_ASSET = "PROFIT"


def _run_batch(
    task: str,
    account_ids: Iterable[int],
    process: Callable[[int], MutationResult],
    on_failure: Optional[Callable[[int], None]] = None,
) -> SimulationRunSummary:
    summary = SimulationRunSummary(task=task)
    for account_id in account_ids:
        summary.processed += 1
        try:
            result = process(account_id)
        except Exception as exc:
            summary.failed += 1
            summary.failures.append({"account_id": account_id, "error": str(exc)})
            logger.exception("%s failed for account=%s", task, account_id)
            if on_failure is not None:
                on_failure(account_id)
            continue
        if result.applied:
            summary.succeeded += 1
        else:
            summary.skipped += 1

    logger.info(
        "%s finished: processed=%d succeeded=%d skipped=%d failed=%d",
        task,
        summary.processed,
        summary.succeeded,
        summary.skipped,
        summary.failed,
    )
    return summary


class GrowthSimulator:
    """Applies the configured growth policy to every eligible account."""

    task_name = "growth"

    def __init__(
        self,
        ledger: Ledger,
        mutator: BalanceMutator,
        policy: GrowthPolicy,
        trading_days: str = "mon-fri",
        timezone_name: str = "UTC",
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._ledger = ledger
        self._mutator = mutator
        self._policy = policy
        self._trading_days = trading_days
        self._timezone = timezone_name
        self._rng = rng or random.Random()
        self._rng_lock = threading.Lock()
        self._clock = clock

    @property
    def policy(self) -> GrowthPolicy:
        return self._policy

    def run(self, force: bool = False) -> SimulationRunSummary:
        """Run one batch. Outside trading days nothing happens unless forced."""
        now = self._clock()
        if not force and not is_trading_day(now, self._trading_days, self._timezone):
            logger.info("Growth batch skipped: %s is not a trading day", now.date())
            return SimulationRunSummary(task=self.task_name, gated=True)

        account_ids = self._ledger.list_simulation_accounts()
        return _run_batch(
            self.task_name,
            account_ids,
            lambda account_id: self.run_for_account(account_id),
        )

    def run_for_account(self, account_id: int, force: bool = False) -> MutationResult:
        """Apply one growth tick to one account.

        Args:
            account_id: Target account.
            force: Skip the simulator-enabled check (support tooling).
        """

        def decide(ctx: MutationContext) -> Optional[BalanceChange]:
            account = ctx.account
            if not account.is_active or account.balance <= ZERO:
                return None
            if not force and not account.simulation.enabled:
                return None

            with self._rng_lock:
                boost = self._policy.next_boost(self._rng)
                asset = self._rng.choice(SUPPORTED_ASSETS)
                side = self._rng.choice((TradeType.BUY, TradeType.SELL))

            before = account.balance
            after = apply_growth(before, boost)
            gain = after - before
            if gain <= ZERO:
                return None

            price = ctx.prices.get(asset)
            if price is None:
                raise PriceUnavailableError(asset.value)
            quantity = (gain / price).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)
            quantity = max(quantity, MONEY_QUANTUM)

            holdings = None
            if ctx.portfolio.usd_value > ZERO:
                holdings = scale_holding(
                    ctx.portfolio.holdings, asset, after / ctx.portfolio.usd_value
                )

            return BalanceChange(
                new_balance=after,
                reason="growth_tick",
                event_data={
                    "policy": self._policy.name,
                    "boost_percent": boost * 100,
                    "asset": asset.value,
                    "side": side.value,
                },
                trades=[
                    TradeRecord(
                        account_id=account.id,
                        trade_type=side,
                        asset=asset.value,
                        quantity=quantity,
                        price=price,
                        total=gain,
                        balance_before=before,
                        balance_after=after,
                        is_simulated=True,
                        created_at=ctx.now,
                    )
                ],
                transactions=[
                    TransactionRecord(
                        account_id=account.id,
                        transaction_type=TransactionType.TRADE,
                        amount=gain,
                        status=TransactionStatus.COMPLETED,
                        reference=f"growth-{side.value}-{asset.value}",
                    )
                ],
                holdings=holdings,
                details={"boost": boost},
            )

        return self._mutator.apply(account_id, decide)


class TickSimulator:
    """Per-account scheduled compounding."""

    task_name = "tick"

    def __init__(
        self,
        ledger: Ledger,
        mutator: BalanceMutator,
        growth_rate: Decimal,
        interval_minutes: int = 60,
        batch_limit: int = 200,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._ledger = ledger
        self._mutator = mutator
        self._rate = growth_rate
        self._interval = timedelta(minutes=interval_minutes)
        self._batch_limit = batch_limit
        self._clock = clock

    def run(self) -> SimulationRunSummary:
        due = self._ledger.list_due_accounts(self._clock(), self._batch_limit)
        return _run_batch(
            self.task_name, due, self.run_for_account, on_failure=self._defer
        )

    def run_for_account(self, account_id: int, force: bool = False) -> MutationResult:
        """Run the tick for one account.

        The eligibility poll happened outside the lock, so every condition
        is checked again here. `force` skips only the due-time check.
        """

        def decide(ctx: MutationContext) -> Optional[BalanceChange]:
            account = ctx.account
            state = account.simulation
            if not state.enabled or state.paused:
                return None
            if not account.is_active or account.balance <= ZERO:
                return None
            if not force and (state.next_run_at is None or state.next_run_at > ctx.now):
                return None

            next_state = replace(
                state, last_run_at=ctx.now, next_run_at=ctx.now + self._interval
            )
            before = account.balance
            after = apply_growth(before, self._rate)
            profit = after - before
            if profit <= ZERO:
                # Too small to grow; still move it out of the due set.
                ctx.uow.update_simulation(account.id, next_state)
                return None
            return BalanceChange(
                new_balance=after,
                reason="simulation_tick",
                event_data={"profit": profit},
                trades=[
                    TradeRecord(
                        account_id=account.id,
                        trade_type=TradeType.SIMULATED,
                        asset=PROFIT_ASSET,
                        quantity=profit,
                        price=Decimal("1"),
                        total=profit,
                        balance_before=before,
                        balance_after=after,
                        is_simulated=True,
                        created_at=ctx.now,
                    )
                ],
                simulation=next_state,
                reallocate=True,
                details={"profit": profit},
            )

        return self._mutator.apply(account_id, decide)

    def _defer(self, account_id: int) -> None:
        """Move a failing account's next run one interval out of the due set."""
        try:
            with self._ledger.transaction() as uow:
                account = uow.lock_account(account_id)
                uow.update_simulation(
                    account_id,
                    replace(
                        account.simulation,
                        next_run_at=self._clock() + self._interval,
                    ),
                )
        except Exception:
            logger.exception("Could not defer tick for account=%s", account_id)
