"""
Tests for the simulated-activity jobs: growth, per-account tick,
simulator control and trade retention.
"""

import random
from datetime import timedelta
from decimal import Decimal

import pytest

from coinvault.application.accounts.balance_mutator import BalanceChange
from coinvault.application.accounts.dtos import StartSimulationCommand
from coinvault.application.accounts.simulator_control import SimulatorControl
from coinvault.application.accounts.simulators import (
    PROFIT_ASSET,
    GrowthSimulator,
    TickSimulator,
)
from coinvault.application.accounts.trade_retention import TradeRetention
from coinvault.domain.accounts.entities import TradeType, TransactionType
from coinvault.domain.accounts.errors import AccountInactiveError
from coinvault.domain.accounts.growth import FixedRatePolicy, RandomBoostPolicy

from tests.conftest import SATURDAY


@pytest.fixture
def control(ledger, mutator) -> SimulatorControl:
    return SimulatorControl(ledger, mutator)


@pytest.fixture
def fixed_growth(ledger, mutator, clock) -> GrowthSimulator:
    return GrowthSimulator(
        ledger,
        mutator,
        FixedRatePolicy(Decimal("0.0222")),
        rng=random.Random(3),
        clock=clock,
    )


@pytest.fixture
def tick(ledger, mutator, clock) -> TickSimulator:
    return TickSimulator(
        ledger, mutator, growth_rate=Decimal("0.095"), interval_minutes=60, clock=clock
    )


@pytest.fixture
def running_account(control, make_account):
    """An account with 1000 allocated and the simulator due now."""
    account = make_account("1000")
    control.start(StartSimulationCommand(account_id=account.id, delay_minutes=0))
    return account


class TestSimulatorControl:
    def test_start_enables_and_allocates(self, control, ledger, clock, make_account) -> None:
        account = make_account("1000")

        control.start(StartSimulationCommand(account_id=account.id, delay_minutes=10))

        stored = ledger.get_account(account.id)
        assert stored.simulation.enabled is True
        assert stored.simulation.next_run_at == clock.now + timedelta(minutes=10)
        assert ledger.get_portfolio(account.id).usd_value == Decimal("1000")

    def test_pause(self, control, ledger, running_account) -> None:
        state = control.pause(running_account.id, actor="ops")

        assert state.paused is True
        assert control.state(running_account.id).paused is True

    def test_start_disabled_account_rejected(self, control, services, make_account) -> None:
        account = make_account("10")
        services.accounts.set_active(account.id, False)

        with pytest.raises(AccountInactiveError):
            control.start(StartSimulationCommand(account_id=account.id))


class TestGrowthSimulator:
    """Tests for GrowthSimulator."""

    def test_fixed_rate_tick(self, fixed_growth, ledger, running_account) -> None:
        summary = fixed_growth.run()

        assert summary.succeeded == 1
        stored = ledger.get_account(running_account.id)
        assert stored.balance == Decimal("1022.2")
        assert stored.portfolio_value == stored.balance

        trades = ledger.list_trades(running_account.id, simulated_only=True)
        assert len(trades) == 1
        assert trades[0].trade_type in (TradeType.BUY, TradeType.SELL)
        assert trades[0].total == Decimal("22.2")
        assert trades[0].balance_before == Decimal("1000")
        assert trades[0].balance_after == Decimal("1022.2")

        trade_entries = [
            t for t in ledger.list_transactions(account_id=running_account.id)
            if t.transaction_type is TransactionType.TRADE
        ]
        assert len(trade_entries) == 1
        assert trade_entries[0].amount == Decimal("22.2")

    def test_random_boost_within_range(
        self, ledger, mutator, clock, running_account
    ) -> None:
        growth = GrowthSimulator(
            ledger,
            mutator,
            RandomBoostPolicy(Decimal("0.5"), Decimal("2.5")),
            rng=random.Random(11),
            clock=clock,
        )

        growth.run()

        balance = ledger.get_account(running_account.id).balance
        assert Decimal("1005") <= balance <= Decimal("1025")

    def test_skips_weekend(self, fixed_growth, ledger, clock, running_account) -> None:
        clock.now = SATURDAY

        summary = fixed_growth.run()

        assert summary.gated is True
        assert summary.processed == 0
        assert ledger.get_account(running_account.id).balance == Decimal("1000")

    def test_force_runs_on_weekend(self, fixed_growth, ledger, clock, running_account) -> None:
        clock.now = SATURDAY

        summary = fixed_growth.run(force=True)

        assert summary.succeeded == 1
        assert ledger.get_account(running_account.id).balance == Decimal("1022.2")

    def test_ignores_accounts_without_simulator(self, fixed_growth, ledger, make_account) -> None:
        idle = make_account("500")

        summary = fixed_growth.run()

        assert summary.processed == 0
        assert ledger.get_account(idle.id).balance == Decimal("500")

    def test_disabled_account_skipped(self, fixed_growth, services, ledger, running_account) -> None:
        services.accounts.set_active(running_account.id, False)

        fixed_growth.run()

        assert ledger.get_account(running_account.id).balance == Decimal("1000")


class TestTickSimulator:
    """Tests for TickSimulator."""

    def test_due_account_compounds(self, tick, ledger, clock, running_account) -> None:
        clock.advance(minutes=1)

        summary = tick.run()

        assert summary.succeeded == 1
        stored = ledger.get_account(running_account.id)
        assert stored.balance == Decimal("1095")
        assert stored.portfolio_value == Decimal("1095")
        assert stored.simulation.last_run_at == clock.now
        assert stored.simulation.next_run_at == clock.now + timedelta(minutes=60)

        trades = ledger.list_trades(running_account.id)
        assert len(trades) == 1
        assert trades[0].trade_type is TradeType.SIMULATED
        assert trades[0].asset == PROFIT_ASSET
        assert trades[0].total == Decimal("95")

    def test_not_due_again_until_interval(self, tick, ledger, clock, running_account) -> None:
        clock.advance(minutes=1)
        tick.run()

        clock.advance(minutes=30)
        summary = tick.run()

        assert summary.processed == 0
        assert ledger.get_account(running_account.id).balance == Decimal("1095")

    def test_paused_account_not_ticked(self, tick, control, ledger, clock, running_account) -> None:
        control.pause(running_account.id)
        clock.advance(minutes=1)

        tick.run()

        assert ledger.get_account(running_account.id).balance == Decimal("1000")

    def test_force_single_account(self, tick, control, ledger, make_account) -> None:
        account = make_account("1000")
        control.start(StartSimulationCommand(account_id=account.id, delay_minutes=120))

        assert tick.run_for_account(account.id).applied is False
        assert tick.run_for_account(account.id, force=True).applied is True
        assert ledger.get_account(account.id).balance == Decimal("1095")

    def test_zero_balance_skipped(self, tick, control, ledger, clock, make_account) -> None:
        account = make_account()
        control.start(StartSimulationCommand(account_id=account.id, delay_minutes=0))
        clock.advance(minutes=1)

        result = tick.run_for_account(account.id)

        assert result.applied is False
        assert ledger.list_trades(account.id) == []

    def test_pause_after_poll_is_honoured(self, tick, control, ledger, clock, running_account) -> None:
        clock.advance(minutes=1)
        due = ledger.list_due_accounts(clock.now, 10)
        assert due == [running_account.id]

        control.pause(running_account.id)
        result = tick.run_for_account(due[0])

        assert result.applied is False
        assert ledger.get_account(running_account.id).balance == Decimal("1000")

    def test_disable_after_poll_is_honoured(
        self, tick, services, ledger, clock, running_account
    ) -> None:
        clock.advance(minutes=1)
        due = ledger.list_due_accounts(clock.now, 10)

        services.accounts.set_active(running_account.id, False)
        result = tick.run_for_account(due[0])

        assert result.applied is False
        assert ledger.list_trades(running_account.id) == []

    def test_tiny_balance_is_rescheduled(self, ledger, mutator, control, clock, make_account) -> None:
        tiny = make_account("0.00000004")
        control.start(StartSimulationCommand(account_id=tiny.id, delay_minutes=0))
        clock.advance(minutes=1)
        normal = make_account("1000")
        control.start(StartSimulationCommand(account_id=normal.id, delay_minutes=0))
        clock.advance(minutes=1)
        tick = TickSimulator(
            ledger, mutator, growth_rate=Decimal("0.095"), batch_limit=1, clock=clock
        )

        first = tick.run()
        second = tick.run()

        assert first.skipped == 1
        assert second.succeeded == 1
        assert ledger.get_account(tiny.id).balance == Decimal("0.00000004")
        assert ledger.get_account(tiny.id).simulation.next_run_at == clock.now + timedelta(
            minutes=60
        )
        assert ledger.get_account(normal.id).balance == Decimal("1095")

    def test_failing_account_does_not_stop_batch(
        self, ledger, mutator, control, clock, make_account
    ) -> None:
        broken = make_account("1000")
        healthy = make_account("1000")
        for account in (broken, healthy):
            control.start(StartSimulationCommand(account_id=account.id, delay_minutes=0))
        clock.advance(minutes=1)
        tick = TickSimulator(
            ledger, FailingMutator(mutator, broken.id), growth_rate=Decimal("0.095"), clock=clock
        )

        summary = tick.run()

        assert summary.processed == 2
        assert summary.failed == 1
        assert summary.succeeded == 1
        assert summary.failures[0]["account_id"] == broken.id
        assert ledger.get_account(healthy.id).balance == Decimal("1095")
        assert ledger.get_account(broken.id).balance == Decimal("1000")
        assert ledger.get_account(broken.id).simulation.next_run_at == clock.now + timedelta(
            minutes=60
        )
        assert tick.run().processed == 0


class TestGrowthBatchIsolation:
    def test_failure_on_one_account_is_isolated(
        self, ledger, mutator, clock, running_account, control, make_account
    ) -> None:
        other = make_account("1000")
        control.start(StartSimulationCommand(account_id=other.id, delay_minutes=0))
        growth = GrowthSimulator(
            ledger,
            FailingMutator(mutator, running_account.id),
            FixedRatePolicy(Decimal("0.0222")),
            rng=random.Random(3),
            clock=clock,
        )

        summary = growth.run()

        assert summary.failed == 1
        assert summary.succeeded == 1
        assert ledger.get_account(running_account.id).balance == Decimal("1000")
        assert ledger.get_account(other.id).balance == Decimal("1022.2")


class FailingMutator:
    """Delegates to a real mutator but raises for one account."""

    def __init__(self, inner, failing_account_id: int) -> None:
        self._inner = inner
        self._failing = failing_account_id

    def apply(self, account_id, decide):
        if account_id == self._failing:
            raise RuntimeError("database is locked")
        return self._inner.apply(account_id, decide)


class TestTradeRetention:
    def test_purge_expired_keeps_losses(
        self, ledger, clock, fixed_growth, mutator, running_account
    ) -> None:
        fixed_growth.run()

        mutator.apply(
            running_account.id,
            lambda ctx: BalanceChange(new_balance=Decimal("900"), reason="test"),
        )
        retention = TradeRetention(
            ledger, retention_hours=48, clock=lambda: clock.now + timedelta(days=3)
        )

        removed = retention.purge_expired()

        remaining = ledger.list_trades(running_account.id)
        assert removed == 1
        assert [t.trade_type for t in remaining] == [TradeType.LOSS]

    def test_recent_trades_survive(self, ledger, clock, fixed_growth, running_account) -> None:
        fixed_growth.run()
        retention = TradeRetention(ledger, retention_hours=48, clock=clock)

        assert retention.purge_expired() == 0
        assert len(ledger.list_trades(running_account.id)) == 1

    def test_purge_all(self, ledger, fixed_growth, running_account) -> None:
        fixed_growth.run()

        removed = TradeRetention(ledger).purge_all(actor="ops")

        assert removed == 1
        assert ledger.list_trades(running_account.id) == []
