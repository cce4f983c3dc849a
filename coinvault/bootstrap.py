"""
Composition root for the balance engine.

Builds every service object once per application. Nothing here holds
module-level state; the FastAPI app keeps the Services instance on
app.state and the dependency functions read it from there.
"""

import logging
import random
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from coinvault.application.accounts.account_directory import AccountDirectory
from coinvault.application.accounts.admin_balance import (
    CreditBalanceUseCase,
    SetBalanceUseCase,
)
from coinvault.application.accounts.balance_mutator import BalanceMutator
from coinvault.application.accounts.deposits import DepositWorkflow
from coinvault.application.accounts.portfolio_allocator import PortfolioAllocator
from coinvault.application.accounts.simulator_control import SimulatorControl
from coinvault.application.accounts.simulators import GrowthSimulator, TickSimulator
from coinvault.application.accounts.trade_retention import TradeRetention
from coinvault.application.accounts.withdrawals import WithdrawalWorkflow
from coinvault.core.config import Settings
from coinvault.domain.accounts.growth import build_growth_policy
from coinvault.domain.accounts.ports import Ledger, PriceOracle
from coinvault.infrastructure.accounts.ledger import SqlLedger
from coinvault.infrastructure.accounts.price_oracle import (
    CachedPriceOracle,
    CoinGeckoPriceSource,
)
from coinvault.infrastructure.db.engine import create_db_engine, init_schema
from coinvault.realtime.scheduler import SimulationScheduler
from coinvault.realtime.stream import BalanceBroadcaster

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    engine: Optional[Engine]
    ledger: Ledger
    price_oracle: PriceOracle
    broadcaster: BalanceBroadcaster
    mutator: BalanceMutator
    accounts: AccountDirectory
    withdrawals: WithdrawalWorkflow
    deposits: DepositWorkflow
    set_balance: SetBalanceUseCase
    credit: CreditBalanceUseCase
    simulator_control: SimulatorControl
    growth: GrowthSimulator
    tick: TickSimulator
    retention: TradeRetention
    scheduler: SimulationScheduler


def build_price_oracle(settings: Settings) -> CachedPriceOracle:
    source = None
    if settings.price_feed_enabled:
        source = CoinGeckoPriceSource(
            settings.coingecko_base_url, timeout=settings.price_fetch_timeout_seconds
        )
    return CachedPriceOracle(source=source, ttl_seconds=settings.price_cache_ttl_seconds)


def build_services(
    settings: Settings,
    ledger: Optional[Ledger] = None,
    price_oracle: Optional[PriceOracle] = None,
    rng: Optional[random.Random] = None,
) -> Services:
    """Wire the service graph.

    Args:
        settings: Application settings.
        ledger: Pre-built ledger; when omitted one is created from
            settings.database_url and its schema initialized.
        price_oracle: Pre-built oracle; defaults to the cached oracle.
        rng: Random source for the growth simulator.
    """
    engine = None
    if ledger is None:
        engine = create_db_engine(settings.database_url, echo=settings.database_echo)
        init_schema(engine)
        ledger = SqlLedger(engine)

    price_oracle = price_oracle or build_price_oracle(settings)
    broadcaster = BalanceBroadcaster(max_queue_size=settings.stream_queue_size)
    mutator = BalanceMutator(ledger, PortfolioAllocator(price_oracle), notifier=broadcaster)

    growth = GrowthSimulator(
        ledger,
        mutator,
        build_growth_policy(
            settings.growth_policy,
            settings.growth_boost_min_percent,
            settings.growth_boost_max_percent,
            settings.growth_fixed_rate,
        ),
        trading_days=settings.trading_days,
        timezone_name=settings.trading_timezone,
        rng=rng,
    )
    tick = TickSimulator(
        ledger,
        mutator,
        growth_rate=settings.tick_growth_rate,
        interval_minutes=settings.tick_interval_minutes,
        batch_limit=settings.tick_batch_limit,
    )
    retention = TradeRetention(ledger, retention_hours=settings.trade_retention_hours)

    return Services(
        settings=settings,
        engine=engine,
        ledger=ledger,
        price_oracle=price_oracle,
        broadcaster=broadcaster,
        mutator=mutator,
        accounts=AccountDirectory(ledger),
        withdrawals=WithdrawalWorkflow(
            ledger,
            mutator,
            fee_rate=settings.withdrawal_fee_rate,
            fee_currency=settings.fee_currency,
            notifier=broadcaster,
        ),
        deposits=DepositWorkflow(
            ledger, mutator, start_delay_minutes=settings.first_deposit_start_delay_minutes
        ),
        set_balance=SetBalanceUseCase(mutator),
        credit=CreditBalanceUseCase(mutator),
        simulator_control=SimulatorControl(ledger, mutator),
        growth=growth,
        tick=tick,
        retention=retention,
        scheduler=SimulationScheduler(
            growth,
            tick,
            retention,
            trading_days=settings.trading_days,
            timezone_name=settings.trading_timezone,
            tick_poll_seconds=settings.tick_poll_seconds,
            purge_interval_hours=settings.trade_purge_interval_hours,
        ),
    )
