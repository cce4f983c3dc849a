"""
Shared fixtures: a file-backed SQLite ledger per test, a reference-price
oracle with prices that divide the allocation weights evenly, a recording
change notifier and a controllable clock.
"""

import random
import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from coinvault.application.accounts.admin_balance import CreditBalanceUseCase
from coinvault.application.accounts.balance_mutator import BalanceMutator
from coinvault.application.accounts.dtos import CreditCommand
from coinvault.application.accounts.portfolio_allocator import PortfolioAllocator
from coinvault.bootstrap import build_services
from coinvault.core.config import Settings
from coinvault.domain.accounts.entities import Asset
from coinvault.domain.accounts.ports import ChangeNotifier
from coinvault.infrastructure.accounts.ledger import SqlLedger
from coinvault.infrastructure.accounts.price_oracle import CachedPriceOracle
from coinvault.infrastructure.db.engine import create_db_engine, init_schema
from coinvault.shared.security.rate_limiting import limiter

TEST_PRICES = {
    Asset.BTC: Decimal("50000"),
    Asset.ETH: Decimal("2500"),
    Asset.USDT: Decimal("1"),
    Asset.USDC: Decimal("1"),
    Asset.XRP: Decimal("2.5"),
    Asset.ADA: Decimal("0.8"),
}

# A Monday.
MONDAY = datetime(2026, 10, 19, 10, 30, tzinfo=timezone.utc)
SATURDAY = datetime(2026, 10, 24, 10, 30, tzinfo=timezone.utc)

ADMIN_KEY = "test-admin-key"
ADDRESS = "bc1qxy2kgdygjrsqtzq2n0yrf2493p83kkfjhx0wlh"


class RecordingNotifier(ChangeNotifier):
    def __init__(self) -> None:
        self.events: list[tuple[int, str, dict]] = []
        self._lock = threading.Lock()

    def publish(self, account_id: int, event_type: str, payload: dict) -> int:
        with self._lock:
            self.events.append((account_id, event_type, payload))
        return 1


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture(autouse=True)
def _disable_rate_limits():
    limiter.enabled = False
    yield
    limiter.enabled = True


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'ledger.db'}",
        admin_api_key=ADMIN_KEY,
        scheduler_enabled=False,
        rate_limit_enabled=False,
        price_feed_enabled=False,
        log_level="WARNING",
    )


@pytest.fixture
def engine(settings):
    engine = create_db_engine(settings.database_url)
    init_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def ledger(engine) -> SqlLedger:
    return SqlLedger(engine)


@pytest.fixture
def oracle() -> CachedPriceOracle:
    return CachedPriceOracle(source=None, reference_prices=TEST_PRICES)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(MONDAY)


@pytest.fixture
def mutator(ledger, oracle, notifier, clock) -> BalanceMutator:
    return BalanceMutator(ledger, PortfolioAllocator(oracle), notifier=notifier, clock=clock)


@pytest.fixture
def make_account(ledger, mutator):
    """Create an account, optionally funded through a plain credit."""
    counter = {"n": 0}

    def _make(balance: str | None = None, tax_id: str | None = None):
        counter["n"] += 1
        account = ledger.create_account(
            email=f"user{counter['n']}@example.com", name=f"User {counter['n']}", tax_id=tax_id
        )
        if balance is not None:
            CreditBalanceUseCase(mutator).execute(
                CreditCommand(account_id=account.id, amount=Decimal(balance))
            )
        return ledger.get_account(account.id)

    return _make


@pytest.fixture
def services(settings, ledger, oracle):
    return build_services(settings, ledger=ledger, price_oracle=oracle, rng=random.Random(7))
