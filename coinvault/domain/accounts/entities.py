"""
Domain entities for the accounts bounded context.

Entities are snapshots of stored rows as seen inside a transaction.
They contain no framework imports and no IO operations.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional

MONEY_QUANTUM = Decimal("0.00000001")
ZERO = Decimal("0")


def quantize_money(value: Decimal) -> Decimal:
    """Round a monetary amount to the 8 decimal places the ledger stores."""
    return Decimal(value).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


class Asset(Enum):
    """Supported portfolio assets."""

    BTC = "BTC"
    ETH = "ETH"
    USDT = "USDT"
    USDC = "USDC"
    XRP = "XRP"
    ADA = "ADA"

    @property
    def column(self) -> str:
        return self.value.lower()

    @classmethod
    def parse(cls, symbol: str) -> "Asset":
        return cls(symbol.strip().upper())


SUPPORTED_ASSETS: tuple[Asset, ...] = tuple(Asset)


class TradeType(Enum):
    """Kinds of rows in the append-only trade log."""

    BUY = "buy"
    SELL = "sell"
    SIMULATED = "simulated"
    LOSS = "loss"


class TransactionType(Enum):
    """Kinds of ledger transactions."""

    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    CREDIT = "credit"
    ADJUSTMENT = "adjustment"
    TRADE = "trade"


class TransactionStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class WithdrawalStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class FeeStatus(Enum):
    REQUIRED = "required"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"


@dataclass(frozen=True)
class SimulationState:
    """Per-account simulator flags and schedule."""

    enabled: bool = False
    paused: bool = False
    next_run_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    started_at: Optional[datetime] = None


@dataclass(frozen=True)
class Account:
    """A user's balance row.

    `balance` and `portfolio_value` are always equal after a commit.
    """

    id: int
    email: str
    name: str
    balance: Decimal
    portfolio_value: Decimal
    tax_id: Optional[str]
    is_active: bool
    simulation: SimulationState = field(default_factory=SimulationState)
    created_at: Optional[datetime] = None

    @property
    def has_tax_id(self) -> bool:
        return bool(self.tax_id and self.tax_id.strip())


@dataclass(frozen=True)
class Portfolio:
    """Per-asset holdings of one account."""

    account_id: int
    holdings: dict[Asset, Decimal]
    usd_value: Decimal
    updated_at: Optional[datetime] = None

    def quantity(self, asset: Asset) -> Decimal:
        return self.holdings.get(asset, ZERO)


@dataclass(frozen=True)
class TradeRecord:
    """An append-only trade log entry. `id` is None until persisted."""

    account_id: int
    trade_type: TradeType
    asset: str
    quantity: Decimal
    price: Decimal
    total: Decimal
    balance_before: Decimal
    balance_after: Decimal
    is_simulated: bool
    status: str = "completed"
    id: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class TransactionRecord:
    """A ledger transaction (deposit, withdrawal, credit, adjustment, trade)."""

    account_id: int
    transaction_type: TransactionType
    amount: Decimal
    status: TransactionStatus
    currency: str = "USD"
    reference: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class Withdrawal:
    """A withdrawal request and its fee workflow state."""

    id: int
    account_id: int
    amount: Decimal
    fee_amount: Decimal
    fee_rate: Decimal
    fee_currency: str
    fee_status: FeeStatus
    status: WithdrawalStatus
    crypto_type: str
    crypto_address: str
    balance_snapshot: Decimal
    error_message: Optional[str] = None
    fee_confirmed_by: Optional[str] = None
    fee_confirmed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    @property
    def total_debit(self) -> Decimal:
        return self.amount + self.fee_amount


@dataclass(frozen=True)
class GrowthStats:
    """Aggregate view of an account's simulated trades."""

    account_id: int
    trade_count: int
    total_volume: Decimal
    average_gain: Decimal
    peak_balance: Optional[Decimal]
    lowest_balance: Optional[Decimal]


@dataclass(frozen=True)
class PriceQuote:
    """A unit price in USD. `stale` marks a cached or reference fallback."""

    asset: Asset
    price: Decimal
    as_of: Optional[datetime]
    stale: bool = False
