"""
Pydantic schemas for accounts API request/response validation.

These schemas enforce input validation and define the API contract.
Monetary values are Decimals and serialize as strings.
No business logic belongs here.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from coinvault.application.accounts.dtos import MutationResult
from coinvault.domain.accounts.entities import (
    Account,
    GrowthStats,
    Portfolio,
    SimulationState,
    TradeRecord,
    TransactionRecord,
    Withdrawal,
)

AMOUNT_MAX_DIGITS = 20
AMOUNT_DECIMAL_PLACES = 8
CURRENCY_PATTERN = r"^[A-Za-z]{3,10}$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class ErrorResponse(BaseModel):
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    version: str
    scheduler_running: bool = False


# ── Accounts ──────────────────────────────────────────────────────


class SimulationStateResponse(BaseModel):
    enabled: bool
    paused: bool
    next_run_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    started_at: Optional[datetime] = None

    @classmethod
    def from_state(cls, state: SimulationState) -> "SimulationStateResponse":
        return cls(
            enabled=state.enabled,
            paused=state.paused,
            next_run_at=state.next_run_at,
            last_run_at=state.last_run_at,
            started_at=state.started_at,
        )


class AccountResponse(BaseModel):
    """Balance view of one account.

    Attributes:
        balance: Current balance. Always equal to portfolio_value.
        holdings: Asset symbol to quantity.
        has_tax_id: Whether a tax identifier is on file (value never returned).
    """

    id: int
    email: str
    name: str
    balance: Decimal
    portfolio_value: Decimal
    is_active: bool
    has_tax_id: bool
    holdings: dict[str, Decimal] = Field(default_factory=dict)
    simulation: SimulationStateResponse

    @classmethod
    def from_entities(
        cls, account: Account, portfolio: Optional[Portfolio] = None
    ) -> "AccountResponse":
        holdings = {}
        if portfolio is not None:
            holdings = {asset.value: qty for asset, qty in portfolio.holdings.items()}
        return cls(
            id=account.id,
            email=account.email,
            name=account.name,
            balance=account.balance,
            portfolio_value=account.portfolio_value,
            is_active=account.is_active,
            has_tax_id=account.has_tax_id,
            holdings=holdings,
            simulation=SimulationStateResponse.from_state(account.simulation),
        )


class RegisterAccountRequest(BaseModel):
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    name: str = Field(..., min_length=1, max_length=255)
    tax_id: Optional[str] = Field(None, max_length=64)


class MutationResponse(BaseModel):
    account_id: int
    applied: bool
    balance_before: Decimal
    balance_after: Decimal
    loss_recorded: bool

    @classmethod
    def from_result(cls, result: MutationResult) -> "MutationResponse":
        return cls(
            account_id=result.account_id,
            applied=result.applied,
            balance_before=result.balance_before,
            balance_after=result.balance_after,
            loss_recorded=result.loss_recorded,
        )


class SetBalanceRequest(BaseModel):
    """Request schema for the admin balance override.

    Attributes:
        amount: New absolute balance (>= 0).
        reason: Kept in the audit trail and adjustment reference.
        tax_id: Optional tax identifier, stored before the loss rule runs.
        log_transaction: Record an adjustment ledger entry for the delta.
    """

    amount: Decimal = Field(
        ..., ge=0, max_digits=AMOUNT_MAX_DIGITS, decimal_places=AMOUNT_DECIMAL_PLACES
    )
    reason: str = Field("admin override", min_length=1, max_length=200)
    tax_id: Optional[str] = Field(None, max_length=64)
    log_transaction: bool = True


class CreditRequest(BaseModel):
    account_id: int = Field(..., ge=1)
    amount: Decimal = Field(
        ..., gt=0, max_digits=AMOUNT_MAX_DIGITS, decimal_places=AMOUNT_DECIMAL_PLACES
    )
    currency: str = Field("USD", pattern=CURRENCY_PATTERN)
    reference: Optional[str] = Field(None, max_length=255)


class StartSimulatorRequest(BaseModel):
    delay_minutes: int = Field(5, ge=0, le=1440)


class TradeResponse(BaseModel):
    id: Optional[int]
    type: str
    asset: str
    quantity: Decimal
    price: Decimal
    total: Decimal
    balance_before: Decimal
    balance_after: Decimal
    is_simulated: bool
    created_at: Optional[datetime]

    @classmethod
    def from_entity(cls, trade: TradeRecord) -> "TradeResponse":
        return cls(
            id=trade.id,
            type=trade.trade_type.value,
            asset=trade.asset,
            quantity=trade.quantity,
            price=trade.price,
            total=trade.total,
            balance_before=trade.balance_before,
            balance_after=trade.balance_after,
            is_simulated=trade.is_simulated,
            created_at=trade.created_at,
        )


class GrowthStatsResponse(BaseModel):
    account_id: int
    trade_count: int
    total_volume: Decimal
    average_gain: Decimal
    peak_balance: Optional[Decimal]
    lowest_balance: Optional[Decimal]

    @classmethod
    def from_entity(cls, stats: GrowthStats) -> "GrowthStatsResponse":
        return cls(
            account_id=stats.account_id,
            trade_count=stats.trade_count,
            total_volume=stats.total_volume,
            average_gain=stats.average_gain,
            peak_balance=stats.peak_balance,
            lowest_balance=stats.lowest_balance,
        )


# ── Ledger transactions / deposits ────────────────────────────────


class TransactionResponse(BaseModel):
    id: Optional[int]
    account_id: int
    type: str
    amount: Decimal
    currency: str
    status: str
    reference: Optional[str]
    created_at: Optional[datetime]

    @classmethod
    def from_entity(cls, record: TransactionRecord) -> "TransactionResponse":
        return cls(
            id=record.id,
            account_id=record.account_id,
            type=record.transaction_type.value,
            amount=record.amount,
            currency=record.currency,
            status=record.status.value,
            reference=record.reference,
            created_at=record.created_at,
        )


class DepositCreateRequest(BaseModel):
    amount: Decimal = Field(
        ..., gt=0, max_digits=AMOUNT_MAX_DIGITS, decimal_places=AMOUNT_DECIMAL_PLACES
    )
    currency: str = Field("USD", pattern=CURRENCY_PATTERN)


class DepositApprovalResponse(BaseModel):
    transaction_id: int
    account_id: int
    already_completed: bool
    first_deposit: bool
    balance: Decimal


# ── Withdrawals ───────────────────────────────────────────────────


class WithdrawalCreateRequest(BaseModel):
    """Request schema for a withdrawal.

    Attributes:
        amount: Amount to receive; the fee is charged on top.
        crypto_type: One of BTC, ETH, USDT, USDC, XRP, ADA.
        crypto_address: Destination address, 20-255 alphanumerics.
    """

    amount: Decimal = Field(
        ..., gt=0, max_digits=AMOUNT_MAX_DIGITS, decimal_places=AMOUNT_DECIMAL_PLACES
    )
    crypto_type: str = Field(..., min_length=2, max_length=10)
    crypto_address: str = Field(..., min_length=1, max_length=255)


class FailWithdrawalRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class WithdrawalResponse(BaseModel):
    id: int
    account_id: int
    amount: Decimal
    fee_amount: Decimal
    fee_rate: Decimal
    fee_currency: str
    fee_status: str
    status: str
    crypto_type: str
    crypto_address: str
    balance_snapshot: Decimal
    error_message: Optional[str] = None
    fee_confirmed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, withdrawal: Withdrawal) -> "WithdrawalResponse":
        return cls(
            id=withdrawal.id,
            account_id=withdrawal.account_id,
            amount=withdrawal.amount,
            fee_amount=withdrawal.fee_amount,
            fee_rate=withdrawal.fee_rate,
            fee_currency=withdrawal.fee_currency,
            fee_status=withdrawal.fee_status.value,
            status=withdrawal.status.value,
            crypto_type=withdrawal.crypto_type,
            crypto_address=withdrawal.crypto_address,
            balance_snapshot=withdrawal.balance_snapshot,
            error_message=withdrawal.error_message,
            fee_confirmed_at=withdrawal.fee_confirmed_at,
            created_at=withdrawal.created_at,
            processed_at=withdrawal.processed_at,
        )


class WithdrawalActionResponse(BaseModel):
    withdrawal: WithdrawalResponse
    balance: Optional[Decimal] = None
    changed: bool = True
    refunded: bool = False


class WithdrawalListResponse(BaseModel):
    withdrawals: list[WithdrawalResponse]


# ── Scheduler ─────────────────────────────────────────────────────


class TaskResultResponse(BaseModel):
    task: str
    status: str
    account_id: Optional[int] = None
    duration_seconds: float
    details: dict
    error: Optional[str] = None


class PurgeResponse(BaseModel):
    removed: int
