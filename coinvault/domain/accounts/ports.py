"""
Port interfaces (ABCs) for the accounts bounded context.

Ports define the contracts the application layer requires from the
outside world. Infrastructure adapters implement them.

Every balance write goes through a LedgerUnitOfWork obtained from
Ledger.transaction(); only BalanceMutator calls write_balance().
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from coinvault.domain.accounts.entities import (
    Account,
    Asset,
    GrowthStats,
    Portfolio,
    PriceQuote,
    SimulationState,
    TradeRecord,
    TransactionRecord,
    TransactionStatus,
    TransactionType,
    Withdrawal,
    WithdrawalStatus,
)


class LedgerUnitOfWork(ABC):
    """Operations available inside one database transaction.

    Lock order is fixed: account row, then portfolio row, then any
    withdrawal or transaction row.
    """

    @abstractmethod
    def lock_account(self, account_id: int) -> Account:
        """Lock and return the account row.

        Raises:
            AccountNotFoundError: If the account does not exist.
        """
        raise NotImplementedError

    @abstractmethod
    def lock_portfolio(self, account_id: int) -> Portfolio:
        """Lock and return the portfolio row, creating an empty one if missing."""
        raise NotImplementedError

    @abstractmethod
    def write_balance(self, account_id: int, amount: Decimal) -> None:
        """Write `balance` and `portfolio_value` to the same value."""
        raise NotImplementedError

    @abstractmethod
    def write_portfolio(
        self, account_id: int, holdings: dict[Asset, Decimal], usd_value: Decimal
    ) -> None:
        raise NotImplementedError

    @abstractmethod
    def update_tax_id(self, account_id: int, tax_id: Optional[str]) -> None:
        raise NotImplementedError

    @abstractmethod
    def update_simulation(self, account_id: int, state: SimulationState) -> None:
        raise NotImplementedError

    @abstractmethod
    def set_active(self, account_id: int, active: bool, at: datetime) -> None:
        raise NotImplementedError

    @abstractmethod
    def append_trade(self, trade: TradeRecord) -> TradeRecord:
        raise NotImplementedError

    @abstractmethod
    def append_transaction(self, record: TransactionRecord) -> TransactionRecord:
        raise NotImplementedError

    @abstractmethod
    def lock_transaction(self, transaction_id: int) -> Optional[TransactionRecord]:
        raise NotImplementedError

    @abstractmethod
    def update_transaction_status(
        self, transaction_id: int, status: TransactionStatus
    ) -> None:
        raise NotImplementedError

    @abstractmethod
    def update_transaction_status_by_reference(
        self, reference: str, status: TransactionStatus
    ) -> int:
        raise NotImplementedError

    @abstractmethod
    def count_completed_deposits(self, account_id: int) -> int:
        raise NotImplementedError

    @abstractmethod
    def insert_withdrawal(
        self,
        account_id: int,
        amount: Decimal,
        fee_amount: Decimal,
        fee_rate: Decimal,
        fee_currency: str,
        crypto_type: str,
        crypto_address: str,
        balance_snapshot: Decimal,
    ) -> Withdrawal:
        raise NotImplementedError

    @abstractmethod
    def lock_withdrawal(self, withdrawal_id: int) -> Optional[Withdrawal]:
        raise NotImplementedError

    @abstractmethod
    def update_withdrawal(self, withdrawal_id: int, **changes: Any) -> Withdrawal:
        raise NotImplementedError

    @abstractmethod
    def delete_withdrawal(self, withdrawal_id: int) -> None:
        raise NotImplementedError

    @abstractmethod
    def record_admin_action(self, action: str, details: dict) -> None:
        raise NotImplementedError


class Ledger(ABC):
    """Port for the account ledger: reads plus a transaction factory."""

    @abstractmethod
    def transaction(self) -> AbstractContextManager[LedgerUnitOfWork]:
        """Open a transaction. Commits on normal exit, rolls back on error."""
        raise NotImplementedError

    @abstractmethod
    def create_account(
        self, email: str, name: str, tax_id: Optional[str] = None
    ) -> Account:
        raise NotImplementedError

    @abstractmethod
    def get_account(self, account_id: int) -> Optional[Account]:
        raise NotImplementedError

    @abstractmethod
    def get_portfolio(self, account_id: int) -> Optional[Portfolio]:
        raise NotImplementedError

    @abstractmethod
    def get_transaction(self, transaction_id: int) -> Optional[TransactionRecord]:
        raise NotImplementedError

    @abstractmethod
    def get_withdrawal(self, withdrawal_id: int) -> Optional[Withdrawal]:
        raise NotImplementedError

    @abstractmethod
    def list_withdrawals(
        self,
        account_id: Optional[int] = None,
        status: Optional[WithdrawalStatus] = None,
        limit: int = 50,
    ) -> list[Withdrawal]:
        """Return withdrawals newest first."""
        raise NotImplementedError

    @abstractmethod
    def list_transactions(
        self,
        account_id: Optional[int] = None,
        transaction_type: Optional[TransactionType] = None,
        status: Optional[TransactionStatus] = None,
        limit: int = 50,
    ) -> list[TransactionRecord]:
        """Return ledger transactions newest first."""
        raise NotImplementedError

    @abstractmethod
    def list_trades(
        self, account_id: int, simulated_only: bool = False, limit: int = 50
    ) -> list[TradeRecord]:
        """Return trades newest first."""
        raise NotImplementedError

    @abstractmethod
    def growth_stats(self, account_id: int) -> GrowthStats:
        raise NotImplementedError

    @abstractmethod
    def list_simulation_accounts(self) -> list[int]:
        """Ids of active accounts with the simulator enabled."""
        raise NotImplementedError

    @abstractmethod
    def list_due_accounts(self, now: datetime, limit: int) -> list[int]:
        """Ids of accounts whose per-account tick is due at `now`."""
        raise NotImplementedError

    @abstractmethod
    def purge_trades(self, older_than: Optional[datetime] = None) -> int:
        """Delete simulated trades created before `older_than`.

        With `older_than=None` every trade is deleted (administrative purge).
        Returns the number of rows removed.
        """
        raise NotImplementedError


class PriceSource(ABC):
    """Port for an upstream market price feed."""

    @abstractmethod
    def fetch_prices(self, assets: tuple[Asset, ...]) -> dict[Asset, Decimal]:
        """Return USD prices for as many of `assets` as the feed knows."""
        raise NotImplementedError


class PriceOracle(ABC):
    """Port for the last-known USD price of each asset."""

    @abstractmethod
    def get_price(self, asset: Asset) -> PriceQuote:
        """Return a positive price.

        Raises:
            PriceUnavailableError: If no positive price is known.
        """
        raise NotImplementedError

    def get_prices(self, assets: tuple[Asset, ...]) -> dict[Asset, Decimal]:
        return {asset: self.get_price(asset).price for asset in assets}


class ChangeNotifier(ABC):
    """Port for pushing committed balance changes to connected clients."""

    @abstractmethod
    def publish(self, account_id: int, event_type: str, payload: dict) -> int:
        """Fan an event out to the account's subscribers without blocking.

        Returns:
            Number of subscribers the event was handed to.
        """
        raise NotImplementedError
