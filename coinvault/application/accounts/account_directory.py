"""
Account registration, soft disable/enable and read-side queries.

Accounts are never physically deleted. Disabling sets is_active to false,
which removes the account from every simulator batch.
"""

import logging
from typing import Optional

from coinvault.application.accounts.balance_mutator import utcnow
from coinvault.application.accounts.dtos import AccountSummary
from coinvault.domain.accounts.entities import (
    Account,
    GrowthStats,
    TradeRecord,
    TransactionRecord,
)
from coinvault.domain.accounts.errors import AccountNotFoundError
from coinvault.domain.accounts.ports import Ledger

logger = logging.getLogger(__name__)


class AccountDirectory:
    def __init__(self, ledger: Ledger) -> None:
        self._ledger = ledger

    def register(self, email: str, name: str, tax_id: Optional[str] = None) -> Account:
        """Create an account with a zero balance and an empty portfolio."""
        return self._ledger.create_account(
            email=email.strip().lower(), name=name.strip(), tax_id=tax_id
        )

    def set_active(self, account_id: int, active: bool, actor: Optional[str] = None) -> Account:
        now = utcnow()
        with self._ledger.transaction() as uow:
            uow.lock_account(account_id)
            uow.set_active(account_id, active, now)
            uow.record_admin_action(
                "enable_account" if active else "disable_account",
                {"account_id": account_id, "actor": actor},
            )
        logger.info("Account %s %s", account_id, "enabled" if active else "disabled")
        return self.get(account_id)

    def get(self, account_id: int) -> Account:
        account = self._ledger.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    def summary(self, account_id: int) -> AccountSummary:
        account = self.get(account_id)
        return AccountSummary(
            account=account, portfolio=self._ledger.get_portfolio(account_id)
        )

    def growth_trades(self, account_id: int, limit: int = 50) -> list[TradeRecord]:
        self.get(account_id)
        return self._ledger.list_trades(account_id, simulated_only=True, limit=limit)

    def growth_stats(self, account_id: int) -> GrowthStats:
        self.get(account_id)
        return self._ledger.growth_stats(account_id)

    def transactions(self, account_id: int, limit: int = 50) -> list[TransactionRecord]:
        self.get(account_id)
        return self._ledger.list_transactions(account_id=account_id, limit=limit)
