"""
Data Transfer Objects for the accounts application layer.

DTOs carry data between the interface and application layers.
They are plain dataclasses with no behavior.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from coinvault.domain.accounts.entities import (
    Account,
    Portfolio,
    TransactionRecord,
    Withdrawal,
)


@dataclass(frozen=True)
class MutationResult:
    """Outcome of one BalanceMutator.apply call.

    Attributes:
        account_id: Account that was locked.
        applied: False when the decision was a no-op and nothing was written.
        balance_before: Balance read under the lock.
        balance_after: Balance committed (equals balance_before on no-op).
        loss_recorded: True when a loss trade was appended.
        details: Caller-specific data produced inside the transaction.
    """

    account_id: int
    applied: bool
    balance_before: Decimal
    balance_after: Decimal
    loss_recorded: bool = False
    details: dict = field(default_factory=dict)


@dataclass(frozen=True)
class RequestWithdrawalCommand:
    """Input DTO for a user withdrawal request.

    Attributes:
        account_id: Verified account id of the requester.
        amount: Amount to withdraw, excluding the fee.
        crypto_type: Asset symbol the user wants to receive.
        crypto_address: Destination address.
    """

    account_id: int
    amount: Decimal
    crypto_type: str
    crypto_address: str


@dataclass(frozen=True)
class WithdrawalActionCommand:
    """Input DTO for a withdrawal state transition.

    Attributes:
        withdrawal_id: Target withdrawal.
        actor: Admin identity for audit, or None for user actions.
        account_id: Owner check for user actions; None for admin actions.
        reason: Failure reason stored on the row (fail only).
    """

    withdrawal_id: int
    actor: Optional[str] = None
    account_id: Optional[int] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class WithdrawalResult:
    withdrawal: Withdrawal
    balance: Optional[Decimal] = None
    changed: bool = True
    refunded: bool = False


@dataclass(frozen=True)
class RequestDepositCommand:
    account_id: int
    amount: Decimal
    currency: str = "USD"


@dataclass(frozen=True)
class DepositActionCommand:
    transaction_id: int
    actor: Optional[str] = None


@dataclass(frozen=True)
class DepositApprovalResult:
    """Output DTO for deposit approval.

    Attributes:
        transaction_id: The approved deposit transaction.
        account_id: Owner of the deposit.
        already_completed: True if the call was an idempotent no-op.
        first_deposit: True if this approval bootstrapped the simulator.
        balance: Balance after the approval.
    """

    transaction_id: int
    account_id: int
    already_completed: bool
    first_deposit: bool
    balance: Decimal


@dataclass(frozen=True)
class SetBalanceCommand:
    """Input DTO for an administrative balance override.

    Attributes:
        account_id: Target account.
        amount: New absolute balance.
        reason: Free-text reason kept in the audit row.
        tax_id: Optional tax identifier stored before the loss rule runs.
        log_transaction: Record an adjustment ledger entry for the delta.
        actor: Admin identity for audit.
    """

    account_id: int
    amount: Decimal
    reason: str
    tax_id: Optional[str] = None
    log_transaction: bool = True
    actor: Optional[str] = None


@dataclass(frozen=True)
class CreditCommand:
    account_id: int
    amount: Decimal
    currency: str = "USD"
    reference: Optional[str] = None
    actor: Optional[str] = None


@dataclass(frozen=True)
class StartSimulationCommand:
    account_id: int
    delay_minutes: int = 5
    actor: Optional[str] = None


@dataclass(frozen=True)
class AccountSummary:
    account: Account
    portfolio: Optional[Portfolio]


@dataclass(frozen=True)
class DepositRequestResult:
    transaction: TransactionRecord


@dataclass
class SimulationRunSummary:
    """Counters for one simulator batch.

    Attributes:
        task: Simulator name.
        processed: Accounts attempted.
        succeeded: Accounts whose balance changed.
        skipped: Accounts that were no longer eligible under the lock.
        failed: Accounts whose transaction raised and rolled back.
        gated: True when the batch did not run (e.g. not a trading day).
    """

    task: str
    processed: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    gated: bool = False
    failures: list[dict] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "task": self.task,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "gated": self.gated,
            "failures": list(self.failures),
        }
