"""
Use case group: Deposit Approval Workflow.

Input: RequestDepositCommand, DepositActionCommand
Output: DepositRequestResult, DepositApprovalResult
Side effects: deposit ledger transactions; on approval a balance credit
    and, for an account's first completed deposit, simulator bootstrap
    plus portfolio allocation.
Failure cases: InvalidAmountError, DepositNotFoundError,
    InvalidDepositStateError, AccountInactiveError, PriceUnavailableError.
"""

import logging
from datetime import timedelta
from typing import Optional

from coinvault.application.accounts.balance_mutator import (
    BalanceChange,
    BalanceMutator,
    MutationContext,
)
from coinvault.application.accounts.dtos import (
    DepositActionCommand,
    DepositApprovalResult,
    DepositRequestResult,
    RequestDepositCommand,
)
from coinvault.domain.accounts.entities import (
    ZERO,
    SimulationState,
    TransactionRecord,
    TransactionStatus,
    TransactionType,
    quantize_money,
)
from coinvault.domain.accounts.errors import (
    AccountInactiveError,
    DepositNotFoundError,
    InvalidAmountError,
    InvalidDepositStateError,
)
from coinvault.domain.accounts.ports import Ledger

logger = logging.getLogger(__name__)


class DepositWorkflow:
    """Deposit requests and their administrative approval."""

    def __init__(
        self,
        ledger: Ledger,
        mutator: BalanceMutator,
        start_delay_minutes: int = 5,
    ) -> None:
        self._ledger = ledger
        self._mutator = mutator
        self._start_delay = timedelta(minutes=start_delay_minutes)

    def request(self, command: RequestDepositCommand) -> DepositRequestResult:
        """Record a pending deposit. The balance is untouched until approval."""
        if command.amount is None or command.amount <= ZERO:
            raise InvalidAmountError(command.amount)
        amount = quantize_money(command.amount)

        with self._ledger.transaction() as uow:
            account = uow.lock_account(command.account_id)
            if not account.is_active:
                raise AccountInactiveError(account.id)
            record = uow.append_transaction(
                TransactionRecord(
                    account_id=account.id,
                    transaction_type=TransactionType.DEPOSIT,
                    amount=amount,
                    currency=command.currency.upper(),
                    status=TransactionStatus.PENDING,
                    reference=f"deposit-request-{account.id}",
                )
            )
        logger.info(
            "Deposit requested: account=%s amount=%s id=%s",
            command.account_id,
            amount,
            record.id,
        )
        return DepositRequestResult(transaction=record)

    def approve(self, command: DepositActionCommand) -> DepositApprovalResult:
        """Approve a pending deposit and credit the account.

        Approving an already-completed deposit is a no-op. The first
        completed deposit of an account enables its simulator and
        allocates the portfolio; concurrent duplicate approvals serialize
        on the account lock, so the bootstrap happens once.
        """
        account_id = self._owner_of(command.transaction_id)
        outcome: dict = {"first_deposit": False, "already_completed": False}

        def decide(ctx: MutationContext) -> Optional[BalanceChange]:
            deposit = ctx.uow.lock_transaction(command.transaction_id)
            if deposit is None or deposit.transaction_type is not TransactionType.DEPOSIT:
                raise DepositNotFoundError(command.transaction_id)
            if deposit.status is TransactionStatus.COMPLETED:
                outcome["already_completed"] = True
                return None
            if deposit.status is not TransactionStatus.PENDING:
                raise InvalidDepositStateError(deposit.id, deposit.status.value)
            if not ctx.account.is_active:
                raise AccountInactiveError(ctx.account.id)

            first_deposit = ctx.uow.count_completed_deposits(ctx.account.id) == 0
            ctx.uow.update_transaction_status(deposit.id, TransactionStatus.COMPLETED)
            outcome["first_deposit"] = first_deposit

            simulation = None
            if first_deposit:
                current = ctx.account.simulation
                simulation = SimulationState(
                    enabled=True,
                    paused=False,
                    next_run_at=ctx.now + self._start_delay,
                    last_run_at=current.last_run_at,
                    started_at=current.started_at or ctx.now,
                )

            return BalanceChange(
                new_balance=ctx.account.balance + deposit.amount,
                reason="deposit_approved",
                event_type="profile_update",
                event_data={
                    "transaction_id": deposit.id,
                    "amount": deposit.amount,
                    "first_deposit": first_deposit,
                },
                simulation=simulation,
                reallocate=first_deposit,
                audit_action="deposit_approved",
                audit_details={
                    "transaction_id": deposit.id,
                    "amount": str(deposit.amount),
                    "actor": command.actor,
                },
            )

        result = self._mutator.apply(account_id, decide)
        if outcome["first_deposit"]:
            logger.info("First deposit for account=%s, simulator enabled", account_id)
        return DepositApprovalResult(
            transaction_id=command.transaction_id,
            account_id=account_id,
            already_completed=outcome["already_completed"],
            first_deposit=outcome["first_deposit"],
            balance=result.balance_after,
        )

    def reject(self, command: DepositActionCommand) -> TransactionRecord:
        """Mark a pending deposit as failed. No balance effect."""
        account_id = self._owner_of(command.transaction_id)
        with self._ledger.transaction() as uow:
            uow.lock_account(account_id)
            deposit = uow.lock_transaction(command.transaction_id)
            if deposit is None:
                raise DepositNotFoundError(command.transaction_id)
            if deposit.status is not TransactionStatus.PENDING:
                raise InvalidDepositStateError(deposit.id, deposit.status.value)
            uow.update_transaction_status(deposit.id, TransactionStatus.FAILED)
            uow.record_admin_action(
                "deposit_rejected",
                {"transaction_id": deposit.id, "account_id": account_id, "actor": command.actor},
            )
        logger.info("Deposit %s rejected", command.transaction_id)
        return self._ledger.get_transaction(command.transaction_id)

    def list_deposits(
        self, status: Optional[TransactionStatus] = None, limit: int = 100
    ) -> list[TransactionRecord]:
        return self._ledger.list_transactions(
            transaction_type=TransactionType.DEPOSIT, status=status, limit=limit
        )

    def _owner_of(self, transaction_id: int) -> int:
        record = self._ledger.get_transaction(transaction_id)
        if record is None or record.transaction_type is not TransactionType.DEPOSIT:
            raise DepositNotFoundError(transaction_id)
        return record.account_id
