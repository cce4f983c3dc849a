"""
Use case group: Withdrawal State Machine.

Input: RequestWithdrawalCommand, WithdrawalActionCommand
Output: WithdrawalResult
Side effects: withdrawal rows, withdrawal ledger transactions, balance
    debits (request) and refunds (fail, delete) through BalanceMutator.
Failure cases: InvalidAmountError, InvalidWithdrawalRequestError,
    InsufficientFundsError, WithdrawalNotFoundError,
    InvalidWithdrawalStateError, AccountInactiveError.

Lock order is always account row, portfolio row, withdrawal row.
"""

import logging
from decimal import Decimal
from typing import Callable, Optional

from coinvault.application.accounts.balance_mutator import (
    BalanceChange,
    BalanceMutator,
    MutationContext,
    utcnow,
)
from coinvault.application.accounts.dtos import (
    RequestWithdrawalCommand,
    WithdrawalActionCommand,
    WithdrawalResult,
)
from coinvault.domain.accounts import withdrawal_rules
from coinvault.domain.accounts.entities import (
    FeeStatus,
    TransactionRecord,
    TransactionStatus,
    TransactionType,
    Withdrawal,
    WithdrawalStatus,
    quantize_money,
)
from coinvault.domain.accounts.errors import (
    AccountInactiveError,
    InsufficientFundsError,
    WithdrawalNotFoundError,
)
from coinvault.domain.accounts.ports import ChangeNotifier, Ledger, LedgerUnitOfWork

logger = logging.getLogger(__name__)

USER_LIST_LIMIT = 20


def withdrawal_reference(withdrawal_id: int) -> str:
    return f"withdrawal-{withdrawal_id}"


class WithdrawalWorkflow:
    """Orchestrates every withdrawal transition.

    Balance-affecting transitions (request, fail, delete) run inside
    BalanceMutator.apply. Fee and approval transitions lock the account
    and the withdrawal directly and never touch the balance.
    """

    def __init__(
        self,
        ledger: Ledger,
        mutator: BalanceMutator,
        fee_rate: Decimal,
        fee_currency: str = "USDT",
        notifier: Optional[ChangeNotifier] = None,
    ) -> None:
        self._ledger = ledger
        self._mutator = mutator
        self._fee_rate = fee_rate
        self._fee_currency = fee_currency
        self._notifier = notifier

    # ------------------------------------------------------------------
    # User operations
    # ------------------------------------------------------------------

    def request(self, command: RequestWithdrawalCommand) -> WithdrawalResult:
        """Create a withdrawal and debit amount + fee.

        Raises:
            InsufficientFundsError: If balance < amount + fee. Nothing is written.
        """
        asset = withdrawal_rules.validate_request(
            command.amount, command.crypto_type, command.crypto_address
        )
        amount = quantize_money(command.amount)
        fee = withdrawal_rules.compute_fee(amount, self._fee_rate)
        total = amount + fee
        logger.info(
            "Withdrawal requested: account=%s amount=%s fee=%s",
            command.account_id,
            amount,
            fee,
        )

        def decide(ctx: MutationContext) -> BalanceChange:
            if not ctx.account.is_active:
                raise AccountInactiveError(ctx.account.id)
            if ctx.account.balance < total:
                raise InsufficientFundsError(required=total, available=ctx.account.balance)

            withdrawal = ctx.uow.insert_withdrawal(
                account_id=ctx.account.id,
                amount=amount,
                fee_amount=fee,
                fee_rate=self._fee_rate,
                fee_currency=self._fee_currency,
                crypto_type=asset.value,
                crypto_address=command.crypto_address,
                balance_snapshot=ctx.account.balance,
            )
            return BalanceChange(
                new_balance=ctx.account.balance - total,
                reason="withdrawal_request",
                event_data=_event_fields(withdrawal),
                transactions=[
                    TransactionRecord(
                        account_id=ctx.account.id,
                        transaction_type=TransactionType.WITHDRAWAL,
                        amount=amount,
                        currency=asset.value,
                        status=TransactionStatus.PENDING,
                        reference=withdrawal_reference(withdrawal.id),
                    )
                ],
                details={"withdrawal": withdrawal},
            )

        result = self._mutator.apply(command.account_id, decide)
        return WithdrawalResult(
            withdrawal=result.details["withdrawal"], balance=result.balance_after
        )

    def acknowledge_fee(self, command: WithdrawalActionCommand) -> WithdrawalResult:
        """User confirms the fee has been sent: required -> submitted."""

        def transition(uow: LedgerUnitOfWork, withdrawal: Withdrawal) -> Withdrawal:
            withdrawal_rules.check_acknowledge(withdrawal)
            return uow.update_withdrawal(
                withdrawal.id, fee_status=FeeStatus.SUBMITTED
            )

        return self._transition(command, transition, audit_action=None)

    def get_for_account(self, account_id: int, withdrawal_id: int) -> Withdrawal:
        withdrawal = self._ledger.get_withdrawal(withdrawal_id)
        if withdrawal is None or withdrawal.account_id != account_id:
            raise WithdrawalNotFoundError(withdrawal_id)
        return withdrawal

    def list_for_account(self, account_id: int) -> list[Withdrawal]:
        return self._ledger.list_withdrawals(account_id=account_id, limit=USER_LIST_LIMIT)

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    def list_all(
        self, status: Optional[WithdrawalStatus] = None, limit: int = 100
    ) -> list[Withdrawal]:
        return self._ledger.list_withdrawals(status=status, limit=limit)

    def confirm_fee(self, command: WithdrawalActionCommand) -> WithdrawalResult:
        """Admin confirms fee receipt: pending/submitted -> processing/confirmed."""

        def transition(uow: LedgerUnitOfWork, withdrawal: Withdrawal) -> Withdrawal:
            withdrawal_rules.check_confirm_fee(withdrawal)
            return uow.update_withdrawal(
                withdrawal.id,
                fee_status=FeeStatus.CONFIRMED,
                status=WithdrawalStatus.PROCESSING,
                fee_confirmed_by=command.actor,
                fee_confirmed_at=utcnow(),
            )

        return self._transition(command, transition, audit_action="withdrawal_fee_confirmed")

    def approve(self, command: WithdrawalActionCommand) -> WithdrawalResult:
        """Admin approves a processing withdrawal. Completed ones are a no-op."""

        def transition(uow: LedgerUnitOfWork, withdrawal: Withdrawal) -> Optional[Withdrawal]:
            if not withdrawal_rules.check_approve(withdrawal):
                return None
            uow.update_transaction_status_by_reference(
                withdrawal_reference(withdrawal.id), TransactionStatus.COMPLETED
            )
            return uow.update_withdrawal(
                withdrawal.id,
                status=WithdrawalStatus.COMPLETED,
                processed_at=utcnow(),
            )

        return self._transition(command, transition, audit_action="withdrawal_approved")

    def fail(self, command: WithdrawalActionCommand) -> WithdrawalResult:
        """Admin fails a pending or processing withdrawal and refunds amount + fee."""
        account_id = self._owner_of(command.withdrawal_id)
        outcome: dict = {}

        def decide(ctx: MutationContext) -> Optional[BalanceChange]:
            withdrawal = _lock_withdrawal(ctx.uow, command.withdrawal_id, account_id)
            outcome["withdrawal"] = withdrawal
            if not withdrawal_rules.check_fail(withdrawal):
                return None

            ctx.uow.update_transaction_status_by_reference(
                withdrawal_reference(withdrawal.id), TransactionStatus.FAILED
            )
            failed = ctx.uow.update_withdrawal(
                withdrawal.id,
                status=WithdrawalStatus.FAILED,
                error_message=command.reason or "Withdrawal failed",
                processed_at=ctx.now,
            )
            outcome["withdrawal"] = failed
            return BalanceChange(
                new_balance=ctx.account.balance + withdrawal.total_debit,
                reason="withdrawal_refund",
                event_data=_event_fields(failed),
                audit_action="withdrawal_failed",
                audit_details={
                    "withdrawal_id": withdrawal.id,
                    "refund": str(withdrawal.total_debit),
                    "actor": command.actor,
                },
            )

        result = self._mutator.apply(account_id, decide)
        return WithdrawalResult(
            withdrawal=outcome["withdrawal"],
            balance=result.balance_after,
            changed=result.applied,
            refunded=result.applied,
        )

    def delete(self, command: WithdrawalActionCommand) -> WithdrawalResult:
        """Remove a withdrawal, refunding it unless completed or already failed."""
        account_id = self._owner_of(command.withdrawal_id)
        outcome: dict = {}

        def decide(ctx: MutationContext) -> Optional[BalanceChange]:
            withdrawal = _lock_withdrawal(ctx.uow, command.withdrawal_id, account_id)
            outcome["withdrawal"] = withdrawal
            refund = withdrawal_rules.refund_on_delete(withdrawal)
            if refund:
                ctx.uow.update_transaction_status_by_reference(
                    withdrawal_reference(withdrawal.id), TransactionStatus.FAILED
                )
            ctx.uow.delete_withdrawal(withdrawal.id)
            if not refund:
                ctx.uow.record_admin_action(
                    "withdrawal_deleted",
                    {"withdrawal_id": withdrawal.id, "refund": "0", "actor": command.actor},
                )
                return None
            return BalanceChange(
                new_balance=ctx.account.balance + withdrawal.total_debit,
                reason="withdrawal_deleted",
                event_data={"withdrawal_id": withdrawal.id, "status": "deleted"},
                audit_action="withdrawal_deleted",
                audit_details={
                    "withdrawal_id": withdrawal.id,
                    "refund": str(withdrawal.total_debit),
                    "actor": command.actor,
                },
            )

        result = self._mutator.apply(account_id, decide)
        return WithdrawalResult(
            withdrawal=outcome["withdrawal"],
            balance=result.balance_after,
            refunded=result.applied,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _owner_of(self, withdrawal_id: int) -> int:
        withdrawal = self._ledger.get_withdrawal(withdrawal_id)
        if withdrawal is None:
            raise WithdrawalNotFoundError(withdrawal_id)
        return withdrawal.account_id

    def _transition(
        self,
        command: WithdrawalActionCommand,
        transition: Callable[[LedgerUnitOfWork, Withdrawal], Optional[Withdrawal]],
        audit_action: Optional[str],
    ) -> WithdrawalResult:
        account_id = self._owner_of(command.withdrawal_id)
        if command.account_id is not None and command.account_id != account_id:
            raise WithdrawalNotFoundError(command.withdrawal_id)

        with self._ledger.transaction() as uow:
            uow.lock_account(account_id)
            withdrawal = _lock_withdrawal(uow, command.withdrawal_id, account_id)
            updated = transition(uow, withdrawal)
            if updated is not None and audit_action:
                uow.record_admin_action(
                    audit_action,
                    {
                        "withdrawal_id": withdrawal.id,
                        "account_id": account_id,
                        "actor": command.actor,
                    },
                )

        if updated is None:
            logger.info("Withdrawal %s unchanged (already final)", withdrawal.id)
            return WithdrawalResult(withdrawal=withdrawal, changed=False)

        logger.info(
            "Withdrawal %s -> %s/%s",
            updated.id,
            updated.status.value,
            updated.fee_status.value,
        )
        self._notify(updated)
        return WithdrawalResult(withdrawal=updated)

    def _notify(self, withdrawal: Withdrawal) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.publish(
                withdrawal.account_id, "withdrawal_update", _event_fields(withdrawal)
            )
        except Exception:
            logger.exception(
                "Withdrawal notification failed for account=%s", withdrawal.account_id
            )


def _lock_withdrawal(
    uow: LedgerUnitOfWork, withdrawal_id: int, account_id: int
) -> Withdrawal:
    withdrawal = uow.lock_withdrawal(withdrawal_id)
    if withdrawal is None or withdrawal.account_id != account_id:
        raise WithdrawalNotFoundError(withdrawal_id)
    return withdrawal


def _event_fields(withdrawal: Withdrawal) -> dict:
    return {
        "withdrawal_id": withdrawal.id,
        "status": withdrawal.status.value,
        "fee_status": withdrawal.fee_status.value,
        "amount": withdrawal.amount,
        "fee_amount": withdrawal.fee_amount,
    }
