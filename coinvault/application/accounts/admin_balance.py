"""
Use cases: administrative balance override and credit.

SetBalanceUseCase
    Input: SetBalanceCommand
    Output: MutationResult
    Side effects: tax id update, adjustment ledger entry, portfolio
        reallocation, admin audit row, profile_update notification.
    Failure cases: InvalidAmountError, AccountNotFoundError, PriceUnavailableError.

CreditBalanceUseCase
    Input: CreditCommand
    Output: MutationResult
    Side effects: credit ledger entry, admin audit row, balance_updated notification.
    Failure cases: InvalidAmountError, AccountNotFoundError.
"""

import logging

from coinvault.application.accounts.balance_mutator import (
    BalanceChange,
    BalanceMutator,
    MutationContext,
)
from coinvault.application.accounts.dtos import (
    CreditCommand,
    MutationResult,
    SetBalanceCommand,
)
from coinvault.domain.accounts.entities import (
    ZERO,
    TransactionRecord,
    TransactionStatus,
    TransactionType,
    quantize_money,
)
from coinvault.domain.accounts.errors import InvalidAmountError

logger = logging.getLogger(__name__)


class SetBalanceUseCase:
    """Overrides an account balance to an absolute amount."""

    def __init__(self, mutator: BalanceMutator) -> None:
        self._mutator = mutator

    def execute(self, command: SetBalanceCommand) -> MutationResult:
        if command.amount is None or command.amount < ZERO:
            raise InvalidAmountError(command.amount)
        amount = quantize_money(command.amount)
        logger.info(
            "Admin balance override: account=%s amount=%s", command.account_id, amount
        )

        def decide(ctx: MutationContext) -> BalanceChange:
            delta = amount - ctx.account.balance
            records = []
            if command.log_transaction and delta != ZERO:
                records.append(
                    TransactionRecord(
                        account_id=ctx.account.id,
                        transaction_type=TransactionType.ADJUSTMENT,
                        amount=abs(delta),
                        status=TransactionStatus.COMPLETED,
                        reference=f"admin-adjust:{'+' if delta > ZERO else '-'}:{command.reason}"[:255],
                    )
                )
            return BalanceChange(
                new_balance=amount,
                reason="admin_adjust",
                event_type="profile_update",
                event_data={"reason": command.reason},
                transactions=records,
                set_tax_id=command.tax_id is not None,
                tax_id=command.tax_id,
                reallocate=True,
                audit_action="set_balance",
                audit_details={
                    "reason": command.reason,
                    "actor": command.actor,
                    "tax_id_set": command.tax_id is not None,
                },
            )

        return self._mutator.apply(command.account_id, decide)


class CreditBalanceUseCase:
    """Adds a positive amount to an account balance."""

    def __init__(self, mutator: BalanceMutator) -> None:
        self._mutator = mutator

    def execute(self, command: CreditCommand) -> MutationResult:
        if command.amount is None or command.amount <= ZERO:
            raise InvalidAmountError(command.amount)
        amount = quantize_money(command.amount)
        logger.info("Admin credit: account=%s amount=%s", command.account_id, amount)

        def decide(ctx: MutationContext) -> BalanceChange:
            return BalanceChange(
                new_balance=ctx.account.balance + amount,
                reason="admin_credit",
                event_data={"amount": amount},
                transactions=[
                    TransactionRecord(
                        account_id=ctx.account.id,
                        transaction_type=TransactionType.CREDIT,
                        amount=amount,
                        currency=command.currency.upper(),
                        status=TransactionStatus.COMPLETED,
                        reference=command.reference,
                    )
                ],
                audit_action="credit",
                audit_details={
                    "amount": str(amount),
                    "reference": command.reference,
                    "actor": command.actor,
                },
            )

        return self._mutator.apply(command.account_id, decide)
