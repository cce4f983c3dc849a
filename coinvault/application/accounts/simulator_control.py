"""
Administrative control of the per-account simulator.

start() enables the simulator, schedules the first tick and allocates
the current balance, all in one BalanceMutator transaction. pause()
only flips the flag under the account lock.
"""

import logging
from dataclasses import replace
from datetime import timedelta
from typing import Optional

from coinvault.application.accounts.balance_mutator import (
    BalanceChange,
    BalanceMutator,
    MutationContext,
)
from coinvault.application.accounts.dtos import MutationResult, StartSimulationCommand
from coinvault.domain.accounts.entities import SimulationState
from coinvault.domain.accounts.errors import AccountInactiveError, AccountNotFoundError
from coinvault.domain.accounts.ports import Ledger

logger = logging.getLogger(__name__)


class SimulatorControl:
    def __init__(self, ledger: Ledger, mutator: BalanceMutator) -> None:
        self._ledger = ledger
        self._mutator = mutator

    def start(self, command: StartSimulationCommand) -> MutationResult:
        delay = timedelta(minutes=max(command.delay_minutes, 0))

        def decide(ctx: MutationContext) -> BalanceChange:
            if not ctx.account.is_active:
                raise AccountInactiveError(ctx.account.id)
            current = ctx.account.simulation
            return BalanceChange(
                new_balance=ctx.account.balance,
                reason="simulator_started",
                event_type="profile_update",
                simulation=SimulationState(
                    enabled=True,
                    paused=False,
                    next_run_at=ctx.now + delay,
                    last_run_at=current.last_run_at,
                    started_at=current.started_at or ctx.now,
                ),
                reallocate=True,
                audit_action="simulator_start",
                audit_details={
                    "delay_minutes": command.delay_minutes,
                    "actor": command.actor,
                },
            )

        result = self._mutator.apply(command.account_id, decide)
        logger.info(
            "Simulator started for account=%s (delay=%s min)",
            command.account_id,
            command.delay_minutes,
        )
        return result

    def pause(self, account_id: int, actor: Optional[str] = None) -> SimulationState:
        with self._ledger.transaction() as uow:
            account = uow.lock_account(account_id)
            paused = replace(account.simulation, paused=True)
            uow.update_simulation(account_id, paused)
            uow.record_admin_action(
                "simulator_pause", {"account_id": account_id, "actor": actor}
            )
        logger.info("Simulator paused for account=%s", account_id)
        return paused

    def state(self, account_id: int) -> SimulationState:
        account = self._ledger.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account.simulation
