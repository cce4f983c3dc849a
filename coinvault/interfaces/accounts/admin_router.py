"""
FastAPI router for administrative operations.

Every route requires the X-Admin-Key header. Routes delegate to
application services; balance changes go through the same
BalanceMutator as user and scheduler writes.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query

from coinvault.application.accounts.account_directory import AccountDirectory
from coinvault.application.accounts.admin_balance import (
    CreditBalanceUseCase,
    SetBalanceUseCase,
)
from coinvault.application.accounts.deposits import DepositWorkflow
from coinvault.application.accounts.dtos import (
    CreditCommand,
    DepositActionCommand,
    SetBalanceCommand,
    StartSimulationCommand,
    WithdrawalActionCommand,
)
from coinvault.application.accounts.simulator_control import SimulatorControl
from coinvault.application.accounts.trade_retention import TradeRetention
from coinvault.application.accounts.withdrawals import WithdrawalWorkflow
from coinvault.domain.accounts.entities import TransactionStatus, WithdrawalStatus
from coinvault.interfaces.accounts.dependencies import (
    AdminActorDep,
    get_account_directory,
    get_credit_use_case,
    get_deposit_workflow,
    get_scheduler,
    get_set_balance_use_case,
    get_simulator_control,
    get_trade_retention,
    get_withdrawal_workflow,
    require_admin,
)
from coinvault.interfaces.accounts.schemas import (
    AccountResponse,
    CreditRequest,
    DepositApprovalResponse,
    ErrorResponse,
    FailWithdrawalRequest,
    GrowthStatsResponse,
    MutationResponse,
    PurgeResponse,
    RegisterAccountRequest,
    SetBalanceRequest,
    SimulationStateResponse,
    StartSimulatorRequest,
    TaskResultResponse,
    TradeResponse,
    TransactionResponse,
    WithdrawalActionResponse,
    WithdrawalListResponse,
    WithdrawalResponse,
)
from coinvault.realtime.scheduler import SimulationScheduler

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
    responses={403: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)

Directory = Annotated[AccountDirectory, Depends(get_account_directory)]
Withdrawals = Annotated[WithdrawalWorkflow, Depends(get_withdrawal_workflow)]
Deposits = Annotated[DepositWorkflow, Depends(get_deposit_workflow)]
Simulator = Annotated[SimulatorControl, Depends(get_simulator_control)]
Scheduler = Annotated[SimulationScheduler, Depends(get_scheduler)]


def _withdrawal_action(result) -> WithdrawalActionResponse:
    return WithdrawalActionResponse(
        withdrawal=WithdrawalResponse.from_entity(result.withdrawal),
        balance=result.balance,
        changed=result.changed,
        refunded=result.refunded,
    )


# ------------------------------------------------------------------
# Accounts
# ------------------------------------------------------------------


@router.post("/accounts", response_model=AccountResponse, status_code=201)
def register_account(body: RegisterAccountRequest, directory: Directory) -> AccountResponse:
    """Register an account for the signup service."""
    account = directory.register(body.email, body.name, body.tax_id)
    return AccountResponse.from_entities(account)


@router.get("/accounts/{account_id}", response_model=AccountResponse)
def get_account(account_id: int, directory: Directory) -> AccountResponse:
    summary = directory.summary(account_id)
    return AccountResponse.from_entities(summary.account, summary.portfolio)


@router.post("/accounts/{account_id}/disable", response_model=AccountResponse)
def disable_account(
    account_id: int, directory: Directory, actor: AdminActorDep
) -> AccountResponse:
    return AccountResponse.from_entities(directory.set_active(account_id, False, actor))


@router.post("/accounts/{account_id}/enable", response_model=AccountResponse)
def enable_account(
    account_id: int, directory: Directory, actor: AdminActorDep
) -> AccountResponse:
    return AccountResponse.from_entities(directory.set_active(account_id, True, actor))


@router.get("/accounts/{account_id}/transactions", response_model=list[TransactionResponse])
def list_account_transactions(
    account_id: int,
    directory: Directory,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
) -> list[TransactionResponse]:
    return [
        TransactionResponse.from_entity(t)
        for t in directory.transactions(account_id, limit=limit)
    ]


# ------------------------------------------------------------------
# Balance
# ------------------------------------------------------------------


@router.post(
    "/accounts/{account_id}/balance",
    response_model=MutationResponse,
    summary="Override an account balance",
)
def set_balance(
    account_id: int,
    body: SetBalanceRequest,
    actor: AdminActorDep,
    use_case: SetBalanceUseCase = Depends(get_set_balance_use_case),
) -> MutationResponse:
    result = use_case.execute(
        SetBalanceCommand(
            account_id=account_id,
            amount=body.amount,
            reason=body.reason,
            tax_id=body.tax_id,
            log_transaction=body.log_transaction,
            actor=actor,
        )
    )
    return MutationResponse.from_result(result)


@router.post("/credit", response_model=MutationResponse, summary="Credit an account")
def credit_account(
    body: CreditRequest,
    actor: AdminActorDep,
    use_case: CreditBalanceUseCase = Depends(get_credit_use_case),
) -> MutationResponse:
    result = use_case.execute(
        CreditCommand(
            account_id=body.account_id,
            amount=body.amount,
            currency=body.currency,
            reference=body.reference,
            actor=actor,
        )
    )
    return MutationResponse.from_result(result)


# ------------------------------------------------------------------
# Simulator
# ------------------------------------------------------------------


@router.get("/accounts/{account_id}/simulator", response_model=SimulationStateResponse)
def simulator_state(account_id: int, simulator: Simulator) -> SimulationStateResponse:
    return SimulationStateResponse.from_state(simulator.state(account_id))


@router.post("/accounts/{account_id}/simulator/start", response_model=MutationResponse)
def start_simulator(
    account_id: int,
    simulator: Simulator,
    actor: AdminActorDep,
    body: Optional[StartSimulatorRequest] = None,
) -> MutationResponse:
    delay = body.delay_minutes if body is not None else 5
    result = simulator.start(
        StartSimulationCommand(account_id=account_id, delay_minutes=delay, actor=actor)
    )
    return MutationResponse.from_result(result)


@router.post("/accounts/{account_id}/simulator/pause", response_model=SimulationStateResponse)
def pause_simulator(
    account_id: int, simulator: Simulator, actor: AdminActorDep
) -> SimulationStateResponse:
    return SimulationStateResponse.from_state(simulator.pause(account_id, actor))


@router.post(
    "/accounts/{account_id}/simulator/trigger-growth", response_model=TaskResultResponse
)
def trigger_growth(account_id: int, scheduler: Scheduler) -> TaskResultResponse:
    return _task_response(scheduler.run_now("growth", account_id=account_id))


@router.post(
    "/accounts/{account_id}/simulator/trigger-tick", response_model=TaskResultResponse
)
def trigger_tick(account_id: int, scheduler: Scheduler) -> TaskResultResponse:
    return _task_response(scheduler.run_now("tick", account_id=account_id))


@router.get("/accounts/{account_id}/growth-trades", response_model=list[TradeResponse])
def growth_trades(
    account_id: int,
    directory: Directory,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
) -> list[TradeResponse]:
    return [TradeResponse.from_entity(t) for t in directory.growth_trades(account_id, limit)]


@router.get("/accounts/{account_id}/growth-stats", response_model=GrowthStatsResponse)
def growth_stats(account_id: int, directory: Directory) -> GrowthStatsResponse:
    return GrowthStatsResponse.from_entity(directory.growth_stats(account_id))


# ------------------------------------------------------------------
# Deposits
# ------------------------------------------------------------------


@router.get("/deposits", response_model=list[TransactionResponse])
def list_deposits(
    deposits: Deposits,
    status: Optional[TransactionStatus] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> list[TransactionResponse]:
    return [
        TransactionResponse.from_entity(d)
        for d in deposits.list_deposits(status=status, limit=limit)
    ]


@router.post(
    "/deposits/{transaction_id}/approve",
    response_model=DepositApprovalResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def approve_deposit(
    transaction_id: int, deposits: Deposits, actor: AdminActorDep
) -> DepositApprovalResponse:
    result = deposits.approve(DepositActionCommand(transaction_id=transaction_id, actor=actor))
    return DepositApprovalResponse(
        transaction_id=result.transaction_id,
        account_id=result.account_id,
        already_completed=result.already_completed,
        first_deposit=result.first_deposit,
        balance=result.balance,
    )


@router.post("/deposits/{transaction_id}/reject", response_model=TransactionResponse)
def reject_deposit(
    transaction_id: int, deposits: Deposits, actor: AdminActorDep
) -> TransactionResponse:
    record = deposits.reject(DepositActionCommand(transaction_id=transaction_id, actor=actor))
    return TransactionResponse.from_entity(record)


# ------------------------------------------------------------------
# Withdrawals
# ------------------------------------------------------------------


@router.get("/withdrawals", response_model=WithdrawalListResponse)
def list_withdrawals(
    workflow: Withdrawals,
    status: Optional[WithdrawalStatus] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> WithdrawalListResponse:
    return WithdrawalListResponse(
        withdrawals=[
            WithdrawalResponse.from_entity(w)
            for w in workflow.list_all(status=status, limit=limit)
        ]
    )


@router.post("/withdrawals/{withdrawal_id}/confirm-fee", response_model=WithdrawalActionResponse)
def confirm_withdrawal_fee(
    withdrawal_id: int, workflow: Withdrawals, actor: AdminActorDep
) -> WithdrawalActionResponse:
    return _withdrawal_action(
        workflow.confirm_fee(WithdrawalActionCommand(withdrawal_id=withdrawal_id, actor=actor))
    )


@router.post("/withdrawals/{withdrawal_id}/approve", response_model=WithdrawalActionResponse)
def approve_withdrawal(
    withdrawal_id: int, workflow: Withdrawals, actor: AdminActorDep
) -> WithdrawalActionResponse:
    return _withdrawal_action(
        workflow.approve(WithdrawalActionCommand(withdrawal_id=withdrawal_id, actor=actor))
    )


@router.post("/withdrawals/{withdrawal_id}/fail", response_model=WithdrawalActionResponse)
def fail_withdrawal(
    withdrawal_id: int,
    workflow: Withdrawals,
    actor: AdminActorDep,
    body: Optional[FailWithdrawalRequest] = None,
) -> WithdrawalActionResponse:
    return _withdrawal_action(
        workflow.fail(
            WithdrawalActionCommand(
                withdrawal_id=withdrawal_id,
                actor=actor,
                reason=body.reason if body is not None else None,
            )
        )
    )


@router.delete("/withdrawals/{withdrawal_id}", response_model=WithdrawalActionResponse)
def delete_withdrawal(
    withdrawal_id: int, workflow: Withdrawals, actor: AdminActorDep
) -> WithdrawalActionResponse:
    return _withdrawal_action(
        workflow.delete(WithdrawalActionCommand(withdrawal_id=withdrawal_id, actor=actor))
    )


# ------------------------------------------------------------------
# Trades & scheduler
# ------------------------------------------------------------------


@router.post("/trades/purge", response_model=PurgeResponse, summary="Delete all trades")
def purge_trades(
    actor: AdminActorDep,
    retention: TradeRetention = Depends(get_trade_retention),
) -> PurgeResponse:
    return PurgeResponse(removed=retention.purge_all(actor))


@router.get("/scheduler/status")
def scheduler_status(scheduler: Scheduler) -> dict:
    """Return scheduler state and recent task history."""
    return scheduler.get_status()


@router.post("/scheduler/run/{task_name}", response_model=TaskResultResponse)
def scheduler_run_task(
    task_name: str,
    scheduler: Scheduler,
    account_id: Annotated[Optional[int], Query(ge=1)] = None,
) -> TaskResultResponse:
    """Run growth, tick or purge_trades immediately."""
    return _task_response(scheduler.run_now(task_name, account_id=account_id))


def _task_response(result) -> TaskResultResponse:
    return TaskResultResponse(
        task=result.task_name,
        status=result.status.value,
        account_id=result.account_id,
        duration_seconds=result.duration_seconds,
        details=result.details,
        error=result.error,
    )
