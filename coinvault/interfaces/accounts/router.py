"""
FastAPI router for account holders.

All routes delegate to application services. No business logic here.
The caller's account id always comes from the gateway header; users can
only see and act on their own withdrawals.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from coinvault.application.accounts.account_directory import AccountDirectory
from coinvault.application.accounts.deposits import DepositWorkflow
from coinvault.application.accounts.dtos import (
    RequestDepositCommand,
    RequestWithdrawalCommand,
    WithdrawalActionCommand,
)
from coinvault.application.accounts.withdrawals import WithdrawalWorkflow
from coinvault.interfaces.accounts.dependencies import (
    AccountIdDep,
    get_account_directory,
    get_deposit_workflow,
    get_withdrawal_workflow,
)
from coinvault.interfaces.accounts.schemas import (
    AccountResponse,
    DepositCreateRequest,
    ErrorResponse,
    TransactionResponse,
    WithdrawalActionResponse,
    WithdrawalCreateRequest,
    WithdrawalListResponse,
    WithdrawalResponse,
)
from coinvault.shared.security.rate_limiting import HEAVY_RATE_LIMIT, limiter

router = APIRouter(tags=["accounts"])

Withdrawals = Annotated[WithdrawalWorkflow, Depends(get_withdrawal_workflow)]


@router.get(
    "/accounts/me",
    response_model=AccountResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Current balance and holdings",
)
def get_my_account(
    account_id: AccountIdDep,
    directory: AccountDirectory = Depends(get_account_directory),
) -> AccountResponse:
    summary = directory.summary(account_id)
    return AccountResponse.from_entities(summary.account, summary.portfolio)


@router.post(
    "/withdrawals",
    response_model=WithdrawalActionResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Request a withdrawal",
    description="Debits amount plus the withdrawal fee immediately.",
)
@limiter.limit(HEAVY_RATE_LIMIT)
def request_withdrawal(
    request: Request,
    body: WithdrawalCreateRequest,
    account_id: AccountIdDep,
    workflow: Withdrawals,
) -> WithdrawalActionResponse:
    result = workflow.request(
        RequestWithdrawalCommand(
            account_id=account_id,
            amount=body.amount,
            crypto_type=body.crypto_type,
            crypto_address=body.crypto_address,
        )
    )
    return WithdrawalActionResponse(
        withdrawal=WithdrawalResponse.from_entity(result.withdrawal),
        balance=result.balance,
    )


@router.get(
    "/withdrawals",
    response_model=WithdrawalListResponse,
    summary="List my latest withdrawals",
)
def list_my_withdrawals(
    account_id: AccountIdDep, workflow: Withdrawals
) -> WithdrawalListResponse:
    return WithdrawalListResponse(
        withdrawals=[
            WithdrawalResponse.from_entity(w)
            for w in workflow.list_for_account(account_id)
        ]
    )


@router.get(
    "/withdrawals/{withdrawal_id}",
    response_model=WithdrawalResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Poll one withdrawal",
)
def get_my_withdrawal(
    withdrawal_id: int, account_id: AccountIdDep, workflow: Withdrawals
) -> WithdrawalResponse:
    return WithdrawalResponse.from_entity(
        workflow.get_for_account(account_id, withdrawal_id)
    )


@router.post(
    "/withdrawals/{withdrawal_id}/acknowledge-fee",
    response_model=WithdrawalActionResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Confirm the withdrawal fee was sent",
)
def acknowledge_withdrawal_fee(
    withdrawal_id: int, account_id: AccountIdDep, workflow: Withdrawals
) -> WithdrawalActionResponse:
    result = workflow.acknowledge_fee(
        WithdrawalActionCommand(withdrawal_id=withdrawal_id, account_id=account_id)
    )
    return WithdrawalActionResponse(
        withdrawal=WithdrawalResponse.from_entity(result.withdrawal),
        changed=result.changed,
    )


@router.post(
    "/deposits",
    response_model=TransactionResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}},
    summary="Submit a deposit request",
    description="Creates a pending deposit. The balance changes only after approval.",
)
@limiter.limit(HEAVY_RATE_LIMIT)
def request_deposit(
    request: Request,
    body: DepositCreateRequest,
    account_id: AccountIdDep,
    workflow: DepositWorkflow = Depends(get_deposit_workflow),
) -> TransactionResponse:
    result = workflow.request(
        RequestDepositCommand(
            account_id=account_id, amount=body.amount, currency=body.currency
        )
    )
    return TransactionResponse.from_entity(result.transaction)
